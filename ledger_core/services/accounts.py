"""
Account Service

Opens and lists accounts. The opening balance is written once, when the
account is created; from then on only the BalanceLedger changes it.
"""

from decimal import Decimal
from typing import Optional

from ledger_core.audit import AuditLogger
from ledger_core.config import get_settings
from ledger_core.errors import NotFoundError
from ledger_core.models.audit import AuditEventType
from ledger_core.models.records import Account, AccountType, Session
from ledger_core.services.storage.interface import RecordStore, Table


class AccountService:
    """Account CRUD for the session user (no deletion)."""

    def __init__(
        self,
        store: RecordStore,
        session: Session,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._session = session
        self._audit = audit_logger or AuditLogger()

    async def open_account(
        self,
        account_name: str,
        account_type: AccountType,
        initial_balance: Decimal = Decimal("0"),
        currency: Optional[str] = None,
    ) -> Account:
        """
        Open a new account with its opening balance.

        Args:
            account_name: Display name
            account_type: checking, savings, credit_card, cash or investment
            initial_balance: Opening balance (may be negative for credit cards)
            currency: Currency code, defaults to the configured currency

        Raises:
            ValidationError: If the account does not fit the schema
        """
        account = await self._store.insert(
            Table.ACCOUNTS,
            {
                "user_id": self._session.user_id,
                "account_name": account_name,
                "account_type": account_type,
                "balance": Decimal(initial_balance),
                "currency": currency or get_settings().app.default_currency,
            },
        )

        await self._audit.log_record_changed(
            event_type=AuditEventType.ACCOUNT_OPENED,
            entity_type="account",
            entity_id=account.account_id,
            description=f"Account opened: {account.account_name}",
            user_id=self._session.user_id,
            details={
                "account_type": account.account_type.value,
                "opening_balance": f"{account.balance:.2f}",
                "currency": account.currency,
            },
        )
        return account

    async def get(self, account_id: int) -> Account:
        account = await self._store.get(Table.ACCOUNTS, account_id)
        if account.user_id != self._session.user_id:
            raise NotFoundError(f"accounts record not found: {account_id}")
        return account

    async def list_accounts(self) -> list[Account]:
        """Accounts of the session user, ordered by type then name."""
        accounts = await self._store.select(
            Table.ACCOUNTS, {"user_id": self._session.user_id}
        )
        return sorted(accounts, key=lambda a: (a.account_type.value, a.account_name))

    async def rename(self, account_id: int, account_name: str) -> Account:
        await self.get(account_id)
        await self._store.update(Table.ACCOUNTS, account_id, {"account_name": account_name})
        return await self.get(account_id)

    async def total_balance(self) -> Decimal:
        """Sum of all account balances (currencies are not converted)."""
        accounts = await self.list_accounts()
        return sum((a.balance for a in accounts), Decimal("0"))
