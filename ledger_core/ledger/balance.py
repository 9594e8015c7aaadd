"""
Balance Ledger

Keeps `Account.balance` equal to the opening balance plus the signed
effect of every active transaction on the account.

Every method takes an optional `handle`: when the caller is already inside
an atomic unit it passes its handle and the write joins that unit. Without
one, the ledger opens a unit of its own.
"""

from decimal import Decimal
from typing import Optional

import structlog

from ledger_core.errors import NotFoundError
from ledger_core.models.records import Account, Session, TransactionType
from ledger_core.services.storage.interface import RecordStore, Table

logger = structlog.get_logger(__name__)


def signed_effect(transaction_type: TransactionType, amount: Decimal) -> Decimal:
    """
    The delta a transaction applies to its account's balance.

    Debits always decrease and credits always increase the balance.
    Transfer legs carry their direction in the sign of `amount`.
    """
    if transaction_type == TransactionType.DEBIT:
        return -abs(amount)
    if transaction_type == TransactionType.CREDIT:
        return abs(amount)
    return amount


class BalanceLedger:
    """Applies and reverses monetary effects on account balances."""

    def __init__(self, store: RecordStore, session: Session):
        self._store = store
        self._session = session

    async def load_account(
        self,
        account_id: int,
        handle: Optional[RecordStore] = None,
    ) -> Account:
        """
        Fetch an account owned by the session user.

        Raises:
            NotFoundError: If the account is absent or belongs to someone else
        """
        store = handle or self._store
        account = await store.get(Table.ACCOUNTS, account_id)
        if account.user_id != self._session.user_id:
            raise NotFoundError(f"accounts record not found: {account_id}")
        return account

    async def apply_effect(
        self,
        account_id: int,
        signed_delta: Decimal,
        handle: Optional[RecordStore] = None,
    ) -> Decimal:
        """
        Add `signed_delta` to the account's balance.

        No sufficient-funds check: balances may go negative.

        Returns:
            The new balance
        """
        if handle is None:
            return await self._store.run_atomic(
                lambda h: self.apply_effect(account_id, signed_delta, h)
            )

        account = await self.load_account(account_id, handle)
        new_balance = account.balance + signed_delta
        await handle.update(Table.ACCOUNTS, account_id, {"balance": new_balance})

        logger.debug(
            "balance_adjusted",
            account_id=account_id,
            delta=str(signed_delta),
            balance=str(new_balance),
        )
        return new_balance

    async def reverse_effect(
        self,
        account_id: int,
        signed_delta: Decimal,
        handle: Optional[RecordStore] = None,
    ) -> Decimal:
        """Undo a previously applied delta."""
        return await self.apply_effect(account_id, -signed_delta, handle)
