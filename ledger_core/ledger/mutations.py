"""
Transaction Mutation Service

The ONLY entry point allowed to create, update or delete a Transaction.

DESIGN DECISION: every transaction write is paired with its balance
adjustment inside one atomic unit. Either both land or neither does.

Flow for each mutation:
1. Load referenced records (NotFoundError if missing or not ours)
2. Validate (ValidationError, nothing written)
3. Run the atomic unit: row write, then balance adjustment
4. Audit the outcome AFTER the unit has committed or rolled back

Any failure inside the unit is rolled back by the store and surfaced as a
single MutationError wrapping the cause. There is no retry and no manual
compensation: the rollback is the recovery.
"""

from datetime import datetime
from decimal import Decimal
from typing import Awaitable, Callable, Optional, TypeVar, Union
from uuid import UUID

import structlog

from ledger_core.audit import AuditLogger, create_correlation_id
from ledger_core.errors import MutationError, NotFoundError, ValidationError
from ledger_core.ledger.balance import BalanceLedger, signed_effect
from ledger_core.models.records import (
    Account,
    Budget,
    Category,
    Session,
    Transaction,
    TransactionCreate,
    TransactionType,
    TransactionUpdate,
    ValidationIssue,
    ValidationResult,
    utcnow,
)
from ledger_core.services.storage.interface import RecordStore, Table, validate_model
from ledger_core.validation import TransactionValidator, sign_issues

T = TypeVar("T")

logger = structlog.get_logger(__name__)

# Fields whose change alters the transaction's effect on a balance
BALANCE_FIELDS = frozenset({"amount", "account_id", "transaction_type"})


class TransactionMutationService:
    """
    Creates, edits and deletes transactions for one session user.

    Usage:
        service = TransactionMutationService(store, Session(user_id=1))
        txn = await service.create(TransactionCreate(
            account_id=1, category_id=2, amount=Decimal("-45.99"),
        ))
        await service.update(txn.transaction_id, TransactionUpdate(amount=Decimal("-60.00")))
        await service.delete(txn.transaction_id)
    """

    def __init__(
        self,
        store: RecordStore,
        session: Session,
        ledger: Optional[BalanceLedger] = None,
        validator: Optional[TransactionValidator] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._session = session
        self._ledger = ledger or BalanceLedger(store, session)
        self._validator = validator or TransactionValidator()
        self._audit = audit_logger or AuditLogger()

    # =========================================================================
    # LOOKUPS
    # =========================================================================

    async def get(self, transaction_id: int) -> Transaction:
        """
        Fetch a transaction whose account belongs to the session user.

        Raises:
            NotFoundError: If absent or owned by another user
        """
        transaction = await self._store.get(Table.TRANSACTIONS, transaction_id)
        try:
            await self._ledger.load_account(transaction.account_id)
        except NotFoundError:
            raise NotFoundError(f"transactions record not found: {transaction_id}")
        return transaction

    async def _load_category(self, category_id: int) -> Category:
        category = await self._store.get(Table.CATEGORIES, category_id)
        if category.user_id != self._session.user_id:
            raise NotFoundError(f"categories record not found: {category_id}")
        return category

    async def _load_budget(self, budget_id: Optional[int]) -> Optional[Budget]:
        if budget_id is None:
            return None
        budget = await self._store.get(Table.BUDGETS, budget_id)
        if budget.user_id != self._session.user_id:
            raise NotFoundError(f"budgets record not found: {budget_id}")
        return budget

    # =========================================================================
    # VALIDATION
    # =========================================================================

    async def check_create(self, data: TransactionCreate) -> ValidationResult:
        """
        Validate a create without writing anything.

        Useful for showing warnings before the user confirms.

        Raises:
            NotFoundError: If the account, category or budget is missing
        """
        await self._ledger.load_account(data.account_id)
        category = await self._load_category(data.category_id)
        budget = await self._load_budget(data.budget_id)
        return self._validator.validate_create(data, category, budget)

    async def _enforce(
        self,
        operation: str,
        result: ValidationResult,
        correlation_id: UUID,
    ) -> None:
        """Raise ValidationError on errors; log warnings and carry on otherwise."""
        if result.has_errors:
            await self._audit.log_validation_failed(
                operation=operation,
                issues=[issue.model_dump() for issue in result.errors],
                user_id=self._session.user_id,
                correlation_id=correlation_id,
            )
            self._validator.raise_for_errors(result)

        if result.warnings:
            logger.warning(
                "transaction_validation_warnings",
                operation=operation,
                warnings=result.warnings,
                correlation_id=str(correlation_id),
            )

    async def _coerce(
        self,
        operation: str,
        model_cls: type[T],
        data: dict,
        correlation_id: UUID,
    ) -> T:
        """Build `model_cls` from raw input, auditing and raising ValidationError on failure."""
        try:
            return validate_model(model_cls, data)
        except ValidationError as e:
            await self._audit.log_validation_failed(
                operation=operation,
                issues=[issue.model_dump() for issue in e.issues],
                user_id=self._session.user_id,
                correlation_id=correlation_id,
            )
            raise

    @staticmethod
    def _currency_issues(field: str, source: Account, destination: Account) -> list[ValidationIssue]:
        if source.currency == destination.currency:
            return []
        return [ValidationIssue(
            field=field,
            issue_type="currency_mismatch",
            message=(
                f"Cannot transfer between {source.currency} and "
                f"{destination.currency} accounts"
            ),
            severity="error",
        )]

    # =========================================================================
    # ATOMIC UNITS
    # =========================================================================

    async def _run_unit(
        self,
        operation: str,
        fn: Callable[[RecordStore], Awaitable[T]],
        transaction_id: Optional[int],
        correlation_id: UUID,
    ) -> T:
        """
        Run `fn` as one atomic unit.

        Raises:
            MutationError: If anything inside the unit fails (already rolled back)
        """
        try:
            return await self._store.run_atomic(fn)
        except Exception as e:
            logger.error(
                "transaction_mutation_failed",
                operation=operation,
                transaction_id=transaction_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            await self._audit.log_mutation_failed(
                operation=operation,
                transaction_id=transaction_id,
                error_message=str(e),
                user_id=self._session.user_id,
                correlation_id=correlation_id,
            )
            raise MutationError(f"Transaction {operation} failed: {e}", cause=e) from e

    # =========================================================================
    # CREATE
    # =========================================================================

    async def create(
        self,
        data: TransactionCreate,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """
        Record a debit or credit and apply it to the account balance.

        Raises:
            ValidationError: Sign/type mismatch or inconsistent references
            NotFoundError: Account, category or budget missing
            MutationError: The write failed and was rolled back
        """
        correlation_id = correlation_id or create_correlation_id()

        # Sign is checked before anything is looked up
        sign_problems = sign_issues(data.transaction_type, data.amount)
        if sign_problems:
            await self._enforce("create", ValidationResult(issues=sign_problems), correlation_id)

        result = await self.check_create(data)
        await self._enforce("create", result, correlation_id)

        record = Transaction(**data.model_dump())

        async def unit(handle: RecordStore) -> Transaction:
            transaction = await handle.insert(Table.TRANSACTIONS, record)
            await self._ledger.apply_effect(
                transaction.account_id,
                signed_effect(transaction.transaction_type, transaction.amount),
                handle,
            )
            return transaction

        transaction = await self._run_unit("create", unit, None, correlation_id)

        await self._audit.log_transaction_created(
            transaction_id=transaction.transaction_id,
            account_id=transaction.account_id,
            amount=transaction.amount,
            transaction_type=transaction.transaction_type.value,
            user_id=self._session.user_id,
            correlation_id=correlation_id,
        )
        return transaction

    # =========================================================================
    # UPDATE
    # =========================================================================

    async def update(
        self,
        transaction_id: int,
        updates: Union[TransactionUpdate, dict],
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """
        Edit a transaction, moving its balance effect if needed.

        When amount, account or type changes, the original effect is
        reversed on the original account and the new effect is applied on
        the new account, in that order, inside the same unit as the row
        write. Editing a transfer leg's amount or date mirrors it onto the
        linked leg.

        Returns:
            The updated transaction

        Raises:
            NotFoundError: Transaction (or a newly referenced record) missing
            ValidationError: The edited transaction would be invalid
            MutationError: The write failed and was rolled back
        """
        correlation_id = correlation_id or create_correlation_id()
        if isinstance(updates, dict):
            updates = await self._coerce("update", TransactionUpdate, updates, correlation_id)

        existing = await self.get(transaction_id)
        changes = {
            name: value
            for name, value in updates.changes().items()
            if getattr(existing, name) != value
        }
        if not changes:
            return existing

        if "account_id" in changes:
            await self._ledger.load_account(changes["account_id"])
        category = await self._load_category(changes.get("category_id", existing.category_id))
        budget = await self._load_budget(changes.get("budget_id", existing.budget_id))

        result = self._validator.validate_update(existing, changes, category, budget)
        if existing.transaction_type == TransactionType.TRANSFER:
            result.issues.extend(await self._transfer_leg_issues(existing, changes))
        await self._enforce("update", result, correlation_id)

        balance_adjusted = bool(BALANCE_FIELDS & changes.keys())
        mirrored = {
            name: (-changes[name] if name == "amount" else changes[name])
            for name in ("amount", "transaction_date")
            if name in changes
        }

        async def unit(handle: RecordStore) -> Transaction:
            await handle.update(Table.TRANSACTIONS, transaction_id, changes)
            updated = await handle.get(Table.TRANSACTIONS, transaction_id)

            if balance_adjusted:
                await self._ledger.reverse_effect(
                    existing.account_id,
                    signed_effect(existing.transaction_type, existing.amount),
                    handle,
                )
                await self._ledger.apply_effect(
                    updated.account_id,
                    signed_effect(updated.transaction_type, updated.amount),
                    handle,
                )

            if existing.linked_transaction_id is not None and mirrored:
                await self._mirror_linked_leg(handle, existing.linked_transaction_id, mirrored)

            return updated

        updated = await self._run_unit("update", unit, transaction_id, correlation_id)

        await self._audit.log_transaction_updated(
            transaction_id=transaction_id,
            changed_fields=sorted(changes),
            balance_adjusted=balance_adjusted,
            user_id=self._session.user_id,
            correlation_id=correlation_id,
        )
        return updated

    async def _transfer_leg_issues(
        self,
        leg: Transaction,
        changes: dict,
    ) -> list[ValidationIssue]:
        issues = []
        if "amount" in changes:
            new_amount = changes["amount"]
            if new_amount == 0 or (new_amount < 0) != (leg.amount < 0):
                issues.append(ValidationIssue(
                    field="amount",
                    issue_type="sign_mismatch",
                    message="A transfer leg keeps its direction; only its size can change",
                    severity="error",
                    suggested_fix="Delete the transfer and record it in the other direction",
                ))
        if "account_id" in changes and leg.linked_transaction_id is not None:
            linked = await self._store.get(Table.TRANSACTIONS, leg.linked_transaction_id)
            if linked.account_id == changes["account_id"]:
                issues.append(ValidationIssue(
                    field="account_id",
                    issue_type="invalid_value",
                    message="Both legs of a transfer cannot use the same account",
                    severity="error",
                ))
            else:
                # The pair must stay within one currency
                moved_to = await self._ledger.load_account(changes["account_id"])
                counterpart = await self._ledger.load_account(linked.account_id)
                issues.extend(self._currency_issues("account_id", counterpart, moved_to))
        return issues

    async def _mirror_linked_leg(
        self,
        handle: RecordStore,
        linked_id: int,
        mirrored: dict,
    ) -> None:
        linked = await handle.get(Table.TRANSACTIONS, linked_id)
        await handle.update(Table.TRANSACTIONS, linked_id, mirrored)
        if "amount" in mirrored:
            await self._ledger.reverse_effect(linked.account_id, linked.amount, handle)
            await self._ledger.apply_effect(linked.account_id, mirrored["amount"], handle)

    # =========================================================================
    # DELETE
    # =========================================================================

    async def delete(
        self,
        transaction_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """
        Delete a transaction and reverse its effect on the balance.

        Deleting either leg of a transfer deletes both.

        Raises:
            NotFoundError: Transaction missing
            MutationError: The write failed and was rolled back
        """
        correlation_id = correlation_id or create_correlation_id()
        existing = await self.get(transaction_id)

        async def unit(handle: RecordStore) -> list[Transaction]:
            legs = [existing]
            if existing.linked_transaction_id is not None:
                legs.append(await handle.get(Table.TRANSACTIONS, existing.linked_transaction_id))
                # Break the pair first so neither row references a deleted one
                for leg in legs:
                    await handle.update(
                        Table.TRANSACTIONS, leg.transaction_id, {"linked_transaction_id": None}
                    )

            for leg in legs:
                await handle.delete(Table.TRANSACTIONS, leg.transaction_id)
                await self._ledger.reverse_effect(
                    leg.account_id,
                    signed_effect(leg.transaction_type, leg.amount),
                    handle,
                )
            return legs

        legs = await self._run_unit("delete", unit, transaction_id, correlation_id)

        for leg in legs:
            await self._audit.log_transaction_deleted(
                transaction_id=leg.transaction_id,
                account_id=leg.account_id,
                amount=signed_effect(leg.transaction_type, leg.amount),
                user_id=self._session.user_id,
                correlation_id=correlation_id,
            )

    # =========================================================================
    # TRANSFER
    # =========================================================================

    async def transfer(
        self,
        from_account_id: int,
        to_account_id: int,
        amount: Decimal,
        category_id: int,
        transaction_date: Optional[datetime] = None,
        description: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> tuple[Transaction, Transaction]:
        """
        Move money between two of the user's accounts.

        Writes an outgoing leg (-amount) and an incoming leg (+amount)
        linked to each other, each leg with its balance effect in its own
        nested unit, all inside one outer unit.

        Returns:
            (outgoing, incoming)

        Raises:
            ValidationError: Non-positive amount, same account, currency mismatch
            NotFoundError: Either account or the category missing
            MutationError: The write failed and was rolled back
        """
        correlation_id = correlation_id or create_correlation_id()
        amount = Decimal(amount)
        transaction_date = transaction_date or utcnow()

        result = self._validator.validate_transfer(
            from_account_id, to_account_id, amount, transaction_date
        )
        await self._enforce("transfer", result, correlation_id)

        source = await self._ledger.load_account(from_account_id)
        destination = await self._ledger.load_account(to_account_id)
        await self._load_category(category_id)

        currency_problems = self._currency_issues("to_account_id", source, destination)
        if currency_problems:
            await self._enforce("transfer", ValidationResult(issues=currency_problems), correlation_id)

        # Both legs are validated before the unit starts
        leg_fields = {
            "category_id": category_id,
            "transaction_type": TransactionType.TRANSFER,
            "transaction_date": transaction_date,
            "description": description,
        }
        outgoing_record = await self._coerce(
            "transfer",
            Transaction,
            {**leg_fields, "account_id": from_account_id, "amount": -amount},
            correlation_id,
        )
        incoming_record = await self._coerce(
            "transfer",
            Transaction,
            {**leg_fields, "account_id": to_account_id, "amount": amount},
            correlation_id,
        )

        def write_leg(record: Transaction):
            async def write(handle: RecordStore) -> Transaction:
                written = await handle.insert(Table.TRANSACTIONS, record)
                await self._ledger.apply_effect(written.account_id, written.amount, handle)
                return written

            return write

        async def unit(handle: RecordStore) -> tuple[Transaction, Transaction]:
            outgoing = await handle.run_atomic(write_leg(outgoing_record))
            incoming = await handle.run_atomic(write_leg(incoming_record.model_copy(
                update={"linked_transaction_id": outgoing.transaction_id}
            )))
            await handle.update(
                Table.TRANSACTIONS,
                outgoing.transaction_id,
                {"linked_transaction_id": incoming.transaction_id},
            )
            outgoing = outgoing.model_copy(
                update={"linked_transaction_id": incoming.transaction_id}
            )
            return outgoing, incoming

        outgoing, incoming = await self._run_unit("transfer", unit, None, correlation_id)

        await self._audit.log_transfer_created(
            outgoing_id=outgoing.transaction_id,
            incoming_id=incoming.transaction_id,
            amount=amount,
            user_id=self._session.user_id,
            correlation_id=correlation_id,
        )
        return outgoing, incoming
