"""Tests for the in-memory record store and the shared store contract."""

import pytest
from datetime import datetime
from decimal import Decimal

from ledger_core.errors import NotFoundError, StorageError, ValidationError
from ledger_core.models.records import Account, AccountType, Transaction, TransactionType
from ledger_core.models.audit import AuditEventBuilder
from ledger_core.services.storage import InMemoryAuditStorage, InRange, OneOf, Table


def make_account(name="Wallet", balance="10.00") -> Account:
    return Account(
        user_id=1,
        account_name=name,
        account_type=AccountType.CASH,
        balance=Decimal(balance),
    )


class TestCrud:
    """Tests for insert/update/delete/select."""

    @pytest.mark.asyncio
    async def test_insert_assigns_sequential_ids(self, store):
        first = await store.insert(Table.ACCOUNTS, make_account("A"))
        second = await store.insert(Table.ACCOUNTS, make_account("B"))
        assert (first.account_id, second.account_id) == (1, 2)

    @pytest.mark.asyncio
    async def test_insert_ignores_caller_supplied_id(self, store):
        account = make_account().model_copy(update={"account_id": 99})
        inserted = await store.insert(Table.ACCOUNTS, account)
        assert inserted.account_id == 1

    @pytest.mark.asyncio
    async def test_insert_accepts_dict(self, store):
        inserted = await store.insert(
            Table.ACCOUNTS,
            {"user_id": 1, "account_name": "Card", "account_type": "credit_card"},
        )
        assert inserted.account_type == AccountType.CREDIT_CARD

    @pytest.mark.asyncio
    async def test_insert_rejects_unknown_enum_value(self, store):
        """Closed enums are enforced at the store boundary."""
        with pytest.raises(ValidationError) as exc_info:
            await store.insert(
                Table.ACCOUNTS,
                {"user_id": 1, "account_name": "Jar", "account_type": "piggy_bank"},
            )
        assert exc_info.value.issues[0].field == "account_type"

    @pytest.mark.asyncio
    async def test_update_merges_and_touches_updated_at(self, store):
        account = await store.insert(Table.ACCOUNTS, make_account())
        await store.update(Table.ACCOUNTS, account.account_id, {"balance": Decimal("3.50")})

        stored = await store.get(Table.ACCOUNTS, account.account_id)
        assert stored.balance == Decimal("3.50")
        assert stored.account_name == "Wallet"
        assert stored.updated_at >= account.updated_at

    @pytest.mark.asyncio
    async def test_update_rejects_sign_mismatch(self, store):
        """A debit cannot be updated to a positive amount."""
        txn = await store.insert(
            Table.TRANSACTIONS,
            Transaction(
                account_id=1,
                category_id=1,
                amount=Decimal("-5.00"),
                transaction_date=datetime(2024, 3, 1),
            ),
        )
        with pytest.raises(ValidationError):
            await store.update(Table.TRANSACTIONS, txn.transaction_id, {"amount": Decimal("5.00")})

    @pytest.mark.asyncio
    async def test_update_rejects_unknown_field(self, store):
        account = await store.insert(Table.ACCOUNTS, make_account())
        with pytest.raises(StorageError, match="Unknown field"):
            await store.update(Table.ACCOUNTS, account.account_id, {"colour": "red"})

    @pytest.mark.asyncio
    async def test_update_missing_raises_not_found(self, store):
        with pytest.raises(NotFoundError):
            await store.update(Table.ACCOUNTS, 42, {"account_name": "x"})

    @pytest.mark.asyncio
    async def test_delete_missing_raises_not_found(self, store):
        with pytest.raises(NotFoundError):
            await store.delete(Table.ACCOUNTS, 42)

    @pytest.mark.asyncio
    async def test_delete_removes_record(self, store):
        account = await store.insert(Table.ACCOUNTS, make_account())
        await store.delete(Table.ACCOUNTS, account.account_id)
        assert await store.select(Table.ACCOUNTS) == []

    @pytest.mark.asyncio
    async def test_returned_records_are_copies(self, store):
        """Mutating a returned record does not change the stored one."""
        account = await store.insert(Table.ACCOUNTS, make_account())
        account.balance = Decimal("999")
        stored = await store.get(Table.ACCOUNTS, account.account_id)
        assert stored.balance == Decimal("10.00")


class TestSelect:
    """Tests for the filter vocabulary."""

    async def _seed_transactions(self, store):
        for day, amount, budget_id in [(1, "-1.00", None), (5, "-2.00", 7), (9, "-3.00", 7)]:
            await store.insert(
                Table.TRANSACTIONS,
                Transaction(
                    account_id=1,
                    category_id=1,
                    amount=Decimal(amount),
                    transaction_date=datetime(2024, 3, day),
                    budget_id=budget_id,
                ),
            )

    @pytest.mark.asyncio
    async def test_range_is_half_open(self, store):
        await self._seed_transactions(store)
        rows = await store.select(
            Table.TRANSACTIONS,
            {"transaction_date": InRange(datetime(2024, 3, 1), datetime(2024, 3, 9))},
        )
        assert [r.amount for r in rows] == [Decimal("-1.00"), Decimal("-2.00")]

    @pytest.mark.asyncio
    async def test_none_means_is_null(self, store):
        await self._seed_transactions(store)
        rows = await store.select(Table.TRANSACTIONS, {"budget_id": None})
        assert len(rows) == 1

    @pytest.mark.asyncio
    async def test_one_of(self, store):
        await self._seed_transactions(store)
        rows = await store.select(Table.TRANSACTIONS, {"transaction_id": OneOf([1, 3])})
        assert [r.transaction_id for r in rows] == [1, 3]

    @pytest.mark.asyncio
    async def test_empty_one_of_matches_nothing(self, store):
        await self._seed_transactions(store)
        assert await store.select(Table.TRANSACTIONS, {"account_id": OneOf([])}) == []

    @pytest.mark.asyncio
    async def test_order_descending_and_limit(self, store):
        await self._seed_transactions(store)
        rows = await store.select(Table.TRANSACTIONS, order_by="-transaction_date", limit=2)
        assert [r.transaction_date.day for r in rows] == [9, 5]

    @pytest.mark.asyncio
    async def test_enum_filter(self, store):
        await self._seed_transactions(store)
        rows = await store.select(
            Table.TRANSACTIONS, {"transaction_type": TransactionType.CREDIT}
        )
        assert rows == []

    @pytest.mark.asyncio
    async def test_unknown_filter_field(self, store):
        with pytest.raises(StorageError):
            await store.select(Table.ACCOUNTS, {"nickname": "x"})


class TestAtomicUnits:
    """Tests for run_atomic rollback and savepoints."""

    @pytest.mark.asyncio
    async def test_commit(self, store):
        async def unit(handle):
            a = await handle.insert(Table.ACCOUNTS, make_account("A"))
            await handle.update(Table.ACCOUNTS, a.account_id, {"balance": Decimal("1.00")})
            return a.account_id

        account_id = await store.run_atomic(unit)
        assert (await store.get(Table.ACCOUNTS, account_id)).balance == Decimal("1.00")

    @pytest.mark.asyncio
    async def test_exception_rolls_back_every_write(self, store):
        existing = await store.insert(Table.ACCOUNTS, make_account("Keep"))

        async def unit(handle):
            await handle.insert(Table.ACCOUNTS, make_account("Gone"))
            await handle.update(Table.ACCOUNTS, existing.account_id, {"balance": Decimal("0")})
            await handle.delete(Table.ACCOUNTS, existing.account_id)
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError, match="boom"):
            await store.run_atomic(unit)

        rows = await store.select(Table.ACCOUNTS)
        assert [r.account_name for r in rows] == ["Keep"]
        assert rows[0].balance == Decimal("10.00")

    @pytest.mark.asyncio
    async def test_rollback_restores_id_counter(self, store):
        """Ids are rolled back with the data."""
        async def unit(handle):
            await handle.insert(Table.ACCOUNTS, make_account())
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await store.run_atomic(unit)
        account = await store.insert(Table.ACCOUNTS, make_account())
        assert account.account_id == 1

    @pytest.mark.asyncio
    async def test_nested_unit_is_a_savepoint(self, store):
        """A failed nested unit rolls back only its own writes."""
        async def failing(handle):
            await handle.insert(Table.ACCOUNTS, make_account("Inner"))
            raise RuntimeError("inner")

        async def outer(handle):
            await handle.insert(Table.ACCOUNTS, make_account("Outer"))
            with pytest.raises(RuntimeError):
                await handle.run_atomic(failing)

        await store.run_atomic(outer)
        rows = await store.select(Table.ACCOUNTS)
        assert [r.account_name for r in rows] == ["Outer"]

    @pytest.mark.asyncio
    async def test_outer_failure_rolls_back_committed_savepoint(self, store):
        async def inner(handle):
            await handle.insert(Table.ACCOUNTS, make_account("Inner"))

        async def outer(handle):
            await handle.run_atomic(inner)
            raise RuntimeError("outer")

        with pytest.raises(RuntimeError):
            await store.run_atomic(outer)
        assert await store.select(Table.ACCOUNTS) == []

    @pytest.mark.asyncio
    async def test_reads_inside_unit_see_own_writes(self, store):
        async def unit(handle):
            a = await handle.insert(Table.ACCOUNTS, make_account())
            return await handle.get(Table.ACCOUNTS, a.account_id)

        account = await store.run_atomic(unit)
        assert account.account_name == "Wallet"


class TestInMemoryAuditStorage:

    @pytest.mark.asyncio
    async def test_events_by_entity_and_recent(self):
        storage = InMemoryAuditStorage()
        for transaction_id in (1, 2, 1):
            await storage.append_event(AuditEventBuilder.transaction_deleted(
                transaction_id=transaction_id,
                account_id=1,
                amount=Decimal("-1.00"),
                user_id=1,
            ))

        assert len(await storage.get_events_by_entity("transaction", 1)) == 2
        assert len(await storage.get_recent_events(limit=2)) == 2
        assert len(storage.events) == 3


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
