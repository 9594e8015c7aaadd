"""Tests for the read-only ledger queries."""

import pytest
from datetime import datetime
from decimal import Decimal

from ledger_core.models.records import Session, TransactionCreate, TransactionType
from ledger_core.orchestrator import build_components
from ledger_core.services.storage import Table


async def populate(seeded):
    """A March salary, two March expenses, a February expense and a transfer."""
    app = seeded.app
    rows = [
        (seeded.salary, "1500.00", TransactionType.CREDIT, datetime(2024, 3, 1)),
        (seeded.food, "-45.99", TransactionType.DEBIT, datetime(2024, 3, 10)),
        (seeded.food, "-14.01", TransactionType.DEBIT, datetime(2024, 3, 12)),
        (seeded.food, "-99.00", TransactionType.DEBIT, datetime(2024, 2, 20)),
    ]
    for category, amount, transaction_type, date in rows:
        await app.transactions.create(TransactionCreate(
            account_id=seeded.checking.account_id,
            category_id=category.category_id,
            amount=Decimal(amount),
            transaction_type=transaction_type,
            transaction_date=date,
        ))
    await app.transactions.transfer(
        seeded.checking.account_id,
        seeded.savings.account_id,
        Decimal("300.00"),
        seeded.transfers.category_id,
        transaction_date=datetime(2024, 3, 15),
    )


class TestListTransactions:

    @pytest.mark.asyncio
    async def test_newest_first_with_category_names(self, seeded):
        await populate(seeded)
        views = await seeded.app.queries.list_transactions(limit=3)

        assert [v.transaction.transaction_date.day for v in views] == [15, 15, 12]
        assert views[-1].category_name == "Food"
        assert views[-1].is_expense

    @pytest.mark.asyncio
    async def test_filter_by_budget(self, seeded):
        budget = await seeded.app.budgets.create(
            seeded.food.category_id, "Food", Decimal("200"), start_date=datetime(2024, 3, 1)
        )
        await seeded.app.transactions.create(TransactionCreate(
            account_id=seeded.checking.account_id,
            category_id=seeded.food.category_id,
            amount=Decimal("-8.00"),
            transaction_date=datetime(2024, 3, 2),
            budget_id=budget.budget_id,
        ))
        await populate(seeded)

        views = await seeded.app.queries.list_transactions(budget_id=budget.budget_id)
        assert [v.transaction.amount for v in views] == [Decimal("-8.00")]

    @pytest.mark.asyncio
    async def test_other_users_see_nothing(self, seeded, audit_storage):
        await populate(seeded)
        stranger = build_components(seeded.app.store, Session(user_id=2), audit_storage)
        assert await stranger.queries.list_transactions() == []

    @pytest.mark.asyncio
    async def test_missing_category_shows_uncategorized(self, seeded):
        await populate(seeded)
        other = await seeded.app.store.insert(
            Table.CATEGORIES, {"user_id": 2, "category_name": "Elsewhere"}
        )
        txn = (await seeded.app.store.select(Table.TRANSACTIONS))[0]
        await seeded.app.store.update(
            Table.TRANSACTIONS, txn.transaction_id, {"category_id": other.category_id}
        )

        views = await seeded.app.queries.list_transactions()
        names = {v.transaction.transaction_id: v.category_name for v in views}
        assert names[txn.transaction_id] == "Uncategorized"


class TestCashFlow:

    @pytest.mark.asyncio
    async def test_transfers_are_excluded(self, seeded):
        await populate(seeded)
        totals = await seeded.app.queries.cash_flow_totals()

        assert totals.income == Decimal("1500.00")
        assert totals.expenses == Decimal("159.00")
        assert totals.transaction_count == 4
        assert totals.net == Decimal("1341.00")

    @pytest.mark.asyncio
    async def test_window(self, seeded):
        await populate(seeded)
        totals = await seeded.app.queries.cash_flow_totals(
            datetime(2024, 3, 1), datetime(2024, 4, 1)
        )
        assert totals.expenses == Decimal("60.00")
        assert totals.transaction_count == 3


class TestDashboard:

    @pytest.mark.asyncio
    async def test_dashboard(self, seeded):
        await populate(seeded)
        await seeded.app.budgets.create(
            seeded.food.category_id, "Food", Decimal("200"), start_date=datetime(2024, 3, 1)
        )

        summary = await seeded.app.queries.dashboard(now=datetime(2024, 3, 20, 9, 30))

        # 1000 + 1500 - 45.99 - 14.01 - 99 across both accounts
        assert summary.total_balance == Decimal("2341.00")
        assert summary.account_count == 2
        assert summary.cash_flow.income == Decimal("1500.00")
        assert summary.cash_flow.expenses == Decimal("60.00")
        assert summary.budgets[0].spent == Decimal("60.00")
        assert len(summary.recent_transactions) == 5

    @pytest.mark.asyncio
    async def test_empty_ledger(self, app):
        summary = await app.queries.dashboard(now=datetime(2024, 3, 20))
        assert summary.total_balance == Decimal("0")
        assert summary.recent_transactions == []
        assert summary.cash_flow.net == Decimal("0")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
