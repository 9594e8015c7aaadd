"""
Ledger Queries

Read-only views over the ledger for listing and overview screens.

GUARANTEES:
- Only returns real data from storage
- Totals are recomputed on every call, never cached
- Transfers move money between the user's own accounts, so they are
  excluded from income and expense totals
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from ledger_core.ledger.aggregator import BudgetAggregator
from ledger_core.models.records import (
    CashFlowTotals,
    DashboardSummary,
    Session,
    TransactionType,
    TransactionView,
    utcnow,
)
from ledger_core.services.budgets import add_months
from ledger_core.services.storage.interface import InRange, OneOf, RecordStore, Table

RECENT_TRANSACTIONS = 5


class LedgerQueries:
    """Reporting queries scoped to the session user."""

    def __init__(
        self,
        store: RecordStore,
        session: Session,
        aggregator: Optional[BudgetAggregator] = None,
    ):
        self._store = store
        self._session = session
        self._aggregator = aggregator or BudgetAggregator(store, session)

    async def _account_ids(self) -> list[int]:
        accounts = await self._store.select(
            Table.ACCOUNTS, {"user_id": self._session.user_id}
        )
        return [a.account_id for a in accounts]

    async def list_transactions(
        self,
        budget_id: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> list[TransactionView]:
        """
        Transactions with their category names, newest first.

        Args:
            budget_id: Only transactions assigned to this budget
            limit: Maximum number of rows
        """
        filters = {"account_id": OneOf(await self._account_ids())}
        if budget_id is not None:
            filters["budget_id"] = budget_id

        transactions = await self._store.select(
            Table.TRANSACTIONS, filters, order_by="-transaction_date", limit=limit
        )
        categories = await self._store.select(
            Table.CATEGORIES, {"user_id": self._session.user_id}
        )
        names = {c.category_id: c.category_name for c in categories}

        return [
            TransactionView(
                transaction=t,
                category_name=names.get(t.category_id, "Uncategorized"),
            )
            for t in transactions
        ]

    async def cash_flow_totals(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> CashFlowTotals:
        """Income and expenses over [start, end); unbounded sides are open."""
        filters = {
            "account_id": OneOf(await self._account_ids()),
            "transaction_type": OneOf([TransactionType.DEBIT, TransactionType.CREDIT]),
        }
        if start is not None or end is not None:
            filters["transaction_date"] = InRange(start, end)

        transactions = await self._store.select(Table.TRANSACTIONS, filters)

        totals = CashFlowTotals(transaction_count=len(transactions))
        for t in transactions:
            if t.transaction_type == TransactionType.CREDIT:
                totals.income += abs(t.amount)
            else:
                totals.expenses += abs(t.amount)
        return totals

    async def dashboard(self, now: Optional[datetime] = None) -> DashboardSummary:
        """
        Overview numbers: balances, this month's cash flow, budgets and
        the most recent transactions.
        """
        now = now or utcnow()
        month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)

        accounts = await self._store.select(
            Table.ACCOUNTS, {"user_id": self._session.user_id}
        )

        return DashboardSummary(
            total_balance=sum((a.balance for a in accounts), Decimal("0")),
            account_count=len(accounts),
            cash_flow=await self.cash_flow_totals(month_start, add_months(month_start, 1)),
            budgets=await self._aggregator.summarize_all(),
            recent_transactions=await self.list_transactions(limit=RECENT_TRANSACTIONS),
        )
