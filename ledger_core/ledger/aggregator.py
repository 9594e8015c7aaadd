"""
Budget Aggregator

`spent` is never stored. It is recomputed from the transaction table on
every read, so it cannot drift from the ledger.

A budget counts debit transactions of its category whose date falls in
the half-open window [start_date, end_date).
"""

from decimal import Decimal
from typing import Optional

from ledger_core.models.records import (
    Budget,
    BudgetStatus,
    BudgetSummary,
    Session,
    TransactionType,
)
from ledger_core.services.storage.interface import InRange, RecordStore, Table

ZERO = Decimal("0")
HUNDRED = Decimal("100")


def progress_pct(spent: Decimal, budget_amount: Decimal) -> Decimal:
    """
    Percentage of the budget used, unbounded above 100.

    A zero budget is 0% used while nothing is spent and infinitely
    overspent as soon as anything is.
    """
    if budget_amount == 0:
        return ZERO if spent == 0 else Decimal("Infinity")
    return spent / budget_amount * HUNDRED


def remaining(spent: Decimal, budget_amount: Decimal) -> Decimal:
    """Amount left to spend; negative when overspent."""
    return budget_amount - spent


def classify(spent: Decimal, budget_amount: Decimal) -> BudgetStatus:
    if spent < budget_amount:
        return BudgetStatus.UNDER_BUDGET
    if spent == budget_amount:
        return BudgetStatus.AT_LIMIT
    return BudgetStatus.OVERSPENT


class BudgetAggregator:
    """Read-side computations over budgets and transactions."""

    def __init__(self, store: RecordStore, session: Session):
        self._store = store
        self._session = session

    async def compute_spent(
        self,
        budget: Budget,
        handle: Optional[RecordStore] = None,
    ) -> Decimal:
        """
        Sum of absolute debit amounts in the budget's category and window.

        Returns Decimal("0") when nothing matches.
        """
        store = handle or self._store
        transactions = await store.select(
            Table.TRANSACTIONS,
            {
                "category_id": budget.category_id,
                "transaction_type": TransactionType.DEBIT,
                "transaction_date": InRange(budget.start_date, budget.end_date),
            },
        )
        return sum((abs(t.amount) for t in transactions), ZERO)

    async def summarize(
        self,
        budget: Budget,
        handle: Optional[RecordStore] = None,
    ) -> BudgetSummary:
        """Budget with live spent, remaining, progress and status."""
        spent = await self.compute_spent(budget, handle)
        return BudgetSummary(
            budget=budget,
            spent=spent,
            remaining=remaining(spent, budget.budget_amount),
            progress_pct=progress_pct(spent, budget.budget_amount),
            status=classify(spent, budget.budget_amount),
        )

    async def summarize_all(self) -> list[BudgetSummary]:
        """Summaries for every budget of the session user, newest period first."""
        budgets = await self._store.select(
            Table.BUDGETS,
            {"user_id": self._session.user_id},
            order_by="-start_date",
        )
        summaries = []
        for budget in budgets:
            summaries.append(await self.summarize(budget))
        return summaries

    async def candidate_budgets(
        self,
        category_id: int,
        transaction_type: TransactionType,
    ) -> list[Budget]:
        """
        Budgets a new transaction may be assigned to.

        Only expenses are budgeted. Any budget of the same category
        qualifies whatever its window; an assignment outside the window is
        allowed but does not count towards `spent`.
        """
        if transaction_type != TransactionType.DEBIT:
            return []
        return await self._store.select(
            Table.BUDGETS,
            {"user_id": self._session.user_id, "category_id": category_id},
            order_by="-start_date",
        )
