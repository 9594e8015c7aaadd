"""
Budget Service

Creates budgets with a period window derived from the period type, lists
them with live spending figures, and renews them into the next period.

Rollover: when a budget with `rollover` set is renewed, whatever was left
unspent (never less than zero) is added to the next period's amount.
"""

import calendar
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

import structlog

from ledger_core.audit import AuditLogger
from ledger_core.errors import NotFoundError, RecordInUseError, ValidationError
from ledger_core.ledger.aggregator import BudgetAggregator
from ledger_core.models.audit import AuditEventType
from ledger_core.models.records import (
    Budget,
    BudgetSummary,
    PeriodType,
    Session,
    ValidationIssue,
    utcnow,
)
from ledger_core.services.storage.interface import RecordStore, Table

logger = structlog.get_logger(__name__)


def add_months(start: datetime, months: int) -> datetime:
    """Same day N months later, clamped to the end of shorter months."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)


def period_end(start: datetime, period_type: PeriodType) -> datetime:
    """
    Exclusive end of a budget period starting at `start`.

    >>> period_end(datetime(2024, 1, 31), PeriodType.MONTHLY)
    datetime.datetime(2024, 2, 29, 0, 0)
    """
    if period_type == PeriodType.WEEKLY:
        return start + timedelta(days=7)
    if period_type == PeriodType.BI_WEEKLY:
        return start + timedelta(days=14)
    if period_type == PeriodType.MONTHLY:
        return add_months(start, 1)
    return add_months(start, 12)


class BudgetService:
    """Budget CRUD and renewal for the session user."""

    def __init__(
        self,
        store: RecordStore,
        session: Session,
        aggregator: Optional[BudgetAggregator] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._session = session
        self._aggregator = aggregator or BudgetAggregator(store, session)
        self._audit = audit_logger or AuditLogger()

    async def create(
        self,
        category_id: int,
        budget_name: str,
        budget_amount: Decimal,
        period_type: PeriodType = PeriodType.MONTHLY,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        rollover: bool = False,
    ) -> Budget:
        """
        Create a budget for an expense category.

        `end_date` defaults to one period after `start_date`, which
        defaults to now.

        Raises:
            NotFoundError: If the category does not exist
            ValidationError: Income category, negative amount or empty window
        """
        category = await self._store.get(Table.CATEGORIES, category_id)
        if category.user_id != self._session.user_id:
            raise NotFoundError(f"categories record not found: {category_id}")
        if category.is_income:
            raise ValidationError(
                f"Cannot budget income category '{category.category_name}'",
                [ValidationIssue(
                    field="category_id",
                    issue_type="category_mismatch",
                    message="Budgets track spending, not income",
                    severity="error",
                    suggested_fix="Pick an expense category",
                )],
            )

        start_date = start_date or utcnow()
        budget = await self._store.insert(
            Table.BUDGETS,
            {
                "user_id": self._session.user_id,
                "category_id": category_id,
                "budget_name": budget_name,
                "budget_amount": Decimal(budget_amount),
                "period_type": period_type,
                "start_date": start_date,
                "end_date": end_date or period_end(start_date, PeriodType(period_type)),
                "rollover": rollover,
            },
        )

        await self._audit.log_record_changed(
            event_type=AuditEventType.BUDGET_CREATED,
            entity_type="budget",
            entity_id=budget.budget_id,
            description=f"Budget created: {budget.budget_name}",
            user_id=self._session.user_id,
            details={
                "category_id": category_id,
                "budget_amount": f"{budget.budget_amount:.2f}",
                "period_type": budget.period_type.value,
            },
        )
        return budget

    async def get(self, budget_id: int) -> Budget:
        budget = await self._store.get(Table.BUDGETS, budget_id)
        if budget.user_id != self._session.user_id:
            raise NotFoundError(f"budgets record not found: {budget_id}")
        return budget

    async def summary(self, budget_id: int) -> BudgetSummary:
        """One budget with its live spending."""
        return await self._aggregator.summarize(await self.get(budget_id))

    async def list_budgets(self) -> list[BudgetSummary]:
        """All budgets of the session user with live spending, newest first."""
        return await self._aggregator.summarize_all()

    async def update(
        self,
        budget_id: int,
        budget_name: Optional[str] = None,
        budget_amount: Optional[Decimal] = None,
        rollover: Optional[bool] = None,
    ) -> Budget:
        """Change name, amount or rollover. The window is fixed once created."""
        await self.get(budget_id)
        changes = {}
        if budget_name is not None:
            changes["budget_name"] = budget_name
        if budget_amount is not None:
            changes["budget_amount"] = Decimal(budget_amount)
        if rollover is not None:
            changes["rollover"] = rollover
        if changes:
            await self._store.update(Table.BUDGETS, budget_id, changes)
        return await self.get(budget_id)

    async def delete(self, budget_id: int) -> None:
        """
        Delete a budget no transaction is assigned to.

        Raises:
            RecordInUseError: If transactions are still assigned to it
        """
        budget = await self.get(budget_id)

        async def unit(handle: RecordStore) -> None:
            assigned = await handle.select(Table.TRANSACTIONS, {"budget_id": budget_id})
            if assigned:
                raise RecordInUseError(
                    f"Budget '{budget.budget_name}' has {len(assigned)} assigned transaction(s)",
                    [ValidationIssue(
                        field="budget_id",
                        issue_type="in_use",
                        message="Budget is still referenced by transactions",
                        severity="error",
                        suggested_fix="Unassign its transactions first",
                    )],
                )
            await handle.delete(Table.BUDGETS, budget_id)

        await self._store.run_atomic(unit)

        await self._audit.log_record_changed(
            event_type=AuditEventType.BUDGET_DELETED,
            entity_type="budget",
            entity_id=budget_id,
            description=f"Budget deleted: {budget.budget_name}",
            user_id=self._session.user_id,
        )

    async def renew(self, budget_id: int) -> Budget:
        """
        Start the next period of a budget.

        The new budget begins where the old one ends and keeps its
        category, name, period type and rollover flag. With rollover, the
        unspent remainder of the old period is added to the new amount.
        """
        previous = await self.get(budget_id)
        budget_amount = previous.budget_amount
        carried = Decimal("0")

        if previous.rollover:
            summary = await self._aggregator.summarize(previous)
            carried = max(summary.remaining, Decimal("0"))
            budget_amount += carried

        start_date = previous.end_date
        renewed = await self._store.insert(
            Table.BUDGETS,
            {
                "user_id": self._session.user_id,
                "category_id": previous.category_id,
                "budget_name": previous.budget_name,
                "budget_amount": budget_amount,
                "period_type": previous.period_type,
                "start_date": start_date,
                "end_date": period_end(start_date, previous.period_type),
                "rollover": previous.rollover,
            },
        )

        logger.info(
            "budget_renewed",
            previous_budget_id=budget_id,
            budget_id=renewed.budget_id,
            carried=str(carried),
        )
        await self._audit.log_record_changed(
            event_type=AuditEventType.BUDGET_RENEWED,
            entity_type="budget",
            entity_id=renewed.budget_id,
            description=f"Budget renewed: {renewed.budget_name}",
            user_id=self._session.user_id,
            details={
                "previous_budget_id": budget_id,
                "carried_over": f"{carried:.2f}",
            },
        )
        return renewed
