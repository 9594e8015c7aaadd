"""
Savings Goal Service

Goals track progress towards a target amount. Contributions record money
set aside for a goal; they do not move money between accounts, so they
never touch account balances.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from ledger_core.audit import AuditLogger
from ledger_core.errors import NotFoundError
from ledger_core.models.audit import AuditEventType
from ledger_core.models.records import (
    SavingsContribution,
    SavingsGoal,
    Session,
    utcnow,
)
from ledger_core.services.storage.interface import RecordStore, Table

DEFAULT_GOAL_LIMIT = 50


def goal_progress_pct(goal: SavingsGoal) -> Decimal:
    """Percentage of the target reached, capped at 100."""
    return min(goal.current_amount / goal.target_amount * 100, Decimal("100"))


class SavingsGoalService:
    """Savings goals and contributions for the session user."""

    def __init__(
        self,
        store: RecordStore,
        session: Session,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._session = session
        self._audit = audit_logger or AuditLogger()

    async def add_goal(
        self,
        goal_name: str,
        target_amount: Decimal,
        target_date: Optional[datetime] = None,
    ) -> SavingsGoal:
        """New goals start with nothing saved."""
        return await self._store.insert(
            Table.SAVINGS_GOALS,
            {
                "user_id": self._session.user_id,
                "goal_name": goal_name,
                "target_amount": Decimal(target_amount),
                "current_amount": Decimal("0"),
                "target_date": target_date,
            },
        )

    async def get(self, goal_id: int) -> SavingsGoal:
        goal = await self._store.get(Table.SAVINGS_GOALS, goal_id)
        if goal.user_id != self._session.user_id:
            raise NotFoundError(f"savings_goals record not found: {goal_id}")
        return goal

    async def list_goals(self, limit: int = DEFAULT_GOAL_LIMIT) -> list[SavingsGoal]:
        return await self._store.select(
            Table.SAVINGS_GOALS,
            {"user_id": self._session.user_id},
            limit=limit,
        )

    async def update_goal_amount(self, goal_id: int, new_amount: Decimal) -> SavingsGoal:
        """Overwrite the saved amount (manual correction)."""
        await self.get(goal_id)
        await self._store.update(
            Table.SAVINGS_GOALS, goal_id, {"current_amount": Decimal(new_amount)}
        )
        return await self.get(goal_id)

    async def contribute(
        self,
        goal_id: int,
        account_id: int,
        amount: Decimal,
        contribution_date: Optional[datetime] = None,
    ) -> SavingsContribution:
        """
        Record a contribution and raise the goal's saved amount by it.

        Both writes happen in one atomic unit.

        Raises:
            NotFoundError: If the goal or account is missing
            ValidationError: If the amount is not positive
        """
        await self.get(goal_id)
        account = await self._store.get(Table.ACCOUNTS, account_id)
        if account.user_id != self._session.user_id:
            raise NotFoundError(f"accounts record not found: {account_id}")

        amount = Decimal(amount)

        async def unit(handle: RecordStore) -> SavingsContribution:
            contribution = await handle.insert(
                Table.SAVINGS_CONTRIBUTIONS,
                {
                    "goal_id": goal_id,
                    "account_id": account_id,
                    "amount": amount,
                    "contribution_date": contribution_date or utcnow(),
                },
            )
            goal = await handle.get(Table.SAVINGS_GOALS, goal_id)
            await handle.update(
                Table.SAVINGS_GOALS,
                goal_id,
                {"current_amount": goal.current_amount + amount},
            )
            return contribution

        contribution = await self._store.run_atomic(unit)

        await self._audit.log_record_changed(
            event_type=AuditEventType.SAVINGS_CONTRIBUTION,
            entity_type="savings_goal",
            entity_id=goal_id,
            description=f"Contribution of {amount:.2f} recorded",
            user_id=self._session.user_id,
            details={
                "contribution_id": contribution.contribution_id,
                "account_id": account_id,
            },
        )
        return contribution

    async def contributions(self, goal_id: int) -> list[SavingsContribution]:
        """Contributions to a goal, newest first."""
        await self.get(goal_id)
        return await self._store.select(
            Table.SAVINGS_CONTRIBUTIONS,
            {"goal_id": goal_id},
            order_by="-contribution_date",
        )
