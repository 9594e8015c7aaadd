"""Tests for the account, category, budget and savings services."""

import pytest
from datetime import datetime
from decimal import Decimal

from ledger_core.errors import NotFoundError, RecordInUseError, ValidationError
from ledger_core.models.audit import AuditEventType
from ledger_core.models.records import (
    AccountType,
    BudgetStatus,
    PeriodType,
    Session,
    TransactionCreate,
)
from ledger_core.orchestrator import build_components
from ledger_core.services.budgets import add_months, period_end
from ledger_core.services.savings import goal_progress_pct

from conftest import MARCH_10, balance_of


async def spend(seeded, amount, date=MARCH_10, budget_id=None):
    return await seeded.app.transactions.create(TransactionCreate(
        account_id=seeded.checking.account_id,
        category_id=seeded.food.category_id,
        amount=Decimal(amount),
        transaction_date=date,
        budget_id=budget_id,
    ))


class TestAccountService:

    @pytest.mark.asyncio
    async def test_open_account_uses_default_currency(self, app, audit_storage):
        account = await app.accounts.open_account("Card", AccountType.CREDIT_CARD, Decimal("-250.00"))

        assert account.balance == Decimal("-250.00")
        assert account.currency == "GHS"
        assert audit_storage.events[-1].event_type == AuditEventType.ACCOUNT_OPENED

    @pytest.mark.asyncio
    async def test_list_orders_by_type_then_name(self, seeded):
        await seeded.app.accounts.open_account("Alpha", AccountType.CHECKING)
        names = [a.account_name for a in await seeded.app.accounts.list_accounts()]
        assert names == ["Alpha", "Main Checking", "Rainy Day"]

    @pytest.mark.asyncio
    async def test_accounts_are_scoped_to_user(self, seeded, audit_storage):
        stranger = build_components(seeded.app.store, Session(user_id=2), audit_storage)
        assert await stranger.accounts.list_accounts() == []
        with pytest.raises(NotFoundError):
            await stranger.accounts.get(seeded.checking.account_id)

    @pytest.mark.asyncio
    async def test_rename_keeps_balance(self, seeded):
        renamed = await seeded.app.accounts.rename(seeded.checking.account_id, "Everyday")
        assert renamed.account_name == "Everyday"
        assert renamed.balance == Decimal("1000.00")

    @pytest.mark.asyncio
    async def test_total_balance(self, seeded):
        await spend(seeded, "-100.00")
        assert await seeded.app.accounts.total_balance() == Decimal("900.00")


class TestCategoryService:

    @pytest.mark.asyncio
    async def test_list_filters_by_kind(self, seeded):
        income = await seeded.app.categories.list_categories(is_income=True)
        expenses = await seeded.app.categories.list_categories(is_income=False)

        assert [c.category_name for c in income] == ["Salary"]
        assert [c.category_name for c in expenses] == ["Food", "Transfers"]

    @pytest.mark.asyncio
    async def test_rename_is_audited(self, seeded, audit_storage):
        await seeded.app.categories.rename(seeded.food.category_id, "Groceries")
        event = audit_storage.events[-1]
        assert event.event_type == AuditEventType.CATEGORY_RENAMED
        assert "Food -> Groceries" in event.description

    @pytest.mark.asyncio
    async def test_delete_unused(self, seeded):
        await seeded.app.categories.delete(seeded.transfers.category_id)
        with pytest.raises(NotFoundError):
            await seeded.app.categories.get(seeded.transfers.category_id)

    @pytest.mark.asyncio
    async def test_delete_used_by_transaction(self, seeded):
        await spend(seeded, "-5.00")
        with pytest.raises(RecordInUseError):
            await seeded.app.categories.delete(seeded.food.category_id)

    @pytest.mark.asyncio
    async def test_delete_used_by_budget(self, seeded):
        await seeded.app.budgets.create(seeded.food.category_id, "Food", Decimal("100"))
        with pytest.raises(RecordInUseError) as exc_info:
            await seeded.app.categories.delete(seeded.food.category_id)
        assert exc_info.value.issues[0].issue_type == "in_use"


class TestPeriods:

    @pytest.mark.parametrize(
        "start,period_type,expected",
        [
            (datetime(2024, 3, 1), PeriodType.WEEKLY, datetime(2024, 3, 8)),
            (datetime(2024, 3, 1), PeriodType.BI_WEEKLY, datetime(2024, 3, 15)),
            (datetime(2024, 3, 1), PeriodType.MONTHLY, datetime(2024, 4, 1)),
            (datetime(2024, 1, 31), PeriodType.MONTHLY, datetime(2024, 2, 29)),
            (datetime(2024, 2, 29), PeriodType.YEARLY, datetime(2025, 2, 28)),
        ],
    )
    def test_period_end(self, start, period_type, expected):
        assert period_end(start, period_type) == expected

    def test_add_months_crosses_year(self):
        assert add_months(datetime(2024, 11, 15), 3) == datetime(2025, 2, 15)


class TestBudgetService:

    async def _march(self, seeded, amount="200.00", rollover=False):
        return await seeded.app.budgets.create(
            seeded.food.category_id,
            "Food",
            Decimal(amount),
            start_date=datetime(2024, 3, 1),
            rollover=rollover,
        )

    @pytest.mark.asyncio
    async def test_create_derives_window(self, seeded):
        budget = await self._march(seeded)
        assert budget.end_date == datetime(2024, 4, 1)
        assert budget.period_type == PeriodType.MONTHLY

    @pytest.mark.asyncio
    async def test_income_category_refused(self, seeded):
        with pytest.raises(ValidationError):
            await seeded.app.budgets.create(seeded.salary.category_id, "Pay", Decimal("100"))

    @pytest.mark.asyncio
    async def test_empty_window_refused(self, seeded):
        with pytest.raises(ValidationError):
            await seeded.app.budgets.create(
                seeded.food.category_id,
                "Food",
                Decimal("100"),
                start_date=datetime(2024, 3, 1),
                end_date=datetime(2024, 3, 1),
            )

    @pytest.mark.asyncio
    async def test_summary_and_listing(self, seeded):
        budget = await self._march(seeded)
        await spend(seeded, "-200.00")

        summary = await seeded.app.budgets.summary(budget.budget_id)
        assert summary.status == BudgetStatus.AT_LIMIT
        assert [s.budget.budget_id for s in await seeded.app.budgets.list_budgets()] == [budget.budget_id]

    @pytest.mark.asyncio
    async def test_update_fields(self, seeded):
        budget = await self._march(seeded)
        updated = await seeded.app.budgets.update(budget.budget_id, budget_amount=Decimal("250.00"))
        assert updated.budget_amount == Decimal("250.00")
        assert updated.start_date == budget.start_date

    @pytest.mark.asyncio
    async def test_delete_refused_while_assigned(self, seeded):
        budget = await self._march(seeded)
        await spend(seeded, "-5.00", budget_id=budget.budget_id)

        with pytest.raises(RecordInUseError):
            await seeded.app.budgets.delete(budget.budget_id)
        assert await seeded.app.budgets.get(budget.budget_id)

    @pytest.mark.asyncio
    async def test_delete(self, seeded, audit_storage):
        budget = await self._march(seeded)
        await seeded.app.budgets.delete(budget.budget_id)

        with pytest.raises(NotFoundError):
            await seeded.app.budgets.get(budget.budget_id)
        assert audit_storage.events[-1].event_type == AuditEventType.BUDGET_DELETED

    @pytest.mark.asyncio
    async def test_renew_without_rollover(self, seeded):
        budget = await self._march(seeded)
        await spend(seeded, "-50.00")

        renewed = await seeded.app.budgets.renew(budget.budget_id)
        assert renewed.start_date == datetime(2024, 4, 1)
        assert renewed.end_date == datetime(2024, 5, 1)
        assert renewed.budget_amount == Decimal("200.00")

    @pytest.mark.asyncio
    async def test_renew_carries_remainder(self, seeded, audit_storage):
        budget = await self._march(seeded, rollover=True)
        await spend(seeded, "-50.00")

        renewed = await seeded.app.budgets.renew(budget.budget_id)
        assert renewed.budget_amount == Decimal("350.00")
        assert renewed.rollover is True
        assert audit_storage.events[-1].details["carried_over"] == "150.00"

    @pytest.mark.asyncio
    async def test_overspent_budget_carries_nothing(self, seeded):
        budget = await self._march(seeded, rollover=True)
        await spend(seeded, "-260.00")

        renewed = await seeded.app.budgets.renew(budget.budget_id)
        assert renewed.budget_amount == Decimal("200.00")


class TestSavingsGoalService:

    @pytest.mark.asyncio
    async def test_contribution_raises_goal_not_balance(self, seeded, audit_storage):
        goal = await seeded.app.savings.add_goal("Laptop", Decimal("2000.00"))
        await seeded.app.savings.contribute(goal.goal_id, seeded.checking.account_id, Decimal("500.00"))

        goal = await seeded.app.savings.get(goal.goal_id)
        assert goal.current_amount == Decimal("500.00")
        assert goal_progress_pct(goal) == Decimal("25")
        assert await balance_of(seeded.app.store, seeded.checking.account_id) == Decimal("1000.00")
        assert audit_storage.events[-1].event_type == AuditEventType.SAVINGS_CONTRIBUTION

    @pytest.mark.asyncio
    async def test_progress_is_capped(self, seeded):
        goal = await seeded.app.savings.add_goal("Phone", Decimal("100.00"))
        goal = await seeded.app.savings.update_goal_amount(goal.goal_id, Decimal("150.00"))
        assert goal_progress_pct(goal) == Decimal("100")

    @pytest.mark.asyncio
    async def test_non_positive_contribution_rejected(self, seeded):
        goal = await seeded.app.savings.add_goal("Laptop", Decimal("2000.00"))
        with pytest.raises(ValidationError):
            await seeded.app.savings.contribute(goal.goal_id, seeded.checking.account_id, Decimal("0"))

        goal = await seeded.app.savings.get(goal.goal_id)
        assert goal.current_amount == Decimal("0")

    @pytest.mark.asyncio
    async def test_contributions_newest_first(self, seeded):
        goal = await seeded.app.savings.add_goal("Trip", Decimal("900.00"))
        for day in (1, 20, 10):
            await seeded.app.savings.contribute(
                goal.goal_id,
                seeded.savings.account_id,
                Decimal("10.00"),
                contribution_date=datetime(2024, 3, day),
            )

        days = [c.contribution_date.day for c in await seeded.app.savings.contributions(goal.goal_id)]
        assert days == [20, 10, 1]

    @pytest.mark.asyncio
    async def test_missing_goal(self, seeded):
        with pytest.raises(NotFoundError):
            await seeded.app.savings.contribute(404, seeded.checking.account_id, Decimal("1"))


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
