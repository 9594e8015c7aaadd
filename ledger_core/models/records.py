"""
Core Data Models for the Ledger

These models define the strict schemas for every record the ledger reads
or writes. They are designed to:
1. Enforce type safety at runtime
2. Reject unrecognized enum values at the record-store boundary
3. Be serializable for storage and logging

DESIGN DECISION: Amounts are Decimal, never float.
Balances are running sums and float drift would silently corrupt them.

All timestamps are naive UTC datetimes. Aware datetimes are converted to
UTC and stripped on the way in, so range comparisons never mix the two.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Optional

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    model_validator,
)


def utcnow() -> datetime:
    """Current time as a naive UTC datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


UtcDatetime = Annotated[datetime, AfterValidator(_to_naive_utc)]


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class AccountType(str, Enum):
    """Kinds of account a user can hold."""
    CHECKING = "checking"
    SAVINGS = "savings"
    CREDIT_CARD = "credit_card"
    CASH = "cash"
    INVESTMENT = "investment"


class TransactionType(str, Enum):
    """
    Transaction direction.

    DEBIT is an expense (balance-decreasing), CREDIT is income
    (balance-increasing). TRANSFER legs come in linked pairs.
    """
    DEBIT = "debit"
    CREDIT = "credit"
    TRANSFER = "transfer"


class PeriodType(str, Enum):
    """Budget period lengths."""
    WEEKLY = "weekly"
    BI_WEEKLY = "bi-weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class BudgetStatus(str, Enum):
    """Spending classification derived from (spent, budget_amount)."""
    UNDER_BUDGET = "under_budget"
    AT_LIMIT = "at_limit"
    OVERSPENT = "overspent"


# =============================================================================
# SESSION
# =============================================================================

class Session(BaseModel):
    """
    Identity of the user the services act for.

    Passed explicitly to every service instead of being looked up from
    ambient state.
    """
    model_config = ConfigDict(frozen=True)

    user_id: int = Field(..., ge=1)


# =============================================================================
# STORED RECORDS
# =============================================================================

class Account(BaseModel):
    """
    A money-holding account.

    CRITICAL: `balance` is only ever changed by the BalanceLedger.
    It may be negative (credit cards, overdrafts).
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    account_id: Optional[int] = None
    user_id: int
    account_name: str = Field(..., min_length=1, max_length=100)
    account_type: AccountType
    balance: Decimal = Field(default=Decimal("0"))
    currency: str = Field(
        default="GHS",
        pattern="^[A-Z]{3}$",
        description="ISO-like currency code",
    )
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Category(BaseModel):
    """Spending or income category."""
    model_config = ConfigDict(str_strip_whitespace=True)

    category_id: Optional[int] = None
    user_id: int
    category_name: str = Field(..., min_length=1, max_length=100)
    is_income: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Transaction(BaseModel):
    """
    A single movement of money on one account.

    Invariant: the sign of `amount` agrees with `transaction_type`
    (debit <= 0, credit >= 0). Transfer legs carry their own sign.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    transaction_id: Optional[int] = None
    account_id: int
    category_id: int
    amount: Decimal = Field(..., decimal_places=2)
    transaction_type: TransactionType = TransactionType.DEBIT
    transaction_date: UtcDatetime
    description: Optional[str] = Field(default=None, max_length=500)
    budget_id: Optional[int] = None
    linked_transaction_id: Optional[int] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def validate_sign(self) -> "Transaction":
        """Amount sign must match the transaction type."""
        if self.transaction_type == TransactionType.DEBIT and self.amount > 0:
            raise ValueError("Debit transactions must have a negative amount")
        if self.transaction_type == TransactionType.CREDIT and self.amount < 0:
            raise ValueError("Credit transactions must have a positive amount")
        return self


class Budget(BaseModel):
    """
    Spending limit for one category over a period window.

    The window is half-open: start_date <= transaction_date < end_date.
    `spent` is never stored here; see BudgetAggregator.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    budget_id: Optional[int] = None
    user_id: int
    category_id: int
    budget_name: str = Field(..., min_length=1, max_length=100)
    budget_amount: Decimal = Field(..., ge=0, decimal_places=2)
    period_type: PeriodType = PeriodType.MONTHLY
    start_date: UtcDatetime
    end_date: UtcDatetime
    rollover: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def validate_window(self) -> "Budget":
        if self.end_date <= self.start_date:
            raise ValueError("Budget end date must be after start date")
        return self


class SavingsGoal(BaseModel):
    """A target amount the user is saving towards."""
    model_config = ConfigDict(str_strip_whitespace=True)

    goal_id: Optional[int] = None
    user_id: int
    goal_name: str = Field(..., min_length=1, max_length=100)
    target_amount: Decimal = Field(..., gt=0, decimal_places=2)
    current_amount: Decimal = Field(default=Decimal("0"), ge=0)
    target_date: Optional[UtcDatetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class SavingsContribution(BaseModel):
    """Money set aside for a goal from one of the user's accounts."""

    contribution_id: Optional[int] = None
    goal_id: int
    account_id: int
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    contribution_date: UtcDatetime = Field(default_factory=utcnow)
    created_at: datetime = Field(default_factory=utcnow)


# =============================================================================
# MUTATION INPUTS
# =============================================================================

class TransactionCreate(BaseModel):
    """
    Input for TransactionMutationService.create.

    Sign agreement is NOT enforced here: the validator reports it as a
    ValidationError with a readable message instead.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    account_id: int
    category_id: int
    amount: Decimal = Field(..., decimal_places=2)
    transaction_type: TransactionType = TransactionType.DEBIT
    transaction_date: UtcDatetime = Field(default_factory=utcnow)
    description: Optional[str] = Field(default=None, max_length=500)
    budget_id: Optional[int] = None


class TransactionUpdate(BaseModel):
    """
    Partial update for TransactionMutationService.update.

    Only fields that were explicitly set are applied. Unknown field names
    are rejected rather than ignored.
    """
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    account_id: Optional[int] = None
    category_id: Optional[int] = None
    amount: Optional[Decimal] = Field(default=None, decimal_places=2)
    transaction_type: Optional[TransactionType] = None
    transaction_date: Optional[UtcDatetime] = None
    description: Optional[str] = Field(default=None, max_length=500)
    budget_id: Optional[int] = None

    def changes(self) -> dict:
        """
        Fields the caller actually set.

        An explicit None clears `description` and `budget_id`; for every
        other field it means "leave unchanged".
        """
        return {
            name: value
            for name, value in self.model_dump(exclude_unset=True).items()
            if value is not None or name in ("description", "budget_id")
        }


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'sign_mismatch', 'outside_window')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )
    suggested_fix: Optional[str] = None


class ValidationResult(BaseModel):
    """Outcome of validating a transaction mutation."""

    validated_at: datetime = Field(default_factory=utcnow)
    issues: list[ValidationIssue] = Field(default_factory=list)

    @property
    def errors(self) -> list[ValidationIssue]:
        return [issue for issue in self.issues if issue.severity == "error"]

    @property
    def warnings(self) -> list[str]:
        return [issue.message for issue in self.issues if issue.severity == "warning"]

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        """Count error-level issues."""
        return sum(1 for issue in self.issues if issue.severity == "error")

    @property
    def is_valid(self) -> bool:
        return not self.has_errors


# =============================================================================
# READ MODELS
# =============================================================================

class BudgetSummary(BaseModel):
    """A budget together with its live spending figures."""

    budget: Budget
    spent: Decimal
    remaining: Decimal
    # Infinity for a zero budget with spending
    progress_pct: Decimal = Field(..., allow_inf_nan=True)
    status: BudgetStatus


class TransactionView(BaseModel):
    """Transaction row joined with its category name, as listed to users."""

    transaction: Transaction
    category_name: str

    @property
    def is_expense(self) -> bool:
        return self.transaction.amount < 0


class CashFlowTotals(BaseModel):
    """Income and expense totals over a window."""

    income: Decimal = Decimal("0")
    expenses: Decimal = Decimal("0")
    transaction_count: int = 0

    @property
    def net(self) -> Decimal:
        return self.income - self.expenses


class DashboardSummary(BaseModel):
    """Headline numbers for the overview screen."""

    total_balance: Decimal
    account_count: int
    cash_flow: CashFlowTotals
    budgets: list[BudgetSummary] = Field(default_factory=list)
    recent_transactions: list[TransactionView] = Field(default_factory=list)
