"""
Two-Stage Transaction Validation

DESIGN DECISION: Validation happens in two distinct stages:

STAGE 1 - SHAPE VALIDATION:
- Amount sign agrees with transaction type
- Transaction type changes that the ledger cannot express
- Transfer amount and endpoints
- This catches malformed input regardless of what is stored

STAGE 2 - SEMANTIC VALIDATION:
- Category kind matches the direction of money
- Budget belongs to the same category
- Future date detection
- Absurd amount detection
- Budget assignment outside the budget window
- This catches inconsistent or suspicious data against stored records

Stage 2 only runs when stage 1 passes.

IMPORTANT: Validation NEVER silently fixes issues. Errors block the
mutation; warnings are reported and the mutation proceeds.
"""

from datetime import timedelta
from decimal import Decimal
from typing import Optional

from ledger_core.config import AppSettings, get_settings
from ledger_core.errors import ValidationError
from ledger_core.models.records import (
    Budget,
    Category,
    Transaction,
    TransactionCreate,
    TransactionType,
    ValidationIssue,
    ValidationResult,
    utcnow,
)


def sign_issues(transaction_type: TransactionType, amount: Decimal) -> list[ValidationIssue]:
    """Check that the sign of `amount` agrees with `transaction_type`."""
    if transaction_type == TransactionType.DEBIT and amount > 0:
        return [ValidationIssue(
            field="amount",
            issue_type="sign_mismatch",
            message=f"Debit amount must be zero or negative, got {amount}",
            severity="error",
            suggested_fix=f"Use {-amount} for an expense of {amount}",
        )]
    if transaction_type == TransactionType.CREDIT and amount < 0:
        return [ValidationIssue(
            field="amount",
            issue_type="sign_mismatch",
            message=f"Credit amount must be zero or positive, got {amount}",
            severity="error",
            suggested_fix=f"Use {-amount} for income of {-amount}",
        )]
    return []


class TransactionValidator:
    """
    Validates transaction mutations before they reach the ledger.

    The validator never touches storage: callers load the referenced
    category and budget (raising NotFoundError if absent) and pass them in.
    """

    def __init__(self, settings: Optional[AppSettings] = None):
        self._settings = settings or get_settings().app

    # -------------------------------------------------------------------------
    # Stage 1
    # -------------------------------------------------------------------------

    def _validate_shape(
        self,
        transaction_type: TransactionType,
        amount: Decimal,
        original_type: Optional[TransactionType] = None,
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 1: shape validation.

        Returns: (is_valid, list_of_issues)
        """
        issues = sign_issues(transaction_type, amount)

        if original_type is not None and original_type != transaction_type:
            if TransactionType.TRANSFER in (original_type, transaction_type):
                issues.append(ValidationIssue(
                    field="transaction_type",
                    issue_type="invalid_change",
                    message=(
                        f"Cannot change a {original_type.value} transaction "
                        f"into a {transaction_type.value}"
                    ),
                    severity="error",
                    suggested_fix="Delete the transaction and record it again",
                ))

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues

    # -------------------------------------------------------------------------
    # Stage 2
    # -------------------------------------------------------------------------

    def _validate_semantic(
        self,
        transaction_type: TransactionType,
        amount: Decimal,
        transaction_date,
        category: Category,
        budget: Optional[Budget] = None,
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 2: semantic validation.

        Returns: (is_valid, list_of_issues)
        """
        issues = []

        # Category kind
        if transaction_type == TransactionType.DEBIT and category.is_income:
            issues.append(ValidationIssue(
                field="category_id",
                issue_type="category_mismatch",
                message=f"'{category.category_name}' is an income category",
                severity="error",
                suggested_fix="Pick an expense category for this debit",
            ))
        elif transaction_type == TransactionType.CREDIT and not category.is_income:
            issues.append(ValidationIssue(
                field="category_id",
                issue_type="category_mismatch",
                message=f"'{category.category_name}' is an expense category",
                severity="error",
                suggested_fix="Pick an income category for this credit",
            ))

        # Budget assignment
        if budget is not None:
            if transaction_type != TransactionType.DEBIT:
                issues.append(ValidationIssue(
                    field="budget_id",
                    issue_type="budget_not_expense",
                    message="Only expenses can be assigned to a budget",
                    severity="error",
                    suggested_fix="Remove the budget from this transaction",
                ))
            elif budget.category_id != category.category_id:
                issues.append(ValidationIssue(
                    field="budget_id",
                    issue_type="budget_category_mismatch",
                    message=(
                        f"Budget '{budget.budget_name}' tracks a different category "
                        f"than '{category.category_name}'"
                    ),
                    severity="error",
                    suggested_fix="Pick a budget for the same category",
                ))
            elif not (budget.start_date <= transaction_date < budget.end_date):
                # Assignment stays allowed; the transaction just won't count
                issues.append(ValidationIssue(
                    field="budget_id",
                    issue_type="outside_window",
                    message=(
                        f"Transaction date {transaction_date:%Y-%m-%d} is outside "
                        f"budget '{budget.budget_name}' "
                        f"({budget.start_date:%Y-%m-%d} to {budget.end_date:%Y-%m-%d}) "
                        "and will not count towards its spending"
                    ),
                    severity="warning",
                    suggested_fix="Check the date or pick the budget for that period",
                ))

        # Future date check (with tolerance)
        max_future = utcnow() + timedelta(days=self._settings.future_date_tolerance_days)
        if transaction_date > max_future:
            issues.append(ValidationIssue(
                field="transaction_date",
                issue_type="future_date",
                message=f"Transaction date ({transaction_date:%Y-%m-%d}) is in the future",
                severity="warning",
                suggested_fix="Please verify the date is correct",
            ))

        # Absurd amount check
        if abs(amount) > self._settings.max_transaction_amount:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="suspicious_value",
                message=f"Amount ({abs(amount):,.2f}) seems unusually high",
                severity="warning",
                suggested_fix="Please verify this amount is correct",
            ))

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues

    def _run(self, shape, semantic) -> ValidationResult:
        shape_valid, issues = shape()
        if shape_valid:
            _, semantic_issues = semantic()
            issues.extend(semantic_issues)
        return ValidationResult(issues=issues)

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def validate_create(
        self,
        data: TransactionCreate,
        category: Category,
        budget: Optional[Budget] = None,
    ) -> ValidationResult:
        """Validate a new debit or credit transaction."""
        if data.transaction_type == TransactionType.TRANSFER:
            return ValidationResult(issues=[ValidationIssue(
                field="transaction_type",
                issue_type="invalid_value",
                message="Transfers are recorded with transfer(), not create()",
                severity="error",
            )])

        return self._run(
            lambda: self._validate_shape(data.transaction_type, data.amount),
            lambda: self._validate_semantic(
                data.transaction_type,
                data.amount,
                data.transaction_date,
                category,
                budget,
            ),
        )

    def validate_update(
        self,
        existing: Transaction,
        changes: dict,
        category: Category,
        budget: Optional[Budget] = None,
    ) -> ValidationResult:
        """
        Validate an edit as the merged record it would produce.

        `category` and `budget` are the records the edited transaction
        would reference afterwards.
        """
        transaction_type = changes.get("transaction_type", existing.transaction_type)
        amount = changes.get("amount", existing.amount)
        transaction_date = changes.get("transaction_date", existing.transaction_date)

        if transaction_type == TransactionType.TRANSFER:
            # Legs keep their own categories; only the shape applies
            return ValidationResult(
                issues=self._validate_shape(
                    transaction_type, amount, existing.transaction_type
                )[1]
            )

        return self._run(
            lambda: self._validate_shape(transaction_type, amount, existing.transaction_type),
            lambda: self._validate_semantic(
                transaction_type, amount, transaction_date, category, budget
            ),
        )

    def validate_transfer(
        self,
        from_account_id: int,
        to_account_id: int,
        amount: Decimal,
        transaction_date,
    ) -> ValidationResult:
        """Validate a transfer between two accounts."""
        issues = []

        if amount <= 0:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="invalid_value",
                message="Transfer amount must be greater than zero",
                severity="error",
            ))
        if from_account_id == to_account_id:
            issues.append(ValidationIssue(
                field="to_account_id",
                issue_type="invalid_value",
                message="Cannot transfer money to the same account",
                severity="error",
                suggested_fix="Pick a different destination account",
            ))

        if not issues:
            max_future = utcnow() + timedelta(days=self._settings.future_date_tolerance_days)
            if transaction_date > max_future:
                issues.append(ValidationIssue(
                    field="transaction_date",
                    issue_type="future_date",
                    message=f"Transfer date ({transaction_date:%Y-%m-%d}) is in the future",
                    severity="warning",
                    suggested_fix="Please verify the date is correct",
                ))
            if amount > self._settings.max_transaction_amount:
                issues.append(ValidationIssue(
                    field="amount",
                    issue_type="suspicious_value",
                    message=f"Amount ({amount:,.2f}) seems unusually high",
                    severity="warning",
                    suggested_fix="Please verify this amount is correct",
                ))

        return ValidationResult(issues=issues)

    @staticmethod
    def raise_for_errors(result: ValidationResult) -> None:
        """
        Raise ValidationError if the result holds any error-level issue.

        Raises:
            ValidationError: Carrying every issue (warnings included)
        """
        if result.has_errors:
            message = "; ".join(issue.message for issue in result.errors)
            raise ValidationError(message, result.issues)

    def get_user_friendly_summary(self, result: ValidationResult) -> str:
        """
        Generate a user-friendly summary of validation results.

        This is what we show to non-technical users.
        """
        if result.is_valid and not result.warnings:
            return "All checks passed."

        lines = []

        if result.has_errors:
            lines.append("This transaction cannot be saved:")
            for issue in result.errors:
                lines.append(f"   • {issue.message}")
                if issue.suggested_fix:
                    lines.append(f"     {issue.suggested_fix}")

        if result.warnings:
            if lines:
                lines.append("")
            lines.append("Please verify the following:")
            for warning in result.warnings:
                lines.append(f"   • {warning}")

        return "\n".join(lines)
