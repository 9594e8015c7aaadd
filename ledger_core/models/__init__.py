"""
Data Models Package

This package contains all Pydantic models used by the ledger core.
Every record written to or read from a record store conforms to these schemas.
"""

from ledger_core.models.records import (
    Account,
    AccountType,
    Budget,
    BudgetStatus,
    BudgetSummary,
    CashFlowTotals,
    Category,
    DashboardSummary,
    PeriodType,
    SavingsContribution,
    SavingsGoal,
    Session,
    Transaction,
    TransactionCreate,
    TransactionType,
    TransactionUpdate,
    TransactionView,
    ValidationIssue,
    ValidationResult,
    utcnow,
)
from ledger_core.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Records
    "Account",
    "AccountType",
    "Budget",
    "Category",
    "PeriodType",
    "SavingsContribution",
    "SavingsGoal",
    "Session",
    "Transaction",
    "TransactionType",
    # Mutation inputs
    "TransactionCreate",
    "TransactionUpdate",
    # Validation
    "ValidationIssue",
    "ValidationResult",
    # Read models
    "BudgetStatus",
    "BudgetSummary",
    "CashFlowTotals",
    "DashboardSummary",
    "TransactionView",
    "utcnow",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
