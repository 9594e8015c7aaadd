"""
Audit Models for the Ledger

One AuditEvent per committed mutation, rejected input or rolled-back unit.
Events are append-only; `correlation_id` ties together the events of one
user action (a transfer and its follow-up edits, for example).
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from ledger_core.models.records import utcnow


class AuditEventType(str, Enum):
    # Transactions
    TRANSACTION_CREATED = "transaction_created"
    TRANSACTION_UPDATED = "transaction_updated"
    TRANSACTION_DELETED = "transaction_deleted"
    TRANSFER_CREATED = "transfer_created"

    # Failures
    VALIDATION_FAILED = "validation_failed"
    MUTATION_FAILED = "mutation_failed"

    # Reference data
    ACCOUNT_OPENED = "account_opened"
    CATEGORY_CREATED = "category_created"
    CATEGORY_RENAMED = "category_renamed"
    CATEGORY_DELETED = "category_deleted"
    BUDGET_CREATED = "budget_created"
    BUDGET_RENEWED = "budget_renewed"
    BUDGET_DELETED = "budget_deleted"
    SAVINGS_CONTRIBUTION = "savings_contribution"

    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class AuditEvent(BaseModel):
    """A single entry in the audit trail."""

    event_id: UUID = Field(default_factory=uuid4)
    timestamp: datetime = Field(default_factory=utcnow)

    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # "transaction", "account", "budget", ...
    entity_type: Optional[str] = None
    entity_id: Optional[int] = None
    user_id: Optional[int] = None
    correlation_id: Optional[UUID] = None

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """Flatten for structlog."""
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "user_id": self.user_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
        }


def _money(value: Decimal) -> str:
    return f"{value:.2f}"


class AuditEventBuilder:
    """
    Constructors for the events the services emit.

    Amounts go into `details` as fixed two-place strings.
    """

    @staticmethod
    def transaction_created(
        transaction_id: int,
        account_id: int,
        amount: Decimal,
        transaction_type: str,
        user_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_CREATED,
            entity_type="transaction",
            entity_id=transaction_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Transaction recorded: {transaction_type} {_money(amount)}",
            details={
                "account_id": account_id,
                "amount": _money(amount),
                "transaction_type": transaction_type,
            },
        )

    @staticmethod
    def transaction_updated(
        transaction_id: int,
        changed_fields: list[str],
        balance_adjusted: bool,
        user_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_UPDATED,
            entity_type="transaction",
            entity_id=transaction_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Transaction updated: {', '.join(changed_fields) or 'no changes'}",
            details={
                "changed_fields": changed_fields,
                "balance_adjusted": balance_adjusted,
            },
        )

    @staticmethod
    def transaction_deleted(
        transaction_id: int,
        account_id: int,
        amount: Decimal,
        user_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_DELETED,
            entity_type="transaction",
            entity_id=transaction_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Transaction deleted, {_money(-amount)} returned to account",
            details={
                "account_id": account_id,
                "reversed_amount": _money(-amount),
            },
        )

    @staticmethod
    def transfer_created(
        outgoing_id: int,
        incoming_id: int,
        amount: Decimal,
        user_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSFER_CREATED,
            entity_type="transaction",
            entity_id=outgoing_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Transfer of {_money(amount)} recorded",
            details={
                "outgoing_transaction_id": outgoing_id,
                "incoming_transaction_id": incoming_id,
                "amount": _money(amount),
            },
        )

    @staticmethod
    def validation_failed(
        operation: str,
        issues: list[dict],
        user_id: Optional[int] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VALIDATION_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="transaction",
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Validation failed for {operation} with {len(issues)} issues",
            details={
                "operation": operation,
                "issues": issues,
            },
        )

    @staticmethod
    def mutation_failed(
        operation: str,
        transaction_id: Optional[int],
        error_message: str,
        user_id: Optional[int] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MUTATION_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="transaction",
            entity_id=transaction_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Transaction {operation} rolled back",
            error_message=error_message,
            details={"operation": operation},
        )

    @staticmethod
    def record_changed(
        event_type: AuditEventType,
        entity_type: str,
        entity_id: int,
        description: str,
        user_id: Optional[int] = None,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        """Generic builder for account/category/budget/savings events."""
        return AuditEvent(
            event_type=event_type,
            entity_type=entity_type,
            entity_id=entity_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description=description,
            details=details or {},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
