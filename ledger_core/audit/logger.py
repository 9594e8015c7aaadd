"""
Audit Logger

DESIGN DECISION: Every balance-affecting action in the ledger is logged.
This provides:
1. Complete traceability of money movements
2. Debugging capability when a mutation is rolled back
3. User can see history of their edits

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (a broken audit store never breaks a mutation)
- Supports correlation IDs to trace related events
- Is called AFTER an atomic unit finishes, never inside it
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

import structlog

from ledger_core.config import get_settings
from ledger_core.models.audit import AuditEvent, AuditEventBuilder, AuditEventType, AuditSeverity
from ledger_core.services.storage.interface import AuditStorageInterface


def configure_logging(json_output: Optional[bool] = None) -> None:
    """
    Configure structlog for local logging.

    Args:
        json_output: Render JSON lines (True) or console output (False).
                     Defaults to the `log_json` setting.
    """
    if json_output is None:
        json_output = get_settings().app.log_json

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging()


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. An audit store (for persistence and user visibility), if given
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("ledger_core.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity == AuditSeverity.ERROR:
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_transaction_created(
        self,
        transaction_id: int,
        account_id: int,
        amount: Decimal,
        transaction_type: str,
        user_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a recorded transaction."""
        event = AuditEventBuilder.transaction_created(
            transaction_id=transaction_id,
            account_id=account_id,
            amount=amount,
            transaction_type=transaction_type,
            user_id=user_id,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_transaction_updated(
        self,
        transaction_id: int,
        changed_fields: list[str],
        balance_adjusted: bool,
        user_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a transaction edit."""
        event = AuditEventBuilder.transaction_updated(
            transaction_id=transaction_id,
            changed_fields=changed_fields,
            balance_adjusted=balance_adjusted,
            user_id=user_id,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_transaction_deleted(
        self,
        transaction_id: int,
        account_id: int,
        amount: Decimal,
        user_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a transaction deletion."""
        event = AuditEventBuilder.transaction_deleted(
            transaction_id=transaction_id,
            account_id=account_id,
            amount=amount,
            user_id=user_id,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_transfer_created(
        self,
        outgoing_id: int,
        incoming_id: int,
        amount: Decimal,
        user_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.transfer_created(
            outgoing_id=outgoing_id,
            incoming_id=incoming_id,
            amount=amount,
            user_id=user_id,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_validation_failed(
        self,
        operation: str,
        issues: list[dict],
        user_id: Optional[int] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log validation failure."""
        event = AuditEventBuilder.validation_failed(
            operation=operation,
            issues=issues,
            user_id=user_id,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_mutation_failed(
        self,
        operation: str,
        transaction_id: Optional[int],
        error_message: str,
        user_id: Optional[int] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a rolled-back mutation."""
        event = AuditEventBuilder.mutation_failed(
            operation=operation,
            transaction_id=transaction_id,
            error_message=error_message,
            user_id=user_id,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_record_changed(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: int,
        description: str,
        user_id: Optional[int] = None,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.record_changed(
            event_type=event_type,
            entity_type=entity_type,
            entity_id=entity_id,
            description=description,
            user_id=user_id,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a user action (e.g., a transfer).
    Pass it through all subsequent operations.
    """
    return uuid4()
