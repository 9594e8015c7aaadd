"""
Abstract Record Store Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Run the ledger against SQLite in the app
2. Use in-memory storage for testing
3. Inject faults to prove atomicity
4. Keep ledger logic decoupled from storage implementation

The interface is intentionally small - we're not building a full ORM.
Four row operations plus `run_atomic`, which hands the callback a
transactional handle that offers the same operations. Handles nest:
calling `run_atomic` on a handle opens a savepoint.

Every insert and update is validated against the table's pydantic model
before it reaches the backend, so unrecognized enum values and sign
mismatches are rejected at this boundary rather than at call sites.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TypeVar, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from ledger_core.errors import NotFoundError, StorageError, ValidationError
from ledger_core.models.audit import AuditEvent
from ledger_core.models.records import (
    Account,
    Budget,
    Category,
    SavingsContribution,
    SavingsGoal,
    Transaction,
    ValidationIssue,
    utcnow,
)

T = TypeVar("T")


class Table(str, Enum):
    """Tables known to the record store."""
    ACCOUNTS = "accounts"
    CATEGORIES = "categories"
    BUDGETS = "budgets"
    TRANSACTIONS = "transactions"
    SAVINGS_GOALS = "savings_goals"
    SAVINGS_CONTRIBUTIONS = "savings_contributions"


TABLE_MODELS: dict[Table, type[BaseModel]] = {
    Table.ACCOUNTS: Account,
    Table.CATEGORIES: Category,
    Table.BUDGETS: Budget,
    Table.TRANSACTIONS: Transaction,
    Table.SAVINGS_GOALS: SavingsGoal,
    Table.SAVINGS_CONTRIBUTIONS: SavingsContribution,
}

PRIMARY_KEYS: dict[Table, str] = {
    Table.ACCOUNTS: "account_id",
    Table.CATEGORIES: "category_id",
    Table.BUDGETS: "budget_id",
    Table.TRANSACTIONS: "transaction_id",
    Table.SAVINGS_GOALS: "goal_id",
    Table.SAVINGS_CONTRIBUTIONS: "contribution_id",
}


# =============================================================================
# FILTER VOCABULARY
# =============================================================================

@dataclass(frozen=True)
class InRange:
    """Half-open range condition: start <= value < end. None means unbounded."""
    start: Any = None
    end: Any = None

    def matches(self, value: Any) -> bool:
        if value is None:
            return False
        if self.start is not None and value < self.start:
            return False
        if self.end is not None and value >= self.end:
            return False
        return True


@dataclass(frozen=True)
class OneOf:
    """Membership condition."""
    values: tuple

    def __init__(self, values):
        object.__setattr__(self, "values", tuple(values))

    def matches(self, value: Any) -> bool:
        return value in self.values


Condition = Union[InRange, OneOf, Any]
Filters = dict[str, Condition]


def condition_matches(value: Any, condition: Condition) -> bool:
    """Evaluate one filter condition against a stored value."""
    if isinstance(condition, (InRange, OneOf)):
        return condition.matches(value)
    if condition is None:
        return value is None
    return value == condition


# =============================================================================
# RECORD STORE
# =============================================================================

class RecordStore(ABC):
    """
    Abstract interface for record persistence.

    Any storage implementation (SQLite, in-memory, ...) must implement
    these methods. Transactional handles passed to `run_atomic` callbacks
    are RecordStores too.
    """

    @abstractmethod
    async def insert(self, table: Table, record: BaseModel) -> BaseModel:
        """
        Insert a record and return it with its primary key assigned.

        Raises:
            ValidationError: If the record does not fit the table's schema
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def update(self, table: Table, record_id: int, changes: dict) -> None:
        """
        Apply a partial update to an existing record.

        Raises:
            NotFoundError: If no record has this id
            ValidationError: If the merged record does not fit the schema
        """
        pass

    @abstractmethod
    async def delete(self, table: Table, record_id: int) -> None:
        """
        Delete a record by id.

        Raises:
            NotFoundError: If no record has this id
        """
        pass

    @abstractmethod
    async def select(
        self,
        table: Table,
        filters: Optional[Filters] = None,
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list:
        """
        Select records matching every filter condition.

        Args:
            table: Table to read
            filters: Field name -> value (equality), InRange or OneOf
            order_by: Field name, prefixed with '-' for descending.
                      Defaults to primary key ascending.
            limit: Maximum number of records

        Returns:
            List of model instances
        """
        pass

    @abstractmethod
    async def run_atomic(self, fn: Callable[["RecordStore"], Awaitable[T]]) -> T:
        """
        Run `fn(handle)` as one all-or-nothing unit.

        Every write issued through `handle` is rolled back if `fn` raises;
        the exception then propagates unchanged. Calling `run_atomic` on
        the handle nests a savepoint inside the current unit.
        """
        pass

    async def get(self, table: Table, record_id: int) -> BaseModel:
        """
        Fetch one record by primary key.

        Raises:
            NotFoundError: If no record has this id
        """
        rows = await self.select(table, {PRIMARY_KEYS[table]: record_id}, limit=1)
        if not rows:
            raise NotFoundError(f"{table.value} record not found: {record_id}")
        return rows[0]

    # -------------------------------------------------------------------------
    # Boundary validation shared by all backends
    # -------------------------------------------------------------------------

    @staticmethod
    def _check_fields(table: Table, fields) -> None:
        model_fields = TABLE_MODELS[table].model_fields
        unknown = [name for name in fields if name not in model_fields]
        if unknown:
            raise StorageError(f"Unknown field(s) for {table.value}: {', '.join(unknown)}")

    @staticmethod
    def _prepare_insert(table: Table, record: Union[BaseModel, dict]) -> BaseModel:
        """Validate a new record against its table model; the id is assigned by the store."""
        model_cls = TABLE_MODELS[table]
        data = record.model_dump() if isinstance(record, BaseModel) else dict(record)
        data[PRIMARY_KEYS[table]] = None
        return validate_model(model_cls, data)

    @staticmethod
    def _prepare_update(table: Table, existing: BaseModel, changes: dict) -> tuple[BaseModel, dict]:
        """
        Merge `changes` into `existing` and validate the result.

        Returns:
            (merged_record, validated_changes) where validated_changes holds
            the coerced values of every written column, updated_at included.
        """
        pk = PRIMARY_KEYS[table]
        RecordStore._check_fields(table, changes)
        if pk in changes and changes[pk] != getattr(existing, pk):
            raise StorageError(f"Primary key of {table.value} cannot be changed")

        data = {**existing.model_dump(), **changes}
        model_cls = TABLE_MODELS[table]
        if "updated_at" in model_cls.model_fields and "updated_at" not in changes:
            data["updated_at"] = utcnow()
        merged = validate_model(model_cls, data)

        written = set(changes) - {pk}
        if "updated_at" in model_cls.model_fields:
            written.add("updated_at")
        return merged, {name: getattr(merged, name) for name in written}


def validate_model(model_cls: type[BaseModel], data: dict) -> BaseModel:
    """Validate `data` as `model_cls`, raising the ledger's ValidationError on failure."""
    try:
        return model_cls.model_validate(data)
    except PydanticValidationError as e:
        issues = [
            ValidationIssue(
                field=".".join(str(part) for part in error["loc"]) or "record",
                issue_type=error["type"],
                message=error["msg"],
                severity="error",
            )
            for error in e.errors()
        ]
        summary = "; ".join(issue.message for issue in issues)
        raise ValidationError(f"Invalid {model_cls.__name__}: {summary}", issues) from e


# =============================================================================
# AUDIT STORAGE
# =============================================================================

class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(self, correlation_id) -> list[AuditEvent]:
        """Get all events for a correlation ID, in chronological order."""
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: int,
    ) -> list[AuditEvent]:
        """Get all events for a specific record, in chronological order."""
        pass

    @abstractmethod
    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        """Get the most recent audit events (newest first)."""
        pass
