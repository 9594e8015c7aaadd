"""
In-Memory Storage Implementation

Used by the test-suite and for throwaway in-process ledgers.

Atomic units are implemented with snapshots: entering a unit copies the
table index, and any exception restores it. Nested units take their own
snapshot, which gives savepoint semantics for free. Top-level units are
serialized with an asyncio lock, so two units never interleave their
writes.

Stored records are never mutated in place (updates replace the record),
so a shallow copy of each table is a complete snapshot.
"""

import asyncio
from typing import Awaitable, Callable, Optional, TypeVar
from uuid import UUID

from pydantic import BaseModel

from ledger_core.errors import NotFoundError
from ledger_core.models.audit import AuditEvent
from ledger_core.services.storage.interface import (
    PRIMARY_KEYS,
    AuditStorageInterface,
    Filters,
    RecordStore,
    Table,
    condition_matches,
)

T = TypeVar("T")


class InMemoryRecordStore(RecordStore):
    """
    Dict-backed record store.

    The `_insert_row`, `_update_row` and `_delete_row` hooks are the only
    places rows change, which makes them the natural seam for fault
    injection in tests.
    """

    def __init__(self):
        self._tables: dict[Table, dict[int, BaseModel]] = {table: {} for table in Table}
        self._next_ids: dict[Table, int] = {table: 1 for table in Table}
        self._lock = asyncio.Lock()

    # -------------------------------------------------------------------------
    # Row-level hooks
    # -------------------------------------------------------------------------

    def _insert_row(self, table: Table, record: BaseModel) -> BaseModel:
        record_id = self._next_ids[table]
        self._next_ids[table] = record_id + 1
        stored = record.model_copy(update={PRIMARY_KEYS[table]: record_id})
        self._tables[table][record_id] = stored
        return stored.model_copy()

    def _update_row(self, table: Table, record_id: int, merged: BaseModel) -> None:
        self._tables[table][record_id] = merged

    def _delete_row(self, table: Table, record_id: int) -> None:
        del self._tables[table][record_id]

    def _find(self, table: Table, record_id: int) -> BaseModel:
        try:
            return self._tables[table][record_id]
        except KeyError:
            raise NotFoundError(f"{table.value} record not found: {record_id}")

    def _snapshot(self) -> tuple:
        return (
            {table: dict(rows) for table, rows in self._tables.items()},
            dict(self._next_ids),
        )

    def _restore(self, snapshot: tuple) -> None:
        tables, next_ids = snapshot
        self._tables = tables
        self._next_ids = next_ids

    # -------------------------------------------------------------------------
    # RecordStore API (each call is its own unit)
    # -------------------------------------------------------------------------

    async def insert(self, table: Table, record: BaseModel) -> BaseModel:
        return await self.run_atomic(lambda handle: handle.insert(table, record))

    async def update(self, table: Table, record_id: int, changes: dict) -> None:
        await self.run_atomic(lambda handle: handle.update(table, record_id, changes))

    async def delete(self, table: Table, record_id: int) -> None:
        await self.run_atomic(lambda handle: handle.delete(table, record_id))

    async def select(
        self,
        table: Table,
        filters: Optional[Filters] = None,
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list:
        return await _MemoryHandle(self).select(table, filters, order_by, limit)

    async def run_atomic(self, fn: Callable[[RecordStore], Awaitable[T]]) -> T:
        async with self._lock:
            return await _MemoryHandle(self).run_atomic(fn)


class _MemoryHandle(RecordStore):
    """Transactional handle over an InMemoryRecordStore."""

    def __init__(self, store: InMemoryRecordStore):
        self._store = store

    async def insert(self, table: Table, record: BaseModel) -> BaseModel:
        prepared = self._prepare_insert(table, record)
        return self._store._insert_row(table, prepared)

    async def update(self, table: Table, record_id: int, changes: dict) -> None:
        existing = self._store._find(table, record_id)
        merged, _ = self._prepare_update(table, existing, changes)
        self._store._update_row(table, record_id, merged)

    async def delete(self, table: Table, record_id: int) -> None:
        self._store._find(table, record_id)
        self._store._delete_row(table, record_id)

    async def select(
        self,
        table: Table,
        filters: Optional[Filters] = None,
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list:
        filters = filters or {}
        self._check_fields(table, filters)

        rows = [
            record
            for record in self._store._tables[table].values()
            if all(
                condition_matches(getattr(record, name), condition)
                for name, condition in filters.items()
            )
        ]

        descending = bool(order_by) and order_by.startswith("-")
        sort_field = order_by.lstrip("-") if order_by else PRIMARY_KEYS[table]
        self._check_fields(table, [sort_field])
        def sort_key(record):
            # Nulls sort first ascending, last descending (SQLite behaviour)
            value = getattr(record, sort_field)
            return (value is not None, value if value is not None else 0)

        rows.sort(key=sort_key, reverse=descending)

        if limit is not None:
            rows = rows[:limit]
        return [row.model_copy() for row in rows]

    async def run_atomic(self, fn: Callable[[RecordStore], Awaitable[T]]) -> T:
        snapshot = self._store._snapshot()
        try:
            return await fn(self)
        except BaseException:
            self._store._restore(snapshot)
            raise


class InMemoryAuditStorage(AuditStorageInterface):
    """
    Append-only audit log kept in a list.

    Useful for tests and for inspecting what a session did.
    """

    def __init__(self):
        self._events: list[AuditEvent] = []

    @property
    def events(self) -> list[AuditEvent]:
        return list(self._events)

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_correlation_id(self, correlation_id: UUID) -> list[AuditEvent]:
        events = [e for e in self._events if e.correlation_id == correlation_id]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_events_by_entity(self, entity_type: str, entity_id: int) -> list[AuditEvent]:
        events = [
            e for e in self._events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        events = sorted(self._events, key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
