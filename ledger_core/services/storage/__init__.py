"""
Storage Services Package

Provides the abstract record store interface and its implementations.
SQLite is the production backend; the in-memory store backs the tests.
"""

from ledger_core.errors import ConnectionError, NotFoundError, StorageError
from ledger_core.services.storage.interface import (
    PRIMARY_KEYS,
    AuditStorageInterface,
    InRange,
    OneOf,
    RecordStore,
    Table,
)
from ledger_core.services.storage.memory import InMemoryAuditStorage, InMemoryRecordStore
from ledger_core.services.storage.sqlite import SQLiteRecordStore

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "RecordStore",
    "Table",
    "PRIMARY_KEYS",
    # Filters
    "InRange",
    "OneOf",
    # Exceptions
    "ConnectionError",
    "NotFoundError",
    "StorageError",
    # Implementations
    "InMemoryAuditStorage",
    "InMemoryRecordStore",
    "SQLiteRecordStore",
]
