"""
Error Taxonomy for the Ledger Core

Every error raised by the core derives from LedgerError so callers can
catch the whole family in one place.

DESIGN DECISION: Errors are never swallowed by the core.
Validation problems surface verbatim, missing records surface as
NotFoundError, and anything that goes wrong inside an atomic unit is
rolled back and re-raised as a MutationError wrapping the cause.
"""

from typing import Optional


class LedgerError(Exception):
    """Base exception for the ledger core."""
    pass


class ValidationError(LedgerError):
    """
    Malformed input (sign/type mismatch, missing required field, ...).

    Never retried. The message is meant to be shown to the user as-is.
    """

    def __init__(self, message: str, issues: Optional[list] = None):
        super().__init__(message)
        self.issues = issues or []


class RecordInUseError(ValidationError):
    """A record cannot be deleted because other records reference it."""
    pass


class StorageError(LedgerError):
    """Base exception for record store operations."""
    pass


class NotFoundError(StorageError):
    """Referenced record does not exist (or is not visible to the session)."""
    pass


class ConnectionError(StorageError):
    """Could not open the storage backend."""
    pass


class MutationError(LedgerError):
    """
    A failure occurred inside an atomic unit.

    The unit has already been rolled back when this is raised.
    `cause` holds the original exception.
    """

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause
