"""Reporting queries package."""

from ledger_core.queries.reports import LedgerQueries

__all__ = ["LedgerQueries"]
