"""Validation package."""

from ledger_core.validation.validator import TransactionValidator, sign_issues

__all__ = ["TransactionValidator", "sign_issues"]
