"""
Ledger consistency core.

Balance adjustments, budget aggregation and the transaction mutation
service that pairs the two atomically.
"""

from ledger_core.ledger.aggregator import (
    BudgetAggregator,
    classify,
    progress_pct,
    remaining,
)
from ledger_core.ledger.balance import BalanceLedger, signed_effect
from ledger_core.ledger.mutations import TransactionMutationService

__all__ = [
    "BalanceLedger",
    "BudgetAggregator",
    "TransactionMutationService",
    "classify",
    "progress_pct",
    "remaining",
    "signed_effect",
]
