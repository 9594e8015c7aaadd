"""
Pocket Ledger - Ledger Consistency Core

Keeps account balances, transaction records and budget spending
mutually consistent for a personal-finance tracker.

DESIGN PRINCIPLES:
1. A transaction write and its balance adjustment land together or not at all
2. Fail early, fail visibly
3. No silent corrections
4. Derived figures (budget spending) are recomputed, never stored
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Pocket Ledger Team"
