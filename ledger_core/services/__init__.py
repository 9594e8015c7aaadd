"""
Services package.

Record storage lives in `ledger_core.services.storage`; the account,
category, budget and savings services sit beside it. They are imported
from their modules directly.
"""
