"""
Component Wiring for the Ledger

This module ties the record store, audit logger and services together
for one session user.

DESIGN DECISION: every service receives the same store and session
explicitly. Nothing looks up "the current user" or "the database" from
ambient state, so a test can build the whole graph over an in-memory
store.
"""

from dataclasses import dataclass
from typing import Optional

import structlog

from ledger_core.audit import AuditLogger
from ledger_core.errors import ConnectionError
from ledger_core.ledger import BalanceLedger, BudgetAggregator, TransactionMutationService
from ledger_core.models.records import Session
from ledger_core.queries import LedgerQueries
from ledger_core.services.accounts import AccountService
from ledger_core.services.budgets import BudgetService
from ledger_core.services.categories import CategoryService
from ledger_core.services.savings import SavingsGoalService
from ledger_core.services.storage import (
    AuditStorageInterface,
    InMemoryAuditStorage,
    InMemoryRecordStore,
    RecordStore,
    SQLiteRecordStore,
)
from ledger_core.validation import TransactionValidator

logger = structlog.get_logger(__name__)


@dataclass
class LedgerComponents:
    """Everything a UI needs to drive the ledger for one user."""

    session: Session
    store: RecordStore
    audit_logger: AuditLogger
    ledger: BalanceLedger
    aggregator: BudgetAggregator
    transactions: TransactionMutationService
    accounts: AccountService
    categories: CategoryService
    budgets: BudgetService
    savings: SavingsGoalService
    queries: LedgerQueries

    async def close(self) -> None:
        if isinstance(self.store, SQLiteRecordStore):
            await self.store.close()


def build_components(
    store: RecordStore,
    session: Session,
    audit_storage: Optional[AuditStorageInterface] = None,
) -> LedgerComponents:
    """Wire all services over an already-open store."""
    audit_logger = AuditLogger(audit_storage)
    ledger = BalanceLedger(store, session)
    aggregator = BudgetAggregator(store, session)

    return LedgerComponents(
        session=session,
        store=store,
        audit_logger=audit_logger,
        ledger=ledger,
        aggregator=aggregator,
        transactions=TransactionMutationService(
            store,
            session,
            ledger=ledger,
            validator=TransactionValidator(),
            audit_logger=audit_logger,
        ),
        accounts=AccountService(store, session, audit_logger),
        categories=CategoryService(store, session, audit_logger),
        budgets=BudgetService(store, session, aggregator, audit_logger),
        savings=SavingsGoalService(store, session, audit_logger),
        queries=LedgerQueries(store, session, aggregator),
    )


async def create_ledger_components(
    user_id: int,
    use_storage: bool = True,
    database_url: Optional[str] = None,
) -> LedgerComponents:
    """
    Factory function to create all ledger components.

    Args:
        user_id: The user every service acts for
        use_storage: Open the configured SQLite database.
                    Set to False for a throwaway in-memory ledger.
        database_url: Override the configured database URL

    Returns:
        LedgerComponents sharing one store and one audit logger

    Raises:
        ConnectionError: If the database cannot be opened
    """
    session = Session(user_id=user_id)
    store: RecordStore

    if use_storage:
        sqlite_store = SQLiteRecordStore(url=database_url)
        try:
            await sqlite_store.initialize()
        except ConnectionError:
            # Never fall back to memory for a persistent ledger
            logger.error("storage_unavailable", url=database_url)
            await sqlite_store.close()
            raise
        store = sqlite_store
    else:
        store = InMemoryRecordStore()

    return build_components(store, session, InMemoryAuditStorage())
