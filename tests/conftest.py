"""
Shared fixtures for the ledger tests.

Every test gets a fresh in-memory store; nothing touches the network or
the user's database file.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

import pytest
import pytest_asyncio

from ledger_core.audit import AuditLogger
from ledger_core.errors import StorageError
from ledger_core.models.records import Account, AccountType, Category, Session
from ledger_core.orchestrator import LedgerComponents, build_components
from ledger_core.services.storage import InMemoryAuditStorage, InMemoryRecordStore, Table

MARCH_10 = datetime(2024, 3, 10, 12, 0)


class FlakyRecordStore(InMemoryRecordStore):
    """
    In-memory store that fails the Nth row write after `arm(n)`.

    Inserts, updates and deletes all count as writes.
    """

    def __init__(self):
        super().__init__()
        self.fail_on = None
        self.writes = 0

    def arm(self, fail_on: int) -> None:
        self.fail_on = fail_on
        self.writes = 0

    def _tick(self) -> None:
        if self.fail_on is None:
            return
        self.writes += 1
        if self.writes == self.fail_on:
            raise StorageError(f"injected fault on write {self.writes}")

    def _insert_row(self, table, record):
        self._tick()
        return super()._insert_row(table, record)

    def _update_row(self, table, record_id, merged):
        self._tick()
        super()._update_row(table, record_id, merged)

    def _delete_row(self, table, record_id):
        self._tick()
        super()._delete_row(table, record_id)


@dataclass
class Seeded:
    """Reference data most ledger tests start from."""
    app: LedgerComponents
    checking: Account
    savings: Account
    food: Category
    salary: Category
    transfers: Category


@pytest.fixture
def session() -> Session:
    return Session(user_id=1)


@pytest.fixture
def store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def flaky_store() -> FlakyRecordStore:
    return FlakyRecordStore()


@pytest.fixture
def audit_storage() -> InMemoryAuditStorage:
    return InMemoryAuditStorage()


@pytest.fixture
def audit_logger(audit_storage) -> AuditLogger:
    return AuditLogger(audit_storage)


@pytest.fixture
def app(store, session, audit_storage) -> LedgerComponents:
    return build_components(store, session, audit_storage)


async def seed(app: LedgerComponents, opening_balance=Decimal("1000.00")) -> Seeded:
    """Open two accounts and create expense, income and transfer categories."""
    return Seeded(
        app=app,
        checking=await app.accounts.open_account(
            "Main Checking", AccountType.CHECKING, opening_balance
        ),
        savings=await app.accounts.open_account(
            "Rainy Day", AccountType.SAVINGS, Decimal("0.00")
        ),
        food=await app.categories.create("Food"),
        salary=await app.categories.create("Salary", is_income=True),
        transfers=await app.categories.create("Transfers"),
    )


@pytest_asyncio.fixture
async def seeded(app) -> Seeded:
    return await seed(app)


async def balance_of(store, account_id: int) -> Decimal:
    account = await store.get(Table.ACCOUNTS, account_id)
    return account.balance
