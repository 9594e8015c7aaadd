"""
SQLite Storage Implementation

DESIGN DECISION: SQLite is the production backend because:
1. The app is single-user, single-device
2. It gives us real all-or-nothing transactions and savepoints
3. No server to set up

We use SQLAlchemy Core (not the ORM) over the aiosqlite driver.
The record store speaks pydantic models on both sides, so tables are
plain `Table` definitions and rows are converted at the boundary.

TRADEOFFS:
- Decimals are stored as text. SQLite has no exact decimal type, and
  sums are computed in Python anyway.
- pysqlite's implicit transaction handling breaks SAVEPOINT, so we turn
  it off and emit BEGIN ourselves (the documented SQLAlchemy recipe).
"""

from decimal import Decimal
from enum import Enum
from typing import Awaitable, Callable, Optional, TypeVar

import sqlalchemy as sa
import structlog
from pydantic import BaseModel
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, create_async_engine
from sqlalchemy.pool import StaticPool
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ledger_core.config import get_settings
from ledger_core.errors import ConnectionError, NotFoundError, StorageError
from ledger_core.services.storage.interface import (
    PRIMARY_KEYS,
    TABLE_MODELS,
    Filters,
    InRange,
    OneOf,
    RecordStore,
    Table,
)

T = TypeVar("T")

logger = structlog.get_logger(__name__)


class DecimalText(sa.types.TypeDecorator):
    """Exact decimal stored as TEXT."""

    impl = sa.String(40)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return str(value) if value is not None else None

    def process_result_value(self, value, dialect):
        return Decimal(value) if value is not None else None


metadata = sa.MetaData()

accounts_table = sa.Table(
    "accounts",
    metadata,
    sa.Column("account_id", sa.Integer, primary_key=True, autoincrement=True),
    sa.Column("user_id", sa.Integer, nullable=False, index=True),
    sa.Column("account_name", sa.String(100), nullable=False),
    sa.Column("account_type", sa.String(20), nullable=False),
    sa.Column("balance", DecimalText, nullable=False),
    sa.Column("currency", sa.String(3), nullable=False),
    sa.Column("created_at", sa.DateTime),
    sa.Column("updated_at", sa.DateTime),
)

categories_table = sa.Table(
    "categories",
    metadata,
    sa.Column("category_id", sa.Integer, primary_key=True, autoincrement=True),
    sa.Column("user_id", sa.Integer, nullable=False, index=True),
    sa.Column("category_name", sa.String(100), nullable=False),
    sa.Column("is_income", sa.Boolean, nullable=False, default=False),
    sa.Column("created_at", sa.DateTime),
    sa.Column("updated_at", sa.DateTime),
)

budgets_table = sa.Table(
    "budgets",
    metadata,
    sa.Column("budget_id", sa.Integer, primary_key=True, autoincrement=True),
    sa.Column("user_id", sa.Integer, nullable=False, index=True),
    sa.Column(
        "category_id",
        sa.Integer,
        sa.ForeignKey("categories.category_id"),
        nullable=False,
    ),
    sa.Column("budget_name", sa.String(100), nullable=False),
    sa.Column("budget_amount", DecimalText, nullable=False),
    sa.Column("period_type", sa.String(20), nullable=False),
    sa.Column("start_date", sa.DateTime, nullable=False),
    sa.Column("end_date", sa.DateTime, nullable=False),
    sa.Column("rollover", sa.Boolean, nullable=False, default=False),
    sa.Column("created_at", sa.DateTime),
    sa.Column("updated_at", sa.DateTime),
)

transactions_table = sa.Table(
    "transactions",
    metadata,
    sa.Column("transaction_id", sa.Integer, primary_key=True, autoincrement=True),
    sa.Column(
        "account_id",
        sa.Integer,
        sa.ForeignKey("accounts.account_id"),
        nullable=False,
        index=True,
    ),
    sa.Column(
        "category_id",
        sa.Integer,
        sa.ForeignKey("categories.category_id"),
        nullable=False,
        index=True,
    ),
    sa.Column("amount", DecimalText, nullable=False),
    sa.Column("transaction_type", sa.String(20), nullable=False),
    sa.Column("transaction_date", sa.DateTime, nullable=False, index=True),
    sa.Column("description", sa.String(500)),
    sa.Column("budget_id", sa.Integer, sa.ForeignKey("budgets.budget_id")),
    sa.Column(
        "linked_transaction_id",
        sa.Integer,
        sa.ForeignKey("transactions.transaction_id"),
    ),
    sa.Column("created_at", sa.DateTime),
    sa.Column("updated_at", sa.DateTime),
)

savings_goals_table = sa.Table(
    "savings_goals",
    metadata,
    sa.Column("goal_id", sa.Integer, primary_key=True, autoincrement=True),
    sa.Column("user_id", sa.Integer, nullable=False, index=True),
    sa.Column("goal_name", sa.String(100), nullable=False),
    sa.Column("target_amount", DecimalText, nullable=False),
    sa.Column("current_amount", DecimalText, nullable=False),
    sa.Column("target_date", sa.DateTime),
    sa.Column("created_at", sa.DateTime),
    sa.Column("updated_at", sa.DateTime),
)

savings_contributions_table = sa.Table(
    "savings_contributions",
    metadata,
    sa.Column("contribution_id", sa.Integer, primary_key=True, autoincrement=True),
    sa.Column(
        "goal_id",
        sa.Integer,
        sa.ForeignKey("savings_goals.goal_id"),
        nullable=False,
    ),
    sa.Column(
        "account_id",
        sa.Integer,
        sa.ForeignKey("accounts.account_id"),
        nullable=False,
    ),
    sa.Column("amount", DecimalText, nullable=False),
    sa.Column("contribution_date", sa.DateTime, nullable=False),
    sa.Column("created_at", sa.DateTime),
)

SQL_TABLES: dict[Table, sa.Table] = {
    Table.ACCOUNTS: accounts_table,
    Table.CATEGORIES: categories_table,
    Table.BUDGETS: budgets_table,
    Table.TRANSACTIONS: transactions_table,
    Table.SAVINGS_GOALS: savings_goals_table,
    Table.SAVINGS_CONTRIBUTIONS: savings_contributions_table,
}


def _to_row(values: dict) -> dict:
    """Convert model values to column values."""
    return {
        name: value.value if isinstance(value, Enum) else value
        for name, value in values.items()
    }


def _configure_sqlite(engine) -> None:
    """Enable foreign keys and hand transaction control to SQLAlchemy."""

    def on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    def on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    sa.event.listen(engine.sync_engine, "connect", on_connect)
    sa.event.listen(engine.sync_engine, "begin", on_begin)


class SQLiteRecordStore(RecordStore):
    """
    SQLite implementation of the record store.

    Call `initialize()` once before use to create the schema, and
    `close()` on shutdown.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        echo: Optional[bool] = None,
        connect_attempts: Optional[int] = None,
    ):
        storage_settings = get_settings().storage
        self._url = url or storage_settings.url
        self._connect_attempts = connect_attempts or storage_settings.connect_attempts

        engine_kwargs = {
            "echo": storage_settings.echo if echo is None else echo,
        }
        if ":memory:" in self._url:
            # One shared connection, otherwise every checkout sees an empty database
            engine_kwargs["poolclass"] = StaticPool
        self._engine = create_async_engine(self._url, **engine_kwargs)
        if self._url.startswith("sqlite"):
            _configure_sqlite(self._engine)

    async def initialize(self) -> None:
        """
        Create tables if they do not exist.

        Opening the file can fail transiently (locked by another process,
        slow mount), so this is retried with exponential backoff.
        """
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._connect_attempts),
                wait=wait_exponential(multiplier=0.1, min=0.1, max=2),
                retry=retry_if_exception_type(OperationalError),
                reraise=True,
            ):
                with attempt:
                    async with self._engine.begin() as conn:
                        await conn.run_sync(metadata.create_all)
        except (OperationalError, RetryError) as e:
            raise ConnectionError(f"Failed to open database {self._url}: {e}") from e

        logger.info("record_store_initialized", url=self._url)

    async def close(self) -> None:
        await self._engine.dispose()

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
        async with self._engine.connect() as conn:
            return await _SQLiteHandle(conn).select(table, filters, order_by, limit)

    async def run_atomic(self, fn: Callable[[RecordStore], Awaitable[T]]) -> T:
        async with self._engine.begin() as conn:
            return await fn(_SQLiteHandle(conn))


class _SQLiteHandle(RecordStore):
    """Transactional handle bound to one open connection."""

    def __init__(self, conn: AsyncConnection):
        self._conn = conn

    async def insert(self, table: Table, record: BaseModel) -> BaseModel:
        prepared = self._prepare_insert(table, record)
        pk = PRIMARY_KEYS[table]
        values = _to_row(prepared.model_dump(exclude={pk}))
        try:
            result = await self._conn.execute(sa.insert(SQL_TABLES[table]).values(**values))
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to insert into {table.value}: {e}") from e
        return prepared.model_copy(update={pk: result.inserted_primary_key[0]})

    async def update(self, table: Table, record_id: int, changes: dict) -> None:
        existing = await self.get(table, record_id)
        _, written = self._prepare_update(table, existing, changes)
        sql_table = SQL_TABLES[table]
        statement = (
            sa.update(sql_table)
            .where(sql_table.c[PRIMARY_KEYS[table]] == record_id)
            .values(**_to_row(written))
        )
        try:
            await self._conn.execute(statement)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to update {table.value} {record_id}: {e}") from e

    async def delete(self, table: Table, record_id: int) -> None:
        sql_table = SQL_TABLES[table]
        statement = sa.delete(sql_table).where(sql_table.c[PRIMARY_KEYS[table]] == record_id)
        try:
            result = await self._conn.execute(statement)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to delete {table.value} {record_id}: {e}") from e
        if result.rowcount == 0:
            raise NotFoundError(f"{table.value} record not found: {record_id}")

    async def select(
        self,
        table: Table,
        filters: Optional[Filters] = None,
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list:
        filters = filters or {}
        self._check_fields(table, filters)
        sql_table = SQL_TABLES[table]

        statement = sa.select(sql_table)
        for name, condition in filters.items():
            column = sql_table.c[name]
            if isinstance(condition, InRange):
                if condition.start is not None:
                    statement = statement.where(column >= condition.start)
                if condition.end is not None:
                    statement = statement.where(column < condition.end)
                statement = statement.where(column.is_not(None))
            elif isinstance(condition, OneOf):
                values = [v.value if isinstance(v, Enum) else v for v in condition.values]
                statement = statement.where(column.in_(values) if values else sa.false())
            elif condition is None:
                statement = statement.where(column.is_(None))
            else:
                value = condition.value if isinstance(condition, Enum) else condition
                statement = statement.where(column == value)

        sort_field = order_by.lstrip("-") if order_by else PRIMARY_KEYS[table]
        self._check_fields(table, [sort_field])
        sort_column = sql_table.c[sort_field]
        if isinstance(sort_column.type, DecimalText):
            # Money is stored as text; compare it as a number
            sort_column = sa.cast(sort_column, sa.Numeric)
        if order_by and order_by.startswith("-"):
            statement = statement.order_by(sort_column.desc(), sql_table.c[PRIMARY_KEYS[table]])
        else:
            statement = statement.order_by(sort_column, sql_table.c[PRIMARY_KEYS[table]])

        if limit is not None:
            statement = statement.limit(limit)

        try:
            result = await self._conn.execute(statement)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to select from {table.value}: {e}") from e

        model_cls = TABLE_MODELS[table]
        return [model_cls.model_validate(dict(row._mapping)) for row in result]

    async def run_atomic(self, fn: Callable[[RecordStore], Awaitable[T]]) -> T:
        async with self._conn.begin_nested():
            return await fn(self)
