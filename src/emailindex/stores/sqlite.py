"""
SQLite principal store implementation.

Lightweight store using SQLite with async support via aiosqlite. Suitable
for development, tests and small single-instance deployments. For the
production dataset use PostgreSQLPrincipalStore.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Iterable
from typing import Any

import aiosqlite

from emailindex.exceptions import StoreNotConnectedError
from emailindex.observability import (
    ATTR_BATCH_SIZE,
    ATTR_DB_NAME,
    ATTR_DB_OPERATION,
    ATTR_DB_SYSTEM,
    ATTR_PAGE_SIZE,
    ATTR_PRINCIPAL_COUNT,
    Tracer,
    create_tracer,
    record_attribute,
)
from emailindex.stores.interface import (
    EMAIL_INDEX_TABLE,
    PRINCIPAL_FIELDS,
    PRINCIPALS_TABLE,
    REQUIRED_FIELD,
    IndexStore,
    PrincipalSource,
    UpsertStatement,
    quote_identifier,
    scan_columns,
    validate_page_size,
)
from emailindex.types import Principal

logger = logging.getLogger(__name__)

SQLITE_SCHEMA = """
CREATE TABLE IF NOT EXISTS "Principals" (
    "principalId" TEXT PRIMARY KEY,
    "displayName" TEXT,
    "email" TEXT
);

CREATE TABLE IF NOT EXISTS "PrincipalsByEmail" (
    "email" TEXT PRIMARY KEY,
    "principalId" TEXT NOT NULL
);
"""


def build_upsert_sql(statement: UpsertStatement) -> str:
    """
    Build the SQLite UPSERT for one statement (``?`` placeholders).

    Example:
        >>> build_upsert_sql(UpsertStatement("PrincipalsByEmail", "email", "a@x.com",
        ...                                  {"principalId": "u1"}))
        'INSERT INTO "PrincipalsByEmail" ("email", "principalId") VALUES (?, ?) ON CONFLICT ("email") DO UPDATE SET "principalId" = excluded."principalId"'
    """
    columns = ", ".join(quote_identifier(column) for column in statement.columns)
    placeholders = ", ".join("?" for _ in statement.columns)
    key = quote_identifier(statement.key_column)
    sql = f"INSERT INTO {quote_identifier(statement.table)} ({columns}) VALUES ({placeholders})"
    if not statement.column_values:
        return f"{sql} ON CONFLICT ({key}) DO NOTHING"
    updates = ", ".join(
        f"{quote_identifier(column)} = excluded.{quote_identifier(column)}"
        for column in statement.column_values
    )
    return f"{sql} ON CONFLICT ({key}) DO UPDATE SET {updates}"


class SQLitePrincipalStore(PrincipalSource, IndexStore):
    """
    SQLite implementation of the principal scanner and index writer.

    Pages are read with keyset pagination on ``principalId`` so each page is
    a fresh bounded query. Each batch runs in one transaction that is rolled
    back if any statement fails.

    Example:
        >>> async with SQLitePrincipalStore("principals.db") as store:
        ...     async for page in store.iter_pages(page_size=30):
        ...         validator.validate(page)
    """

    def __init__(
        self,
        database: str,
        *,
        principals_table: str = PRINCIPALS_TABLE,
        busy_timeout: int = 5000,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the SQLite store.

        Args:
            database: Path to SQLite database file or ':memory:'
            principals_table: Table holding the principals
            busy_timeout: Timeout in milliseconds when database is locked (default: 5000)
            tracer: Optional custom Tracer instance
            enable_tracing: Whether to enable OpenTelemetry tracing (default True)
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._database = database
        self._principals_table = quote_identifier(principals_table)
        self._busy_timeout = busy_timeout
        self._connection: aiosqlite.Connection | None = None

    async def __aenter__(self) -> SQLitePrincipalStore:
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        await self.close()

    async def connect(self) -> None:
        """Open the database connection. Safe to call when already connected."""
        if self._connection is not None:
            return

        self._connection = await aiosqlite.connect(self._database)
        await self._connection.execute(f"PRAGMA busy_timeout = {int(self._busy_timeout)}")
        self._connection.row_factory = aiosqlite.Row

        logger.debug(
            "Connected to SQLite database: %s (busy_timeout=%d)",
            self._database,
            self._busy_timeout,
        )

    async def close(self) -> None:
        """Close the database connection. Safe to call multiple times."""
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            logger.debug("Closed SQLite database connection: %s", self._database)

    async def initialize(self) -> None:
        """
        Create the default principals and lookup tables if missing.

        Intended for development databases; production schemas are managed
        outside this tool.
        """
        conn = self._ensure_connected()
        await conn.executescript(SQLITE_SCHEMA)
        await conn.commit()
        logger.info("Initialized SQLite schema: %s", self._database)

    def _ensure_connected(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise StoreNotConnectedError(type(self).__name__)
        return self._connection

    async def iter_pages(
        self,
        fields: Iterable[str] = PRINCIPAL_FIELDS,
        page_size: int = 30,
    ) -> AsyncIterator[list[Principal]]:
        """Iterate over all principals ordered by ``principalId``."""
        validate_page_size(page_size)
        conn = self._ensure_connected()
        columns = scan_columns(fields)
        projection = ", ".join(quote_identifier(column) for column in columns)
        key = quote_identifier(REQUIRED_FIELD)

        first_page = (
            f"SELECT {projection} FROM {self._principals_table} ORDER BY {key} LIMIT ?"
        )
        next_page = (
            f"SELECT {projection} FROM {self._principals_table} "
            f"WHERE {key} > ? ORDER BY {key} LIMIT ?"
        )

        last_id: str | None = None
        while True:
            with self._tracer.span(
                "emailindex.sqlite_store.read_page",
                {
                    ATTR_DB_SYSTEM: "sqlite",
                    ATTR_DB_NAME: self._database,
                    ATTR_DB_OPERATION: "SELECT",
                    ATTR_PAGE_SIZE: page_size,
                },
            ):
                if last_id is None:
                    cursor = await conn.execute(first_page, (page_size,))
                else:
                    cursor = await conn.execute(next_page, (last_id, page_size))
                rows = await cursor.fetchall()
                await cursor.close()

            if not rows:
                return

            page = [Principal.model_validate(dict(zip(columns, row))) for row in rows]
            last_id = page[-1].principal_id
            yield page

            if len(rows) < page_size:
                return

    async def run_batch(self, statements: list[UpsertStatement]) -> None:
        """Apply all upserts in one transaction."""
        conn = self._ensure_connected()
        with self._tracer.span(
            "emailindex.sqlite_store.run_batch",
            {
                ATTR_DB_SYSTEM: "sqlite",
                ATTR_DB_NAME: self._database,
                ATTR_DB_OPERATION: "UPSERT",
                ATTR_BATCH_SIZE: len(statements),
            },
        ):
            try:
                for statement in statements:
                    await conn.execute(build_upsert_sql(statement), statement.values)
                await conn.commit()
            except Exception:
                await conn.rollback()
                raise

            logger.debug("Committed batch of %d upsert(s)", len(statements))

    async def count_principals(self) -> int:
        """Count the rows of the principals table."""
        conn = self._ensure_connected()
        with self._tracer.span(
            "emailindex.sqlite_store.count_principals",
            {ATTR_DB_SYSTEM: "sqlite", ATTR_DB_NAME: self._database},
        ) as span:
            cursor = await conn.execute(f"SELECT COUNT(*) FROM {self._principals_table}")
            row = await cursor.fetchone()
            await cursor.close()
            count = int(row[0]) if row else 0
            record_attribute(span, ATTR_PRINCIPAL_COUNT, count)
            return count

    async def insert_principals(self, principals: Iterable[Principal]) -> int:
        """
        Insert principals into the principals table (development helper).

        Returns:
            Number of rows written
        """
        conn = self._ensure_connected()
        rows = [(p.principal_id, p.display_name, p.email) for p in principals]
        await conn.executemany(
            f'INSERT OR REPLACE INTO {self._principals_table} '
            f'("principalId", "displayName", "email") VALUES (?, ?, ?)',
            rows,
        )
        await conn.commit()
        return len(rows)

    async def fetch_index(self, table: str = EMAIL_INDEX_TABLE) -> dict[str, str]:
        """Read back the email lookup table as ``{email: principalId}``."""
        conn = self._ensure_connected()
        cursor = await conn.execute(
            f'SELECT "email", "principalId" FROM {quote_identifier(table)} ORDER BY "email"'
        )
        rows = await cursor.fetchall()
        await cursor.close()
        return {row[0]: row[1] for row in rows}

    @property
    def database(self) -> str:
        """Get the database path."""
        return self._database

    @property
    def is_connected(self) -> bool:
        """Check if the store has an open connection."""
        return self._connection is not None
