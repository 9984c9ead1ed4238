"""
PostgreSQL principal store implementation.

Production store built on SQLAlchemy's async engine. Accepts either an
AsyncEngine, in which case every page and every batch gets its own
connection, or an AsyncConnection owned by the caller.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from emailindex.observability import (
    ATTR_BATCH_SIZE,
    ATTR_DB_OPERATION,
    ATTR_DB_SYSTEM,
    ATTR_PAGE_SIZE,
    Tracer,
    create_tracer,
)
from emailindex.stores.interface import (
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


def build_upsert_sql(statement: UpsertStatement) -> tuple[str, dict[str, Any]]:
    """
    Build the PostgreSQL UPSERT for one statement.

    Returns:
        Tuple of (SQL with named parameters, parameter dict)

    Example:
        >>> sql, params = build_upsert_sql(
        ...     UpsertStatement("PrincipalsByEmail", "email", "a@x.com", {"principalId": "u1"})
        ... )
        >>> params
        {'p0': 'a@x.com', 'p1': 'u1'}
    """
    names = [f"p{i}" for i in range(len(statement.columns))]
    columns = ", ".join(quote_identifier(column) for column in statement.columns)
    placeholders = ", ".join(f":{name}" for name in names)
    key = quote_identifier(statement.key_column)
    sql = (
        f"INSERT INTO {quote_identifier(statement.table)} ({columns}) "
        f"VALUES ({placeholders}) ON CONFLICT ({key}) "
    )
    if statement.column_values:
        updates = ", ".join(
            f"{quote_identifier(column)} = EXCLUDED.{quote_identifier(column)}"
            for column in statement.column_values
        )
        sql += f"DO UPDATE SET {updates}"
    else:
        sql += "DO NOTHING"
    return sql, dict(zip(names, statement.values))


@asynccontextmanager
async def _borrow(
    bind: AsyncConnection | AsyncEngine,
    transactional: bool,
) -> AsyncIterator[AsyncConnection]:
    # An engine hands out a fresh connection per call; a caller-owned
    # connection is used as is and keeps its own transaction state
    if not isinstance(bind, AsyncEngine):
        yield bind
    elif transactional:
        async with bind.begin() as conn:
            yield conn
    else:
        async with bind.connect() as conn:
            yield conn


@asynccontextmanager
async def _atomic(conn: AsyncConnection) -> AsyncIterator[None]:
    # A caller-owned connection may already be inside a transaction
    if conn.in_transaction():
        async with conn.begin_nested():
            yield
    else:
        async with conn.begin():
            yield


class PostgreSQLPrincipalStore(PrincipalSource, IndexStore):
    """
    PostgreSQL implementation of the principal scanner and index writer.

    Pages are read with keyset pagination on ``principalId``. Each batch is
    sent as one transaction; statements sharing the same SQL are grouped
    into a single executemany call.

    Example:
        >>> from sqlalchemy.ext.asyncio import create_async_engine
        >>> engine = create_async_engine("postgresql+asyncpg://localhost/oae")
        >>> store = PostgreSQLPrincipalStore(engine)
        >>> async for page in store.iter_pages(page_size=30):
        ...     validator.validate(page)
    """

    def __init__(
        self,
        conn: AsyncConnection | AsyncEngine,
        *,
        principals_table: str = PRINCIPALS_TABLE,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the PostgreSQL store.

        Args:
            conn: Database connection or engine
            principals_table: Table holding the principals
            tracer: Optional custom Tracer instance
            enable_tracing: Whether to enable OpenTelemetry tracing (default True)
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self.conn = conn
        self._principals_table = quote_identifier(principals_table)

    async def iter_pages(
        self,
        fields: Iterable[str] = PRINCIPAL_FIELDS,
        page_size: int = 30,
    ) -> AsyncIterator[list[Principal]]:
        """Iterate over all principals ordered by ``principalId``."""
        validate_page_size(page_size)
        columns = scan_columns(fields)
        projection = ", ".join(quote_identifier(column) for column in columns)
        key = quote_identifier(REQUIRED_FIELD)

        first_page = text(
            f"SELECT {projection} FROM {self._principals_table} ORDER BY {key} LIMIT :limit"
        )
        next_page = text(
            f"SELECT {projection} FROM {self._principals_table} "
            f"WHERE {key} > :after ORDER BY {key} LIMIT :limit"
        )

        last_id: str | None = None
        while True:
            with self._tracer.span(
                "emailindex.postgresql_store.read_page",
                {
                    ATTR_DB_SYSTEM: "postgresql",
                    ATTR_DB_OPERATION: "SELECT",
                    ATTR_PAGE_SIZE: page_size,
                },
            ):
                async with _borrow(self.conn, transactional=False) as conn:
                    if last_id is None:
                        result = await conn.execute(first_page, {"limit": page_size})
                    else:
                        result = await conn.execute(
                            next_page, {"after": last_id, "limit": page_size}
                        )
                    rows = result.fetchall()

            if not rows:
                return

            page = [Principal.model_validate(dict(zip(columns, row))) for row in rows]
            last_id = page[-1].principal_id
            yield page

            if len(rows) < page_size:
                return

    async def run_batch(self, statements: list[UpsertStatement]) -> None:
        """Apply all upserts in one transaction."""
        grouped: dict[str, list[dict[str, Any]]] = {}
        for statement in statements:
            sql, params = build_upsert_sql(statement)
            grouped.setdefault(sql, []).append(params)

        with self._tracer.span(
            "emailindex.postgresql_store.run_batch",
            {
                ATTR_DB_SYSTEM: "postgresql",
                ATTR_DB_OPERATION: "UPSERT",
                ATTR_BATCH_SIZE: len(statements),
            },
        ):
            async with _borrow(self.conn, transactional=True) as conn:
                if isinstance(self.conn, AsyncEngine):
                    await self._execute_grouped(conn, grouped)
                else:
                    async with _atomic(conn):
                        await self._execute_grouped(conn, grouped)

            logger.debug("Committed batch of %d upsert(s)", len(statements))

    async def _execute_grouped(
        self,
        conn: AsyncConnection,
        grouped: dict[str, list[dict[str, Any]]],
    ) -> None:
        for sql, params in grouped.items():
            await conn.execute(text(sql), params)
