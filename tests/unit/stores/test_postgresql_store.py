"""
Unit tests for PostgreSQLPrincipalStore.

Tests for:
- UPSERT SQL generation
- Keyset pagination over a mocked connection
- Batch execution and transaction handling
- Tracing spans
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine

from emailindex.observability import ATTR_BATCH_SIZE, ATTR_DB_SYSTEM, MockTracer
from emailindex.stores.interface import UpsertStatement
from emailindex.stores.postgresql import PostgreSQLPrincipalStore, build_upsert_sql


def make_result(rows: list[tuple]) -> MagicMock:
    result = MagicMock()
    result.fetchall.return_value = rows
    return result


def make_connection(*results: MagicMock, in_transaction: bool = False) -> MagicMock:
    conn = MagicMock()
    conn.execute = AsyncMock(side_effect=list(results) or None)
    conn.in_transaction.return_value = in_transaction
    return conn


def upsert(email: str, principal_id: str) -> UpsertStatement:
    return UpsertStatement("PrincipalsByEmail", "email", email, {"principalId": principal_id})


class TestBuildUpsertSql:
    """Tests for build_upsert_sql."""

    def test_upsert(self) -> None:
        sql, params = build_upsert_sql(upsert("a@x.com", "u1"))

        assert sql == (
            'INSERT INTO "PrincipalsByEmail" ("email", "principalId") '
            'VALUES (:p0, :p1) ON CONFLICT ("email") '
            'DO UPDATE SET "principalId" = EXCLUDED."principalId"'
        )
        assert params == {"p0": "a@x.com", "p1": "u1"}

    def test_key_only_does_nothing_on_conflict(self) -> None:
        sql, params = build_upsert_sql(UpsertStatement("PrincipalsByEmail", "email", "a@x.com"))

        assert sql.endswith('ON CONFLICT ("email") DO NOTHING')
        assert params == {"p0": "a@x.com"}


class TestIterPages:
    """Tests for keyset pagination."""

    @pytest.mark.asyncio
    async def test_pages_follow_last_id(self) -> None:
        conn = make_connection(
            make_result([("u1", "Alice", "a@x.com"), ("u2", "Bob", None)]),
            make_result([("u3", "Carol", "c@x.com")]),
        )
        store = PostgreSQLPrincipalStore(conn, enable_tracing=False)

        pages = [page async for page in store.iter_pages(page_size=2)]

        assert [[p.principal_id for p in page] for page in pages] == [["u1", "u2"], ["u3"]]
        assert pages[0][1].email is None
        assert pages[0][0].display_name == "Alice"

        first_sql, first_params = conn.execute.await_args_list[0].args
        second_sql, second_params = conn.execute.await_args_list[1].args
        assert 'ORDER BY "principalId" LIMIT :limit' in str(first_sql)
        assert first_params == {"limit": 2}
        assert 'WHERE "principalId" > :after' in str(second_sql)
        assert second_params == {"after": "u2", "limit": 2}

    @pytest.mark.asyncio
    async def test_full_last_page_queries_once_more(self) -> None:
        conn = make_connection(
            make_result([("u1", "Alice", "a@x.com")]),
            make_result([]),
        )
        store = PostgreSQLPrincipalStore(conn, enable_tracing=False)

        pages = [page async for page in store.iter_pages(page_size=1)]

        assert len(pages) == 1
        assert conn.execute.await_count == 2

    @pytest.mark.asyncio
    async def test_projection(self) -> None:
        conn = make_connection(make_result([("u1", "a@x.com")]))
        store = PostgreSQLPrincipalStore(conn, enable_tracing=False)

        [page] = [page async for page in store.iter_pages(["email"], page_size=5)]

        sql = str(conn.execute.await_args.args[0])
        assert sql.startswith('SELECT "principalId", "email" FROM "Principals"')
        assert page[0].email == "a@x.com"

    @pytest.mark.asyncio
    async def test_page_size_validated(self) -> None:
        store = PostgreSQLPrincipalStore(make_connection(), enable_tracing=False)
        with pytest.raises(ValueError):
            async for _ in store.iter_pages(page_size=0):
                pass

    @pytest.mark.asyncio
    async def test_driver_error_propagates(self) -> None:
        conn = MagicMock()
        conn.execute = AsyncMock(side_effect=OSError("connection refused"))
        store = PostgreSQLPrincipalStore(conn, enable_tracing=False)

        with pytest.raises(OSError):
            async for _ in store.iter_pages():
                pass


class TestRunBatch:
    """Tests for run_batch."""

    @pytest.mark.asyncio
    async def test_statements_grouped_into_executemany(self) -> None:
        conn = make_connection(MagicMock())
        store = PostgreSQLPrincipalStore(conn, enable_tracing=False)

        await store.run_batch([upsert("a@x.com", "u1"), upsert("b@x.com", "u2")])

        conn.execute.assert_awaited_once()
        _, params = conn.execute.await_args.args
        assert params == [{"p0": "a@x.com", "p1": "u1"}, {"p0": "b@x.com", "p1": "u2"}]
        conn.begin.assert_called_once()

    @pytest.mark.asyncio
    async def test_nested_transaction_on_busy_connection(self) -> None:
        conn = make_connection(MagicMock(), in_transaction=True)
        store = PostgreSQLPrincipalStore(conn, enable_tracing=False)

        await store.run_batch([upsert("a@x.com", "u1")])

        conn.begin_nested.assert_called_once()
        conn.begin.assert_not_called()

    @pytest.mark.asyncio
    async def test_engine_opens_transaction(self) -> None:
        conn = make_connection(MagicMock())
        engine = MagicMock(spec=AsyncEngine)
        engine.begin.return_value.__aenter__.return_value = conn
        store = PostgreSQLPrincipalStore(engine, enable_tracing=False)

        await store.run_batch([upsert("a@x.com", "u1")])

        engine.begin.assert_called_once()
        conn.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_error_propagates(self) -> None:
        conn = MagicMock()
        conn.in_transaction.return_value = False
        conn.execute = AsyncMock(side_effect=RuntimeError("write timeout"))
        store = PostgreSQLPrincipalStore(conn, enable_tracing=False)

        with pytest.raises(RuntimeError, match="write timeout"):
            await store.run_batch([upsert("a@x.com", "u1")])


class TestTracing:
    """Tests for composition-based tracing."""

    def test_tracing_disabled_when_requested(self) -> None:
        store = PostgreSQLPrincipalStore(MagicMock(), enable_tracing=False)
        assert store._enable_tracing is False
        assert store._tracer is not None

    @pytest.mark.asyncio
    async def test_run_batch_span(self) -> None:
        tracer = MockTracer()
        store = PostgreSQLPrincipalStore(make_connection(MagicMock()), tracer=tracer)

        await store.run_batch([upsert("a@x.com", "u1")])

        [(name, attributes)] = tracer.spans
        assert name == "emailindex.postgresql_store.run_batch"
        assert attributes[ATTR_DB_SYSTEM] == "postgresql"
        assert attributes[ATTR_BATCH_SIZE] == 1
