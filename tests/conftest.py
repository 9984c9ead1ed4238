"""
Shared pytest fixtures for the emailindex tests.

This module provides:
- Principal fixtures (sample_principals, valid_users)
- Store fixtures (in_memory_store, populated_store)
- Reporter fixtures (reporter)
- Tracing fixtures (mock_tracer)
- SQLite fixtures (sqlite_store)
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio

from emailindex.observability import MockTracer
from emailindex.reporting import InMemoryErrorReporter
from emailindex.stores.in_memory import InMemoryPrincipalStore
from emailindex.types import Principal
from tests.fixtures import make_group, make_user, make_users

# ============================================================================
# SQLite Availability Check
# ============================================================================

AIOSQLITE_AVAILABLE = False
try:
    import aiosqlite  # noqa: F401

    AIOSQLITE_AVAILABLE = True
except ImportError:
    pass


# ============================================================================
# Skip Condition
# ============================================================================

skip_if_no_aiosqlite = pytest.mark.skipif(not AIOSQLITE_AVAILABLE, reason="aiosqlite not installed")


# =============================================================================
# Principal Fixtures
# =============================================================================


@pytest.fixture
def sample_principals() -> list[Principal]:
    """
    Three users and one group covering every report message.

    u1 and u3 share an address, u2 has none, the group is ignored.
    """
    return [
        make_user("u1", "a@x.com", "Alice"),
        make_user("u2", None, "Bob"),
        make_user("u3", "a@x.com", "Carol"),
        make_group("g1", "Staff"),
    ]


@pytest.fixture
def valid_users() -> list[Principal]:
    """31 users with distinct valid addresses (one more than a chunk)."""
    return make_users(31)


# =============================================================================
# Store Fixtures
# =============================================================================


@pytest.fixture
def in_memory_store() -> InMemoryPrincipalStore:
    """Empty in-memory store with tracing disabled."""
    return InMemoryPrincipalStore(enable_tracing=False)


@pytest.fixture
def populated_store(sample_principals: list[Principal]) -> InMemoryPrincipalStore:
    """In-memory store holding the sample principals."""
    return InMemoryPrincipalStore(sample_principals, enable_tracing=False)


@pytest.fixture
def reporter() -> InMemoryErrorReporter:
    """Reporter that keeps rows in memory."""
    return InMemoryErrorReporter()


@pytest.fixture
def mock_tracer() -> MockTracer:
    """Tracer that records spans."""
    return MockTracer()


# =============================================================================
# SQLite Fixtures
# =============================================================================


@pytest_asyncio.fixture
async def sqlite_store() -> AsyncGenerator:
    """
    Connected in-memory SQLite store with the default schema.

    Skips the test if aiosqlite is not installed.
    """
    if not AIOSQLITE_AVAILABLE:
        pytest.skip("aiosqlite not installed")

    from emailindex.stores.sqlite import SQLitePrincipalStore

    store = SQLitePrincipalStore(":memory:", enable_tracing=False)
    async with store:
        await store.initialize()
        yield store
