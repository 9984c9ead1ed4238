"""
In-memory principal store for testing and development.

Implements both the paginated scanner and the batch writer over plain
dictionaries. Principals are scanned in insertion order. All data is lost
when the process terminates.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Iterable, Mapping
from typing import Any

from emailindex.observability import (
    ATTR_BATCH_SIZE,
    ATTR_DB_SYSTEM,
    ATTR_PAGE_SIZE,
    Tracer,
    create_tracer,
)
from emailindex.stores.interface import (
    PRINCIPAL_FIELDS,
    IndexStore,
    PrincipalSource,
    UpsertStatement,
    scan_columns,
    validate_page_size,
)
from emailindex.types import Principal

logger = logging.getLogger(__name__)


class InMemoryPrincipalStore(PrincipalSource, IndexStore):
    """
    In-memory implementation of the principal scanner and index writer.

    Every ``run_batch`` call is recorded in :attr:`batches` so tests can
    assert on how the migration was chunked.

    Example:
        >>> store = InMemoryPrincipalStore(
        ...     [Principal(principal_id="u:cam:abc", email="a@x.com")]
        ... )
        >>> await store.run_batch([UpsertStatement("PrincipalsByEmail", "email", "a@x.com",
        ...                                        {"principalId": "u:cam:abc"})])
        >>> store.get_row("PrincipalsByEmail", "a@x.com")
        {'email': 'a@x.com', 'principalId': 'u:cam:abc'}
    """

    def __init__(
        self,
        principals: Iterable[Principal | Mapping[str, Any]] | None = None,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the store.

        Args:
            principals: Initial principals (models or column mappings)
            tracer: Optional custom Tracer instance
            enable_tracing: Whether to enable OpenTelemetry tracing (default True)
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._principals: dict[str, Principal] = {}
        self._tables: dict[str, dict[Any, dict[str, Any]]] = {}
        self._lock = asyncio.Lock()
        self.batches: list[list[UpsertStatement]] = []
        self.pages_served = 0

        for principal in principals or ():
            self.add_principal(principal)

    def add_principal(self, principal: Principal | Mapping[str, Any]) -> Principal:
        """
        Add or replace a principal.

        Args:
            principal: A Principal or a mapping of column names to values

        Returns:
            The stored Principal
        """
        if not isinstance(principal, Principal):
            principal = Principal.model_validate(principal)
        self._principals[principal.principal_id] = principal
        return principal

    async def iter_pages(
        self,
        fields: Iterable[str] = PRINCIPAL_FIELDS,
        page_size: int = 30,
    ) -> AsyncIterator[list[Principal]]:
        """
        Iterate over the stored principals in insertion order.

        Fields outside the projection are returned with their defaults.
        Principals added while scanning are not visited.
        """
        validate_page_size(page_size)
        columns = scan_columns(fields)

        async with self._lock:
            snapshot = list(self._principals.values())

        for offset in range(0, len(snapshot), page_size):
            with self._tracer.span(
                "emailindex.in_memory_store.read_page",
                {ATTR_DB_SYSTEM: "memory", ATTR_PAGE_SIZE: page_size},
            ):
                page = [
                    Principal.model_validate(
                        principal.model_dump(by_alias=True, include=_python_names(columns))
                    )
                    for principal in snapshot[offset : offset + page_size]
                ]
            self.pages_served += 1
            yield page

    async def run_batch(self, statements: list[UpsertStatement]) -> None:
        """Apply all upserts under one lock acquisition."""
        with self._tracer.span(
            "emailindex.in_memory_store.run_batch",
            {ATTR_DB_SYSTEM: "memory", ATTR_BATCH_SIZE: len(statements)},
        ):
            async with self._lock:
                for statement in statements:
                    table = self._tables.setdefault(statement.table, {})
                    row = table.setdefault(
                        statement.key_value, {statement.key_column: statement.key_value}
                    )
                    row.update(statement.column_values)
                self.batches.append(list(statements))

            logger.debug("Applied batch of %d upsert(s)", len(statements))

    def get_row(self, table: str, key: Any) -> dict[str, Any] | None:
        """Get a copy of one row of a written table, or None."""
        row = self._tables.get(table, {}).get(key)
        return dict(row) if row is not None else None

    def get_table(self, table: str) -> dict[Any, dict[str, Any]]:
        """Get a copy of every row of a written table, keyed by primary key."""
        return {key: dict(row) for key, row in self._tables.get(table, {}).items()}

    async def clear(self) -> None:
        """Clear all principals, written tables and recorded batches."""
        async with self._lock:
            self._principals.clear()
            self._tables.clear()
            self.batches.clear()
            self.pages_served = 0

    def __len__(self) -> int:
        return len(self._principals)


_FIELD_NAMES = {
    "principalId": "principal_id",
    "displayName": "display_name",
    "email": "email",
}


def _python_names(columns: list[str]) -> set[str]:
    return {_FIELD_NAMES[column] for column in columns if column in _FIELD_NAMES}
