"""
Store interfaces and core data structures.

The migration reads principals from one table and writes the email lookup
table through two narrow interfaces, so the same pipeline runs against
PostgreSQL, SQLite or an in-memory store.

This module provides:
- UpsertStatement: One insert-or-update of a keyed row
- PrincipalSource: Abstract paginated scanner over the principals table
- IndexStore: Abstract atomic batch writer
- PRINCIPAL_FIELDS / REQUIRED_FIELD: Column names of the principals table
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from emailindex.types import Principal

PRINCIPALS_TABLE = "Principals"
EMAIL_INDEX_TABLE = "PrincipalsByEmail"

REQUIRED_FIELD = "principalId"
PRINCIPAL_FIELDS = ("principalId", "displayName", "email")

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def quote_identifier(name: str) -> str:
    """
    Validate and double-quote a table or column name.

    Both PostgreSQL and SQLite accept double-quoted identifiers and keep
    their case, so ``PrincipalsByEmail`` stays mixed-case.

    Raises:
        ValueError: If ``name`` is not a plain identifier

    Example:
        >>> quote_identifier("principalId")
        '"principalId"'
    """
    if not _IDENTIFIER_RE.match(name):
        raise ValueError(f"Invalid SQL identifier: {name!r}")
    return f'"{name}"'


def scan_columns(fields: Iterable[str]) -> list[str]:
    """
    Normalize a scan projection.

    ``principalId`` is always included and comes first because it drives
    pagination. Duplicates are dropped, order is otherwise kept.
    """
    columns = [REQUIRED_FIELD]
    for name in fields:
        if name not in columns:
            columns.append(name)
    return columns


@dataclass(frozen=True)
class UpsertStatement:
    """
    Insert-or-update of one keyed row.

    Attributes:
        table: Target table
        key_column: Primary key column of the target table
        key_value: Value of the key for this row
        column_values: Non-key columns to set

    Example:
        >>> UpsertStatement(
        ...     table="PrincipalsByEmail",
        ...     key_column="email",
        ...     key_value="a@x.com",
        ...     column_values={"principalId": "u:cam:abc"},
        ... )
    """

    table: str
    key_column: str
    key_value: Any
    column_values: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Validate identifiers up front so bad names fail before any write."""
        quote_identifier(self.table)
        quote_identifier(self.key_column)
        for column in self.column_values:
            quote_identifier(column)
            if column == self.key_column:
                raise ValueError(f"column_values must not repeat the key column {column!r}")

    @property
    def columns(self) -> list[str]:
        """Key column followed by the value columns."""
        return [self.key_column, *self.column_values]

    @property
    def values(self) -> list[Any]:
        """Key value followed by the column values, aligned with :attr:`columns`."""
        return [self.key_value, *self.column_values.values()]


class PrincipalSource(ABC):
    """
    Abstract paginated scanner over the principals table.

    Implementations must:
    - visit every principal exactly once across pages
    - yield pages of at most ``page_size`` principals
    - fetch a page only when the caller asks for it, so at most one page
      is in flight
    - raise out of the iterator if the underlying scan fails
    """

    @abstractmethod
    def iter_pages(
        self,
        fields: Iterable[str] = PRINCIPAL_FIELDS,
        page_size: int = 30,
    ) -> AsyncIterator[list[Principal]]:
        """
        Iterate over all principals, one page at a time.

        Args:
            fields: Columns to project (``principalId`` is always included)
            page_size: Maximum principals per page

        Yields:
            Lists of Principal, none larger than ``page_size``

        Example:
            >>> async for page in source.iter_pages(page_size=30):
            ...     validator.validate(page)
        """
        ...


class IndexStore(ABC):
    """
    Abstract batch writer for the email lookup table.

    ``run_batch`` applies every statement of one call atomically: either all
    rows are written or, on failure, none of them are and the error is raised.
    """

    @abstractmethod
    async def run_batch(self, statements: list[UpsertStatement]) -> None:
        """
        Apply a batch of upserts as one atomic request.

        Args:
            statements: Upserts to apply

        Raises:
            Exception: Any driver error; the whole batch is rolled back
        """
        ...


def validate_page_size(page_size: int) -> None:
    """Raise ValueError unless page_size is a positive integer."""
    if page_size < 1:
        raise ValueError(f"page_size must be >= 1, got {page_size}")


__all__ = [
    "PRINCIPALS_TABLE",
    "EMAIL_INDEX_TABLE",
    "REQUIRED_FIELD",
    "PRINCIPAL_FIELDS",
    "UpsertStatement",
    "PrincipalSource",
    "IndexStore",
    "quote_identifier",
    "scan_columns",
    "validate_page_size",
]
