"""
Configuration for an email index migration run.

MigratorConfig is immutable and validated on construction. Values come from
keyword arguments, a dictionary, or ``EMAILINDEX_*`` environment variables;
the command line overlays its options on top of the environment.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import asdict, dataclass, fields, replace
from typing import Any

from emailindex.stores.interface import (
    EMAIL_INDEX_TABLE,
    PRINCIPAL_FIELDS,
    PRINCIPALS_TABLE,
    quote_identifier,
)

ENV_PREFIX = "EMAILINDEX_"

DEFAULT_PAGE_SIZE = 30
DEFAULT_CHUNK_SIZE = 30
DEFAULT_REPORT_PATH = "invalid-users.csv"


@dataclass(frozen=True)
class MigratorConfig:
    """
    Configuration for a migration run.

    Attributes:
        page_size: Principals per scanned page (default 30).
        chunk_size: Upserts per batch write (default 30).
        max_rate: Max mapping entries written per second, 0 for no limit (default 0).
        report_path: Location of the CSV error report (default "invalid-users.csv").
        principals_table: Table holding the principals (default "Principals").
        index_table: Email lookup table to fill (default "PrincipalsByEmail").
        index_key_column: Key column of the lookup table (default "email").
        index_value_column: Principal id column of the lookup table (default "principalId").
        scan_fields: Principal columns read during the scan.
        enable_tracing: Whether to emit OpenTelemetry spans (default True).

    Example:
        >>> config = MigratorConfig(chunk_size=10)
        >>> config.chunk_size
        10
    """

    page_size: int = DEFAULT_PAGE_SIZE
    chunk_size: int = DEFAULT_CHUNK_SIZE
    max_rate: int = 0
    report_path: str = DEFAULT_REPORT_PATH
    principals_table: str = PRINCIPALS_TABLE
    index_table: str = EMAIL_INDEX_TABLE
    index_key_column: str = "email"
    index_value_column: str = "principalId"
    scan_fields: tuple[str, ...] = PRINCIPAL_FIELDS
    enable_tracing: bool = True

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.page_size < 1:
            raise ValueError(f"page_size must be >= 1, got {self.page_size}")

        if self.chunk_size < 1:
            raise ValueError(f"chunk_size must be >= 1, got {self.chunk_size}")

        if self.max_rate < 0:
            raise ValueError(f"max_rate must be >= 0, got {self.max_rate}")

        if not self.report_path:
            raise ValueError("report_path must not be empty")

        for name in (
            self.principals_table,
            self.index_table,
            self.index_key_column,
            self.index_value_column,
            *self.scan_fields,
        ):
            quote_identifier(name)

        if self.index_key_column == self.index_value_column:
            raise ValueError("index_key_column and index_value_column must differ")

        # Accept any iterable of field names but store a tuple
        object.__setattr__(self, "scan_fields", tuple(self.scan_fields))

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain dictionary."""
        data = asdict(self)
        data["scan_fields"] = list(self.scan_fields)
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> MigratorConfig:
        """
        Create from a dictionary, ignoring unknown keys.

        Args:
            data: Dictionary containing configuration values.
        """
        known = {f.name for f in fields(cls)}
        values = {key: value for key, value in data.items() if key in known}
        if "scan_fields" in values:
            values["scan_fields"] = tuple(values["scan_fields"])
        return cls(**values)

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        prefix: str = ENV_PREFIX,
    ) -> MigratorConfig:
        """
        Create from ``EMAILINDEX_*`` environment variables.

        Example:
            >>> MigratorConfig.from_env({"EMAILINDEX_CHUNK_SIZE": "10"}).chunk_size
            10
        """
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}
        for f in fields(cls):
            raw = env.get(prefix + f.name.upper())
            if raw is None or raw == "":
                continue
            if f.name in ("page_size", "chunk_size", "max_rate"):
                values[f.name] = int(raw)
            elif f.name == "enable_tracing":
                values[f.name] = raw.strip().lower() in ("1", "true", "yes", "on")
            elif f.name == "scan_fields":
                values[f.name] = tuple(part.strip() for part in raw.split(",") if part.strip())
            else:
                values[f.name] = raw
        return cls(**values)

    def with_overrides(self, **overrides: Any) -> MigratorConfig:
        """Return a copy with every non-None override applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})
