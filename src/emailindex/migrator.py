"""
BatchMigrator - Writes the email lookup table in throttled chunks.

Once every email address has been validated and found unique, the mapping
from email to principal id is persisted. Writing hundreds of thousands of
rows in one request would overwhelm the store, so the mapping is sliced
into fixed-size chunks and each chunk is sent as one atomic batch.

Responsibilities:
    - Slice the mapping into chunks of ``chunk_size`` entries
    - Keep exactly one batch in flight
    - Drop entries from the pending mapping as each chunk commits
    - Throttle throughput with a token bucket rate limiter
    - Report progress for monitoring

Failure semantics:
    The first failing batch aborts the migration. Chunks committed before it
    stay committed; nothing is retried or rolled back. The entries that were
    not committed are left in the mapping in their original order.

Usage:
    >>> migrator = BatchMigrator(store, chunk_size=30)
    >>> result = await migrator.migrate(index.to_mapping())
    >>> result.batches_written
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from emailindex.exceptions import BatchWriteError, derive_exit_code
from emailindex.observability import (
    ATTR_BATCH_SIZE,
    ATTR_CHUNK_INDEX,
    ATTR_ENTRIES_TOTAL,
    ATTR_INDEX_TABLE,
    Tracer,
    create_tracer,
)
from emailindex.stores.interface import EMAIL_INDEX_TABLE, IndexStore, UpsertStatement
from emailindex.types import MappingEntry

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 30


@dataclass(frozen=True)
class MigrationProgress:
    """
    Progress information for a running migration.

    Attributes:
        entries_migrated: Entries committed so far.
        entries_total: Entries in the mapping when the migration started.
        batches_written: Batches committed so far.
        entries_per_second: Current processing rate.
        is_complete: Whether every entry has been committed.
    """

    entries_migrated: int
    entries_total: int
    batches_written: int
    entries_per_second: float
    is_complete: bool

    @property
    def progress_percent(self) -> float:
        """Progress as percentage (0-100); 100 for an empty mapping."""
        if self.entries_total == 0:
            return 100.0
        return min(100.0, (self.entries_migrated / self.entries_total) * 100)


@dataclass(frozen=True)
class MigrationResult:
    """
    Result of a completed migration.

    Attributes:
        entries_migrated: Total number of entries committed.
        batches_written: Total number of batch requests issued.
        duration_seconds: Total time taken.
    """

    entries_migrated: int
    batches_written: int
    duration_seconds: float


class RateLimiter:
    """
    Throttles the upserts written per second across chunks.

    The migrator calls ``wait(len(chunk))`` between committed chunks. A token
    bucket holds at most ``max_rate`` upserts and refills continuously; a
    chunk costing more than what is left sleeps until the refill covers it.
    A ``max_rate`` of 0 turns throttling off.
    """

    def __init__(self, max_rate: int) -> None:
        self.max_rate = max_rate
        self._available = float(max_rate)
        self._refilled_at = time.monotonic()
        self._lock = asyncio.Lock()

    @property
    def enabled(self) -> bool:
        return self.max_rate > 0

    def _refill(self) -> None:
        now = time.monotonic()
        earned = (now - self._refilled_at) * self.max_rate
        self._available = min(float(self.max_rate), self._available + earned)
        self._refilled_at = now

    async def wait(self, upserts: int) -> None:
        """Sleep until ``upserts`` more writes fit in the per-second budget."""
        if not self.enabled:
            return

        async with self._lock:
            self._refill()
            shortfall = upserts - self._available
            if shortfall > 0:
                await asyncio.sleep(shortfall / self.max_rate)
                self._refill()
            # may go negative for chunks larger than max_rate; the next wait pays it back
            self._available -= upserts


class BatchMigrator:
    """
    Persists the email -> principal id mapping in fixed-size atomic batches.

    Example:
        >>> migrator = BatchMigrator(store, chunk_size=30, max_rate=500)
        >>> mapping = index.to_mapping()
        >>> result = await migrator.migrate(mapping)
        >>> assert mapping == []
    """

    def __init__(
        self,
        store: IndexStore,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        table: str = EMAIL_INDEX_TABLE,
        key_column: str = "email",
        value_column: str = "principalId",
        max_rate: int = 0,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the batch migrator.

        Args:
            store: Store receiving the batch upserts.
            chunk_size: Upserts per batch request (default 30).
            table: Lookup table keyed by email.
            key_column: Email column of the lookup table.
            value_column: Principal id column of the lookup table.
            max_rate: Max entries per second, 0 for no limit.
            tracer: Optional custom Tracer instance.
            enable_tracing: Whether to enable OpenTelemetry tracing.
        """
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be >= 1, got {chunk_size}")

        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._store = store
        self._chunk_size = chunk_size
        self._table = table
        self._key_column = key_column
        self._value_column = value_column
        self._max_rate = max_rate

    @property
    def chunk_size(self) -> int:
        """Maximum upserts per batch request."""
        return self._chunk_size

    def build_statements(self, entries: list[MappingEntry]) -> list[UpsertStatement]:
        """Build one upsert per mapping entry."""
        return [
            UpsertStatement(
                table=self._table,
                key_column=self._key_column,
                key_value=entry.email,
                column_values={self._value_column: entry.id},
            )
            for entry in entries
        ]

    async def migrate(
        self,
        mapping: list[MappingEntry],
        progress_callback: Callable[[MigrationProgress], None] | None = None,
    ) -> MigrationResult:
        """
        Write the mapping chunk by chunk, consuming it.

        Args:
            mapping: Entries to persist; emptied as chunks commit.
            progress_callback: Optional callback after every committed chunk.

        Returns:
            MigrationResult with totals.

        Raises:
            BatchWriteError: If a batch fails. ``mapping`` then holds the
                uncommitted entries in their original order.
        """
        entries_total = len(mapping)

        with self._tracer.span(
            "emailindex.migrator.migrate",
            {
                ATTR_INDEX_TABLE: self._table,
                ATTR_ENTRIES_TOTAL: entries_total,
                ATTR_BATCH_SIZE: self._chunk_size,
            },
        ):
            start_time = time.monotonic()
            rate_limiter = RateLimiter(self._max_rate)
            entries_migrated = 0
            chunk_index = 0

            logger.info(
                "Writing %d email mapping(s) to %s in chunks of %d",
                entries_total,
                self._table,
                self._chunk_size,
            )

            # Pending entries are kept reversed so each chunk is cut from the tail
            mapping.reverse()
            try:
                while mapping:
                    chunk = mapping[-self._chunk_size :]
                    chunk.reverse()

                    try:
                        await self._write_chunk(chunk_index, chunk)
                    except Exception as e:
                        logger.error(
                            "Batch write failed on chunk %d after %d committed entries: %s",
                            chunk_index,
                            entries_migrated,
                            e,
                        )
                        raise BatchWriteError(
                            chunk_index,
                            entries_migrated,
                            str(e),
                            exit_code=derive_exit_code(e, BatchWriteError.default_exit_code),
                        ) from e

                    del mapping[-len(chunk) :]
                    entries_migrated += len(chunk)
                    chunk_index += 1

                    elapsed = time.monotonic() - start_time
                    rate = entries_migrated / elapsed if elapsed > 0 else 0.0
                    progress = MigrationProgress(
                        entries_migrated=entries_migrated,
                        entries_total=entries_total,
                        batches_written=chunk_index,
                        entries_per_second=rate,
                        is_complete=not mapping,
                    )
                    if progress_callback:
                        progress_callback(progress)

                    if mapping:
                        await rate_limiter.wait(len(chunk))
            finally:
                mapping.reverse()

            duration = time.monotonic() - start_time
            logger.info(
                "Wrote %d email mapping(s) in %d batch(es) in %.1fs",
                entries_migrated,
                chunk_index,
                duration,
            )
            return MigrationResult(
                entries_migrated=entries_migrated,
                batches_written=chunk_index,
                duration_seconds=duration,
            )

    async def _write_chunk(self, chunk_index: int, chunk: list[MappingEntry]) -> None:
        statements = self.build_statements(chunk)
        with self._tracer.span(
            "emailindex.migrator.write_batch",
            {
                ATTR_INDEX_TABLE: self._table,
                ATTR_CHUNK_INDEX: chunk_index,
                ATTR_BATCH_SIZE: len(statements),
            },
        ):
            await self._store.run_batch(statements)
        logger.debug("Committed chunk %d (%d entries)", chunk_index, len(statements))
