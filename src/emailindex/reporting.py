"""
Error reporting for principals that block the migration.

Every missing, invalid or duplicate email address becomes one row in a CSV
report that operators fix by hand before re-running the migration. The
report always starts with the header row, even when no row follows.

This module provides:
- Reporter: Protocol used by the validator and the uniqueness checker
- CSVErrorReporter: Writes rows to a CSV stream or file
- InMemoryErrorReporter: Keeps ErrorRecords in memory for tests
"""

from __future__ import annotations

import csv
import logging
import os
from pathlib import Path
from typing import IO, Any, Protocol, runtime_checkable

from emailindex.types import REPORT_COLUMNS, ErrorRecord

logger = logging.getLogger(__name__)


@runtime_checkable
class Reporter(Protocol):
    """
    Protocol for error reporters.

    ``report`` is fire-and-forget; ``finalize`` must be called before the
    process exits so no buffered row is lost.
    """

    def report(
        self,
        principal_id: str,
        display_name: str,
        email: str | None,
        message: str,
    ) -> None:
        """Append one diagnostic row."""
        ...

    def finalize(self) -> None:
        """Flush every buffered row and release the underlying resource."""
        ...

    @property
    def count(self) -> int:
        """Number of rows reported so far."""
        ...


class CSVErrorReporter:
    """
    Writes diagnostic rows to a CSV stream.

    The header is written as soon as the reporter is created. ``finalize``
    flushes the stream, syncs it to disk when it is backed by a file
    descriptor, and closes it when the reporter opened it. ``finalize`` is
    idempotent.

    Example:
        >>> with CSVErrorReporter.open("invalid-users.csv") as reporter:
        ...     reporter.report("u:cam:abc", "Alice", "", "missing email address")
    """

    def __init__(self, stream: IO[str], *, owns_stream: bool = False) -> None:
        """
        Initialize the reporter and write the header row.

        Args:
            stream: Text stream to write to
            owns_stream: Close the stream on finalize (default: False)
        """
        self._stream = stream
        self._owns_stream = owns_stream
        self._writer = csv.DictWriter(stream, fieldnames=list(REPORT_COLUMNS))
        self._writer.writeheader()
        self._count = 0
        self._finalized = False

    @classmethod
    def open(cls, path: str | os.PathLike[str]) -> CSVErrorReporter:
        """
        Create a reporter writing to a UTF-8 file, truncating it first.

        Args:
            path: Location of the CSV report

        Returns:
            A reporter that owns (and will close) the file
        """
        report_path = Path(path)
        stream = report_path.open("w", encoding="utf-8", newline="")
        logger.debug("Opened error report: %s", report_path)
        return cls(stream, owns_stream=True)

    def report(
        self,
        principal_id: str,
        display_name: str,
        email: str | None,
        message: str,
    ) -> None:
        """Append one row to the report."""
        self.report_record(ErrorRecord(principal_id, display_name, email, message))

    def report_record(self, record: ErrorRecord) -> None:
        """Append an already built ErrorRecord to the report."""
        if self._finalized:
            raise RuntimeError("Cannot report to a finalized error reporter")
        self._writer.writerow(record.to_row())
        self._count += 1

    def finalize(self) -> None:
        """Flush all rows to durable storage and close owned streams."""
        if self._finalized:
            return
        self._finalized = True

        self._stream.flush()
        try:
            fileno = self._stream.fileno()
        except (AttributeError, OSError, ValueError):
            fileno = None
        if fileno is not None:
            os.fsync(fileno)

        if self._owns_stream:
            self._stream.close()

        logger.debug("Error report finalized with %d row(s)", self._count)

    @property
    def count(self) -> int:
        """Number of rows reported so far (header excluded)."""
        return self._count

    @property
    def is_finalized(self) -> bool:
        """True once finalize() has run."""
        return self._finalized

    def __enter__(self) -> CSVErrorReporter:
        return self

    def __exit__(self, exc_type: type[BaseException] | None, exc_val: Any, exc_tb: Any) -> None:
        self.finalize()


class InMemoryErrorReporter:
    """
    Reporter that keeps ErrorRecords in a list. Useful for tests.

    Example:
        >>> reporter = InMemoryErrorReporter()
        >>> reporter.report("u1", "Alice", None, "missing email address")
        >>> reporter.records[0].message
        'missing email address'
    """

    def __init__(self) -> None:
        self.records: list[ErrorRecord] = []
        self.finalize_calls = 0

    def report(
        self,
        principal_id: str,
        display_name: str,
        email: str | None,
        message: str,
    ) -> None:
        """Append one record."""
        self.records.append(ErrorRecord(principal_id, display_name, email, message))

    def finalize(self) -> None:
        """Count finalize calls; nothing to flush."""
        self.finalize_calls += 1

    @property
    def count(self) -> int:
        """Number of records reported so far."""
        return len(self.records)

    @property
    def is_finalized(self) -> bool:
        """True once finalize() has been called at least once."""
        return self.finalize_calls > 0

    def messages(self) -> list[str]:
        """Get just the messages for easy assertions."""
        return [record.message for record in self.records]

    def clear(self) -> None:
        """Clear recorded rows. Useful for test setup/teardown."""
        self.records.clear()
