"""
Exceptions for the emailindex package.

Data-quality problems (missing, invalid or duplicate email addresses) are
never raised; they are written to the error report. The exceptions below
cover infrastructure failures and programming errors only.

Exception Hierarchy:
    EmailIndexError (base)
    +-- ScanError
    +-- BatchWriteError
    +-- InvalidStateTransitionError
    +-- StoreNotConnectedError
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from emailindex.runner import RunState


class EmailIndexError(Exception):
    """
    Base exception for the emailindex package.

    Attributes:
        message: Human-readable error description.
        exit_code: Process exit status to use when this error ends a run.
    """

    default_exit_code: int = 2

    def __init__(self, message: str, *, exit_code: int | None = None) -> None:
        self.message = message
        self.exit_code = exit_code if exit_code is not None else self.default_exit_code
        super().__init__(message)


class ScanError(EmailIndexError):
    """
    Raised when the paginated principal scan fails.

    The remaining pages are not requested once this is raised.

    Attributes:
        pages_read: Number of pages fully validated before the failure.
        original_error: The underlying error message.
    """

    default_exit_code = 2

    def __init__(
        self,
        error: str,
        *,
        pages_read: int = 0,
        exit_code: int | None = None,
    ) -> None:
        self.pages_read = pages_read
        self.original_error = error
        super().__init__(
            f"Principal scan failed after {pages_read} page(s): {error}",
            exit_code=exit_code,
        )


class BatchWriteError(EmailIndexError):
    """
    Raised when a batch of email mapping upserts fails.

    Chunks written before the failing one stay committed.

    Attributes:
        chunk_index: 0-based index of the chunk that failed.
        entries_migrated: Entries committed before the failure.
        original_error: The underlying error message.
    """

    default_exit_code = 3

    def __init__(
        self,
        chunk_index: int,
        entries_migrated: int,
        error: str,
        *,
        exit_code: int | None = None,
    ) -> None:
        self.chunk_index = chunk_index
        self.entries_migrated = entries_migrated
        self.original_error = error
        super().__init__(
            f"Batch write failed on chunk {chunk_index} "
            f"after {entries_migrated} committed entries: {error}",
            exit_code=exit_code,
        )


class InvalidStateTransitionError(EmailIndexError):
    """Raised when the run state machine is asked for an illegal transition."""

    def __init__(self, current: RunState, target: RunState) -> None:
        self.current = current
        self.target = target
        super().__init__(f"Invalid run state transition: {current.value} -> {target.value}")


class StoreNotConnectedError(EmailIndexError):
    """Raised when a store is used before its connection is opened."""

    def __init__(self, store_name: str) -> None:
        self.store_name = store_name
        super().__init__(
            f"{store_name} is not connected. Use 'async with store:' or call 'connect()' first."
        )


def derive_exit_code(error: BaseException, default: int) -> int:
    """
    Derive a failing exit status from an underlying exception.

    Driver errors that carry an integer ``code`` above 1 keep it; codes 0 and 1
    are reserved for success and data-quality failures, so anything else falls
    back to ``default``.
    """
    code = getattr(error, "code", None)
    if isinstance(code, int) and not isinstance(code, bool) and 1 < code < 256:
        return code
    return default
