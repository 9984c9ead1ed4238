"""
MigrationRunner - Orchestrates one email index migration run.

A run is a strictly sequential, single-pass state machine:

    INIT -> SCANNING -> CHECKING_UNIQUENESS -> MIGRATING -> DONE
               |                |                 |
               v                v                 v
             FAILED          ABORTED            FAILED

- SCANNING: every page of principals is validated before the next one is
  requested; the email index is accumulated in memory.
- CHECKING_UNIQUENESS: runs after the whole scan; every duplicate address
  is reported.
- ABORTED: some address was missing, invalid or duplicated. Nothing is
  written and the run exits with status 1 so the operator can fix the
  reported principals and re-run.
- MIGRATING: the lookup table is written in throttled chunks.
- FAILED: the scan or a batch write hit an infrastructure error.

The error reporter is finalized on every path before ``run()`` returns.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from emailindex.config import MigratorConfig
from emailindex.emails import EmailPredicate, is_valid_email
from emailindex.exceptions import (
    BatchWriteError,
    EmailIndexError,
    InvalidStateTransitionError,
    ScanError,
    derive_exit_code,
)
from emailindex.migrator import BatchMigrator, MigrationProgress
from emailindex.observability import (
    ATTR_DUPLICATE_COUNT,
    ATTR_ERROR_TYPE,
    ATTR_INDEX_SIZE,
    ATTR_PAGE_NUMBER,
    ATTR_PAGE_SIZE,
    ATTR_PRINCIPAL_COUNT,
    ATTR_RUN_STATE,
    ATTR_SCAN_FIELDS,
    Tracer,
    create_tracer,
    record_attribute,
)
from emailindex.reporting import Reporter
from emailindex.stores.interface import IndexStore, PrincipalSource
from emailindex.types import EmailIndex, ValidationState
from emailindex.validation import RecordValidator, UniquenessChecker

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_INVALID_DATA = 1

OOM_WARNING = (
    "This migration keeps an in-memory mapping of every user and their email "
    "address. If there are too many users in the system the process may be "
    "killed by the OS OOM killer."
)


class RunState(Enum):
    """
    States of a migration run.

    Valid transitions:
        - INIT -> SCANNING: Run starts
        - SCANNING -> CHECKING_UNIQUENESS: Scan completed
        - SCANNING -> FAILED: Scan error
        - CHECKING_UNIQUENESS -> ABORTED: Invalid or duplicate emails
        - CHECKING_UNIQUENESS -> MIGRATING: All emails valid and unique
        - MIGRATING -> DONE: Every chunk committed
        - MIGRATING -> FAILED: Batch write error
    """

    INIT = "init"
    SCANNING = "scanning"
    CHECKING_UNIQUENESS = "checking_uniqueness"
    ABORTED = "aborted"
    MIGRATING = "migrating"
    DONE = "done"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Terminal states are DONE, ABORTED and FAILED."""
        return self in (RunState.DONE, RunState.ABORTED, RunState.FAILED)

    def can_transition_to(self, target: RunState) -> bool:
        """
        Check if transition to target state is valid.

        Args:
            target: The target state to transition to.

        Returns:
            True if the transition is valid.
        """
        valid_transitions: dict[RunState, list[RunState]] = {
            RunState.INIT: [RunState.SCANNING],
            RunState.SCANNING: [RunState.CHECKING_UNIQUENESS, RunState.FAILED],
            RunState.CHECKING_UNIQUENESS: [RunState.ABORTED, RunState.MIGRATING],
            RunState.MIGRATING: [RunState.DONE, RunState.FAILED],
        }
        return target in valid_transitions.get(self, [])


@dataclass(frozen=True)
class RunResult:
    """
    Outcome of a migration run.

    Attributes:
        state: Terminal state reached.
        exit_code: Process exit status for this outcome.
        principals_scanned: Principals of any kind scanned.
        users_scanned: User principals scanned.
        pages_read: Pages fully validated.
        errors_reported: Rows written to the error report.
        entries_migrated: Lookup rows committed.
        batches_written: Batch requests committed.
        duration_seconds: Wall time of the run.
        error: Infrastructure error that failed the run, if any.
    """

    state: RunState
    exit_code: int
    principals_scanned: int = 0
    users_scanned: int = 0
    pages_read: int = 0
    errors_reported: int = 0
    entries_migrated: int = 0
    batches_written: int = 0
    duration_seconds: float = 0.0
    error: EmailIndexError | None = None

    @property
    def succeeded(self) -> bool:
        """True if the run migrated the whole mapping."""
        return self.state == RunState.DONE


class MigrationRunner:
    """
    Runs scan, validation, uniqueness check and migration in order.

    The runner owns the email index and validation state for one run and
    passes them to the validator and checker. It may run only once.

    Example:
        >>> with CSVErrorReporter.open("invalid-users.csv") as reporter:
        ...     runner = MigrationRunner(store, store, reporter)
        ...     result = await runner.run()
        >>> sys.exit(result.exit_code)
    """

    def __init__(
        self,
        source: PrincipalSource,
        store: IndexStore,
        reporter: Reporter,
        config: MigratorConfig | None = None,
        *,
        email_predicate: EmailPredicate = is_valid_email,
        progress_callback: Callable[[MigrationProgress], None] | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool | None = None,
    ) -> None:
        """
        Initialize the runner.

        Args:
            source: Paginated scanner over the principals.
            store: Batch writer for the lookup table.
            reporter: Receives one row per violation; finalized by run().
            config: Run configuration (defaults to MigratorConfig()).
            email_predicate: Email syntax check.
            progress_callback: Optional callback for migration progress.
            tracer: Optional custom Tracer instance.
            enable_tracing: Overrides config.enable_tracing when given.
        """
        self._config = config or MigratorConfig()
        if enable_tracing is None:
            enable_tracing = self._config.enable_tracing
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._source = source
        self._store = store
        self._reporter = reporter
        self._progress_callback = progress_callback

        self._index = EmailIndex()
        self._validation = ValidationState()
        self._validator = RecordValidator(
            self._index,
            self._validation,
            reporter,
            email_predicate=email_predicate,
        )
        self._checker = UniquenessChecker(reporter)
        self._migrator = BatchMigrator(
            store,
            chunk_size=self._config.chunk_size,
            table=self._config.index_table,
            key_column=self._config.index_key_column,
            value_column=self._config.index_value_column,
            max_rate=self._config.max_rate,
            tracer=self._tracer,
        )

        self._state = RunState.INIT
        self._pages_read = 0
        self._entries_migrated = 0
        self._batches_written = 0

    @property
    def state(self) -> RunState:
        """Current state of the run."""
        return self._state

    @property
    def index(self) -> EmailIndex:
        """The email index accumulated by the scan."""
        return self._index

    @property
    def validation(self) -> ValidationState:
        """The validity and uniqueness gates."""
        return self._validation

    def _transition(self, target: RunState) -> None:
        if not self._state.can_transition_to(target):
            raise InvalidStateTransitionError(self._state, target)
        logger.debug("Run state %s -> %s", self._state.value, target.value)
        self._state = target

    async def run(self) -> RunResult:
        """
        Execute the run to a terminal state.

        Returns:
            RunResult describing the outcome. Infrastructure errors are
            captured in ``RunResult.error`` rather than raised.

        Raises:
            InvalidStateTransitionError: If the runner was already used.
        """
        start_time = time.monotonic()
        self._transition(RunState.SCANNING)

        error: EmailIndexError | None = None
        with self._tracer.span(
            "emailindex.runner.run",
            {ATTR_PAGE_SIZE: self._config.page_size},
        ) as span:
            try:
                logger.warning(OOM_WARNING)
                logger.info(
                    "Users whose email address is missing, invalid or shared will be "
                    "written to %s",
                    self._config.report_path,
                )

                error = await self._scan()
                if error is None:
                    self._transition(RunState.CHECKING_UNIQUENESS)
                    if self._check():
                        self._transition(RunState.MIGRATING)
                        error = await self._migrate()
            finally:
                self._reporter.finalize()

            record_attribute(span, ATTR_RUN_STATE, self._state.value)
            if error is not None:
                record_attribute(span, ATTR_ERROR_TYPE, type(error).__name__)

        duration = time.monotonic() - start_time
        if self._state == RunState.DONE:
            logger.info("Migration completed, it took %d milliseconds", duration * 1000)
        elif self._state == RunState.ABORTED:
            logger.error(
                "Not all persisted email addresses are valid or unique. "
                "Please fix the %d reported issue(s) before continuing. "
                "Validation failed after %d milliseconds",
                self._reporter.count,
                duration * 1000,
            )
        else:
            logger.error("Migration failed after %d milliseconds: %s", duration * 1000, error)

        totals = self._validator.totals
        return RunResult(
            state=self._state,
            exit_code=self._exit_code(error),
            principals_scanned=totals.principals_seen,
            users_scanned=totals.users_seen,
            pages_read=self._pages_read,
            errors_reported=self._reporter.count,
            entries_migrated=self._entries_migrated,
            batches_written=self._batches_written,
            duration_seconds=duration,
            error=error,
        )

    async def _scan(self) -> ScanError | None:
        logger.info("Checking whether the persisted email addresses are valid")
        fields = self._config.scan_fields
        try:
            async for page in self._source.iter_pages(fields, self._config.page_size):
                with self._tracer.span(
                    "emailindex.runner.validate_page",
                    {
                        ATTR_PAGE_NUMBER: self._pages_read + 1,
                        ATTR_PRINCIPAL_COUNT: len(page),
                        ATTR_SCAN_FIELDS: ",".join(fields),
                    },
                ):
                    self._validator.validate(page)
                self._pages_read += 1
        except Exception as e:
            logger.error("Unable to check the persisted email addresses: %s", e)
            self._transition(RunState.FAILED)
            return ScanError(
                str(e),
                pages_read=self._pages_read,
                exit_code=derive_exit_code(e, ScanError.default_exit_code),
            )

        totals = self._validator.totals
        logger.info(
            "Scanned %d principal(s) in %d page(s): %d user(s), %d missing and %d invalid "
            "email address(es)",
            totals.principals_seen,
            self._pages_read,
            totals.users_seen,
            totals.missing,
            totals.invalid,
        )
        return None

    def _check(self) -> bool:
        logger.info("Checking whether the persisted email addresses are unique")
        with self._tracer.span(
            "emailindex.runner.check_uniqueness",
            {ATTR_INDEX_SIZE: len(self._index)},
        ) as span:
            unique = self._checker.check(self._index)
            self._validation.emails_unique = unique
            record_attribute(
                span, ATTR_DUPLICATE_COUNT, sum(1 for _ in self._index.duplicates())
            )

        if not self._validation.passed:
            self._transition(RunState.ABORTED)
            return False
        return True

    async def _migrate(self) -> BatchWriteError | None:
        logger.info("Starting migration process, please be patient as this might take a while")
        mapping = self._index.to_mapping()
        entries_total = len(mapping)

        def on_progress(progress: MigrationProgress) -> None:
            self._entries_migrated = progress.entries_migrated
            self._batches_written = progress.batches_written
            logger.debug(
                "Migrated %d/%d email mapping(s) (%.1f%%)",
                progress.entries_migrated,
                progress.entries_total,
                progress.progress_percent,
            )
            if self._progress_callback:
                self._progress_callback(progress)

        try:
            await self._migrator.migrate(mapping, progress_callback=on_progress)
        except BatchWriteError as e:
            logger.error("Unable to create the email mapping: %s", e)
            self._transition(RunState.FAILED)
            return e

        logger.info("Created %d email mapping(s)", entries_total)
        self._transition(RunState.DONE)
        return None

    def _exit_code(self, error: EmailIndexError | None) -> int:
        if self._state == RunState.DONE:
            return EXIT_SUCCESS
        if self._state == RunState.ABORTED:
            return EXIT_INVALID_DATA
        if error is not None:
            return error.exit_code
        return EmailIndexError.default_exit_code
