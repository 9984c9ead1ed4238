"""
Unit tests for MigrationRunner.

Tests cover:
- RunState transitions
- Abort on invalid or duplicate addresses
- Successful migration
- Scan and batch failures with their exit codes
- Reporter finalization on every path
"""

import logging

import pytest

from emailindex.config import MigratorConfig
from emailindex.exceptions import (
    BatchWriteError,
    InvalidStateTransitionError,
    ScanError,
)
from emailindex.observability import MockTracer
from emailindex.reporting import InMemoryErrorReporter
from emailindex.runner import (
    EXIT_INVALID_DATA,
    EXIT_SUCCESS,
    MigrationRunner,
    RunState,
)
from emailindex.stores.in_memory import InMemoryPrincipalStore
from emailindex.types import (
    DUPLICATE_EMAIL_MESSAGE,
    MISSING_EMAIL_MESSAGE,
    ErrorRecord,
    Principal,
)
from tests.fixtures import (
    CodedError,
    FailingIndexStore,
    FailingPrincipalSource,
    make_user,
    make_users,
)

CONFIG = MigratorConfig(enable_tracing=False)


class TestRunState:
    """Tests for RunState transitions."""

    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (RunState.INIT, RunState.SCANNING),
            (RunState.SCANNING, RunState.CHECKING_UNIQUENESS),
            (RunState.SCANNING, RunState.FAILED),
            (RunState.CHECKING_UNIQUENESS, RunState.ABORTED),
            (RunState.CHECKING_UNIQUENESS, RunState.MIGRATING),
            (RunState.MIGRATING, RunState.DONE),
            (RunState.MIGRATING, RunState.FAILED),
        ],
    )
    def test_valid_transitions(self, current: RunState, target: RunState) -> None:
        assert current.can_transition_to(target)

    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (RunState.INIT, RunState.MIGRATING),
            (RunState.SCANNING, RunState.MIGRATING),
            (RunState.ABORTED, RunState.MIGRATING),
            (RunState.DONE, RunState.SCANNING),
            (RunState.FAILED, RunState.SCANNING),
        ],
    )
    def test_invalid_transitions(self, current: RunState, target: RunState) -> None:
        assert not current.can_transition_to(target)

    def test_terminal_states(self) -> None:
        assert {state for state in RunState if state.is_terminal} == {
            RunState.DONE,
            RunState.ABORTED,
            RunState.FAILED,
        }


class TestMigrationRunnerAbort:
    """Runs that stop before migrating."""

    @pytest.mark.asyncio
    async def test_missing_and_duplicate_emails(
        self,
        populated_store: InMemoryPrincipalStore,
        reporter: InMemoryErrorReporter,
    ) -> None:
        runner = MigrationRunner(populated_store, populated_store, reporter, CONFIG)

        result = await runner.run()

        assert result.state == RunState.ABORTED
        assert result.exit_code == EXIT_INVALID_DATA
        assert reporter.records == [
            ErrorRecord("u2", "Bob", None, MISSING_EMAIL_MESSAGE),
            ErrorRecord("u1 - u3", "Alice - Carol", "a@x.com", DUPLICATE_EMAIL_MESSAGE),
        ]
        assert populated_store.batches == []
        assert result.entries_migrated == 0
        assert result.errors_reported == 2
        assert reporter.finalize_calls == 1

    @pytest.mark.asyncio
    async def test_uniqueness_checked_even_when_invalid(
        self, reporter: InMemoryErrorReporter
    ) -> None:
        store = InMemoryPrincipalStore(
            [make_user("u1", "bad"), make_user("u2", "a@x.com"), make_user("u3", "a@x.com")],
            enable_tracing=False,
        )
        runner = MigrationRunner(store, store, reporter, CONFIG)

        result = await runner.run()

        assert result.state == RunState.ABORTED
        assert reporter.messages() == ["invalid email address", DUPLICATE_EMAIL_MESSAGE]
        assert runner.validation.emails_valid is False
        assert runner.validation.emails_unique is False

    @pytest.mark.asyncio
    async def test_invalid_only_aborts(self, reporter: InMemoryErrorReporter) -> None:
        store = InMemoryPrincipalStore([make_user("u1", None)], enable_tracing=False)

        result = await MigrationRunner(store, store, reporter, CONFIG).run()

        assert result.exit_code == EXIT_INVALID_DATA
        assert store.batches == []

    @pytest.mark.asyncio
    async def test_abort_logs_failure(
        self,
        populated_store: InMemoryPrincipalStore,
        reporter: InMemoryErrorReporter,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        with caplog.at_level(logging.INFO, logger="emailindex"):
            await MigrationRunner(populated_store, populated_store, reporter, CONFIG).run()

        assert "Not all persisted email addresses are valid or unique" in caplog.text
        assert "Validation failed after" in caplog.text
        assert "OOM" in caplog.text
        assert CONFIG.report_path in caplog.text


class TestMigrationRunnerSuccess:
    """Runs that migrate the whole mapping."""

    @pytest.mark.asyncio
    async def test_31_valid_users(
        self, valid_users: list[Principal], reporter: InMemoryErrorReporter
    ) -> None:
        store = InMemoryPrincipalStore(valid_users, enable_tracing=False)
        runner = MigrationRunner(store, store, reporter, CONFIG)

        result = await runner.run()

        assert result.state == RunState.DONE
        assert result.exit_code == EXIT_SUCCESS
        assert result.succeeded
        assert result.users_scanned == 31
        assert result.pages_read == 2
        assert result.entries_migrated == 31
        assert result.batches_written == 2
        assert [len(batch) for batch in store.batches] == [30, 1]
        assert reporter.count == 0
        assert reporter.finalize_calls == 1
        assert store.get_row("PrincipalsByEmail", "user0@oae.org") == {
            "email": "user0@oae.org",
            "principalId": "u:cam:0000",
        }

    @pytest.mark.asyncio
    async def test_empty_store(self, reporter: InMemoryErrorReporter) -> None:
        store = InMemoryPrincipalStore(enable_tracing=False)

        result = await MigrationRunner(store, store, reporter, CONFIG).run()

        assert result.state == RunState.DONE
        assert result.exit_code == EXIT_SUCCESS
        assert store.batches == []

    @pytest.mark.asyncio
    async def test_groups_not_migrated(self, reporter: InMemoryErrorReporter) -> None:
        store = InMemoryPrincipalStore(
            [
                make_user("u1", "a@x.com"),
                Principal(principal_id="g1", display_name="Staff", email="a@x.com"),
            ],
            enable_tracing=False,
        )

        result = await MigrationRunner(store, store, reporter, CONFIG).run()

        assert result.state == RunState.DONE
        assert store.get_table("PrincipalsByEmail") == {
            "a@x.com": {"email": "a@x.com", "principalId": "u1"}
        }

    @pytest.mark.asyncio
    async def test_custom_chunk_and_page_size(self, reporter: InMemoryErrorReporter) -> None:
        store = InMemoryPrincipalStore(make_users(10), enable_tracing=False)
        config = MigratorConfig(page_size=4, chunk_size=3, enable_tracing=False)

        result = await MigrationRunner(store, store, reporter, config).run()

        assert result.pages_read == 3
        assert [len(batch) for batch in store.batches] == [3, 3, 3, 1]

    @pytest.mark.asyncio
    async def test_completion_logged(
        self, reporter: InMemoryErrorReporter, caplog: pytest.LogCaptureFixture
    ) -> None:
        store = InMemoryPrincipalStore(make_users(2), enable_tracing=False)
        with caplog.at_level(logging.INFO, logger="emailindex"):
            await MigrationRunner(store, store, reporter, CONFIG).run()

        assert "Migration completed, it took" in caplog.text

    @pytest.mark.asyncio
    async def test_progress_callback(self, reporter: InMemoryErrorReporter) -> None:
        store = InMemoryPrincipalStore(make_users(31), enable_tracing=False)
        updates = []

        await MigrationRunner(
            store, store, reporter, CONFIG, progress_callback=updates.append
        ).run()

        assert [update.entries_migrated for update in updates] == [30, 31]

    @pytest.mark.asyncio
    async def test_spans(self, reporter: InMemoryErrorReporter, mock_tracer: MockTracer) -> None:
        store = InMemoryPrincipalStore(make_users(2), enable_tracing=False)

        await MigrationRunner(store, store, reporter, CONFIG, tracer=mock_tracer).run()

        assert mock_tracer.span_names == [
            "emailindex.runner.run",
            "emailindex.runner.validate_page",
            "emailindex.runner.check_uniqueness",
            "emailindex.migrator.migrate",
            "emailindex.migrator.write_batch",
        ]


class TestMigrationRunnerFailures:
    """Runs that fail on infrastructure errors."""

    @pytest.mark.asyncio
    async def test_scan_failure_on_page_two(self, reporter: InMemoryErrorReporter) -> None:
        principals = make_users(150)
        # One invalid user on each of the first two pages of 30
        principals[0] = make_user("u:cam:0000", None, "First")
        principals[30] = make_user("u:cam:0030", None, "Second")
        source = FailingPrincipalSource(principals, fail_on_page=2)
        store = InMemoryPrincipalStore(enable_tracing=False)

        result = await MigrationRunner(source, store, reporter, CONFIG).run()

        assert result.state == RunState.FAILED
        assert result.exit_code == 2
        assert isinstance(result.error, ScanError)
        assert result.error.pages_read == 1
        assert result.pages_read == 1
        assert source.pages_requested == 2
        assert [r.principal_id for r in reporter.records] == ["u:cam:0000"]
        assert reporter.finalize_calls == 1
        assert store.batches == []

    @pytest.mark.asyncio
    async def test_scan_failure_uses_driver_code(self, reporter: InMemoryErrorReporter) -> None:
        source = FailingPrincipalSource(
            make_users(5), fail_on_page=1, error=CodedError("unavailable", 42)
        )
        store = InMemoryPrincipalStore(enable_tracing=False)

        result = await MigrationRunner(source, store, reporter, CONFIG).run()

        assert result.exit_code == 42

    @pytest.mark.asyncio
    async def test_batch_failure(self, reporter: InMemoryErrorReporter) -> None:
        source = InMemoryPrincipalStore(make_users(75), enable_tracing=False)
        store = FailingIndexStore(fail_on_batch=2)

        result = await MigrationRunner(source, store, reporter, CONFIG).run()

        assert result.state == RunState.FAILED
        assert result.exit_code == 3
        assert isinstance(result.error, BatchWriteError)
        assert result.entries_migrated == 30
        assert result.batches_written == 1
        assert len(store.committed_keys) == 30
        assert store.calls == 2
        assert reporter.finalize_calls == 1

    @pytest.mark.asyncio
    async def test_runner_runs_once(
        self, populated_store: InMemoryPrincipalStore, reporter: InMemoryErrorReporter
    ) -> None:
        runner = MigrationRunner(populated_store, populated_store, reporter, CONFIG)
        await runner.run()

        with pytest.raises(InvalidStateTransitionError):
            await runner.run()
