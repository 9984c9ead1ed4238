"""
Command line entry point for the email index migration.

Usage:
    emailindex-migrate --database sqlite:///principals.db
    emailindex-migrate --database postgresql+asyncpg://localhost/oae --max-rate 500
    python -m emailindex --database memory:// --verbose

Options not given on the command line fall back to ``EMAILINDEX_*``
environment variables, then to the defaults of MigratorConfig.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass

from emailindex.config import MigratorConfig
from emailindex.exceptions import EmailIndexError, derive_exit_code
from emailindex.reporting import CSVErrorReporter
from emailindex.runner import MigrationRunner
from emailindex.stores.in_memory import InMemoryPrincipalStore
from emailindex.stores.interface import IndexStore, PrincipalSource

logger = logging.getLogger("emailindex")

SQLITE_SCHEME = "sqlite:///"
MEMORY_URL = "memory://"
DATABASE_ENV = "EMAILINDEX_DATABASE"

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass(frozen=True)
class OpenedStore:
    """A store that is both the principal source and the index writer."""

    source: PrincipalSource
    store: IndexStore


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for ``emailindex-migrate``."""
    parser = argparse.ArgumentParser(
        prog="emailindex-migrate",
        description=(
            "Validate every user's email address and build the email to "
            "principal lookup table."
        ),
    )
    parser.add_argument(
        "--database",
        default=None,
        help=(
            "Database URL: sqlite:///path, memory:// or a SQLAlchemy async URL "
            f"such as postgresql+asyncpg://host/db (default: ${DATABASE_ENV})"
        ),
    )
    parser.add_argument(
        "--output",
        default=None,
        help="CSV file receiving the invalid users (default: invalid-users.csv)",
    )
    parser.add_argument(
        "--page-size",
        type=int,
        default=None,
        help="Principals read per page (default: 30)",
    )
    parser.add_argument(
        "--chunk-size",
        type=int,
        default=None,
        help="Upserts per batch write (default: 30)",
    )
    parser.add_argument(
        "--max-rate",
        type=int,
        default=None,
        help="Maximum mappings written per second, 0 for no limit (default: 0)",
    )
    parser.add_argument(
        "--init-schema",
        action="store_true",
        help="Create the tables if missing (SQLite only)",
    )
    parser.add_argument(
        "--no-tracing",
        action="store_true",
        help="Disable OpenTelemetry spans",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Log debug messages",
    )
    return parser


def configure_logging(verbose: bool = False) -> None:
    """Send log records to stdout at INFO, or DEBUG when verbose."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        stream=sys.stdout,
    )


def config_from_args(
    args: argparse.Namespace,
    base: MigratorConfig | None = None,
) -> MigratorConfig:
    """Overlay command line options on a base configuration."""
    config = base if base is not None else MigratorConfig.from_env()
    return config.with_overrides(
        report_path=args.output,
        page_size=args.page_size,
        chunk_size=args.chunk_size,
        max_rate=args.max_rate,
        enable_tracing=False if args.no_tracing else None,
    )


@asynccontextmanager
async def open_store(
    url: str,
    config: MigratorConfig,
    *,
    init_schema: bool = False,
) -> AsyncIterator[OpenedStore]:
    """
    Open the store addressed by ``url`` for the duration of a run.

    Args:
        url: ``sqlite:///path``, ``memory://`` or a SQLAlchemy async URL.
        config: Run configuration (table names and tracing).
        init_schema: Create the SQLite tables if missing.

    Raises:
        ValueError: If the URL is empty, or schema creation is requested
            for a store that does not support it.
    """
    if not url:
        raise ValueError(f"No database given; use --database or set {DATABASE_ENV}")

    if url == MEMORY_URL:
        memory_store = InMemoryPrincipalStore(enable_tracing=config.enable_tracing)
        yield OpenedStore(memory_store, memory_store)
        return

    if url.startswith(SQLITE_SCHEME):
        from emailindex.stores.sqlite import SQLitePrincipalStore

        sqlite_store = SQLitePrincipalStore(
            url[len(SQLITE_SCHEME) :] or ":memory:",
            principals_table=config.principals_table,
            enable_tracing=config.enable_tracing,
        )
        async with sqlite_store:
            if init_schema:
                await sqlite_store.initialize()
            yield OpenedStore(sqlite_store, sqlite_store)
        return

    if init_schema:
        raise ValueError("--init-schema is only supported for SQLite databases")

    from sqlalchemy.ext.asyncio import create_async_engine

    from emailindex.stores.postgresql import PostgreSQLPrincipalStore

    engine = create_async_engine(url)
    try:
        pg_store = PostgreSQLPrincipalStore(
            engine,
            principals_table=config.principals_table,
            enable_tracing=config.enable_tracing,
        )
        yield OpenedStore(pg_store, pg_store)
    finally:
        await engine.dispose()


async def run_migration(url: str, config: MigratorConfig, *, init_schema: bool = False) -> int:
    """
    Run one migration against ``url`` and return the process exit code.

    Failing to create the report or to open the store is logged and mapped
    to a failure code, as is any unexpected error raised by the run.
    """
    try:
        reporter = CSVErrorReporter.open(config.report_path)
    except OSError as e:
        logger.error("Unable to create the error report %s: %s", config.report_path, e)
        return derive_exit_code(e, EmailIndexError.default_exit_code)

    with reporter:
        try:
            async with open_store(url, config, init_schema=init_schema) as opened:
                runner = MigrationRunner(opened.source, opened.store, reporter, config)
                result = await runner.run()
            return result.exit_code
        except EmailIndexError as e:
            logger.error("Migration aborted: %s", e)
            return e.exit_code
        except Exception as e:
            logger.error("Migration aborted: %s", e)
            return derive_exit_code(e, EmailIndexError.default_exit_code)


def main(argv: Sequence[str] | None = None) -> int:
    """Parse arguments, run the migration and return its exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    try:
        config = config_from_args(args)
    except ValueError as e:
        parser.error(str(e))

    url = args.database
    if url is None:
        url = os.environ.get(DATABASE_ENV, "")

    return asyncio.run(run_migration(url, config, init_schema=args.init_schema))


def run() -> None:
    """Console script entry point."""
    sys.exit(main())


if __name__ == "__main__":
    run()
