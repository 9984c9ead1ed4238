"""
emailindex - Builds the email to principal lookup table for an existing
principal store.

This library provides:
- Paginated scan of the principals with per-user email validation
- CSV report of missing, invalid and duplicate email addresses
- Uniqueness gate that blocks the migration until the data is fixed
- Throttled, chunked batch writes of the lookup table
- PostgreSQL, SQLite and In-Memory principal stores
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("emailindex")
except PackageNotFoundError:
    # Package not installed (running from source without install)
    __version__ = "0.0.0.dev0"

from emailindex.config import MigratorConfig
from emailindex.emails import EmailPredicate, is_valid_email
from emailindex.exceptions import (
    BatchWriteError,
    EmailIndexError,
    InvalidStateTransitionError,
    ScanError,
    StoreNotConnectedError,
    derive_exit_code,
)
from emailindex.migrator import (
    BatchMigrator,
    MigrationProgress,
    MigrationResult,
    RateLimiter,
)
from emailindex.reporting import CSVErrorReporter, InMemoryErrorReporter, Reporter
from emailindex.runner import (
    EXIT_INVALID_DATA,
    EXIT_SUCCESS,
    MigrationRunner,
    RunResult,
    RunState,
)
from emailindex.stores import (
    SQLITE_AVAILABLE,
    InMemoryPrincipalStore,
    IndexStore,
    PostgreSQLPrincipalStore,
    PrincipalSource,
    UpsertStatement,
)
from emailindex.types import (
    DUPLICATE_EMAIL_MESSAGE,
    INVALID_EMAIL_MESSAGE,
    MISSING_EMAIL_MESSAGE,
    Claimant,
    EmailIndex,
    ErrorRecord,
    MappingEntry,
    Principal,
    ValidationState,
    is_user_id,
    principal_kind,
)
from emailindex.validation import (
    PageStats,
    RecordValidator,
    UniquenessChecker,
    check_uniqueness,
)

__all__ = [
    "__version__",
    # Types
    "Principal",
    "Claimant",
    "MappingEntry",
    "EmailIndex",
    "ValidationState",
    "ErrorRecord",
    "principal_kind",
    "is_user_id",
    "MISSING_EMAIL_MESSAGE",
    "INVALID_EMAIL_MESSAGE",
    "DUPLICATE_EMAIL_MESSAGE",
    # Email validation
    "EmailPredicate",
    "is_valid_email",
    # Reporting
    "Reporter",
    "CSVErrorReporter",
    "InMemoryErrorReporter",
    # Validation
    "PageStats",
    "RecordValidator",
    "UniquenessChecker",
    "check_uniqueness",
    # Migration
    "BatchMigrator",
    "MigrationProgress",
    "MigrationResult",
    "RateLimiter",
    # Orchestration
    "MigrationRunner",
    "RunResult",
    "RunState",
    "EXIT_SUCCESS",
    "EXIT_INVALID_DATA",
    "MigratorConfig",
    # Stores
    "PrincipalSource",
    "IndexStore",
    "UpsertStatement",
    "InMemoryPrincipalStore",
    "PostgreSQLPrincipalStore",
    "SQLITE_AVAILABLE",
    # Exceptions
    "EmailIndexError",
    "ScanError",
    "BatchWriteError",
    "InvalidStateTransitionError",
    "StoreNotConnectedError",
    "derive_exit_code",
]

if SQLITE_AVAILABLE:
    from emailindex.stores import SQLitePrincipalStore  # noqa: F401

    __all__.append("SQLitePrincipalStore")
