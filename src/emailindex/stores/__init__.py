"""Principal store implementations for the emailindex package."""

from emailindex.stores.in_memory import InMemoryPrincipalStore
from emailindex.stores.interface import (
    EMAIL_INDEX_TABLE,
    PRINCIPAL_FIELDS,
    PRINCIPALS_TABLE,
    REQUIRED_FIELD,
    IndexStore,
    PrincipalSource,
    UpsertStatement,
    quote_identifier,
    scan_columns,
)
from emailindex.stores.postgresql import PostgreSQLPrincipalStore

# SQLite support is optional - only import if aiosqlite is available
try:
    from emailindex.stores.sqlite import SQLitePrincipalStore  # noqa: F401

    SQLITE_AVAILABLE = True
except ImportError:
    SQLITE_AVAILABLE = False

__all__ = [
    # Data structures
    "UpsertStatement",
    "PRINCIPALS_TABLE",
    "EMAIL_INDEX_TABLE",
    "PRINCIPAL_FIELDS",
    "REQUIRED_FIELD",
    "quote_identifier",
    "scan_columns",
    # Abstract base classes
    "PrincipalSource",
    "IndexStore",
    # Concrete implementations
    "InMemoryPrincipalStore",
    "PostgreSQLPrincipalStore",
    "SQLITE_AVAILABLE",
]

# Add SQLitePrincipalStore to __all__ only if available
if SQLITE_AVAILABLE:
    __all__.append("SQLitePrincipalStore")
