"""
Standard span attributes for emailindex.

Attribute constants shared by the stores, the batch migrator and the run
orchestrator so spans carry consistent names. Database attributes follow the
OpenTelemetry semantic conventions.

Example:
    >>> from emailindex.observability.attributes import ATTR_BATCH_SIZE
    >>>
    >>> with tracer.span(
    ...     "emailindex.migrator.write_batch",
    ...     {ATTR_BATCH_SIZE: len(statements)},
    ... ):
    ...     pass
"""

# =============================================================================
# Scan Attributes
# =============================================================================

ATTR_PAGE_SIZE = "emailindex.scan.page_size"
"""Maximum number of principals per scanned page (integer)."""

ATTR_PAGE_NUMBER = "emailindex.scan.page_number"
"""1-based number of the page being validated (integer)."""

ATTR_PRINCIPAL_COUNT = "emailindex.scan.principal_count"
"""Number of principals in a page or in a whole scan (integer)."""

ATTR_SCAN_FIELDS = "emailindex.scan.fields"
"""Comma separated list of the projected principal fields (string)."""

# =============================================================================
# Index Attributes
# =============================================================================

ATTR_INDEX_TABLE = "emailindex.index.table"
"""Name of the email lookup table being written (string)."""

ATTR_INDEX_SIZE = "emailindex.index.size"
"""Number of distinct email addresses in the in-memory index (integer)."""

ATTR_DUPLICATE_COUNT = "emailindex.index.duplicate_count"
"""Number of email addresses claimed by more than one principal (integer)."""

# =============================================================================
# Migration Attributes
# =============================================================================

ATTR_BATCH_SIZE = "emailindex.migration.batch_size"
"""Number of upsert statements in one batch (integer)."""

ATTR_CHUNK_INDEX = "emailindex.migration.chunk_index"
"""0-based index of the chunk being written (integer)."""

ATTR_ENTRIES_TOTAL = "emailindex.migration.entries_total"
"""Number of mapping entries to migrate (integer)."""

ATTR_RUN_STATE = "emailindex.run.state"
"""Current state of the migration run (string)."""

# =============================================================================
# Database Attributes (OpenTelemetry Semantic Conventions)
# =============================================================================

ATTR_DB_SYSTEM = "db.system"
"""Database system identifier (e.g., 'sqlite', 'postgresql')."""

ATTR_DB_NAME = "db.name"
"""Database name being accessed."""

ATTR_DB_OPERATION = "db.operation"
"""Database operation type (e.g., 'UPSERT', 'SELECT')."""

# =============================================================================
# Error Attributes
# =============================================================================

ATTR_ERROR_TYPE = "error.type"
"""Exception class name of a failure (string)."""
