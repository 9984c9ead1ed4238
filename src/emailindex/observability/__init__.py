"""
Observability utilities for emailindex.

Provides the composition-based tracer used by the stores, the batch migrator
and the run orchestrator, plus the standard span attribute names.

Note:
    OpenTelemetry is an optional dependency. Everything in this module works
    without it; spans simply become no-ops.
"""

from emailindex.observability.attributes import (
    ATTR_BATCH_SIZE,
    ATTR_CHUNK_INDEX,
    ATTR_DB_NAME,
    ATTR_DB_OPERATION,
    ATTR_DB_SYSTEM,
    ATTR_DUPLICATE_COUNT,
    ATTR_ENTRIES_TOTAL,
    ATTR_ERROR_TYPE,
    ATTR_INDEX_SIZE,
    ATTR_INDEX_TABLE,
    ATTR_PAGE_NUMBER,
    ATTR_PAGE_SIZE,
    ATTR_PRINCIPAL_COUNT,
    ATTR_RUN_STATE,
    ATTR_SCAN_FIELDS,
)
from emailindex.observability.tracer import (
    OTEL_AVAILABLE,
    MockTracer,
    NullTracer,
    OpenTelemetryTracer,
    SpanAttributes,
    Tracer,
    create_tracer,
    record_attribute,
)

__all__ = [
    "OTEL_AVAILABLE",
    "SpanAttributes",
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "MockTracer",
    "create_tracer",
    "record_attribute",
    "ATTR_PAGE_SIZE",
    "ATTR_PAGE_NUMBER",
    "ATTR_PRINCIPAL_COUNT",
    "ATTR_SCAN_FIELDS",
    "ATTR_INDEX_TABLE",
    "ATTR_INDEX_SIZE",
    "ATTR_DUPLICATE_COUNT",
    "ATTR_BATCH_SIZE",
    "ATTR_CHUNK_INDEX",
    "ATTR_ENTRIES_TOTAL",
    "ATTR_RUN_STATE",
    "ATTR_DB_SYSTEM",
    "ATTR_DB_NAME",
    "ATTR_DB_OPERATION",
    "ATTR_ERROR_TYPE",
]
