"""
Pluggable tracing for the migration pipeline.

The scanner, the batch migrator and the runner all take a ``tracer`` and
wrap each page read, uniqueness check and batch write in a span. Passing a
MockTracer lets tests assert on the spans; the default comes from
``create_tracer`` and is a no-op unless OpenTelemetry is installed.

Example:
    >>> tracer = create_tracer(__name__, enable_tracing=True)
    >>> with tracer.span("emailindex.migrator.write_batch", {ATTR_BATCH_SIZE: 30}) as span:
    ...     await store.run_batch(statements)
    ...     record_attribute(span, ATTR_CHUNK_INDEX, 0)
"""

from __future__ import annotations

import contextlib
from collections.abc import Iterator
from contextlib import AbstractContextManager
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from opentelemetry.trace import Span

# OpenTelemetry is an optional extra; this is the only place it is imported
try:
    from opentelemetry import trace

    OTEL_AVAILABLE = True
except ImportError:
    OTEL_AVAILABLE = False
    trace = None  # type: ignore[assignment]

SpanAttributes = dict[str, Any]


@runtime_checkable
class Tracer(Protocol):
    """What the pipeline needs from a tracer: spans and an on/off flag."""

    def span(
        self,
        name: str,
        attributes: SpanAttributes | None = None,
    ) -> AbstractContextManager[Span | None]:
        """
        Open a span around one unit of work.

        Args:
            name: ``emailindex.<component>.<operation>``
            attributes: Initial span attributes

        Returns:
            Context manager yielding the live span, or None when not recording
        """
        ...

    @property
    def enabled(self) -> bool:
        """True if spans are exported."""
        ...


class NullTracer:
    """Tracer that records nothing. Used when tracing is off."""

    @contextlib.contextmanager
    def span(
        self,
        name: str,
        attributes: SpanAttributes | None = None,
    ) -> Iterator[None]:
        yield None

    @property
    def enabled(self) -> bool:
        return False


class OpenTelemetryTracer:
    """
    Tracer backed by the globally configured OpenTelemetry provider.

    Raises:
        ImportError: If opentelemetry-api is not installed
    """

    def __init__(self, tracer_name: str) -> None:
        if trace is None:
            raise ImportError("opentelemetry-api is required for OpenTelemetryTracer")
        self._otel = trace.get_tracer(tracer_name)

    def span(
        self,
        name: str,
        attributes: SpanAttributes | None = None,
    ) -> AbstractContextManager[Span | None]:
        return self._otel.start_as_current_span(name, attributes=attributes or {})

    @property
    def enabled(self) -> bool:
        return True


class MockTracer:
    """
    Tracer that remembers every span it opened, in order.

    Example:
        >>> tracer = MockTracer()
        >>> runner = MigrationRunner(store, store, reporter, tracer=tracer)
        >>> await runner.run()
        >>> tracer.span_names[0]
        'emailindex.runner.run'
    """

    def __init__(self) -> None:
        self.spans: list[tuple[str, SpanAttributes | None]] = []

    @contextlib.contextmanager
    def span(
        self,
        name: str,
        attributes: SpanAttributes | None = None,
    ) -> Iterator[None]:
        self.spans.append((name, attributes))
        yield None

    @property
    def enabled(self) -> bool:
        return True

    @property
    def span_names(self) -> list[str]:
        """Names of the recorded spans."""
        return [name for name, _ in self.spans]

    def attributes_of(self, name: str) -> list[SpanAttributes]:
        """Initial attributes of every recorded span called ``name``."""
        return [attributes or {} for span_name, attributes in self.spans if span_name == name]

    def clear(self) -> None:
        self.spans.clear()


def record_attribute(span: Span | None, key: str, value: Any) -> None:
    """Set an attribute on a live span; no-op for non-recording tracers."""
    if span is not None:
        span.set_attribute(key, value)


def create_tracer(name: str, enable_tracing: bool = True) -> Tracer:
    """
    Pick the tracer for a component.

    Returns an OpenTelemetryTracer when tracing is enabled and OpenTelemetry
    is importable, otherwise a NullTracer.
    """
    if enable_tracing and OTEL_AVAILABLE:
        return OpenTelemetryTracer(name)
    return NullTracer()


__all__ = [
    "OTEL_AVAILABLE",
    "SpanAttributes",
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "MockTracer",
    "record_attribute",
    "create_tracer",
]
