"""
Tracers handed to colshift components.

The orchestrator, preflight validator, backfill engine, executor, state
repository and advisory lock each take an optional ``tracer`` argument and
otherwise build one with ``create_tracer(__name__, enable_tracing)``. Span
names follow ``colshift.<component>.<operation>``, e.g.
``colshift.orchestrator.backfilling`` or ``colshift.backfill.batch``.

Example:
    >>> tracer = create_tracer(__name__, enable_tracing=False)
    >>> with tracer.span("colshift.preflight.run", {"colshift.column": "age"}):
    ...     report = await validator.run(plan)
"""

from __future__ import annotations

import contextlib
from collections.abc import Iterator, Mapping
from contextlib import AbstractContextManager
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from colshift.observability.tracing import OTEL_AVAILABLE, get_tracer

if TYPE_CHECKING:
    from opentelemetry.trace import Span

SpanAttributes = Mapping[str, Any]


@runtime_checkable
class Tracer(Protocol):
    """
    What a colshift component needs from a tracer.

    Implemented by NullTracer (tracing off), OpenTelemetryTracer and the
    span-recording MockTracer used in tests.
    """

    def span(
        self,
        name: str,
        attributes: SpanAttributes | None = None,
    ) -> AbstractContextManager[Span | None]:
        """Open a span around one migration step."""
        ...

    @property
    def enabled(self) -> bool:
        """Whether spans are actually exported."""
        ...


class NullTracer:
    """Tracer used when tracing is off or OpenTelemetry is not installed."""

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
    Tracer backed by the ``opentelemetry`` API.

    Attributes whose value is None (an absent ordering column, an unknown
    row estimate) are dropped; OpenTelemetry rejects None attribute values.

    Raises:
        ImportError: If OpenTelemetry is not installed
    """

    def __init__(self, tracer_name: str) -> None:
        tracer = get_tracer(tracer_name)
        if tracer is None:
            raise ImportError("opentelemetry is not installed")
        self._tracer = tracer

    def span(
        self,
        name: str,
        attributes: SpanAttributes | None = None,
    ) -> AbstractContextManager[Span | None]:
        return self._tracer.start_as_current_span(
            name,
            attributes={k: v for k, v in (attributes or {}).items() if v is not None},
        )

    @property
    def enabled(self) -> bool:
        return True


class MockTracer:
    """
    Records every span opened through it, in opening order.

    Example:
        >>> tracer = MockTracer()
        >>> await PreflightValidator(catalog, tracer=tracer).run(plan)
        >>> tracer.span_names
        ['colshift.preflight.run']
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
        return [name for name, _ in self.spans]

    def attributes_of(self, name: str) -> SpanAttributes:
        """
        Attributes of the first span with the given name.

        Raises:
            KeyError: If no such span was opened
        """
        for span_name, attributes in self.spans:
            if span_name == name:
                return attributes or {}
        raise KeyError(name)

    def clear(self) -> None:
        self.spans.clear()


def create_tracer(name: str, enable_tracing: bool = True) -> Tracer:
    """
    Build the tracer a component uses when none was injected.

    Args:
        name: Tracer name, normally the component's ``__name__``
        enable_tracing: False forces a NullTracer

    Returns:
        OpenTelemetryTracer when enabled and OpenTelemetry is importable,
        NullTracer otherwise
    """
    if enable_tracing and OTEL_AVAILABLE:
        return OpenTelemetryTracer(name)
    return NullTracer()


__all__ = [
    "SpanAttributes",
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "MockTracer",
    "create_tracer",
]
