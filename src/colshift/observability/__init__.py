"""
Observability utilities for colshift.

Provides the composition-based Tracer used by every component and the
standard span attribute names.

Note:
    OpenTelemetry is an optional dependency. All utilities in this module
    gracefully handle the case where OpenTelemetry is not installed.
"""

from colshift.observability.attributes import (
    ATTR_BATCH_NUMBER,
    ATTR_BATCH_SIZE,
    ATTR_COLUMN,
    ATTR_CONTEXT,
    ATTR_DB_OPERATION,
    ATTR_DB_SCHEMA,
    ATTR_DB_SYSTEM,
    ATTR_DB_TABLE,
    ATTR_DRY_RUN,
    ATTR_PHASE,
    ATTR_ROWS_AFFECTED,
    ATTR_STRATEGY,
    ATTR_TARGET_TYPE,
)
from colshift.observability.tracer import (
    MockTracer,
    NullTracer,
    OpenTelemetryTracer,
    Tracer,
    create_tracer,
)
from colshift.observability.tracing import OTEL_AVAILABLE, get_tracer

__all__ = [
    "OTEL_AVAILABLE",
    "get_tracer",
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "MockTracer",
    "create_tracer",
    "ATTR_BATCH_NUMBER",
    "ATTR_BATCH_SIZE",
    "ATTR_COLUMN",
    "ATTR_CONTEXT",
    "ATTR_DB_OPERATION",
    "ATTR_DB_SCHEMA",
    "ATTR_DB_SYSTEM",
    "ATTR_DB_TABLE",
    "ATTR_DRY_RUN",
    "ATTR_PHASE",
    "ATTR_ROWS_AFFECTED",
    "ATTR_STRATEGY",
    "ATTR_TARGET_TYPE",
]
