"""
Standard span attributes for colshift.

Attribute names follow OpenTelemetry semantic conventions where one exists
(``db.*``) and use a ``colshift.`` prefix otherwise.
"""

# =============================================================================
# Database (OTEL semantic conventions)
# =============================================================================

ATTR_DB_SYSTEM = "db.system"
"""Database system identifier (always "postgresql")."""

ATTR_DB_OPERATION = "db.operation"
"""Short description of the database operation (string)."""

ATTR_DB_SCHEMA = "db.sql.schema"
"""Schema that holds the migrated table (string)."""

ATTR_DB_TABLE = "db.sql.table"
"""Table being migrated (string)."""

# =============================================================================
# Migration Attributes
# =============================================================================

ATTR_COLUMN = "colshift.column"
"""Source column being retyped (string)."""

ATTR_TARGET_TYPE = "colshift.target_type"
"""Sanitized target type expression (string)."""

ATTR_PHASE = "colshift.phase"
"""Migration phase tag (string)."""

ATTR_STRATEGY = "colshift.backfill.strategy"
"""Backfill pagination strategy, "keyed" or "fallback" (string)."""

ATTR_BATCH_SIZE = "colshift.backfill.batch_size"
"""Configured batch size (integer)."""

ATTR_BATCH_NUMBER = "colshift.backfill.batch_number"
"""1-based batch counter within a run (integer)."""

ATTR_ROWS_AFFECTED = "colshift.rows_affected"
"""Rows affected by a statement (integer)."""

ATTR_DRY_RUN = "colshift.dry_run"
"""Whether the run only prints statements (boolean)."""

ATTR_CONTEXT = "colshift.context"
"""Human-readable phase context of a statement (string)."""

__all__ = [
    "ATTR_DB_SYSTEM",
    "ATTR_DB_OPERATION",
    "ATTR_DB_SCHEMA",
    "ATTR_DB_TABLE",
    "ATTR_COLUMN",
    "ATTR_TARGET_TYPE",
    "ATTR_PHASE",
    "ATTR_STRATEGY",
    "ATTR_BATCH_SIZE",
    "ATTR_BATCH_NUMBER",
    "ATTR_ROWS_AFFECTED",
    "ATTR_DRY_RUN",
    "ATTR_CONTEXT",
]
