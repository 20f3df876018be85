"""
MigrationStateRepository - data access for persisted migration state.

Provides the MigrationStateRepository protocol with a PostgreSQL
implementation for production use and an in-memory implementation for
tests and state-less runs.

Database Table:
    ``colshift_migrations`` (see colshift/schemas/migration_state.sql),
    created on demand by ensure_schema().

Usage:
    >>> repo = PostgreSQLMigrationStateRepository(engine)
    >>> await repo.ensure_schema()
    >>> previous = await repo.get("public", "users", "age")
    >>> record = await repo.start(plan)
    >>> await repo.update_phase(record.id, MigrationPhase.SHADOW_COLUMN_ADDED)
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any, Protocol, runtime_checkable
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from colshift._connection import execute_with_connection
from colshift.identifiers import qualified_name
from colshift.models import DEFAULT_SCHEMA, MigrationPhase, MigrationPlan
from colshift.observability import (
    ATTR_COLUMN,
    ATTR_DB_SYSTEM,
    ATTR_DB_TABLE,
    ATTR_PHASE,
    Tracer,
    create_tracer,
)
from colshift.schemas import get_schema
from colshift.state.models import MigrationStateRecord

STATE_TABLE = "colshift_migrations"

# Error messages are truncated to this many characters
MAX_ERROR_LENGTH = 1000

_COLUMNS = """
    id, schema_name, table_name, column_name, target_type, ordering_column,
    phase, rows_backfilled, batches, started_at, updated_at, completed_at,
    last_error
"""


@runtime_checkable
class MigrationStateRepository(Protocol):
    """
    Protocol for migration-state persistence.

    Implementations must provide:
    - ensure_schema: Create the backing storage if needed
    - get: Fetch the record for a column
    - start: Begin (or restart) tracking a plan
    - update_phase: Record a completed transition
    - update_progress: Record backfill counters
    - record_failure: Mark the attempt failed with its error
    """

    async def ensure_schema(self) -> None: ...

    async def get(self, schema: str, table: str, column: str) -> MigrationStateRecord | None:
        """
        Get the record for a column.

        Returns:
            The record, or None if the column was never migrated
        """
        ...

    async def start(self, plan: MigrationPlan) -> MigrationStateRecord:
        """
        Begin tracking a run of the plan.

        An existing record for the same column is reset to INIT and keeps
        its id.
        """
        ...

    async def update_phase(self, record_id: UUID, phase: MigrationPhase) -> None: ...

    async def update_progress(self, record_id: UUID, rows_backfilled: int, batches: int) -> None:
        ...

    async def record_failure(self, record_id: UUID, error: str) -> None: ...


class PostgreSQLMigrationStateRepository:
    """
    PostgreSQL implementation of MigrationStateRepository.

    Each write commits on its own so the record survives a crash of the
    migration that owns it.

    Example:
        >>> repo = PostgreSQLMigrationStateRepository(engine, schema="ops")
        >>> await repo.ensure_schema()
        >>> record = await repo.start(plan)
    """

    def __init__(
        self,
        conn: AsyncConnection | AsyncEngine,
        schema: str = DEFAULT_SCHEMA,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ):
        """
        Initialize the repository.

        Args:
            conn: Database connection or engine
            schema: Schema holding the colshift_migrations table
            tracer: Optional custom Tracer instance.
            enable_tracing: Whether to enable OpenTelemetry tracing
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._conn = conn
        self._table = qualified_name(schema, STATE_TABLE)

    async def ensure_schema(self) -> None:
        """Create the state table if it does not exist."""
        with self._tracer.span(
            "colshift.state_repo.ensure_schema",
            {ATTR_DB_TABLE: self._table, ATTR_DB_SYSTEM: "postgresql"},
        ):
            async with execute_with_connection(self._conn, transactional=True) as conn:
                await conn.exec_driver_sql(get_schema("migration_state", table=self._table))

    async def get(self, schema: str, table: str, column: str) -> MigrationStateRecord | None:
        with self._tracer.span(
            "colshift.state_repo.get",
            {
                ATTR_DB_TABLE: f"{schema}.{table}",
                ATTR_COLUMN: column,
                ATTR_DB_SYSTEM: "postgresql",
            },
        ):
            query = text(f"""
                SELECT {_COLUMNS}
                FROM {self._table}
                WHERE schema_name = :schema_name
                  AND table_name = :table_name
                  AND column_name = :column_name
            """)  # nosec B608 - table name is quoted, values are parameterized

            async with execute_with_connection(self._conn, transactional=False) as conn:
                result = await conn.execute(
                    query,
                    {"schema_name": schema, "table_name": table, "column_name": column},
                )
                row = result.fetchone()

            if row is None:
                return None
            return self._row_to_record(row)

    async def start(self, plan: MigrationPlan) -> MigrationStateRecord:
        with self._tracer.span(
            "colshift.state_repo.start",
            {
                ATTR_DB_TABLE: plan.qualified_table,
                ATTR_COLUMN: plan.column,
                ATTR_DB_SYSTEM: "postgresql",
            },
        ):
            record = MigrationStateRecord.for_plan(plan)

            query = text(f"""
                INSERT INTO {self._table} (
                    id, schema_name, table_name, column_name, target_type,
                    ordering_column, phase, rows_backfilled, batches,
                    started_at, updated_at
                ) VALUES (
                    :id, :schema_name, :table_name, :column_name, :target_type,
                    :ordering_column, :phase, 0, 0,
                    :started_at, :updated_at
                )
                ON CONFLICT (schema_name, table_name, column_name) DO UPDATE SET
                    target_type = EXCLUDED.target_type,
                    ordering_column = EXCLUDED.ordering_column,
                    phase = EXCLUDED.phase,
                    rows_backfilled = 0,
                    batches = 0,
                    started_at = EXCLUDED.started_at,
                    updated_at = EXCLUDED.updated_at,
                    completed_at = NULL,
                    last_error = NULL
                RETURNING {_COLUMNS}
            """)  # nosec B608 - table name is quoted, values are parameterized

            params = {
                "id": record.id,
                "schema_name": record.schema_name,
                "table_name": record.table_name,
                "column_name": record.column_name,
                "target_type": record.target_type,
                "ordering_column": record.ordering_column,
                "phase": record.phase.value,
                "started_at": record.started_at,
                "updated_at": record.updated_at,
            }

            async with execute_with_connection(self._conn, transactional=True) as conn:
                result = await conn.execute(query, params)
                row = result.fetchone()

            return self._row_to_record(row)

    async def update_phase(self, record_id: UUID, phase: MigrationPhase) -> None:
        with self._tracer.span(
            "colshift.state_repo.update_phase",
            {ATTR_PHASE: phase.value, ATTR_DB_SYSTEM: "postgresql"},
        ):
            now = datetime.now(UTC)
            query = text(f"""
                UPDATE {self._table}
                SET phase = :phase,
                    updated_at = :updated_at,
                    completed_at = :completed_at
                WHERE id = :id
            """)  # nosec B608 - table name is quoted, values are parameterized

            async with execute_with_connection(self._conn, transactional=True) as conn:
                await conn.execute(
                    query,
                    {
                        "id": record_id,
                        "phase": phase.value,
                        "updated_at": now,
                        "completed_at": now if phase == MigrationPhase.SWAPPED else None,
                    },
                )

    async def update_progress(self, record_id: UUID, rows_backfilled: int, batches: int) -> None:
        with self._tracer.span(
            "colshift.state_repo.update_progress",
            {ATTR_DB_SYSTEM: "postgresql"},
        ):
            query = text(f"""
                UPDATE {self._table}
                SET rows_backfilled = :rows_backfilled,
                    batches = :batches,
                    updated_at = :updated_at
                WHERE id = :id
            """)  # nosec B608 - table name is quoted, values are parameterized

            async with execute_with_connection(self._conn, transactional=True) as conn:
                await conn.execute(
                    query,
                    {
                        "id": record_id,
                        "rows_backfilled": rows_backfilled,
                        "batches": batches,
                        "updated_at": datetime.now(UTC),
                    },
                )

    async def record_failure(self, record_id: UUID, error: str) -> None:
        """
        Mark the attempt failed.

        The phase reached before the failure is lost from the record; the
        error text names the failing phase context instead. Error messages
        are truncated to 1000 characters.
        """
        with self._tracer.span(
            "colshift.state_repo.record_failure",
            {ATTR_DB_SYSTEM: "postgresql"},
        ):
            query = text(f"""
                UPDATE {self._table}
                SET phase = :phase,
                    last_error = :error,
                    updated_at = :updated_at
                WHERE id = :id
            """)  # nosec B608 - table name is quoted, values are parameterized

            async with execute_with_connection(self._conn, transactional=True) as conn:
                await conn.execute(
                    query,
                    {
                        "id": record_id,
                        "phase": MigrationPhase.FAILED.value,
                        "error": error[:MAX_ERROR_LENGTH],
                        "updated_at": datetime.now(UTC),
                    },
                )

    def _row_to_record(self, row: Sequence[Any]) -> MigrationStateRecord:
        return MigrationStateRecord(
            id=row[0],
            schema_name=row[1],
            table_name=row[2],
            column_name=row[3],
            target_type=row[4],
            ordering_column=row[5],
            phase=MigrationPhase(row[6]),
            rows_backfilled=row[7] or 0,
            batches=row[8] or 0,
            started_at=row[9],
            updated_at=row[10],
            completed_at=row[11],
            last_error=row[12],
        )


class InMemoryMigrationStateRepository:
    """
    In-memory implementation of MigrationStateRepository.

    Useful for testing and for runs that should not touch a state table.
    Thread-safe via asyncio.Lock.
    """

    def __init__(self) -> None:
        self._records: dict[tuple[str, str, str], MigrationStateRecord] = {}
        self._keys: dict[UUID, tuple[str, str, str]] = {}
        self._lock = asyncio.Lock()

    async def ensure_schema(self) -> None:
        return None

    async def get(self, schema: str, table: str, column: str) -> MigrationStateRecord | None:
        async with self._lock:
            record = self._records.get((schema, table, column))
            return record.model_copy() if record is not None else None

    async def start(self, plan: MigrationPlan) -> MigrationStateRecord:
        async with self._lock:
            key = (plan.schema, plan.table, plan.column)
            record = MigrationStateRecord.for_plan(plan)
            existing = self._records.get(key)
            if existing is not None:
                record.id = existing.id
            self._records[key] = record
            self._keys[record.id] = key
            return record.model_copy()

    async def update_phase(self, record_id: UUID, phase: MigrationPhase) -> None:
        async with self._lock:
            record = self._record(record_id)
            if record is None:
                return
            now = datetime.now(UTC)
            record.phase = phase
            record.updated_at = now
            record.completed_at = now if phase == MigrationPhase.SWAPPED else None

    async def update_progress(self, record_id: UUID, rows_backfilled: int, batches: int) -> None:
        async with self._lock:
            record = self._record(record_id)
            if record is None:
                return
            record.rows_backfilled = rows_backfilled
            record.batches = batches
            record.updated_at = datetime.now(UTC)

    async def record_failure(self, record_id: UUID, error: str) -> None:
        async with self._lock:
            record = self._record(record_id)
            if record is None:
                return
            record.phase = MigrationPhase.FAILED
            record.last_error = error[:MAX_ERROR_LENGTH]
            record.updated_at = datetime.now(UTC)

    def _record(self, record_id: UUID) -> MigrationStateRecord | None:
        key = self._keys.get(record_id)
        return self._records.get(key) if key is not None else None

    async def clear(self) -> None:
        """Clear all records. Useful for test cleanup."""
        async with self._lock:
            self._records.clear()
            self._keys.clear()


__all__ = [
    "MAX_ERROR_LENGTH",
    "STATE_TABLE",
    "MigrationStateRepository",
    "PostgreSQLMigrationStateRepository",
    "InMemoryMigrationStateRepository",
]
