"""
Data models for online column-type migrations.

Enums:
    - MigrationPhase: Orchestrator phases
    - ExecutionMode: Live execution or dry-run
    - BackfillStrategy: Keyed or fallback pagination

Configuration:
    - MigrationPlan: Immutable run parameters, built once and shared

Core Models:
    - SyncArtifact: Trigger and trigger function owned by a migration
    - PhaseState: Transient progress held by the orchestrator
    - ExecutionResult: Outcome of one statement group
    - BackfillProgress: Progress after one backfill batch
    - MigrationResult: Final result of a run
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from colshift.exceptions import InvalidPhaseTransitionError, InvalidPlanError
from colshift.identifiers import (
    sanitize_type_expression,
    shadow_column_name,
    sync_function_name,
    sync_trigger_name,
    validate_identifier,
)

DEFAULT_SCHEMA = "public"
DEFAULT_BATCH_SIZE = 1000
DEFAULT_THROTTLE_SECONDS = 0.2


class MigrationPhase(Enum):
    """
    Migration lifecycle phases.

    State machine transitions:
        INIT -> SHADOW_COLUMN_ADDED -> TRIGGER_INSTALLED -> BACKFILLING
             -> TRIGGER_REMOVED -> SWAPPED
        Any non-terminal phase ------------------------> FAILED

    The backfill loop runs entirely inside BACKFILLING; each batch is
    recorded on PhaseState rather than as a phase change.

    Attributes:
        INIT: Preflight passed, nothing changed yet.
        SHADOW_COLUMN_ADDED: Shadow column exists (added now or by a prior run).
        TRIGGER_INSTALLED: Sync trigger mirrors writes into the shadow column.
        BACKFILLING: Batched copy of pre-existing rows in progress.
        TRIGGER_REMOVED: Backfill converged, trigger and function dropped.
        SWAPPED: Source column dropped and shadow column renamed over it.
        FAILED: A statement failed; the schema is in an intermediate state.
    """

    INIT = "init"
    SHADOW_COLUMN_ADDED = "shadow_column_added"
    TRIGGER_INSTALLED = "trigger_installed"
    BACKFILLING = "backfilling"
    TRIGGER_REMOVED = "trigger_removed"
    SWAPPED = "swapped"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """
        Check if this is a terminal phase.

        Returns:
            True for SWAPPED and FAILED.
        """
        return self in (MigrationPhase.SWAPPED, MigrationPhase.FAILED)

    def can_transition_to(self, target: MigrationPhase) -> bool:
        """
        Check if transition to target phase is valid.

        Args:
            target: The target phase to transition to.

        Returns:
            True if the transition is valid.
        """
        if self.is_terminal:
            return False

        if target == MigrationPhase.FAILED:
            return True

        return target == VALID_TRANSITIONS.get(self)


# Linear forward transitions; FAILED is reachable from every non-terminal phase
VALID_TRANSITIONS: dict[MigrationPhase, MigrationPhase] = {
    MigrationPhase.INIT: MigrationPhase.SHADOW_COLUMN_ADDED,
    MigrationPhase.SHADOW_COLUMN_ADDED: MigrationPhase.TRIGGER_INSTALLED,
    MigrationPhase.TRIGGER_INSTALLED: MigrationPhase.BACKFILLING,
    MigrationPhase.BACKFILLING: MigrationPhase.TRIGGER_REMOVED,
    MigrationPhase.TRIGGER_REMOVED: MigrationPhase.SWAPPED,
}


class ExecutionMode(Enum):
    """How the execution adapter treats statements."""

    LIVE = "live"
    """Statements are executed."""

    DRY_RUN = "dry_run"
    """Statements are printed (and explained where possible), never executed."""


class BackfillStrategy(Enum):
    """
    Backfill pagination strategies.

    Attributes:
        KEYED: Batches ordered by an ordering column; deterministic and
            non-overlapping.
        FALLBACK: Batches addressed by physical row identity (ctid) with no
            ordering; best effort under concurrent writes.
    """

    KEYED = "keyed"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class SyncArtifact:
    """
    The trigger and trigger function a migration installs on its table.

    Their presence on the live schema is the durable sign that a migration
    is in progress.

    Attributes:
        schema: Schema holding the table and the function.
        table: Table the trigger is attached to.
        function_name: ``sync_<table>_<column>``.
        trigger_name: ``trg_sync_<table>_<column>``.
    """

    schema: str
    table: str
    function_name: str
    trigger_name: str

    @classmethod
    def for_column(cls, schema: str, table: str, column: str) -> SyncArtifact:
        """Derive the artifact names for a table column."""
        return cls(
            schema=schema,
            table=table,
            function_name=sync_function_name(table, column),
            trigger_name=sync_trigger_name(table, column),
        )


@dataclass(frozen=True)
class MigrationPlan:
    """
    Immutable parameters of one column-type migration.

    Built once at startup and passed by reference to every component.
    Validation happens on construction, so holding a MigrationPlan means the
    configuration checks have passed.

    Attributes:
        table: Table to migrate.
        column: Column whose type changes.
        target_type: New type expression; sanitized on construction.
        schema: Schema holding the table (default "public").
        ordering_column: Optional primary-key-like column for keyed
            pagination. Without it the fallback strategy is used.
        batch_size: Rows per backfill batch (default 1000).
        throttle_seconds: Pause between backfill batches (default 0.2).
        mode: Live execution or dry-run.
        verbose: Log statement timings and SQL text.

    Example:
        >>> plan = MigrationPlan(table="users", column="age", target_type="bigint")
        >>> plan.shadow_column
        'age_new'
        >>> plan.strategy
        <BackfillStrategy.FALLBACK: 'fallback'>
    """

    table: str
    column: str
    target_type: str
    schema: str = DEFAULT_SCHEMA
    ordering_column: str | None = None
    batch_size: int = DEFAULT_BATCH_SIZE
    throttle_seconds: float = DEFAULT_THROTTLE_SECONDS
    mode: ExecutionMode = ExecutionMode.LIVE
    verbose: bool = False

    def __post_init__(self) -> None:
        """Validate configuration values."""
        validate_identifier("schema", self.schema)
        validate_identifier("table", self.table)
        validate_identifier("column", self.column)
        validate_identifier("shadow column", self.shadow_column)
        validate_identifier("trigger name", self.sync_artifact.trigger_name)

        if self.ordering_column is not None:
            validate_identifier("ordering column", self.ordering_column)
            if self.ordering_column in (self.column, self.shadow_column):
                raise InvalidPlanError(
                    "ordering_column",
                    f"ordering column must differ from {self.column} and {self.shadow_column}",
                )

        if (
            isinstance(self.batch_size, bool)
            or not isinstance(self.batch_size, int)
            or self.batch_size < 1
        ):
            raise InvalidPlanError(
                "batch_size", f"batch_size must be an integer >= 1, got {self.batch_size!r}"
            )

        if self.throttle_seconds < 0:
            raise InvalidPlanError(
                "throttle_seconds",
                f"throttle_seconds must be >= 0, got {self.throttle_seconds}",
            )

        # frozen: normalize through object.__setattr__
        object.__setattr__(self, "target_type", sanitize_type_expression(self.target_type))

    @property
    def shadow_column(self) -> str:
        """Derived ``<column>_new`` shadow column name."""
        return shadow_column_name(self.column)

    @property
    def sync_artifact(self) -> SyncArtifact:
        """Trigger and function names for this migration."""
        return SyncArtifact.for_column(self.schema, self.table, self.column)

    @property
    def strategy(self) -> BackfillStrategy:
        """Keyed when an ordering column was supplied, fallback otherwise."""
        if self.ordering_column:
            return BackfillStrategy.KEYED
        return BackfillStrategy.FALLBACK

    @property
    def dry_run(self) -> bool:
        """Whether statements are only printed."""
        return self.mode == ExecutionMode.DRY_RUN

    @property
    def qualified_table(self) -> str:
        """Unquoted ``schema.table`` for messages and lock keys."""
        return f"{self.schema}.{self.table}"

    def to_dict(self) -> dict[str, Any]:
        """
        Convert to dictionary for serialization.

        Returns:
            Dictionary representation of the plan.
        """
        return {
            "schema": self.schema,
            "table": self.table,
            "column": self.column,
            "shadow_column": self.shadow_column,
            "target_type": self.target_type,
            "ordering_column": self.ordering_column,
            "batch_size": self.batch_size,
            "throttle_seconds": self.throttle_seconds,
            "mode": self.mode.value,
            "verbose": self.verbose,
            "strategy": self.strategy.value,
        }


@dataclass
class PhaseState:
    """
    Transient progress of one orchestration run.

    Created at orchestration start and discarded on exit; the persisted
    counterpart is colshift.state.MigrationStateRecord.

    Attributes:
        phase: Current phase tag.
        rows_backfilled: Cumulative rows converted by backfill batches.
        last_batch_rows: Rows affected by the most recent batch.
        batches: Number of batches that affected at least one row.
    """

    phase: MigrationPhase = MigrationPhase.INIT
    rows_backfilled: int = 0
    last_batch_rows: int = 0
    batches: int = 0

    def advance(self, target: MigrationPhase) -> None:
        """
        Move to the next phase.

        Raises:
            InvalidPhaseTransitionError: If the state machine forbids it
        """
        if not self.phase.can_transition_to(target):
            raise InvalidPhaseTransitionError(self.phase, target)
        self.phase = target

    def record_batch(self, rows: int) -> None:
        """Account for one executed backfill batch."""
        self.last_batch_rows = rows
        if rows > 0:
            self.rows_backfilled += rows
            self.batches += 1


@dataclass(frozen=True)
class ExecutionResult:
    """
    Outcome of executing one statement group.

    Attributes:
        rows_affected: Rows affected by the last statement in the group
            (0 for DDL and in dry-run).
        duration_seconds: Wall time spent executing.
        executed: False when the group was only printed.
    """

    rows_affected: int = 0
    duration_seconds: float = 0.0
    executed: bool = True


@dataclass(frozen=True)
class BackfillProgress:
    """
    Progress information after one backfill batch.

    Attributes:
        batch_number: 1-based batch counter.
        rows_affected: Rows converted by this batch.
        rows_backfilled: Cumulative rows converted in this run.
        rows_estimated: Pending-row estimate from preflight (None if unknown).
        batch_seconds: Time spent executing this batch.
        is_complete: True once a batch affected zero rows (or after the single
            dry-run batch).
    """

    batch_number: int
    rows_affected: int
    rows_backfilled: int
    rows_estimated: int | None
    batch_seconds: float
    is_complete: bool

    @property
    def progress_percent(self) -> float | None:
        """
        Calculate progress against the estimate as a percentage (0-100).

        Returns:
            Progress percentage, or None if no estimate exists.
        """
        if not self.rows_estimated:
            return None
        return min(100.0, (self.rows_backfilled / self.rows_estimated) * 100)


@dataclass
class MigrationResult:
    """
    Result of a migration run.

    Attributes:
        success: Whether every phase completed (or, in dry-run, was printed).
        phase: Phase reached.
        rows_backfilled: Rows converted by the backfill.
        batches: Backfill batches that affected rows.
        duration_seconds: Total run time.
        dry_run: Whether nothing was executed.
        shadow_column_reused: True when the shadow column already existed.
        resumed_from: Phase recorded by an interrupted earlier run, if any.
        already_completed: True when a previous run had already swapped.
        rows_estimated: Pending-row estimate from preflight.
        error_message: Set when success is False.
        statements: Mutating statements issued (printed, in dry-run), in order.
    """

    success: bool
    phase: MigrationPhase
    rows_backfilled: int = 0
    batches: int = 0
    duration_seconds: float = 0.0
    dry_run: bool = False
    shadow_column_reused: bool = False
    resumed_from: MigrationPhase | None = None
    already_completed: bool = False
    rows_estimated: int | None = None
    error_message: str | None = None
    statements: list[str] = field(default_factory=list)
