"""
MigrationOrchestrator - runs one column-type migration through its phases.

State machine:
    INIT -> SHADOW_COLUMN_ADDED -> TRIGGER_INSTALLED -> BACKFILLING
         -> TRIGGER_REMOVED -> SWAPPED

Phase order is what keeps concurrent writes from being lost: the sync
trigger is installed before the backfill starts and stays installed until
the backfill has converged.

Only the shadow-column add is ever skipped, and only when an unfinished run
left the column behind: its sync trigger is still installed, or the state
record shows the run was interrupted. A same-named column with neither is
a user column and the run is refused before anything changes. Every other
step is idempotent by construction (create-or-replace, drop-if-exists,
null-predicate backfill), so a rerun after a crash replays them all. A
persisted state record, when enabled, reports where an earlier run stopped
and recognizes a migration that has already finished.

Any statement failure is fatal: the orchestrator records it and re-raises
without attempting to undo earlier phases.

Usage:
    >>> orchestrator = MigrationOrchestrator(plan, executor, SchemaCatalog(engine))
    >>> result = await orchestrator.run()
    >>> result.rows_backfilled
    2500
"""

from __future__ import annotations

import contextlib
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from contextlib import AbstractAsyncContextManager
from typing import TypeVar

from sqlalchemy.exc import SQLAlchemyError

from colshift.backfill import BackfillEngine
from colshift.catalog import SchemaCatalog
from colshift.exceptions import BestEffortError, ExecutionError, ShadowColumnConflictError
from colshift.executor import StatementExecutor
from colshift.models import (
    BackfillProgress,
    MigrationPhase,
    MigrationPlan,
    MigrationResult,
    PhaseState,
)
from colshift.observability import (
    ATTR_COLUMN,
    ATTR_DB_SCHEMA,
    ATTR_DB_TABLE,
    ATTR_DRY_RUN,
    ATTR_PHASE,
    ATTR_STRATEGY,
    ATTR_TARGET_TYPE,
    Tracer,
    create_tracer,
)
from colshift.preflight import PreflightReport, PreflightValidator
from colshift.state import MigrationStateRecord, MigrationStateRepository
from colshift.statements import StatementBuilder

logger = logging.getLogger(__name__)

T = TypeVar("T")


class MigrationOrchestrator:
    """
    Drives a MigrationPlan from preflight to swap.

    Attributes:
        _plan: The migration plan.
        _executor: Executor every mutating statement goes through.
        _builder: Statement builder for the plan.
        _preflight: Validator run before anything is mutated.
        _state_repo: Optional persisted state repository.
        _lock: Optional lock held while phases execute.
    """

    def __init__(
        self,
        plan: MigrationPlan,
        executor: StatementExecutor,
        catalog: SchemaCatalog,
        *,
        builder: StatementBuilder | None = None,
        state_repo: MigrationStateRepository | None = None,
        lock: AbstractAsyncContextManager[object] | None = None,
        progress_callback: Callable[[BackfillProgress], None] | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            plan: The migration plan.
            executor: StatementExecutor in the plan's mode.
            catalog: Catalog used by preflight.
            builder: Optional StatementBuilder; built from the plan if omitted.
            state_repo: Optional repository for the persisted state record.
                Ignored in dry-run.
            lock: Optional async context manager (e.g. AdvisoryLock) held
                around the mutating phases. Ignored in dry-run.
            progress_callback: Optional callback for backfill progress.
            tracer: Optional custom Tracer instance.
            enable_tracing: Whether to enable OpenTelemetry tracing.
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._plan = plan
        self._executor = executor
        self._builder = builder or StatementBuilder(plan)
        self._preflight = PreflightValidator(catalog, tracer=self._tracer)
        self._backfill = BackfillEngine(plan, executor, self._builder, tracer=self._tracer)
        self._state_repo = None if plan.dry_run else state_repo
        self._lock = None if plan.dry_run else lock
        self._progress_callback = progress_callback
        self._record: MigrationStateRecord | None = None
        self._statements: list[str] = []

    @property
    def backfill(self) -> BackfillEngine:
        """The backfill engine, e.g. for cancel()."""
        return self._backfill

    async def run(self) -> MigrationResult:
        """
        Run the migration.

        Returns:
            MigrationResult describing the completed (or printed) run

        Raises:
            PreflightError: If a preflight check fails; nothing was changed
            ShadowColumnConflictError: If the shadow column name is taken by a
                column no unfinished run accounts for; nothing was changed
            MigrationLockError: If another run holds the column's lock
            ExecutionError: If a statement fails; the schema keeps the state
                reached by the last successful statement
                (also raised when the state record cannot be written)
        """
        plan = self._plan
        with self._tracer.span(
            "colshift.orchestrator.run",
            {
                ATTR_DB_SCHEMA: plan.schema,
                ATTR_DB_TABLE: plan.table,
                ATTR_COLUMN: plan.column,
                ATTR_TARGET_TYPE: plan.target_type,
                ATTR_STRATEGY: plan.strategy.value,
                ATTR_DRY_RUN: plan.dry_run,
            },
        ):
            start_time = time.monotonic()
            self._statements = []
            self._record = None

            logger.info(
                "Migrating %s.%s to %s%s",
                plan.qualified_table,
                plan.column,
                plan.target_type,
                " (dry-run)" if plan.dry_run else "",
            )

            report = await self._preflight.run(plan)

            previous: MigrationStateRecord | None = None
            if self._state_repo is not None:
                await self._persist(self._state_repo.ensure_schema())
                previous = await self._persist(
                    self._state_repo.get(plan.schema, plan.table, plan.column)
                )

            if previous is not None and previous.completed_for(plan) and not (
                report.shadow_column_exists
            ):
                logger.info(
                    "Migration of %s.%s to %s already completed at %s; nothing to do.",
                    plan.qualified_table,
                    plan.column,
                    plan.target_type,
                    previous.completed_at,
                )
                return MigrationResult(
                    success=True,
                    phase=MigrationPhase.SWAPPED,
                    duration_seconds=time.monotonic() - start_time,
                    already_completed=True,
                    rows_estimated=report.rows_pending,
                )

            self._check_shadow_column(report, previous)

            resumed_from: MigrationPhase | None = None
            if previous is not None and previous.is_interrupted:
                resumed_from = previous.phase
                logger.info(
                    "Resuming migration interrupted at phase %s (last update %s)",
                    previous.phase.value,
                    previous.updated_at,
                )

            state = PhaseState()
            async with self._lock or contextlib.nullcontext():
                try:
                    if self._state_repo is not None:
                        self._record = await self._persist(self._state_repo.start(plan))
                    await self._add_shadow_column(state, report)
                    await self._install_sync(state)
                    await self._run_backfill(state, report.rows_pending)
                    await self._teardown_sync(state)
                    await self._swap(state)
                except ExecutionError as e:
                    await self._fail(state, e)
                    raise

            duration = time.monotonic() - start_time
            if plan.dry_run:
                logger.info("Dry-run completed; no statements were executed.")
            else:
                logger.info("Migration completed successfully.")

            return MigrationResult(
                success=True,
                phase=state.phase,
                rows_backfilled=state.rows_backfilled,
                batches=state.batches,
                duration_seconds=duration,
                dry_run=plan.dry_run,
                shadow_column_reused=report.shadow_column_exists,
                resumed_from=resumed_from,
                rows_estimated=report.rows_pending,
                statements=list(self._statements),
            )

    # =========================================================================
    # Transitions
    # =========================================================================

    async def _add_shadow_column(self, state: PhaseState, report: PreflightReport) -> None:
        target = MigrationPhase.SHADOW_COLUMN_ADDED
        if report.shadow_column_exists:
            logger.info("Temp column already exists, skipping add.")
            await self._advance(state, target)
            return
        await self._transition(
            state, target, self._builder.add_shadow_column(), "Adding new column"
        )

    async def _install_sync(self, state: PhaseState) -> None:
        await self._transition(
            state,
            MigrationPhase.TRIGGER_INSTALLED,
            self._builder.install_sync(),
            "Creating trigger for real-time sync",
        )

    async def _run_backfill(self, state: PhaseState, rows_estimated: int | None) -> None:
        target = MigrationPhase.BACKFILLING
        with self._tracer.span(
            f"colshift.orchestrator.{target.value}",
            {ATTR_PHASE: target.value},
        ):
            await self._advance(state, target)
            self._statements.append(self._builder.backfill_batch())

            logger.info("Backfilling data in batches...")
            converged = False
            async for progress in self._backfill.run(rows_estimated, self._progress_callback):
                if progress.is_complete:
                    converged = True
                if progress.rows_affected == 0:
                    continue
                state.record_batch(progress.rows_affected)
                self._log_progress(progress)
                if self._record is not None and self._state_repo is not None:
                    await self._persist(
                        self._state_repo.update_progress(
                            self._record.id, state.rows_backfilled, state.batches
                        )
                    )

            if not converged:
                raise ExecutionError(
                    "Backfilling data",
                    "backfill cancelled before convergence",
                    phase=target,
                    table=self._plan.qualified_table,
                    column=self._plan.column,
                )

    async def _teardown_sync(self, state: PhaseState) -> None:
        await self._transition(
            state,
            MigrationPhase.TRIGGER_REMOVED,
            self._builder.teardown_sync(),
            "Dropping trigger and function",
        )

    async def _swap(self, state: PhaseState) -> None:
        await self._transition(
            state, MigrationPhase.SWAPPED, self._builder.swap(), "Swapping columns"
        )

    # =========================================================================
    # Helper methods
    # =========================================================================

    async def _transition(
        self,
        state: PhaseState,
        target: MigrationPhase,
        statements: Sequence[str],
        context: str,
    ) -> None:
        """Execute one phase's statement group and advance to the target phase."""
        with self._tracer.span(
            f"colshift.orchestrator.{target.value}",
            {ATTR_PHASE: target.value},
        ):
            self._statements.extend(statements)
            try:
                await self._executor.execute(statements, context)
            except ExecutionError as e:
                e.phase = e.phase or target
                raise
            await self._advance(state, target)

    async def _advance(self, state: PhaseState, target: MigrationPhase) -> None:
        state.advance(target)
        if self._record is not None and self._state_repo is not None:
            await self._persist(self._state_repo.update_phase(self._record.id, target))

    async def _persist(self, write: Awaitable[T]) -> T:
        """
        Await a state-repository call, raising ExecutionError if it fails.

        The error then takes the same path as a failed statement: it is
        recorded (best effort) and re-raised.
        """
        try:
            return await write
        except (SQLAlchemyError, OSError) as e:
            raise ExecutionError(
                "Recording migration state",
                str(getattr(e, "orig", None) or e),
                table=self._plan.qualified_table,
                column=self._plan.column,
            ) from e

    def _check_shadow_column(
        self,
        report: PreflightReport,
        previous: MigrationStateRecord | None,
    ) -> None:
        """
        Refuse to reuse a shadow column no unfinished run can account for.

        An existing shadow column is reused when the sync trigger is still
        installed or the state record shows an interrupted run.

        Raises:
            ShadowColumnConflictError: If the column must be left alone
        """
        if not report.shadow_column_exists or report.sync_trigger_exists:
            return
        if previous is not None and previous.is_interrupted:
            return
        raise ShadowColumnConflictError(
            self._plan.schema, self._plan.table, self._plan.shadow_column
        )

    def _log_progress(self, progress: BackfillProgress) -> None:
        percent = progress.progress_percent
        if percent is not None:
            logger.debug(
                "  %d/%d rows (%.1f%%)",
                progress.rows_backfilled,
                progress.rows_estimated,
                percent,
            )
        if self._plan.verbose:
            logger.info("  batch #%d took %.3fs", progress.batch_number, progress.batch_seconds)

    async def _fail(self, state: PhaseState, error: ExecutionError) -> None:
        """
        Record a fatal execution error.

        A failure to persist the failure itself is logged; the original
        error is what propagates.
        """
        logger.error(
            "Migration of %s.%s failed in phase %s: %s",
            self._plan.qualified_table,
            self._plan.column,
            (error.phase or state.phase).value,
            error,
        )
        if self._record is None or self._state_repo is None:
            return
        try:
            await self._state_repo.record_failure(self._record.id, str(error))
        except (SQLAlchemyError, OSError) as e:
            failure = BestEffortError("Recording migration failure", str(e))
            logger.log(failure.severity.log_level, "%s", failure)


__all__ = ["MigrationOrchestrator"]
