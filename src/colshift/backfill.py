"""
BackfillEngine - drives the batched copy of pre-existing rows into the shadow column.

Each batch re-selects up to batch_size rows whose source value is not null
and whose shadow value is still null, and copies source into shadow. The
loop ends on the first batch that affects zero rows, at which point no
qualifying row remains. Rows with a null source are never selected; the
sync trigger mirrors any concurrent null writes.

Between batches the engine sleeps for the plan's fixed throttle interval.

Dry-run builds one representative batch, prints it, asks the database for
its plan and stops.

Usage:
    >>> engine = BackfillEngine(plan, executor)
    >>> async for progress in engine.run(rows_estimated=2500):
    ...     print(f"Backfilled {progress.rows_affected} rows")
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable

from colshift.exceptions import BackfillError, ExecutionError
from colshift.executor import StatementExecutor
from colshift.models import BackfillProgress, MigrationPlan
from colshift.observability import (
    ATTR_BATCH_NUMBER,
    ATTR_BATCH_SIZE,
    ATTR_DB_TABLE,
    ATTR_ROWS_AFFECTED,
    ATTR_STRATEGY,
    Tracer,
    create_tracer,
)
from colshift.statements import StatementBuilder

logger = logging.getLogger(__name__)


class BackfillEngine:
    """
    Runs backfill batches until the shadow column has converged.

    Attributes:
        _plan: The migration plan.
        _executor: Executor the batches are sent through.
        _builder: Builds the batch statement for the plan's strategy.
        _is_cancelled: Flag indicating cancellation requested.
    """

    def __init__(
        self,
        plan: MigrationPlan,
        executor: StatementExecutor,
        builder: StatementBuilder | None = None,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the backfill engine.

        Args:
            plan: The migration plan.
            executor: StatementExecutor used for every batch.
            builder: Optional StatementBuilder; built from the plan if omitted.
            tracer: Optional custom Tracer instance.
            enable_tracing: Whether to enable OpenTelemetry tracing.
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._plan = plan
        self._executor = executor
        self._builder = builder or StatementBuilder(plan)
        self._is_cancelled = False

    async def run(
        self,
        rows_estimated: int | None = None,
        progress_callback: Callable[[BackfillProgress], None] | None = None,
    ) -> AsyncIterator[BackfillProgress]:
        """
        Run the backfill loop.

        Args:
            rows_estimated: Pending-row estimate from preflight, for progress.
            progress_callback: Optional callback for progress updates.

        Yields:
            BackfillProgress after each batch that converted rows, then a
            final progress with is_complete set.

        Raises:
            BackfillError: If a batch fails.
        """
        plan = self._plan
        with self._tracer.span(
            "colshift.backfill.run",
            {
                ATTR_DB_TABLE: plan.qualified_table,
                ATTR_STRATEGY: plan.strategy.value,
                ATTR_BATCH_SIZE: plan.batch_size,
            },
        ):
            statement = self._builder.backfill_batch()

            if self._executor.dry_run:
                await self._executor.execute(statement, "Batch update #1")
                await self._executor.explain(statement)
                progress = BackfillProgress(
                    batch_number=1,
                    rows_affected=0,
                    rows_backfilled=0,
                    rows_estimated=rows_estimated,
                    batch_seconds=0.0,
                    is_complete=True,
                )
                if progress_callback:
                    progress_callback(progress)
                yield progress
                return

            logger.info(
                "Starting %s backfill of %s.%s in batches of %d",
                plan.strategy.value,
                plan.qualified_table,
                plan.shadow_column,
                plan.batch_size,
            )

            rows_backfilled = 0
            batch_number = 0
            converged = False

            while not self._is_cancelled:
                batch_number += 1
                with self._tracer.span(
                    "colshift.backfill.batch",
                    {ATTR_BATCH_NUMBER: batch_number},
                ) as span:
                    try:
                        result = await self._executor.execute(
                            statement, f"Batch update #{batch_number}"
                        )
                    except ExecutionError as e:
                        raise BackfillError(
                            batch_number,
                            rows_backfilled,
                            e.error,
                            table=plan.qualified_table,
                            column=plan.column,
                        ) from e
                    if span is not None:
                        span.set_attribute(ATTR_ROWS_AFFECTED, result.rows_affected)

                if result.rows_affected == 0:
                    converged = True
                    break

                rows_backfilled += result.rows_affected
                logger.info("  Backfilled %d rows...", result.rows_affected)

                progress = BackfillProgress(
                    batch_number=batch_number,
                    rows_affected=result.rows_affected,
                    rows_backfilled=rows_backfilled,
                    rows_estimated=rows_estimated,
                    batch_seconds=result.duration_seconds,
                    is_complete=False,
                )
                if progress_callback:
                    progress_callback(progress)
                yield progress

                await asyncio.sleep(plan.throttle_seconds)

            final_progress = BackfillProgress(
                batch_number=batch_number,
                rows_affected=0,
                rows_backfilled=rows_backfilled,
                rows_estimated=rows_estimated,
                batch_seconds=0.0,
                is_complete=converged,
            )
            if progress_callback:
                progress_callback(final_progress)
            yield final_progress

            logger.info(
                "Backfill %s: %d rows in %d batches",
                "converged" if final_progress.is_complete else "cancelled",
                rows_backfilled,
                batch_number - 1 if converged else batch_number,
            )

    def cancel(self) -> None:
        """
        Stop the loop after the current batch.

        A cancel requested before run() stops it before the first batch.
        Cancellation is final for this engine.

        The shadow column keeps every row converted so far; a rerun continues
        with the rows still pending.
        """
        self._is_cancelled = True
        logger.info("Backfill cancellation requested")

    @property
    def is_cancelled(self) -> bool:
        """Check if cancellation has been requested."""
        return self._is_cancelled


__all__ = ["BackfillEngine"]
