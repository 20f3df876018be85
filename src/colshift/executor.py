"""
StatementExecutor - the single path by which statements reach the database.

Three behaviours, chosen from the plan:
    - live: execute the statement group in one transaction
    - live + verbose: the same, with the SQL text and timing logged
    - dry-run: log the statements, never execute them

The executor never retries. A failing statement raises ExecutionError and
the caller decides what that means; for the orchestrator it is fatal.
EXPLAIN output is inspection-only, so failures there are logged and
swallowed.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from colshift._connection import execute_with_connection
from colshift.exceptions import BestEffortError, ExecutionError
from colshift.models import ExecutionMode, ExecutionResult
from colshift.observability import (
    ATTR_CONTEXT,
    ATTR_DB_OPERATION,
    ATTR_DB_SYSTEM,
    ATTR_DRY_RUN,
    Tracer,
    create_tracer,
)

logger = logging.getLogger(__name__)


def _driver_message(error: SQLAlchemyError) -> str:
    """Prefer the driver's own message over SQLAlchemy's wrapped one."""
    orig = getattr(error, "orig", None)
    return str(orig) if orig is not None else str(error)


class StatementExecutor:
    """
    Executes statement groups in live or dry-run mode.

    Example:
        >>> executor = StatementExecutor(engine, mode=ExecutionMode.LIVE, verbose=True)
        >>> result = await executor.execute(builder.add_shadow_column(), "Adding new column")
        >>> result.rows_affected
        0
    """

    def __init__(
        self,
        conn: AsyncConnection | AsyncEngine,
        *,
        mode: ExecutionMode = ExecutionMode.LIVE,
        verbose: bool = False,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the executor.

        Args:
            conn: Database connection or engine
            mode: Live execution or dry-run
            verbose: Log SQL text and per-group timings
            tracer: Optional custom Tracer instance.
            enable_tracing: Whether to enable OpenTelemetry tracing
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._conn = conn
        self._mode = mode
        self._verbose = verbose

    @property
    def dry_run(self) -> bool:
        """Whether statements are printed instead of executed."""
        return self._mode == ExecutionMode.DRY_RUN

    async def execute(
        self,
        statements: Sequence[str] | str,
        context: str,
    ) -> ExecutionResult:
        """
        Execute a statement group in a single transaction.

        Args:
            statements: One statement or an ordered group of statements
            context: Phase context used in log lines and errors

        Returns:
            ExecutionResult with the rows affected by the last statement

        Raises:
            ExecutionError: If any statement fails (live mode only)
        """
        group = [statements] if isinstance(statements, str) else list(statements)

        with self._tracer.span(
            "colshift.executor.execute",
            {
                ATTR_CONTEXT: context,
                ATTR_DB_OPERATION: group[0].split(None, 1)[0].upper() if group else "",
                ATTR_DRY_RUN: self.dry_run,
                ATTR_DB_SYSTEM: "postgresql",
            },
        ):
            if self.dry_run:
                logger.info("%s (dry-run)", context)
                for statement in group:
                    logger.info("%s;", statement)
                return ExecutionResult(executed=False)

            logger.info("%s...", context)
            if self._verbose:
                for statement in group:
                    logger.debug("%s;", statement)

            start = time.monotonic()
            rows_affected = 0
            try:
                async with execute_with_connection(self._conn, transactional=True) as conn:
                    for statement in group:
                        result = await conn.exec_driver_sql(statement)
                        rows_affected = max(result.rowcount or 0, 0)
            except SQLAlchemyError as e:
                logger.error("Error [%s]: %s", context, _driver_message(e))
                raise ExecutionError(context, _driver_message(e)) from e

            duration = time.monotonic() - start
            if self._verbose:
                logger.info("  done in %.3fs", duration)

            return ExecutionResult(
                rows_affected=rows_affected,
                duration_seconds=duration,
                executed=True,
            )

    async def explain(self, statement: str) -> list[str]:
        """
        Show the query plan for a statement without executing it.

        Uses plain EXPLAIN (never ANALYZE). Failures are logged as best-effort
        errors and produce an empty plan.

        Args:
            statement: The statement to explain

        Returns:
            Plan lines, or an empty list if no plan could be obtained
        """
        with self._tracer.span(
            "colshift.executor.explain",
            {ATTR_DB_SYSTEM: "postgresql"},
        ):
            try:
                async with execute_with_connection(self._conn, transactional=False) as conn:
                    result = await conn.exec_driver_sql(f"EXPLAIN {statement}")
                    plan = [str(row[0]) for row in result.fetchall()]
            except SQLAlchemyError as e:
                failure = BestEffortError("EXPLAIN", _driver_message(e))
                logger.log(failure.severity.log_level, "  %s", failure)
                return []

            for line in plan:
                logger.info("  %s", line)
            return plan


__all__ = ["StatementExecutor"]
