#!/usr/bin/env python3
"""
Command-line front-end for colshift.

Usage:
    colshift --dsn postgresql://app@localhost/app --table users --column age --type bigint
    colshift --table users --column age --type bigint --pk id --dry-run
    python -m colshift.cli --help

The connection string may also come from the COLSHIFT_DSN environment
variable.

Exit status:
    0 - migration completed (or dry-run printed)
    1 - a statement failed during the migration
    2 - configuration error (missing or invalid input)
    3 - preflight failed; nothing was changed
    4 - another run holds the migration lock
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from collections.abc import Sequence

from sqlalchemy import text
from sqlalchemy.exc import ArgumentError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from colshift.catalog import SchemaCatalog
from colshift.exceptions import (
    ConfigurationError,
    MigrationError,
    PreflightCheckError,
    classify_exception,
)
from colshift.executor import StatementExecutor
from colshift.locks import AdvisoryLock, migration_lock_key
from colshift.models import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_SCHEMA,
    DEFAULT_THROTTLE_SECONDS,
    ExecutionMode,
    MigrationPlan,
    MigrationResult,
)
from colshift.orchestrator import MigrationOrchestrator
from colshift.state import PostgreSQLMigrationStateRepository

logger = logging.getLogger(__name__)

DSN_ENV_VAR = "COLSHIFT_DSN"

_ASYNC_DRIVER_PREFIXES = ("postgresql://", "postgres://")


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="colshift",
        description="Change a PostgreSQL column's type online via a shadow column.",
    )
    parser.add_argument(
        "--dsn",
        default=os.environ.get(DSN_ENV_VAR),
        help=f"Database connection string (default: ${DSN_ENV_VAR})",
    )
    parser.add_argument(
        "--schema",
        default=DEFAULT_SCHEMA,
        help=f"Schema holding the table (default: {DEFAULT_SCHEMA})",
    )
    parser.add_argument("--table", required=True, help="Table to migrate")
    parser.add_argument("--column", required=True, help="Column whose type changes")
    parser.add_argument(
        "--type",
        dest="target_type",
        required=True,
        help="New column type, e.g. bigint or 'numeric(12,2)'",
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=DEFAULT_BATCH_SIZE,
        help=f"Rows per backfill batch (default: {DEFAULT_BATCH_SIZE})",
    )
    parser.add_argument(
        "--pk",
        dest="ordering_column",
        default=None,
        help="Primary-key column for ordered batches (default: physical row order)",
    )
    parser.add_argument(
        "--throttle",
        type=float,
        default=DEFAULT_THROTTLE_SECONDS,
        help=f"Seconds to pause between batches (default: {DEFAULT_THROTTLE_SECONDS})",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the statements and the backfill query plan without executing",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Print SQL text and timings",
    )
    parser.add_argument(
        "--no-state",
        action="store_true",
        help="Do not read or write the colshift_migrations state table",
    )
    parser.add_argument(
        "--state-schema",
        default=DEFAULT_SCHEMA,
        help=f"Schema for the colshift_migrations table (default: {DEFAULT_SCHEMA})",
    )
    parser.add_argument(
        "--no-lock",
        action="store_true",
        help="Do not take the advisory lock guarding the column",
    )
    parser.add_argument(
        "--no-tracing",
        action="store_true",
        help="Disable OpenTelemetry tracing",
    )
    return parser


def configure_logging(verbose: bool) -> None:
    """
    Send colshift's progress lines to stdout.

    The root logger stays at WARNING so library loggers (SQLAlchemy logs
    SQL at INFO) stay quiet.
    """
    logging.basicConfig(stream=sys.stdout, level=logging.WARNING, format="%(message)s")
    logging.getLogger("colshift").setLevel(logging.DEBUG if verbose else logging.INFO)


def normalize_dsn(dsn: str | None) -> str:
    """
    Validate the connection string and select the asyncpg driver.

    Raises:
        ConfigurationError: If no connection string was given
    """
    if not dsn:
        raise ConfigurationError(
            f"missing connection string: pass --dsn or set {DSN_ENV_VAR}",
            suggested_action=f"Pass --dsn or set {DSN_ENV_VAR}",
        )
    for prefix in _ASYNC_DRIVER_PREFIXES:
        if dsn.startswith(prefix):
            return "postgresql+asyncpg://" + dsn[len(prefix) :]
    return dsn


def plan_from_args(args: argparse.Namespace) -> MigrationPlan:
    """
    Build the immutable plan from parsed arguments.

    Raises:
        ConfigurationError: If any value fails validation
    """
    return MigrationPlan(
        table=args.table,
        column=args.column,
        target_type=args.target_type,
        schema=args.schema,
        ordering_column=args.ordering_column or None,
        batch_size=args.batch_size,
        throttle_seconds=args.throttle,
        mode=ExecutionMode.DRY_RUN if args.dry_run else ExecutionMode.LIVE,
        verbose=args.verbose,
    )


async def ping(engine: AsyncEngine) -> None:
    """
    Check the database is reachable.

    Raises:
        PreflightCheckError: If the connection or the ping fails
    """
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        raise PreflightCheckError("connection", str(getattr(e, "orig", None) or e)) from e


async def run_migration(
    plan: MigrationPlan,
    dsn: str,
    *,
    use_state: bool = True,
    state_schema: str = DEFAULT_SCHEMA,
    use_lock: bool = True,
    enable_tracing: bool = True,
) -> MigrationResult:
    """
    Connect, run the migration and dispose of the engine.

    Args:
        plan: The migration plan
        dsn: SQLAlchemy async connection URL
        use_state: Track progress in the colshift_migrations table
        state_schema: Schema for the state table
        use_lock: Hold the column's advisory lock while mutating
        enable_tracing: Whether to enable OpenTelemetry tracing

    Returns:
        MigrationResult of the run
    """
    try:
        engine = create_async_engine(dsn)
    except ArgumentError as e:
        raise ConfigurationError(f"invalid connection string: {e}") from e

    try:
        await ping(engine)

        executor = StatementExecutor(
            engine,
            mode=plan.mode,
            verbose=plan.verbose,
            enable_tracing=enable_tracing,
        )
        state_repo = (
            PostgreSQLMigrationStateRepository(
                engine, schema=state_schema, enable_tracing=enable_tracing
            )
            if use_state
            else None
        )
        lock = (
            AdvisoryLock(engine, migration_lock_key(plan), enable_tracing=enable_tracing)
            if use_lock
            else None
        )

        orchestrator = MigrationOrchestrator(
            plan,
            executor,
            SchemaCatalog(engine),
            state_repo=state_repo,
            lock=lock,
            enable_tracing=enable_tracing,
        )
        return await orchestrator.run()
    finally:
        await engine.dispose()


def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    try:
        plan = plan_from_args(args)
        dsn = normalize_dsn(args.dsn)
        result = asyncio.run(
            run_migration(
                plan,
                dsn,
                use_state=not args.no_state,
                state_schema=args.state_schema,
                use_lock=not args.no_lock,
                enable_tracing=not args.no_tracing,
            )
        )
    except MigrationError as e:
        logger.error("%s", e)
        if e.suggested_action:
            logger.error("  %s", e.suggested_action)
        return e.exit_code
    except Exception as e:
        classification = classify_exception(e)
        logger.exception("Unexpected %s: %s", type(e).__name__, e)
        logger.error("  %s", classification.suggested_action)
        return classification.exit_code

    if result.already_completed:
        return 0

    if result.resumed_from is not None:
        logger.info("Resumed from phase %s.", result.resumed_from.value)
    if not result.dry_run:
        logger.info(
            "Backfilled %d rows in %d batches (%.1fs).",
            result.rows_backfilled,
            result.batches,
            result.duration_seconds,
        )
    return 0


if __name__ == "__main__":
    sys.exit(main())
