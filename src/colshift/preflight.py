"""
PreflightValidator - the gate every migration passes before mutating anything.

Checks, in order, stopping at the first failure:
    1. schema exists
    2. table exists in the schema
    3. source column exists
    4. ordering column exists (when one was supplied)
    5. current role may ALTER the table
    6. target type resolves in the type catalog (modifiers stripped)
    7. whether a shadow column already exists, and if so whether the sync
       trigger of an unfinished run is still installed
    8. best effort: count the rows the backfill will convert

Checks 1-6 raise a PreflightError subclass; check 8 only logs on failure.
Whether an existing shadow column may be reused is decided by the
orchestrator, which also consults the persisted state record.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError

from colshift.catalog import SchemaCatalog
from colshift.exceptions import (
    BestEffortError,
    ColumnNotFoundError,
    InsufficientPrivilegeError,
    OrderingColumnNotFoundError,
    PreflightCheckError,
    SchemaNotFoundError,
    TableNotFoundError,
    UnknownTypeError,
)
from colshift.identifiers import base_type_name
from colshift.models import MigrationPlan
from colshift.observability import (
    ATTR_COLUMN,
    ATTR_DB_SCHEMA,
    ATTR_DB_TABLE,
    ATTR_TARGET_TYPE,
    Tracer,
    create_tracer,
)
from colshift.statements import StatementBuilder

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PreflightReport:
    """
    Outcome of a successful preflight.

    Attributes:
        shadow_column_exists: Whether a column with the shadow column's name exists.
        sync_trigger_exists: Whether the migration's sync trigger is installed.
            Only looked up when the shadow column exists.
        rows_pending: Rows the backfill will convert, or None if the count failed.
    """

    shadow_column_exists: bool
    sync_trigger_exists: bool = False
    rows_pending: int | None = None


class PreflightValidator:
    """
    Validates a MigrationPlan against the live catalog.

    Example:
        >>> validator = PreflightValidator(SchemaCatalog(engine))
        >>> report = await validator.run(plan)
        >>> report.rows_pending
        2500
    """

    def __init__(
        self,
        catalog: SchemaCatalog,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._catalog = catalog

    async def run(self, plan: MigrationPlan) -> PreflightReport:
        """
        Run all checks for the plan.

        Args:
            plan: The migration plan

        Returns:
            PreflightReport for a plan that may proceed

        Raises:
            PreflightError: The first failed check
        """
        with self._tracer.span(
            "colshift.preflight.run",
            {
                ATTR_DB_SCHEMA: plan.schema,
                ATTR_DB_TABLE: plan.table,
                ATTR_COLUMN: plan.column,
                ATTR_TARGET_TYPE: plan.target_type,
            },
        ):
            if not await self._check("schema_exists", self._catalog.schema_exists(plan.schema)):
                raise SchemaNotFoundError(plan.schema)

            if not await self._check(
                "table_exists", self._catalog.table_exists(plan.schema, plan.table)
            ):
                raise TableNotFoundError(plan.schema, plan.table)

            if not await self._check(
                "column_exists",
                self._catalog.column_exists(plan.schema, plan.table, plan.column),
            ):
                raise ColumnNotFoundError(plan.schema, plan.table, plan.column)

            if plan.ordering_column and not await self._check(
                "ordering_column_exists",
                self._catalog.column_exists(plan.schema, plan.table, plan.ordering_column),
            ):
                raise OrderingColumnNotFoundError(plan.schema, plan.table, plan.ordering_column)

            if not await self._check(
                "alter_privilege",
                self._catalog.has_alter_privilege(plan.schema, plan.table),
            ):
                raise InsufficientPrivilegeError(plan.schema, plan.table)

            if not await self._check(
                "type_is_valid",
                self._catalog.type_is_valid(base_type_name(plan.target_type)),
            ):
                raise UnknownTypeError(plan.target_type)

            shadow_exists = await self._check(
                "shadow_column_exists",
                self._catalog.column_exists(plan.schema, plan.table, plan.shadow_column),
            )
            trigger_exists = shadow_exists and await self._check(
                "sync_trigger_exists",
                self._catalog.trigger_exists(
                    plan.schema, plan.table, plan.sync_artifact.trigger_name
                ),
            )

            rows_pending = await self._estimate(plan, shadow_exists)
            return PreflightReport(
                shadow_column_exists=shadow_exists,
                sync_trigger_exists=trigger_exists,
                rows_pending=rows_pending,
            )

    async def _check(self, check: str, query: Awaitable[bool]) -> bool:
        """Await one catalog query, turning driver failures into PreflightCheckError."""
        try:
            return bool(await query)
        except (SQLAlchemyError, OSError) as e:
            raise PreflightCheckError(check, str(getattr(e, "orig", None) or e)) from e

    async def _estimate(self, plan: MigrationPlan, shadow_exists: bool) -> int | None:
        try:
            rows = await self._catalog.count_pending(StatementBuilder(plan), shadow_exists)
        except SQLAlchemyError as e:
            failure = BestEffortError(
                "Backfill estimate", str(getattr(e, "orig", None) or e)
            )
            logger.log(failure.severity.log_level, "%s", failure)
            return None

        logger.info("Planned rows to backfill: %d", rows)
        return rows


__all__ = ["PreflightReport", "PreflightValidator"]
