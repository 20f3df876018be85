"""
Read-only catalog queries against PostgreSQL.

Used by the preflight validator and the orchestrator. Every query binds its
inputs as parameters; nothing here builds SQL from user input except
count_pending, which runs statement text produced by StatementBuilder.
"""

from __future__ import annotations

import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from colshift._connection import execute_with_connection
from colshift.identifiers import qualified_name
from colshift.statements import StatementBuilder

logger = logging.getLogger(__name__)


class SchemaCatalog:
    """
    Inspects schemas, tables, columns, privileges and types.

    Example:
        >>> catalog = SchemaCatalog(engine)
        >>> await catalog.column_exists("public", "users", "age")
        True
    """

    def __init__(self, conn: AsyncConnection | AsyncEngine) -> None:
        self._conn = conn

    async def schema_exists(self, schema: str) -> bool:
        async with execute_with_connection(self._conn, transactional=False) as conn:
            result = await conn.execute(
                text("""
                    SELECT EXISTS (
                        SELECT 1 FROM information_schema.schemata
                        WHERE schema_name = :schema
                    )
                """),
                {"schema": schema},
            )
            return bool(result.scalar())

    async def table_exists(self, schema: str, table: str) -> bool:
        async with execute_with_connection(self._conn, transactional=False) as conn:
            result = await conn.execute(
                text("SELECT to_regclass(:name) IS NOT NULL"),
                {"name": qualified_name(schema, table)},
            )
            return bool(result.scalar())

    async def column_exists(self, schema: str, table: str, column: str) -> bool:
        async with execute_with_connection(self._conn, transactional=False) as conn:
            result = await conn.execute(
                text("""
                    SELECT EXISTS (
                        SELECT 1 FROM information_schema.columns
                        WHERE table_schema = :schema
                          AND table_name = :table
                          AND column_name = :column
                    )
                """),
                {"schema": schema, "table": table, "column": column},
            )
            return bool(result.scalar())

    async def trigger_exists(self, schema: str, table: str, trigger: str) -> bool:
        async with execute_with_connection(self._conn, transactional=False) as conn:
            result = await conn.execute(
                text("""
                    SELECT EXISTS (
                        SELECT 1 FROM pg_trigger
                        WHERE tgrelid = to_regclass(:name)
                          AND tgname = :trigger
                          AND NOT tgisinternal
                    )
                """),
                {"name": qualified_name(schema, table), "trigger": trigger},
            )
            return bool(result.scalar())

    async def has_alter_privilege(self, schema: str, table: str) -> bool:
        """
        Whether the current role may ALTER the table.

        PostgreSQL has no grantable ALTER privilege; ownership (direct or
        through role membership) is what ALTER TABLE requires.
        """
        async with execute_with_connection(self._conn, transactional=False) as conn:
            result = await conn.execute(
                text("""
                    SELECT pg_has_role(current_user, c.relowner, 'USAGE')
                    FROM pg_class c
                    WHERE c.oid = to_regclass(:name)
                """),
                {"name": qualified_name(schema, table)},
            )
            return bool(result.scalar())

    async def type_is_valid(self, type_name: str) -> bool:
        """
        Whether the type catalog resolves the (modifier-free) type name.

        Args:
            type_name: Type name with modifiers already stripped
        """
        async with execute_with_connection(self._conn, transactional=False) as conn:
            result = await conn.execute(
                text("SELECT to_regtype(:type_name) IS NOT NULL"),
                {"type_name": type_name},
            )
            return bool(result.scalar())

    async def count_pending(self, builder: StatementBuilder, shadow_exists: bool = True) -> int:
        """
        Count rows the backfill still has to convert.

        Args:
            builder: Statement builder for the plan
            shadow_exists: Whether the shadow column is already present
        """
        async with execute_with_connection(self._conn, transactional=False) as conn:
            result = await conn.exec_driver_sql(builder.pending_count(shadow_exists))
            return int(result.scalar() or 0)


__all__ = ["SchemaCatalog"]
