"""
StatementBuilder - SQL text for every migration phase.

The builder is pure: it maps a MigrationPlan to statement text and never
touches the database. Each method returns a statement group, a list of
single statements that the executor runs in order inside one transaction.
Statements are kept separate because asyncpg cannot execute several
commands in one prepared statement.

Identifiers always pass through quote_identifier; the type expression was
sanitized when the plan was built.

Generated SQL, for ``users.age`` -> ``bigint`` keyed on ``id``:

    ALTER TABLE "public"."users" ADD COLUMN "age_new" bigint

    CREATE OR REPLACE FUNCTION "public"."sync_users_age"() ... NEW."age_new" := NEW."age" ...
    DROP TRIGGER IF EXISTS "trg_sync_users_age" ON "public"."users"
    CREATE TRIGGER "trg_sync_users_age" BEFORE INSERT OR UPDATE ON "public"."users"
        FOR EACH ROW EXECUTE FUNCTION "public"."sync_users_age"()

    UPDATE "public"."users" AS target SET "age_new" = target."age"
    FROM (SELECT "id" FROM "public"."users" WHERE "age" IS NOT NULL AND "age_new" IS NULL
          ORDER BY "id" LIMIT 1000) AS batch
    WHERE target."id" = batch."id"

    DROP TRIGGER IF EXISTS "trg_sync_users_age" ON "public"."users"
    DROP FUNCTION IF EXISTS "public"."sync_users_age"()

    ALTER TABLE "public"."users" DROP COLUMN "age"
    ALTER TABLE "public"."users" RENAME COLUMN "age_new" TO "age"
"""

from __future__ import annotations

import textwrap

from colshift.identifiers import qualified_name, quote_identifier
from colshift.models import BackfillStrategy, MigrationPlan


def _sql(statement: str) -> str:
    return textwrap.dedent(statement).strip()


class StatementBuilder:
    """
    Builds the SQL for each phase of a MigrationPlan.

    Example:
        >>> builder = StatementBuilder(plan)
        >>> for statement in builder.install_sync():
        ...     print(statement)
    """

    def __init__(self, plan: MigrationPlan) -> None:
        self._plan = plan
        self._table = qualified_name(plan.schema, plan.table)
        self._column = quote_identifier(plan.column)
        self._shadow = quote_identifier(plan.shadow_column)
        artifact = plan.sync_artifact
        self._function = qualified_name(artifact.schema, artifact.function_name)
        self._trigger = quote_identifier(artifact.trigger_name)

    @property
    def plan(self) -> MigrationPlan:
        """The plan the statements are built for."""
        return self._plan

    def add_shadow_column(self) -> list[str]:
        """Add the shadow column with the target type."""
        return [
            f"ALTER TABLE {self._table} ADD COLUMN {self._shadow} {self._plan.target_type}",
        ]

    def install_sync(self) -> list[str]:
        """
        Install the trigger that mirrors source writes into the shadow column.

        Create-or-replace for the function and drop-if-exists for the trigger
        make the group safe to run again.
        """
        return [
            _sql(f"""
                CREATE OR REPLACE FUNCTION {self._function}()
                RETURNS TRIGGER AS $$
                BEGIN
                    NEW.{self._shadow} := NEW.{self._column};
                    RETURN NEW;
                END;
                $$ LANGUAGE plpgsql
            """),
            f"DROP TRIGGER IF EXISTS {self._trigger} ON {self._table}",
            _sql(f"""
                CREATE TRIGGER {self._trigger}
                BEFORE INSERT OR UPDATE ON {self._table}
                FOR EACH ROW EXECUTE FUNCTION {self._function}()
            """),
        ]

    def backfill_batch(self) -> str:
        """One backfill batch using the plan's pagination strategy."""
        if self._plan.strategy == BackfillStrategy.KEYED:
            return self.keyed_backfill_batch()
        return self.fallback_backfill_batch()

    def keyed_backfill_batch(self) -> str:
        """
        Backfill the next batch in ascending ordering-column order.

        The qualifying rows are re-selected on every batch, so batches never
        overlap and a restarted run picks up where the last one stopped.
        """
        if not self._plan.ordering_column:
            raise ValueError("keyed backfill requires an ordering column")
        key = quote_identifier(self._plan.ordering_column)
        return _sql(f"""
            UPDATE {self._table} AS target
            SET {self._shadow} = target.{self._column}
            FROM (
                SELECT {key}
                FROM {self._table}
                WHERE {self._column} IS NOT NULL
                  AND {self._shadow} IS NULL
                ORDER BY {key}
                LIMIT {self._plan.batch_size}
            ) AS batch
            WHERE target.{key} = batch.{key}
        """)

    def fallback_backfill_batch(self) -> str:
        """
        Backfill the next batch addressed by physical row identity.

        No ordering is applied; which rows a batch picks is up to the
        executor's scan order.
        """
        return _sql(f"""
            UPDATE {self._table}
            SET {self._shadow} = {self._column}
            WHERE ctid = ANY(ARRAY(
                SELECT ctid
                FROM {self._table}
                WHERE {self._column} IS NOT NULL
                  AND {self._shadow} IS NULL
                LIMIT {self._plan.batch_size}
            ))
        """)

    def teardown_sync(self) -> list[str]:
        """Drop the trigger, then its function."""
        return [
            f"DROP TRIGGER IF EXISTS {self._trigger} ON {self._table}",
            f"DROP FUNCTION IF EXISTS {self._function}()",
        ]

    def swap(self) -> list[str]:
        """Drop the source column and rename the shadow column over it."""
        return [
            f"ALTER TABLE {self._table} DROP COLUMN {self._column}",
            f"ALTER TABLE {self._table} RENAME COLUMN {self._shadow} TO {self._column}",
        ]

    def pending_count(self, shadow_exists: bool = True) -> str:
        """
        Count rows the backfill still has to convert.

        Args:
            shadow_exists: When False the shadow column has not been added
                yet, so every row with a non-null source is pending.
        """
        if not shadow_exists:
            return _sql(f"""
                SELECT count(*) FROM {self._table}
                WHERE {self._column} IS NOT NULL
            """)
        return _sql(f"""
            SELECT count(*) FROM {self._table}
            WHERE {self._column} IS NOT NULL
              AND {self._shadow} IS NULL
        """)


__all__ = ["StatementBuilder"]
