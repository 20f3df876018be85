"""
Persisted migration-state record.

One record per (schema, table, column). It lets a later run report exactly
where an interrupted run stopped, and recognize a migration that already
finished.
"""

from datetime import UTC, datetime
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from colshift.models import MigrationPhase, MigrationPlan


class MigrationStateRecord(BaseModel):
    """
    Durable progress marker for one column migration.

    Attributes:
        id: Record identifier
        schema_name: Schema holding the table
        table_name: Migrated table
        column_name: Migrated column
        target_type: Type expression the column is being converted to
        ordering_column: Ordering column used for keyed backfill, if any
        phase: Last phase reached
        rows_backfilled: Cumulative rows converted by the backfill
        batches: Backfill batches that converted rows
        started_at: When the current attempt started
        updated_at: Last update of the record
        completed_at: When the swap finished (None until then)
        last_error: Error text of the failed attempt (truncated)
    """

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(default_factory=uuid4)
    schema_name: str
    table_name: str
    column_name: str
    target_type: str
    ordering_column: str | None = None
    phase: MigrationPhase = MigrationPhase.INIT
    rows_backfilled: int = Field(default=0, ge=0)
    batches: int = Field(default=0, ge=0)
    started_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = None
    last_error: str | None = None

    @classmethod
    def for_plan(cls, plan: MigrationPlan) -> "MigrationStateRecord":
        """Create a fresh record in INIT for a plan."""
        return cls(
            schema_name=plan.schema,
            table_name=plan.table,
            column_name=plan.column,
            target_type=plan.target_type,
            ordering_column=plan.ordering_column,
        )

    @property
    def is_interrupted(self) -> bool:
        """True when an earlier attempt stopped before the swap."""
        return self.phase != MigrationPhase.SWAPPED

    def completed_for(self, plan: MigrationPlan) -> bool:
        """Whether this record shows the plan's migration already swapped."""
        return (
            self.phase == MigrationPhase.SWAPPED
            and self.target_type.lower() == plan.target_type.lower()
        )


__all__ = ["MigrationStateRecord"]
