"""
Unit tests for colshift data models.

Tests cover:
- MigrationPhase state machine
- MigrationPlan validation and derived values
- PhaseState transitions and batch accounting
- BackfillProgress percentages
"""

import dataclasses

import pytest

from colshift.exceptions import (
    InvalidPhaseTransitionError,
    InvalidPlanError,
    InvalidTypeExpressionError,
)
from colshift.models import (
    VALID_TRANSITIONS,
    BackfillProgress,
    BackfillStrategy,
    ExecutionMode,
    MigrationPhase,
    MigrationPlan,
    PhaseState,
)

FORWARD_ORDER = [
    MigrationPhase.INIT,
    MigrationPhase.SHADOW_COLUMN_ADDED,
    MigrationPhase.TRIGGER_INSTALLED,
    MigrationPhase.BACKFILLING,
    MigrationPhase.TRIGGER_REMOVED,
    MigrationPhase.SWAPPED,
]


class TestMigrationPhase:
    """Tests for the MigrationPhase state machine."""

    @pytest.mark.parametrize(
        ("current", "target"),
        list(zip(FORWARD_ORDER, FORWARD_ORDER[1:], strict=False)),
    )
    def test_forward_transitions_are_valid(
        self, current: MigrationPhase, target: MigrationPhase
    ) -> None:
        assert current.can_transition_to(target)
        assert VALID_TRANSITIONS[current] == target

    def test_cannot_skip_trigger_install(self) -> None:
        assert not MigrationPhase.SHADOW_COLUMN_ADDED.can_transition_to(
            MigrationPhase.BACKFILLING
        )

    def test_cannot_go_backwards(self) -> None:
        assert not MigrationPhase.BACKFILLING.can_transition_to(
            MigrationPhase.TRIGGER_INSTALLED
        )

    @pytest.mark.parametrize("phase", FORWARD_ORDER[:-1])
    def test_non_terminal_phases_can_fail(self, phase: MigrationPhase) -> None:
        assert phase.can_transition_to(MigrationPhase.FAILED)

    @pytest.mark.parametrize("phase", [MigrationPhase.SWAPPED, MigrationPhase.FAILED])
    def test_terminal_phases_have_no_transitions(self, phase: MigrationPhase) -> None:
        assert phase.is_terminal
        assert not any(phase.can_transition_to(target) for target in MigrationPhase)


class TestMigrationPlan:
    """Tests for MigrationPlan validation."""

    def test_defaults(self) -> None:
        plan = MigrationPlan(table="users", column="age", target_type="bigint")

        assert plan.schema == "public"
        assert plan.batch_size == 1000
        assert plan.throttle_seconds == 0.2
        assert plan.mode == ExecutionMode.LIVE
        assert plan.ordering_column is None
        assert not plan.verbose

    def test_derived_names(self) -> None:
        plan = MigrationPlan(table="users", column="age", target_type="bigint")

        assert plan.shadow_column == "age_new"
        assert plan.sync_artifact.function_name == "sync_users_age"
        assert plan.sync_artifact.trigger_name == "trg_sync_users_age"
        assert plan.sync_artifact.schema == "public"
        assert plan.qualified_table == "public.users"

    def test_strategy_depends_on_ordering_column(self) -> None:
        fallback = MigrationPlan(table="users", column="age", target_type="bigint")
        keyed = MigrationPlan(
            table="users", column="age", target_type="bigint", ordering_column="id"
        )

        assert fallback.strategy == BackfillStrategy.FALLBACK
        assert keyed.strategy == BackfillStrategy.KEYED

    def test_target_type_is_normalized(self) -> None:
        plan = MigrationPlan(table="users", column="age", target_type="  numeric(10,  2) ")
        assert plan.target_type == "numeric(10, 2)"

    def test_plan_is_immutable(self) -> None:
        plan = MigrationPlan(table="users", column="age", target_type="bigint")
        with pytest.raises(dataclasses.FrozenInstanceError):
            plan.batch_size = 5  # type: ignore[misc]

    @pytest.mark.parametrize("batch_size", [0, -1])
    def test_rejects_non_positive_batch_size(self, batch_size: int) -> None:
        with pytest.raises(InvalidPlanError) as exc_info:
            MigrationPlan(table="users", column="age", target_type="bigint", batch_size=batch_size)

        assert exc_info.value.field_name == "batch_size"

    def test_rejects_bool_batch_size(self) -> None:
        with pytest.raises(InvalidPlanError):
            MigrationPlan(table="users", column="age", target_type="bigint", batch_size=True)

    @pytest.mark.parametrize("batch_size", [1.5, 1000.0, "1000"])
    def test_rejects_non_integer_batch_size(self, batch_size: object) -> None:
        with pytest.raises(InvalidPlanError) as exc_info:
            MigrationPlan(
                table="users",
                column="age",
                target_type="bigint",
                batch_size=batch_size,  # type: ignore[arg-type]
            )

        assert exc_info.value.field_name == "batch_size"

    def test_rejects_negative_throttle(self) -> None:
        with pytest.raises(InvalidPlanError) as exc_info:
            MigrationPlan(
                table="users", column="age", target_type="bigint", throttle_seconds=-0.1
            )

        assert exc_info.value.field_name == "throttle_seconds"

    def test_zero_throttle_allowed(self) -> None:
        plan = MigrationPlan(table="users", column="age", target_type="bigint", throttle_seconds=0)
        assert plan.throttle_seconds == 0

    @pytest.mark.parametrize("field", ["table", "column", "schema"])
    def test_rejects_empty_identifiers(self, field: str) -> None:
        values = {"table": "users", "column": "age", "target_type": "bigint", field: ""}
        with pytest.raises(InvalidPlanError):
            MigrationPlan(**values)

    @pytest.mark.parametrize("ordering_column", ["age", "age_new"])
    def test_ordering_column_must_differ_from_migrated_columns(
        self, ordering_column: str
    ) -> None:
        with pytest.raises(InvalidPlanError) as exc_info:
            MigrationPlan(
                table="users",
                column="age",
                target_type="bigint",
                ordering_column=ordering_column,
            )

        assert exc_info.value.field_name == "ordering_column"

    def test_rejects_trigger_name_over_limit(self) -> None:
        # trg_sync_ + 27 + _ + 27 = 64 bytes
        with pytest.raises(InvalidPlanError):
            MigrationPlan(table="t" * 27, column="c" * 27, target_type="bigint")

    def test_rejects_bad_type_expression(self) -> None:
        with pytest.raises(InvalidTypeExpressionError):
            MigrationPlan(table="users", column="age", target_type="bigint; drop table users")

    def test_to_dict(self) -> None:
        plan = MigrationPlan(
            table="users",
            column="age",
            target_type="bigint",
            ordering_column="id",
            mode=ExecutionMode.DRY_RUN,
        )

        data = plan.to_dict()

        assert data["shadow_column"] == "age_new"
        assert data["strategy"] == "keyed"
        assert data["mode"] == "dry_run"
        assert plan.dry_run


class TestPhaseState:
    """Tests for PhaseState."""

    def test_starts_in_init(self) -> None:
        state = PhaseState()
        assert state.phase == MigrationPhase.INIT
        assert state.rows_backfilled == 0

    def test_advance_follows_state_machine(self) -> None:
        state = PhaseState()
        for phase in FORWARD_ORDER[1:]:
            state.advance(phase)
        assert state.phase == MigrationPhase.SWAPPED

    def test_invalid_advance_raises(self) -> None:
        state = PhaseState()
        with pytest.raises(InvalidPhaseTransitionError) as exc_info:
            state.advance(MigrationPhase.BACKFILLING)

        assert exc_info.value.current_phase == MigrationPhase.INIT
        assert exc_info.value.target_phase == MigrationPhase.BACKFILLING
        assert state.phase == MigrationPhase.INIT

    def test_record_batch_accumulates(self) -> None:
        state = PhaseState()
        state.record_batch(1000)
        state.record_batch(500)
        state.record_batch(0)

        assert state.rows_backfilled == 1500
        assert state.batches == 2
        assert state.last_batch_rows == 0


class TestBackfillProgress:
    """Tests for BackfillProgress."""

    def _progress(self, rows_backfilled: int, rows_estimated: int | None) -> BackfillProgress:
        return BackfillProgress(
            batch_number=1,
            rows_affected=rows_backfilled,
            rows_backfilled=rows_backfilled,
            rows_estimated=rows_estimated,
            batch_seconds=0.01,
            is_complete=False,
        )

    def test_progress_percent(self) -> None:
        assert self._progress(1250, 2500).progress_percent == 50.0

    def test_progress_percent_unknown_estimate(self) -> None:
        assert self._progress(1250, None).progress_percent is None

    def test_progress_percent_capped_at_100(self) -> None:
        # concurrent inserts can push the count past the estimate
        assert self._progress(3000, 2500).progress_percent == 100.0
