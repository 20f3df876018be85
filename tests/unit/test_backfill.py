"""
Unit tests for BackfillEngine.

Tests cover:
- Convergence on the first zero-row batch
- Progress reporting and callbacks
- Throttling between batches
- Dry-run single representative batch
- Batch failures
- Cancellation
"""

from unittest.mock import AsyncMock, patch

import pytest

from colshift.backfill import BackfillEngine
from colshift.exceptions import BackfillError
from colshift.models import BackfillProgress, ExecutionMode, MigrationPlan
from colshift.observability import MockTracer
from colshift.statements import StatementBuilder
from tests.fixtures import RecordingExecutor, make_plan


async def _collect(engine: BackfillEngine, **kwargs) -> list[BackfillProgress]:
    return [progress async for progress in engine.run(**kwargs)]


class TestBackfillLoop:
    @pytest.mark.asyncio
    async def test_runs_until_zero_rows(self, keyed_plan: MigrationPlan) -> None:
        executor = RecordingExecutor([1000, 1000, 500])
        engine = BackfillEngine(keyed_plan, executor, enable_tracing=False)

        progress = await _collect(engine, rows_estimated=2500)

        assert executor.contexts == [
            "Batch update #1",
            "Batch update #2",
            "Batch update #3",
            "Batch update #4",
        ]
        assert [p.rows_affected for p in progress] == [1000, 1000, 500, 0]
        assert [p.rows_backfilled for p in progress] == [1000, 2000, 2500, 2500]
        assert progress[-1].is_complete
        assert not any(p.is_complete for p in progress[:-1])
        assert progress[2].progress_percent == 100.0

    @pytest.mark.asyncio
    async def test_every_batch_uses_the_same_statement(self, keyed_plan: MigrationPlan) -> None:
        executor = RecordingExecutor([10, 10])
        await _collect(BackfillEngine(keyed_plan, executor, enable_tracing=False))

        expected = StatementBuilder(keyed_plan).keyed_backfill_batch()
        assert set(executor.statements) == {expected}

    @pytest.mark.asyncio
    async def test_empty_table_converges_immediately(self, plan: MigrationPlan) -> None:
        executor = RecordingExecutor([])
        progress = await _collect(BackfillEngine(plan, executor, enable_tracing=False))

        assert len(executor.calls) == 1
        assert len(progress) == 1
        assert progress[0].is_complete
        assert progress[0].rows_backfilled == 0

    @pytest.mark.asyncio
    async def test_progress_callback(self, keyed_plan: MigrationPlan) -> None:
        seen: list[BackfillProgress] = []
        executor = RecordingExecutor([5])

        await _collect(
            BackfillEngine(keyed_plan, executor, enable_tracing=False),
            progress_callback=seen.append,
        )

        assert [p.rows_affected for p in seen] == [5, 0]

    @pytest.mark.asyncio
    async def test_throttles_between_batches(self) -> None:
        plan = make_plan(ordering_column="id", throttle_seconds=0.2)
        executor = RecordingExecutor([1000, 1000, 500])

        with patch("colshift.backfill.asyncio.sleep", new_callable=AsyncMock) as sleep:
            await _collect(BackfillEngine(plan, executor, enable_tracing=False))

        assert sleep.await_count == 3
        sleep.assert_awaited_with(0.2)

    @pytest.mark.asyncio
    async def test_batch_spans(self, keyed_plan: MigrationPlan) -> None:
        tracer = MockTracer()
        executor = RecordingExecutor([7])

        await _collect(BackfillEngine(keyed_plan, executor, tracer=tracer))

        assert tracer.span_names == [
            "colshift.backfill.run",
            "colshift.backfill.batch",
            "colshift.backfill.batch",
        ]


class TestBackfillDryRun:
    @pytest.mark.asyncio
    async def test_single_batch_printed_and_explained(self) -> None:
        plan = make_plan(ordering_column="id", mode=ExecutionMode.DRY_RUN)
        executor = RecordingExecutor([1000, 1000], mode=ExecutionMode.DRY_RUN)

        progress = await _collect(BackfillEngine(plan, executor, enable_tracing=False))

        statement = StatementBuilder(plan).backfill_batch()
        assert executor.calls == [("Batch update #1", [statement])]
        assert executor.explained == [statement]
        assert len(progress) == 1
        assert progress[0].is_complete
        assert progress[0].rows_affected == 0


class TestBackfillFailure:
    @pytest.mark.asyncio
    async def test_batch_failure_raises_backfill_error(self, keyed_plan: MigrationPlan) -> None:
        executor = RecordingExecutor([1000], fail_on={"Batch update #2"})
        engine = BackfillEngine(keyed_plan, executor, enable_tracing=False)

        with pytest.raises(BackfillError) as exc_info:
            await _collect(engine)

        assert exc_info.value.batch_number == 2
        assert exc_info.value.rows_backfilled == 1000
        assert exc_info.value.error == "simulated failure"
        assert exc_info.value.table == "public.users"


class TestBackfillCancel:
    @pytest.mark.asyncio
    async def test_cancel_stops_after_current_batch(self, keyed_plan: MigrationPlan) -> None:
        executor = RecordingExecutor([100, 100, 100, 100])
        engine = BackfillEngine(keyed_plan, executor, enable_tracing=False)

        progress: list[BackfillProgress] = []
        async for item in engine.run():
            progress.append(item)
            if item.batch_number == 2:
                engine.cancel()

        assert engine.is_cancelled
        assert len(executor.calls) == 2
        assert not progress[-1].is_complete
        assert progress[-1].rows_backfilled == 200

    @pytest.mark.asyncio
    async def test_cancel_before_run_executes_nothing(self, keyed_plan: MigrationPlan) -> None:
        executor = RecordingExecutor([100])
        engine = BackfillEngine(keyed_plan, executor, enable_tracing=False)
        engine.cancel()

        progress = await _collect(engine)

        assert executor.calls == []
        assert len(progress) == 1
        assert not progress[0].is_complete

    @pytest.mark.asyncio
    async def test_cancel_during_final_batch_still_converges(
        self, keyed_plan: MigrationPlan
    ) -> None:
        class CancellingExecutor(RecordingExecutor):
            engine: BackfillEngine

            async def execute(self, statements, context):
                result = await super().execute(statements, context)
                if result.rows_affected == 0:
                    self.engine.cancel()
                return result

        executor = CancellingExecutor([100])
        engine = BackfillEngine(keyed_plan, executor, enable_tracing=False)
        executor.engine = engine

        progress = await _collect(engine)

        assert engine.is_cancelled
        assert progress[-1].is_complete
        assert progress[-1].rows_backfilled == 100
