"""
Shared pytest fixtures for the colshift tests.

This module provides:
- Plan fixtures (plan, keyed_plan, dry_run_plan)
- Test doubles (catalog, executor)
- Tracing fixtures (mock_tracer)
- State repository fixture (state_repo)
"""

from __future__ import annotations

import pytest

from colshift.models import ExecutionMode, MigrationPlan
from colshift.observability import MockTracer
from colshift.state import InMemoryMigrationStateRepository
from tests.fixtures import RecordingCatalog, RecordingExecutor, make_plan

# =============================================================================
# Plan Fixtures
# =============================================================================


@pytest.fixture
def plan() -> MigrationPlan:
    """users.age -> bigint using the fallback strategy."""
    return make_plan()


@pytest.fixture
def keyed_plan() -> MigrationPlan:
    """users.age -> bigint in batches of 1000 ordered by id."""
    return make_plan(ordering_column="id", batch_size=1000)


@pytest.fixture
def dry_run_plan() -> MigrationPlan:
    """Keyed plan in dry-run mode."""
    return make_plan(ordering_column="id", mode=ExecutionMode.DRY_RUN)


# =============================================================================
# Test Double Fixtures
# =============================================================================


@pytest.fixture
def catalog() -> RecordingCatalog:
    """Catalog where every preflight check passes and age_new is absent."""
    return RecordingCatalog()


@pytest.fixture
def executor() -> RecordingExecutor:
    """Live executor whose backfill converges after 1000, 1000 and 500 rows."""
    return RecordingExecutor([1000, 1000, 500])


@pytest.fixture
def mock_tracer() -> MockTracer:
    """Tracer that records span names."""
    return MockTracer()


@pytest.fixture
def state_repo() -> InMemoryMigrationStateRepository:
    """Empty in-memory state repository."""
    return InMemoryMigrationStateRepository()
