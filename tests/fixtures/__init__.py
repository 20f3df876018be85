"""
Shared test fixtures for colshift.

This module provides reusable test doubles:
- RecordingExecutor: stands in for StatementExecutor, recording every
  statement group and returning scripted backfill row counts
- RecordingCatalog: stands in for SchemaCatalog with configurable answers
- make_plan: MigrationPlan factory with test defaults

Usage:
    from tests.fixtures import RecordingCatalog, RecordingExecutor, make_plan
"""

from tests.fixtures.doubles import RecordingCatalog, RecordingExecutor, make_plan

__all__ = ["RecordingCatalog", "RecordingExecutor", "make_plan"]
