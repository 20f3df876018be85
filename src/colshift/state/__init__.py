"""
Persisted migration state.

Records which phase a column migration reached so an interrupted run can
be reported precisely and a finished one recognized.
"""

from colshift.state.models import MigrationStateRecord
from colshift.state.repository import (
    MAX_ERROR_LENGTH,
    STATE_TABLE,
    InMemoryMigrationStateRepository,
    MigrationStateRepository,
    PostgreSQLMigrationStateRepository,
)

__all__ = [
    "MAX_ERROR_LENGTH",
    "STATE_TABLE",
    "MigrationStateRecord",
    "MigrationStateRepository",
    "PostgreSQLMigrationStateRepository",
    "InMemoryMigrationStateRepository",
]
