"""
colshift - online column-type migrations for PostgreSQL.

Changes a column's type without a blocking table rewrite:
- adds a shadow column of the new type
- mirrors live writes into it with a row trigger
- backfills existing rows in throttled batches
- drops the trigger and swaps the shadow column in
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("colshift")
except PackageNotFoundError:
    # Package not installed (running from source without install)
    __version__ = "0.0.0.dev0"

from colshift.backfill import BackfillEngine
from colshift.catalog import SchemaCatalog
from colshift.exceptions import (
    BackfillError,
    BestEffortError,
    ColumnNotFoundError,
    ConfigurationError,
    ExecutionError,
    InsufficientPrivilegeError,
    InvalidPhaseTransitionError,
    InvalidPlanError,
    InvalidTypeExpressionError,
    MigrationError,
    MigrationLockError,
    OrderingColumnNotFoundError,
    PreflightCheckError,
    PreflightError,
    SchemaNotFoundError,
    ShadowColumnConflictError,
    TableNotFoundError,
    UnknownTypeError,
)
from colshift.executor import StatementExecutor
from colshift.locks import AdvisoryLock, LockInfo, migration_lock_key
from colshift.models import (
    BackfillProgress,
    BackfillStrategy,
    ExecutionMode,
    ExecutionResult,
    MigrationPhase,
    MigrationPlan,
    MigrationResult,
    PhaseState,
    SyncArtifact,
)
from colshift.orchestrator import MigrationOrchestrator
from colshift.preflight import PreflightReport, PreflightValidator
from colshift.state import (
    InMemoryMigrationStateRepository,
    MigrationStateRecord,
    MigrationStateRepository,
    PostgreSQLMigrationStateRepository,
)
from colshift.statements import StatementBuilder

__all__ = [
    "__version__",
    # Models
    "BackfillProgress",
    "BackfillStrategy",
    "ExecutionMode",
    "ExecutionResult",
    "MigrationPhase",
    "MigrationPlan",
    "MigrationResult",
    "PhaseState",
    "SyncArtifact",
    # Components
    "StatementBuilder",
    "StatementExecutor",
    "SchemaCatalog",
    "PreflightValidator",
    "PreflightReport",
    "BackfillEngine",
    "MigrationOrchestrator",
    # State
    "MigrationStateRecord",
    "MigrationStateRepository",
    "PostgreSQLMigrationStateRepository",
    "InMemoryMigrationStateRepository",
    # Locks
    "AdvisoryLock",
    "LockInfo",
    "migration_lock_key",
    # Exceptions
    "MigrationError",
    "ConfigurationError",
    "InvalidTypeExpressionError",
    "InvalidPlanError",
    "PreflightError",
    "SchemaNotFoundError",
    "TableNotFoundError",
    "ColumnNotFoundError",
    "OrderingColumnNotFoundError",
    "InsufficientPrivilegeError",
    "ShadowColumnConflictError",
    "UnknownTypeError",
    "PreflightCheckError",
    "ExecutionError",
    "BackfillError",
    "BestEffortError",
    "InvalidPhaseTransitionError",
    "MigrationLockError",
]
