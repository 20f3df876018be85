"""
Exceptions for colshift column-type migrations.

Every fallible operation raises a categorized error so callers (the CLI,
tests, other front-ends) can tell a recoverable input problem from a fatal
failure in the middle of a migration without relying on process exit.

Exception Hierarchy:
    MigrationError (base)
    +-- ConfigurationError
    |   +-- InvalidTypeExpressionError
    |   +-- InvalidPlanError
    +-- PreflightError
    |   +-- SchemaNotFoundError
    |   +-- TableNotFoundError
    |   +-- ColumnNotFoundError
    |   +-- OrderingColumnNotFoundError
    |   +-- InsufficientPrivilegeError
    |   +-- UnknownTypeError
    |   +-- ShadowColumnConflictError
    |   +-- PreflightCheckError
    +-- ExecutionError
    |   +-- BackfillError
    +-- BestEffortError
    +-- InvalidPhaseTransitionError
    +-- MigrationLockError

Error Classification:
    - ErrorSeverity: CRITICAL, ERROR, WARNING, INFO levels
    - ErrorRecoverability: RECOVERABLE, FATAL, BEST_EFFORT categories
    - ErrorClassification: metadata attached to each exception class
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from colshift.models import MigrationPhase


class ErrorSeverity(Enum):
    """
    Severity level of migration errors.

    Attributes:
        CRITICAL: Schema left in an intermediate state, operator attention needed.
        ERROR: The run was refused or aborted.
        WARNING: Something failed but the run continued.
        INFO: Informational condition, not a failure.
    """

    CRITICAL = "critical"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"

    @property
    def log_level(self) -> int:
        """
        Get the corresponding Python logging level.

        Returns:
            Python logging level constant.
        """
        level_map = {
            ErrorSeverity.CRITICAL: logging.CRITICAL,
            ErrorSeverity.ERROR: logging.ERROR,
            ErrorSeverity.WARNING: logging.WARNING,
            ErrorSeverity.INFO: logging.INFO,
        }
        return level_map[self]


class ErrorRecoverability(Enum):
    """
    Recoverability classification for migration errors.

    Attributes:
        RECOVERABLE: The operator can fix the input or environment and rerun.
            Nothing was mutated.
        FATAL: A statement failed during mutation. The schema is left in the
            state produced by the last successful statement; rerunning is safe
            because every phase is idempotent.
        BEST_EFFORT: Inspection-only work failed; the run continues.
    """

    RECOVERABLE = "recoverable"
    FATAL = "fatal"
    BEST_EFFORT = "best_effort"


@dataclass(frozen=True)
class ErrorClassification:
    """
    Metadata for error classification.

    Attributes:
        severity: The severity level of the error.
        recoverability: How the error can be recovered from.
        error_code: Unique error code for programmatic handling.
        category: One of "configuration", "preflight", "execution",
            "best_effort", "state" or "lock".
        suggested_action: Human-readable guidance for operators.
        exit_code: Process exit status the CLI uses for this error.
        metrics_labels: Labels for metrics instrumentation.
    """

    severity: ErrorSeverity
    recoverability: ErrorRecoverability
    error_code: str
    category: str
    suggested_action: str
    exit_code: int = 1
    metrics_labels: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert classification to dictionary for serialization.

        Returns:
            Dictionary representation of the classification.
        """
        result: dict[str, Any] = {
            "severity": self.severity.value,
            "recoverability": self.recoverability.value,
            "error_code": self.error_code,
            "category": self.category,
            "suggested_action": self.suggested_action,
            "exit_code": self.exit_code,
        }
        if self.metrics_labels:
            result["metrics_labels"] = self.metrics_labels
        return result


EXIT_EXECUTION_FAILURE = 1
EXIT_CONFIGURATION_ERROR = 2
EXIT_PREFLIGHT_FAILURE = 3
EXIT_LOCK_CONTENTION = 4


class MigrationError(Exception):
    """
    Base exception for all colshift errors.

    Attributes:
        message: Human-readable error description.
        table: Qualified ``schema.table`` the error concerns, if known.
        column: Column the error concerns, if known.
        suggested_action: Override for the classification's suggested action.
    """

    _default_classification: ErrorClassification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.FATAL,
        error_code="MIGRATION_ERROR",
        category="general",
        suggested_action="Review the migration output and rerun once the cause is fixed",
    )

    def __init__(
        self,
        message: str,
        *,
        table: str | None = None,
        column: str | None = None,
        suggested_action: str | None = None,
    ) -> None:
        self.message = message
        self.table = table
        self.column = column
        self.suggested_action = suggested_action or self.classification.suggested_action
        super().__init__(message)

    def __str__(self) -> str:
        """Return formatted error string with context."""
        parts = [self.message]
        if self.table:
            parts.append(f"table={self.table}")
        if self.column:
            parts.append(f"column={self.column}")
        return " ".join(parts)

    @property
    def classification(self) -> ErrorClassification:
        """
        Get the error classification for this exception.

        Subclasses override _default_classification.
        """
        return self._default_classification

    @property
    def severity(self) -> ErrorSeverity:
        """Severity level of this error."""
        return self.classification.severity

    @property
    def recoverability(self) -> ErrorRecoverability:
        """Recoverability classification of this error."""
        return self.classification.recoverability

    @property
    def error_code(self) -> str:
        """Unique error code, e.g. ``"COLUMN_NOT_FOUND"``."""
        return self.classification.error_code

    @property
    def category(self) -> str:
        """Error category used to group related errors."""
        return self.classification.category

    @property
    def exit_code(self) -> int:
        """Process exit status for this error."""
        return self.classification.exit_code

    def to_dict(self) -> dict[str, Any]:
        """
        Convert the exception to a dictionary for serialization.

        Returns:
            Dictionary representation of the error.
        """
        return {
            "message": self.message,
            "table": self.table,
            "column": self.column,
            "error_code": self.error_code,
            "suggested_action": self.suggested_action,
            "classification": self.classification.to_dict(),
        }


# =============================================================================
# Configuration errors
# =============================================================================


class ConfigurationError(MigrationError):
    """
    Raised when the run parameters themselves are unusable.

    Configuration errors are detected before any database work starts.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="CONFIGURATION_ERROR",
        category="configuration",
        suggested_action="Fix the command-line arguments and rerun",
        exit_code=EXIT_CONFIGURATION_ERROR,
    )


class InvalidTypeExpressionError(ConfigurationError):
    """
    Raised when the target type expression fails the character allowlist.

    Attributes:
        type_expression: The rejected input.
        reason: Why it was rejected.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="INVALID_TYPE_EXPRESSION",
        category="configuration",
        suggested_action=(
            "Use a plain type name with optional parameters, e.g. bigint or numeric(12, 2)"
        ),
        exit_code=EXIT_CONFIGURATION_ERROR,
    )

    def __init__(self, type_expression: str, reason: str) -> None:
        self.type_expression = type_expression
        self.reason = reason
        super().__init__(f"Invalid type {type_expression!r}: {reason}")


class InvalidPlanError(ConfigurationError):
    """
    Raised when a MigrationPlan field is missing or out of range.

    Attributes:
        field_name: The offending field.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="INVALID_PLAN",
        category="configuration",
        suggested_action="Fix the command-line arguments and rerun",
        exit_code=EXIT_CONFIGURATION_ERROR,
    )

    def __init__(self, field_name: str, message: str) -> None:
        self.field_name = field_name
        super().__init__(message)


# =============================================================================
# Preflight errors
# =============================================================================


class PreflightError(MigrationError):
    """
    Base exception for failed preflight checks.

    Preflight errors abort the run before any mutating statement is issued,
    so no partial state exists.

    Attributes:
        check: Name of the check that failed.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="PREFLIGHT_FAILED",
        category="preflight",
        suggested_action="Fix the reported problem and rerun; nothing was changed",
        exit_code=EXIT_PREFLIGHT_FAILURE,
    )

    check: str = "preflight"

    def __init__(
        self,
        message: str,
        *,
        table: str | None = None,
        column: str | None = None,
    ) -> None:
        super().__init__(message, table=table, column=column)


class SchemaNotFoundError(PreflightError):
    """Raised when the target schema does not exist."""

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="SCHEMA_NOT_FOUND",
        category="preflight",
        suggested_action="Check the --schema argument",
        exit_code=EXIT_PREFLIGHT_FAILURE,
    )
    check = "schema_exists"

    def __init__(self, schema: str) -> None:
        self.schema = schema
        super().__init__(f"schema {schema} does not exist")


class TableNotFoundError(PreflightError):
    """Raised when the table does not exist within the schema."""

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="TABLE_NOT_FOUND",
        category="preflight",
        suggested_action="Check the --schema and --table arguments",
        exit_code=EXIT_PREFLIGHT_FAILURE,
    )
    check = "table_exists"

    def __init__(self, schema: str, table: str) -> None:
        super().__init__(f"table {schema}.{table} does not exist", table=f"{schema}.{table}")


class ColumnNotFoundError(PreflightError):
    """Raised when the column to migrate is not on the table."""

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="COLUMN_NOT_FOUND",
        category="preflight",
        suggested_action="Check the --column argument",
        exit_code=EXIT_PREFLIGHT_FAILURE,
    )
    check = "column_exists"

    def __init__(self, schema: str, table: str, column: str) -> None:
        super().__init__(
            f"column {column} not found on {schema}.{table}",
            table=f"{schema}.{table}",
            column=column,
        )


class OrderingColumnNotFoundError(PreflightError):
    """Raised when the supplied ordering (primary-key) column is not on the table."""

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="ORDERING_COLUMN_NOT_FOUND",
        category="preflight",
        suggested_action="Check the --pk argument or omit it to use the fallback strategy",
        exit_code=EXIT_PREFLIGHT_FAILURE,
    )
    check = "ordering_column_exists"

    def __init__(self, schema: str, table: str, column: str) -> None:
        super().__init__(
            f"pk column {column} not found on {schema}.{table}",
            table=f"{schema}.{table}",
            column=column,
        )


class InsufficientPrivilegeError(PreflightError):
    """Raised when the current role cannot ALTER the table."""

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="INSUFFICIENT_PRIVILEGE",
        category="preflight",
        suggested_action="Connect as the table owner or a role with ALTER on the table",
        exit_code=EXIT_PREFLIGHT_FAILURE,
    )
    check = "alter_privilege"

    def __init__(self, schema: str, table: str) -> None:
        super().__init__(
            f"current user lacks ALTER privilege on {schema}.{table}",
            table=f"{schema}.{table}",
        )


class UnknownTypeError(PreflightError):
    """Raised when the engine's type catalog does not recognize the target type."""

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="UNKNOWN_TYPE",
        category="preflight",
        suggested_action="Check the --type argument against the database's type catalog",
        exit_code=EXIT_PREFLIGHT_FAILURE,
    )
    check = "type_is_valid"

    def __init__(self, type_expression: str) -> None:
        self.type_expression = type_expression
        super().__init__(f"unrecognized type: {type_expression}")


class ShadowColumnConflictError(PreflightError):
    """
    Raised when the shadow column name is taken by a column colshift did not add.

    An existing ``<column>_new`` is only reused when the sync trigger is
    still installed or the state record shows an unfinished run for the
    column. Anything else is treated as a user column and left alone.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="SHADOW_COLUMN_CONFLICT",
        category="preflight",
        suggested_action=(
            "Rename or drop the existing column, or finish the earlier run with its "
            "state tracking enabled"
        ),
        exit_code=EXIT_PREFLIGHT_FAILURE,
    )
    check = "shadow_column_available"

    def __init__(self, schema: str, table: str, shadow_column: str) -> None:
        self.shadow_column = shadow_column
        super().__init__(
            f"column {shadow_column} already exists on {schema}.{table} and was not "
            "created by an unfinished migration",
            table=f"{schema}.{table}",
            column=shadow_column,
        )


class PreflightCheckError(PreflightError):
    """
    Raised when a preflight check could not be evaluated at all.

    Typically a connectivity or permission failure while querying the catalog.
    The underlying driver error is chained as ``__cause__``.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="PREFLIGHT_CHECK_FAILED",
        category="preflight",
        suggested_action="Check database connectivity and rerun",
        exit_code=EXIT_PREFLIGHT_FAILURE,
    )

    def __init__(self, check: str, error: str) -> None:
        self.check = check
        self.error = error
        super().__init__(f"{check.replace('_', ' ')} check failed: {error}")


# =============================================================================
# Execution errors
# =============================================================================


class ExecutionError(MigrationError):
    """
    Raised when a statement fails while the migration is mutating the schema.

    Execution errors are fatal. No cleanup or rollback of earlier phases is
    attempted; the schema keeps whatever the last successful statement
    produced. Rerunning is safe because each phase is idempotent.

    Attributes:
        context: Human-readable phase context (e.g. "Adding new column").
        phase: The phase being entered when the statement failed.
        error: The underlying engine error message.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.CRITICAL,
        recoverability=ErrorRecoverability.FATAL,
        error_code="EXECUTION_FAILED",
        category="execution",
        suggested_action=(
            "Inspect the error, fix the cause and rerun; completed phases are skipped "
            "or repeated idempotently"
        ),
        exit_code=EXIT_EXECUTION_FAILURE,
    )

    def __init__(
        self,
        context: str,
        error: str,
        *,
        phase: MigrationPhase | None = None,
        table: str | None = None,
        column: str | None = None,
    ) -> None:
        self.context = context
        self.error = error
        self.phase = phase
        super().__init__(f"Error [{context}]: {error}", table=table, column=column)


class BackfillError(ExecutionError):
    """
    Raised when a backfill batch fails.

    Attributes:
        batch_number: 1-based number of the failed batch.
        rows_backfilled: Rows converted before the failure.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.CRITICAL,
        recoverability=ErrorRecoverability.FATAL,
        error_code="BACKFILL_FAILED",
        category="execution",
        suggested_action=(
            "Rerun the migration; the backfill resumes from rows whose shadow column is "
            "still null"
        ),
        exit_code=EXIT_EXECUTION_FAILURE,
    )

    def __init__(
        self,
        batch_number: int,
        rows_backfilled: int,
        error: str,
        *,
        table: str | None = None,
        column: str | None = None,
    ) -> None:
        from colshift.models import MigrationPhase

        self.batch_number = batch_number
        self.rows_backfilled = rows_backfilled
        super().__init__(
            f"Batch update #{batch_number}",
            error,
            phase=MigrationPhase.BACKFILLING,
            table=table,
            column=column,
        )


# =============================================================================
# Non-fatal, state and lock errors
# =============================================================================


class BestEffortError(MigrationError):
    """
    Failure of inspection-only work (row estimates, EXPLAIN output).

    Never propagated out of the orchestrator; constructed so it can be
    logged with the same classification metadata as the other errors.

    Attributes:
        operation: What was being attempted.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.WARNING,
        recoverability=ErrorRecoverability.BEST_EFFORT,
        error_code="BEST_EFFORT_FAILED",
        category="best_effort",
        suggested_action="None required; the migration continues",
        exit_code=0,
    )

    def __init__(self, operation: str, error: str) -> None:
        self.operation = operation
        self.error = error
        super().__init__(f"{operation} failed: {error}")


class InvalidPhaseTransitionError(MigrationError):
    """
    Raised when the orchestrator attempts an invalid phase transition.

    Attributes:
        current_phase: The phase the migration is in.
        target_phase: The phase that was attempted.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.FATAL,
        error_code="INVALID_PHASE_TRANSITION",
        category="state",
        suggested_action="Report this as a bug; the phase sequence is fixed",
        exit_code=EXIT_EXECUTION_FAILURE,
    )

    def __init__(
        self,
        current_phase: MigrationPhase,
        target_phase: MigrationPhase,
    ) -> None:
        self.current_phase = current_phase
        self.target_phase = target_phase
        super().__init__(
            f"Invalid phase transition: {current_phase.value} -> {target_phase.value}"
        )


class MigrationLockError(MigrationError):
    """
    Raised when another session already holds the migration lock for the column.

    Attributes:
        key: The lock key that could not be acquired.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="MIGRATION_LOCKED",
        category="lock",
        suggested_action="Wait for the other run to finish, then rerun",
        exit_code=EXIT_LOCK_CONTENTION,
    )

    def __init__(self, key: str, reason: str) -> None:
        self.key = key
        self.reason = reason
        super().__init__(f"Failed to acquire lock '{key}': {reason}")


def classify_exception(exc: BaseException) -> ErrorClassification:
    """
    Get the classification for any exception.

    MigrationError subclasses carry their own classification; anything else
    is treated as a fatal execution failure.

    Args:
        exc: The exception to classify

    Returns:
        ErrorClassification for the exception
    """
    if isinstance(exc, MigrationError):
        return exc.classification
    return ErrorClassification(
        severity=ErrorSeverity.CRITICAL,
        recoverability=ErrorRecoverability.FATAL,
        error_code="UNEXPECTED_ERROR",
        category="execution",
        suggested_action="Inspect the traceback; the schema may be in an intermediate state",
        exit_code=EXIT_EXECUTION_FAILURE,
        metrics_labels={"exception_type": type(exc).__name__},
    )


__all__ = [
    "ErrorSeverity",
    "ErrorRecoverability",
    "ErrorClassification",
    "EXIT_EXECUTION_FAILURE",
    "EXIT_CONFIGURATION_ERROR",
    "EXIT_PREFLIGHT_FAILURE",
    "EXIT_LOCK_CONTENTION",
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
    "UnknownTypeError",
    "ShadowColumnConflictError",
    "PreflightCheckError",
    "ExecutionError",
    "BackfillError",
    "BestEffortError",
    "InvalidPhaseTransitionError",
    "MigrationLockError",
    "classify_exception",
]
