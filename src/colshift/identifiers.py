"""
Identifier quoting, type-expression sanitizing and derived object names.

Nothing user-supplied reaches generated SQL without passing through this
module: identifiers are quoted with SQLAlchemy's PostgreSQL identifier
preparer, and the target type expression must pass a character allowlist
before it is interpolated.
"""

from __future__ import annotations

import re

from sqlalchemy.dialects import postgresql

from colshift.exceptions import InvalidPlanError, InvalidTypeExpressionError

# PostgreSQL silently truncates identifiers longer than NAMEDATALEN - 1 bytes
MAX_IDENTIFIER_LENGTH = 63

SHADOW_SUFFIX = "_new"

_ALLOWED_TYPE_CHARS = re.compile(r"^[A-Za-z0-9_\s(),\[\]]+$")
_WHITESPACE = re.compile(r"\s+")
_TYPMOD = re.compile(r"\s*\([^)]+\)")

# named paramstyle: percent signs in identifiers are not doubled
_preparer = postgresql.dialect(paramstyle="named").identifier_preparer


def quote_identifier(name: str) -> str:
    """
    Quote a single identifier for PostgreSQL.

    Always quotes, so mixed-case and reserved-word names survive, and doubles
    any embedded double quotes.

    Example:
        >>> quote_identifier("users")
        '"users"'
        >>> quote_identifier('we"ird')
        '"we""ird"'
    """
    return _preparer.quote_identifier(name)


def qualified_name(schema: str, name: str) -> str:
    """Quote and join ``schema.name``."""
    return f"{quote_identifier(schema)}.{quote_identifier(name)}"


def sanitize_type_expression(expression: str) -> str:
    """
    Validate and normalize a PostgreSQL type expression.

    Only letters, digits, underscores, whitespace, parentheses, commas and
    square brackets are accepted; runs of whitespace collapse to one space.

    Args:
        expression: Raw type expression, e.g. ``"numeric(10, 2)"``

    Returns:
        The normalized expression

    Raises:
        InvalidTypeExpressionError: If the expression is empty or contains
            a disallowed character
    """
    normalized = expression.strip()
    if not normalized:
        raise InvalidTypeExpressionError(expression, "empty type")
    if not _ALLOWED_TYPE_CHARS.match(normalized):
        raise InvalidTypeExpressionError(expression, "contains disallowed characters")
    if normalized.count("(") != normalized.count(")"):
        raise InvalidTypeExpressionError(expression, "unbalanced parentheses")
    return _WHITESPACE.sub(" ", normalized)


def base_type_name(expression: str) -> str:
    """
    Strip type modifiers so the name can be looked up in the type catalog.

    Example:
        >>> base_type_name("numeric(10,2)")
        'numeric'
        >>> base_type_name("timestamp(3) with time zone")
        'timestamp with time zone'
    """
    return _TYPMOD.sub("", expression).strip()


def validate_identifier(field_name: str, value: str) -> str:
    """
    Reject empty or over-long identifiers.

    Raises:
        InvalidPlanError: If the identifier is empty or would be truncated
    """
    if not value or not value.strip():
        raise InvalidPlanError(field_name, f"{field_name} must not be empty")
    if len(value.encode("utf-8")) > MAX_IDENTIFIER_LENGTH:
        raise InvalidPlanError(
            field_name,
            f"{field_name} {value!r} exceeds {MAX_IDENTIFIER_LENGTH} bytes",
        )
    return value


def shadow_column_name(column: str) -> str:
    """Name of the temporary column holding converted values."""
    return f"{column}{SHADOW_SUFFIX}"


def sync_function_name(table: str, column: str) -> str:
    """Name of the trigger function that mirrors writes into the shadow column."""
    return f"sync_{table}_{column}"


def sync_trigger_name(table: str, column: str) -> str:
    """Name of the row-level trigger invoking the sync function."""
    return f"trg_sync_{table}_{column}"


__all__ = [
    "MAX_IDENTIFIER_LENGTH",
    "SHADOW_SUFFIX",
    "quote_identifier",
    "qualified_name",
    "sanitize_type_expression",
    "base_type_name",
    "validate_identifier",
    "shadow_column_name",
    "sync_function_name",
    "sync_trigger_name",
]
