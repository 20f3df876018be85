"""
SQL schema templates bundled with colshift.

Tables:
    - colshift_migrations: Persisted migration-state records

Usage:
    from colshift.schemas import get_schema

    ddl = get_schema("migration_state", table='"public"."colshift_migrations"')
"""

from pathlib import Path
from typing import Literal

SchemaName = Literal["migration_state"]

_SCHEMAS_DIR = Path(__file__).parent


def get_template_path(name: SchemaName) -> Path:
    """
    Get the path to a SQL template file.

    Raises:
        FileNotFoundError: If the template file doesn't exist
    """
    path = _SCHEMAS_DIR / f"{name}.sql"
    if not path.exists():
        raise FileNotFoundError(f"Schema template not found: {path}")
    return path


def get_schema(name: SchemaName, *, table: str) -> str:
    """
    Load a SQL schema template and fill in the target table.

    Args:
        name: The schema name
        table: Quoted, schema-qualified table name

    Returns:
        SQL schema definition as a string
    """
    return get_template_path(name).read_text().replace("{table}", table)


__all__ = ["SchemaName", "get_schema", "get_template_path"]
