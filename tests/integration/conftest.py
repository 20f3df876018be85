"""
Shared pytest fixtures for integration tests.

This module provides a PostgreSQL container via testcontainers and a
``users(id serial primary key, age integer)`` table seeded with 2500 rows.

If testcontainers or Docker is not available, tests are automatically skipped.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Generator
from typing import TYPE_CHECKING, Any

import pytest

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine


# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers for integration tests."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests (may require docker)"
    )
    config.addinivalue_line("markers", "postgres: marks tests that require PostgreSQL")
    config.addinivalue_line("markers", "e2e: marks tests as end-to-end integration tests")


# ============================================================================
# Testcontainers Detection
# ============================================================================

TESTCONTAINERS_AVAILABLE = False

try:
    from testcontainers.postgres import PostgresContainer

    TESTCONTAINERS_AVAILABLE = True
except ImportError:
    PostgresContainer = None  # type: ignore[assignment, misc]


def is_docker_available() -> bool:
    """Check if Docker is available for running containers."""
    import subprocess

    try:
        result = subprocess.run(
            ["docker", "info"],
            capture_output=True,
            timeout=5,
        )
        return result.returncode == 0
    except (subprocess.TimeoutExpired, OSError):
        return False


DOCKER_AVAILABLE = is_docker_available()


# ============================================================================
# Skip Conditions
# ============================================================================

skip_if_no_postgres_infra = pytest.mark.skipif(
    not (TESTCONTAINERS_AVAILABLE and DOCKER_AVAILABLE),
    reason="PostgreSQL test infrastructure not available",
)


# ============================================================================
# Sample Data
# ============================================================================

SEED_ROWS = 2500

USERS_SCHEMA_STATEMENTS = [
    "DROP TABLE IF EXISTS users CASCADE",
    "DROP TABLE IF EXISTS colshift_migrations",
    "DROP FUNCTION IF EXISTS sync_users_age() CASCADE",
    "CREATE TABLE users (id SERIAL PRIMARY KEY, age INTEGER)",
    f"INSERT INTO users (age) SELECT g % 100 FROM generate_series(1, {SEED_ROWS}) AS g",
]


# ============================================================================
# PostgreSQL Fixtures
# ============================================================================


@pytest.fixture(scope="session")
def postgres_container() -> Generator[Any, None, None]:
    """
    Provide PostgreSQL container for integration tests.

    Uses testcontainers to automatically start and stop a PostgreSQL container.
    Container is shared across all tests in the session for efficiency.
    """
    if not TESTCONTAINERS_AVAILABLE or not DOCKER_AVAILABLE:
        pytest.skip("PostgreSQL testcontainer not available")

    container = PostgresContainer("postgres:15")
    container.start()

    yield container

    container.stop()


@pytest.fixture(scope="session")
def postgres_connection_url(postgres_container: Any) -> str:
    """Get PostgreSQL connection URL from container."""
    # testcontainers returns psycopg2 URL, convert to asyncpg
    url = postgres_container.get_connection_url()
    return url.replace("postgresql://", "postgresql+asyncpg://").replace("psycopg2", "asyncpg")


@pytest.fixture
async def postgres_engine(
    postgres_connection_url: str,
) -> AsyncGenerator[AsyncEngine, None]:
    """
    Provide SQLAlchemy async engine connected to PostgreSQL container.

    Function-scoped so the engine lives on the test's event loop.
    """
    from sqlalchemy.ext.asyncio import create_async_engine

    engine = create_async_engine(postgres_connection_url, echo=False, pool_size=5)

    yield engine

    await engine.dispose()


@pytest.fixture
async def users_table(postgres_engine: AsyncEngine) -> AsyncGenerator[AsyncEngine, None]:
    """
    Recreate the users table with SEED_ROWS rows and no colshift state.

    Yields the engine for convenience.
    """
    from sqlalchemy import text

    async with postgres_engine.begin() as conn:
        for statement in USERS_SCHEMA_STATEMENTS:
            await conn.execute(text(statement))

    yield postgres_engine

    async with postgres_engine.begin() as conn:
        await conn.execute(text("DROP TABLE IF EXISTS users CASCADE"))
        await conn.execute(text("DROP TABLE IF EXISTS colshift_migrations"))
        await conn.execute(text("DROP FUNCTION IF EXISTS sync_users_age() CASCADE"))
