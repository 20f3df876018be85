"""
Connection handling helper for database operations.

Components accept either an AsyncEngine or an AsyncConnection. The
`execute_with_connection` async context manager:
- Handles AsyncEngine inputs by opening a connection or transaction
- Passes through AsyncConnection inputs directly
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine


@asynccontextmanager
async def execute_with_connection(
    conn: AsyncConnection | AsyncEngine,
    transactional: bool = True,
) -> AsyncIterator[AsyncConnection]:
    """
    Context manager for executing database operations.

    Args:
        conn: Database connection or engine
        transactional: If True, wrap in a transaction that commits on exit
                       (begin). If False, use a bare connection (connect).
                       Only applies when conn is an AsyncEngine.

    Yields:
        AsyncConnection ready for execute() calls

    Example:
        >>> async with execute_with_connection(self._conn) as conn:
        ...     await conn.exec_driver_sql(statement)

        >>> async with execute_with_connection(self._conn, transactional=False) as conn:
        ...     result = await conn.execute(select_query, params)
        ...     return result.scalar()

    Note:
        Every statement group run through an AsyncEngine commits on its own.
        When passing an existing AsyncConnection, the transactional parameter
        has no effect and the caller owns commit and rollback.
    """
    if isinstance(conn, AsyncEngine):
        if transactional:
            async with conn.begin() as connection:
                yield connection
        else:
            async with conn.connect() as connection:
                yield connection
    else:
        # Already have a connection, use it directly
        yield conn
