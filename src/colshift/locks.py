"""
Session-level advisory lock keeping two runs off the same column.

The lock is taken with pg_try_advisory_lock on a dedicated connection and
held until the migration ends; closing the connection releases it even if
the process dies. Acquisition never waits: a held lock means another run is
migrating the column.

Usage:
    >>> async with AdvisoryLock(engine, migration_lock_key(plan)) as info:
    ...     await run_phases()
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from types import TracebackType

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from colshift.exceptions import MigrationLockError
from colshift.models import MigrationPlan
from colshift.observability import ATTR_DB_SYSTEM, Tracer, create_tracer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LockInfo:
    """
    Information about an acquired lock.

    Attributes:
        key: The string key used to identify the lock
        lock_id: The numeric PostgreSQL lock ID (derived from key hash)
        acquired_at: When the lock was acquired
    """

    key: str
    lock_id: int
    acquired_at: datetime


def migration_lock_key(plan: MigrationPlan) -> str:
    """Lock key for the column a plan migrates."""
    return f"colshift:{plan.schema}.{plan.table}.{plan.column}"


def key_to_lock_id(key: str) -> int:
    """
    Convert a string key to a 63-bit lock ID.

    PostgreSQL advisory lock ids are signed bigints, so the first eight
    bytes of the SHA-256 digest are masked to 63 bits.
    """
    hash_bytes = hashlib.sha256(key.encode()).digest()
    return int.from_bytes(hash_bytes[:8], byteorder="big") & 0x7FFFFFFFFFFFFFFF


class AdvisoryLock:
    """
    Async context manager holding one advisory lock.

    Example:
        >>> lock = AdvisoryLock(engine, "colshift:public.users.age")
        >>> async with lock:
        ...     ...
        >>> lock.info is None
        True

    Raises:
        MigrationLockError: On entry, if another session holds the lock
    """

    def __init__(
        self,
        engine: AsyncEngine,
        key: str,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._engine = engine
        self._key = key
        self._lock_id = key_to_lock_id(key)
        self._conn: AsyncConnection | None = None
        self._info: LockInfo | None = None

    @property
    def key(self) -> str:
        return self._key

    @property
    def info(self) -> LockInfo | None:
        """Details of the held lock, or None when not held."""
        return self._info

    async def __aenter__(self) -> LockInfo:
        with self._tracer.span(
            "colshift.lock.acquire",
            {"lock.key": self._key, ATTR_DB_SYSTEM: "postgresql"},
        ):
            conn = await self._engine.connect()
            try:
                result = await conn.execute(
                    text("SELECT pg_try_advisory_lock(:lock_id)"),
                    {"lock_id": self._lock_id},
                )
                acquired = bool(result.scalar())
                await conn.commit()
            except BaseException:
                await conn.close()
                raise

            if not acquired:
                await conn.close()
                raise MigrationLockError(self._key, "lock held by another session")

            self._conn = conn
            self._info = LockInfo(
                key=self._key,
                lock_id=self._lock_id,
                acquired_at=datetime.now(UTC),
            )
            logger.debug("Acquired lock %s (id=%d)", self._key, self._lock_id)
            return self._info

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        conn, self._conn = self._conn, None
        self._info = None
        if conn is None:
            return
        try:
            await conn.execute(
                text("SELECT pg_advisory_unlock(:lock_id)"),
                {"lock_id": self._lock_id},
            )
            await conn.commit()
            logger.debug("Released lock %s", self._key)
        except BaseException:
            # a pooled connection would keep the session lock; drop it instead
            await conn.invalidate()
            raise
        finally:
            await conn.close()


__all__ = ["AdvisoryLock", "LockInfo", "key_to_lock_id", "migration_lock_key"]
