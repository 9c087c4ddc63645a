"""
Utilities for database session management, retry logic and pair locking.
"""
import asyncio
import functools
import random
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, TypeVar, Any

from loguru import logger
from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

T = TypeVar('T')

# Errors worth retrying: lost connections, lock timeouts, serialization failures
TRANSIENT_ERRORS = (OperationalError, DBAPIError)


def pair_lock_key(user_id_a: str, user_id_b: str, group_id: str) -> str:
    """Canonical lock key for an unordered pair of users inside a group."""
    low, high = sorted((user_id_a, user_id_b))
    return f"{low}:{high}:{group_id}"


def with_retry(
    max_attempts: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 5.0
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """
    Decorator to retry async database operations with exponential backoff.

    Only transient driver errors are retried; everything else propagates on
    the first attempt.

    Args:
        max_attempts: Maximum number of attempts
        base_delay: Base delay between retries in seconds
        max_delay: Maximum delay between retries in seconds
    """
    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            for attempt in range(1, max_attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except TRANSIENT_ERRORS as e:
                    if attempt >= max_attempts:
                        logger.error(f"Database operation {func.__name__} failed after {max_attempts} attempts: {e}")
                        raise
                    delay = min(base_delay * (2 ** (attempt - 1)), max_delay)
                    # Add some jitter (±10%)
                    delay += delay * random.uniform(-0.1, 0.1)
                    logger.warning(
                        f"Database operation {func.__name__} failed (attempt {attempt}/{max_attempts}): {e}. "
                        f"Retrying in {delay:.2f}s"
                    )
                    await asyncio.sleep(delay)
            raise RuntimeError("Unexpected error in retry logic")

        return wrapper
    return decorator


class PairLocks:
    """Mutual exclusion around the canonical pair key.

    On PostgreSQL a transaction-scoped advisory lock is taken, so the lock is
    held until the surrounding transaction commits or rolls back and works
    across processes. Other backends fall back to process-local asyncio locks;
    SQLite permits one writer at a time, so every key shares one lock there.
    """

    SQLITE_KEY = "__sqlite_writer__"

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}

    def _local_lock(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    @asynccontextmanager
    async def hold(self, session: AsyncSession, key: str) -> AsyncIterator[None]:
        dialect = session.get_bind().dialect.name
        if dialect == "postgresql":
            await session.execute(text("SELECT pg_advisory_xact_lock(hashtext(:key))"), {"key": key})
            logger.debug(f"Acquired advisory lock for {key}")
            yield
            return

        local_key = self.SQLITE_KEY if dialect == "sqlite" else key
        async with self._local_lock(local_key):
            logger.debug(f"Acquired local lock for {key}")
            yield
