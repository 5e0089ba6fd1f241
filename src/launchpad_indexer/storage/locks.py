"""Per-token mutual exclusion for the reconciler.

Both ingestion paths (poll loop and webhook) may apply events for the same
token at the same time. Writes for one token are serialized through a keyed
lock; the version check in the store still guards every update.

Two backends:

- `KeyedLock`: in-process asyncio locks, one per key, dropped when unused.
- `RedisKeyedLock`: redis-py distributed locks with a TTL, for running more
  than one indexer instance against the same database.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Protocol

from redis.asyncio import Redis
from redis.exceptions import LockError

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TTL_SECONDS = 30.0
DEFAULT_LOCK_PREFIX = "launchpad:lock:"


class LockUnavailableError(Exception):
    """The lock for a key could not be acquired in time."""


class TokenLock(Protocol):
    def hold(self, key: str) -> AbstractAsyncContextManager[None]: ...


class KeyedLock:
    """Reference-counted map of asyncio locks.

    Example:
        ```python
        locks = KeyedLock()
        async with locks.hold("SP...frog-token"):
            ...
        ```
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._refcounts: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._refcounts[key] = self._refcounts.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._refcounts[key] -= 1
            if self._refcounts[key] == 0:
                del self._refcounts[key]
                del self._locks[key]


class RedisKeyedLock:
    """Distributed keyed lock backed by redis-py's `Lock`.

    The TTL bounds how long a crashed holder can block a token; it should
    exceed the longest expected reconcile unit.
    """

    def __init__(
        self,
        redis: Redis,
        *,
        ttl_seconds: float = DEFAULT_LOCK_TTL_SECONDS,
        blocking_timeout: float | None = None,
        key_prefix: str = DEFAULT_LOCK_PREFIX,
    ) -> None:
        """Initialize the lock.

        Args:
            redis: Redis async client.
            ttl_seconds: Lock expiry in seconds.
            blocking_timeout: Max seconds to wait for the lock (None waits forever).
            key_prefix: Prefix for lock keys.
        """
        self._redis = redis
        self._ttl_seconds = ttl_seconds
        self._blocking_timeout = blocking_timeout
        self._key_prefix = key_prefix

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._redis.lock(
            f"{self._key_prefix}{key}",
            timeout=self._ttl_seconds,
            blocking_timeout=self._blocking_timeout,
        )
        acquired = await lock.acquire()
        if not acquired:
            raise LockUnavailableError(f"Timed out waiting for lock on {key}")
        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError:
                logger.warning("Lock on %s expired before release", key)
