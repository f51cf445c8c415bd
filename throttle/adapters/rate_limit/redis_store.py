"""Redis-backed fixed-window counter store.

The whole check-and-increment runs inside one Lua script, so Redis orders all
requests for a key and no caller can act on a stale count. Connections come
from a shared ``redis.asyncio.ConnectionPool``; a semaphore sized to the pool
bounds concurrent leases and turns a saturated pool into ``PoolExhaustedError``
after ``pool_timeout`` instead of an unbounded wait.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import RedisError

from throttle.adapters.rate_limit.base import AbstractCounterStore, CounterSnapshot
from throttle.core.errors import PoolExhaustedError, StoreUnavailableError

logger = logging.getLogger(__name__)


# KEYS[1] = counter key, ARGV[1] = limit, ARGV[2] = window length in ms.
# Returns {count, ttl_ms}. A full window is not incremented; it reports
# count = stored + 1 so callers can classify with count > limit.
SCRIPT = """
local key = KEYS[1]
local limit = tonumber(ARGV[1])
local period_ms = tonumber(ARGV[2])

local current = tonumber(redis.call("GET", key) or "0")
local count = current + 1
if current < limit then
    count = redis.call("INCR", key)
    if count == 1 then
        redis.call("PEXPIRE", key, period_ms)
    end
end

local ttl = redis.call("PTTL", key)
if ttl < 0 then
    redis.call("PEXPIRE", key, period_ms)
    ttl = period_ms
end

return {count, ttl}
"""


class RedisCounterStore(AbstractCounterStore):
    """Counter store executing the fixed-window script on Redis."""

    def __init__(
        self,
        client: Redis,
        *,
        max_connections: int = 20,
        pool_timeout: float = 1.0,
        operation_timeout: float = 0.5,
    ) -> None:
        """Initialize the store.

        Args:
            client: Async Redis client, normally backed by a ConnectionPool.
            max_connections: Maximum concurrent leases (match the pool size).
            pool_timeout: Seconds to wait for a free lease.
            operation_timeout: Seconds allowed for one script call.

        Raises:
            ValueError: If sizing or timeouts are invalid.
        """
        if max_connections < 1:
            raise ValueError("max_connections must be >= 1")
        if pool_timeout <= 0 or operation_timeout <= 0:
            raise ValueError("timeouts must be > 0")

        self._client = client
        self._max_connections = max_connections
        self._pool_timeout = pool_timeout
        self._operation_timeout = operation_timeout
        self._slots = asyncio.Semaphore(max_connections)
        self._script = client.register_script(SCRIPT)

    @classmethod
    def from_url(
        cls,
        url: str,
        *,
        max_connections: int = 20,
        pool_timeout: float = 1.0,
        operation_timeout: float = 0.5,
        socket_timeout: float | None = None,
    ) -> "RedisCounterStore":
        """Build a store with its own connection pool.

        Connections are opened lazily on first use, so this never blocks.
        """
        pool = ConnectionPool.from_url(
            url,
            max_connections=max_connections,
            socket_timeout=socket_timeout,
        )
        return cls(
            Redis(connection_pool=pool),
            max_connections=max_connections,
            pool_timeout=pool_timeout,
            operation_timeout=operation_timeout,
        )

    @asynccontextmanager
    async def _lease(self) -> AsyncIterator[Redis]:
        """Hold one pool slot for the duration of the block.

        Raises:
            PoolExhaustedError: If no slot frees up within ``pool_timeout``.
        """
        try:
            await asyncio.wait_for(self._slots.acquire(), timeout=self._pool_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "store.pool_exhausted",
                extra={
                    "max_connections": self._max_connections,
                    "pool_timeout_s": self._pool_timeout,
                },
            )
            raise PoolExhaustedError(
                code="store_pool_exhausted",
                message="No counter store connection available",
                details={
                    "timeout_seconds": self._pool_timeout,
                    "max_connections": self._max_connections,
                },
            ) from None
        try:
            yield self._client
        finally:
            self._slots.release()

    async def execute(self, key: str, limit: int, period_ms: int) -> CounterSnapshot:
        """Run the fixed-window script for ``key``.

        Raises:
            PoolExhaustedError: If no connection is available in time.
            StoreUnavailableError: On Redis errors, timeouts or malformed replies.
        """
        async with self._lease():
            try:
                reply = await asyncio.wait_for(
                    self._script(keys=[key], args=[limit, period_ms]),
                    timeout=self._operation_timeout,
                )
            except asyncio.TimeoutError:
                logger.warning(
                    "store.timeout",
                    extra={"timeout_s": self._operation_timeout},
                )
                raise StoreUnavailableError(
                    code="store_timeout",
                    message="Counter store did not answer in time",
                    details={"timeout_seconds": self._operation_timeout},
                ) from None
            except RedisError as exc:
                logger.warning(
                    "store.error",
                    extra={"error_type": type(exc).__name__, "error_msg": str(exc)},
                )
                raise StoreUnavailableError(
                    code="store_error",
                    message="Counter store operation failed",
                    details={"error_type": type(exc).__name__},
                ) from exc

        try:
            count, ttl_ms = (int(value) for value in reply)
        except (TypeError, ValueError) as exc:
            raise StoreUnavailableError(
                code="store_bad_reply",
                message="Counter store returned an unexpected reply",
                details={"actual_value": repr(reply)},
            ) from exc

        return CounterSnapshot(count=count, ttl_ms=ttl_ms)

    async def ping(self) -> bool:
        try:
            async with self._lease():
                return bool(await asyncio.wait_for(self._client.ping(), timeout=self._operation_timeout))
        except (StoreUnavailableError, RedisError, asyncio.TimeoutError) as exc:
            logger.warning("store.ping_failed", extra={"error_type": type(exc).__name__})
            return False

    async def close(self) -> None:
        await self._client.aclose(close_connection_pool=True)
