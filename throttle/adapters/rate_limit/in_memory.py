"""In-memory fixed-window counter store.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: the check-and-increment runs under one lock, which is the
  in-process equivalent of the Redis script's atomicity.
"""

from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from typing import Callable

from throttle.adapters.rate_limit.base import AbstractCounterStore, CounterSnapshot


@dataclass
class _WindowState:
    count: int
    expires_at: float


class InMemoryCounterStore(AbstractCounterStore):
    """Counter store keeping windows in a dict keyed by rate limit key.

    Windows start at the first request for a key (not on clock boundaries),
    matching the Redis store, so both backends behave the same in tests.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.time,
        sweep_interval: float = 60.0,
    ) -> None:
        """Initialize the store.

        Args:
            clock: Time source function returning UNIX time in seconds.
            sweep_interval: Seconds between full scans that drop expired
                windows of other keys. The requested key is always checked.
        """
        if sweep_interval <= 0:
            raise ValueError("sweep_interval must be > 0")
        self._clock = clock
        self._sweep_interval = sweep_interval
        self._next_sweep_at: float | None = None
        self._lock = threading.RLock()
        self._state_by_key: dict[str, _WindowState] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._state_by_key)

    def _sweep_expired_locked(self, now: float) -> None:
        if self._next_sweep_at is None:
            self._next_sweep_at = now + self._sweep_interval
            return
        if now < self._next_sweep_at:
            return
        self._next_sweep_at = now + self._sweep_interval

        expired = [k for k, state in self._state_by_key.items() if state.expires_at <= now]
        for key in expired:
            del self._state_by_key[key]

    async def execute(self, key: str, limit: int, period_ms: int) -> CounterSnapshot:
        """Count one request against ``key``.

        Raises:
            ValueError: If key is empty or limit/period are invalid.
        """
        if not key:
            raise ValueError("key must be a non-empty string")
        if limit < 1:
            raise ValueError("limit must be >= 1")
        if period_ms < 1:
            raise ValueError("period_ms must be >= 1")

        now = self._clock()

        with self._lock:
            self._sweep_expired_locked(now)

            state = self._state_by_key.get(key)
            if state is None or state.expires_at <= now:
                state = _WindowState(count=0, expires_at=now + period_ms / 1000)
                self._state_by_key[key] = state

            ttl_ms = max(1, int(math.ceil((state.expires_at - now) * 1000)))
            if state.count >= limit:
                return CounterSnapshot(count=state.count + 1, ttl_ms=ttl_ms)

            state.count += 1
            return CounterSnapshot(count=state.count, ttl_ms=ttl_ms)

    async def close(self) -> None:
        with self._lock:
            self._state_by_key.clear()
            self._next_sweep_at = None
