"""Counter store interface and the per-request decision type.

Every store must perform check-and-increment as one atomic step; a client-side
read followed by a write lets two concurrent requests take the last slot.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class CounterSnapshot:
    """Outcome of one atomic counter operation.

    Attributes:
        count: Position of this request in the current window. Equals the
            stored post-increment count when admitted; ``stored + 1`` when the
            window was already full (the stored count is left unchanged).
        ttl_ms: Milliseconds until the window expires.
    """

    count: int
    ttl_ms: int


@dataclass(frozen=True)
class RateLimitResult:
    """Admission decision for one request.

    Attributes:
        allowed: Whether the request is allowed to proceed.
        limit: Max requests per window.
        remaining: Remaining requests in the current window (0 when blocked).
        reset_at: UNIX epoch seconds when the current window resets.
        retry_after_ms: Wait time in milliseconds when blocked; never longer
            than the window.
        degraded: True when the decision came from the store failure policy.
    """

    allowed: bool
    limit: int
    remaining: int
    reset_at: int
    retry_after_ms: int | None
    degraded: bool = False

    @property
    def retry_after_seconds(self) -> int | None:
        """Retry-After header value: whole seconds, rounded up."""
        if self.retry_after_ms is None:
            return None
        return max(1, math.ceil(self.retry_after_ms / 1000))

    def headers(self) -> dict[str, str]:
        """Rate limit response headers describing this decision."""

        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_at),
        }
        if not self.allowed and self.retry_after_seconds is not None:
            headers["Retry-After"] = str(self.retry_after_seconds)
        return headers


class AbstractCounterStore(ABC):
    """Interface for fixed-window counter stores."""

    @abstractmethod
    async def execute(self, key: str, limit: int, period_ms: int) -> CounterSnapshot:
        """Atomically count one request against ``key``.

        Args:
            key: Namespaced counter key.
            limit: Max requests per window; a full window is not incremented.
            period_ms: Window length, applied when the window is created.

        Returns:
            CounterSnapshot for this request.

        Raises:
            StoreUnavailableError: If the store cannot complete the operation.
        """
        raise NotImplementedError

    async def ping(self) -> bool:
        """Return True when the store is reachable."""
        return True

    async def close(self) -> None:
        """Release any connections held by the store."""
