"""Counter store adapters.

The admission logic depends only on ``AbstractCounterStore``; Redis is the
shared backend and the in-memory store covers single-process runs and tests.
"""

from throttle.adapters.rate_limit.base import AbstractCounterStore, CounterSnapshot, RateLimitResult
from throttle.adapters.rate_limit.in_memory import InMemoryCounterStore
from throttle.adapters.rate_limit.redis_store import RedisCounterStore

__all__ = [
    "AbstractCounterStore",
    "CounterSnapshot",
    "InMemoryCounterStore",
    "RateLimitResult",
    "RedisCounterStore",
]
