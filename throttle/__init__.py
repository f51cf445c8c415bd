"""Fixed-window rate limiting for FastAPI backed by a shared Redis counter."""

from throttle.adapters.rate_limit.base import AbstractCounterStore, CounterSnapshot, RateLimitResult
from throttle.adapters.rate_limit.in_memory import InMemoryCounterStore
from throttle.adapters.rate_limit.redis_store import RedisCounterStore
from throttle.core.errors import ConfigInvalidError, PoolExhaustedError, StoreUnavailableError
from throttle.core.middleware import Forward, RateLimitMiddleware, Reject
from throttle.core.rate_limit import AdmissionDecider, FailurePolicy, RateLimitConfig, build_rate_limiter

__all__ = [
    "AbstractCounterStore",
    "AdmissionDecider",
    "ConfigInvalidError",
    "CounterSnapshot",
    "FailurePolicy",
    "Forward",
    "InMemoryCounterStore",
    "PoolExhaustedError",
    "RateLimitConfig",
    "RateLimitMiddleware",
    "RateLimitResult",
    "RedisCounterStore",
    "Reject",
    "StoreUnavailableError",
    "build_rate_limiter",
]
