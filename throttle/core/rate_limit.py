"""Admission decisions against the shared counter store.

This module turns one atomic store call into an Allowed/Rejected decision.

Design goals:
- One round-trip per request: the store script checks and increments in a
  single step, so there is no gap between reading and writing the count.
- Explicit failure policy: when the store is unreachable the decision follows
  ``FailurePolicy`` (open or closed), chosen by the integrator.
- Validation up front: limits and periods are checked when the config is
  built, never while a request is being served.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Callable

from throttle.adapters.rate_limit.base import AbstractCounterStore, CounterSnapshot, RateLimitResult
from throttle.adapters.rate_limit.in_memory import InMemoryCounterStore
from throttle.adapters.rate_limit.redis_store import RedisCounterStore
from throttle.core.config import Settings, settings as default_settings
from throttle.core.errors import ConfigInvalidError, StoreUnavailableError
from throttle.core.keys import KeyExtractor, exempt_paths, resolve_key_extractor
from throttle.core.logging import fingerprint

logger = logging.getLogger(__name__)


class FailurePolicy(str, Enum):
    """Decision to take when the counter store is unavailable.

    OPEN favours availability (requests pass unmetered); CLOSED favours
    protection of the downstream service (requests are rejected).
    """

    OPEN = "open"
    CLOSED = "closed"

    @classmethod
    def parse(cls, value: "str | FailurePolicy") -> "FailurePolicy":
        """Parse a configured policy name.

        Raises:
            ConfigInvalidError: If the name is not 'open' or 'closed'.
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ConfigInvalidError(
                code="rate_limit_invalid_failure_policy",
                message=f"Unknown failure policy: '{value}'. Supported: open, closed",
                details={"field": "failure_policy", "actual_value": value},
            ) from None


def _validate_limit(limit: int) -> int:
    if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
        raise ConfigInvalidError(
            code="rate_limit_invalid_limit",
            message="Rate limit must be an integer >= 1",
            details={"field": "limit", "min_value": 1, "actual_value": limit},
        )
    return limit


def _period_to_ms(period: timedelta) -> int:
    """Convert a period to whole milliseconds, rejecting anything under 1 ms."""
    if not isinstance(period, timedelta):
        raise ConfigInvalidError(
            code="rate_limit_invalid_period",
            message="Rate limit period must be a timedelta",
            details={"field": "period", "actual_value": repr(period)},
        )
    period_ms = int(period / timedelta(milliseconds=1))
    if period_ms < 1:
        raise ConfigInvalidError(
            code="rate_limit_invalid_period",
            message="Rate limit period must be at least 1 millisecond",
            details={"field": "period", "min_value": 0.001, "actual_value": period.total_seconds()},
        )
    return period_ms


@dataclass(frozen=True)
class RateLimitConfig:
    """Immutable rate limit configuration.

    Attributes:
        limit: Max requests per key per period.
        period: Fixed window length.
        key_extractor: Maps a request to its rate limit key, or None to bypass.
        failure_policy: Decision when the store is unavailable. Required.
        key_prefix: Namespace prepended to keys in the store.

    Raises:
        ConfigInvalidError: On construction with out-of-range values.
    """

    limit: int
    period: timedelta
    key_extractor: KeyExtractor
    failure_policy: FailurePolicy
    key_prefix: str = "ratelimit:"

    def __post_init__(self) -> None:
        _validate_limit(self.limit)
        _period_to_ms(self.period)
        if not callable(self.key_extractor):
            raise ConfigInvalidError(
                code="rate_limit_invalid_key_extractor",
                message="key_extractor must be callable",
                details={"field": "key_extractor"},
            )
        # frozen dataclass: coerce via object.__setattr__
        object.__setattr__(self, "failure_policy", FailurePolicy.parse(self.failure_policy))

    @property
    def period_ms(self) -> int:
        return _period_to_ms(self.period)

    @classmethod
    def from_settings(
        cls,
        app_settings: Settings | None = None,
        *,
        key_extractor: KeyExtractor | None = None,
    ) -> "RateLimitConfig":
        """Build the config from environment settings.

        Args:
            app_settings: Settings to read; defaults to the global instance.
            key_extractor: Overrides the configured key strategy.
        """
        cfg = (app_settings or default_settings).rate_limit
        extractor = key_extractor or resolve_key_extractor(
            cfg.key_strategy,
            cookie_name=cfg.cookie_name,
            session_name=cfg.session_key,
            trust_forwarded=cfg.trust_forwarded_for,
        )
        return cls(
            limit=cfg.requests,
            period=timedelta(seconds=cfg.period_seconds),
            key_extractor=exempt_paths(extractor, cfg.exempt_paths),
            failure_policy=FailurePolicy.parse(cfg.failure_policy),
            key_prefix=cfg.key_prefix,
        )


def _log_orphaned_failure(task: "asyncio.Future[CounterSnapshot]") -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.warning(
            "rate_limit.orphaned_store_failure",
            extra={"error_type": type(exc).__name__},
        )


class AdmissionDecider:
    """Classifies requests as allowed or rejected using a counter store.

    Safe to share across concurrently running requests: it holds no per-request
    state and all counters live in the store.
    """

    def __init__(
        self,
        store: AbstractCounterStore,
        config: RateLimitConfig,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._config = config
        self._clock = clock

    @property
    def config(self) -> RateLimitConfig:
        return self._config

    @property
    def store(self) -> AbstractCounterStore:
        return self._store

    async def _execute(self, key: str, limit: int, period_ms: int) -> CounterSnapshot:
        # A cancelled request must not abort an increment the store may already
        # have applied; the call finishes in the background and still counts.
        task = asyncio.ensure_future(self._store.execute(key, limit, period_ms))
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            task.add_done_callback(_log_orphaned_failure)
            raise

    async def decide(
        self,
        key: str,
        *,
        limit: int | None = None,
        period: timedelta | None = None,
    ) -> RateLimitResult:
        """Consume one unit of ``key``'s budget and return the decision.

        Args:
            key: Rate limit key produced by the key extractor.
            limit: Optional per-call override of the configured limit.
            period: Optional per-call override of the configured period.

        Returns:
            RateLimitResult for this request.

        Raises:
            ConfigInvalidError: If an override is out of range.
            StoreUnavailableError: If the store (or its pool) fails; callers
                convert it with ``fallback``.
        """
        limit = self._config.limit if limit is None else _validate_limit(limit)
        period_ms = self._config.period_ms if period is None else _period_to_ms(period)

        snapshot = await self._execute(f"{self._config.key_prefix}{key}", limit, period_ms)

        now = self._clock()
        ttl_ms = max(0, min(snapshot.ttl_ms, period_ms))
        reset_at = int(math.ceil(now + ttl_ms / 1000))
        key_hash = fingerprint(key)

        if snapshot.count <= limit:
            remaining = max(0, limit - snapshot.count)
            logger.info(
                "rate_limit.allowed",
                extra={
                    "key_hash": key_hash,
                    "limit": limit,
                    "remaining": remaining,
                    "window_ms": period_ms,
                },
            )
            return RateLimitResult(
                allowed=True,
                limit=limit,
                remaining=remaining,
                reset_at=reset_at,
                retry_after_ms=None,
            )

        retry_after_ms = max(1, ttl_ms)
        logger.warning(
            "rate_limit.exceeded",
            extra={
                "key_hash": key_hash,
                "limit": limit,
                "remaining": 0,
                "window_ms": period_ms,
                "retry_after_ms": retry_after_ms,
            },
        )
        return RateLimitResult(
            allowed=False,
            limit=limit,
            remaining=0,
            reset_at=reset_at,
            retry_after_ms=retry_after_ms,
        )

    def fallback(
        self,
        error: StoreUnavailableError,
        *,
        limit: int | None = None,
        period: timedelta | None = None,
    ) -> RateLimitResult:
        """Convert a store failure into a decision according to the failure policy."""
        limit = self._config.limit if limit is None else limit
        period_ms = self._config.period_ms if period is None else _period_to_ms(period)
        policy = self._config.failure_policy

        logger.warning(
            "rate_limit.fallback",
            extra={
                "error_code": error.code,
                "error_type": type(error).__name__,
                "failure_policy": policy.value,
            },
        )

        if policy is FailurePolicy.OPEN:
            return RateLimitResult(
                allowed=True,
                limit=limit,
                remaining=limit,
                reset_at=int(math.ceil(self._clock() + period_ms / 1000)),
                retry_after_ms=None,
                degraded=True,
            )

        return RateLimitResult(
            allowed=False,
            limit=limit,
            remaining=0,
            reset_at=int(math.ceil(self._clock() + period_ms / 1000)),
            retry_after_ms=period_ms,
            degraded=True,
        )


def build_counter_store(app_settings: Settings | None = None) -> AbstractCounterStore:
    """Create the counter store selected by ``RATE_LIMIT_BACKEND``.

    Raises:
        ConfigInvalidError: If the backend name is unknown.
    """
    cfg = app_settings or default_settings
    backend = cfg.rate_limit.backend.strip().lower()

    if backend == "redis":
        return RedisCounterStore.from_url(
            cfg.redis.url,
            max_connections=cfg.redis.max_connections,
            pool_timeout=cfg.redis.pool_timeout_seconds,
            operation_timeout=cfg.redis.operation_timeout_seconds,
            socket_timeout=cfg.redis.socket_timeout_seconds,
        )
    if backend == "memory":
        logger.warning(
            "rate_limit.memory_backend",
            extra={"reason": "limits are enforced per process only"},
        )
        return InMemoryCounterStore()

    raise ConfigInvalidError(
        code="rate_limit_unknown_backend",
        message=f"Unknown rate limit backend: '{cfg.rate_limit.backend}'. Supported: redis, memory",
        details={"field": "backend", "actual_value": cfg.rate_limit.backend},
    )


def build_rate_limiter(
    app_settings: Settings | None = None,
    *,
    store: AbstractCounterStore | None = None,
    key_extractor: KeyExtractor | None = None,
) -> AdmissionDecider:
    """Build an AdmissionDecider from settings.

    Args:
        app_settings: Settings to read; defaults to the global instance.
        store: Counter store to use instead of the configured backend.
        key_extractor: Key extractor to use instead of the configured strategy.

    Raises:
        ConfigInvalidError: If any rate limit setting is invalid.
    """
    config = RateLimitConfig.from_settings(app_settings, key_extractor=key_extractor)
    if store is None:
        store = build_counter_store(app_settings)
    decider = AdmissionDecider(store, config)
    logger.info(
        "rate_limit.configured",
        extra={
            "limit": config.limit,
            "period_s": config.period.total_seconds(),
            "failure_policy": config.failure_policy.value,
            "store": type(decider.store).__name__,
        },
    )
    return decider
