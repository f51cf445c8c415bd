"""Application factory for the FastAPI app.

Centralizes app construction (logging, rate limiting, handlers, routers) so
tests and integrators can build apps with their own store, key extractor
and routes.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Iterable

from fastapi import APIRouter, FastAPI

from throttle.adapters.rate_limit.base import AbstractCounterStore
from throttle.api.routes import health_router
from throttle.core.config import Settings, settings as default_settings
from throttle.core.exception_handlers import setup_exception_handlers
from throttle.core.keys import KeyExtractor
from throttle.core.logging import configure_logging
from throttle.core.middleware import RateLimitMiddleware, build_request_id_middleware
from throttle.core.openapi import apply_openapi_customizations
from throttle.core.rate_limit import AdmissionDecider, build_rate_limiter

logger = logging.getLogger(__name__)


def install_rate_limiter(
    app: FastAPI,
    decider: AdmissionDecider,
    *,
    include_headers: bool = True,
) -> RateLimitMiddleware:
    """Add the rate limit middleware to ``app`` and expose the decider on app.state."""
    middleware = RateLimitMiddleware(decider, include_headers=include_headers)
    app.middleware("http")(middleware)
    app.state.rate_limiter = decider
    return middleware


def create_app(
    app_settings: Settings | None = None,
    *,
    store: AbstractCounterStore | None = None,
    key_extractor: KeyExtractor | None = None,
    routers: Iterable[APIRouter] = (),
    configure_logs: bool = True,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        app_settings: Settings override; defaults to the global settings.
        store: Counter store override (e.g. in tests).
        key_extractor: Key extractor override.
        routers: Extra routers placed behind the rate limiter.
        configure_logs: Install the JSON logging handler on the root logger.

    Returns:
        Configured FastAPI app.

    Raises:
        ConfigInvalidError: If rate limit settings are invalid.
    """
    cfg = app_settings or default_settings

    # Logging first so subsequent init logs are formatted as desired
    if configure_logs:
        configure_logging(cfg.log)

    decider: AdmissionDecider | None = None
    if cfg.rate_limit.enabled:
        decider = build_rate_limiter(cfg, store=store, key_extractor=key_extractor)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        if decider is not None:
            await decider.store.close()
            logger.info("rate_limit.store_closed")

    app = FastAPI(
        title="Throttle",
        description=(
            "Fixed-window rate limiting per client key, backed by a shared "
            "Redis counter so limits hold across worker processes."
        ),
        version="0.1.0",
        lifespan=lifespan,
    )

    # Middleware: the last one added runs first, so request ids wrap rejections
    if decider is not None:
        install_rate_limiter(app, decider, include_headers=cfg.rate_limit.include_headers)
    app.middleware("http")(build_request_id_middleware(cfg.log.request_id_header))

    setup_exception_handlers(app)

    app.include_router(health_router)
    for router in routers:
        app.include_router(router)

    if decider is not None:
        apply_openapi_customizations(app, exempt_paths=cfg.rate_limit.exempt_paths)

    return app
