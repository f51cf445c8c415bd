"""HTTP middleware: request correlation and rate limiting.

``build_request_id_middleware`` tags every request/response with a correlation id.
``RateLimitMiddleware`` meters requests per client key and either forwards
them downstream or answers 429 without calling the downstream handler.

Usage:
    app.middleware("http")(RateLimitMiddleware(decider))
    app.middleware("http")(build_request_id_middleware("X-Request-ID"))  # outermost, added last
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Union

from fastapi import Request, Response, status
from fastapi.responses import JSONResponse

from throttle.adapters.rate_limit.base import RateLimitResult
from throttle.core.errors import StoreUnavailableError
from throttle.core.logging import clear_request_id, get_request_id, set_request_id
from throttle.core.rate_limit import AdmissionDecider

logger = logging.getLogger(__name__)

CallNext = Callable[[Request], Awaitable[Response]]


def build_request_id_middleware(header_name: str) -> Callable[[Request, CallNext], Awaitable[Response]]:
    """Build middleware that propagates or generates a request id and times the request.

    The incoming ``header_name`` value is reused when present, otherwise a
    UUID4 is generated. The id is bound to the logging context for the
    duration of the request and echoed on the response together with
    ``X-Request-Duration-ms``.
    """

    async def request_id_middleware(request: Request, call_next: CallNext) -> Response:
        request_id = request.headers.get(header_name) or str(uuid.uuid4())
        set_request_id(request_id)
        start = time.perf_counter()
        try:
            response: Response = await call_next(request)
        finally:
            clear_request_id()

        duration_ms = (time.perf_counter() - start) * 1000
        response.headers[header_name] = request_id
        response.headers.setdefault("X-Request-Duration-ms", f"{duration_ms:.2f}")
        return response

    return request_id_middleware


@dataclass(frozen=True)
class Forward:
    """Pass the request downstream and add ``headers`` to its response."""

    headers: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class Reject:
    """Answer with ``response``; the downstream handler is not called."""

    response: Response


Outcome = Union[Forward, Reject]


class RateLimitMiddleware:
    """Fixed-window rate limiting stage for the HTTP pipeline.

    Holds a shared AdmissionDecider and no per-request state, so one instance
    serves all concurrent requests.
    """

    def __init__(self, decider: AdmissionDecider, *, include_headers: bool = True) -> None:
        self._decider = decider
        self._include_headers = include_headers

    @property
    def decider(self) -> AdmissionDecider:
        return self._decider

    def _headers_for(self, result: RateLimitResult) -> dict[str, str]:
        if not self._include_headers:
            return {}
        if result.allowed and result.degraded:
            # Quota is unknown while the store is down
            return {}
        return result.headers()

    def _reject(self, result: RateLimitResult) -> Reject:
        headers = self._headers_for(result)
        if result.retry_after_seconds is not None:
            # Retry-After is standard 429 semantics, kept even without X-RateLimit-*
            headers.setdefault("Retry-After", str(result.retry_after_seconds))
        response = JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content={
                "error": {
                    "code": "rate_limit_exceeded",
                    "message": "Rate limit exceeded. Try again later.",
                    "request_id": get_request_id(),
                }
            },
            headers=headers,
        )
        return Reject(response=response)

    async def evaluate(self, request: Request) -> Outcome:
        """Decide whether ``request`` is forwarded or rejected.

        Store failures never escape: they are converted by the decider's
        failure policy.
        """

        key = self._decider.config.key_extractor(request)
        if not key:
            # None or "" both mean the request is not metered
            return Forward()

        try:
            result = await self._decider.decide(key)
        except StoreUnavailableError as exc:
            logger.error(
                "rate_limit.store_unavailable",
                extra={
                    "error_code": exc.code,
                    "error_type": type(exc).__name__,
                    "request_path": request.url.path,
                },
            )
            result = self._decider.fallback(exc)

        if result.allowed:
            return Forward(headers=self._headers_for(result))
        return self._reject(result)

    async def __call__(self, request: Request, call_next: CallNext) -> Response:
        outcome = await self.evaluate(request)
        if isinstance(outcome, Reject):
            return outcome.response

        response = await call_next(request)
        for name, value in outcome.headers.items():
            response.headers[name] = value
        return response
