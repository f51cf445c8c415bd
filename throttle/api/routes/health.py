from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check() -> dict:
    """Liveness check.

    Returns:
        dict: A dictionary with a single "status" key set to "ok".
    """

    return {"status": "ok"}


@router.get("/health/ready")
async def readiness_check(request: Request) -> JSONResponse:
    """Readiness check: reports whether the counter store answers a ping.

    Returns 503 while the store is unreachable. Requests are still served
    then, according to the configured failure policy.
    """

    limiter = getattr(request.app.state, "rate_limiter", None)
    if limiter is None:
        return JSONResponse({"status": "ok", "rate_limit": "disabled"})

    if await limiter.store.ping():
        return JSONResponse({"status": "ok", "store": "up"})
    return JSONResponse({"status": "degraded", "store": "down"}, status_code=503)
