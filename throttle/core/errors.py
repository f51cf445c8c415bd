"""Application-level exception types.

This module defines domain errors used across adapters and the HTTP layer,
enabling consistent error handling, logging, and API responses.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients.

    Fields are optional; only the ones relevant to a failure are set.
    """

    code: str
    message: str
    hint: str
    field: str
    min_value: float
    actual_value: Any
    http_status: int
    retry_after: float
    timeout_seconds: float
    max_connections: int
    error_type: str
    request_id: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ConfigInvalidError(AppError):
    """Raised when rate limit configuration is out of range.

    Always surfaced while building the limiter, never while serving a request.
    """


class StoreUnavailableError(AppError):
    """Raised when the counter store cannot complete an operation."""


class PoolExhaustedError(StoreUnavailableError):
    """Raised when no pooled store connection frees up within the pool timeout."""
