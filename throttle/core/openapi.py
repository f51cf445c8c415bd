"""OpenAPI customization for rate limited services.

Documents the 429 response and the X-RateLimit-* headers on every operation
that goes through the rate limit middleware, and leaves exempt paths alone.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable

from fastapi import FastAPI

_HTTP_METHODS = {"get", "put", "post", "delete", "options", "head", "patch", "trace"}

RATE_LIMIT_HEADERS: Dict[str, Dict[str, Any]] = {
    "X-RateLimit-Limit": {
        "description": "Maximum requests allowed in the current window.",
        "schema": {"type": "integer"},
    },
    "X-RateLimit-Remaining": {
        "description": "Requests left in the current window.",
        "schema": {"type": "integer"},
    },
    "X-RateLimit-Reset": {
        "description": "UNIX epoch seconds at which the current window ends.",
        "schema": {"type": "integer"},
    },
}


def apply_openapi_customizations(app: FastAPI, *, exempt_paths: Iterable[str] = ()) -> None:
    """Patch FastAPI's OpenAPI generation with rate limit documentation.

    - Adds a shared ``TooManyRequests`` response component
    - References it as the 429 response of every non-exempt operation
    - Adds the rate limit headers to each documented 2xx response
    - Adds tags metadata if not present
    """

    original_openapi = app.openapi
    exempt = set(exempt_paths)

    def custom_openapi() -> Dict[str, Any]:
        if app.openapi_schema:
            return app.openapi_schema
        schema = original_openapi()

        components = schema.setdefault("components", {})
        responses = components.setdefault("responses", {})
        responses.setdefault(
            "TooManyRequests",
            {
                "description": "Rate limit exceeded for this client.",
                "headers": {
                    **RATE_LIMIT_HEADERS,
                    "Retry-After": {
                        "description": "Seconds until the window resets.",
                        "schema": {"type": "integer"},
                    },
                },
            },
        )

        tags = schema.setdefault("tags", [])
        existing_tag_names = {t.get("name") for t in tags}
        if "Health" not in existing_tag_names:
            tags.append(
                {
                    "name": "Health",
                    "description": "Liveness and readiness checks (not rate limited).",
                }
            )

        for path, methods in schema.get("paths", {}).items():
            if path in exempt:
                continue
            for method, operation in methods.items():
                if method not in _HTTP_METHODS or not isinstance(operation, dict):
                    continue
                op_responses = operation.setdefault("responses", {})
                op_responses.setdefault("429", {"$ref": "#/components/responses/TooManyRequests"})
                for code, response in op_responses.items():
                    if code.startswith("2") and isinstance(response, dict):
                        response.setdefault("headers", {}).update(RATE_LIMIT_HEADERS)

        app.openapi_schema = schema
        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
