"""Key extractors: map a request to the client identity it is metered under.

An extractor is any ``Callable[[Request], str | None]``. Returning ``None``
means the request is not rate limited (health checks, internal monitoring); an
empty string is treated the same way.
Extractors must be pure: no store access and no clock.
"""

from __future__ import annotations

from typing import Callable, Iterable

from fastapi import Request

from throttle.core.config import DEFAULT_COOKIE_NAME, DEFAULT_SESSION_KEY
from throttle.core.errors import ConfigInvalidError

KeyExtractor = Callable[[Request], str | None]


def _client_host(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def client_ip_key_factory(*, trust_forwarded: bool = False) -> KeyExtractor:
    """Build an extractor keyed by client address.

    Args:
        trust_forwarded: Use the first ``X-Forwarded-For`` entry when present.
            Only enable behind a proxy that overwrites that header.
    """

    def client_ip_key(request: Request) -> str | None:
        if trust_forwarded:
            forwarded = request.headers.get("X-Forwarded-For", "")
            first = forwarded.split(",")[0].strip()
            if first:
                return f"ip:{first}"
        return f"ip:{_client_host(request)}"

    return client_ip_key


client_ip_key = client_ip_key_factory()


def header_key(name: str, prefix: str | None = None) -> KeyExtractor:
    """Build an extractor keyed by a request header; requests without it bypass."""

    namespace = prefix or name.lower()

    def extract(request: Request) -> str | None:
        value = request.headers.get(name)
        return f"{namespace}:{value}" if value else None

    return extract


def cookie_key(name: str = DEFAULT_COOKIE_NAME) -> KeyExtractor:
    """Build an extractor keyed by a session cookie; requests without it bypass."""

    def extract(request: Request) -> str | None:
        value = request.cookies.get(name)
        return f"cookie:{value}" if value else None

    return extract


def session_key(name: str = DEFAULT_SESSION_KEY) -> KeyExtractor:
    """Build an extractor keyed by a value stored in the server-side session.

    Reads ``scope["session"]`` as populated by Starlette's SessionMiddleware.
    Requests without a session (or without the entry) bypass.
    """

    def extract(request: Request) -> str | None:
        session = request.scope.get("session") or {}
        value = session.get(name)
        return f"session:{value}" if value else None

    return extract


def api_key_or_ip(request: Request) -> str | None:
    """Key by ``X-API-Key`` when present, otherwise by client address."""

    api_key = request.headers.get("X-API-Key")
    if api_key:
        return f"api_key:{api_key}"
    return f"ip:{_client_host(request)}"


def exempt_paths(extractor: KeyExtractor, paths: Iterable[str]) -> KeyExtractor:
    """Wrap ``extractor`` so the given exact paths are never rate limited."""

    exempt = frozenset(paths)
    if not exempt:
        return extractor

    def extract(request: Request) -> str | None:
        if request.url.path in exempt:
            return None
        return extractor(request)

    return extract


def resolve_key_extractor(
    strategy: str,
    *,
    cookie_name: str = DEFAULT_COOKIE_NAME,
    session_name: str = DEFAULT_SESSION_KEY,
    trust_forwarded: bool = False,
) -> KeyExtractor:
    """Map a configured strategy name to an extractor.

    Raises:
        ConfigInvalidError: If the strategy name is unknown.
    """

    name = strategy.strip().lower()
    if name == "ip":
        return client_ip_key_factory(trust_forwarded=trust_forwarded)
    if name == "api_key":
        return header_key("X-API-Key", prefix="api_key")
    if name == "api_key_or_ip":
        return api_key_or_ip
    if name == "cookie":
        return cookie_key(cookie_name)
    if name == "session":
        return session_key(session_name)

    raise ConfigInvalidError(
        code="rate_limit_unknown_key_strategy",
        message=f"Unknown rate limit key strategy: '{strategy}'. Supported: ip, api_key, api_key_or_ip, cookie, session",
        details={"field": "key_strategy", "actual_value": strategy},
    )
