"""Unit tests for request key extractors."""

import pytest

from conftest import make_request
from throttle.core.errors import ConfigInvalidError
from throttle.core.keys import (
    api_key_or_ip,
    client_ip_key,
    client_ip_key_factory,
    cookie_key,
    exempt_paths,
    header_key,
    resolve_key_extractor,
    session_key,
)


class TestClientIp:
    def test_uses_peer_address(self) -> None:
        assert client_ip_key(make_request()) == "ip:1.2.3.4"

    def test_unknown_peer(self) -> None:
        assert client_ip_key(make_request(client=None)) == "ip:unknown"

    def test_ignores_forwarded_for_by_default(self) -> None:
        request = make_request(headers={"X-Forwarded-For": "9.9.9.9"})
        assert client_ip_key(request) == "ip:1.2.3.4"

    def test_trusts_first_forwarded_hop_when_enabled(self) -> None:
        extractor = client_ip_key_factory(trust_forwarded=True)
        request = make_request(headers={"X-Forwarded-For": "9.9.9.9, 10.0.0.1"})
        assert extractor(request) == "ip:9.9.9.9"

    def test_falls_back_to_peer_without_forwarded_header(self) -> None:
        extractor = client_ip_key_factory(trust_forwarded=True)
        assert extractor(make_request()) == "ip:1.2.3.4"


class TestHeaderAndCookie:
    def test_header_key(self) -> None:
        extractor = header_key("X-Tenant")
        assert extractor(make_request(headers={"X-Tenant": "acme"})) == "x-tenant:acme"
        assert extractor(make_request()) is None

    def test_header_key_custom_prefix(self) -> None:
        extractor = header_key("X-API-Key", prefix="api_key")
        assert extractor(make_request(headers={"X-API-Key": "abc"})) == "api_key:abc"

    def test_cookie_key_default_name(self) -> None:
        extractor = cookie_key()
        assert extractor(make_request(headers={"Cookie": "sid=s3ss10n; theme=dark"})) == "cookie:s3ss10n"
        assert extractor(make_request()) is None

    def test_api_key_or_ip(self) -> None:
        assert api_key_or_ip(make_request(headers={"X-API-Key": "k1"})) == "api_key:k1"
        assert api_key_or_ip(make_request()) == "ip:1.2.3.4"


class TestSession:
    def test_session_key_default_entry(self) -> None:
        extractor = session_key()
        request = make_request(session={"rate-api-id": "u-42", "theme": "dark"})

        assert extractor(request) == "session:u-42"

    def test_session_key_custom_entry(self) -> None:
        extractor = session_key("user_id")
        assert extractor(make_request(session={"user_id": 7})) == "session:7"

    def test_missing_entry_bypasses(self) -> None:
        assert session_key()(make_request(session={})) is None

    def test_without_session_middleware_bypasses(self) -> None:
        assert session_key()(make_request()) is None


class TestExemptPaths:
    def test_exempt_path_bypasses(self) -> None:
        extractor = exempt_paths(client_ip_key, ["/health"])

        assert extractor(make_request("/health")) is None
        assert extractor(make_request("/health/extra")) == "ip:1.2.3.4"

    def test_no_paths_returns_original(self) -> None:
        assert exempt_paths(client_ip_key, []) is client_ip_key

    def test_extractors_are_deterministic(self) -> None:
        extractor = exempt_paths(api_key_or_ip, ["/health"])
        request = make_request("/v1/items", headers={"X-API-Key": "k1"})

        assert extractor(request) == extractor(request)


class TestResolve:
    @pytest.mark.parametrize(
        ("strategy", "headers", "expected"),
        [
            ("ip", {}, "ip:1.2.3.4"),
            ("api_key", {"X-API-Key": "k"}, "api_key:k"),
            ("API_KEY_OR_IP", {}, "ip:1.2.3.4"),
            ("cookie", {"Cookie": "session=abc"}, "cookie:abc"),
            ("session", {}, "session:u-1"),
        ],
    )
    def test_known_strategies(self, strategy: str, headers: dict, expected: str) -> None:
        extractor = resolve_key_extractor(strategy, cookie_name="session", session_name="uid")
        assert extractor(make_request(headers=headers, session={"uid": "u-1"})) == expected

    def test_unknown_strategy(self) -> None:
        with pytest.raises(ConfigInvalidError) as exc_info:
            resolve_key_extractor("geo")
        assert exc_info.value.code == "rate_limit_unknown_key_strategy"
