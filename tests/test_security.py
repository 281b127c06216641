"""Tests for the security gateway: host, rate limit, origin and auth."""

import os
import stat
import sys
from pathlib import Path

import pytest
from dependency_injector import providers

from core.auth_token import resolve_auth_token
from core.config import Settings
from middleware.host import extract_hostname, is_allowed_host
from middleware.origin import is_allowed_origin
from services.rate_limit import RateLimitStore

from conftest import TEST_TOKEN


class TestHostRules:
    @pytest.mark.parametrize("header,expected", [
        ("localhost:3000", "localhost"),
        ("192.168.1.50:3000", "192.168.1.50"),
        ("[::1]:3000", "::1"),
        ("[fe80::1]", "fe80::1"),
        ("::1", "::1"),
        ("EXAMPLE.com", "example.com"),
        ("", None),
        (None, None),
    ])
    def test_extract_hostname(self, header, expected) -> None:
        assert extract_hostname(header) == expected

    @pytest.mark.parametrize("hostname", [
        "localhost", "127.0.0.1", "127.8.9.10", "::1", "10.1.2.3", "172.16.0.1",
        "172.31.255.255", "192.168.1.50", "169.254.10.20", "fe80::1", "::ffff:192.168.0.2",
    ])
    def test_allowed(self, hostname: str) -> None:
        assert is_allowed_host(hostname)

    @pytest.mark.parametrize("hostname", [
        "evil.example.com", "8.8.8.8", "172.32.0.1", "192.169.0.1", "2001:db8::1",
        "localhost.evil.com", "", None,
    ])
    def test_rejected(self, hostname) -> None:
        assert not is_allowed_host(hostname)


class TestOriginRules:
    @pytest.mark.parametrize("origin", [
        "http://localhost", "http://localhost:5173", "https://127.0.0.1:3000",
        "http://10.0.0.5:3000", "http://192.168.1.2", "http://172.20.1.1:8080",
        "http://[::1]:3000", "capacitor://localhost",
    ])
    def test_allowed(self, origin: str) -> None:
        assert is_allowed_origin(origin)

    @pytest.mark.parametrize("origin", [
        "https://attacker.test", "http://localhost.attacker.test", "http://10.0.0.5.nip.io",
        "http://172.32.0.1", "null", "file://", "capacitor://evil", "ftp://localhost",
    ])
    def test_rejected(self, origin: str) -> None:
        assert not is_allowed_origin(origin)


class TestRateLimitStore:
    """Test the fixed window counter."""

    def test_ceiling_and_retry_after(self) -> None:
        store = RateLimitStore(max_requests=100, window_seconds=60)

        results = [store.hit("1.2.3.4", now=1000.0) for _ in range(100)]
        allowed, retry_after = store.hit("1.2.3.4", now=1030.2)

        assert all(ok for ok, _ in results)
        assert not allowed
        assert retry_after == 30

    def test_retry_after_at_least_one(self) -> None:
        store = RateLimitStore(max_requests=1, window_seconds=60)
        store.hit("a", now=0.0)

        assert store.hit("a", now=59.99) == (False, 1)

    def test_window_resets(self) -> None:
        store = RateLimitStore(max_requests=1, window_seconds=60)
        store.hit("a", now=0.0)
        assert not store.hit("a", now=10.0)[0]

        assert store.hit("a", now=61.0) == (True, 0)

    def test_clients_are_independent(self) -> None:
        store = RateLimitStore(max_requests=1, window_seconds=60)
        store.hit("a", now=0.0)

        assert store.hit("b", now=0.0)[0]

    def test_prune_over_threshold(self) -> None:
        store = RateLimitStore(max_requests=10, window_seconds=60, prune_threshold=3)
        for i in range(4):
            store.hit(f"old-{i}", now=0.0)

        store.hit("new", now=100.0)

        assert len(store) == 1

    def test_prune_at_most_once_per_window(self) -> None:
        """Test a map full of live windows is not rescanned on every hit."""
        scans = []

        class CountingStore(RateLimitStore):
            def prune(self, now=None):
                scans.append(now)
                return super().prune(now)

        store = CountingStore(max_requests=10, window_seconds=60, prune_threshold=2)
        for i in range(3):
            store.hit(f"client-{i}", now=0.0)

        for second in range(1, 50):
            store.hit(f"burst-{second}", now=float(second))
        assert scans == [1.0]

        store.hit("late", now=61.5)
        assert scans == [1.0, 61.5]
        assert "client-0" not in store._entries


class TestAuthToken:
    def test_configured_token(self, settings: Settings) -> None:
        assert resolve_auth_token(settings) == TEST_TOKEN

    def test_generated_token(self, settings: Settings) -> None:
        token = resolve_auth_token(settings.model_copy(update={"auth_token": None}))

        assert len(token) == 64
        int(token, 16)

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")
    def test_token_file_is_private(self, settings: Settings, tmp_path: Path) -> None:
        token_file = tmp_path / "run" / "token"

        token = resolve_auth_token(settings.model_copy(update={
            "auth_token": None, "auth_token_file": str(token_file),
        }))

        assert token_file.read_text() == token
        assert stat.S_IMODE(os.stat(token_file).st_mode) == 0o600


class TestGatewayHttp:
    """Test the middleware chain through the HTTP surface."""

    def test_health_is_public(self, client) -> None:
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_foreign_host_rejected(self, client) -> None:
        response = client.get("/health", headers={"Host": "evil.example.com"})

        assert response.status_code == 403
        assert response.json() == {"error": "Forbidden host"}

    def test_private_host_passes(self, client) -> None:
        response = client.get("/health", headers={"Host": "192.168.1.50:3000"})

        assert response.status_code == 200

    def test_foreign_origin_rejected(self, client) -> None:
        response = client.get("/health", headers={"Origin": "https://attacker.test"})

        assert response.status_code == 403

    def test_private_origin_allowed(self, client) -> None:
        response = client.get("/health", headers={"Origin": "http://10.0.0.5:3000"})

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "http://10.0.0.5:3000"
        assert "Content-Range" in response.headers["access-control-expose-headers"]
        assert "Origin" in response.headers["vary"]

    def test_preflight(self, client) -> None:
        response = client.options("/audio/dQw4w9WgXcQ", headers={
            "Origin": "http://localhost:5173",
            "Access-Control-Request-Method": "GET",
            "Access-Control-Request-Headers": "range,x-auth-token",
        })

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "http://localhost:5173"
        assert "x-auth-token" in response.headers["access-control-allow-headers"].lower()
        assert "HEAD" in response.headers["access-control-allow-methods"]
        assert response.headers["access-control-max-age"] == "600"

    def test_preflight_from_foreign_origin(self, client) -> None:
        response = client.options("/audio/dQw4w9WgXcQ", headers={
            "Origin": "https://attacker.test",
            "Access-Control-Request-Method": "GET",
        })

        assert response.status_code == 403
        assert "access-control-allow-origin" not in response.headers

    def test_auth_rejection_carries_cors_headers(self, client) -> None:
        """Test a browser can read the 401 its missing token caused."""
        response = client.get("/cache/info", headers={"Origin": "http://192.168.1.2:5173"})

        assert response.status_code == 401
        assert response.headers["access-control-allow-origin"] == "http://192.168.1.2:5173"

    def test_missing_token(self, client) -> None:
        response = client.get("/cache/info")

        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized"}

    def test_wrong_token(self, client) -> None:
        response = client.get("/cache/info", headers={"X-Auth-Token": "wrong-token-wrong-token"})

        assert response.status_code == 401

    def test_header_token(self, client, auth_headers) -> None:
        assert client.get("/cache/info", headers=auth_headers).status_code == 200

    def test_bearer_token(self, client) -> None:
        response = client.get("/cache/info", headers={"Authorization": f"Bearer {TEST_TOKEN}"})

        assert response.status_code == 200

    def test_search_exempt_from_auth(self, client) -> None:
        """Test /search passes auth; without an API key it is unavailable."""
        response = client.get("/search", params={"q": "song"})

        assert response.status_code == 502

    def test_search_requires_auth_when_not_exempt(self, client, app_container) -> None:
        strict = app_container.settings().model_copy(update={"auth_exempt_search": False})

        with app_container.settings.override(providers.Object(strict)):
            response = client.get("/search", params={"q": "song"})

        assert response.status_code == 401

    def test_rate_limit(self, client) -> None:
        """Test the 101st request in one window is rejected with Retry-After."""
        statuses = [client.get("/health").status_code for _ in range(100)]
        response = client.get("/health")

        assert statuses == [200] * 100
        assert response.status_code == 429
        assert int(response.headers["retry-after"]) > 0
        assert response.json() == {"error": "Too many requests"}

    def test_rate_limit_applies_before_auth(self, client) -> None:
        for _ in range(100):
            client.get("/cache/info")

        assert client.get("/cache/info").status_code == 429
