"""
Unit tests for the authenticated provider client
"""

import asyncio

import httpx
import pytest

from core.exceptions import (
    AuthError,
    NetworkError,
    RateLimitError,
    TransportError,
    UnauthorizedResourceError,
    ValidationError,
)
from ingestion.auth_manager import AuthManager
from ingestion.client import ProviderClient
from tests.fakes import BEARER_TOKEN, PROVIDER_URL, SECURITY_TOKEN


def build_client(handler, credentials, **kwargs):
    """Client whose login always succeeds and whose other requests go to `handler`"""
    login_calls = []

    def route(request):
        if request.url.path == "/api/Admin/APILogin":
            login_calls.append(request)
            return httpx.Response(200, json={"bearerToken": BEARER_TOKEN, "apiToken": SECURITY_TOKEN})
        return handler(request)

    http_client = httpx.AsyncClient(transport=httpx.MockTransport(route))
    auth = AuthManager(http_client, credentials, base_url=PROVIDER_URL)
    options = {"base_url": PROVIDER_URL, "max_retries": 3, "retry_delay": 0}
    options.update(kwargs)
    return ProviderClient(http_client, auth, **options), login_calls


class TestProviderClient:

    @pytest.mark.asyncio
    async def test_substitutes_token_and_sends_bearer(self, credentials):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"ok": True})

        client, _ = build_client(handler, credentials)
        result = await client.request_json("GET", "/api/Aircraft/getStatus/1/{security_token}")

        assert result == {"ok": True}
        assert seen[0].url.path == f"/api/Aircraft/getStatus/1/{SECURITY_TOKEN}"
        assert seen[0].headers["Authorization"] == f"Bearer {BEARER_TOKEN}"
        assert client.requests_sent == 1

    @pytest.mark.asyncio
    async def test_404_allowed_returns_none(self, credentials):
        client, _ = build_client(lambda request: httpx.Response(404), credentials)

        assert await client.request_json("GET", "/x", allow_not_found=True) is None

    @pytest.mark.asyncio
    async def test_404_not_allowed_raises(self, credentials):
        client, _ = build_client(lambda request: httpx.Response(404), credentials)

        with pytest.raises(TransportError) as exc:
            await client.request_json("GET", "/x")
        assert exc.value.context["status_code"] == 404

    @pytest.mark.asyncio
    async def test_empty_body_returns_none(self, credentials):
        client, _ = build_client(lambda request: httpx.Response(200, content=b""), credentials)

        assert await client.request_json("GET", "/x") is None

    @pytest.mark.asyncio
    async def test_invalid_json_raises_validation_error(self, credentials):
        client, _ = build_client(lambda request: httpx.Response(200, text="<html>"), credentials)

        with pytest.raises(ValidationError):
            await client.request_json("GET", "/x")

    @pytest.mark.asyncio
    async def test_server_error_retried(self, credentials):
        responses = [httpx.Response(503), httpx.Response(502), httpx.Response(200, json=[1])]
        client, _ = build_client(lambda request: responses.pop(0), credentials)

        assert await client.request_json("GET", "/x") == [1]

    @pytest.mark.asyncio
    async def test_server_error_exhausts_retries(self, credentials):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500)

        client, _ = build_client(handler, credentials)

        with pytest.raises(NetworkError):
            await client.request_json("GET", "/x")
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_max_retries_override(self, credentials):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500)

        client, _ = build_client(handler, credentials)

        with pytest.raises(NetworkError):
            await client.request_json("GET", "/x", max_retries=1)
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_rate_limited_uses_retry_after(self, credentials):
        responses = [
            httpx.Response(429, headers={"Retry-After": "0"}),
            httpx.Response(200, json={"ok": True}),
        ]
        client, _ = build_client(lambda request: responses.pop(0), credentials)

        assert await client.request_json("GET", "/x") == {"ok": True}

    @pytest.mark.asyncio
    async def test_rate_limit_exhausted(self, credentials):
        client, _ = build_client(
            lambda request: httpx.Response(429, headers={"Retry-After": "0"}), credentials
        )

        with pytest.raises(RateLimitError) as exc:
            await client.request_json("GET", "/x")
        assert exc.value.retry_after == 0

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self, credentials):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(400, text="bad request")

        client, _ = build_client(handler, credentials)

        with pytest.raises(TransportError):
            await client.request_json("GET", "/x")
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_401_triggers_one_relogin(self, credentials):
        responses = [httpx.Response(401), httpx.Response(200, json={"ok": True})]
        client, login_calls = build_client(lambda request: responses.pop(0), credentials)

        assert await client.request_json("GET", "/x") == {"ok": True}
        assert len(login_calls) == 2

    @pytest.mark.asyncio
    async def test_repeated_401_is_scoped_to_resource(self, credentials):
        client, login_calls = build_client(lambda request: httpx.Response(401), credentials)

        with pytest.raises(UnauthorizedResourceError) as exc:
            await client.request_json("GET", "/x")
        assert len(login_calls) == 2
        assert not isinstance(exc.value, AuthError)
        assert isinstance(exc.value, TransportError)

    @pytest.mark.asyncio
    async def test_staggered_401s_share_one_relogin(self, credentials):
        login_calls = []

        def bearer(login_number):
            return f"{login_number:02d}" + "b" * 62

        async def route(request):
            if request.url.path == "/api/Admin/APILogin":
                login_calls.append(request)
                return httpx.Response(
                    200, json={"bearerToken": bearer(len(login_calls)), "apiToken": SECURITY_TOKEN}
                )
            if request.headers["Authorization"] == f"Bearer {bearer(1)}":
                # Revoked token: rejections arrive 10 ms apart
                index = int(request.url.path.rsplit("/", 1)[-1])
                await asyncio.sleep(0.01 * index)
                return httpx.Response(401)
            return httpx.Response(200, json={"ok": True})

        http_client = httpx.AsyncClient(transport=httpx.MockTransport(route))
        auth = AuthManager(http_client, credentials, base_url=PROVIDER_URL)
        client = ProviderClient(http_client, auth, base_url=PROVIDER_URL, max_retries=3, retry_delay=0)
        await auth.get_valid_session()

        results = await asyncio.gather(*(client.request_json("GET", f"/x/{i}") for i in range(12)))

        assert results == [{"ok": True}] * 12
        assert len(login_calls) == 2
        assert auth.metrics()["refresh_count"] == 2

    @pytest.mark.asyncio
    async def test_timeout_retried_then_network_error(self, credentials):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        client, _ = build_client(handler, credentials)

        with pytest.raises(NetworkError) as exc:
            await client.request_json("GET", "/x")
        assert exc.value.context["retry_count"] == 3

    @pytest.mark.asyncio
    async def test_circuit_breaker_opens(self, credentials):
        client, _ = build_client(
            lambda request: httpx.Response(400), credentials,
            circuit_breaker_threshold=2,
        )

        for _ in range(2):
            with pytest.raises(TransportError):
                await client.request_json("GET", "/x")

        with pytest.raises(TransportError) as exc:
            await client.request_json("GET", "/x")
        assert "Circuit breaker" in exc.value.message
        assert client.requests_sent == 2

    @pytest.mark.asyncio
    async def test_security_token_redacted_in_errors(self, credentials):
        client, _ = build_client(lambda request: httpx.Response(400), credentials)

        with pytest.raises(TransportError) as exc:
            await client.request_json("GET", "/api/Aircraft/getStatus/1/{security_token}")
        assert SECURITY_TOKEN not in str(exc.value)
