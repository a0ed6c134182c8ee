"""Unit tests for auth/provider.py -- provider client over httpx.MockTransport.

The mock transport plays both the provider and our own callback endpoint, so
the authorization hop follows a real redirect chain:
  GET /api/v1/authorize -> 302 -> GET /api/v1/auth/callback -> {originalUrl}
"""

from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

from auth.errors import UpstreamError
from auth.provider import ProviderClient

PROVIDER = "http://localhost:3000"
TOKEN = {"access_token": "tok", "token_type": "bearer", "expires_in": 3600}


class ProviderStub:
    """Request handler for httpx.MockTransport emulating the provider."""

    def __init__(self, *, state_override: str | None = None, credentials_status: int = 200):
        self.requests: list[httpx.Request] = []
        self.token_form: dict[str, list[str]] = {}
        self.state_override = state_override
        self.credentials_status = credentials_status

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        params = dict(request.url.params)
        if path == "/api/v1/validate":
            if request.headers.get("Authorization") == "Bearer good":
                return httpx.Response(200, json={"user_id": "ada", "access_token": "good", "expires_in": 60})
            return httpx.Response(401, text="Token expired")
        if path == "/api/v1/credentials":
            if self.credentials_status != 200:
                return httpx.Response(self.credentials_status, json={"message": "unknown client"})
            return httpx.Response(200, json={"client_id": "cid", "client_secret": "csecret"})
        if path == "/api/v1/authorize":
            state = self.state_override or params["state"]
            location = f"{params['redirect_uri']}?code=abc&state={state}"
            return httpx.Response(302, headers={"Location": location})
        if path == "/api/v1/auth/callback":
            original = f"{path}?{request.url.query.decode()}"
            return httpx.Response(200, json={**params, "originalUrl": original})
        if path == "/api/v1/token":
            self.token_form = parse_qs(request.content.decode())
            return httpx.Response(200, json=TOKEN)
        return httpx.Response(404, json={"message": "not found"})


def _client(settings, stub) -> ProviderClient:
    return ProviderClient(settings, transport=httpx.MockTransport(stub))


class TestValidate:
    @pytest.mark.asyncio
    async def test_valid_token(self, settings):
        stub = ProviderStub()
        info = await _client(settings, stub).validate("Bearer good")
        assert info == {"user_id": "ada", "access_token": "good", "expires_in": 60}
        assert str(stub.requests[0].url) == f"{PROVIDER}/api/v1/validate"

    @pytest.mark.asyncio
    async def test_rejected_token_carries_provider_text(self, settings):
        with pytest.raises(UpstreamError) as exc_info:
            await _client(settings, ProviderStub()).validate("Bearer bad")
        assert exc_info.value.message == "Token expired"

    @pytest.mark.asyncio
    async def test_transport_failure(self, settings):
        def boom(request):
            raise httpx.ConnectError("refused", request=request)

        client = ProviderClient(settings, transport=httpx.MockTransport(boom))
        with pytest.raises(UpstreamError):
            await client.validate("Bearer good")


class TestExchange:
    @pytest.mark.asyncio
    async def test_three_hops(self, settings):
        stub = ProviderStub()
        token = await _client(settings, stub).exchange("ada@example.com")
        assert token == TOKEN

        paths = [r.url.path for r in stub.requests]
        assert paths == ["/api/v1/credentials", "/api/v1/authorize", "/api/v1/auth/callback", "/api/v1/token"]

        creds = stub.requests[0].url.params
        assert creds["domain"] == settings.app_domain
        assert creds["client_id"] == "ada@example.com"

        authorize = stub.requests[1].url.params
        assert authorize["response_type"] == "code"
        assert authorize["client_id"] == "cid"
        assert authorize["scope"] == "all"
        assert authorize["redirect_uri"] == settings.callback_url
        assert authorize["state"]

        assert urlsplit(str(stub.requests[2].url)).netloc == "authgate.test"

        assert stub.requests[3].method == "POST"
        assert stub.token_form["grant_type"] == ["authorization_code"]
        assert stub.token_form["code"] == ["abc"]
        assert stub.token_form["client_id"] == ["cid"]
        assert stub.token_form["client_secret"] == ["csecret"]

    @pytest.mark.asyncio
    async def test_state_mismatch(self, settings):
        stub = ProviderStub(state_override="forged")
        with pytest.raises(UpstreamError):
            await _client(settings, stub).exchange("ada@example.com")
        assert "/api/v1/token" not in [r.url.path for r in stub.requests]

    @pytest.mark.asyncio
    async def test_credentials_failure_stops_exchange(self, settings):
        stub = ProviderStub(credentials_status=404)
        with pytest.raises(UpstreamError) as exc_info:
            await _client(settings, stub).exchange("ada@example.com")
        assert exc_info.value.message == "unknown client"
        assert len(stub.requests) == 1
