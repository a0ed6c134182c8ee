"""
auth/provider.py -- Client for the external OAuth-style token provider.

AuthGate never mints access tokens itself. Two conversations with the
provider happen over HTTP:

  validate(authorization)
      Bearer introspection: GET {provider}/api/v1/validate with the caller's
      Authorization header. 200 -> {user_id, access_token, expires_in}.
      Anything else -> UpstreamError carrying the provider's response text.

  exchange(client_id)
      Runs after a successful 2FA step. Three sequential hops, no retry:
        1. GET {provider}/api/v1/credentials?domain=<app domain>&client_id=<email>
           -> per-user {client_id, client_secret}
        2. GET the authorization URI (authorization code grant, scope "all",
           random state, redirect to our /api/v1/auth/callback). Redirects are
           followed; our callback echoes {code, state, originalUrl}.
        3. POST {provider}/api/v1/token with client_secret_post credentials
           and the code parsed out of originalUrl -> token response dict.

The request and response shapes come from authlib's RFC 6749 helpers
(prepare_grant_uri, parse_authorization_code_response, prepare_token_request)
so the grant parameters are encoded and checked exactly as the RFC requires.
The state returned in step 2 must match the one we sent; a mismatch is
treated like any other upstream failure.

Transport is httpx.AsyncClient. Tests pass an httpx.MockTransport through
the `transport` argument; nothing else in the module knows about it.

Layer rule: no imports from api/. Settings are passed in, not looked up.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any
from urllib.parse import urljoin

import httpx
from authlib.common.errors import AuthlibBaseError
from authlib.common.security import generate_token
from authlib.oauth2.rfc6749.parameters import (
    parse_authorization_code_response,
    prepare_grant_uri,
    prepare_token_request,
)

from auth.errors import UpstreamError

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("authgate.auth.provider")

PROVIDER_SCOPE = "all"

# Token response returned by ga2fa in the test environment instead of running
# the three-hop exchange.
MOCK_PROVIDER_DATA: dict[str, Any] = {
    "access_token": "a7e1c1d7f6b1d4c0e3b2a9f8e7d6c5b4a3f2e1d0",
    "refresh_token": "f0e1d2c3b4a5968778695a4b3c2d1e0f1a2b3c4d",
    "token_type": "bearer",
    "expires_in": 3600,
    "scope": PROVIDER_SCOPE,
}


class ProviderClient:
    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.base_url = settings.provider_url.rstrip("/")
        self.app_domain = settings.app_domain
        self.callback_url = settings.callback_url
        self.timeout = settings.provider_timeout_seconds
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    # ------------------------------------------------------------------
    # Bearer introspection
    # ------------------------------------------------------------------

    async def validate(self, authorization: str) -> dict[str, Any]:
        """Introspect a bearer token. Raises UpstreamError on any failure."""
        url = f"{self.base_url}/api/v1/validate"
        headers = {"Content-Type": "application/json", "Authorization": authorization}
        try:
            async with self._client() as client:
                resp = await client.get(url, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("Token validation request failed: %s", exc)
            raise UpstreamError(f"{url} is not available") from exc
        if resp.status_code != 200:
            raise UpstreamError(resp.text)
        return _json_object(resp)

    # ------------------------------------------------------------------
    # Authorization code exchange
    # ------------------------------------------------------------------

    async def exchange(self, client_id: str) -> dict[str, Any]:
        """Obtain an access token for the user identified by client_id (their e-mail)."""
        try:
            async with self._client() as client:
                credentials = await self._fetch_credentials(client, client_id)
                state = generate_token(30)
                code = await self._authorize(client, credentials["client_id"], state)
                token = await self._fetch_token(client, credentials, code)
        except httpx.HTTPError as exc:
            logger.warning("Provider exchange failed for %s: %s", client_id, exc)
            raise UpstreamError(f"{self.base_url} is not available") from exc
        except AuthlibBaseError as exc:
            logger.warning("Provider exchange rejected for %s: %s", client_id, exc)
            raise UpstreamError(exc.description or exc.error) from exc
        logger.info("Provider issued access token for %s", client_id)
        return token

    async def _fetch_credentials(self, client: httpx.AsyncClient, email: str) -> dict[str, Any]:
        resp = await client.get(
            f"{self.base_url}/api/v1/credentials",
            params={"domain": self.app_domain, "client_id": email},
        )
        body = _checked(resp)
        if not body.get("client_id") or not body.get("client_secret"):
            raise UpstreamError("provider returned no client credentials")
        return body

    async def _authorize(self, client: httpx.AsyncClient, provider_client_id: str, state: str) -> str:
        uri = prepare_grant_uri(
            f"{self.base_url}/api/v1/authorize",
            provider_client_id,
            "code",
            redirect_uri=self.callback_url,
            scope=PROVIDER_SCOPE,
            state=state,
        )
        resp = await client.get(uri, follow_redirects=True)
        body = _checked(resp)
        original_url = body.get("originalUrl")
        if not original_url:
            raise UpstreamError("authorization response carried no originalUrl")
        # originalUrl is path-relative when it comes back through our own callback.
        params = parse_authorization_code_response(urljoin(self.callback_url, original_url), state=state)
        return params["code"]

    async def _fetch_token(self, client: httpx.AsyncClient, credentials: dict[str, Any], code: str) -> dict[str, Any]:
        body = prepare_token_request(
            "authorization_code",
            code=code,
            redirect_uri=self.callback_url,
            client_id=credentials["client_id"],
            client_secret=credentials["client_secret"],
        )
        resp = await client.post(
            f"{self.base_url}/api/v1/token",
            content=body,
            headers={"Content-Type": "application/x-www-form-urlencoded", "Accept": "application/json"},
        )
        return _checked(resp)


def _checked(resp: httpx.Response) -> dict[str, Any]:
    """Return the JSON object body of a 200 response, else raise UpstreamError."""
    if resp.status_code != 200:
        try:
            detail = resp.json()
        except ValueError:
            detail = resp.text
        if isinstance(detail, dict):
            detail = detail.get("message") or detail.get("error_description") or detail.get("error") or str(detail)
        raise UpstreamError(str(detail) or f"provider answered {resp.status_code}")
    return _json_object(resp)


def _json_object(resp: httpx.Response) -> dict[str, Any]:
    try:
        body = resp.json()
    except ValueError as exc:
        raise UpstreamError("provider returned a non-JSON response") from exc
    if not isinstance(body, dict):
        raise UpstreamError("provider returned an unexpected response")
    return body
