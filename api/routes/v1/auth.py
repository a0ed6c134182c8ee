"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  GET  /api/v1/auth                 -- ping
  GET  /api/v1/auth/check           -- resolve Authorization bearer token to a user
  POST /api/v1/auth/login           -- password login; binds user id to the session
  POST /api/v1/auth/ga2fa           -- 2FA enrollment / verification / token exchange
  GET  /api/v1/auth/callback        -- provider authorization redirect target
  POST /api/v1/auth/signup          -- register or reactivate
  POST /api/v1/auth/forgot          -- mint password reset token
  GET|POST /api/v1/auth/reset/{token} -- consume reset token, then log in
  POST /api/v1/auth/logout          -- clears the session

Every flow is delegated to AuthService (request.app.state.auth_service); the
handlers only unpack the request, apply the session side effects, and turn
the AuthOutcome into a JSON response.

Security:
  login, ga2fa and forgot are rate-limited per IP (settings.login_rate_limit).
  Cache-Control: no-store on every response that can carry a secret (user
  views, TOTP secrets, reset tokens, provider tokens).
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    ForgotRequest,
    Ga2faRequest,
    LoginRequest,
    LogoutRequest,
    MessageResponse,
    ResetRequest,
    SignupRequest,
)
from auth.dependencies import SESSION_USER_KEY
from auth.service import AuthOutcome, AuthService
from core.config import get_settings

# Auth policy: every route here is public. Flows authenticate by their own
# inputs (password, 2FA code, reset token, bearer token).
router = APIRouter()

_RATE_LIMIT = get_settings().login_rate_limit

# Every flow answers its own failures as 401 {"message": ...}.
_FLOW_ERRORS = {401: {"model": MessageResponse}}


def _service(request: Request) -> AuthService:
    return request.app.state.auth_service


def _reply(outcome: AuthOutcome) -> JSONResponse:
    resp = JSONResponse(status_code=outcome.status_code, content=outcome.body)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.get("/auth")
async def ping(request: Request) -> dict[str, str]:
    return _service(request).ping()


@router.get("/auth/check", responses=_FLOW_ERRORS)
async def check(request: Request) -> JSONResponse:
    """Introspect the Authorization header with the provider."""
    outcome = await _service(request).check(request.headers.get("Authorization"))
    return _reply(outcome)


@limiter.limit(_RATE_LIMIT)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", responses=_FLOW_ERRORS)
async def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username-or-email and password.

    On success the user id is stored in the signed session cookie; the session
    is what authenticates later calls (ga2fa, logout, role management).
    """
    outcome = await _service(request).login(body.email, body.password)
    if outcome.ok:
        request.session.clear()
        request.session[SESSION_USER_KEY] = outcome.body["user"]["id"]
    return _reply(outcome)


@limiter.limit(_RATE_LIMIT)
@router.post("/auth/ga2fa", responses=_FLOW_ERRORS)
async def ga2fa(request: Request, body: Ga2faRequest) -> JSONResponse:
    """Run the 2FA step for body.id, or for the session user when id is omitted."""
    user_id = body.id if body.id is not None else request.session.get(SESSION_USER_KEY)
    outcome = await _service(request).ga2fa(user_id, body.code)
    return _reply(outcome)


@router.get("/auth/callback")
async def callback(
    request: Request,
    code: Optional[str] = Query(default=None, max_length=512),
    state: Optional[str] = Query(default=None, max_length=512),
) -> dict:
    """Echo the authorization redirect so the provider exchange can read the code."""
    original_url = request.url.path
    if request.url.query:
        original_url = f"{original_url}?{request.url.query}"
    return _service(request).callback(code, state, original_url)


@router.post("/auth/signup", responses=_FLOW_ERRORS)
async def signup(request: Request, body: SignupRequest) -> JSONResponse:
    outcome = await _service(request).signup(body.username, body.email, body.password, body.confirm)
    return _reply(outcome)


@limiter.limit(_RATE_LIMIT)
@router.post("/auth/forgot", responses=_FLOW_ERRORS)
async def forgot(request: Request, body: ForgotRequest) -> JSONResponse:
    """Issue a one-hour password reset token. Delivery (e-mail) is the caller's job."""
    outcome = await _service(request).forgot(body.email)
    return _reply(outcome)


@router.get("/auth/reset/{token}", responses=_FLOW_ERRORS)
async def reset_get(
    request: Request,
    token: str,
    password: Optional[str] = Query(default=None, max_length=255),
) -> JSONResponse:
    outcome = await _service(request).reset(token, password)
    if outcome.ok:
        request.session.clear()
        request.session[SESSION_USER_KEY] = outcome.body["user"]["id"]
    return _reply(outcome)


@router.post("/auth/reset/{token}", responses=_FLOW_ERRORS)
async def reset(request: Request, token: str, body: ResetRequest) -> JSONResponse:
    """Set a new password with a reset token; a success logs the user in."""
    outcome = await _service(request).reset(token, body.password)
    if outcome.ok:
        request.session.clear()
        request.session[SESSION_USER_KEY] = outcome.body["user"]["id"]
    return _reply(outcome)


@router.post("/auth/logout", responses=_FLOW_ERRORS)
async def logout(request: Request, body: Optional[LogoutRequest] = None) -> JSONResponse:
    """End the session of body.id, or of the session user when id is omitted."""
    user_id = body.id if body is not None and body.id is not None else request.session.get(SESSION_USER_KEY)
    outcome = await _service(request).logout(user_id)
    request.session.clear()
    return _reply(outcome)
