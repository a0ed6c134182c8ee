"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Two auth methods are checked in priority order:
  1. Server-side session ("user_id") -- bound by POST /auth/login.
  2. Authorization: Bearer <token> header -- introspected by the external
     provider; the token's subject is resolved to a local user.

Both methods converge on a User object. Disabled and soft-deleted users never
authenticate.

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() wraps it and raises HTTP 401 if unauthenticated.
require_admin() wraps get_current_user() and raises HTTP 403 unless the user
holds the superadmin or admin role.

Layer rule: no imports from api/ or core/.
  auth/dependencies.py may import from fastapi (for HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

import logging

from fastapi import HTTPException, Request
from fastapi.concurrency import run_in_threadpool

from auth.errors import UpstreamError
from auth.models import User
from auth.roles import RoleService

logger = logging.getLogger("authgate.auth.dependencies")

SESSION_USER_KEY = "user_id"


def _usable(user: User | None) -> User | None:
    if user is None or not user.enabled or user.is_removed:
        return None
    return user


async def try_get_current_user(request: Request) -> User | None:
    """Attempt to authenticate the request via session or Bearer token.

    Returns the authenticated User on success, None on any failure.
    Never raises -- callers that need a hard 401 should use get_current_user().
    """
    store = request.app.state.store

    # 1. Session (login flow)
    user_id = request.session.get(SESSION_USER_KEY)
    if user_id:
        user = _usable(await run_in_threadpool(store.get_by_id, user_id))
        if user:
            return user

    # 2. Authorization: Bearer header (provider-issued tokens)
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        try:
            info = await request.app.state.provider.validate(auth_header)
        except UpstreamError as exc:
            logger.debug("Bearer token rejected: %s", exc.message)
            return None
        subject = str(info.get("user_id") or "")
        if subject:
            return _usable(await run_in_threadpool(store.get_by_name, subject))

    return None


async def get_current_user(request: Request) -> User:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user: User = Depends(get_current_user)): ...
    """
    user = await try_get_current_user(request)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return user


async def require_admin(request: Request) -> User:
    """Require the superadmin or admin role. 401 if unauthenticated, 403 otherwise.

    Use as a FastAPI dependency:
        @router.post("/admin-only")
        async def route(user: User = Depends(require_admin)): ...
    """
    user = await get_current_user(request)
    if not RoleService.is_admin(user):
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Admin access required."},
        )
    return user
