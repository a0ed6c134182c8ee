"""
auth/service.py -- Authentication flows: login, token check, 2FA, signup,
password recovery and logout.

Every public coroutine returns an AuthOutcome (HTTP status + JSON body) and
reports exactly one AuditEvent for it. Failures inside a flow are raised as
AuthError subclasses and converted to a 401 {"message": ...} outcome in one
place (_respond), so each flow reads as a straight line of guard clauses.

Blocking work (SQLAlchemy Core calls) runs through run_in_threadpool, and
bcrypt work goes through PasswordHasher, which does the same. The event loop
only ever awaits.

Collaborators are injected through the constructor. Nothing here reads
environment variables or module-level singletons.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import secrets
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from fastapi.concurrency import run_in_threadpool
from sqlalchemy.exc import SQLAlchemyError

from auth.audit import AuditEvent, AuditSink
from auth.errors import (
    ERROR_AUTH_BAD_CREDENTIALS,
    ERROR_AUTH_DISABLED,
    ERROR_AUTH_EMAIL,
    ERROR_AUTH_EMPTY_EMAIL,
    ERROR_AUTH_EMPTY_PASSWORD,
    ERROR_AUTH_INVALID_EMAIL,
    ERROR_AUTH_INVALID_RESET_TOKEN,
    ERROR_AUTH_NO_USER,
    ERROR_AUTH_PASSWORD_NOT_MATCH,
    ERROR_AUTH_USERNAME,
    ERROR_GA2FA_INCORRECT_CODE,
    ERROR_GA2FA_NO_CODE,
    ERROR_VALIDATION,
    AuthenticationError,
    AuthError,
    AuthValidationError,
    ConflictError,
    NotFoundError,
)
from auth.hashing import PasswordHasher
from auth.models import USER_ROLE_ID, Active, PublicUser, User
from auth.provider import MOCK_PROVIDER_DATA, ProviderClient
from auth.store import CredentialStore
from auth.totp import TotpManager

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("authgate.auth.service")

OK = 200
UNAUTHORIZED = 401

# Literal path placeholder some clients send when they forget to substitute it.
_RESET_TOKEN_PLACEHOLDER = ":token"


@dataclass(frozen=True)
class AuthOutcome:
    status_code: int
    body: dict[str, Any]

    @property
    def ok(self) -> bool:
        return self.status_code == OK


def _now_ms() -> int:
    return int(time.time() * 1000)


class AuthService:
    def __init__(
        self,
        store: CredentialStore,
        hasher: PasswordHasher,
        totp: TotpManager,
        provider: ProviderClient,
        audit: AuditSink,
        settings: Settings,
    ) -> None:
        self.store = store
        self.hasher = hasher
        self.totp = totp
        self.provider = provider
        self.audit = audit
        self.test_mode = settings.is_test
        self.reset_token_ttl_ms = settings.reset_token_ttl_ms

    # ------------------------------------------------------------------
    # Outcome plumbing
    # ------------------------------------------------------------------

    async def _respond(self, method: str, flow: Callable[[], Awaitable[dict[str, Any]]]) -> AuthOutcome:
        """Run flow, turn its result or its AuthError into an outcome, audit it."""
        try:
            body = await flow()
        except AuthError as exc:
            self.audit.record(AuditEvent(method=method, response=exc, code=UNAUTHORIZED))
            return AuthOutcome(UNAUTHORIZED, {"message": exc.message})
        except SQLAlchemyError as exc:
            logger.exception("Store failure during %s", method)
            self.audit.record(AuditEvent(method=method, response=exc, code=UNAUTHORIZED))
            return AuthOutcome(UNAUTHORIZED, {"message": ERROR_VALIDATION})
        self.audit.record(AuditEvent(method=method, response=body, code=OK))
        return AuthOutcome(OK, body)

    async def _user(self, user_id: int | None) -> User | None:
        if not user_id:
            return None
        return await run_in_threadpool(self.store.get_by_id, user_id)

    # ------------------------------------------------------------------
    # Flows
    # ------------------------------------------------------------------

    def ping(self) -> dict[str, str]:
        return {"ping": "pong"}

    async def login(self, email: str | None, password: str | None) -> AuthOutcome:
        """Authenticate by username-or-email and password."""
        return await self._respond("login", lambda: self._login(email, password))

    async def _login(self, name: str | None, password: str | None) -> dict[str, Any]:
        user = await run_in_threadpool(self.store.get_by_name, name or "")
        # Always run bcrypt, even for unknown users, to equalize timing.
        valid = await self.hasher.verify(password or "", user.hashed_password if user else None)
        if user is None:
            raise NotFoundError(ERROR_AUTH_NO_USER)
        if not valid:
            raise AuthenticationError(ERROR_AUTH_BAD_CREDENTIALS)
        if not user.enabled or user.is_removed:
            raise AuthenticationError(ERROR_AUTH_DISABLED)
        logger.info("User %s logged in", user.id)
        return {"user": PublicUser.from_user(user).to_dict()}

    async def check(self, authorization: str | None) -> AuthOutcome:
        """Resolve a bearer token to the local user through the provider."""

        async def flow() -> dict[str, Any]:
            if not authorization:
                raise AuthValidationError(ERROR_VALIDATION)
            header = authorization if "Bearer" in authorization else f"Bearer {authorization}"
            info = await self.provider.validate(header)
            user = await run_in_threadpool(self.store.get_by_name, str(info.get("user_id") or ""))
            if user is None:
                raise NotFoundError(ERROR_AUTH_NO_USER)
            public = PublicUser.from_user(user, token=info.get("access_token"), expired=info.get("expires_in"))
            return {"user": public.to_dict()}

        return await self._respond("check", flow)

    async def ga2fa(self, user_id: int | None, code: str | None = None) -> AuthOutcome:
        """Two-factor step for an authenticated session.

        No secret yet      -> enroll (code ignored), return qr + secret.
        Secret, no code    -> 200 with a "no code" message.
        Secret and code    -> verify, then obtain a provider access token.
        """

        async def flow() -> dict[str, Any]:
            user = await self._user(user_id)
            if user is None:
                raise AuthenticationError(ERROR_GA2FA_INCORRECT_CODE)

            if not user.secret:
                enrollment = self.totp.generate(user.email or user.username)
                secret = self.totp.secret_for(user.username, enrollment.secret)
                if secret != enrollment.secret:
                    enrollment = self.totp.enrollment(secret, user.email or user.username)
                await run_in_threadpool(self.store.update_user, user.id, secret=secret)
                logger.info("Provisioned 2FA secret for user %s", user.id)
                return {"qr": enrollment.qr, "secret": enrollment.secret}

            if not code:
                return {"message": ERROR_GA2FA_NO_CODE}

            code_str = str(code)
            if not (self.totp.verify(user.secret, code_str) or self.totp.is_test_bypass(user.secret, code_str)):
                raise AuthenticationError(ERROR_GA2FA_INCORRECT_CODE)

            if self.test_mode:
                return {"status": True, "data": MOCK_PROVIDER_DATA}
            token = await self.provider.exchange(user.email)
            return {"status": True, "data": token}

        return await self._respond("ga2fa", flow)

    async def signup(
        self,
        username: str | None,
        email: str | None,
        password: str | None,
        confirm: str | None,
    ) -> AuthOutcome:
        """Register a user, or reactivate a soft-deleted one with the same name."""
        username = username or ""
        email = email or ""

        async def flow() -> dict[str, Any]:
            if not password:
                raise AuthValidationError(ERROR_AUTH_EMPTY_PASSWORD)
            if password != confirm:
                raise AuthValidationError(ERROR_AUTH_PASSWORD_NOT_MATCH)

            # Empty identifiers are not keys: never match another blank row.
            if username:
                existing = await run_in_threadpool(self.store.get_by_username, username)
                if existing is not None:
                    if existing.is_removed:
                        return await self._reactivate(existing)
                    raise ConflictError(f"{username} {ERROR_AUTH_USERNAME}")

            if email:
                existing = await run_in_threadpool(self.store.get_by_email, email)
                if existing is not None:
                    if existing.is_removed:
                        return await self._reactivate(existing)
                    raise ConflictError(f"{email} {ERROR_AUTH_EMAIL}")

            hashed = await self.hasher.hash(password)
            user_id = await run_in_threadpool(
                self.store.create_user, User(username=username, email=email, hashed_password=hashed)
            )
            await run_in_threadpool(self.store.add_user_role, user_id, USER_ROLE_ID)
            user = await run_in_threadpool(self.store.get_by_id, user_id)
            logger.info("Registered user %s", user_id)
            return {"user": PublicUser.from_user(user).to_dict()}

        return await self._respond("signup", flow)

    async def _reactivate(self, user: User) -> dict[str, Any]:
        await run_in_threadpool(self.store.update_user, user.id, enabled=True, lifecycle=Active())
        restored = await run_in_threadpool(self.store.get_by_id, user.id)
        logger.info("Reactivated user %s", user.id)
        return {"user": PublicUser.from_user(restored).to_dict()}

    async def forgot(self, email: str | None) -> AuthOutcome:
        """Mint a one-hour password-reset token for the account."""

        async def flow() -> dict[str, Any]:
            if not email:
                raise AuthValidationError(ERROR_AUTH_EMPTY_EMAIL)
            user = await run_in_threadpool(self.store.get_by_email, email)
            if user is None:
                raise NotFoundError(ERROR_AUTH_INVALID_EMAIL)
            token = secrets.token_hex(16)
            expires = _now_ms() + self.reset_token_ttl_ms
            await run_in_threadpool(
                self.store.update_user, user.id, password_reset_token=token, password_reset_expires=expires
            )
            user.password_reset_token = token
            user.password_reset_expires = expires
            logger.info("Issued password reset token for user %s", user.id)
            return {"user": PublicUser.from_user(user).to_dict(), "token": token}

        return await self._respond("forgot", flow)

    async def reset(self, token: str | None, password: str | None) -> AuthOutcome:
        """Consume a reset token, set the new password, then log the user in.

        The login runs inside the same flow, so a successful reset answers
        with the login body and is audited once, as "reset".
        """

        async def flow() -> dict[str, Any]:
            if not token or token == _RESET_TOKEN_PLACEHOLDER:
                raise AuthValidationError(ERROR_AUTH_INVALID_RESET_TOKEN)
            user = await run_in_threadpool(self.store.get_by_reset_token, token)
            if user is None or not user.password_reset_expires or user.password_reset_expires <= _now_ms():
                raise NotFoundError(ERROR_AUTH_INVALID_RESET_TOKEN)
            if not password:
                raise AuthValidationError(ERROR_AUTH_EMPTY_PASSWORD)
            hashed = await self.hasher.hash(password)
            await run_in_threadpool(
                self.store.update_user,
                user.id,
                hashed_password=hashed,
                password_reset_token=None,
                password_reset_expires=None,
            )
            logger.info("Password reset for user %s", user.id)
            return await self._login(user.email or user.username, password)

        return await self._respond("reset", flow)

    async def logout(self, user_id: int | None) -> AuthOutcome:
        async def flow() -> dict[str, Any]:
            user = await self._user(user_id)
            if user is None:
                raise AuthValidationError(ERROR_VALIDATION)
            logger.info("User %s logged out", user.id)
            return {"user": PublicUser.from_user(user).to_dict()}

        return await self._respond("logout", flow)

    def callback(self, code: str | None, state: str | None, original_url: str) -> dict[str, Any]:
        """Echo the provider's authorization redirect back to the caller."""
        return {"code": code, "state": state, "originalUrl": original_url}
