"""
tests/conftest.py -- Shared test fixtures for AuthGate tests.

This module provides:
  - make_store(): isolated named shared-memory credential DB
  - RecordingAuditSink / FakeProvider: in-process test doubles
  - settings / store / audit / fake_provider / auth_service: unit-test fixtures
  - api: TestClient env (client, store, audit, provider, seeded user ids)

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because both TestClient and run_in_threadpool execute store calls on worker
threads. Plain :memory: DBs are per-connection and would present a blank
schema to each worker thread. The named URI format
(file:name?mode=memory&cache=shared&uri=true) shares one in-memory instance
across all connections in the same process.

The environment must be set before any api/auth/core import: get_settings()
is cached on first use, and api.main reads it at import time.
  DEBUG=true               -- auto-generate SECRET_KEY instead of raising
  APP_ENV=test             -- hard deletes, 2FA test pair, mock provider data
  LOGIN_RATE_LIMIT=...     -- keep the shared limiter out of the way
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

# CRITICAL: set before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.audit import AuditEvent
from auth.errors import UpstreamError
from auth.hashing import PasswordHasher, hash_password
from auth.models import ADMIN_ROLE_ID, USER_ROLE_ID, User
from auth.roles import RoleService
from auth.service import AuthService
from auth.store import CredentialStore
from auth.totp import TotpManager
from core.config import Settings

ADMIN_PASSWORD = "testpass123"
USER_PASSWORD = "alicepass1"


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


@dataclass
class RecordingAuditSink:
    """AuditSink that keeps every event for assertions."""

    events: list[AuditEvent] = field(default_factory=list)

    def record(self, event: AuditEvent) -> None:
        self.events.append(event)

    @property
    def methods(self) -> list[str]:
        return [e.method for e in self.events]


class FakeProvider:
    """Stands in for ProviderClient. tokens maps bearer token -> user_id subject."""

    def __init__(self) -> None:
        self.tokens: dict[str, str] = {}
        self.validate_calls: list[str] = []
        self.exchange_calls: list[str] = []
        self.exchange_error: str | None = None

    async def validate(self, authorization: str) -> dict:
        self.validate_calls.append(authorization)
        token = authorization.removeprefix("Bearer ").strip()
        if token not in self.tokens:
            raise UpstreamError("invalid token")
        return {"user_id": self.tokens[token], "access_token": token, "expires_in": 3600}

    async def exchange(self, client_id: str) -> dict:
        self.exchange_calls.append(client_id)
        if self.exchange_error:
            raise UpstreamError(self.exchange_error)
        return {"access_token": f"token-for-{client_id}", "token_type": "bearer", "expires_in": 3600}


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def make_store(prefix: str = "unit") -> CredentialStore:
    """Create an isolated named shared-memory credential store."""
    return CredentialStore(f"sqlite:///file:test_{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true")


def seed_user(
    store: CredentialStore,
    username: str,
    email: str,
    password: str,
    roles: tuple[int, ...] = (USER_ROLE_ID,),
    **fields,
) -> int:
    uid = store.create_user(User(username=username, email=email, hashed_password=hash_password(password), **fields))
    for role_id in roles:
        store.add_user_role(uid, role_id)
    return uid


def make_settings(**overrides) -> Settings:
    values = {"debug": True, "app_env": "test", "app_url": "http://authgate.test"}
    values.update(overrides)
    return Settings(**values)


# ---------------------------------------------------------------------------
# Unit-test fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def store() -> Generator[CredentialStore, None, None]:
    s = make_store()
    yield s
    s.close()


@pytest.fixture
def store_factory() -> Generator:
    """Yield make_store; every store it creates is closed at teardown."""
    created: list[CredentialStore] = []

    def factory(prefix: str = "unit") -> CredentialStore:
        s = make_store(prefix)
        created.append(s)
        return s

    yield factory
    for s in created:
        s.close()


@pytest.fixture
def seed():
    """Return seed_user(store, username, email, password, roles=..., **fields) -> id."""
    return seed_user


@pytest.fixture
def settings_factory():
    """Return make_settings(**overrides) -> Settings (test env unless overridden)."""
    return make_settings


@pytest.fixture
def audit() -> RecordingAuditSink:
    return RecordingAuditSink()


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def auth_service(store, audit, fake_provider, settings) -> AuthService:
    return AuthService(
        store=store,
        hasher=PasswordHasher(),
        totp=TotpManager(settings),
        provider=fake_provider,
        audit=audit,
        settings=settings,
    )


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(store: CredentialStore, provider: FakeProvider, audit: RecordingAuditSink, cfg: Settings):
    """Return an async context manager that replaces the real lifespan.

    Wires the test store and doubles into app.state so TestClient routes see
    an isolated database and never reach a real provider.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.store = store
        app.state.provider = provider
        app.state.auth_service = AuthService(
            store=store,
            hasher=PasswordHasher(),
            totp=TotpManager(cfg),
            provider=provider,
            audit=audit,
            settings=cfg,
        )
        app.state.role_service = RoleService(store, cfg)
        yield

    return test_lifespan


@dataclass
class ApiEnv:
    client: TestClient
    store: CredentialStore
    audit: RecordingAuditSink
    provider: FakeProvider
    admin_id: int
    user_id: int

    def login(self, email: str, password: str):
        return self.client.post("/api/v1/auth/login", json={"email": email, "password": password})

    def login_admin(self):
        return self.login("testadmin", ADMIN_PASSWORD)

    def login_user(self):
        return self.login("alice@example.com", USER_PASSWORD)


@pytest.fixture(scope="module")
def api_env() -> Generator[ApiEnv, None, None]:
    """One TestClient per test module for speed.

    Seeds an admin (testadmin / admin@example.com) and a standard user
    (alice / alice@example.com) before the client starts.
    """
    store = make_store("api")
    admin_id = seed_user(store, "testadmin", "admin@example.com", ADMIN_PASSWORD, roles=(ADMIN_ROLE_ID,))
    user_id = seed_user(store, "alice", "alice@example.com", USER_PASSWORD)
    audit = RecordingAuditSink()
    provider = FakeProvider()

    app.router.lifespan_context = _patch_lifespan(store, provider, audit, make_settings())

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiEnv(client, store, audit, provider, admin_id, user_id)

    store.close()


@pytest.fixture
def api(api_env: ApiEnv) -> ApiEnv:
    """api_env with a fresh cookie jar and an empty audit log for each test."""
    api_env.client.cookies.clear()
    api_env.audit.events.clear()
    api_env.provider.tokens.clear()
    api_env.provider.validate_calls.clear()
    return api_env
