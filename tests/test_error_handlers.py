"""
tests/test_error_handlers.py -- Framework-level error envelopes from api/main.py.

Covers:
  - 429 carries Retry-After equal to the tripped limit's window
  - 404 for an unknown role keeps the structured error envelope
"""

from __future__ import annotations

import json
from types import SimpleNamespace

import pytest
from limits import parse

from api.main import rate_limit_handler


@pytest.mark.asyncio
@pytest.mark.parametrize("limit,expected", [("5/minute", "60"), ("100/hour", "3600")])
async def test_rate_limit_retry_after_matches_window(limit, expected):
    exc = SimpleNamespace(detail=limit, limit=SimpleNamespace(limit=parse(limit)))
    resp = await rate_limit_handler(None, exc)
    assert resp.status_code == 429
    assert resp.headers["Retry-After"] == expected
    assert json.loads(resp.body)["error"]["code"] == "rate_limited"


def test_unknown_role_uses_error_envelope(api):
    api.login_admin()
    resp = api.client.delete("/api/v1/roles/424242")
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "not_found"
