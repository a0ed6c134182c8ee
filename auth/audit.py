"""
auth/audit.py -- Audit trail for authentication outcomes.

Every AuthService operation reports exactly one AuditEvent, success or
failure, before its outcome is handed back to the route. The sink is an
injected observer: AuthService never looks one up globally.

LoggingAuditSink is the production default. It writes one line per event to
the "authgate.audit" logger and deliberately logs only the response *shape*
for successes (top-level keys and the user id) so that reset tokens, TOTP
secrets and provider access tokens never reach the log files.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol


@dataclass(frozen=True)
class AuditEvent:
    """One auth outcome: which operation, what it answered, with which status."""

    method: str
    response: Any  # response body dict on success, the AuthError on failure
    code: int

    @property
    def ok(self) -> bool:
        return 200 <= self.code < 300


class AuditSink(Protocol):
    def record(self, event: AuditEvent) -> None: ...


class LoggingAuditSink:
    """AuditSink that writes to the standard logging tree."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self.logger = logger or logging.getLogger("authgate.audit")

    def record(self, event: AuditEvent) -> None:
        if event.ok:
            self.logger.info("auth %s %d %s", event.method, event.code, _summarize(event.response))
        else:
            self.logger.warning("auth %s %d %s", event.method, event.code, event.response)


def _summarize(response: Any) -> str:
    if not isinstance(response, dict):
        return type(response).__name__
    user = response.get("user")
    user_id = user.get("id") if isinstance(user, dict) else None
    keys = ",".join(sorted(response))
    return f"keys={keys} user_id={user_id}" if user_id is not None else f"keys={keys}"
