"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own domain
shape; stores and services do the work.

Soft deletion is modelled as an explicit lifecycle tag rather than a nullable
timestamp: a record is either Active() or Deleted(at=<ISO 8601>). The store's
mappers translate to and from the nullable `removed` column.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

# Well-known identifiers of the three system roles. These can never be
# disabled or deleted (see auth/roles.py).
SUPERADMIN_ROLE_ID = 1
ADMIN_ROLE_ID = 2
USER_ROLE_ID = 3

PROTECTED_ROLE_IDS = frozenset({SUPERADMIN_ROLE_ID, ADMIN_ROLE_ID, USER_ROLE_ID})


@dataclass(frozen=True)
class Active:
    """Record is live."""


@dataclass(frozen=True)
class Deleted:
    """Record was soft-deleted at the given ISO 8601 timestamp."""

    at: str


Lifecycle = Union[Active, Deleted]


@dataclass
class User:
    """Represents a local identity.

    password_reset_expires is an epoch timestamp in milliseconds. It is only
    meaningful while password_reset_token is set; both are cleared together
    when the token is consumed.

    roles / accounts hold ids aggregated from the link tables on read. Writing
    them back through update_user() is not supported -- role membership is
    owned by the role side (auth/roles.py).
    """

    username: str
    email: str
    id: int | None = None
    hashed_password: str | None = None
    enabled: bool = True
    secret: str | None = None  # base32 TOTP secret, None until 2FA enrollment
    gravatar: str = ""
    password_reset_token: str | None = None
    password_reset_expires: int | None = None  # epoch ms
    created: str | None = None
    updated: str | None = None
    lifecycle: Lifecycle = field(default_factory=Active)
    roles: list[int] = field(default_factory=list)
    accounts: list[int] = field(default_factory=list)

    @property
    def is_removed(self) -> bool:
        return isinstance(self.lifecycle, Deleted)


@dataclass
class Role:
    """A named permission group. users holds member user ids."""

    title: str
    id: int | None = None
    description: str = ""
    enabled: bool = True
    created: str | None = None
    updated: str | None = None
    lifecycle: Lifecycle = field(default_factory=Active)
    users: list[int] = field(default_factory=list)

    @property
    def is_removed(self) -> bool:
        return isinstance(self.lifecycle, Deleted)


@dataclass
class PublicUser:
    """Redacted projection of User that is safe to return over HTTP.

    Never carries hashed_password or the TOTP secret. token / expired are only
    populated by the token-introspection flow (AuthService.check); every other
    flow leaves them None.
    """

    id: int
    username: str
    gravatar: str
    email: str
    enabled: bool
    removed: bool
    expired: int | None
    token: str | None
    roles: list[int]
    accounts: list[int]

    @classmethod
    def from_user(cls, user: User, token: str | None = None, expired: int | None = None) -> PublicUser:
        return cls(
            id=user.id,
            username=user.username,
            gravatar=user.gravatar,
            email=user.email,
            enabled=user.enabled,
            removed=user.is_removed,
            expired=expired,
            token=token,
            roles=list(user.roles),
            accounts=list(user.accounts),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "username": self.username,
            "gravatar": self.gravatar,
            "email": self.email,
            "enabled": self.enabled,
            "removed": self.removed,
            "expired": self.expired,
            "token": self.token,
            "roles": self.roles,
            "accounts": self.accounts,
        }
