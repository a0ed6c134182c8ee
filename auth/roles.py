"""
auth/roles.py -- Role management on top of CredentialStore.

The three system roles (superadmin, admin, user) are protected: they can be
renamed and re-described, and their members replaced, but never disabled or
deleted. ProtectedRoleError is raised before anything is written.

Membership replacement is delete-all-then-insert and is not transactional. A
crash between the two steps leaves the role without members. Callers that
need atomicity must not rely on update().

Removal soft-deletes (removed=now, enabled=False). Under APP_ENV=test rows are
hard-deleted so test runs do not accumulate tombstones.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from fastapi.concurrency import run_in_threadpool

from auth.errors import NotFoundError, ProtectedRoleError
from auth.models import ADMIN_ROLE_ID, PROTECTED_ROLE_IDS, SUPERADMIN_ROLE_ID, Deleted, Role, User
from auth.store import CredentialStore

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("authgate.auth.roles")

_ADMIN_ROLE_IDS = frozenset({SUPERADMIN_ROLE_ID, ADMIN_ROLE_ID})


class RoleService:
    def __init__(self, store: CredentialStore, settings: Settings) -> None:
        self.store = store
        self.hard_delete = settings.is_test

    async def list(self) -> list[Role]:
        return await run_in_threadpool(self.store.list_roles)

    async def list_enabled(self, enabled: bool) -> list[Role]:
        return await run_in_threadpool(self.store.list_roles, enabled)

    async def get_by_id(self, role_id: int) -> Role | None:
        return await run_in_threadpool(self.store.get_role_by_id, role_id)

    async def get_by_name(self, title: str) -> Role | None:
        return await run_in_threadpool(self.store.get_role_by_title, title)

    async def create(self, role: Role) -> Role:
        """Insert an enabled role and return it as stored.

        Raises sqlalchemy.exc.IntegrityError if the title is taken.
        """
        await run_in_threadpool(self.store.create_role, role)
        created = await run_in_threadpool(self.store.get_role_by_title, role.title)
        logger.info("Created role %s (%s)", created.id, created.title)
        return created

    async def update(self, role: Role) -> Role:
        """Write role fields, then replace its member set with role.users."""
        current = await run_in_threadpool(self.store.get_role_by_id, role.id)
        if current is None:
            raise NotFoundError(f"role {role.id} not found")
        if role.id in PROTECTED_ROLE_IDS and bool(role.enabled) != current.enabled:
            raise ProtectedRoleError(f"{current.title} cannot be disabled")

        await run_in_threadpool(self.store.update_role, role)
        await run_in_threadpool(self.store.clear_role_members, role.id)
        await run_in_threadpool(self.store.add_role_members, role.id, role.users)
        logger.info("Updated role %s (%d members)", role.id, len(role.users))
        return await run_in_threadpool(self.store.get_role_by_id, role.id)

    async def remove(self, role: Role) -> Role:
        """Drop all memberships, then soft-delete (or hard-delete under test)."""
        if role.id in PROTECTED_ROLE_IDS:
            raise ProtectedRoleError(f"{role.title} cannot be deleted")

        await run_in_threadpool(self.store.clear_role_members, role.id)
        if self.hard_delete:
            await run_in_threadpool(self.store.hard_delete_role, role.id)
            removed_at = Deleted(at=datetime.now(timezone.utc).isoformat())
        else:
            removed_at = Deleted(at=await run_in_threadpool(self.store.soft_delete_role, role.id))
        logger.info("Removed role %s (hard=%s)", role.id, self.hard_delete)
        return replace(role, enabled=False, lifecycle=removed_at, users=[])

    @staticmethod
    def is_admin(user: User) -> bool:
        return any(role_id in _ADMIN_ROLE_IDS for role_id in user.roles)
