"""Unit tests for auth/roles.py -- RoleService and protected system roles."""

import pytest

from auth.errors import NotFoundError, ProtectedRoleError
from auth.models import ADMIN_ROLE_ID, SUPERADMIN_ROLE_ID, USER_ROLE_ID, Deleted, Role, User
from auth.roles import RoleService


@pytest.fixture
def roles(store, settings) -> RoleService:
    return RoleService(store, settings)


@pytest.fixture
def prod_roles(store, settings_factory) -> RoleService:
    return RoleService(store, settings_factory(app_env="production"))


class TestQueries:
    @pytest.mark.asyncio
    async def test_list_ordered_by_id(self, roles):
        await roles.create(Role(title="auditor"))
        listed = await roles.list()
        assert [r.id for r in listed] == sorted(r.id for r in listed)
        assert [r.title for r in listed][:3] == ["superadmin", "admin", "user"]

    @pytest.mark.asyncio
    async def test_list_enabled(self, roles, store):
        auditor = await roles.create(Role(title="auditor"))
        store.update_role(Role(id=auditor.id, title="auditor", enabled=False))
        assert auditor.id not in [r.id for r in await roles.list_enabled(True)]
        assert [r.id for r in await roles.list_enabled(False)] == [auditor.id]

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self, roles):
        assert await roles.get_by_id(999) is None
        assert await roles.get_by_name("ghost") is None

    @pytest.mark.asyncio
    async def test_create_refetches(self, roles):
        created = await roles.create(Role(title="auditor", description="read only", enabled=False))
        assert created.id is not None
        assert created.enabled is True
        assert (await roles.get_by_name("auditor")).id == created.id


class TestUpdate:
    @pytest.mark.asyncio
    async def test_replaces_members(self, roles, store, seed):
        a = seed(store, "a", "a@example.com", "pw")
        b = seed(store, "b", "b@example.com", "pw")
        role = await roles.create(Role(title="auditor"))
        await roles.update(Role(id=role.id, title="auditor", users=[a]))
        updated = await roles.update(Role(id=role.id, title="auditors", description="x", users=[b]))
        assert updated.title == "auditors"
        assert updated.description == "x"
        assert updated.users == [b]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("role_id", [SUPERADMIN_ROLE_ID, ADMIN_ROLE_ID, USER_ROLE_ID])
    async def test_protected_role_cannot_be_disabled(self, roles, store, seed, role_id):
        uid = seed(store, "member", "m@example.com", "pw", roles=(role_id,))
        before = await roles.get_by_id(role_id)
        with pytest.raises(ProtectedRoleError) as exc_info:
            await roles.update(Role(id=role_id, title="renamed", enabled=False, users=[]))
        assert exc_info.value.message == f"{before.title} cannot be disabled"
        after = await roles.get_by_id(role_id)
        assert after.title == before.title
        assert after.enabled is True
        assert uid in after.users

    @pytest.mark.asyncio
    async def test_protected_role_can_be_renamed(self, roles):
        updated = await roles.update(Role(id=ADMIN_ROLE_ID, title="administrators", enabled=True))
        assert updated.title == "administrators"
        assert updated.enabled is True

    @pytest.mark.asyncio
    async def test_ordinary_role_can_be_disabled(self, roles):
        role = await roles.create(Role(title="auditor"))
        updated = await roles.update(Role(id=role.id, title="auditor", enabled=False))
        assert updated.enabled is False

    @pytest.mark.asyncio
    async def test_unknown_role(self, roles):
        with pytest.raises(NotFoundError):
            await roles.update(Role(id=999, title="ghost"))


class TestRemove:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("role_id", [SUPERADMIN_ROLE_ID, ADMIN_ROLE_ID, USER_ROLE_ID])
    async def test_protected_role_cannot_be_deleted(self, roles, role_id):
        role = await roles.get_by_id(role_id)
        with pytest.raises(ProtectedRoleError) as exc_info:
            await roles.remove(role)
        assert exc_info.value.message == f"{role.title} cannot be deleted"
        assert await roles.get_by_id(role_id) is not None

    @pytest.mark.asyncio
    async def test_hard_delete_in_test_env(self, roles, store, seed):
        uid = seed(store, "a", "a@example.com", "pw")
        role = await roles.create(Role(title="temp"))
        await roles.update(Role(id=role.id, title="temp", users=[uid]))
        removed = await roles.remove(await roles.get_by_id(role.id))
        assert isinstance(removed.lifecycle, Deleted)
        assert removed.enabled is False
        assert await roles.get_by_id(role.id) is None
        assert store.get_by_id(uid).roles == [USER_ROLE_ID]

    @pytest.mark.asyncio
    async def test_soft_delete_outside_test_env(self, prod_roles):
        role = await prod_roles.create(Role(title="temp"))
        removed = await prod_roles.remove(role)
        assert isinstance(removed.lifecycle, Deleted)
        stored = await prod_roles.get_by_id(role.id)
        assert stored.lifecycle == removed.lifecycle
        assert stored.enabled is False


@pytest.mark.parametrize(
    "role_ids,expected",
    [
        ([SUPERADMIN_ROLE_ID], True),
        ([ADMIN_ROLE_ID, USER_ROLE_ID], True),
        ([USER_ROLE_ID], False),
        ([], False),
    ],
)
def test_is_admin(role_ids, expected):
    assert RoleService.is_admin(User(username="u", email="u@example.com", roles=role_ids)) is expected
