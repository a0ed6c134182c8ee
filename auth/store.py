"""
auth/store.py -- SQLAlchemy Core persistence layer for users and roles.

Pattern: Repository + Data Mapper. CredentialStore is the repository;
_row_to_user / _row_to_role are the mappers. Service and route code never
touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Username and e-mail uniqueness is enforced by AuthService.signup rather
  than by UNIQUE constraints: a soft-deleted user keeps its username so a
  later signup can reactivate the same record, and usernames may be empty.

Aggregation:
  users.roles / users.accounts / roles.users are read from the link tables
  in a second query and grouped in Python. Only links whose counterpart row
  still exists are reported (a dangling user_roles row is invisible).

Consistency:
  Each public method runs in its own connection and commits on exit. Multi-
  step flows (role membership replacement) are composed by the caller and
  are NOT wrapped in one transaction.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import hashlib
from collections import defaultdict
from collections.abc import Iterable
from datetime import datetime, timezone

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    or_,
    select,
    text,
    true,
)
from sqlalchemy.engine import Connection, Engine

from auth.models import (
    ADMIN_ROLE_ID,
    SUPERADMIN_ROLE_ID,
    USER_ROLE_ID,
    Active,
    Deleted,
    Lifecycle,
    Role,
    User,
)

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False, server_default=""),
    Column("email", String(255), nullable=False, server_default=""),
    Column("hashed_password", Text),
    Column("enabled", Boolean, nullable=False, server_default=true()),
    Column("secret", String(64)),  # base32 TOTP secret
    Column("gravatar", Text, nullable=False, server_default=""),
    Column("password_reset_token", String(64), index=True),
    Column("password_reset_expires", BigInteger),  # epoch ms
    Column("created", String(32), nullable=False),
    Column("updated", String(32), nullable=False),
    Column("removed", String(32)),  # NULL = active
)

_roles = Table(
    "roles",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("title", String(100), nullable=False, unique=True),
    Column("description", Text, nullable=False, server_default=""),
    Column("enabled", Boolean, nullable=False, server_default=true()),
    Column("created", String(32), nullable=False),
    Column("updated", String(32), nullable=False),
    Column("removed", String(32)),
)

_user_roles = Table(
    "user_roles",
    _metadata,
    Column("user_id", Integer, nullable=False),
    Column("role_id", Integer, nullable=False),
)

_user_accounts = Table(
    "user_accounts",
    _metadata,
    Column("user_id", Integer, nullable=False),
    Column("account_id", Integer, nullable=False),
)

# Seeded on first start. Ids are fixed because RoleService guards them.
_SYSTEM_ROLES = (
    (SUPERADMIN_ROLE_ID, "superadmin", "Unrestricted system access"),
    (ADMIN_ROLE_ID, "admin", "Administrative access"),
    (USER_ROLE_ID, "user", "Standard user"),
)

# Columns update_user() accepts. Anything else raises ValueError.
_USER_MUTABLE = {
    "username",
    "email",
    "hashed_password",
    "enabled",
    "secret",
    "password_reset_token",
    "password_reset_expires",
    "lifecycle",
}


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def gravatar_url(email: str, size: int = 200) -> str:
    """Return the Gravatar URL for an e-mail address (retro fallback image)."""
    if not email:
        return f"https://gravatar.com/avatar/?s={size}&d=retro"
    digest = hashlib.md5(email.strip().lower().encode("utf-8")).hexdigest()  # noqa: S324 -- Gravatar protocol
    return f"https://gravatar.com/avatar/{digest}?s={size}&d=retro"


def _lifecycle_to_removed(lifecycle: Lifecycle) -> str | None:
    return lifecycle.at if isinstance(lifecycle, Deleted) else None


def _removed_to_lifecycle(removed: str | None) -> Lifecycle:
    return Deleted(at=removed) if removed else Active()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CredentialStore:
    """Repository for User and Role entities plus their link tables.

    Usage:
        store = CredentialStore("sqlite:///:memory:")
        uid = store.create_user(User(username="ada", email="ada@example.com", hashed_password=h))
        user = store.get_by_name("ada@example.com")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)
        self._ensure_system_roles()

    def _ensure_system_roles(self) -> None:
        """Insert the superadmin/admin/user roles if they are missing.

        Idempotent -- safe to call on every startup.
        """
        now = _now_iso()
        with self.engine.connect() as conn:
            existing = set(conn.execute(select(_roles.c.id)).scalars())
            for role_id, title, description in _SYSTEM_ROLES:
                if role_id not in existing:
                    conn.execute(
                        _roles.insert().values(
                            id=role_id,
                            title=title,
                            description=description,
                            enabled=True,
                            created=now,
                            updated=now,
                        )
                    )
            conn.commit()

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        gravatar is derived from the e-mail address when the caller left it
        empty. created / updated are stamped here.
        """
        now = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    username=user.username,
                    email=user.email,
                    hashed_password=user.hashed_password,
                    enabled=user.enabled,
                    secret=user.secret,
                    gravatar=user.gravatar or gravatar_url(user.email),
                    password_reset_token=user.password_reset_token,
                    password_reset_expires=user.password_reset_expires,
                    created=now,
                    updated=now,
                    removed=_lifecycle_to_removed(user.lifecycle),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        return self._get_user(_users.c.id == user_id)

    def get_by_username(self, username: str) -> User | None:
        """Look up a user by exact username (case-sensitive)."""
        return self._get_user(_users.c.username == username)

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by exact e-mail address."""
        return self._get_user(_users.c.email == email)

    def get_by_name(self, name: str) -> User | None:
        """Look up a user whose username OR e-mail equals name.

        Login, token introspection and the login that follows a password
        reset accept either identifier. When both match different rows the
        lowest id wins.
        """
        if not name:
            return None
        return self._get_user(or_(_users.c.username == name, _users.c.email == name))

    def get_by_reset_token(self, token: str) -> User | None:
        """Look up the user holding the given password-reset token.

        Expiry is NOT checked here; AuthService.reset compares
        password_reset_expires against the clock.
        """
        return self._get_user(_users.c.password_reset_token == token)

    def update_user(self, user_id: int, **fields) -> bool:
        """Update mutable fields on an existing user.

        Accepted fields: username, email, hashed_password, enabled, secret,
        password_reset_token, password_reset_expires, lifecycle.
        lifecycle is translated to the nullable removed column.

        Returns True if a row was updated, False if user_id was not found.
        """
        unknown = set(fields) - _USER_MUTABLE
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        values = dict(fields)
        if "lifecycle" in values:
            values["removed"] = _lifecycle_to_removed(values.pop("lifecycle"))
        values["updated"] = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**values))
            conn.commit()
        return result.rowcount > 0

    def remove_user(self, user_id: int, hard: bool = False) -> bool:
        """Soft-delete a user (removed=now, enabled=False), or hard-delete.

        Hard deletion also drops the user's role and account links. It is only
        used under test configuration.
        """
        with self.engine.connect() as conn:
            if hard:
                conn.execute(_user_roles.delete().where(_user_roles.c.user_id == user_id))
                conn.execute(_user_accounts.delete().where(_user_accounts.c.user_id == user_id))
                result = conn.execute(_users.delete().where(_users.c.id == user_id))
            else:
                now = _now_iso()
                result = conn.execute(
                    _users.update().where(_users.c.id == user_id).values(removed=now, enabled=False, updated=now)
                )
            conn.commit()
        return result.rowcount > 0

    def add_user_role(self, user_id: int, role_id: int) -> None:
        """Link a user to a role. Duplicate links are ignored."""
        with self.engine.connect() as conn:
            exists = conn.execute(
                select(_user_roles.c.user_id).where(
                    (_user_roles.c.user_id == user_id) & (_user_roles.c.role_id == role_id)
                )
            ).first()
            if exists is None:
                conn.execute(_user_roles.insert().values(user_id=user_id, role_id=role_id))
                conn.commit()

    def link_account(self, user_id: int, account_id: int) -> None:
        """Associate an account id with a user. Accounts themselves live elsewhere."""
        with self.engine.connect() as conn:
            conn.execute(_user_accounts.insert().values(user_id=user_id, account_id=account_id))
            conn.commit()

    def _get_user(self, clause) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(clause).order_by(_users.c.id).limit(1)).fetchone()
            if row is None:
                return None
            roles = _links_for(conn, _user_roles.c.user_id, _user_roles.c.role_id, _roles, [row.id])
            accounts = _account_links_for(conn, [row.id])
        return _row_to_user(row, roles.get(row.id, []), accounts.get(row.id, []))

    # ------------------------------------------------------------------
    # Role queries
    # ------------------------------------------------------------------

    def list_roles(self, enabled: bool | None = None) -> list[Role]:
        """Return roles (optionally filtered by enabled) ordered by id ascending."""
        query = _roles.select().order_by(_roles.c.id)
        if enabled is not None:
            query = query.where(_roles.c.enabled == enabled)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
            members = _links_for(conn, _user_roles.c.role_id, _user_roles.c.user_id, _users, [r.id for r in rows])
        return [_row_to_role(r, members.get(r.id, [])) for r in rows]

    def get_role_by_id(self, role_id: int) -> Role | None:
        return self._get_role(_roles.c.id == role_id)

    def get_role_by_title(self, title: str) -> Role | None:
        return self._get_role(_roles.c.title == title)

    def create_role(self, role: Role) -> int:
        """Insert a new, always enabled role and return its id.

        Raises sqlalchemy.exc.IntegrityError if the title is already taken.
        """
        now = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _roles.insert().values(
                    title=role.title,
                    description=role.description or "",
                    enabled=True,
                    created=now,
                    updated=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def update_role(self, role: Role) -> bool:
        """Write title, description, enabled and lifecycle for role.id."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _roles.update()
                .where(_roles.c.id == role.id)
                .values(
                    title=role.title,
                    description=role.description or "",
                    enabled=bool(role.enabled),
                    removed=_lifecycle_to_removed(role.lifecycle),
                    updated=_now_iso(),
                )
            )
            conn.commit()
        return result.rowcount > 0

    def clear_role_members(self, role_id: int) -> int:
        """Delete every user_roles link of a role. Returns the number removed."""
        with self.engine.connect() as conn:
            result = conn.execute(_user_roles.delete().where(_user_roles.c.role_id == role_id))
            conn.commit()
        return result.rowcount

    def add_role_members(self, role_id: int, user_ids: Iterable[int]) -> None:
        """Insert user_roles links for every existing user in user_ids.

        Ids that do not match a user row are skipped silently.
        """
        wanted = {uid for uid in user_ids if uid}
        if not wanted:
            return
        with self.engine.connect() as conn:
            existing = conn.execute(select(_users.c.id).where(_users.c.id.in_(wanted))).scalars().all()
            for uid in sorted(existing):
                conn.execute(_user_roles.insert().values(user_id=uid, role_id=role_id))
            conn.commit()

    def soft_delete_role(self, role_id: int) -> str:
        """Mark a role removed and disabled. Returns the removal timestamp."""
        now = _now_iso()
        with self.engine.connect() as conn:
            conn.execute(_roles.update().where(_roles.c.id == role_id).values(removed=now, enabled=False, updated=now))
            conn.commit()
        return now

    def hard_delete_role(self, role_id: int) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_roles.delete().where(_roles.c.id == role_id))
            conn.commit()
        return result.rowcount > 0

    def _get_role(self, clause) -> Role | None:
        with self.engine.connect() as conn:
            row = conn.execute(_roles.select().where(clause)).fetchone()
            if row is None:
                return None
            members = _links_for(conn, _user_roles.c.role_id, _user_roles.c.user_id, _users, [row.id])
        return _row_to_role(row, members.get(row.id, []))

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Link aggregation
# ---------------------------------------------------------------------------


def _links_for(conn: Connection, owner_col, other_col, other_table: Table, owner_ids: list[int]) -> dict[int, list[int]]:
    """Group user_roles links by owner_col, keeping only ids present in other_table."""
    if not owner_ids:
        return {}
    rows = conn.execute(
        select(owner_col, other_col)
        .join(other_table, other_table.c.id == other_col)
        .where(owner_col.in_(owner_ids))
        .order_by(owner_col, other_col)
    ).fetchall()
    grouped: dict[int, list[int]] = defaultdict(list)
    for owner, other in rows:
        grouped[owner].append(other)
    return grouped


def _account_links_for(conn: Connection, user_ids: list[int]) -> dict[int, list[int]]:
    rows = conn.execute(
        select(_user_accounts.c.user_id, _user_accounts.c.account_id)
        .where(_user_accounts.c.user_id.in_(user_ids))
        .order_by(_user_accounts.c.user_id, _user_accounts.c.account_id)
    ).fetchall()
    grouped: dict[int, list[int]] = defaultdict(list)
    for user_id, account_id in rows:
        grouped[user_id].append(account_id)
    return grouped


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row, roles: list[int], accounts: list[int]) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        hashed_password=row.hashed_password,
        enabled=bool(row.enabled),
        secret=row.secret or None,
        gravatar=row.gravatar or "",
        password_reset_token=row.password_reset_token,
        password_reset_expires=row.password_reset_expires,
        created=row.created,
        updated=row.updated,
        lifecycle=_removed_to_lifecycle(row.removed),
        roles=roles,
        accounts=accounts,
    )


def _row_to_role(row, users: list[int]) -> Role:
    return Role(
        id=row.id,
        title=row.title,
        description=row.description or "",
        enabled=bool(row.enabled),
        created=row.created,
        updated=row.updated,
        lifecycle=_removed_to_lifecycle(row.removed),
        users=users,
    )
