#!/usr/bin/env python3
"""
AuthGate admin CLI -- bootstrap users and inspect roles without the HTTP API.

Usage:
  python main.py create-user --username admin --email admin@example.com --password 's3cret!' --role 1
  python main.py list-roles
  python main.py list-roles --enabled

Environment variables:
  DATABASE_URL  SQLAlchemy URL of the credential database (default: sqlite file under auth/)
  SECRET_KEY    Required unless DEBUG=true (shared with the API server's settings)
"""

import argparse
import getpass
import sys
from typing import Optional

from auth.hashing import hash_password
from auth.models import USER_ROLE_ID, User
from auth.store import CredentialStore
from core.config import get_settings


def create_user(
    store: CredentialStore,
    username: str,
    email: str,
    password: str,
    role_ids: Optional[list[int]] = None,
) -> int:
    """Insert an enabled user holding role_ids (default: the standard user role).

    Raises ValueError when the username or e-mail already belongs to a user.
    """
    if not password:
        raise ValueError("empty password")
    if username and store.get_by_username(username):
        raise ValueError(f"{username} user with this username already exist")
    if email and store.get_by_email(email):
        raise ValueError(f"{email} user with this email already exist")
    uid = store.create_user(User(username=username, email=email, hashed_password=hash_password(password)))
    for role_id in role_ids or [USER_ROLE_ID]:
        if store.get_role_by_id(role_id) is None:
            print(f"  [!] Role {role_id} does not exist, skipped.")
            continue
        store.add_user_role(uid, role_id)
    return uid


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="authgate",
        description="Administer the AuthGate credential database.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-user --username admin --email admin@example.com --role 1
  python main.py list-roles --enabled
        """,
    )
    sub = parser.add_subparsers(dest="command")

    p_user = sub.add_parser("create-user", help="Create a user (prompts for the password if omitted)")
    p_user.add_argument("--username", required=True, help="Login name")
    p_user.add_argument("--email", required=True, help="E-mail address")
    p_user.add_argument("--password", default=None, help="Password (prompted when omitted)")
    p_user.add_argument(
        "--role",
        dest="roles",
        type=int,
        action="append",
        metavar="ID",
        help="Role id to grant; repeatable (default: 3, the standard user role). 1=superadmin, 2=admin",
    )

    p_roles = sub.add_parser("list-roles", help="Print every role with its members")
    p_roles.add_argument("--enabled", action="store_true", help="Only enabled roles")

    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 1

    store = CredentialStore(get_settings().database_url)
    try:
        if args.command == "create-user":
            password = args.password or getpass.getpass("Password: ")
            try:
                uid = create_user(store, args.username, args.email, password, args.roles)
            except ValueError as e:
                print(f"  [!] {e}")
                return 1
            print(f"Created user {args.username} (id {uid}).")
        else:
            for role in store.list_roles(True if args.enabled else None):
                state = "enabled" if role.enabled else "disabled"
                if role.is_removed:
                    state = "removed"
                members = ", ".join(str(u) for u in role.users) or "-"
                print(f"{role.id:>4}  {role.title:<20} {state:<9} members: {members}")
    finally:
        store.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
