#!/usr/bin/env python3
"""
TenantGate -- management commands.

Usage:
  python main.py cleanup-tokens
  python main.py create-superadmin --username root --email root@example.com
  python main.py sessions 42
  python main.py revoke-sessions 42

All commands use DATABASE_URL (and the rest of the settings) from the
environment or .env, exactly like the API server.
"""

import argparse
import getpass
import logging
import sys
from typing import Optional

from auth.catalog import ROLE_DESCRIPTIONS, SUPER_ADMIN_ROLE
from auth.schema import MAX_ID, make_engine
from auth.sessions import TokenStore
from auth.store import UserStore
from core.config import get_settings
from core.errors import AppError
from directory.models import NewUser
from directory.store import DirectoryStore


def _stores() -> tuple[UserStore, TokenStore, DirectoryStore]:
    engine = make_engine(get_settings().database_url)
    tokens = TokenStore(engine)
    return UserStore(engine), tokens, DirectoryStore(engine, tokens)


def cmd_cleanup_tokens(args: argparse.Namespace) -> int:
    _, tokens, _ = _stores()
    count = tokens.cleanup_expired_tokens()
    print(f"  Deleted {count} expired session(s).")
    return 0


def _ensure_super_admin_role(users: UserStore) -> int:
    """Return the id of the SUPER_ADMIN role, creating or reactivating it if needed."""
    role = users.get_role_by_name(SUPER_ADMIN_ROLE)
    if role is None:
        return users.create_role(SUPER_ADMIN_ROLE, ROLE_DESCRIPTIONS.get(SUPER_ADMIN_ROLE))
    if not role.is_active:
        users.set_role_active(role.id, True)
        print(f"  [!] Role {SUPER_ADMIN_ROLE} was inactive and has been reactivated.")
    return role.id


def cmd_create_superadmin(args: argparse.Namespace) -> int:
    password: Optional[str] = args.password
    if not password:
        password = getpass.getpass("  Password: ")
        if password != getpass.getpass("  Repeat password: "):
            print("  [!] Passwords do not match.")
            return 1
    if len(password) < 6:
        print("  [!] Password must be at least 6 characters.")
        return 1

    users, _, directory = _stores()
    role_id = _ensure_super_admin_role(users)
    try:
        detail = directory.create_user(
            NewUser(
                username=args.username,
                email=args.email,
                password=password,
                full_name=args.full_name,
                role_ids=[role_id],
            )
        )
    except AppError as exc:
        print(f"  [!] {exc.message}")
        for issue in exc.fields:
            print(f"      {issue.field}: {issue.message}")
        return 1
    print(f"  Created {SUPER_ADMIN_ROLE} user '{detail.username}' (id={detail.id}).")
    return 0


def cmd_sessions(args: argparse.Namespace) -> int:
    users, tokens, _ = _stores()
    if users.get_by_id(args.user_id) is None:
        print(f"  [!] No user with id {args.user_id}.")
        return 1
    sessions = tokens.list_user_sessions(args.user_id)
    if not sessions:
        print("  No live sessions.")
        return 0
    print(f"  {'ID':>6}  {'CREATED (UTC)':<19}  {'EXPIRES (UTC)':<19}  {'IP':<15}  USER AGENT")
    for s in sessions:
        print(
            f"  {s.id:>6}  {s.created_at:%Y-%m-%d %H:%M:%S}  {s.expires_at:%Y-%m-%d %H:%M:%S}  "
            f"{s.ip_address or '-':<15}  {(s.user_agent or '-')[:60]}"
        )
    return 0


def cmd_revoke_sessions(args: argparse.Namespace) -> int:
    _, tokens, _ = _stores()
    count = tokens.revoke_all_user_tokens(args.user_id)
    print(f"  Revoked {count} session(s) for user {args.user_id}.")
    return 0


def _user_id(value: str) -> int:
    user_id = int(value)
    if not 1 <= user_id <= MAX_ID:
        raise argparse.ArgumentTypeError(f"user id must be between 1 and {MAX_ID}")
    return user_id


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="tenantgate",
        description="TenantGate management commands.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("cleanup-tokens", help="Delete expired sessions once and print the count.")
    p.set_defaults(func=cmd_cleanup_tokens)

    p = sub.add_parser("create-superadmin", help="Create an active user holding the SUPER_ADMIN role.")
    p.add_argument("--username", required=True)
    p.add_argument("--email", required=True)
    p.add_argument("--full-name", dest="full_name", default=None)
    p.add_argument(
        "--password",
        default=None,
        help="Prompted for when omitted. Avoid passing it on the command line on shared hosts.",
    )
    p.set_defaults(func=cmd_create_superadmin)

    p = sub.add_parser("sessions", help="List live sessions of a user (metadata only).")
    p.add_argument("user_id", type=_user_id)
    p.set_defaults(func=cmd_sessions)

    p = sub.add_parser("revoke-sessions", help="End every session of a user.")
    p.add_argument("user_id", type=_user_id)
    p.set_defaults(func=cmd_revoke_sessions)

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=get_settings().log_level.upper(),
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
