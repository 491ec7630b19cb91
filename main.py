#!/usr/bin/env python3
"""
Gatehouse -- operator CLI for the auth database.

Usage:
  python main.py create-user a@example.com --first-name Ada --last-name Lovelace
  python main.py create-tenant "Acme Ltd"
  python main.py add-member a@example.com <tenant-id>
  python main.py logout a@example.com
  python main.py purge-otp

Settings come from the environment / .env exactly as for the API server.
Passwords are read interactively, never from argv.
"""

import argparse
import getpass
import sys
from typing import Optional

from auth.facade import build_auth_facade
from auth.models import Tenant
from auth.store import UserStore
from core.config import get_settings


def _read_password() -> Optional[str]:
    first = getpass.getpass("Password: ")
    if first != getpass.getpass("Repeat password: "):
        print("  [!] Passwords do not match.")
        return None
    if len(first) < 8:
        print("  [!] Password must be at least 8 characters.")
        return None
    return first


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="gatehouse",
        description="Operator commands for the Gatehouse auth database.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p_user = sub.add_parser("create-user", help="Create a password account")
    p_user.add_argument("email")
    p_user.add_argument("--first-name", default="")
    p_user.add_argument("--last-name", default="")

    p_tenant = sub.add_parser("create-tenant", help="Create a tenant and print its id")
    p_tenant.add_argument("name")

    p_member = sub.add_parser("add-member", help="Add a user to a tenant")
    p_member.add_argument("email")
    p_member.add_argument("tenant_id")
    p_member.add_argument("--role", default="member")

    p_logout = sub.add_parser("logout", help="Clear a user's session slots")
    p_logout.add_argument("email")

    sub.add_parser("purge-otp", help="Delete expired one-time tokens")

    args = parser.parse_args(argv)

    settings = get_settings()
    store = UserStore(settings.database_url)
    auth = build_auth_facade(settings, store)
    try:
        if args.command == "create-user":
            password = _read_password()
            if password is None:
                return 1
            outcome = auth.register(args.email, password, args.first_name, args.last_name)
            if not outcome.ok:
                print(f"  [!] Could not create user: {outcome.error.value}")
                return 1
            print(outcome.value.id)

        elif args.command == "create-tenant":
            print(store.create_tenant(Tenant(name=args.name)))

        elif args.command == "add-member":
            user = store.get_by_email(args.email.strip().lower())
            if user is None:
                print(f"  [!] No user with email {args.email}")
                return 1
            store.add_membership(user.id, args.tenant_id, role=args.role)

        elif args.command == "logout":
            user = store.get_by_email(args.email.strip().lower())
            if user is None or not auth.logout(user.id).ok:
                print(f"  [!] No user with email {args.email}")
                return 1

        elif args.command == "purge-otp":
            print(f"  Removed {auth.purge_expired_tokens()} expired token(s).")
    finally:
        store.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
