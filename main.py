#!/usr/bin/env python3
"""
FacilityOps identity -- operator commands.

Usage:
  python main.py create-super-admin --email ops@example.com --first-name Ada --last-name Admin
  python main.py unlock --email tech@example.com

Both commands work directly on the account database named by DATABASE_URL
(see core/config.py). create-super-admin prompts for the password when
--password is not given.
"""

import argparse
import getpass
import sys
from typing import Optional

from auth import service
from auth.errors import AuthError
from auth.passwords import check_password_policy
from auth.store import AccountStore


def _read_password(given: Optional[str]) -> str:
    if given:
        return given
    first = getpass.getpass("Password: ")
    second = getpass.getpass("Repeat password: ")
    if first != second:
        raise SystemExit("  [!] Passwords do not match.")
    return first


def _create_super_admin(store: AccountStore, args: argparse.Namespace) -> int:
    password = _read_password(args.password)
    try:
        check_password_policy(password)
    except ValueError as e:
        print(f"  [!] {e}")
        return 1
    account = service.create_super_admin(
        store,
        email=args.email,
        password=password,
        first_name=args.first_name,
        last_name=args.last_name,
    )
    print(f"  Super admin created: {account.email} (id={account.id})")
    return 0


def _unlock(store: AccountStore, args: argparse.Namespace) -> int:
    account = store.get_by_email(args.email)
    if account is None:
        print(f"  [!] No account with email '{args.email}'.")
        return 1
    service.unlock_account(store, account)
    print(f"  Unlocked {account.email}.")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="facilityops-identity",
        description="Operator commands for FacilityOps accounts.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create-super-admin", help="Bootstrap the first super admin account")
    create.add_argument("--email", required=True)
    create.add_argument("--first-name", required=True)
    create.add_argument("--last-name", required=True)
    create.add_argument("--password", help="Prompted for when omitted")

    unlock = sub.add_parser("unlock", help="Clear the failed-login lockout of an account")
    unlock.add_argument("--email", required=True)

    args = parser.parse_args(argv)

    store = AccountStore()
    try:
        if args.command == "create-super-admin":
            return _create_super_admin(store, args)
        return _unlock(store, args)
    except AuthError as e:
        print(f"  [!] {e.message}")
        return 1
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
