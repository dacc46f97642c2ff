#!/usr/bin/env python3
"""
Gatekeeper -- operator command line.

Signup can never create an Admin, so the first administrator is provisioned
here, directly against the configured database.

Usage:
  python main.py create-admin --username root --email root@example.com
  python main.py create-admin --username root --email root@example.com --first-name Ada --last-name Lovelace

The password is read interactively (twice) and never passed on the command line.

Environment variables:
  DATABASE_URL    Account database (defaults to auth/gatekeeper_accounts.db)
  SECRET_KEY      Token signing key; must be set unless DEBUG=true
"""

import argparse
import getpass
import logging
import sys

from auth.models import SignupInput
from auth.passwords import CredentialHasher, PasswordPolicy
from auth.service import AuthService
from auth.store import AccountStore
from auth.tokens import TokenService
from core.config import get_settings
from core.errors import ServiceError


def _read_password() -> str:
    """Prompt for the new password twice. Returns "" if the two entries differ."""
    first = getpass.getpass("Password: ")
    second = getpass.getpass("Repeat password: ")
    if first != second:
        print("  [!] Passwords do not match.")
        return ""
    return first


def create_admin(args: argparse.Namespace) -> int:
    settings = get_settings()
    password = _read_password()
    if not password:
        return 1

    store = AccountStore(settings.database_url)
    try:
        service = AuthService(
            store,
            CredentialHasher.from_settings(settings),
            TokenService(settings),
            PasswordPolicy.from_settings(settings),
        )
        profile = service.provision_admin(
            SignupInput(
                username=args.username,
                email=args.email,
                password=password,
                first_name=args.first_name,
                last_name=args.last_name,
            )
        )
    except ServiceError as exc:
        print(f"  [!] {exc.message}")
        return 1
    finally:
        store.close()

    print(f"Admin account created: {profile.username} <{profile.email}> (id {profile.id})")
    return 0


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(level=logging.WARNING, format="%(levelname)-5s %(name)s %(message)s")
    parser = argparse.ArgumentParser(
        description="Gatekeeper -- account administration",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command")

    admin = sub.add_parser("create-admin", help="Provision an account with the Admin role")
    admin.add_argument("--username", required=True)
    admin.add_argument("--email", required=True)
    admin.add_argument("--first-name", dest="first_name", default=None)
    admin.add_argument("--last-name", dest="last_name", default=None)
    admin.set_defaults(func=create_admin)

    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 1
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
