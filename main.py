#!/usr/bin/env python3
"""
AuthStarter -- operator command line.

Usage:
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 8080 --reload
  python main.py create-user --email admin@example.com --first-name Ada --last-name Admin --role ADMIN

create-user seeds staff accounts that cannot be created over HTTP (every
self-registered account is a USER). The account is created already verified,
so no OTP email is sent. The password is prompted for unless --password is
given.

Environment variables:
  DATABASE_URL        SQLAlchemy URL of the user database.
  JWT_ACCESS_SECRET   Required unless DEBUG=true (see core/config.py).
  JWT_REFRESH_SECRET  Required unless DEBUG=true.
"""

import argparse
import getpass
import sys

from auth.hashing import BcryptHasher
from auth.models import Role, User
from auth.store import UserStore
from core.config import get_settings
from core.errors import ConflictError

_MIN_PASSWORD_LENGTH = 8


def _serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("asgi:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def _read_password(args: argparse.Namespace) -> str | None:
    if args.password:
        return args.password
    password = getpass.getpass("Password: ")
    if password != getpass.getpass("Confirm password: "):
        print("  [!] Passwords do not match.")
        return None
    return password


def _create_user(args: argparse.Namespace) -> int:
    role = Role.parse(args.role.upper())
    if role is None:
        print(f"  [!] Unknown role '{args.role}'. Choose from: {', '.join(r.value for r in Role)}")
        return 2

    password = _read_password(args)
    if password is None:
        return 1
    if len(password) < _MIN_PASSWORD_LENGTH:
        print(f"  [!] Password must be at least {_MIN_PASSWORD_LENGTH} characters.")
        return 1

    settings = get_settings()
    store = UserStore(db_url=settings.database_url)
    try:
        user = store.create(
            User(
                email=args.email,
                first_name=args.first_name,
                last_name=args.last_name,
                role=role,
                password=BcryptHasher(rounds=settings.bcrypt_rounds).hash(password),
                is_verified=True,
            )
        )
    except ConflictError:
        print(f"  [!] A user with email '{args.email}' already exists.")
        return 1
    finally:
        store.close()

    print(f"  Created {user.role.value} user {user.email} (id={user.id}).")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="authstarter", description="AuthStarter operator commands.")
    commands = parser.add_subparsers(dest="command", required=True)

    serve = commands.add_parser("serve", help="Run the HTTP API with uvicorn.")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument("--reload", action="store_true", help="Reload on code changes (development only).")
    serve.set_defaults(func=_serve)

    create = commands.add_parser("create-user", help="Create a verified account, e.g. the first admin.")
    create.add_argument("--email", required=True)
    create.add_argument("--first-name", required=True)
    create.add_argument("--last-name", required=True)
    create.add_argument("--role", default=Role.ADMIN.value, help="USER, ADMIN, SUPER_ADMIN or OWNER.")
    create.add_argument("--password", help="Prompted for when omitted.")
    create.set_defaults(func=_create_user)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
