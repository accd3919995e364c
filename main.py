#!/usr/bin/env python3
"""
authgate -- bearer token resolution and password login service.

Usage:
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 8080
  python main.py add-user alice --rank 1
  python main.py add-user admin --rank 4 --password-stdin < pw.txt
  python main.py add-user olduser --legacy

Environment variables (see core/config.py for the full list):
  SECRET_KEY     Required unless DEBUG=true. Keys the token reference HMAC.
  DATABASE_URL   SQLAlchemy URL of the auth database.

add-user is a bootstrap helper. Accounts are normally created by external
account-management flows; this core only reads them.
"""

import argparse
import getpass
import sys

from sqlalchemy.exc import IntegrityError

from auth.models import Principal
from auth.privileges import Rank, entitlement, privilege_names
from auth.store import AuthStore
from auth.tokens import hash_password
from core.config import get_settings


def _read_password(from_stdin: bool) -> str:
    if from_stdin:
        return sys.stdin.readline().rstrip("\n")
    first = getpass.getpass("Password: ")
    if first != getpass.getpass("Repeat password: "):
        print("  [!] Passwords do not match.")
        return ""
    return first


def add_user(args: argparse.Namespace) -> int:
    password = _read_password(args.password_stdin)
    if not password:
        print("  [!] A password is required.")
        return 1

    store = AuthStore(get_settings().database_url)
    try:
        user_id = store.create_principal(
            Principal(
                username=args.username,
                rank=args.rank,
                privileges=int(entitlement(args.rank)),
                password_hash=hash_password(password),
                password_version=1 if args.legacy else 2,
            )
        )
    except IntegrityError:
        print(f"  [!] A user named '{args.username}' already exists.")
        return 1
    finally:
        store.close()

    names = ", ".join(privilege_names(entitlement(args.rank))) or "none"
    print(f"  Created user {args.username} (id={user_id}, rank={args.rank})")
    print(f"  Entitled to: {names}")
    return 0


def serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("asgi:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        description="authgate -- bearer token resolution and password login service.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p_serve = sub.add_parser("serve", help="Run the API server under uvicorn.")
    p_serve.add_argument("--host", default="127.0.0.1")
    p_serve.add_argument("--port", type=int, default=8000)
    p_serve.add_argument("--reload", action="store_true", help="Restart on code changes (development).")
    p_serve.set_defaults(func=serve)

    p_user = sub.add_parser("add-user", help="Create a principal (bootstrap helper).")
    p_user.add_argument("username")
    p_user.add_argument(
        "--rank",
        type=int,
        default=int(Rank.USER),
        choices=[int(r) for r in Rank],
        help="Trust tier: 0 none, 1 user, 2 supporter, 3 developer, 4 admin.",
    )
    p_user.add_argument("--password-stdin", action="store_true", help="Read the password from stdin.")
    p_user.add_argument("--legacy", action="store_true", help="Mark the password as the legacy version 1 scheme.")
    p_user.set_defaults(func=add_user)

    args = parser.parse_args()
    sys.exit(args.func(args))


if __name__ == "__main__":
    main()
