#!/usr/bin/env python3
"""
shopgate -- account, session and asset-access service.

Usage:
  python main.py create-admin --email admin@example.com --first-name Ada --last-name Admin
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 8000 --reload

create-admin is the only way to bootstrap the first ADMIN: public
registration always creates a USER. The password is prompted for and never
accepted on the command line (it would land in shell history).

Environment variables are read through core.config (see .env). Outside
DEBUG=true every secret must be set.
"""

import argparse
import getpass
import sys

from pydantic import ValidationError

from api.models import UserCreate
from auth.models import Role, User
from auth.store import UserStore
from auth.tokens import hash_password
from core.config import get_settings
from core.errors import UserAlreadyExists


def _prompt_password() -> str:
    password = getpass.getpass("Password: ")
    if password != getpass.getpass("Repeat password: "):
        print("  [!] Passwords do not match.")
        sys.exit(1)
    return password


def create_admin(args: argparse.Namespace) -> int:
    try:
        body = UserCreate(
            email=args.email,
            first_name=args.first_name,
            last_name=args.last_name,
            password=_prompt_password(),
            role=Role.ADMIN,
        )
    except ValidationError as exc:
        for err in exc.errors():
            print(f"  [!] {'.'.join(str(p) for p in err['loc'])}: {err['msg']}")
        return 1

    store = UserStore(get_settings().database_url)
    try:
        user_id = store.create_user(
            User(
                email=body.email,
                first_name=body.first_name,
                last_name=body.last_name,
                hashed_password=hash_password(body.password),
                role=Role.ADMIN,
            )
        )
    except UserAlreadyExists:
        print(f"  [!] A user with email {body.email} already exists.")
        return 1
    finally:
        store.close()

    print(f"Created admin user {body.email} (id {user_id}).")
    return 0


def serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("api.main:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="shopgate",
        description="Account, session and asset-access service.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-admin --email admin@example.com --first-name Ada --last-name Admin
  python main.py serve --port 8000
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    admin = sub.add_parser("create-admin", help="Create an ADMIN account (prompts for the password)")
    admin.add_argument("--email", required=True)
    admin.add_argument("--first-name", required=True)
    admin.add_argument("--last-name", required=True)
    admin.set_defaults(handler=create_admin)

    server = sub.add_parser("serve", help="Run the API with uvicorn")
    server.add_argument("--host", default="127.0.0.1")
    server.add_argument("--port", type=int, default=8000)
    server.add_argument("--reload", action="store_true", help="Reload on code changes (development only)")
    server.set_defaults(handler=serve)

    args = parser.parse_args()
    if not getattr(args, "handler", None):
        parser.print_help()
        return
    sys.exit(args.handler(args))


if __name__ == "__main__":
    main()
