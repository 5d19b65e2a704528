"""Command-line interface for the messagely service."""

from __future__ import annotations
import argparse
import logging
import sys
from getpass import getpass
from pathlib import Path
from typing import Sequence

from messagely.config import Settings, load_settings
from messagely.database import Database
from messagely.errors import MessagelyError
from messagely.users import UserDirectory

logger = logging.getLogger("messagely.main")

MIN_PASSWORD_LENGTH = 8


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        default=None,
        help="Path to a YAML configuration file (defaults to MESSAGELY_CONFIG)",
    )

    parser = argparse.ArgumentParser(description="Messagely service utilities")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("init-db", parents=[common], help="Initialise the messagely database")
    subparsers.add_parser("list-users", parents=[common], help="Print every registered user")

    serve_parser = subparsers.add_parser("serve", parents=[common], help="Start the HTTP API")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Bind address for the API")
    serve_parser.add_argument("--port", type=int, default=8000, help="Port for the API (default: 8000)")

    create_parser = subparsers.add_parser("create-user", parents=[common], help="Register a new user interactively")
    create_parser.add_argument("username", help="Unique username used to log in")
    create_parser.add_argument("--first-name", required=True)
    create_parser.add_argument("--last-name", required=True)
    create_parser.add_argument("--phone", required=True)

    args_list = list(argv) if argv is not None else sys.argv[1:]
    # Anything that does not start with a subcommand is treated as options for `serve`.
    if not args_list or (args_list[0] not in subparsers.choices and args_list[0] not in ("-h", "--help")):
        args_list = ["serve", *args_list]
    return parser.parse_args(args_list)


def _initialise_database(settings: Settings) -> Database:
    database = Database(settings.database_path)
    database.initialize()
    logger.info("Database initialised at %s", settings.database_path)
    return database


def _serve(*, settings: Settings, database: Database, host: str, port: int) -> None:
    from messagely.api import create_app
    import uvicorn

    logger.info("Starting messagely API on http://%s:%s", host, port)
    app = create_app(settings=settings, database=database, initialize_database=False)
    uvicorn.run(app, host=host, port=port, log_level="info")


def _list_users(users: UserDirectory) -> None:
    summaries = users.all()
    if not summaries:
        print("No users are currently registered.")
        return

    print(f"{len(summaries)} user(s) found:")
    print(f"{'Username':<20}  {'Name':<32}  Phone")
    print("-" * 72)
    for user in summaries:
        name = f"{user.first_name} {user.last_name}"
        print(f"{user.username:<20}  {name:<32}  {user.phone}")


def _read_new_password(attempts: int = 3) -> str | None:
    for remaining in range(attempts - 1, -1, -1):
        password = getpass("New password: ")
        if len(password) < MIN_PASSWORD_LENGTH:
            problem = f"Password must be at least {MIN_PASSWORD_LENGTH} characters."
        elif getpass("Repeat password: ") != password:
            problem = "Passwords do not match."
        else:
            return password
        print(f"{problem} {remaining} attempt(s) left.", file=sys.stderr)
    return None


def _create_user(users: UserDirectory, args: argparse.Namespace) -> int:
    password = _read_new_password()
    if password is None:
        print("Aborted creating user.", file=sys.stderr)
        return 1

    try:
        user = users.register(args.username, password, args.first_name, args.last_name, args.phone)
    except MessagelyError as exc:
        print(f"Failed to create user: {exc}", file=sys.stderr)
        return 1

    print(f"Created user {user.username}: {user.first_name} {user.last_name} <{user.phone}>")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for CLI usage."""

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")

    args = _parse_args(argv)
    try:
        settings = load_settings(Path(args.config) if args.config else None)
    except ValueError as exc:
        raise SystemExit(f"Invalid configuration: {exc}") from exc

    database = _initialise_database(settings)

    if args.command == "serve":
        _serve(settings=settings, database=database, host=args.host, port=args.port)
    elif args.command == "init-db":
        print("Database initialisation complete.")
    elif args.command == "list-users":
        _list_users(UserDirectory(database, work_factor=settings.bcrypt_work_factor))
    elif args.command == "create-user":
        return _create_user(UserDirectory(database, work_factor=settings.bcrypt_work_factor), args)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
