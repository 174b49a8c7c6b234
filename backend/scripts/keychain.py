#!/usr/bin/env python3
"""Manage the Card Ledger secrets kept in the OS keychain.

Settings read ``PLAID_CLIENT_ID``, ``PLAID_SECRET`` and ``SQLCIPHER_KEY``
from the keychain before the environment, so anything stored here wins
over ``.env``.

Usage:
    python -m scripts.keychain status
    python -m scripts.keychain set PLAID_SECRET            # prompts for the value
    python -m scripts.keychain delete PLAID_SECRET
    python -m scripts.keychain import-env --env-file .env
    python -m scripts.keychain generate-db-key             # new database only
"""

import argparse
import getpass
import secrets
import sys
from pathlib import Path

from dotenv import dotenv_values

from services.credential_manager import (
    CREDENTIAL_KEYS,
    delete_credential,
    get_credential,
    set_credential,
)


def show_status() -> int:
    """Print which credentials are present in the keychain."""
    for key in sorted(CREDENTIAL_KEYS):
        state = "stored" if get_credential(key) else "missing"
        print(f"  {key:<16} {state}")
    return 0


def store(key: str, value: str | None = None) -> int:
    if value is None:
        value = getpass.getpass(f"Value for {key}: ").strip()
    if not set_credential(key, value):
        print(f"Error: could not store {key}")
        return 1
    print(f"Stored {key} in keychain")
    return 0


def remove(key: str) -> int:
    if not delete_credential(key):
        print(f"Error: {key} was not removed (missing or keyring unavailable)")
        return 1
    print(f"Removed {key} from keychain")
    return 0


def import_env(env_path: Path) -> int:
    """Copy non-empty credential values from a ``.env`` file into the keychain.

    Keys whose keychain value already matches are left alone. Returns 1
    if any store failed.
    """
    if not env_path.exists():
        print(f"No .env file found at {env_path}")
        return 1

    values = dotenv_values(env_path)
    failed = []
    for key in sorted(CREDENTIAL_KEYS):
        value = values.get(key)
        if not value:
            continue
        if get_credential(key) == value:
            print(f"  = {key} (already stored)")
        elif set_credential(key, value):
            print(f"  + {key}")
        else:
            failed.append(key)
            print(f"  ! {key} (failed)")

    if failed:
        return 1
    print("Remove the imported values from .env once the app starts cleanly.")
    return 0


def generate_db_key(database_url: str, force: bool = False) -> int:
    """Create a random ``SQLCIPHER_KEY`` for a database that does not exist yet.

    An existing plain database would not open with a key attached, so
    the command refuses unless ``force`` is set. An existing key is
    never replaced.
    """
    from database import _db_file_path

    if get_credential("SQLCIPHER_KEY"):
        print("Error: SQLCIPHER_KEY is already stored; delete it first to rotate")
        return 1

    db_path = _db_file_path(database_url)
    if db_path is not None and db_path.exists() and not force:
        print(
            f"Error: {db_path} already exists and is not encrypted with a new key. "
            "Pass --force only if you will recreate the database."
        )
        return 1

    return store("SQLCIPHER_KEY", secrets.token_hex(32))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("status", help="list stored credentials")

    set_cmd = commands.add_parser("set", help="store one credential")
    set_cmd.add_argument("key", choices=sorted(CREDENTIAL_KEYS))

    delete_cmd = commands.add_parser("delete", help="remove one credential")
    delete_cmd.add_argument("key", choices=sorted(CREDENTIAL_KEYS))

    import_cmd = commands.add_parser("import-env", help="copy credentials from a .env file")
    import_cmd.add_argument("--env-file", type=Path, default=Path(".env"))

    key_cmd = commands.add_parser("generate-db-key", help="create a SQLCipher key")
    key_cmd.add_argument("--force", action="store_true")

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    if args.command == "status":
        return show_status()
    if args.command == "set":
        return store(args.key)
    if args.command == "delete":
        return remove(args.key)
    if args.command == "import-env":
        return import_env(args.env_file)

    from config import settings

    return generate_db_key(settings.DATABASE_URL, force=args.force)


if __name__ == "__main__":
    sys.exit(main())
