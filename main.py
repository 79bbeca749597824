#!/usr/bin/env python3
"""
Wayfarer -- administration commands.

Usage:
  python main.py create-admin "Jonas Admin" admin@example.com
  python main.py import-tours data/tours.json
  python main.py delete-tours --yes

create-admin prompts for the password (never pass it on the command line).
import-tours reads a JSON array of tours with camelCase keys, the same shape
POST /api/v1/tours accepts; records that fail validation are reported and
skipped.

Environment variables:
  DATABASE_URL   Database to operate on (default: sqlite:///wayfarer.db)
"""

import argparse
import getpass
import json
import sys
from pathlib import Path

from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError

from api.models import TourCreate
from auth.models import Role, User
from auth.service import validate_email, validate_new_password
from auth.store import UserStore
from auth.tokens import hash_password
from core.config import get_settings
from core.errors import ValidationFailure
from tours.store import TourStore


def _load_tours(path: str) -> list[dict]:
    """Read a JSON array of tour documents.

    Resolves symlinks and verifies the path is a regular file before reading.
    """
    file_path = Path(path).resolve()
    if not file_path.is_file():
        raise ValueError(f"'{path}' is not a readable file.")
    data = json.loads(file_path.read_text(encoding="utf-8"))
    if not isinstance(data, list):
        raise ValueError(f"'{path}' must hold a JSON array of tours.")
    return data


def create_admin(args: argparse.Namespace) -> int:
    settings = get_settings()
    password = getpass.getpass("Password: ")
    confirm = getpass.getpass("Confirm password: ")
    try:
        email = validate_email(args.email)
        validate_new_password(password, confirm)
    except ValidationFailure as exc:
        print(f"  [!] {exc.message}", file=sys.stderr)
        return 1

    store = UserStore(settings.database_url)
    try:
        user_id = store.create_user(
            User(
                name=args.name.strip(),
                email=email,
                role=Role.ADMIN.value,
                password=hash_password(password, rounds=settings.bcrypt_rounds),
            )
        )
    except IntegrityError:
        print(f"  [!] A user with email '{args.email}' already exists.", file=sys.stderr)
        return 1
    finally:
        store.close()
    print(f"Created admin '{args.name}' (id={user_id}).")
    return 0


def import_tours(args: argparse.Namespace) -> int:
    try:
        docs = _load_tours(args.file)
    except (OSError, ValueError) as exc:
        print(f"  [!] {exc}", file=sys.stderr)
        return 1

    store = TourStore(get_settings().database_url)
    imported = 0
    try:
        for index, doc in enumerate(docs, start=1):
            label = doc.get("name", f"#{index}") if isinstance(doc, dict) else f"#{index}"
            try:
                store.create_tour(TourCreate.model_validate(doc).to_tour())
            except ValidationError as exc:
                print(f"  [!] Skipping {label}: {exc.error_count()} invalid field(s).")
                continue
            except ValidationFailure as exc:
                print(f"  [!] Skipping {label}: {exc.message}")
                continue
            except IntegrityError:
                print(f"  [!] Skipping {label}: a tour with that name already exists.")
                continue
            imported += 1
    finally:
        store.close()
    print(f"Imported {imported} of {len(docs)} tour(s).")
    return 0 if imported == len(docs) else 1


def delete_tours(args: argparse.Namespace) -> int:
    if not args.yes:
        print("  [!] Refusing to delete every tour without --yes.", file=sys.stderr)
        return 1
    store = TourStore(get_settings().database_url)
    try:
        deleted = store.delete_all_tours()
    finally:
        store.close()
    print(f"Deleted {deleted} tour(s).")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="wayfarer",
        description="Wayfarer administration commands.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    commands = parser.add_subparsers(dest="command", required=True)

    admin = commands.add_parser("create-admin", help="Create an admin account")
    admin.add_argument("name", help="Display name")
    admin.add_argument("email", help="Login email")
    admin.set_defaults(handler=create_admin)

    load = commands.add_parser("import-tours", help="Import tours from a JSON file")
    load.add_argument("file", help="Path to a JSON array of tours")
    load.set_defaults(handler=import_tours)

    wipe = commands.add_parser("delete-tours", help="Delete every tour")
    wipe.add_argument("--yes", action="store_true", help="Confirm the deletion")
    wipe.set_defaults(handler=delete_tours)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    return args.handler(args)


if __name__ == "__main__":
    sys.exit(main())
