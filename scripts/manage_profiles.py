#!/usr/bin/env python
"""Operator actions on profiles that are not exposed over HTTP.

    python scripts/manage_profiles.py promote <profile-uuid> [--role employee]
    python scripts/manage_profiles.py purge <profile-uuid> --yes

Both run as system actions: their audit records carry a null actor.
"""
from __future__ import annotations

import argparse
import json
import sys
import uuid
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from app.db import SessionLocal
from app.errors import ApiError
from app.logging_utils import setup_json_logging
from app.models import Role
from app.services.profiles import purge_profile, set_role


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    subparsers = parser.add_subparsers(dest="command", required=True)

    promote_parser = subparsers.add_parser("promote", help="Change a profile's role (admin by default).")
    promote_parser.add_argument("profile_id", type=uuid.UUID)
    promote_parser.add_argument("--role", choices=[item.value for item in Role], default=Role.ADMIN.value)

    purge_parser = subparsers.add_parser(
        "purge",
        help="Delete a profile with its time entries and schedules.",
    )
    purge_parser.add_argument("profile_id", type=uuid.UUID)
    purge_parser.add_argument("--yes", action="store_true", help="Confirm the irreversible delete.")
    return parser


def main(argv: list[str] | None = None) -> int:
    setup_json_logging()
    args = _build_parser().parse_args(argv)

    with SessionLocal() as db:
        try:
            if args.command == "promote":
                profile = set_role(db, args.profile_id, Role(args.role))
                result = {"ok": True, "profile_id": str(profile.id), "role": profile.role.value}
            else:
                if not args.yes:
                    print("Refusing to purge without --yes.", file=sys.stderr)
                    return 2
                purge_profile(db, args.profile_id)
                result = {"ok": True, "purged": str(args.profile_id)}
        except ApiError as exc:
            print(json.dumps({"ok": False, "code": exc.code, "message": exc.message}), file=sys.stderr)
            return 1

    print(json.dumps(result))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
