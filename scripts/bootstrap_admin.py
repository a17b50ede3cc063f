#!/usr/bin/env python3
from __future__ import annotations

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.append(str(ROOT))

from portal.core.config import DEV_BOOTSTRAP_ALLOW, IS_DEV  # noqa: E402
from portal.core.database import SessionLocal, engine  # noqa: E402
from portal.services.user_bootstrap import ensure_users_table, upsert_staff_user  # noqa: E402

STAFF_ROLES = ("ADMIN", "MANAGER", "MITARBEITER")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create or update a staff user for local development.")
    parser.add_argument("--email", required=True, help="Staff user email")
    parser.add_argument("--password", help="Password (kept unchanged for existing users when omitted)")
    parser.add_argument("--name", required=True, help="Display name")
    parser.add_argument("--role", default="ADMIN", choices=STAFF_ROLES, help="Staff role")
    parser.add_argument(
        "--force",
        action="store_true",
        help="Run without DEV_BOOTSTRAP_ALLOW=1",
    )
    return parser.parse_args()


def main() -> int:
    args = parse_args()

    if not DEV_BOOTSTRAP_ALLOW and not args.force:
        print("Bootstrap disabled. Set DEV_BOOTSTRAP_ALLOW=1 or pass --force.")
        return 1

    try:
        ensure_users_table(engine)
    except RuntimeError as exc:
        print(str(exc))
        return 1

    db = SessionLocal()
    try:
        user, created = upsert_staff_user(
            db,
            email=args.email,
            name=args.name,
            role=args.role,
            password=args.password,
        )
    except ValueError as exc:
        print(str(exc))
        return 1
    finally:
        db.close()

    action = "created" if created else "updated"
    print(f"User {action}: email={user.email} role={user.role}")
    if IS_DEV:
        password_info = args.password if args.password else "<unchanged>"
        print(f"DEV summary -> Email: {user.email} | Password: {password_info}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
