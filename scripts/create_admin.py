"""
Create an admin account in the relational or document store.
"""

from __future__ import annotations

import argparse
import getpass
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from volunteer_backend.auth import hash_password
from volunteer_backend.dependencies import get_repository
from volunteer_backend.errors import ConflictError
from volunteer_backend.types import BackendType, Role

logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="Create a volunteer hub admin user")
    parser.add_argument(
        "--backend",
        choices=[backend.value for backend in BackendType],
        default=BackendType.SQL.value,
        help="Store to create the admin in",
    )
    parser.add_argument("--name", default="Admin User", help="Display name")
    parser.add_argument("--email", required=True, help="Login email")
    parser.add_argument(
        "--password",
        default=None,
        help="Password (prompted for when omitted)",
    )
    parser.add_argument("--phone", default=None, help="Contact phone")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
        datefmt="%m/%d/%Y %I:%M:%S %p",
    )

    password = args.password or getpass.getpass("Admin password: ")
    if len(password) < 8:
        logger.error("Password must be at least 8 characters")
        return 1

    repo = get_repository(BackendType(args.backend))
    try:
        admin = repo.create_volunteer(
            args.name,
            args.email,
            hash_password(password),
            phone=args.phone,
            role=Role.ADMIN.value,
        )
    except ConflictError:
        logger.warning("An account with email %s already exists", args.email)
        return 1

    logger.info(
        "Created admin %s (%s) in %s",
        admin.volunteer_id,
        admin.email,
        BackendType(args.backend).display_name,
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
