"""Create a user in the identity store.

Usage:
  python scripts/create_user.py --email alice@example.com --password '...' --role staff
  python scripts/create_user.py --email bob@example.com --password '...' --extra-role founder --shares 250

NOTE: This is intended for local/dev and operator bootstrap.
"""

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from vcare_access.auth.crud import assign_role, create_user, load_identity, public_identity
from vcare_access.config import load_config
from vcare_access.db import connect, init_db


def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("--email", required=True)
    ap.add_argument("--password", required=True)
    ap.add_argument("--name", default="")
    ap.add_argument(
        "--role",
        choices=["admin", "staff", "accountant", "customer", "shareholder", "branch"],
        default="customer",
    )
    ap.add_argument("--extra-role", action="append", default=[], help="additional role (repeatable)")
    ap.add_argument("--shares", default="0", help="initial digital share balance")
    args = ap.parse_args()

    cfg = load_config()
    init_db(cfg.DB_DSN)

    with connect(cfg.DB_DSN) as conn:
        u = create_user(
            conn,
            email=args.email,
            password=args.password,
            name=args.name,
            role=args.role,
            share_balance=args.shares,
        )
        for r in args.extra_role:
            assign_role(conn, u.id, r)
        u = load_identity(conn, u.id)

    print("Created user:")
    print(public_identity(u))


if __name__ == "__main__":
    main()
