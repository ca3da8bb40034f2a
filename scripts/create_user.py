"""Create a user in the configured DB.

Usage:
  python scripts/create_user.py --username alice --email alice@example.com --password '...' --role user

Users created here are marked verified. Intended for local/dev and for
promoting the first moderators.
"""

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from paper_nexus.auth.crud import create_user
from paper_nexus.config import load_config
from paper_nexus.db import connect, init_db
from paper_nexus.errors import AppError


def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("--username", required=True)
    ap.add_argument("--email", required=True)
    ap.add_argument("--password", required=True)
    ap.add_argument("--role", choices=["user", "moderator", "admin"], default="user")
    args = ap.parse_args()

    cfg = load_config()
    init_db(cfg.DB_DSN)

    try:
        with connect(cfg.DB_DSN) as conn:
            u = create_user(
                conn,
                username=args.username,
                email=args.email,
                password=args.password,
                role=args.role,
                verified=True,
            )
    except AppError as e:
        print(f"Could not create user: {e.message} ({e.code})", file=sys.stderr)
        raise SystemExit(1)

    print("Created user:")
    print(u)


if __name__ == "__main__":
    main()
