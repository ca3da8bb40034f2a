import sys
from pathlib import Path

# Ensure project root is on sys.path when running as a script
ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from paper_nexus import __version__
from paper_nexus.auth.crud import bootstrap_admin_if_needed
from paper_nexus.config import load_config
from paper_nexus.db import connect, init_db, upsert_app_config
from paper_nexus.logging_config import setup_logging


def main() -> None:
    cfg = load_config()
    setup_logging(level=cfg.LOG_LEVEL, structured=cfg.LOG_STRUCTURED)
    init_db(cfg.DB_DSN)
    with connect(cfg.DB_DSN) as conn:
        upsert_app_config(conn, "app_version", __version__)

    boot = bootstrap_admin_if_needed(cfg)
    if boot:
        print(f"Bootstrapped admin user: {boot['username']}")

    print(f"DB initialized: {cfg.DB_DSN}")


if __name__ == "__main__":
    main()
