import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

import uvicorn

from paper_nexus.config import load_config


def main() -> None:
    cfg = load_config()
    host = os.environ.get("API_HOST", "0.0.0.0")
    port = int(os.environ.get("API_PORT", "8000"))
    # Trust X-Forwarded-For / X-Forwarded-Proto from the reverse proxy (client address and scheme only).
    uvicorn.run(
        "paper_nexus.api.server:app",
        host=host,
        port=port,
        reload=not cfg.is_production,
        proxy_headers=True,
        log_level=(cfg.LOG_LEVEL or "info").lower(),
    )


if __name__ == "__main__":
    main()
