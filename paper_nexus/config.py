import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

# Load a local .env file if present; real environment variables win.
load_dotenv()


def _env_bool(name: str, default: Optional[bool] = None) -> Optional[bool]:
    """Parse a boolean environment variable.

    Returns:
      - True/False if the env var is set to a recognizable value
      - default if unset or unrecognized

    Accepted truthy: 1, true, yes, y, on
    Accepted falsy:  0, false, no, n, off
    """

    raw = os.environ.get(name)
    if raw is None:
        return default
    v = raw.strip().lower()
    if v in ("1", "true", "yes", "y", "on"):
        return True
    if v in ("0", "false", "no", "n", "off"):
        return False
    return default


_ENV = os.environ.get("ENV", "development").strip().lower()

# Fixed development secret. Startup refuses it in production.
DEV_JWT_SECRET = "dev_change_me_dev_change_me_dev_change_me"


@dataclass(frozen=True)
class Config:
    """Runtime configuration.

    IMPORTANT: Provide secrets via environment variables or a .env file.
    Do not hardcode secrets in source code.
    """

    # -----------------
    # Core
    # -----------------
    ENV: str = _ENV

    # Preferred: set PAPERNEXUS_DATABASE_URL (or DATABASE_URL) to use Postgres.
    # Fallback: PAPERNEXUS_DB_PATH for SQLite.
    DB_DSN: str = (
        os.environ.get("PAPERNEXUS_DATABASE_URL")
        or os.environ.get("DATABASE_URL")
        or os.environ.get("PAPERNEXUS_DB_PATH", "./paper_nexus.sqlite")
    )

    LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "INFO")
    LOG_STRUCTURED: bool = (
        _env_bool("LOG_STRUCTURED", None)
        if _env_bool("LOG_STRUCTURED", None) is not None
        else _ENV == "production"
    )
    LOG_FILE: str | None = (os.environ.get("LOG_FILE") or "").strip() or None

    # -----------------
    # Auth (JWT)
    # -----------------
    # NOTE: In dev, this defaults to a fixed string so you can get started.
    # In production, you MUST set JWT_SECRET to a strong random value.
    JWT_SECRET: str = os.environ.get("JWT_SECRET", DEV_JWT_SECRET)
    ACCESS_TOKEN_EXPIRE_MINUTES: int = int(os.environ.get("ACCESS_TOKEN_EXPIRE_MINUTES", "1440"))  # 24h
    REMEMBER_ME_EXPIRE_DAYS: int = int(os.environ.get("REMEMBER_ME_EXPIRE_DAYS", "30"))
    REFRESH_TOKEN_EXPIRE_DAYS: int = int(os.environ.get("REFRESH_TOKEN_EXPIRE_DAYS", "90"))

    # Cookie-based browser sessions: access_token + refresh_token, both httpOnly.
    AUTH_ACCESS_COOKIE_NAME: str = os.environ.get("AUTH_ACCESS_COOKIE_NAME", "access_token")
    AUTH_REFRESH_COOKIE_NAME: str = os.environ.get("AUTH_REFRESH_COOKIE_NAME", "refresh_token")
    AUTH_COOKIE_DOMAIN: str | None = (os.environ.get("AUTH_COOKIE_DOMAIN") or "").strip() or None
    AUTH_COOKIE_PATH: str = os.environ.get("AUTH_COOKIE_PATH", "/")
    AUTH_COOKIE_SAMESITE: str = os.environ.get("AUTH_COOKIE_SAMESITE", "lax")  # lax|strict|none

    # Secure cookies in production unless AUTH_COOKIE_SECURE=0/1 says otherwise.
    AUTH_COOKIE_SECURE: bool = (
        _env_bool("AUTH_COOKIE_SECURE", None)
        if _env_bool("AUTH_COOKIE_SECURE", None) is not None
        else _ENV == "production"
    )

    # Account lifecycle
    REQUIRE_EMAIL_VERIFICATION: bool = _env_bool("REQUIRE_EMAIL_VERIFICATION", False) is True
    VERIFICATION_TOKEN_TTL_HOURS: int = int(os.environ.get("VERIFICATION_TOKEN_TTL_HOURS", "24"))
    RESET_TOKEN_TTL_MINUTES: int = int(os.environ.get("RESET_TOKEN_TTL_MINUTES", "60"))
    LOGIN_MAX_ATTEMPTS: int = int(os.environ.get("LOGIN_MAX_ATTEMPTS", "5"))
    LOGIN_LOCKOUT_MINUTES: int = int(os.environ.get("LOGIN_LOCKOUT_MINUTES", "15"))

    # Bootstrap first admin user if users table is empty
    AUTH_BOOTSTRAP_ADMIN_USERNAME: str = os.environ.get("AUTH_BOOTSTRAP_ADMIN_USERNAME", "admin")
    AUTH_BOOTSTRAP_ADMIN_EMAIL: str = os.environ.get("AUTH_BOOTSTRAP_ADMIN_EMAIL", "admin@localhost.local")
    AUTH_BOOTSTRAP_ADMIN_PASSWORD: str = os.environ.get("AUTH_BOOTSTRAP_ADMIN_PASSWORD", "")

    # -----------------
    # Forum
    # -----------------
    FORUM_EDIT_WINDOW_HOURS: int = int(os.environ.get("FORUM_EDIT_WINDOW_HOURS", "24"))
    FORUM_LIST_LIMIT: int = int(os.environ.get("FORUM_LIST_LIMIT", "50"))

    # -----------------
    # Papers proxy (signed requests + encrypted responses)
    # -----------------
    API_SIGNATURE_KEY: str | None = os.environ.get("API_SIGNATURE_KEY")
    SIGNED_REQUEST_WINDOW_MS: int = int(os.environ.get("SIGNED_REQUEST_WINDOW_MS", "30000"))
    RESPONSE_KEY_SALT: str = os.environ.get("RESPONSE_KEY_SALT", "papernexus-salt")
    RESPONSE_MAX_AGE_SECONDS: int = int(os.environ.get("RESPONSE_MAX_AGE_SECONDS", "30"))
    PAPERS_API_URL: str | None = (os.environ.get("PAPERS_API_URL") or "").strip() or None
    PAPERS_API_TIMEOUT_SECONDS: float = float(os.environ.get("PAPERS_API_TIMEOUT_SECONDS", "20"))

    # -----------------
    # Email (optional; without SMTP credentials mail is logged instead)
    # -----------------
    SMTP_HOST: str | None = (os.environ.get("SMTP_HOST") or "").strip() or None
    SMTP_PORT: int = int(os.environ.get("SMTP_PORT", "465"))
    SMTP_USER: str | None = (os.environ.get("SMTP_USER") or "").strip() or None
    SMTP_PASSWORD: str | None = os.environ.get("SMTP_PASSWORD") or None
    SMTP_FROM: str | None = (os.environ.get("SMTP_FROM") or "").strip() or None
    SMTP_SECURITY: str = os.environ.get("SMTP_SECURITY", "ssl")  # ssl|starttls|plain
    PUBLIC_APP_URL: str = os.environ.get("PUBLIC_APP_URL", "http://localhost:3000")

    # -----------------
    # Metrics
    # -----------------
    # Shared counter backend for the concurrent token-verification gauge.
    REDIS_URL: str | None = (os.environ.get("REDIS_URL") or "").strip() or None

    # -----------------
    # CORS (development)
    # -----------------
    CORS_ALLOW_ORIGINS: str = os.environ.get(
        "CORS_ALLOW_ORIGINS",
        "http://localhost:3000,http://127.0.0.1:3000",
    )

    @property
    def is_production(self) -> bool:
        return (self.ENV or "").lower() == "production"


def load_config() -> Config:
    return Config()
