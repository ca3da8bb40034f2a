from __future__ import annotations

from fastapi import Response

from paper_nexus.auth.tokens import TokenPair
from paper_nexus.config import Config


def cookie_secure(cfg: Config) -> bool:
    """Return whether auth cookies should be marked Secure."""
    samesite = str(cfg.AUTH_COOKIE_SAMESITE or "lax").lower()
    # Browsers require Secure when SameSite=None
    if samesite == "none":
        return True
    return bool(cfg.AUTH_COOKIE_SECURE)


def _set(response: Response, cfg: Config, *, key: str, value: str, max_age: int) -> None:
    response.set_cookie(
        key=key,
        value=value,
        httponly=True,
        samesite=str(cfg.AUTH_COOKIE_SAMESITE or "lax").lower(),
        secure=cookie_secure(cfg),
        max_age=max_age,
        path=str(cfg.AUTH_COOKIE_PATH or "/"),
        domain=cfg.AUTH_COOKIE_DOMAIN,
    )


def set_access_cookie(response: Response, cfg: Config, *, token: str, max_age: int) -> None:
    _set(response, cfg, key=cfg.AUTH_ACCESS_COOKIE_NAME, value=token, max_age=max_age)


def set_auth_cookies(response: Response, cfg: Config, pair: TokenPair) -> None:
    """Set both session cookies (httpOnly) for browser-based auth."""
    set_access_cookie(response, cfg, token=pair.access_token, max_age=pair.access_max_age)
    _set(
        response,
        cfg,
        key=cfg.AUTH_REFRESH_COOKIE_NAME,
        value=pair.refresh_token,
        max_age=pair.refresh_max_age,
    )


def clear_auth_cookies(response: Response, cfg: Config) -> None:
    path = str(cfg.AUTH_COOKIE_PATH or "/")
    response.delete_cookie(key=cfg.AUTH_ACCESS_COOKIE_NAME, path=path, domain=cfg.AUTH_COOKIE_DOMAIN)
    response.delete_cookie(key=cfg.AUTH_REFRESH_COOKIE_NAME, path=path, domain=cfg.AUTH_COOKIE_DOMAIN)
