from __future__ import annotations

import logging
from typing import Callable, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from paper_nexus.config import Config
from paper_nexus.errors import AuthError, ForbiddenError
from paper_nexus.forum.permissions import has_role

from .tokens import InvalidTokenError, SessionToken, verify

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def get_cfg(request: Request) -> Config:
    cfg = getattr(request.app.state, "cfg", None)
    if cfg is None:
        raise AuthError("SERVER_ERROR")
    return cfg


def extract_access_token(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials],
    cfg: Config,
) -> Optional[str]:
    """Bearer header first (scripts / API clients), then the access_token cookie."""
    if credentials is not None and credentials.credentials:
        return credentials.credentials
    return request.cookies.get(cfg.AUTH_ACCESS_COOKIE_NAME) or None


def require_auth(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> SessionToken:
    """Authenticate a request from its token alone (no DB round trip).

    Every failure (missing, tampered, expired, wrong type) is the same 401.
    """
    cfg = get_cfg(request)
    token = extract_access_token(request, credentials, cfg)
    try:
        ident = verify(token, secret=cfg.JWT_SECRET)
    except InvalidTokenError as e:
        logger.debug("auth rejected: %s", e)
        raise AuthError("INVALID_TOKEN") from e
    request.state.user_id = ident.user_id
    return ident


def get_optional_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[SessionToken]:
    """Like require_auth, but anonymous (or badly authenticated) requests get None."""
    cfg = get_cfg(request)
    token = extract_access_token(request, credentials, cfg)
    if not token:
        return None
    try:
        return verify(token, secret=cfg.JWT_SECRET)
    except InvalidTokenError:
        return None


def require_role(role: str) -> Callable[..., SessionToken]:
    def _dep(user: SessionToken = Depends(require_auth)) -> SessionToken:
        if not has_role(user, role):
            raise ForbiddenError(f"{role.capitalize()} access required", code=f"{role}_required")
        return user

    return _dep


require_admin = require_role("admin")
require_moderator = require_role("moderator")
