"""Session tokens: issue, verify, refresh.

Tokens are self-contained HS256 JWTs. Nothing is stored server-side, so logout
only clears cookies and a token stays valid until its `exp` (see DESIGN.md for
the revocation trade-off).

Claims:
  sub       user id (string)
  username
  role      user | moderator | admin
  typ       access | refresh (a refresh token is never accepted as access and vice versa)
  iat, exp  unix seconds
  jti       random id, handy for log correlation
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Mapping, Optional

import jwt

from paper_nexus.config import Config

_JWT_ALG = "HS256"

ACCESS = "access"
REFRESH = "refresh"

VALID_ROLES = ("user", "moderator", "admin")


class InvalidTokenError(Exception):
    """Token is missing, malformed, tampered with, or of the wrong type."""


class ExpiredTokenError(InvalidTokenError):
    """Token signature is fine but `exp` is in the past."""


@dataclass(frozen=True)
class SessionToken:
    user_id: int
    username: str
    role: str
    token_type: str
    issued_at: datetime
    expires_at: datetime
    jti: str

    def to_payload(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "username": self.username,
            "role": self.role,
            "issued_at": int(self.issued_at.timestamp()),
            "expires_at": int(self.expires_at.timestamp()),
        }


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    access_max_age: int
    refresh_max_age: int


def _encode(
    *,
    secret: str,
    user_id: int,
    username: str,
    role: str,
    token_type: str,
    lifetime: timedelta,
    now: datetime | None = None,
) -> str:
    if not secret:
        raise ValueError("jwt_secret_blank")
    if role not in VALID_ROLES:
        raise ValueError("invalid_role")

    now = now or datetime.now(timezone.utc)
    exp = now + lifetime

    payload: Dict[str, Any] = {
        "sub": str(user_id),
        "username": username,
        "role": role,
        "typ": token_type,
        "iat": int(now.timestamp()),
        "exp": int(exp.timestamp()),
        "jti": uuid.uuid4().hex,
    }
    return jwt.encode(payload, secret, algorithm=_JWT_ALG)


def access_lifetime(cfg: Config, remember_me: bool = False) -> timedelta:
    if remember_me:
        return timedelta(days=max(1, int(cfg.REMEMBER_ME_EXPIRE_DAYS)))
    return timedelta(minutes=max(1, int(cfg.ACCESS_TOKEN_EXPIRE_MINUTES)))


def refresh_lifetime(cfg: Config) -> timedelta:
    return timedelta(days=max(1, int(cfg.REFRESH_TOKEN_EXPIRE_DAYS)))


def _identity(user: Mapping[str, Any]) -> tuple[int, str, str]:
    return int(user["user_id"]), str(user["username"]), str(user["role"])


def issue(cfg: Config, user: Mapping[str, Any], *, remember_me: bool = False) -> TokenPair:
    """Mint an access + refresh token pair for a user row / public user dict."""
    user_id, username, role = _identity(user)
    a_life = access_lifetime(cfg, remember_me)
    r_life = refresh_lifetime(cfg)
    return TokenPair(
        access_token=_encode(
            secret=cfg.JWT_SECRET,
            user_id=user_id,
            username=username,
            role=role,
            token_type=ACCESS,
            lifetime=a_life,
        ),
        refresh_token=_encode(
            secret=cfg.JWT_SECRET,
            user_id=user_id,
            username=username,
            role=role,
            token_type=REFRESH,
            lifetime=r_life,
        ),
        access_max_age=int(a_life.total_seconds()),
        refresh_max_age=int(r_life.total_seconds()),
    )


def issue_access(cfg: Config, user: Mapping[str, Any], *, remember_me: bool = False) -> tuple[str, int]:
    user_id, username, role = _identity(user)
    life = access_lifetime(cfg, remember_me)
    token = _encode(
        secret=cfg.JWT_SECRET,
        user_id=user_id,
        username=username,
        role=role,
        token_type=ACCESS,
        lifetime=life,
    )
    return token, int(life.total_seconds())


def verify(token: str | None, *, secret: str, expected_type: str = ACCESS) -> SessionToken:
    """Decode and validate a token.

    Raises ExpiredTokenError when past `exp`, InvalidTokenError for everything
    else. Callers must treat both the same way towards the client.
    """
    if not token:
        raise InvalidTokenError("token_blank")
    if not secret:
        raise InvalidTokenError("jwt_secret_blank")

    try:
        claims = jwt.decode(
            token,
            secret,
            algorithms=[_JWT_ALG],
            options={"require": ["sub", "exp", "iat"]},
        )
    except jwt.ExpiredSignatureError as e:
        raise ExpiredTokenError("token_expired") from e
    except jwt.PyJWTError as e:
        raise InvalidTokenError("token_invalid") from e

    if claims.get("typ") != expected_type:
        raise InvalidTokenError("token_wrong_type")

    role = claims.get("role")
    if role not in VALID_ROLES:
        raise InvalidTokenError("token_invalid_role")

    username = claims.get("username")
    if not username:
        raise InvalidTokenError("token_missing_username")

    try:
        user_id = int(claims["sub"])
    except (TypeError, ValueError) as e:
        raise InvalidTokenError("token_sub_not_int") from e

    return SessionToken(
        user_id=user_id,
        username=str(username),
        role=str(role),
        token_type=expected_type,
        issued_at=datetime.fromtimestamp(int(claims["iat"]), tz=timezone.utc),
        expires_at=datetime.fromtimestamp(int(claims["exp"]), tz=timezone.utc),
        jti=str(claims.get("jti") or ""),
    )


def refresh(
    cfg: Config,
    refresh_token: str | None,
    *,
    load_user: Callable[[int], Optional[Mapping[str, Any]]] | None = None,
) -> tuple[SessionToken, str, int]:
    """Verify a refresh token and mint a new access token for the same identity.

    With `load_user`, the identity is re-read (so a deleted account cannot refresh
    and a role change takes effect); a None result is treated as an invalid token.

    Returns (refresh_identity, new_access_token, access_max_age).
    """
    ident = verify(refresh_token, secret=cfg.JWT_SECRET, expected_type=REFRESH)

    user: Mapping[str, Any] = {"user_id": ident.user_id, "username": ident.username, "role": ident.role}
    if load_user is not None:
        row = load_user(ident.user_id)
        if row is None:
            raise InvalidTokenError("user_not_found")
        user = row

    token, max_age = issue_access(cfg, user)
    return ident, token, max_age
