from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials
from pydantic import BaseModel

from paper_nexus.auth import cookies, tokens
from paper_nexus.auth.crud import (
    authenticate,
    create_user,
    delete_user,
    get_user_by_id,
    issue_verification_token,
    list_users,
    public_user,
    request_password_reset,
    reset_password,
    set_role,
    verify_email,
)
from paper_nexus.auth.deps import bearer_scheme, extract_access_token, get_cfg, require_admin
from paper_nexus.auth.tokens import InvalidTokenError, SessionToken
from paper_nexus.config import Config
from paper_nexus.db import connect
from paper_nexus.errors import AUTH_ERRORS, AuthError, ValidationError
from paper_nexus.mail import send_password_reset_email, send_verification_email

logger = logging.getLogger(__name__)

router = APIRouter()

RESET_REQUESTED_MESSAGE = "If an account exists with this email, you will receive a password reset link"


class RegisterRequest(BaseModel):
    username: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None


class LoginRequest(BaseModel):
    """`identifier` may be a username or an email; `username` / `email` are accepted too."""

    identifier: Optional[str] = None
    username: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    remember_me: bool = False


class TokenRequest(BaseModel):
    token: Optional[str] = None


class PasswordResetRequest(BaseModel):
    email: Optional[str] = None


class PasswordResetConfirm(BaseModel):
    token: Optional[str] = None
    password: Optional[str] = None


class RoleUpdate(BaseModel):
    role: Optional[str] = None


# -----------------------------
# Session
# -----------------------------


@router.post("/auth/register", status_code=201)
def auth_register(payload: RegisterRequest, cfg: Config = Depends(get_cfg)) -> Dict[str, Any]:
    """Create an account and mail a verification link. No session is started."""
    with connect(cfg.DB_DSN) as conn:
        user = create_user(
            conn,
            username=payload.username or "",
            email=payload.email or "",
            password=payload.password or "",
        )
        token = issue_verification_token(conn, user["user_id"], ttl_hours=cfg.VERIFICATION_TOKEN_TTL_HOURS)

    send_verification_email(cfg, to_email=user["email"], username=user["username"], token=token)
    logger.info("user registered user_id=%s", user["user_id"])
    return {
        "message": "Registration successful. Please check your email to verify your account.",
        "user": user,
    }


@router.post("/auth/login")
def auth_login(payload: LoginRequest, response: Response, cfg: Config = Depends(get_cfg)) -> Dict[str, Any]:
    identifier = (payload.identifier or payload.username or payload.email or "").strip()
    if not identifier or not payload.password:
        raise ValidationError("Username and password are required", code="missing_credentials")

    user = authenticate(cfg, identifier, payload.password)
    pair = tokens.issue(cfg, user, remember_me=payload.remember_me)
    cookies.set_auth_cookies(response, cfg, pair)

    logger.info("login user_id=%s remember_me=%s", user["user_id"], payload.remember_me)
    return {"user": user, "access_token": pair.access_token, "token_type": "bearer"}


@router.post("/auth/logout")
def auth_logout(response: Response, cfg: Config = Depends(get_cfg)) -> Dict[str, Any]:
    # Tokens are stateless; clearing the cookies is the whole logout.
    cookies.clear_auth_cookies(response, cfg)
    return {"message": "Logged out successfully"}


@router.post("/auth/refresh")
def auth_refresh(request: Request, response: Response, cfg: Config = Depends(get_cfg)) -> Any:
    refresh_token = request.cookies.get(cfg.AUTH_REFRESH_COOKIE_NAME)
    current: Dict[str, Any] = {}

    def _load(user_id: int) -> Optional[Dict[str, Any]]:
        with connect(cfg.DB_DSN) as conn:
            row = get_user_by_id(conn, user_id)
        if row is None or int(row["disabled"] or 0) == 1:
            return None
        current.update(public_user(row))
        return current

    try:
        _, access_token, max_age = tokens.refresh(cfg, refresh_token, load_user=_load)
    except InvalidTokenError as e:
        logger.debug("refresh rejected: %s", e)
        # An injected Response is dropped on raise, so the cleared cookies ride on this one.
        err = AuthError("INVALID_TOKEN")
        denied = JSONResponse(status_code=err.status_code, content=err.to_dict())
        cookies.clear_auth_cookies(denied, cfg)
        return denied

    cookies.set_access_cookie(response, cfg, token=access_token, max_age=max_age)
    return {"user": current, "access_token": access_token, "token_type": "bearer"}


@router.get("/auth/me")
def auth_me(
    request: Request,
    cfg: Config = Depends(get_cfg),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Any:
    """Current identity. Anonymous is a normal answer (`user: null`), a bad token is 401."""
    token = extract_access_token(request, credentials, cfg)
    if not token:
        return {"user": None}

    unauthorized = JSONResponse(
        status_code=401,
        content={"user": None, "error": AUTH_ERRORS["INVALID_TOKEN"], "code": "invalid_token"},
    )
    try:
        ident = tokens.verify(token, secret=cfg.JWT_SECRET)
    except InvalidTokenError:
        return unauthorized

    with connect(cfg.DB_DSN) as conn:
        row = get_user_by_id(conn, ident.user_id)
    if row is None:
        return unauthorized
    return {"user": public_user(row)}


@router.post("/auth/verify-token")
def auth_verify_token(
    request: Request,
    payload: Optional[TokenRequest] = None,
    cfg: Config = Depends(get_cfg),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Dict[str, Any]:
    """Verify a raw access token (body) or the caller's own (cookie / bearer)."""
    token = (payload.token if payload else None) or extract_access_token(request, credentials, cfg)
    gauge = request.app.state.verification_gauge
    with gauge.track():
        try:
            ident = tokens.verify(token, secret=cfg.JWT_SECRET)
        except InvalidTokenError as e:
            raise AuthError("INVALID_TOKEN") from e
    return {"valid": True, "payload": ident.to_payload()}


# -----------------------------
# Email verification / password reset
# -----------------------------


def _verify_email(cfg: Config, token: Optional[str]) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        user = verify_email(conn, token or "")
    logger.info("email verified user_id=%s", user["user_id"])
    return {"message": "Email verified successfully", "user": user}


@router.post("/auth/verify")
def auth_verify_post(payload: TokenRequest, cfg: Config = Depends(get_cfg)) -> Dict[str, Any]:
    return _verify_email(cfg, payload.token)


@router.get("/auth/verify")
def auth_verify_get(token: Optional[str] = Query(default=None), cfg: Config = Depends(get_cfg)) -> Dict[str, Any]:
    return _verify_email(cfg, token)


@router.post("/auth/password/reset")
def auth_password_reset_request(payload: PasswordResetRequest, cfg: Config = Depends(get_cfg)) -> Dict[str, Any]:
    email = (payload.email or "").strip()
    if not email:
        raise ValidationError("Email is required", code="email_required")

    with connect(cfg.DB_DSN) as conn:
        found = request_password_reset(conn, email, ttl_minutes=cfg.RESET_TOKEN_TTL_MINUTES)

    if found is not None:
        user, token = found
        send_password_reset_email(cfg, to_email=user["email"], username=user["username"], token=token)
    # Same answer whether or not the account exists.
    return {"message": RESET_REQUESTED_MESSAGE}


@router.put("/auth/password/reset")
def auth_password_reset_confirm(payload: PasswordResetConfirm, cfg: Config = Depends(get_cfg)) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        user = reset_password(conn, payload.token or "", payload.password or "")
    logger.info("password reset user_id=%s", user["user_id"])
    return {"message": "Password has been reset successfully"}


# -----------------------------
# Admin: users + metrics
# -----------------------------


@router.get("/admin/users")
def admin_list_users(
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    admin: SessionToken = Depends(require_admin),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        users = list_users(conn, limit=limit, offset=offset)
    return {"users": users}


@router.patch("/admin/users/{user_id}/role")
def admin_set_role(
    user_id: int,
    payload: RoleUpdate,
    admin: SessionToken = Depends(require_admin),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        user = set_role(conn, actor_id=admin.user_id, user_id=user_id, role=payload.role or "")
    return {"user": user}


@router.delete("/admin/users/{user_id}")
def admin_delete_user(
    user_id: int,
    admin: SessionToken = Depends(require_admin),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        delete_user(conn, actor_id=admin.user_id, user_id=user_id)
    return {"message": "User deleted successfully"}


@router.get("/admin/metrics")
def admin_metrics(request: Request, admin: SessionToken = Depends(require_admin)) -> Dict[str, Any]:
    gauge = request.app.state.verification_gauge
    return {"verification_gauge_enabled": gauge.enabled, "active_verifications": gauge.value()}
