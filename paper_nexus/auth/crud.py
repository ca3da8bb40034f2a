from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Dict, List, Optional, Tuple

from paper_nexus.config import Config
from paper_nexus.db import connect
from paper_nexus.errors import AuthError, ForbiddenError, NotFoundError, ValidationError
from paper_nexus.util.hashing import random_token_hex, sha256_hex
from paper_nexus.util.time import iso_in, utcnow_iso

from .security import (
    PASSWORD_MIN_LENGTH,
    hash_password,
    is_valid_email,
    is_valid_username,
    verify_password,
)
from .tokens import VALID_ROLES

logger = logging.getLogger(__name__)

# Columns that are safe to hand to clients. Everything else (hashes, one-time
# token hashes, lockout bookkeeping) stays server-side.
_PUBLIC_FIELDS = (
    "user_id",
    "username",
    "email",
    "role",
    "verified",
    "disabled",
    "login_count",
    "last_login_at",
    "created_at",
)


def normalize_username(username: str) -> str:
    return (username or "").strip().lower()


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def public_user(row: Any | Dict[str, Any]) -> Dict[str, Any]:
    d = dict(row)
    out = {k: d.get(k) for k in _PUBLIC_FIELDS}
    out["verified"] = bool(int(out.get("verified") or 0))
    out["disabled"] = bool(int(out.get("disabled") or 0))
    out["login_count"] = int(out.get("login_count") or 0)
    return out


# -----------------
# Lookups
# -----------------


def get_user_by_id(conn: Any, user_id: int) -> Optional[Any]:
    return conn.execute(
        "SELECT * FROM users WHERE user_id=?",
        (int(user_id),),
    ).fetchone()


def get_user_by_username(conn: Any, username: str) -> Optional[Any]:
    u = normalize_username(username)
    if not u:
        return None
    return conn.execute(
        "SELECT * FROM users WHERE username=?",
        (u,),
    ).fetchone()


def get_user_by_email(conn: Any, email: str) -> Optional[Any]:
    e = normalize_email(email)
    if not e:
        return None
    return conn.execute(
        "SELECT * FROM users WHERE email=?",
        (e,),
    ).fetchone()


def get_user_by_identifier(conn: Any, identifier: str) -> Optional[Any]:
    """Login accepts either the username or the email address."""
    ident = (identifier or "").strip()
    if "@" in ident:
        return get_user_by_email(conn, ident)
    return get_user_by_username(conn, ident)


# -----------------
# Registration
# -----------------


def validate_registration(username: str, email: str, password: str) -> None:
    fields: Dict[str, str] = {}
    if not is_valid_username(username):
        fields["username"] = "Username must be 3-30 characters: letters, numbers, '_' or '-'"
    if not is_valid_email(email):
        fields["email"] = "Please enter a valid email address"
    if len(password or "") < PASSWORD_MIN_LENGTH:
        fields["password"] = f"Password must be at least {PASSWORD_MIN_LENGTH} characters"
    if fields:
        raise ValidationError("Invalid registration details", fields=fields)


def create_user(
    conn: Any,
    *,
    username: str,
    email: str,
    password: str,
    role: str = "user",
    verified: bool = False,
) -> Dict[str, Any]:
    """Insert a new user and return its public representation.

    Duplicate username / email are reported as 400 validation errors. A
    concurrent insert that slips past the pre-check still fails on the UNIQUE
    constraint and surfaces as a ConflictError from the db layer.
    """
    u = normalize_username(username)
    e = normalize_email(email)
    validate_registration(u, e, password)
    if role not in VALID_ROLES:
        raise ValidationError("Invalid role", code="invalid_role")

    if conn.execute("SELECT 1 FROM users WHERE username=?", (u,)).fetchone() is not None:
        raise ValidationError("Username already taken", code="username_taken", fields={"username": "taken"})
    if conn.execute("SELECT 1 FROM users WHERE email=?", (e,)).fetchone() is not None:
        raise ValidationError("Email already in use", code="email_in_use", fields={"email": "in use"})

    now = utcnow_iso()
    conn.execute(
        """
        INSERT INTO users (username, email, password_hash, role, verified, created_at, updated_at)
        VALUES (?,?,?,?,?,?,?)
        """,
        (u, e, hash_password(password), role, 1 if verified else 0, now, now),
    )
    row = get_user_by_username(conn, u)
    assert row is not None
    return public_user(row)


# -----------------
# Credentials / lockout
# -----------------


@lru_cache(maxsize=1)
def _dummy_hash() -> str:
    # Verified against for unknown users so both failure paths cost the same.
    return hash_password("paper-nexus-timing-equalizer")


def _record_failed_login(conn: Any, row: Any, cfg: Config) -> bool:
    """Bump the failure counter. Returns True when this attempt locked the account."""
    attempts = int(row["failed_login_attempts"] or 0) + 1
    now = utcnow_iso()
    if attempts >= max(1, int(cfg.LOGIN_MAX_ATTEMPTS)):
        conn.execute(
            """
            UPDATE users
            SET failed_login_attempts=0, lockout_until=?, updated_at=?
            WHERE user_id=?
            """,
            (iso_in(minutes=cfg.LOGIN_LOCKOUT_MINUTES), now, int(row["user_id"])),
        )
        logger.warning("account locked after %d failed logins (user_id=%s)", attempts, row["user_id"])
        return True

    conn.execute(
        "UPDATE users SET failed_login_attempts=?, updated_at=? WHERE user_id=?",
        (attempts, now, int(row["user_id"])),
    )
    return False


def _record_successful_login(conn: Any, user_id: int) -> None:
    now = utcnow_iso()
    conn.execute(
        """
        UPDATE users
        SET failed_login_attempts=0,
            lockout_until=NULL,
            login_count=login_count + 1,
            last_login_at=?,
            updated_at=?
        WHERE user_id=?
        """,
        (now, now, int(user_id)),
    )


def authenticate(cfg: Config, identifier: str, password: str) -> Dict[str, Any]:
    """Check credentials and return the public user.

    Failure bookkeeping is committed before the error is raised, so the
    counter survives the rejected request.
    """
    error: Optional[AuthError] = None
    user: Optional[Dict[str, Any]] = None

    with connect(cfg.DB_DSN) as conn:
        row = get_user_by_identifier(conn, identifier)
        now = utcnow_iso()

        if row is None:
            verify_password(password, _dummy_hash())
            error = AuthError("INVALID_CREDENTIALS")
        elif row["lockout_until"] and str(row["lockout_until"]) > now:
            error = AuthError("ACCOUNT_LOCKED")
        elif not verify_password(password, str(row["password_hash"])):
            locked = _record_failed_login(conn, row, cfg)
            error = AuthError("ACCOUNT_LOCKED" if locked else "INVALID_CREDENTIALS")
        elif int(row["disabled"] or 0) == 1:
            error = AuthError("ACCOUNT_DISABLED")
        elif cfg.REQUIRE_EMAIL_VERIFICATION and int(row["verified"] or 0) != 1:
            error = AuthError("USER_NOT_VERIFIED")
        else:
            _record_successful_login(conn, int(row["user_id"]))
            fresh = get_user_by_id(conn, int(row["user_id"]))
            user = public_user(fresh)

    if error is not None:
        raise error
    assert user is not None
    return user


# -----------------
# One-time tokens
# -----------------


def issue_verification_token(conn: Any, user_id: int, *, ttl_hours: int) -> str:
    """Store the hash of a fresh verification token and return the raw token."""
    token = random_token_hex()
    conn.execute(
        """
        UPDATE users
        SET verification_token_hash=?, verification_token_expires_at=?, updated_at=?
        WHERE user_id=?
        """,
        (sha256_hex(token), iso_in(hours=ttl_hours), utcnow_iso(), int(user_id)),
    )
    return token


def verify_email(conn: Any, token: str) -> Dict[str, Any]:
    t = (token or "").strip()
    if not t:
        raise ValidationError("Verification token is required", code="token_required")

    row = conn.execute(
        "SELECT * FROM users WHERE verification_token_hash=? AND verification_token_expires_at > ?",
        (sha256_hex(t), utcnow_iso()),
    ).fetchone()
    if row is None:
        raise ValidationError("Invalid or expired verification token", code="invalid_token")

    conn.execute(
        """
        UPDATE users
        SET verified=1,
            verification_token_hash=NULL,
            verification_token_expires_at=NULL,
            updated_at=?
        WHERE user_id=?
        """,
        (utcnow_iso(), int(row["user_id"])),
    )
    return public_user(get_user_by_id(conn, int(row["user_id"])))


def request_password_reset(conn: Any, email: str, *, ttl_minutes: int) -> Optional[Tuple[Dict[str, Any], str]]:
    """Create a reset token for the account behind `email`.

    Returns (public_user, raw_token), or None when no account matches. Callers
    must answer the client identically in both cases.
    """
    row = get_user_by_email(conn, email)
    if row is None or int(row["disabled"] or 0) == 1:
        return None

    token = random_token_hex()
    conn.execute(
        """
        UPDATE users
        SET reset_token_hash=?, reset_token_expires_at=?, updated_at=?
        WHERE user_id=?
        """,
        (sha256_hex(token), iso_in(minutes=ttl_minutes), utcnow_iso(), int(row["user_id"])),
    )
    return public_user(row), token


def reset_password(conn: Any, token: str, new_password: str) -> Dict[str, Any]:
    t = (token or "").strip()
    if not t:
        raise ValidationError("Reset token is required", code="token_required")
    if len(new_password or "") < PASSWORD_MIN_LENGTH:
        raise ValidationError(
            f"Password must be at least {PASSWORD_MIN_LENGTH} characters",
            fields={"password": "too short"},
        )

    row = conn.execute(
        "SELECT * FROM users WHERE reset_token_hash=? AND reset_token_expires_at > ?",
        (sha256_hex(t), utcnow_iso()),
    ).fetchone()
    if row is None:
        raise ValidationError("Invalid or expired reset token", code="invalid_token")

    conn.execute(
        """
        UPDATE users
        SET password_hash=?,
            reset_token_hash=NULL,
            reset_token_expires_at=NULL,
            failed_login_attempts=0,
            lockout_until=NULL,
            updated_at=?
        WHERE user_id=?
        """,
        (hash_password(new_password), utcnow_iso(), int(row["user_id"])),
    )
    return public_user(get_user_by_id(conn, int(row["user_id"])))


# -----------------
# Admin
# -----------------


def list_users(conn: Any, *, limit: int = 100, offset: int = 0) -> List[Dict[str, Any]]:
    rows = conn.execute(
        "SELECT * FROM users ORDER BY created_at DESC, user_id DESC LIMIT ? OFFSET ?",
        (max(1, min(int(limit), 500)), max(0, int(offset))),
    ).fetchall()
    return [public_user(r) for r in rows]


def set_role(conn: Any, *, actor_id: int, user_id: int, role: str) -> Dict[str, Any]:
    r = (role or "").strip().lower()
    if r not in VALID_ROLES:
        raise ValidationError("Invalid role", code="invalid_role")
    if int(user_id) == int(actor_id):
        raise ValidationError("You cannot change your own role", code="cannot_change_own_role")

    row = get_user_by_id(conn, user_id)
    if row is None:
        raise NotFoundError("User not found")

    conn.execute(
        "UPDATE users SET role=?, updated_at=? WHERE user_id=?",
        (r, utcnow_iso(), int(user_id)),
    )
    logger.info("role changed user_id=%s %s -> %s by %s", user_id, row["role"], r, actor_id)
    return public_user(get_user_by_id(conn, user_id))


def delete_user(conn: Any, *, actor_id: int, user_id: int) -> None:
    if int(user_id) == int(actor_id):
        raise ValidationError("You cannot delete your own account", code="cannot_delete_self")

    row = get_user_by_id(conn, user_id)
    if row is None:
        raise NotFoundError("User not found")
    if str(row["role"]) == "admin":
        raise ForbiddenError("Cannot delete admin users", code="cannot_delete_admin")

    conn.execute("DELETE FROM users WHERE user_id=?", (int(user_id),))
    logger.info("user deleted user_id=%s by %s", user_id, actor_id)


def bootstrap_admin_if_needed(cfg: Config) -> Optional[Dict[str, Any]]:
    """Create the first admin user if the users table is empty.

    Controlled via environment variables so a new clone has a deterministic way to log in.

    - AUTH_BOOTSTRAP_ADMIN_USERNAME (default: admin)
    - AUTH_BOOTSTRAP_ADMIN_EMAIL (default: admin@localhost.local)
    - AUTH_BOOTSTRAP_ADMIN_PASSWORD (no default; nothing is created without it)

    This only runs when there are 0 rows in `users`.
    """

    with connect(cfg.DB_DSN) as conn:
        n = conn.execute("SELECT COUNT(*) AS n FROM users").fetchone()["n"]
        if int(n) > 0:
            return None

        username = normalize_username(cfg.AUTH_BOOTSTRAP_ADMIN_USERNAME or "")
        password = cfg.AUTH_BOOTSTRAP_ADMIN_PASSWORD or ""
        if not username or not password:
            return None

        return create_user(
            conn,
            username=username,
            email=cfg.AUTH_BOOTSTRAP_ADMIN_EMAIL,
            password=password,
            role="admin",
            verified=True,
        )
