"""Role hierarchy and forum authorization rules.

Everything here is pure: no I/O, no exceptions. Unknown roles, unknown actions
and missing actors simply deny.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Mapping, Optional

from paper_nexus.util.time import parse_iso, utcnow

ROLE_HIERARCHY = {
    "admin": 3,
    "moderator": 2,
    "user": 1,
}

ACTIONS = ("edit", "delete", "pin", "unpin", "lock", "unlock", "restore")

_MODERATOR_ACTIONS = frozenset({"delete", "lock", "unlock"})
_AUTHOR_ACTIONS = frozenset({"edit", "delete"})


def _get(actor: Any, key: str) -> Any:
    if actor is None:
        return None
    if isinstance(actor, Mapping):
        return actor.get(key)
    return getattr(actor, key, None)


def role_level(role: Optional[str]) -> int:
    return ROLE_HIERARCHY.get(str(role or "").lower(), 0)


def has_role(actor: Any, required_role: str) -> bool:
    """True when the actor's role is at or above `required_role`."""
    need = role_level(required_role)
    return need > 0 and role_level(_get(actor, "role")) >= need


def can_perform_action(
    action: str,
    actor: Any,
    author_id: Any = None,
    content_type: str = "post",
) -> bool:
    """Decide whether `actor` may perform `action` on a piece of content.

    `actor` is anything with `user_id` and `role` (a token identity or a user
    dict). `content_type` ("post" or "reply") does not change the outcome today
    but is accepted so call sites read uniformly.
    """
    role = str(_get(actor, "role") or "").lower()
    if role not in ROLE_HIERARCHY:
        return False
    act = str(action or "").lower()
    if act not in ACTIONS:
        return False

    if role == "admin":
        return True
    if role == "moderator" and act in _MODERATOR_ACTIONS:
        return True
    if act in ("pin", "unpin"):
        return False

    if act in _AUTHOR_ACTIONS and author_id is not None:
        actor_id = _get(actor, "user_id")
        return actor_id is not None and str(actor_id) == str(author_id)
    return False


def can_edit(
    created_at: str | datetime | None,
    *,
    now: datetime | None = None,
    window_hours: float = 24,
) -> bool:
    """False once `window_hours` have elapsed since `created_at`. Applies to every role."""
    created = parse_iso(created_at)
    if created is None:
        return False
    now = now or utcnow()
    return now - created < timedelta(hours=window_hours)
