"""Post moderation: pin / lock / delete / restore.

A post carries three independent flags (is_pinned, is_locked, is_deleted).
Every flag change is a single conditional UPDATE, so two moderators acting at
once can never lose each other's write, and each change that lands appends a
row to the moderation log in the same transaction.

These functions do not check roles. Callers authorize first (see
`apply_action`, which is what the HTTP layer uses).
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from paper_nexus.db import execute_returning
from paper_nexus.errors import ForbiddenError, InvalidStateError, NotFoundError, ValidationError
from paper_nexus.util.time import utcnow_iso

from . import modlog
from .permissions import can_perform_action
from .posts import get_post, get_post_row

logger = logging.getLogger(__name__)

_FLAG_COLUMNS = {
    "pinned": "is_pinned",
    "locked": "is_locked",
}


def _exists(conn: Any, post_id: int) -> bool:
    return conn.execute("SELECT 1 FROM posts WHERE post_id=?", (int(post_id),)).fetchone() is not None


def _toggle(conn: Any, post_id: int, actor: Any, *, flag: str, action: str) -> Dict[str, Any]:
    col = _FLAG_COLUMNS[flag]
    now = utcnow_iso()
    row = execute_returning(
        conn,
        f"UPDATE posts SET {col} = 1 - {col}, updated_at=? WHERE post_id=? RETURNING {col}",
        (now, int(post_id)),
    )
    if row is None:
        raise NotFoundError("Post not found")

    new_value = bool(int(row[col]))
    modlog.record(conn, post_id=post_id, action=action, actor=actor, previous_state=not new_value, performed_at=now)
    logger.info("post %s %s=%s by user_id=%s", post_id, col, new_value, actor.user_id)
    return get_post(conn, post_id, include_deleted=True)


def pin(conn: Any, post_id: int, actor: Any) -> Dict[str, Any]:
    """Flip is_pinned."""
    return _toggle(conn, post_id, actor, flag="pinned", action="pin")


def lock(conn: Any, post_id: int, actor: Any) -> Dict[str, Any]:
    """Flip is_locked."""
    return _toggle(conn, post_id, actor, flag="locked", action="lock")


def set_flag(conn: Any, post_id: int, actor: Any, *, flag: str, value: bool, action: str) -> Dict[str, Any]:
    """Set a flag to an explicit value. Setting it to what it already is changes nothing."""
    col = _FLAG_COLUMNS[flag]
    v = 1 if value else 0
    now = utcnow_iso()
    cur = conn.execute(
        f"UPDATE posts SET {col}=?, updated_at=? WHERE post_id=? AND {col}<>?",
        (v, now, int(post_id), v),
    )
    if cur.rowcount == 0:
        if not _exists(conn, post_id):
            raise NotFoundError("Post not found")
    else:
        modlog.record(conn, post_id=post_id, action=action, actor=actor, previous_state=not value, performed_at=now)
        logger.info("post %s %s=%s by user_id=%s", post_id, col, value, actor.user_id)
    return get_post(conn, post_id, include_deleted=True)


def delete(conn: Any, post_id: int, actor: Any) -> Dict[str, Any]:
    """Soft delete. Deleting an already deleted post is a no-op."""
    now = utcnow_iso()
    cur = conn.execute(
        """
        UPDATE posts
        SET is_deleted=1, deleted_at=?, deleted_by=?, updated_at=?
        WHERE post_id=? AND is_deleted=0
        """,
        (now, int(actor.user_id), now, int(post_id)),
    )
    if cur.rowcount == 0:
        if not _exists(conn, post_id):
            raise NotFoundError("Post not found")
    else:
        modlog.record(conn, post_id=post_id, action="delete", actor=actor, previous_state=False, performed_at=now)
        logger.info("post %s deleted by user_id=%s", post_id, actor.user_id)
    return get_post(conn, post_id, include_deleted=True)


def restore(conn: Any, post_id: int, actor: Any) -> Dict[str, Any]:
    now = utcnow_iso()
    cur = conn.execute(
        """
        UPDATE posts
        SET is_deleted=0, deleted_at=NULL, deleted_by=NULL, updated_at=?
        WHERE post_id=? AND is_deleted=1
        """,
        (now, int(post_id)),
    )
    if cur.rowcount == 0:
        if not _exists(conn, post_id):
            raise NotFoundError("Post not found")
        raise InvalidStateError("Post is not deleted", code="post_not_deleted")

    modlog.record(conn, post_id=post_id, action="restore", actor=actor, previous_state=True, performed_at=now)
    logger.info("post %s restored by user_id=%s", post_id, actor.user_id)
    return get_post(conn, post_id, include_deleted=True)


# action -> (permission checked, handler)
_ACTIONS = {
    "pin": ("pin", lambda c, p, a: set_flag(c, p, a, flag="pinned", value=True, action="pin")),
    "unpin": ("unpin", lambda c, p, a: set_flag(c, p, a, flag="pinned", value=False, action="unpin")),
    "lock": ("lock", lambda c, p, a: set_flag(c, p, a, flag="locked", value=True, action="lock")),
    "unlock": ("unlock", lambda c, p, a: set_flag(c, p, a, flag="locked", value=False, action="unlock")),
    "toggle_pin": ("pin", pin),
    "toggle_lock": ("lock", lock),
    "delete": ("delete", delete),
    "restore": ("restore", restore),
}

MODERATION_ACTIONS = tuple(_ACTIONS)


def apply_action(conn: Any, post_id: int, actor: Any, action: str) -> Dict[str, Any]:
    """Authorize and run one moderation action against a post."""
    act = (action or "").strip().lower()
    if act not in _ACTIONS:
        raise ValidationError("Invalid action", code="invalid_action")

    row = get_post_row(conn, post_id)
    if row is None:
        raise NotFoundError("Post not found")

    permission, handler = _ACTIONS[act]
    if not can_perform_action(permission, actor, row["author_id"], "post"):
        raise ForbiddenError("You are not allowed to perform this action")
    return handler(conn, post_id, actor)


def history(conn: Any, post_id: int) -> List[Dict[str, Any]]:
    if not _exists(conn, post_id):
        raise NotFoundError("Post not found")
    return modlog.history(conn, post_id)
