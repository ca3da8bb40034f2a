from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from paper_nexus.db import execute_returning
from paper_nexus.errors import ForbiddenError, LockedError, NotFoundError, ValidationError
from paper_nexus.util.time import utcnow_iso

from .permissions import can_edit, can_perform_action

logger = logging.getLogger(__name__)

REPLY_MAX = 5000

_SELECT_REPLY = """
    SELECT r.*, u.role AS author_role, u.verified AS author_verified
    FROM replies r
    LEFT JOIN users u ON u.user_id = r.author_id
"""


def reply_dict(row: Any) -> Dict[str, Any]:
    d = dict(row)
    return {
        "reply_id": int(d["reply_id"]),
        "post_id": int(d["post_id"]),
        "content": d["content"],
        "author": {
            "user_id": int(d["author_id"]),
            "username": d["username"],
            "role": d.get("author_role"),
            "verified": bool(int(d.get("author_verified") or 0)),
        },
        "edited": bool(int(d.get("edited") or 0)),
        "edited_at": d.get("edited_at"),
        "created_at": d["created_at"],
        "updated_at": d["updated_at"],
    }


def _validate_content(content: Optional[str]) -> str:
    c = (content or "").strip()
    if not c:
        raise ValidationError("Content is required", fields={"content": "required"})
    if len(c) > REPLY_MAX:
        raise ValidationError(
            f"Reply must be at most {REPLY_MAX} characters", fields={"content": "too long"}
        )
    return c


def _get_live_reply(conn: Any, reply_id: int) -> Any:
    row = conn.execute(_SELECT_REPLY + " WHERE r.reply_id=?", (int(reply_id),)).fetchone()
    if row is None or int(row["is_deleted"] or 0) == 1:
        raise NotFoundError("Reply not found")
    return row


def create_reply(conn: Any, *, post_id: int, actor: Any, content: Optional[str]) -> Dict[str, Any]:
    """Add a reply and bump the parent's reply_count.

    The lock is checked before anything is written. The counter update repeats
    the check in its WHERE clause, so a lock that lands between the two
    statements rolls the whole reply back instead of leaving a reply on a
    locked post.
    """
    post = conn.execute(
        "SELECT post_id, is_locked, is_deleted FROM posts WHERE post_id=?",
        (int(post_id),),
    ).fetchone()
    if post is None or int(post["is_deleted"] or 0) == 1:
        raise NotFoundError("Post not found")
    if int(post["is_locked"] or 0) == 1:
        raise LockedError()
    c = _validate_content(content)

    now = utcnow_iso()
    row = execute_returning(
        conn,
        """
        INSERT INTO replies (post_id, author_id, username, content, created_at, updated_at)
        VALUES (?,?,?,?,?,?)
        RETURNING reply_id
        """,
        (int(post_id), int(actor.user_id), actor.username, c, now, now),
    )
    reply_id = int(row["reply_id"])

    cur = conn.execute(
        """
        UPDATE posts
        SET reply_count = reply_count + 1, last_reply_at=?
        WHERE post_id=? AND is_locked=0 AND is_deleted=0
        """,
        (now, int(post_id)),
    )
    if cur.rowcount != 1:
        # Raising rolls back the reply insert as well.
        raise LockedError()

    logger.info("reply %s on post %s by user_id=%s", reply_id, post_id, actor.user_id)
    return reply_dict(_get_live_reply(conn, reply_id))


def list_replies(conn: Any, post_id: int) -> List[Dict[str, Any]]:
    rows = conn.execute(
        _SELECT_REPLY + " WHERE r.post_id=? AND r.is_deleted=0 ORDER BY r.created_at ASC, r.reply_id ASC",
        (int(post_id),),
    ).fetchall()
    return [reply_dict(r) for r in rows]


def edit_reply(
    conn: Any,
    *,
    reply_id: int,
    actor: Any,
    content: Optional[str],
    window_hours: float = 24,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    row = _get_live_reply(conn, reply_id)
    if not can_perform_action("edit", actor, row["author_id"], "reply"):
        raise ForbiddenError("You can only edit your own replies")
    if not can_edit(row["created_at"], now=now, window_hours=window_hours):
        raise ForbiddenError(
            f"Replies can only be edited within {window_hours:g} hours", code="edit_window_expired"
        )
    c = _validate_content(content)

    ts = utcnow_iso()
    conn.execute(
        "UPDATE replies SET content=?, edited=1, edited_at=?, updated_at=? WHERE reply_id=?",
        (c, ts, ts, int(reply_id)),
    )
    return reply_dict(_get_live_reply(conn, reply_id))


def delete_reply(conn: Any, *, reply_id: int, actor: Any) -> Dict[str, Any]:
    """Soft delete a reply; reply_count drops only when this call did the delete."""
    row = _get_live_reply(conn, reply_id)
    if not can_perform_action("delete", actor, row["author_id"], "reply"):
        raise ForbiddenError("You can only delete your own replies")

    now = utcnow_iso()
    cur = conn.execute(
        """
        UPDATE replies
        SET is_deleted=1, deleted_at=?, deleted_by=?, updated_at=?
        WHERE reply_id=? AND is_deleted=0
        """,
        (now, int(actor.user_id), now, int(reply_id)),
    )
    if cur.rowcount == 1:
        conn.execute(
            "UPDATE posts SET reply_count = reply_count - 1 WHERE post_id=? AND reply_count > 0",
            (int(row["post_id"]),),
        )
        logger.info("reply %s deleted by user_id=%s", reply_id, actor.user_id)

    return {"reply_id": int(reply_id), "post_id": int(row["post_id"]), "deleted": True}


def count_live_replies(conn: Any, post_id: int) -> int:
    row = conn.execute(
        "SELECT COUNT(*) AS n FROM replies WHERE post_id=? AND is_deleted=0",
        (int(post_id),),
    ).fetchone()
    return int(row["n"])
