from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from paper_nexus.db import execute_returning
from paper_nexus.errors import (
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from paper_nexus.util.time import utcnow_iso

from . import modlog
from .permissions import can_edit, can_perform_action

logger = logging.getLogger(__name__)

TITLE_MAX = 200
CONTENT_MAX = 10000
TAGS_MAX = 10
TAG_MAX_LEN = 30

# Author metadata is joined explicitly; posts.username is the denormalized
# fallback for authors whose account has since been deleted.
_SELECT_POST = """
    SELECT p.*, u.role AS author_role, u.verified AS author_verified
    FROM posts p
    LEFT JOIN users u ON u.user_id = p.author_id
"""


def _b(v: Any) -> bool:
    return bool(int(v or 0))


def post_dict(row: Any, *, modified_by: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    d = dict(row)
    try:
        tags = json.loads(d.get("tags_json") or "[]")
    except ValueError:
        tags = []
    return {
        "post_id": int(d["post_id"]),
        "title": d["title"],
        "content": d["content"],
        "tags": tags,
        "author": {
            "user_id": int(d["author_id"]),
            "username": d["username"],
            "role": d.get("author_role"),
            "verified": _b(d.get("author_verified")),
        },
        "is_pinned": _b(d["is_pinned"]),
        "is_locked": _b(d["is_locked"]),
        "is_deleted": _b(d["is_deleted"]),
        "deleted_at": d.get("deleted_at"),
        "deleted_by": d.get("deleted_by"),
        "reply_count": int(d["reply_count"] or 0),
        "last_reply_at": d.get("last_reply_at"),
        "edited": _b(d.get("edited")),
        "edited_at": d.get("edited_at"),
        "created_at": d["created_at"],
        "updated_at": d["updated_at"],
        "modified_by": modified_by,
    }


def _clean_tags(tags: Optional[Sequence[str]]) -> List[str]:
    out: List[str] = []
    for t in tags or []:
        s = str(t or "").strip().lower()
        if s and s not in out:
            out.append(s)
    return out


def validate_post_fields(
    *,
    title: Optional[str],
    content: Optional[str],
    tags: Optional[Sequence[str]],
    partial: bool = False,
) -> Tuple[Optional[str], Optional[str], Optional[List[str]]]:
    """Normalize and check post input. With partial=True, None means 'unchanged'."""
    fields: Dict[str, str] = {}

    t = None if title is None else title.strip()
    c = None if content is None else content.strip()
    tg = None if tags is None else _clean_tags(tags)

    if t is not None or not partial:
        if not t:
            fields["title"] = "Title is required"
        elif len(t) > TITLE_MAX:
            fields["title"] = f"Title must be at most {TITLE_MAX} characters"
    if c is not None or not partial:
        if not c:
            fields["content"] = "Content is required"
        elif len(c) > CONTENT_MAX:
            fields["content"] = f"Content must be at most {CONTENT_MAX} characters"
    if tg is not None:
        if len(tg) > TAGS_MAX:
            fields["tags"] = f"At most {TAGS_MAX} tags"
        elif any(len(x) > TAG_MAX_LEN for x in tg):
            fields["tags"] = f"Tags must be at most {TAG_MAX_LEN} characters"

    if fields:
        raise ValidationError("Invalid post", fields=fields)
    return t, c, tg


def get_post_row(conn: Any, post_id: int) -> Optional[Any]:
    return conn.execute(_SELECT_POST + " WHERE p.post_id=?", (int(post_id),)).fetchone()


def get_post(conn: Any, post_id: int, *, include_deleted: bool = False) -> Dict[str, Any]:
    row = get_post_row(conn, post_id)
    if row is None or (_b(row["is_deleted"]) and not include_deleted):
        raise NotFoundError("Post not found")
    return post_dict(row, modified_by=modlog.latest(conn, post_id))


def create_post(
    conn: Any,
    *,
    actor: Any,
    title: str,
    content: str,
    tags: Optional[Sequence[str]] = None,
) -> Dict[str, Any]:
    t, c, tg = validate_post_fields(title=title, content=content, tags=tags or [])

    dup = conn.execute(
        "SELECT 1 FROM posts WHERE author_id=? AND title=? AND content=? AND is_deleted=0",
        (int(actor.user_id), t, c),
    ).fetchone()
    if dup is not None:
        raise ConflictError("You already posted this", code="duplicate_post")

    now = utcnow_iso()
    row = execute_returning(
        conn,
        """
        INSERT INTO posts (author_id, username, title, content, tags_json, created_at, updated_at)
        VALUES (?,?,?,?,?,?,?)
        RETURNING post_id
        """,
        (int(actor.user_id), actor.username, t, c, json.dumps(tg), now, now),
    )
    post_id = int(row["post_id"])
    logger.info("post created post_id=%s by user_id=%s", post_id, actor.user_id)
    return get_post(conn, post_id)


def _like_literal(s: str) -> str:
    return s.replace("!", "!!").replace("%", "!%").replace("_", "!_")


def list_posts(
    conn: Any,
    *,
    limit: int = 50,
    offset: int = 0,
    include_deleted: bool = False,
    tag: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """Pinned first, then newest first."""
    where: List[str] = []
    params: List[Any] = []
    if not include_deleted:
        where.append("p.is_deleted=0")
    if tag:
        # tags_json is a JSON array of lower-cased strings; match one element exactly.
        where.append("p.tags_json LIKE ? ESCAPE '!'")
        params.append("%" + _like_literal(json.dumps(tag.strip().lower())) + "%")

    sql = _SELECT_POST
    if where:
        sql += " WHERE " + " AND ".join(where)
    sql += " ORDER BY p.is_pinned DESC, p.created_at DESC, p.post_id DESC LIMIT ? OFFSET ?"
    params.extend([max(1, min(int(limit), 200)), max(0, int(offset))])

    return [post_dict(r) for r in conn.execute(sql, params).fetchall()]


def edit_post(
    conn: Any,
    *,
    post_id: int,
    actor: Any,
    title: Optional[str] = None,
    content: Optional[str] = None,
    tags: Optional[Sequence[str]] = None,
    window_hours: float = 24,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    row = get_post_row(conn, post_id)
    if row is None:
        raise NotFoundError("Post not found")
    # A deleted post is frozen, even for its author.
    if _b(row["is_deleted"]):
        raise InvalidStateError("This post has been deleted", code="post_deleted")
    if not can_perform_action("edit", actor, row["author_id"], "post"):
        raise ForbiddenError("You can only edit your own posts")
    if not can_edit(row["created_at"], now=now, window_hours=window_hours):
        raise ForbiddenError(
            f"Posts can only be edited within {window_hours:g} hours", code="edit_window_expired"
        )

    if title is None and content is None and tags is None:
        raise ValidationError("Nothing to update")
    t, c, tg = validate_post_fields(title=title, content=content, tags=tags, partial=True)

    sets: List[str] = []
    params: List[Any] = []
    if t is not None:
        sets.append("title=?")
        params.append(t)
    if c is not None:
        sets.append("content=?")
        params.append(c)
    if tg is not None:
        sets.append("tags_json=?")
        params.append(json.dumps(tg))

    ts = utcnow_iso()
    sets.extend(["edited=1", "edited_at=?", "updated_at=?"])
    params.extend([ts, ts, int(post_id)])
    conn.execute(f"UPDATE posts SET {', '.join(sets)} WHERE post_id=?", params)
    modlog.record(conn, post_id=post_id, action="edit", actor=actor, performed_at=ts)

    return get_post(conn, post_id)
