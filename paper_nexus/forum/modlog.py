"""Append-only moderation history for posts.

The newest row for a post is what the API exposes as its `modified_by`.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from paper_nexus.util.time import utcnow_iso


def _entry(row: Any) -> Dict[str, Any]:
    prev = row["previous_state"]
    return {
        "action": row["action"],
        "performed_by": int(row["performed_by"]),
        "performed_by_username": row["performed_by_username"],
        "performed_at": row["performed_at"],
        "previous_state": None if prev is None else bool(int(prev)),
    }


def record(
    conn: Any,
    *,
    post_id: int,
    action: str,
    actor: Any,
    previous_state: Optional[bool] = None,
    performed_at: Optional[str] = None,
) -> None:
    conn.execute(
        """
        INSERT INTO post_moderation_log
            (post_id, action, performed_by, performed_by_username, performed_at, previous_state)
        VALUES (?,?,?,?,?,?)
        """,
        (
            int(post_id),
            action,
            int(actor.user_id),
            actor.username,
            performed_at or utcnow_iso(),
            None if previous_state is None else (1 if previous_state else 0),
        ),
    )


def latest(conn: Any, post_id: int) -> Optional[Dict[str, Any]]:
    row = conn.execute(
        "SELECT * FROM post_moderation_log WHERE post_id=? ORDER BY log_id DESC LIMIT 1",
        (int(post_id),),
    ).fetchone()
    return _entry(row) if row is not None else None


def history(conn: Any, post_id: int) -> List[Dict[str, Any]]:
    rows = conn.execute(
        "SELECT * FROM post_moderation_log WHERE post_id=? ORDER BY log_id ASC",
        (int(post_id),),
    ).fetchall()
    return [_entry(r) for r in rows]


def count(conn: Any, post_id: int) -> int:
    row = conn.execute(
        "SELECT COUNT(*) AS n FROM post_moderation_log WHERE post_id=?",
        (int(post_id),),
    ).fetchone()
    return int(row["n"])
