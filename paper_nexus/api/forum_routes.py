from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from paper_nexus.auth.deps import get_cfg, get_optional_user, require_auth, require_moderator
from paper_nexus.auth.tokens import SessionToken
from paper_nexus.config import Config
from paper_nexus.db import connect
from paper_nexus.forum import moderation, posts, replies
from paper_nexus.forum.permissions import has_role

router = APIRouter(prefix="/forum")


class PostCreate(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None
    tags: List[str] = []


class PostUpdate(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None
    tags: Optional[List[str]] = None


class ReplyBody(BaseModel):
    content: Optional[str] = None


class ModerationRequest(BaseModel):
    action: Optional[str] = None


# -----------------------------
# Posts
# -----------------------------


@router.get("/posts")
def list_posts(
    limit: Optional[int] = Query(default=None, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    tag: Optional[str] = Query(default=None),
    include_deleted: bool = Query(default=False),
    user: Optional[SessionToken] = Depends(get_optional_user),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    # Only moderators may look at deleted posts; everyone else silently gets the live list.
    show_deleted = include_deleted and has_role(user, "moderator")
    with connect(cfg.DB_DSN) as conn:
        items = posts.list_posts(
            conn,
            limit=limit or cfg.FORUM_LIST_LIMIT,
            offset=offset,
            include_deleted=show_deleted,
            tag=tag,
        )
    return {"posts": items}


@router.post("/posts", status_code=201)
def create_post(
    payload: PostCreate,
    user: SessionToken = Depends(require_auth),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        post = posts.create_post(
            conn,
            actor=user,
            title=payload.title or "",
            content=payload.content or "",
            tags=payload.tags,
        )
    return {"post": post}


@router.get("/posts/{post_id}")
def get_post(
    post_id: int,
    user: Optional[SessionToken] = Depends(get_optional_user),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        post = posts.get_post(conn, post_id, include_deleted=has_role(user, "moderator"))
        items = replies.list_replies(conn, post_id)
    return {"post": post, "replies": items}


@router.patch("/posts/{post_id}")
def edit_post(
    post_id: int,
    payload: PostUpdate,
    user: SessionToken = Depends(require_auth),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        post = posts.edit_post(
            conn,
            post_id=post_id,
            actor=user,
            title=payload.title,
            content=payload.content,
            tags=payload.tags,
            window_hours=cfg.FORUM_EDIT_WINDOW_HOURS,
        )
    return {"post": post}


@router.delete("/posts/{post_id}")
def delete_post(
    post_id: int,
    user: SessionToken = Depends(require_auth),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        post = moderation.apply_action(conn, post_id, user, "delete")
    return {"message": "Post deleted", "post": post}


# -----------------------------
# Replies
# -----------------------------


@router.get("/posts/{post_id}/replies")
def list_replies(post_id: int, cfg: Config = Depends(get_cfg)) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        # 404 for missing / deleted posts rather than an empty list.
        posts.get_post(conn, post_id)
        items = replies.list_replies(conn, post_id)
    return {"replies": items}


@router.post("/posts/{post_id}/replies", status_code=201)
def create_reply(
    post_id: int,
    payload: ReplyBody,
    user: SessionToken = Depends(require_auth),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        reply = replies.create_reply(conn, post_id=post_id, actor=user, content=payload.content)
    return {"reply": reply}


@router.patch("/replies/{reply_id}")
def edit_reply(
    reply_id: int,
    payload: ReplyBody,
    user: SessionToken = Depends(require_auth),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        reply = replies.edit_reply(
            conn,
            reply_id=reply_id,
            actor=user,
            content=payload.content,
            window_hours=cfg.FORUM_EDIT_WINDOW_HOURS,
        )
    return {"reply": reply}


@router.delete("/replies/{reply_id}")
def delete_reply(
    reply_id: int,
    user: SessionToken = Depends(require_auth),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        result = replies.delete_reply(conn, reply_id=reply_id, actor=user)
    return result


# -----------------------------
# Moderation
# -----------------------------


@router.patch("/posts/{post_id}/moderation")
def moderate_post(
    post_id: int,
    payload: ModerationRequest,
    user: SessionToken = Depends(require_auth),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    """pin / unpin / lock / unlock / toggle_pin / toggle_lock / delete / restore."""
    with connect(cfg.DB_DSN) as conn:
        post = moderation.apply_action(conn, post_id, user, payload.action or "")
    return {"post": post}


@router.get("/posts/{post_id}/moderation")
def moderation_history(
    post_id: int,
    user: SessionToken = Depends(require_moderator),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        history = moderation.history(conn, post_id)
    return {"post_id": post_id, "history": history}
