"""API endpoints for reading and searching archived messages."""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel
from sqlalchemy import Numeric, cast, or_
from sqlalchemy.orm import Session

from archive.api.access import authorized_message, enforce, get_active_user
from archive.common.access_control import (
    check_channel_access,
    check_message_search,
    readable_messages_query,
)
from archive.common.db.connection import get_session
from archive.common.db.models import Channel, Message, User

router = APIRouter(prefix="/messages", tags=["messages"])


class FileResponse(BaseModel):
    id: int
    slack_file_id: str
    name: str | None
    title: str | None
    mimetype: str | None
    file_type: str | None
    size: int
    permalink: str | None
    thumbnails: dict[str, str]
    download_status: str
    local_path: str | None


class MessageResponse(BaseModel):
    id: int
    workspace_id: str
    channel_id: str
    user_id: str
    ts: str
    text: str
    thread_ts: str | None
    reply_count: int
    message_type: str
    has_files: bool
    reactions: list[dict[str, Any]]
    metadata: dict[str, Any]
    files: list[FileResponse]


class MessageSearchResponse(BaseModel):
    search: str | None
    messages: list[MessageResponse]
    total: int
    limit: int
    offset: int


@router.get("", response_model=MessageSearchResponse)
def search_messages(
    request: Request,
    search: str | None = Query(default=None, min_length=1, max_length=100),
    workspace_id: str | None = None,
    channel_id: str | None = None,
    user_id: str | None = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    user: User = Depends(get_active_user),
    db: Session = Depends(get_session),
):
    """Newest first. `search` matches the message text or the author's name.

    Results are limited to messages the caller could open one by one.
    """
    if channel_id:
        channel = db.get(Channel, channel_id)
        if not channel:
            raise HTTPException(status_code=404, detail="Channel not found")
        if not user.is_admin:
            enforce(check_channel_access(db, user, channel), user, request, db)

    enforce(check_message_search(user, user_id), user, request, db)

    query = readable_messages_query(db, user)
    if workspace_id:
        query = query.filter(Message.workspace_id == workspace_id)
    if channel_id:
        query = query.filter(Message.channel_id == channel_id)
    if user_id:
        query = query.filter(Message.user_id == user_id)
    if search:
        query = query.join(User, User.id == Message.user_id).filter(
            or_(
                Message.text.icontains(search, autoescape=True),
                User.name.icontains(search, autoescape=True),
            )
        )

    total = query.count()
    messages = (
        query.order_by(cast(Message.message_ts, Numeric(20, 6)).desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return {
        "search": search,
        "messages": [m.serialize() for m in messages],
        "total": total,
        "limit": limit,
        "offset": offset,
    }


@router.get("/{message_id}", response_model=MessageResponse)
def get_message(message: Message = Depends(authorized_message)):
    return message.serialize()
