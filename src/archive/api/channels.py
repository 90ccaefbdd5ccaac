"""API endpoints for archived channels and their messages."""

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy import Numeric, cast
from sqlalchemy.orm import Session

from archive.api.access import authorized_channel, get_active_user
from archive.api.messages import MessageResponse
from archive.common.access_control import visible_messages_query
from archive.common.db.connection import get_session
from archive.common.db.models import Channel, Message, User

router = APIRouter(prefix="/channels", tags=["channels"])


class ChannelResponse(BaseModel):
    id: str
    workspace_id: str
    name: str
    channel_type: str
    is_private: bool
    is_dm: bool
    is_mpim: bool
    is_archived: bool
    member_count: int
    last_synced_at: str | None


class ChannelMessagesResponse(BaseModel):
    channel: ChannelResponse
    messages: list[MessageResponse]
    total: int
    limit: int
    offset: int


@router.get("/{channel_id}", response_model=ChannelResponse)
def get_channel(channel: Channel = Depends(authorized_channel)):
    return channel.serialize()


@router.get("/{channel_id}/messages", response_model=ChannelMessagesResponse)
def list_channel_messages(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    channel: Channel = Depends(authorized_channel),
    user: User = Depends(get_active_user),
    db: Session = Depends(get_session),
):
    """Newest messages first, limited to the ones the caller may read."""
    query = visible_messages_query(db, user, channel)
    total = query.count()
    messages = (
        query.order_by(cast(Message.message_ts, Numeric(20, 6)).desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return {
        "channel": channel.serialize(),
        "messages": [m.serialize() for m in messages],
        "total": total,
        "limit": limit,
        "offset": offset,
    }
