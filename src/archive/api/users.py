"""API endpoints for a user's archived data, and admin account management."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy import Numeric, cast
from sqlalchemy.orm import Session

from archive.api.access import authorized_user, require_admin
from archive.api.messages import MessageResponse
from archive.common.db.connection import get_session
from archive.common.db.models import ChannelUser, Message, User

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["users"])


class UserResponse(BaseModel):
    id: str
    name: str
    email: str
    avatar_url: str | None
    is_admin: bool
    is_active: bool
    last_login_at: str | None
    message_count: int
    channel_count: int


class UserUpdate(BaseModel):
    is_active: bool | None = None
    is_admin: bool | None = None


class UserMessagesResponse(BaseModel):
    user_id: str
    messages: list[MessageResponse]
    total: int
    limit: int
    offset: int


def user_summary(db: Session, target: User) -> dict:
    message_count = db.query(Message).filter(Message.user_id == target.id).count()
    channel_count = (
        db.query(ChannelUser)
        .filter(ChannelUser.user_id == target.id, ChannelUser.left_at.is_(None))
        .count()
    )
    return {
        **target.serialize(),
        "message_count": message_count,
        "channel_count": channel_count,
    }


@router.get("/{user_id}", response_model=UserResponse)
def get_user(
    target: User = Depends(authorized_user), db: Session = Depends(get_session)
):
    return user_summary(db, target)


@router.patch("/{user_id}", response_model=UserResponse)
def update_user(
    user_id: str,
    changes: UserUpdate,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_session),
):
    """Activate, deactivate, promote or demote an account."""
    target = db.get(User, user_id)
    if not target:
        raise HTTPException(status_code=404, detail="User not found")

    demoting_self = changes.is_active is False or changes.is_admin is False
    if target.id == admin.id and demoting_self:
        raise HTTPException(
            status_code=400, detail="Admins cannot deactivate or demote themselves"
        )

    for field, value in changes.model_dump(exclude_none=True).items():
        setattr(target, field, value)
    db.commit()
    logger.info(
        f"{admin.id} updated {target.id}: is_active={target.is_active}, "
        f"is_admin={target.is_admin}"
    )
    return user_summary(db, target)


@router.get("/{user_id}/messages", response_model=UserMessagesResponse)
def list_user_messages(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    target: User = Depends(authorized_user),
    db: Session = Depends(get_session),
):
    query = db.query(Message).filter(Message.user_id == target.id)
    total = query.count()
    messages = (
        query.order_by(cast(Message.message_ts, Numeric(20, 6)).desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return {
        "user_id": target.id,
        "messages": [m.serialize() for m in messages],
        "total": total,
        "limit": limit,
        "offset": offset,
    }
