"""
Access control for archived Slack data.

Every read of a message, a channel or another user's data goes through one
of the `check_*` functions below, and the sync engine uses
`can_import_message` to decide what it may persist under a user's identity.
The functions only decide: the HTTP layer turns a denial into a 403 and
writes the audit row that an admin override requires.

Rules:
- Admins can read everything, but reading someone else's message, a DM, or
  another user's data is audited.
- Public channels are readable by everyone; private channels, DMs and MPIMs
  only by users with an active `channel_users` row.
- Messages are readable by their author, and by participants of the DM they
  were posted in.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from sqlalchemy import and_, exists, or_, select

from archive.common.db.models import Channel, ChannelUser, Message

if TYPE_CHECKING:
    from sqlalchemy.orm import Query, Session
    from sqlalchemy.orm.scoping import scoped_session

logger = logging.getLogger(__name__)


# Protocol for duck-typed access control checks, so tests can use plain mocks
@runtime_checkable
class UserLike(Protocol):
    @property
    def id(self) -> Any: ...

    @property
    def is_admin(self) -> Any: ...


MESSAGE_DENIED = "Access denied: You can only access your own messages"
DM_DENIED = "Access denied: You are not a participant in this DM"
CHANNEL_DENIED = "Access denied: You cannot access this channel"
USER_DATA_DENIED = "Access denied: You can only access your own data"


class AuditAction(str, Enum):
    ACCESS_USER_DATA = "access_user_data"
    ACCESS_DM_CHANNEL = "access_dm_channel"
    ACCESS_USER_MESSAGE = "access_user_message"


@dataclass(frozen=True)
class AccessDecision:
    """Outcome of an access check.

    `audit_action` is set when the access is allowed only through admin
    override and must be recorded before the data is returned.
    """

    allowed: bool
    reason: str | None = None
    audit_action: AuditAction | None = None
    resource_type: str | None = None
    resource_id: str | None = None
    accessed_user_id: str | None = None

    @property
    def requires_audit(self) -> bool:
        return self.allowed and self.audit_action is not None

    @classmethod
    def deny(cls, reason: str) -> AccessDecision:
        return cls(allowed=False, reason=reason)


ALLOW = AccessDecision(allowed=True)


# --- Membership ---


def is_active_participant(
    session: Session | scoped_session[Session], user_id: str, channel_id: str
) -> bool:
    """Whether the user has a participation row for the channel with no `left_at`."""
    stmt = select(
        exists().where(
            ChannelUser.channel_id == channel_id,
            ChannelUser.user_id == user_id,
            ChannelUser.left_at.is_(None),
        )
    )
    return bool(session.execute(stmt).scalar())


def active_membership_clause(user_id: str):
    """SQL condition: the user actively participates in `Channel`."""
    return exists().where(
        ChannelUser.channel_id == Channel.id,
        ChannelUser.user_id == user_id,
        ChannelUser.left_at.is_(None),
    )


def accessible_channels_query(
    session: Session | scoped_session[Session], user: UserLike, workspace_id: str
) -> Query[Channel]:
    query = session.query(Channel).filter(Channel.workspace_id == workspace_id)
    if user.is_admin:
        return query

    is_open = and_(
        Channel.is_private.is_(False),
        Channel.is_dm.is_(False),
        Channel.is_mpim.is_(False),
    )
    return query.filter(or_(is_open, active_membership_clause(user.id)))


def accessible_channels(
    session: Session | scoped_session[Session], user: UserLike, workspace_id: str
) -> list[Channel]:
    """Channels in the workspace the user may read, ordered by name.

    Admins get every channel. Everyone else gets the public channels plus
    the private channels, DMs and MPIMs they actively participate in.
    """
    return accessible_channels_query(session, user, workspace_id).order_by(
        Channel.name, Channel.id
    ).all()


def dm_channels(
    session: Session | scoped_session[Session], user: UserLike, workspace_id: str
) -> list[Channel]:
    """DM channels in the workspace where the user is an active participant."""
    return (
        session.query(Channel)
        .filter(
            Channel.workspace_id == workspace_id,
            Channel.is_dm.is_(True),
            active_membership_clause(user.id),
        )
        .order_by(Channel.id)
        .all()
    )


# --- Decisions ---


def can_import_message(
    session: Session | scoped_session[Session],
    user: UserLike,
    channel: Channel,
    author_id: str | None,
) -> bool:
    """Whether a message fetched with the user's credentials may be stored.

    Admins import everything. Others import their own messages, messages in
    channels that need membership when they are active members, and
    everything in public channels.
    """
    if user.is_admin:
        return True
    if author_id and author_id == user.id:
        return True
    if channel.requires_membership:
        return is_active_participant(session, user.id, channel.id)
    return True


def check_message_access(
    session: Session | scoped_session[Session], user: UserLike, message: Message
) -> AccessDecision:
    channel = message.channel
    is_dm = bool(channel and channel.is_dm)

    if user.is_admin:
        if message.user_id != user.id:
            action = AuditAction.ACCESS_USER_MESSAGE
        elif is_dm:
            action = AuditAction.ACCESS_DM_CHANNEL
        else:
            return ALLOW
        return AccessDecision(
            allowed=True,
            audit_action=action,
            resource_type="message",
            resource_id=str(message.id),
            accessed_user_id=message.user_id if message.user_id != user.id else None,
        )

    if message.user_id == user.id:
        return ALLOW

    if is_dm:
        if is_active_participant(session, user.id, message.channel_id):
            return ALLOW
        return AccessDecision.deny(DM_DENIED)

    return AccessDecision.deny(MESSAGE_DENIED)


def check_channel_access(
    session: Session | scoped_session[Session], user: UserLike, channel: Channel
) -> AccessDecision:
    if user.is_admin:
        if channel.is_dm:
            return AccessDecision(
                allowed=True,
                audit_action=AuditAction.ACCESS_DM_CHANNEL,
                resource_type="channel",
                resource_id=channel.id,
            )
        return ALLOW

    if channel.is_dm:
        if is_active_participant(session, user.id, channel.id):
            return ALLOW
        return AccessDecision.deny(DM_DENIED)

    if not channel.requires_membership:
        return ALLOW

    if is_active_participant(session, user.id, channel.id):
        return ALLOW
    return AccessDecision.deny(CHANNEL_DENIED)


def check_user_data_access(user: UserLike, target_user_id: str) -> AccessDecision:
    if user.id == target_user_id:
        return ALLOW
    if user.is_admin:
        return AccessDecision(
            allowed=True,
            audit_action=AuditAction.ACCESS_USER_DATA,
            resource_type="user",
            resource_id=target_user_id,
            accessed_user_id=target_user_id,
        )
    return AccessDecision.deny(USER_DATA_DENIED)


def visible_messages_query(
    session: Session | scoped_session[Session], user: UserLike, channel: Channel
) -> Query[Message]:
    """Messages in a channel the user may read, under the message rules."""
    query = session.query(Message).filter(Message.channel_id == channel.id)
    if user.is_admin:
        return query
    if channel.is_dm and is_active_participant(session, user.id, channel.id):
        return query
    return query.filter(Message.user_id == user.id)


def readable_messages_query(
    session: Session | scoped_session[Session], user: UserLike
) -> Query[Message]:
    """Messages across all channels that `check_message_access` would let the user read.

    Non-admins get their own messages plus everything in the DMs they
    actively participate in.
    """
    query = session.query(Message)
    if user.is_admin:
        return query

    participating_dms = select(Channel.id).where(
        Channel.is_dm.is_(True), active_membership_clause(user.id)
    )
    return query.filter(
        or_(Message.user_id == user.id, Message.channel_id.in_(participating_dms))
    )


def check_message_search(user: UserLike, author_id: str | None = None) -> AccessDecision:
    """Admin searches range over everyone's messages, so each one is audited."""
    if not user.is_admin:
        return ALLOW
    return AccessDecision(
        allowed=True,
        audit_action=AuditAction.ACCESS_USER_MESSAGE,
        resource_type="message_search",
        accessed_user_id=author_id if author_id != user.id else None,
    )
