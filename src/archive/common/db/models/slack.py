"""
Database models for archived Slack data.

This module provides models for:
- Workspace: a Slack team, with its bot credential
- Channel: channels, private channels, DMs and multi-party IMs
- ChannelUser: channel participation, the authoritative membership record
- Message: archived messages, unique per (workspace, ts)
- SlackFile: files attached to messages, unique per Slack file id

Slack's own identifiers (team id, channel id, user id, message ts, file id)
are used as natural keys throughout.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    LargeBinary,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from archive.common.db.models.base import Base, BigIntegerId
from archive.common.db.models.users import user_workspaces
from archive.common.encryption import decrypt_value, encrypt_value

if TYPE_CHECKING:
    from archive.common.db.models.users import User


DOWNLOAD_STATUSES = ("pending", "processing", "completed", "failed")


class Workspace(Base):
    """A Slack workspace (team) being archived."""

    __tablename__ = "workspaces"

    id: Mapped[str] = mapped_column(Text, primary_key=True)  # Slack team_id
    name: Mapped[str] = mapped_column(Text, nullable=False)
    domain: Mapped[str | None] = mapped_column(Text, nullable=True)
    bot_token_encrypted: Mapped[bytes | None] = mapped_column(
        LargeBinary, nullable=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    channels: Mapped[list[Channel]] = relationship(
        "Channel", back_populates="workspace", cascade="all, delete-orphan"
    )
    users: Mapped[list[User]] = relationship(
        "User", secondary=user_workspaces, back_populates="workspaces"
    )

    @property
    def bot_token(self) -> str | None:
        """Decrypt and return the bot token."""
        if self.bot_token_encrypted is None:
            return None
        return decrypt_value(self.bot_token_encrypted)

    @bot_token.setter
    def bot_token(self, value: str | None) -> None:
        if value is None:
            self.bot_token_encrypted = None
        else:
            self.bot_token_encrypted = encrypt_value(value)


class Channel(Base):
    """Slack channel, private channel, DM or MPIM."""

    __tablename__ = "channels"

    id: Mapped[str] = mapped_column(Text, primary_key=True)  # Slack channel_id
    workspace_id: Mapped[str] = mapped_column(
        Text, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    is_private: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_dm: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_mpim: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_archived: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    member_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_synced_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    workspace: Mapped[Workspace] = relationship("Workspace", back_populates="channels")
    memberships: Mapped[list[ChannelUser]] = relationship(
        "ChannelUser", back_populates="channel", cascade="all, delete-orphan"
    )
    users: Mapped[list[User]] = relationship(
        "User",
        secondary="channel_users",
        back_populates="channels",
        viewonly=True,
    )

    __table_args__ = (
        Index("channels_workspace_idx", "workspace_id"),
        Index("channels_dm_idx", "workspace_id", "is_dm"),
    )

    @property
    def channel_type(self) -> str:
        if self.is_dm:
            return "dm"
        if self.is_mpim:
            return "mpim"
        if self.is_private:
            return "private_channel"
        return "channel"

    @property
    def requires_membership(self) -> bool:
        """Whether reading this channel requires an active participation row."""
        return self.is_dm or self.is_mpim or self.is_private

    def serialize(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "workspace_id": self.workspace_id,
            "name": self.name,
            "channel_type": self.channel_type,
            "is_private": self.is_private,
            "is_dm": self.is_dm,
            "is_mpim": self.is_mpim,
            "is_archived": self.is_archived,
            "member_count": self.member_count,
            "last_synced_at": self.last_synced_at.isoformat()
            if self.last_synced_at
            else None,
        }


class ChannelUser(Base):
    """A user's participation in a channel. `left_at` set = no longer a member."""

    __tablename__ = "channel_users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    channel_id: Mapped[str] = mapped_column(
        Text, ForeignKey("channels.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(
        Text, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    is_admin: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    joined_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    left_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    channel: Mapped[Channel] = relationship("Channel", back_populates="memberships")
    user: Mapped[User] = relationship("User")

    __table_args__ = (
        UniqueConstraint("channel_id", "user_id", name="unique_channel_user"),
        Index("channel_users_user_idx", "user_id", "channel_id"),
        Index("channel_users_active_idx", "channel_id", "left_at"),
    )

    @property
    def is_active(self) -> bool:
        return self.left_at is None


class Message(Base):
    """An archived Slack message.

    `message_ts` is Slack's `ts` string: it identifies the message within its
    workspace and orders messages chronologically.
    """

    __tablename__ = "messages"

    id: Mapped[int] = mapped_column(BigIntegerId, primary_key=True, autoincrement=True)
    workspace_id: Mapped[str] = mapped_column(
        Text, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False
    )
    channel_id: Mapped[str] = mapped_column(
        Text, ForeignKey("channels.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(
        Text, ForeignKey("users.id"), nullable=False
    )
    message_ts: Mapped[str] = mapped_column(String(32), nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False, default="")
    thread_ts: Mapped[str | None] = mapped_column(String(32), nullable=True)
    reply_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    message_type: Mapped[str] = mapped_column(
        String(50), default="message", nullable=False
    )
    has_files: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    reactions: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)
    message_metadata: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata", JSON, nullable=True
    )

    created_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    channel: Mapped[Channel] = relationship("Channel")
    workspace: Mapped[Workspace] = relationship("Workspace")
    author: Mapped[User] = relationship("User")
    files: Mapped[list[SlackFile]] = relationship(
        "SlackFile",
        primaryjoin="and_(foreign(SlackFile.message_id) == Message.message_ts, "
        "foreign(SlackFile.workspace_id) == Message.workspace_id)",
        viewonly=True,
        order_by="SlackFile.id",
    )

    __table_args__ = (
        UniqueConstraint("workspace_id", "message_ts", name="unique_message_ts"),
        Index("messages_channel_ts_idx", "channel_id", "message_ts"),
        Index("messages_user_idx", "user_id", "created_at"),
        Index("messages_thread_idx", "thread_ts"),
    )

    def serialize(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "workspace_id": self.workspace_id,
            "channel_id": self.channel_id,
            "user_id": self.user_id,
            "ts": self.message_ts,
            "text": self.text,
            "thread_ts": self.thread_ts,
            "reply_count": self.reply_count,
            "message_type": self.message_type,
            "has_files": self.has_files,
            "reactions": self.reactions or [],
            "metadata": self.message_metadata or {},
            "files": [f.serialize() for f in self.files if f.deleted_at is None],
        }

    def __repr__(self) -> str:
        return f"<Message(channel_id={self.channel_id!r}, ts={self.message_ts!r})>"


class SlackFile(Base):
    """A file shared in Slack, attached to a single message."""

    __tablename__ = "slack_files"

    id: Mapped[int] = mapped_column(BigIntegerId, primary_key=True, autoincrement=True)
    slack_file_id: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    name: Mapped[str | None] = mapped_column(Text, nullable=True)
    title: Mapped[str | None] = mapped_column(Text, nullable=True)
    mimetype: Mapped[str | None] = mapped_column(String(255), nullable=True)
    file_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    pretty_type: Mapped[str | None] = mapped_column(String(100), nullable=True)

    user_id: Mapped[str | None] = mapped_column(
        Text, ForeignKey("users.id"), nullable=True
    )
    channel_id: Mapped[str | None] = mapped_column(
        Text, ForeignKey("channels.id", ondelete="SET NULL"), nullable=True
    )
    workspace_id: Mapped[str | None] = mapped_column(
        Text, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=True
    )
    # The parent message's ts
    message_id: Mapped[str | None] = mapped_column(String(32), nullable=True)

    size: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    url_private: Mapped[str | None] = mapped_column(Text, nullable=True)
    url_private_download: Mapped[str | None] = mapped_column(Text, nullable=True)
    thumbnails: Mapped[dict[str, str] | None] = mapped_column(JSON, nullable=True)
    permalink: Mapped[str | None] = mapped_column(Text, nullable=True)
    permalink_public: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_external: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    external_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    is_public: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    local_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    local_thumbnail_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    download_status: Mapped[str] = mapped_column(
        String(20), default="pending", nullable=False
    )
    file_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    file_metadata: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata", JSON, nullable=True
    )
    deleted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("slack_files_message_idx", "workspace_id", "message_id"),
        Index("slack_files_channel_idx", "channel_id"),
    )

    @property
    def is_image(self) -> bool:
        return (self.mimetype or "").startswith("image/")

    def serialize(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "slack_file_id": self.slack_file_id,
            "name": self.name,
            "title": self.title,
            "mimetype": self.mimetype,
            "file_type": self.file_type,
            "size": self.size,
            "permalink": self.permalink,
            "thumbnails": self.thumbnails or {},
            "download_status": self.download_status,
            "local_path": self.local_path,
        }
