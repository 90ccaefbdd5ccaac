"""
Archive user accounts.

Users are keyed by their Slack user id rather than a local surrogate, so a
person who appears in several workspaces is a single row.
"""

from __future__ import annotations

import hashlib
import secrets
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    LargeBinary,
    String,
    Table,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from archive.common.db.models.base import Base
from archive.common.encryption import decrypt_value, encrypt_value

if TYPE_CHECKING:
    from archive.common.db.models.slack import Channel, Workspace


user_workspaces = Table(
    "user_workspaces",
    Base.metadata,
    Column(
        "user_id", Text, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    ),
    Column(
        "workspace_id",
        Text,
        ForeignKey("workspaces.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
)


def hash_api_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def synthesized_email(slack_user_id: str) -> str:
    """Placeholder email for Slack users whose profile has none."""
    return f"{slack_user_id}@slack.local"


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(Text, primary_key=True)  # Slack user_id
    name: Mapped[str] = mapped_column(String, nullable=False)
    email: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    avatar_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_admin: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Archive API token, separate from the Slack OAuth token. Only the hash is kept.
    api_token_hash: Mapped[str | None] = mapped_column(
        String(64), nullable=True, unique=True
    )
    api_token_created_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    api_token_last_used_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Encrypted Slack OAuth tokens
    access_token_encrypted: Mapped[bytes | None] = mapped_column(
        LargeBinary, nullable=True
    )
    refresh_token_encrypted: Mapped[bytes | None] = mapped_column(
        LargeBinary, nullable=True
    )
    token_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_login_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    workspaces: Mapped[list[Workspace]] = relationship(
        "Workspace", secondary=user_workspaces, back_populates="users"
    )
    channels: Mapped[list[Channel]] = relationship(
        "Channel",
        secondary="channel_users",
        back_populates="users",
        viewonly=True,
    )

    @property
    def access_token(self) -> str | None:
        """Decrypt and return the Slack OAuth access token."""
        if self.access_token_encrypted is None:
            return None
        return decrypt_value(self.access_token_encrypted)

    @access_token.setter
    def access_token(self, value: str | None) -> None:
        if value is None:
            self.access_token_encrypted = None
        else:
            self.access_token_encrypted = encrypt_value(value)

    @property
    def refresh_token(self) -> str | None:
        if self.refresh_token_encrypted is None:
            return None
        return decrypt_value(self.refresh_token_encrypted)

    @refresh_token.setter
    def refresh_token(self, value: str | None) -> None:
        if value is None:
            self.refresh_token_encrypted = None
        else:
            self.refresh_token_encrypted = encrypt_value(value)

    def is_token_expired(self) -> bool:
        """Check if the Slack access token has expired."""
        if self.token_expires_at is None:
            return False  # No expiration = valid
        expires = self.token_expires_at
        # Handle naive datetime (assume UTC)
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=timezone.utc)
        return datetime.now(timezone.utc) >= expires

    def generate_api_token(self) -> str:
        """Issue a new archive API token, replacing any previous one.

        Returns the plaintext token; only its hash is stored.
        """
        token = f"arc_{secrets.token_urlsafe(32)}"
        self.api_token_hash = hash_api_token(token)
        self.api_token_created_at = datetime.now(timezone.utc)
        self.api_token_last_used_at = None
        return token

    def revoke_api_token(self) -> None:
        self.api_token_hash = None
        self.api_token_created_at = None
        self.api_token_last_used_at = None

    def serialize(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "avatar_url": self.avatar_url,
            "is_admin": self.is_admin,
            "is_active": self.is_active,
            "last_login_at": self.last_login_at.isoformat()
            if self.last_login_at
            else None,
        }

    def __repr__(self) -> str:
        return f"<User(id={self.id!r}, name={self.name!r}, is_admin={self.is_admin})>"
