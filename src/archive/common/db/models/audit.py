"""
Database models for the admin access audit trail.

This module provides:
- AuditLog: one append-only row per admin access to another user's data

Rows are written once and never changed. The ORM refuses to flush updates or
deletes of existing entries.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Annotated, Any, TypedDict

from sqlalchemy import JSON, DateTime, ForeignKey, Index, String, Text, event
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from archive.common.db.models.base import Base, BigIntegerId

if TYPE_CHECKING:
    from archive.common.db.models.users import User


AUDIT_ACTIONS = (
    "access_user_data",
    "access_dm_channel",
    "access_user_message",
)


class AuditLogImmutable(Exception):
    """Raised on an attempt to modify or delete an audit entry."""


class AuditLogPayload(TypedDict):
    id: Annotated[int, "Log entry ID"]
    admin_user_id: Annotated[str, "Admin who performed the access"]
    action: Annotated[str, "access_user_data, access_dm_channel or access_user_message"]
    resource_type: Annotated[str, "Kind of resource accessed"]
    resource_id: Annotated[str | None, "Identifier of the resource accessed"]
    accessed_user_id: Annotated[str | None, "User whose data was accessed"]
    ip_address: Annotated[str | None, "Client address"]
    user_agent: Annotated[str | None, "Client user agent"]
    notes: Annotated[str | None, "Free text shown alongside the entry"]
    justification: Annotated[str | None, "Justification supplied with the request"]
    metadata: Annotated[dict[str, Any], "Request url, method and sanitized headers"]
    created_at: Annotated[str, "ISO timestamp"]


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(BigIntegerId, primary_key=True, autoincrement=True)
    admin_user_id: Mapped[str] = mapped_column(
        Text, ForeignKey("users.id"), nullable=False
    )
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    resource_type: Mapped[str] = mapped_column(String(50), nullable=False)
    resource_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    accessed_user_id: Mapped[str | None] = mapped_column(
        Text, ForeignKey("users.id"), nullable=True
    )
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    justification: Mapped[str | None] = mapped_column(Text, nullable=True)
    request_metadata: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata", JSON, nullable=True
    )
    created_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    admin_user: Mapped[User] = relationship("User", foreign_keys=[admin_user_id])
    accessed_user: Mapped[User | None] = relationship(
        "User", foreign_keys=[accessed_user_id]
    )

    __table_args__ = (
        Index("audit_logs_admin_time_idx", "admin_user_id", "created_at"),
        Index("audit_logs_accessed_time_idx", "accessed_user_id", "created_at"),
        Index("audit_logs_action_time_idx", "action", "created_at"),
        Index("audit_logs_resource_idx", "resource_type", "resource_id"),
    )

    def as_payload(self) -> AuditLogPayload:
        return AuditLogPayload(
            id=self.id,
            admin_user_id=self.admin_user_id,
            action=self.action,
            resource_type=self.resource_type,
            resource_id=self.resource_id,
            accessed_user_id=self.accessed_user_id,
            ip_address=self.ip_address,
            user_agent=self.user_agent,
            notes=self.notes,
            justification=self.justification,
            metadata=self.request_metadata or {},
            created_at=self.created_at.isoformat() if self.created_at else "",
        )

    def __repr__(self) -> str:
        return (
            f"<AuditLog(admin_user_id={self.admin_user_id!r}, action={self.action!r}, "
            f"resource={self.resource_type}:{self.resource_id})>"
        )


@event.listens_for(AuditLog, "before_update")
def reject_audit_update(mapper, connection, target):
    raise AuditLogImmutable(f"Audit log entries cannot be modified (id={target.id})")


@event.listens_for(AuditLog, "before_delete")
def reject_audit_delete(mapper, connection, target):
    raise AuditLogImmutable(f"Audit log entries cannot be deleted (id={target.id})")
