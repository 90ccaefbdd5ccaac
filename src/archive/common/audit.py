"""
Audit trail for admin access to other users' data.

`log_admin_access` appends one `AuditLog` row and flushes it straight away,
so a failed write surfaces before the data is handed out.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError

from archive.common import settings
from archive.common.db.models import AuditLog

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from sqlalchemy.orm.scoping import scoped_session

    from archive.common.access_control import UserLike

logger = logging.getLogger(__name__)

SENSITIVE_HEADERS = frozenset(
    {"authorization", "cookie", "x-csrf-token", "x-xsrf-token"}
)


class AuditWriteFailed(Exception):
    """The audit row could not be written, so the access must not proceed."""


@dataclass
class RequestContext:
    """The parts of an HTTP request that go into an audit entry."""

    ip_address: str | None = None
    user_agent: str | None = None
    url: str | None = None
    method: str | None = None
    headers: dict[str, str] = field(default_factory=dict)

    def header(self, name: str) -> str | None:
        name = name.lower()
        for key, value in self.headers.items():
            if key.lower() == name:
                return value
        return None


def sanitize_headers(headers: dict[str, str]) -> dict[str, str]:
    """Drop credentials and CSRF tokens, case-insensitively."""
    return {k: v for k, v in headers.items() if k.lower() not in SENSITIVE_HEADERS}


def request_metadata(context: RequestContext) -> dict[str, Any]:
    return {
        "url": context.url,
        "method": context.method,
        "headers": sanitize_headers(context.headers),
    }


def log_admin_access(
    session: Session | scoped_session[Session],
    admin: UserLike,
    action: str,
    resource_type: str,
    resource_id: str | int | None,
    context: RequestContext,
    accessed_user_id: str | None = None,
    notes: str | None = None,
    justification: str | None = None,
) -> AuditLog:
    """
    Record an admin's access to another user's data.

    Args:
        session: Database session
        admin: The admin performing the access
        action: access_user_data, access_dm_channel or access_user_message
        resource_type: Kind of resource accessed (user, channel, message)
        resource_id: Identifier of the accessed resource
        context: Request details (ip, user agent, url, method, headers)
        accessed_user_id: Whose data was accessed, if known
        notes: Text shown with the entry
        justification: Justification supplied by the admin, if any

    Returns:
        The flushed AuditLog entry

    Raises:
        AuditWriteFailed: the row could not be written
    """
    action = getattr(action, "value", action)
    entry = AuditLog(
        admin_user_id=admin.id,
        action=action,
        resource_type=resource_type,
        resource_id=str(resource_id) if resource_id is not None else None,
        accessed_user_id=accessed_user_id,
        ip_address=context.ip_address,
        user_agent=context.user_agent,
        notes=notes,
        justification=justification,
        request_metadata=request_metadata(context),
    )
    try:
        session.add(entry)
        session.flush()
    except SQLAlchemyError as e:
        logger.error(
            f"Failed to write audit log for {admin.id} {action} "
            f"{resource_type}:{resource_id}: {e}"
        )
        raise AuditWriteFailed(str(e)) from e

    logger.info(
        f"Admin {admin.id} {action} {resource_type}:{resource_id}"
        + (f" (user {accessed_user_id})" if accessed_user_id else "")
    )
    return entry


def query_audit_logs(
    session: Session | scoped_session[Session],
    action: str | None = None,
    resource_type: str | None = None,
    admin_user_id: str | None = None,
    accessed_user_id: str | None = None,
    user_id: str | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
    limit: int = settings.AUDIT_LOG_PAGE_SIZE,
    offset: int = 0,
) -> tuple[list[AuditLog], int]:
    """List audit entries, newest first.

    `user_id` matches entries where the user was either the admin or the
    accessed user.

    Returns:
        The requested page and the total number of matching entries
    """
    query = session.query(AuditLog)
    if action:
        query = query.filter(AuditLog.action == action)
    if resource_type:
        query = query.filter(AuditLog.resource_type == resource_type)
    if admin_user_id:
        query = query.filter(AuditLog.admin_user_id == admin_user_id)
    if accessed_user_id:
        query = query.filter(AuditLog.accessed_user_id == accessed_user_id)
    if user_id:
        query = query.filter(
            or_(AuditLog.admin_user_id == user_id, AuditLog.accessed_user_id == user_id)
        )
    if since:
        query = query.filter(AuditLog.created_at >= since)
    if until:
        query = query.filter(AuditLog.created_at <= until)

    total = query.count()
    entries = (
        query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return entries, total
