"""Admin endpoint for browsing the access audit trail."""

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from archive.api.access import require_admin
from archive.common import settings
from archive.common.audit import query_audit_logs
from archive.common.db.connection import get_session
from archive.common.db.models import User

router = APIRouter(prefix="/audit-logs", tags=["audit"])


class AuditLogResponse(BaseModel):
    id: int
    admin_user_id: str
    action: str
    resource_type: str
    resource_id: str | None
    accessed_user_id: str | None
    ip_address: str | None
    user_agent: str | None
    notes: str | None
    justification: str | None
    metadata: dict[str, Any]
    created_at: str


class AuditLogListResponse(BaseModel):
    items: list[AuditLogResponse]
    total: int
    limit: int
    offset: int


@router.get("", response_model=AuditLogListResponse)
def list_audit_logs(
    action: str | None = None,
    resource_type: str | None = None,
    admin_user_id: str | None = None,
    accessed_user_id: str | None = None,
    user_id: str | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
    limit: int = Query(default=settings.AUDIT_LOG_PAGE_SIZE, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_session),
):
    entries, total = query_audit_logs(
        db,
        action=action,
        resource_type=resource_type,
        admin_user_id=admin_user_id,
        accessed_user_id=accessed_user_id,
        user_id=user_id,
        since=since,
        until=until,
        limit=limit,
        offset=offset,
    )
    return {
        "items": [entry.as_payload() for entry in entries],
        "total": total,
        "limit": limit,
        "offset": offset,
    }
