"""
Request-time access gate.

Routes declare the resources they touch by depending on `authorized_message`,
`authorized_channel` or `authorized_user`. Each of these runs, in order:

1. authentication (401)
2. the inactive-account check (403)
3. the per-user rate limit, for non-admins (429)
4. the resource's access check (403 with the denial reason)
5. the audit entry for admin overrides (500 if it can't be written)

and only then hands the loaded resource to the handler.
"""

import logging
from datetime import datetime, timezone

from fastapi import Depends, HTTPException, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session as DBSession

from archive.common import settings
from archive.common.access_control import (
    AccessDecision,
    check_channel_access,
    check_message_access,
    check_user_data_access,
)
from archive.common.audit import AuditWriteFailed, RequestContext, log_admin_access
from archive.common.db.connection import get_session
from archive.common.db.models import Channel, Message, User
from archive.common.db.models.users import hash_api_token
from archive.common.kv import make_counter_store
from archive.common.rate_limit import RateLimiter

logger = logging.getLogger(__name__)

_rate_limiter: RateLimiter | None = None


def get_rate_limiter() -> RateLimiter:
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = RateLimiter(make_counter_store())
    return _rate_limiter


def get_bearer_token(request: Request) -> str | None:
    """Get bearer token from request"""
    bearer_token = request.headers.get("Authorization", "").split(" ")
    if len(bearer_token) != 2 or bearer_token[0].lower() != "bearer":
        return None
    return bearer_token[1] or None


def authenticate_token(token: str, db: DBSession) -> User | None:
    """Find the user owning an API token and mark the token as used."""
    user = db.query(User).filter(User.api_token_hash == hash_api_token(token)).first()
    if not user:
        return None

    user.api_token_last_used_at = datetime.now(timezone.utc)
    db.commit()
    return user


def get_current_user(request: Request, db: DBSession = Depends(get_session)) -> User:
    """FastAPI dependency to get current authenticated user"""
    token = get_bearer_token(request)
    user = authenticate_token(token, db) if token else None
    if not user:
        raise HTTPException(status_code=401, detail="Authentication required")

    return user


def request_context(request: Request) -> RequestContext:
    return RequestContext(
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
        url=str(request.url),
        method=request.method,
        headers=dict(request.headers),
    )


def get_active_user(
    user: User = Depends(get_current_user),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> User:
    if not user.is_active:
        raise HTTPException(status_code=403, detail="Access denied: Account is inactive")

    if not user.is_admin and not limiter.hit(f"user:{user.id}"):
        raise HTTPException(status_code=429, detail="Rate limit exceeded")

    return user


def require_admin(user: User = Depends(get_active_user)) -> User:
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user


def enforce(
    decision: AccessDecision, user: User, request: Request, db: DBSession
) -> None:
    """Raise on denial; write and commit the audit entry an override requires."""
    if not decision.allowed:
        logger.info(f"Denied {user.id} on {request.url.path}: {decision.reason}")
        raise HTTPException(status_code=403, detail=decision.reason)

    if not decision.requires_audit:
        return

    context = request_context(request)
    justification = context.header(settings.ACCESS_JUSTIFICATION_HEADER)
    try:
        log_admin_access(
            db,
            admin=user,
            action=decision.audit_action,
            resource_type=decision.resource_type,
            resource_id=decision.resource_id,
            context=context,
            accessed_user_id=decision.accessed_user_id,
            notes=justification or settings.DEFAULT_ACCESS_JUSTIFICATION,
            justification=justification,
        )
        db.commit()
    except (AuditWriteFailed, SQLAlchemyError) as e:
        db.rollback()
        logger.error(f"Refusing access for {user.id}: audit write failed: {e}")
        raise HTTPException(
            status_code=500, detail="Failed to record access audit"
        ) from e


def authorized_message(
    message_id: int,
    request: Request,
    user: User = Depends(get_active_user),
    db: DBSession = Depends(get_session),
) -> Message:
    message = db.get(Message, message_id)
    if not message:
        raise HTTPException(status_code=404, detail="Message not found")

    enforce(check_message_access(db, user, message), user, request, db)
    return message


def authorized_channel(
    channel_id: str,
    request: Request,
    user: User = Depends(get_active_user),
    db: DBSession = Depends(get_session),
) -> Channel:
    channel = db.get(Channel, channel_id)
    if not channel:
        raise HTTPException(status_code=404, detail="Channel not found")

    enforce(check_channel_access(db, user, channel), user, request, db)
    return channel


def authorized_user(
    user_id: str,
    request: Request,
    user: User = Depends(get_active_user),
    db: DBSession = Depends(get_session),
) -> User:
    decision = check_user_data_access(user, user_id)
    if not decision.allowed:
        enforce(decision, user, request, db)

    target = db.get(User, user_id)
    if not target:
        raise HTTPException(status_code=404, detail="User not found")

    enforce(decision, user, request, db)
    return target
