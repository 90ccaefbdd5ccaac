"""
Routes for the caller's own identity and archive API token.

The token is shown in plaintext exactly once, in the response that issues it.
Only its SHA-256 hash is stored, so a lost token can't be recovered, only
replaced.
"""

import logging
from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session as DBSession

from archive.api.access import get_active_user, get_current_user
from archive.common.db.connection import get_session
from archive.common.db.models.users import User

logger = logging.getLogger(__name__)


router = APIRouter(prefix="/auth", tags=["auth"])


class TokenStatus(BaseModel):
    has_token: bool
    created_at: datetime | None
    last_used_at: datetime | None


class IssuedToken(BaseModel):
    token: str
    created_at: datetime


@router.get("/me")
def get_me(user: User = Depends(get_current_user)):
    return user.serialize()


@router.get("/token", response_model=TokenStatus)
def show_token(user: User = Depends(get_active_user)):
    return {
        "has_token": user.api_token_hash is not None,
        "created_at": user.api_token_created_at,
        "last_used_at": user.api_token_last_used_at,
    }


@router.post("/token", response_model=IssuedToken)
def regenerate_token(
    user: User = Depends(get_active_user), db: DBSession = Depends(get_session)
):
    """Replace the caller's token. The old one stops working immediately."""
    token = user.generate_api_token()
    db.commit()
    logger.info(f"Issued a new API token for {user.id}")
    return {"token": token, "created_at": user.api_token_created_at}


@router.delete("/token")
def revoke_token(
    user: User = Depends(get_active_user), db: DBSession = Depends(get_session)
):
    user.revoke_api_token()
    db.commit()
    logger.info(f"Revoked the API token of {user.id}")
    return {"status": "revoked"}
