"""Admin endpoints for triggering Slack syncs and inspecting sync state."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from archive.api.access import require_admin
from archive.common.celery_app import (
    SYNC_USER_CHANNELS,
    SYNC_USER_DMS,
    SYNC_WORKSPACE_DIRECTORY,
    app as celery_app,
)
from archive.common.db.connection import get_session
from archive.common.db.models import User, Workspace
from archive.workers.slack_sync import SlackSyncService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sync", tags=["sync"])


class SyncRequest(BaseModel):
    workspace_id: str
    user_id: str | None = None  # defaults to the calling admin
    channel_ids: list[str] | None = None
    full_sync: bool = False
    dms_only: bool = False
    directory: bool = False


class SyncResponse(BaseModel):
    task_id: str
    task: str
    status: str


class SyncStatsResponse(BaseModel):
    workspace_id: str
    user_id: str
    total_channels: int
    accessible_channels: int
    dm_channels: int
    total_messages: int
    user_messages: int
    last_sync_times: dict[str, str]


def get_workspace_or_404(db: Session, workspace_id: str) -> Workspace:
    workspace = db.get(Workspace, workspace_id)
    if not workspace:
        raise HTTPException(status_code=404, detail="Workspace not found")
    return workspace


def get_user_or_404(db: Session, user_id: str) -> User:
    user = db.get(User, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.post("", response_model=SyncResponse)
def trigger_sync(
    data: SyncRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_session),
):
    get_workspace_or_404(db, data.workspace_id)
    user_id = data.user_id or admin.id
    get_user_or_404(db, user_id)

    if data.directory:
        task_name = SYNC_WORKSPACE_DIRECTORY
        kwargs: dict = {"workspace_id": data.workspace_id}
    elif data.dms_only:
        task_name = SYNC_USER_DMS
        kwargs = {
            "workspace_id": data.workspace_id,
            "user_id": user_id,
            "full_sync": data.full_sync,
        }
    else:
        task_name = SYNC_USER_CHANNELS
        kwargs = {
            "workspace_id": data.workspace_id,
            "user_id": user_id,
            "channel_ids": data.channel_ids,
            "full_sync": data.full_sync,
        }

    task = celery_app.send_task(task_name, kwargs=kwargs)
    logger.info(f"Admin {admin.id} queued {task_name} ({task.id}) for {user_id}")
    return {"task_id": str(task.id), "task": task_name, "status": "queued"}


@router.get("/stats", response_model=SyncStatsResponse)
def sync_stats(
    workspace_id: str = Query(...),
    user_id: str | None = Query(default=None),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_session),
):
    workspace = get_workspace_or_404(db, workspace_id)
    user = get_user_or_404(db, user_id) if user_id else admin

    stats = SlackSyncService(db, workspace, user).get_sync_stats()
    return {"workspace_id": workspace.id, "user_id": user.id, **stats}
