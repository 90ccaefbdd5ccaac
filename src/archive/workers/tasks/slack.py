"""
Celery tasks for Slack history and directory syncing.

This module provides tasks for:
- Fanning out syncs for every active workspace (periodic task)
- Syncing one user's accessible channels, or a chosen subset of them
- Syncing one user's DMs with their own token
- Refreshing a workspace's channel list and memberships

Runs for the same user never overlap: each task holds a per-user lock and
reports "skipped" if another run already holds it.
"""

import logging
from typing import Any

from archive.common.celery_app import (
    SYNC_ALL_DIRECTORIES,
    SYNC_ALL_WORKSPACES,
    SYNC_USER_CHANNELS,
    SYNC_USER_DMS,
    SYNC_WORKSPACE_DIRECTORY,
    app,
)
from archive.common.db.connection import make_session
from archive.common.db.models import User, Workspace, user_workspaces
from archive.common.tasks import SyncAlreadyRunning, safe_task_execution, sync_lock
from archive.workers.slack_sync import (
    ChannelSyncResult,
    NoCredentialAvailable,
    SlackSyncService,
)

logger = logging.getLogger(__name__)


def workspace_members(session, workspace_id: str):
    return (
        session.query(User)
        .join(user_workspaces, user_workspaces.c.user_id == User.id)
        .filter(
            user_workspaces.c.workspace_id == workspace_id,
            User.is_active.is_(True),
        )
        .order_by(User.id)
    )


def find_acting_admin(session, workspace_id: str) -> User | None:
    """The admin whose identity workspace-wide syncs run under."""
    return workspace_members(session, workspace_id).filter(User.is_admin.is_(True)).first()


def summarize(results: list[ChannelSyncResult]) -> dict[str, Any]:
    return {
        "channels": len(results),
        "succeeded": sum(1 for r in results if r.success),
        "failed": sum(1 for r in results if not r.success),
        "messages_fetched": sum(r.messages_fetched for r in results),
        "messages_saved": sum(r.messages_saved for r in results),
        "results": [r.as_dict() for r in results],
    }


def load_service(session, workspace_id: str, user_id: str) -> SlackSyncService | str:
    """Build the sync service, or return why it can't run."""
    workspace = session.get(Workspace, workspace_id)
    if not workspace or not workspace.is_active:
        return "Workspace not found"

    user = session.get(User, user_id)
    if not user or not user.is_active:
        return "User not found"

    return SlackSyncService(session, workspace, user)


@app.task(name=SYNC_ALL_WORKSPACES)
@safe_task_execution
def sync_all_workspaces() -> dict[str, Any]:
    """
    Periodic task: for each active workspace, sync channels as its admin and
    DMs for every member with a Slack token.
    """
    logger.info("Starting sync of all Slack workspaces")

    channel_syncs = 0
    dm_syncs = 0
    with make_session() as session:
        workspaces = (
            session.query(Workspace).filter(Workspace.is_active.is_(True)).all()
        )
        for workspace in workspaces:
            admin = find_acting_admin(session, workspace.id)
            if admin:
                app.send_task(SYNC_USER_CHANNELS, args=[workspace.id, admin.id])
                channel_syncs += 1
            else:
                logger.warning(f"No active admin for workspace {workspace.id}")

            for user in workspace_members(session, workspace.id):
                if user.access_token_encrypted and not user.is_token_expired():
                    app.send_task(SYNC_USER_DMS, args=[workspace.id, user.id])
                    dm_syncs += 1

    logger.info(f"Triggered {channel_syncs} channel syncs and {dm_syncs} DM syncs")
    return {
        "status": "completed",
        "workspaces": len(workspaces),
        "channel_syncs_triggered": channel_syncs,
        "dm_syncs_triggered": dm_syncs,
    }


@app.task(name=SYNC_USER_CHANNELS)
@safe_task_execution
def sync_user_channels(
    workspace_id: str,
    user_id: str,
    channel_ids: list[str] | None = None,
    full_sync: bool = False,
) -> dict[str, Any]:
    """
    Sync channels as the given user: the listed ones, or all they can access.
    """
    logger.info(f"Syncing channels for user {user_id} in workspace {workspace_id}")

    try:
        with sync_lock(f"user:{user_id}"):
            with make_session() as session:
                service = load_service(session, workspace_id, user_id)
                if isinstance(service, str):
                    return {"status": "error", "error": service}

                if channel_ids:
                    results = service.sync_multiple_channels(channel_ids, full_sync)
                else:
                    results = service.sync_accessible_channels(full_sync)
                return {"status": "completed", **summarize(results)}
    except SyncAlreadyRunning:
        logger.info(f"Sync already running for user {user_id}, skipping")
        return {"status": "skipped", "reason": "sync_already_running"}


@app.task(name=SYNC_USER_DMS)
@safe_task_execution
def sync_user_dms(
    workspace_id: str, user_id: str, full_sync: bool = False
) -> dict[str, Any]:
    logger.info(f"Syncing DMs for user {user_id} in workspace {workspace_id}")

    try:
        with sync_lock(f"user:{user_id}"):
            with make_session() as session:
                service = load_service(session, workspace_id, user_id)
                if isinstance(service, str):
                    return {"status": "error", "error": service}

                results = service.sync_dm_channels(full_sync)
                return {"status": "completed", **summarize(results)}
    except SyncAlreadyRunning:
        logger.info(f"Sync already running for user {user_id}, skipping")
        return {"status": "skipped", "reason": "sync_already_running"}


@app.task(name=SYNC_WORKSPACE_DIRECTORY)
@safe_task_execution
def sync_workspace_directory(workspace_id: str) -> dict[str, Any]:
    """Refresh the workspace's channels and channel memberships with the bot token."""
    logger.info(f"Syncing directory for workspace {workspace_id}")

    try:
        with sync_lock(f"directory:{workspace_id}"):
            with make_session() as session:
                admin = find_acting_admin(session, workspace_id)
                if not admin:
                    return {"status": "error", "error": "No admin user for workspace"}

                service = load_service(session, workspace_id, admin.id)
                if isinstance(service, str):
                    return {"status": "error", "error": service}

                try:
                    stats = service.sync_directory()
                except NoCredentialAvailable as e:
                    return {"status": "error", "error": str(e)}
                return {"status": "completed", **stats}
    except SyncAlreadyRunning:
        return {"status": "skipped", "reason": "sync_already_running"}


@app.task(name=SYNC_ALL_DIRECTORIES)
@safe_task_execution
def sync_all_directories() -> dict[str, Any]:
    with make_session() as session:
        workspace_ids = [
            workspace_id
            for (workspace_id,) in session.query(Workspace.id).filter(
                Workspace.is_active.is_(True)
            )
        ]

    for workspace_id in workspace_ids:
        app.send_task(SYNC_WORKSPACE_DIRECTORY, args=[workspace_id])

    return {"status": "completed", "workspaces_triggered": len(workspace_ids)}
