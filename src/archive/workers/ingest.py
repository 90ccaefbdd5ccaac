import logging

from archive.common import settings
from archive.common.celery_app import (
    app,
    SYNC_ALL_DIRECTORIES,
    SYNC_ALL_WORKSPACES,
)

logger = logging.getLogger(__name__)


app.conf.beat_schedule = {
    "sync-all-slack-workspaces": {
        "task": SYNC_ALL_WORKSPACES,
        "schedule": settings.SLACK_SYNC_INTERVAL,
    },
    "sync-all-slack-directories": {
        "task": SYNC_ALL_DIRECTORIES,
        "schedule": settings.SLACK_DIRECTORY_SYNC_INTERVAL,
    },
}
