from celery import Celery
from kombu.utils.url import safequote
from archive.common import settings

SLACK_ROOT = "archive.workers.tasks.slack"

SYNC_ALL_WORKSPACES = f"{SLACK_ROOT}.sync_all_workspaces"
SYNC_USER_CHANNELS = f"{SLACK_ROOT}.sync_user_channels"
SYNC_USER_DMS = f"{SLACK_ROOT}.sync_user_dms"
SYNC_WORKSPACE_DIRECTORY = f"{SLACK_ROOT}.sync_workspace_directory"
SYNC_ALL_DIRECTORIES = f"{SLACK_ROOT}.sync_all_directories"


def get_broker_url() -> str:
    protocol = settings.CELERY_BROKER_TYPE
    user = safequote(settings.CELERY_BROKER_USER)
    password = safequote(settings.CELERY_BROKER_PASSWORD or "")
    host = settings.CELERY_BROKER_HOST or f"{settings.REDIS_HOST}:{settings.REDIS_PORT}"

    if password:
        url = f"{protocol}://{user}:{password}@{host}"
    else:
        url = f"{protocol}://{host}"

    if protocol == "redis":
        url += f"/{settings.REDIS_DB}"
    return url


app = Celery(
    "archive",
    broker=get_broker_url(),
    backend=settings.CELERY_RESULT_BACKEND,
)

app.autodiscover_tasks(["archive.workers.tasks"])


app.conf.update(
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    task_time_limit=3600,  # 1 hour hard limit
    task_soft_time_limit=3000,  # 50 minute soft limit
    task_routes={
        f"{SLACK_ROOT}.*": {"queue": f"{settings.CELERY_QUEUE_PREFIX}-slack"},
    },
)
