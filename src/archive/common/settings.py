import os
import pathlib
from dotenv import load_dotenv

load_dotenv()


def boolean_env(key: str, default: bool = False) -> bool:
    if key not in os.environ:
        return default
    return os.getenv(key, "0").lower() in ("1", "true", "yes")


# Database settings
DB_USER = os.getenv("DB_USER", "archive")
if password_file := os.getenv("POSTGRES_PASSWORD_FILE"):
    DB_PASSWORD = pathlib.Path(password_file).read_text().strip()
else:
    DB_PASSWORD = os.getenv("DB_PASSWORD", "archive")

DB_HOST = os.getenv("DB_HOST", "postgres")
DB_PORT = os.getenv("DB_PORT", "5432")
DB_NAME = os.getenv("DB_NAME", "archive")


def make_db_url(
    user=DB_USER, password=DB_PASSWORD, host=DB_HOST, port=DB_PORT, db=DB_NAME
):
    return f"postgresql://{user}:{password}@{host}:{port}/{db}"


DB_URL = os.getenv("DATABASE_URL", make_db_url())
DB_POOL_RECYCLE = int(os.getenv("DB_POOL_RECYCLE", 3600))


# Broker settings
CELERY_QUEUE_PREFIX = os.getenv("CELERY_QUEUE_PREFIX", "archive")
CELERY_BROKER_TYPE = os.getenv("CELERY_BROKER_TYPE", "amqp").lower()  # amqp or redis
CELERY_BROKER_USER = os.getenv("CELERY_BROKER_USER", "archive")
CELERY_BROKER_PASSWORD = os.getenv("CELERY_BROKER_PASSWORD", "archive")

CELERY_BROKER_HOST = os.getenv("CELERY_BROKER_HOST", "")
if not CELERY_BROKER_HOST and CELERY_BROKER_TYPE == "amqp":
    RABBITMQ_HOST = os.getenv("RABBITMQ_HOST", "rabbitmq")
    RABBITMQ_PORT = os.getenv("RABBITMQ_PORT", "5672")
    CELERY_BROKER_HOST = f"{RABBITMQ_HOST}:{RABBITMQ_PORT}//"

CELERY_RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND", f"db+{DB_URL}")


# Redis (rate-limit counters and sync locks)
REDIS_HOST = os.getenv("REDIS_HOST", "redis")
REDIS_PORT = os.getenv("REDIS_PORT", "6379")
REDIS_DB = os.getenv("REDIS_DB", "0")
REDIS_KEY_PREFIX = os.getenv("REDIS_KEY_PREFIX", "archive")


# Token encryption
SECRETS_ENCRYPTION_KEY = os.getenv("SECRETS_ENCRYPTION_KEY", "")
SECRETS_ENCRYPTION_SALT = os.getenv(
    "SECRETS_ENCRYPTION_SALT", "archive-slack-tokens"
).encode()


# Slack API settings
SLACK_API_BASE = os.getenv("SLACK_API_BASE", "https://slack.com/api/")
SLACK_TIMEOUT = float(os.getenv("SLACK_TIMEOUT", 30))
# conversations.history accepts at most 200 messages per page
SLACK_PAGE_SIZE = int(os.getenv("SLACK_PAGE_SIZE", 200))
# Pause between consecutive Slack calls (pages and channels), in seconds
SLACK_REQUEST_DELAY = float(os.getenv("SLACK_REQUEST_DELAY", 1))
SLACK_MAX_RATE_LIMIT_RETRIES = int(os.getenv("SLACK_MAX_RATE_LIMIT_RETRIES", 3))


# Worker settings
# Intervals are in seconds
SLACK_SYNC_INTERVAL = int(os.getenv("SLACK_SYNC_INTERVAL", 10 * 60))
SLACK_DIRECTORY_SYNC_INTERVAL = int(
    os.getenv("SLACK_DIRECTORY_SYNC_INTERVAL", 60 * 60)
)
SYNC_LOCK_TIMEOUT = int(os.getenv("SYNC_LOCK_TIMEOUT", 30 * 60))


# API settings
SERVER_URL = os.getenv("SERVER_URL", "http://localhost:8000")
RATE_LIMIT_REQUESTS = int(os.getenv("RATE_LIMIT_REQUESTS", 5))
RATE_LIMIT_WINDOW = int(os.getenv("RATE_LIMIT_WINDOW", 60))
# "redis" or "memory"
RATE_LIMIT_BACKEND = os.getenv("RATE_LIMIT_BACKEND", "redis").lower()
ACCESS_JUSTIFICATION_HEADER = os.getenv(
    "ACCESS_JUSTIFICATION_HEADER", "X-Access-Justification"
)
DEFAULT_ACCESS_JUSTIFICATION = (
    "Admin accessed user data without explicit justification"
)
AUDIT_LOG_PAGE_SIZE = int(os.getenv("AUDIT_LOG_PAGE_SIZE", 50))
