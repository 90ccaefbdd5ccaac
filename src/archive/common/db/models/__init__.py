from archive.common.db.models.base import Base
from archive.common.db.models.users import (
    User,
    user_workspaces,
    hash_api_token,
    synthesized_email,
)
from archive.common.db.models.slack import (
    Workspace,
    Channel,
    ChannelUser,
    Message,
    SlackFile,
    DOWNLOAD_STATUSES,
)
from archive.common.db.models.audit import (
    AuditLog,
    AuditLogImmutable,
    AuditLogPayload,
    AUDIT_ACTIONS,
)

__all__ = [
    "Base",
    "User",
    "user_workspaces",
    "hash_api_token",
    "synthesized_email",
    "Workspace",
    "Channel",
    "ChannelUser",
    "Message",
    "SlackFile",
    "DOWNLOAD_STATUSES",
    "AuditLog",
    "AuditLogImmutable",
    "AuditLogPayload",
    "AUDIT_ACTIONS",
]
