"""Initial structure

Revision ID: 5c2e9b17d4a0
Revises:
Create Date: 2026-10-18 12:00:00.000000

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "5c2e9b17d4a0"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

BIG_ID = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


def timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
    ]


def upgrade() -> None:
    op.create_table(
        "workspaces",
        sa.Column("id", sa.Text(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("domain", sa.Text(), nullable=True),
        sa.Column("bot_token_encrypted", sa.LargeBinary(), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true(), nullable=False),
        *timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "users",
        sa.Column("id", sa.Text(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("avatar_url", sa.Text(), nullable=True),
        sa.Column("is_admin", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column("api_token_hash", sa.String(64), nullable=True),
        sa.Column("api_token_created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("api_token_last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("access_token_encrypted", sa.LargeBinary(), nullable=True),
        sa.Column("refresh_token_encrypted", sa.LargeBinary(), nullable=True),
        sa.Column("token_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        *timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
        sa.UniqueConstraint("api_token_hash"),
    )

    op.create_table(
        "user_workspaces",
        sa.Column("user_id", sa.Text(), nullable=False),
        sa.Column("workspace_id", sa.Text(), nullable=False),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(
            ["workspace_id"], ["workspaces.id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("user_id", "workspace_id"),
    )

    op.create_table(
        "channels",
        sa.Column("id", sa.Text(), nullable=False),
        sa.Column("workspace_id", sa.Text(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("is_private", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("is_dm", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("is_mpim", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("is_archived", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("member_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=True),
        *timestamps(),
        sa.ForeignKeyConstraint(
            ["workspace_id"], ["workspaces.id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("channels_workspace_idx", "channels", ["workspace_id"])
    op.create_index("channels_dm_idx", "channels", ["workspace_id", "is_dm"])

    op.create_table(
        "channel_users",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("channel_id", sa.Text(), nullable=False),
        sa.Column("user_id", sa.Text(), nullable=False),
        sa.Column("is_admin", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("joined_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("left_at", sa.DateTime(timezone=True), nullable=True),
        *timestamps(),
        sa.ForeignKeyConstraint(["channel_id"], ["channels.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("channel_id", "user_id", name="unique_channel_user"),
    )
    op.create_index("channel_users_user_idx", "channel_users", ["user_id", "channel_id"])
    op.create_index(
        "channel_users_active_idx", "channel_users", ["channel_id", "left_at"]
    )

    op.create_table(
        "messages",
        sa.Column("id", BIG_ID, autoincrement=True, nullable=False),
        sa.Column("workspace_id", sa.Text(), nullable=False),
        sa.Column("channel_id", sa.Text(), nullable=False),
        sa.Column("user_id", sa.Text(), nullable=False),
        sa.Column("message_ts", sa.String(32), nullable=False),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("thread_ts", sa.String(32), nullable=True),
        sa.Column("reply_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column(
            "message_type", sa.String(50), server_default="message", nullable=False
        ),
        sa.Column("has_files", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("reactions", sa.JSON(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        *timestamps(),
        sa.ForeignKeyConstraint(
            ["workspace_id"], ["workspaces.id"], ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(["channel_id"], ["channels.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("workspace_id", "message_ts", name="unique_message_ts"),
    )
    op.create_index(
        "messages_channel_ts_idx", "messages", ["channel_id", "message_ts"]
    )
    op.create_index("messages_user_idx", "messages", ["user_id", "created_at"])
    op.create_index("messages_thread_idx", "messages", ["thread_ts"])

    op.create_table(
        "slack_files",
        sa.Column("id", BIG_ID, autoincrement=True, nullable=False),
        sa.Column("slack_file_id", sa.Text(), nullable=False),
        sa.Column("name", sa.Text(), nullable=True),
        sa.Column("title", sa.Text(), nullable=True),
        sa.Column("mimetype", sa.String(255), nullable=True),
        sa.Column("file_type", sa.String(50), nullable=True),
        sa.Column("pretty_type", sa.String(100), nullable=True),
        sa.Column("user_id", sa.Text(), nullable=True),
        sa.Column("channel_id", sa.Text(), nullable=True),
        sa.Column("workspace_id", sa.Text(), nullable=True),
        sa.Column("message_id", sa.String(32), nullable=True),
        sa.Column("size", sa.BigInteger(), server_default="0", nullable=False),
        sa.Column("url_private", sa.Text(), nullable=True),
        sa.Column("url_private_download", sa.Text(), nullable=True),
        sa.Column("thumbnails", sa.JSON(), nullable=True),
        sa.Column("permalink", sa.Text(), nullable=True),
        sa.Column("permalink_public", sa.Text(), nullable=True),
        sa.Column("is_external", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("external_type", sa.String(50), nullable=True),
        sa.Column("is_public", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("local_path", sa.Text(), nullable=True),
        sa.Column("local_thumbnail_path", sa.Text(), nullable=True),
        sa.Column(
            "download_status", sa.String(20), server_default="pending", nullable=False
        ),
        sa.Column("file_hash", sa.String(64), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        *timestamps(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["channel_id"], ["channels.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(
            ["workspace_id"], ["workspaces.id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("slack_file_id"),
    )
    op.create_index(
        "slack_files_message_idx", "slack_files", ["workspace_id", "message_id"]
    )
    op.create_index("slack_files_channel_idx", "slack_files", ["channel_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", BIG_ID, autoincrement=True, nullable=False),
        sa.Column("admin_user_id", sa.Text(), nullable=False),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("resource_type", sa.String(50), nullable=False),
        sa.Column("resource_id", sa.Text(), nullable=True),
        sa.Column("accessed_user_id", sa.Text(), nullable=True),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("justification", sa.Text(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(["admin_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["accessed_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "audit_logs_admin_time_idx", "audit_logs", ["admin_user_id", "created_at"]
    )
    op.create_index(
        "audit_logs_accessed_time_idx", "audit_logs", ["accessed_user_id", "created_at"]
    )
    op.create_index("audit_logs_action_time_idx", "audit_logs", ["action", "created_at"])
    op.create_index(
        "audit_logs_resource_idx", "audit_logs", ["resource_type", "resource_id"]
    )


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_table("slack_files")
    op.drop_table("messages")
    op.drop_table("channel_users")
    op.drop_table("channels")
    op.drop_table("user_workspaces")
    op.drop_table("users")
    op.drop_table("workspaces")
