"""
Slack history synchronization.

`SlackSyncService` pulls channel history for one acting user in one
workspace and persists what that user is allowed to import:

- pick a credential per channel (the user's token for DMs, else the bot token)
- fetch every page since the newest stored message (or everything, for a
  full sync)
- store new messages, their authors and their files, one savepoint per
  message so a bad message only loses itself
- stamp the channel's `last_synced_at`

Channels are synced one after another with a pause between them, and every
channel ends up as a `ChannelSyncResult` whether it worked or not.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from sqlalchemy import Numeric, cast
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.scoping import scoped_session

from archive.common import settings
from archive.common.access_control import (
    accessible_channels,
    accessible_channels_query,
    can_import_message,
    dm_channels,
)
from archive.common.db.models import (
    Channel,
    ChannelUser,
    Message,
    SlackFile,
    User,
    Workspace,
    synthesized_email,
)
from archive.common.slack import (
    SlackAPIError,
    SlackClient,
    UserLookupFailed,
    fetch_channel_history,
    fetch_user_info,
    get_channel_type,
    iter_channel_members,
    iter_channels,
)

logger = logging.getLogger(__name__)

DBSession = Session | scoped_session[Session]


class NoCredentialAvailable(Exception):
    """Neither a usable user token nor a bot token exists for the channel."""

    def __init__(self, channel_id: str):
        self.channel_id = channel_id
        super().__init__(f"No Slack credential available for channel {channel_id}")


class MessagePersistFailed(Exception):
    """A single message could not be stored."""


class SyncStage(str, Enum):
    DETERMINING_RANGE = "determining-range"
    FETCHING = "fetching"
    PERSISTING = "persisting"
    UPDATING_TIMESTAMP = "updating-timestamp"
    DONE = "done"
    FAILED = "failed"


@dataclass
class ChannelSyncResult:
    success: bool
    channel_id: str
    channel: str | None = None
    messages_fetched: int = 0
    messages_saved: int = 0
    sync_type: str = "incremental"
    stage: SyncStage = SyncStage.DONE
    error: str | None = None
    failed_stage: SyncStage | None = None
    channel_type: str | None = None

    def as_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "success": self.success,
            "channel": self.channel,
            "channel_id": self.channel_id,
            "messages_fetched": self.messages_fetched,
            "messages_saved": self.messages_saved,
            "sync_type": self.sync_type,
        }
        if not self.success:
            result["error"] = self.error
            result["failed_stage"] = (
                self.failed_stage.value if self.failed_stage else None
            )
        if self.channel_type:
            result["channel_type"] = self.channel_type
        return result


def display_name(profile: dict) -> str:
    info = profile.get("profile") or {}
    return (
        profile.get("real_name")
        or info.get("real_name")
        or profile.get("name")
        or "Unknown User"
    )


def upsert_user_from_profile(
    session: DBSession, profile: dict, workspace: Workspace | None = None
) -> User:
    """Create or refresh a User from a Slack `users.info` profile.

    New users are active non-admins. Profiles without an email (bots, some
    guests) get a synthesized `<id>@slack.local` address, as do profiles
    whose email already belongs to a different user.
    """
    user_id = profile["id"]
    info = profile.get("profile") or {}
    email = info.get("email") or synthesized_email(user_id)

    taken = (
        session.query(User.id)
        .filter(User.email == email, User.id != user_id)
        .first()
    )
    if taken:
        logger.warning(f"Email for Slack user {user_id} already used by {taken[0]}")
        email = synthesized_email(user_id)

    user = session.get(User, user_id)
    if user is None:
        user = User(
            id=user_id,
            name=display_name(profile),
            email=email,
            avatar_url=info.get("image_72"),
            is_admin=False,
            is_active=True,
        )
        session.add(user)
        logger.info(f"Created user {user_id} ({user.name})")
    else:
        user.name = display_name(profile)
        user.avatar_url = info.get("image_72") or user.avatar_url
        if info.get("email") and not taken:
            user.email = email

    if workspace is not None and workspace not in user.workspaces:
        user.workspaces.append(workspace)

    session.flush()
    return user


def extract_metadata(raw: dict) -> dict[str, Any]:
    """Pick out the parts of a raw message worth keeping beside the text."""
    metadata: dict[str, Any] = {}
    if files := raw.get("files"):
        metadata["files"] = [
            {
                "id": f.get("id"),
                "name": f.get("name"),
                "mimetype": f.get("mimetype"),
                "size": f.get("size"),
            }
            for f in files
        ]
    for key in ("bot_id", "app_id", "edited", "subtype"):
        if raw.get(key):
            metadata[key] = raw[key]
    return metadata


def extract_thumbnails(file_info: dict) -> dict[str, str]:
    return {
        key: value
        for key, value in file_info.items()
        if key.startswith("thumb_")
        and isinstance(value, str)
        and value.startswith("http")
    }


class SlackSyncService:
    """Syncs Slack history for one acting user within one workspace."""

    def __init__(
        self,
        session: DBSession,
        workspace: Workspace,
        user: User,
        client_factory: Callable[[str], SlackClient] = SlackClient,
        request_delay: float = settings.SLACK_REQUEST_DELAY,
    ):
        self.session = session
        self.workspace = workspace
        self.user = user
        self.client_factory = client_factory
        self.request_delay = request_delay

    # --- Credentials ---

    def user_token(self) -> str | None:
        if self.user.is_token_expired():
            return None
        return self.user.access_token

    def select_token(self, channel: Channel) -> str:
        """DMs are read with the user's own token when it's usable, all else with the bot."""
        if channel.is_dm and (token := self.user_token()):
            return token
        if token := self.workspace.bot_token:
            return token
        raise NoCredentialAvailable(channel.id)

    # --- Users ---

    def get_or_create_user(self, slack_user_id: str) -> User:
        """Find the author and link them to this workspace, or look them up with
        the bot token and create them.

        Raises:
            UserLookupFailed: Slack could not resolve the user
        """
        if user := self.session.get(User, slack_user_id):
            if self.workspace not in user.workspaces:
                user.workspaces.append(self.workspace)
                self.session.flush()
            return user

        bot_token = self.workspace.bot_token
        if not bot_token:
            raise UserLookupFailed(slack_user_id, "no_bot_token")

        with self.client_factory(bot_token) as client:
            profile = fetch_user_info(client, slack_user_id)
        return upsert_user_from_profile(self.session, profile, self.workspace)

    # --- Persistence ---

    def latest_stored_ts(self, channel_id: str) -> str | None:
        return (
            self.session.query(Message.message_ts)
            .filter(Message.channel_id == channel_id)
            .order_by(cast(Message.message_ts, Numeric(20, 6)).desc())
            .limit(1)
            .scalar()
        )

    def process_files(
        self, raw: dict, message_ts: str, channel: Channel, user_id: str | None
    ) -> int:
        """Upsert every file on the message by its Slack file id."""
        processed = 0
        for file_info in raw.get("files") or []:
            slack_file_id = file_info.get("id")
            if not slack_file_id:
                continue

            slack_file = (
                self.session.query(SlackFile)
                .filter(SlackFile.slack_file_id == slack_file_id)
                .first()
            )
            if slack_file is None:
                slack_file = SlackFile(slack_file_id=slack_file_id)
                self.session.add(slack_file)

            mimetype = file_info.get("mimetype")
            slack_file.name = file_info.get("name")
            slack_file.title = file_info.get("title")
            slack_file.mimetype = mimetype
            slack_file.file_type = mimetype.split("/")[0] if mimetype else None
            slack_file.pretty_type = file_info.get("pretty_type")
            slack_file.user_id = user_id
            slack_file.channel_id = channel.id
            slack_file.workspace_id = channel.workspace_id
            slack_file.message_id = message_ts
            slack_file.size = int(file_info.get("size") or 0)
            slack_file.url_private = file_info.get("url_private")
            slack_file.url_private_download = file_info.get("url_private_download")
            slack_file.thumbnails = extract_thumbnails(file_info)
            slack_file.permalink = file_info.get("permalink")
            slack_file.permalink_public = file_info.get("permalink_public")
            slack_file.is_external = bool(file_info.get("is_external"))
            slack_file.external_type = file_info.get("external_type")
            slack_file.is_public = bool(file_info.get("is_public"))
            slack_file.file_metadata = file_info
            processed += 1

        if processed:
            self.session.flush()
        return processed

    def persist_message(self, raw: dict, channel: Channel) -> bool:
        """Store one raw message. Returns whether a new row was created."""
        ts = raw.get("ts")
        if not isinstance(ts, str) or not ts:
            raise MessagePersistFailed(f"Message without ts in {channel.id}")

        author_id = raw.get("user")
        if not can_import_message(self.session, self.user, channel, author_id):
            return False

        existing = (
            self.session.query(Message)
            .filter(Message.channel_id == channel.id, Message.message_ts == ts)
            .first()
        )
        if existing:
            self.process_files(raw, ts, channel, existing.user_id)
            return False

        if not author_id:
            logger.debug(f"Skipping message {ts} in {channel.id}: no author")
            return False

        author = self.get_or_create_user(author_id)

        files = raw.get("files") or []
        message = Message(
            workspace_id=channel.workspace_id,
            channel_id=channel.id,
            user_id=author.id,
            message_ts=ts,
            text=raw.get("text") or "",
            thread_ts=raw.get("thread_ts"),
            reply_count=int(raw.get("reply_count") or 0),
            message_type=raw.get("subtype") or "message",
            has_files=bool(files),
            reactions=raw.get("reactions") or [],
            message_metadata=extract_metadata(raw),
        )
        self.session.add(message)
        self.session.flush()

        self.process_files(raw, ts, channel, author.id)
        return True

    def save_messages(self, messages: Iterable[dict], channel: Channel) -> int:
        """Persist a batch of raw messages, returning how many were new.

        A message that can't be stored is logged and skipped; the rest of the
        batch still goes through.
        """
        saved = 0
        for raw in messages:
            ts = raw.get("ts") if isinstance(raw, dict) else None
            try:
                if not isinstance(raw, dict):
                    raise MessagePersistFailed(f"Malformed message in {channel.id}")
                with self.session.begin_nested():
                    if self.persist_message(raw, channel):
                        saved += 1
            except UserLookupFailed as e:
                logger.warning(
                    f"Skipping message {ts} in {channel.id}: "
                    f"could not resolve user {e.user_id} ({e.reason})"
                )
            except (
                MessagePersistFailed,
                SQLAlchemyError,
                SlackAPIError,
                KeyError,
                TypeError,
                ValueError,
                AttributeError,
            ) as e:
                logger.error(f"Failed to save message {ts} in {channel.id}: {e}")
        return saved

    # --- Orchestration ---

    def sync_channel(self, channel: Channel, full_sync: bool = False) -> ChannelSyncResult:
        sync_type = "full" if full_sync else "incremental"
        result = ChannelSyncResult(
            success=False,
            channel_id=channel.id,
            channel=channel.name,
            sync_type=sync_type,
            stage=SyncStage.DETERMINING_RANGE,
        )
        logger.info(f"Syncing channel {channel.name} ({channel.id}), {sync_type}")

        try:
            oldest = None if full_sync else self.latest_stored_ts(channel.id)

            result.stage = SyncStage.FETCHING
            token = self.select_token(channel)
            with self.client_factory(token) as client:
                messages = fetch_channel_history(
                    client, channel.id, oldest=oldest, delay=self.request_delay
                )
            result.messages_fetched = len(messages)

            result.stage = SyncStage.PERSISTING
            result.messages_saved = self.save_messages(messages, channel)

            result.stage = SyncStage.UPDATING_TIMESTAMP
            channel.last_synced_at = datetime.now(timezone.utc)
            self.session.commit()
        except (NoCredentialAvailable, SlackAPIError) as e:
            return self._failed(result, e)
        except Exception as e:
            logger.exception(f"Unexpected error syncing channel {channel.id}: {e}")
            return self._failed(result, e)

        result.stage = SyncStage.DONE
        result.success = True
        logger.info(
            f"Synced {channel.name}: {result.messages_fetched} fetched, "
            f"{result.messages_saved} saved"
        )
        return result

    def _failed(self, result: ChannelSyncResult, error: Exception) -> ChannelSyncResult:
        self.session.rollback()
        logger.error(
            f"Sync of channel {result.channel_id} failed while {result.stage.value}: {error}"
        )
        result.failed_stage = result.stage
        result.stage = SyncStage.FAILED
        result.success = False
        result.error = str(error)
        return result

    def _sync_batch(
        self,
        channels: list[Channel | str],
        full_sync: bool,
        channel_type: str | None = None,
    ) -> list[ChannelSyncResult]:
        results = []
        for i, item in enumerate(channels):
            if i:
                time.sleep(self.request_delay)

            channel = self.session.get(Channel, item) if isinstance(item, str) else item
            if channel is None or channel.workspace_id != self.workspace.id:
                channel_id = item if isinstance(item, str) else item.id
                results.append(
                    ChannelSyncResult(
                        success=False,
                        channel_id=channel_id,
                        sync_type="full" if full_sync else "incremental",
                        stage=SyncStage.FAILED,
                        error="Channel not found",
                        failed_stage=SyncStage.DETERMINING_RANGE,
                    )
                )
                continue

            result = self.sync_channel(channel, full_sync=full_sync)
            result.channel_type = channel_type
            results.append(result)
        return results

    def sync_multiple_channels(
        self, channel_ids: list[str], full_sync: bool = False
    ) -> list[ChannelSyncResult]:
        """Sync the given channels in order. Unknown ids become failed results."""
        return self._sync_batch(list(channel_ids), full_sync)

    def sync_accessible_channels(self, full_sync: bool = False) -> list[ChannelSyncResult]:
        channels = accessible_channels(self.session, self.user, self.workspace.id)
        logger.info(
            f"Syncing {len(channels)} accessible channels for {self.user.id} "
            f"in {self.workspace.id}"
        )
        return self._sync_batch(list(channels), full_sync)

    def sync_dm_channels(self, full_sync: bool = False) -> list[ChannelSyncResult]:
        channels = dm_channels(self.session, self.user, self.workspace.id)
        logger.info(f"Syncing {len(channels)} DM channels for {self.user.id}")
        return self._sync_batch(list(channels), full_sync, channel_type="dm")

    def get_sync_stats(self) -> dict[str, Any]:
        workspace_id = self.workspace.id
        channels = self.session.query(Channel).filter(
            Channel.workspace_id == workspace_id
        )
        messages = self.session.query(Message).filter(
            Message.workspace_id == workspace_id
        )
        recent = (
            channels.filter(Channel.last_synced_at.isnot(None))
            .order_by(Channel.last_synced_at.desc())
            .limit(5)
            .all()
        )
        return {
            "total_channels": channels.count(),
            "accessible_channels": accessible_channels_query(
                self.session, self.user, workspace_id
            ).count(),
            "dm_channels": len(dm_channels(self.session, self.user, workspace_id)),
            "total_messages": messages.count(),
            "user_messages": messages.filter(Message.user_id == self.user.id).count(),
            "last_sync_times": {
                channel.name: channel.last_synced_at.isoformat()
                for channel in recent
                if channel.last_synced_at
            },
        }

    # --- Directory ---

    def sync_channel_directory(self) -> int:
        """Upsert every conversation the bot can see. Returns the number upserted."""
        bot_token = self.workspace.bot_token
        if not bot_token:
            raise NoCredentialAvailable(self.workspace.id)

        synced = 0
        with self.client_factory(bot_token) as client:
            for info in iter_channels(client):
                channel_id = info.get("id")
                if not channel_id:
                    continue

                channel_type = get_channel_type(info)
                channel = self.session.get(Channel, channel_id)
                if channel is None:
                    channel = Channel(id=channel_id, workspace_id=self.workspace.id)
                    self.session.add(channel)

                channel.name = info.get("name") or info.get("user") or channel_id
                channel.is_dm = channel_type == "dm"
                channel.is_mpim = channel_type == "mpim"
                channel.is_private = channel_type != "channel"
                channel.is_archived = bool(info.get("is_archived"))
                if "num_members" in info:
                    channel.member_count = int(info["num_members"] or 0)
                elif channel.is_dm:
                    channel.member_count = 2
                synced += 1

        self.session.commit()
        logger.info(f"Upserted {synced} channels for workspace {self.workspace.id}")
        return synced

    def sync_channel_members(self, channel: Channel) -> dict[str, int]:
        """Reconcile `channel_users` with Slack's member list for the channel.

        New members get a participation row, returning members are
        reactivated, and members Slack no longer lists get `left_at` set.
        """
        bot_token = self.workspace.bot_token
        if not bot_token:
            raise NoCredentialAvailable(channel.id)

        with self.client_factory(bot_token) as client:
            member_ids = list(dict.fromkeys(iter_channel_members(client, channel.id)))

        now = datetime.now(timezone.utc)
        rows = {
            row.user_id: row
            for row in self.session.query(ChannelUser).filter(
                ChannelUser.channel_id == channel.id
            )
        }

        added = 0
        for member_id in member_ids:
            row = rows.get(member_id)
            if row is not None:
                if row.left_at is not None:
                    row.left_at = None
                    row.joined_at = now
                    added += 1
                continue

            try:
                self.get_or_create_user(member_id)
            except UserLookupFailed as e:
                logger.warning(
                    f"Skipping member {member_id} of {channel.id}: {e.reason}"
                )
                continue
            self.session.add(
                ChannelUser(channel_id=channel.id, user_id=member_id, joined_at=now)
            )
            added += 1

        current = set(member_ids)
        removed = 0
        for user_id, row in rows.items():
            if user_id not in current and row.left_at is None:
                row.left_at = now
                removed += 1

        channel.member_count = len(member_ids)
        self.session.commit()
        return {"members": len(member_ids), "added": added, "removed": removed}

    def sync_directory(self) -> dict[str, Any]:
        """Refresh the channel list and the membership of every live channel."""
        channels_synced = self.sync_channel_directory()
        channels = (
            self.session.query(Channel)
            .filter(
                Channel.workspace_id == self.workspace.id,
                Channel.is_archived.is_(False),
            )
            .order_by(Channel.id)
            .all()
        )

        updated, failed = 0, 0
        for i, channel in enumerate(channels):
            if i:
                time.sleep(self.request_delay)
            try:
                self.sync_channel_members(channel)
                updated += 1
            except SlackAPIError as e:
                self.session.rollback()
                logger.error(f"Failed to sync members of {channel.id}: {e}")
                failed += 1

        return {
            "channels_synced": channels_synced,
            "memberships_updated": updated,
            "memberships_failed": failed,
        }
