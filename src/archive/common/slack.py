"""Slack Web API client and the read operations the archive needs.

Every call goes through `SlackClient.call`, which retries when Slack answers
`ratelimited`. The helpers below turn raw pages into plain lists/iterators
and raise typed errors the sync engine can attribute to a channel or a user.
"""

import logging
import time
from collections.abc import Iterator
from typing import Any

import httpx

from archive.common import settings

logger = logging.getLogger(__name__)

DEFAULT_RETRY_AFTER = 5  # seconds


class SlackAPIError(Exception):
    """Error from Slack API."""

    def __init__(self, error: str, response: dict | None = None):
        self.error = error
        self.response = response
        super().__init__(f"Slack API error: {error}")


class ChannelFetchFailed(SlackAPIError):
    """Fetching a channel's history failed. No partial pages are returned."""

    def __init__(self, channel_id: str, reason: str, response: dict | None = None):
        self.channel_id = channel_id
        self.reason = reason
        super().__init__(reason, response)


class UserLookupFailed(SlackAPIError):
    def __init__(self, user_id: str, reason: str, response: dict | None = None):
        self.user_id = user_id
        self.reason = reason
        super().__init__(reason, response)


class SlackClient:
    """Synchronous Slack API client."""

    def __init__(
        self,
        access_token: str,
        timeout: float = settings.SLACK_TIMEOUT,
        base_url: str = settings.SLACK_API_BASE,
        max_retries: int = settings.SLACK_MAX_RATE_LIMIT_RETRIES,
        transport: httpx.BaseTransport | None = None,
    ):
        self.access_token = access_token
        self.timeout = timeout
        self.base_url = base_url
        self.max_retries = max_retries
        self.transport = transport
        self._client: httpx.Client | None = None

    def __enter__(self) -> "SlackClient":
        self._client = httpx.Client(
            base_url=self.base_url,
            headers={
                "Authorization": f"Bearer {self.access_token}",
            },
            timeout=self.timeout,
            transport=self.transport,
        )
        return self

    def __exit__(self, *args) -> None:
        if self._client:
            self._client.close()
            self._client = None

    def _post(self, method: str, params: dict[str, Any]) -> httpx.Response:
        assert self._client is not None
        try:
            return self._client.post(method, data=params or None)
        except httpx.HTTPError as e:
            logger.error(f"Slack request {method} failed: {type(e).__name__}: {e}")
            raise SlackAPIError(f"request_failed: {type(e).__name__}") from e

    def call(self, method: str, **kwargs) -> dict:
        """Make a Slack API call with rate limit retry handling."""
        if not self._client:
            raise RuntimeError("SlackClient must be used as context manager")

        for attempt in range(self.max_retries + 1):
            response = self._post(method, kwargs)

            if response.status_code == 429:
                data = {"ok": False, "error": "ratelimited"}
            elif response.status_code >= 400:
                logger.error(f"Slack {method} returned HTTP {response.status_code}")
                raise SlackAPIError(f"http_{response.status_code}")
            else:
                try:
                    data = response.json()
                except ValueError as e:
                    raise SlackAPIError("invalid_response") from e

            if data.get("ok"):
                return data

            error = data.get("error", "unknown_error")

            if error == "ratelimited" and attempt < self.max_retries:
                try:
                    retry_after = int(
                        response.headers.get("Retry-After", DEFAULT_RETRY_AFTER)
                    )
                except (ValueError, TypeError):
                    retry_after = DEFAULT_RETRY_AFTER
                logger.warning(
                    f"Slack rate limited on {method}, waiting {retry_after}s "
                    f"(attempt {attempt + 1}/{self.max_retries})"
                )
                time.sleep(retry_after)
                continue

            logger.error(f"Slack API error in {method}: {error}")
            raise SlackAPIError(error, data)

        # Unreachable, but satisfies type checker
        raise SlackAPIError("ratelimited", {"error": "ratelimited"})


def next_cursor(response: dict) -> str | None:
    return (response.get("response_metadata") or {}).get("next_cursor") or None


def fetch_channel_history(
    client: SlackClient,
    channel_id: str,
    oldest: str | None = None,
    limit: int = settings.SLACK_PAGE_SIZE,
    delay: float = settings.SLACK_REQUEST_DELAY,
) -> list[dict]:
    """Fetch a channel's history, following cursors until Slack has no more pages.

    Args:
        client: SlackClient instance
        channel_id: Channel to fetch
        oldest: Only messages at or after this ts (incremental sync)
        limit: Messages per page
        delay: Seconds to wait before requesting each follow-up page

    Returns:
        All messages, pages concatenated in the order Slack returned them

    Raises:
        ChannelFetchFailed: if any page fails. Pages fetched so far are dropped.
    """
    params: dict[str, Any] = {
        "channel": channel_id,
        "limit": limit,
        "include_all_metadata": "true",
        "inclusive": "true",
    }
    if oldest:
        params["oldest"] = oldest

    messages: list[dict] = []
    cursor = None
    pages = 0
    while True:
        if cursor:
            params["cursor"] = cursor

        try:
            response = client.call("conversations.history", **params)
        except SlackAPIError as e:
            raise ChannelFetchFailed(channel_id, e.error, e.response) from e

        pages += 1
        messages.extend(response.get("messages") or [])

        cursor = next_cursor(response)
        if not cursor:
            break
        time.sleep(delay)

    logger.debug(f"Fetched {len(messages)} messages from {channel_id} in {pages} pages")
    return messages


def fetch_user_info(client: SlackClient, user_id: str) -> dict:
    """Look up a single user's profile via users.info."""
    try:
        response = client.call("users.info", user=user_id)
    except SlackAPIError as e:
        raise UserLookupFailed(user_id, e.error, e.response) from e

    user = response.get("user")
    if not user:
        raise UserLookupFailed(user_id, "missing_user", response)
    return user


def _paginate(
    client: SlackClient,
    method: str,
    response_key: str,
    params: dict[str, Any],
) -> Iterator[Any]:
    """Generic cursor-based pagination for Slack list methods."""
    request_params = dict(params)
    while True:
        response = client.call(method, **request_params)
        yield from response.get(response_key) or []

        cursor = next_cursor(response)
        if not cursor:
            break
        request_params["cursor"] = cursor


def iter_channels(
    client: SlackClient,
    types: str = "public_channel,private_channel,mpim,im",
    limit: int = settings.SLACK_PAGE_SIZE,
) -> Iterator[dict]:
    """Iterate over all conversations visible to the token."""
    yield from _paginate(
        client,
        "conversations.list",
        "channels",
        {"types": types, "limit": limit, "exclude_archived": "false"},
    )


def iter_channel_members(
    client: SlackClient, channel_id: str, limit: int = settings.SLACK_PAGE_SIZE
) -> Iterator[str]:
    """Iterate over the user ids in a conversation."""
    yield from _paginate(
        client,
        "conversations.members",
        "members",
        {"channel": channel_id, "limit": limit},
    )


def get_channel_type(channel: dict) -> str:
    """Determine channel type from Slack API response.

    Returns one of: "dm", "mpim", "private_channel", "channel"
    """
    if channel.get("is_im"):
        return "dm"
    if channel.get("is_mpim"):
        return "mpim"
    if channel.get("is_group") or channel.get("is_private"):
        return "private_channel"
    return "channel"
