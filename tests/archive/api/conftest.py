"""Shared fixtures for API tests."""

import pytest
from fastapi.testclient import TestClient

from archive.api.access import get_rate_limiter
from archive.api.app import app
from archive.common.db.connection import get_session
from archive.common.db.models import Message
from archive.common.kv import InMemoryCounterStore
from archive.common.rate_limit import RateLimiter


@pytest.fixture
def rate_limiter():
    return RateLimiter(InMemoryCounterStore(), limit=5, window=60)


@pytest.fixture
def client(db_session, rate_limiter):
    """Test client reading and writing through the test session."""

    def get_test_session():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_session] = get_test_session
    app.dependency_overrides[get_rate_limiter] = lambda: rate_limiter
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
    app.dependency_overrides.pop(get_session, None)
    app.dependency_overrides.pop(get_rate_limiter, None)


@pytest.fixture
def auth(db_session):
    """Issue a fresh API token for a user and return request headers using it."""

    def headers(user, **extra) -> dict[str, str]:
        token = user.generate_api_token()
        db_session.commit()
        return {"Authorization": f"Bearer {token}", **extra}

    return headers


@pytest.fixture
def add_message(db_session):
    def factory(channel, author, ts: str, text: str | None = None) -> Message:
        message = Message(
            workspace_id=channel.workspace_id,
            channel_id=channel.id,
            user_id=author.id,
            message_ts=ts,
            text=text or f"message {ts}",
        )
        db_session.add(message)
        db_session.commit()
        return message

    return factory
