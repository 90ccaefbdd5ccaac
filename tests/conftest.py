import json
from collections import defaultdict
from typing import Any, Callable
from unittest.mock import patch
from urllib.parse import parse_qs

import httpx
import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from archive.common import settings
from archive.common.db.models import (
    Base,
    Channel,
    ChannelUser,
    User,
    Workspace,
)
from archive.common.slack import SlackClient


@pytest.fixture
def db_engine():
    """
    In-memory SQLite engine with the full schema.

    pysqlite's own transaction handling breaks SAVEPOINT, so BEGIN is emitted
    explicitly instead.
    """
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(db_engine):
    SessionLocal = sessionmaker(bind=db_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture(autouse=True)
def encryption_key():
    with patch.object(settings, "SECRETS_ENCRYPTION_KEY", "test-encryption-secret"):
        yield


@pytest.fixture(autouse=True)
def mock_sleep():
    with patch("time.sleep") as sleep:
        yield sleep


class FakeSlack:
    """Stand-in for the Slack Web API, served through httpx.MockTransport.

    Responses are queued per method; a queued callable is invoked with the
    request params. Every request is recorded as (method, params, token).
    """

    def __init__(self):
        self.responses: dict[str, list[Any]] = defaultdict(list)
        self.requests: list[tuple[str, dict[str, str], str]] = []

    def add(self, method: str, *responses: Any) -> None:
        self.responses[method].extend(responses)

    def calls(self, method: str) -> list[dict[str, str]]:
        return [params for m, params, _ in self.requests if m == method]

    def tokens(self, method: str) -> list[str]:
        return [token for m, _, token in self.requests if m == method]

    def handler(self, request: httpx.Request) -> httpx.Response:
        method = request.url.path.rsplit("/", 1)[-1]
        params = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
        token = request.headers.get("Authorization", "").removeprefix("Bearer ")
        self.requests.append((method, params, token))

        queue = self.responses.get(method)
        if not queue:
            return httpx.Response(200, json={"ok": False, "error": "unknown_method"})

        response = queue.pop(0) if len(queue) > 1 else queue[0]
        if callable(response):
            response = response(params)
        if isinstance(response, httpx.Response):
            return response
        return httpx.Response(200, content=json.dumps(response).encode())

    def client_factory(self) -> Callable[[str], SlackClient]:
        transport = httpx.MockTransport(self.handler)
        return lambda token: SlackClient(token, transport=transport)


@pytest.fixture
def fake_slack():
    return FakeSlack()


@pytest.fixture
def workspace(db_session):
    workspace = Workspace(id="T0001", name="Acme", domain="acme", is_active=True)
    workspace.bot_token = "xoxb-bot-token"
    db_session.add(workspace)
    db_session.commit()
    return workspace


def _make_user(db_session, user_id: str, name: str, workspace=None, **kwargs) -> User:
    user = User(
        id=user_id,
        name=name,
        email=f"{name.lower()}@example.com",
        is_admin=kwargs.pop("is_admin", False),
        is_active=kwargs.pop("is_active", True),
        **kwargs,
    )
    if workspace is not None:
        user.workspaces.append(workspace)
    db_session.add(user)
    db_session.commit()
    return user


def _make_channel(
    db_session, channel_id: str, workspace, name: str | None = None, **kwargs
) -> Channel:
    channel = Channel(
        id=channel_id, workspace_id=workspace.id, name=name or channel_id, **kwargs
    )
    db_session.add(channel)
    db_session.commit()
    return channel


def _add_member(db_session, channel, user, left_at=None) -> ChannelUser:
    membership = ChannelUser(channel_id=channel.id, user_id=user.id, left_at=left_at)
    db_session.add(membership)
    db_session.commit()
    return membership


@pytest.fixture
def admin(db_session, workspace):
    return _make_user(db_session, "U_ADMIN", "Admin", workspace, is_admin=True)


@pytest.fixture
def alice(db_session, workspace):
    return _make_user(db_session, "U_ALICE", "Alice", workspace)


@pytest.fixture
def bob(db_session, workspace):
    return _make_user(db_session, "U_BOB", "Bob", workspace)


@pytest.fixture
def carol(db_session, workspace):
    return _make_user(db_session, "U_CAROL", "Carol", workspace)


@pytest.fixture
def general(db_session, workspace):
    return _make_channel(db_session, "C_GENERAL", workspace, "general")


@pytest.fixture
def secret(db_session, workspace):
    return _make_channel(db_session, "G_SECRET", workspace, "secret", is_private=True)


@pytest.fixture
def alice_bob_dm(db_session, workspace, alice, bob):
    channel = _make_channel(
        db_session, "D_AB", workspace, "alice-bob", is_dm=True, is_private=True
    )
    _add_member(db_session, channel, alice)
    _add_member(db_session, channel, bob)
    return channel


@pytest.fixture
def make_user(db_session, workspace):
    def factory(user_id: str, name: str, **kwargs) -> User:
        return _make_user(db_session, user_id, name, workspace, **kwargs)

    return factory


@pytest.fixture
def make_channel(db_session, workspace):
    def factory(channel_id: str, name: str | None = None, **kwargs) -> Channel:
        return _make_channel(db_session, channel_id, workspace, name, **kwargs)

    return factory


@pytest.fixture
def add_member(db_session):
    def factory(channel, user, left_at=None) -> ChannelUser:
        return _add_member(db_session, channel, user, left_at)

    return factory
