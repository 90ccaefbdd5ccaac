import pytest
from sqlalchemy import text

from archive.common import settings
from archive.common.db import connection


@pytest.fixture
def file_db(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "DB_URL", f"sqlite:///{tmp_path / 'archive.db'}")
    monkeypatch.setattr(connection, "_engine", None)
    monkeypatch.setattr(connection, "_session_factory", None)
    with connection.get_engine().begin() as conn:
        conn.execute(text("CREATE TABLE notes (body TEXT)"))
    yield
    connection.get_engine().dispose()


def stored_notes() -> list[str]:
    with connection.get_engine().connect() as conn:
        return [body for (body,) in conn.execute(text("SELECT body FROM notes"))]


def test_engine_and_factory_are_cached(file_db):
    assert connection.get_engine() is connection.get_engine()
    assert connection.get_session_factory() is connection.get_session_factory()


def test_make_session_commits(file_db):
    with connection.make_session() as session:
        session.execute(text("INSERT INTO notes VALUES ('kept')"))

    assert stored_notes() == ["kept"]


def test_make_session_rolls_back_on_error(file_db):
    with pytest.raises(RuntimeError):
        with connection.make_session() as session:
            session.execute(text("INSERT INTO notes VALUES ('lost')"))
            raise RuntimeError("boom")

    assert stored_notes() == []


def test_request_session_is_not_committed_implicitly(file_db):
    sessions = connection.get_session()
    session = next(sessions)
    session.execute(text("INSERT INTO notes VALUES ('draft')"))
    sessions.close()

    assert stored_notes() == []
