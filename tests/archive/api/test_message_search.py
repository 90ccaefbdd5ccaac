"""Tests for searching messages across channels."""

from datetime import datetime, timezone

from archive.common.access_control import CHANNEL_DENIED, DM_DENIED
from archive.common.db.models import AuditLog, ChannelUser


def search(client, headers, **params):
    response = client.get("/messages", params=params, headers=headers)
    assert response.status_code == 200, response.text
    return response.json()


def test_non_participant_cannot_find_dm_text(
    client, auth, alice, bob, carol, alice_bob_dm, add_message
):
    add_message(alice_bob_dm, bob, "1.0", "the launch codes are 1234")

    assert search(client, auth(carol), search="launch")["total"] == 0

    found = search(client, auth(alice), search="launch")
    assert found["total"] == 1
    assert found["messages"][0]["text"] == "the launch codes are 1234"


def test_non_participant_channel_filter_is_denied(
    client, auth, carol, alice_bob_dm, secret
):
    headers = auth(carol)

    dm = client.get("/messages", params={"channel_id": alice_bob_dm.id}, headers=headers)
    private = client.get("/messages", params={"channel_id": secret.id}, headers=headers)

    assert dm.status_code == 403
    assert dm.json()["detail"] == DM_DENIED
    assert private.status_code == 403
    assert private.json()["detail"] == CHANNEL_DENIED


def test_former_participant_loses_dm_results(
    client, db_session, auth, alice, bob, alice_bob_dm, add_message
):
    add_message(alice_bob_dm, bob, "1.0", "hello alice")
    add_message(alice_bob_dm, alice, "2.0", "hello bob")
    db_session.query(ChannelUser).filter(
        ChannelUser.channel_id == alice_bob_dm.id, ChannelUser.user_id == alice.id
    ).update({"left_at": datetime.now(timezone.utc)})
    db_session.commit()

    data = search(client, auth(alice), search="hello")

    assert [m["user_id"] for m in data["messages"]] == [alice.id]


def test_public_channel_search_shows_only_own_messages(
    client, auth, bob, carol, general, add_message
):
    add_message(general, bob, "1.0", "hello world")
    add_message(general, carol, "2.0", "hello there")

    data = search(client, auth(carol), search="hello")

    assert data["total"] == 1
    assert data["messages"][0]["user_id"] == carol.id


def test_search_matches_author_name(
    client, auth, alice, bob, alice_bob_dm, general, add_message
):
    add_message(alice_bob_dm, bob, "1.0", "ping")
    add_message(alice_bob_dm, alice, "2.0", "pong")

    data = search(client, auth(alice), search="bob")

    assert [m["text"] for m in data["messages"]] == ["ping"]


def test_filters_and_paging(
    client, auth, alice, bob, alice_bob_dm, general, add_message
):
    add_message(general, alice, "1.0", "in general")
    for i in range(2, 6):
        add_message(alice_bob_dm, bob if i % 2 else alice, f"{i}.0")
    headers = auth(alice)

    by_channel = search(client, headers, channel_id=general.id)
    by_author = search(client, headers, user_id=bob.id)
    paged = search(client, headers, channel_id=alice_bob_dm.id, limit=2, offset=1)

    assert [m["text"] for m in by_channel["messages"]] == ["in general"]
    assert [m["ts"] for m in by_author["messages"]] == ["5.0", "3.0"]
    assert paged["total"] == 4
    assert [m["ts"] for m in paged["messages"]] == ["4.0", "3.0"]


def test_like_wildcards_are_literal(client, auth, carol, general, add_message):
    add_message(general, carol, "1.0", "100% done")
    add_message(general, carol, "2.0", "1000 done")

    data = search(client, auth(carol), search="100%")

    assert [m["ts"] for m in data["messages"]] == ["1.0"]


def test_admin_search_sees_everything_and_is_audited(
    client, db_session, auth, admin, bob, carol, general, alice_bob_dm, add_message
):
    add_message(alice_bob_dm, bob, "1.0", "secret plan")
    add_message(general, carol, "2.0", "public plan")

    data = search(client, auth(admin), search="plan", user_id=bob.id)

    assert [m["text"] for m in data["messages"]] == ["secret plan"]
    (entry,) = db_session.query(AuditLog).all()
    assert entry.admin_user_id == admin.id
    assert entry.action == "access_user_message"
    assert entry.resource_type == "message_search"
    assert entry.accessed_user_id == bob.id
    assert "search=plan" in entry.request_metadata["url"]


def test_unknown_channel_filter(client, auth, alice):
    response = client.get("/messages", params={"channel_id": "C_NOPE"}, headers=auth(alice))

    assert response.status_code == 404
    assert response.json()["detail"] == "Channel not found"
