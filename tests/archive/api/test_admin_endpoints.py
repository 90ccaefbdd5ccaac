"""Tests for the admin-only sync and audit log endpoints, and the health check."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest

from archive.common.celery_app import (
    SYNC_USER_CHANNELS,
    SYNC_USER_DMS,
    SYNC_WORKSPACE_DIRECTORY,
)


@pytest.fixture
def send_task():
    with patch("archive.api.sync.celery_app.send_task") as mock:
        mock.return_value = MagicMock(id="task-123")
        yield mock


@pytest.mark.parametrize(
    "path, method",
    [
        ("/sync", "post"),
        ("/sync/stats?workspace_id=T0001", "get"),
        ("/audit-logs", "get"),
    ],
)
def test_admin_endpoints_reject_regular_users(client, auth, alice, path, method):
    response = client.request(
        method.upper(), path, headers=auth(alice), json={"workspace_id": "T0001"}
    )

    assert response.status_code == 403
    assert response.json()["detail"] == "Admin access required"


# --- Sync ---


def test_trigger_channel_sync_defaults_to_calling_admin(
    client, auth, send_task, workspace, admin
):
    response = client.post(
        "/sync", json={"workspace_id": workspace.id}, headers=auth(admin)
    )

    assert response.status_code == 200
    assert response.json() == {
        "task_id": "task-123",
        "task": SYNC_USER_CHANNELS,
        "status": "queued",
    }
    send_task.assert_called_once_with(
        SYNC_USER_CHANNELS,
        kwargs={
            "workspace_id": workspace.id,
            "user_id": admin.id,
            "channel_ids": None,
            "full_sync": False,
        },
    )


def test_trigger_selected_channels_for_user(
    client, auth, send_task, workspace, admin, alice
):
    response = client.post(
        "/sync",
        json={
            "workspace_id": workspace.id,
            "user_id": alice.id,
            "channel_ids": ["C_GENERAL"],
            "full_sync": True,
        },
        headers=auth(admin),
    )

    assert response.status_code == 200
    assert send_task.call_args.kwargs["kwargs"] == {
        "workspace_id": workspace.id,
        "user_id": alice.id,
        "channel_ids": ["C_GENERAL"],
        "full_sync": True,
    }


def test_trigger_dm_sync(client, auth, send_task, workspace, admin, alice):
    response = client.post(
        "/sync",
        json={"workspace_id": workspace.id, "user_id": alice.id, "dms_only": True},
        headers=auth(admin),
    )

    assert response.json()["task"] == SYNC_USER_DMS
    send_task.assert_called_once_with(
        SYNC_USER_DMS,
        kwargs={"workspace_id": workspace.id, "user_id": alice.id, "full_sync": False},
    )


def test_trigger_directory_sync(client, auth, send_task, workspace, admin):
    response = client.post(
        "/sync",
        json={"workspace_id": workspace.id, "directory": True},
        headers=auth(admin),
    )

    assert response.json()["task"] == SYNC_WORKSPACE_DIRECTORY
    send_task.assert_called_once_with(
        SYNC_WORKSPACE_DIRECTORY, kwargs={"workspace_id": workspace.id}
    )


@pytest.mark.parametrize(
    "body, detail",
    [
        ({"workspace_id": "T_NOPE"}, "Workspace not found"),
        ({"workspace_id": "T0001", "user_id": "U_NOPE"}, "User not found"),
    ],
)
def test_trigger_sync_unknown_target(client, auth, send_task, workspace, admin, body, detail):
    response = client.post("/sync", json=body, headers=auth(admin))

    assert response.status_code == 404
    assert response.json()["detail"] == detail
    send_task.assert_not_called()


def test_sync_stats(client, db_session, auth, workspace, admin, alice, general, alice_bob_dm):
    general.last_synced_at = datetime.now(timezone.utc)
    db_session.commit()

    response = client.get(
        "/sync/stats",
        params={"workspace_id": workspace.id, "user_id": alice.id},
        headers=auth(admin),
    )

    assert response.status_code == 200
    data = response.json()
    assert data["workspace_id"] == workspace.id
    assert data["user_id"] == alice.id
    assert data["total_channels"] == 2
    assert data["accessible_channels"] == 2
    assert data["dm_channels"] == 1
    assert data["total_messages"] == 0
    assert list(data["last_sync_times"]) == ["general"]


# --- Audit logs ---


def test_audit_logs_list_and_filter(
    client, db_session, auth, admin, alice, bob, general, alice_bob_dm
):
    headers = auth(admin)
    client.get(f"/users/{bob.id}", headers=headers)
    client.get(f"/channels/{alice_bob_dm.id}", headers=headers)
    client.get(f"/users/{alice.id}", headers=headers)

    response = client.get("/audit-logs", headers=headers)

    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 3
    assert data["offset"] == 0
    assert [item["action"] for item in data["items"]] == [
        "access_user_data",
        "access_dm_channel",
        "access_user_data",
    ]
    assert data["items"][0]["accessed_user_id"] == alice.id
    assert data["items"][0]["admin_user_id"] == admin.id
    assert data["items"][0]["created_at"]

    filtered = client.get(
        "/audit-logs",
        params={"action": "access_user_data", "accessed_user_id": bob.id},
        headers=headers,
    ).json()
    assert filtered["total"] == 1
    assert filtered["items"][0]["resource_id"] == bob.id

    by_user = client.get("/audit-logs", params={"user_id": alice.id}, headers=headers)
    assert by_user.json()["total"] == 1

    paged = client.get("/audit-logs", params={"limit": 1, "offset": 2}, headers=headers)
    assert paged.json()["total"] == 3
    assert [i["resource_id"] for i in paged.json()["items"]] == [bob.id]


def test_audit_logs_date_range(client, auth, admin, bob):
    headers = auth(admin)
    client.get(f"/users/{bob.id}", headers=headers)
    tomorrow = (datetime.now(timezone.utc) + timedelta(days=1)).isoformat()

    response = client.get("/audit-logs", params={"since": tomorrow}, headers=headers)

    assert response.status_code == 200
    assert response.json()["total"] == 0


def test_reading_audit_logs_is_not_itself_audited(client, auth, admin):
    headers = auth(admin)
    client.get("/audit-logs", headers=headers)

    assert client.get("/audit-logs", headers=headers).json()["total"] == 0


# --- Health ---


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"database": "healthy", "status": "healthy"}
