"""Tests for admins activating, deactivating, promoting and demoting accounts."""

import pytest


def test_regular_user_cannot_update_accounts(client, auth, alice, bob):
    response = client.patch(
        f"/users/{bob.id}", json={"is_active": False}, headers=auth(alice)
    )

    assert response.status_code == 403
    assert response.json()["detail"] == "Admin access required"


def test_deactivated_user_is_locked_out(client, db_session, auth, admin, alice):
    alice_headers = auth(alice)

    response = client.patch(
        f"/users/{alice.id}", json={"is_active": False}, headers=auth(admin)
    )

    assert response.status_code == 200
    assert response.json()["is_active"] is False
    assert response.json()["is_admin"] is False
    db_session.refresh(alice)
    assert not alice.is_active

    denied = client.get(f"/users/{alice.id}", headers=alice_headers)
    assert denied.status_code == 403
    assert denied.json()["detail"] == "Access denied: Account is inactive"


def test_reactivated_user_gets_back_in(client, db_session, auth, admin, alice):
    alice.is_active = False
    db_session.commit()

    client.patch(f"/users/{alice.id}", json={"is_active": True}, headers=auth(admin))

    assert client.get(f"/users/{alice.id}", headers=auth(alice)).status_code == 200


def test_promoted_user_skips_rate_limit(client, auth, admin, alice):
    response = client.patch(
        f"/users/{alice.id}", json={"is_admin": True}, headers=auth(admin)
    )
    assert response.json()["is_admin"] is True

    headers = auth(alice)
    codes = {client.get(f"/users/{alice.id}", headers=headers).status_code for _ in range(8)}

    assert codes == {200}


def test_demoting_another_admin(client, db_session, auth, admin, make_user):
    other = make_user("U_ADMIN2", "Other", is_admin=True)

    response = client.patch(
        f"/users/{other.id}", json={"is_admin": False}, headers=auth(admin)
    )

    assert response.status_code == 200
    db_session.refresh(other)
    assert not other.is_admin
    assert other.is_active


def test_fields_left_out_are_unchanged(client, db_session, auth, admin, alice):
    client.patch(f"/users/{alice.id}", json={"is_admin": True}, headers=auth(admin))

    db_session.refresh(alice)
    assert alice.is_active


@pytest.mark.parametrize("body", [{"is_active": False}, {"is_admin": False}])
def test_admin_cannot_demote_or_deactivate_self(client, db_session, auth, admin, body):
    response = client.patch(f"/users/{admin.id}", json=body, headers=auth(admin))

    assert response.status_code == 400
    assert response.json()["detail"] == "Admins cannot deactivate or demote themselves"
    db_session.refresh(admin)
    assert admin.is_admin and admin.is_active


def test_update_missing_user(client, auth, admin):
    response = client.patch("/users/U_NOBODY", json={"is_active": False}, headers=auth(admin))

    assert response.status_code == 404
    assert response.json()["detail"] == "User not found"
