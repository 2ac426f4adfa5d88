from __future__ import annotations

from db import SessionLocal
from services.notification_dispatcher import create_notification, get_or_create_preferences, notify
from support import api, bearer, login, seed_employee


def _seed_notes(employee_id: int, n: int, type: str = "NOMINATION") -> list[int]:
    ids = []
    with SessionLocal() as db:
        for i in range(n):
            ids.append(
                create_notification(
                    db, employee_id=employee_id, type=type, title=f"Note {i}", message="m", action_url="/x"
                ).notificationId
            )
        db.commit()
    return ids


def test_list_paginates_and_counts_unread(app_client):
    _, client = app_client
    emp_id = seed_employee("reader@example.com")
    _seed_notes(emp_id, 3)
    _seed_notes(emp_id, 2, type="ENDORSEMENT")
    token = login(client, "reader@example.com")

    page = api(client, "NOTIFICATIONS_LIST", {"page": 2, "limit": 2}, token).get_json()["data"]
    assert page["pagination"] == {"page": 2, "limit": 2, "total": 5, "totalPages": 3}
    assert len(page["notifications"]) == 2
    assert page["unreadCount"] == 5

    only = api(client, "NOTIFICATIONS_LIST", {"type": "endorsement"}, token).get_json()["data"]
    assert {n["type"] for n in only["notifications"]} == {"ENDORSEMENT"}

    bad = api(client, "NOTIFICATIONS_LIST", {"type": "SPAM"}, token)
    assert bad.status_code == 400


def test_mark_read_delete_and_ownership(app_client):
    _, client = app_client
    owner_id = seed_employee("owner@example.com")
    seed_employee("snoop@example.com")
    first, second = _seed_notes(owner_id, 2)
    owner = login(client, "owner@example.com")
    snoop = login(client, "snoop@example.com")

    res = client.patch(f"/api/notifications/{first}", headers=bearer(snoop))
    assert res.status_code == 404
    assert res.get_json()["error"]["message"] == "Notification not found"

    read = client.patch(f"/api/notifications/{first}", headers=bearer(owner)).get_json()["data"]
    assert read["isRead"] is True
    assert read["readAt"]

    count = client.get("/api/notifications/unread-count", headers=bearer(owner)).get_json()["data"]
    assert count == {"unreadCount": 1}

    unread = api(client, "NOTIFICATIONS_LIST", {"unreadOnly": "true"}, owner).get_json()["data"]
    assert [n["id"] for n in unread["notifications"]] == [str(second)]

    assert client.delete(f"/api/notifications/{second}", headers=bearer(snoop)).status_code == 404
    gone = client.delete(f"/api/notifications/{second}", headers=bearer(owner)).get_json()["data"]
    assert gone == {"deleted": True, "id": str(second)}


def test_mark_all_read(app_client):
    _, client = app_client
    emp_id = seed_employee("bulk@example.com")
    _seed_notes(emp_id, 4)
    token = login(client, "bulk@example.com")

    out = client.patch("/api/notifications", json={}, headers=bearer(token)).get_json()["data"]
    assert out == {"updatedCount": 4}
    assert api(client, "NOTIFICATIONS_UNREAD_COUNT", {}, token).get_json()["data"]["unreadCount"] == 0


def test_preferences_default_and_update(app_client):
    _, client = app_client
    seed_employee("prefs@example.com")
    token = login(client, "prefs@example.com")

    prefs = api(client, "NOTIFICATION_PREFERENCES_GET", {}, token).get_json()["data"]
    assert prefs["emailEnabled"] is True
    assert prefs["profileChanges"] is True

    bad = api(client, "NOTIFICATION_PREFERENCES_UPDATE", {"emailEnabled": "no"}, token)
    assert bad.status_code == 400
    assert bad.get_json()["error"]["message"] == "emailEnabled must be a boolean"

    updated = client.put(
        "/api/notifications/preferences", json={"emailEnabled": False, "nominations": False}, headers=bearer(token)
    ).get_json()["data"]
    assert updated["emailEnabled"] is False
    assert updated["nominations"] is False
    assert updated["endorsements"] is True


def test_notify_respects_in_app_switch(app_client):
    emp_id = seed_employee("muted@example.com")
    with SessionLocal() as db:
        assert notify(db, employee_id=emp_id, type="PROFILE_ACTIVATED", title="t", message="m") is True
        get_or_create_preferences(db, emp_id).inAppEnabled = False
        assert notify(db, employee_id=emp_id, type="NOMINATION", title="t", message="m") is False
        db.commit()

    _, client = app_client
    token = login(client, "muted@example.com")
    listed = api(client, "NOTIFICATIONS_LIST", {}, token).get_json()["data"]
    assert [n["type"] for n in listed["notifications"]] == ["PROFILE_ACTIVATED"]
