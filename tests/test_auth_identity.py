from __future__ import annotations

from sqlalchemy import select

from db import SessionLocal
from models import AuditLog, Employee
from passwords import hash_password
from support import api, bearer, login, seed_employee


def test_login_exchange_returns_session_and_me(app_client):
    _, client = app_client
    seed_employee("lead@example.com", name="Lena Lead", roles=("TEAM_LEADER",))

    res = api(client, "LOGIN_EXCHANGE", {"idToken": "TEST:Lead@Example.com"})
    body = res.get_json()
    assert res.status_code == 200, body
    me = body["data"]["me"]
    assert body["data"]["sessionToken"].startswith("ST-")
    assert me["name"] == "Lena Lead"
    assert me["isTeamLeader"] is True
    assert me["isSme"] is False
    assert me["role"] == "TEAM_LEADER"
    assert "EMPLOYEE" in me["roles"]


def test_login_unknown_email_is_rejected(app_client):
    _, client = app_client
    res = api(client, "LOGIN_EXCHANGE", {"idToken": "TEST:ghost@example.com"})
    assert res.status_code == 401
    assert res.get_json()["error"]["code"] == "AUTH_INVALID"


def test_inactive_employee_cannot_log_in(app_client):
    _, client = app_client
    seed_employee("gone@example.com", active=False)
    res = api(client, "LOGIN_EXCHANGE", {"idToken": "TEST:gone@example.com"})
    assert res.status_code == 403
    assert res.get_json()["error"]["message"] == "Employee account is not active"


def test_protected_action_requires_session(app_client):
    _, client = app_client
    res = api(client, "GET_ME", {})
    assert res.status_code == 401

    res = client.get("/api/auth/me", headers=bearer("ST-not-a-real-token"))
    assert res.status_code == 401
    assert res.get_json()["error"]["message"] == "Invalid or expired session"


def test_me_via_bearer_header(app_client):
    _, client = app_client
    seed_employee("emp@example.com", name="Eve Employee", department="Sales")
    token = login(client, "emp@example.com")

    res = client.get("/api/auth/me", headers=bearer(token))
    body = res.get_json()
    assert res.status_code == 200
    assert body["data"]["me"]["department"] == "Sales"
    assert res.headers.get("X-Request-ID")


def test_logout_revokes_session(app_client):
    _, client = app_client
    seed_employee("bye@example.com")
    token = login(client, "bye@example.com")

    out = api(client, "LOGOUT", {}, token).get_json()
    assert out["data"]["loggedOut"] is True
    assert api(client, "GET_ME", {}, token).status_code == 401


def test_password_login_and_change_revokes_sessions(app_client):
    _, client = app_client
    seed_employee("pw@example.com", password_hash=hash_password("old-secret-123"))

    bad = api(client, "EMPLOYEE_LOGIN", {"email": "pw@example.com", "password": "wrong"})
    assert bad.status_code == 401

    token = api(client, "EMPLOYEE_LOGIN", {"email": "pw@example.com", "password": "old-secret-123"}).get_json()["data"][
        "sessionToken"
    ]
    changed = api(
        client, "PASSWORD_CHANGE", {"currentPassword": "old-secret-123", "newPassword": "new-secret-456"}, token
    ).get_json()
    assert changed["data"]["requiresReLogin"] is True
    assert api(client, "GET_ME", {}, token).status_code == 401

    again = api(client, "EMPLOYEE_LOGIN", {"email": "pw@example.com", "password": "new-secret-456"})
    assert again.status_code == 200

    with SessionLocal() as db:
        emp = db.execute(select(Employee).where(Employee.email == "pw@example.com")).scalar_one()
    assert emp.passwordHash.startswith("scrypt:")
    assert int(emp.authVersion) == 1


def test_unknown_action_is_bad_request(app_client):
    _, client = app_client
    res = api(client, "DO_SOMETHING_ODD", {})
    assert res.status_code == 400
    assert res.get_json()["error"]["message"] == "Unknown action: DO_SOMETHING_ODD"


def test_failed_call_writes_error_audit(app_client):
    _, client = app_client
    api(client, "LOGIN_EXCHANGE", {"idToken": "TEST:nobody@example.com"})

    with SessionLocal() as db:
        rows = db.execute(select(AuditLog).where(AuditLog.stageTag == "API_ERROR")).scalars().all()
    assert len(rows) == 1
    assert rows[0].action == "LOGIN_EXCHANGE"
    assert rows[0].remark.startswith("AUTH_INVALID")


def test_unknown_endpoint_is_json_404(app_client):
    _, client = app_client
    res = client.get("/api/definitely-missing")
    assert res.status_code == 404
    assert res.get_json()["ok"] is False


def test_login_rate_limit(app_client):
    app, client = app_client
    app.config["CFG"].RATE_LIMIT_LOGIN = "2/60"
    seed_employee("busy@example.com")

    assert api(client, "LOGIN_EXCHANGE", {"idToken": "TEST:busy@example.com"}).status_code == 200
    assert api(client, "LOGIN_EXCHANGE", {"idToken": "TEST:busy@example.com"}).status_code == 200
    res = api(client, "LOGIN_EXCHANGE", {"idToken": "TEST:busy@example.com"})
    assert res.status_code == 429
    assert res.get_json()["error"]["code"] == "RATE_LIMITED"


def test_call_audit_redacts_secrets(app_client):
    _, client = app_client
    seed_employee("audit@example.com", password_hash=hash_password("audit-pass-123"))
    api(client, "EMPLOYEE_LOGIN", {"email": "audit@example.com", "password": "audit-pass-123"})

    with SessionLocal() as db:
        row = db.execute(
            select(AuditLog).where(AuditLog.stageTag == "API_CALL").where(AuditLog.action == "EMPLOYEE_LOGIN")
        ).scalar_one()
    assert "audit-pass-123" not in row.metaJson
    assert '"password": "***"' in row.metaJson
