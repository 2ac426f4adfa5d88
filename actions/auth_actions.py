from __future__ import annotations

from sqlalchemy import func, select, update

from actions.helpers import append_audit, employee_brief
from auth import (
    issue_session_token,
    load_employee_roles,
    primary_role,
    resolve_identity,
    revoke_session,
    verify_google_id_token,
)
from models import Employee, Session as DbSession
from passwords import MAX_PASSWORD_LENGTH, hash_password, verify_password
from services.sme_lifecycle import STATE_NOMINATED, STATE_SME, load_lifecycle
from utils import ApiError, AuthContext, iso_utc_now


def _find_employee_by_email(db, email: str):
    email_lc = str(email or "").strip().lower()
    if not email_lc:
        return None
    return db.execute(select(Employee).where(func.lower(Employee.email) == email_lc)).scalars().first()


def _me(db, emp: Employee, roles: set[str]) -> dict:
    life = load_lifecycle(db, emp.employeeId)
    out = employee_brief(emp)
    out.update(
        {
            "roles": sorted(roles),
            "role": primary_role(roles),
            "isManager": "MANAGEMENT" in roles,
            "isTeamLeader": "TEAM_LEADER" in roles,
            "isCoordinator": "COORDINATOR" in roles,
            "isSme": life.state == STATE_SME,
            "smeId": str(life.profile.smeId) if life.profile else None,
            "needsProfileSetup": life.state == STATE_NOMINATED,
        }
    )
    return out


def _open_session(db, cfg, emp: Employee, *, action: str) -> dict:
    if not bool(emp.isActive):
        raise ApiError("FORBIDDEN", "Employee account is not active")

    roles = load_employee_roles(db, emp.employeeId)
    ses = issue_session_token(db, employee=emp, session_ttl_minutes=cfg.SESSION_TTL_MINUTES)

    append_audit(
        db,
        entityType="AUTH",
        entityId=str(emp.employeeId),
        action=action,
        stageTag="AUTH_LOGIN",
        actor=AuthContext(
            valid=True,
            userId=str(emp.employeeId),
            email=str(emp.email or ""),
            role=primary_role(roles),
            expiresAt=ses["expiresAt"],
            roles=sorted(roles),
        ),
    )

    return {"sessionToken": ses["sessionToken"], "expiresAt": ses["expiresAt"], "me": _me(db, emp, roles)}


def login_exchange(data, auth: AuthContext | None, db, cfg):
    google_user = verify_google_id_token(
        (data or {}).get("idToken"),
        google_client_id=cfg.GOOGLE_CLIENT_ID,
        allow_test_tokens=bool(cfg.AUTH_ALLOW_TEST_TOKENS),
    )

    emp = _find_employee_by_email(db, google_user.get("email") or "")
    if not emp:
        raise ApiError("AUTH_INVALID", "No employee record for this account")

    # Keep the directory photo in sync with the SSO profile when HR has none.
    picture = str(google_user.get("picture") or "").strip()
    if picture and not str(emp.avatarUrl or "").strip():
        emp.avatarUrl = picture
        emp.updatedAt = iso_utc_now()

    return _open_session(db, cfg, emp, action="LOGIN_EXCHANGE")


def employee_login(data, auth: AuthContext | None, db, cfg):
    email = str((data or {}).get("email") or "").strip()
    password = str((data or {}).get("password") or "")
    if not email:
        raise ApiError("BAD_REQUEST", "Missing email")
    if not password:
        raise ApiError("BAD_REQUEST", "Missing password")
    if len(password) > MAX_PASSWORD_LENGTH:
        raise ApiError("BAD_REQUEST", "Password is too long")

    emp = _find_employee_by_email(db, email)
    if not emp or not verify_password(password, str(emp.passwordHash or "")):
        raise ApiError("AUTH_INVALID", "Invalid credentials")

    return _open_session(db, cfg, emp, action="EMPLOYEE_LOGIN")


def logout(data, auth: AuthContext | None, db, cfg):
    if not auth or not auth.valid:
        raise ApiError("AUTH_INVALID", "Invalid or expired session")
    revoked = revoke_session(db, session_id=auth.sessionId, revoked_by=str(auth.userId or ""))
    append_audit(db, entityType="AUTH", entityId=str(auth.userId), action="LOGOUT", stageTag="AUTH_LOGOUT", actor=auth)
    return {"loggedOut": bool(revoked)}


def session_validate(data, auth: AuthContext | None, db, cfg):
    if not auth or not auth.valid:
        raise ApiError("AUTH_INVALID", "Invalid or expired session")
    return {
        "valid": True,
        "expiresAt": auth.expiresAt,
        "me": {"userId": auth.userId, "email": auth.email, "role": auth.role, "roles": list(auth.roles or [])},
    }


def get_me(data, auth: AuthContext | None, db, cfg):
    ident = resolve_identity(db, auth)
    return {"me": _me(db, ident.employee, ident.roles)}


def change_password(data, auth: AuthContext | None, db, cfg):
    ident = resolve_identity(db, auth)

    current_password = str((data or {}).get("currentPassword") or "")
    new_password = str((data or {}).get("newPassword") or "")
    if not new_password:
        raise ApiError("BAD_REQUEST", "Missing newPassword")

    emp = db.execute(
        select(Employee).where(Employee.employeeId == ident.employee_id).with_for_update(of=Employee)
    ).scalar_one()

    # SSO-only accounts may set a first password without the current one.
    if str(emp.passwordHash or "").strip() and not verify_password(current_password, emp.passwordHash):
        raise ApiError("AUTH_INVALID", "Invalid credentials")

    now = iso_utc_now()
    emp.passwordHash = hash_password(new_password)
    emp.authVersion = int(emp.authVersion or 0) + 1
    emp.updatedAt = now

    revoked = db.execute(
        update(DbSession)
        .where(DbSession.employeeId == emp.employeeId)
        .where(DbSession.revokedAt == "")
        .values(revokedAt=now, revokedBy=str(auth.userId or ""))
    ).rowcount

    append_audit(
        db,
        entityType="EMPLOYEE_AUTH",
        entityId=str(emp.employeeId),
        action="PASSWORD_CHANGE",
        actor=auth,
        at=now,
        meta={"revokedSessions": int(revoked or 0)},
    )
    return {"passwordChangedAt": now, "requiresReLogin": True}
