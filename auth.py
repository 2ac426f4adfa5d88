from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from google.auth.transport import requests as google_requests
from google.oauth2 import id_token as google_id_token
from sqlalchemy import select

from cache_layer import cache_get, cache_set
from models import Employee, EmployeeRole, Permission, Role, Session as DbSession
from utils import ROLE_CODES, ApiError, AuthContext, iso_utc_now, new_uuid, normalize_role, parse_datetime_maybe, parse_roles_csv, sha256_hex


PUBLIC_ACTIONS = {
    "LOGIN_EXCHANGE",
    "EMPLOYEE_LOGIN",
    "EXPERTS_LIST",
    "EXPERT_GET",
    "FEATURED_EXPERTS",
    "SKILLS_LIST",
    "SKILLS_CATALOG",
    "COURSES_LIST",
}

_ANY = list(ROLE_CODES)

STATIC_RBAC_PERMISSIONS: dict[str, list[str]] = {
    "LOGIN_EXCHANGE": ["PUBLIC"],
    "EMPLOYEE_LOGIN": ["PUBLIC"],
    "LOGOUT": _ANY,
    "SESSION_VALIDATE": _ANY,
    "GET_ME": _ANY,
    "PASSWORD_CHANGE": _ANY,
    # Nomination gate
    "MY_NOMINATION_GET": _ANY,
    "NOMINATIONS_LIST": ["TEAM_LEADER"],
    "NOMINATION_CREATE": ["TEAM_LEADER"],
    "EMPLOYEE_SEARCH": ["TEAM_LEADER"],
    # Expert profile
    "SME_PROFILE_GET": _ANY,
    "SME_PROFILE_CREATE": _ANY,
    "SME_PROFILE_UPDATE": _ANY,
    "SME_PROFILE_TOGGLE_STATUS": _ANY,
    # Coordinator (department-scoped)
    "DEPARTMENT_SMES_LIST": ["COORDINATOR"],
    "DEPARTMENT_SME_GET": ["COORDINATOR"],
    "COORDINATOR_SET_STATUS": ["COORDINATOR"],
    "SME_PROFILE_DELETE": ["COORDINATOR"],
    # Endorsements
    "ENDORSEMENT_CREATE": _ANY,
    "ENDORSED_SKILLS_GET": _ANY,
    # Courses and enrollment
    "COURSE_CREATE": _ANY,
    "COURSE_LIST_MINE": _ANY,
    "COURSE_DELETE": _ANY,
    "ENROLLMENT_COMPLETE": _ANY,
    "ENROLLMENT_GET": _ANY,
    "ENROLL": _ANY,
    "ENROLLMENT_CANCEL": _ANY,
    "MY_ENROLLMENTS": _ANY,
    # Notifications
    "NOTIFICATIONS_LIST": _ANY,
    "NOTIFICATIONS_MARK_ALL_READ": _ANY,
    "NOTIFICATION_MARK_READ": _ANY,
    "NOTIFICATION_DELETE": _ANY,
    "NOTIFICATIONS_UNREAD_COUNT": _ANY,
    "NOTIFICATION_PREFERENCES_GET": _ANY,
    "NOTIFICATION_PREFERENCES_UPDATE": _ANY,
    # Directory reads
    "EXPERTS_LIST": ["PUBLIC"],
    "EXPERT_GET": ["PUBLIC"],
    "FEATURED_EXPERTS": ["PUBLIC"],
    "SKILLS_LIST": ["PUBLIC"],
    "SKILLS_CATALOG": ["PUBLIC"],
    "COURSES_LIST": ["PUBLIC"],
    "DASHBOARD_STATS": ["MANAGEMENT"],
}

ROLE_DENIED_MESSAGES: dict[str, str] = {
    "NOMINATIONS_LIST": "Only Team Leaders can view nominations",
    "NOMINATION_CREATE": "Only Team Leaders can nominate employees",
    "EMPLOYEE_SEARCH": "Only Team Leaders can search employees for nomination",
    "DEPARTMENT_SMES_LIST": "Only Coordinators can access this resource",
    "DEPARTMENT_SME_GET": "Only Coordinators can manage SMEs",
    "COORDINATOR_SET_STATUS": "Only Coordinators can manage SMEs",
    "SME_PROFILE_DELETE": "Only Coordinators can manage SMEs",
    "DASHBOARD_STATS": "Only Management can access dashboard",
}

# Used as the session's display role when an employee holds several.
_ROLE_PRIORITY = ["MANAGEMENT", "COORDINATOR", "TEAM_LEADER", "EMPLOYEE"]

_RBAC_CACHE_PREFIX = "RBAC:"
_RBAC_ROLES_INDEX_KEY = f"{_RBAC_CACHE_PREFIX}ROLES_INDEX"
_RBAC_RULE_PREFIX = f"{_RBAC_CACHE_PREFIX}RULE:"

_INVALID = AuthContext(valid=False, userId="", email="", role="", expiresAt="")


@dataclass
class Identity:
    employee: Employee
    roles: set[str]

    @property
    def employee_id(self) -> int:
        return int(self.employee.employeeId)

    def has_role(self, role: str) -> bool:
        return normalize_role(role) in self.roles


def is_public_action(action: str) -> bool:
    return str(action or "").upper() in PUBLIC_ACTIONS


def verify_google_id_token(id_token: str, google_client_id: str, allow_test_tokens: bool = False) -> dict[str, Any]:
    if not id_token or not isinstance(id_token, str):
        raise ApiError("BAD_REQUEST", "Missing idToken")

    if allow_test_tokens and id_token.startswith("TEST:"):
        email = id_token.split(":", 1)[1].strip().lower()
        if not email:
            raise ApiError("AUTH_INVALID", "Invalid test token")
        return {"email": email, "fullName": "", "picture": "", "sub": "TEST"}

    if not google_client_id:
        raise ApiError("INTERNAL", "Missing GOOGLE_CLIENT_ID")

    try:
        req = google_requests.Request()
        payload = google_id_token.verify_oauth2_token(id_token, req, audience=google_client_id)
    except ValueError:
        raise ApiError("AUTH_INVALID", "Invalid Google ID token")

    if payload.get("aud") != google_client_id:
        raise ApiError("AUTH_INVALID", "Google token audience mismatch")
    if str(payload.get("email_verified", "")).lower() != "true":
        raise ApiError("AUTH_INVALID", "Google email not verified")

    return {
        "email": str(payload.get("email", "")).lower(),
        "fullName": payload.get("name", "") or "",
        "picture": payload.get("picture", "") or "",
        "sub": payload.get("sub", "") or "",
    }


def load_employee_roles(db, employee_id: int) -> set[str]:
    rows = db.execute(select(EmployeeRole.roleCode).where(EmployeeRole.employeeId == int(employee_id))).scalars().all()
    roles = {normalize_role(r) for r in rows if normalize_role(r)}
    roles.add("EMPLOYEE")
    return roles


def primary_role(roles) -> str:
    for r in _ROLE_PRIORITY:
        if r in roles:
            return r
    return "EMPLOYEE"


def issue_session_token(db, *, employee: Employee, session_ttl_minutes: int) -> dict[str, str]:
    token = "ST-" + new_uuid().replace("-", "") + new_uuid().replace("-", "")
    now = datetime.now(timezone.utc)
    issued_at = iso_utc_now()
    expires_at = (now + timedelta(minutes=session_ttl_minutes)).isoformat(timespec="milliseconds").replace("+00:00", "Z")

    db.add(
        DbSession(
            sessionId="SES-" + new_uuid(),
            tokenHash=sha256_hex(token),
            tokenPrefix=token[:12],
            employeeId=int(employee.employeeId),
            email=str(employee.email or ""),
            authVersion=int(employee.authVersion or 0),
            issuedAt=issued_at,
            expiresAt=expires_at,
            lastSeenAt=issued_at,
            revokedAt="",
            revokedBy="",
        )
    )
    return {"sessionToken": token, "expiresAt": expires_at}


def revoke_session(db, *, session_id: str, revoked_by: str) -> bool:
    ses = db.execute(select(DbSession).where(DbSession.sessionId == str(session_id or ""))).scalar_one_or_none()
    if not ses or ses.revokedAt:
        return False
    ses.revokedAt = iso_utc_now()
    ses.revokedBy = str(revoked_by or "")
    return True


def validate_session_token(db, token: Any) -> AuthContext:
    if not token or not isinstance(token, str):
        return _INVALID

    ses = db.execute(select(DbSession).where(DbSession.tokenHash == sha256_hex(token))).scalar_one_or_none()
    if not ses or ses.revokedAt:
        return _INVALID

    exp_dt = parse_datetime_maybe(ses.expiresAt)
    if exp_dt and exp_dt < datetime.now(timezone.utc):
        return _INVALID

    emp = db.execute(select(Employee).where(Employee.employeeId == int(ses.employeeId))).scalar_one_or_none()
    if not emp:
        return _INVALID
    if not bool(emp.isActive):
        raise ApiError("FORBIDDEN", "Employee account is not active")
    if int(ses.authVersion or 0) != int(emp.authVersion or 0):
        return _INVALID

    # Avoid writing on every request: update lastSeenAt at most once per interval.
    try:
        interval_s = int(str(os.getenv("SESSION_LAST_SEEN_UPDATE_SECONDS", "300") or "300"))
    except ValueError:
        interval_s = 300
    last_dt = parse_datetime_maybe(ses.lastSeenAt)
    if interval_s <= 0 or not last_dt or (datetime.now(timezone.utc) - last_dt).total_seconds() >= interval_s:
        ses.lastSeenAt = iso_utc_now()

    roles = load_employee_roles(db, emp.employeeId)
    return AuthContext(
        valid=True,
        userId=str(emp.employeeId),
        email=str(emp.email or ""),
        role=primary_role(roles),
        expiresAt=str(ses.expiresAt or ""),
        roles=sorted(roles),
        sessionId=str(ses.sessionId),
    )


def resolve_identity(db, auth: Optional[AuthContext]) -> Identity:
    """Maps an authenticated session to its Employee row and role set."""
    if not auth or not auth.valid or not str(auth.userId or "").isdigit():
        raise ApiError("AUTH_INVALID", "Authentication required")

    emp = db.execute(select(Employee).where(Employee.employeeId == int(auth.userId))).scalar_one_or_none()
    if not emp:
        raise ApiError("NOT_FOUND", "Employee record not found")

    roles = set(auth.roles or []) or load_employee_roles(db, emp.employeeId)
    return Identity(employee=emp, roles=roles)


def get_permission_rule(db, perm_type: str, perm_key: str) -> Optional[dict[str, Any]]:
    perm_type_u = str(perm_type or "").upper().strip()
    perm_key_u = str(perm_key or "").upper().strip()
    if not perm_type_u or not perm_key_u:
        return None

    cache_key = f"{_RBAC_RULE_PREFIX}{perm_type_u}:{perm_key_u}"
    cached = cache_get(cache_key)
    if cached is False:
        return None
    if isinstance(cached, dict):
        return cached

    row = (
        db.execute(select(Permission).where(Permission.permType == perm_type_u).where(Permission.permKey == perm_key_u))
        .scalars()
        .first()
    )
    if not row:
        cache_set(cache_key, False)
        return None
    out = {"enabled": bool(row.enabled), "roles": parse_roles_csv(row.rolesCsv or "")}
    cache_set(cache_key, out)
    return out


def _roles_index(db) -> dict[str, str]:
    cached = cache_get(_RBAC_ROLES_INDEX_KEY)
    if isinstance(cached, dict):
        return cached

    rows = db.execute(select(Role)).scalars().all()
    if not rows:
        out = {rc: "ACTIVE" for rc in ROLE_CODES}
    else:
        out = {normalize_role(r.roleCode): str(r.status or "ACTIVE").upper() for r in rows if normalize_role(r.roleCode)}
    cache_set(_RBAC_ROLES_INDEX_KEY, out)
    return out


def active_roles(db, roles) -> set[str]:
    idx = _roles_index(db)
    return {r for r in (roles or []) if idx.get(normalize_role(r)) == "ACTIVE"}


def assert_permission(db, auth: Optional[AuthContext], action: str) -> None:
    action_u = str(action or "").upper().strip()

    allowed_static = STATIC_RBAC_PERMISSIONS.get(action_u)
    rule = get_permission_rule(db, "ACTION", action_u)
    has_dyn = bool(rule and rule.get("enabled") is True)

    if not allowed_static and not has_dyn:
        raise ApiError("BAD_REQUEST", f"Unknown action: {action_u}")

    allowed = (rule.get("roles") or []) if has_dyn else (allowed_static or [])
    if "PUBLIC" in allowed or is_public_action(action_u):
        return

    if not auth or not auth.valid:
        raise ApiError("AUTH_INVALID", "Authentication required")

    held = active_roles(db, auth.roles)
    if not held.intersection(allowed):
        raise ApiError("FORBIDDEN", ROLE_DENIED_MESSAGES.get(action_u) or f"Not allowed for role: {auth.role}")
