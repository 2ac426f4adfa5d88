"""
HTTP surface for the action handlers.

`POST /api` takes `{"action", "data", "token"}`; the REST routes below map
verbs and paths onto the same actions. Both run through `execute_action`,
which owns the unit of work: one session per request, commit on success,
rollback on any error, queued emails delivered only after commit.
"""
from __future__ import annotations

import json
import logging
import os
import re
from typing import Any, Optional

from flask import Blueprint, current_app, g, request
from sqlalchemy.exc import DBAPIError

from actions import dispatch
from auth import assert_permission, is_public_action, validate_session_token
from db import SessionLocal
from models import AuditLog
from services.notification_dispatcher import discard_outbox, flush_outbox
from utils import (
    ApiError,
    AuthContext,
    SimpleRateLimiter,
    err,
    iso_utc_now,
    now_monotonic,
    ok,
    parse_json_body,
    redact_for_audit,
)


log = logging.getLogger("api")

api_bp = Blueprint("api", __name__)

LOGIN_ACTIONS = {"LOGIN_EXCHANGE", "EMPLOYEE_LOGIN"}


def _limiter() -> SimpleRateLimiter:
    return current_app.extensions["rate_limiter"]


def _client_ip() -> str:
    forwarded = str(request.headers.get("X-Forwarded-For") or "").split(",")[0].strip()
    return forwarded or str(request.remote_addr or "")


def _header_token() -> str:
    authz = str(request.headers.get("Authorization") or "").strip()
    if authz.lower().startswith("bearer "):
        return authz.split(" ", 1)[1].strip()
    return str(request.headers.get("X-Session-Token") or "").strip() or str(request.args.get("token") or "").strip()


def _check_rate_limits(cfg, action_u: str) -> None:
    ip = _client_ip()
    if action_u in LOGIN_ACTIONS:
        _limiter().check(f"{ip}:LOGIN", cfg.RATE_LIMIT_LOGIN)
    else:
        _limiter().check(f"{ip}:GLOBAL", cfg.RATE_LIMIT_GLOBAL)
        _limiter().check(f"{ip}:API:{action_u}", cfg.RATE_LIMIT_DEFAULT)


def _resolve_auth(db, action_u: str, token: Any) -> Optional[AuthContext]:
    if is_public_action(action_u):
        # Anonymous reads still see the caller when a token is present.
        if not token:
            return None
        try:
            maybe = validate_session_token(db, token)
        except ApiError:
            return None
        return maybe if maybe.valid else None

    auth_ctx = validate_session_token(db, token)
    if not auth_ctx.valid:
        raise ApiError("AUTH_INVALID", "Invalid or expired session")
    return auth_ctx


def _call_audit(action_u: str, auth_ctx: Optional[AuthContext], data: Any) -> AuditLog:
    return AuditLog(
        logId=f"LOG-{os.urandom(16).hex()}",
        entityType="API",
        entityId=str(auth_ctx.userId or auth_ctx.email or "") if auth_ctx else "PUBLIC",
        action=action_u,
        stageTag="API_CALL",
        actorUserId=str(auth_ctx.userId) if auth_ctx else "PUBLIC",
        actorRole=str(auth_ctx.role) if auth_ctx else "PUBLIC",
        actorEmail=str(auth_ctx.email or "") if auth_ctx else "",
        at=iso_utc_now(),
        correlationId=str(getattr(g, "request_id", "") or ""),
        metaJson=json.dumps({"data": redact_for_audit(data or {})}),
    )


def write_error_audit(action: str, auth_ctx: Optional[AuthContext], data: Any, err_obj: ApiError) -> None:
    """Records a failed call in its own session; the request's session was rolled back."""
    db2 = SessionLocal()
    try:
        db2.add(
            AuditLog(
                logId=f"LOG-{os.urandom(16).hex()}",
                entityType="API",
                entityId=str(auth_ctx.userId or auth_ctx.email or "") if auth_ctx else "PUBLIC",
                action=str(action or "").upper() or "UNKNOWN",
                stageTag="API_ERROR",
                remark=f"{err_obj.code}: {err_obj.message}",
                actorUserId=str(auth_ctx.userId) if auth_ctx else "PUBLIC",
                actorRole=str(auth_ctx.role) if auth_ctx else "PUBLIC",
                actorEmail=str(auth_ctx.email or "") if auth_ctx else "",
                at=iso_utc_now(),
                correlationId=str(getattr(g, "request_id", "") or ""),
                metaJson=json.dumps(
                    {
                        "data": redact_for_audit(data or {}),
                        "error": {"code": err_obj.code, "message": err_obj.message},
                    }
                ),
            )
        )
        db2.commit()
    except Exception:
        db2.rollback()
        log.warning("request_id=%s failed to write error audit", getattr(g, "request_id", ""), exc_info=True)
    finally:
        db2.close()


def _db_error_message(cfg, e: DBAPIError) -> str:
    request_id = str(getattr(g, "request_id", "") or "").strip()
    suffix = f" (requestId: {request_id})" if request_id else ""
    if cfg.IS_PRODUCTION:
        return f"Database error{suffix}"
    orig = re.sub(r"\s+", " ", str(getattr(e, "orig", "") or "")).strip()
    if len(orig) > 300:
        orig = orig[:300] + "..."
    detail = f": {orig}" if orig else ""
    return f"Database error{detail}{suffix}"


def execute_action(action: str, data: Any, token: Any = None):
    cfg = current_app.config["CFG"]
    action_u = str(action or "").upper().strip()
    auth_ctx: Optional[AuthContext] = None
    db = None

    try:
        if not action_u:
            raise ApiError("BAD_REQUEST", "Missing action")
        if not isinstance(data, dict):
            raise ApiError("BAD_REQUEST", "data must be an object")
        _check_rate_limits(cfg, action_u)

        db = SessionLocal()
        auth_ctx = _resolve_auth(db, action_u, token)
        assert_permission(db, auth_ctx, action_u)

        out = dispatch(action_u, data, auth_ctx, db, cfg)

        db.add(_call_audit(action_u, auth_ctx, data))
        db.commit()
        flush_outbox(db, cfg)

        log.info(
            "request_id=%s action=%s user=%s role=%s latency_ms=%s",
            getattr(g, "request_id", ""),
            action_u,
            auth_ctx.userId if auth_ctx else "PUBLIC",
            auth_ctx.role if auth_ctx else "PUBLIC",
            int((now_monotonic() - getattr(g, "start_ts", now_monotonic())) * 1000),
        )
        return ok(out)
    except ApiError as e:
        if db is not None:
            db.rollback()
            discard_outbox(db)
        write_error_audit(action_u, auth_ctx, data, e)
        return err(e.code, e.message, http_status=e.http_status)
    except DBAPIError as e:
        if db is not None:
            db.rollback()
            discard_outbox(db)
        api_err = ApiError("INTERNAL", _db_error_message(cfg, e))
        write_error_audit(action_u, auth_ctx, data, api_err)
        log.exception("request_id=%s action=%s", getattr(g, "request_id", ""), action_u)
        return err(api_err.code, api_err.message, http_status=api_err.http_status)
    except Exception:
        if db is not None:
            db.rollback()
            discard_outbox(db)
        request_id = str(getattr(g, "request_id", "") or "")
        api_err = ApiError("INTERNAL", f"Unexpected error (requestId: {request_id})" if request_id else "Unexpected error")
        write_error_audit(action_u, auth_ctx, data, api_err)
        log.exception("request_id=%s action=%s", request_id, action_u)
        return err(api_err.code, api_err.message, http_status=api_err.http_status)
    finally:
        if db is not None:
            db.close()


@api_bp.post("/api")
def action_api():
    try:
        body = parse_json_body(request.get_data(as_text=True))
    except ApiError as e:
        return err(e.code, e.message, http_status=e.http_status)
    token = body.get("token") or _header_token()
    return execute_action(body.get("action"), body.get("data") or {}, token)


def _rest(action: str, **path_ids):
    """Runs `action` with query args (GET/DELETE) or the JSON body, plus path ids."""
    if request.method in ("GET", "DELETE"):
        data: dict = request.args.to_dict()
        data.pop("token", None)
    else:
        body = request.get_json(silent=True)
        if body is None and request.get_data():
            return err("BAD_REQUEST", "Invalid JSON body", http_status=400)
        data = body if isinstance(body, dict) else {}
        data.pop("token", None)
    data.update(path_ids)
    return execute_action(action, data, _header_token())


# Identity
@api_bp.post("/api/auth/login-exchange")
def rest_login_exchange():
    return _rest("LOGIN_EXCHANGE")


@api_bp.post("/api/auth/login")
def rest_employee_login():
    return _rest("EMPLOYEE_LOGIN")


@api_bp.post("/api/auth/logout")
def rest_logout():
    return _rest("LOGOUT")


@api_bp.get("/api/auth/me")
def rest_me():
    return _rest("GET_ME")


@api_bp.post("/api/auth/password")
def rest_password_change():
    return _rest("PASSWORD_CHANGE")


# Nominations
@api_bp.get("/api/my-nomination")
def rest_my_nomination():
    return _rest("MY_NOMINATION_GET")


@api_bp.route("/api/nominations", methods=["GET", "POST"])
def rest_nominations():
    return _rest("NOMINATIONS_LIST" if request.method == "GET" else "NOMINATION_CREATE")


@api_bp.get("/api/employees")
def rest_employee_search():
    return _rest("EMPLOYEE_SEARCH")


# Expert profile
_PROFILE_ACTIONS = {
    "GET": "SME_PROFILE_GET",
    "POST": "SME_PROFILE_CREATE",
    "PUT": "SME_PROFILE_UPDATE",
    "PATCH": "SME_PROFILE_TOGGLE_STATUS",
}


@api_bp.route("/api/sme-profile", methods=["GET", "POST", "PUT", "PATCH"])
def rest_sme_profile():
    return _rest(_PROFILE_ACTIONS[request.method])


@api_bp.route("/api/sme-profile/courses", methods=["GET", "POST"])
def rest_my_courses():
    return _rest("COURSE_LIST_MINE" if request.method == "GET" else "COURSE_CREATE")


@api_bp.delete("/api/sme-profile/courses/<course_id>")
def rest_course_delete(course_id: str):
    return _rest("COURSE_DELETE", courseId=course_id)


@api_bp.post("/api/sme-profile/courses/<course_id>/enrollments/<enrollment_id>/complete")
def rest_enrollment_complete(course_id: str, enrollment_id: str):
    return _rest("ENROLLMENT_COMPLETE", courseId=course_id, enrollmentId=enrollment_id)


# Endorsements
@api_bp.route("/api/endorsements", methods=["GET", "POST"])
def rest_endorsements():
    return _rest("ENDORSED_SKILLS_GET" if request.method == "GET" else "ENDORSEMENT_CREATE")


# Notifications
@api_bp.route("/api/notifications", methods=["GET", "PATCH"])
def rest_notifications():
    return _rest("NOTIFICATIONS_LIST" if request.method == "GET" else "NOTIFICATIONS_MARK_ALL_READ")


@api_bp.get("/api/notifications/unread-count")
def rest_notifications_unread_count():
    return _rest("NOTIFICATIONS_UNREAD_COUNT")


@api_bp.route("/api/notifications/preferences", methods=["GET", "PUT"])
def rest_notification_preferences():
    return _rest("NOTIFICATION_PREFERENCES_GET" if request.method == "GET" else "NOTIFICATION_PREFERENCES_UPDATE")


@api_bp.route("/api/notifications/<notification_id>", methods=["PATCH", "DELETE"])
def rest_notification(notification_id: str):
    action = "NOTIFICATION_MARK_READ" if request.method == "PATCH" else "NOTIFICATION_DELETE"
    return _rest(action, notificationId=notification_id)


# Courses and enrollment
@api_bp.get("/api/courses")
def rest_courses():
    return _rest("COURSES_LIST")


@api_bp.get("/api/courses/enrollments")
def rest_my_enrollments():
    return _rest("MY_ENROLLMENTS")


_ENROLL_ACTIONS = {"GET": "ENROLLMENT_GET", "POST": "ENROLL", "DELETE": "ENROLLMENT_CANCEL"}


@api_bp.route("/api/courses/<course_id>/enroll", methods=["GET", "POST", "DELETE"])
def rest_course_enroll(course_id: str):
    return _rest(_ENROLL_ACTIONS[request.method], courseId=course_id)


# Coordinator
@api_bp.get("/api/department-smes")
def rest_department_smes():
    return _rest("DEPARTMENT_SMES_LIST")


_DEPT_SME_ACTIONS = {"GET": "DEPARTMENT_SME_GET", "PUT": "COORDINATOR_SET_STATUS", "DELETE": "SME_PROFILE_DELETE"}


@api_bp.route("/api/department-smes/<sme_id>", methods=["GET", "PUT", "DELETE"])
def rest_department_sme(sme_id: str):
    return _rest(_DEPT_SME_ACTIONS[request.method], smeId=sme_id)


# Directory reads
@api_bp.get("/api/experts")
def rest_experts():
    return _rest("EXPERTS_LIST")


@api_bp.get("/api/experts/<expert_id>")
def rest_expert(expert_id: str):
    return _rest("EXPERT_GET", expertId=expert_id)


@api_bp.get("/api/featured-experts")
def rest_featured_experts():
    return _rest("FEATURED_EXPERTS")


@api_bp.get("/api/skills")
def rest_skills():
    return _rest("SKILLS_LIST")


@api_bp.get("/api/skills/list")
def rest_skills_catalog():
    return _rest("SKILLS_CATALOG")


@api_bp.get("/api/dashboard/stats")
def rest_dashboard_stats():
    return _rest("DASHBOARD_STATS")
