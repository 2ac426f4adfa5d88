from __future__ import annotations

import json
import os
from typing import Any, Optional

from flask import g, has_request_context

from models import AuditLog, Employee
from utils import AuthContext, iso_utc_now, parse_int_maybe


def _json_or_empty(value: Any) -> str:
    if value is None:
        return ""
    return json.dumps(value, default=str)


def append_audit(
    db,
    *,
    entityType: str,
    entityId: Any,
    action: str,
    stageTag: str = "",
    actor: Optional[AuthContext] = None,
    at: str = "",
    fromState: str = "",
    toState: str = "",
    remark: str = "",
    before: Any = None,
    after: Any = None,
    meta: Any = None,
) -> None:
    correlation_id = str(getattr(g, "request_id", "") or "") if has_request_context() else ""
    db.add(
        AuditLog(
            logId=f"LOG-{os.urandom(16).hex()}",
            entityType=str(entityType or ""),
            entityId=str(entityId if entityId is not None else ""),
            action=str(action or "").upper(),
            fromState=str(fromState or ""),
            toState=str(toState or ""),
            stageTag=str(stageTag or action or "").upper(),
            remark=str(remark or ""),
            actorUserId=str(actor.userId) if actor else "SYSTEM",
            actorRole=str(actor.role) if actor else "SYSTEM",
            actorEmail=str(getattr(actor, "email", "") or "") if actor else "",
            at=at or iso_utc_now(),
            correlationId=correlation_id,
            beforeJson=_json_or_empty(before),
            afterJson=_json_or_empty(after),
            metaJson=_json_or_empty(meta),
        )
    )


def employee_brief(emp: Optional[Employee]) -> dict:
    if not emp:
        return {}
    return {
        "id": str(emp.employeeId),
        "empNumber": str(emp.empNumber or ""),
        "name": str(emp.fullName or ""),
        "email": str(emp.email or ""),
        "position": str(emp.position or ""),
        "department": str(emp.departmentName or ""),
        "siteName": str(emp.siteName or ""),
        "imageUrl": str(emp.imageUrl or "") or None,
        "avatarUrl": str(emp.avatarUrl or "") or None,
    }


def page_params(data: dict, *, default_limit: int, max_limit: int = 100) -> tuple[int, int]:
    page = parse_int_maybe((data or {}).get("page"), minimum=1) or 1
    limit = parse_int_maybe((data or {}).get("limit"), minimum=1) or default_limit
    return page, max(1, min(max_limit, limit))


def like_pattern(term: str) -> str:
    s = str(term or "").strip().lower()
    s = s.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{s}%"


def str_field(data: dict, key: str) -> str:
    return str((data or {}).get(key) or "").strip()
