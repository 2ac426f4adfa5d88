from __future__ import annotations

import hashlib
import json
import threading
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from dateutil import parser as dt_parser


ROLE_CODES = ("EMPLOYEE", "TEAM_LEADER", "COORDINATOR", "MANAGEMENT")

_DEFAULT_HTTP_STATUS = {
    "BAD_REQUEST": 400,
    "AUTH_INVALID": 401,
    "FORBIDDEN": 403,
    "NOT_FOUND": 404,
    "CONFLICT": 409,
    "RATE_LIMITED": 429,
    "INTERNAL": 500,
}


class ApiError(Exception):
    def __init__(self, code: str, message: str, http_status: int | None = None):
        super().__init__(message)
        self.code = str(code or "INTERNAL").upper()
        self.message = str(message or "")
        self.http_status = int(http_status or _DEFAULT_HTTP_STATUS.get(self.code, 400))


@dataclass
class AuthContext:
    valid: bool
    userId: str
    email: str
    role: str
    expiresAt: str
    roles: list[str] = field(default_factory=list)
    sessionId: str = ""

    def has_role(self, role: str) -> bool:
        r = normalize_role(role)
        return bool(r) and r in (self.roles or [])


def ok(data: Any = None, http_status: int = 200):
    return {"ok": True, "data": data}, http_status


def err(code: str, message: str, http_status: int = 400):
    return {"ok": False, "error": {"code": str(code or "").upper(), "message": str(message or "")}}, http_status


def iso_utc_now() -> str:
    return to_iso_utc(datetime.now(timezone.utc))


def to_iso_utc(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_datetime_maybe(value: Any) -> Optional[datetime]:
    """Parses ISO/RFC-ish input into an aware UTC datetime; naive input is taken as UTC."""
    if isinstance(value, datetime):
        dt = value
    else:
        s = str(value or "").strip()
        if not s:
            return None
        try:
            dt = dt_parser.isoparse(s)
        except (ValueError, OverflowError):
            try:
                dt = dt_parser.parse(s)
            except (ValueError, OverflowError):
                return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def date_only(value: str) -> str:
    dt = parse_datetime_maybe(value)
    return dt.date().isoformat() if dt else ""


def new_uuid() -> str:
    return str(uuid.uuid4())


def sha256_hex(value: str) -> str:
    return hashlib.sha256(str(value or "").encode("utf-8")).hexdigest()


def now_monotonic() -> float:
    return time.monotonic()


def normalize_role(role: Any) -> str:
    r = str(role or "").upper().strip().replace("-", "_").replace(" ", "_")
    return r


def parse_roles_csv(value: str) -> list[str]:
    out: list[str] = []
    for part in str(value or "").split(","):
        r = normalize_role(part)
        if r and r not in out:
            out.append(r)
    return out


def parse_json_body(raw: str) -> dict:
    s = str(raw or "").strip()
    if not s:
        raise ApiError("BAD_REQUEST", "Empty body")
    try:
        body = json.loads(s)
    except json.JSONDecodeError:
        raise ApiError("BAD_REQUEST", "Invalid JSON body")
    if not isinstance(body, dict):
        raise ApiError("BAD_REQUEST", "JSON body must be an object")
    return body


def parse_entity_id(value: Any, *, label: str = "id", message: str | None = None) -> int:
    s = str(value if value is not None else "").strip()
    if not s.isdigit() or int(s) <= 0:
        raise ApiError("BAD_REQUEST", message or f"Invalid {label}")
    return int(s)


def parse_int_maybe(value: Any, *, minimum: int = 0) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        n = int(str(value).strip())
    except (TypeError, ValueError):
        return None
    if n < minimum:
        return None
    return n


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in {"1", "true", "yes", "y", "on"}


_SECRET_KEYS = {"password", "newpassword", "oldpassword", "currentpassword", "idtoken", "token", "sessiontoken"}


def redact_for_audit(data: Any) -> Any:
    if isinstance(data, dict):
        out = {}
        for k, v in data.items():
            if str(k).lower().replace("_", "") in _SECRET_KEYS:
                out[k] = "***"
            else:
                out[k] = redact_for_audit(v)
        return out
    if isinstance(data, list):
        return [redact_for_audit(v) for v in data[:50]]
    if isinstance(data, str) and len(data) > 500:
        return data[:500] + "..."
    return data


def parse_rate_spec(spec: str) -> tuple[int, int]:
    limit_s, window_s = str(spec or "0/1").split("/", 1)
    return max(0, int(limit_s)), max(1, int(window_s))


class SimpleRateLimiter:
    """Sliding-window limiter keyed by caller; process-local."""

    def __init__(self):
        self._hits: dict[str, deque] = {}
        self._lock = threading.Lock()

    def check(self, key: str, spec: str) -> None:
        limit, window = parse_rate_spec(spec)
        if limit <= 0:
            return
        now = now_monotonic()
        with self._lock:
            q = self._hits.setdefault(key, deque())
            while q and now - q[0] > window:
                q.popleft()
            if len(q) >= limit:
                raise ApiError("RATE_LIMITED", "Too many requests, slow down")
            q.append(now)
