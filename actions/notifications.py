from __future__ import annotations

import math

from sqlalchemy import delete, func, select, update

from actions.helpers import page_params, str_field
from auth import resolve_identity
from models import Notification
from services.notification_dispatcher import (
    NOTIFICATION_TYPES,
    PREFERENCE_FIELDS,
    get_or_create_preferences,
    serialize_preferences,
)
from utils import ApiError, AuthContext, iso_utc_now, parse_bool, parse_entity_id


def _serialize(n: Notification) -> dict:
    return {
        "id": str(n.notificationId),
        "type": n.type,
        "title": n.title,
        "message": n.message,
        "actionUrl": n.actionUrl or None,
        "relatedId": str(n.relatedId) if n.relatedId is not None else None,
        "isRead": bool(n.isRead),
        "createdAt": n.createdAt,
        "readAt": n.readAt or None,
    }


def _unread_count(db, employee_id: int) -> int:
    return int(
        db.execute(
            select(func.count(Notification.notificationId))
            .where(Notification.employeeId == int(employee_id))
            .where(Notification.isRead.is_(False))
        ).scalar()
        or 0
    )


def _owned_or_404(db, employee_id: int, notification_id: int) -> Notification:
    n = db.get(Notification, int(notification_id))
    # Someone else's notification is indistinguishable from a missing one.
    if n is None or int(n.employeeId) != int(employee_id):
        raise ApiError("NOT_FOUND", "Notification not found")
    return n


def notifications_list(data, auth: AuthContext | None, db, cfg):
    ident = resolve_identity(db, auth)
    page, limit = page_params(data, default_limit=20)
    unread_only = parse_bool((data or {}).get("unreadOnly"))
    type_filter = str_field(data, "type").upper()
    if type_filter and type_filter not in NOTIFICATION_TYPES:
        raise ApiError("BAD_REQUEST", f"Invalid notification type: {type_filter}")

    q = select(Notification).where(Notification.employeeId == ident.employee_id)
    if unread_only:
        q = q.where(Notification.isRead.is_(False))
    if type_filter:
        q = q.where(Notification.type == type_filter)

    total = int(db.execute(select(func.count()).select_from(q.subquery())).scalar() or 0)
    rows = (
        db.execute(
            q.order_by(Notification.createdAt.desc(), Notification.notificationId.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        .scalars()
        .all()
    )
    return {
        "notifications": [_serialize(n) for n in rows],
        "unreadCount": _unread_count(db, ident.employee_id),
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "totalPages": math.ceil(total / limit) if total else 0,
        },
    }


def notifications_mark_all_read(data, auth: AuthContext | None, db, cfg):
    ident = resolve_identity(db, auth)
    updated = db.execute(
        update(Notification)
        .where(Notification.employeeId == ident.employee_id)
        .where(Notification.isRead.is_(False))
        .values(isRead=True, readAt=iso_utc_now())
    ).rowcount
    return {"updatedCount": int(updated or 0)}


def notification_mark_read(data, auth: AuthContext | None, db, cfg):
    ident = resolve_identity(db, auth)
    nid = parse_entity_id((data or {}).get("notificationId"), message="Invalid notification ID")
    n = _owned_or_404(db, ident.employee_id, nid)
    if not n.isRead:
        n.isRead = True
        n.readAt = iso_utc_now()
        db.flush()
    return _serialize(n)


def notification_delete(data, auth: AuthContext | None, db, cfg):
    ident = resolve_identity(db, auth)
    nid = parse_entity_id((data or {}).get("notificationId"), message="Invalid notification ID")
    _owned_or_404(db, ident.employee_id, nid)
    db.execute(delete(Notification).where(Notification.notificationId == nid))
    return {"deleted": True, "id": str(nid)}


def notifications_unread_count(data, auth: AuthContext | None, db, cfg):
    ident = resolve_identity(db, auth)
    return {"unreadCount": _unread_count(db, ident.employee_id)}


def notification_preferences_get(data, auth: AuthContext | None, db, cfg):
    ident = resolve_identity(db, auth)
    return serialize_preferences(get_or_create_preferences(db, ident.employee_id))


def notification_preferences_update(data, auth: AuthContext | None, db, cfg):
    ident = resolve_identity(db, auth)
    payload = data or {}

    changes = {}
    for f in PREFERENCE_FIELDS:
        if f not in payload or payload.get(f) is None:
            continue
        if not isinstance(payload[f], bool):
            raise ApiError("BAD_REQUEST", f"{f} must be a boolean")
        changes[f] = payload[f]

    prefs = get_or_create_preferences(db, ident.employee_id)
    for f, v in changes.items():
        setattr(prefs, f, v)
    if changes:
        prefs.updatedAt = iso_utc_now()
        db.flush()
    return serialize_preferences(prefs)
