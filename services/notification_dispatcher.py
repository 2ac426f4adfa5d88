"""
In-app + email notification fan-out.

Every public helper here is best-effort: work runs inside a SAVEPOINT so a
failure rolls back only the notification rows, is logged, and never reaches
the caller's unit of work. Emails are not sent from inside the transaction;
they are queued on the session (`db.info["outbox"]`) and delivered by
`flush_outbox()` after the request commits.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

from sqlalchemy import select

from models import DepartmentCoordinator, Employee, Notification, NotificationPreference, SmeProfile
from services.email_service import render_endorsement_email, send_email_safely
from utils import iso_utc_now


log = logging.getLogger("notifications")

NOTIFICATION_TYPES = {
    "ENDORSEMENT",
    "NOMINATION",
    "NOMINATION_DECISION",
    "PROFILE_ACTIVATED",
    "PROFILE_DEACTIVATED",
    "NEW_SME_IN_DEPT",
}

# Preference column gating each notification type.
TYPE_CATEGORY = {
    "ENDORSEMENT": "endorsements",
    "NOMINATION": "nominations",
    "NOMINATION_DECISION": "nominations",
    "NEW_SME_IN_DEPT": "nominations",
    "PROFILE_ACTIVATED": "profileChanges",
    "PROFILE_DEACTIVATED": "profileChanges",
}

PREFERENCE_FIELDS = ("emailEnabled", "inAppEnabled", "endorsements", "nominations", "profileChanges")

_OUTBOX_KEY = "outbox"


def get_or_create_preferences(db, employee_id: int) -> NotificationPreference:
    prefs = db.get(NotificationPreference, int(employee_id))
    if prefs is None:
        prefs = NotificationPreference(
            employeeId=int(employee_id),
            emailEnabled=True,
            inAppEnabled=True,
            endorsements=True,
            nominations=True,
            profileChanges=True,
            updatedAt=iso_utc_now(),
        )
        db.add(prefs)
        db.flush()
    return prefs


def serialize_preferences(prefs: NotificationPreference) -> dict:
    out = {"employeeId": str(prefs.employeeId)}
    for f in PREFERENCE_FIELDS:
        out[f] = bool(getattr(prefs, f))
    return out


def create_notification(
    db,
    *,
    employee_id: int,
    type: str,
    title: str,
    message: str,
    action_url: str = "",
    related_id: Optional[int] = None,
) -> Notification:
    n = Notification(
        employeeId=int(employee_id),
        type=str(type),
        title=str(title or ""),
        message=str(message or ""),
        actionUrl=str(action_url or ""),
        relatedId=int(related_id) if related_id is not None else None,
        isRead=False,
        createdAt=iso_utc_now(),
        readAt="",
    )
    db.add(n)
    db.flush()
    return n


def _category_enabled(prefs: NotificationPreference, type: str) -> bool:
    category = TYPE_CATEGORY.get(type)
    return bool(getattr(prefs, category)) if category else True


def notify(
    db,
    *,
    employee_id: int,
    type: str,
    title: str,
    message: str,
    action_url: str = "",
    related_id: Optional[int] = None,
) -> bool:
    """Creates an in-app notification when the recipient's preferences allow it."""
    try:
        with db.begin_nested():
            prefs = get_or_create_preferences(db, employee_id)
            if not (prefs.inAppEnabled and _category_enabled(prefs, type)):
                return False
            create_notification(
                db,
                employee_id=employee_id,
                type=type,
                title=title,
                message=message,
                action_url=action_url,
                related_id=related_id,
            )
        return True
    except Exception:
        log.exception("Error creating notification type=%s employee=%s", type, employee_id)
        return False


def notify_department_coordinators(db, *, department: str, exclude_employee_id: int, **kwargs) -> int:
    dept = str(department or "").strip()
    if not dept:
        return 0
    coordinator_ids = (
        db.execute(select(DepartmentCoordinator.employeeId).where(DepartmentCoordinator.departmentName == dept))
        .scalars()
        .all()
    )
    sent = 0
    for cid in sorted(set(coordinator_ids)):
        if int(cid) == int(exclude_employee_id):
            continue
        if notify(db, employee_id=int(cid), **kwargs):
            sent += 1
    return sent


def notify_endorsement(
    db,
    cfg,
    *,
    sme_employee_id: int,
    endorser_name: str,
    skill_name: str,
    endorsement_id: int,
    endorser_position: Optional[str] = None,
    comment: Optional[str] = None,
) -> None:
    try:
        with db.begin_nested():
            prefs = get_or_create_preferences(db, sme_employee_id)
            sme_employee = db.get(Employee, int(sme_employee_id))
            if not sme_employee:
                log.error("SME employee not found employee=%s", sme_employee_id)
                return
            sme_id = db.execute(
                select(SmeProfile.smeId).where(SmeProfile.employeeId == int(sme_employee_id))
            ).scalar_one_or_none()
            if not sme_id:
                log.error("SME profile not found employee=%s", sme_employee_id)
                return

            title = f"New endorsement for {skill_name}"
            message = str(endorser_name or "")
            if endorser_position:
                message += f" ({endorser_position})"
            message += f" endorsed your skill in {skill_name}"
            if comment:
                message += f'\n\nComment: "{comment}"'
            action_url = f"/experts/{sme_id}"

            if prefs.inAppEnabled and prefs.endorsements:
                create_notification(
                    db,
                    employee_id=sme_employee_id,
                    type="ENDORSEMENT",
                    title=title,
                    message=message,
                    action_url=action_url,
                    related_id=endorsement_id,
                )

            if prefs.emailEnabled and prefs.endorsements and sme_employee.email:
                base = str(getattr(cfg, "APP_URL", "") or "http://localhost:3000").rstrip("/")
                html, text = render_endorsement_email(
                    sme_name=str(sme_employee.fullName or ""),
                    endorser_name=str(endorser_name or ""),
                    endorser_position=endorser_position,
                    skill_name=skill_name,
                    comment=comment,
                    profile_url=f"{base}{action_url}",
                    preferences_url=f"{base}/notifications/preferences",
                )
                queue_email(db, to=str(sme_employee.email), subject=title, html=html, text=text)
    except Exception:
        log.exception("Error creating endorsement notification endorsement=%s", endorsement_id)


def queue_email(db, *, to: str, subject: str, html: str, text: str) -> None:
    db.info.setdefault(_OUTBOX_KEY, []).append({"to": to, "subject": subject, "html": html, "text": text})


def discard_outbox(db) -> None:
    db.info.pop(_OUTBOX_KEY, None)


def flush_outbox(db, cfg) -> int:
    """Delivers emails queued during a committed unit of work."""
    jobs: list[dict[str, Any]] = db.info.pop(_OUTBOX_KEY, None) or []
    delivered = 0
    for job in jobs:
        if getattr(cfg, "NOTIFICATIONS_ASYNC", False):
            try:
                from app.tasks.notification_tasks import send_notification_email

                send_notification_email.delay(job)
                delivered += 1
            except Exception:
                log.exception("Failed to publish email job to=%s", job.get("to"))
        elif send_email_safely(cfg, **job):
            delivered += 1
    return delivered
