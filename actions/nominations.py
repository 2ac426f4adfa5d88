from __future__ import annotations

from sqlalchemy import exists, func, or_, select

from actions.helpers import append_audit, employee_brief, like_pattern, str_field
from auth import resolve_identity
from models import Employee, SmeNomination, SmeProfile
from services import notification_dispatcher as notifications
from services.sme_lifecycle import STATE_NOMINATED, STATE_SME, load_lifecycle, nominate
from utils import ApiError, AuthContext, iso_utc_now, parse_entity_id, parse_int_maybe


NOT_SPECIFIED = "Not specified"


def _nominee_summary(emp: Employee) -> dict:
    out = employee_brief(emp)
    for key in ("position", "department", "siteName"):
        out[key] = out.get(key) or NOT_SPECIFIED
    return out


def my_nomination_get(data, auth: AuthContext | None, db, cfg):
    ident = resolve_identity(db, auth)
    life = load_lifecycle(db, ident.employee_id)

    if life.state == STATE_SME:
        return {
            "status": "SME",
            "smeId": str(life.profile.smeId),
            "profileStatus": life.profile.status,
            "hasCompletedProfile": bool(str(life.profile.bio or "").strip()),
        }
    if life.state == STATE_NOMINATED:
        nominator = db.get(Employee, int(life.pending.nominatedByEmployeeId))
        return {
            "status": "NOMINATED",
            "nominationId": str(life.pending.nominationId),
            "nominatedAt": life.pending.requestedAt,
            "nominatedBy": {
                "name": str(nominator.fullName or "") if nominator else "",
                "position": str(nominator.position or "") if nominator else "",
            },
        }
    return {"status": "NONE"}


def nominations_list(data, auth: AuthContext | None, db, cfg):
    ident = resolve_identity(db, auth)

    rows = db.execute(
        select(SmeNomination, Employee, SmeProfile)
        .join(Employee, Employee.employeeId == SmeNomination.nomineeEmployeeId)
        .outerjoin(SmeProfile, SmeProfile.employeeId == SmeNomination.nomineeEmployeeId)
        .where(SmeNomination.nominatedByEmployeeId == ident.employee_id)
        .order_by(SmeNomination.requestedAt.desc(), SmeNomination.nominationId.desc())
    ).all()

    items = []
    for nom, nominee, profile in rows:
        summary = _nominee_summary(nominee)
        summary["hasProfile"] = profile is not None
        summary["profileStatus"] = profile.status if profile is not None else None
        items.append(
            {
                "id": str(nom.nominationId),
                "status": nom.status,
                "requestedAt": nom.requestedAt,
                "decisionAt": nom.decisionAt or None,
                "decisionNote": nom.decisionNote or None,
                "departmentName": nom.departmentName,
                "nominee": summary,
            }
        )
    return {"nominations": items}


def nomination_create(data, auth: AuthContext | None, db, cfg):
    ident = resolve_identity(db, auth)
    if not ident.has_role("TEAM_LEADER"):
        raise ApiError("FORBIDDEN", "Only Team Leaders can nominate employees")

    raw = (data or {}).get("nomineeEmployeeId")
    if raw is None or str(raw).strip() == "":
        raise ApiError("BAD_REQUEST", "nomineeEmployeeId is required")
    nominee_id = parse_entity_id(raw, message="Invalid nomineeEmployeeId")

    now = iso_utc_now()
    nomination, nominee = nominate(db, nominator=ident.employee, nominee_id=nominee_id, now=now)

    append_audit(
        db,
        entityType="SME_NOMINATION",
        entityId=nomination.nominationId,
        action="NOMINATION_CREATE",
        actor=auth,
        at=now,
        fromState="NONE",
        toState="SUBMITTED",
        meta={"nomineeEmployeeId": nominee.employeeId, "departmentName": nomination.departmentName},
    )

    nominator_name = str(ident.employee.fullName or "Your team leader")
    notifications.notify(
        db,
        employee_id=nominee.employeeId,
        type="NOMINATION",
        title="You have been nominated as an SME",
        message=f"{nominator_name} nominated you as a Subject Matter Expert. Complete your SME profile to get started.",
        action_url="/sme-profile",
        related_id=nomination.nominationId,
    )

    return {
        "id": str(nomination.nominationId),
        "status": nomination.status,
        "requestedAt": nomination.requestedAt,
        "nominee": {
            "name": str(nominee.fullName or ""),
            "email": str(nominee.email or ""),
            "position": str(nominee.position or ""),
            "department": str(nominee.departmentName or ""),
        },
    }


def employee_search(data, auth: AuthContext | None, db, cfg):
    resolve_identity(db, auth)

    search = str_field(data, "search")
    limit = min(parse_int_maybe((data or {}).get("limit"), minimum=1) or 10, 50)

    has_profile = exists().where(SmeProfile.employeeId == Employee.employeeId)
    has_pending = (
        exists()
        .where(SmeNomination.nomineeEmployeeId == Employee.employeeId)
        .where(SmeNomination.status == "SUBMITTED")
    )

    q = select(Employee).where(Employee.isActive.is_(True)).where(~has_profile).where(~has_pending)
    if search:
        pattern = like_pattern(search)
        q = q.where(
            or_(
                func.lower(Employee.fullName).like(pattern, escape="\\"),
                func.lower(Employee.email).like(pattern, escape="\\"),
                func.lower(Employee.empNumber).like(pattern, escape="\\"),
            )
        )
    rows = db.execute(q.order_by(Employee.fullName.asc()).limit(limit)).scalars().all()
    return {"employees": [_nominee_summary(e) for e in rows]}
