from __future__ import annotations

from collections import defaultdict

from sqlalchemy import func, or_, select

from actions.helpers import append_audit, like_pattern, str_field
from auth import resolve_identity
from models import DepartmentCoordinator, Employee, Endorsement, Skill, SmeCertification, SmeProfile, SmeSkill
from services import notification_dispatcher as notifications
from services.sme_lifecycle import PROFILE_STATUSES, remove_profile, set_status_by_coordinator
from utils import ApiError, AuthContext, iso_utc_now, parse_entity_id


NOT_SPECIFIED = "Not specified"


def coordinator_departments(db, employee_id: int) -> list[str]:
    rows = (
        db.execute(
            select(DepartmentCoordinator.departmentName)
            .where(DepartmentCoordinator.employeeId == int(employee_id))
            .order_by(DepartmentCoordinator.departmentName.asc())
        )
        .scalars()
        .all()
    )
    return [d for d in rows if str(d or "").strip()]


def _managed_profile(db, coordinator_id: int, raw_id) -> tuple[SmeProfile, Employee]:
    """Department authority check shared by every single-SME coordinator action."""
    sme_id = parse_entity_id(raw_id, message="Invalid SME ID")
    found = db.execute(
        select(SmeProfile, Employee)
        .join(Employee, Employee.employeeId == SmeProfile.employeeId)
        .where(SmeProfile.smeId == sme_id)
        .with_for_update(of=SmeProfile)
    ).first()
    if not found:
        raise ApiError("NOT_FOUND", "SME profile not found")
    profile, owner = found

    dept = str(owner.departmentName or "").strip()
    if not dept or dept not in coordinator_departments(db, coordinator_id):
        raise ApiError("FORBIDDEN", "You don't have access to this SME's department")
    return profile, owner


def department_smes_list(data, auth: AuthContext | None, db, cfg):
    ident = resolve_identity(db, auth)
    departments = coordinator_departments(db, ident.employee_id)
    if not departments:
        return {"smes": [], "departments": [], "message": "No departments assigned to this coordinator"}

    status = str_field(data, "status").upper()
    search = str_field(data, "search")

    q = (
        select(SmeProfile, Employee)
        .join(Employee, Employee.employeeId == SmeProfile.employeeId)
        .where(Employee.departmentName.in_(departments))
    )
    if status and status != "ALL":
        if status not in PROFILE_STATUSES:
            raise ApiError("BAD_REQUEST", f"Invalid status: {status}")
        q = q.where(SmeProfile.status == status)
    if search:
        pattern = like_pattern(search)
        q = q.where(
            or_(
                func.lower(Employee.fullName).like(pattern, escape="\\"),
                func.lower(Employee.email).like(pattern, escape="\\"),
            )
        )
    rows = db.execute(q.order_by(SmeProfile.createdAt.desc(), SmeProfile.smeId.desc())).all()

    sme_ids = [p.smeId for p, _ in rows]
    skills_by_sme: dict[int, list[dict]] = defaultdict(list)
    if sme_ids:
        endorsement_count = (
            select(func.count(Endorsement.endorsementId))
            .where(Endorsement.smeSkillId == SmeSkill.smeSkillId)
            .correlate(SmeSkill)
            .scalar_subquery()
        )
        skill_rows = db.execute(
            select(SmeSkill.smeId, SmeSkill.smeSkillId, Skill.skillName, endorsement_count)
            .join(Skill, Skill.skillId == SmeSkill.skillId)
            .where(SmeSkill.smeId.in_(sme_ids))
            .where(SmeSkill.isActive.is_(True))
            .order_by(Skill.skillName.asc())
        ).all()
        for sme_id, sme_skill_id, name, n in skill_rows:
            skills_by_sme[int(sme_id)].append(
                {"id": str(sme_skill_id), "name": name, "endorsementCount": int(n or 0)}
            )

    smes = []
    for profile, emp in rows:
        skills = skills_by_sme.get(int(profile.smeId), [])
        smes.append(
            {
                "id": str(profile.smeId),
                "status": profile.status,
                "statusReason": profile.statusReason or None,
                "createdAt": profile.createdAt,
                "employee": {
                    "id": str(emp.employeeId),
                    "empNumber": emp.empNumber,
                    "name": emp.fullName,
                    "email": emp.email,
                    "position": emp.position or NOT_SPECIFIED,
                    "department": emp.departmentName or NOT_SPECIFIED,
                    "siteName": emp.siteName or NOT_SPECIFIED,
                    "avatarUrl": emp.avatarUrl or None,
                },
                "skills": skills,
                "totalEndorsements": sum(s["endorsementCount"] for s in skills),
            }
        )
    return {"smes": smes, "departments": departments}


def department_sme_get(data, auth: AuthContext | None, db, cfg):
    ident = resolve_identity(db, auth)
    profile, emp = _managed_profile(db, ident.employee_id, (data or {}).get("smeId"))

    skill_rows = db.execute(
        select(SmeSkill, Skill)
        .join(Skill, Skill.skillId == SmeSkill.skillId)
        .where(SmeSkill.smeId == profile.smeId)
        .order_by(Skill.skillName.asc())
    ).all()
    endorsements: dict[int, list[dict]] = defaultdict(list)
    if skill_rows:
        rows = db.execute(
            select(Endorsement, Employee)
            .join(Employee, Employee.employeeId == Endorsement.endorsedByEmployeeId)
            .where(Endorsement.smeSkillId.in_([ss.smeSkillId for ss, _ in skill_rows]))
            .order_by(Endorsement.endorsedAt.desc())
        ).all()
        for e, endorser in rows:
            endorsements[int(e.smeSkillId)].append(
                {
                    "id": str(e.endorsementId),
                    "endorserName": endorser.fullName,
                    "endorserPosition": endorser.position or None,
                    "comment": e.comment or None,
                    "endorsedAt": e.endorsedAt,
                }
            )

    certs = (
        db.execute(
            select(SmeCertification)
            .where(SmeCertification.smeId == profile.smeId)
            .order_by(SmeCertification.issuedDate.desc(), SmeCertification.certificationId.asc())
        )
        .scalars()
        .all()
    )

    return {
        "id": str(profile.smeId),
        "status": profile.status,
        "statusReason": profile.statusReason or None,
        "bio": profile.bio or None,
        "languages": profile.languages or None,
        "availability": profile.availability or None,
        "createdAt": profile.createdAt,
        "employee": {
            "id": str(emp.employeeId),
            "empNumber": emp.empNumber,
            "name": emp.fullName,
            "email": emp.email,
            "position": emp.position or None,
            "department": emp.departmentName or None,
            "siteName": emp.siteName or None,
            "imageUrl": emp.imageUrl or None,
        },
        "skills": [
            {
                "id": str(ss.smeSkillId),
                "name": sk.skillName,
                "proficiency": ss.proficiency,
                "yearsExp": f"{ss.yearsExp:g}" if ss.yearsExp is not None else None,
                "endorsements": endorsements.get(int(ss.smeSkillId), []),
            }
            for ss, sk in skill_rows
        ],
        "certifications": [{"id": str(c.certificationId), "title": c.title, "issuer": c.issuer or None} for c in certs],
    }


def coordinator_set_status(data, auth: AuthContext | None, db, cfg):
    ident = resolve_identity(db, auth)
    profile, emp = _managed_profile(db, ident.employee_id, (data or {}).get("smeId"))

    before = profile.status
    now = iso_utc_now()
    new_status = set_status_by_coordinator(
        profile,
        status=(data or {}).get("status"),
        reason=str_field(data, "statusReason"),
        now=now,
    )
    db.flush()

    append_audit(
        db,
        entityType="SME_PROFILE",
        entityId=profile.smeId,
        action="COORDINATOR_SET_STATUS",
        actor=auth,
        at=now,
        fromState=before,
        toState=new_status,
        remark=profile.statusReason,
    )

    activated = new_status == "APPROVED"
    if before != new_status:
        reason = f" Reason: {profile.statusReason}" if profile.statusReason else ""
        notifications.notify(
            db,
            employee_id=emp.employeeId,
            type="PROFILE_ACTIVATED" if activated else "PROFILE_DEACTIVATED",
            title="Your SME profile was activated" if activated else "Your SME profile was suspended",
            message=(
                "A coordinator re-activated your SME profile. It is visible in the directory again."
                if activated
                else f"A coordinator suspended your SME profile. It is hidden from the directory.{reason}"
            ),
            action_url="/sme-profile",
            related_id=profile.smeId,
        )

    return {
        "id": str(profile.smeId),
        "status": profile.status,
        "statusReason": profile.statusReason or None,
        "message": f"SME {emp.fullName} has been {'activated' if activated else 'deactivated'}",
    }


def sme_profile_delete(data, auth: AuthContext | None, db, cfg):
    ident = resolve_identity(db, auth)
    profile, emp = _managed_profile(db, ident.employee_id, (data or {}).get("smeId"))

    sme_id = int(profile.smeId)
    before = {"status": profile.status, "employeeId": emp.employeeId}
    now = iso_utc_now()
    counts = remove_profile(db, profile=profile, now=now)

    append_audit(
        db,
        entityType="SME_PROFILE",
        entityId=sme_id,
        action="SME_PROFILE_DELETE",
        actor=auth,
        at=now,
        fromState=before["status"],
        toState="DELETED",
        before=before,
        meta=counts,
    )

    notifications.notify(
        db,
        employee_id=emp.employeeId,
        type="NOMINATION_DECISION",
        title="Your SME profile was removed",
        message="A coordinator removed your SME profile and your nomination is now closed.",
        action_url="/sme-profile",
    )

    return {"message": f"SME profile for {emp.fullName} has been deleted", "removed": counts}
