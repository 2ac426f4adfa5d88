from __future__ import annotations

import json
from typing import Any

from sqlalchemy import delete, select

from actions.helpers import append_audit
from auth import resolve_identity
from models import Endorsement, Skill, SmeCertification, SmeProfile, SmeSkill
from services import notification_dispatcher as notifications
from services.sme_lifecycle import create_profile, toggle_status
from utils import ApiError, AuthContext, date_only, iso_utc_now, parse_entity_id


PROFICIENCY_LEVELS = ("Beginner", "Intermediate", "Advanced", "Expert")
DEFAULT_PROFICIENCY = "Intermediate"

_TEXT_FIELDS = ("bio", "contactPhone", "contactPref", "teamsLink", "languages")


def _serialize_availability(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        return json.dumps(value, separators=(",", ":"))
    raise ApiError("BAD_REQUEST", "availability must be an object or a string")


def _parse_skills(db, raw: Any) -> list[dict]:
    if not isinstance(raw, list):
        raise ApiError("BAD_REQUEST", "skills must be a list")

    out: list[dict] = []
    seen: set[int] = set()
    for item in raw:
        if not isinstance(item, dict):
            raise ApiError("BAD_REQUEST", "Invalid skill entry")
        skill_id = parse_entity_id(item.get("skillId"), message="Invalid skillId")
        if skill_id in seen:
            raise ApiError("BAD_REQUEST", "Each skill can only be added once")
        seen.add(skill_id)

        proficiency = str(item.get("proficiency") or DEFAULT_PROFICIENCY).strip()
        match = next((p for p in PROFICIENCY_LEVELS if p.lower() == proficiency.lower()), None)
        if not match:
            raise ApiError("BAD_REQUEST", f"Invalid proficiency: {proficiency}")

        years_raw = item.get("yearsExp")
        years = None
        if years_raw not in (None, ""):
            try:
                years = float(years_raw)
            except (TypeError, ValueError):
                raise ApiError("BAD_REQUEST", "yearsExp must be a number")
            if years < 0:
                raise ApiError("BAD_REQUEST", "yearsExp cannot be negative")
            years = years or None

        out.append({"skillId": skill_id, "proficiency": match, "yearsExp": years})

    if out:
        known = set(db.execute(select(Skill.skillId).where(Skill.skillId.in_(list(seen)))).scalars().all())
        missing = seen - known
        if missing:
            raise ApiError("NOT_FOUND", f"Skill not found: {min(missing)}")
    return out


def _parse_certifications(raw: Any) -> list[dict]:
    if not isinstance(raw, list):
        raise ApiError("BAD_REQUEST", "certifications must be a list")
    out = []
    for item in raw:
        if not isinstance(item, dict):
            raise ApiError("BAD_REQUEST", "Invalid certification entry")
        title = str(item.get("title") or "").strip()
        if not title:
            raise ApiError("BAD_REQUEST", "Certification title is required")
        out.append(
            {
                "title": title,
                "issuer": str(item.get("issuer") or "").strip(),
                "credentialId": str(item.get("credentialId") or "").strip(),
                "credentialUrl": str(item.get("credentialUrl") or "").strip(),
                "issuedDate": date_only(item.get("issuedDate")),
                "expiryDate": date_only(item.get("expiryDate")),
                "fileUrl": str(item.get("fileUrl") or "").strip(),
            }
        )
    return out


def _replace_skills(db, sme_id: int, skills: list[dict]) -> None:
    """
    Sync the profile's skills to `skills`, keyed by skillId.

    Kept rows are updated in place so their endorsements survive. Dropped
    rows go together with the endorsements that point at them.
    """
    current = {
        ss.skillId: ss for ss in db.execute(select(SmeSkill).where(SmeSkill.smeId == sme_id)).scalars().all()
    }
    wanted = {s["skillId"]: s for s in skills}

    dropped = [ss.smeSkillId for skill_id, ss in current.items() if skill_id not in wanted]
    if dropped:
        db.execute(delete(Endorsement).where(Endorsement.smeSkillId.in_(dropped)))
        db.execute(delete(SmeSkill).where(SmeSkill.smeSkillId.in_(dropped)))

    for skill_id, s in wanted.items():
        row = current.get(skill_id)
        if row is None:
            db.add(SmeSkill(smeId=sme_id, skillId=skill_id, proficiency=s["proficiency"], yearsExp=s["yearsExp"], isActive=True))
        else:
            row.proficiency = s["proficiency"]
            row.yearsExp = s["yearsExp"]
            row.isActive = True


def _replace_certifications(db, sme_id: int, certs: list[dict]) -> None:
    db.execute(delete(SmeCertification).where(SmeCertification.smeId == sme_id))
    for c in certs:
        db.add(SmeCertification(smeId=sme_id, **c))


def serialize_skills(db, sme_id: int) -> list[dict]:
    rows = db.execute(
        select(SmeSkill, Skill)
        .join(Skill, Skill.skillId == SmeSkill.skillId)
        .where(SmeSkill.smeId == int(sme_id))
        .order_by(Skill.skillName.asc())
    ).all()
    return [
        {
            "id": str(ss.smeSkillId),
            "skillId": str(sk.skillId),
            "skillName": sk.skillName,
            "proficiency": ss.proficiency or DEFAULT_PROFICIENCY,
            "yearsExp": f"{ss.yearsExp:g}" if ss.yearsExp is not None else "0",
            "isActive": bool(ss.isActive),
        }
        for ss, sk in rows
    ]


def serialize_certifications(db, sme_id: int) -> list[dict]:
    rows = (
        db.execute(
            select(SmeCertification)
            .where(SmeCertification.smeId == int(sme_id))
            .order_by(SmeCertification.issuedDate.desc(), SmeCertification.certificationId.asc())
        )
        .scalars()
        .all()
    )
    return [
        {
            "id": str(c.certificationId),
            "title": c.title,
            "issuer": c.issuer or "",
            "credentialId": c.credentialId or "",
            "credentialUrl": c.credentialUrl or "",
            "issuedDate": c.issuedDate or "",
            "expiryDate": c.expiryDate or "",
            "fileUrl": c.fileUrl or "",
        }
        for c in rows
    ]


def _own_profile(db, employee_id: int) -> SmeProfile | None:
    return db.execute(select(SmeProfile).where(SmeProfile.employeeId == int(employee_id))).scalar_one_or_none()


def sme_profile_get(data, auth: AuthContext | None, db, cfg):
    ident = resolve_identity(db, auth)
    profile = _own_profile(db, ident.employee_id)
    if not profile:
        raise ApiError("NOT_FOUND", "No SME profile found")

    return {
        "id": str(profile.smeId),
        "bio": profile.bio or "",
        "availability": profile.availability or "",
        "contactPhone": profile.contactPhone or "",
        "contactPref": profile.contactPref or "",
        "teamsLink": profile.teamsLink or "",
        "languages": profile.languages or "",
        "status": profile.status,
        "statusReason": profile.statusReason or "",
        "skills": serialize_skills(db, profile.smeId),
        "certifications": serialize_certifications(db, profile.smeId),
    }


def sme_profile_create(data, auth: AuthContext | None, db, cfg):
    ident = resolve_identity(db, auth)
    payload = data or {}

    # Validate before the transition so a bad payload leaves no trace.
    skills = _parse_skills(db, payload["skills"]) if payload.get("skills") is not None else []
    certs = _parse_certifications(payload["certifications"]) if payload.get("certifications") is not None else []

    now = iso_utc_now()
    profile, approved = create_profile(db, employee=ident.employee, now=now)

    for f in _TEXT_FIELDS:
        if payload.get(f) is not None:
            setattr(profile, f, str(payload.get(f)))
    profile.availability = _serialize_availability(payload.get("availability"))
    _replace_skills(db, profile.smeId, skills)
    _replace_certifications(db, profile.smeId, certs)
    db.flush()

    append_audit(
        db,
        entityType="SME_PROFILE",
        entityId=profile.smeId,
        action="SME_PROFILE_CREATE",
        actor=auth,
        at=now,
        fromState="NOMINATED",
        toState="APPROVED",
        meta={"skills": len(skills), "certifications": len(certs), "nominationsApproved": [n.nominationId for n in approved]},
    )

    emp = ident.employee
    name = str(emp.fullName or "")
    for nominator_id in sorted({int(n.nominatedByEmployeeId) for n in approved}):
        notifications.notify(
            db,
            employee_id=nominator_id,
            type="NOMINATION_DECISION",
            title="Nomination completed",
            message=f"{name} completed their SME profile and is now listed in the directory.",
            action_url=f"/experts/{profile.smeId}",
            related_id=profile.smeId,
        )
    notifications.notify_department_coordinators(
        db,
        department=emp.departmentName,
        exclude_employee_id=emp.employeeId,
        type="NEW_SME_IN_DEPT",
        title="New SME in your department",
        message=f"{name} is now an SME in {emp.departmentName}.",
        action_url="/department-smes",
        related_id=profile.smeId,
    )

    return {"id": str(profile.smeId), "status": profile.status, "message": "SME profile created successfully"}


def sme_profile_update(data, auth: AuthContext | None, db, cfg):
    ident = resolve_identity(db, auth)
    profile = _own_profile(db, ident.employee_id)
    if not profile:
        raise ApiError("NOT_FOUND", "No SME profile found to update")

    payload = data or {}
    changed: list[str] = []

    for f in _TEXT_FIELDS:
        if f in payload and payload.get(f) is not None:
            setattr(profile, f, str(payload.get(f)))
            changed.append(f)
    if "availability" in payload and payload.get("availability") is not None:
        profile.availability = _serialize_availability(payload.get("availability"))
        changed.append("availability")

    if payload.get("skills") is not None:
        _replace_skills(db, profile.smeId, _parse_skills(db, payload["skills"]))
        changed.append("skills")
    if payload.get("certifications") is not None:
        _replace_certifications(db, profile.smeId, _parse_certifications(payload["certifications"]))
        changed.append("certifications")

    now = iso_utc_now()
    profile.updatedAt = now
    db.flush()

    append_audit(
        db,
        entityType="SME_PROFILE",
        entityId=profile.smeId,
        action="SME_PROFILE_UPDATE",
        actor=auth,
        at=now,
        meta={"fields": changed},
    )
    return {"id": str(profile.smeId), "message": "SME profile updated successfully"}


def sme_profile_toggle_status(data, auth: AuthContext | None, db, cfg):
    ident = resolve_identity(db, auth)
    profile = _own_profile(db, ident.employee_id)
    if not profile:
        raise ApiError("NOT_FOUND", "No SME profile found")

    before = profile.status
    now = iso_utc_now()
    new_status = toggle_status(profile, now=now)

    append_audit(
        db,
        entityType="SME_PROFILE",
        entityId=profile.smeId,
        action="SME_PROFILE_TOGGLE_STATUS",
        actor=auth,
        at=now,
        fromState=before,
        toState=new_status,
    )
    verb = "activated" if new_status == "APPROVED" else "deactivated"
    return {"id": str(profile.smeId), "status": new_status, "message": f"SME profile {verb} successfully"}
