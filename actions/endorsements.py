from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from actions.helpers import append_audit, str_field
from auth import resolve_identity
from models import Endorsement, Skill, SmeProfile, SmeSkill
from services import notification_dispatcher as notifications
from utils import ApiError, AuthContext, iso_utc_now, parse_entity_id


def endorsement_create(data, auth: AuthContext | None, db, cfg):
    ident = resolve_identity(db, auth)

    raw_id = (data or {}).get("smeSkillId")
    if raw_id is None or str(raw_id).strip() == "":
        raise ApiError("BAD_REQUEST", "smeSkillId is required")
    sme_skill_id = parse_entity_id(raw_id, message="Invalid smeSkillId")
    comment = str_field(data, "comment")

    found = db.execute(
        select(SmeSkill, SmeProfile, Skill)
        .join(SmeProfile, SmeProfile.smeId == SmeSkill.smeId)
        .join(Skill, Skill.skillId == SmeSkill.skillId)
        .where(SmeSkill.smeSkillId == sme_skill_id)
    ).first()
    if not found:
        raise ApiError("NOT_FOUND", "Skill not found")
    sme_skill, profile, skill = found

    if int(profile.employeeId) == ident.employee_id:
        raise ApiError("BAD_REQUEST", "You cannot endorse your own skills")

    already = db.execute(
        select(Endorsement.endorsementId)
        .where(Endorsement.smeSkillId == sme_skill_id)
        .where(Endorsement.endorsedByEmployeeId == ident.employee_id)
    ).first()
    if already:
        raise ApiError("CONFLICT", "You have already endorsed this skill")

    now = iso_utc_now()
    endorsement = Endorsement(
        smeSkillId=sme_skill_id,
        endorsedByEmployeeId=ident.employee_id,
        comment=comment,
        endorsedAt=now,
    )
    db.add(endorsement)
    try:
        db.flush()
    except IntegrityError:
        raise ApiError("CONFLICT", "You have already endorsed this skill")

    append_audit(
        db,
        entityType="ENDORSEMENT",
        entityId=endorsement.endorsementId,
        action="ENDORSEMENT_CREATE",
        actor=auth,
        at=now,
        meta={"smeSkillId": sme_skill_id, "smeId": profile.smeId, "skillId": skill.skillId},
    )

    endorser = ident.employee
    notifications.notify_endorsement(
        db,
        cfg,
        sme_employee_id=int(profile.employeeId),
        endorser_name=str(endorser.fullName or ""),
        endorser_position=str(endorser.position or "") or None,
        skill_name=skill.skillName,
        endorsement_id=endorsement.endorsementId,
        comment=comment or None,
    )

    return {
        "id": str(endorsement.endorsementId),
        "smeSkillId": str(sme_skill_id),
        "endorserName": str(endorser.fullName or ""),
        "endorserPosition": str(endorser.position or "") or None,
        "comment": comment or None,
        "endorsedAt": endorsement.endorsedAt,
    }


def endorsed_skills_get(data, auth: AuthContext | None, db, cfg):
    ident = resolve_identity(db, auth)

    raw = (data or {}).get("smeId")
    if raw is None or str(raw).strip() == "":
        raise ApiError("BAD_REQUEST", "smeId query parameter is required")
    sme_id = parse_entity_id(raw, message="Invalid smeId")

    ids = (
        db.execute(
            select(Endorsement.smeSkillId)
            .join(SmeSkill, SmeSkill.smeSkillId == Endorsement.smeSkillId)
            .where(Endorsement.endorsedByEmployeeId == ident.employee_id)
            .where(SmeSkill.smeId == sme_id)
            .order_by(Endorsement.smeSkillId.asc())
        )
        .scalars()
        .all()
    )
    return {"endorsedSkillIds": [str(i) for i in ids]}
