from __future__ import annotations

import math
from collections import defaultdict

from sqlalchemy import func, or_, select

from actions.courses import display_delivery_mode
from actions.helpers import like_pattern, page_params, str_field
from actions.sme_profile import DEFAULT_PROFICIENCY
from cache_layer import cache_get_or_set
from models import (
    Course,
    CourseEnrollment,
    Employee,
    Endorsement,
    Skill,
    SkillCategory,
    SmeCertification,
    SmeNomination,
    SmeProfile,
    SmeSkill,
)
from utils import ApiError, AuthContext, parse_entity_id


NOT_SPECIFIED = "Not specified"
FEATURED_LIMIT = 4
VERIFIED_ENDORSEMENTS = 50
TOP_EXPERTS_PER_SKILL = 6
RECENT_ENDORSEMENTS = 5

CATALOG_CACHE_KEY = "CATALOG:SKILLS"


def _endorsement_totals():
    """Subquery of (smeId, total) over active skills."""
    return (
        select(SmeSkill.smeId.label("smeId"), func.count(Endorsement.endorsementId).label("total"))
        .join(Endorsement, Endorsement.smeSkillId == SmeSkill.smeSkillId)
        .where(SmeSkill.isActive.is_(True))
        .group_by(SmeSkill.smeId)
        .subquery()
    )


def _skill_endorsement_counts(db, sme_ids: list[int]) -> list[tuple]:
    """(smeId, smeSkillId, Skill, endorsementCount) for active skills of the given profiles."""
    if not sme_ids:
        return []
    count = (
        select(func.count(Endorsement.endorsementId))
        .where(Endorsement.smeSkillId == SmeSkill.smeSkillId)
        .correlate(SmeSkill)
        .scalar_subquery()
    )
    return db.execute(
        select(SmeSkill.smeId, SmeSkill.smeSkillId, Skill, count)
        .join(Skill, Skill.skillId == SmeSkill.skillId)
        .where(SmeSkill.smeId.in_(sme_ids))
        .where(SmeSkill.isActive.is_(True))
        .order_by(Skill.skillName.asc())
    ).all()


def experts_list(data, auth: AuthContext | None, db, cfg):
    rows = db.execute(
        select(SmeProfile, Employee)
        .join(Employee, Employee.employeeId == SmeProfile.employeeId)
        .where(SmeProfile.status == "APPROVED")
        .order_by(Employee.fullName.asc())
    ).all()
    sme_ids = [p.smeId for p, _ in rows]

    skills: dict[int, list[dict]] = defaultdict(list)
    totals: dict[int, int] = defaultdict(int)
    for sme_id, _, skill, n in _skill_endorsement_counts(db, sme_ids):
        skills[int(sme_id)].append({"name": skill.skillName})
        totals[int(sme_id)] += int(n or 0)

    certs: dict[int, list[dict]] = defaultdict(list)
    if sme_ids:
        for c in db.execute(select(SmeCertification).where(SmeCertification.smeId.in_(sme_ids))).scalars():
            certs[int(c.smeId)].append({"title": c.title})

    experts = []
    for profile, emp in rows:
        sid = int(profile.smeId)
        experts.append(
            {
                "id": str(sid),
                "name": emp.fullName,
                "position": emp.position or "Subject Matter Expert",
                "department": emp.departmentName or "General",
                "siteName": emp.siteName or "Main Office",
                "avatarUrl": emp.avatarUrl or None,
                "bio": profile.bio or None,
                "skills": skills.get(sid, []),
                "certifications": certs.get(sid, []),
                "endorsementCount": totals.get(sid, 0),
            }
        )
    return {"experts": experts, "total": len(experts)}


def expert_get(data, auth: AuthContext | None, db, cfg):
    sme_id = parse_entity_id((data or {}).get("expertId"), message="Invalid expert ID")

    found = db.execute(
        select(SmeProfile, Employee)
        .join(Employee, Employee.employeeId == SmeProfile.employeeId)
        .where(SmeProfile.smeId == sme_id)
    ).first()
    if not found:
        raise ApiError("NOT_FOUND", "Expert not found")
    profile, emp = found

    skill_rows = _skill_endorsement_counts(db, [sme_id])
    by_skill: dict[int, list[dict]] = defaultdict(list)
    recent: list[dict] = []
    skill_names = {int(ss_id): sk.skillName for _, ss_id, sk, _ in skill_rows}
    if skill_names:
        rows = db.execute(
            select(Endorsement, Employee)
            .join(Employee, Employee.employeeId == Endorsement.endorsedByEmployeeId)
            .where(Endorsement.smeSkillId.in_(list(skill_names)))
            .order_by(Endorsement.endorsedAt.desc(), Endorsement.endorsementId.desc())
        ).all()
        for e, endorser in rows:
            item = {
                "id": str(e.endorsementId),
                "endorserName": endorser.fullName,
                "endorserPosition": endorser.position or "Team Member",
                "comment": e.comment or None,
                "endorsedAt": e.endorsedAt,
            }
            by_skill[int(e.smeSkillId)].append(item)
            if len(recent) < RECENT_ENDORSEMENTS:
                recent.append(
                    dict(
                        item,
                        endorserAvatar=endorser.avatarUrl or None,
                        skillName=skill_names[int(e.smeSkillId)],
                        smeSkillId=str(e.smeSkillId),
                    )
                )

    skills = []
    for _, ss_id, sk, n in skill_rows:
        ss = db.get(SmeSkill, int(ss_id))
        skills.append(
            {
                "id": str(ss_id),
                "name": sk.skillName,
                "proficiency": ss.proficiency or DEFAULT_PROFICIENCY,
                "yearsExp": f"{ss.yearsExp:g}" if ss.yearsExp is not None else "0",
                "endorsementCount": int(n or 0),
                "endorsements": by_skill.get(int(ss_id), []),
            }
        )

    certs = (
        db.execute(
            select(SmeCertification)
            .where(SmeCertification.smeId == sme_id)
            .order_by(SmeCertification.issuedDate.desc(), SmeCertification.certificationId.asc())
        )
        .scalars()
        .all()
    )
    courses = (
        db.execute(
            select(Course)
            .where(Course.smeId == sme_id)
            .where(Course.isPublished.is_(True))
            .order_by(Course.createdAt.desc())
        )
        .scalars()
        .all()
    )
    course_ids = [c.courseId for c in courses]
    students = 0
    if course_ids:
        students = int(
            db.execute(
                select(func.count(func.distinct(CourseEnrollment.employeeId)))
                .where(CourseEnrollment.courseId.in_(course_ids))
                .where(CourseEnrollment.status.in_(("ENROLLED", "COMPLETED")))
            ).scalar()
            or 0
        )

    years = [s.yearsExp for s in db.execute(select(SmeSkill).where(SmeSkill.smeId == sme_id)).scalars() if s.yearsExp]

    return {
        "id": str(profile.smeId),
        "status": profile.status,
        "name": emp.fullName,
        "position": emp.position or NOT_SPECIFIED,
        "department": emp.departmentName or NOT_SPECIFIED,
        "siteName": emp.siteName or NOT_SPECIFIED,
        "avatarUrl": emp.avatarUrl or None,
        "email": emp.email,
        "phone": profile.contactPhone or "Not provided",
        "employeeId": emp.empNumber,
        "bio": profile.bio or "",
        "availability": profile.availability or None,
        "contactPref": profile.contactPref or "email",
        "teamsLink": profile.teamsLink or None,
        "languages": profile.languages or "English",
        "totalEndorsements": sum(s["endorsementCount"] for s in skills),
        "studentCount": students,
        "yearsExperience": int(max(years)) if years else 0,
        "skills": skills,
        "recentEndorsements": recent,
        "certifications": [
            {
                "id": str(c.certificationId),
                "title": c.title,
                "issuer": c.issuer or NOT_SPECIFIED,
                "credentialId": c.credentialId or None,
                "credentialUrl": c.credentialUrl or None,
                "issuedDate": c.issuedDate or None,
                "expiryDate": c.expiryDate or None,
                "fileUrl": c.fileUrl or None,
            }
            for c in certs
        ],
        "courses": [
            {
                "id": str(c.courseId),
                "title": c.title,
                "description": c.description or None,
                "targetAudience": c.targetAudience or None,
                "durationMinutes": c.durationMinutes,
                "deliveryMode": display_delivery_mode(c.deliveryMode),
                "materialsUrl": c.materialsUrl or None,
                "scheduledDate": c.scheduledDate or None,
                "isPublished": bool(c.isPublished),
                "createdAt": c.createdAt,
            }
            for c in courses
        ],
    }


def featured_experts(data, auth: AuthContext | None, db, cfg):
    totals = _endorsement_totals()
    total = func.coalesce(totals.c.total, 0).label("total")
    rows = db.execute(
        select(SmeProfile, Employee, total)
        .join(Employee, Employee.employeeId == SmeProfile.employeeId)
        .outerjoin(totals, totals.c.smeId == SmeProfile.smeId)
        .where(SmeProfile.status == "APPROVED")
        .order_by(total.desc(), SmeProfile.smeId.asc())
        .limit(FEATURED_LIMIT)
    ).all()

    primary: dict[int, tuple[int, str]] = {}
    for sme_id, _, skill, n in _skill_endorsement_counts(db, [p.smeId for p, _, _ in rows]):
        best = primary.get(int(sme_id))
        if best is None or int(n or 0) > best[0]:
            primary[int(sme_id)] = (int(n or 0), skill.skillName)

    experts = []
    for profile, emp, n in rows:
        experts.append(
            {
                "id": str(profile.smeId),
                "name": emp.fullName,
                "role": emp.position or "SME",
                "skills": primary.get(int(profile.smeId), (0, "Multiple Skills"))[1],
                "endorsements": int(n or 0),
                "verified": int(n or 0) >= VERIFIED_ENDORSEMENTS,
                "imageUrl": emp.imageUrl or None,
            }
        )
    return {"experts": experts}


def skills_list(data, auth: AuthContext | None, db, cfg):
    page, limit = page_params(data, default_limit=5)
    search = str_field(data, "search")

    q = select(Skill).where(Skill.isActive.is_(True))
    if search:
        pattern = like_pattern(search)
        q = q.where(
            or_(
                func.lower(Skill.skillName).like(pattern, escape="\\"),
                func.lower(Skill.description).like(pattern, escape="\\"),
            )
        )
    total = int(db.execute(select(func.count()).select_from(q.subquery())).scalar() or 0)
    skills = (
        db.execute(q.order_by(Skill.skillName.asc()).offset((page - 1) * limit).limit(limit)).scalars().all()
    )

    experts: dict[int, list[tuple[int, str]]] = defaultdict(list)
    skill_ids = [s.skillId for s in skills]
    if skill_ids:
        count = (
            select(func.count(Endorsement.endorsementId))
            .where(Endorsement.smeSkillId == SmeSkill.smeSkillId)
            .correlate(SmeSkill)
            .scalar_subquery()
        )
        rows = db.execute(
            select(SmeSkill.skillId, Employee.fullName, count)
            .join(SmeProfile, SmeProfile.smeId == SmeSkill.smeId)
            .join(Employee, Employee.employeeId == SmeProfile.employeeId)
            .where(SmeSkill.skillId.in_(skill_ids))
            .where(SmeSkill.isActive.is_(True))
            .where(SmeProfile.status == "APPROVED")
        ).all()
        for skill_id, name, n in rows:
            experts[int(skill_id)].append((int(n or 0), name))

    items = []
    for s in skills:
        ranked = sorted(experts.get(int(s.skillId), []), key=lambda t: (-t[0], t[1]))
        items.append(
            {
                "id": str(s.skillId),
                "name": s.skillName,
                "experts": len(ranked),
                "description": s.description or None,
                "imageUrl": s.imageUrl or "",
                "topExperts": [name for _, name in ranked[:TOP_EXPERTS_PER_SKILL]],
            }
        )

    total_pages = math.ceil(total / limit) if total else 0
    return {
        "skills": items,
        "pagination": {
            "currentPage": page,
            "totalPages": total_pages,
            "totalCount": total,
            "limit": limit,
            "hasNextPage": page < total_pages,
            "hasPreviousPage": page > 1,
        },
    }


def _load_catalog(db) -> list[dict]:
    rows = db.execute(
        select(Skill, SkillCategory.categoryName)
        .outerjoin(SkillCategory, SkillCategory.categoryId == Skill.categoryId)
        .where(Skill.isActive.is_(True))
        .order_by(Skill.skillName.asc())
    ).all()
    return [
        {
            "id": str(s.skillId),
            "name": s.skillName,
            "description": s.description or None,
            "category": category or "Uncategorized",
        }
        for s, category in rows
    ]


def skills_catalog(data, auth: AuthContext | None, db, cfg):
    return {"skills": cache_get_or_set(CATALOG_CACHE_KEY, lambda: _load_catalog(db))}


def _count(db, stmt) -> int:
    return int(db.execute(stmt).scalar() or 0)


def dashboard_stats(data, auth: AuthContext | None, db, cfg):
    overview = {
        "totalSmes": _count(db, select(func.count(SmeProfile.smeId))),
        "approvedSmes": _count(db, select(func.count(SmeProfile.smeId)).where(SmeProfile.status == "APPROVED")),
        "suspendedSmes": _count(db, select(func.count(SmeProfile.smeId)).where(SmeProfile.status == "SUSPENDED")),
        "pendingNominations": _count(
            db, select(func.count(SmeNomination.nominationId)).where(SmeNomination.status == "SUBMITTED")
        ),
        "totalEndorsements": _count(db, select(func.count(Endorsement.endorsementId))),
        "totalSkills": _count(db, select(func.count(Skill.skillId)).where(Skill.isActive.is_(True))),
    }

    by_status = db.execute(
        select(SmeProfile.status, func.count(SmeProfile.smeId)).group_by(SmeProfile.status).order_by(SmeProfile.status)
    ).all()
    by_dept = db.execute(
        select(Employee.departmentName, func.count(SmeProfile.smeId))
        .join(SmeProfile, SmeProfile.employeeId == Employee.employeeId)
        .where(SmeProfile.status == "APPROVED")
        .group_by(Employee.departmentName)
        .order_by(func.count(SmeProfile.smeId).desc(), Employee.departmentName.asc())
    ).all()

    nominee = Employee.__table__.alias("nominee")
    nominator = Employee.__table__.alias("nominator")
    recent = db.execute(
        select(SmeNomination, nominee.c.fullName, nominee.c.departmentName, nominee.c.avatarUrl, nominator.c.fullName)
        .join(nominee, nominee.c.employeeId == SmeNomination.nomineeEmployeeId)
        .join(nominator, nominator.c.employeeId == SmeNomination.nominatedByEmployeeId)
        .order_by(SmeNomination.requestedAt.desc(), SmeNomination.nominationId.desc())
        .limit(10)
    ).all()

    totals = (
        select(SmeSkill.smeId.label("smeId"), func.count(Endorsement.endorsementId).label("total"))
        .join(Endorsement, Endorsement.smeSkillId == SmeSkill.smeSkillId)
        .group_by(SmeSkill.smeId)
        .subquery()
    )
    total = func.coalesce(totals.c.total, 0).label("total")
    top = db.execute(
        select(SmeProfile, Employee, total)
        .join(Employee, Employee.employeeId == SmeProfile.employeeId)
        .outerjoin(totals, totals.c.smeId == SmeProfile.smeId)
        .where(SmeProfile.status == "APPROVED")
        .order_by(total.desc(), SmeProfile.smeId.asc())
        .limit(5)
    ).all()

    return {
        "overview": overview,
        "smesByStatus": [{"status": s, "count": int(n)} for s, n in by_status],
        "smesByDepartment": [{"department": d or "Unassigned", "count": int(n)} for d, n in by_dept],
        "recentNominations": [
            {
                "id": str(nom.nominationId),
                "status": nom.status,
                "requestedAt": nom.requestedAt,
                "nominee": {"name": name, "department": dept or None, "avatarUrl": avatar or None},
                "nominatedBy": by_name,
            }
            for nom, name, dept, avatar, by_name in recent
        ],
        "topEndorsedSmes": [
            {
                "id": str(p.smeId),
                "name": e.fullName,
                "position": e.position or None,
                "department": e.departmentName or None,
                "avatarUrl": e.avatarUrl or None,
                "totalEndorsements": int(n or 0),
            }
            for p, e, n in top
        ],
    }
