"""
Nomination -> expert profile state machine.

Per employee:

    NONE --nominate--> NOMINATED (nomination SUBMITTED)
    NOMINATED --profile created--> SME(APPROVED)       nomination -> APPROVED
    SME(APPROVED) <--self toggle--> SME(INACTIVE)
    SME(*) --coordinator--> SME(APPROVED | SUSPENDED)
    SME(*) --coordinator deletes--> NONE               APPROVED nominations -> REJECTED

Every transition runs inside the caller's transaction; the request boundary
commits or rolls back the whole unit of work.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError

from models import (
    Course,
    CourseEnrollment,
    Employee,
    Endorsement,
    SmeCertification,
    SmeNomination,
    SmeProfile,
    SmeSkill,
)
from utils import ApiError


STATE_NONE = "NONE"
STATE_NOMINATED = "NOMINATED"
STATE_SME = "SME"

NOMINATION_STATUSES = {"SUBMITTED", "APPROVED", "REJECTED"}
PROFILE_STATUSES = {"APPROVED", "SUSPENDED", "INACTIVE"}
COORDINATOR_STATUSES = {"APPROVED", "SUSPENDED"}

PROFILE_REMOVED_NOTE = "SME profile was removed by coordinator"


@dataclass
class ExpertLifecycle:
    employee_id: int
    profile: Optional[SmeProfile]
    pending: Optional[SmeNomination]

    @property
    def state(self) -> str:
        if self.profile is not None:
            return STATE_SME
        if self.pending is not None:
            return STATE_NOMINATED
        return STATE_NONE


def load_lifecycle(db, employee_id: int) -> ExpertLifecycle:
    profile = db.execute(select(SmeProfile).where(SmeProfile.employeeId == int(employee_id))).scalar_one_or_none()
    pending = (
        db.execute(
            select(SmeNomination)
            .where(SmeNomination.nomineeEmployeeId == int(employee_id))
            .where(SmeNomination.status == "SUBMITTED")
            .order_by(SmeNomination.requestedAt.desc())
        )
        .scalars()
        .first()
    )
    return ExpertLifecycle(employee_id=int(employee_id), profile=profile, pending=pending)


def lock_employee(db, employee_id: int) -> Optional[Employee]:
    return (
        db.execute(select(Employee).where(Employee.employeeId == int(employee_id)).with_for_update(of=Employee))
        .scalars()
        .first()
    )


def nominate(db, *, nominator: Employee, nominee_id: int, now: str) -> tuple[SmeNomination, Employee]:
    """NONE -> NOMINATED."""
    nominee = lock_employee(db, nominee_id)
    if not nominee:
        raise ApiError("NOT_FOUND", "Nominee not found")
    if not bool(nominee.isActive):
        raise ApiError("NOT_FOUND", "Cannot nominate inactive employee")

    life = load_lifecycle(db, nominee.employeeId)
    if life.state == STATE_SME:
        raise ApiError("CONFLICT", "This employee is already an SME")
    if life.state == STATE_NOMINATED:
        raise ApiError("CONFLICT", "This employee already has a pending nomination")
    if int(nominee.employeeId) == int(nominator.employeeId):
        raise ApiError("CONFLICT", "You cannot nominate yourself")

    nomination = SmeNomination(
        nomineeEmployeeId=int(nominee.employeeId),
        nominatedByEmployeeId=int(nominator.employeeId),
        departmentName=str(nominee.departmentName or ""),
        status="SUBMITTED",
        requestedAt=now,
        decisionAt="",
        decisionNote="",
    )
    db.add(nomination)
    try:
        db.flush()
    except IntegrityError:
        raise ApiError("CONFLICT", "This employee already has a pending nomination")
    return nomination, nominee


def create_profile(db, *, employee: Employee, now: str) -> tuple[SmeProfile, list[SmeNomination]]:
    """NOMINATED -> SME(APPROVED); the pending nomination(s) become APPROVED."""
    lock_employee(db, employee.employeeId)
    life = load_lifecycle(db, employee.employeeId)
    if life.state == STATE_SME:
        raise ApiError("CONFLICT", "SME profile already exists")
    if life.state != STATE_NOMINATED:
        raise ApiError("FORBIDDEN", "You must be nominated before creating an SME profile")

    profile = SmeProfile(
        employeeId=int(employee.employeeId),
        status="APPROVED",
        statusReason="",
        createdAt=now,
        updatedAt=now,
    )
    db.add(profile)
    try:
        db.flush()
    except IntegrityError:
        raise ApiError("CONFLICT", "SME profile already exists")

    approved = (
        db.execute(
            select(SmeNomination)
            .where(SmeNomination.nomineeEmployeeId == int(employee.employeeId))
            .where(SmeNomination.status == "SUBMITTED")
        )
        .scalars()
        .all()
    )
    for n in approved:
        n.status = "APPROVED"
        n.decisionAt = now
    return profile, list(approved)


def toggle_status(profile: SmeProfile, *, now: str) -> str:
    """
    Self-service flip: APPROVED -> INACTIVE, anything else -> APPROVED.

    A SUSPENDED profile therefore comes back as APPROVED.
    """
    new_status = "INACTIVE" if profile.status == "APPROVED" else "APPROVED"
    profile.status = new_status
    profile.updatedAt = now
    return new_status


def set_status_by_coordinator(profile: SmeProfile, *, status: str, reason: str, now: str) -> str:
    s = str(status or "").upper().strip()
    if s not in COORDINATOR_STATUSES:
        raise ApiError("BAD_REQUEST", "Invalid status. Must be APPROVED or SUSPENDED")
    profile.status = s
    profile.statusReason = str(reason or "")
    profile.updatedAt = now
    return s


def remove_profile(db, *, profile: SmeProfile, now: str) -> dict:
    """SME(*) -> NONE, deleting every dependent row and rejecting APPROVED nominations."""
    sme_id = int(profile.smeId)
    employee_id = int(profile.employeeId)

    skill_ids = db.execute(select(SmeSkill.smeSkillId).where(SmeSkill.smeId == sme_id)).scalars().all()
    course_ids = db.execute(select(Course.courseId).where(Course.smeId == sme_id)).scalars().all()

    counts = {"skills": len(skill_ids), "courses": len(course_ids)}
    if skill_ids:
        counts["endorsements"] = db.execute(delete(Endorsement).where(Endorsement.smeSkillId.in_(skill_ids))).rowcount
    else:
        counts["endorsements"] = 0
    if course_ids:
        counts["enrollments"] = db.execute(
            delete(CourseEnrollment).where(CourseEnrollment.courseId.in_(course_ids))
        ).rowcount
    else:
        counts["enrollments"] = 0
    db.execute(delete(SmeSkill).where(SmeSkill.smeId == sme_id))
    counts["certifications"] = db.execute(delete(SmeCertification).where(SmeCertification.smeId == sme_id)).rowcount
    db.execute(delete(Course).where(Course.smeId == sme_id))
    db.delete(profile)

    counts["nominationsRejected"] = db.execute(
        update(SmeNomination)
        .where(SmeNomination.nomineeEmployeeId == employee_id)
        .where(SmeNomination.status == "APPROVED")
        .values(status="REJECTED", decisionNote=PROFILE_REMOVED_NOTE, decisionAt=now)
    ).rowcount
    db.flush()
    return counts
