from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import case, delete, func, or_, select

from actions.helpers import append_audit, like_pattern, str_field
from auth import resolve_identity
from models import Course, CourseEnrollment, Employee, SmeProfile
from services import enrollment_service
from utils import ApiError, AuthContext, iso_utc_now, parse_datetime_maybe, parse_entity_id, parse_int_maybe, to_iso_utc


DELIVERY_MODES = ("Virtual", "In-Person", "Hybrid")
# Older rows use TEAMS for what is now shown as Virtual.
LEGACY_DELIVERY_ALIASES = {"TEAMS": "Virtual"}

_STATUS_ORDER = {"ENROLLED": 1, "WAITLISTED": 2, "COMPLETED": 3, "CANCELLED": 4}


def display_delivery_mode(mode: str) -> str:
    return LEGACY_DELIVERY_ALIASES.get(str(mode or "").upper(), mode or "")


def _normalize_delivery_mode(raw: Any) -> str:
    s = str(raw or "").strip()
    if not s:
        raise ApiError("BAD_REQUEST", "Delivery mode is required")
    if s.upper() in LEGACY_DELIVERY_ALIASES:
        return s.upper()
    for mode in DELIVERY_MODES:
        if mode.lower() == s.lower():
            return mode
    raise ApiError("BAD_REQUEST", f"Invalid delivery mode. Must be one of: {', '.join(DELIVERY_MODES)}")


def _optional_count(data: dict, key: str) -> Optional[int]:
    raw = (data or {}).get(key)
    if raw is None or str(raw).strip() == "":
        return None
    n = parse_int_maybe(raw, minimum=0)
    if n is None:
        raise ApiError("BAD_REQUEST", f"{key} must be a non-negative integer")
    return n


def enrolled_count_subquery():
    return (
        select(func.count(CourseEnrollment.enrollmentId))
        .where(CourseEnrollment.courseId == Course.courseId)
        .where(CourseEnrollment.status == "ENROLLED")
        .correlate(Course)
        .scalar_subquery()
    )


def serialize_course(course: Course, *, enrolled: int, instructor: Optional[Employee] = None) -> dict:
    out = {
        "id": str(course.courseId),
        "smeId": str(course.smeId),
        "title": course.title,
        "description": course.description or None,
        "targetAudience": course.targetAudience or None,
        "durationMinutes": course.durationMinutes,
        "deliveryMode": display_delivery_mode(course.deliveryMode),
        "materialsUrl": course.materialsUrl or None,
        "scheduledDate": course.scheduledDate or None,
        "maxCapacity": course.maxCapacity,
        "location": course.location or None,
        "enrolledCount": int(enrolled or 0),
        "isPublished": bool(course.isPublished),
        "createdAt": course.createdAt,
    }
    if instructor is not None:
        out["instructor"] = {
            "id": str(course.smeId),
            "name": instructor.fullName,
            "position": instructor.position or None,
            "department": instructor.departmentName or None,
            "imageUrl": instructor.imageUrl or instructor.avatarUrl or None,
        }
    return out


def _own_profile_or_404(db, employee_id: int) -> SmeProfile:
    profile = db.execute(select(SmeProfile).where(SmeProfile.employeeId == int(employee_id))).scalar_one_or_none()
    if not profile:
        raise ApiError("NOT_FOUND", "No SME profile found")
    return profile


def _owned_course(db, profile: SmeProfile, course_id: int, *, action_word: str) -> Course:
    course = db.get(Course, int(course_id))
    if not course:
        raise ApiError("NOT_FOUND", "Course not found")
    if int(course.smeId) != int(profile.smeId):
        raise ApiError("FORBIDDEN", f"You can only {action_word} your own courses")
    return course


def course_create(data, auth: AuthContext | None, db, cfg):
    ident = resolve_identity(db, auth)
    profile = _own_profile_or_404(db, ident.employee_id)

    title = str_field(data, "title")
    if not title:
        raise ApiError("BAD_REQUEST", "Course title is required")
    mode = _normalize_delivery_mode((data or {}).get("deliveryMode"))

    scheduled = ""
    raw_date = (data or {}).get("scheduledDate")
    if raw_date not in (None, ""):
        dt = parse_datetime_maybe(raw_date)
        if dt is None:
            raise ApiError("BAD_REQUEST", "Invalid scheduledDate")
        if dt < datetime.now(timezone.utc):
            raise ApiError("BAD_REQUEST", "Scheduled date cannot be in the past")
        scheduled = to_iso_utc(dt)

    now = iso_utc_now()
    course = Course(
        smeId=int(profile.smeId),
        title=title,
        description=str_field(data, "description"),
        targetAudience=str_field(data, "targetAudience"),
        durationMinutes=_optional_count(data, "durationMinutes"),
        deliveryMode=mode,
        materialsUrl=str_field(data, "materialsUrl"),
        scheduledDate=scheduled,
        maxCapacity=_optional_count(data, "maxCapacity") or None,
        location=str_field(data, "location"),
        isPublished=True,
        createdAt=now,
        updatedAt=now,
    )
    db.add(course)
    db.flush()

    append_audit(
        db,
        entityType="COURSE",
        entityId=course.courseId,
        action="COURSE_CREATE",
        actor=auth,
        at=now,
        after={"title": title, "deliveryMode": mode, "scheduledDate": scheduled, "maxCapacity": course.maxCapacity},
    )
    return {"course": serialize_course(course, enrolled=0), "message": "Course created successfully"}


def course_list_mine(data, auth: AuthContext | None, db, cfg):
    ident = resolve_identity(db, auth)
    profile = _own_profile_or_404(db, ident.employee_id)

    courses = (
        db.execute(select(Course).where(Course.smeId == int(profile.smeId)).order_by(Course.createdAt.desc()))
        .scalars()
        .all()
    )
    course_ids = [c.courseId for c in courses]

    by_course: dict[int, list[dict]] = {cid: [] for cid in course_ids}
    if course_ids:
        rows = db.execute(
            select(CourseEnrollment, Employee)
            .join(Employee, Employee.employeeId == CourseEnrollment.employeeId)
            .where(CourseEnrollment.courseId.in_(course_ids))
            .order_by(CourseEnrollment.enrolledAt.asc(), CourseEnrollment.enrollmentId.asc())
        ).all()
        for enr, emp in rows:
            by_course[int(enr.courseId)].append(
                {
                    "enrollmentId": str(enr.enrollmentId),
                    "status": enr.status,
                    "enrolledAt": enr.enrolledAt,
                    "completedAt": enr.completedAt or None,
                    "employee": {"id": str(emp.employeeId), "name": emp.fullName, "email": emp.email},
                }
            )

    items = []
    for c in courses:
        enrollments = by_course.get(int(c.courseId), [])
        counts = {s: sum(1 for e in enrollments if e["status"] == s) for s in _STATUS_ORDER}
        item = serialize_course(c, enrolled=counts["ENROLLED"])
        item.update(
            {
                "waitlistedCount": counts["WAITLISTED"],
                "completedCount": counts["COMPLETED"],
                "cancelledCount": counts["CANCELLED"],
                "enrollments": enrollments,
            }
        )
        items.append(item)
    return {"courses": items, "total": len(items)}


def course_delete(data, auth: AuthContext | None, db, cfg):
    ident = resolve_identity(db, auth)
    profile = _own_profile_or_404(db, ident.employee_id)
    course_id = parse_entity_id((data or {}).get("courseId"), message="Invalid course ID")
    course = _owned_course(db, profile, course_id, action_word="delete")

    removed = db.execute(delete(CourseEnrollment).where(CourseEnrollment.courseId == course.courseId)).rowcount
    db.delete(course)
    db.flush()

    append_audit(
        db,
        entityType="COURSE",
        entityId=course_id,
        action="COURSE_DELETE",
        actor=auth,
        before={"title": course.title},
        meta={"enrollmentsRemoved": int(removed or 0)},
    )
    return {"message": "Course deleted successfully"}


def enrollment_complete(data, auth: AuthContext | None, db, cfg):
    ident = resolve_identity(db, auth)
    profile = _own_profile_or_404(db, ident.employee_id)
    course_id = parse_entity_id((data or {}).get("courseId"), message="Invalid course ID")
    enrollment_id = parse_entity_id((data or {}).get("enrollmentId"), message="Invalid enrollment ID")
    course = _owned_course(db, profile, course_id, action_word="manage")

    now = iso_utc_now()
    row = enrollment_service.complete(db, course=course, enrollment_id=enrollment_id, now=now)

    append_audit(
        db,
        entityType="COURSE_ENROLLMENT",
        entityId=row.enrollmentId,
        action="ENROLLMENT_COMPLETE",
        actor=auth,
        at=now,
        fromState="ENROLLED",
        toState="COMPLETED",
        meta={"courseId": course_id, "employeeId": row.employeeId},
    )
    return {"enrollmentId": str(row.enrollmentId), "status": row.status, "completedAt": row.completedAt}


def courses_list(data, auth: AuthContext | None, db, cfg):
    status = str_field(data, "status").lower()
    mode = str_field(data, "deliveryMode")
    search = str_field(data, "search")

    enrolled = enrolled_count_subquery().label("enrolledCount")
    q = (
        select(Course, Employee, enrolled)
        .join(SmeProfile, SmeProfile.smeId == Course.smeId)
        .join(Employee, Employee.employeeId == SmeProfile.employeeId)
        .where(Course.isPublished.is_(True))
    )

    if mode and mode.lower() != "all":
        wanted = {mode}
        if mode.lower() == "virtual":
            wanted |= {"Virtual", "TEAMS"}
        q = q.where(Course.deliveryMode.in_(sorted(wanted)))

    now = iso_utc_now()
    if status == "upcoming":
        q = q.where(or_(Course.scheduledDate == "", Course.scheduledDate >= now))
    elif status == "past":
        q = q.where(Course.scheduledDate != "").where(Course.scheduledDate < now)

    if search:
        pattern = like_pattern(search)
        q = q.where(
            or_(
                func.lower(Course.title).like(pattern, escape="\\"),
                func.lower(Course.description).like(pattern, escape="\\"),
                func.lower(Course.targetAudience).like(pattern, escape="\\"),
                func.lower(Employee.fullName).like(pattern, escape="\\"),
            )
        )

    q = q.order_by(
        case((Course.scheduledDate == "", 1), else_=0),
        Course.scheduledDate.asc(),
        Course.createdAt.desc(),
    )
    items = [serialize_course(c, enrolled=n, instructor=e) for c, e, n in db.execute(q).all()]
    return {"courses": items, "total": len(items)}


def enrollment_get(data, auth: AuthContext | None, db, cfg):
    ident = resolve_identity(db, auth)
    course_id = parse_entity_id((data or {}).get("courseId"), message="Invalid course ID")

    course = db.get(Course, course_id)
    if not course:
        raise ApiError("NOT_FOUND", "Course not found")

    row = enrollment_service.find_enrollment(db, course_id, ident.employee_id)
    return {
        "isEnrolled": bool(row is not None and row.status == "ENROLLED"),
        "enrollment": (
            {
                "id": str(row.enrollmentId),
                "status": row.status,
                "enrolledAt": row.enrolledAt,
                "completedAt": row.completedAt or None,
            }
            if row is not None
            else None
        ),
        "enrolledCount": enrollment_service.enrolled_count(db, course_id),
        "maxCapacity": course.maxCapacity,
    }


def enroll(data, auth: AuthContext | None, db, cfg):
    ident = resolve_identity(db, auth)
    course_id = parse_entity_id((data or {}).get("courseId"), message="Invalid course ID")

    now = iso_utc_now()
    outcome = enrollment_service.enroll(db, course_id=course_id, employee_id=ident.employee_id, now=now)
    row = outcome.enrollment

    append_audit(
        db,
        entityType="COURSE_ENROLLMENT",
        entityId=row.enrollmentId,
        action="ENROLL",
        actor=auth,
        at=now,
        fromState="CANCELLED" if outcome.reenrolled else "",
        toState=row.status,
        meta={"courseId": course_id},
    )
    return {
        "success": True,
        "message": outcome.message,
        "status": row.status,
        "enrollmentId": str(row.enrollmentId),
        "courseTitle": outcome.course.title,
    }


def enrollment_cancel(data, auth: AuthContext | None, db, cfg):
    ident = resolve_identity(db, auth)
    course_id = parse_entity_id((data or {}).get("courseId"), message="Invalid course ID")

    now = iso_utc_now()
    before = enrollment_service.find_enrollment(db, course_id, ident.employee_id)
    before_status = before.status if before is not None else ""
    outcome = enrollment_service.cancel(db, course_id=course_id, employee_id=ident.employee_id, now=now)

    append_audit(
        db,
        entityType="COURSE_ENROLLMENT",
        entityId=outcome.enrollment.enrollmentId,
        action="ENROLLMENT_CANCEL",
        actor=auth,
        at=now,
        fromState=before_status,
        toState="CANCELLED",
        meta={"courseId": course_id},
    )
    if outcome.promoted is not None:
        append_audit(
            db,
            entityType="COURSE_ENROLLMENT",
            entityId=outcome.promoted.enrollmentId,
            action="WAITLIST_PROMOTE",
            actor=auth,
            at=now,
            fromState="WAITLISTED",
            toState="ENROLLED",
            meta={"courseId": course_id, "employeeId": outcome.promoted.employeeId},
        )
    return {"success": True, "message": "Enrollment cancelled successfully"}


def my_enrollments(data, auth: AuthContext | None, db, cfg):
    ident = resolve_identity(db, auth)
    status = str_field(data, "status").upper()

    enrolled = enrolled_count_subquery().label("enrolledCount")
    q = (
        select(CourseEnrollment, Course, Employee, enrolled)
        .join(Course, Course.courseId == CourseEnrollment.courseId)
        .join(SmeProfile, SmeProfile.smeId == Course.smeId)
        .join(Employee, Employee.employeeId == SmeProfile.employeeId)
        .where(CourseEnrollment.employeeId == ident.employee_id)
    )
    if status and status != "ALL":
        if status not in _STATUS_ORDER:
            raise ApiError("BAD_REQUEST", f"Invalid status: {status}")
        q = q.where(CourseEnrollment.status == status)

    q = q.order_by(
        case(_STATUS_ORDER, value=CourseEnrollment.status, else_=5),
        case((Course.scheduledDate == "", 1), else_=0),
        Course.scheduledDate.asc(),
    )

    items = []
    for enr, course, instructor, n in db.execute(q).all():
        items.append(
            {
                "enrollmentId": str(enr.enrollmentId),
                "status": enr.status,
                "enrolledAt": enr.enrolledAt,
                "completedAt": enr.completedAt or None,
                "cancelledAt": enr.cancelledAt or None,
                "feedback": enr.feedback or None,
                "rating": enr.rating,
                "course": serialize_course(course, enrolled=n, instructor=instructor),
            }
        )

    summary = {s.lower(): sum(1 for i in items if i["status"] == s) for s in _STATUS_ORDER}
    return {"enrollments": items, "summary": summary, "total": len(items)}
