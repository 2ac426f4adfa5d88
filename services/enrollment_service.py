"""
Capacity-bounded course enrollment with FIFO waitlist promotion.

Each operation locks the course row first (SELECT ... FOR UPDATE) so the
ENROLLED count it reads cannot change before it writes; the lock is held
until the request's transaction commits.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from sqlalchemy import func, select

from models import Course, CourseEnrollment
from utils import ApiError


ENROLLMENT_STATUSES = ("ENROLLED", "WAITLISTED", "CANCELLED", "COMPLETED")


@dataclass
class EnrollOutcome:
    enrollment: CourseEnrollment
    course: Course
    message: str
    reenrolled: bool = False


@dataclass
class CancelOutcome:
    enrollment: CourseEnrollment
    promoted: Optional[CourseEnrollment]


def lock_course(db, course_id: int) -> Optional[Course]:
    return (
        db.execute(select(Course).where(Course.courseId == int(course_id)).with_for_update(of=Course))
        .scalars()
        .first()
    )


def enrolled_count(db, course_id: int) -> int:
    return int(
        db.execute(
            select(func.count(CourseEnrollment.enrollmentId))
            .where(CourseEnrollment.courseId == int(course_id))
            .where(CourseEnrollment.status == "ENROLLED")
        ).scalar()
        or 0
    )


def has_free_seat(db, course: Course) -> bool:
    # 0 and NULL both mean unlimited.
    if not course.maxCapacity:
        return True
    return enrolled_count(db, course.courseId) < int(course.maxCapacity)


def find_enrollment(db, course_id: int, employee_id: int) -> Optional[CourseEnrollment]:
    return (
        db.execute(
            select(CourseEnrollment)
            .where(CourseEnrollment.courseId == int(course_id))
            .where(CourseEnrollment.employeeId == int(employee_id))
        )
        .scalars()
        .first()
    )


def enroll(db, *, course_id: int, employee_id: int, now: str) -> EnrollOutcome:
    course = lock_course(db, course_id)
    if not course:
        raise ApiError("NOT_FOUND", "Course not found")
    if not bool(course.isPublished):
        raise ApiError("BAD_REQUEST", "Course is not available for enrollment")

    existing = find_enrollment(db, course_id, employee_id)
    if existing is not None:
        if existing.status == "ENROLLED":
            raise ApiError("CONFLICT", "Already enrolled in this course")
        if existing.status == "WAITLISTED":
            raise ApiError("CONFLICT", "You are already on the waitlist for this course")
        if existing.status == "COMPLETED":
            raise ApiError("CONFLICT", "You have already completed this course")

        # CANCELLED: reuse the row; it joins the back of the queue.
        seat = has_free_seat(db, course)
        existing.status = "ENROLLED" if seat else "WAITLISTED"
        existing.enrolledAt = now
        existing.cancelledAt = ""
        existing.updatedAt = now
        db.flush()
        msg = "Successfully re-enrolled in course" if seat else "Course is full. You have been added to the waitlist."
        return EnrollOutcome(enrollment=existing, course=course, message=msg, reenrolled=True)

    seat = has_free_seat(db, course)
    row = CourseEnrollment(
        courseId=int(course.courseId),
        employeeId=int(employee_id),
        status="ENROLLED" if seat else "WAITLISTED",
        enrolledAt=now,
        completedAt="",
        cancelledAt="",
        feedback="",
        rating=None,
        updatedAt=now,
    )
    db.add(row)
    db.flush()
    msg = "Successfully enrolled in course" if seat else "Course is full. You have been added to the waitlist."
    return EnrollOutcome(enrollment=row, course=course, message=msg)


def promote_waitlist(db, course: Course, *, now: str) -> Optional[CourseEnrollment]:
    """Moves the oldest WAITLISTED row to ENROLLED if a seat is free."""
    if not has_free_seat(db, course):
        return None
    nxt = (
        db.execute(
            select(CourseEnrollment)
            .where(CourseEnrollment.courseId == int(course.courseId))
            .where(CourseEnrollment.status == "WAITLISTED")
            .order_by(CourseEnrollment.enrolledAt.asc(), CourseEnrollment.enrollmentId.asc())
            .limit(1)
        )
        .scalars()
        .first()
    )
    if nxt is None:
        return None
    nxt.status = "ENROLLED"
    nxt.updatedAt = now
    db.flush()
    return nxt


def cancel(db, *, course_id: int, employee_id: int, now: str) -> CancelOutcome:
    course = lock_course(db, course_id)
    existing = find_enrollment(db, course_id, employee_id) if course else None
    if existing is None:
        raise ApiError("BAD_REQUEST", "Not enrolled in this course")
    if existing.status == "CANCELLED":
        raise ApiError("BAD_REQUEST", "Enrollment already cancelled")
    if existing.status == "COMPLETED":
        raise ApiError("BAD_REQUEST", "Cannot cancel a completed course")

    existing.status = "CANCELLED"
    existing.cancelledAt = now
    existing.updatedAt = now
    db.flush()

    promoted = promote_waitlist(db, course, now=now)
    return CancelOutcome(enrollment=existing, promoted=promoted)


def complete(db, *, course: Course, enrollment_id: int, now: str) -> CourseEnrollment:
    row = db.get(CourseEnrollment, int(enrollment_id))
    if row is None or int(row.courseId) != int(course.courseId):
        raise ApiError("NOT_FOUND", "Enrollment not found")
    if row.status != "ENROLLED":
        raise ApiError("BAD_REQUEST", "Only enrolled participants can be marked as completed")
    row.status = "COMPLETED"
    row.completedAt = now
    row.updatedAt = now
    db.flush()
    return row
