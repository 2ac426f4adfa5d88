from __future__ import annotations

import time

from sqlalchemy import select

from db import SessionLocal
from models import AuditLog, CourseEnrollment
from support import api, bearer, login, seed_employee, seed_sme


def _setup_instructor(client, email="instructor@example.com"):
    emp_id = seed_employee(email, name="Ivy Instructor", position="Staff Engineer")
    sme_id, _ = seed_sme(emp_id)
    return sme_id, login(client, email)


def _create_course(client, token, **overrides):
    data = {"title": "Intro to Kafka", "deliveryMode": "Virtual", "durationMinutes": 90}
    data.update(overrides)
    res = api(client, "COURSE_CREATE", data, token)
    body = res.get_json()
    assert res.status_code == 200, body
    return body["data"]["course"]


def _statuses(course_id) -> dict[int, str]:
    with SessionLocal() as db:
        rows = db.execute(select(CourseEnrollment).where(CourseEnrollment.courseId == int(course_id))).scalars().all()
    return {int(r.employeeId): r.status for r in rows}


def _enrolled(course_id) -> int:
    return sum(1 for s in _statuses(course_id).values() if s == "ENROLLED")


def test_capacity_one_waitlist_promotes_on_cancel(app_client):
    _, client = app_client
    _, instructor = _setup_instructor(client)
    course = _create_course(client, instructor, maxCapacity=1)
    course_id = course["id"]

    seed_employee("alice@example.com")
    seed_employee("bob@example.com")
    alice = login(client, "alice@example.com")
    bob = login(client, "bob@example.com")

    first = api(client, "ENROLL", {"courseId": course_id}, alice).get_json()
    assert first["ok"] is True
    assert first["data"]["status"] == "ENROLLED"

    second = api(client, "ENROLL", {"courseId": course_id}, bob).get_json()
    assert second["ok"] is True
    assert second["data"]["status"] == "WAITLISTED"
    assert "waitlist" in second["data"]["message"].lower()

    cancelled = api(client, "ENROLLMENT_CANCEL", {"courseId": course_id}, alice).get_json()
    assert cancelled["ok"] is True
    assert cancelled["data"]["message"] == "Enrollment cancelled successfully"

    bob_view = api(client, "ENROLLMENT_GET", {"courseId": course_id}, bob).get_json()["data"]
    assert bob_view["isEnrolled"] is True
    assert bob_view["enrollment"]["status"] == "ENROLLED"
    assert bob_view["enrolledCount"] == 1
    assert bob_view["maxCapacity"] == 1

    with SessionLocal() as db:
        actions = db.execute(select(AuditLog.action).where(AuditLog.entityType == "COURSE_ENROLLMENT")).scalars().all()
    assert "WAITLIST_PROMOTE" in actions


def test_enroll_twice_conflicts(app_client):
    _, client = app_client
    _, instructor = _setup_instructor(client)
    course_id = _create_course(client, instructor)["id"]
    seed_employee("carol@example.com")
    carol = login(client, "carol@example.com")

    assert api(client, "ENROLL", {"courseId": course_id}, carol).get_json()["ok"] is True
    res = api(client, "ENROLL", {"courseId": course_id}, carol)
    body = res.get_json()
    assert res.status_code == 409
    assert body["error"]["code"] == "CONFLICT"
    assert body["error"]["message"] == "Already enrolled in this course"


def test_reenroll_after_cancel_reuses_row(app_client):
    _, client = app_client
    _, instructor = _setup_instructor(client)
    course_id = _create_course(client, instructor)["id"]
    seed_employee("dan@example.com")
    dan = login(client, "dan@example.com")

    first = api(client, "ENROLL", {"courseId": course_id}, dan).get_json()["data"]
    api(client, "ENROLLMENT_CANCEL", {"courseId": course_id}, dan)
    again = api(client, "ENROLL", {"courseId": course_id}, dan).get_json()["data"]

    assert again["enrollmentId"] == first["enrollmentId"]
    assert again["status"] == "ENROLLED"
    assert again["message"] == "Successfully re-enrolled in course"

    with SessionLocal() as db:
        rows = db.execute(select(CourseEnrollment).where(CourseEnrollment.courseId == int(course_id))).scalars().all()
    assert len(rows) == 1
    assert rows[0].cancelledAt == ""


def test_cancel_without_enrollment_is_bad_request(app_client):
    _, client = app_client
    _, instructor = _setup_instructor(client)
    course_id = _create_course(client, instructor)["id"]
    seed_employee("erin@example.com")
    erin = login(client, "erin@example.com")

    res = api(client, "ENROLLMENT_CANCEL", {"courseId": course_id}, erin)
    assert res.status_code == 400
    assert res.get_json()["error"]["message"] == "Not enrolled in this course"


def test_course_create_validation(app_client):
    _, client = app_client
    _, instructor = _setup_instructor(client)

    missing_title = api(client, "COURSE_CREATE", {"title": " ", "deliveryMode": "Virtual"}, instructor).get_json()
    assert missing_title["error"]["message"] == "Course title is required"

    bad_mode = api(client, "COURSE_CREATE", {"title": "X", "deliveryMode": "Carrier pigeon"}, instructor).get_json()
    assert bad_mode["error"]["code"] == "BAD_REQUEST"
    assert bad_mode["error"]["message"].startswith("Invalid delivery mode")

    past = api(
        client,
        "COURSE_CREATE",
        {"title": "X", "deliveryMode": "Hybrid", "scheduledDate": "2001-01-01T10:00:00Z"},
        instructor,
    ).get_json()
    assert past["error"]["message"] == "Scheduled date cannot be in the past"


def test_course_create_requires_profile(app_client):
    _, client = app_client
    seed_employee("noprofile@example.com")
    token = login(client, "noprofile@example.com")

    res = api(client, "COURSE_CREATE", {"title": "X", "deliveryMode": "Virtual"}, token)
    assert res.status_code == 404
    assert res.get_json()["error"]["message"] == "No SME profile found"


def test_course_delete_only_by_owner(app_client):
    _, client = app_client
    _, owner = _setup_instructor(client)
    course_id = _create_course(client, owner)["id"]
    _, other = _setup_instructor(client, email="other.sme@example.com")

    res = api(client, "COURSE_DELETE", {"courseId": course_id}, other)
    assert res.status_code == 403
    assert res.get_json()["error"]["message"] == "You can only delete your own courses"

    ok_res = api(client, "COURSE_DELETE", {"courseId": course_id}, owner).get_json()
    assert ok_res["data"]["message"] == "Course deleted successfully"

    listed = api(client, "COURSES_LIST", {}).get_json()["data"]
    assert listed["total"] == 0


def test_complete_enrollment_and_my_enrollments(app_client):
    _, client = app_client
    _, instructor = _setup_instructor(client)
    course_id = _create_course(client, instructor)["id"]
    seed_employee("fay@example.com", name="Fay Learner")
    fay = login(client, "fay@example.com")

    enrollment_id = api(client, "ENROLL", {"courseId": course_id}, fay).get_json()["data"]["enrollmentId"]

    mine = api(client, "COURSE_LIST_MINE", {}, instructor).get_json()["data"]
    assert mine["total"] == 1
    roster = mine["courses"][0]["enrollments"]
    assert roster[0]["employee"]["name"] == "Fay Learner"

    done = api(client, "ENROLLMENT_COMPLETE", {"courseId": course_id, "enrollmentId": enrollment_id}, instructor)
    assert done.get_json()["data"]["status"] == "COMPLETED"

    again = api(client, "ENROLLMENT_COMPLETE", {"courseId": course_id, "enrollmentId": enrollment_id}, instructor)
    assert again.status_code == 400

    summary = api(client, "MY_ENROLLMENTS", {}, fay).get_json()["data"]
    assert summary["summary"]["completed"] == 1
    assert summary["enrollments"][0]["status"] == "COMPLETED"

    bad = api(client, "MY_ENROLLMENTS", {"status": "NOPE"}, fay)
    assert bad.status_code == 400


def test_courses_list_filters_delivery_mode(app_client):
    _, client = app_client
    _, instructor = _setup_instructor(client)
    _create_course(client, instructor, title="Remote Rust", deliveryMode="Virtual")
    _create_course(client, instructor, title="Onsite Go", deliveryMode="In-Person")

    everything = api(client, "COURSES_LIST", {"deliveryMode": "all"}).get_json()["data"]
    assert everything["total"] == 2

    virtual = api(client, "COURSES_LIST", {"deliveryMode": "Virtual"}).get_json()["data"]
    assert [c["title"] for c in virtual["courses"]] == ["Remote Rust"]
    assert virtual["courses"][0]["instructor"]["name"] == "Ivy Instructor"

    searched = api(client, "COURSES_LIST", {"search": "go"}).get_json()["data"]
    assert [c["title"] for c in searched["courses"]] == ["Onsite Go"]


def test_rest_enroll_route(app_client):
    _, client = app_client
    _, instructor = _setup_instructor(client)
    course_id = _create_course(client, instructor)["id"]
    seed_employee("gus@example.com")
    gus = login(client, "gus@example.com")

    res = client.post(f"/api/courses/{course_id}/enroll", json={}, headers=bearer(gus))
    assert res.status_code == 200
    assert res.get_json()["data"]["status"] == "ENROLLED"

    status = client.get(f"/api/courses/{course_id}/enroll", headers=bearer(gus)).get_json()
    assert status["data"]["isEnrolled"] is True

    res = client.delete(f"/api/courses/{course_id}/enroll", headers=bearer(gus))
    assert res.get_json()["ok"] is True


def test_waitlist_promotes_oldest_first(app_client):
    _, client = app_client
    _, instructor = _setup_instructor(client)
    course_id = _create_course(client, instructor, maxCapacity=2)["id"]

    ids, tokens = {}, {}
    for name in ("amy", "ben", "cal", "dee", "eli"):
        ids[name] = seed_employee(f"{name}@example.com")
        tokens[name] = login(client, f"{name}@example.com")
        api(client, "ENROLL", {"courseId": course_id}, tokens[name])
        assert _enrolled(course_id) <= 2

    statuses = _statuses(course_id)
    assert [statuses[ids[n]] for n in ("amy", "ben", "cal", "dee", "eli")] == [
        "ENROLLED",
        "ENROLLED",
        "WAITLISTED",
        "WAITLISTED",
        "WAITLISTED",
    ]

    api(client, "ENROLLMENT_CANCEL", {"courseId": course_id}, tokens["amy"])
    statuses = _statuses(course_id)
    assert statuses[ids["cal"]] == "ENROLLED"
    assert statuses[ids["dee"]] == "WAITLISTED"
    assert statuses[ids["eli"]] == "WAITLISTED"
    assert _enrolled(course_id) == 2

    api(client, "ENROLLMENT_CANCEL", {"courseId": course_id}, tokens["ben"])
    statuses = _statuses(course_id)
    assert statuses[ids["dee"]] == "ENROLLED"
    assert statuses[ids["eli"]] == "WAITLISTED"
    assert _enrolled(course_id) == 2


def test_cancel_cancelled_or_completed_is_rejected_without_change(app_client):
    _, client = app_client
    _, instructor = _setup_instructor(client)
    open_course = _create_course(client, instructor)["id"]
    small_course = _create_course(client, instructor, title="Kafka Streams", maxCapacity=1)["id"]

    fay_id = seed_employee("fay@example.com")
    gus_id = seed_employee("gus@example.com")
    hal_id = seed_employee("hal@example.com")
    fay = login(client, "fay@example.com")
    gus = login(client, "gus@example.com")
    hal = login(client, "hal@example.com")

    api(client, "ENROLL", {"courseId": open_course}, fay)
    api(client, "ENROLLMENT_CANCEL", {"courseId": open_course}, fay)
    with SessionLocal() as db:
        before = db.execute(
            select(CourseEnrollment.status, CourseEnrollment.cancelledAt, CourseEnrollment.updatedAt)
            .where(CourseEnrollment.courseId == int(open_course))
            .where(CourseEnrollment.employeeId == fay_id)
        ).one()

    res = api(client, "ENROLLMENT_CANCEL", {"courseId": open_course}, fay)
    assert res.status_code == 400
    assert res.get_json()["error"]["message"] == "Enrollment already cancelled"
    with SessionLocal() as db:
        after = db.execute(
            select(CourseEnrollment.status, CourseEnrollment.cancelledAt, CourseEnrollment.updatedAt)
            .where(CourseEnrollment.courseId == int(open_course))
            .where(CourseEnrollment.employeeId == fay_id)
        ).one()
    assert tuple(after) == tuple(before)

    gus_enrollment = api(client, "ENROLL", {"courseId": small_course}, gus).get_json()["data"]["enrollmentId"]
    assert api(client, "ENROLL", {"courseId": small_course}, hal).get_json()["data"]["status"] == "WAITLISTED"
    done = api(client, "ENROLLMENT_COMPLETE", {"courseId": small_course, "enrollmentId": gus_enrollment}, instructor)
    assert done.status_code == 200

    res = api(client, "ENROLLMENT_CANCEL", {"courseId": small_course}, gus)
    assert res.status_code == 400
    assert res.get_json()["error"]["message"] == "Cannot cancel a completed course"
    assert _statuses(small_course) == {gus_id: "COMPLETED", hal_id: "WAITLISTED"}


def test_reenroll_when_full_is_waitlisted(app_client):
    _, client = app_client
    _, instructor = _setup_instructor(client)
    course_id = _create_course(client, instructor, maxCapacity=1)["id"]

    ids, tokens = {}, {}
    for name in ("ida", "jon", "kim"):
        ids[name] = seed_employee(f"{name}@example.com")
        tokens[name] = login(client, f"{name}@example.com")

    first = api(client, "ENROLL", {"courseId": course_id}, tokens["ida"]).get_json()["data"]
    api(client, "ENROLLMENT_CANCEL", {"courseId": course_id}, tokens["ida"])
    api(client, "ENROLL", {"courseId": course_id}, tokens["jon"])
    api(client, "ENROLL", {"courseId": course_id}, tokens["kim"])
    time.sleep(0.01)

    again = api(client, "ENROLL", {"courseId": course_id}, tokens["ida"]).get_json()["data"]
    assert again["enrollmentId"] == first["enrollmentId"]
    assert again["status"] == "WAITLISTED"
    assert again["message"] == "Course is full. You have been added to the waitlist."
    assert _enrolled(course_id) == 1

    # ida rejoined after kim, so kim is promoted first despite ida's older row.
    api(client, "ENROLLMENT_CANCEL", {"courseId": course_id}, tokens["jon"])
    statuses = _statuses(course_id)
    assert statuses[ids["kim"]] == "ENROLLED"
    assert statuses[ids["ida"]] == "WAITLISTED"
    assert _enrolled(course_id) == 1


def test_zero_capacity_means_unlimited(app_client):
    _, client = app_client
    _, instructor = _setup_instructor(client)
    course = _create_course(client, instructor, maxCapacity=0)
    assert course["maxCapacity"] is None

    for name in ("lea", "max"):
        seed_employee(f"{name}@example.com")
        res = api(client, "ENROLL", {"courseId": course["id"]}, login(client, f"{name}@example.com"))
        assert res.get_json()["data"]["status"] == "ENROLLED"
    assert _enrolled(course["id"]) == 2
