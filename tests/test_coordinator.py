from __future__ import annotations

from sqlalchemy import select

from db import SessionLocal
from models import Course, CourseEnrollment, Endorsement, Notification, SmeNomination, SmeProfile, SmeSkill
from support import api, assign_coordinator, bearer, login, seed_employee, seed_skill, seed_sme


def _coordinator(client, department="Engineering", email="coord@example.com"):
    coord_id = seed_employee(email, name="Cora Coordinator", roles=("COORDINATOR",), department=department)
    assign_coordinator(coord_id, department)
    return coord_id, login(client, email)


def test_coordinator_cannot_touch_other_department(app_client):
    _, client = app_client
    _, coord = _coordinator(client, department="Engineering")
    sales_emp = seed_employee("seller@example.com", department="Sales")
    sales_sme, _ = seed_sme(sales_emp)

    res = api(client, "COORDINATOR_SET_STATUS", {"smeId": sales_sme, "status": "SUSPENDED"}, coord)
    assert res.status_code == 403
    assert res.get_json()["error"]["message"] == "You don't have access to this SME's department"

    assert api(client, "DEPARTMENT_SME_GET", {"smeId": sales_sme}, coord).status_code == 403
    assert api(client, "SME_PROFILE_DELETE", {"smeId": sales_sme}, coord).status_code == 403

    with SessionLocal() as db:
        assert db.get(SmeProfile, sales_sme).status == "APPROVED"


def test_non_coordinator_is_forbidden(app_client):
    _, client = app_client
    seed_employee("regular@example.com")
    token = login(client, "regular@example.com")
    res = api(client, "DEPARTMENT_SMES_LIST", {}, token)
    assert res.status_code == 403
    assert res.get_json()["error"]["message"] == "Only Coordinators can access this resource"


def test_coordinator_without_departments_gets_empty_list(app_client):
    _, client = app_client
    seed_employee("floating@example.com", roles=("COORDINATOR",))
    token = login(client, "floating@example.com")
    out = api(client, "DEPARTMENT_SMES_LIST", {}, token).get_json()["data"]
    assert out == {"smes": [], "departments": [], "message": "No departments assigned to this coordinator"}


def test_list_scoped_to_departments_with_endorsement_totals(app_client):
    _, client = app_client
    _, coord = _coordinator(client)
    eng_emp = seed_employee("eng@example.com", name="Eli Engineer", position="")
    skill_id = seed_skill("Kubernetes")
    eng_sme, (sme_skill_id,) = seed_sme(eng_emp, skill_ids=(skill_id,))
    seed_sme(seed_employee("other@example.com", department="Sales"))

    seed_employee("peer@example.com")
    peer = login(client, "peer@example.com")
    api(client, "ENDORSEMENT_CREATE", {"smeSkillId": sme_skill_id}, peer)

    out = client.get("/api/department-smes", headers=bearer(coord)).get_json()["data"]
    assert out["departments"] == ["Engineering"]
    assert [s["id"] for s in out["smes"]] == [str(eng_sme)]
    sme = out["smes"][0]
    assert sme["employee"]["position"] == "Not specified"
    assert sme["skills"] == [{"id": str(sme_skill_id), "name": "Kubernetes", "endorsementCount": 1}]
    assert sme["totalEndorsements"] == 1

    detail = api(client, "DEPARTMENT_SME_GET", {"smeId": eng_sme}, coord).get_json()["data"]
    assert detail["skills"][0]["endorsements"][0]["endorserName"] == "Peer"


def test_suspend_and_reactivate_notifies(app_client):
    _, client = app_client
    _, coord = _coordinator(client)
    emp_id = seed_employee("sus@example.com", name="Sue Spended")
    sme_id, _ = seed_sme(emp_id)

    res = client.put(
        f"/api/department-smes/{sme_id}",
        json={"status": "SUSPENDED", "statusReason": "Outdated profile"},
        headers=bearer(coord),
    ).get_json()["data"]
    assert res["status"] == "SUSPENDED"
    assert res["message"] == "SME Sue Spended has been deactivated"

    experts = api(client, "EXPERTS_LIST", {}).get_json()["data"]
    assert experts["total"] == 0

    back = api(client, "COORDINATOR_SET_STATUS", {"smeId": sme_id, "status": "approved"}, coord).get_json()["data"]
    assert back["message"] == "SME Sue Spended has been activated"

    bad = api(client, "COORDINATOR_SET_STATUS", {"smeId": sme_id, "status": "INACTIVE"}, coord)
    assert bad.status_code == 400

    with SessionLocal() as db:
        types = db.execute(
            select(Notification.type).where(Notification.employeeId == emp_id).order_by(Notification.notificationId)
        ).scalars().all()
    assert types == ["PROFILE_DEACTIVATED", "PROFILE_ACTIVATED"]


def test_delete_profile_cascades_and_rejects_nomination(app_client):
    _, client = app_client
    _, coord = _coordinator(client)
    nominator = seed_employee("nominator@example.com", roles=("TEAM_LEADER",))
    emp_id = seed_employee("leaving@example.com", name="Lee Leaving")
    skill_id = seed_skill("Airflow")
    sme_id, (sme_skill_id,) = seed_sme(emp_id, skill_ids=(skill_id,), nominator_id=nominator)

    sme_token = login(client, "leaving@example.com")
    course_id = api(client, "COURSE_CREATE", {"title": "DAGs 101", "deliveryMode": "Hybrid"}, sme_token).get_json()[
        "data"
    ]["course"]["id"]

    seed_employee("learner@example.com")
    learner = login(client, "learner@example.com")
    api(client, "ENROLL", {"courseId": course_id}, learner)
    api(client, "ENDORSEMENT_CREATE", {"smeSkillId": sme_skill_id}, learner)

    res = client.delete(f"/api/department-smes/{sme_id}", headers=bearer(coord)).get_json()["data"]
    assert res["message"] == "SME profile for Lee Leaving has been deleted"
    assert res["removed"] == {
        "skills": 1,
        "courses": 1,
        "endorsements": 1,
        "enrollments": 1,
        "certifications": 0,
        "nominationsRejected": 1,
    }

    with SessionLocal() as db:
        assert db.get(SmeProfile, sme_id) is None
        assert db.execute(select(SmeSkill)).first() is None
        assert db.execute(select(Endorsement)).first() is None
        assert db.execute(select(Course)).first() is None
        assert db.execute(select(CourseEnrollment)).first() is None
        nomination = db.execute(select(SmeNomination)).scalar_one()
        note = db.execute(
            select(Notification).where(Notification.employeeId == emp_id).where(Notification.type == "NOMINATION_DECISION")
        ).scalar_one()
    assert nomination.status == "REJECTED"
    assert nomination.decisionNote == "SME profile was removed by coordinator"
    assert note.title == "Your SME profile was removed"

    mine = api(client, "MY_NOMINATION_GET", {}, sme_token).get_json()["data"]
    assert mine == {"status": "NONE"}

    assert api(client, "SME_PROFILE_DELETE", {"smeId": sme_id}, coord).status_code == 404
    assert api(client, "SME_PROFILE_DELETE", {"smeId": "abc"}, coord).get_json()["error"]["message"] == "Invalid SME ID"
