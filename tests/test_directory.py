from __future__ import annotations

from db import SessionLocal
from models import CourseEnrollment
from support import api, bearer, login, seed_employee, seed_skill, seed_sme
from utils import iso_utc_now


def _endorse(client, sme_skill_id: int, *emails: str) -> None:
    for email in emails:
        seed_employee(email)
        token = login(client, email)
        assert api(client, "ENDORSEMENT_CREATE", {"smeSkillId": sme_skill_id}, token).status_code == 200


def test_experts_list_is_public_and_approved_only(app_client):
    _, client = app_client
    py = seed_skill("Python")
    visible, (ss,) = seed_sme(seed_employee("vis@example.com", name="Vera Visible"), skill_ids=(py,))
    seed_sme(seed_employee("hid@example.com", name="Hal Hidden"), status="INACTIVE")
    seed_sme(seed_employee("sus@example.com", name="Sam Suspended"), status="SUSPENDED")
    _endorse(client, ss, "e1@example.com")

    res = client.get("/api/experts")
    body = res.get_json()
    assert res.status_code == 200
    assert body["data"]["total"] == 1
    expert = body["data"]["experts"][0]
    assert expert["id"] == str(visible)
    assert expert["skills"] == [{"name": "Python"}]
    assert expert["endorsementCount"] == 1


def test_expert_detail_counts_students_and_experience(app_client):
    _, client = app_client
    skill = seed_skill("Spark")
    emp_id = seed_employee("det@example.com", name="Dee Detail", position="")
    sme_id, (ss,) = seed_sme(emp_id, skill_ids=(skill,))
    token = login(client, "det@example.com")
    course_id = api(client, "COURSE_CREATE", {"title": "Spark Basics", "deliveryMode": "TEAMS"}, token).get_json()[
        "data"
    ]["course"]["id"]

    for email in ("s1@example.com", "s2@example.com"):
        seed_employee(email)
        api(client, "ENROLL", {"courseId": course_id}, login(client, email))
    with SessionLocal() as db:
        db.add(CourseEnrollment(courseId=int(course_id), employeeId=emp_id, status="CANCELLED", enrolledAt=iso_utc_now()))
        db.commit()
    _endorse(client, ss, "fan@example.com")

    detail = client.get(f"/api/experts/{sme_id}").get_json()["data"]
    assert detail["name"] == "Dee Detail"
    assert detail["position"] == "Not specified"
    assert detail["studentCount"] == 2
    assert detail["yearsExperience"] == 3
    assert detail["totalEndorsements"] == 1
    assert detail["skills"][0]["endorsements"][0]["endorserPosition"] == "Engineer"
    assert detail["recentEndorsements"][0]["skillName"] == "Spark"
    assert detail["courses"][0]["deliveryMode"] == "Virtual"

    assert client.get("/api/experts/999").status_code == 404
    bad = client.get("/api/experts/not-a-number").get_json()
    assert bad["error"]["message"] == "Invalid expert ID"


def test_featured_experts_ranked_by_endorsements(app_client):
    _, client = app_client
    skill = seed_skill("Go")
    _, (low,) = seed_sme(seed_employee("low@example.com", name="Lo"), skill_ids=(skill,))
    top_id, (high,) = seed_sme(seed_employee("high@example.com", name="Hi", position="Principal"), skill_ids=(skill,))
    _endorse(client, high, "f1@example.com", "f2@example.com")
    _endorse(client, low, "f3@example.com")

    featured = api(client, "FEATURED_EXPERTS", {}).get_json()["data"]["experts"]
    assert featured[0] == {
        "id": str(top_id),
        "name": "Hi",
        "role": "Principal",
        "skills": "Go",
        "endorsements": 2,
        "verified": False,
        "imageUrl": None,
    }
    assert [e["endorsements"] for e in featured] == [2, 1]


def test_skills_list_pagination_and_top_experts(app_client):
    _, client = app_client
    ids = [seed_skill(name) for name in ("Ansible", "Bash", "C", "Docker", "Elixir", "Flask")]
    seed_sme(seed_employee("ann@example.com", name="Ann"), skill_ids=(ids[0],))
    seed_sme(seed_employee("bo@example.com", name="Bo"), skill_ids=(ids[0],), status="INACTIVE")

    first = api(client, "SKILLS_LIST", {}).get_json()["data"]
    assert [s["name"] for s in first["skills"]] == ["Ansible", "Bash", "C", "Docker", "Elixir"]
    assert first["skills"][0]["experts"] == 1
    assert first["skills"][0]["topExperts"] == ["Ann"]
    assert first["pagination"] == {
        "currentPage": 1,
        "totalPages": 2,
        "totalCount": 6,
        "limit": 5,
        "hasNextPage": True,
        "hasPreviousPage": False,
    }

    second = api(client, "SKILLS_LIST", {"page": 2}).get_json()["data"]
    assert [s["name"] for s in second["skills"]] == ["Flask"]
    assert second["pagination"]["hasPreviousPage"] is True

    searched = api(client, "SKILLS_LIST", {"search": "dock"}).get_json()["data"]
    assert [s["name"] for s in searched["skills"]] == ["Docker"]


def test_skills_catalog_uses_cache(app_client):
    _, client = app_client
    seed_skill("Zig")

    first = api(client, "SKILLS_CATALOG", {}).get_json()["data"]["skills"]
    assert first == [{"id": first[0]["id"], "name": "Zig", "description": None, "category": "Uncategorized"}]

    seed_skill("Nim")
    cached = client.get("/api/skills/list").get_json()["data"]["skills"]
    assert [s["name"] for s in cached] == ["Zig"]


def test_dashboard_stats_requires_management(app_client):
    _, client = app_client
    seed_employee("worker@example.com")
    worker = login(client, "worker@example.com")
    res = api(client, "DASHBOARD_STATS", {}, worker)
    assert res.status_code == 403
    assert res.get_json()["error"]["message"] == "Only Management can access dashboard"

    seed_employee("boss@example.com", roles=("MANAGEMENT",))
    seed_employee("tl@example.com", roles=("TEAM_LEADER",))
    nominee = seed_employee("nom@example.com", name="Nora Nominee", department="Finance")
    seed_sme(seed_employee("ok@example.com", department="Engineering"))
    seed_sme(seed_employee("off@example.com", department="Sales"), status="SUSPENDED")
    api(client, "NOMINATION_CREATE", {"nomineeEmployeeId": nominee}, login(client, "tl@example.com"))

    stats = client.get("/api/dashboard/stats", headers=bearer(login(client, "boss@example.com"))).get_json()["data"]
    assert stats["overview"]["totalSmes"] == 2
    assert stats["overview"]["approvedSmes"] == 1
    assert stats["overview"]["suspendedSmes"] == 1
    assert stats["overview"]["pendingNominations"] == 1
    assert stats["smesByDepartment"] == [{"department": "Engineering", "count": 1}]
    assert {s["status"]: s["count"] for s in stats["smesByStatus"]} == {"APPROVED": 1, "SUSPENDED": 1}
    assert stats["recentNominations"][0]["nominee"]["name"] == "Nora Nominee"
    assert stats["recentNominations"][0]["nominatedBy"] == "Tl"
