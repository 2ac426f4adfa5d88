"""Seeding and request helpers shared by the API tests."""
from __future__ import annotations

import json
from typing import Optional

from db import SessionLocal
from models import DepartmentCoordinator, Employee, EmployeeRole, Skill, SmeNomination, SmeProfile, SmeSkill
from utils import iso_utc_now


def api(client, action: str, data: Optional[dict] = None, token: Optional[str] = None):
    payload = {"action": action, "token": token, "data": data or {}}
    return client.post("/api", data=json.dumps(payload), content_type="text/plain; charset=utf-8")


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def seed_employee(
    email: str,
    *,
    name: str = "",
    department: str = "Engineering",
    position: str = "Engineer",
    roles: tuple = (),
    active: bool = True,
    password_hash: str = "",
) -> int:
    now = iso_utc_now()
    with SessionLocal() as db:
        emp = Employee(
            empNumber=f"E-{email.split('@')[0].upper()}",
            fullName=name or email.split("@")[0].title(),
            email=email,
            position=position,
            departmentName=department,
            siteName="HQ",
            isActive=active,
            passwordHash=password_hash,
            createdAt=now,
            updatedAt=now,
        )
        db.add(emp)
        db.flush()
        for r in roles:
            db.add(EmployeeRole(employeeId=emp.employeeId, roleCode=r, assignedAt=now))
        db.commit()
        return int(emp.employeeId)


def assign_coordinator(employee_id: int, department: str) -> None:
    with SessionLocal() as db:
        db.add(DepartmentCoordinator(employeeId=employee_id, departmentName=department, assignedAt=iso_utc_now()))
        db.commit()


def seed_skill(name: str, *, description: str = "", active: bool = True) -> int:
    with SessionLocal() as db:
        s = Skill(skillName=name, description=description, isActive=active)
        db.add(s)
        db.commit()
        return int(s.skillId)


def seed_sme(employee_id: int, *, skill_ids: tuple = (), status: str = "APPROVED", nominator_id: Optional[int] = None):
    """Creates a profile directly (with its approved nomination); returns (smeId, [smeSkillId...])."""
    now = iso_utc_now()
    with SessionLocal() as db:
        if nominator_id is not None:
            db.add(
                SmeNomination(
                    nomineeEmployeeId=employee_id,
                    nominatedByEmployeeId=nominator_id,
                    departmentName="Engineering",
                    status="APPROVED",
                    requestedAt=now,
                    decisionAt=now,
                )
            )
        p = SmeProfile(employeeId=employee_id, status=status, bio="Bio", createdAt=now, updatedAt=now)
        db.add(p)
        db.flush()
        ss_ids = []
        for sid in skill_ids:
            ss = SmeSkill(smeId=p.smeId, skillId=sid, proficiency="Advanced", yearsExp=3, isActive=True)
            db.add(ss)
            db.flush()
            ss_ids.append(int(ss.smeSkillId))
        db.commit()
        return int(p.smeId), ss_ids


def login(client, email: str) -> str:
    res = api(client, "LOGIN_EXCHANGE", {"idToken": f"TEST:{email}"})
    body = res.get_json()
    assert body["ok"] is True, body
    return body["data"]["sessionToken"]
