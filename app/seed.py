"""Idempotent startup seed: only inserts what is missing, never overrides edits."""
from __future__ import annotations

import logging

from sqlalchemy import select

from auth import STATIC_RBAC_PERMISSIONS
from cache_layer import cache_invalidate_prefix
from models import Permission, Role, Skill, SkillCategory
from utils import iso_utc_now


log = logging.getLogger("seed")

ACTOR = "SYSTEM_INIT"

DEFAULT_ROLES = [
    ("EMPLOYEE", "Employee"),
    ("TEAM_LEADER", "Team Leader"),
    ("COORDINATOR", "Coordinator"),
    ("MANAGEMENT", "Management"),
]

DEFAULT_CATEGORIES = [
    ("Technology", "Technical and IT-related skills"),
    ("Business", "Business management and operations"),
    ("Design", "Creative and design skills"),
    ("Finance", "Financial and accounting expertise"),
]

DEFAULT_SKILLS = [
    ("Data Analytics", "Technology", "Data analysis, statistical modeling, visualization and BI tooling"),
    ("Project Management", "Business", "Agile, Scrum, Waterfall and hybrid delivery methodologies"),
    ("Cloud Architecture", "Technology", "AWS, Azure and GCP infrastructure design, serverless and microservices"),
    ("Machine Learning", "Technology", "Model development, deep learning frameworks and NLP applications"),
    ("UX/UI Design", "Design", "User research, interface design, prototyping and design systems"),
    ("Cybersecurity", "Technology", "Network security, threat detection, incident response and compliance"),
    ("Financial Modeling", "Finance", "Forecasting, DCF valuation, scenario analysis and risk modeling"),
    ("Supply Chain Management", "Business", "Logistics, inventory, demand forecasting and procurement"),
    ("Leadership", "Business", "Team leadership, strategic planning and change management"),
    ("Communication", "Business", "Presentation skills, stakeholder management and technical writing"),
]


def seed_roles_and_permissions(db) -> None:
    now = iso_utc_now()

    existing_roles = {str(r).upper() for r in db.execute(select(Role.roleCode)).scalars().all()}
    for code, name in DEFAULT_ROLES:
        if code in existing_roles:
            continue
        db.add(Role(roleCode=code, roleName=name, status="ACTIVE", createdAt=now, updatedAt=now))

    existing_perm = {
        (str(t or "").upper().strip(), str(k or "").upper().strip())
        for t, k in db.execute(select(Permission.permType, Permission.permKey)).all()
    }
    added = 0
    for action, roles in STATIC_RBAC_PERMISSIONS.items():
        if ("ACTION", action.upper()) in existing_perm:
            continue
        db.add(
            Permission(
                permType="ACTION",
                permKey=action.upper(),
                rolesCsv=",".join(roles),
                enabled=True,
                updatedAt=now,
                updatedBy=ACTOR,
            )
        )
        added += 1
    if added:
        log.info("seeded %s action permissions", added)
    cache_invalidate_prefix("RBAC:")


def seed_skill_catalog(db) -> None:
    categories = {c.categoryName: c for c in db.execute(select(SkillCategory)).scalars().all()}
    for name, description in DEFAULT_CATEGORIES:
        if name not in categories:
            cat = SkillCategory(categoryName=name, description=description)
            db.add(cat)
            categories[name] = cat
    db.flush()

    existing = set(db.execute(select(Skill.skillName)).scalars().all())
    added = 0
    for name, category, description in DEFAULT_SKILLS:
        if name in existing:
            continue
        db.add(
            Skill(
                skillName=name,
                categoryId=categories[category].categoryId,
                description=description,
                imageUrl="",
                isActive=True,
            )
        )
        added += 1
    if added:
        log.info("seeded %s catalog skills", added)
        cache_invalidate_prefix("CATALOG:")


def run_seed(db, cfg) -> None:
    seed_roles_and_permissions(db)
    if cfg.SEED_SKILL_CATALOG:
        seed_skill_catalog(db)
