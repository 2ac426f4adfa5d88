from __future__ import annotations

from sqlalchemy import Boolean, Column, Float, Index, Integer, String, Text, UniqueConstraint, text

from db import Base


class Employee(Base):
    __tablename__ = "employees"

    employeeId = Column(Integer, primary_key=True, autoincrement=True)
    empNumber = Column(String, nullable=False, default="", index=True)
    fullName = Column(Text, nullable=False, default="")
    email = Column(String, nullable=False, unique=True, index=True)
    position = Column(Text, nullable=False, default="")
    departmentName = Column(String, nullable=False, default="", index=True)
    siteName = Column(Text, nullable=False, default="")
    imageUrl = Column(Text, nullable=False, default="")
    avatarUrl = Column(Text, nullable=False, default="")
    # Maintained by the HR sync; employees are deactivated, never deleted.
    isActive = Column(Boolean, nullable=False, default=True, index=True)
    # Password login is optional (SSO users have no hash).
    passwordHash = Column(Text, nullable=False, default="")
    # Bump to invalidate every issued session.
    authVersion = Column(Integer, nullable=False, default=0)
    createdAt = Column(Text, nullable=False, default="")
    updatedAt = Column(Text, nullable=False, default="")


class Role(Base):
    __tablename__ = "roles"

    roleCode = Column(String, primary_key=True)
    roleName = Column(String, nullable=False, default="")
    status = Column(String, nullable=False, default="ACTIVE")
    createdAt = Column(Text, nullable=False, default="")
    updatedAt = Column(Text, nullable=False, default="")


class EmployeeRole(Base):
    __tablename__ = "employee_roles"
    __table_args__ = (UniqueConstraint("employeeId", "roleCode", name="uq_employee_roles_emp_role"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    employeeId = Column(Integer, nullable=False, index=True)
    roleCode = Column(String, nullable=False, index=True)
    assignedAt = Column(Text, nullable=False, default="")


class DepartmentCoordinator(Base):
    __tablename__ = "department_coordinators"
    __table_args__ = (UniqueConstraint("employeeId", "departmentName", name="uq_dept_coordinators_emp_dept"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    employeeId = Column(Integer, nullable=False, index=True)
    departmentName = Column(String, nullable=False, index=True)
    assignedAt = Column(Text, nullable=False, default="")


class Permission(Base):
    __tablename__ = "permissions"
    __table_args__ = (UniqueConstraint("permType", "permKey", name="uq_permissions_type_key"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    permType = Column(String, nullable=False)
    permKey = Column(String, nullable=False)
    rolesCsv = Column(Text, nullable=False, default="")
    enabled = Column(Boolean, nullable=False, default=True)
    updatedAt = Column(Text, nullable=False, default="")
    updatedBy = Column(String, nullable=False, default="")


class Session(Base):
    __tablename__ = "sessions"

    sessionId = Column(String, primary_key=True)
    tokenHash = Column(String, nullable=False, unique=True, index=True)
    tokenPrefix = Column(String, nullable=False, default="", index=True)
    employeeId = Column(Integer, nullable=False, index=True)
    email = Column(String, nullable=False, default="")
    authVersion = Column(Integer, nullable=False, default=0)
    issuedAt = Column(Text, nullable=False, default="")
    expiresAt = Column(Text, nullable=False, default="")
    lastSeenAt = Column(Text, nullable=False, default="")
    revokedAt = Column(Text, nullable=False, default="")
    revokedBy = Column(String, nullable=False, default="")


class AuditLog(Base):
    __tablename__ = "audit_log"

    logId = Column(String, primary_key=True)
    entityType = Column(String, nullable=False, default="", index=True)
    entityId = Column(String, nullable=False, default="", index=True)
    action = Column(String, nullable=False, default="", index=True)
    fromState = Column(String, nullable=False, default="")
    toState = Column(String, nullable=False, default="")
    stageTag = Column(String, nullable=False, default="", index=True)
    remark = Column(Text, nullable=False, default="")
    actorUserId = Column(String, nullable=False, default="", index=True)
    actorRole = Column(String, nullable=False, default="")
    actorEmail = Column(Text, nullable=False, default="")
    at = Column(Text, nullable=False, default="", index=True)
    correlationId = Column(String, nullable=False, default="", index=True)
    beforeJson = Column(Text, nullable=False, default="")
    afterJson = Column(Text, nullable=False, default="")
    metaJson = Column(Text, nullable=False, default="")


class SkillCategory(Base):
    __tablename__ = "skill_categories"

    categoryId = Column(Integer, primary_key=True, autoincrement=True)
    categoryName = Column(String, nullable=False, unique=True)
    description = Column(Text, nullable=False, default="")


class Skill(Base):
    __tablename__ = "skills"

    skillId = Column(Integer, primary_key=True, autoincrement=True)
    categoryId = Column(Integer, nullable=True, index=True)
    skillName = Column(String, nullable=False, unique=True, index=True)
    description = Column(Text, nullable=False, default="")
    imageUrl = Column(Text, nullable=False, default="")
    isActive = Column(Boolean, nullable=False, default=True, index=True)


class SmeNomination(Base):
    __tablename__ = "sme_nominations"
    __table_args__ = (
        # At most one pending nomination per nominee.
        Index(
            "uq_sme_nominations_pending_nominee",
            "nomineeEmployeeId",
            unique=True,
            sqlite_where=text("status = 'SUBMITTED'"),
            postgresql_where=text("status = 'SUBMITTED'"),
        ),
    )

    nominationId = Column(Integer, primary_key=True, autoincrement=True)
    nomineeEmployeeId = Column(Integer, nullable=False, index=True)
    nominatedByEmployeeId = Column(Integer, nullable=False, index=True)
    # Snapshot of the nominee's department at nomination time.
    departmentName = Column(String, nullable=False, default="")
    # SUBMITTED | APPROVED | REJECTED
    status = Column(String, nullable=False, default="SUBMITTED", index=True)
    requestedAt = Column(Text, nullable=False, default="", index=True)
    decisionAt = Column(Text, nullable=False, default="")
    decisionNote = Column(Text, nullable=False, default="")


class SmeProfile(Base):
    __tablename__ = "sme_profiles"

    smeId = Column(Integer, primary_key=True, autoincrement=True)
    employeeId = Column(Integer, nullable=False, unique=True, index=True)
    # APPROVED | SUSPENDED | INACTIVE
    status = Column(String, nullable=False, default="APPROVED", index=True)
    statusReason = Column(Text, nullable=False, default="")
    bio = Column(Text, nullable=False, default="")
    # JSON weekly map: {"monday": {"enabled": true, "timeFrom": "09:00", "timeTo": "17:00"}, ...}
    availability = Column(Text, nullable=False, default="")
    contactPhone = Column(String, nullable=False, default="")
    contactPref = Column(String, nullable=False, default="")
    teamsLink = Column(Text, nullable=False, default="")
    languages = Column(Text, nullable=False, default="")
    createdAt = Column(Text, nullable=False, default="")
    updatedAt = Column(Text, nullable=False, default="")


class SmeSkill(Base):
    __tablename__ = "sme_skills"
    __table_args__ = (
        UniqueConstraint("smeId", "skillId", name="uq_sme_skills_sme_skill"),
        {"sqlite_autoincrement": True},
    )

    smeSkillId = Column(Integer, primary_key=True, autoincrement=True)
    smeId = Column(Integer, nullable=False, index=True)
    skillId = Column(Integer, nullable=False, index=True)
    proficiency = Column(String, nullable=False, default="Intermediate")
    yearsExp = Column(Float, nullable=True)
    isActive = Column(Boolean, nullable=False, default=True, index=True)


class Endorsement(Base):
    __tablename__ = "endorsements"
    __table_args__ = (
        UniqueConstraint("smeSkillId", "endorsedByEmployeeId", name="uq_endorsements_skill_endorser"),
        {"sqlite_autoincrement": True},
    )

    endorsementId = Column(Integer, primary_key=True, autoincrement=True)
    smeSkillId = Column(Integer, nullable=False, index=True)
    endorsedByEmployeeId = Column(Integer, nullable=False, index=True)
    comment = Column(Text, nullable=False, default="")
    endorsedAt = Column(Text, nullable=False, default="", index=True)


class SmeCertification(Base):
    __tablename__ = "sme_certifications"

    certificationId = Column(Integer, primary_key=True, autoincrement=True)
    smeId = Column(Integer, nullable=False, index=True)
    title = Column(Text, nullable=False, default="")
    issuer = Column(Text, nullable=False, default="")
    credentialId = Column(Text, nullable=False, default="")
    credentialUrl = Column(Text, nullable=False, default="")
    issuedDate = Column(String, nullable=False, default="")
    expiryDate = Column(String, nullable=False, default="")
    fileUrl = Column(Text, nullable=False, default="")


class Course(Base):
    __tablename__ = "courses"

    courseId = Column(Integer, primary_key=True, autoincrement=True)
    smeId = Column(Integer, nullable=False, index=True)
    title = Column(Text, nullable=False, default="")
    description = Column(Text, nullable=False, default="")
    targetAudience = Column(Text, nullable=False, default="")
    durationMinutes = Column(Integer, nullable=True)
    # Virtual | In-Person | Hybrid (TEAMS is a legacy alias of Virtual)
    deliveryMode = Column(String, nullable=False, default="")
    materialsUrl = Column(Text, nullable=False, default="")
    scheduledDate = Column(Text, nullable=False, default="", index=True)
    # NULL means unlimited seats.
    maxCapacity = Column(Integer, nullable=True)
    location = Column(Text, nullable=False, default="")
    isPublished = Column(Boolean, nullable=False, default=True, index=True)
    createdAt = Column(Text, nullable=False, default="")
    updatedAt = Column(Text, nullable=False, default="")


class CourseEnrollment(Base):
    __tablename__ = "course_enrollments"
    __table_args__ = (UniqueConstraint("courseId", "employeeId", name="uq_course_enrollments_course_emp"),)

    enrollmentId = Column(Integer, primary_key=True, autoincrement=True)
    courseId = Column(Integer, nullable=False, index=True)
    employeeId = Column(Integer, nullable=False, index=True)
    # ENROLLED | WAITLISTED | CANCELLED | COMPLETED
    status = Column(String, nullable=False, default="ENROLLED", index=True)
    enrolledAt = Column(Text, nullable=False, default="", index=True)
    completedAt = Column(Text, nullable=False, default="")
    cancelledAt = Column(Text, nullable=False, default="")
    feedback = Column(Text, nullable=False, default="")
    rating = Column(Integer, nullable=True)
    updatedAt = Column(Text, nullable=False, default="")


class Notification(Base):
    __tablename__ = "notifications"

    notificationId = Column(Integer, primary_key=True, autoincrement=True)
    employeeId = Column(Integer, nullable=False, index=True)
    type = Column(String, nullable=False, index=True)
    title = Column(Text, nullable=False, default="")
    message = Column(Text, nullable=False, default="")
    actionUrl = Column(Text, nullable=False, default="")
    relatedId = Column(Integer, nullable=True)
    isRead = Column(Boolean, nullable=False, default=False, index=True)
    createdAt = Column(Text, nullable=False, default="", index=True)
    readAt = Column(Text, nullable=False, default="")


class NotificationPreference(Base):
    __tablename__ = "notification_preferences"

    employeeId = Column(Integer, primary_key=True)
    emailEnabled = Column(Boolean, nullable=False, default=True)
    inAppEnabled = Column(Boolean, nullable=False, default=True)
    endorsements = Column(Boolean, nullable=False, default=True)
    nominations = Column(Boolean, nullable=False, default=True)
    profileChanges = Column(Boolean, nullable=False, default=True)
    updatedAt = Column(Text, nullable=False, default="")
