"""
Action dispatcher.

Every operation is a plain function `handler(data, auth, db, cfg)` that runs
inside the caller's unit of work; the HTTP layer owns commit/rollback.
"""
from __future__ import annotations

from typing import Any, Callable

from actions import auth_actions, coordinator, courses, directory, endorsements, nominations, notifications, sme_profile
from utils import ApiError, AuthContext


Handler = Callable[[dict, "AuthContext | None", Any, Any], Any]

ACTION_HANDLERS: dict[str, Handler] = {
    # Identity
    "LOGIN_EXCHANGE": auth_actions.login_exchange,
    "EMPLOYEE_LOGIN": auth_actions.employee_login,
    "LOGOUT": auth_actions.logout,
    "SESSION_VALIDATE": auth_actions.session_validate,
    "GET_ME": auth_actions.get_me,
    "PASSWORD_CHANGE": auth_actions.change_password,
    # Nomination gate
    "MY_NOMINATION_GET": nominations.my_nomination_get,
    "NOMINATIONS_LIST": nominations.nominations_list,
    "NOMINATION_CREATE": nominations.nomination_create,
    "EMPLOYEE_SEARCH": nominations.employee_search,
    # Expert profile
    "SME_PROFILE_GET": sme_profile.sme_profile_get,
    "SME_PROFILE_CREATE": sme_profile.sme_profile_create,
    "SME_PROFILE_UPDATE": sme_profile.sme_profile_update,
    "SME_PROFILE_TOGGLE_STATUS": sme_profile.sme_profile_toggle_status,
    # Coordinator
    "DEPARTMENT_SMES_LIST": coordinator.department_smes_list,
    "DEPARTMENT_SME_GET": coordinator.department_sme_get,
    "COORDINATOR_SET_STATUS": coordinator.coordinator_set_status,
    "SME_PROFILE_DELETE": coordinator.sme_profile_delete,
    # Endorsements
    "ENDORSEMENT_CREATE": endorsements.endorsement_create,
    "ENDORSED_SKILLS_GET": endorsements.endorsed_skills_get,
    # Courses and enrollment
    "COURSE_CREATE": courses.course_create,
    "COURSE_LIST_MINE": courses.course_list_mine,
    "COURSE_DELETE": courses.course_delete,
    "ENROLLMENT_COMPLETE": courses.enrollment_complete,
    "COURSES_LIST": courses.courses_list,
    "ENROLLMENT_GET": courses.enrollment_get,
    "ENROLL": courses.enroll,
    "ENROLLMENT_CANCEL": courses.enrollment_cancel,
    "MY_ENROLLMENTS": courses.my_enrollments,
    # Notifications
    "NOTIFICATIONS_LIST": notifications.notifications_list,
    "NOTIFICATIONS_MARK_ALL_READ": notifications.notifications_mark_all_read,
    "NOTIFICATION_MARK_READ": notifications.notification_mark_read,
    "NOTIFICATION_DELETE": notifications.notification_delete,
    "NOTIFICATIONS_UNREAD_COUNT": notifications.notifications_unread_count,
    "NOTIFICATION_PREFERENCES_GET": notifications.notification_preferences_get,
    "NOTIFICATION_PREFERENCES_UPDATE": notifications.notification_preferences_update,
    # Directory reads
    "EXPERTS_LIST": directory.experts_list,
    "EXPERT_GET": directory.expert_get,
    "FEATURED_EXPERTS": directory.featured_experts,
    "SKILLS_LIST": directory.skills_list,
    "SKILLS_CATALOG": directory.skills_catalog,
    "DASHBOARD_STATS": directory.dashboard_stats,
}


def dispatch(action: str, data: dict, auth: AuthContext | None, db, cfg) -> Any:
    action_u = str(action or "").upper().strip()
    handler = ACTION_HANDLERS.get(action_u)
    if handler is None:
        raise ApiError("BAD_REQUEST", f"Unknown action: {action_u}")
    return handler(data or {}, auth, db, cfg)
