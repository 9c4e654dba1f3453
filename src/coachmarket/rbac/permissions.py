"""Permission catalog and the static role → permission table.

Permissions are never granted to individual users. They derive
entirely from the user's single Role through ROLE_PERMISSIONS, which is
built once at import and exposed read-only. There is no per-user
override path.
"""

from __future__ import annotations

import enum
from types import MappingProxyType
from typing import Any, Mapping

from coachmarket.models.identity import Role


class Permission(str, enum.Enum):
    """Named capabilities. Closed catalog."""
    # Profile
    VIEW_OWN_PROFILE = "view_own_profile"
    EDIT_OWN_PROFILE = "edit_own_profile"
    VIEW_OTHER_PROFILES = "view_other_profiles"
    MANAGE_USERS = "manage_users"
    # Resumes
    CREATE_RESUME = "create_resume"
    VIEW_OWN_RESUMES = "view_own_resumes"
    EDIT_OWN_RESUMES = "edit_own_resumes"
    DELETE_OWN_RESUMES = "delete_own_resumes"
    VIEW_ALL_RESUMES = "view_all_resumes"
    # Coaching
    VIEW_COACH_DIRECTORY = "view_coach_directory"
    BECOME_COACH = "become_coach"
    MANAGE_COACH_PROFILE = "manage_coach_profile"
    VIEW_CLIENT_SESSIONS = "view_client_sessions"
    MANAGE_AVAILABILITY = "manage_availability"
    RECEIVE_PAYMENTS = "receive_payments"
    # Marketplace
    CREATE_VERIFICATION_TASK = "create_verification_task"
    BID_ON_TASKS = "bid_on_tasks"
    ACCEPT_BIDS = "accept_bids"
    VIEW_MARKETPLACE = "view_marketplace"
    # Sessions
    BOOK_SESSION = "book_session"
    MANAGE_SESSIONS = "manage_sessions"
    VIEW_SESSION_NOTES = "view_session_notes"
    # Payments
    MAKE_PAYMENTS = "make_payments"
    VIEW_PAYMENT_HISTORY = "view_payment_history"
    MANAGE_PAYOUTS = "manage_payouts"
    # Admin
    MANAGE_PLATFORM = "manage_platform"
    VIEW_ANALYTICS = "view_analytics"
    MODERATE_CONTENT = "moderate_content"
    MANAGE_DISPUTES = "manage_disputes"


_JOB_SEEKER = frozenset({
    Permission.VIEW_OWN_PROFILE,
    Permission.EDIT_OWN_PROFILE,
    Permission.VIEW_OTHER_PROFILES,
    Permission.CREATE_RESUME,
    Permission.VIEW_OWN_RESUMES,
    Permission.EDIT_OWN_RESUMES,
    Permission.DELETE_OWN_RESUMES,
    Permission.VIEW_COACH_DIRECTORY,
    Permission.BECOME_COACH,
    Permission.CREATE_VERIFICATION_TASK,
    Permission.ACCEPT_BIDS,
    Permission.VIEW_MARKETPLACE,
    Permission.BOOK_SESSION,
    Permission.VIEW_SESSION_NOTES,
    Permission.MAKE_PAYMENTS,
    Permission.VIEW_PAYMENT_HISTORY,
})

_COACH = frozenset({
    Permission.VIEW_OWN_PROFILE,
    Permission.EDIT_OWN_PROFILE,
    Permission.VIEW_OTHER_PROFILES,
    Permission.VIEW_COACH_DIRECTORY,
    Permission.MANAGE_COACH_PROFILE,
    Permission.VIEW_CLIENT_SESSIONS,
    Permission.MANAGE_AVAILABILITY,
    Permission.RECEIVE_PAYMENTS,
    Permission.BID_ON_TASKS,
    Permission.VIEW_MARKETPLACE,
    Permission.MANAGE_SESSIONS,
    Permission.VIEW_SESSION_NOTES,
    Permission.VIEW_PAYMENT_HISTORY,
    Permission.MANAGE_PAYOUTS,
})

ROLE_PERMISSIONS: Mapping[Role, frozenset[Permission]] = MappingProxyType({
    Role.JOB_SEEKER: _JOB_SEEKER,
    Role.COACH: _COACH,
    Role.ADMIN: frozenset(Permission),
})

# Derived groupings, used by invariant checks and capability summaries.
COACH_ONLY_PERMISSIONS = _COACH - _JOB_SEEKER
ADMIN_ONLY_PERMISSIONS = frozenset(Permission) - _COACH - _JOB_SEEKER


def permissions_for(role: Role) -> frozenset[Permission]:
    """Return the permission set of a role (empty for an unknown role)."""
    return ROLE_PERMISSIONS.get(role, frozenset())


def parse_permission(value: Any) -> Permission | None:
    """Coerce a string or Permission; None for names outside the catalog."""
    if isinstance(value, Permission):
        return value
    try:
        return Permission(value)
    except ValueError:
        return None


def role_capabilities(role: Role) -> dict[str, Any]:
    """Summarise a role's permissions as UI-friendly capability flags."""
    perms = permissions_for(role)
    return {
        "role": role.value,
        "permissions": sorted(p.value for p in perms),
        "capabilities": {
            "can_create_resumes": Permission.CREATE_RESUME in perms,
            "can_become_coach": Permission.BECOME_COACH in perms,
            "can_bid_on_tasks": Permission.BID_ON_TASKS in perms,
            "can_manage_coach_profile": Permission.MANAGE_COACH_PROFILE in perms,
            "can_view_analytics": Permission.VIEW_ANALYTICS in perms,
            "can_manage_platform": Permission.MANAGE_PLATFORM in perms,
        },
    }
