"""RBAC authorizer — permission lookups and resource access decisions.

Two layers:
1. Flat permissions: user → role → ROLE_PERMISSIONS. Unknown users and
   unknown permission names fail closed.
2. Resource access: ownership and assignment rules per resource type,
   dispatched through a ResourceRegistry.

``authorize(user_id, requirement)`` combines both into one decision and
is the only entry point route guards and inline gates use.

Decision order for resource access:
    user missing → unknown resource type → resource missing → admin →
    ownership → registered carve-out → deny
Existence is checked before the admin shortcut so a nonexistent
resource reads as "Resource not found" for every role.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from coachmarket.errors import AuthorizationError, NotFoundError
from coachmarket.models.identity import Role, User
from coachmarket.persistence.document_store import DocumentStore
from coachmarket.rbac.permissions import Permission, parse_permission, permissions_for
from coachmarket.rbac.resources import (
    AccessDecision,
    ResourceRegistry,
    Subject,
)


@dataclass(frozen=True)
class ResourceRef:
    """A resource-specific requirement: action on (type, id)."""
    resource_type: str
    resource_id: str
    action: str = "view"


@dataclass(frozen=True)
class Requirement:
    """What a surface requires. Every part given must hold."""
    permission: Optional[Permission] = None
    role: Optional[Role] = None
    resource: Optional[ResourceRef] = None


class Authorizer:
    """Answers who may do what.

    Usage:
        authorizer = Authorizer(store)
        authorizer.has_permission("user_1", Permission.BID_ON_TASKS)
        decision = authorizer.can_access_resource(
            "user_1", "resume", "resume_1", "view",
        )
    """

    def __init__(
        self,
        store: DocumentStore,
        registry: Optional[ResourceRegistry] = None,
    ) -> None:
        self._store = store
        self._registry = registry or ResourceRegistry.default()

    @property
    def registry(self) -> ResourceRegistry:
        return self._registry

    # ------------------------------------------------------------------
    # Flat permissions
    # ------------------------------------------------------------------

    def has_permission(self, user_id: str, permission: Permission | str) -> bool:
        user = self._store.get("users", user_id)
        perm = parse_permission(permission)
        if user is None or perm is None:
            return False
        return perm in permissions_for(user.role)

    def get_user_permissions(self, user_id: str) -> frozenset[Permission]:
        user = self._store.get("users", user_id)
        if user is None:
            return frozenset()
        return permissions_for(user.role)

    def check_permissions(
        self, user_id: str, permissions: Iterable[Permission | str],
    ) -> dict[str, bool]:
        """Bulk lookup. Empty dict for an unknown user."""
        user = self._store.get("users", user_id)
        if user is None:
            return {}
        granted = permissions_for(user.role)
        result: dict[str, bool] = {}
        for raw in permissions:
            perm = parse_permission(raw)
            key = perm.value if perm is not None else str(raw)
            result[key] = perm is not None and perm in granted
        return result

    # ------------------------------------------------------------------
    # Resource access
    # ------------------------------------------------------------------

    def can_access_resource(
        self,
        user_id: str,
        resource_type: str,
        resource_id: str,
        action: str,
    ) -> AccessDecision:
        user = self._store.get("users", user_id)
        if user is None:
            return AccessDecision(False, "User not found")

        rule = self._registry.get(resource_type)
        if rule is None:
            return AccessDecision(False, "Unknown resource type")

        resource = self._store.get(rule.collection, resource_id)
        if resource is None:
            return AccessDecision(False, "Resource not found")

        if user.role == Role.ADMIN:
            return AccessDecision(True, "Admin access")

        if getattr(resource, rule.owner_attr, None) == user.user_id and rule.owner_may(action):
            return AccessDecision(True, "Owner access")

        decision = rule.carve_out(self.subject_for(user), resource, action)
        if decision is not None:
            return decision

        return AccessDecision(False, "Insufficient permissions")

    def authorize(self, user_id: Optional[str], requirement: Requirement) -> AccessDecision:
        """Single decision for a surface requirement."""
        if not user_id:
            return AccessDecision(False, "Not authenticated")
        user = self._store.get("users", user_id)
        if user is None:
            return AccessDecision(False, "User not found")

        if requirement.permission is not None:
            if requirement.permission not in permissions_for(user.role):
                return AccessDecision(
                    False, f"Missing permission: {requirement.permission.value}",
                )
        if requirement.role is not None and user.role != requirement.role:
            return AccessDecision(
                False, f"Requires role: {requirement.role.value}",
            )
        if requirement.resource is not None:
            ref = requirement.resource
            return self.can_access_resource(
                user_id, ref.resource_type, ref.resource_id, ref.action,
            )
        return AccessDecision(True, "Authorized")

    # ------------------------------------------------------------------
    # Enforcement helpers for mutating operations
    # ------------------------------------------------------------------

    def require_user(self, user_id: str) -> User:
        user = self._store.get("users", user_id)
        if user is None:
            raise NotFoundError(f"User not found: {user_id}")
        return user

    def require_permission(self, user: User, permission: Permission) -> None:
        if permission not in permissions_for(user.role):
            raise AuthorizationError(
                f"Role '{user.role.value}' lacks permission: {permission.value}"
            )

    def subject_for(self, user: User) -> Subject:
        return Subject(
            user=user,
            coach_profile=self._store.find_one("coaches", user_id=user.user_id),
        )
