"""Role-based access control — permissions, resource rules, role changes."""

from coachmarket.rbac.authorizer import Authorizer, Requirement, ResourceRef
from coachmarket.rbac.gates import RouteDecision, permission_gate, route_guard
from coachmarket.rbac.permissions import ROLE_PERMISSIONS, Permission, permissions_for
from coachmarket.rbac.resources import AccessDecision, ResourceRegistry, ResourceRule
from coachmarket.rbac.roles import RoleChange, RoleManager

__all__ = [
    "AccessDecision",
    "Authorizer",
    "Permission",
    "ROLE_PERMISSIONS",
    "Requirement",
    "ResourceRef",
    "ResourceRegistry",
    "ResourceRule",
    "RoleChange",
    "RoleManager",
    "RouteDecision",
    "permission_gate",
    "permissions_for",
    "route_guard",
]
