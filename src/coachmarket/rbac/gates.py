"""Surface gates — route guards and inline content gates.

Both consume the same ``Authorizer.authorize`` decision so a page and a
button guarded by the same Requirement can never disagree.

Redirects:
- no authenticated user → /login
- authenticated but denied → the caller's fallback (default /unauthorized)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, TypeVar

from coachmarket.rbac.authorizer import Authorizer, Requirement

LOGIN_PATH = "/login"
UNAUTHORIZED_PATH = "/unauthorized"

T = TypeVar("T")


@dataclass(frozen=True)
class RouteDecision:
    """Whether to render a route, and where to send the user if not."""
    allowed: bool
    reason: str
    redirect: Optional[str] = None


def route_guard(
    authorizer: Authorizer,
    user_id: Optional[str],
    requirement: Requirement,
    fallback: str = UNAUTHORIZED_PATH,
) -> RouteDecision:
    if not user_id:
        return RouteDecision(False, "Not authenticated", redirect=LOGIN_PATH)
    decision = authorizer.authorize(user_id, requirement)
    if decision.allowed:
        return RouteDecision(True, decision.reason)
    return RouteDecision(False, decision.reason, redirect=fallback)


def permission_gate(
    authorizer: Authorizer,
    user_id: Optional[str],
    requirement: Requirement,
    content: T,
    fallback: Optional[T] = None,
) -> Optional[T]:
    """Return ``content`` when authorized, otherwise ``fallback``."""
    if user_id and authorizer.authorize(user_id, requirement).allowed:
        return content
    return fallback
