"""Resource access rules — per-entity decisions on top of flat permissions.

Flat permissions cannot express relationships such as "the coach
assigned to this task". Those rules live here as a registry mapping a
resource-type tag to a ResourceRule: where the record lives, which
attribute names its owner, and a pure carve-out function
``(subject, resource, action) -> AccessDecision | None`` evaluated after
the ownership check. New resource types are added by registering a rule.

Carve-outs:
- resume: a coach may view any resume.
- session: the coach the session is booked with may access it.
- coach_profile: anyone may view. Ownership grants view and edit only.
- verification_task: the assigned coach may access; any coach may view
  a task while it is open.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Optional

from coachmarket.models.identity import CoachProfile, Role, User
from coachmarket.models.marketplace import TaskState


@dataclass(frozen=True)
class AccessDecision:
    """Outcome of an authorization check."""
    allowed: bool
    reason: str


@dataclass(frozen=True)
class Subject:
    """The requesting user plus the coach profile they own, if any."""
    user: User
    coach_profile: Optional[CoachProfile] = None

    @property
    def user_id(self) -> str:
        return self.user.user_id

    @property
    def role(self) -> Role:
        return self.user.role

    @property
    def coach_id(self) -> Optional[str]:
        return self.coach_profile.coach_id if self.coach_profile else None


CarveOut = Callable[[Subject, Any, str], Optional[AccessDecision]]


@dataclass(frozen=True)
class ResourceRule:
    """How to load and judge one resource type.

    owner_actions limits what ownership grants; None means every action.
    """
    collection: str
    owner_attr: str
    carve_out: CarveOut
    owner_actions: Optional[frozenset[str]] = None

    def owner_may(self, action: str) -> bool:
        return self.owner_actions is None or action in self.owner_actions


def _resume_carve_out(subject: Subject, resume: Any, action: str) -> Optional[AccessDecision]:
    if subject.role == Role.COACH and action == "view":
        return AccessDecision(True, "Coach verification access")
    return None


def _session_carve_out(subject: Subject, session: Any, action: str) -> Optional[AccessDecision]:
    if subject.coach_id is not None and session.coach_id == subject.coach_id:
        return AccessDecision(True, "Coach access")
    return None


def _coach_profile_carve_out(subject: Subject, profile: Any, action: str) -> Optional[AccessDecision]:
    if action == "view":
        return AccessDecision(True, "Public profile")
    return None


def _task_carve_out(subject: Subject, task: Any, action: str) -> Optional[AccessDecision]:
    if subject.coach_id is not None and task.assigned_coach_id == subject.coach_id:
        return AccessDecision(True, "Assigned coach access")
    if (
        subject.role == Role.COACH
        and task.status == TaskState.OPEN
        and action == "view"
    ):
        return AccessDecision(True, "Marketplace access")
    return None


class ResourceRegistry:
    """Resource-type tag → ResourceRule."""

    def __init__(self, rules: Optional[dict[str, ResourceRule]] = None) -> None:
        self._rules: dict[str, ResourceRule] = dict(rules or {})

    def register(self, resource_type: str, rule: ResourceRule) -> None:
        if resource_type in self._rules:
            raise ValueError(f"Resource type already registered: {resource_type}")
        self._rules[resource_type] = rule

    def get(self, resource_type: str) -> Optional[ResourceRule]:
        return self._rules.get(resource_type)

    def resource_types(self) -> list[str]:
        return sorted(self._rules)

    @staticmethod
    def default() -> ResourceRegistry:
        return ResourceRegistry({
            "resume": ResourceRule("resumes", "user_id", _resume_carve_out),
            "session": ResourceRule("sessions", "user_id", _session_carve_out),
            "coach_profile": ResourceRule(
                "coaches", "user_id", _coach_profile_carve_out,
                owner_actions=frozenset({"view", "edit"}),
            ),
            "verification_task": ResourceRule(
                "verification_tasks", "user_id", _task_carve_out,
            ),
        })
