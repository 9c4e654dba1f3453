"""Tests for resource access decisions — ownership, assignment and carve-outs."""

import pytest
from datetime import datetime, timezone
from decimal import Decimal

from coachmarket.models.identity import (
    CoachingSession,
    CoachProfile,
    CoachVerificationStatus,
    Resume,
    Role,
    User,
)
from coachmarket.models.marketplace import TaskState, TaskType, Urgency, VerificationTask
from coachmarket.persistence.document_store import DocumentStore
from coachmarket.rbac.authorizer import Authorizer
from coachmarket.rbac.resources import AccessDecision, ResourceRegistry, ResourceRule


def _now() -> datetime:
    return datetime(2026, 3, 2, 9, 0, 0, tzinfo=timezone.utc)


def _make_user(store: DocumentStore, user_id: str, role: Role) -> None:
    store.insert("users", User(
        user_id=user_id,
        email=f"{user_id}@example.com",
        name=user_id,
        role=role,
        created_utc=_now(),
    ))


def _make_store(task_state: TaskState = TaskState.OPEN) -> DocumentStore:
    """Seeker S owns resume R1, session SES1 with coach C1, and task T1."""
    store = DocumentStore()
    _make_user(store, "S", Role.JOB_SEEKER)
    _make_user(store, "S2", Role.JOB_SEEKER)
    _make_user(store, "C1", Role.COACH)
    _make_user(store, "C2", Role.COACH)
    _make_user(store, "A", Role.ADMIN)
    store.insert("coaches", CoachProfile(
        coach_id="coach-c1", user_id="C1",
        verification_status=CoachVerificationStatus.APPROVED,
    ))
    store.insert("coaches", CoachProfile(
        coach_id="coach-c2", user_id="C2",
        verification_status=CoachVerificationStatus.APPROVED,
    ))
    store.insert("resumes", Resume(resume_id="R1", user_id="S", title="CV"))
    store.insert("sessions", CoachingSession(
        session_id="SES1", user_id="S", coach_id="coach-c1",
        scheduled_utc=_now(), duration_minutes=60,
    ))
    store.insert("verification_tasks", VerificationTask(
        task_id="T1",
        user_id="S",
        resume_id="R1",
        task_type=TaskType.RESUME_REVIEW_FULL,
        urgency=Urgency.STANDARD,
        suggested_price=Decimal("50"),
        status=task_state,
        assigned_coach_id="coach-c1" if task_state not in (TaskState.OPEN, TaskState.BIDDING) else None,
    ))
    return store


class TestPrecedence:
    def test_unknown_user_denied(self) -> None:
        decision = Authorizer(_make_store()).can_access_resource("ghost", "resume", "R1", "view")
        assert decision == AccessDecision(False, "User not found")

    def test_unknown_resource_type_denied(self) -> None:
        decision = Authorizer(_make_store()).can_access_resource("A", "invoice", "X", "view")
        assert decision == AccessDecision(False, "Unknown resource type")

    @pytest.mark.parametrize("user_id", ["S", "C1", "A"])
    def test_missing_resource_not_found_for_every_role(self, user_id: str) -> None:
        authorizer = Authorizer(_make_store())
        for resource_type in ("resume", "session", "coach_profile", "verification_task"):
            decision = authorizer.can_access_resource(user_id, resource_type, "nope", "view")
            assert decision == AccessDecision(False, "Resource not found")

    def test_admin_allowed_on_existing_resource(self) -> None:
        decision = Authorizer(_make_store()).can_access_resource("A", "resume", "R1", "delete")
        assert decision == AccessDecision(True, "Admin access")


class TestResumeAccess:
    def test_owner_any_action(self) -> None:
        authorizer = Authorizer(_make_store())
        for action in ("view", "edit", "delete"):
            decision = authorizer.can_access_resource("S", "resume", "R1", action)
            assert decision == AccessDecision(True, "Owner access")

    def test_coach_may_view(self) -> None:
        decision = Authorizer(_make_store()).can_access_resource("C2", "resume", "R1", "view")
        assert decision == AccessDecision(True, "Coach verification access")

    def test_coach_may_not_edit(self) -> None:
        decision = Authorizer(_make_store()).can_access_resource("C2", "resume", "R1", "edit")
        assert decision == AccessDecision(False, "Insufficient permissions")

    def test_other_seeker_denied(self) -> None:
        decision = Authorizer(_make_store()).can_access_resource("S2", "resume", "R1", "view")
        assert not decision.allowed


class TestSessionAccess:
    def test_seeker_owner(self) -> None:
        decision = Authorizer(_make_store()).can_access_resource("S", "session", "SES1", "view")
        assert decision.allowed

    def test_session_coach(self) -> None:
        decision = Authorizer(_make_store()).can_access_resource("C1", "session", "SES1", "edit")
        assert decision == AccessDecision(True, "Coach access")

    def test_other_coach_denied(self) -> None:
        decision = Authorizer(_make_store()).can_access_resource("C2", "session", "SES1", "view")
        assert decision == AccessDecision(False, "Insufficient permissions")


class TestCoachProfileAccess:
    def test_anyone_may_view(self) -> None:
        decision = Authorizer(_make_store()).can_access_resource(
            "S", "coach_profile", "coach-c1", "view",
        )
        assert decision == AccessDecision(True, "Public profile")

    def test_owner_may_edit(self) -> None:
        decision = Authorizer(_make_store()).can_access_resource(
            "C1", "coach_profile", "coach-c1", "edit",
        )
        assert decision == AccessDecision(True, "Owner access")

    def test_other_coach_may_not_edit(self) -> None:
        decision = Authorizer(_make_store()).can_access_resource(
            "C2", "coach_profile", "coach-c1", "edit",
        )
        assert not decision.allowed

    def test_owner_may_not_delete(self) -> None:
        decision = Authorizer(_make_store()).can_access_resource(
            "C1", "coach_profile", "coach-c1", "delete",
        )
        assert decision == AccessDecision(False, "Insufficient permissions")

    def test_admin_may_delete(self) -> None:
        decision = Authorizer(_make_store()).can_access_resource(
            "A", "coach_profile", "coach-c1", "delete",
        )
        assert decision == AccessDecision(True, "Admin access")

    def test_owner_view_reads_as_owner(self) -> None:
        decision = Authorizer(_make_store()).can_access_resource(
            "C1", "coach_profile", "coach-c1", "view",
        )
        assert decision == AccessDecision(True, "Owner access")


class TestVerificationTaskAccess:
    def test_owner(self) -> None:
        decision = Authorizer(_make_store()).can_access_resource(
            "S", "verification_task", "T1", "edit",
        )
        assert decision == AccessDecision(True, "Owner access")

    def test_any_coach_may_view_open_task(self) -> None:
        decision = Authorizer(_make_store()).can_access_resource(
            "C2", "verification_task", "T1", "view",
        )
        assert decision == AccessDecision(True, "Marketplace access")

    def test_coach_may_not_act_on_open_task(self) -> None:
        decision = Authorizer(_make_store()).can_access_resource(
            "C2", "verification_task", "T1", "edit",
        )
        assert not decision.allowed

    def test_unassigned_coach_cannot_view_bidding_task(self) -> None:
        decision = Authorizer(_make_store(TaskState.BIDDING)).can_access_resource(
            "C2", "verification_task", "T1", "view",
        )
        assert not decision.allowed

    def test_assigned_coach(self) -> None:
        decision = Authorizer(_make_store(TaskState.ASSIGNED)).can_access_resource(
            "C1", "verification_task", "T1", "edit",
        )
        assert decision == AccessDecision(True, "Assigned coach access")

    def test_other_seeker_denied(self) -> None:
        decision = Authorizer(_make_store()).can_access_resource(
            "S2", "verification_task", "T1", "view",
        )
        assert decision == AccessDecision(False, "Insufficient permissions")


class TestRegistry:
    def test_default_types(self) -> None:
        assert ResourceRegistry.default().resource_types() == [
            "coach_profile", "resume", "session", "verification_task",
        ]

    def test_register_new_type(self) -> None:
        registry = ResourceRegistry.default()
        registry.register("escrow", ResourceRule(
            "escrows", "payer_id", lambda subject, record, action: None,
        ))
        assert registry.get("escrow") is not None

    def test_duplicate_registration_rejected(self) -> None:
        registry = ResourceRegistry.default()
        with pytest.raises(ValueError, match="already registered"):
            registry.register("resume", ResourceRule(
                "resumes", "user_id", lambda subject, record, action: None,
            ))

    def test_custom_registry_is_used(self) -> None:
        registry = ResourceRegistry({
            "resume": ResourceRule(
                "resumes", "user_id",
                lambda subject, record, action: AccessDecision(True, "Open house"),
            ),
        })
        authorizer = Authorizer(_make_store(), registry)
        decision = authorizer.can_access_resource("S2", "resume", "R1", "edit")
        assert decision == AccessDecision(True, "Open house")
        assert authorizer.can_access_resource("S2", "session", "SES1", "view") == AccessDecision(
            False, "Unknown resource type",
        )
