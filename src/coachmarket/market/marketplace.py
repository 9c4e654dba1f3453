"""Marketplace engine — verification tasks, bids and the work lifecycle.

Every operation checks its preconditions in one fixed order:
    acting user exists → authorization → input validation → state
so a caller without permission gets AuthorizationError even when the
target state would also have rejected the call.

Operations mutate records in the document store directly. Multi-record
updates (bid acceptance) run inside a store transaction so the at most
one accepted bid invariant is never observable half-applied.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Optional
from uuid import uuid4

from coachmarket.errors import (
    AuthorizationError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from coachmarket.market.task_state_machine import TaskStateMachine
from coachmarket.models.identity import CoachProfile, CoachVerificationStatus, Role, User
from coachmarket.models.marketplace import (
    BIDDABLE_STATES,
    Bid,
    BidState,
    TaskState,
    TaskType,
    Urgency,
    VerificationTask,
)
from coachmarket.persistence.document_store import DocumentStore
from coachmarket.policy import MarketplacePolicy
from coachmarket.rbac.authorizer import Authorizer
from coachmarket.rbac.permissions import Permission

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class BidAcceptance:
    """Outcome of accepting a bid."""
    task: VerificationTask
    bid: Bid
    rejected_bid_ids: tuple[str, ...]


@dataclass(frozen=True)
class TaskTransition:
    """A committed task state change."""
    task: VerificationTask
    from_state: TaskState
    to_state: TaskState


def parse_money(value: Any, field_name: str) -> Decimal:
    """Coerce to a positive, finite Decimal or raise ValidationError."""
    if isinstance(value, bool):
        raise ValidationError(f"{field_name} must be a number")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field_name} must be a number") from None
    if not amount.is_finite() or amount <= 0:
        raise ValidationError(f"{field_name} must be greater than zero")
    return amount


def _parse_enum(enum_cls: type, value: Any, field_name: str) -> Any:
    try:
        return enum_cls(value)
    except ValueError:
        raise ValidationError(f"Unknown {field_name}: {value}") from None


class MarketplaceEngine:
    """Task and bid operations over the document store.

    Usage:
        engine = MarketplaceEngine(store, authorizer, policy)
        task = engine.create_task("seeker_1", "resume_1", "resume_review_full",
                                  "standard", Decimal("50"))
        bid = engine.create_bid("coach_user_1", task.task_id, Decimal("40"), 60)
        acceptance = engine.accept_bid("seeker_1", bid.bid_id)
    """

    def __init__(
        self,
        store: DocumentStore,
        authorizer: Authorizer,
        policy: Optional[MarketplacePolicy] = None,
    ) -> None:
        self._store = store
        self._authorizer = authorizer
        self._policy = policy or MarketplacePolicy()

    # ------------------------------------------------------------------
    # Tasks and bids
    # ------------------------------------------------------------------

    def create_task(
        self,
        seeker_id: str,
        resume_id: str,
        task_type: TaskType | str,
        urgency: Urgency | str,
        suggested_price: Any,
        now: Optional[datetime] = None,
        task_id: Optional[str] = None,
    ) -> VerificationTask:
        seeker = self._authorizer.require_user(seeker_id)
        self._authorizer.require_permission(seeker, Permission.CREATE_VERIFICATION_TASK)

        parsed_type = _parse_enum(TaskType, task_type, "task type")
        parsed_urgency = _parse_enum(Urgency, urgency, "urgency")
        price = parse_money(suggested_price, "Suggested price")

        resume = self._store.get("resumes", resume_id)
        if resume is None:
            raise NotFoundError(f"Resume not found: {resume_id}")
        if resume.user_id != seeker.user_id:
            raise AuthorizationError("Resume does not belong to this user")

        if now is None:
            now = datetime.now(timezone.utc)
        task = VerificationTask(
            task_id=task_id or f"task_{uuid4().hex[:12]}",
            user_id=seeker.user_id,
            resume_id=resume_id,
            task_type=parsed_type,
            urgency=parsed_urgency,
            suggested_price=price,
            status=TaskState.OPEN,
            created_utc=now,
            updated_utc=now,
        )
        self._store.insert("verification_tasks", task)
        return task

    def create_bid(
        self,
        coach_user_id: str,
        task_id: str,
        price: Any,
        estimated_time: Any,
        message: Optional[str] = None,
        now: Optional[datetime] = None,
        bid_id: Optional[str] = None,
    ) -> Bid:
        """Place a bid. Moves the task from OPEN to BIDDING on the first bid."""
        coach_user = self._authorizer.require_user(coach_user_id)
        self._authorizer.require_permission(coach_user, Permission.BID_ON_TASKS)
        profile = self._require_coach_profile(coach_user)
        if (
            self._policy.require_approved_coach
            and profile.verification_status != CoachVerificationStatus.APPROVED
        ):
            raise AuthorizationError("Coach profile is not approved")

        amount = parse_money(price, "Bid price")
        if isinstance(estimated_time, bool) or not isinstance(estimated_time, int):
            raise ValidationError("Estimated time must be a whole number of minutes")
        if estimated_time <= 0:
            raise ValidationError("Estimated time must be greater than zero")

        task = self.get_task(task_id)
        if task.status not in BIDDABLE_STATES:
            raise InvalidStateError(
                f"Task {task_id} is not accepting bids (status: {task.status.value})"
            )

        existing = self._store.find("bids", task_id=task_id)
        cap = self._policy.max_bids_per_coach_per_task
        if cap is not None:
            mine = [b for b in existing if b.coach_id == profile.coach_id]
            if len(mine) >= cap:
                raise InvalidStateError(
                    f"Coach has reached the bid limit ({cap}) for task {task_id}"
                )

        if now is None:
            now = datetime.now(timezone.utc)
        bid = Bid(
            bid_id=bid_id or f"bid_{uuid4().hex[:12]}",
            task_id=task_id,
            coach_id=profile.coach_id,
            coach_user_id=coach_user.user_id,
            price=amount,
            estimated_time=estimated_time,
            message=message,
            status=BidState.PENDING,
            sequence=max((b.sequence for b in existing), default=0) + 1,
            created_utc=now,
        )
        with self._store.transaction():
            self._store.insert("bids", bid)
            if task.status == TaskState.OPEN:
                self._transition(task, TaskState.BIDDING, now)
        return bid

    def accept_bid(
        self,
        seeker_id: str,
        bid_id: str,
        now: Optional[datetime] = None,
    ) -> BidAcceptance:
        """Accept one bid and reject its pending siblings, atomically.

        Task ownership is the gate, whatever the owner's current role.
        """
        seeker = self._authorizer.require_user(seeker_id)

        bid = self._store.get("bids", bid_id)
        if bid is None:
            raise NotFoundError(f"Bid not found: {bid_id}")
        task = self.get_task(bid.task_id)
        if task.user_id != seeker.user_id:
            raise AuthorizationError("Only the task owner can accept bids")

        if task.status not in BIDDABLE_STATES:
            raise InvalidStateError(
                f"Task {task.task_id} is no longer accepting bids "
                f"(status: {task.status.value})"
            )
        if bid.status != BidState.PENDING:
            raise InvalidStateError(
                f"Bid {bid_id} cannot be accepted (status: {bid.status.value})"
            )

        if now is None:
            now = datetime.now(timezone.utc)
        rejected: list[str] = []
        with self._store.transaction():
            bid.status = BidState.ACCEPTED
            for sibling in self._store.find("bids", task_id=task.task_id):
                if sibling.bid_id != bid.bid_id and sibling.status == BidState.PENDING:
                    sibling.status = BidState.REJECTED
                    rejected.append(sibling.bid_id)
            self._transition(task, TaskState.ASSIGNED, now)
            task.assigned_coach_id = bid.coach_id
            task.final_price = bid.price
        return BidAcceptance(task=task, bid=bid, rejected_bid_ids=tuple(rejected))

    # ------------------------------------------------------------------
    # Work lifecycle
    # ------------------------------------------------------------------

    def start_task(
        self,
        coach_user_id: str,
        task_id: str,
        now: Optional[datetime] = None,
    ) -> TaskTransition:
        coach_user = self._authorizer.require_user(coach_user_id)
        task = self.get_task(task_id)
        self._require_assigned_coach(coach_user, task)
        return self._apply(task, TaskState.IN_PROGRESS, now)

    def complete_task(
        self,
        coach_user_id: str,
        task_id: str,
        feedback: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> TaskTransition:
        """Mark work delivered. Records completion time and feedback."""
        coach_user = self._authorizer.require_user(coach_user_id)
        task = self.get_task(task_id)
        self._require_assigned_coach(coach_user, task)
        if now is None:
            now = datetime.now(timezone.utc)
        with self._store.transaction():
            transition = self._apply(task, TaskState.COMPLETED, now)
            task.completed_utc = now
            task.feedback = feedback
        return transition

    def dispute_task(
        self,
        user_id: str,
        task_id: str,
        now: Optional[datetime] = None,
    ) -> TaskTransition:
        """Raise a dispute. Task owner, assigned coach or admin only."""
        user = self._authorizer.require_user(user_id)
        task = self.get_task(task_id)
        if not self.is_party(user, task):
            raise AuthorizationError("Only the task owner or assigned coach can dispute")
        return self._apply(task, TaskState.DISPUTED, now)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_task(self, task_id: str) -> VerificationTask:
        task = self._store.get("verification_tasks", task_id)
        if task is None:
            raise NotFoundError(f"Task not found: {task_id}")
        return task

    def list_tasks(
        self,
        user_id: str,
        status: Optional[TaskState | str] = None,
    ) -> list[VerificationTask]:
        """Role-dependent task listing.

        Coaches see the marketplace (open and bidding tasks). Admins see
        every task. Job seekers see their own tasks.
        """
        user = self._authorizer.require_user(user_id)
        wanted = _parse_enum(TaskState, status, "task status") if status else None

        tasks = self._store.find("verification_tasks")
        if user.role == Role.COACH:
            tasks = [t for t in tasks if t.status in BIDDABLE_STATES]
        elif user.role != Role.ADMIN:
            tasks = [t for t in tasks if t.user_id == user.user_id]
        if wanted is not None:
            tasks = [t for t in tasks if t.status == wanted]
        return sorted(tasks, key=lambda t: t.created_utc or _EPOCH, reverse=True)

    def get_bids(self, task_id: str) -> list[Bid]:
        """All bids on a task in submission order."""
        self.get_task(task_id)
        return sorted(self._store.find("bids", task_id=task_id), key=lambda b: b.sequence)

    def rank_bids(self, task_id: str) -> list[Bid]:
        """Pending bids, lowest price first; ties go to the earlier bid."""
        pending = [b for b in self.get_bids(task_id) if b.status == BidState.PENDING]
        return sorted(pending, key=lambda b: (b.price, b.sequence))

    def lowest_bid(self, task_id: str) -> Optional[Bid]:
        ranked = self.rank_bids(task_id)
        return ranked[0] if ranked else None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def is_party(self, user: User, task: VerificationTask) -> bool:
        """Owner, assigned coach or admin."""
        if user.role == Role.ADMIN or task.user_id == user.user_id:
            return True
        coach_id = self._authorizer.subject_for(user).coach_id
        return coach_id is not None and coach_id == task.assigned_coach_id

    def _require_coach_profile(self, user: User) -> CoachProfile:
        profile = self._store.find_one("coaches", user_id=user.user_id)
        if profile is None:
            raise NotFoundError(f"Coach profile not found for user: {user.user_id}")
        return profile

    def _require_assigned_coach(self, user: User, task: VerificationTask) -> None:
        coach_id = self._authorizer.subject_for(user).coach_id
        if coach_id is None or coach_id != task.assigned_coach_id:
            raise AuthorizationError("Only the assigned coach can work on this task")

    def _apply(
        self,
        task: VerificationTask,
        target: TaskState,
        now: Optional[datetime],
    ) -> TaskTransition:
        previous = task.status
        self._transition(task, target, now or datetime.now(timezone.utc))
        return TaskTransition(task=task, from_state=previous, to_state=target)

    @staticmethod
    def _transition(task: VerificationTask, target: TaskState, now: datetime) -> None:
        errors = TaskStateMachine.apply_transition(task, target)
        if errors:
            raise InvalidStateError(errors[0])
        task.updated_utc = now
