"""Marketplace service — the caller-facing operation surface.

Wires the RBAC authorizer, the marketplace engine and the escrow ledger
to one document store, one audit log, one policy and one clock.

Commit protocol for every mutation:
1. Open a store transaction.
2. Run the operation (raises a typed error on any unmet precondition).
3. Append the audit event. If the log rejects it, the transaction rolls
   back and AuditTrailError propagates. No audit, no commit.
4. Persist the store file. A failure here cannot roll back (the audit
   trail is already durable), so it surfaces as a ``warning`` in the
   result data and sets the persistence-degraded flag.

Failures raise; success returns a ServiceResult carrying plain values.
The one soft failure is request_role_change, whose "needs admin
approval" outcome is a normal result with success=False.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Optional
from uuid import uuid4

from coachmarket.errors import (
    AuditTrailError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from coachmarket.escrow.ledger import EscrowLedger
from coachmarket.market.marketplace import MarketplaceEngine, parse_money
from coachmarket.models.codec import dump_money, dump_ts
from coachmarket.models.escrow import EscrowRecord
from coachmarket.models.identity import (
    AvailabilitySlot,
    CoachingSession,
    CoachProfile,
    CoachVerificationStatus,
    Resume,
    Role,
    User,
)
from coachmarket.models.marketplace import Bid, TaskState, VerificationTask
from coachmarket.persistence.document_store import DocumentStore
from coachmarket.persistence.event_log import EventKind, EventLog, EventRecord
from coachmarket.policy import MarketplacePolicy
from coachmarket.rbac.authorizer import Authorizer, Requirement
from coachmarket.rbac.permissions import Permission, role_capabilities
from coachmarket.rbac.resources import AccessDecision
from coachmarket.rbac.roles import RoleManager, parse_role

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class MarketplaceService:
    """Unified marketplace facade.

    Usage:
        service = MarketplaceService(MarketplacePolicy())
        service.register_user("u1", "u1@example.com", "Ada")
        result = service.create_task("u1", "resume_1", "resume_review_full",
                                     "standard", "50")
    """

    def __init__(
        self,
        policy: Optional[MarketplacePolicy] = None,
        store: Optional[DocumentStore] = None,
        event_log: Optional[EventLog] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._policy = policy or MarketplacePolicy()
        self._store = store if store is not None else DocumentStore()
        self._event_log = event_log if event_log is not None else EventLog()
        self._clock = clock or _utc_now

        self._authorizer = Authorizer(self._store)
        self._roles = RoleManager(self._store)
        self._engine = MarketplaceEngine(self._store, self._authorizer, self._policy)
        self._ledger = EscrowLedger(self._store, self._authorizer, self._policy)

        # Continue numbering after the highest event ID recovered from disk
        self._event_counter = _highest_event_number(self._event_log)
        self._persistence_degraded: bool = False

    @staticmethod
    def open(
        data_dir: Path,
        config_dir: Optional[Path] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> MarketplaceService:
        """Create a service with durable state under data_dir."""
        data_dir.mkdir(parents=True, exist_ok=True)
        policy = (
            MarketplacePolicy.from_config_dir(config_dir)
            if config_dir is not None else MarketplacePolicy()
        )
        return MarketplaceService(
            policy,
            store=DocumentStore(storage_path=data_dir / "state.json"),
            event_log=EventLog(storage_path=data_dir / "events.jsonl"),
            clock=clock,
        )

    @property
    def authorizer(self) -> Authorizer:
        return self._authorizer

    @property
    def event_log(self) -> EventLog:
        return self._event_log

    @property
    def policy(self) -> MarketplacePolicy:
        return self._policy

    # ------------------------------------------------------------------
    # RBAC lookups
    # ------------------------------------------------------------------

    def has_permission(self, user_id: str, permission: Permission | str) -> bool:
        return self._authorizer.has_permission(user_id, permission)

    def get_user_permissions(self, user_id: str) -> frozenset[Permission]:
        return self._authorizer.get_user_permissions(user_id)

    def check_permissions(
        self, user_id: str, permissions: Iterable[Permission | str],
    ) -> dict[str, bool]:
        return self._authorizer.check_permissions(user_id, permissions)

    def get_role_capabilities(self, role: Role | str) -> dict[str, Any]:
        return role_capabilities(parse_role(role))

    def can_access_resource(
        self,
        user_id: str,
        resource_type: str,
        resource_id: str,
        action: str,
    ) -> AccessDecision:
        return self._authorizer.can_access_resource(
            user_id, resource_type, resource_id, action,
        )

    def authorize(self, user_id: Optional[str], requirement: Requirement) -> AccessDecision:
        return self._authorizer.authorize(user_id, requirement)

    # ------------------------------------------------------------------
    # Identity records
    # ------------------------------------------------------------------

    def register_user(
        self,
        user_id: str,
        email: str,
        name: str,
        role: Role | str = Role.JOB_SEEKER,
    ) -> ServiceResult:
        if not user_id or not email or not email.strip() or not name or not name.strip():
            raise ValidationError("user_id, email and name are required")
        parsed = parse_role(role)
        if self._store.find_one("users", email=email) is not None:
            raise ValidationError(f"Email already registered: {email}")

        now = self._clock()
        with self._store.transaction():
            try:
                self._store.insert("users", User(
                    user_id=user_id,
                    email=email,
                    name=name,
                    role=parsed,
                    created_utc=now,
                    updated_utc=now,
                ))
            except ValueError as e:
                raise ValidationError(str(e)) from None
            self._record_event(EventKind.USER_REGISTERED, user_id, {
                "user_id": user_id,
                "role": parsed.value,
            })
        return self._committed({"user_id": user_id, "role": parsed.value})

    def create_resume(
        self,
        user_id: str,
        title: str,
        resume_id: Optional[str] = None,
    ) -> ServiceResult:
        user = self._authorizer.require_user(user_id)
        self._authorizer.require_permission(user, Permission.CREATE_RESUME)
        if not title or not title.strip():
            raise ValidationError("Resume title is required")

        resume = Resume(
            resume_id=resume_id or f"resume_{uuid4().hex[:12]}",
            user_id=user_id,
            title=title.strip(),
            created_utc=self._clock(),
        )
        with self._store.transaction():
            self._store.insert("resumes", resume)
            self._record_event(EventKind.RESUME_CREATED, user_id, {
                "resume_id": resume.resume_id,
                "user_id": user_id,
            })
        return self._committed({"resume_id": resume.resume_id})

    def upsert_coach_profile(
        self,
        user_id: str,
        hourly_rate: Any = None,
        specialties: Optional[list[str]] = None,
        availability: Optional[list[AvailabilitySlot | dict[str, Any]]] = None,
        coach_id: Optional[str] = None,
    ) -> ServiceResult:
        """Create or update the caller's own coach profile.

        A profile is complete once it has an hourly rate and at least one
        specialty. Verification status is left to admin review.
        """
        user = self._authorizer.require_user(user_id)
        self._authorizer.require_permission(user, Permission.MANAGE_COACH_PROFILE)
        rate = parse_money(hourly_rate, "Hourly rate") if hourly_rate is not None else None
        slots = [_parse_slot(s) for s in availability] if availability is not None else None

        now = self._clock()
        with self._store.transaction():
            profile = self._store.find_one("coaches", user_id=user_id)
            created = profile is None
            if profile is None:
                profile = CoachProfile(
                    coach_id=coach_id or f"coach_{uuid4().hex[:12]}",
                    user_id=user_id,
                    created_utc=now,
                )
                self._store.insert("coaches", profile)
            if rate is not None:
                profile.hourly_rate = rate
            if specialties is not None:
                profile.specialties = [s.strip() for s in specialties if s.strip()]
            if slots is not None:
                profile.availability = slots
            profile.is_complete = profile.hourly_rate is not None and bool(profile.specialties)
            profile.updated_utc = now
            self._record_event(EventKind.COACH_PROFILE_UPDATED, user_id, {
                "coach_id": profile.coach_id,
                "created": created,
                "is_complete": profile.is_complete,
            })
        return self._committed({
            "coach_id": profile.coach_id,
            "created": created,
            "is_complete": profile.is_complete,
            "verification_status": profile.verification_status.value,
        })

    def review_coach_profile(
        self,
        admin_id: str,
        coach_id: str,
        approve: bool,
    ) -> ServiceResult:
        """Admin approves or rejects a coach profile."""
        admin = self._authorizer.require_user(admin_id)
        self._authorizer.require_permission(admin, Permission.MANAGE_USERS)
        profile = self._store.get("coaches", coach_id)
        if profile is None:
            raise NotFoundError(f"Coach profile not found: {coach_id}")

        status = (
            CoachVerificationStatus.APPROVED if approve
            else CoachVerificationStatus.REJECTED
        )
        with self._store.transaction():
            profile.verification_status = status
            profile.updated_utc = self._clock()
            self._record_event(EventKind.COACH_PROFILE_REVIEWED, admin_id, {
                "coach_id": coach_id,
                "verification_status": status.value,
            })
        return self._committed({
            "coach_id": coach_id,
            "verification_status": status.value,
        })

    def book_session(
        self,
        user_id: str,
        coach_id: str,
        scheduled_utc: datetime,
        duration_minutes: int,
        session_id: Optional[str] = None,
    ) -> ServiceResult:
        user = self._authorizer.require_user(user_id)
        self._authorizer.require_permission(user, Permission.BOOK_SESSION)
        if (
            isinstance(duration_minutes, bool)
            or not isinstance(duration_minutes, int)
            or duration_minutes <= 0
        ):
            raise ValidationError("Duration must be a positive number of minutes")
        if self._store.get("coaches", coach_id) is None:
            raise NotFoundError(f"Coach profile not found: {coach_id}")

        session = CoachingSession(
            session_id=session_id or f"session_{uuid4().hex[:12]}",
            user_id=user_id,
            coach_id=coach_id,
            scheduled_utc=scheduled_utc,
            duration_minutes=duration_minutes,
            created_utc=self._clock(),
        )
        with self._store.transaction():
            self._store.insert("sessions", session)
            self._record_event(EventKind.SESSION_BOOKED, user_id, {
                "session_id": session.session_id,
                "coach_id": coach_id,
            })
        return self._committed({"session_id": session.session_id})

    # ------------------------------------------------------------------
    # Role management
    # ------------------------------------------------------------------

    def assign_role(
        self,
        acting_admin_id: str,
        target_user_id: str,
        new_role: Role | str,
    ) -> ServiceResult:
        with self._store.transaction():
            change = self._roles.assign_role(
                acting_admin_id, target_user_id, new_role, now=self._clock(),
            )
            self._record_event(EventKind.ROLE_ASSIGNED, acting_admin_id, {
                "user_id": target_user_id,
                "previous_role": change.previous_role.value,
                "new_role": change.new_role.value,
            })
        return self._committed({
            "user_id": target_user_id,
            "previous_role": change.previous_role.value,
            "new_role": change.new_role.value,
        })

    def request_role_change(
        self,
        user_id: str,
        requested_role: Role | str,
        reason: Optional[str] = None,
    ) -> ServiceResult:
        with self._store.transaction():
            change = self._roles.request_role_change(
                user_id, requested_role, reason, now=self._clock(),
            )
            if change.success:
                self._record_event(EventKind.ROLE_CHANGED, user_id, {
                    "user_id": user_id,
                    "previous_role": change.previous_role.value,
                    "new_role": change.new_role.value,
                    "coach_id": change.coach_id,
                    "reason": reason,
                })
        if not change.success:
            return ServiceResult(
                success=False,
                errors=[change.message],
                data={"message": change.message},
            )
        return self._committed({
            "message": change.message,
            "previous_role": change.previous_role.value,
            "new_role": change.new_role.value,
            "coach_id": change.coach_id,
        })

    # ------------------------------------------------------------------
    # Marketplace
    # ------------------------------------------------------------------

    def create_task(
        self,
        seeker_id: str,
        resume_id: str,
        task_type: str,
        urgency: str,
        suggested_price: Any,
        task_id: Optional[str] = None,
    ) -> ServiceResult:
        with self._store.transaction():
            task = self._engine.create_task(
                seeker_id, resume_id, task_type, urgency, suggested_price,
                now=self._clock(), task_id=task_id,
            )
            self._record_event(EventKind.TASK_CREATED, seeker_id, {
                "task_id": task.task_id,
                "resume_id": resume_id,
                "task_type": task.task_type.value,
                "suggested_price": dump_money(task.suggested_price),
            })
        return self._committed({"task_id": task.task_id, "status": task.status.value})

    def create_bid(
        self,
        coach_user_id: str,
        task_id: str,
        price: Any,
        estimated_time: int,
        message: Optional[str] = None,
        bid_id: Optional[str] = None,
    ) -> ServiceResult:
        with self._store.transaction():
            bid = self._engine.create_bid(
                coach_user_id, task_id, price, estimated_time, message,
                now=self._clock(), bid_id=bid_id,
            )
            self._record_event(EventKind.BID_SUBMITTED, coach_user_id, {
                "bid_id": bid.bid_id,
                "task_id": task_id,
                "coach_id": bid.coach_id,
                "price": dump_money(bid.price),
            })
        return self._committed({
            "bid_id": bid.bid_id,
            "task_id": task_id,
            "coach_id": bid.coach_id,
            "price": dump_money(bid.price),
        })

    def accept_bid(self, seeker_id: str, bid_id: str) -> ServiceResult:
        with self._store.transaction():
            acceptance = self._engine.accept_bid(seeker_id, bid_id, now=self._clock())
            task = acceptance.task
            self._record_event(EventKind.BID_ACCEPTED, seeker_id, {
                "task_id": task.task_id,
                "bid_id": bid_id,
                "coach_id": task.assigned_coach_id,
                "final_price": dump_money(task.final_price),
                "rejected_bid_ids": list(acceptance.rejected_bid_ids),
            })
        return self._committed({
            "task_id": task.task_id,
            "status": task.status.value,
            "assigned_coach_id": task.assigned_coach_id,
            "final_price": dump_money(task.final_price),
            "rejected_bid_ids": list(acceptance.rejected_bid_ids),
        })

    def start_task(self, coach_user_id: str, task_id: str) -> ServiceResult:
        with self._store.transaction():
            transition = self._engine.start_task(coach_user_id, task_id, now=self._clock())
            self._record_transition(coach_user_id, transition.task, transition.from_state)
        return self._committed({"task_id": task_id, "status": transition.to_state.value})

    def complete_task(
        self,
        coach_user_id: str,
        task_id: str,
        feedback: Optional[str] = None,
    ) -> ServiceResult:
        with self._store.transaction():
            transition = self._engine.complete_task(
                coach_user_id, task_id, feedback, now=self._clock(),
            )
            self._record_transition(coach_user_id, transition.task, transition.from_state)
        return self._committed({
            "task_id": task_id,
            "status": transition.to_state.value,
            "completed_utc": dump_ts(transition.task.completed_utc),
        })

    def dispute_task(self, user_id: str, task_id: str, reason: Optional[str] = None) -> ServiceResult:
        """Open a dispute. A held escrow stays held until an admin resolves it.

        Disputing a completed task whose escrow was already released
        leaves the escrow untouched; the result flags it for manual
        follow-up.
        """
        with self._store.transaction():
            transition = self._engine.dispute_task(user_id, task_id, now=self._clock())
            escrow = self._ledger.find_escrow(task_id)
            escrow_status = escrow.status.value if escrow else None
            self._record_transition(
                user_id, transition.task, transition.from_state,
                reason=reason, escrow_status=escrow_status,
            )
        data: dict[str, Any] = {
            "task_id": task_id,
            "status": transition.to_state.value,
            "escrow_status": escrow_status,
        }
        if escrow is not None and escrow.is_terminal:
            data["escrow_settled"] = True
        return self._committed(data)

    def resolve_dispute(
        self,
        admin_id: str,
        task_id: str,
        release_to_coach: bool,
        note: Optional[str] = None,
    ) -> ServiceResult:
        """Admin settles a disputed task's held escrow."""
        admin = self._authorizer.require_user(admin_id)
        self._authorizer.require_permission(admin, Permission.MANAGE_DISPUTES)
        task = self._engine.get_task(task_id)
        if task.status != TaskState.DISPUTED:
            raise InvalidStateError(
                f"Task {task_id} is not disputed (status: {task.status.value})"
            )

        now = self._clock()
        with self._store.transaction():
            if release_to_coach:
                record = self._ledger.release_escrow(
                    task_id, now=now, actor_id=admin_id, allow_disputed=True,
                )
            else:
                record, _ = self._ledger.refund_escrow(
                    task_id, reason=note, now=now, actor_id=admin_id,
                )
            self._record_event(EventKind.DISPUTE_RESOLVED, admin_id, {
                "task_id": task_id,
                "escrow_id": record.escrow_id,
                "outcome": record.status.value,
                "note": note,
            })
        return self._committed({
            "task_id": task_id,
            "escrow_status": record.status.value,
            "amount": dump_money(record.amount),
        })

    def get_task(self, task_id: str) -> VerificationTask:
        return self._engine.get_task(task_id)

    def list_tasks(self, user_id: str, status: Optional[str] = None) -> list[VerificationTask]:
        return self._engine.list_tasks(user_id, status)

    def get_bids(self, task_id: str) -> list[Bid]:
        return self._engine.get_bids(task_id)

    def rank_bids(self, task_id: str) -> list[Bid]:
        return self._engine.rank_bids(task_id)

    # ------------------------------------------------------------------
    # Escrow
    # ------------------------------------------------------------------

    def hold_payment_in_escrow(
        self,
        task_id: str,
        bid_id: str,
        payment_reference: str,
        actor_id: Optional[str] = None,
        escrow_id: Optional[str] = None,
    ) -> ServiceResult:
        with self._store.transaction():
            record = self._ledger.hold_payment_in_escrow(
                task_id, bid_id, payment_reference,
                now=self._clock(), actor_id=actor_id, escrow_id=escrow_id,
            )
            self._record_escrow_event(EventKind.ESCROW_HELD, actor_id, record)
        return self._committed(_escrow_data(record))

    def release_escrow(self, task_id: str, actor_id: Optional[str] = None) -> ServiceResult:
        with self._store.transaction():
            record = self._ledger.release_escrow(
                task_id, now=self._clock(), actor_id=actor_id,
            )
            self._record_escrow_event(EventKind.ESCROW_RELEASED, actor_id, record)
        return self._committed(_escrow_data(record))

    def refund_escrow(
        self,
        task_id: str,
        reason: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> ServiceResult:
        with self._store.transaction():
            record, moved_from = self._ledger.refund_escrow(
                task_id, reason=reason, now=self._clock(), actor_id=actor_id,
            )
            self._record_escrow_event(
                EventKind.ESCROW_REFUNDED, actor_id, record,
                task_from_state=moved_from.value if moved_from else None,
            )
        data = _escrow_data(record)
        data["task_status"] = self._engine.get_task(task_id).status.value
        return self._committed(data)

    def get_escrow_status(self, task_id: str, actor_id: Optional[str] = None) -> ServiceResult:
        return ServiceResult(
            success=True,
            data=self._ledger.get_escrow_status(task_id, actor_id=actor_id),
        )

    def list_escrow_payments(self, user_id: str, as_coach: bool = False) -> list[EscrowRecord]:
        return self._ledger.list_escrow_payments(user_id, as_coach=as_coach)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def status(self) -> dict[str, Any]:
        tasks = self._store.find("verification_tasks")
        by_status: dict[str, int] = {}
        for t in tasks:
            by_status[t.status.value] = by_status.get(t.status.value, 0) + 1
        escrows = self._store.find("escrows")
        by_escrow: dict[str, int] = {}
        for e in escrows:
            by_escrow[e.status.value] = by_escrow.get(e.status.value, 0) + 1
        return {
            "users": {
                "total": self._store.count("users"),
                "coaches": self._store.count("coaches"),
            },
            "market": {
                "total_tasks": len(tasks),
                "tasks_by_status": by_status,
                "total_bids": self._store.count("bids"),
            },
            "escrow": {
                "total": len(escrows),
                "by_status": by_escrow,
            },
            "events": self._event_log.count,
            "persistence_degraded": self._persistence_degraded,
        }

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _next_event_id(self) -> str:
        """The ID the next appended event will take.

        The counter only advances once the log accepts an event, so a
        refused append leaves no gap.
        """
        return f"EVT-{self._event_counter + 1:08d}"

    def _record_event(
        self,
        kind: EventKind,
        actor_id: Optional[str],
        payload: dict[str, Any],
    ) -> EventRecord:
        """Append an audit event. Raises AuditTrailError if the log refuses it."""
        try:
            event = EventRecord.create(
                event_id=self._next_event_id(),
                event_kind=kind,
                actor_id=actor_id or "system",
                payload=payload,
                timestamp_utc=self._clock(),
            )
            self._event_log.append(event)
        except (ValueError, OSError) as e:
            raise AuditTrailError(f"Event log failure: {e}") from e
        self._event_counter += 1
        return event

    def _record_transition(
        self,
        actor_id: str,
        task: VerificationTask,
        from_state: TaskState,
        **extra: Any,
    ) -> None:
        payload: dict[str, Any] = {
            "task_id": task.task_id,
            "from_state": from_state.value,
            "to_state": task.status.value,
        }
        payload.update({k: v for k, v in extra.items() if v is not None})
        self._record_event(EventKind.TASK_TRANSITION, actor_id, payload)

    def _record_escrow_event(
        self,
        kind: EventKind,
        actor_id: Optional[str],
        record: EscrowRecord,
        **extra: Any,
    ) -> None:
        payload: dict[str, Any] = {
            "escrow_id": record.escrow_id,
            "task_id": record.task_id,
            "bid_id": record.bid_id,
            "amount": dump_money(record.amount),
            "currency": record.currency,
            "status": record.status.value,
            "payment_reference": record.payment_reference,
        }
        payload.update({k: v for k, v in extra.items() if v is not None})
        self._record_event(kind, actor_id, payload)

    def _committed(self, data: dict[str, Any]) -> ServiceResult:
        warning = self._safe_persist_post_audit()
        if warning:
            data["warning"] = warning
        return ServiceResult(success=True, data=data)

    def _safe_persist_post_audit(self) -> Optional[str]:
        """Persist state after audit events have been committed.

        MUST NOT roll back in-memory state: the audit trail is already
        durable. On failure sets the degraded flag and returns a warning.
        """
        try:
            self._store.save()
            return None
        except OSError as e:
            self._persistence_degraded = True
            logger.warning("State file write failed after audit commit: %s", e)
            return f"Persistence degraded: {e} — state committed in audit trail but state file is stale"


def _parse_slot(value: AvailabilitySlot | dict[str, Any]) -> AvailabilitySlot:
    if isinstance(value, AvailabilitySlot):
        slot = value
    else:
        try:
            slot = AvailabilitySlot(
                day_of_week=int(value["day_of_week"]),
                start_time=str(value["start_time"]),
                end_time=str(value["end_time"]),
            )
        except (KeyError, TypeError, ValueError):
            raise ValidationError(f"Invalid availability slot: {value}") from None
    if not 0 <= slot.day_of_week <= 6:
        raise ValidationError(f"day_of_week must be 0-6, got {slot.day_of_week}")
    if slot.start_time >= slot.end_time:
        raise ValidationError("Availability slot must end after it starts")
    return slot


def _escrow_data(record: EscrowRecord) -> dict[str, Any]:
    return {
        "escrow_id": record.escrow_id,
        "task_id": record.task_id,
        "status": record.status.value,
        "amount": dump_money(record.amount),
        "currency": record.currency,
    }


def _highest_event_number(event_log: EventLog) -> int:
    """Largest N among recovered ``EVT-N`` IDs (0 for an empty log)."""
    highest = 0
    for event in event_log.events():
        prefix, _, number = event.event_id.partition("-")
        if prefix == "EVT" and number.isdigit():
            highest = max(highest, int(number))
    return highest
