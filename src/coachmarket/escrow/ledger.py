"""Escrow ledger — custody state for a task's accepted bid.

The ledger never charges or reverses a payment. The gateway has already
produced ``payment_reference`` by the time a hold is recorded; this
ledger only tracks custody:

    hold → HELD_IN_ESCROW → RELEASED  (task completed, coach is paid)
                          → REFUNDED  (task disputed, seeker is repaid)

Both terminal states are final. Repeating either call, or calling one
after the other, raises InvalidStateError.

Escrow creation never races ahead of bid acceptance: the hold requires
the stored bid to be ACCEPTED rather than trusting caller state.

When ``actor_id`` is given the call is authorized: hold and release
require the task owner; refund and status reads also admit the assigned
coach. Admins are always allowed.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional
from uuid import uuid4

from coachmarket.errors import (
    AuthorizationError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from coachmarket.market.task_state_machine import TaskStateMachine
from coachmarket.models.codec import dump_money, dump_ts
from coachmarket.models.escrow import EscrowRecord, EscrowState
from coachmarket.models.identity import Role
from coachmarket.models.marketplace import BidState, TaskState, VerificationTask
from coachmarket.persistence.document_store import DocumentStore
from coachmarket.policy import MarketplacePolicy
from coachmarket.rbac.authorizer import Authorizer

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class EscrowLedger:
    """Escrow operations keyed by task.

    Usage:
        ledger = EscrowLedger(store, authorizer, policy)
        record = ledger.hold_payment_in_escrow("task_1", "bid_1", "pi_123")
        ledger.release_escrow("task_1")
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

    def hold_payment_in_escrow(
        self,
        task_id: str,
        bid_id: str,
        payment_reference: str,
        now: Optional[datetime] = None,
        actor_id: Optional[str] = None,
        escrow_id: Optional[str] = None,
    ) -> EscrowRecord:
        task = self._require_task(task_id)
        self._authorize(actor_id, task, allow_coach=False)

        if not payment_reference or not payment_reference.strip():
            raise ValidationError("Payment reference is required")
        bid = self._store.get("bids", bid_id)
        if bid is None:
            raise NotFoundError(f"Bid not found: {bid_id}")
        if bid.task_id != task_id:
            raise ValidationError(f"Bid {bid_id} does not belong to task {task_id}")

        if bid.status != BidState.ACCEPTED:
            raise InvalidStateError(
                f"Bid {bid_id} is not accepted (status: {bid.status.value})"
            )
        if task.status != TaskState.ASSIGNED:
            raise InvalidStateError(
                f"Task {task_id} is not assigned (status: {task.status.value})"
            )
        if self.find_escrow(task_id) is not None:
            raise InvalidStateError(f"Escrow already exists for task {task_id}")

        if now is None:
            now = datetime.now(timezone.utc)
        record = EscrowRecord(
            escrow_id=escrow_id or f"escrow_{uuid4().hex[:12]}",
            task_id=task_id,
            bid_id=bid_id,
            payer_id=task.user_id,
            coach_id=bid.coach_id,
            amount=bid.price,
            currency=self._policy.currency,
            payment_reference=payment_reference,
            status=EscrowState.HELD_IN_ESCROW,
            held_utc=now,
        )
        self._store.insert("escrows", record)
        return record

    def release_escrow(
        self,
        task_id: str,
        now: Optional[datetime] = None,
        actor_id: Optional[str] = None,
        allow_disputed: bool = False,
    ) -> EscrowRecord:
        """Pay the coach. Task must be completed (or disputed under resolution)."""
        task = self._require_task(task_id)
        record = self._require_escrow(task_id)
        self._authorize(actor_id, task, allow_coach=False)

        allowed = {TaskState.COMPLETED}
        if allow_disputed:
            allowed.add(TaskState.DISPUTED)
        if record.status == EscrowState.HELD_IN_ESCROW and task.status not in allowed:
            raise InvalidStateError(
                f"Task {task_id} must be completed before release "
                f"(status: {task.status.value})"
            )

        record.transition_to(EscrowState.RELEASED)
        record.released_utc = now or datetime.now(timezone.utc)
        return record

    def refund_escrow(
        self,
        task_id: str,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
        actor_id: Optional[str] = None,
    ) -> tuple[EscrowRecord, Optional[TaskState]]:
        """Repay the seeker. Moves the task to DISPUTED if it is not already.

        Returns the record and the task's previous state when the task
        was moved, else None.
        """
        task = self._require_task(task_id)
        record = self._require_escrow(task_id)
        self._authorize(actor_id, task, allow_coach=True)

        if record.is_terminal:
            raise InvalidStateError(
                f"Escrow for task {task_id} is already {record.status.value}"
            )

        moved_from: Optional[TaskState] = None
        if task.status != TaskState.DISPUTED:
            errors = TaskStateMachine.validate_transition(task, TaskState.DISPUTED)
            if errors:
                raise InvalidStateError(errors[0])
            moved_from = task.status

        if now is None:
            now = datetime.now(timezone.utc)
        with self._store.transaction():
            record.transition_to(EscrowState.REFUNDED)
            record.refunded_utc = now
            record.refund_reason = reason
            if moved_from is not None:
                TaskStateMachine.apply_transition(task, TaskState.DISPUTED)
                task.updated_utc = now
        return record, moved_from

    def get_escrow_status(
        self,
        task_id: str,
        actor_id: Optional[str] = None,
    ) -> dict[str, Any]:
        """Read-only projection with the same keys whether or not a hold exists.

        Before any hold has_escrow is False and every other value is None.
        """
        task = self._require_task(task_id)
        self._authorize(actor_id, task, allow_coach=True)
        record = self.find_escrow(task_id)
        if record is None:
            return {
                "has_escrow": False,
                "status": None,
                "amount": None,
                "currency": None,
                "held_utc": None,
                "released_utc": None,
                "refunded_utc": None,
            }
        return {
            "has_escrow": True,
            "status": record.status.value,
            "amount": dump_money(record.amount),
            "currency": record.currency,
            "held_utc": dump_ts(record.held_utc),
            "released_utc": dump_ts(record.released_utc),
            "refunded_utc": dump_ts(record.refunded_utc),
        }

    def list_escrow_payments(self, user_id: str, as_coach: bool = False) -> list[EscrowRecord]:
        """Escrows the user paid into, or as_coach, the ones paying them."""
        user = self._authorizer.require_user(user_id)
        if as_coach:
            coach_id = self._authorizer.subject_for(user).coach_id
            if coach_id is None:
                return []
            records = self._store.find("escrows", coach_id=coach_id)
        else:
            records = self._store.find("escrows", payer_id=user.user_id)
        return sorted(records, key=lambda r: r.held_utc or _EPOCH, reverse=True)

    def find_escrow(self, task_id: str) -> Optional[EscrowRecord]:
        return self._store.find_one("escrows", task_id=task_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_task(self, task_id: str) -> VerificationTask:
        task = self._store.get("verification_tasks", task_id)
        if task is None:
            raise NotFoundError(f"Task not found: {task_id}")
        return task

    def _require_escrow(self, task_id: str) -> EscrowRecord:
        record = self.find_escrow(task_id)
        if record is None:
            raise NotFoundError(f"No escrow found for task {task_id}")
        return record

    def _authorize(
        self,
        actor_id: Optional[str],
        task: VerificationTask,
        allow_coach: bool,
    ) -> None:
        if actor_id is None:
            return
        actor = self._authorizer.require_user(actor_id)
        if actor.role == Role.ADMIN or actor.user_id == task.user_id:
            return
        if allow_coach:
            coach_id = self._authorizer.subject_for(actor).coach_id
            if coach_id is not None and coach_id == task.assigned_coach_id:
                return
        raise AuthorizationError("Not authorized for this task's escrow")
