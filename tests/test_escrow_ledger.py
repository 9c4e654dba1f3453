"""Tests for the escrow ledger — proves custody lifecycle invariants hold."""

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from coachmarket.errors import (
    AuthorizationError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from coachmarket.escrow.ledger import EscrowLedger
from coachmarket.market.marketplace import MarketplaceEngine
from coachmarket.models.escrow import EscrowRecord, EscrowState
from coachmarket.models.identity import (
    CoachProfile,
    CoachVerificationStatus,
    Resume,
    Role,
    User,
)
from coachmarket.models.marketplace import TaskState
from coachmarket.persistence.document_store import DocumentStore
from coachmarket.policy import MarketplacePolicy
from coachmarket.rbac.authorizer import Authorizer


def _now() -> datetime:
    return datetime(2026, 3, 2, 9, 0, 0, tzinfo=timezone.utc)


def _make_world(currency: str = "usd") -> tuple[DocumentStore, MarketplaceEngine, EscrowLedger]:
    store = DocumentStore()
    for user_id, role in (
        ("S", Role.JOB_SEEKER),
        ("S2", Role.JOB_SEEKER),
        ("C1", Role.COACH),
        ("C2", Role.COACH),
        ("A", Role.ADMIN),
    ):
        store.insert("users", User(
            user_id=user_id, email=f"{user_id}@example.com", name=user_id, role=role,
        ))
    for user_id in ("C1", "C2"):
        store.insert("coaches", CoachProfile(
            coach_id=f"coach-{user_id}", user_id=user_id,
            verification_status=CoachVerificationStatus.APPROVED,
        ))
    store.insert("resumes", Resume(resume_id="R1", user_id="S", title="CV"))
    authorizer = Authorizer(store)
    policy = MarketplacePolicy(currency=currency)
    return (
        store,
        MarketplaceEngine(store, authorizer, policy),
        EscrowLedger(store, authorizer, policy),
    )


def _assigned_task(engine: MarketplaceEngine) -> tuple[str, str, str]:
    """Task T1 with C1 bidding 40 and C2 bidding 35; C2's bid accepted."""
    engine.create_task("S", "R1", "resume_review_full", "standard", "50", task_id="T1")
    loser = engine.create_bid("C1", "T1", "40", 60, bid_id="B1")
    winner = engine.create_bid("C2", "T1", "35", 60, bid_id="B2")
    engine.accept_bid("S", winner.bid_id)
    return "T1", winner.bid_id, loser.bid_id


class TestHold:
    def test_hold_records_accepted_bid_price(self) -> None:
        _, engine, ledger = _make_world()
        task_id, bid_id, _ = _assigned_task(engine)
        record = ledger.hold_payment_in_escrow(task_id, bid_id, "pi_123", now=_now())
        assert record.status == EscrowState.HELD_IN_ESCROW
        assert record.amount == Decimal("35")
        assert record.currency == "usd"
        assert record.payer_id == "S"
        assert record.coach_id == "coach-C2"
        assert record.payment_reference == "pi_123"
        assert record.held_utc == _now()

    def test_currency_from_policy(self) -> None:
        _, engine, ledger = _make_world(currency="eur")
        task_id, bid_id, _ = _assigned_task(engine)
        assert ledger.hold_payment_in_escrow(task_id, bid_id, "pi_1").currency == "eur"

    def test_rejected_bid_cannot_be_held(self) -> None:
        _, engine, ledger = _make_world()
        task_id, _, loser = _assigned_task(engine)
        with pytest.raises(InvalidStateError, match="not accepted"):
            ledger.hold_payment_in_escrow(task_id, loser, "pi_123")

    def test_pending_bid_cannot_be_held(self) -> None:
        _, engine, ledger = _make_world()
        engine.create_task("S", "R1", "resume_review_full", "standard", "50", task_id="T1")
        bid = engine.create_bid("C1", "T1", "40", 60)
        with pytest.raises(InvalidStateError):
            ledger.hold_payment_in_escrow("T1", bid.bid_id, "pi_123")

    def test_only_one_escrow_per_task(self) -> None:
        _, engine, ledger = _make_world()
        task_id, bid_id, _ = _assigned_task(engine)
        ledger.hold_payment_in_escrow(task_id, bid_id, "pi_123")
        with pytest.raises(InvalidStateError, match="already exists"):
            ledger.hold_payment_in_escrow(task_id, bid_id, "pi_456")

    def test_task_must_be_assigned(self) -> None:
        _, engine, ledger = _make_world()
        task_id, bid_id, _ = _assigned_task(engine)
        engine.start_task("C2", task_id)
        with pytest.raises(InvalidStateError, match="not assigned"):
            ledger.hold_payment_in_escrow(task_id, bid_id, "pi_123")

    def test_blank_payment_reference(self) -> None:
        _, engine, ledger = _make_world()
        task_id, bid_id, _ = _assigned_task(engine)
        with pytest.raises(ValidationError, match="Payment reference"):
            ledger.hold_payment_in_escrow(task_id, bid_id, "  ")

    def test_bid_from_other_task(self) -> None:
        _, engine, ledger = _make_world()
        task_id, bid_id, _ = _assigned_task(engine)
        engine.create_task("S", "R1", "cover_letter_review", "standard", "20", task_id="T2")
        with pytest.raises(ValidationError, match="does not belong"):
            ledger.hold_payment_in_escrow("T2", bid_id, "pi_123")

    def test_unknown_task(self) -> None:
        _, _, ledger = _make_world()
        with pytest.raises(NotFoundError):
            ledger.hold_payment_in_escrow("nope", "B1", "pi_123")

    def test_actor_must_be_owner(self) -> None:
        _, engine, ledger = _make_world()
        task_id, bid_id, _ = _assigned_task(engine)
        with pytest.raises(AuthorizationError):
            ledger.hold_payment_in_escrow(task_id, bid_id, "pi_123", actor_id="C2")
        ledger.hold_payment_in_escrow(task_id, bid_id, "pi_123", actor_id="S")


class TestRelease:
    def _held(self) -> tuple[DocumentStore, MarketplaceEngine, EscrowLedger, str]:
        store, engine, ledger = _make_world()
        task_id, bid_id, _ = _assigned_task(engine)
        ledger.hold_payment_in_escrow(task_id, bid_id, "pi_123", now=_now())
        return store, engine, ledger, task_id

    def test_release_after_completion(self) -> None:
        _, engine, ledger, task_id = self._held()
        engine.complete_task("C2", task_id)
        later = _now() + timedelta(days=1)
        record = ledger.release_escrow(task_id, now=later)
        assert record.status == EscrowState.RELEASED
        assert record.released_utc == later

    def test_release_before_completion_rejected(self) -> None:
        _, _, ledger, task_id = self._held()
        with pytest.raises(InvalidStateError, match="must be completed"):
            ledger.release_escrow(task_id)

    def test_double_release_rejected(self) -> None:
        _, engine, ledger, task_id = self._held()
        engine.complete_task("C2", task_id)
        ledger.release_escrow(task_id)
        with pytest.raises(InvalidStateError, match="Invalid escrow transition"):
            ledger.release_escrow(task_id)

    def test_refund_after_release_rejected(self) -> None:
        _, engine, ledger, task_id = self._held()
        engine.complete_task("C2", task_id)
        ledger.release_escrow(task_id)
        with pytest.raises(InvalidStateError, match="already released"):
            ledger.refund_escrow(task_id)

    def test_release_without_escrow(self) -> None:
        _, engine, ledger = _make_world()
        task_id, _, _ = _assigned_task(engine)
        with pytest.raises(NotFoundError, match="No escrow"):
            ledger.release_escrow(task_id)

    def test_assigned_coach_cannot_release(self) -> None:
        _, engine, ledger, task_id = self._held()
        engine.complete_task("C2", task_id)
        with pytest.raises(AuthorizationError):
            ledger.release_escrow(task_id, actor_id="C2")

    def test_release_while_disputed_needs_resolution_flag(self) -> None:
        _, engine, ledger, task_id = self._held()
        engine.dispute_task("S", task_id)
        with pytest.raises(InvalidStateError):
            ledger.release_escrow(task_id)
        record = ledger.release_escrow(task_id, allow_disputed=True)
        assert record.status == EscrowState.RELEASED


class TestRefund:
    def test_refund_moves_task_to_disputed(self) -> None:
        store, engine, ledger = _make_world()
        task_id, bid_id, _ = _assigned_task(engine)
        ledger.hold_payment_in_escrow(task_id, bid_id, "pi_123")
        record, moved_from = ledger.refund_escrow(task_id, reason="no-show", now=_now())
        assert record.status == EscrowState.REFUNDED
        assert record.refunded_utc == _now()
        assert record.refund_reason == "no-show"
        assert moved_from == TaskState.ASSIGNED
        assert store.get("verification_tasks", task_id).status == TaskState.DISPUTED

    def test_refund_of_disputed_task_keeps_status(self) -> None:
        store, engine, ledger = _make_world()
        task_id, bid_id, _ = _assigned_task(engine)
        ledger.hold_payment_in_escrow(task_id, bid_id, "pi_123")
        engine.dispute_task("C2", task_id)
        _, moved_from = ledger.refund_escrow(task_id)
        assert moved_from is None
        assert store.get("verification_tasks", task_id).status == TaskState.DISPUTED

    def test_double_refund_rejected(self) -> None:
        _, engine, ledger = _make_world()
        task_id, bid_id, _ = _assigned_task(engine)
        ledger.hold_payment_in_escrow(task_id, bid_id, "pi_123")
        ledger.refund_escrow(task_id)
        with pytest.raises(InvalidStateError):
            ledger.refund_escrow(task_id)

    def test_release_after_refund_rejected(self) -> None:
        _, engine, ledger = _make_world()
        task_id, bid_id, _ = _assigned_task(engine)
        ledger.hold_payment_in_escrow(task_id, bid_id, "pi_123")
        ledger.refund_escrow(task_id)
        with pytest.raises(InvalidStateError):
            ledger.release_escrow(task_id, allow_disputed=True)

    def test_assigned_coach_may_refund(self) -> None:
        _, engine, ledger = _make_world()
        task_id, bid_id, _ = _assigned_task(engine)
        ledger.hold_payment_in_escrow(task_id, bid_id, "pi_123")
        record, _ = ledger.refund_escrow(task_id, actor_id="C2")
        assert record.status == EscrowState.REFUNDED

    def test_losing_coach_may_not_refund(self) -> None:
        _, engine, ledger = _make_world()
        task_id, bid_id, _ = _assigned_task(engine)
        ledger.hold_payment_in_escrow(task_id, bid_id, "pi_123")
        with pytest.raises(AuthorizationError):
            ledger.refund_escrow(task_id, actor_id="C1")


class TestStatusAndListing:
    def test_status_before_hold(self) -> None:
        _, engine, ledger = _make_world()
        task_id, _, _ = _assigned_task(engine)
        status = ledger.get_escrow_status(task_id)
        assert status["has_escrow"] is False
        assert status["status"] is None
        assert status["amount"] is None
        assert set(status) == {
            "has_escrow", "status", "amount", "currency",
            "held_utc", "released_utc", "refunded_utc",
        }

    def test_status_shape_is_stable(self) -> None:
        _, engine, ledger = _make_world()
        task_id, bid_id, _ = _assigned_task(engine)
        before = ledger.get_escrow_status(task_id)
        ledger.hold_payment_in_escrow(task_id, bid_id, "pi_123", now=_now())
        assert set(ledger.get_escrow_status(task_id)) == set(before)

    def test_status_after_hold(self) -> None:
        _, engine, ledger = _make_world()
        task_id, bid_id, _ = _assigned_task(engine)
        ledger.hold_payment_in_escrow(task_id, bid_id, "pi_123", now=_now())
        status = ledger.get_escrow_status(task_id)
        assert status["has_escrow"] is True
        assert status["status"] == "held_in_escrow"
        assert Decimal(status["amount"]) == Decimal("35")
        assert status["currency"] == "usd"
        assert status["held_utc"] == _now().isoformat()
        assert status["released_utc"] is None

    def test_status_unknown_task(self) -> None:
        _, _, ledger = _make_world()
        with pytest.raises(NotFoundError):
            ledger.get_escrow_status("nope")

    def test_status_hidden_from_strangers(self) -> None:
        _, engine, ledger = _make_world()
        task_id, _, _ = _assigned_task(engine)
        with pytest.raises(AuthorizationError):
            ledger.get_escrow_status(task_id, actor_id="S2")
        assert ledger.get_escrow_status(task_id, actor_id="A")["has_escrow"] is False

    def test_list_payments_as_client_and_coach(self) -> None:
        _, engine, ledger = _make_world()
        task_id, bid_id, _ = _assigned_task(engine)
        ledger.hold_payment_in_escrow(task_id, bid_id, "pi_123")
        assert [r.task_id for r in ledger.list_escrow_payments("S")] == [task_id]
        assert [r.task_id for r in ledger.list_escrow_payments("C2", as_coach=True)] == [task_id]
        assert ledger.list_escrow_payments("C1", as_coach=True) == []
        assert ledger.list_escrow_payments("S2", as_coach=True) == []


class TestEscrowRecordModel:
    def test_terminal_states(self) -> None:
        record = EscrowRecord(
            escrow_id="E1", task_id="T1", bid_id="B1", payer_id="S",
            coach_id="c", amount=Decimal("10"), currency="usd",
            payment_reference="pi",
        )
        assert not record.is_terminal
        record.transition_to(EscrowState.REFUNDED)
        assert record.is_terminal
        with pytest.raises(InvalidStateError, match="Allowed: \\[\\]"):
            record.transition_to(EscrowState.HELD_IN_ESCROW)

    def test_record_round_trip(self) -> None:
        record = EscrowRecord(
            escrow_id="E1", task_id="T1", bid_id="B1", payer_id="S",
            coach_id="c", amount=Decimal("35.50"), currency="usd",
            payment_reference="pi", held_utc=_now(),
        )
        assert EscrowRecord.from_record(record.to_record()) == record
