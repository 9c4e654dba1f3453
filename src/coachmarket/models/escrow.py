"""Escrow models — custody of a seeker's payment for an accepted bid.

All monetary values use Decimal for exact arithmetic. No floats in finance.

Invariants enforced by these models:
- One escrow record per task, created only for the accepted bid
- Status is monotonic: HELD_IN_ESCROW → RELEASED or HELD_IN_ESCROW → REFUNDED
- Terminal states have no outgoing transitions
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from coachmarket.errors import InvalidStateError
from coachmarket.models.codec import dump_money, dump_ts, load_money, load_ts


class EscrowState(str, enum.Enum):
    """Lifecycle state of an escrow record.

    State machine:
        HELD_IN_ESCROW → RELEASED
        HELD_IN_ESCROW → REFUNDED
    """
    HELD_IN_ESCROW = "held_in_escrow"
    RELEASED = "released"
    REFUNDED = "refunded"


# Valid escrow state transitions
ESCROW_TRANSITIONS: Dict[EscrowState, frozenset] = {
    EscrowState.HELD_IN_ESCROW: frozenset({
        EscrowState.RELEASED,
        EscrowState.REFUNDED,
    }),
    EscrowState.RELEASED: frozenset(),
    EscrowState.REFUNDED: frozenset(),
}


@dataclass
class EscrowRecord:
    """Custody record for one task's accepted bid.

    Mutable: status moves once, from held to a terminal state. All
    transitions are validated against the ESCROW_TRANSITIONS map.
    payment_reference is the gateway's opaque charge ID; this ledger
    never talks to the gateway itself.
    """
    escrow_id: str
    task_id: str
    bid_id: str
    payer_id: str
    coach_id: str
    amount: Decimal
    currency: str
    payment_reference: str
    status: EscrowState = EscrowState.HELD_IN_ESCROW
    held_utc: Optional[datetime] = None
    released_utc: Optional[datetime] = None
    refunded_utc: Optional[datetime] = None
    refund_reason: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return not ESCROW_TRANSITIONS[self.status]

    def transition_to(self, new_state: EscrowState) -> None:
        """Transition to a new state, validating the transition is legal."""
        allowed = ESCROW_TRANSITIONS.get(self.status, frozenset())
        if new_state not in allowed:
            raise InvalidStateError(
                f"Invalid escrow transition: {self.status.value} → {new_state.value}. "
                f"Allowed: [{', '.join(sorted(s.value for s in allowed))}]"
            )
        self.status = new_state

    def to_record(self) -> dict[str, Any]:
        return {
            "escrow_id": self.escrow_id,
            "task_id": self.task_id,
            "bid_id": self.bid_id,
            "payer_id": self.payer_id,
            "coach_id": self.coach_id,
            "amount": dump_money(self.amount),
            "currency": self.currency,
            "payment_reference": self.payment_reference,
            "status": self.status.value,
            "held_utc": dump_ts(self.held_utc),
            "released_utc": dump_ts(self.released_utc),
            "refunded_utc": dump_ts(self.refunded_utc),
            "refund_reason": self.refund_reason,
        }

    @staticmethod
    def from_record(data: dict[str, Any]) -> EscrowRecord:
        return EscrowRecord(
            escrow_id=data["escrow_id"],
            task_id=data["task_id"],
            bid_id=data["bid_id"],
            payer_id=data["payer_id"],
            coach_id=data["coach_id"],
            amount=load_money(data["amount"]),
            currency=data["currency"],
            payment_reference=data["payment_reference"],
            status=EscrowState(data["status"]),
            held_utc=load_ts(data.get("held_utc")),
            released_utc=load_ts(data.get("released_utc")),
            refunded_utc=load_ts(data.get("refunded_utc")),
            refund_reason=data.get("refund_reason"),
        )
