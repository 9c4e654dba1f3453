"""Marketplace models — verification tasks and bids.

A job seeker posts a verification task against one of their resumes,
coaches bid on it, the seeker accepts one bid and the winning coach does
the work.

Task lifecycle: OPEN → BIDDING → ASSIGNED → IN_PROGRESS → COMPLETED | DISPUTED
Bid lifecycle: PENDING → ACCEPTED / REJECTED
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from coachmarket.models.codec import dump_money, dump_ts, load_money, load_ts


class TaskType(str, enum.Enum):
    """Kind of review work requested."""
    RESUME_REVIEW_QUICK = "resume_review_quick"
    RESUME_REVIEW_FULL = "resume_review_full"
    COVER_LETTER_REVIEW = "cover_letter_review"


class Urgency(str, enum.Enum):
    URGENT = "urgent"
    STANDARD = "standard"
    FLEXIBLE = "flexible"


class TaskState(str, enum.Enum):
    """Lifecycle state of a verification task."""
    OPEN = "open"
    BIDDING = "bidding"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    DISPUTED = "disputed"


class BidState(str, enum.Enum):
    """Lifecycle state of a bid."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


# States in which coaches may still bid and the owner may still accept.
BIDDABLE_STATES = frozenset({TaskState.OPEN, TaskState.BIDDING})


@dataclass
class VerificationTask:
    """A unit of paid review work posted by a job seeker.

    assigned_coach_id and final_price are set together, exactly once,
    when a bid is accepted.
    """
    task_id: str
    user_id: str
    resume_id: str
    task_type: TaskType
    urgency: Urgency
    suggested_price: Decimal
    status: TaskState = TaskState.OPEN
    assigned_coach_id: Optional[str] = None
    final_price: Optional[Decimal] = None
    completed_utc: Optional[datetime] = None
    feedback: Optional[str] = None
    created_utc: Optional[datetime] = None
    updated_utc: Optional[datetime] = None

    def to_record(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "user_id": self.user_id,
            "resume_id": self.resume_id,
            "task_type": self.task_type.value,
            "urgency": self.urgency.value,
            "suggested_price": dump_money(self.suggested_price),
            "status": self.status.value,
            "assigned_coach_id": self.assigned_coach_id,
            "final_price": dump_money(self.final_price),
            "completed_utc": dump_ts(self.completed_utc),
            "feedback": self.feedback,
            "created_utc": dump_ts(self.created_utc),
            "updated_utc": dump_ts(self.updated_utc),
        }

    @staticmethod
    def from_record(data: dict[str, Any]) -> VerificationTask:
        return VerificationTask(
            task_id=data["task_id"],
            user_id=data["user_id"],
            resume_id=data["resume_id"],
            task_type=TaskType(data["task_type"]),
            urgency=Urgency(data["urgency"]),
            suggested_price=load_money(data["suggested_price"]),
            status=TaskState(data["status"]),
            assigned_coach_id=data.get("assigned_coach_id"),
            final_price=load_money(data.get("final_price")),
            completed_utc=load_ts(data.get("completed_utc")),
            feedback=data.get("feedback"),
            created_utc=load_ts(data.get("created_utc")),
            updated_utc=load_ts(data.get("updated_utc")),
        )


@dataclass
class Bid:
    """A coach's offer on a verification task.

    coach_id is the coach profile ID; coach_user_id is kept alongside so
    ownership checks need no extra lookup. sequence is the submission
    order within the task and breaks price ties.
    """
    bid_id: str
    task_id: str
    coach_id: str
    coach_user_id: str
    price: Decimal
    estimated_time: int
    message: Optional[str] = None
    status: BidState = BidState.PENDING
    sequence: int = 0
    created_utc: Optional[datetime] = None

    def to_record(self) -> dict[str, Any]:
        return {
            "bid_id": self.bid_id,
            "task_id": self.task_id,
            "coach_id": self.coach_id,
            "coach_user_id": self.coach_user_id,
            "price": dump_money(self.price),
            "estimated_time": self.estimated_time,
            "message": self.message,
            "status": self.status.value,
            "sequence": self.sequence,
            "created_utc": dump_ts(self.created_utc),
        }

    @staticmethod
    def from_record(data: dict[str, Any]) -> Bid:
        return Bid(
            bid_id=data["bid_id"],
            task_id=data["task_id"],
            coach_id=data["coach_id"],
            coach_user_id=data["coach_user_id"],
            price=load_money(data["price"]),
            estimated_time=data["estimated_time"],
            message=data.get("message"),
            status=BidState(data["status"]),
            sequence=data.get("sequence", 0),
            created_utc=load_ts(data.get("created_utc")),
        )
