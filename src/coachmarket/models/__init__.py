"""Core data models for the coaching marketplace."""

from coachmarket.models.escrow import EscrowRecord, EscrowState
from coachmarket.models.identity import (
    AvailabilitySlot,
    CoachingSession,
    CoachProfile,
    CoachVerificationStatus,
    Resume,
    Role,
    SessionStatus,
    User,
)
from coachmarket.models.marketplace import (
    Bid,
    BidState,
    TaskState,
    TaskType,
    Urgency,
    VerificationTask,
)

__all__ = [
    "AvailabilitySlot",
    "Bid",
    "BidState",
    "CoachingSession",
    "CoachProfile",
    "CoachVerificationStatus",
    "EscrowRecord",
    "EscrowState",
    "Resume",
    "Role",
    "SessionStatus",
    "TaskState",
    "TaskType",
    "Urgency",
    "User",
    "VerificationTask",
]
