"""Identity models — users, coach profiles, resumes and coaching sessions.

These are the records the authorizer reads to decide ownership and
assignment. A user holds exactly one Role at any time; the role only
changes through an explicit role-change operation.

Coach profiles are 1:1 with their owning user. Bids, task assignment and
sessions reference the coach profile ID, never the coach's user ID.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from coachmarket.models.codec import dump_money, dump_ts, load_money, load_ts


class Role(str, enum.Enum):
    """The single role a user holds."""
    JOB_SEEKER = "job_seeker"
    COACH = "coach"
    ADMIN = "admin"


class CoachVerificationStatus(str, enum.Enum):
    """Admin review state of a coach profile."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class SessionStatus(str, enum.Enum):
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


@dataclass
class User:
    """A registered marketplace user."""
    user_id: str
    email: str
    name: str
    role: Role = Role.JOB_SEEKER
    created_utc: Optional[datetime] = None
    updated_utc: Optional[datetime] = None

    def to_record(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "email": self.email,
            "name": self.name,
            "role": self.role.value,
            "created_utc": dump_ts(self.created_utc),
            "updated_utc": dump_ts(self.updated_utc),
        }

    @staticmethod
    def from_record(data: dict[str, Any]) -> User:
        return User(
            user_id=data["user_id"],
            email=data["email"],
            name=data["name"],
            role=Role(data["role"]),
            created_utc=load_ts(data.get("created_utc")),
            updated_utc=load_ts(data.get("updated_utc")),
        )


@dataclass(frozen=True)
class AvailabilitySlot:
    """A weekly availability window (day_of_week 0 = Monday)."""
    day_of_week: int
    start_time: str
    end_time: str


@dataclass
class CoachProfile:
    """A coach's public profile.

    A profile created by the self-service role change starts out
    incomplete and pending; the coach fills it in afterwards and an
    admin reviews it.
    """
    coach_id: str
    user_id: str
    hourly_rate: Optional[Decimal] = None
    specialties: list[str] = field(default_factory=list)
    availability: list[AvailabilitySlot] = field(default_factory=list)
    verification_status: CoachVerificationStatus = CoachVerificationStatus.PENDING
    is_complete: bool = False
    created_utc: Optional[datetime] = None
    updated_utc: Optional[datetime] = None

    def to_record(self) -> dict[str, Any]:
        return {
            "coach_id": self.coach_id,
            "user_id": self.user_id,
            "hourly_rate": dump_money(self.hourly_rate),
            "specialties": list(self.specialties),
            "availability": [
                {
                    "day_of_week": s.day_of_week,
                    "start_time": s.start_time,
                    "end_time": s.end_time,
                }
                for s in self.availability
            ],
            "verification_status": self.verification_status.value,
            "is_complete": self.is_complete,
            "created_utc": dump_ts(self.created_utc),
            "updated_utc": dump_ts(self.updated_utc),
        }

    @staticmethod
    def from_record(data: dict[str, Any]) -> CoachProfile:
        return CoachProfile(
            coach_id=data["coach_id"],
            user_id=data["user_id"],
            hourly_rate=load_money(data.get("hourly_rate")),
            specialties=list(data.get("specialties", [])),
            availability=[
                AvailabilitySlot(**slot) for slot in data.get("availability", [])
            ],
            verification_status=CoachVerificationStatus(data["verification_status"]),
            is_complete=data.get("is_complete", False),
            created_utc=load_ts(data.get("created_utc")),
            updated_utc=load_ts(data.get("updated_utc")),
        )


@dataclass
class Resume:
    """A resume owned by a job seeker. Content lives elsewhere."""
    resume_id: str
    user_id: str
    title: str
    created_utc: Optional[datetime] = None

    def to_record(self) -> dict[str, Any]:
        return {
            "resume_id": self.resume_id,
            "user_id": self.user_id,
            "title": self.title,
            "created_utc": dump_ts(self.created_utc),
        }

    @staticmethod
    def from_record(data: dict[str, Any]) -> Resume:
        return Resume(
            resume_id=data["resume_id"],
            user_id=data["user_id"],
            title=data["title"],
            created_utc=load_ts(data.get("created_utc")),
        )


@dataclass
class CoachingSession:
    """A booked session between a seeker (user_id) and a coach profile."""
    session_id: str
    user_id: str
    coach_id: str
    scheduled_utc: datetime
    duration_minutes: int
    status: SessionStatus = SessionStatus.SCHEDULED
    created_utc: Optional[datetime] = None

    def to_record(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "user_id": self.user_id,
            "coach_id": self.coach_id,
            "scheduled_utc": dump_ts(self.scheduled_utc),
            "duration_minutes": self.duration_minutes,
            "status": self.status.value,
            "created_utc": dump_ts(self.created_utc),
        }

    @staticmethod
    def from_record(data: dict[str, Any]) -> CoachingSession:
        return CoachingSession(
            session_id=data["session_id"],
            user_id=data["user_id"],
            coach_id=data["coach_id"],
            scheduled_utc=load_ts(data["scheduled_utc"]),
            duration_minutes=data["duration_minutes"],
            status=SessionStatus(data["status"]),
            created_utc=load_ts(data.get("created_utc")),
        )
