"""Role management — admin assignment and self-service role change.

Both operations mutate the user's single Role; permissions follow
automatically because they are derived from the role table.

Self-service path: a job seeker may become a coach without approval.
An incomplete, pending coach profile is created for them to fill in
afterwards. Every other requested change is soft-blocked (reported as
unsuccessful, nothing mutated) because it needs an admin.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from coachmarket.errors import AuthorizationError, NotFoundError, ValidationError
from coachmarket.models.identity import CoachProfile, Role
from coachmarket.persistence.document_store import DocumentStore


@dataclass(frozen=True)
class RoleChange:
    """Result of a role-change attempt."""
    success: bool
    message: str
    user_id: str
    previous_role: Optional[Role] = None
    new_role: Optional[Role] = None
    coach_id: Optional[str] = None


def parse_role(value: Role | str) -> Role:
    try:
        return Role(value)
    except ValueError:
        raise ValidationError(f"Unknown role: {value}") from None


class RoleManager:
    """Applies role changes to users in the document store.

    Callers wrap each call in a store transaction and record the audit
    event; this class only validates and mutates.
    """

    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    def assign_role(
        self,
        acting_admin_id: str,
        target_user_id: str,
        new_role: Role | str,
        now: Optional[datetime] = None,
    ) -> RoleChange:
        """Set a user's role. Only admins may call this."""
        admin = self._store.get("users", acting_admin_id)
        if admin is None or admin.role != Role.ADMIN:
            raise AuthorizationError("Only admins can assign roles")

        role = parse_role(new_role)
        target = self._store.get("users", target_user_id)
        if target is None:
            raise NotFoundError(f"Target user not found: {target_user_id}")
        if now is None:
            now = datetime.now(timezone.utc)

        previous = target.role
        target.role = role
        target.updated_utc = now
        return RoleChange(
            success=True,
            message=f"Role updated to {role.value}",
            user_id=target.user_id,
            previous_role=previous,
            new_role=role,
        )

    def request_role_change(
        self,
        user_id: str,
        requested_role: Role | str,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
        coach_id: Optional[str] = None,
    ) -> RoleChange:
        """Self-service role change. Soft-blocks anything but seeker → coach."""
        user = self._store.get("users", user_id)
        if user is None:
            raise NotFoundError(f"User not found: {user_id}")
        role = parse_role(requested_role)

        if role == Role.COACH:
            if self._store.find_one("coaches", user_id=user_id) is not None:
                return RoleChange(
                    success=False,
                    message="Coach profile already exists",
                    user_id=user_id,
                )
            if user.role == Role.JOB_SEEKER:
                if now is None:
                    now = datetime.now(timezone.utc)
                if coach_id is None:
                    coach_id = f"coach_{uuid4().hex[:12]}"
                self._store.insert("coaches", CoachProfile(
                    coach_id=coach_id,
                    user_id=user_id,
                    created_utc=now,
                    updated_utc=now,
                ))
                previous = user.role
                user.role = Role.COACH
                user.updated_utc = now
                return RoleChange(
                    success=True,
                    message="Role changed to coach. Please complete your coach profile.",
                    user_id=user_id,
                    previous_role=previous,
                    new_role=Role.COACH,
                    coach_id=coach_id,
                )

        return RoleChange(
            success=False,
            message="This role change requires admin approval",
            user_id=user_id,
        )
