"""Task state machine — enforces valid verification-task transitions.

Task lifecycle:
    OPEN → BIDDING → ASSIGNED → IN_PROGRESS → COMPLETED
    ASSIGNED / IN_PROGRESS / COMPLETED → DISPUTED

State semantics:
- OPEN: posted, no bids yet.
- BIDDING: at least one bid received.
- ASSIGNED: a bid was accepted; coach and final price are fixed.
- IN_PROGRESS: the assigned coach has started work.
- COMPLETED: work delivered with feedback.
- DISPUTED: terminal, pending admin resolution of the escrow.

OPEN → ASSIGNED is allowed so a bid can be accepted on a task that
never left OPEN. ASSIGNED → COMPLETED is allowed so completion does not
require an explicit start.

Fail-closed: invalid transitions return errors. There are no implicit
transitions.
"""

from __future__ import annotations

from coachmarket.models.marketplace import TaskState, VerificationTask


# Valid transitions: {from_state: {allowed_to_states}}
_TRANSITIONS: dict[TaskState, set[TaskState]] = {
    TaskState.OPEN: {TaskState.BIDDING, TaskState.ASSIGNED},
    TaskState.BIDDING: {TaskState.ASSIGNED},
    TaskState.ASSIGNED: {
        TaskState.IN_PROGRESS,
        TaskState.COMPLETED,
        TaskState.DISPUTED,
    },
    TaskState.IN_PROGRESS: {TaskState.COMPLETED, TaskState.DISPUTED},
    TaskState.COMPLETED: {TaskState.DISPUTED},
    # Terminal
    TaskState.DISPUTED: set(),
}


class TaskStateMachine:
    """Validates and applies task state transitions.

    Pure computation. Authorization, event logging and persistence are
    handled by the marketplace engine and the service layer.
    """

    @staticmethod
    def validate_transition(
        task: VerificationTask,
        target: TaskState,
    ) -> list[str]:
        """Check if a transition is valid. Returns errors (empty = OK)."""
        current = task.status
        allowed = _TRANSITIONS.get(current, set())

        if target not in allowed:
            allowed_str = ", ".join(s.value for s in sorted(allowed, key=lambda x: x.value))
            return [
                f"Invalid task transition: {current.value} → {target.value}. "
                f"Allowed from {current.value}: [{allowed_str}]"
            ]
        return []

    @staticmethod
    def apply_transition(
        task: VerificationTask,
        target: TaskState,
    ) -> list[str]:
        """Validate and apply a transition; mutates task.status on success."""
        errors = TaskStateMachine.validate_transition(task, target)
        if errors:
            return errors
        task.status = target
        return []

    @staticmethod
    def is_terminal(state: TaskState) -> bool:
        return not _TRANSITIONS.get(state)

    @staticmethod
    def valid_transitions(state: TaskState) -> set[TaskState]:
        """Return the set of valid target states from the given state."""
        return set(_TRANSITIONS.get(state, set()))
