"""State machine validation for work order lifecycle status transitions.

Enforces valid status transitions to maintain workflow integrity:
- Orders must be approved before planning and planned before scheduling
- Legality is a single lookup in the transition matrix, never inferred
  from reachability (requested -> scheduled is illegal even though a path exists)
- Rejection, cancellation and holds must carry a reason
- Provides clear error messages for blocked transitions

Happy path: requested -> approved -> planned -> scheduled -> in_progress
-> completed -> verified -> closed

Terminal states: rejected, closed, cancelled
"""
import logging
from typing import Optional

from .errors import InvalidTransitionError
from .models import WorkOrderStatus, ExecutionStatus

logger = logging.getLogger("cmms-core.state_machine")


# Work order transition matrix
# Maps current status → list of allowed next statuses
WORK_ORDER_TRANSITION_MATRIX: dict[WorkOrderStatus, list[WorkOrderStatus]] = {
    WorkOrderStatus.REQUESTED: [
        WorkOrderStatus.APPROVED,     # Forward: request accepted
        WorkOrderStatus.REJECTED,     # Terminal: request refused
        WorkOrderStatus.CANCELLED,    # Terminal: withdrawn
    ],
    WorkOrderStatus.APPROVED: [
        WorkOrderStatus.PLANNED,      # Forward: estimates recorded
        WorkOrderStatus.ON_HOLD,      # Paused: waiting on parts, access, etc.
        WorkOrderStatus.CANCELLED,    # Terminal: withdrawn
    ],
    WorkOrderStatus.PLANNED: [
        WorkOrderStatus.SCHEDULED,    # Forward: assigned to a time window
        WorkOrderStatus.ON_HOLD,
        WorkOrderStatus.CANCELLED,
    ],
    WorkOrderStatus.SCHEDULED: [
        WorkOrderStatus.IN_PROGRESS,  # Forward: technician started work
        WorkOrderStatus.ON_HOLD,
        WorkOrderStatus.CANCELLED,
    ],
    WorkOrderStatus.IN_PROGRESS: [
        WorkOrderStatus.COMPLETED,    # Forward: work finished
        WorkOrderStatus.ON_HOLD,      # Must be held before it can be cancelled
    ],
    WorkOrderStatus.ON_HOLD: [
        # Resume targets, chosen explicitly by the caller
        WorkOrderStatus.APPROVED,
        WorkOrderStatus.PLANNED,
        WorkOrderStatus.SCHEDULED,
        WorkOrderStatus.IN_PROGRESS,
        WorkOrderStatus.CANCELLED,
    ],
    WorkOrderStatus.COMPLETED: [
        WorkOrderStatus.VERIFIED,     # Forward: supervisor accepted the work
        WorkOrderStatus.IN_PROGRESS,  # Back: rework needed
    ],
    WorkOrderStatus.VERIFIED: [
        WorkOrderStatus.CLOSED,       # Terminal: administratively closed
        WorkOrderStatus.COMPLETED,    # Back: verification withdrawn
    ],
    WorkOrderStatus.REJECTED: [
        # Terminal state - no transitions out
    ],
    WorkOrderStatus.CLOSED: [
        # Terminal state - closed orders are immutable records
    ],
    WorkOrderStatus.CANCELLED: [
        # Terminal state - create a new work order if the work is still needed
    ],
}

TERMINAL_STATUSES: frozenset[WorkOrderStatus] = frozenset({
    WorkOrderStatus.REJECTED,
    WorkOrderStatus.CLOSED,
    WorkOrderStatus.CANCELLED,
})

# Statuses whose transitions must carry a non-empty reason
REASON_REQUIRED_STATUSES: frozenset[WorkOrderStatus] = frozenset({
    WorkOrderStatus.REJECTED,
    WorkOrderStatus.CANCELLED,
    WorkOrderStatus.ON_HOLD,
})

# Statuses that count as "work done" for completion-rate metrics
COMPLETED_STATUSES: frozenset[WorkOrderStatus] = frozenset({
    WorkOrderStatus.COMPLETED,
    WorkOrderStatus.VERIFIED,
    WorkOrderStatus.CLOSED,
})


def is_transition_valid(
    current_status: WorkOrderStatus,
    new_status: WorkOrderStatus
) -> bool:
    """
    Check if a status transition is valid.

    Args:
        current_status: Current lifecycle status
        new_status: Requested new lifecycle status

    Returns:
        True if transition is allowed, False otherwise
    """
    allowed_transitions = WORK_ORDER_TRANSITION_MATRIX.get(current_status, [])
    return new_status in allowed_transitions


def validate_transition(
    current_status: WorkOrderStatus,
    new_status: WorkOrderStatus
) -> None:
    """
    Validate a status transition and raise exception if invalid.

    Args:
        current_status: Current lifecycle status
        new_status: Requested new lifecycle status

    Raises:
        InvalidTransitionError: If the transition is not allowed
    """
    if not is_transition_valid(current_status, new_status):
        allowed_transitions = WORK_ORDER_TRANSITION_MATRIX.get(current_status, [])
        allowed_names = [s.value for s in allowed_transitions]

        error_msg = f"Invalid status transition: {current_status.value} → {new_status.value}."
        if allowed_names:
            error_msg += f" From {current_status.value}, you can only transition to: {', '.join(allowed_names)}."

        # Add helpful guidance based on the attempted transition
        if current_status in TERMINAL_STATUSES:
            error_msg += f" Work orders that are {current_status.value} are terminal. Create a new work order instead."
        elif current_status == new_status:
            error_msg += f" The work order is already {current_status.value}."
        elif current_status == WorkOrderStatus.REQUESTED and new_status != WorkOrderStatus.APPROVED:
            error_msg += " Work orders must be approved first."
        elif new_status == WorkOrderStatus.SCHEDULED and current_status == WorkOrderStatus.APPROVED:
            error_msg += " Work orders must be planned before they can be scheduled."
        elif new_status == WorkOrderStatus.CANCELLED and current_status == WorkOrderStatus.IN_PROGRESS:
            error_msg += " Put the work order on hold before cancelling it."

        logger.warning(f"Blocked transition: {error_msg}")
        raise InvalidTransitionError(
            message=error_msg,
            current_status=current_status,
            requested_status=new_status,
            allowed_transitions=list(allowed_transitions)
        )

    logger.debug(f"Valid transition: {current_status.value} → {new_status.value}")


def get_allowed_transitions(current_status: WorkOrderStatus) -> list[WorkOrderStatus]:
    """
    Get list of allowed transitions from current status.

    Args:
        current_status: Current lifecycle status

    Returns:
        List of allowed next statuses
    """
    return list(WORK_ORDER_TRANSITION_MATRIX.get(current_status, []))


def is_terminal_status(status: WorkOrderStatus) -> bool:
    """Check if a work order status is terminal (no further transitions)."""
    return status in TERMINAL_STATUSES


def requires_reason(status: WorkOrderStatus) -> bool:
    """Check if transitioning into ``status`` must be justified with a reason."""
    return status in REASON_REQUIRED_STATUSES


# Status sort order for list queries
# Lower number = higher priority (shown first)
# Reflects workflow priority: active work first, backlog after, finished last
STATUS_SORT_ORDER: dict[WorkOrderStatus, int] = {
    WorkOrderStatus.IN_PROGRESS: 1,   # Actively worked - highest priority
    WorkOrderStatus.SCHEDULED: 2,     # About to start
    WorkOrderStatus.ON_HOLD: 3,       # Blocked, needs attention
    WorkOrderStatus.PLANNED: 4,       # Ready to schedule
    WorkOrderStatus.APPROVED: 5,      # Needs planning
    WorkOrderStatus.REQUESTED: 6,     # Needs approval decision
    WorkOrderStatus.COMPLETED: 7,     # Needs verification
    WorkOrderStatus.VERIFIED: 8,      # Needs closing
    WorkOrderStatus.CLOSED: 9,        # Done (usually excluded from lists)
    WorkOrderStatus.REJECTED: 10,
    WorkOrderStatus.CANCELLED: 11,
}


# =============================================================================
# Execution sub-lifecycle
# =============================================================================

# assigned -> in_progress <-> paused -> completed
EXECUTION_TRANSITION_MATRIX: dict[ExecutionStatus, list[ExecutionStatus]] = {
    ExecutionStatus.ASSIGNED: [
        ExecutionStatus.IN_PROGRESS,  # start
    ],
    ExecutionStatus.IN_PROGRESS: [
        ExecutionStatus.PAUSED,       # pause
        ExecutionStatus.COMPLETED,    # complete
    ],
    ExecutionStatus.PAUSED: [
        ExecutionStatus.IN_PROGRESS,  # resume
    ],
    ExecutionStatus.COMPLETED: [
        # Terminal state
    ],
}


def validate_execution_transition(
    current_status: ExecutionStatus,
    new_status: ExecutionStatus,
    action: Optional[str] = None,
) -> None:
    """
    Validate an execution status transition and raise exception if invalid.

    Args:
        current_status: Current execution status
        new_status: Requested execution status
        action: Name of the operation attempted (start, pause, ...), for the message

    Raises:
        InvalidTransitionError: If the transition is not allowed
    """
    allowed_transitions = EXECUTION_TRANSITION_MATRIX.get(current_status, [])
    if new_status in allowed_transitions:
        return

    label = f"{action} execution" if action else "execution transition"
    error_msg = (
        f"Cannot {label}: {current_status.value} → {new_status.value}. "
        f"Allowed from {current_status.value}: "
        f"{', '.join(s.value for s in allowed_transitions) or 'none (terminal)'}."
    )
    logger.warning(f"Blocked execution transition: {error_msg}")
    raise InvalidTransitionError(
        message=error_msg,
        current_status=current_status,
        requested_status=new_status,
        allowed_transitions=list(allowed_transitions)
    )
