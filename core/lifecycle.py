"""
Service request state machine.

One authoritative transition table. Every status change in the system goes
through `next_status`; nothing else decides whether an edge is legal.

    PENDING --accept--> ACCEPTED --begin--> IN_PROGRESS --complete--> COMPLETED
    PENDING/ACCEPTED --cancel--> CANCELLED
"""

from enum import Enum

from core.errors import InvalidTransitionError
from core.models.service_request import ServiceRequestStatus


class RequestAction(str, Enum):
    """Actions that move a request between statuses."""

    ACCEPT = "accept"
    BEGIN = "begin"
    CANCEL = "cancel"
    COMPLETE = "complete"


_S = ServiceRequestStatus

# action -> (allowed source statuses, target status)
_TRANSITIONS: dict[RequestAction, tuple[frozenset[ServiceRequestStatus], ServiceRequestStatus]] = {
    RequestAction.ACCEPT: (frozenset({_S.PENDING}), _S.ACCEPTED),
    RequestAction.BEGIN: (frozenset({_S.ACCEPTED}), _S.IN_PROGRESS),
    RequestAction.CANCEL: (frozenset({_S.PENDING, _S.ACCEPTED}), _S.CANCELLED),
    RequestAction.COMPLETE: (frozenset({_S.IN_PROGRESS}), _S.COMPLETED),
}


def allowed_sources(action: RequestAction) -> frozenset[ServiceRequestStatus]:
    """Statuses from which `action` may be applied."""
    return _TRANSITIONS[action][0]


def target_status(action: RequestAction) -> ServiceRequestStatus:
    """Status a request ends in after `action`."""
    return _TRANSITIONS[action][1]


def can_apply(current: ServiceRequestStatus, action: RequestAction) -> bool:
    return current in allowed_sources(action)


def next_status(current: ServiceRequestStatus, action: RequestAction) -> ServiceRequestStatus:
    """
    Apply `action` to a request in `current` status.

    Args:
        current: The request's current status
        action: The requested transition

    Returns:
        The resulting status

    Raises:
        InvalidTransitionError: If the edge is not in the table
    """
    if not can_apply(current, action):
        raise InvalidTransitionError(
            f"Cannot {action.value} a request that is {current.value}"
        )
    return target_status(action)
