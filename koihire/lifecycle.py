"""
Status transition tables for projects, applications, service orders,
escrows and payouts.

Handlers never assign ``status`` directly; they call :func:`advance`, which
rejects a move the table does not allow with a 400.
"""

from fastapi import HTTPException, status

from .models import ApplicationStatus, EscrowStatus, OrderStatus, PayoutStatus, ProjectStatus

PROJECT_TRANSITIONS = {
    ProjectStatus.OPEN: {ProjectStatus.IN_PROGRESS, ProjectStatus.PAUSED, ProjectStatus.CANCELLED},
    ProjectStatus.PAUSED: {ProjectStatus.OPEN, ProjectStatus.CANCELLED},
    ProjectStatus.IN_PROGRESS: {ProjectStatus.PENDING_REVIEW, ProjectStatus.DISPUTED, ProjectStatus.CANCELLED},
    ProjectStatus.PENDING_REVIEW: {ProjectStatus.COMPLETED, ProjectStatus.IN_PROGRESS, ProjectStatus.DISPUTED},
    ProjectStatus.DISPUTED: {ProjectStatus.COMPLETED, ProjectStatus.CANCELLED},
    ProjectStatus.COMPLETED: set(),
    ProjectStatus.CANCELLED: set(),
}

APPLICATION_TRANSITIONS = {
    ApplicationStatus.PENDING: {ApplicationStatus.ACCEPTED, ApplicationStatus.REJECTED, ApplicationStatus.WITHDRAWN},
    ApplicationStatus.ACCEPTED: set(),
    ApplicationStatus.REJECTED: set(),
    ApplicationStatus.WITHDRAWN: set(),
}

ORDER_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.ACCEPTED, OrderStatus.CANCELLED},
    OrderStatus.ACCEPTED: {OrderStatus.IN_PROGRESS, OrderStatus.CANCELLED},
    OrderStatus.IN_PROGRESS: {OrderStatus.DELIVERED, OrderStatus.DISPUTED},
    OrderStatus.DELIVERED: {OrderStatus.COMPLETED, OrderStatus.REVISION_REQUESTED, OrderStatus.DISPUTED},
    OrderStatus.REVISION_REQUESTED: {OrderStatus.DELIVERED, OrderStatus.DISPUTED},
    OrderStatus.DISPUTED: {OrderStatus.COMPLETED, OrderStatus.CANCELLED},
    OrderStatus.COMPLETED: set(),
    OrderStatus.CANCELLED: set(),
}

ESCROW_TRANSITIONS = {
    EscrowStatus.PENDING: {EscrowStatus.FUNDED},
    EscrowStatus.FUNDED: {EscrowStatus.RELEASED, EscrowStatus.REFUNDED},
    EscrowStatus.RELEASED: set(),
    EscrowStatus.REFUNDED: set(),
}

PAYOUT_TRANSITIONS = {
    PayoutStatus.PENDING: {PayoutStatus.PROCESSING, PayoutStatus.COMPLETED, PayoutStatus.FAILED},
    PayoutStatus.PROCESSING: {PayoutStatus.COMPLETED, PayoutStatus.FAILED},
    PayoutStatus.COMPLETED: set(),
    PayoutStatus.FAILED: set(),
}

TABLES = {
    ProjectStatus: PROJECT_TRANSITIONS,
    ApplicationStatus: APPLICATION_TRANSITIONS,
    OrderStatus: ORDER_TRANSITIONS,
    EscrowStatus: ESCROW_TRANSITIONS,
    PayoutStatus: PAYOUT_TRANSITIONS,
}

# open work blocks deleting a service
ACTIVE_ORDER_STATUSES = (
    OrderStatus.PENDING, OrderStatus.ACCEPTED, OrderStatus.IN_PROGRESS,
    OrderStatus.DELIVERED, OrderStatus.REVISION_REQUESTED, OrderStatus.DISPUTED,
)


def can_transition(current, target) -> bool:
    table = TABLES[type(target)]
    return target in table.get(current, set())


def advance(obj, target, detail: str = None):
    """Move ``obj.status`` to ``target`` or raise 400."""
    current = obj.status
    if not can_transition(current, target):
        label = type(obj).__name__
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail or f"{label} cannot move from {current.value} to {target.value}",
        )
    obj.status = target
    return obj
