from types import MappingProxyType
from typing import FrozenSet, Mapping, Optional

from .models import DeliveryStatus


VALID_TRANSITIONS: Mapping[DeliveryStatus, FrozenSet[DeliveryStatus]] = MappingProxyType(
    {
        DeliveryStatus.PENDING: frozenset({DeliveryStatus.ASSIGNED, DeliveryStatus.CANCELLED}),
        DeliveryStatus.ASSIGNED: frozenset({DeliveryStatus.PICKED_UP, DeliveryStatus.CANCELLED}),
        DeliveryStatus.PICKED_UP: frozenset({DeliveryStatus.IN_TRANSIT, DeliveryStatus.FAILED}),
        DeliveryStatus.IN_TRANSIT: frozenset({DeliveryStatus.OUT_FOR_DELIVERY, DeliveryStatus.FAILED}),
        DeliveryStatus.OUT_FOR_DELIVERY: frozenset({DeliveryStatus.DELIVERED, DeliveryStatus.FAILED}),
        DeliveryStatus.DELIVERED: frozenset(),
        DeliveryStatus.FAILED: frozenset(),
        DeliveryStatus.CANCELLED: frozenset(),
    }
)

INITIAL_STATUS = DeliveryStatus.PENDING

TERMINAL_STATUSES: FrozenSet[DeliveryStatus] = frozenset(
    status for status, targets in VALID_TRANSITIONS.items() if not targets
)

DELETABLE_STATUSES: FrozenSet[DeliveryStatus] = frozenset({DeliveryStatus.PENDING, DeliveryStatus.CANCELLED})


def coerce_status(value) -> Optional[DeliveryStatus]:
    try:
        return DeliveryStatus(value)
    except (ValueError, TypeError):
        return None


def allowed_targets(current) -> FrozenSet[DeliveryStatus]:
    status = coerce_status(current)
    if status is None:
        return frozenset()
    return VALID_TRANSITIONS[status]


def can_transition(current, target) -> bool:
    """Whether ``current -> target`` is an edge of the table. Never raises."""
    destination = coerce_status(target)
    if destination is None:
        return False
    return destination in allowed_targets(current)


def is_terminal(status) -> bool:
    return coerce_status(status) in TERMINAL_STATUSES


def can_delete(status) -> bool:
    return coerce_status(status) in DELETABLE_STATUSES
