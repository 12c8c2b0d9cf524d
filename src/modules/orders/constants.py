"""Order item / delivery assignment transitions and event types."""

from __future__ import annotations

from datetime import time

from src.models.enums import AssignmentStatus, ItemStatus

# ---------------------------------------------------------------------------
# Valid status transitions: current_status -> set of allowed next statuses
# ---------------------------------------------------------------------------

ITEM_TRANSITIONS: dict[ItemStatus, set[ItemStatus]] = {
    ItemStatus.PENDING: {
        ItemStatus.CONFIRMED,
        ItemStatus.CANCELLED,
    },
    ItemStatus.CONFIRMED: {
        ItemStatus.DELIVERED,
        ItemStatus.CANCELLED,
    },
    ItemStatus.DELIVERED: set(),
    ItemStatus.CANCELLED: set(),
}

ASSIGNMENT_TRANSITIONS: dict[AssignmentStatus, set[AssignmentStatus]] = {
    AssignmentStatus.ASSIGNED: {
        AssignmentStatus.ACCEPTED,
        AssignmentStatus.CANCELLED,
    },
    AssignmentStatus.ACCEPTED: {
        AssignmentStatus.PICKED_UP,
        AssignmentStatus.CANCELLED,
    },
    AssignmentStatus.PICKED_UP: {
        AssignmentStatus.DELIVERED,
        AssignmentStatus.CANCELLED,
    },
    AssignmentStatus.DELIVERED: set(),
    AssignmentStatus.CANCELLED: set(),
}


def sources_for(target: ItemStatus) -> set[ItemStatus]:
    """Item statuses from which ``target`` is reachable in one step."""
    return {src for src, targets in ITEM_TRANSITIONS.items() if target in targets}


def assignment_sources_for(target: AssignmentStatus) -> set[AssignmentStatus]:
    return {src for src, targets in ASSIGNMENT_TRANSITIONS.items() if target in targets}


# ---------------------------------------------------------------------------
# Event type strings for the outbox
# ---------------------------------------------------------------------------

EVENT_ORDER_PLACED = "order_placed"
EVENT_ORDER_CONFIRMED = "order_confirmed"
EVENT_ORDER_REJECTED = "order_rejected"
EVENT_DELIVERY_ASSIGNED = "delivery_assigned"
EVENT_DELIVERY_ACCEPTED = "delivery_accepted"
EVENT_PICKED_UP = "picked_up"
EVENT_OUT_FOR_DELIVERY = "out_for_delivery"
EVENT_DELIVERED = "delivered"
EVENT_CANCELLED = "cancelled"
EVENT_ASSIGNMENT_CANCELLED = "assignment_cancelled"

LIFECYCLE_EVENT_TYPES: tuple[str, ...] = (
    EVENT_ORDER_PLACED,
    EVENT_ORDER_CONFIRMED,
    EVENT_ORDER_REJECTED,
    EVENT_DELIVERY_ASSIGNED,
    EVENT_DELIVERY_ACCEPTED,
    EVENT_PICKED_UP,
    EVENT_OUT_FOR_DELIVERY,
    EVENT_DELIVERED,
    EVENT_CANCELLED,
    EVENT_ASSIGNMENT_CANCELLED,
)

# ---------------------------------------------------------------------------
# Vendor preparation grouping (display only)
# ---------------------------------------------------------------------------

MORNING_SLOT_END = time(10, 0)
MIDDAY_SLOT_END = time(14, 0)

# Vendor-facing warnings when confirmation succeeded but no partner was bound
WARNING_PINCODE_MISSING = "Delivery assignment pending, customer pincode missing"
WARNING_NO_PARTNER = "Delivery assignment pending, no delivery partner available yet"
