"""Derived, never-stored values computed from persisted timestamps and statuses."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, time
from itertools import groupby

from src.config import settings
from src.models.delivery_assignment import DeliveryAssignment
from src.models.delivery_slot import DeliverySlot
from src.models.enums import AssignmentStatus, DisplayStatus, ItemStatus, SlotPriority
from src.models.order import Order
from src.models.order_item import OrderItem
from src.models.vendor_policy import VendorPolicy
from src.modules.orders.constants import MIDDAY_SLOT_END, MORNING_SLOT_END
from src.modules.scheduler.clock import as_utc

_PRIORITY_ORDER = {SlotPriority.HIGH: 0, SlotPriority.MEDIUM: 1, SlotPriority.LOW: 2}


def minutes_elapsed(created_at: datetime, now: datetime) -> int:
    return max(int((as_utc(now) - as_utc(created_at)).total_seconds() // 60), 0)


def minutes_remaining(created_at: datetime, timeout_minutes: int, now: datetime) -> int:
    """Whole minutes left in the confirmation window, floored and clamped at 0."""
    seconds_left = timeout_minutes * 60 - (as_utc(now) - as_utc(created_at)).total_seconds()
    return max(int(seconds_left // 60), 0)


def is_urgent(status: ItemStatus, remaining: int, threshold: int | None = None) -> bool:
    if threshold is None:
        threshold = settings.urgent_threshold_minutes
    return status == ItemStatus.PENDING and remaining <= threshold


def confirmation_timeout(policy: VendorPolicy | None) -> int:
    if policy is None:
        return settings.default_confirmation_timeout_minutes
    return policy.order_confirmation_timeout_minutes


def current_status(item: OrderItem, assignment: DeliveryAssignment | None) -> DisplayStatus:
    """Collapse item status and delivery progress into one display status."""
    if item.item_status == ItemStatus.CANCELLED:
        return DisplayStatus.CANCELLED
    if item.item_status == ItemStatus.DELIVERED:
        return DisplayStatus.DELIVERED
    if item.item_status == ItemStatus.PENDING:
        return DisplayStatus.PENDING

    if assignment is None or not assignment.is_active:
        return DisplayStatus.CONFIRMED
    if assignment.status == AssignmentStatus.PICKED_UP:
        return DisplayStatus.OUT_FOR_DELIVERY
    if assignment.status in (AssignmentStatus.ASSIGNED, AssignmentStatus.ACCEPTED):
        return DisplayStatus.ASSIGNED_TO_DELIVERY
    return DisplayStatus.CONFIRMED


@dataclass
class StatusView:
    item: OrderItem
    display_status: DisplayStatus
    minutes_remaining: int | None
    is_urgent: bool
    assignment: DeliveryAssignment | None = None


def build_status_view(
    item: OrderItem,
    assignment: DeliveryAssignment | None,
    policy: VendorPolicy | None,
    now: datetime,
) -> StatusView:
    remaining = None
    urgent = False
    if item.item_status == ItemStatus.PENDING:
        remaining = minutes_remaining(item.created_at, confirmation_timeout(policy), now)
        urgent = is_urgent(item.item_status, remaining)
    return StatusView(
        item=item,
        display_status=current_status(item, assignment),
        minutes_remaining=remaining,
        is_urgent=urgent,
        assignment=assignment,
    )


def slot_priority(start_time: time | None) -> SlotPriority:
    """Morning slots first: up to 10:00 high, up to 14:00 medium, later low."""
    if start_time is None:
        return SlotPriority.LOW
    if start_time <= MORNING_SLOT_END:
        return SlotPriority.HIGH
    if start_time <= MIDDAY_SLOT_END:
        return SlotPriority.MEDIUM
    return SlotPriority.LOW


@dataclass
class PreparationRow:
    item: OrderItem
    order: Order
    slot: DeliverySlot | None

    @property
    def priority(self) -> SlotPriority:
        return slot_priority(self.slot.start_time if self.slot else None)


def group_for_preparation(
    rows: list[PreparationRow],
) -> list[tuple[SlotPriority, list[PreparationRow]]]:
    """Confirmed items grouped by slot priority, earliest slot first within a group."""
    confirmed = [r for r in rows if r.item.item_status == ItemStatus.CONFIRMED]
    confirmed.sort(
        key=lambda r: (
            _PRIORITY_ORDER[r.priority],
            r.slot.start_time if r.slot else time.max,
            as_utc(r.item.created_at),
        )
    )
    return [
        (priority, list(group))
        for priority, group in groupby(confirmed, key=lambda r: r.priority)
    ]
