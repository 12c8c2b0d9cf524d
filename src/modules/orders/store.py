"""OrderStore: persistence for orders, items and delivery assignments.

Every status write is a compare-and-swap ``UPDATE ... WHERE status IN
(:sources) AND version = :v``; a miss is re-read and classified so callers
can tell a benign duplicate from a real conflict.
"""

from __future__ import annotations

import enum
import logging
import secrets
import uuid
from collections.abc import Iterable
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.exceptions import (
    ConcurrencyConflictException,
    NotFoundException,
    PreconditionFailedException,
)
from src.models.delivery_assignment import DeliveryAssignment
from src.models.delivery_partner import DeliveryPartner
from src.models.enums import AssignmentStatus, ItemStatus
from src.models.order import Order
from src.models.order_item import OrderItem
from src.models.vendor_policy import VendorPolicy
from src.modules.orders.constants import assignment_sources_for, sources_for

logger = logging.getLogger(__name__)

TWO_PLACES = Decimal("0.01")


class TransitionOutcome(str, enum.Enum):
    APPLIED = "APPLIED"
    ALREADY_APPLIED = "ALREADY_APPLIED"


def line_total(unit_price: Decimal, quantity: int) -> Decimal:
    return (Decimal(unit_price) * quantity).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def generate_order_number(now: datetime) -> str:
    """``ORD-YYYY-XXXXXXXX`` with a random hex suffix."""
    return f"ORD-{now.year}-{secrets.token_hex(4).upper()}"


class OrderStore:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_order(self, order_id: uuid.UUID) -> Order:
        order = await self.db.get(Order, order_id)
        if order is None:
            raise NotFoundException(f"Order {order_id} not found")
        return order

    async def get_item(self, item_id: uuid.UUID) -> OrderItem:
        item = await self.db.get(OrderItem, item_id, populate_existing=True)
        if item is None:
            raise NotFoundException(f"Order item {item_id} not found")
        return item

    async def list_items(
        self,
        order_id: uuid.UUID,
        statuses: Iterable[ItemStatus] | None = None,
    ) -> list[OrderItem]:
        query = select(OrderItem).where(OrderItem.order_id == order_id)
        if statuses is not None:
            query = query.where(OrderItem.item_status.in_(list(statuses)))
        result = await self.db.execute(
            query.order_by(OrderItem.created_at, OrderItem.id).execution_options(
                populate_existing=True
            )
        )
        return list(result.scalars().all())

    async def list_vendor_items(
        self,
        vendor_id: uuid.UUID,
        status: ItemStatus,
    ) -> list[tuple[OrderItem, Order]]:
        result = await self.db.execute(
            select(OrderItem, Order)
            .join(Order, Order.id == OrderItem.order_id)
            .where(OrderItem.vendor_id == vendor_id, OrderItem.item_status == status)
            .order_by(OrderItem.created_at.asc())
        )
        return [(item, order) for item, order in result.all()]

    async def list_pending_with_policies(self) -> list[tuple[OrderItem, VendorPolicy | None]]:
        """Every pending item with its vendor's policy, read fresh."""
        result = await self.db.execute(
            select(OrderItem, VendorPolicy)
            .outerjoin(VendorPolicy, VendorPolicy.vendor_id == OrderItem.vendor_id)
            .where(OrderItem.item_status == ItemStatus.PENDING)
            .order_by(OrderItem.created_at.asc())
            .execution_options(populate_existing=True)
        )
        return [(item, policy) for item, policy in result.all()]

    async def get_vendor_policy(self, vendor_id: uuid.UUID) -> VendorPolicy | None:
        result = await self.db.execute(
            select(VendorPolicy)
            .where(VendorPolicy.vendor_id == vendor_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_active_assignment(self, order_id: uuid.UUID) -> DeliveryAssignment | None:
        result = await self.db.execute(
            select(DeliveryAssignment)
            .where(
                DeliveryAssignment.order_id == order_id,
                DeliveryAssignment.is_active.is_(True),
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_latest_assignment(
        self,
        order_id: uuid.UUID,
        partner_id: uuid.UUID | None = None,
    ) -> DeliveryAssignment | None:
        query = select(DeliveryAssignment).where(DeliveryAssignment.order_id == order_id)
        if partner_id is not None:
            query = query.where(DeliveryAssignment.delivery_partner_id == partner_id)
        result = await self.db.execute(
            query.order_by(DeliveryAssignment.assigned_at.desc()).limit(1)
        )
        return result.scalar_one_or_none()

    async def get_partner(self, partner_id: uuid.UUID) -> DeliveryPartner:
        partner = await self.db.get(DeliveryPartner, partner_id)
        if partner is None:
            raise NotFoundException(f"Delivery partner {partner_id} not found")
        return partner

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def add_order(self, order: Order, items: list[OrderItem]) -> Order:
        self.db.add(order)
        await self.db.flush()
        for item in items:
            item.order_id = order.id
            self.db.add(item)
        await self.db.flush()
        return order

    async def recompute_total(self, order: Order) -> Decimal:
        """Check ``total_amount`` against its line items and repair drift."""
        items = await self.list_items(order.id)
        expected = sum((line_total(i.unit_price, i.quantity) for i in items), Decimal("0.00"))
        if Decimal(order.total_amount).quantize(TWO_PLACES) != expected:
            logger.warning(
                "Order %s total %s does not match line items %s; repairing",
                order.order_number, order.total_amount, expected,
            )
            order.total_amount = expected
            await self.db.flush()
        return expected

    async def transition_item(
        self,
        item: OrderItem,
        target: ItemStatus,
        sources: Iterable[ItemStatus] | None = None,
        **values,
    ) -> TransitionOutcome:
        allowed = set(sources) if sources is not None else sources_for(target)
        if item.item_status == target:
            return TransitionOutcome.ALREADY_APPLIED
        if item.item_status not in allowed:
            raise PreconditionFailedException(
                f"Item is {item.item_status.value}; cannot move to {target.value}",
                details=[{"itemId": str(item.id), "status": item.item_status.value}],
            )

        result = await self.db.execute(
            update(OrderItem)
            .where(
                OrderItem.id == item.id,
                OrderItem.item_status.in_(allowed),
                OrderItem.version == item.version,
            )
            .values(item_status=target, version=OrderItem.version + 1, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            await self.db.refresh(item)
            return TransitionOutcome.APPLIED

        current = await self.get_item(item.id)
        return self._classify_miss(current.item_status, target, allowed, "Item", current.id)

    async def transition_assignment(
        self,
        assignment: DeliveryAssignment,
        target: AssignmentStatus,
        sources: Iterable[AssignmentStatus] | None = None,
        **values,
    ) -> TransitionOutcome:
        allowed = set(sources) if sources is not None else assignment_sources_for(target)
        if assignment.status == target:
            return TransitionOutcome.ALREADY_APPLIED
        if assignment.status not in allowed:
            raise PreconditionFailedException(
                f"Delivery assignment is {assignment.status.value}; "
                f"cannot move to {target.value}",
                details=[{"assignmentId": str(assignment.id), "status": assignment.status.value}],
            )
        return await self._update_assignment(assignment, allowed, target, status=target, **values)

    async def stamp_assignment(
        self,
        assignment: DeliveryAssignment,
        expected_status: AssignmentStatus,
        **values,
    ) -> TransitionOutcome:
        """CAS-write attributes of an assignment whose status must not change."""
        if assignment.status != expected_status:
            raise PreconditionFailedException(
                f"Delivery assignment is {assignment.status.value}; "
                f"expected {expected_status.value}",
                details=[{"assignmentId": str(assignment.id), "status": assignment.status.value}],
            )
        return await self._update_assignment(
            assignment, {expected_status}, expected_status, **values
        )

    async def _update_assignment(
        self,
        assignment: DeliveryAssignment,
        allowed: set[AssignmentStatus],
        target: AssignmentStatus,
        **values,
    ) -> TransitionOutcome:
        result = await self.db.execute(
            update(DeliveryAssignment)
            .where(
                DeliveryAssignment.id == assignment.id,
                DeliveryAssignment.status.in_(allowed),
                DeliveryAssignment.version == assignment.version,
            )
            .values(version=DeliveryAssignment.version + 1, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            await self.db.refresh(assignment)
            return TransitionOutcome.APPLIED

        await self.db.refresh(assignment)
        if target in allowed:
            # Attribute stamp lost to a concurrent writer
            raise ConcurrencyConflictException(
                "Delivery assignment was modified concurrently; retry",
                details=[{"assignmentId": str(assignment.id), "version": assignment.version}],
            )
        return self._classify_miss(assignment.status, target, allowed, "Delivery assignment", assignment.id)

    async def stamp_items(
        self,
        order_id: uuid.UUID,
        status: ItemStatus,
        **values,
    ) -> int:
        """Set non-status attributes on every item of the order in ``status``."""
        result = await self.db.execute(
            update(OrderItem)
            .where(OrderItem.order_id == order_id, OrderItem.item_status == status)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def record_partner_outcome(self, partner_id: uuid.UUID, successful: bool) -> None:
        values = {"total_deliveries": DeliveryPartner.total_deliveries + 1}
        if successful:
            values["successful_deliveries"] = DeliveryPartner.successful_deliveries + 1
        await self.db.execute(
            update(DeliveryPartner)
            .where(DeliveryPartner.id == partner_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )

    @staticmethod
    def _classify_miss(current, target, allowed, label: str, row_id) -> TransitionOutcome:
        if current == target:
            logger.info("%s %s already %s; no-op", label, row_id, target.value)
            return TransitionOutcome.ALREADY_APPLIED
        if current in allowed:
            raise ConcurrencyConflictException(
                f"{label} was modified concurrently; retry",
                details=[{"id": str(row_id), "status": current.value}],
            )
        raise PreconditionFailedException(
            f"{label} is {current.value}; cannot move to {target.value}",
            details=[{"id": str(row_id), "status": current.value}],
        )
