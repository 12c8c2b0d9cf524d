"""Order item lifecycle: placement, vendor confirmation, delivery and cancellation.

Item states: pending -> confirmed -> delivered, with cancelled reachable from
pending and confirmed. Delivery progress lives on the order's active
``DeliveryAssignment`` (assigned -> accepted -> picked_up -> delivered).
Every status write goes through ``OrderStore``'s compare-and-swap, so a
repeated or concurrent action resolves to ``ALREADY_APPLIED`` instead of a
second transition.
"""

from __future__ import annotations

import hmac
import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from src.exceptions import (
    AssignmentUnavailableException,
    ForbiddenException,
    InvalidOtpException,
    MissingGeoDataException,
    PreconditionFailedException,
)
from src.models.delivery_assignment import DeliveryAssignment
from src.models.enums import (
    ActorRole,
    AssignmentStatus,
    ItemCancellationReason,
    ItemStatus,
    PartnerCancellationReason,
    PaymentStatus,
)
from src.models.order import Order
from src.models.order_item import OrderItem
from src.modules.assignment.matcher import (
    TRIGGER_CONFIRM,
    TRIGGER_MANUAL,
    TRIGGER_PARTNER_CANCEL,
    AssignmentMatcher,
    AssignmentOutcome,
)
from src.modules.events.emitter import LifecycleEventEmitter
from src.modules.identity.auth import AuthenticatedUser
from src.modules.orders.constants import (
    EVENT_ASSIGNMENT_CANCELLED,
    EVENT_CANCELLED,
    EVENT_DELIVERED,
    EVENT_DELIVERY_ACCEPTED,
    EVENT_DELIVERY_ASSIGNED,
    EVENT_ORDER_CONFIRMED,
    EVENT_ORDER_PLACED,
    EVENT_ORDER_REJECTED,
    EVENT_OUT_FOR_DELIVERY,
    EVENT_PICKED_UP,
    WARNING_NO_PARTNER,
    WARNING_PINCODE_MISSING,
)
from src.modules.orders.read_models import StatusView, build_status_view
from src.modules.orders.schemas import OrderCreate
from src.modules.orders.store import (
    OrderStore,
    TransitionOutcome,
    generate_order_number,
    line_total,
)
from src.modules.scheduler.clock import Clock, system_clock

logger = logging.getLogger(__name__)

# Whoever performs a transition: a person from a JWT or the scheduler
Actor = AuthenticatedUser

LIVE_ITEM_STATUSES = (ItemStatus.PENDING, ItemStatus.CONFIRMED)
OPEN_ASSIGNMENT_STATUSES = (
    AssignmentStatus.ASSIGNED,
    AssignmentStatus.ACCEPTED,
    AssignmentStatus.PICKED_UP,
)


@dataclass
class TransitionResult:
    outcome: TransitionOutcome
    item: OrderItem
    assignment_outcome: AssignmentOutcome = AssignmentOutcome.NOT_ATTEMPTED
    assignment: DeliveryAssignment | None = None
    warning: str | None = None


def otp_matches(expected: str, supplied: str) -> bool:
    return hmac.compare_digest(expected.encode(), supplied.strip().encode())


class LifecycleService:
    def __init__(
        self,
        db: AsyncSession,
        clock: Clock | None = None,
        matcher: AssignmentMatcher | None = None,
        emitter: LifecycleEventEmitter | None = None,
    ) -> None:
        self.db = db
        self.clock = clock or system_clock
        self.store = OrderStore(db)
        self.emitter = emitter or LifecycleEventEmitter(db)
        self.matcher = matcher or AssignmentMatcher(db, emitter=self.emitter, clock=self.clock)

    # ------------------------------------------------------------------
    # Placement
    # ------------------------------------------------------------------

    async def place_order(self, customer: Actor, data: OrderCreate) -> tuple[Order, list[OrderItem]]:
        """Create an order with one pending item per line and emit ``order_placed`` per item."""
        customer.require(ActorRole.CUSTOMER)
        now = self.clock.now()

        items = [
            OrderItem(
                vendor_id=line.vendor_id,
                vendor_name=line.vendor_name,
                product_name=line.product_name,
                unit_price=line.unit_price,
                quantity=line.quantity,
                line_total=line_total(line.unit_price, line.quantity),
                item_status=ItemStatus.PENDING,
                version=1,
                created_at=now,
            )
            for line in data.lines
        ]
        order = Order(
            order_number=generate_order_number(now),
            customer_id=customer.id,
            customer_name=customer.name,
            total_amount=sum((i.line_total for i in items), Decimal("0.00")),
            payment_method=data.payment_method,
            payment_status=PaymentStatus.PENDING,
            delivery_address_line=data.delivery.address_line,
            delivery_pincode=data.delivery.pincode,
            delivery_sector_id=data.delivery.sector_id,
            delivery_slot_id=data.delivery.slot_id,
            created_at=now,
        )
        await self.store.add_order(order, items)

        for item in items:
            await self.emitter.emit(EVENT_ORDER_PLACED, item, order, customer)

        logger.info(
            "Order %s placed by %s with %d item(s), total %s",
            order.order_number, customer.id, len(items), order.total_amount,
        )
        return order, items

    # ------------------------------------------------------------------
    # Vendor decisions
    # ------------------------------------------------------------------

    async def confirm(self, item_id: uuid.UUID, actor: Actor) -> TransitionResult:
        """Confirm a pending item, then try to bind the order to a delivery partner.

        The partner search is best effort: when it fails the item stays
        confirmed and the result carries a pending outcome and a warning.
        """
        item = await self.store.get_item(item_id)
        self._authorize_vendor(item, actor)

        outcome = await self.store.transition_item(
            item,
            ItemStatus.CONFIRMED,
            sources={ItemStatus.PENDING},
            confirmed_by=str(actor.id),
            confirmed_at=self.clock.now(),
        )
        if outcome is TransitionOutcome.ALREADY_APPLIED:
            logger.info("Item %s already confirmed; no-op for %s", item.id, actor.role.value)
            return TransitionResult(outcome, item)

        order = await self.store.get_order(item.order_id)
        await self.store.recompute_total(order)
        await self.emitter.emit(EVENT_ORDER_CONFIRMED, item, order, actor)
        logger.info("Item %s of order %s confirmed by %s", item.id, order.order_number, actor.role.value)

        result = await self._request_assignment(order, item, TRIGGER_CONFIRM)
        if result.assignment_outcome is AssignmentOutcome.EXISTING:
            # Order already has a partner from an earlier item
            partner = await self.store.get_partner(result.assignment.delivery_partner_id)
            await self.emitter.emit(
                EVENT_DELIVERY_ASSIGNED,
                item,
                order,
                key_suffix=str(result.assignment.id),
                assignment_id=result.assignment.id,
                partner_id=partner.id,
                partner_name=partner.name,
                partner_phone=partner.phone,
                pickup_otp=result.assignment.pickup_otp,
                delivery_otp=result.assignment.delivery_otp,
            )
        return result

    async def reject(self, item_id: uuid.UUID, actor: Actor, reason: str) -> TransitionResult:
        item = await self.store.get_item(item_id)
        self._authorize_vendor(item, actor)

        outcome = await self.store.transition_item(
            item,
            ItemStatus.CANCELLED,
            sources={ItemStatus.PENDING},
            cancelled_by=str(actor.id),
            cancelled_at=self.clock.now(),
            cancellation_reason=reason,
        )
        if outcome is TransitionOutcome.ALREADY_APPLIED:
            return TransitionResult(outcome, item)

        order = await self.store.get_order(item.order_id)
        await self.emitter.emit(EVENT_ORDER_REJECTED, item, order, actor, reason=reason)
        await self._release_idle_assignment(order, item, actor, "Order rejected by vendor")
        logger.info("Item %s rejected by %s: %s", item.id, actor.id, reason)
        return TransitionResult(outcome, item)

    async def assign_manually(self, item_id: uuid.UUID, actor: Actor) -> TransitionResult:
        """Run the matcher for a confirmed item on request.

        Unlike confirmation, failures propagate to the caller.
        """
        item = await self.store.get_item(item_id)
        self._authorize_vendor(item, actor)
        if item.item_status != ItemStatus.CONFIRMED:
            raise PreconditionFailedException(
                f"Item is {item.item_status.value}; only confirmed items can be assigned",
                details=[{"itemId": str(item.id), "status": item.item_status.value}],
            )

        result = await self.matcher.assign(item.order_id, trigger=TRIGGER_MANUAL)
        outcome = (
            TransitionOutcome.APPLIED
            if result.outcome is AssignmentOutcome.ASSIGNED
            else TransitionOutcome.ALREADY_APPLIED
        )
        return TransitionResult(outcome, item, result.outcome, result.assignment)

    # ------------------------------------------------------------------
    # Delivery partner actions
    # ------------------------------------------------------------------

    async def accept_assignment(self, item_id: uuid.UUID, actor: Actor) -> TransitionResult:
        item, order, assignment = await self._partner_context(item_id, actor)

        outcome = await self.store.transition_assignment(
            assignment,
            AssignmentStatus.ACCEPTED,
            accepted_at=self.clock.now(),
        )
        if outcome is TransitionOutcome.APPLIED:
            await self._emit_for_confirmed(EVENT_DELIVERY_ACCEPTED, order, assignment, actor)
            logger.info("Assignment %s accepted by partner %s", assignment.id, assignment.delivery_partner_id)
        return self._partner_result(outcome, item, assignment)

    async def mark_picked_up(self, item_id: uuid.UUID, actor: Actor, otp: str) -> TransitionResult:
        """Verify the pickup code and move the order's assignment to picked_up.

        A wrong code raises ``InvalidOtpException`` and changes nothing; the
        same correct code presented again is a no-op.
        """
        item, order, assignment = await self._partner_context(item_id, actor)

        if assignment.status not in (AssignmentStatus.ACCEPTED, AssignmentStatus.PICKED_UP):
            raise PreconditionFailedException(
                f"Delivery assignment is {assignment.status.value}; pickup requires accepted",
                details=[{"assignmentId": str(assignment.id), "status": assignment.status.value}],
            )
        self._verify_otp(assignment.pickup_otp, otp, "pickup", assignment)

        now = self.clock.now()
        outcome = await self.store.transition_assignment(
            assignment,
            AssignmentStatus.PICKED_UP,
            sources={AssignmentStatus.ACCEPTED},
            picked_up_at=now,
        )
        if outcome is TransitionOutcome.APPLIED:
            await self.store.stamp_items(order.id, ItemStatus.CONFIRMED, picked_up_at=now)
            await self._emit_for_confirmed(EVENT_PICKED_UP, order, assignment, actor)
            logger.info("Order %s picked up by partner %s", order.order_number, assignment.delivery_partner_id)
        return self._partner_result(outcome, await self.store.get_item(item.id), assignment)

    async def mark_out_for_delivery(self, item_id: uuid.UUID, actor: Actor) -> TransitionResult:
        item, order, assignment = await self._partner_context(item_id, actor)

        if assignment.out_for_delivery_at is not None:
            return self._partner_result(TransitionOutcome.ALREADY_APPLIED, item, assignment)

        outcome = await self.store.stamp_assignment(
            assignment,
            AssignmentStatus.PICKED_UP,
            out_for_delivery_at=self.clock.now(),
        )
        await self._emit_for_confirmed(EVENT_OUT_FOR_DELIVERY, order, assignment, actor)
        return self._partner_result(outcome, item, assignment)

    async def mark_delivered(self, item_id: uuid.UUID, actor: Actor, otp: str) -> TransitionResult:
        """Verify the delivery code and deliver every confirmed item of the order."""
        item, order, assignment = await self._partner_context(item_id, actor)

        if assignment.status not in (AssignmentStatus.PICKED_UP, AssignmentStatus.DELIVERED):
            raise PreconditionFailedException(
                f"Delivery assignment is {assignment.status.value}; delivery requires picked_up",
                details=[{"assignmentId": str(assignment.id), "status": assignment.status.value}],
            )
        self._verify_otp(assignment.delivery_otp, otp, "delivery", assignment)

        now = self.clock.now()
        outcome = await self.store.transition_assignment(
            assignment,
            AssignmentStatus.DELIVERED,
            sources={AssignmentStatus.PICKED_UP},
            delivered_at=now,
        )
        if outcome is TransitionOutcome.APPLIED:
            for confirmed in await self.store.list_items(order.id, [ItemStatus.CONFIRMED]):
                applied = await self.store.transition_item(
                    confirmed,
                    ItemStatus.DELIVERED,
                    sources={ItemStatus.CONFIRMED},
                    delivered_at=now,
                )
                if applied is TransitionOutcome.APPLIED:
                    await self.emitter.emit(
                        EVENT_DELIVERED, confirmed, order, actor, assignment_id=assignment.id
                    )
            await self.store.record_partner_outcome(assignment.delivery_partner_id, successful=True)
            logger.info("Order %s delivered by partner %s", order.order_number, assignment.delivery_partner_id)
        return self._partner_result(outcome, await self.store.get_item(item.id), assignment)

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    async def cancel_by_customer(
        self,
        item_id: uuid.UUID,
        actor: Actor,
        reason: ItemCancellationReason,
        details: str | None = None,
    ) -> TransitionResult:
        item = await self.store.get_item(item_id)
        order = await self.store.get_order(item.order_id)
        actor.require(ActorRole.CUSTOMER)
        if not actor.is_admin and order.customer_id != actor.id:
            raise ForbiddenException("Only the customer who placed the order can cancel it")

        reason_text = reason.value if not details else f"{reason.value}: {details}"
        outcome = await self.store.transition_item(
            item,
            ItemStatus.CANCELLED,
            sources=LIVE_ITEM_STATUSES,
            cancelled_by=str(actor.id),
            cancelled_at=self.clock.now(),
            cancellation_reason=reason_text,
        )
        if outcome is TransitionOutcome.ALREADY_APPLIED:
            return TransitionResult(outcome, item)

        await self.emitter.emit(EVENT_CANCELLED, item, order, actor, reason=reason_text)
        await self._release_idle_assignment(order, item, actor, "Order cancelled by customer")
        logger.info("Item %s cancelled by customer %s (%s)", item.id, actor.id, reason.value)
        return TransitionResult(outcome, item)

    async def cancel_by_partner(
        self,
        item_id: uuid.UUID,
        actor: Actor,
        reason: PartnerCancellationReason,
        details: str | None = None,
    ) -> TransitionResult:
        """Drop the partner's assignment and look for another partner.

        The order's items stay confirmed; the cancelling partner is excluded
        from the new search.
        """
        item = await self.store.get_item(item_id)
        order = await self.store.get_order(item.order_id)
        actor.require(ActorRole.DELIVERY_PARTNER)
        if item.item_status not in LIVE_ITEM_STATUSES:
            raise PreconditionFailedException(
                f"Item is {item.item_status.value}; its delivery can no longer be cancelled",
                details=[{"itemId": str(item.id), "status": item.item_status.value}],
            )

        assignment = await self.store.get_active_assignment(order.id)
        if assignment is None or not self._owns(actor, assignment):
            previous = (
                await self.store.get_latest_assignment(order.id, actor.id)
                if actor.role is ActorRole.DELIVERY_PARTNER
                else None
            )
            if previous is not None and previous.status == AssignmentStatus.CANCELLED:
                return self._partner_result(TransitionOutcome.ALREADY_APPLIED, item, previous)
            if assignment is None:
                raise PreconditionFailedException(
                    "Order has no active delivery assignment",
                    details=[{"orderId": str(order.id)}],
                )
            raise ForbiddenException("Delivery assignment belongs to another partner")

        now = self.clock.now()
        await self.store.transition_assignment(
            assignment,
            AssignmentStatus.CANCELLED,
            sources=OPEN_ASSIGNMENT_STATUSES,
            is_active=False,
            cancelled_at=now,
            cancellation_reason=reason.value,
            cancellation_details=details,
        )
        await self.store.record_partner_outcome(assignment.delivery_partner_id, successful=False)
        await self._emit_for_confirmed(
            EVENT_ASSIGNMENT_CANCELLED, order, assignment, actor, reason=reason.value
        )
        logger.info(
            "Partner %s cancelled assignment %s for order %s: %s",
            assignment.delivery_partner_id, assignment.id, order.order_number, reason.value,
        )

        result = await self._request_assignment(
            order,
            item,
            TRIGGER_PARTNER_CANCEL,
            exclude={assignment.delivery_partner_id},
        )
        result.outcome = TransitionOutcome.APPLIED
        return result

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def current_status(self, item_id: uuid.UUID) -> StatusView:
        item = await self.store.get_item(item_id)
        assignment = await self.store.get_active_assignment(item.order_id)
        policy = await self.store.get_vendor_policy(item.vendor_id)
        return build_status_view(item, assignment, policy, self.clock.now())

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _authorize_vendor(item: OrderItem, actor: Actor) -> None:
        if actor.is_admin:
            return
        if actor.role is not ActorRole.VENDOR or item.vendor_id != actor.id:
            raise ForbiddenException("Only the item's vendor can act on it")

    @staticmethod
    def _owns(actor: Actor, assignment: DeliveryAssignment) -> bool:
        return actor.is_admin or assignment.delivery_partner_id == actor.id

    async def _partner_context(
        self, item_id: uuid.UUID, actor: Actor
    ) -> tuple[OrderItem, Order, DeliveryAssignment]:
        actor.require(ActorRole.DELIVERY_PARTNER)
        item = await self.store.get_item(item_id)
        order = await self.store.get_order(item.order_id)
        assignment = await self.store.get_active_assignment(order.id)
        if assignment is None:
            raise PreconditionFailedException(
                "Order has no active delivery assignment",
                details=[{"orderId": str(order.id)}],
            )
        if not self._owns(actor, assignment):
            raise ForbiddenException("Delivery assignment belongs to another partner")
        return item, order, assignment

    @staticmethod
    def _verify_otp(expected: str, supplied: str, kind: str, assignment: DeliveryAssignment) -> None:
        if not otp_matches(expected, supplied):
            logger.warning("Invalid %s code for assignment %s", kind, assignment.id)
            raise InvalidOtpException(
                f"Invalid {kind} code",
                details=[{"assignmentId": str(assignment.id)}],
            )

    @staticmethod
    def _partner_result(
        outcome: TransitionOutcome, item: OrderItem, assignment: DeliveryAssignment
    ) -> TransitionResult:
        return TransitionResult(
            outcome,
            item,
            assignment_outcome=AssignmentOutcome.EXISTING,
            assignment=assignment,
        )

    async def _emit_for_confirmed(
        self,
        event_type: str,
        order: Order,
        assignment: DeliveryAssignment,
        actor: Actor,
        **extra,
    ) -> None:
        for confirmed in await self.store.list_items(order.id, [ItemStatus.CONFIRMED]):
            await self.emitter.emit(
                event_type,
                confirmed,
                order,
                actor,
                key_suffix=str(assignment.id),
                assignment_id=assignment.id,
                partner_id=assignment.delivery_partner_id,
                **extra,
            )

    async def _request_assignment(
        self,
        order: Order,
        item: OrderItem,
        trigger: str,
        exclude: set[uuid.UUID] | None = None,
    ) -> TransitionResult:
        result = TransitionResult(
            TransitionOutcome.APPLIED,
            item,
            assignment_outcome=AssignmentOutcome.PENDING_NO_PARTNER,
        )
        try:
            async with self.db.begin_nested():
                try:
                    matched = await self.matcher.assign(
                        order.id, trigger=trigger, exclude_partner_ids=exclude or ()
                    )
                except MissingGeoDataException:
                    result.assignment_outcome = AssignmentOutcome.PENDING_MISSING_GEO
                    result.warning = WARNING_PINCODE_MISSING
                except AssignmentUnavailableException:
                    result.warning = WARNING_NO_PARTNER
                else:
                    result.assignment_outcome = matched.outcome
                    result.assignment = matched.assignment
        except Exception:
            logger.exception("Assignment attempt failed for order %s", order.order_number)
            result.assignment_outcome = AssignmentOutcome.PENDING_NO_PARTNER
            result.warning = WARNING_NO_PARTNER
        return result

    async def _release_idle_assignment(
        self, order: Order, item: OrderItem, actor: Actor, reason: str
    ) -> None:
        """Cancel the order's assignment once no item is left to deliver."""
        if await self.store.list_items(order.id, LIVE_ITEM_STATUSES):
            return
        await self.matcher.close_request(order.id, reason)
        assignment = await self.store.get_active_assignment(order.id)
        if assignment is None or assignment.status not in OPEN_ASSIGNMENT_STATUSES:
            return
        await self.store.transition_assignment(
            assignment,
            AssignmentStatus.CANCELLED,
            sources=OPEN_ASSIGNMENT_STATUSES,
            is_active=False,
            cancelled_at=self.clock.now(),
            cancellation_reason=reason,
        )
        await self.emitter.emit(
            EVENT_ASSIGNMENT_CANCELLED,
            item,
            order,
            actor,
            key_suffix=str(assignment.id),
            assignment_id=assignment.id,
            partner_id=assignment.delivery_partner_id,
            reason=reason,
        )
        logger.info("Assignment %s released: %s", assignment.id, reason)
