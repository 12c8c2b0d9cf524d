"""Tests for LifecycleService: vendor decisions, delivery progress and cancellation."""

import uuid

import pytest
import pytest_asyncio
from sqlalchemy import select, update

from src.config import settings
from src.exceptions import (
    ConcurrencyConflictException,
    ForbiddenException,
    InvalidOtpException,
    PreconditionFailedException,
)
from src.models.assignment_request import AssignmentRequest
from src.models.delivery_assignment import DeliveryAssignment
from src.models.delivery_partner import DeliveryPartner
from src.models.enums import (
    AssignmentRequestStatus,
    AssignmentStatus,
    DisplayStatus,
    ItemCancellationReason,
    ItemStatus,
    PartnerCancellationReason,
)
from src.models.event_outbox import EventOutbox
from src.models.order_item import OrderItem
from src.modules.assignment.matcher import AssignmentOutcome
from src.modules.orders.constants import WARNING_NO_PARTNER, WARNING_PINCODE_MISSING
from src.modules.orders.store import OrderStore, TransitionOutcome
from tests.factories import (
    admin,
    customer,
    make_partner,
    make_sector,
    order_request,
    rider,
    vendor,
)


async def _event_keys(db) -> list[str]:
    result = await db.execute(select(EventOutbox.event_key))
    return list(result.scalars().all())


async def _event_types(db) -> list[str]:
    result = await db.execute(select(EventOutbox.event_type))
    return list(result.scalars().all())


def _other_code(code: str) -> str:
    return "".join("1" if c == "0" else "0" for c in code)


@pytest_asyncio.fixture
async def world(db):
    """One sector with one available partner, a customer and a vendor."""
    sector = await make_sector(db)
    partner = await make_partner(db, name="Ravi")
    await db.commit()
    return {
        "sector": sector,
        "partner": partner,
        "customer": customer(),
        "vendor": vendor(),
    }


async def _place(lifecycle, world, **kwargs):
    order, items = await lifecycle.place_order(
        world["customer"], order_request([world["vendor"].id], **kwargs)
    )
    return order, items[0]


# ---------------------------------------------------------------------------
# Placement
# ---------------------------------------------------------------------------


class TestPlaceOrder:
    @pytest.mark.asyncio
    async def test_items_start_pending_and_total_matches_lines(self, db, lifecycle, world):
        second_vendor = vendor()
        order, items = await lifecycle.place_order(
            world["customer"],
            order_request([world["vendor"].id, second_vendor.id], unit_price="120.50", quantity=2),
        )

        assert [i.item_status for i in items] == [ItemStatus.PENDING, ItemStatus.PENDING]
        assert all(i.version == 1 for i in items)
        assert str(order.total_amount) == "482.00"
        assert order.order_number.startswith("ORD-2026-")

    @pytest.mark.asyncio
    async def test_emits_order_placed_per_item(self, db, lifecycle, world):
        order, items = await lifecycle.place_order(
            world["customer"], order_request([world["vendor"].id, uuid.uuid4()])
        )

        keys = await _event_keys(db)
        assert sorted(keys) == sorted(f"{i.id}:order_placed" for i in items)

    @pytest.mark.asyncio
    async def test_vendor_cannot_place_orders(self, lifecycle, world):
        with pytest.raises(ForbiddenException):
            await lifecycle.place_order(world["vendor"], order_request([world["vendor"].id]))


# ---------------------------------------------------------------------------
# Confirmation
# ---------------------------------------------------------------------------


class TestConfirm:
    @pytest.mark.asyncio
    async def test_confirm_assigns_partner(self, db, lifecycle, world):
        order, item = await _place(lifecycle, world)

        result = await lifecycle.confirm(item.id, world["vendor"])

        assert result.outcome is TransitionOutcome.APPLIED
        assert result.item.item_status == ItemStatus.CONFIRMED
        assert result.item.version == 2
        assert result.item.confirmed_by == str(world["vendor"].id)
        assert result.assignment_outcome is AssignmentOutcome.ASSIGNED
        assert result.assignment.delivery_partner_id == world["partner"].id
        assert result.assignment.status == AssignmentStatus.ASSIGNED
        assert len(result.assignment.pickup_otp) == settings.otp_length
        assert result.warning is None

        types = await _event_types(db)
        assert "order_confirmed" in types
        assert "delivery_assigned" in types

    @pytest.mark.asyncio
    async def test_repeat_confirm_is_noop(self, db, lifecycle, world):
        order, item = await _place(lifecycle, world)
        await lifecycle.confirm(item.id, world["vendor"])

        again = await lifecycle.confirm(item.id, world["vendor"])

        assert again.outcome is TransitionOutcome.ALREADY_APPLIED
        assert again.item.version == 2
        assignments = (await db.execute(select(DeliveryAssignment))).scalars().all()
        assert len(assignments) == 1
        types = await _event_types(db)
        assert types.count("order_confirmed") == 1

    @pytest.mark.asyncio
    async def test_other_vendor_is_forbidden(self, lifecycle, world):
        order, item = await _place(lifecycle, world)

        with pytest.raises(ForbiddenException):
            await lifecycle.confirm(item.id, vendor())

    @pytest.mark.asyncio
    async def test_admin_may_confirm(self, lifecycle, world):
        order, item = await _place(lifecycle, world)

        result = await lifecycle.confirm(item.id, admin())

        assert result.outcome is TransitionOutcome.APPLIED

    @pytest.mark.asyncio
    async def test_cancelled_item_cannot_be_confirmed(self, lifecycle, world):
        order, item = await _place(lifecycle, world)
        await lifecycle.reject(item.id, world["vendor"], "Out of stock")

        with pytest.raises(PreconditionFailedException):
            await lifecycle.confirm(item.id, world["vendor"])

    @pytest.mark.asyncio
    async def test_missing_pincode_keeps_confirmation(self, db, lifecycle, world):
        order, item = await _place(lifecycle, world, pincode=None)

        result = await lifecycle.confirm(item.id, world["vendor"])

        assert result.outcome is TransitionOutcome.APPLIED
        assert result.item.item_status == ItemStatus.CONFIRMED
        assert result.assignment_outcome is AssignmentOutcome.PENDING_MISSING_GEO
        assert result.warning == WARNING_PINCODE_MISSING
        request = (await db.execute(select(AssignmentRequest))).scalar_one()
        assert request.status == AssignmentRequestStatus.MISSING_GEO

    @pytest.mark.asyncio
    async def test_no_partner_queues_and_schedules_retry(self, db, lifecycle, world, timer):
        world["partner"].is_available = False
        await db.commit()
        order, item = await _place(lifecycle, world)

        result = await lifecycle.confirm(item.id, world["vendor"])

        assert result.item.item_status == ItemStatus.CONFIRMED
        assert result.assignment_outcome is AssignmentOutcome.PENDING_NO_PARTNER
        assert result.warning == WARNING_NO_PARTNER
        request = (await db.execute(select(AssignmentRequest))).scalar_one()
        assert request.status == AssignmentRequestStatus.QUEUED
        assert request.attempts == 1
        timer.schedule.assert_called_once()

    @pytest.mark.asyncio
    async def test_second_item_joins_existing_assignment(self, db, lifecycle, world):
        second_vendor = vendor()
        order, items = await lifecycle.place_order(
            world["customer"], order_request([world["vendor"].id, second_vendor.id])
        )
        first = await lifecycle.confirm(items[0].id, world["vendor"])

        second = await lifecycle.confirm(items[1].id, second_vendor)

        assert second.assignment_outcome is AssignmentOutcome.EXISTING
        assert second.assignment.id == first.assignment.id
        keys = await _event_keys(db)
        assert f"{items[1].id}:delivery_assigned:{first.assignment.id}" in keys


class TestTransitionCompareAndSwap:
    @pytest.mark.asyncio
    async def test_lost_race_to_same_target_is_already_applied(self, db, lifecycle, world):
        order, item = await _place(lifecycle, world)
        await db.execute(
            update(OrderItem)
            .where(OrderItem.id == item.id)
            .values(item_status=ItemStatus.CONFIRMED, version=2)
            .execution_options(synchronize_session=False)
        )

        outcome = await OrderStore(db).transition_item(
            item, ItemStatus.CONFIRMED, sources={ItemStatus.PENDING}
        )

        assert outcome is TransitionOutcome.ALREADY_APPLIED

    @pytest.mark.asyncio
    async def test_stale_version_is_conflict(self, db, lifecycle, world):
        order, item = await _place(lifecycle, world)
        await db.execute(
            update(OrderItem)
            .where(OrderItem.id == item.id)
            .values(version=5)
            .execution_options(synchronize_session=False)
        )

        with pytest.raises(ConcurrencyConflictException):
            await OrderStore(db).transition_item(
                item, ItemStatus.CONFIRMED, sources={ItemStatus.PENDING}
            )

    @pytest.mark.asyncio
    async def test_lost_race_to_other_terminal_is_precondition_failure(self, db, lifecycle, world):
        order, item = await _place(lifecycle, world)
        await db.execute(
            update(OrderItem)
            .where(OrderItem.id == item.id)
            .values(item_status=ItemStatus.CANCELLED, version=2)
            .execution_options(synchronize_session=False)
        )

        with pytest.raises(PreconditionFailedException):
            await OrderStore(db).transition_item(
                item, ItemStatus.CONFIRMED, sources={ItemStatus.PENDING}
            )


# ---------------------------------------------------------------------------
# Rejection
# ---------------------------------------------------------------------------


class TestReject:
    @pytest.mark.asyncio
    async def test_reject_cancels_with_reason(self, db, lifecycle, world):
        order, item = await _place(lifecycle, world)

        result = await lifecycle.reject(item.id, world["vendor"], "Out of stock")

        assert result.item.item_status == ItemStatus.CANCELLED
        assert result.item.cancellation_reason == "Out of stock"
        assert result.item.cancelled_by == str(world["vendor"].id)
        assert "order_rejected" in await _event_types(db)

    @pytest.mark.asyncio
    async def test_confirmed_item_cannot_be_rejected(self, lifecycle, world):
        order, item = await _place(lifecycle, world)
        await lifecycle.confirm(item.id, world["vendor"])

        with pytest.raises(PreconditionFailedException):
            await lifecycle.reject(item.id, world["vendor"], "Changed my mind")

    @pytest.mark.asyncio
    async def test_repeat_reject_is_noop(self, lifecycle, world):
        order, item = await _place(lifecycle, world)
        await lifecycle.reject(item.id, world["vendor"], "Out of stock")

        again = await lifecycle.reject(item.id, world["vendor"], "Out of stock")

        assert again.outcome is TransitionOutcome.ALREADY_APPLIED


# ---------------------------------------------------------------------------
# Delivery progress
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def assigned(lifecycle, world):
    """A confirmed item whose order is assigned to the world's partner."""
    order, item = await _place(lifecycle, world)
    result = await lifecycle.confirm(item.id, world["vendor"])
    return item, result.assignment


class TestDeliveryProgress:
    @pytest.mark.asyncio
    async def test_full_delivery(self, db, lifecycle, world, assigned):
        item, assignment = assigned
        partner = rider(world["partner"])

        accepted = await lifecycle.accept_assignment(item.id, partner)
        assert accepted.assignment.status == AssignmentStatus.ACCEPTED

        picked = await lifecycle.mark_picked_up(item.id, partner, assignment.pickup_otp)
        assert picked.assignment.status == AssignmentStatus.PICKED_UP
        assert picked.item.picked_up_at is not None

        out = await lifecycle.mark_out_for_delivery(item.id, partner)
        assert out.assignment.out_for_delivery_at is not None

        delivered = await lifecycle.mark_delivered(item.id, partner, assignment.delivery_otp)
        assert delivered.item.item_status == ItemStatus.DELIVERED
        assert delivered.assignment.status == AssignmentStatus.DELIVERED

        stored = await db.get(DeliveryPartner, world["partner"].id, populate_existing=True)
        assert stored.total_deliveries == 1
        assert stored.successful_deliveries == 1

        types = await _event_types(db)
        for expected in ("delivery_accepted", "picked_up", "out_for_delivery", "delivered"):
            assert expected in types

    @pytest.mark.asyncio
    async def test_wrong_pickup_code_changes_nothing(self, db, lifecycle, world, assigned):
        item, assignment = assigned
        partner = rider(world["partner"])
        await lifecycle.accept_assignment(item.id, partner)
        wrong = _other_code(assignment.pickup_otp)

        with pytest.raises(InvalidOtpException):
            await lifecycle.mark_picked_up(item.id, partner, wrong)

        stored = await OrderStore(db).get_active_assignment(item.order_id)
        assert stored.status == AssignmentStatus.ACCEPTED
        assert stored.picked_up_at is None

    @pytest.mark.asyncio
    async def test_repeat_pickup_is_noop(self, lifecycle, world, assigned):
        item, assignment = assigned
        partner = rider(world["partner"])
        await lifecycle.accept_assignment(item.id, partner)
        await lifecycle.mark_picked_up(item.id, partner, assignment.pickup_otp)

        again = await lifecycle.mark_picked_up(item.id, partner, assignment.pickup_otp)

        assert again.outcome is TransitionOutcome.ALREADY_APPLIED

    @pytest.mark.asyncio
    async def test_pickup_requires_acceptance(self, lifecycle, world, assigned):
        item, assignment = assigned

        with pytest.raises(PreconditionFailedException):
            await lifecycle.mark_picked_up(item.id, rider(world["partner"]), assignment.pickup_otp)

    @pytest.mark.asyncio
    async def test_wrong_delivery_code_keeps_item_confirmed(self, db, lifecycle, world, assigned):
        item, assignment = assigned
        partner = rider(world["partner"])
        await lifecycle.accept_assignment(item.id, partner)
        await lifecycle.mark_picked_up(item.id, partner, assignment.pickup_otp)
        wrong = _other_code(assignment.delivery_otp)

        with pytest.raises(InvalidOtpException):
            await lifecycle.mark_delivered(item.id, partner, wrong)

        stored = await OrderStore(db).get_item(item.id)
        assert stored.item_status == ItemStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_other_partner_is_forbidden(self, db, lifecycle, world, assigned):
        item, assignment = assigned
        stranger = await make_partner(db, name="Kiran")

        with pytest.raises(ForbiddenException):
            await lifecycle.accept_assignment(item.id, rider(stranger))

    @pytest.mark.asyncio
    async def test_status_view_follows_assignment(self, lifecycle, world, assigned):
        item, assignment = assigned
        partner = rider(world["partner"])

        assert (await lifecycle.current_status(item.id)).display_status is DisplayStatus.ASSIGNED_TO_DELIVERY
        await lifecycle.accept_assignment(item.id, partner)
        await lifecycle.mark_picked_up(item.id, partner, assignment.pickup_otp)
        assert (await lifecycle.current_status(item.id)).display_status is DisplayStatus.OUT_FOR_DELIVERY


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


class TestCustomerCancel:
    @pytest.mark.asyncio
    async def test_cancel_pending_item(self, db, lifecycle, world):
        order, item = await _place(lifecycle, world)

        result = await lifecycle.cancel_by_customer(
            item.id, world["customer"], ItemCancellationReason.NOT_NEEDED_NOW
        )

        assert result.item.item_status == ItemStatus.CANCELLED
        assert result.item.cancellation_reason == "NOT_NEEDED_NOW"
        assert "cancelled" in await _event_types(db)

    @pytest.mark.asyncio
    async def test_cancel_last_item_releases_assignment(self, db, lifecycle, world):
        order, item = await _place(lifecycle, world)
        confirmed = await lifecycle.confirm(item.id, world["vendor"])

        await lifecycle.cancel_by_customer(
            item.id, world["customer"], ItemCancellationReason.OTHER, "Ordered twice"
        )

        assignment = await db.get(DeliveryAssignment, confirmed.assignment.id, populate_existing=True)
        assert assignment.status == AssignmentStatus.CANCELLED
        assert assignment.is_active is False
        assert "assignment_cancelled" in await _event_types(db)

    @pytest.mark.asyncio
    async def test_delivered_item_cannot_be_cancelled(self, lifecycle, world):
        order, item = await _place(lifecycle, world)
        confirmed = await lifecycle.confirm(item.id, world["vendor"])
        partner = rider(world["partner"])
        await lifecycle.accept_assignment(item.id, partner)
        await lifecycle.mark_picked_up(item.id, partner, confirmed.assignment.pickup_otp)
        await lifecycle.mark_delivered(item.id, partner, confirmed.assignment.delivery_otp)

        with pytest.raises(PreconditionFailedException):
            await lifecycle.cancel_by_customer(
                item.id, world["customer"], ItemCancellationReason.FAULT_IN_PRODUCT
            )

    @pytest.mark.asyncio
    async def test_other_customer_is_forbidden(self, lifecycle, world):
        order, item = await _place(lifecycle, world)

        with pytest.raises(ForbiddenException):
            await lifecycle.cancel_by_customer(
                item.id, customer("Someone else"), ItemCancellationReason.OTHER
            )


class TestPartnerCancel:
    @pytest.mark.asyncio
    async def test_reassigns_to_another_partner(self, db, lifecycle, world):
        backup = await make_partner(db, name="Kiran")
        order, item = await _place(lifecycle, world)
        first = await lifecycle.confirm(item.id, world["vendor"])
        original_id = first.assignment.delivery_partner_id
        original = world["partner"] if original_id == world["partner"].id else backup
        other = backup if original is world["partner"] else world["partner"]

        result = await lifecycle.cancel_by_partner(
            item.id, rider(original), PartnerCancellationReason.VEHICLE_BREAKDOWN
        )

        assert result.outcome is TransitionOutcome.APPLIED
        assert result.item.item_status == ItemStatus.CONFIRMED
        assert result.assignment_outcome is AssignmentOutcome.ASSIGNED
        assert result.assignment.delivery_partner_id == other.id

        old = await db.get(DeliveryAssignment, first.assignment.id, populate_existing=True)
        assert old.status == AssignmentStatus.CANCELLED
        assert old.cancellation_reason == "Vehicle breakdown"
        stored = await db.get(DeliveryPartner, original.id, populate_existing=True)
        assert stored.total_deliveries == 1
        assert stored.successful_deliveries == 0

    @pytest.mark.asyncio
    async def test_sole_partner_cancel_queues_order(self, db, lifecycle, world):
        order, item = await _place(lifecycle, world)
        await lifecycle.confirm(item.id, world["vendor"])

        result = await lifecycle.cancel_by_partner(
            item.id, rider(world["partner"]), PartnerCancellationReason.WEATHER_CONDITIONS
        )

        assert result.item.item_status == ItemStatus.CONFIRMED
        assert result.assignment_outcome is AssignmentOutcome.PENDING_NO_PARTNER
        request = (await db.execute(select(AssignmentRequest))).scalar_one()
        assert request.status == AssignmentRequestStatus.QUEUED
        assert str(world["partner"].id) in request.excluded_partner_ids

    @pytest.mark.asyncio
    async def test_repeat_partner_cancel_is_noop(self, lifecycle, world):
        order, item = await _place(lifecycle, world)
        await lifecycle.confirm(item.id, world["vendor"])
        partner = rider(world["partner"])
        await lifecycle.cancel_by_partner(item.id, partner, PartnerCancellationReason.OTHER)

        again = await lifecycle.cancel_by_partner(item.id, partner, PartnerCancellationReason.OTHER)

        assert again.outcome is TransitionOutcome.ALREADY_APPLIED

    @pytest.mark.asyncio
    async def test_cancelling_partner_is_eligible_on_later_retry(
        self, db, lifecycle, matcher, world
    ):
        order, item = await _place(lifecycle, world)
        await lifecycle.confirm(item.id, world["vendor"])
        await lifecycle.cancel_by_partner(
            item.id, rider(world["partner"]), PartnerCancellationReason.WEATHER_CONDITIONS
        )
        await db.commit()

        stats = await matcher.retry_queued()

        assert stats["assigned"] == 1
        assignment = await OrderStore(db).get_active_assignment(order.id)
        assert assignment.delivery_partner_id == world["partner"].id
        request = (await db.execute(select(AssignmentRequest))).scalar_one()
        assert request.status == AssignmentRequestStatus.FULFILLED
        assert request.excluded_partner_ids == []

    @pytest.mark.asyncio
    async def test_cannot_cancel_through_a_cancelled_item(self, lifecycle, world):
        other_vendor = vendor(name="Daily Needs")
        order, items = await lifecycle.place_order(
            world["customer"], order_request([world["vendor"].id, other_vendor.id])
        )
        kept, dropped = items
        await lifecycle.confirm(kept.id, world["vendor"])
        await lifecycle.cancel_by_customer(
            dropped.id, world["customer"], ItemCancellationReason.NOT_NEEDED_NOW
        )

        with pytest.raises(PreconditionFailedException):
            await lifecycle.cancel_by_partner(
                dropped.id, rider(world["partner"]), PartnerCancellationReason.OTHER
            )

        assignment = await lifecycle.store.get_active_assignment(order.id)
        assert assignment.status == AssignmentStatus.ASSIGNED
