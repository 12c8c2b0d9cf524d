"""Tests for AssignmentMatcher: candidate ranking, slot capacity and the retry queue."""

import uuid

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from src.config import settings
from src.exceptions import AssignmentUnavailableException, MissingGeoDataException
from src.models.assignment_request import AssignmentRequest
from src.models.delivery_assignment import DeliveryAssignment
from src.models.delivery_partner import DeliveryPartner
from src.models.enums import (
    AssignmentRequestStatus,
    AssignmentStatus,
    ItemCancellationReason,
    ItemStatus,
)
from src.modules.assignment.matcher import (
    TRIGGER_RETRY,
    AssignmentOutcome,
    OtpIssuer,
    rank_candidates,
)
from src.modules.assignment.tasks import assign_order
from src.modules.geo.directory import GeoSlotDirectory, PartnerCandidate
from tests.factories import (
    PINCODE,
    customer,
    make_partner,
    make_sector,
    make_slot,
    order_request,
    vendor,
)


def _candidate(load: int, total: int = 0, successful: int = 0, partner_id=None) -> PartnerCandidate:
    partner = DeliveryPartner(
        id=partner_id or uuid.uuid4(),
        name="rider",
        total_deliveries=total,
        successful_deliveries=successful,
    )
    return PartnerCandidate(partner=partner, active_assignments=load, slot_load=0)


async def _confirmed_order(db, lifecycle, **kwargs):
    """Place an order and confirm its item directly, without running the matcher."""
    the_vendor = vendor()
    order, items = await lifecycle.place_order(customer(), order_request([the_vendor.id], **kwargs))
    for item in items:
        await lifecycle.store.transition_item(item, ItemStatus.CONFIRMED)
    await db.commit()
    return order


class TestRanking:
    def test_least_loaded_first(self):
        busy = _candidate(load=2, total=10, successful=10)
        idle = _candidate(load=0)

        assert rank_candidates([busy, idle])[0] is idle

    def test_success_rate_breaks_load_ties(self):
        shaky = _candidate(load=1, total=10, successful=5)
        reliable = _candidate(load=1, total=10, successful=9)

        assert rank_candidates([shaky, reliable])[0] is reliable

    def test_id_breaks_full_ties(self):
        a = _candidate(load=0, partner_id=uuid.UUID(int=1))
        b = _candidate(load=0, partner_id=uuid.UUID(int=2))

        assert rank_candidates([b, a]) == [a, b]


class TestOtpIssuer:
    def test_issues_numeric_codes_of_configured_length(self):
        code = OtpIssuer(length=6).issue()

        assert len(code) == 6
        assert code.isdigit()


class TestAssign:
    @pytest.mark.asyncio
    async def test_assigns_covering_partner(self, db, lifecycle, matcher):
        await make_sector(db)
        partner = await make_partner(db)
        order = await _confirmed_order(db, lifecycle)

        result = await matcher.assign(order.id)

        assert result.outcome is AssignmentOutcome.ASSIGNED
        assert result.assignment.delivery_partner_id == partner.id
        assert result.assignment.pickup_otp != ""
        request = (await db.execute(select(AssignmentRequest))).scalar_one()
        assert request.status == AssignmentRequestStatus.FULFILLED

    @pytest.mark.asyncio
    async def test_second_call_returns_existing(self, db, lifecycle, matcher):
        await make_sector(db)
        await make_partner(db)
        order = await _confirmed_order(db, lifecycle)
        first = await matcher.assign(order.id)

        second = await matcher.assign(order.id)

        assert second.outcome is AssignmentOutcome.EXISTING
        assert second.assignment.id == first.assignment.id

    @pytest.mark.asyncio
    async def test_sector_coverage_without_pincode(self, db, lifecycle, matcher):
        sector = await make_sector(db)
        partner = await make_partner(db, pincodes=(), sector_ids=[sector.id])
        order = await _confirmed_order(db, lifecycle)

        result = await matcher.assign(order.id)

        assert result.assignment.delivery_partner_id == partner.id
        assert result.assignment.sector_id == sector.id

    @pytest.mark.asyncio
    async def test_prefers_less_loaded_partner(self, db, lifecycle, matcher):
        await make_sector(db)
        busy = await make_partner(db, name="Busy", total=50, successful=50)
        idle = await make_partner(db, name="Idle")
        busy_order = await _confirmed_order(db, lifecycle)
        db.add(
            DeliveryAssignment(
                order_id=busy_order.id,
                delivery_partner_id=busy.id,
                status=AssignmentStatus.ACCEPTED,
                is_active=True,
                pickup_otp="111111",
                delivery_otp="222222",
                assigned_at=lifecycle.clock.now(),
            )
        )
        await db.commit()
        order = await _confirmed_order(db, lifecycle)

        result = await matcher.assign(order.id)

        assert result.assignment.delivery_partner_id == idle.id

    @pytest.mark.asyncio
    async def test_full_slot_excludes_partner(self, db, lifecycle, matcher):
        sector = await make_sector(db)
        slot = await make_slot(db, sector, max_orders=1)
        await make_partner(db)
        first = await _confirmed_order(db, lifecycle, slot_id=slot.id)
        await matcher.assign(first.id)
        await db.commit()
        second = await _confirmed_order(db, lifecycle, slot_id=slot.id)

        with pytest.raises(AssignmentUnavailableException):
            await matcher.assign(second.id)

    @pytest.mark.asyncio
    async def test_missing_pincode(self, db, lifecycle, matcher):
        await make_sector(db)
        await make_partner(db)
        order = await _confirmed_order(db, lifecycle, pincode=None)

        with pytest.raises(MissingGeoDataException):
            await matcher.assign(order.id)

        request = (await db.execute(select(AssignmentRequest))).scalar_one()
        assert request.status == AssignmentRequestStatus.MISSING_GEO

    @pytest.mark.asyncio
    async def test_unknown_pincode_queues(self, db, lifecycle, matcher, timer):
        await make_sector(db, pincodes=("110001",))
        await make_partner(db)
        order = await _confirmed_order(db, lifecycle)

        with pytest.raises(AssignmentUnavailableException):
            await matcher.assign(order.id)

        timer.schedule.assert_called_once_with(
            assign_order, settings.assignment_retry_delay_seconds, order.id
        )

    @pytest.mark.asyncio
    async def test_retry_trigger_does_not_reschedule(self, db, lifecycle, matcher, timer):
        await make_sector(db)
        order = await _confirmed_order(db, lifecycle)

        with pytest.raises(AssignmentUnavailableException):
            await matcher.assign(order.id, trigger=TRIGGER_RETRY)

        timer.schedule.assert_not_called()

    @pytest.mark.asyncio
    async def test_excluded_partner_is_skipped(self, db, lifecycle, matcher):
        await make_sector(db)
        partner = await make_partner(db)
        order = await _confirmed_order(db, lifecycle)

        with pytest.raises(AssignmentUnavailableException):
            await matcher.assign(order.id, exclude_partner_ids={partner.id})

    @pytest.mark.asyncio
    async def test_one_active_assignment_per_order(self, db, lifecycle, matcher):
        await make_sector(db)
        partner = await make_partner(db)
        order = await _confirmed_order(db, lifecycle)
        await matcher.assign(order.id)
        await db.commit()

        db.add(
            DeliveryAssignment(
                order_id=order.id,
                delivery_partner_id=partner.id,
                status=AssignmentStatus.ASSIGNED,
                is_active=True,
                pickup_otp="123456",
                delivery_otp="654321",
                assigned_at=lifecycle.clock.now(),
            )
        )
        with pytest.raises(IntegrityError):
            await db.flush()
        await db.rollback()


class TestRetryQueued:
    @pytest.mark.asyncio
    async def test_assigns_once_partner_is_available(self, db, lifecycle, matcher):
        await make_sector(db)
        partner = await make_partner(db, available=False)
        order = await _confirmed_order(db, lifecycle)
        with pytest.raises(AssignmentUnavailableException):
            await matcher.assign(order.id)
        await db.commit()

        idle = await matcher.retry_queued()
        partner.is_available = True
        await db.commit()
        stats = await matcher.retry_queued()

        assert idle["pending"] == 1
        assert stats["assigned"] == 1
        assignment = (await db.execute(select(DeliveryAssignment))).scalar_one()
        assert assignment.delivery_partner_id == partner.id
        request = (await db.execute(select(AssignmentRequest))).scalar_one()
        assert request.status == AssignmentRequestStatus.FULFILLED
        assert request.attempts == 3

    @pytest.mark.asyncio
    async def test_closes_request_without_confirmed_items(self, db, lifecycle, matcher):
        await make_sector(db)
        order = await _confirmed_order(db, lifecycle)
        with pytest.raises(AssignmentUnavailableException):
            await matcher.assign(order.id)
        for item in await lifecycle.store.list_items(order.id):
            await lifecycle.store.transition_item(item, ItemStatus.CANCELLED)
        await db.commit()

        stats = await matcher.retry_queued()

        assert stats["closed"] == 1
        request = (await db.execute(select(AssignmentRequest))).scalar_one()
        assert request.status == AssignmentRequestStatus.CLOSED

    @pytest.mark.asyncio
    async def test_deferred_assign_after_customer_cancel_binds_nobody(self, db, lifecycle, matcher):
        await make_sector(db)
        partner = await make_partner(db, available=False)
        buyer, seller = customer(), vendor()
        order, items = await lifecycle.place_order(buyer, order_request([seller.id]))
        await lifecycle.confirm(items[0].id, seller)
        await lifecycle.cancel_by_customer(
            items[0].id, buyer, ItemCancellationReason.NOT_NEEDED_NOW
        )
        partner.is_available = True
        await db.commit()

        result = await matcher.assign(order.id, trigger=TRIGGER_RETRY)

        assert result.outcome is AssignmentOutcome.NOT_ATTEMPTED
        assert result.assignment is None
        assert (await db.execute(select(DeliveryAssignment))).scalars().all() == []
        request = (await db.execute(select(AssignmentRequest))).scalar_one()
        assert request.status == AssignmentRequestStatus.CLOSED


class TestGeoSlotDirectory:
    @pytest.mark.asyncio
    async def test_resolve_sector_by_pincode(self, db):
        sector = await make_sector(db)
        directory = GeoSlotDirectory(db)

        assert (await directory.resolve_sector(PINCODE)).id == sector.id
        assert await directory.resolve_sector("999999") is None

    @pytest.mark.asyncio
    async def test_unavailable_partner_is_not_a_candidate(self, db):
        sector = await make_sector(db)
        await make_partner(db, available=False)

        candidates = await GeoSlotDirectory(db).list_available_partners(sector.id, pincode=PINCODE)

        assert candidates == []
