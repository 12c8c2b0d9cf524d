"""Delivery partner matcher.

Binds a confirmed order to one delivery partner by pincode/sector coverage
and slot capacity. Failures are reported as exceptions and recorded on the
order's ``AssignmentRequest`` so the periodic retry job can pick them up;
they never touch the items' confirmation.
"""

from __future__ import annotations

import enum
import logging
import secrets
import string
import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from typing import NoReturn

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import settings
from src.exceptions import AssignmentUnavailableException, MissingGeoDataException
from src.models.assignment_request import AssignmentRequest
from src.models.delivery_assignment import DeliveryAssignment
from src.models.enums import AssignmentRequestStatus, AssignmentStatus, ItemStatus
from src.models.order import Order
from src.modules.events.emitter import LifecycleEventEmitter
from src.modules.geo.directory import GeoSlotDirectory, PartnerCandidate
from src.modules.orders.constants import EVENT_DELIVERY_ASSIGNED
from src.modules.orders.store import OrderStore
from src.modules.scheduler.clock import Clock, DeferredTimer, system_clock

logger = logging.getLogger(__name__)

TRIGGER_CONFIRM = "confirm"
TRIGGER_MANUAL = "manual"
TRIGGER_PARTNER_CANCEL = "partner_cancel"
TRIGGER_RETRY = "retry"


class AssignmentOutcome(str, enum.Enum):
    ASSIGNED = "ASSIGNED"
    EXISTING = "EXISTING"
    PENDING_NO_PARTNER = "ASSIGNMENT_PENDING_NO_PARTNER"
    PENDING_MISSING_GEO = "ASSIGNMENT_PENDING_MISSING_GEO"
    NOT_ATTEMPTED = "NOT_ATTEMPTED"


@dataclass
class AssignmentResult:
    outcome: AssignmentOutcome
    assignment: DeliveryAssignment | None = None


class OtpIssuer:
    """Issues numeric pickup/delivery codes from a CSPRNG."""

    def __init__(self, length: int | None = None) -> None:
        self.length = length or settings.otp_length

    def issue(self) -> str:
        return "".join(secrets.choice(string.digits) for _ in range(self.length))


def rank_candidates(candidates: list[PartnerCandidate]) -> list[PartnerCandidate]:
    """Least loaded first, then best success rate, then stable by id."""
    return sorted(
        candidates,
        key=lambda c: (c.active_assignments, -c.success_rate, str(c.partner.id)),
    )


class AssignmentMatcher:
    def __init__(
        self,
        db: AsyncSession,
        directory: GeoSlotDirectory | None = None,
        emitter: LifecycleEventEmitter | None = None,
        clock: Clock | None = None,
        timer: DeferredTimer | None = None,
        otp_issuer: OtpIssuer | None = None,
    ) -> None:
        self.db = db
        self.store = OrderStore(db)
        self.directory = directory or GeoSlotDirectory(db)
        self.emitter = emitter or LifecycleEventEmitter(db)
        self.clock = clock or system_clock
        self.timer = timer or DeferredTimer()
        self.otp_issuer = otp_issuer or OtpIssuer()

    async def assign(
        self,
        order_id: uuid.UUID,
        *,
        trigger: str = TRIGGER_MANUAL,
        exclude_partner_ids: Iterable[uuid.UUID] = (),
    ) -> AssignmentResult:
        """Bind the order to a delivery partner, or report why it cannot be.

        Raises:
            MissingGeoDataException: the order has no delivery pincode.
            AssignmentUnavailableException: no sector or no partner with capacity.
        """
        order = await self.store.get_order(order_id)

        existing = await self.store.get_active_assignment(order.id)
        if existing is not None:
            return AssignmentResult(AssignmentOutcome.EXISTING, existing)

        if not await self.store.list_items(order.id, [ItemStatus.CONFIRMED]):
            await self.close_request(order.id, "No confirmed items left")
            logger.info("Order %s has nothing left to deliver; not assigning", order.order_number)
            return AssignmentResult(AssignmentOutcome.NOT_ATTEMPTED)

        now = self.clock.now()
        request = await self._get_or_create_request(order.id)
        request.attempts += 1
        request.last_attempt_at = now
        # Exclusions only apply to this attempt
        excluded = set(exclude_partner_ids)
        request.excluded_partner_ids = sorted(str(p) for p in excluded)

        if not order.delivery_pincode:
            request.status = AssignmentRequestStatus.MISSING_GEO
            request.last_error = "Delivery pincode missing"
            await self.db.flush()
            logger.warning("Order %s has no delivery pincode; assignment parked", order.order_number)
            raise MissingGeoDataException(
                "Customer delivery pincode is missing",
                details=[{"orderId": str(order.id)}],
            )

        sector_id = order.delivery_sector_id
        if sector_id is None:
            sector = await self.directory.resolve_sector(order.delivery_pincode)
            sector_id = sector.id if sector else None
        if sector_id is None:
            await self._queue(request, order, trigger, f"No sector covers pincode {order.delivery_pincode}")

        candidates = await self.directory.list_available_partners(
            sector_id,
            slot_id=order.delivery_slot_id,
            pincode=order.delivery_pincode,
            exclude_partner_ids=excluded,
        )
        if not candidates:
            await self._queue(request, order, trigger, "No delivery partner available")

        chosen = rank_candidates(candidates)[0]
        assignment = DeliveryAssignment(
            order_id=order.id,
            delivery_partner_id=chosen.partner.id,
            sector_id=sector_id,
            slot_id=order.delivery_slot_id,
            status=AssignmentStatus.ASSIGNED,
            is_active=True,
            pickup_otp=self.otp_issuer.issue(),
            delivery_otp=self.otp_issuer.issue(),
            assigned_at=now,
        )
        try:
            async with self.db.begin_nested():
                self.db.add(assignment)
                await self.db.flush()
        except IntegrityError:
            # A concurrent matcher run bound the order first
            existing = await self.store.get_active_assignment(order.id)
            if existing is None:
                raise
            logger.info("Order %s already assigned concurrently", order.order_number)
            return AssignmentResult(AssignmentOutcome.EXISTING, existing)

        request.status = AssignmentRequestStatus.FULFILLED
        request.last_error = None
        await self.db.flush()

        for item in await self.store.list_items(order.id, [ItemStatus.CONFIRMED]):
            await self.emitter.emit(
                EVENT_DELIVERY_ASSIGNED,
                item,
                order,
                key_suffix=str(assignment.id),
                assignment_id=assignment.id,
                partner_id=chosen.partner.id,
                partner_name=chosen.partner.name,
                partner_phone=chosen.partner.phone,
                pickup_otp=assignment.pickup_otp,
                delivery_otp=assignment.delivery_otp,
            )

        logger.info(
            "Assigned order %s to partner %s (trigger=%s, load=%d)",
            order.order_number, chosen.partner.id, trigger, chosen.active_assignments,
        )
        return AssignmentResult(AssignmentOutcome.ASSIGNED, assignment)

    async def retry_queued(self, limit: int | None = None) -> dict:
        """Re-run the matcher for queued requests, committing per order."""
        limit = limit or settings.assignment_retry_batch_size
        stats = {"checked": 0, "assigned": 0, "pending": 0, "closed": 0, "errors": 0}

        result = await self.db.execute(
            select(AssignmentRequest.order_id)
            .where(AssignmentRequest.status == AssignmentRequestStatus.QUEUED)
            .order_by(AssignmentRequest.last_attempt_at.asc())
            .limit(limit)
        )
        order_ids = list(result.scalars().all())

        for order_id in order_ids:
            stats["checked"] += 1
            try:
                outcome = await self.assign(order_id, trigger=TRIGGER_RETRY)
                await self.db.commit()
                if outcome.outcome is AssignmentOutcome.ASSIGNED:
                    stats["assigned"] += 1
                elif outcome.outcome is AssignmentOutcome.NOT_ATTEMPTED:
                    stats["closed"] += 1
            except (AssignmentUnavailableException, MissingGeoDataException):
                await self.db.commit()
                stats["pending"] += 1
            except Exception:
                await self.db.rollback()
                logger.exception("Assignment retry failed for order %s", order_id)
                stats["errors"] += 1

        if order_ids:
            logger.info("Assignment retry: %s", stats)
        return stats

    async def close_request(self, order_id: uuid.UUID, reason: str) -> None:
        request = await self._find_request(order_id)
        if request is not None and request.status != AssignmentRequestStatus.FULFILLED:
            request.status = AssignmentRequestStatus.CLOSED
            request.last_error = reason
            await self.db.flush()

    async def _find_request(self, order_id: uuid.UUID) -> AssignmentRequest | None:
        result = await self.db.execute(
            select(AssignmentRequest).where(AssignmentRequest.order_id == order_id)
        )
        return result.scalar_one_or_none()

    async def _get_or_create_request(self, order_id: uuid.UUID) -> AssignmentRequest:
        request = await self._find_request(order_id)
        if request is None:
            request = AssignmentRequest(
                order_id=order_id,
                status=AssignmentRequestStatus.QUEUED,
                attempts=0,
                excluded_partner_ids=[],
            )
            self.db.add(request)
        return request

    async def _queue(
        self, request: AssignmentRequest, order: Order, trigger: str, reason: str
    ) -> NoReturn:
        request.status = AssignmentRequestStatus.QUEUED
        request.last_error = reason
        await self.db.flush()
        logger.warning(
            "No assignment for order %s (trigger=%s, attempt=%d): %s",
            order.order_number, trigger, request.attempts, reason,
        )
        if trigger != TRIGGER_RETRY:
            from src.modules.assignment.tasks import assign_order

            self.timer.schedule(assign_order, settings.assignment_retry_delay_seconds, order.id)
        raise AssignmentUnavailableException(
            reason,
            details=[{"orderId": str(order.id), "attempts": request.attempts}],
        )
