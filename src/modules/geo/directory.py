"""Read-only directory of sectors, delivery slots and delivery partners."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.models.delivery_assignment import DeliveryAssignment
from src.models.delivery_partner import DeliveryPartner
from src.models.delivery_slot import DeliverySlot
from src.models.enums import AssignmentStatus
from src.models.sector import Sector

logger = logging.getLogger(__name__)

# Assignment statuses that occupy a partner
ACTIVE_ASSIGNMENT_STATUSES = (
    AssignmentStatus.ASSIGNED,
    AssignmentStatus.ACCEPTED,
    AssignmentStatus.PICKED_UP,
)


@dataclass
class PartnerCandidate:
    partner: DeliveryPartner
    active_assignments: int
    slot_load: int

    @property
    def success_rate(self) -> float:
        return self.partner.success_rate


class GeoSlotDirectory:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def resolve_sector(self, pincode: str) -> Sector | None:
        """Return the active sector whose pincode list contains ``pincode``."""
        result = await self.db.execute(
            select(Sector).where(Sector.is_active.is_(True)).order_by(Sector.name)
        )
        for sector in result.scalars().all():
            if sector.covers(pincode):
                return sector
        return None

    async def get_slot(self, slot_id: uuid.UUID | None) -> DeliverySlot | None:
        if slot_id is None:
            return None
        result = await self.db.execute(
            select(DeliverySlot).where(
                DeliverySlot.id == slot_id,
                DeliverySlot.is_active.is_(True),
            )
        )
        return result.scalar_one_or_none()

    async def list_available_partners(
        self,
        sector_id: uuid.UUID | None,
        slot_id: uuid.UUID | None = None,
        pincode: str | None = None,
        exclude_partner_ids: set[uuid.UUID] | None = None,
    ) -> list[PartnerCandidate]:
        """Partners that are available, cover the pincode or sector, and have slot capacity."""
        excluded = exclude_partner_ids or set()
        result = await self.db.execute(
            select(DeliveryPartner).where(DeliveryPartner.is_available.is_(True))
        )
        sector_key = str(sector_id) if sector_id else None
        covering = [
            partner
            for partner in result.scalars().all()
            if partner.id not in excluded and partner.serves(pincode, sector_key)
        ]
        if not covering:
            return []

        partner_ids = [p.id for p in covering]
        active_counts = await self._count_active(partner_ids)
        slot = await self.get_slot(slot_id)
        slot_counts = await self._count_active(partner_ids, slot_id=slot.id) if slot else {}

        candidates: list[PartnerCandidate] = []
        for partner in covering:
            slot_load = slot_counts.get(partner.id, 0)
            if slot is not None and slot_load >= slot.max_orders:
                logger.debug(
                    "Partner %s at capacity for slot %s (%d/%d)",
                    partner.id, slot.id, slot_load, slot.max_orders,
                )
                continue
            candidates.append(
                PartnerCandidate(
                    partner=partner,
                    active_assignments=active_counts.get(partner.id, 0),
                    slot_load=slot_load,
                )
            )
        return candidates

    async def _count_active(
        self,
        partner_ids: list[uuid.UUID],
        slot_id: uuid.UUID | None = None,
    ) -> dict[uuid.UUID, int]:
        query = (
            select(DeliveryAssignment.delivery_partner_id, func.count())
            .where(
                DeliveryAssignment.delivery_partner_id.in_(partner_ids),
                DeliveryAssignment.is_active.is_(True),
                DeliveryAssignment.status.in_(ACTIVE_ASSIGNMENT_STATUSES),
            )
            .group_by(DeliveryAssignment.delivery_partner_id)
        )
        if slot_id is not None:
            query = query.where(DeliveryAssignment.slot_id == slot_id)
        result = await self.db.execute(query)
        return {partner_id: count for partner_id, count in result.all()}
