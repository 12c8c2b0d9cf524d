"""Delivery partner availability: toggling on re-runs queued assignments."""

from __future__ import annotations

import logging
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from src.exceptions import NotFoundException
from src.models.delivery_partner import DeliveryPartner
from src.modules.scheduler.clock import DeferredTimer

logger = logging.getLogger(__name__)


class PartnerService:
    def __init__(self, db: AsyncSession, timer: DeferredTimer | None = None) -> None:
        self.db = db
        self.timer = timer or DeferredTimer()

    async def set_availability(
        self, partner_id: uuid.UUID, is_available: bool
    ) -> tuple[DeliveryPartner, bool]:
        """Persist the flag; a partner coming online triggers an immediate retry pass.

        The change is committed before the retry is scheduled so the worker
        sees the partner as available.
        """
        partner = await self.db.get(DeliveryPartner, partner_id)
        if partner is None:
            raise NotFoundException(f"Delivery partner {partner_id} not found")

        came_online = is_available and not partner.is_available
        partner.is_available = is_available
        await self.db.commit()
        logger.info("Partner %s availability set to %s", partner_id, is_available)

        if not came_online:
            return partner, False

        from src.modules.assignment.tasks import retry_queued_assignments

        return partner, self.timer.schedule(retry_queued_assignments, 0)
