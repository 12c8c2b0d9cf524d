"""Delivery partner API router."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from src.database.session import get_db
from src.exceptions import ForbiddenException
from src.modules.assignment.partner_service import PartnerService
from src.modules.assignment.schemas import (
    AvailabilityResponse,
    AvailabilityUpdate,
    DeliveryPartnerResponse,
)
from src.modules.identity.auth import AuthenticatedUser, get_current_user

router = APIRouter(prefix="/delivery-partners", tags=["delivery-partners"])


@router.put("/{partner_id}/availability", response_model=AvailabilityResponse)
async def set_availability(
    partner_id: uuid.UUID,
    body: AvailabilityUpdate,
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Go online or offline; going online re-runs queued assignments."""
    if not user.is_admin and user.id != partner_id:
        raise ForbiddenException("Partners can only change their own availability")
    partner, retry_scheduled = await PartnerService(db).set_availability(
        partner_id, body.is_available
    )
    return AvailabilityResponse(
        partner=DeliveryPartnerResponse.model_validate(partner),
        retry_scheduled=retry_scheduled,
    )
