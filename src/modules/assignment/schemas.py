"""Pydantic v2 schemas for delivery partner endpoints."""

from __future__ import annotations

import uuid

from pydantic import BaseModel, ConfigDict


class AvailabilityUpdate(BaseModel):
    is_available: bool


class DeliveryPartnerResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    phone: str | None = None
    is_available: bool
    pincodes: list[str]
    sector_ids: list[str]
    total_deliveries: int
    successful_deliveries: int
    success_rate: float


class AvailabilityResponse(BaseModel):
    partner: DeliveryPartnerResponse
    retry_scheduled: bool
