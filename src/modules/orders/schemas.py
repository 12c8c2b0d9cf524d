"""Pydantic v2 schemas for the order lifecycle API."""

from __future__ import annotations

import uuid
from datetime import datetime, time
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from src.models.enums import (
    AssignmentStatus,
    DisplayStatus,
    ItemCancellationReason,
    ItemStatus,
    PartnerCancellationReason,
    PaymentStatus,
    SlotPriority,
)

# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class OrderLineCreate(BaseModel):
    vendor_id: uuid.UUID
    vendor_name: str | None = Field(None, max_length=200)
    product_name: str = Field(..., min_length=1, max_length=255)
    unit_price: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    quantity: int = Field(..., gt=0)


class DeliveryDetails(BaseModel):
    address_line: str | None = Field(None, max_length=500)
    pincode: str | None = Field(None, pattern=r"^\d{6}$")
    sector_id: uuid.UUID | None = None
    slot_id: uuid.UUID | None = None


class OrderCreate(BaseModel):
    lines: list[OrderLineCreate] = Field(..., min_length=1)
    delivery: DeliveryDetails = Field(default_factory=DeliveryDetails)
    payment_method: str | None = Field(None, max_length=30)


class RejectRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=1000)


class CustomerCancelRequest(BaseModel):
    reason: ItemCancellationReason
    details: str | None = Field(None, max_length=1000)


class OtpRequest(BaseModel):
    otp: str = Field(..., min_length=1, max_length=8)


class PartnerCancelRequest(BaseModel):
    reason: PartnerCancellationReason
    details: str | None = Field(None, max_length=1000)


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class OrderItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    order_id: uuid.UUID
    vendor_id: uuid.UUID
    vendor_name: str | None = None
    product_name: str
    unit_price: Decimal
    quantity: int
    line_total: Decimal
    item_status: ItemStatus
    version: int
    vendor_notes: str | None = None
    confirmed_by: str | None = None
    confirmed_at: datetime | None = None
    cancelled_by: str | None = None
    cancelled_at: datetime | None = None
    cancellation_reason: str | None = None
    picked_up_at: datetime | None = None
    delivered_at: datetime | None = None
    created_at: datetime


class OrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    order_number: str
    customer_id: uuid.UUID
    customer_name: str | None = None
    total_amount: Decimal
    currency: str
    payment_method: str | None = None
    payment_status: PaymentStatus
    delivery_address_line: str | None = None
    delivery_pincode: str | None = None
    delivery_sector_id: uuid.UUID | None = None
    delivery_slot_id: uuid.UUID | None = None
    created_at: datetime
    items: list[OrderItemResponse] = []


class AssignmentResponse(BaseModel):
    """Partner-facing view of a delivery assignment; codes are never exposed."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    order_id: uuid.UUID
    delivery_partner_id: uuid.UUID
    slot_id: uuid.UUID | None = None
    status: AssignmentStatus
    is_active: bool
    assigned_at: datetime
    accepted_at: datetime | None = None
    picked_up_at: datetime | None = None
    out_for_delivery_at: datetime | None = None
    delivered_at: datetime | None = None
    cancelled_at: datetime | None = None
    cancellation_reason: str | None = None


class TransitionResponse(BaseModel):
    outcome: str
    item: OrderItemResponse
    assignment_outcome: str
    assignment: AssignmentResponse | None = None
    warning: str | None = None


class ItemStatusResponse(BaseModel):
    item_id: uuid.UUID
    item_status: ItemStatus
    display_status: DisplayStatus
    minutes_remaining: int | None = None
    is_urgent: bool
    assignment_status: AssignmentStatus | None = None


class PendingItemResponse(BaseModel):
    item: OrderItemResponse
    order_number: str
    customer_name: str | None = None
    minutes_remaining: int
    is_urgent: bool


class PreparationItemResponse(BaseModel):
    item: OrderItemResponse
    order_number: str
    slot_name: str | None = None
    slot_start: time | None = None
    priority: SlotPriority


class PreparationGroupResponse(BaseModel):
    priority: SlotPriority
    items: list[PreparationItemResponse]
