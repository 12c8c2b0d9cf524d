"""Order lifecycle API router: placement, vendor decisions, delivery progress."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.database.session import get_db
from src.exceptions import ForbiddenException
from src.middleware.rate_limit import limiter
from src.models.enums import ActorRole
from src.modules.identity.auth import AuthenticatedUser, get_current_user
from src.modules.orders.lifecycle import LifecycleService, TransitionResult
from src.modules.orders.schemas import (
    AssignmentResponse,
    CustomerCancelRequest,
    ItemStatusResponse,
    OrderCreate,
    OrderItemResponse,
    OrderResponse,
    OtpRequest,
    PartnerCancelRequest,
    RejectRequest,
    TransitionResponse,
)
from src.modules.orders.store import OrderStore

router = APIRouter(prefix="/orders", tags=["orders"])
items_router = APIRouter(prefix="/order-items", tags=["order-items"])


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _order_response(order, items) -> OrderResponse:
    response = OrderResponse.model_validate(order)
    response.items = [OrderItemResponse.model_validate(i) for i in items]
    return response


def _can_view(user: AuthenticatedUser, order, items) -> bool:
    return (
        user.is_admin
        or user.id == order.customer_id
        or any(i.vendor_id == user.id for i in items)
    )


def _transition_response(result: TransitionResult) -> TransitionResponse:
    return TransitionResponse(
        outcome=result.outcome.value,
        item=OrderItemResponse.model_validate(result.item),
        assignment_outcome=result.assignment_outcome.value,
        assignment=(
            AssignmentResponse.model_validate(result.assignment)
            if result.assignment is not None
            else None
        ),
        warning=result.warning,
    )


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------


@router.post("/", response_model=OrderResponse, status_code=201)
@limiter.limit("10/minute")
async def place_order(
    request: Request,
    body: OrderCreate,
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Place an order; every line starts pending with its vendor."""
    order, items = await LifecycleService(db).place_order(user, body)
    return _order_response(order, items)


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: uuid.UUID,
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    store = OrderStore(db)
    order = await store.get_order(order_id)
    items = await store.list_items(order.id)
    if not _can_view(user, order, items):
        raise ForbiddenException("You do not have access to this order")
    return _order_response(order, items)


# ---------------------------------------------------------------------------
# Order items
# ---------------------------------------------------------------------------


@items_router.get("/{item_id}/status", response_model=ItemStatusResponse)
async def get_item_status(
    item_id: uuid.UUID,
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Display status, confirmation countdown and urgency for one item."""
    view = await LifecycleService(db).current_status(item_id)
    order = await OrderStore(db).get_order(view.item.order_id)
    assigned_partner = view.assignment.delivery_partner_id if view.assignment else None
    if not _can_view(user, order, [view.item]) and user.id != assigned_partner:
        raise ForbiddenException("You do not have access to this item")
    return ItemStatusResponse(
        item_id=view.item.id,
        item_status=view.item.item_status,
        display_status=view.display_status,
        minutes_remaining=view.minutes_remaining,
        is_urgent=view.is_urgent,
        assignment_status=view.assignment.status if view.assignment else None,
    )


@items_router.post("/{item_id}/confirm", response_model=TransitionResponse)
async def confirm_item(
    item_id: uuid.UUID,
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Vendor confirmation; a repeat call is a no-op."""
    result = await LifecycleService(db).confirm(item_id, user)
    return _transition_response(result)


@items_router.post("/{item_id}/reject", response_model=TransitionResponse)
async def reject_item(
    item_id: uuid.UUID,
    body: RejectRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await LifecycleService(db).reject(item_id, user, body.reason)
    return _transition_response(result)


@items_router.post("/{item_id}/cancel", response_model=TransitionResponse)
async def cancel_item(
    item_id: uuid.UUID,
    body: CustomerCancelRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Customer cancellation of one item."""
    result = await LifecycleService(db).cancel_by_customer(
        item_id, user, body.reason, body.details
    )
    return _transition_response(result)


@items_router.post("/{item_id}/assign", response_model=TransitionResponse)
async def assign_item(
    item_id: uuid.UUID,
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Manual matcher run for a confirmed item without a delivery partner."""
    if user.role not in (ActorRole.VENDOR, ActorRole.ADMIN):
        raise ForbiddenException("Only vendors and admins can request an assignment")
    result = await LifecycleService(db).assign_manually(item_id, user)
    return _transition_response(result)


@items_router.post("/{item_id}/accept", response_model=TransitionResponse)
async def accept_delivery(
    item_id: uuid.UUID,
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await LifecycleService(db).accept_assignment(item_id, user)
    return _transition_response(result)


@items_router.post("/{item_id}/pickup", response_model=TransitionResponse)
@limiter.limit("10/minute")
async def pickup_item(
    request: Request,
    item_id: uuid.UUID,
    body: OtpRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Pickup with the vendor's code."""
    result = await LifecycleService(db).mark_picked_up(item_id, user, body.otp)
    return _transition_response(result)


@items_router.post("/{item_id}/out-for-delivery", response_model=TransitionResponse)
async def out_for_delivery(
    item_id: uuid.UUID,
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await LifecycleService(db).mark_out_for_delivery(item_id, user)
    return _transition_response(result)


@items_router.post("/{item_id}/deliver", response_model=TransitionResponse)
@limiter.limit("10/minute")
async def deliver_item(
    request: Request,
    item_id: uuid.UUID,
    body: OtpRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Delivery with the customer's code."""
    result = await LifecycleService(db).mark_delivered(item_id, user, body.otp)
    return _transition_response(result)


@items_router.post("/{item_id}/partner-cancel", response_model=TransitionResponse)
async def partner_cancel(
    item_id: uuid.UUID,
    body: PartnerCancelRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Partner drops the delivery; the order goes back to the matcher."""
    result = await LifecycleService(db).cancel_by_partner(
        item_id, user, body.reason, body.details
    )
    return _transition_response(result)
