"""LifecycleEventEmitter: one typed outbox event per successful lifecycle transition."""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.modules.events.outbox_service import OutboxService
from src.modules.orders.constants import LIFECYCLE_EVENT_TYPES

if TYPE_CHECKING:
    from src.models.event_outbox import EventOutbox
    from src.models.order import Order
    from src.models.order_item import OrderItem
    from src.modules.orders.lifecycle import Actor

logger = logging.getLogger(__name__)


def build_event_key(item_id: uuid.UUID | str, event_type: str, suffix: str | None = None) -> str:
    """Natural key consumers de-duplicate on: ``<item_id>:<event_type>[:<suffix>]``."""
    key = f"{item_id}:{event_type}"
    return f"{key}:{suffix}" if suffix else key


class LifecycleEventEmitter:
    """Publishes lifecycle events to the outbox inside a SAVEPOINT.

    A failed write is logged and dropped from this transaction only; it never
    rolls back the transition that triggered it.
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db
        self.outbox = OutboxService(db)

    async def emit(
        self,
        event_type: str,
        item: OrderItem,
        order: Order | None = None,
        actor: Actor | None = None,
        key_suffix: str | None = None,
        **extra: Any,
    ) -> EventOutbox | None:
        if event_type not in LIFECYCLE_EVENT_TYPES:
            raise ValueError(f"Unknown lifecycle event type: {event_type}")

        payload: dict[str, Any] = {
            "order_id": str(item.order_id),
            "item_id": str(item.id),
            "vendor_id": str(item.vendor_id),
            "vendor_name": item.vendor_name,
            "product_name": item.product_name,
            "quantity": item.quantity,
            "amount": str(item.line_total),
            "item_status": item.item_status.value,
        }
        if order is not None:
            payload.update(
                order_number=order.order_number,
                customer_id=str(order.customer_id),
                customer_name=order.customer_name,
                order_total=str(order.total_amount),
            )
        if actor is not None:
            payload.update(
                actor_id=str(actor.id),
                actor_name=actor.name,
                actor_role=actor.role.value,
            )
        payload.update({k: _jsonable(v) for k, v in extra.items() if v is not None})

        event_key = build_event_key(item.id, event_type, key_suffix)
        try:
            async with self.db.begin_nested():
                event = await self.outbox.publish_event(
                    event_type=event_type,
                    event_key=event_key,
                    aggregate_type="order_item",
                    aggregate_id=str(item.id),
                    payload=payload,
                )
        except SQLAlchemyError:
            logger.exception("Failed to record %s event %s", event_type, event_key)
            return None

        logger.debug("Emitted %s", event_key)
        return event


def _jsonable(value: Any) -> Any:
    if isinstance(value, uuid.UUID):
        return str(value)
    if hasattr(value, "isoformat"):
        return value.isoformat()
    if hasattr(value, "value"):
        return value.value
    return value
