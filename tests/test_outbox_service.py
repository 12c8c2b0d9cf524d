"""Unit tests for OutboxService and LifecycleEventEmitter."""

import uuid
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from src.models.enums import EventStatus, ItemStatus
from src.models.event_outbox import EventOutbox
from src.modules.events.emitter import LifecycleEventEmitter, build_event_key
from src.modules.events.outbox_service import OutboxService
from src.modules.orders.store import OrderStore
from tests.factories import admin, customer, order_request, vendor


class TestOutboxServicePublish:
    """Tests for OutboxService.publish_event."""

    @pytest.mark.asyncio
    async def test_publish_event_creates_pending_event(self, db):
        service = OutboxService(db)
        item_id = str(uuid.uuid4())

        event = await service.publish_event(
            event_type="order_confirmed",
            event_key=f"{item_id}:order_confirmed",
            aggregate_type="order_item",
            aggregate_id=item_id,
            payload={"order_number": "ORD-2026-0001", "amount": "450.00"},
        )

        assert event.id is not None
        assert event.event_type == "order_confirmed"
        assert event.event_key == f"{item_id}:order_confirmed"
        assert event.status == EventStatus.PENDING
        assert event.retry_count == 0
        assert event.schema_version == 1
        assert event.payload["amount"] == "450.00"

    @pytest.mark.asyncio
    async def test_publish_event_with_custom_schema_version(self, db):
        service = OutboxService(db)

        event = await service.publish_event(
            event_type="delivered",
            event_key="x:delivered",
            aggregate_type="order_item",
            aggregate_id="x",
            payload={},
            schema_version=2,
        )

        assert event.schema_version == 2


class TestEventKey:
    def test_item_scoped_key(self):
        item_id = uuid.UUID(int=7)

        assert build_event_key(item_id, "order_confirmed") == f"{item_id}:order_confirmed"

    def test_assignment_scoped_key_carries_suffix(self):
        assert build_event_key("i", "picked_up", "a1") == "i:picked_up:a1"


class TestLifecycleEventEmitter:
    @pytest.mark.asyncio
    async def test_emit_builds_payload(self, db, lifecycle):
        buyer = customer("Asha")
        order, items = await lifecycle.place_order(buyer, order_request([vendor().id]))
        item = items[0]

        event = await LifecycleEventEmitter(db).emit(
            "order_rejected", item, order, admin(), reason="Out of stock"
        )

        assert event.event_key == f"{item.id}:order_rejected"
        assert event.aggregate_type == "order_item"
        assert event.payload["order_number"] == order.order_number
        assert event.payload["customer_id"] == str(buyer.id)
        assert event.payload["customer_name"] == "Asha"
        assert event.payload["amount"] == "450.00"
        assert event.payload["item_status"] == ItemStatus.PENDING.value
        assert event.payload["actor_role"] == "ADMIN"
        assert event.payload["reason"] == "Out of stock"

    @pytest.mark.asyncio
    async def test_unknown_event_type_is_rejected(self, db, lifecycle):
        order, items = await lifecycle.place_order(customer(), order_request([vendor().id]))

        with pytest.raises(ValueError):
            await LifecycleEventEmitter(db).emit("order_shipped", items[0], order)

    @pytest.mark.asyncio
    async def test_outbox_failure_keeps_transition(self, db, lifecycle):
        seller = vendor()
        order, items = await lifecycle.place_order(customer(), order_request([seller.id]))
        await db.commit()
        lifecycle.emitter.outbox.publish_event = AsyncMock(
            side_effect=OperationalError("INSERT", {}, Exception("disk full"))
        )

        result = await lifecycle.reject(items[0].id, seller, "Out of stock")
        await db.commit()

        assert result.item.item_status == ItemStatus.CANCELLED
        stored = await OrderStore(db).get_item(items[0].id)
        assert stored.item_status == ItemStatus.CANCELLED
        keys = (await db.execute(select(EventOutbox.event_key))).scalars().all()
        assert f"{items[0].id}:order_rejected" not in keys
