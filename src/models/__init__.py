# Import all models so SQLAlchemy metadata is populated for Alembic and tests
from src.models.assignment_request import AssignmentRequest
from src.models.delivery_assignment import DeliveryAssignment
from src.models.delivery_partner import DeliveryPartner
from src.models.delivery_slot import DeliverySlot
from src.models.enums import (
    ActorRole,
    AssignmentRequestStatus,
    AssignmentStatus,
    DisplayStatus,
    EventStatus,
    ItemCancellationReason,
    ItemStatus,
    PartnerCancellationReason,
    PaymentStatus,
    SlotPriority,
)
from src.models.event_outbox import EventOutbox
from src.models.order import Order
from src.models.order_item import OrderItem
from src.models.processed_event import ProcessedEvent
from src.models.sector import Sector
from src.models.vendor_policy import VendorPolicy

__all__ = [
    "ActorRole",
    "AssignmentRequest",
    "AssignmentRequestStatus",
    "AssignmentStatus",
    "DeliveryAssignment",
    "DeliveryPartner",
    "DeliverySlot",
    "DisplayStatus",
    "EventOutbox",
    "EventStatus",
    "ItemCancellationReason",
    "ItemStatus",
    "Order",
    "OrderItem",
    "PartnerCancellationReason",
    "PaymentStatus",
    "ProcessedEvent",
    "Sector",
    "SlotPriority",
    "VendorPolicy",
]
