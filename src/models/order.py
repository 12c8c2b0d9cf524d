"""Order model: the customer's basket, parent of one line item per vendor product."""

from __future__ import annotations

import uuid
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import Index, Numeric, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.database.base import Base, TimestampMixin, UUIDPrimaryKeyMixin, value_enum
from src.models.enums import PaymentStatus

if TYPE_CHECKING:
    from src.models.order_item import OrderItem


class Order(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "orders"

    order_number: Mapped[str] = mapped_column(
        String(50), nullable=False, unique=True
    )
    customer_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    customer_name: Mapped[str | None] = mapped_column(String(200))
    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False
    )
    currency: Mapped[str] = mapped_column(
        String(3), nullable=False, server_default="INR"
    )

    # Payment (capture happens elsewhere; only the status is mirrored)
    payment_method: Mapped[str | None] = mapped_column(String(30))
    payment_status: Mapped[PaymentStatus] = mapped_column(
        value_enum(PaymentStatus, "paymentstatus"),
        nullable=False,
        default=PaymentStatus.PENDING,
    )

    # Delivery details
    delivery_address_line: Mapped[str | None] = mapped_column(String(500))
    delivery_pincode: Mapped[str | None] = mapped_column(String(10))
    delivery_sector_id: Mapped[uuid.UUID | None] = mapped_column(Uuid)
    delivery_slot_id: Mapped[uuid.UUID | None] = mapped_column(Uuid)

    # Relationships
    items: Mapped[list[OrderItem]] = relationship(
        "OrderItem", back_populates="order", lazy="noload", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_orders_customer_id", "customer_id"),
        Index("ix_orders_delivery_pincode", "delivery_pincode"),
    )
