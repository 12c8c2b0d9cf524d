"""OrderItem model: one vendor's line within an order; unit of the lifecycle state machine."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, Index, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.database.base import Base, TimestampMixin, UUIDPrimaryKeyMixin, value_enum
from src.models.enums import ItemStatus

if TYPE_CHECKING:
    from src.models.order import Order


class OrderItem(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "order_items"

    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
    )
    vendor_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    vendor_name: Mapped[str | None] = mapped_column(String(200))
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    line_total: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)

    item_status: Mapped[ItemStatus] = mapped_column(
        value_enum(ItemStatus, "itemstatus"),
        nullable=False,
        default=ItemStatus.PENDING,
    )
    # Bumped by every status write; compare-and-swap guard for concurrent actors
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    vendor_notes: Mapped[str | None] = mapped_column(Text)

    confirmed_by: Mapped[str | None] = mapped_column(String(64))
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancelled_by: Mapped[str | None] = mapped_column(String(64))
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancellation_reason: Mapped[str | None] = mapped_column(Text)
    picked_up_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Relationships
    order: Mapped[Order] = relationship(
        "Order", back_populates="items", lazy="noload"
    )

    __table_args__ = (
        Index("ix_order_items_order_id", "order_id"),
        Index("ix_order_items_vendor_status", "vendor_id", "item_status"),
        Index("ix_order_items_status", "item_status"),
    )

    def __repr__(self) -> str:
        return (
            f"<OrderItem id={self.id} order={self.order_id} "
            f"status={self.item_status} v{self.version}>"
        )
