"""DeliverySlot model: reference data for a sector's delivery window."""

from __future__ import annotations

import uuid
from datetime import time

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, Time, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from src.database.base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class DeliverySlot(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "delivery_slots"

    sector_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("sectors.id", ondelete="CASCADE"),
        nullable=False,
    )
    slot_name: Mapped[str] = mapped_column(String(100), nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    cutoff_time: Mapped[time] = mapped_column(Time, nullable=False)
    # Orders one partner may carry in this slot
    max_orders: Mapped[int] = mapped_column(Integer, nullable=False, default=10)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        Index("ix_delivery_slots_sector_id", "sector_id"),
    )
