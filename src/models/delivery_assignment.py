"""DeliveryAssignment model: binds an order to one delivery partner."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from src.database.base import Base, TimestampMixin, UUIDPrimaryKeyMixin, value_enum
from src.models.enums import AssignmentStatus


class DeliveryAssignment(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "delivery_assignments"

    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
    )
    delivery_partner_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("delivery_partners.id", ondelete="RESTRICT"),
        nullable=False,
    )
    sector_id: Mapped[uuid.UUID | None] = mapped_column(Uuid)
    slot_id: Mapped[uuid.UUID | None] = mapped_column(Uuid)

    status: Mapped[AssignmentStatus] = mapped_column(
        value_enum(AssignmentStatus, "assignmentstatus"),
        nullable=False,
        default=AssignmentStatus.ASSIGNED,
    )
    # False once cancelled; superseded rows stay for audit
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    pickup_otp: Mapped[str] = mapped_column(String(8), nullable=False)
    delivery_otp: Mapped[str] = mapped_column(String(8), nullable=False)

    assigned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    accepted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    picked_up_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    out_for_delivery_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancellation_reason: Mapped[str | None] = mapped_column(String(100))
    cancellation_details: Mapped[str | None] = mapped_column(Text)

    __table_args__ = (
        # At most one active assignment per order
        Index(
            "uq_delivery_assignments_active_order",
            "order_id",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
        Index("ix_delivery_assignments_partner_status", "delivery_partner_id", "status"),
        Index("ix_delivery_assignments_slot_id", "slot_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<DeliveryAssignment id={self.id} order={self.order_id} "
            f"partner={self.delivery_partner_id} status={self.status}>"
        )
