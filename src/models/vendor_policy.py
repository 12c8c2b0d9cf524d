"""VendorPolicy model: per-vendor auto-approval settings, written only by the vendor."""

from __future__ import annotations

import uuid
from datetime import time
from decimal import Decimal

from sqlalchemy import Boolean, Integer, Numeric, String, Time, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from src.database.base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class VendorPolicy(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "vendor_policies"

    vendor_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, unique=True)
    vendor_name: Mapped[str | None] = mapped_column(String(200))

    auto_approve_orders: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    order_confirmation_timeout_minutes: Mapped[int] = mapped_column(
        Integer, nullable=False, default=15
    )
    auto_approve_under_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    business_hours_start: Mapped[time] = mapped_column(
        Time, nullable=False, default=time(9, 0)
    )
    business_hours_end: Mapped[time] = mapped_column(
        Time, nullable=False, default=time(18, 0)
    )
    auto_approve_during_business_hours_only: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    def __repr__(self) -> str:
        return (
            f"<VendorPolicy vendor={self.vendor_id} auto={self.auto_approve_orders} "
            f"v{self.version}>"
        )
