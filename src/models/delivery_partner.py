"""DeliveryPartner model: rider profile, availability and coverage."""

from __future__ import annotations

from sqlalchemy import JSON, Boolean, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from src.database.base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class DeliveryPartner(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "delivery_partners"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(20))
    is_available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Coverage, e.g. ["560001", "560002"] and sector UUID strings
    pincodes: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    sector_ids: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    total_deliveries: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    successful_deliveries: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index("ix_delivery_partners_is_available", "is_available"),
    )

    @property
    def success_rate(self) -> float:
        if not self.total_deliveries:
            return 0.0
        return self.successful_deliveries / self.total_deliveries

    def serves(self, pincode: str | None, sector_id: str | None) -> bool:
        """True when the partner covers the pincode or the whole sector."""
        if pincode and pincode in {str(p) for p in self.pincodes or []}:
            return True
        return bool(sector_id) and sector_id in {str(s) for s in self.sector_ids or []}
