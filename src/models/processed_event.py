"""ProcessedEvent model: consumer-side de-duplication ledger keyed on event_key."""

from datetime import datetime

from sqlalchemy import DateTime, Index, String, func
from sqlalchemy.orm import Mapped, mapped_column

from src.database.base import Base, UUIDPrimaryKeyMixin


class ProcessedEvent(UUIDPrimaryKeyMixin, Base):
    __tablename__ = "processed_events"

    event_key: Mapped[str] = mapped_column(String(160), nullable=False, unique=True)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    handler_name: Mapped[str] = mapped_column(String(255), nullable=False)
    processed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )

    __table_args__ = (
        Index("ix_processed_events_expires_at", "expires_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<ProcessedEvent id={self.id} key={self.event_key} "
            f"handler={self.handler_name}>"
        )
