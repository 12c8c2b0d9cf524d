"""EventOutbox model: transactional outbox for lifecycle events."""

from datetime import datetime

from sqlalchemy import JSON, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from src.database.base import Base, TimestampMixin, UUIDPrimaryKeyMixin, value_enum
from src.models.enums import EventStatus


class EventOutbox(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "event_outbox"

    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    # Natural key "<item_id>:<event_type>"; consumers de-duplicate on it
    event_key: Mapped[str] = mapped_column(String(160), nullable=False)
    aggregate_type: Mapped[str] = mapped_column(String(64), nullable=False)
    aggregate_id: Mapped[str] = mapped_column(String(64), nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    status: Mapped[EventStatus] = mapped_column(
        value_enum(EventStatus, "eventstatus"),
        nullable=False,
        default=EventStatus.PENDING,
    )
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_retries: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    schema_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __table_args__ = (
        Index("ix_event_outbox_status_created", "status", "created_at"),
        Index("ix_event_outbox_event_key", "event_key"),
        Index("ix_event_outbox_aggregate", "aggregate_type", "aggregate_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<EventOutbox id={self.id} type={self.event_type} "
            f"key={self.event_key} status={self.status}>"
        )
