"""AssignmentRequest model: retry queue and attempt log for the partner matcher."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from src.database.base import Base, TimestampMixin, UUIDPrimaryKeyMixin, value_enum
from src.models.enums import AssignmentRequestStatus


class AssignmentRequest(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "assignment_requests"

    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    status: Mapped[AssignmentRequestStatus] = mapped_column(
        value_enum(AssignmentRequestStatus, "assignmentrequeststatus"),
        nullable=False,
        default=AssignmentRequestStatus.QUEUED,
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text)
    last_attempt_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    # Partners who cancelled on this order and must not be offered it again
    excluded_partner_ids: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    __table_args__ = (
        Index("ix_assignment_requests_status", "status"),
    )
