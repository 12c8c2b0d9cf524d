"""Declarative base and shared column mixins."""

import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, Enum as SQLAlchemyEnum, Uuid, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    # Server-generated timestamps come back with the INSERT/UPDATE; async sessions cannot lazy-load them
    __mapper_args__ = {"eager_defaults": True}


class UUIDPrimaryKeyMixin:
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )


def value_enum(enum_cls: type[enum.Enum], name: str) -> SQLAlchemyEnum:
    """Store an enum by its value as VARCHAR + CHECK so both Postgres and SQLite accept it."""
    return SQLAlchemyEnum(
        enum_cls,
        name=name,
        native_enum=False,
        length=32,
        values_callable=lambda members: [member.value for member in members],
        validate_strings=True,
    )
