from src.database.base import Base, TimestampMixin, UUIDPrimaryKeyMixin, value_enum
from src.database.engine import async_session, engine, sync_engine
from src.database.session import get_db

__all__ = [
    "Base",
    "TimestampMixin",
    "UUIDPrimaryKeyMixin",
    "value_enum",
    "async_session",
    "engine",
    "sync_engine",
    "get_db",
]
