"""OutboxService: async writer for the transactional event outbox."""

from sqlalchemy.ext.asyncio import AsyncSession

from src.models.enums import EventStatus
from src.models.event_outbox import EventOutbox


class OutboxService:
    """Writes events in the caller's transaction."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def publish_event(
        self,
        event_type: str,
        event_key: str,
        aggregate_type: str,
        aggregate_id: str,
        payload: dict,
        schema_version: int = 1,
    ) -> EventOutbox:
        """Create a new event in the outbox with PENDING status."""
        event = EventOutbox(
            event_type=event_type,
            event_key=event_key,
            aggregate_type=aggregate_type,
            aggregate_id=aggregate_id,
            payload=payload,
            status=EventStatus.PENDING,
            retry_count=0,
            max_retries=3,
            schema_version=schema_version,
        )
        self.session.add(event)
        await self.session.flush()
        return event

