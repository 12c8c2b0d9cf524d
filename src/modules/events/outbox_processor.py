"""OutboxProcessor: synchronous batch processor for Celery workers."""

import logging
from collections.abc import Callable
from datetime import timedelta

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from src.config import settings
from src.database.engine import sync_session
from src.models.enums import EventStatus
from src.models.event_outbox import EventOutbox
from src.models.processed_event import ProcessedEvent
from src.modules.events.handlers import EventHandlerRegistry
from src.modules.scheduler.clock import Clock, system_clock

logger = logging.getLogger(__name__)


class OutboxProcessor:
    """Delivers pending outbox events to registered handlers.

    Rows are claimed with ``FOR UPDATE SKIP LOCKED`` so several workers can
    drain the outbox. Delivery is at-least-once; the ``processed_events``
    ledger keyed on ``event_key`` turns redelivery into a no-op.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.session_factory = session_factory or sync_session
        self.clock = clock or system_clock

    def process_batch(self, batch_size: int | None = None) -> dict:
        """Process one batch of pending events.

        Returns counts of ``processed``, ``duplicates`` and ``failed`` events.
        """
        batch_size = batch_size or settings.event_outbox_batch_size
        stats = {"processed": 0, "duplicates": 0, "failed": 0}

        with self.session_factory() as session:
            events = session.execute(
                select(EventOutbox)
                .where(EventOutbox.status == EventStatus.PENDING)
                .order_by(EventOutbox.created_at.asc())
                .limit(batch_size)
                .with_for_update(skip_locked=True)
            ).scalars().all()

            for event in events:
                event_id = event.id
                try:
                    if self._already_processed(session, event.event_key):
                        event.status = EventStatus.COMPLETED
                        event.processed_at = self.clock.now()
                        session.commit()
                        stats["duplicates"] += 1
                        continue

                    # Not committed: a crash leaves the row PENDING
                    event.status = EventStatus.PROCESSING
                    envelope = {
                        **(event.payload or {}),
                        "event_type": event.event_type,
                        "event_key": event.event_key,
                    }
                    results = EventHandlerRegistry.dispatch(event.event_type, envelope)

                    handler_errors = [r for r in results if r["status"] == "error"]
                    if handler_errors:
                        raise RuntimeError(
                            "Handler errors: "
                            + "; ".join(f"{r['handler']}: {r['error']}" for r in handler_errors)
                        )

                    now = self.clock.now()
                    session.add(
                        ProcessedEvent(
                            event_key=event.event_key,
                            event_type=event.event_type,
                            handler_name=",".join(r["handler"] for r in results) or "no_handlers",
                            processed_at=now,
                            expires_at=now + timedelta(days=settings.processed_event_ttl_days),
                        )
                    )
                    event.status = EventStatus.COMPLETED
                    event.processed_at = now
                    session.commit()
                    stats["processed"] += 1

                except Exception as exc:
                    session.rollback()
                    logger.exception("Failed to process event %s (type=%s)", event_id, event.event_type)

                    failed = session.get(EventOutbox, event_id)
                    failed.retry_count += 1
                    failed.status = (
                        EventStatus.FAILED
                        if failed.retry_count >= failed.max_retries
                        else EventStatus.PENDING
                    )
                    failed.last_error = str(exc)[:2000]
                    session.commit()
                    stats["failed"] += 1

        if any(stats.values()):
            logger.info("Outbox batch: %s", stats)
        return stats

    @staticmethod
    def _already_processed(session: Session, event_key: str) -> bool:
        return session.execute(
            select(ProcessedEvent.id).where(ProcessedEvent.event_key == event_key).limit(1)
        ).first() is not None

    def cleanup_expired(self) -> int:
        """Delete expired ledger rows and old completed outbox events."""
        now = self.clock.now()
        cutoff = now - timedelta(days=settings.completed_event_retention_days)
        total_deleted = 0

        with self.session_factory() as session:
            result = session.execute(
                delete(ProcessedEvent).where(ProcessedEvent.expires_at < now)
            )
            total_deleted += result.rowcount

            result = session.execute(
                delete(EventOutbox).where(
                    EventOutbox.status == EventStatus.COMPLETED,
                    EventOutbox.processed_at < cutoff,
                )
            )
            total_deleted += result.rowcount
            session.commit()

        logger.info("Cleaned up %d expired event records", total_deleted)
        return total_deleted
