"""Celery tasks for event outbox processing."""

from celery_app import celery
from src.modules.events.outbox_processor import OutboxProcessor


@celery.task(name="src.modules.events.tasks.process_outbox")
def process_outbox():
    """Deliver a batch of pending lifecycle events to their handlers."""
    # Registers the notification handlers in this worker process
    import src.modules.notifications.handlers  # noqa: F401

    return OutboxProcessor().process_batch()


@celery.task(name="src.modules.events.tasks.cleanup_processed_events")
def cleanup_processed_events():
    """Delete expired processed_events and old completed outbox entries."""
    return OutboxProcessor().cleanup_expired()
