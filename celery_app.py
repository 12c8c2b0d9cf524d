"""Celery application configuration for fulfillment background jobs."""

from celery import Celery
from celery.schedules import crontab

from src.config import settings

celery = Celery("fulfillment")

celery.conf.update(
    broker_url=settings.celery_broker_url,
    result_backend=settings.celery_result_backend,
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # --- Queue routing per job type ---
    task_routes={
        "src.modules.scheduler.tasks.auto_approve_pending_items": {"queue": "auto-approval"},
        "src.modules.assignment.tasks.retry_queued_assignments": {"queue": "assignment"},
        "src.modules.assignment.tasks.assign_order": {"queue": "assignment"},
        "src.modules.events.tasks.process_outbox": {"queue": "event-outbox"},
        "src.modules.events.tasks.cleanup_processed_events": {"queue": "event-outbox"},
    },
    # --- Reliability settings ---
    task_default_retry_delay=60,
    task_max_retries=3,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    result_expires=86400,  # 24 hours
    # --- Broker transport options (Redis reliability) ---
    broker_transport_options={
        "max_retries": 10,
        "interval_start": 0.2,
        "interval_step": 0.5,
        "interval_max": 5.0,
        "retry_on_timeout": True,
        "visibility_timeout": 3600,
    },
    # --- Beat schedule ---
    beat_schedule={
        "auto-approve-pending-items": {
            "task": "src.modules.scheduler.tasks.auto_approve_pending_items",
            "schedule": settings.auto_approval_tick_seconds,
        },
        "retry-queued-assignments": {
            "task": "src.modules.assignment.tasks.retry_queued_assignments",
            "schedule": settings.assignment_retry_poll_seconds,
        },
        "process-event-outbox": {
            "task": "src.modules.events.tasks.process_outbox",
            "schedule": settings.event_outbox_poll_seconds,
        },
        "cleanup-processed-events-daily": {
            "task": "src.modules.events.tasks.cleanup_processed_events",
            "schedule": crontab(hour=3, minute=30),
        },
    },
)

celery.autodiscover_tasks([
    "src.modules.scheduler",
    "src.modules.assignment",
    "src.modules.events",
])
