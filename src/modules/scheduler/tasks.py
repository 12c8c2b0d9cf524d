"""Celery tasks for the auto-approval scheduler."""

from __future__ import annotations

import asyncio
import logging

from celery_app import celery
from src.database.session import session_scope

logger = logging.getLogger(__name__)


async def _auto_approve_async() -> dict:
    from src.modules.scheduler.auto_approval import AutoApprovalScheduler

    async with session_scope() as session:
        return await AutoApprovalScheduler(session).tick()


@celery.task(name="src.modules.scheduler.tasks.auto_approve_pending_items")
def auto_approve_pending_items():
    """Confirm pending items whose vendor policy allows automatic approval."""
    return asyncio.run(_auto_approve_async())
