"""Celery tasks for delivery partner assignment retries."""

from __future__ import annotations

import asyncio
import logging
import uuid

from celery_app import celery
from src.database.session import session_scope
from src.exceptions import AssignmentUnavailableException, MissingGeoDataException

logger = logging.getLogger(__name__)


async def _retry_queued_async() -> dict:
    from src.modules.assignment.matcher import AssignmentMatcher

    async with session_scope() as session:
        return await AssignmentMatcher(session).retry_queued()


async def _assign_order_async(order_id: str) -> str:
    from src.modules.assignment.matcher import TRIGGER_RETRY, AssignmentMatcher

    async with session_scope() as session:
        try:
            result = await AssignmentMatcher(session).assign(
                uuid.UUID(order_id), trigger=TRIGGER_RETRY
            )
        except (AssignmentUnavailableException, MissingGeoDataException) as exc:
            await session.commit()
            logger.info("Deferred assignment for order %s still pending: %s", order_id, exc.message)
            return exc.code
        await session.commit()
        return result.outcome.value


@celery.task(name="src.modules.assignment.tasks.retry_queued_assignments")
def retry_queued_assignments():
    """Re-run the matcher for every queued assignment request."""
    return asyncio.run(_retry_queued_async())


@celery.task(name="src.modules.assignment.tasks.assign_order")
def assign_order(order_id: str):
    """Deferred single-order retry scheduled after a failed match."""
    return asyncio.run(_assign_order_async(order_id))
