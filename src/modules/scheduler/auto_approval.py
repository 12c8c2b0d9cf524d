"""Auto-approval scheduler.

Each tick scans every pending item together with its vendor's policy, read
fresh from the database, and confirms the eligible ones as the system actor.
Evaluation itself is pure; only ``confirm`` writes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, time, tzinfo
from zoneinfo import ZoneInfo

from sqlalchemy.ext.asyncio import AsyncSession

from src.config import settings
from src.exceptions import AppException
from src.models.enums import ItemStatus
from src.models.order_item import OrderItem
from src.models.vendor_policy import VendorPolicy
from src.modules.identity.auth import SYSTEM_ACTOR
from src.modules.orders.lifecycle import LifecycleService
from src.modules.orders.read_models import (
    confirmation_timeout,
    is_urgent,
    minutes_elapsed,
    minutes_remaining,
)
from src.modules.orders.store import OrderStore, TransitionOutcome
from src.modules.scheduler.clock import Clock, system_clock

logger = logging.getLogger(__name__)

REASON_ELIGIBLE = "eligible"
REASON_NO_POLICY = "no_policy"
REASON_AUTO_APPROVE_OFF = "auto_approve_off"
REASON_OUTSIDE_BUSINESS_HOURS = "outside_business_hours"
REASON_OVER_AMOUNT_CAP = "over_amount_cap"
REASON_NOT_PENDING = "not_pending"


@dataclass(frozen=True)
class ApprovalDecision:
    eligible: bool
    reason: str
    minutes_elapsed: int
    minutes_remaining: int
    is_urgent: bool


def within_business_hours(local: time, start: time, end: time) -> bool:
    """``[start, end)``; a window with ``end <= start`` wraps past midnight."""
    if start == end:
        return True
    if start < end:
        return start <= local < end
    return local >= start or local < end


def evaluate(
    item: OrderItem,
    policy: VendorPolicy | None,
    now: datetime,
    tz: tzinfo | None = None,
) -> ApprovalDecision:
    """Decide whether ``item`` may be confirmed automatically at ``now``."""
    tz = tz or ZoneInfo(settings.business_timezone)
    elapsed = minutes_elapsed(item.created_at, now)
    remaining = minutes_remaining(item.created_at, confirmation_timeout(policy), now)

    def decide(eligible: bool, reason: str) -> ApprovalDecision:
        return ApprovalDecision(
            eligible=eligible,
            reason=reason,
            minutes_elapsed=elapsed,
            minutes_remaining=remaining,
            is_urgent=is_urgent(item.item_status, remaining),
        )

    if item.item_status != ItemStatus.PENDING:
        return decide(False, REASON_NOT_PENDING)
    if policy is None:
        return decide(False, REASON_NO_POLICY)
    if not policy.auto_approve_orders:
        return decide(False, REASON_AUTO_APPROVE_OFF)
    if policy.auto_approve_during_business_hours_only:
        local = now.astimezone(tz).time()
        if not within_business_hours(local, policy.business_hours_start, policy.business_hours_end):
            return decide(False, REASON_OUTSIDE_BUSINESS_HOURS)
    if policy.auto_approve_under_amount is not None and item.line_total > policy.auto_approve_under_amount:
        return decide(False, REASON_OVER_AMOUNT_CAP)
    return decide(True, REASON_ELIGIBLE)


class AutoApprovalScheduler:
    def __init__(
        self,
        db: AsyncSession,
        clock: Clock | None = None,
        lifecycle: LifecycleService | None = None,
    ) -> None:
        self.db = db
        self.clock = clock or system_clock
        self.store = OrderStore(db)
        self.lifecycle = lifecycle or LifecycleService(db, clock=self.clock)
        self.tz = ZoneInfo(settings.business_timezone)

    async def tick(self) -> dict:
        """One scan over pending items. Returns counts for the beat log."""
        stats = {"checked": 0, "approved": 0, "skipped": 0, "noop": 0, "errors": 0}
        now = self.clock.now()

        rows = await self.store.list_pending_with_policies()
        # Detached snapshots survive the per-item rollbacks below
        self.db.expunge_all()
        await self.db.commit()

        for item, policy in rows:
            stats["checked"] += 1
            decision = evaluate(item, policy, now, self.tz)
            if not decision.eligible:
                stats["skipped"] += 1
                logger.debug("Item %s not auto-approved: %s", item.id, decision.reason)
                continue

            try:
                result = await self.lifecycle.confirm(item.id, SYSTEM_ACTOR)
                await self.db.commit()
            except AppException as exc:
                await self.db.rollback()
                logger.warning("Auto-approval of item %s failed: %s", item.id, exc.message)
                stats["errors"] += 1
                continue
            except Exception:
                await self.db.rollback()
                logger.exception("Auto-approval of item %s failed", item.id)
                stats["errors"] += 1
                continue

            if result.outcome is TransitionOutcome.ALREADY_APPLIED:
                stats["noop"] += 1
            else:
                stats["approved"] += 1
                logger.info(
                    "Auto-approved item %s (%d min after placement, assignment %s)",
                    item.id, decision.minutes_elapsed, result.assignment_outcome.value,
                )

        if stats["checked"]:
            logger.info("Auto-approval tick: %s", stats)
        return stats
