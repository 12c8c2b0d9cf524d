"""Clock and deferred-timer service used by the scheduler and the matcher."""

from __future__ import annotations

import logging
import time
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol

logger = logging.getLogger(__name__)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on round-trip)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class Clock(Protocol):
    def now(self) -> datetime: ...

    def monotonic(self) -> float: ...


class SystemClock:
    """Wall-clock UTC time and the process monotonic counter."""

    def now(self) -> datetime:
        return datetime.now(UTC)

    def monotonic(self) -> float:
        return time.monotonic()


class FixedClock:
    """A clock that only moves when told to. Used for replays and tests."""

    def __init__(self, start: datetime) -> None:
        self._now = as_utc(start)
        self._monotonic = 0.0

    def now(self) -> datetime:
        return self._now

    def monotonic(self) -> float:
        return self._monotonic

    def set(self, value: datetime) -> None:
        delta = (as_utc(value) - self._now).total_seconds()
        self._now = as_utc(value)
        self._monotonic += max(delta, 0.0)

    def advance(self, **kwargs: float) -> datetime:
        """Move forward by ``timedelta(**kwargs)`` and return the new time."""
        step = timedelta(**kwargs)
        self._now += step
        self._monotonic += step.total_seconds()
        return self._now


class DeferredTimer:
    """Schedules deferred callbacks as Celery tasks.

    ``task`` is any Celery task (anything with ``apply_async``). Scheduling
    failures are logged and swallowed: the periodic beat job picks the work
    up on its next run anyway.
    """

    def schedule(self, task: Any, delay_seconds: float, *args: Any) -> bool:
        try:
            task.apply_async(args=[str(a) for a in args], countdown=max(0, int(delay_seconds)))
        except Exception:
            logger.warning(
                "Could not schedule %s in %ss; falling back to periodic retry",
                getattr(task, "name", task), delay_seconds,
                exc_info=True,
            )
            return False
        return True


system_clock = SystemClock()
