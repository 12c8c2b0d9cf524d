"""Notification channel port and the default logging adapter."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Protocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Notification:
    event_key: str
    event_type: str
    audience: str
    recipient_id: str
    title: str
    body: str
    data: dict = field(default_factory=dict)


class NotificationChannel(Protocol):
    """Delivers notifications (push, SMS, in-app). Owns its own retries."""

    def send(self, notification: Notification) -> None: ...


class LoggingChannel:
    """Writes notifications to the log instead of delivering them."""

    def send(self, notification: Notification) -> None:
        logger.info(
            "[%s] to %s %s: %s | %s",
            notification.event_key,
            notification.audience,
            notification.recipient_id,
            notification.title,
            notification.body,
        )
