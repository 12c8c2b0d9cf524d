"""Outbox handler turning lifecycle events into audience notifications."""

from __future__ import annotations

import logging

from src.modules.events.handlers import EventHandlerRegistry
from src.modules.notifications.channel import LoggingChannel, Notification, NotificationChannel
from src.modules.notifications.templates import RECIPIENT_KEYS, TEMPLATES, render
from src.modules.orders.constants import LIFECYCLE_EVENT_TYPES

logger = logging.getLogger(__name__)


class NotificationHandler:
    def __init__(self, channel: NotificationChannel | None = None) -> None:
        self.channel = channel or LoggingChannel()

    def build(self, envelope: dict) -> list[Notification]:
        notifications = []
        for template in TEMPLATES.get(envelope["event_type"], []):
            recipient = envelope.get(RECIPIENT_KEYS[template.audience])
            if not recipient:
                logger.debug(
                    "No %s recipient on %s; skipping", template.audience, envelope["event_key"]
                )
                continue
            title, body = render(template, envelope)
            notifications.append(
                Notification(
                    event_key=envelope["event_key"],
                    event_type=envelope["event_type"],
                    audience=template.audience,
                    recipient_id=str(recipient),
                    title=title,
                    body=body,
                    data={"order_id": envelope.get("order_id"), "item_id": envelope.get("item_id")},
                )
            )
        return notifications

    def __call__(self, envelope: dict) -> None:
        for notification in self.build(envelope):
            self.channel.send(notification)


notification_handler = NotificationHandler()


def register(handler: NotificationHandler = notification_handler) -> None:
    EventHandlerRegistry.register_many(LIFECYCLE_EVENT_TYPES, handler)


register()
