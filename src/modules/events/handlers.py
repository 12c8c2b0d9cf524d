"""EventHandlerRegistry: maps lifecycle event types to consumer callables."""

import logging
from collections import defaultdict
from collections.abc import Callable, Iterable

logger = logging.getLogger(__name__)

EventHandler = Callable[[dict], None]


def handler_name(handler: EventHandler) -> str:
    return getattr(handler, "__qualname__", None) or type(handler).__name__


class EventHandlerRegistry:
    """Process-wide registry of event handlers.

    Handlers are callables that accept the event envelope: the outbox payload
    plus ``event_type`` and ``event_key``. Several handlers may subscribe to
    the same event type; they run in registration order.
    """

    _handlers: dict[str, list[EventHandler]] = defaultdict(list)

    @classmethod
    def register(cls, event_type: str, handler: EventHandler) -> None:
        if handler in cls._handlers[event_type]:
            return
        cls._handlers[event_type].append(handler)
        logger.info("Registered handler %s for event type %s", handler_name(handler), event_type)

    @classmethod
    def register_many(cls, event_types: Iterable[str], handler: EventHandler) -> None:
        for event_type in event_types:
            cls.register(event_type, handler)

    @classmethod
    def get_handlers(cls, event_type: str) -> list[EventHandler]:
        return list(cls._handlers.get(event_type, []))

    @classmethod
    def dispatch(cls, event_type: str, envelope: dict) -> list[dict]:
        """Run every handler for ``event_type``.

        Returns one result dict per handler. A failing handler is logged and
        reported but does not stop the others.
        """
        results = []
        for handler in cls.get_handlers(event_type):
            name = handler_name(handler)
            try:
                handler(envelope)
                results.append({"handler": name, "status": "ok"})
            except Exception as exc:
                logger.exception("Handler %s failed for %s", name, envelope.get("event_key"))
                results.append({"handler": name, "status": "error", "error": str(exc)})
        return results

    @classmethod
    def clear(cls) -> None:
        """Remove all registered handlers. Useful for testing."""
        cls._handlers.clear()
