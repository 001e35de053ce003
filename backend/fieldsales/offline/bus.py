"""In-process publish/subscribe channel.

Components announce state changes here instead of calling each other:
the sync engine publishes per-event outcomes, the controller publishes
visit changes, and any UI element (pending badge, active-visit header)
subscribes to what it displays.
"""

import asyncio
import inspect
import logging
from collections import defaultdict
from typing import Any, Awaitable, Callable, Dict, List, Union

logger = logging.getLogger(__name__)

VISIT_UPDATED = "visit.updated"
EVENT_SYNCED = "event.synced"
EVENT_DROPPED = "event.dropped"
SYNC_COMPLETED = "sync.completed"

Handler = Callable[[Any], Union[None, Awaitable[None]]]


class EventBus:
    def __init__(self):
        self._handlers: Dict[str, List[Handler]] = defaultdict(list)

    def subscribe(self, topic: str, handler: Handler) -> Callable[[], None]:
        """Register ``handler`` for ``topic``; returns a function that unsubscribes it."""
        self._handlers[topic].append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers[topic]:
                self._handlers[topic].remove(handler)

        return unsubscribe

    async def publish(self, topic: str, message: Any = None) -> None:
        """Deliver ``message`` to every subscriber of ``topic``, in subscription order.

        A failing subscriber is logged and does not prevent delivery to the others.
        """
        for handler in list(self._handlers.get(topic, [])):
            try:
                result = handler(message)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(f"Subscriber for {topic} failed")
