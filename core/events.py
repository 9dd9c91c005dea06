"""
Fire-and-forget observer notifications.

Observers (a dashboard socket, a metrics hook) subscribe to named events;
nothing here is durable state and a failing observer never affects the
engine.
"""
from __future__ import annotations

import asyncio
import inspect
import structlog
from typing import Any, Callable

logger = structlog.get_logger()

QUEUE_UPDATE = "queue:update"
QUEUE_ITEM = "queue:item"
REMINDER_SCHEDULED = "reminder:scheduled"
TRANSPORT_STATE = "transport:state"

Observer = Callable[[str, dict[str, Any]], Any]


class EventBus:
    def __init__(self):
        self._observers: list[Observer] = []
        self._pending: set[asyncio.Task] = set()

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """Register ``observer(name, payload)``; returns an unsubscribe function."""
        self._observers.append(observer)

        def unsubscribe():
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def emit(self, name: str, **payload: Any) -> None:
        for observer in list(self._observers):
            try:
                result = observer(name, payload)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    self._pending.add(task)
                    task.add_done_callback(self._finished)
            except Exception as e:
                logger.warning("observer_failed", event_name=name, error=str(e))

    def _finished(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning("observer_failed", error=str(task.exception()))
