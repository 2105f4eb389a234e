"""
Session Event Bus

Publish/subscribe point owned by a ModbusManager. Info and reading results
are published under topics derived from the consumer's event name.
"""

import asyncio
import inspect
from collections import defaultdict
from enum import Enum
from typing import Any, Callable

from gxsession.common.logging_setup import get_service_logger

logger = get_service_logger("session.events")

Listener = Callable[[list[bytes]], Any]


class EventKind(str, Enum):
    """Kinds of events published per consumer"""
    INFO = "info"
    READING = "reading"


def event_topic(event_name: str, kind: EventKind) -> str:
    """Topic a consumer's events are published on: `<name>` or `<name>_info`"""
    if kind == EventKind.INFO:
        return f"{event_name}_info"
    return event_name


class EventBus:
    """
    Topic-keyed listener registry.

    Listeners may be plain callables or coroutine functions; awaitables they
    return are scheduled on the running loop. A failing listener is logged
    and does not stop delivery to the others.
    """

    def __init__(self):
        self._listeners: dict[str, list[Listener]] = defaultdict(list)
        self._pending: set[asyncio.Task] = set()

    def on(self, topic: str, listener: Listener) -> None:
        """Subscribe listener to topic"""
        self._listeners[topic].append(listener)

    def off(self, topic: str, listener: Listener) -> None:
        """Unsubscribe one listener; unknown listeners are ignored"""
        listeners = self._listeners.get(topic)
        if not listeners:
            return
        try:
            listeners.remove(listener)
        except ValueError:
            return
        if not listeners:
            del self._listeners[topic]

    def remove_all_listeners(self, topic: str) -> int:
        """Drop every listener of topic, returning how many were removed"""
        removed = self._listeners.pop(topic, [])
        return len(removed)

    def listener_count(self, topic: str) -> int:
        return len(self._listeners.get(topic, ()))

    def emit(self, topic: str, payload: list[bytes]) -> int:
        """
        Deliver payload to every listener of topic.

        Returns:
            Number of listeners called
        """
        listeners = list(self._listeners.get(topic, ()))
        for listener in listeners:
            try:
                result = listener(payload)
            except Exception as e:
                logger.error(f"Listener for '{topic}' failed: {e}")
                continue

            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._pending.add(task)
                task.add_done_callback(self._listener_done(topic))

        return len(listeners)

    def _listener_done(self, topic: str) -> Callable[[asyncio.Future], None]:
        def done(task: asyncio.Future) -> None:
            self._pending.discard(task)
            if task.cancelled():
                return
            error = task.exception()
            if error is not None:
                logger.error(f"Async listener for '{topic}' failed: {error}")
        return done

    async def drain(self) -> None:
        """Wait for async listeners still running"""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
