"""
In-process publish/subscribe bus connecting the engine components.

Delivery is synchronous and in registration order. A failing handler is
logged and skipped so one bad observer cannot break the publish loop.
Coroutine handlers are scheduled on the running loop by emit() and awaited
by emit_async().
"""

from __future__ import annotations

import asyncio
import inspect
import time
from collections import deque
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import structlog

from simon.logic.constants import EVENT_HISTORY_LIMIT

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from simon.messaging.events import Event, EventType

    EventHandler = Callable[[Event], Awaitable[None] | None]

logger = structlog.get_logger()


@dataclass(frozen=True)
class EventRecord:
    event: Event
    timestamp: float


@dataclass
class _Subscription:
    handler: EventHandler
    once: bool = False


class EventBus:
    """Topic-based event bus with bounded history."""

    def __init__(self, history_limit: int = EVENT_HISTORY_LIMIT) -> None:
        self._subscriptions: dict[EventType, list[_Subscription]] = {}
        self._history: deque[EventRecord] = deque(maxlen=history_limit)
        self._pending: set[asyncio.Task[Any]] = set()

    def on(self, topic: EventType, handler: EventHandler) -> Callable[[], None]:
        """Register a handler; returns a callable that unregisters it."""
        self._subscriptions.setdefault(topic, []).append(_Subscription(handler))
        return lambda: self.off(topic, handler)

    def once(self, topic: EventType, handler: EventHandler) -> Callable[[], None]:
        """Register a handler that is removed after its first delivery."""
        self._subscriptions.setdefault(topic, []).append(_Subscription(handler, once=True))
        return lambda: self.off(topic, handler)

    def off(self, topic: EventType, handler: EventHandler) -> None:
        subscriptions = self._subscriptions.get(topic)
        if not subscriptions:
            return
        for index, subscription in enumerate(subscriptions):
            if subscription.handler == handler:
                del subscriptions[index]
                break
        if not subscriptions:
            del self._subscriptions[topic]

    def emit(self, event: Event) -> bool:
        """
        Deliver an event to every handler of its topic.

        Returns True if at least one handler was registered.
        """
        self._record(event)
        subscriptions = self._take_subscriptions(event.type)
        if not subscriptions:
            return False

        for subscription in subscriptions:
            try:
                result = subscription.handler(event)
            except Exception:
                logger.exception("event handler failed", topic=event.type)
                continue
            if inspect.isawaitable(result):
                self._schedule(event, result)
        return True

    async def emit_async(self, event: Event) -> bool:
        """Deliver an event and wait for every coroutine handler to finish."""
        self._record(event)
        subscriptions = self._take_subscriptions(event.type)
        if not subscriptions:
            return False

        awaitables: list[Awaitable[None]] = []
        for subscription in subscriptions:
            try:
                result = subscription.handler(event)
            except Exception:
                logger.exception("event handler failed", topic=event.type)
                continue
            if inspect.isawaitable(result):
                awaitables.append(result)

        results = await asyncio.gather(*awaitables, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logger.error("async event handler failed", topic=event.type, error=str(result))
        return True

    def remove_all_listeners(self, topic: EventType | None = None) -> None:
        if topic is None:
            self._subscriptions.clear()
        else:
            self._subscriptions.pop(topic, None)

    def listener_count(self, topic: EventType) -> int:
        return len(self._subscriptions.get(topic, []))

    def event_names(self) -> list[EventType]:
        return list(self._subscriptions)

    def get_history(self, topic: EventType | None = None) -> list[EventRecord]:
        if topic is None:
            return list(self._history)
        return [record for record in self._history if record.event.type == topic]

    def clear_history(self) -> None:
        self._history.clear()

    async def drain(self) -> None:
        """Wait for coroutine handlers scheduled by emit() to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _record(self, event: Event) -> None:
        self._history.append(EventRecord(event=event, timestamp=time.time()))

    def _take_subscriptions(self, topic: EventType) -> list[_Subscription]:
        subscriptions = list(self._subscriptions.get(topic, []))
        for subscription in subscriptions:
            if subscription.once:
                self.off(topic, subscription.handler)
        return subscriptions

    def _schedule(self, event: Event, awaitable: Awaitable[None]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("no running loop for coroutine handler", topic=event.type)
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return
        task = loop.create_task(_await(awaitable))
        self._pending.add(task)
        task.add_done_callback(lambda t: self._on_handler_done(event, t))

    def _on_handler_done(self, event: Event, task: asyncio.Task[Any]) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("async event handler failed", topic=event.type, error=str(error))


async def _await(awaitable: Awaitable[None]) -> None:
    await awaitable
