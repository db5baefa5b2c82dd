"""
In-process event hub.

Typed publish/subscribe between components that must not hold references to
each other: state machines announce live position changes, the account
registry announces primary-credential changes, and the interested services
subscribe by event class.
"""

import asyncio
import inspect
from typing import Any, Callable, Dict, List, Set, Type

from core.logging import get_logger, get_error_logger_safe

EventHandler = Callable[[Any], Any]


class EventHub:
    """Routes published events to handlers registered for their exact type.

    Plain functions run inline; coroutine handlers are scheduled as tasks on
    the running loop and tracked until they finish. A failing handler is
    logged and never affects the publisher or the other handlers.
    """

    def __init__(self):
        self._handlers: Dict[Type, List[EventHandler]] = {}
        self._pending: Set[asyncio.Task] = set()
        self.logger = get_logger("event_hub")
        self.error_logger = get_error_logger_safe("event_hub_errors")

    def subscribe(self, event_type: Type, handler: EventHandler) -> None:
        handlers = self._handlers.setdefault(event_type, [])
        if handler not in handlers:
            handlers.append(handler)
            self.logger.debug("Handler subscribed", event_type=event_type.__name__,
                              handler=getattr(handler, "__qualname__", repr(handler)))

    def unsubscribe(self, event_type: Type, handler: EventHandler) -> None:
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def subscriber_count(self, event_type: Type) -> int:
        return len(self._handlers.get(event_type, []))

    def publish(self, event: Any) -> int:
        """Deliver an event; returns the number of handlers it was handed to."""
        handlers = list(self._handlers.get(type(event), []))
        for handler in handlers:
            try:
                result = handler(event)
            except Exception as e:
                self.error_logger.error("Event handler failed", event_type=type(event).__name__,
                                        error=str(e), exc_info=True)
                continue
            if inspect.isawaitable(result):
                self._schedule(result, type(event).__name__)
        return len(handlers)

    def _schedule(self, awaitable, event_name: str) -> None:
        try:
            task = asyncio.get_running_loop().create_task(awaitable)
        except RuntimeError:
            # No running loop; the coroutine can never run
            awaitable.close()
            self.error_logger.error("Async handler dropped: no running event loop", event_type=event_name)
            return
        self._pending.add(task)
        task.add_done_callback(lambda t: self._on_task_done(t, event_name))

    def _on_task_done(self, task: asyncio.Task, event_name: str) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.error_logger.error("Async event handler failed", event_type=event_name, error=str(exc))

    async def drain(self) -> None:
        """Wait until every scheduled handler task has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
