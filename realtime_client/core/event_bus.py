"""
In-process event dispatcher.

Handlers subscribe by exact event name (``server.response.created``) or by a
prefix wildcard (``server.*``, ``*``). Delivery is synchronous and in
registration order; coroutine handlers are scheduled as tasks on the running
loop so a slow handler never blocks the dispatch of the next event.
"""

import asyncio
import contextlib
import inspect
from typing import Any, Callable, Dict, List, Optional, Set

import structlog

logger = structlog.get_logger(__name__)

Handler = Callable[..., Any]


def _matches(pattern: str, event_name: str) -> bool:
    if pattern == "*":
        return True
    if pattern.endswith(".*"):
        return event_name.startswith(pattern[:-1])
    return pattern == event_name


class EventDispatcher:
    """
    Publish/subscribe hub used by the transport and the client.

    Persistent handlers are registered with ``on`` and removed with ``off``.
    One-shot handlers registered with ``on_next`` fire once and are dropped.
    """

    def __init__(self) -> None:
        self._handlers: Dict[str, List[Handler]] = {}
        self._next_handlers: Dict[str, List[Handler]] = {}
        self._tasks: Set[asyncio.Task] = set()

    def on(self, event_name: str, handler: Handler) -> Handler:
        """Register ``handler`` for every occurrence of ``event_name``."""
        self._handlers.setdefault(event_name, []).append(handler)
        return handler

    def on_next(self, event_name: str, handler: Handler) -> Handler:
        """Register ``handler`` for the next occurrence of ``event_name`` only."""
        self._next_handlers.setdefault(event_name, []).append(handler)
        return handler

    def off(self, event_name: str, handler: Optional[Handler] = None) -> None:
        """
        Remove a persistent handler, or all handlers for ``event_name``.

        Raises:
            ValueError: If ``handler`` was never registered for ``event_name``
        """
        handlers = self._handlers.get(event_name, [])
        if handler is None:
            self._handlers.pop(event_name, None)
            return
        if handler not in handlers:
            raise ValueError(f'Could not turn off specified event listener for "{event_name}": not found as a listener')
        handlers.remove(handler)

    def off_next(self, event_name: str, handler: Optional[Handler] = None) -> None:
        handlers = self._next_handlers.get(event_name, [])
        if handler is None:
            self._next_handlers.pop(event_name, None)
            return
        if handler not in handlers:
            raise ValueError(f'Could not turn off specified next event listener for "{event_name}": not found as a listener')
        handlers.remove(handler)

    def clear_event_handlers(self) -> None:
        self._handlers = {}
        self._next_handlers = {}

    def dispatch(self, event_name: str, event: Any = None) -> None:
        """Deliver ``event`` to every handler whose pattern matches ``event_name``."""
        for pattern, handlers in list(self._handlers.items()):
            if _matches(pattern, event_name):
                for handler in list(handlers):
                    self._invoke(handler, event)

        for pattern in list(self._next_handlers.keys()):
            if _matches(pattern, event_name):
                handlers = self._next_handlers.pop(pattern)
                for handler in handlers:
                    self._invoke(handler, event)

    async def wait_for_next(self, event_name: str, timeout: Optional[float] = None) -> Any:
        """
        Suspend until ``event_name`` is next dispatched and return its payload.

        Raises:
            asyncio.TimeoutError: If ``timeout`` seconds elapse first
        """
        loop = asyncio.get_running_loop()
        future = loop.create_future()

        def _resolve(event: Any) -> None:
            if not future.done():
                future.set_result(event)

        self.on_next(event_name, _resolve)
        try:
            return await asyncio.wait_for(future, timeout=timeout)
        finally:
            if future.cancelled():
                with contextlib.suppress(ValueError):
                    self.off_next(event_name, _resolve)

    def _invoke(self, handler: Handler, event: Any) -> None:
        if inspect.iscoroutinefunction(handler):
            task = asyncio.get_running_loop().create_task(handler(event))
            self._tasks.add(task)
            task.add_done_callback(self._task_done)
            return
        handler(event)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Async event handler failed", error=str(exc), exc_info=exc)
