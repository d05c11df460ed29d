"""Publish/subscribe registry for DISPATCH events."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable
from typing import Any

_LOGGER = logging.getLogger(__name__)

WILDCARD = "*"


class DispatchRegistry:
    """Listeners keyed by event name plus a wildcard channel.

    Wildcard listeners receive ``(event_name, data)``; named listeners receive
    ``data``. Delivery goes to wildcard listeners first, then named ones, each
    in registration order, over a snapshot taken before delivery starts.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[Callable[..., Any]]] = {}
        self._tasks: set[asyncio.Task[Any]] = set()

    def add_listener(
        self, event_name: str, callback: Callable[..., Any]
    ) -> Callable[[], None]:
        """Register ``callback`` and return a function that removes it."""
        self._listeners.setdefault(event_name, []).append(callback)

        def remove() -> None:
            self.remove_listener(event_name, callback)

        return remove

    def remove_listener(self, event_name: str, callback: Callable[..., Any]) -> None:
        listeners = self._listeners.get(event_name)
        if not listeners:
            return
        try:
            listeners.remove(callback)
        except ValueError:
            return
        if not listeners:
            del self._listeners[event_name]

    def listener_count(self, event_name: str) -> int:
        return len(self._listeners.get(event_name, ()))

    def clear(self) -> None:
        self._listeners.clear()

    def emit(self, event_name: str, data: Any) -> None:
        """Deliver one dispatch to every current listener."""
        wildcard = list(self._listeners.get(WILDCARD, ()))
        named = list(self._listeners.get(event_name, ())) if event_name != WILDCARD else []

        for callback in wildcard:
            self._call(callback, event_name, event_name, data)
        for callback in named:
            self._call(callback, event_name, data)

    def _call(self, callback: Callable[..., Any], event_name: str, *args: Any) -> None:
        try:
            result = callback(*args)
        except Exception as err:
            _LOGGER.exception("Listener for %s failed: %s", event_name, err)
            return
        if inspect.iscoroutine(result):
            task = asyncio.get_running_loop().create_task(result)
            self._tasks.add(task)
            task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        err = task.exception()
        if err is not None:
            _LOGGER.error("Async dispatch listener failed: %s", err, exc_info=err)
