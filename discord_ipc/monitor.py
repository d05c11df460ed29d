"""Reconnect supervisor for a ``DiscordSession``.

The session itself never retries. ``ConnectionMonitor`` keeps one session
connected: it reconnects with exponential backoff after a failed connect or a
lost connection and replays registered subscriptions each time the session
opens.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from .config import IpcConfig
from .errors import DiscordClientError, DiscordInvalidState
from .session import DiscordSession

_LOGGER = logging.getLogger(__name__)


class ConnectionMonitor:
    """Keep a session connected and subscribed.

    Usage:
        monitor = ConnectionMonitor(session, config)
        monitor.add_subscription("SPEAKING_START", {"channel_id": "123"})
        monitor.on_connected(lambda: print("up"))
        monitor.start()
        ...
        await monitor.stop()

    The monitor registers the session's ``on_closed`` callback; use
    ``on_disconnected`` instead.
    """

    def __init__(self, session: DiscordSession, config: IpcConfig | None = None) -> None:
        self.session = session
        self._config = config or IpcConfig()
        self._subscriptions: list[tuple[str, dict[str, Any] | None]] = []
        self._task: asyncio.Task[None] | None = None
        self._disconnected = asyncio.Event()
        self._stop_requested = False
        self._retry_attempts = 0

        self._connected_callback: Callable[[], None] | None = None
        self._disconnected_callback: Callable[[Exception | None], None] | None = None

        session.on_closed(self._handle_closed)

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def add_subscription(self, event: str, args: dict[str, Any] | None = None) -> None:
        """Subscribe to ``event`` on every (re)connect."""
        self._subscriptions.append((event, args))

    def on_connected(self, callback: Callable[[], None]) -> None:
        self._connected_callback = callback

    def on_disconnected(self, callback: Callable[[Exception | None], None]) -> None:
        self._disconnected_callback = callback

    def start(self) -> None:
        """Start supervising; must be called from a running event loop."""
        if self.is_running:
            return
        self._stop_requested = False
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop retrying and close the session."""
        self._stop_requested = True
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                _LOGGER.debug("Monitor task cancelled")
            self._task = None
        await self.session.close()

    def _next_delay(self) -> float:
        delay = min(
            self._config.reconnect_delay * (2**self._retry_attempts),
            self._config.reconnect_max_delay,
        )
        self._retry_attempts += 1
        return delay

    async def _wait_before_retry(self) -> None:
        delay = self._next_delay()
        _LOGGER.info(
            "Reconnecting in %.1fs (attempt %d)", delay, self._retry_attempts
        )
        await asyncio.sleep(delay)

    async def _run(self) -> None:
        while not self._stop_requested:
            self._disconnected.clear()
            try:
                await self.session.connect()
            except DiscordInvalidState as err:
                _LOGGER.error("Monitor stopping: %s", err)
                return
            except DiscordClientError as err:
                _LOGGER.warning("Connect failed: %s", err)
                await self._wait_before_retry()
                continue

            self._retry_attempts = 0
            try:
                await self._resubscribe()
            except DiscordClientError as err:
                _LOGGER.error("Subscribing failed: %s", err)
                await self.session.close()
                await self._wait_before_retry()
                continue

            _LOGGER.info("Connected and subscribed (%d)", len(self._subscriptions))
            if self._connected_callback:
                try:
                    self._connected_callback()
                except Exception as err:
                    _LOGGER.exception("Connected callback error: %s", err)

            await self._disconnected.wait()
            await self._wait_before_retry()

    async def _resubscribe(self) -> None:
        await asyncio.gather(
            *(self.session.subscribe(event, args) for event, args in self._subscriptions)
        )

    def _handle_closed(self, reason: Exception | None) -> None:
        self._disconnected.set()
        if self._disconnected_callback:
            try:
                self._disconnected_callback(reason)
            except Exception as err:
                _LOGGER.exception("Disconnected callback error: %s", err)
