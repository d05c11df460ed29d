"""Local socket transport for the Discord desktop app.

Discovers the app's endpoint, turns the byte stream into frames and keeps
the connection alive. Frames and the end of the connection are reported
through the callbacks given to the constructor; the transport knows nothing
about commands or authentication.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import Callable
from typing import Any

from .config import IpcConfig
from .errors import (
    DiscordClientError,
    DiscordConnectionClosed,
    DiscordConnectionError,
    DiscordInvalidState,
    DiscordProtocolError,
    DiscordTimeout,
    DiscordTransportUnavailable,
)
from .protocol import Frame, FrameDecoder, Opcode, encode_frame

_LOGGER = logging.getLogger(__name__)

READ_CHUNK_SIZE = 64 * 1024


async def _open_pipe_connection(
    path: str,
) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
    """Open a Windows named pipe as an asyncio stream pair."""
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader()
    protocol = asyncio.StreamReaderProtocol(reader)
    transport, _ = await loop.create_pipe_connection(  # type: ignore[attr-defined]
        lambda: protocol, path
    )
    writer = asyncio.StreamWriter(transport, protocol, reader, loop)
    return reader, writer


class IpcTransport:
    """Framed duplex connection to the desktop app.

    Args:
        config: Discovery and keepalive settings.
        on_frame: Called for every decoded frame, in arrival order.
        on_closed: Called exactly once per connection with ``None`` for an
            orderly end of stream or the exception that ended it.
        label: Prefix used in log messages.
    """

    def __init__(
        self,
        config: IpcConfig,
        *,
        on_frame: Callable[[Frame], None],
        on_closed: Callable[[Exception | None], None],
        label: str = "ipc",
    ) -> None:
        self._config = config
        self._on_frame = on_frame
        self._on_closed = on_closed
        self._label = label

        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._read_task: asyncio.Task[None] | None = None
        self._decoder = FrameDecoder()
        self._endpoint: str | None = None
        self._connecting = False

        # Keepalive
        self._idle_timer: asyncio.TimerHandle | None = None
        self._pong_timer: asyncio.TimerHandle | None = None

        self._closing: asyncio.Future[None] | None = None

    @property
    def is_connected(self) -> bool:
        return self._writer is not None

    @property
    def endpoint(self) -> str | None:
        """Path of the endpoint currently connected to."""
        return self._endpoint

    # -------------------------------------------------------------------------
    # Connect
    # -------------------------------------------------------------------------

    async def _open(self, path: str) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
        if sys.platform == "win32":
            opener = _open_pipe_connection(path)
        else:
            opener = asyncio.open_unix_connection(path)
        return await asyncio.wait_for(opener, timeout=self._config.connect_timeout)

    async def connect(self) -> None:
        """Connect to the first endpoint that accepts.

        Raises:
            DiscordInvalidState: If a connection already exists.
            DiscordTransportUnavailable: If every discovery attempt failed.
        """
        if self._writer is not None or self._connecting:
            raise DiscordInvalidState(
                "Connection already in use", code="CONNECTION_IN_USE"
            )

        self._connecting = True
        last_error: Exception | None = None
        try:
            for attempt in range(self._config.max_discovery_attempts):
                path = self._config.endpoint(attempt)
                try:
                    reader, writer = await self._open(path)
                except (OSError, TimeoutError) as err:
                    _LOGGER.debug("[%s] %s unavailable: %s", self._label, path, err)
                    last_error = err
                    continue
                break
            else:
                raise DiscordTransportUnavailable(
                    f"No endpoint accepted a connection after "
                    f"{self._config.max_discovery_attempts} attempts"
                ) from last_error
        finally:
            self._connecting = False

        _LOGGER.info("[%s] Connected to %s", self._label, path)
        self._reader = reader
        self._writer = writer
        self._endpoint = path
        self._decoder = FrameDecoder()
        self._closing = None
        self._arm_idle_timer()
        self._read_task = asyncio.create_task(self._read_loop(reader))

    # -------------------------------------------------------------------------
    # Send
    # -------------------------------------------------------------------------

    def send(self, payload: Any = None, opcode: Opcode = Opcode.MESSAGE) -> None:
        """Write one frame.

        Raises:
            DiscordInvalidState: If a graceful close is in progress.
            DiscordConnectionError: If not connected or the write fails.
        """
        if self._closing is not None:
            raise DiscordInvalidState(
                "Connection is closing", code="CONNECTION_CLOSING"
            )
        writer = self._writer
        if writer is None or writer.is_closing():
            raise DiscordConnectionError("IPC socket is not connected")

        data = encode_frame(opcode, payload)
        try:
            writer.write(data)
        except (OSError, RuntimeError) as err:
            raise DiscordConnectionError("IPC socket write failed") from err
        _LOGGER.debug("[%s] Sent %s (%d bytes)", self._label, opcode.name, len(data))

    # -------------------------------------------------------------------------
    # Shutdown
    # -------------------------------------------------------------------------

    async def close(self) -> None:
        """Ask the remote side to end the stream and wait until it has.

        Concurrent callers share one close. Aborts the socket when the remote
        end does not close within ``close_timeout``; the close still counts as
        orderly and ``on_closed`` receives ``None``.
        """
        if self._closing is not None:
            await asyncio.shield(self._closing)
            return

        writer = self._writer
        if writer is None:
            return

        closing: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._closing = closing
        _LOGGER.debug("[%s] Closing connection", self._label)

        try:
            if writer.can_write_eof():
                writer.write_eof()
            else:
                writer.close()
        except OSError as err:
            _LOGGER.debug("[%s] Half-close failed: %s", self._label, err)
            self._teardown(DiscordConnectionError("IPC socket close failed"))

        try:
            await asyncio.wait_for(asyncio.shield(closing), timeout=self._config.close_timeout)
        except TimeoutError:
            _LOGGER.warning(
                "[%s] Remote did not close within %.1fs, terminating",
                self._label,
                self._config.close_timeout,
            )
            self._teardown(None)

    def terminate(self, reason: Exception | None = None) -> None:
        """Destroy the socket and timers immediately. Safe to call repeatedly.

        ``reason`` is what ``on_closed`` receives; it defaults to a
        ``DiscordConnectionClosed``.
        """
        self._teardown(reason or DiscordConnectionClosed("IPC connection terminated"))

    def _teardown(self, reason: Exception | None) -> None:
        writer = self._writer
        if writer is None:
            return

        task = self._read_task
        closing = self._closing

        self._reader = None
        self._writer = None
        self._read_task = None
        self._endpoint = None
        self._closing = None
        self._decoder.clear()
        self._cancel_timers()

        if task is not None and task is not asyncio.current_task():
            task.cancel()

        transport = writer.transport
        if transport is not None and not transport.is_closing():
            transport.abort()

        if closing is not None and not closing.done():
            closing.set_result(None)

        if reason is None:
            _LOGGER.info("[%s] Connection closed", self._label)
        else:
            _LOGGER.info("[%s] Connection closed: %s", self._label, reason)
        self._on_closed(reason)

    # -------------------------------------------------------------------------
    # Read side
    # -------------------------------------------------------------------------

    async def _read_loop(self, reader: asyncio.StreamReader) -> None:
        reason: Exception | None = None
        try:
            while True:
                data = await reader.read(READ_CHUNK_SIZE)
                if not data:
                    break
                for frame in self._decoder.feed(data):
                    self._arm_idle_timer()
                    self._on_frame(frame)
                    if self._reader is not reader:
                        # torn down from inside a frame handler
                        return
        except asyncio.CancelledError:
            raise
        except DiscordProtocolError as err:
            _LOGGER.warning("[%s] Protocol error: %s", self._label, err)
            reason = err
        except OSError as err:
            _LOGGER.warning("[%s] Socket error: %s", self._label, err)
            reason = DiscordConnectionError(f"IPC socket error: {err}")
            reason.__cause__ = err
        except Exception as err:
            _LOGGER.exception("[%s] Unexpected error in reader: %s", self._label, err)
            reason = DiscordConnectionError(f"Unexpected reader failure: {err}")
            reason.__cause__ = err

        if self._reader is reader:
            self._teardown(reason)

    # -------------------------------------------------------------------------
    # Keepalive
    # -------------------------------------------------------------------------

    def _cancel_timers(self) -> None:
        if self._idle_timer is not None:
            self._idle_timer.cancel()
            self._idle_timer = None
        if self._pong_timer is not None:
            self._pong_timer.cancel()
            self._pong_timer = None

    def _arm_idle_timer(self) -> None:
        self._cancel_timers()
        loop = asyncio.get_running_loop()
        self._idle_timer = loop.call_later(self._config.idle_timeout, self._on_idle)

    def _on_idle(self) -> None:
        self._idle_timer = None
        if self._writer is None or self._closing is not None:
            return
        _LOGGER.debug(
            "[%s] No traffic for %.1fs, sending PING",
            self._label,
            self._config.idle_timeout,
        )
        try:
            self.send(None, Opcode.PING)
        except DiscordClientError as err:
            _LOGGER.warning("[%s] Keepalive PING failed: %s", self._label, err)
            self._teardown(err)
            return
        loop = asyncio.get_running_loop()
        self._pong_timer = loop.call_later(
            self._config.ping_timeout, self._on_ping_timeout
        )

    def _on_ping_timeout(self) -> None:
        self._pong_timer = None
        _LOGGER.warning(
            "[%s] No PONG within %.1fs, connection presumed dead",
            self._label,
            self._config.ping_timeout,
        )
        self._teardown(DiscordTimeout("Keepalive PING went unanswered"))
