"""Protocol session for the Discord desktop app.

This module drives one IPC conversation on top of ``IpcTransport``:
- Handshake and READY wait
- AUTHORIZE / code exchange / AUTHENTICATE
- Nonce-correlated command invocations
- DISPATCH fan-out to listeners
- Graceful close and forced termination

Retries live in ``monitor.ConnectionMonitor``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

import aiohttp

from .config import Credentials, IpcConfig
from .errors import (
    DiscordAuthError,
    DiscordClientError,
    DiscordConnectionClosed,
    DiscordInvalidState,
    DiscordProtocolError,
    DiscordRemoteError,
)
from .events import DispatchRegistry
from .http import DiscordHttpClient
from .protocol import (
    DISPATCH,
    READY_EVENT,
    Frame,
    Opcode,
    build_command,
    build_handshake,
    is_dispatch,
    new_nonce,
    parse_command_reply,
)
from .transport import IpcTransport

_LOGGER = logging.getLogger(__name__)


class SessionState(Enum):
    """Session lifecycle states."""

    IDLE = "idle"
    CONNECTING = "connecting"
    HANDSHAKING = "handshaking"
    AUTHORIZING = "authorizing"
    AUTHENTICATING = "authenticating"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"
    TERMINATED = "terminated"


@dataclass(slots=True)
class _PendingInvocation:
    """Track one outstanding command awaiting its reply."""

    nonce: str
    cmd: str
    future: asyncio.Future[Any]


class DiscordSession:
    """Authenticated RPC session with the Discord desktop app.

    Usage:
        session = DiscordSession(Credentials(client_id="42", client_secret="s"))
        session.events.add_listener("VOICE_STATE_CREATE", on_join)
        await session.connect()
        await session.subscribe("VOICE_STATE_CREATE", {"channel_id": "123"})
        channel = await session.invoke("GET_CHANNEL", {"channel_id": "123"})
        await session.close()
    """

    def __init__(
        self,
        credentials: Credentials,
        *,
        config: IpcConfig | None = None,
        http_client: DiscordHttpClient | None = None,
    ) -> None:
        """Initialize session.

        Args:
            credentials: Application credentials. ``access_token`` is reused
                when set and updated after each successful AUTHENTICATE.
            config: Transport and session settings.
            http_client: Client used for the code exchange. A short-lived
                aiohttp session is opened when omitted.
        """
        self.credentials = credentials
        self._config = config or IpcConfig()
        self._http = http_client
        self._label = str(credentials.client_id)

        self._transport = IpcTransport(
            self._config,
            on_frame=self._handle_frame,
            on_closed=self._handle_transport_closed,
            label=self._label,
        )

        # Connection state
        self._state = SessionState.IDLE
        self._connect_task: asyncio.Task[None] | None = None
        self._ready: asyncio.Future[dict[str, Any]] | None = None
        self._connection_live = False
        self._terminating = False
        self._remote_close: Exception | None = None

        # Invocations
        self._pending: dict[str, _PendingInvocation] = {}
        self._nonce_prefix = new_nonce()
        self._nonce_seq = 0

        # Identity
        self.user: dict[str, Any] | None = None
        self.application: dict[str, Any] | None = None

        self.events = DispatchRegistry()

        # Callbacks
        self._opened_callback: Callable[[], None] | None = None
        self._ready_callback: Callable[[Any, Any], None] | None = None
        self._closed_callback: Callable[[Exception | None], None] | None = None
        self._error_callback: Callable[[str, Exception], None] | None = None
        self._state_callback: Callable[[SessionState], None] | None = None

    # -------------------------------------------------------------------------
    # Public API: Properties
    # -------------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state is SessionState.OPEN

    @property
    def access_token(self) -> str | None:
        return self.credentials.access_token

    @property
    def pending_count(self) -> int:
        """Number of invocations still awaiting a reply."""
        return len(self._pending)

    # -------------------------------------------------------------------------
    # Public API: Callbacks
    # -------------------------------------------------------------------------

    def on_opened(self, callback: Callable[[], None]) -> None:
        """Register callback for the socket being connected (before handshake)."""
        self._opened_callback = callback

    def on_ready(self, callback: Callable[[Any, Any], None]) -> None:
        """Register callback for the session reaching OPEN.

        Callback receives ``(user, application)``.
        """
        self._ready_callback = callback

    def on_closed(self, callback: Callable[[Exception | None], None]) -> None:
        """Register callback for the end of a connection.

        Callback receives ``None`` for an orderly close, otherwise the cause.
        """
        self._closed_callback = callback

    def on_error(self, callback: Callable[[str, Exception], None]) -> None:
        """Register callback for transport, protocol and auth failures.

        Callback receives ``(kind, error)`` where ``kind`` is ``error.code``.
        """
        self._error_callback = callback

    def on_state_changed(self, callback: Callable[[SessionState], None]) -> None:
        self._state_callback = callback

    # -------------------------------------------------------------------------
    # Public API: Connection Management
    # -------------------------------------------------------------------------

    async def connect(self) -> None:
        """Connect, handshake and authenticate.

        Concurrent callers attach to the connect already in flight.

        Raises:
            DiscordInvalidState: If the client id is missing, the session is
                open, closing or terminated.
            DiscordTransportUnavailable: If no endpoint accepted.
            DiscordProtocolError: If the handshake went wrong.
            DiscordAuthError: If the code exchange or AUTHENTICATE failed.
            DiscordConnectionClosed: If the connection ended mid-connect.
        """
        if self._connect_task is None:
            self._check_can_connect()
            self._connect_task = asyncio.create_task(self._connect())
            self._connect_task.add_done_callback(self._connect_done)
        await asyncio.shield(self._connect_task)

    async def close(self) -> None:
        """Gracefully close the connection; the session may connect again."""
        if self._state in (
            SessionState.IDLE,
            SessionState.CLOSED,
            SessionState.TERMINATED,
        ):
            return

        _LOGGER.info("[%s] Closing session", self._label)
        self._set_state(SessionState.CLOSING)
        if not self._transport.is_connected:
            # still discovering; _connect notices the state change
            self._set_state(SessionState.CLOSED)
            return
        await self._transport.close()

    def terminate(self) -> None:
        """Tear everything down immediately.

        Every pending invocation is rejected before this returns. The session
        is unusable afterwards. Calling it again does nothing.
        """
        if self._state is SessionState.TERMINATED:
            return

        _LOGGER.info("[%s] Terminating session", self._label)
        self._terminating = True
        try:
            self._transport.terminate()
        finally:
            self._terminating = False

        self.credentials.access_token = None
        self.user = None
        self.application = None
        self._set_state(SessionState.TERMINATED)

    # -------------------------------------------------------------------------
    # Public API: Commands
    # -------------------------------------------------------------------------

    async def invoke(
        self,
        cmd: str,
        args: dict[str, Any] | None = None,
        evt: str | None = None,
    ) -> Any:
        """Send a command and wait for its reply data.

        Raises:
            DiscordInvalidState: If the session is not OPEN. Nothing is sent.
            DiscordRemoteError: If the app answered with an ERROR event.
            DiscordConnectionClosed: If the connection ended first.
        """
        self._require_open()
        return await self._invoke(cmd, args, evt)

    def send(self, payload: Any, opcode: Opcode = Opcode.MESSAGE) -> None:
        """Write a raw frame without tracking a reply."""
        self._require_open()
        self._transport.send(payload, opcode)

    async def subscribe(self, event: str, args: dict[str, Any] | None = None) -> Any:
        """Ask the app to start dispatching ``event``.

        Local listeners are managed separately through ``events``.
        """
        self._require_open()
        return await self._invoke("SUBSCRIBE", args, event)

    async def unsubscribe(self, event: str, args: dict[str, Any] | None = None) -> Any:
        """Ask the app to stop dispatching ``event``."""
        self._require_open()
        return await self._invoke("UNSUBSCRIBE", args, event)

    # -------------------------------------------------------------------------
    # Internal: Connection State Machine
    # -------------------------------------------------------------------------

    def _set_state(self, state: SessionState) -> None:
        """Update state and notify callback.

        TERMINATED is final and CLOSING only moves on to CLOSED or TERMINATED.
        """
        if self._state is SessionState.TERMINATED or self._state is state:
            return
        if self._state is SessionState.CLOSING and state not in (
            SessionState.CLOSED,
            SessionState.TERMINATED,
        ):
            return
        _LOGGER.debug("[%s] State: %s → %s", self._label, self._state.value, state.value)
        self._state = state
        if self._state_callback:
            self._notify(self._state_callback, state)

    def _check_can_connect(self) -> None:
        if self._state is SessionState.TERMINATED:
            raise DiscordInvalidState(
                "Session was terminated", code="SESSION_TERMINATED"
            )
        if self._state is SessionState.CLOSING:
            raise DiscordInvalidState(
                "Connection is closing", code="CONNECTION_CLOSING"
            )
        if self._state is SessionState.OPEN:
            raise DiscordInvalidState(
                "Connection already open", code="CONNECTION_IN_USE"
            )
        if not self.credentials.client_id:
            raise DiscordInvalidState("client_id is required", code="CLIENT_ID_MISSING")

    def _check_not_closing(self) -> None:
        if self._state in (
            SessionState.CLOSING,
            SessionState.CLOSED,
            SessionState.TERMINATED,
        ) or not self._transport.is_connected:
            raise DiscordConnectionClosed("Session closed during authentication")

    def _require_open(self) -> None:
        if self._state is not SessionState.OPEN:
            raise DiscordInvalidState(
                f"Connection is not open (state: {self._state.value})"
            )

    def _connect_done(self, task: asyncio.Task[None]) -> None:
        self._connect_task = None
        if not task.cancelled():
            # mark retrieved; callers see it through shield()
            task.exception()

    async def _connect(self) -> None:
        self._set_state(SessionState.CONNECTING)
        self._remote_close = None

        try:
            await self._transport.connect()
        except DiscordClientError as err:
            _LOGGER.warning("[%s] Connection failed: %s", self._label, err)
            self._set_state(SessionState.CLOSED)
            self._emit_error(err)
            raise

        if self._state is not SessionState.CONNECTING:
            # closed or terminated while discovering
            self._transport.terminate()
            raise DiscordConnectionClosed("Session closed while connecting")

        self._connection_live = True
        self._nonce_prefix = new_nonce()
        self._nonce_seq = 0
        if self._opened_callback:
            self._notify(self._opened_callback)

        self._ready = asyncio.get_running_loop().create_future()
        self._set_state(SessionState.HANDSHAKING)

        try:
            self._transport.send(
                build_handshake(self.credentials.client_id), Opcode.HANDSHAKE
            )
            ready = await self._ready
            self.user = ready.get("user")
            _LOGGER.debug("[%s] READY received", self._label)

            await self._authenticate()
        except asyncio.CancelledError:
            self._transport.terminate()
            self._set_state(SessionState.CLOSED)
            raise
        except DiscordClientError as err:
            _LOGGER.error("[%s] Connect failed: %s", self._label, err)
            self._transport.terminate(err)
            self._set_state(SessionState.CLOSED)
            raise
        finally:
            self._ready = None

        if not self._transport.is_connected or self._state is SessionState.CLOSING:
            self._transport.terminate()
            raise DiscordConnectionClosed("Connection ended during authentication")

        self._set_state(SessionState.OPEN)
        _LOGGER.info("[%s] Session open", self._label)
        if self._ready_callback:
            self._notify(self._ready_callback, self.user, self.application)

    async def _authenticate(self) -> None:
        token = self.credentials.access_token
        if not token:
            self._check_not_closing()
            self._set_state(SessionState.AUTHORIZING)
            reply = await self._invoke(
                "AUTHORIZE",
                {
                    "client_id": self.credentials.client_id,
                    "scopes": list(self._config.scopes),
                    "prompt": "none",
                },
            )
            code = reply.get("code") if isinstance(reply, dict) else None
            if not code:
                raise DiscordProtocolError("AUTHORIZE reply carried no code")
            token = await self._exchange_code(code)

        self._check_not_closing()
        self._set_state(SessionState.AUTHENTICATING)
        try:
            auth = await self._invoke("AUTHENTICATE", {"access_token": token})
        except DiscordRemoteError as err:
            self.credentials.access_token = None
            raise DiscordAuthError(
                DiscordAuthError.AUTHENTICATE_FAILURE,
                f"AUTHENTICATE rejected: {err}",
            ) from err

        if not isinstance(auth, dict):
            self.credentials.access_token = None
            raise DiscordProtocolError("AUTHENTICATE reply is not an object")

        self.application = auth.get("application")
        self.user = auth.get("user", self.user)
        self.credentials.access_token = auth.get("access_token") or token

    async def _exchange_code(self, code: str) -> str:
        """Trade an AUTHORIZE code for an access token over HTTPS."""
        try:
            if self._http is not None:
                return await self._exchange_with(self._http, code)
            async with aiohttp.ClientSession() as http_session:
                client = DiscordHttpClient(http_session, api_base=self._config.api_base)
                return await self._exchange_with(client, code)
        except DiscordClientError as err:
            raise DiscordAuthError(
                DiscordAuthError.CODE_EXCHANGE_FAILURE,
                f"Authorization code exchange failed: {err}",
            ) from err

    async def _exchange_with(self, client: DiscordHttpClient, code: str) -> str:
        return await client.exchange_code(
            code,
            client_id=self.credentials.client_id,
            client_secret=self.credentials.client_secret,
            redirect_uri=self.credentials.redirect_uri,
        )

    # -------------------------------------------------------------------------
    # Internal: Invocations
    # -------------------------------------------------------------------------

    def _next_nonce(self) -> str:
        # unique per connection: random prefix plus a sequence number
        self._nonce_seq += 1
        return f"{self._nonce_prefix}-{self._nonce_seq}"

    async def _invoke(
        self, cmd: str, args: dict[str, Any] | None, evt: str | None = None
    ) -> Any:
        nonce = self._next_nonce()
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[nonce] = _PendingInvocation(nonce, cmd, future)
        try:
            self._transport.send(build_command(cmd, args, evt=evt, nonce=nonce))
        except DiscordClientError:
            self._pending.pop(nonce, None)
            raise
        _LOGGER.debug("[%s] Invoked %s nonce=%s", self._label, cmd, nonce)
        return await future

    def _reject_pending(self, reason: Exception | None) -> None:
        pending = self._pending
        self._pending = {}
        for invocation in pending.values():
            if invocation.future.done():
                continue
            error = DiscordConnectionClosed(
                f"Connection closed before {invocation.cmd} completed"
            )
            error.__cause__ = reason
            invocation.future.set_exception(error)

        ready = self._ready
        if ready is not None and not ready.done():
            error = DiscordConnectionClosed("Connection closed during handshake")
            error.__cause__ = reason
            ready.set_exception(error)

    # -------------------------------------------------------------------------
    # Internal: Frame Handlers
    # -------------------------------------------------------------------------

    def _handle_frame(self, frame: Frame) -> None:
        if self._ready is not None and not self._ready.done():
            self._handle_handshake_frame(frame)
            return

        if frame.opcode is Opcode.MESSAGE:
            self._handle_message(frame.payload)
        elif frame.opcode is Opcode.PING:
            try:
                self._transport.send(frame.payload, Opcode.PONG)
            except DiscordClientError as err:
                _LOGGER.warning("[%s] Failed to answer PING: %s", self._label, err)
        elif frame.opcode is Opcode.PONG:
            _LOGGER.debug("[%s] PONG received", self._label)
        elif frame.opcode is Opcode.CLOSE:
            details = frame.payload if isinstance(frame.payload, dict) else {}
            _LOGGER.warning(
                "[%s] Remote is closing: %s %s",
                self._label,
                details.get("code"),
                details.get("message"),
            )
            self._remote_close = DiscordConnectionClosed(
                f"Remote closed the connection: {details.get('code')} "
                f"{details.get('message')}"
            )
        else:
            _LOGGER.debug("[%s] Ignoring %s frame", self._label, frame.opcode.name)

    def _handle_handshake_frame(self, frame: Frame) -> None:
        ready = self._ready
        if ready is None:
            return

        if frame.opcode is Opcode.MESSAGE and is_dispatch(frame.payload, READY_EVENT):
            data = frame.payload.get("data")
            ready.set_result(data if isinstance(data, dict) else {})
            self._handle_message(frame.payload)
            return

        if frame.opcode is Opcode.CLOSE:
            details = frame.payload if isinstance(frame.payload, dict) else {}
            error = DiscordProtocolError(
                f"Handshake refused: {details.get('code')} {details.get('message')}"
            )
        elif frame.opcode is Opcode.MESSAGE and is_dispatch(frame.payload):
            error = DiscordProtocolError(
                f"Expected READY, got {frame.payload.get('evt')} during handshake"
            )
        else:
            error = DiscordProtocolError(
                f"Unexpected {frame.opcode.name} frame during handshake"
            )
        ready.set_exception(error)
        # later frames of this read belong to a rejected connection
        self._transport.terminate(error)

    def _handle_message(self, message: Any) -> None:
        if not isinstance(message, dict):
            _LOGGER.warning("[%s] Ignoring non-object message", self._label)
            return

        nonce = message.get("nonce")
        invocation = self._pending.pop(nonce, None) if isinstance(nonce, str) else None
        if invocation is not None:
            if invocation.future.done():
                return
            try:
                invocation.future.set_result(parse_command_reply(message))
            except DiscordRemoteError as err:
                _LOGGER.debug(
                    "[%s] %s failed: %s %s", self._label, invocation.cmd, err.code, err
                )
                invocation.future.set_exception(err)
            return

        if message.get("cmd") == DISPATCH:
            event_name = message.get("evt")
            if isinstance(event_name, str):
                self.events.emit(event_name, message.get("data"))
            return

        _LOGGER.debug(
            "[%s] Unmatched %s reply (nonce=%s)", self._label, message.get("cmd"), nonce
        )

    def _handle_transport_closed(self, reason: Exception | None) -> None:
        live = self._connection_live
        local_close = self._state is SessionState.CLOSING
        self._connection_live = False
        if reason is None:
            reason = self._remote_close
        self._remote_close = None

        self._reject_pending(reason)
        self.user = None
        self.application = None
        self._set_state(
            SessionState.TERMINATED if self._terminating else SessionState.CLOSED
        )

        if local_close:
            # requested through close()
            reason = None
        if reason is not None and not self._terminating:
            self._emit_error(reason)
        if live and self._closed_callback:
            self._notify(self._closed_callback, reason)

    # -------------------------------------------------------------------------
    # Internal: Notifications
    # -------------------------------------------------------------------------

    def _emit_error(self, err: Exception) -> None:
        if self._error_callback:
            kind = str(getattr(err, "code", type(err).__name__))
            self._notify(self._error_callback, kind, err)

    def _notify(self, callback: Callable[..., Any], *args: Any) -> None:
        try:
            callback(*args)
        except Exception as err:
            _LOGGER.exception("[%s] Callback error: %s", self._label, err)
