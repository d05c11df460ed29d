"""Client error types for the Discord local IPC client."""

from __future__ import annotations

from typing import Any


class DiscordClientError(Exception):
    """Base error for Discord IPC client failures."""

    code: str = "IPC:CLIENT_ERROR"


class DiscordTimeout(DiscordClientError):
    """Timeout while communicating with the desktop app or the API."""

    code = "IPC:TIMEOUT"


class DiscordConnectionError(DiscordClientError):
    """Connection to the desktop app or the API failed."""

    code = "IPC:CONNECTION_ERROR"


class DiscordConnectionClosed(DiscordConnectionError):
    """The IPC connection ended while the operation was outstanding."""

    code = "IPC:CONNECTION_CLOSED"


class DiscordTransportUnavailable(DiscordConnectionError):
    """No local endpoint accepted a connection."""

    code = "IPC:FAILED_TO_CONNECT"


class DiscordProtocolError(DiscordClientError):
    """Malformed frame or unexpected traffic."""

    code = "IPC:PROTOCOL_ERROR"


class DiscordInvalidState(DiscordClientError):
    """Operation attempted in a session state that does not allow it."""

    code = "CONNECTION_NOT_OPEN"

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code


class DiscordRemoteError(DiscordClientError):
    """ERROR reply from the desktop app for one invocation."""

    def __init__(self, code: Any, message: str, data: dict[str, Any]) -> None:
        super().__init__(message)
        self.code = code
        self.data = data


class DiscordResponseError(DiscordClientError):
    """HTTP response error from the Discord API."""

    code = "HTTP:RESPONSE_ERROR"

    def __init__(self, status: int, message: str, body: Any = None) -> None:
        super().__init__(message)
        self.status = status
        self.body = body


class DiscordAuthError(DiscordClientError):
    """Authorization code exchange or AUTHENTICATE failed."""

    CODE_EXCHANGE_FAILURE = "CODE_EXCHANGE_FAILURE"
    AUTHENTICATE_FAILURE = "AUTHENTICATE_FAILURE"

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
