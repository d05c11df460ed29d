"""Client for the Discord desktop app's local IPC protocol."""

__version__ = "0.1.0"

from .commands import Command, DiscordCommands, Event
from .config import ConfigLoadError, Credentials, IpcConfig, load_config
from .errors import (
    DiscordAuthError,
    DiscordClientError,
    DiscordConnectionClosed,
    DiscordConnectionError,
    DiscordInvalidState,
    DiscordProtocolError,
    DiscordRemoteError,
    DiscordResponseError,
    DiscordTimeout,
    DiscordTransportUnavailable,
)
from .events import DispatchRegistry
from .http import DiscordHttpClient
from .monitor import ConnectionMonitor
from .protocol import Frame, FrameDecoder, Opcode, encode_frame, try_decode_frame
from .session import DiscordSession, SessionState
from .transport import IpcTransport

__all__ = [
    "Command",
    "ConfigLoadError",
    "ConnectionMonitor",
    "Credentials",
    "DiscordAuthError",
    "DiscordClientError",
    "DiscordCommands",
    "DiscordConnectionClosed",
    "DiscordConnectionError",
    "DiscordHttpClient",
    "DiscordInvalidState",
    "DiscordProtocolError",
    "DiscordRemoteError",
    "DiscordResponseError",
    "DiscordSession",
    "DiscordTimeout",
    "DiscordTransportUnavailable",
    "DispatchRegistry",
    "Event",
    "Frame",
    "FrameDecoder",
    "IpcConfig",
    "IpcTransport",
    "Opcode",
    "SessionState",
    "__version__",
    "encode_frame",
    "load_config",
    "try_decode_frame",
]
