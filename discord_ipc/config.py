"""Connection settings and application credentials.

Settings are plain data. ``load_config`` reads them from a YAML file shaped
like::

    client_id: "123456789"
    client_secret: "..."
    redirect_uri: "http://localhost"
    ipc:
      idle_timeout: 60
      max_discovery_attempts: 10
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

DEFAULT_SCOPES: tuple[str, ...] = ("rpc",)
DEFAULT_API_BASE = "https://discord.com/api"

_ENDPOINT_NAME = "discord-ipc-"
_WINDOWS_PIPE_PREFIX = "\\\\?\\pipe\\"


class ConfigLoadError(Exception):
    """Raised when a configuration file cannot be loaded."""


def default_base_path() -> str:
    """Return the endpoint prefix the desktop app listens under."""
    if sys.platform == "win32":
        return f"{_WINDOWS_PIPE_PREFIX}{_ENDPOINT_NAME}"

    runtime_dir = (
        os.environ.get("XDG_RUNTIME_DIR")
        or os.environ.get("TMPDIR")
        or os.environ.get("TMP")
        or os.environ.get("TEMP")
        or "/tmp"
    )
    return os.path.join(runtime_dir.rstrip("/"), _ENDPOINT_NAME)


@dataclass(frozen=True)
class IpcConfig:
    """Transport and session settings.

    Attributes:
        base_path: Endpoint prefix; attempt ``n`` connects to ``base_path + n``.
        max_discovery_attempts: Number of endpoint suffixes to try.
        idle_timeout: Seconds without inbound frames before a PING is sent.
        ping_timeout: Seconds to wait after the PING before giving up.
        connect_timeout: Seconds allowed for each discovery attempt.
        close_timeout: Seconds a graceful close waits for the remote end.
        reconnect_delay: Base delay for the reconnect supervisor.
        reconnect_max_delay: Backoff cap for the reconnect supervisor.
        scopes: OAuth2 scopes requested by AUTHORIZE.
        api_base: Base URL for HTTPS API calls.
    """

    base_path: str = field(default_factory=default_base_path)
    max_discovery_attempts: int = 10
    idle_timeout: float = 60.0
    ping_timeout: float = 10.0
    connect_timeout: float = 5.0
    close_timeout: float = 5.0
    reconnect_delay: float = 60.0
    reconnect_max_delay: float = 300.0
    scopes: tuple[str, ...] = DEFAULT_SCOPES
    api_base: str = DEFAULT_API_BASE

    def __post_init__(self) -> None:
        if not self.base_path:
            raise ValueError("base_path must not be empty")
        if self.max_discovery_attempts < 1:
            raise ValueError("max_discovery_attempts must be at least 1")
        for name in (
            "idle_timeout",
            "ping_timeout",
            "connect_timeout",
            "close_timeout",
            "reconnect_delay",
            "reconnect_max_delay",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        # YAML hands us lists
        object.__setattr__(self, "scopes", tuple(self.scopes))

    def endpoint(self, attempt: int) -> str:
        """Return the endpoint path for discovery attempt ``attempt``."""
        return f"{self.base_path}{attempt}"

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> IpcConfig:
        """Build settings from a mapping of field names.

        Raises:
            ConfigLoadError: If the mapping contains unknown keys or bad values.
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigLoadError(f"Unknown ipc option(s): {', '.join(unknown)}")
        try:
            return cls(**data)
        except (TypeError, ValueError) as err:
            raise ConfigLoadError(f"Invalid ipc options: {err}") from err


@dataclass
class Credentials:
    """Application credentials; ``access_token`` is filled in by the session."""

    client_id: str
    client_secret: str | None = None
    redirect_uri: str | None = None
    access_token: str | None = field(default=None, repr=False)


def load_config(path: Path | str) -> tuple[IpcConfig, Credentials]:
    """Load settings and credentials from a YAML file."""
    path = Path(path)
    if not path.exists():
        raise ConfigLoadError(f"File not found: {path}")
    with path.open() as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ConfigLoadError(f"Expected a mapping at top level of {path}")

    client_id = data.get("client_id")
    if client_id is None:
        raise ConfigLoadError(f"client_id is required in {path}")

    credentials = Credentials(
        client_id=str(client_id),
        client_secret=data.get("client_secret"),
        redirect_uri=data.get("redirect_uri"),
        access_token=data.get("access_token"),
    )
    config = IpcConfig.from_mapping(data.get("ipc") or {})
    return config, credentials
