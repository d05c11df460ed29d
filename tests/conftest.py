"""Pytest configuration and fixtures for discord_ipc tests."""

from __future__ import annotations

import asyncio
import shutil
import sys
import tempfile
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from discord_ipc.config import Credentials, IpcConfig
from discord_ipc.protocol import Frame, FrameDecoder, Opcode, encode_frame

requires_unix_sockets = pytest.mark.skipif(
    sys.platform == "win32", reason="Unix domain sockets required"
)


@pytest.fixture
def mock_session() -> MagicMock:
    """Create a mock aiohttp ClientSession."""
    import aiohttp

    return MagicMock(spec=aiohttp.ClientSession)


def create_mock_response(
    status: int = 200,
    json_data: Any = None,
    text_data: str | None = None,
) -> AsyncMock:
    """Create a configured mock response.

    Args:
        status: HTTP status code
        json_data: Data to return from json() call
        text_data: Data to return from text() call

    Returns:
        Configured AsyncMock response
    """
    response = AsyncMock()
    response.status = status

    if json_data is not None:
        response.json.return_value = json_data
    else:
        response.json.side_effect = ValueError("no json")
    if text_data is not None:
        response.text.return_value = text_data

    response.__aenter__.return_value = response
    response.__aexit__.return_value = None

    return response


class FakeDiscordApp:
    """Minimal stand-in for the desktop app listening on a Unix socket."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self.frames: asyncio.Queue[Frame] = asyncio.Queue()
        self.connections = 0
        self.close_on_eof = True
        self.eof_received = asyncio.Event()
        self.client_connected = asyncio.Event()
        self._server: asyncio.AbstractServer | None = None
        self._writer: asyncio.StreamWriter | None = None

    async def start(self) -> None:
        self._server = await asyncio.start_unix_server(self._handle, path=str(self.path))

    async def stop(self) -> None:
        self.disconnect()
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()

    async def _handle(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        self.connections += 1
        self._writer = writer
        self.eof_received.clear()
        self.client_connected.set()
        decoder = FrameDecoder()
        try:
            while data := await reader.read(4096):
                for frame in decoder.feed(data):
                    self.frames.put_nowait(frame)
        except ConnectionError:
            return
        self.eof_received.set()
        if self.close_on_eof:
            writer.close()

    async def wait_connected(self, timeout: float = 2.0) -> None:
        await asyncio.wait_for(self.client_connected.wait(), timeout)

    async def next_frame(self, timeout: float = 2.0) -> Frame:
        return await asyncio.wait_for(self.frames.get(), timeout)

    def send(self, opcode: Opcode, payload: Any = None) -> None:
        self.send_raw(encode_frame(opcode, payload))

    def send_raw(self, data: bytes) -> None:
        assert self._writer is not None, "no client connected"
        self._writer.write(data)

    def reply(self, request: Frame, data: Any, *, evt: str | None = None) -> None:
        self.send(
            Opcode.MESSAGE,
            {
                "cmd": request.payload["cmd"],
                "nonce": request.payload["nonce"],
                "evt": evt,
                "data": data,
            },
        )

    def dispatch(self, evt: str, data: Any = None) -> None:
        self.send(
            Opcode.MESSAGE, {"cmd": "DISPATCH", "evt": evt, "nonce": None, "data": data}
        )

    def send_ready(self, user: dict[str, Any] | None = None) -> None:
        self.dispatch("READY", {"v": 1, "user": user or {"id": "1", "username": "ready"}})

    def disconnect(self) -> None:
        self.client_connected.clear()
        if self._writer is not None:
            self._writer.close()
            self._writer = None


@pytest.fixture
def ipc_dir():
    """Short temporary directory for socket files (sun_path is limited)."""
    path = Path(tempfile.mkdtemp(prefix="ipc-", dir="/tmp" if Path("/tmp").is_dir() else None))
    yield path
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def ipc_config(ipc_dir: Path) -> IpcConfig:
    return IpcConfig(
        base_path=str(ipc_dir / "discord-ipc-"),
        max_discovery_attempts=3,
        connect_timeout=1.0,
        close_timeout=1.0,
    )


@pytest.fixture
def credentials() -> Credentials:
    return Credentials(
        client_id="42",
        client_secret="shh",
        redirect_uri="http://localhost/callback",
    )


@pytest_asyncio.fixture
async def fake_app(ipc_dir: Path):
    app = FakeDiscordApp(ipc_dir / "discord-ipc-0")
    await app.start()
    yield app
    await app.stop()


AUTH_USER = {"id": "7", "username": "tester"}
AUTH_APPLICATION = {"id": "42", "name": "overlay"}


async def complete_handshake(app: FakeDiscordApp, token: str = "cached") -> None:
    """Answer HANDSHAKE and AUTHENTICATE for a session holding ``token``."""
    handshake = await app.next_frame()
    assert handshake.opcode is Opcode.HANDSHAKE
    app.send_ready()

    authenticate = await app.next_frame()
    assert authenticate.payload["cmd"] == "AUTHENTICATE"
    assert authenticate.payload["args"] == {"access_token": token}
    app.reply(
        authenticate,
        {"application": AUTH_APPLICATION, "user": AUTH_USER, "access_token": token},
    )
