"""Frame codec and message builders for the Discord local IPC protocol.

Wire format (little-endian):

    +----------------+----------------+--------------------------+
    | opcode (int32) | length (uint32)| length bytes UTF-8 JSON  |
    +----------------+----------------+--------------------------+

A zero-length frame carries no payload. Nothing in this module does I/O.
"""

from __future__ import annotations

import json
import struct
import uuid
from collections.abc import Iterator
from dataclasses import dataclass
from enum import IntEnum
from typing import Any

from .errors import DiscordProtocolError, DiscordRemoteError

HANDSHAKE_VERSION = 1

_HEADER = struct.Struct("<iI")
HEADER_SIZE = _HEADER.size

# Upper bound on a single payload; anything larger is treated as a corrupt header.
MAX_PAYLOAD_SIZE = 64 * 1024 * 1024

DISPATCH = "DISPATCH"
ERROR_EVENT = "ERROR"
READY_EVENT = "READY"


class Opcode(IntEnum):
    """Frame opcodes."""

    HANDSHAKE = 0
    MESSAGE = 1
    CLOSE = 2
    PING = 3
    PONG = 4


@dataclass(frozen=True)
class Frame:
    """One decoded frame."""

    opcode: Opcode
    payload: Any = None


def encode_frame(opcode: Opcode | int, payload: Any = None) -> bytes:
    """Encode a frame; a ``None`` payload produces an empty body."""
    if payload is None:
        body = b""
    else:
        body = json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode(
            "utf-8"
        )
    return _HEADER.pack(int(opcode), len(body)) + body


def _decode_at(buffer: bytes | bytearray, offset: int = 0) -> tuple[Frame, int] | None:
    """Decode the frame starting at ``offset``.

    Returns the frame and the offset just past it, or None when the buffer
    does not yet hold the complete frame. The buffer is never modified.
    """
    if len(buffer) - offset < HEADER_SIZE:
        return None

    raw_opcode, length = _HEADER.unpack_from(buffer, offset)
    if length > MAX_PAYLOAD_SIZE:
        raise DiscordProtocolError(f"Frame length {length} exceeds limit")

    end = offset + HEADER_SIZE + length
    if len(buffer) < end:
        return None

    try:
        opcode = Opcode(raw_opcode)
    except ValueError as err:
        raise DiscordProtocolError(f"Unknown opcode {raw_opcode}") from err

    payload = None
    if length:
        body = bytes(buffer[offset + HEADER_SIZE : end])
        try:
            payload = json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as err:
            raise DiscordProtocolError("Frame payload is not valid JSON") from err

    return Frame(opcode, payload), end


def try_decode_frame(buffer: bytes | bytearray) -> tuple[Frame, bytes] | None:
    """Decode one frame from the front of ``buffer``.

    Returns ``(frame, remaining)`` where ``remaining`` is everything past the
    consumed ``8 + length`` bytes, or None if more data is needed.

    Raises:
        DiscordProtocolError: On an unknown opcode, oversized length, or a
            body that is not JSON.
    """
    result = _decode_at(buffer)
    if result is None:
        return None
    frame, end = result
    return frame, bytes(buffer[end:])


class FrameDecoder:
    """Accumulates stream bytes and yields complete frames in arrival order."""

    def __init__(self) -> None:
        self._buffer = bytearray()

    def __len__(self) -> int:
        return len(self._buffer)

    def feed(self, data: bytes) -> Iterator[Frame]:
        """Append ``data`` and yield every frame that is now complete."""
        self._buffer.extend(data)
        while True:
            result = _decode_at(self._buffer)
            if result is None:
                return
            frame, end = result
            del self._buffer[:end]
            yield frame

    def clear(self) -> None:
        self._buffer.clear()


def new_nonce() -> str:
    """Return a fresh UUID4-shaped nonce."""
    return str(uuid.uuid4())


def build_handshake(client_id: str) -> dict[str, Any]:
    """Build the HANDSHAKE payload."""
    return {"v": HANDSHAKE_VERSION, "client_id": client_id}


def build_command(
    cmd: str,
    args: dict[str, Any] | None = None,
    *,
    evt: str | None = None,
    nonce: str | None = None,
) -> dict[str, Any]:
    """Build an outbound command message.

    ``evt`` and ``nonce`` are omitted when not given.
    """
    message: dict[str, Any] = {"cmd": cmd, "args": args or {}}
    if evt is not None:
        message["evt"] = evt
    if nonce is not None:
        message["nonce"] = nonce
    return message


def is_dispatch(message: Any, event: str | None = None) -> bool:
    """Return True if ``message`` is a DISPATCH (optionally of ``event``)."""
    if not isinstance(message, dict) or message.get("cmd") != DISPATCH:
        return False
    return event is None or message.get("evt") == event


def parse_command_reply(message: dict[str, Any]) -> Any:
    """Return the ``data`` of a command reply.

    Raises:
        DiscordRemoteError: If the reply is an ERROR event.
    """
    data = message.get("data")
    if message.get("evt") == ERROR_EVENT:
        details = data if isinstance(data, dict) else {}
        raise DiscordRemoteError(
            details.get("code"),
            str(details.get("message", "Unknown remote error")),
            details,
        )
    return data
