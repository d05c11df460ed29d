"""Typed wrappers for the supported RPC commands.

New commands are added to ``Command`` and, where callers want a typed entry
point, given a one-line wrapper on ``DiscordCommands``.
"""

from __future__ import annotations

import asyncio
from enum import StrEnum
from typing import Any

from .session import DiscordSession


class Command(StrEnum):
    """RPC command names."""

    DISPATCH = "DISPATCH"
    AUTHORIZE = "AUTHORIZE"
    AUTHENTICATE = "AUTHENTICATE"
    GET_GUILD = "GET_GUILD"
    GET_GUILDS = "GET_GUILDS"
    GET_CHANNEL = "GET_CHANNEL"
    GET_CHANNELS = "GET_CHANNELS"
    SUBSCRIBE = "SUBSCRIBE"
    UNSUBSCRIBE = "UNSUBSCRIBE"
    SET_USER_VOICE_SETTINGS = "SET_USER_VOICE_SETTINGS"
    SELECT_VOICE_CHANNEL = "SELECT_VOICE_CHANNEL"
    GET_SELECTED_VOICE_CHANNEL = "GET_SELECTED_VOICE_CHANNEL"
    SELECT_TEXT_CHANNEL = "SELECT_TEXT_CHANNEL"
    GET_VOICE_SETTINGS = "GET_VOICE_SETTINGS"
    SET_VOICE_SETTINGS = "SET_VOICE_SETTINGS"
    SET_ACTIVITY = "SET_ACTIVITY"


class Event(StrEnum):
    """DISPATCH event names."""

    READY = "READY"
    ERROR = "ERROR"
    GUILD_STATUS = "GUILD_STATUS"
    GUILD_CREATE = "GUILD_CREATE"
    CHANNEL_CREATE = "CHANNEL_CREATE"
    VOICE_CHANNEL_SELECT = "VOICE_CHANNEL_SELECT"
    VOICE_STATE_CREATE = "VOICE_STATE_CREATE"
    VOICE_STATE_UPDATE = "VOICE_STATE_UPDATE"
    VOICE_STATE_DELETE = "VOICE_STATE_DELETE"
    VOICE_SETTINGS_UPDATE = "VOICE_SETTINGS_UPDATE"
    VOICE_CONNECTION_STATUS = "VOICE_CONNECTION_STATUS"
    SPEAKING_START = "SPEAKING_START"
    SPEAKING_STOP = "SPEAKING_STOP"
    MESSAGE_CREATE = "MESSAGE_CREATE"
    MESSAGE_UPDATE = "MESSAGE_UPDATE"
    MESSAGE_DELETE = "MESSAGE_DELETE"
    NOTIFICATION_CREATE = "NOTIFICATION_CREATE"


VOICE_CHANNEL_EVENTS: tuple[Event, ...] = (
    Event.VOICE_STATE_CREATE,
    Event.VOICE_STATE_UPDATE,
    Event.VOICE_STATE_DELETE,
    Event.SPEAKING_START,
    Event.SPEAKING_STOP,
)


def _with_timeout(args: dict[str, Any], timeout: int | None) -> dict[str, Any]:
    # forwarded to the app, not enforced locally
    if timeout is not None:
        args["timeout"] = timeout
    return args


class DiscordCommands:
    """Command facade over a ``DiscordSession``.

    Every method is ``session.invoke`` with arguments shaped for one command;
    errors propagate unchanged.
    """

    def __init__(self, session: DiscordSession) -> None:
        self._session = session

    @property
    def session(self) -> DiscordSession:
        return self._session

    # Guilds and channels

    async def get_guild(self, guild_id: str, *, timeout: int | None = None) -> Any:
        return await self._session.invoke(
            Command.GET_GUILD, _with_timeout({"guild_id": guild_id}, timeout)
        )

    async def get_guilds(self) -> Any:
        return await self._session.invoke(Command.GET_GUILDS)

    async def get_channel(self, channel_id: str, *, timeout: int | None = None) -> Any:
        return await self._session.invoke(
            Command.GET_CHANNEL, _with_timeout({"channel_id": channel_id}, timeout)
        )

    async def get_channels(self, guild_id: str | None = None) -> Any:
        args = {"guild_id": guild_id} if guild_id is not None else {}
        return await self._session.invoke(Command.GET_CHANNELS, args)

    async def get_selected_voice_channel(self) -> Any:
        return await self._session.invoke(Command.GET_SELECTED_VOICE_CHANNEL)

    async def select_voice_channel(
        self,
        channel_id: str | None,
        *,
        timeout: int | None = None,
        force: bool = False,
    ) -> Any:
        """Join ``channel_id``, or leave voice when it is None."""
        args = _with_timeout({"channel_id": channel_id, "force": force}, timeout)
        return await self._session.invoke(Command.SELECT_VOICE_CHANNEL, args)

    async def select_text_channel(
        self, channel_id: str | None, *, timeout: int | None = None
    ) -> Any:
        return await self._session.invoke(
            Command.SELECT_TEXT_CHANNEL, _with_timeout({"channel_id": channel_id}, timeout)
        )

    # Voice settings

    async def get_voice_settings(self) -> Any:
        return await self._session.invoke(Command.GET_VOICE_SETTINGS)

    async def set_voice_settings(self, **settings: Any) -> Any:
        """Update voice settings, e.g. ``mute=True`` or ``input={"volume": 50}``."""
        return await self._session.invoke(Command.SET_VOICE_SETTINGS, settings)

    async def set_user_voice_settings(
        self,
        user_id: str,
        *,
        pan: dict[str, float] | None = None,
        volume: int | None = None,
        mute: bool | None = None,
    ) -> Any:
        args: dict[str, Any] = {"user_id": user_id}
        if pan is not None:
            args["pan"] = pan
        if volume is not None:
            args["volume"] = volume
        if mute is not None:
            args["mute"] = mute
        return await self._session.invoke(Command.SET_USER_VOICE_SETTINGS, args)

    # Activity

    async def set_activity(self, pid: int, activity: dict[str, Any] | None) -> Any:
        return await self._session.invoke(
            Command.SET_ACTIVITY, {"pid": pid, "activity": activity}
        )

    async def clear_activity(self, pid: int) -> Any:
        return await self.set_activity(pid, None)

    # Subscriptions

    async def subscribe(self, event: str, args: dict[str, Any] | None = None) -> Any:
        return await self._session.subscribe(event, args)

    async def unsubscribe(self, event: str, args: dict[str, Any] | None = None) -> Any:
        return await self._session.unsubscribe(event, args)

    async def subscribe_voice_channel(self, channel_id: str) -> list[Any]:
        """Subscribe to voice state and speaking events for one channel."""
        args = {"channel_id": channel_id}
        return await asyncio.gather(
            *(self._session.subscribe(event, dict(args)) for event in VOICE_CHANNEL_EVENTS)
        )
