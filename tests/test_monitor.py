"""Tests for the reconnect supervisor."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from discord_ipc.config import IpcConfig
from discord_ipc.errors import (
    DiscordInvalidState,
    DiscordRemoteError,
    DiscordTransportUnavailable,
)
from discord_ipc.monitor import ConnectionMonitor
from discord_ipc.session import DiscordSession


@pytest.fixture
def config() -> IpcConfig:
    return IpcConfig(
        base_path="/tmp/discord-ipc-", reconnect_delay=0.01, reconnect_max_delay=0.04
    )


@pytest.fixture
def session() -> MagicMock:
    session = MagicMock(spec=DiscordSession)
    session.connect = AsyncMock()
    session.close = AsyncMock()
    session.subscribe = AsyncMock(return_value={})
    return session


async def wait_until(predicate, timeout: float = 2.0) -> None:
    async def poll() -> None:
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(poll(), timeout)


def closed_callback(session: MagicMock):
    return session.on_closed.call_args.args[0]


class TestBackoff:
    """Test the reconnect delay schedule."""

    def test_delay_doubles_up_to_cap(self, session, config):
        monitor = ConnectionMonitor(session, config)
        assert [monitor._next_delay() for _ in range(5)] == [0.01, 0.02, 0.04, 0.04, 0.04]


class TestConnectionMonitor:
    """Test the supervision loop."""

    async def test_retries_until_connected(self, session, config):
        session.connect.side_effect = [
            DiscordTransportUnavailable("no app"),
            DiscordTransportUnavailable("no app"),
            None,
        ]
        monitor = ConnectionMonitor(session, config)
        connected = MagicMock()
        monitor.on_connected(connected)

        monitor.start()
        await wait_until(lambda: connected.called)

        assert session.connect.await_count == 3
        assert monitor._retry_attempts == 0
        await monitor.stop()

    async def test_resubscribes_after_disconnect(self, session, config):
        monitor = ConnectionMonitor(session, config)
        monitor.add_subscription("SPEAKING_START", {"channel_id": "9"})
        monitor.add_subscription("SPEAKING_STOP", {"channel_id": "9"})
        connected = MagicMock()
        disconnected = MagicMock()
        monitor.on_connected(connected)
        monitor.on_disconnected(disconnected)

        monitor.start()
        await wait_until(lambda: connected.call_count == 1)
        assert session.subscribe.await_count == 2

        reason = ConnectionError("lost")
        closed_callback(session)(reason)
        await wait_until(lambda: connected.call_count == 2)

        disconnected.assert_called_once_with(reason)
        assert session.connect.await_count == 2
        assert session.subscribe.await_count == 4
        await monitor.stop()

    async def test_invalid_state_stops_monitor(self, session, config):
        session.connect.side_effect = DiscordInvalidState(
            "Session was terminated", code="SESSION_TERMINATED"
        )
        monitor = ConnectionMonitor(session, config)

        monitor.start()
        await wait_until(lambda: not monitor.is_running)

        assert session.connect.await_count == 1

    async def test_failed_subscription_closes_and_retries(self, session, config):
        session.subscribe.side_effect = [
            DiscordRemoteError(4000, "Invalid event", {}),
            {},
        ]
        monitor = ConnectionMonitor(session, config)
        monitor.add_subscription("SPEAKING_START", {"channel_id": "9"})
        connected = MagicMock()
        monitor.on_connected(connected)

        monitor.start()
        await wait_until(lambda: connected.called)

        session.close.assert_awaited_once()
        assert session.connect.await_count == 2
        await monitor.stop()

    async def test_stop_closes_session(self, session, config):
        monitor = ConnectionMonitor(session, config)
        monitor.start()
        await wait_until(lambda: session.connect.await_count == 1)

        await monitor.stop()

        assert not monitor.is_running
        session.close.assert_awaited()

    async def test_start_twice_runs_one_loop(self, session, config):
        monitor = ConnectionMonitor(session, config)
        monitor.start()
        task = monitor._task
        monitor.start()
        assert monitor._task is task
        await monitor.stop()
