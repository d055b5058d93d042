"""
Unit tests for TransportChannel
===============================
Drives the channel against an in-memory connector.

Test coverage:
- Endpoint handling and ws/wss derivation
- Open, inbound decoding (JSON and raw fallback)
- Fixed-budget reconnection with fixed spacing
- Single live connection across connect/reconnect churn
- Visibility-driven reconnect after the budget is exhausted
- send() semantics and intentional disconnect
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from psiconnect_sync.domain.models.connection import ConnectionStatus
from psiconnect_sync.infrastructure.config.settings import TransportSettings
from psiconnect_sync.infrastructure.transport.channel import TransportChannel, resolve_endpoint_url

DELAY = 0.02


@pytest.fixture
def settings():
    return TransportSettings(
        reconnect_attempts=3,
        reconnect_interval_seconds=DELAY,
        close_timeout_seconds=0.1,
        ping_interval_seconds=None,
        ping_timeout_seconds=None,
    )


@pytest.fixture
def channel(settings, logger, connector):
    return TransportChannel(
        "http://psiconnect.test",
        settings=settings,
        logger=logger,
        connector=connector,
    )


def exhausted(channel, connector, expected_calls):
    return (
        len(connector.calls) == expected_calls
        and channel.status == ConnectionStatus.CLOSED
        and not channel.get_stats()["reconnect_pending"]
    )


class TestEndpointResolution:

    def test_https_page_uses_wss(self):
        assert resolve_endpoint_url("/ws", "https://psiconnect.test") == "wss://psiconnect.test/ws"

    def test_http_page_uses_ws(self):
        assert resolve_endpoint_url("ws", "http://localhost:5000") == "ws://localhost:5000/ws"

    def test_absolute_endpoint_used_verbatim(self):
        assert resolve_endpoint_url("wss://push.test/live", "http://localhost") == "wss://push.test/live"


class TestConnect:

    @pytest.mark.asyncio
    async def test_absent_endpoint_is_not_an_error(self, channel, connector):
        await channel.connect(None)

        assert channel.status == ConnectionStatus.CLOSED
        assert connector.calls == []

    @pytest.mark.asyncio
    async def test_open_invokes_on_open(self, channel, connector, wait_until):
        channel.on_open = AsyncMock()
        statuses = []
        channel.on_status_change = lambda previous, current: statuses.append(current)

        await channel.connect("/ws")
        await wait_until(lambda: channel.is_connected)

        channel.on_open.assert_awaited_once()
        assert connector.calls[0][0] == "ws://psiconnect.test/ws"
        assert channel.reconnect_attempts == 0
        assert statuses == [ConnectionStatus.CONNECTING, ConnectionStatus.OPEN]
        await channel.disconnect()

    @pytest.mark.asyncio
    async def test_handshake_headers_forwarded(self, settings, logger, connector, wait_until):
        channel = TransportChannel(
            "http://psiconnect.test",
            settings=settings,
            logger=logger,
            connector=connector,
            headers_provider=lambda: {"Cookie": "connect.sid=abc"},
        )

        await channel.connect("/ws")
        await wait_until(lambda: channel.is_connected)

        assert connector.last.headers == {"Cookie": "connect.sid=abc"}
        await channel.disconnect()


class TestInbound:

    @pytest.mark.asyncio
    async def test_json_decoded_and_raw_fallback(self, channel, connector, wait_until):
        received = []
        channel.on_message = received.append

        await channel.connect("/ws")
        await wait_until(lambda: channel.is_connected)
        connector.last.push('{"type": "new_message"}')
        connector.last.push("not json")
        await wait_until(lambda: len(received) == 2)

        assert received == [{"type": "new_message"}, "not json"]
        assert channel.get_stats()["decode_failures"] == 1
        await channel.disconnect()

    @pytest.mark.asyncio
    async def test_handler_failure_does_not_kill_channel(self, channel, connector, logger, wait_until):
        received = []

        def on_message(data):
            if data == "boom":
                raise RuntimeError("handler bug")
            received.append(data)

        channel.on_message = on_message
        await channel.connect("/ws")
        await wait_until(lambda: channel.is_connected)
        connector.last.push("boom")
        connector.last.push('{"type": "after"}')
        await wait_until(lambda: len(received) == 1)

        assert channel.is_connected
        event_types = [c.args[0] for c in logger.error.call_args_list]
        assert "transport_channel.callback_failed" in event_types
        await channel.disconnect()


class TestReconnection:

    @pytest.mark.asyncio
    async def test_exactly_budget_attempts_then_closed(self, channel, connector, wait_until):
        connector.fail = True

        await channel.connect("/ws")
        # initial attempt + 3 reconnects
        await wait_until(lambda: exhausted(channel, connector, 4))
        await asyncio.sleep(DELAY * 5)

        assert len(connector.calls) == 4
        assert channel.status == ConnectionStatus.CLOSED
        gaps = [b - a for a, b in zip(connector.call_times, connector.call_times[1:])]
        assert all(gap >= DELAY * 0.9 for gap in gaps)

        connector.fail = False
        await channel.reconnect()
        await wait_until(lambda: channel.is_connected)
        assert channel.reconnect_attempts == 0
        await channel.disconnect()

    @pytest.mark.asyncio
    async def test_abnormal_close_reconnects(self, channel, connector, wait_until):
        await channel.connect("/ws")
        await wait_until(lambda: channel.is_connected)

        connector.last.drop(code=1006)
        await wait_until(lambda: len(connector.sockets) == 2 and channel.is_connected)

        assert channel.reconnect_attempts == 0
        assert channel.get_stats()["total_reconnects"] == 1
        await channel.disconnect()

    @pytest.mark.asyncio
    async def test_clean_server_close_does_not_reconnect(self, channel, connector, wait_until):
        on_close = MagicMock()
        channel.on_close = on_close
        await channel.connect("/ws")
        await wait_until(lambda: channel.is_connected)

        connector.last.drop(code=1000)
        await wait_until(lambda: channel.status == ConnectionStatus.CLOSED)
        await asyncio.sleep(DELAY * 3)

        assert len(connector.calls) == 1
        on_close.assert_called_once_with(1000, "")

    @pytest.mark.asyncio
    async def test_reconnect_disabled(self, logger, connector, wait_until):
        channel = TransportChannel(
            "http://psiconnect.test",
            settings=TransportSettings(should_reconnect=False, reconnect_interval_seconds=DELAY),
            logger=logger,
            connector=connector,
        )
        await channel.connect("/ws")
        await wait_until(lambda: channel.is_connected)

        connector.last.drop(code=1006)
        await wait_until(lambda: channel.status == ConnectionStatus.CLOSED)
        await asyncio.sleep(DELAY * 3)

        assert len(connector.calls) == 1


class TestSingleLiveConnection:

    @pytest.mark.asyncio
    async def test_connect_churn_leaves_one_live_socket(self, channel, connector, wait_until):
        await channel.connect("/ws")
        await channel.connect("/ws")
        await channel.connect("/ws")
        await wait_until(lambda: channel.is_connected)
        assert len(connector.live) == 1

        await channel.reconnect()
        await wait_until(lambda: channel.is_connected)
        assert len(connector.live) == 1

        connector.last.drop(code=1006)
        await channel.handle_visibility_change(True)
        await wait_until(lambda: channel.is_connected)
        await asyncio.sleep(DELAY * 3)
        assert len(connector.live) == 1

        await channel.disconnect()
        assert connector.live == []


class TestVisibility:

    @pytest.mark.asyncio
    async def test_visible_reconnects_after_budget_exhausted(self, channel, connector, wait_until):
        connector.fail = True
        await channel.connect("/ws")
        await wait_until(lambda: exhausted(channel, connector, 4))

        connector.fail = False
        await channel.handle_visibility_change(False)
        assert len(connector.calls) == 4

        await channel.handle_visibility_change(True)
        await wait_until(lambda: channel.is_connected)
        assert len(connector.calls) == 5
        await channel.disconnect()

    @pytest.mark.asyncio
    async def test_visible_while_open_is_noop(self, channel, connector, wait_until):
        await channel.connect("/ws")
        await wait_until(lambda: channel.is_connected)

        await channel.handle_visibility_change(True)

        assert len(connector.calls) == 1
        await channel.disconnect()


class TestSendAndDisconnect:

    @pytest.mark.asyncio
    async def test_send_when_closed_returns_false(self, channel):
        assert await channel.send({"type": "ping"}) is False

    @pytest.mark.asyncio
    async def test_send_after_server_close_returns_false(self, channel, connector, wait_until):
        await channel.connect("/ws")
        await wait_until(lambda: channel.is_connected)
        connector.last.drop(code=1000)
        await wait_until(lambda: channel.status == ConnectionStatus.CLOSED)

        assert await channel.send({"type": "ping"}) is False

    @pytest.mark.asyncio
    async def test_send_serializes_non_strings(self, channel, connector, wait_until):
        await channel.connect("/ws")
        await wait_until(lambda: channel.is_connected)

        assert await channel.send({"type": "ping"}) is True
        assert await channel.send("raw text") is True

        assert connector.last.sent == ['{"type": "ping"}', "raw text"]
        await channel.disconnect()

    @pytest.mark.asyncio
    async def test_disconnect_is_clean_and_final(self, channel, connector, wait_until):
        on_close = MagicMock()
        channel.on_close = on_close
        await channel.connect("/ws")
        await wait_until(lambda: channel.is_connected)
        socket = connector.last

        await channel.disconnect()
        await asyncio.sleep(DELAY * 3)

        assert channel.status == ConnectionStatus.CLOSED
        assert socket.close_code == 1000
        assert len(connector.calls) == 1
        on_close.assert_called_once_with(1000, "client disconnect")
