"""
Integration tests for tracker shutdown, failure reporting and recovery.
"""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from ticker_momentum import MomentumTracker
from ticker_momentum.core.event_bus import EventType
from ticker_momentum.core.models import ConnectionState


WS_CONNECT = "ticker_momentum.data.connection_manager.ws_connect"


@pytest.mark.integration
class TestTrackerShutdown:

    @pytest.mark.asyncio
    async def test_stop_releases_resources(self, fake_ws, fast_config, build_ticker_frame, until):
        with patch(WS_CONNECT, new=AsyncMock(return_value=fake_ws)):
            tracker = MomentumTracker(config=fast_config)
            await tracker.start()
            await tracker.subscribe("BTC-USD")
            await until(lambda: tracker.connection.is_open)

            fake_ws.feed(build_ticker_frame(("BTC-USD", "42000", None)))
            await until(lambda: tracker.batcher.pending_count == 1 or "BTC-USD" in tracker.get_snapshot())

            await tracker.stop()

        assert fake_ws.closed
        assert tracker.get_connection_status() == ConnectionState.DISCONNECTED
        assert not tracker.batcher.is_armed
        assert not tracker.connection.reconnect_pending
        assert "BTC-USD" in tracker.get_snapshot()

    @pytest.mark.asyncio
    async def test_context_manager(self, fake_ws, fast_config, until):
        with patch(WS_CONNECT, new=AsyncMock(return_value=fake_ws)):
            async with MomentumTracker(config=fast_config) as tracker:
                await tracker.subscribe("ETH-USD")
                await until(lambda: tracker.connection.is_open)

        assert fake_ws.closed
        assert tracker.get_connection_status() == ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_unsubscribing_everything_releases_connection(self, fake_ws, fast_config, until):
        with patch(WS_CONNECT, new=AsyncMock(return_value=fake_ws)) as connect:
            tracker = MomentumTracker(config=fast_config)
            await tracker.start()
            await tracker.subscribe(["BTC-USD", "ETH-USD"])
            await until(lambda: tracker.connection.is_open)

            await tracker.unsubscribe(["BTC-USD", "ETH-USD"])
            await asyncio.sleep(0.02)

            assert fake_ws.closed
            assert tracker.get_connection_status() == ConnectionState.DISCONNECTED
            assert not tracker.connection.reconnect_pending
            assert connect.await_count == 1

            await tracker.stop()

    @pytest.mark.asyncio
    async def test_failure_is_reported_and_recoverable(self, fake_ws, fast_config, until):
        errors = []
        connect = AsyncMock(side_effect=OSError("network unreachable"))

        with patch(WS_CONNECT, new=connect):
            tracker = MomentumTracker(config=fast_config)
            tracker.event_bus.subscribe(EventType.ERROR, errors.append)
            await tracker.start()
            await tracker.subscribe("BTC-USD")

            await until(lambda: tracker.get_connection_status() == ConnectionState.FAILED)

            assert "network unreachable" in tracker.get_last_error()
            assert errors

            connect.side_effect = None
            connect.return_value = fake_ws
            await tracker.restart()

            assert tracker.get_connection_status() == ConnectionState.CONNECTED
            assert tracker.get_last_error() is None

            await tracker.stop()
