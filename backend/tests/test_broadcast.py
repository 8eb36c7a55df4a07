"""Tests for the WebSocket broadcast hub."""

import asyncio

import orjson
import pytest

from app.api.websocket import BroadcastHub, encode_snapshot
from core.models import MarketSnapshot, fallback_recommendation


def _snapshot(symbol: str = "BTC/USD", price: float = 95000.0, ts: int = 1700000000) -> MarketSnapshot:
    return MarketSnapshot(
        symbol=symbol,
        price=price,
        volume24h=5500.0,
        timestamp=ts,
        recommendation=fallback_recommendation(),
    )


class RecordingChannel:
    """Channel that records every frame it receives."""

    def __init__(self):
        self.frames: list[str] = []

    async def send_text(self, data: str) -> None:
        self.frames.append(data)

    @property
    def messages(self) -> list[dict]:
        return [orjson.loads(f) for f in self.frames]


class BrokenChannel:
    async def send_text(self, data: str) -> None:
        raise ConnectionError("client went away")


class StalledChannel:
    """Channel whose sends never complete."""

    def __init__(self):
        self.attempts = 0

    async def send_text(self, data: str) -> None:
        self.attempts += 1
        await asyncio.sleep(3600)


class SlowChannel(RecordingChannel):
    """Channel that accepts each frame after a fixed delay."""

    def __init__(self, delay: float):
        super().__init__()
        self.delay = delay

    async def send_text(self, data: str) -> None:
        await asyncio.sleep(self.delay)
        self.frames.append(data)


class TestBroadcastHub:
    @pytest.mark.asyncio
    async def test_catch_up_on_subscribe(self):
        """A new subscriber first receives the latest snapshot of every symbol."""
        latest = {
            "BTC/USD": _snapshot("BTC/USD", 95000.0),
            "ETH/USD": _snapshot("ETH/USD", 3200.0),
        }
        hub = BroadcastHub(snapshot_source=lambda: latest)
        channel = RecordingChannel()

        subscriber = await hub.subscribe(channel)

        assert subscriber is not None
        assert channel.frames == [encode_snapshot(s) for s in latest.values()]
        assert hub.connection_count == 1

    @pytest.mark.asyncio
    async def test_publish_reaches_all_subscribers(self):
        hub = BroadcastHub()
        channels = [RecordingChannel() for _ in range(3)]
        for channel in channels:
            await hub.subscribe(channel)

        delivered = await hub.publish(_snapshot())

        assert delivered == 3
        for channel in channels:
            assert len(channel.messages) == 1
            message = channel.messages[0]
            assert message["symbol"] == "BTC/USD"
            assert message["aiAnalysis"]["recommendation"] == "hold"
            assert "patternAnalysis" not in message
            assert "volatilityMetrics" not in message

    @pytest.mark.asyncio
    async def test_publish_without_subscribers(self):
        hub = BroadcastHub()
        assert await hub.publish(_snapshot()) == 0

    @pytest.mark.asyncio
    async def test_failed_channel_is_dropped(self):
        """A failing send removes that subscriber; others still receive."""
        hub = BroadcastHub()
        healthy = RecordingChannel()
        await hub.subscribe(healthy)
        await hub.subscribe(BrokenChannel())

        delivered = await hub.publish(_snapshot())

        assert delivered == 1
        assert hub.connection_count == 1
        assert hub.dropped == 1
        assert len(healthy.frames) == 1

    @pytest.mark.asyncio
    async def test_stalled_channel_does_not_block_others(self):
        """A stalled subscriber times out and is dropped."""
        hub = BroadcastHub(send_timeout=0.05)
        healthy = RecordingChannel()
        stalled = StalledChannel()
        await hub.subscribe(healthy)
        await hub.subscribe(stalled)

        delivered = await asyncio.wait_for(hub.publish(_snapshot()), timeout=1.0)

        assert delivered == 1
        assert hub.connection_count == 1

        await hub.publish(_snapshot(price=95100.0))
        assert stalled.attempts == 1
        assert len(healthy.frames) == 2

    @pytest.mark.asyncio
    async def test_failure_during_catch_up(self):
        hub = BroadcastHub(snapshot_source=lambda: {"BTC/USD": _snapshot()})

        assert await hub.subscribe(BrokenChannel()) is None
        assert hub.connection_count == 0

    @pytest.mark.asyncio
    async def test_slow_joiner_does_not_delay_publish(self):
        """Catch-up to a slow channel runs outside the hub lock."""
        latest = {f"SYM{i}/USD": _snapshot(f"SYM{i}/USD") for i in range(10)}
        hub = BroadcastHub(snapshot_source=lambda: latest, send_timeout=0.1)
        healthy = RecordingChannel()
        await hub.subscribe(healthy)
        healthy.frames.clear()

        slow = SlowChannel(delay=0.05)
        joining = asyncio.create_task(hub.subscribe(slow))
        await asyncio.sleep(0.01)

        loop = asyncio.get_running_loop()
        started = loop.time()
        delivered = await hub.publish(_snapshot(price=96000.0))
        elapsed = loop.time() - started

        assert elapsed < hub.send_timeout
        assert delivered == 2
        assert len(healthy.frames) == 1

        assert await joining is not None
        prices = [m["price"] for m in slow.messages]
        assert len(prices) == 11
        assert prices[-1] == 96000.0

    @pytest.mark.asyncio
    async def test_backlog_overflow_drops_joiner(self):
        latest = {"BTC/USD": _snapshot()}
        hub = BroadcastHub(snapshot_source=lambda: latest, send_timeout=1.0, max_backlog=2)
        slow = SlowChannel(delay=0.05)
        joining = asyncio.create_task(hub.subscribe(slow))
        await asyncio.sleep(0)

        results = [await hub.publish(_snapshot(price=95000.0 + i)) for i in range(3)]

        assert results == [1, 1, 0]
        assert await joining is None
        assert hub.connection_count == 0
        assert hub.dropped == 1

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        hub = BroadcastHub()
        channel = RecordingChannel()
        await hub.subscribe(channel)

        await hub.unsubscribe(channel)
        await hub.unsubscribe(channel)

        assert hub.connection_count == 0
        assert await hub.publish(_snapshot()) == 0
        assert channel.frames == []

    @pytest.mark.asyncio
    async def test_concurrent_subscribe_and_publish_loses_nothing(self):
        """A snapshot published while subscribing arrives via catch-up or live."""
        latest: dict[str, MarketSnapshot] = {}
        hub = BroadcastHub(snapshot_source=lambda: dict(latest))

        async def produce():
            for i in range(20):
                snap = _snapshot(price=95000.0 + i, ts=1700000000 + i)
                latest["BTC/USD"] = snap
                await hub.publish(snap)
                await asyncio.sleep(0)

        channels = [RecordingChannel() for _ in range(5)]

        async def join(channel, yields):
            for _ in range(yields):
                await asyncio.sleep(0)
            await hub.subscribe(channel)

        await asyncio.gather(produce(), *(join(c, i * 4) for i, c in enumerate(channels)))

        final = latest["BTC/USD"].price
        for channel in channels:
            prices = [m["price"] for m in channel.messages]
            assert final in prices
            assert prices == sorted(prices)
