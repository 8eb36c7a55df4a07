"""WebSocket fan-out of market snapshots.

Delivery is best-effort and at-least-once to currently connected
subscribers only:
- on connect, a subscriber first receives the latest snapshot of every
  tracked symbol (catch-up), then live snapshots as they are produced
- a subscriber whose send fails or exceeds the per-send timeout is
  dropped, so one stalled consumer cannot hold up the feed
- catch-up is sent outside the hub lock; live frames published while a
  subscriber catches up wait in its bounded backlog
"""

import asyncio
import logging
from collections import deque
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Protocol

import orjson
from fastapi import WebSocket, WebSocketDisconnect

from core.models import MarketSnapshot

logger = logging.getLogger(__name__)

DEFAULT_SEND_TIMEOUT = 1.0

# Live frames a joining subscriber may queue before it is dropped
MAX_BACKLOG = 256

# Idle time before the server pings a silent client
IDLE_PING_INTERVAL = 60.0

SnapshotSource = Callable[[], Mapping[str, MarketSnapshot]]


def _orjson_dumps(obj: Any) -> str:
    """Serialize object to JSON string using orjson."""
    return orjson.dumps(obj, default=str).decode("utf-8")


def encode_snapshot(snapshot: MarketSnapshot) -> str:
    """Encode a snapshot as its subscriber wire message."""
    return _orjson_dumps(snapshot.to_message())


class Channel(Protocol):
    """Anything that accepts text frames (FastAPI ``WebSocket`` does)."""

    async def send_text(self, data: str) -> None:
        ...


class Subscriber:
    """A connected channel with serialized, time-bounded sends.

    While catching up, live frames are queued in a bounded backlog and
    flushed after the catch-up frames, so publishers never wait on a
    joining subscriber.
    """

    def __init__(self, channel: Channel, send_timeout: float, max_backlog: int = MAX_BACKLOG):
        self.channel = channel
        self.send_timeout = send_timeout
        self.max_backlog = max_backlog
        self.closed = False
        self._send_lock = asyncio.Lock()
        self._backlog: deque[str] | None = None

    def begin_catch_up(self) -> None:
        self._backlog = deque()

    async def _send(self, text: str) -> None:
        async with self._send_lock:
            await self.channel.send_text(text)

    async def _deliver(self, text: str) -> bool:
        try:
            await asyncio.wait_for(self._send(text), timeout=self.send_timeout)
            return True
        except asyncio.TimeoutError:
            logger.info(f"Subscriber send timed out after {self.send_timeout}s")
            return False
        except Exception as e:
            logger.info(f"Subscriber send failed: {e}")
            return False

    async def send(self, text: str) -> bool:
        """Send one frame. Returns False if the channel failed or timed out."""
        if self.closed:
            return False
        if self._backlog is not None:
            if len(self._backlog) >= self.max_backlog:
                logger.info(f"Subscriber backlog exceeded {self.max_backlog} frames during catch-up")
                self.closed = True
                return False
            self._backlog.append(text)
            return True
        if not await self._deliver(text):
            self.closed = True
            return False
        return True

    async def catch_up(self, frames: list[str]) -> bool:
        """Deliver catch-up frames, then whatever was published meanwhile."""
        pending = deque(frames)
        while True:
            while pending:
                if self.closed or not await self._deliver(pending.popleft()):
                    self.closed = True
                    self._backlog = None
                    return False
            if not self._backlog:
                self._backlog = None
                return True
            pending, self._backlog = self._backlog, deque()


class BroadcastHub:
    """Track subscriber channels and fan snapshots out to them."""

    def __init__(
        self,
        snapshot_source: SnapshotSource | None = None,
        send_timeout: float = DEFAULT_SEND_TIMEOUT,
        max_backlog: int = MAX_BACKLOG,
    ):
        self._snapshot_source = snapshot_source
        self.send_timeout = send_timeout
        self.max_backlog = max_backlog
        self._subscribers: dict[int, Subscriber] = {}
        self._lock = asyncio.Lock()

        # Metrics
        self.published = 0
        self.dropped = 0

    def set_snapshot_source(self, source: SnapshotSource) -> None:
        self._snapshot_source = source

    def _catch_up_frames(self) -> list[str]:
        if self._snapshot_source is None:
            return []
        return [encode_snapshot(s) for s in self._snapshot_source().values()]

    async def subscribe(self, channel: Channel) -> Subscriber | None:
        """Register a channel and deliver the catch-up snapshots.

        The catch-up frames are taken and the subscriber registered in
        one step under the hub lock, so a snapshot published concurrently
        is either part of the catch-up or queued live (or both), never
        lost. The frames themselves are sent outside the lock; live
        frames published meanwhile wait in the subscriber's backlog.

        Returns:
            The Subscriber, or None if the channel failed during catch-up
        """
        key = id(channel)
        subscriber = Subscriber(channel, self.send_timeout, self.max_backlog)
        async with self._lock:
            frames = self._catch_up_frames()
            subscriber.begin_catch_up()
            self._subscribers[key] = subscriber

        if not await subscriber.catch_up(frames):
            async with self._lock:
                # publish() may already have dropped and counted it
                if self._subscribers.get(key) is subscriber:
                    del self._subscribers[key]
                    self.dropped += 1
            return None

        logger.info(f"Subscriber connected. Total connections: {len(self._subscribers)}")
        return subscriber

    async def unsubscribe(self, channel: Channel) -> None:
        """Remove a channel (no-op if already removed)."""
        async with self._lock:
            removed = self._subscribers.pop(id(channel), None)
        if removed is not None:
            logger.info(
                f"Subscriber disconnected. Total connections: {len(self._subscribers)}"
            )

    async def publish(self, snapshot: MarketSnapshot) -> int:
        """Push a snapshot to every current subscriber.

        Sends run concurrently; each is bounded by the per-send timeout.
        Subscribers that fail are removed.

        Returns:
            Number of subscribers that received the snapshot
        """
        async with self._lock:
            targets = list(self._subscribers.items())
        if not targets:
            return 0

        frame = encode_snapshot(snapshot)
        results = await asyncio.gather(*(sub.send(frame) for _, sub in targets))
        self.published += 1

        dead = [key for (key, _), ok in zip(targets, results) if not ok]
        if dead:
            async with self._lock:
                for key in dead:
                    self._subscribers.pop(key, None)
            self.dropped += len(dead)
            logger.info(
                f"Dropped {len(dead)} unresponsive subscriber(s). "
                f"Total connections: {len(self._subscribers)}"
            )

        return len(targets) - len(dead)

    async def close(self) -> None:
        async with self._lock:
            self._subscribers.clear()

    @property
    def connection_count(self) -> int:
        """Get number of active connections."""
        return len(self._subscribers)


def _control_message(msg_type: str, data: dict | None = None) -> str:
    return _orjson_dumps({
        "type": msg_type,
        "data": data or {},
        "timestamp": datetime.now(timezone.utc).isoformat(),
    })


async def websocket_endpoint(websocket: WebSocket):
    """
    WebSocket endpoint streaming market snapshots.

    On connect the client receives one message per tracked symbol (its
    last snapshot), then one message per symbol per tick:
    {
        "symbol": "BTC/USD",
        "exchange": "crypto",
        "price": 95012.5,
        "volume24h": 5512.3,
        "timestamp": 1700000000,
        "patternAnalysis": {...},      # optional
        "volatilityMetrics": {...},    # optional
        "aiAnalysis": {...}            # optional
    }

    The feed is read-only; clients may send {"type": "ping"} and receive
    a pong.
    """
    hub: BroadcastHub = websocket.app.state.hub
    await websocket.accept()

    subscriber = await hub.subscribe(websocket)
    if subscriber is None:
        return

    try:
        while True:
            try:
                data = await asyncio.wait_for(
                    websocket.receive_text(),
                    timeout=IDLE_PING_INTERVAL,
                )
            except asyncio.TimeoutError:
                if not await subscriber.send(_control_message("ping")):
                    break
                continue

            try:
                message = orjson.loads(data)
            except orjson.JSONDecodeError:
                await subscriber.send(_control_message("error", {"message": "Invalid JSON"}))
                continue

            if isinstance(message, dict) and message.get("type") == "ping":
                await subscriber.send(_control_message("pong"))

    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error(f"WebSocket error: {e}")
    finally:
        await hub.unsubscribe(websocket)
