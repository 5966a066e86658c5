"""
Subscription hub for live decision updates.

Clients subscribe to a channel keyed by group id and/or decision id.  Each
channel owns two background tasks shared by all of its subscribers:

* a snapshot loop that re-fetches and fans out the channel's state every
  ``snapshot_interval`` seconds, and
* a keep-alive loop that sends a ``ping`` every ``keepalive_interval``
  seconds so proxies keep the connection open.

A new subscriber gets its own immediate snapshot.  When the last subscriber
of a channel closes, both tasks are cancelled together and the channel is
dropped.  Delivery is best-effort: a subscriber whose queue is full loses its
oldest pending event, and the next snapshot brings it up to date.  Nothing in
the hub ever blocks a decision mutation.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)

ChannelKey = tuple[str | None, str | None]
SnapshotFetcher = Callable[[str | None, str | None], Awaitable[list[dict[str, Any]]]]


def ping_event() -> dict[str, Any]:
    return {"type": "ping", "data": {"timestamp": datetime.now(timezone.utc).isoformat()}}


def error_event(message: str) -> dict[str, Any]:
    return {"type": "error", "data": {"message": message}}


def _offer(queue: asyncio.Queue, event: dict[str, Any]) -> None:
    """Enqueue without waiting, dropping the oldest event when full."""
    if queue.full():
        try:
            queue.get_nowait()
        except asyncio.QueueEmpty:
            pass
    queue.put_nowait(event)


@dataclass
class _Channel:
    key: ChannelKey
    queues: set[asyncio.Queue] = field(default_factory=set)
    tasks: list[asyncio.Task] = field(default_factory=list)

    def broadcast(self, event: dict[str, Any]) -> None:
        for queue in list(self.queues):
            _offer(queue, event)


class Subscription:
    """One client's view of a channel; iterate it to receive events."""

    def __init__(self, hub: SubscriptionHub, key: ChannelKey, queue: asyncio.Queue) -> None:
        self._hub = hub
        self.key = key
        self._queue = queue
        self.closed = False

    async def next_event(self, timeout: float | None = None) -> dict[str, Any] | None:
        """Return the next event, or ``None`` on timeout or after close."""
        if self.closed:
            return None
        try:
            return await asyncio.wait_for(self._queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None

    def close(self) -> None:
        """Detach from the channel; no further events are delivered."""
        if self.closed:
            return
        self.closed = True
        self._hub._detach(self.key, self._queue)

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> dict[str, Any]:
        if self.closed:
            raise StopAsyncIteration
        return await self._queue.get()


class SubscriptionHub:
    def __init__(
        self,
        fetch: SnapshotFetcher,
        snapshot_interval: float = 5.0,
        keepalive_interval: float = 30.0,
        queue_size: int = 32,
    ) -> None:
        self._fetch = fetch
        self.snapshot_interval = snapshot_interval
        self.keepalive_interval = keepalive_interval
        self.queue_size = queue_size
        self._channels: dict[ChannelKey, _Channel] = {}

    @property
    def channel_count(self) -> int:
        return len(self._channels)

    def subscriber_count(self, group_id: str | None = None, decision_id: str | None = None) -> int:
        channel = self._channels.get((group_id, decision_id))
        return len(channel.queues) if channel else 0

    def channel_tasks(self, group_id: str | None = None, decision_id: str | None = None) -> list[asyncio.Task]:
        channel = self._channels.get((group_id, decision_id))
        return list(channel.tasks) if channel else []

    async def subscribe(
        self, group_id: str | None = None, decision_id: str | None = None,
    ) -> Subscription:
        if not group_id and not decision_id:
            raise ValueError("Group ID or Decision ID is required")

        key: ChannelKey = (group_id or None, decision_id or None)
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)

        channel = self._channels.get(key)
        if channel is None:
            channel = _Channel(key)
            self._channels[key] = channel
            channel.tasks = [
                asyncio.create_task(self._snapshot_loop(channel)),
                asyncio.create_task(self._keepalive_loop(channel)),
            ]
            logger.info("Opened subscription channel %s", key)
        channel.queues.add(queue)
        subscription = Subscription(self, key, queue)

        try:
            for event in await self._fetch(*key):
                _offer(queue, event)
        except Exception:
            logger.warning("Failed to load initial snapshot for %s", key, exc_info=True)
            _offer(queue, error_event("Failed to load data"))

        return subscription

    def _detach(self, key: ChannelKey, queue: asyncio.Queue) -> None:
        channel = self._channels.get(key)
        if channel is None:
            return
        channel.queues.discard(queue)
        if not channel.queues:
            for task in channel.tasks:
                task.cancel()
            del self._channels[key]
            logger.info("Closed subscription channel %s", key)

    async def close_all(self) -> None:
        """Cancel every channel, e.g. on application shutdown."""
        tasks = [t for channel in self._channels.values() for t in channel.tasks]
        for task in tasks:
            task.cancel()
        self._channels.clear()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _snapshot_loop(self, channel: _Channel) -> None:
        while True:
            await asyncio.sleep(self.snapshot_interval)
            try:
                events = await self._fetch(*channel.key)
            except Exception:
                logger.warning("Periodic snapshot failed for %s", channel.key, exc_info=True)
                continue
            for event in events:
                channel.broadcast(event)

    async def _keepalive_loop(self, channel: _Channel) -> None:
        while True:
            await asyncio.sleep(self.keepalive_interval)
            channel.broadcast(ping_event())
