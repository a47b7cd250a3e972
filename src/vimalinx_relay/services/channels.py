"""Device channel registry backing the Server-Sent-Events transport.

Each device key owns a capped, replayable outbox and a strictly increasing
event sequence. Sends are appended to the outbox first and then fanned out to
every attached subscriber, so a device with no live stream still receives
the message on its next connect (within the outbox cap).
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections import deque
from collections.abc import AsyncIterator, Callable
from threading import RLock
from typing import Any

from vimalinx_relay.core.clock import now_ms
from vimalinx_relay.models import OutboxEntry

logger = logging.getLogger(__name__)

DEFAULT_OUTBOX_LIMIT = 200
READY_FRAME = "event: ready\ndata: {}\n\n"


def format_event(entry: OutboxEntry) -> str:
    """Render an outbox entry as an SSE frame carrying its event id."""
    data = json.dumps(entry.payload, separators=(",", ":"))
    return f"id: {entry.event_id}\ndata: {data}\n\n"


def format_ping(timestamp_ms: int) -> str:
    return f"event: ping\ndata: {timestamp_ms}\n\n"


class Subscription:
    """One attached SSE connection; entries are buffered until the writer drains them."""

    def __init__(self, device_key: str) -> None:
        self.device_key = device_key
        self.queue: asyncio.Queue[OutboxEntry] = asyncio.Queue()

    def deliver(self, entry: OutboxEntry) -> None:
        self.queue.put_nowait(entry)


class DeviceChannelRegistry:
    """Live subscribers, outboxes and event sequences keyed by device key."""

    def __init__(self, outbox_limit: int = DEFAULT_OUTBOX_LIMIT) -> None:
        self.outbox_limit = max(1, outbox_limit)
        self._subscribers: dict[str, set[Subscription]] = {}
        self._outbox: dict[str, deque[OutboxEntry]] = {}
        self._sequences: dict[str, int] = {}
        self._lock = RLock()

    def attach(self, device_key: str, last_event_id: int | None = None) -> Subscription:
        """Register a subscriber and queue every buffered entry newer than ``last_event_id``."""
        subscription = Subscription(device_key)
        with self._lock:
            for entry in self.replay(device_key, last_event_id):
                subscription.deliver(entry)
            self._subscribers.setdefault(device_key, set()).add(subscription)
        logger.debug("SSE subscriber attached (replay after %s)", last_event_id or 0)
        return subscription

    def detach(self, subscription: Subscription) -> None:
        with self._lock:
            current = self._subscribers.get(subscription.device_key)
            if not current:
                return
            current.discard(subscription)
            if not current:
                del self._subscribers[subscription.device_key]
        logger.debug("SSE subscriber detached")

    def send(self, device_key: str, payload: dict[str, Any]) -> OutboxEntry:
        """Append to the device outbox and fan out to attached subscribers.

        The payload is stamped with ``id`` set to the event id. Once the outbox
        holds ``outbox_limit`` entries the oldest ones are evicted.
        """
        with self._lock:
            event_id = self._sequences.get(device_key, 0) + 1
            self._sequences[device_key] = event_id
            entry = OutboxEntry(event_id=event_id, payload={**payload, "id": str(event_id)})
            outbox = self._outbox.get(device_key)
            if outbox is None:
                outbox = deque(maxlen=self.outbox_limit)
                self._outbox[device_key] = outbox
            outbox.append(entry)
            subscribers = list(self._subscribers.get(device_key, ()))
            for subscription in subscribers:
                subscription.deliver(entry)
        return entry

    def replay(self, device_key: str, last_event_id: int | None = None) -> list[OutboxEntry]:
        """Buffered entries newer than ``last_event_id``, oldest first."""
        with self._lock:
            since = last_event_id or 0
            return [entry for entry in self._outbox.get(device_key, ()) if entry.event_id > since]

    def subscriber_count(self, device_key: str) -> int:
        with self._lock:
            return len(self._subscribers.get(device_key, ()))

    def last_event_id(self, device_key: str) -> int:
        with self._lock:
            return self._sequences.get(device_key, 0)


async def stream_events(
    registry: DeviceChannelRegistry,
    device_key: str,
    heartbeat_seconds: float,
    last_event_id: int | None = None,
    clock: Callable[[], int] = now_ms,
) -> AsyncIterator[str]:
    """Attach to ``device_key`` and yield SSE frames until the client goes away.

    Buffered entries newer than ``last_event_id`` come first. A ping frame is
    emitted whenever ``heartbeat_seconds`` pass without an event. The
    subscription only exists while the generator runs.
    """
    subscription = registry.attach(device_key, last_event_id)
    try:
        yield READY_FRAME
        while True:
            try:
                entry = await asyncio.wait_for(subscription.queue.get(), timeout=heartbeat_seconds)
            except asyncio.TimeoutError:
                yield format_ping(clock())
                continue
            yield format_event(entry)
    finally:
        registry.detach(subscription)
