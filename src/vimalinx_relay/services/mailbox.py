"""Inbound mailbox backing the long-poll transport.

Messages queue per device key until a poll drains them. A parked poll is a
single-slot future; each enqueue resolves at most one of them, oldest first.
Running more than one concurrent poller on a device key is unsupported: the
others simply wait for their own timeout. Queues are unbounded.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable

from vimalinx_relay.models import InboundMessage


class InboundMailbox:
    """Per-device FIFO queues plus the futures of parked pollers.

    Futures are created and resolved on the event loop, so every method that
    touches waiters must run there.
    """

    def __init__(self) -> None:
        self._queues: dict[str, list[InboundMessage]] = {}
        self._waiters: dict[str, list[asyncio.Future[list[InboundMessage]]]] = {}

    def enqueue(self, device_key: str, message: InboundMessage) -> None:
        self._queues.setdefault(device_key, []).append(message)
        self._notify(device_key)

    def requeue(self, device_key: str, messages: list[InboundMessage]) -> None:
        """Put undelivered messages back at the head of the queue."""
        if not messages:
            return
        self._queues[device_key] = [*messages, *self._queues.get(device_key, [])]
        self._notify(device_key)

    def drain(self, device_key: str) -> list[InboundMessage]:
        return self._queues.pop(device_key, [])

    def pending(self, device_key: str) -> int:
        return len(self._queues.get(device_key, ()))

    def waiter_count(self, device_key: str) -> int:
        return len(self._waiters.get(device_key, ()))

    def _notify(self, device_key: str) -> None:
        if not self._queues.get(device_key):
            return
        for waiter in self._waiters.get(device_key, []):
            if not waiter.done():
                waiter.set_result(self.drain(device_key))
                return

    def _discard(self, device_key: str, waiter: asyncio.Future[list[InboundMessage]]) -> None:
        waiters = self._waiters.get(device_key)
        if not waiters:
            return
        if waiter in waiters:
            waiters.remove(waiter)
        if not waiters:
            del self._waiters[device_key]

    async def wait_for_messages(
        self,
        device_key: str,
        timeout_seconds: float,
        cancelled: Awaitable[object] | None = None,
    ) -> list[InboundMessage]:
        """Return queued messages now, or park until an enqueue, the timeout or ``cancelled``.

        Timeouts and cancellation both yield an empty list rather than an error.
        """
        if self._queues.get(device_key):
            return self.drain(device_key)

        loop = asyncio.get_running_loop()
        waiter: asyncio.Future[list[InboundMessage]] = loop.create_future()
        self._waiters.setdefault(device_key, []).append(waiter)
        watchers: set[asyncio.Future[object]] = {waiter}  # type: ignore[arg-type]
        cancel_task: asyncio.Future[object] | None = None
        if cancelled is not None:
            cancel_task = asyncio.ensure_future(cancelled)
            watchers.add(cancel_task)
        try:
            await asyncio.wait(
                watchers,
                timeout=max(0.0, timeout_seconds),
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                self.requeue(device_key, waiter.result())
            raise
        finally:
            self._discard(device_key, waiter)
            if cancel_task is not None and not cancel_task.done():
                cancel_task.cancel()
        if waiter.done() and not waiter.cancelled():
            return waiter.result()
        waiter.cancel()
        return []
