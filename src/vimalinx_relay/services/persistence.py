"""Snapshot persistence for user records.

The users file is a JSON document ``{"users": [...]}`` rewritten atomically.
Explicit saves (registration, token issuance) propagate failures; background
saves are coalesced by :class:`DebouncedSaver` and only logged on failure.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any

from vimalinx_relay.core.errors import InternalServerError
from vimalinx_relay.models import UserRecord

logger = logging.getLogger(__name__)


class SnapshotError(InternalServerError):
    """Raised when the users snapshot cannot be read or written.

    Paths and OS errors go into ``detail`` for the logs; clients only see
    ``message``.
    """

    default_message = "failed to save users"


def parse_users_document(raw: str, source: str) -> list[dict[str, Any]]:
    """Return the raw user entries from a ``{"users": [...]}`` document."""
    try:
        document = json.loads(raw)
    except json.JSONDecodeError as err:
        raise SnapshotError(
            "failed to load users", detail=f"invalid users document in {source}: {err}"
        ) from err
    if not isinstance(document, dict):
        raise SnapshotError(
            "failed to load users", detail=f"invalid users document in {source}: expected an object"
        )
    entries = document.get("users")
    if entries is None:
        return []
    if not isinstance(entries, list):
        raise SnapshotError(
            "failed to load users", detail=f"invalid users document in {source}: users must be a list"
        )
    return [entry for entry in entries if isinstance(entry, dict)]


class UsersSnapshotFile:
    """Reads and atomically rewrites the users snapshot."""

    def __init__(self, read_path: str | None, write_path: str | None) -> None:
        self.read_path = Path(read_path) if read_path else None
        self.write_path = Path(write_path) if write_path else None

    def load(self) -> list[dict[str, Any]]:
        if self.read_path is None:
            return []
        try:
            raw = self.read_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.info("Users file %s does not exist yet; starting empty", self.read_path)
            return []
        except OSError as err:
            raise SnapshotError(
                "failed to load users", detail=f"cannot read users file {self.read_path}: {err}"
            ) from err
        return parse_users_document(raw, str(self.read_path))

    def save(self, users: Iterable[UserRecord]) -> None:
        """Write every user, sorted by id, replacing the file atomically."""
        if self.write_path is None:
            raise SnapshotError("users file is not configured; cannot persist registrations")
        entries = sorted(users, key=lambda user: user.id)
        data = json.dumps({"users": [user.to_dict() for user in entries]}, indent=2)
        try:
            self.write_path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self.write_path.parent, prefix=f".{self.write_path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(data)
                os.replace(tmp_name, self.write_path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as err:
            raise SnapshotError(detail=f"cannot write users file {self.write_path}: {err}") from err


class DebouncedSaver:
    """Dirty flag plus a single-flight timer that coalesces background saves.

    ``schedule()`` is cheap and never blocks. The save itself runs in a worker
    thread via ``asyncio.to_thread``; at most one is in flight, and mutations
    made while it runs re-arm the timer once it finishes. Calls made while no
    event loop is running (for example while loading users at startup) only
    mark the state dirty; :meth:`start` picks them up once the loop is
    available.
    """

    def __init__(self, save: Callable[[], None], delay_seconds: float, enabled: bool = True) -> None:
        self._save = save
        self.delay_seconds = max(0.0, delay_seconds)
        self.enabled = enabled
        self._dirty = False
        self._handle: asyncio.TimerHandle | None = None
        self._inflight: asyncio.Task[None] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def pending(self) -> bool:
        return self._dirty

    def start(self) -> None:
        """Bind to the running loop and arm the timer for earlier mutations."""
        self._loop = asyncio.get_running_loop()
        if self._dirty:
            self._arm()

    def schedule(self) -> None:
        if not self.enabled:
            return
        self._dirty = True
        self._arm()

    def _arm(self) -> None:
        if self._handle is not None:
            return
        loop = self._loop
        if loop is None or loop.is_closed():
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                return
        self._handle = loop.call_later(self.delay_seconds, self._fire)

    def _fire(self) -> None:
        self._handle = None
        if self._inflight is not None:
            return
        self._inflight = asyncio.get_running_loop().create_task(asyncio.to_thread(self.flush))
        self._inflight.add_done_callback(self._after_flush)

    def _after_flush(self, task: asyncio.Task[None]) -> None:
        self._inflight = None
        if self._dirty:
            self._arm()

    def flush(self) -> None:
        """Save now if dirty; failures are logged and dropped."""
        if not self._dirty:
            return
        self._dirty = False
        try:
            self._save()
        except SnapshotError as err:
            logger.warning("Background users save failed: %s", err)

    async def stop(self) -> None:
        """Cancel the timer and write out anything still pending."""
        if self._inflight is not None:
            await asyncio.wait({self._inflight})
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        await asyncio.to_thread(self.flush)
