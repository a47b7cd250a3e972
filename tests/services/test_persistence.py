# tests/services/test_persistence.py
"""Tests for the users snapshot file and the debounced background saver."""

from __future__ import annotations

import asyncio
import json
import threading
from pathlib import Path

import pytest

from vimalinx_relay.models import UserRecord
from vimalinx_relay.services.persistence import (
    DebouncedSaver,
    SnapshotError,
    UsersSnapshotFile,
    parse_users_document,
)


def test_save_writes_sorted_users_atomically(tmp_path: Path) -> None:
    target = tmp_path / "nested" / "users.json"
    snapshot = UsersSnapshotFile(None, str(target))
    snapshot.save([UserRecord(id="zed"), UserRecord(id="amy", tokens=["hmac$1"])])
    document = json.loads(target.read_text(encoding="utf-8"))
    assert [user["id"] for user in document["users"]] == ["amy", "zed"]
    assert document["users"][0]["token"] == "hmac$1"
    assert list(target.parent.glob("*.tmp")) == []


def test_load_reads_separate_path(tmp_path: Path) -> None:
    source = tmp_path / "seed.json"
    source.write_text(json.dumps({"users": [{"id": "amy"}, "junk"]}), encoding="utf-8")
    snapshot = UsersSnapshotFile(str(source), str(tmp_path / "out.json"))
    assert snapshot.load() == [{"id": "amy"}]


@pytest.mark.parametrize("raw", ["not json", "[]", '{"users": {}}'])
def test_parse_rejects_malformed_documents(raw: str) -> None:
    with pytest.raises(SnapshotError):
        parse_users_document(raw, "test")


def test_parse_treats_missing_users_as_empty() -> None:
    assert parse_users_document("{}", "test") == []
    assert parse_users_document('{"users": null}', "test") == []


def test_parse_error_keeps_source_out_of_the_client_message() -> None:
    with pytest.raises(SnapshotError) as excinfo:
        parse_users_document('{"users": {}}', "/srv/secret/users.json")
    assert excinfo.value.message == "failed to load users"
    assert "/srv/secret/users.json" in str(excinfo.value)


def test_write_failure_keeps_path_out_of_the_client_message(tmp_path: Path) -> None:
    blocker = tmp_path / "afile"
    blocker.write_text("x", encoding="utf-8")
    snapshot = UsersSnapshotFile(None, str(blocker / "sub" / "users.json"))
    with pytest.raises(SnapshotError) as excinfo:
        snapshot.save([UserRecord(id="amy")])
    assert excinfo.value.message == "failed to save users"
    assert str(blocker) not in excinfo.value.message
    assert str(blocker) in str(excinfo.value)


@pytest.mark.asyncio
async def test_debounced_saver_writes_off_the_event_loop() -> None:
    loop_thread = threading.get_ident()
    save_threads: list[int] = []
    saver = DebouncedSaver(lambda: save_threads.append(threading.get_ident()), delay_seconds=0)
    saver.start()
    saver.schedule()
    await asyncio.sleep(0.05)
    assert len(save_threads) == 1
    assert save_threads[0] != loop_thread
    await saver.stop()
    assert len(save_threads) == 1


@pytest.mark.asyncio
async def test_debounced_saver_coalesces_schedules() -> None:
    calls: list[int] = []
    saver = DebouncedSaver(lambda: calls.append(1), delay_seconds=0.01)
    saver.start()
    for _ in range(5):
        saver.schedule()
    assert saver.pending is True
    await asyncio.sleep(0.05)
    assert calls == [1]
    assert saver.pending is False


@pytest.mark.asyncio
async def test_debounced_saver_swallows_failures_and_flushes_on_stop() -> None:
    attempts: list[int] = []

    def failing_save() -> None:
        attempts.append(1)
        raise SnapshotError("disk full")

    saver = DebouncedSaver(failing_save, delay_seconds=10)
    saver.start()
    saver.schedule()
    await saver.stop()
    assert attempts == [1]
    assert saver.pending is False


@pytest.mark.asyncio
async def test_schedule_before_start_is_picked_up() -> None:
    calls: list[int] = []
    saver = DebouncedSaver(lambda: calls.append(1), delay_seconds=0.01)
    saver.schedule()
    saver.start()
    await asyncio.sleep(0.05)
    assert calls == [1]
