from __future__ import annotations

import asyncio
import sqlite3
from collections import Counter

import pytest

from adapters.onebot_mapper import OneBotMapper
from adapters.sqlite_storage import SQLiteStorage
from adapters.sqlite_writer import AsyncWriter, is_retryable
from core.config import WriterConfig
from core.errors import IngestError, StorageUnavailable
from core.models import WriteUnit
from helpers import group_event

FAST = WriterConfig(batch_size=64, flush_interval=0.01, max_retries=3, retry_backoff=0.001)


def _unit(message_id: int, words: Counter | None = None) -> WriteUnit:
    record = OneBotMapper().map_event(
        group_event(group_id=1, user_id=2, message_id=message_id, text=f"m{message_id}", time=message_id)
    )
    return WriteUnit(record, words)


def _count(storage: SQLiteStorage, sql: str) -> int:
    conn = storage.connect(read_only=True)
    try:
        return conn.execute(sql).fetchone()[0]
    finally:
        conn.close()


class FlakyStorage(SQLiteStorage):
    """Fails the first ``failures`` units with a lock error."""

    def __init__(self, db_path, failures: int) -> None:
        super().__init__(db_path)
        self.failures = failures
        self.calls = 0

    def apply_unit(self, conn, unit, increments):
        self.calls += 1
        if self.failures > 0:
            self.failures -= 1
            raise sqlite3.OperationalError("database is locked")
        return super().apply_unit(conn, unit, increments)


class PoisonStorage(SQLiteStorage):
    """Rejects one dedup key with a non-retryable error."""

    def __init__(self, db_path, poison_key: str) -> None:
        super().__init__(db_path)
        self.poison_key = poison_key

    def apply_unit(self, conn, unit, increments):
        if unit.record.dedup_key == self.poison_key:
            raise sqlite3.IntegrityError("constraint failed")
        return super().apply_unit(conn, unit, increments)


def test_concurrent_submissions_are_batched_in_order(storage: SQLiteStorage) -> None:
    async def scenario():
        writer = AsyncWriter(storage, FAST)
        try:
            return await asyncio.gather(*(writer.submit(_unit(i, Counter({"word": 1}))) for i in range(1, 21)))
        finally:
            await writer.close()

    results = asyncio.run(scenario())
    assert all(result.inserted for result in results)
    row_ids = [result.row_id for result in results]
    assert row_ids == sorted(row_ids)
    assert _count(storage, "SELECT COUNT(*) FROM messages") == 20
    assert _count(storage, "SELECT SUM(count) FROM word_stats WHERE scope = 1") == 20


def test_duplicate_units_in_one_batch_insert_once(storage: SQLiteStorage) -> None:
    async def scenario():
        writer = AsyncWriter(storage, FAST)
        try:
            return await asyncio.gather(writer.submit(_unit(5)), writer.submit(_unit(5)))
        finally:
            await writer.close()

    first, second = asyncio.run(scenario())
    assert first.inserted and not second.inserted
    assert _count(storage, "SELECT seen_count FROM messages") == 2


def test_lock_errors_are_retried(tmp_path) -> None:
    storage = FlakyStorage(tmp_path / "db.sqlite", failures=2)
    storage.init_db()

    async def scenario():
        writer = AsyncWriter(storage, FAST)
        try:
            return await writer.submit(_unit(1))
        finally:
            await writer.close()

    assert asyncio.run(scenario()).inserted
    assert storage.calls == 3


def test_exhausted_retries_raise_storage_unavailable(tmp_path) -> None:
    storage = FlakyStorage(tmp_path / "db.sqlite", failures=100)
    storage.init_db()

    async def scenario():
        writer = AsyncWriter(storage, WriterConfig(flush_interval=0.01, max_retries=2, retry_backoff=0.001))
        try:
            await writer.submit(_unit(1))
        finally:
            await writer.close()

    with pytest.raises(StorageUnavailable):
        asyncio.run(scenario())
    assert storage.calls == 3
    assert _count(storage, "SELECT COUNT(*) FROM messages") == 0


def test_bad_unit_does_not_take_down_its_batch(tmp_path) -> None:
    poison = _unit(2)
    storage = PoisonStorage(tmp_path / "db.sqlite", poison.record.dedup_key)
    storage.init_db()

    async def scenario():
        writer = AsyncWriter(storage, FAST)
        try:
            return await asyncio.gather(
                writer.submit(_unit(1)), writer.submit(poison), writer.submit(_unit(3)), return_exceptions=True
            )
        finally:
            await writer.close()

    first, bad, third = asyncio.run(scenario())
    assert first.inserted and third.inserted
    assert isinstance(bad, IngestError)
    assert _count(storage, "SELECT COUNT(*) FROM messages") == 2


def test_closed_writer_rejects_submissions(storage: SQLiteStorage) -> None:
    async def scenario():
        writer = AsyncWriter(storage, FAST)
        await writer.submit(_unit(1))
        await writer.close()
        assert not writer.running
        await writer.submit(_unit(2))

    with pytest.raises(StorageUnavailable):
        asyncio.run(scenario())


def test_group_config_goes_through_writer(storage: SQLiteStorage) -> None:
    async def scenario():
        writer = AsyncWriter(storage, FAST)
        try:
            await writer.set_group_config(7, True)
            await writer.set_group_config(7, False)
        finally:
            await writer.close()

    asyncio.run(scenario())
    assert _count(storage, "SELECT enabled FROM group_configs WHERE group_id = 7") == 0


def test_is_retryable_only_for_transient_errors() -> None:
    assert is_retryable(sqlite3.OperationalError("database is locked"))
    assert is_retryable(sqlite3.OperationalError("database table is busy"))
    assert not is_retryable(sqlite3.OperationalError("no such table: x"))
    assert not is_retryable(sqlite3.IntegrityError("locked"))
