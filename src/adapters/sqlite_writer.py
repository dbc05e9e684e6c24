"""Serialized async writer for the SQLite store.

All mutations go through one queue drained by one task, so writes apply in
submission order and never contend with each other. Queued units are
coalesced into one transaction per batch; a batch either commits completely
or not at all, so readers never see a message without its user and word
stats.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from adapters.sqlite_storage import SQLiteStorage
from core.config import WriterConfig
from core.errors import IngestError, StorageUnavailable
from core.models import WriteResult, WriteUnit

LOGGER = logging.getLogger(__name__)

_RETRYABLE_MARKERS = ("locked", "busy", "disk i/o", "disk is full", "unable to open")


def is_retryable(exc: BaseException) -> bool:
    """Return True for transient store errors worth another attempt."""

    if not isinstance(exc, sqlite3.OperationalError):
        return False
    message = str(exc).lower()
    return any(marker in message for marker in _RETRYABLE_MARKERS)


@dataclass
class _Job:
    apply: Callable[[sqlite3.Connection, Counter], Any]
    future: asyncio.Future
    label: str = field(default="")


_STOP = object()


class AsyncWriter:
    """Single writer task owning the only write connection."""

    def __init__(self, storage: SQLiteStorage, config: Optional[WriterConfig] = None) -> None:
        self._storage = storage
        self._config = config or WriterConfig()
        self._queue: asyncio.Queue = asyncio.Queue()
        self._conn: Optional[sqlite3.Connection] = None
        self._task: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Open the write connection and start the drain task (idempotent)."""

        if self._closed:
            raise StorageUnavailable("writer is closed")
        if self._task is not None:
            return
        self._conn = self._storage.connect()
        self._task = asyncio.get_running_loop().create_task(self._run(), name="msglogger-writer")

    async def close(self) -> None:
        """Drain everything already submitted, then stop."""

        if self._closed:
            return
        self._closed = True
        if self._task is not None:
            await self._queue.put(_STOP)
            await self._task
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    async def submit(self, unit: WriteUnit) -> WriteResult:
        """Queue one message unit and wait for its outcome."""

        return await self._enqueue(
            lambda conn, increments: self._storage.apply_unit(conn, unit, increments),
            unit.record.dedup_key,
        )

    async def set_group_config(self, group_id: int, enabled: bool) -> None:
        await self._enqueue(
            lambda conn, _: self._storage.set_group_config(conn, group_id, enabled),
            f"group_config:{group_id}",
        )

    async def _enqueue(self, apply: Callable[[sqlite3.Connection, Counter], Any], label: str) -> Any:
        if self._closed:
            raise StorageUnavailable("writer is closed")
        self.start()
        future = asyncio.get_running_loop().create_future()
        await self._queue.put(_Job(apply=apply, future=future, label=label))
        # Cancelling this await abandons the result, not the write.
        return await future

    async def _run(self) -> None:
        stop = False
        while not stop:
            item = await self._queue.get()
            if item is _STOP:
                break
            batch = [item]
            stop = await self._collect(batch)
            try:
                await self._flush(batch)
            except Exception as exc:
                LOGGER.exception("Writer batch of %s failed unexpectedly", len(batch))
                self._fail(batch, IngestError(f"write failed: {exc}"))

    async def _collect(self, batch: list[_Job]) -> bool:
        """Fill the batch from the queue; return True when a stop was seen."""

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._config.flush_interval
        while len(batch) < self._config.batch_size:
            try:
                item = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    return False
                try:
                    item = await asyncio.wait_for(self._queue.get(), remaining)
                except asyncio.TimeoutError:
                    return False
            if item is _STOP:
                return True
            batch.append(item)
        return False

    async def _flush(self, batch: list[_Job]) -> None:
        attempts = 1 + max(0, self._config.max_retries)
        for attempt in range(attempts):
            try:
                results = await asyncio.to_thread(self._apply_batch, batch)
            except sqlite3.Error as exc:
                if is_retryable(exc):
                    if attempt + 1 < attempts:
                        delay = self._config.retry_backoff * (2 ** attempt)
                        LOGGER.warning(
                            "Store busy (%s); retrying batch of %s in %.2fs", exc, len(batch), delay
                        )
                        await asyncio.sleep(delay)
                        continue
                    LOGGER.error("Store unavailable after %s attempts: %s", attempts, exc)
                    self._fail(batch, StorageUnavailable(f"store unavailable: {exc}"))
                    return
                if len(batch) > 1:
                    # Isolate the offending unit; the rest still get written.
                    LOGGER.warning("Batch write failed (%s); retrying units one by one", exc)
                    for job in batch:
                        await self._flush([job])
                    return
                LOGGER.error("Write failed for %s: %s", batch[0].label, exc)
                self._fail(batch, IngestError(f"write failed: {exc}"))
                return
            for job, result in zip(batch, results):
                if not job.future.done():
                    job.future.set_result(result)
            return

    def _apply_batch(self, batch: list[_Job]) -> list[Any]:
        conn = self._conn
        if conn is None:
            raise sqlite3.OperationalError("unable to open database: writer connection closed")
        increments: Counter = Counter()
        conn.execute("BEGIN IMMEDIATE")
        try:
            results = [job.apply(conn, increments) for job in batch]
            self._storage.increment_word_stats(conn, increments)
            conn.execute("COMMIT")
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        return results

    @staticmethod
    def _fail(batch: list[_Job], exc: Exception) -> None:
        for job in batch:
            if not job.future.done():
                job.future.set_exception(exc)
