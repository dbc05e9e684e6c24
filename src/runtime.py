"""Runtime wiring for the message logger.

``MessageLogger`` owns the writer, the pipeline and the active config.
Collaborators never touch it directly: they receive a ``LoggerSlot`` and ask
it for a ``LoggerHandle`` once the logger is up.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional

from adapters.onebot_mapper import OneBotMapper
from adapters.sqlite_queries import QueryApi
from adapters.sqlite_storage import DB_FILENAME, SQLiteStorage
from adapters.sqlite_writer import AsyncWriter
from core.config import LoggerConfig
from core.errors import IngestError, StorageUnavailable
from core.models import IngestOutcome, Origin
from core.processor import IngestionPipeline
from core.tokenizer import Tokenizer

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoggerHandle:
    """Cheap, shareable view of a running logger."""

    storage: SQLiteStorage
    config: LoggerConfig
    clock: Callable[[], float] = time.time

    def query(self) -> QueryApi:
        return QueryApi(self.storage, self.config.timezone, self.clock)


class MessageLogger:
    """The recording engine: one pipeline, one writer, one store."""

    def __init__(
        self,
        config: LoggerConfig,
        storage: SQLiteStorage,
        writer: AsyncWriter,
        pipeline: IngestionPipeline,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config
        self._storage = storage
        self._writer = writer
        self._pipeline = pipeline
        self._clock = clock
        self._closed = False

    @classmethod
    async def open(
        cls,
        config: LoggerConfig,
        data_dir: Path | str,
        *,
        segmenter: Any = None,
        clock: Callable[[], float] = time.time,
    ) -> "MessageLogger":
        """Prepare the store, load the dictionary and start the writer."""

        data_path = Path(data_dir)
        data_path.mkdir(parents=True, exist_ok=True)
        storage = SQLiteStorage(data_path / DB_FILENAME)
        try:
            await asyncio.to_thread(storage.init_db)
        except sqlite3.Error as exc:
            raise StorageUnavailable(f"cannot initialize store: {exc}") from exc

        tokenizer = Tokenizer(config.tokenizer, segmenter)
        if tokenizer.enabled:
            await asyncio.to_thread(tokenizer.initialize)

        writer = AsyncWriter(storage, config.writer)
        writer.start()
        pipeline = IngestionPipeline(config, OneBotMapper(config.timezone), tokenizer, writer)
        LOGGER.info("Message logger ready (mode=%s, data_dir=%s)", config.mode.value, data_path)
        return cls(config, storage, writer, pipeline, clock)

    @property
    def config(self) -> LoggerConfig:
        return self._config

    @property
    def storage(self) -> SQLiteStorage:
        return self._storage

    def handle(self) -> LoggerHandle:
        return LoggerHandle(self._storage, self._config, self._clock)

    def update_config(self, config: LoggerConfig) -> None:
        """Swap the active config; later events and handles see the new one."""

        self._pipeline.update_config(config)
        self._config = config

    async def ingest(self, raw: Any, origin: Optional[Origin] = None) -> IngestOutcome:
        """Ingest one event; raises ``IngestError`` subclasses on failure."""

        if self._closed:
            raise StorageUnavailable("logger is closed")
        return await self._pipeline.ingest(raw, origin)

    async def handle_event(self, raw: Any, origin: Optional[Origin] = None) -> Optional[IngestOutcome]:
        """Ingest one event, logging and containing any ingest failure."""

        try:
            return await self.ingest(raw, origin)
        except IngestError as exc:
            LOGGER.warning("Event not recorded: %s", exc)
            return None

    async def set_group_config(self, group_id: int, enabled: bool) -> None:
        await self._writer.set_group_config(group_id, enabled)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._writer.close()
        LOGGER.info("Message logger stopped")


class LoggerSlot:
    """Optional accessor for the logger handle, empty until initialized."""

    def __init__(self) -> None:
        self._logger: Optional[MessageLogger] = None

    def set(self, logger: MessageLogger) -> None:
        self._logger = logger

    def clear(self) -> None:
        self._logger = None

    def get(self) -> Optional[LoggerHandle]:
        if self._logger is None:
            return None
        return self._logger.handle()
