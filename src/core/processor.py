"""Core message ingestion pipeline.

This module is transport-agnostic. It only relies on ports for event mapping
and storage, enabling other chat backends without changes here.

The pipeline enforces a strict order:
1) Map the raw event into a MessageRecord (or reject it as malformed)
2) Fast-exit for scopes the recording policy excludes (the group still gets
   a disabled group_configs row)
3) Dedup against recently submitted keys
4) Tokenize, then hand one atomic unit to the writer; the group_configs row
   of a newly enabled group is written inside that same unit
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from core.config import LoggerConfig
from core.dedup import RecentKeys
from core.errors import IngestError
from core.models import IngestOutcome, Origin, WriteUnit
from core.policy import should_record
from core.ports import EventMapperPort, WriterPort
from core.tokenizer import Tokenizer

LOGGER = logging.getLogger(__name__)


class IngestionPipeline:
    """Orchestrates policy, dedup, tokenization and persistence."""

    def __init__(
        self,
        config: LoggerConfig,
        mapper: EventMapperPort,
        tokenizer: Tokenizer,
        writer: WriterPort,
    ) -> None:
        self._config = config
        self._mapper = mapper
        self._tokenizer = tokenizer
        self._writer = writer
        self._recent = RecentKeys(config.dedup.cache_size)
        # Last recording state written to group_configs, per group.
        self._group_states: dict[int, bool] = {}

    @property
    def config(self) -> LoggerConfig:
        return self._config

    def update_config(self, config: LoggerConfig) -> None:
        """Swap in a new config; events already in flight keep the old one."""

        tokenizer = self._tokenizer
        if config.tokenizer != self._config.tokenizer:
            tokenizer = self._tokenizer.with_config(config.tokenizer)
        mapper = self._mapper
        if config.timezone != self._config.timezone:
            mapper = self._mapper.with_timezone(config.timezone)
        self._tokenizer = tokenizer
        self._mapper = mapper
        self._config = config

    async def ingest(self, raw: Any, origin: Optional[Origin] = None) -> IngestOutcome:
        """Process one raw event through the pipeline.

        Raises ``IngestError`` subclasses; every one of them leaves the
        pipeline usable for the next event.
        """

        config = self._config
        tokenizer = self._tokenizer

        record = self._mapper.map_event(raw, origin)
        if record is None:
            return IngestOutcome.IGNORED

        group_id = record.group_id
        allowed = should_record(config, group_id)
        register = group_id is not None and self._group_states.get(group_id) is not allowed

        if not allowed:
            LOGGER.debug("Policy drop for group=%s message=%s", group_id, record.message_id)
            if register:
                await self._register_denied_group(group_id)
            return IngestOutcome.DROPPED

        # A key we submitted recently only needs its origin flags merged, so
        # skip tokenization entirely. The writer still decides authoritatively.
        if record.dedup_key in self._recent:
            result = await self._writer.submit(WriteUnit(record, merge_only=True, register_group=register))
            self._remember_group(group_id, True)
            LOGGER.debug("Merged duplicate %s (%s)", record.dedup_key, record.origin.name)
            return IngestOutcome.RECORDED if result.inserted else IngestOutcome.MERGED

        words = tokenizer.count(record.clean_text) if tokenizer.enabled else None
        self._recent.add(record.dedup_key)
        try:
            result = await self._writer.submit(WriteUnit(record, words, register_group=register))
        except IngestError:
            # Nothing was stored, so a redelivery must be tokenized again.
            self._recent.discard(record.dedup_key)
            raise
        self._remember_group(group_id, True)
        return IngestOutcome.RECORDED if result.inserted else IngestOutcome.MERGED

    def _remember_group(self, group_id: Optional[int], enabled: bool) -> None:
        if group_id is not None:
            self._group_states[group_id] = enabled

    async def _register_denied_group(self, group_id: int) -> None:
        try:
            await self._writer.set_group_config(group_id, False)
        except IngestError as exc:
            LOGGER.warning("Could not record disabled state for group %s: %s", group_id, exc)
            return
        self._group_states[group_id] = False
