"""Ports (interfaces) used by the core pipeline.

Ports define the minimal contracts for event mapping and the storage writer
so that the core can be reused with different transports and backends.
"""

from __future__ import annotations

from typing import Any, Optional, Protocol

from core.models import MessageRecord, Origin, WriteResult, WriteUnit


class EventMapperPort(Protocol):
    """Turns a raw transport event into a canonical message record."""

    def map_event(self, raw: Any, origin: Optional[Origin] = None) -> Optional[MessageRecord]:
        """Return None for events that are not chat messages.

        Raises ``MalformedEvent`` when the payload cannot be parsed.
        """
        ...

    def with_timezone(self, timezone: str) -> "EventMapperPort":
        ...


class WriterPort(Protocol):
    """Serialized write operations required by the ingestion pipeline."""

    async def submit(self, unit: WriteUnit) -> WriteResult:
        ...

    async def set_group_config(self, group_id: int, enabled: bool) -> None:
        ...
