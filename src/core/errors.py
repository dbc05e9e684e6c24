"""Error taxonomy shared by the core and adapters."""

from __future__ import annotations


class MsgLoggerError(Exception):
    """Base class for all msglogger errors."""


class ConfigError(MsgLoggerError):
    """Raised when a configuration value is missing or invalid."""


class IngestError(MsgLoggerError):
    """Recoverable failure while ingesting one event."""


class MalformedEvent(IngestError):
    """The raw payload cannot be parsed into a message record."""


class StorageUnavailable(IngestError):
    """The store stayed locked or unreachable after every retry."""


class QueryError(MsgLoggerError):
    """A read query failed at the storage layer."""
