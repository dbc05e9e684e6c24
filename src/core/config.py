"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely. All of
them are frozen: a config change builds a new object and swaps the reference.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

DEFAULT_STOP_WORDS = (
    "的", "了", "在", "是", "我", "你", "他", "她", "它",
    "有", "和", "与", "这", "那", "就", "也", "都", "而",
    "及", "着", "或", "一个", "没有", "不是", "什么", "怎么",
    "[图片]", "[表情]", "[语音]", "[视频]",
)


class RecordMode(str, Enum):
    """Which group list decides whether a group is recorded."""

    WHITELIST = "whitelist"
    BLACKLIST = "blacklist"


@dataclass(frozen=True)
class TokenizerConfig:
    """Segmentation and filtering settings."""

    enabled: bool = True
    min_word_length: int = 2
    stop_words: frozenset[str] = frozenset(DEFAULT_STOP_WORDS)


@dataclass(frozen=True)
class GroupLists:
    whitelist: frozenset[int] = frozenset()
    blacklist: frozenset[int] = frozenset()


@dataclass(frozen=True)
class WriterConfig:
    """Batching and retry settings for the serialized writer."""

    batch_size: int = 64
    flush_interval: float = 0.05
    max_retries: int = 3
    retry_backoff: float = 0.05


@dataclass(frozen=True)
class DedupConfig:
    """Deduplication settings for the ingestion pipeline."""

    cache_size: int = 4096


@dataclass(frozen=True)
class LoggerConfig:
    """Everything the recording core needs, loaded once and passed by reference."""

    mode: RecordMode = RecordMode.WHITELIST
    record_private: bool = False
    admins: frozenset[int] = frozenset()
    timezone: str = "Asia/Shanghai"
    tokenizer: TokenizerConfig = field(default_factory=TokenizerConfig)
    groups: GroupLists = field(default_factory=GroupLists)
    writer: WriterConfig = field(default_factory=WriterConfig)
    dedup: DedupConfig = field(default_factory=DedupConfig)
