"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to any integration-specific types.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import date
from enum import Enum, IntFlag
from typing import Optional

# Word stats for every message are also accumulated under this scope.
GLOBAL_SCOPE = 0

# Plain-text stand-ins for non-text segments. The tokenizer strips them again.
MEDIA_PLACEHOLDERS = {
    "image": "[图片]",
    "face": "[表情]",
    "mface": "[表情]",
    "record": "[语音]",
    "video": "[视频]",
    "file": "[文件]",
    "forward": "[转发]",
}
MENTION_PLACEHOLDER = "[@{target}]"


class Origin(IntFlag):
    """Channels a message has been observed on."""

    RECEIVED = 1
    BOT_SENT = 2
    SYNCED = 4


class IngestOutcome(str, Enum):
    RECORDED = "recorded"
    MERGED = "merged"
    DROPPED = "dropped"
    IGNORED = "ignored"


@dataclass(frozen=True)
class MessageFlags:
    has_image: bool = False
    has_at: bool = False
    is_reply: bool = False
    has_other_media: bool = False


@dataclass(frozen=True)
class MessageRecord:
    """Canonical representation of one chat message, immutable once stored."""

    dedup_key: str
    message_id: int
    origin: Origin
    msg_type: str
    sub_type: Optional[str]
    group_id: Optional[int]
    peer_id: Optional[int]
    user_id: int
    created_at: int
    raw_json: str
    clean_text: str
    flags: MessageFlags
    text_length: int
    sender_nickname: str
    sender_card: Optional[str]
    sender_role: Optional[str]
    local_date: str
    hour_of_day: int
    day_of_week: int


@dataclass(frozen=True)
class WriteUnit:
    """One logical write: a message plus everything derived from it.

    ``words`` is None when tokenization was skipped (tokenizer disabled or
    the unit is a known duplicate that only needs its origin merged).
    ``register_group`` marks the group enabled in group_configs within the
    same transaction.
    """

    record: MessageRecord
    words: Optional[Counter] = None
    merge_only: bool = False
    register_group: bool = False


@dataclass(frozen=True)
class WriteResult:
    inserted: bool
    row_id: Optional[int]


@dataclass(frozen=True)
class WordCount:
    word: str
    count: int


@dataclass(frozen=True)
class UserActivity:
    user_id: int
    nickname: str
    message_count: int


@dataclass(frozen=True)
class GroupActivity:
    group_id: int
    message_count: int


@dataclass(frozen=True)
class DailyCount:
    date: date
    count: int


@dataclass(frozen=True)
class StorageStats:
    total_messages: int
    total_words: int
    total_keywords: int
    total_users: int
    groups_tracked: int


@dataclass(frozen=True)
class MessageTypeStats:
    total: int = 0
    text_only: int = 0
    image: int = 0
    mention: int = 0
    reply: int = 0
    other: int = 0


@dataclass(frozen=True)
class PeriodComparison:
    """Message counts of two periods.

    ``change`` is (current - previous) / previous. When previous is zero and
    current is not, ``change`` is ``inf`` and ``is_new`` is set.
    """

    current: int
    previous: int
    change: float
    is_new: bool = False


@dataclass(frozen=True)
class UserStats:
    user_id: int
    nickname: str = ""
    message_count: int = 0
    char_count: int = 0
    active_days: int = 0
    rank: Optional[int] = None
    favorite_hour: Optional[int] = None
    avg_length: float = 0.0


@dataclass(frozen=True)
class StoredMessage:
    """A message row as returned by the query API."""

    id: int
    message_id: int
    origins: Origin
    msg_type: str
    sub_type: Optional[str]
    group_id: Optional[int]
    peer_id: Optional[int]
    user_id: int
    created_at: int
    raw_json: str
    clean_text: str
    flags: MessageFlags = field(default_factory=MessageFlags)
    text_length: int = 0
    sender_nickname: str = ""
    sender_card: Optional[str] = None
    sender_role: Optional[str] = None
    seen_count: int = 1

    @property
    def display_name(self) -> str:
        return self.sender_card or self.sender_nickname or str(self.user_id)
