from __future__ import annotations

import re
from collections import Counter
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable, Optional
from zoneinfo import ZoneInfo

import jieba

from adapters.onebot_mapper import OneBotMapper
from adapters.sqlite_storage import SQLiteStorage
from core.models import WriteUnit
from core.tokenizer import Tokenizer

SHANGHAI = ZoneInfo("Asia/Shanghai")

# Tiny dictionary so segmentation does not depend on jieba's bundled one.
DICTIONARY = (
    "今天 1000 t",
    "天气 1000 n",
    "真好 1000 a",
    "啊 1000 y",
    "机器人 1000 n",
    "消息 1000 n",
    "记录 1000 v",
)


class WhitespaceSegmenter:
    """Segmenter stub: splits on whitespace."""

    def __init__(self) -> None:
        self.initialized = False

    def initialize(self) -> None:
        self.initialized = True

    def cut(self, text: str, cut_all: bool = False, HMM: bool = True) -> Iterable[str]:
        return text.split()

    def tokenize(self, text: str, mode: str = "default", HMM: bool = True) -> Iterable[tuple[str, int, int]]:
        return [(match.group(), match.start(), match.end()) for match in re.finditer(r"\S+", text)]


def make_segmenter(directory: Path) -> jieba.Tokenizer:
    path = directory / "dict.txt"
    path.write_text("\n".join(DICTIONARY) + "\n", encoding="utf-8")
    segmenter = jieba.Tokenizer(dictionary=str(path))
    segmenter.initialize()
    return segmenter


def local_ts(year: int, month: int, day: int, hour: int = 10, minute: int = 0) -> int:
    return int(datetime(year, month, day, hour, minute, tzinfo=SHANGHAI).timestamp())


def fixed_clock(timestamp: int) -> Callable[[], float]:
    return lambda: float(timestamp)


def group_event(
    *,
    group_id: int,
    user_id: int,
    message_id: int,
    text: str,
    time: int,
    post_type: str = "message",
    nickname: str = "",
    card: str = "",
    role: str = "member",
    segments: Optional[list[dict[str, Any]]] = None,
) -> dict[str, Any]:
    return {
        "post_type": post_type,
        "message_type": "group",
        "sub_type": "normal",
        "time": time,
        "self_id": 10000,
        "group_id": group_id,
        "user_id": user_id,
        "message_id": message_id,
        "message": segments if segments is not None else [{"type": "text", "data": {"text": text}}],
        "raw_message": text,
        "sender": {"user_id": user_id, "nickname": nickname or f"user{user_id}", "card": card, "role": role},
    }


def private_event(
    *,
    user_id: int,
    message_id: int,
    text: str,
    time: int,
    post_type: str = "message",
    target_id: Optional[int] = None,
) -> dict[str, Any]:
    event: dict[str, Any] = {
        "post_type": post_type,
        "message_type": "private",
        "sub_type": "friend",
        "time": time,
        "self_id": 10000,
        "user_id": user_id,
        "message_id": message_id,
        "message": [{"type": "text", "data": {"text": text}}],
        "raw_message": text,
        "sender": {"user_id": user_id, "nickname": f"user{user_id}"},
    }
    if target_id is not None:
        event["target_id"] = target_id
    return event


def store_events(
    storage: SQLiteStorage,
    events: Iterable[dict[str, Any]],
    tokenizer: Optional[Tokenizer] = None,
) -> None:
    """Write events straight through the storage primitives in one transaction."""

    mapper = OneBotMapper()
    conn = storage.connect()
    try:
        increments: Counter = Counter()
        conn.execute("BEGIN IMMEDIATE")
        for event in events:
            record = mapper.map_event(event)
            words = tokenizer.count(record.clean_text) if tokenizer is not None else None
            storage.apply_unit(conn, WriteUnit(record, words), increments)
        storage.increment_word_stats(conn, increments)
        conn.execute("COMMIT")
    finally:
        conn.close()
