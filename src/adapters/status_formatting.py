"""Shared plain-text formatting for status replies.

Chat replies and the CLI print the same text, so every report is built here
to keep them from drifting apart.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional, Sequence
from zoneinfo import ZoneInfo

from core.models import StorageStats, StoredMessage, UserActivity, WordCount

NO_DATA = "📭 数据不足"
QUERY_FAILED = "❌ 查询失败，请稍后再试"
MEDALS = ("🥇", "🥈", "🥉")
BAR_WIDTH = 10


def format_status(enabled: bool, stats: StorageStats) -> str:
    state = "🟢 开启中" if enabled else "🔴 关闭中"
    lines = [
        f"📊 记录状态: {state}",
        f"📚 总消息: {stats.total_messages}",
        f"🔠 总词汇: {stats.total_keywords}",
        f"👥 总用户: {stats.total_users}",
        f"💬 追踪群数: {stats.groups_tracked}",
    ]
    return "\n".join(lines)


def format_word_cloud(words: Sequence[WordCount], days: int = 7) -> str:
    if not words:
        return "📭 数据不足，无法生成词云"
    lines = [f"☁️ 本群热词 Top {len(words)} (近{days}天)"]
    lines.extend(f"{index}. {item.word} ({item.count})" for index, item in enumerate(words, start=1))
    return "\n".join(lines)


def format_heatmap(hours: Sequence[int], days: int = 30) -> str:
    """Render hourly counts as text bars; silent hours are left out."""

    peak = max(hours, default=0)
    if peak == 0:
        return NO_DATA
    lines = [f"🕐 24小时活跃分布 (近{days}天)"]
    for hour, count in enumerate(hours):
        if count == 0:
            continue
        bar = "█" * int(count / peak * BAR_WIDTH)
        lines.append(f"{hour:02d}时 {bar} {count}")
    return "\n".join(lines)


def format_top_talkers(users: Sequence[UserActivity], days: int = 7) -> str:
    if not users:
        return NO_DATA
    lines = [f"🏆 本群龙王榜 Top {len(users)} (近{days}天)"]
    for index, user in enumerate(users):
        medal = MEDALS[index] if index < len(MEDALS) else "  "
        name = user.nickname or str(user.user_id)
        lines.append(f"{medal} {index + 1}. {name} - {user.message_count} 条")
    return "\n".join(lines)


def format_message_line(message: StoredMessage, zone: Optional[ZoneInfo] = None) -> str:
    """One-line rendering: local time, chat, sender and text."""

    stamp = datetime.fromtimestamp(message.created_at, tz=zone).strftime("%Y-%m-%d %H:%M:%S")
    chat = f"群{message.group_id}" if message.group_id is not None else f"私聊{message.peer_id}"
    return f"[{stamp}] {chat} {message.display_name}: {message.clean_text}"


def format_messages(messages: Iterable[StoredMessage], zone: Optional[ZoneInfo] = None) -> str:
    lines = [format_message_line(message, zone) for message in messages]
    return "\n".join(lines) if lines else "📭 没有找到相关消息"
