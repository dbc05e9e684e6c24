"""Read-only query API over the SQLite store.

Each query runs on its own short-lived connection inside one read
transaction, so it sees a single WAL snapshot while the writer keeps
committing. Queries run in a worker thread to keep the event loop free.

Windows given as "last N days" are local calendar days in the configured
time zone: today plus the N-1 days before it. Invalid windows (N <= 0,
inverted ranges) yield empty results rather than errors.
"""

from __future__ import annotations

import asyncio
import math
import sqlite3
import time
from datetime import date, datetime, timedelta
from typing import Any, Callable, Optional, Tuple, TypeVar, Union
from zoneinfo import ZoneInfo

from adapters.sqlite_storage import SQLiteStorage
from core.errors import QueryError
from core.models import (
    GLOBAL_SCOPE,
    DailyCount,
    GroupActivity,
    MessageFlags,
    MessageTypeStats,
    Origin,
    PeriodComparison,
    StorageStats,
    StoredMessage,
    UserActivity,
    UserStats,
    WordCount,
)

T = TypeVar("T")
DateLike = Union[date, str]
DateRange = Tuple[DateLike, DateLike]


def _coerce_date(value: DateLike) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value))


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _to_message(row: sqlite3.Row) -> StoredMessage:
    return StoredMessage(
        id=row["id"],
        message_id=row["message_id"],
        origins=Origin(row["origins"]),
        msg_type=row["msg_type"],
        sub_type=row["sub_type"],
        group_id=row["group_id"],
        peer_id=row["peer_id"],
        user_id=row["user_id"],
        created_at=row["created_at"],
        raw_json=row["raw_json"],
        clean_text=row["clean_text"],
        flags=MessageFlags(
            has_image=bool(row["has_image"]),
            has_at=bool(row["has_at"]),
            is_reply=bool(row["is_reply"]),
            has_other_media=bool(row["has_other_media"]),
        ),
        text_length=row["text_length"],
        sender_nickname=row["sender_nickname"],
        sender_card=row["sender_card"],
        sender_role=row["sender_role"],
        seen_count=row["seen_count"],
    )


def _scope(group_id: Optional[int] = None, user_id: Optional[int] = None, alias: str = "") -> Tuple[list[str], list[Any]]:
    prefix = f"{alias}." if alias else ""
    conditions: list[str] = []
    params: list[Any] = []
    if group_id is not None:
        conditions.append(f"{prefix}group_id = ?")
        params.append(group_id)
    if user_id is not None:
        conditions.append(f"{prefix}user_id = ?")
        params.append(user_id)
    return conditions, params


def _where(conditions: list[str]) -> str:
    return "WHERE " + " AND ".join(conditions) if conditions else ""


class QueryApi:
    """Analytical and retrieval queries for visualization consumers."""

    def __init__(
        self,
        storage: SQLiteStorage,
        timezone: str = "Asia/Shanghai",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._storage = storage
        self._zone = ZoneInfo(timezone)
        self._clock = clock

    # ─── plumbing ───

    def today(self) -> date:
        return datetime.fromtimestamp(self._clock(), tz=self._zone).date()

    def window(self, days: int) -> Optional[Tuple[date, date]]:
        """Return the inclusive local-date bounds of the last ``days`` days."""

        if days <= 0:
            return None
        end = self.today()
        return end - timedelta(days=days - 1), end

    @staticmethod
    def _range(start: DateLike, end: DateLike) -> Optional[Tuple[date, date]]:
        try:
            start_date, end_date = _coerce_date(start), _coerce_date(end)
        except ValueError as exc:
            raise QueryError(f"invalid date: {exc}") from exc
        if start_date > end_date:
            return None
        return start_date, end_date

    def _read(self, fn: Callable[[sqlite3.Connection], T]) -> T:
        try:
            conn = self._storage.connect(read_only=True)
        except sqlite3.Error as exc:
            raise QueryError(f"cannot open store: {exc}") from exc
        try:
            conn.execute("BEGIN")
            return fn(conn)
        except sqlite3.Error as exc:
            raise QueryError(str(exc)) from exc
        finally:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            conn.close()

    async def _run(self, fn: Callable[[sqlite3.Connection], T]) -> T:
        return await asyncio.to_thread(self._read, fn)

    # ─── overview ───

    async def storage_stats(self) -> StorageStats:
        """Global totals across every recorded chat."""

        def query(conn: sqlite3.Connection) -> StorageStats:
            def scalar(sql: str, params: tuple = ()) -> int:
                return int(conn.execute(sql, params).fetchone()[0] or 0)

            return StorageStats(
                total_messages=scalar("SELECT COUNT(*) FROM messages"),
                total_words=scalar("SELECT COUNT(DISTINCT word) FROM word_stats WHERE scope = ?", (GLOBAL_SCOPE,)),
                total_keywords=scalar("SELECT COUNT(*) FROM keywords"),
                total_users=scalar("SELECT COUNT(*) FROM users"),
                groups_tracked=scalar("SELECT COUNT(DISTINCT group_id) FROM messages WHERE group_id IS NOT NULL"),
            )

        return await self._run(query)

    async def message_type_stats(
        self,
        group_id: Optional[int] = None,
        user_id: Optional[int] = None,
        days: int = 7,
    ) -> MessageTypeStats:
        """Count messages per structural flag.

        image/mention/reply overlap; text_only has text and no flag; other is
        everything else (voice, files, stickers, empty renders).
        """

        bounds = self.window(days)
        if bounds is None:
            return MessageTypeStats()
        conditions, params = _scope(group_id, user_id)
        conditions.append("local_date BETWEEN ? AND ?")
        params.extend(d.isoformat() for d in bounds)
        sql = f"""
            SELECT
                COUNT(*) AS total,
                SUM(CASE WHEN has_image = 0 AND has_at = 0 AND is_reply = 0
                         AND has_other_media = 0 AND text_length > 0 THEN 1 ELSE 0 END) AS text_only,
                SUM(has_image) AS image,
                SUM(has_at) AS mention,
                SUM(is_reply) AS reply,
                SUM(CASE WHEN has_image = 0 AND has_at = 0 AND is_reply = 0
                         AND (has_other_media = 1 OR text_length = 0) THEN 1 ELSE 0 END) AS other
            FROM messages {_where(conditions)}
        """

        def query(conn: sqlite3.Connection) -> MessageTypeStats:
            row = conn.execute(sql, params).fetchone()
            return MessageTypeStats(**{key: int(row[key] or 0) for key in row.keys()})

        return await self._run(query)

    # ─── word clouds ───

    async def word_cloud(self, group_id: Optional[int], limit: int = 20, days: int = 7) -> list[WordCount]:
        """Top words of a group (None = all chats) over the last ``days`` days."""

        bounds = self.window(days)
        if bounds is None:
            return []
        return await self.word_cloud_range(group_id, bounds[0], bounds[1], limit)

    async def word_cloud_range(
        self,
        group_id: Optional[int],
        start: DateLike,
        end: DateLike,
        limit: int = 20,
    ) -> list[WordCount]:
        bounds = self._range(start, end)
        if bounds is None or limit <= 0:
            return []
        scope = GLOBAL_SCOPE if group_id is None else group_id

        def query(conn: sqlite3.Connection) -> list[WordCount]:
            rows = conn.execute(
                """
                SELECT word, SUM(count) AS count FROM word_stats
                WHERE scope = ? AND date BETWEEN ? AND ?
                GROUP BY word ORDER BY count DESC, word ASC LIMIT ?
                """,
                (scope, bounds[0].isoformat(), bounds[1].isoformat(), limit),
            ).fetchall()
            return [WordCount(word=row["word"], count=int(row["count"])) for row in rows]

        return await self._run(query)

    async def user_word_cloud(
        self,
        user_id: int,
        limit: int = 20,
        days: int = 30,
        group_id: Optional[int] = None,
    ) -> list[WordCount]:
        """Top words of one sender, optionally within one group."""

        bounds = self.window(days)
        if bounds is None or limit <= 0:
            return []
        conditions, params = _scope(group_id, user_id)
        conditions.append("local_date BETWEEN ? AND ?")
        params.extend(d.isoformat() for d in bounds)
        params.append(limit)

        def query(conn: sqlite3.Connection) -> list[WordCount]:
            rows = conn.execute(
                f"""
                SELECT word, SUM(weight) AS count FROM keywords {_where(conditions)}
                GROUP BY word ORDER BY count DESC, word ASC LIMIT ?
                """,
                params,
            ).fetchall()
            return [WordCount(word=row["word"], count=int(row["count"])) for row in rows]

        return await self._run(query)

    # ─── activity distributions ───

    async def _grouped_counts(
        self, group_id: Optional[int], days: int, columns: str
    ) -> list[sqlite3.Row]:
        bounds = self.window(days)
        if bounds is None:
            return []
        conditions, params = _scope(group_id)
        conditions.append("local_date BETWEEN ? AND ?")
        params.extend(d.isoformat() for d in bounds)

        def query(conn: sqlite3.Connection) -> list[sqlite3.Row]:
            return conn.execute(
                f"SELECT {columns}, COUNT(*) AS count FROM messages {_where(conditions)} GROUP BY {columns}",
                params,
            ).fetchall()

        return await self._run(query)

    async def hourly_heatmap(self, group_id: Optional[int], days: int = 30) -> list[int]:
        """Message counts indexed by local hour of day (24 entries)."""

        hours = [0] * 24
        for row in await self._grouped_counts(group_id, days, "hour_of_day"):
            hours[row["hour_of_day"]] = int(row["count"])
        return hours

    async def weekly_hourly_heatmap(self, group_id: Optional[int], days: int = 30) -> list[list[int]]:
        """7x24 grid: rows Monday..Sunday, columns hour of day."""

        grid = [[0] * 24 for _ in range(7)]
        for row in await self._grouped_counts(group_id, days, "day_of_week, hour_of_day"):
            grid[row["day_of_week"]][row["hour_of_day"]] = int(row["count"])
        return grid

    async def weekly_distribution(self, group_id: Optional[int], days: int = 30) -> list[int]:
        """Message counts Monday..Sunday (7 entries)."""

        weekdays = [0] * 7
        for row in await self._grouped_counts(group_id, days, "day_of_week"):
            weekdays[row["day_of_week"]] = int(row["count"])
        return weekdays

    async def daily_trend(self, group_id: Optional[int], days: int = 7) -> list[DailyCount]:
        bounds = self.window(days)
        if bounds is None:
            return []
        return await self.daily_trend_range(group_id, bounds[0], bounds[1])

    async def daily_trend_range(self, group_id: Optional[int], start: DateLike, end: DateLike) -> list[DailyCount]:
        """Chronological per-day counts, including days without messages."""

        bounds = self._range(start, end)
        if bounds is None:
            return []
        conditions, params = _scope(group_id)
        conditions.append("local_date BETWEEN ? AND ?")
        params.extend(d.isoformat() for d in bounds)

        def query(conn: sqlite3.Connection) -> dict[str, int]:
            rows = conn.execute(
                f"SELECT local_date, COUNT(*) AS count FROM messages {_where(conditions)} GROUP BY local_date",
                params,
            ).fetchall()
            return {row["local_date"]: int(row["count"]) for row in rows}

        counts = await self._run(query)
        first, last = bounds
        return [
            DailyCount(date=day, count=counts.get(day.isoformat(), 0))
            for day in (first + timedelta(days=offset) for offset in range((last - first).days + 1))
        ]

    async def period_comparison(
        self,
        group_id: Optional[int],
        current: DateRange,
        previous: DateRange,
    ) -> PeriodComparison:
        """Compare message volume of two date ranges (inclusive bounds)."""

        current_bounds = self._range(*current)
        previous_bounds = self._range(*previous)

        def count(conn: sqlite3.Connection, bounds: Optional[Tuple[date, date]]) -> int:
            if bounds is None:
                return 0
            conditions, params = _scope(group_id)
            conditions.append("local_date BETWEEN ? AND ?")
            params.extend(d.isoformat() for d in bounds)
            return int(conn.execute(f"SELECT COUNT(*) FROM messages {_where(conditions)}", params).fetchone()[0])

        def query(conn: sqlite3.Connection) -> Tuple[int, int]:
            return count(conn, current_bounds), count(conn, previous_bounds)

        current_count, previous_count = await self._run(query)
        if previous_count == 0:
            if current_count == 0:
                return PeriodComparison(current=0, previous=0, change=0.0)
            return PeriodComparison(current=current_count, previous=0, change=math.inf, is_new=True)
        change = (current_count - previous_count) / previous_count
        return PeriodComparison(current=current_count, previous=previous_count, change=change)

    # ─── leaderboards and profiles ───

    async def top_talkers(self, group_id: Optional[int], limit: int = 10, days: int = 7) -> list[UserActivity]:
        bounds = self.window(days)
        if bounds is None:
            return []
        return await self.top_talkers_range(group_id, bounds[0], bounds[1], limit)

    async def top_talkers_range(
        self,
        group_id: Optional[int],
        start: DateLike,
        end: DateLike,
        limit: int = 10,
    ) -> list[UserActivity]:
        """Most active senders; ties go to whoever was seen first."""

        bounds = self._range(start, end)
        if bounds is None or limit <= 0:
            return []
        if group_id is None:
            nickname = "COALESCE(u.nickname, '')"
            member_join = ""
            params: list[Any] = []
        else:
            nickname = "COALESCE(NULLIF(gm.card, ''), u.nickname, '')"
            member_join = "LEFT JOIN group_members gm ON gm.group_id = m.group_id AND gm.user_id = m.user_id"
            params = [group_id]
        where = "m.group_id = ? AND " if group_id is not None else ""
        params.extend([bounds[0].isoformat(), bounds[1].isoformat(), limit])
        sql = f"""
            SELECT m.user_id AS user_id, {nickname} AS nickname, COUNT(*) AS count
            FROM messages m
            LEFT JOIN users u ON u.user_id = m.user_id
            {member_join}
            WHERE {where}m.local_date BETWEEN ? AND ?
            GROUP BY m.user_id
            ORDER BY count DESC, MIN(u.first_seen) ASC, m.user_id ASC
            LIMIT ?
        """

        def query(conn: sqlite3.Connection) -> list[UserActivity]:
            rows = conn.execute(sql, params).fetchall()
            return [
                UserActivity(user_id=row["user_id"], nickname=row["nickname"], message_count=int(row["count"]))
                for row in rows
            ]

        return await self._run(query)

    async def user_stats(self, user_id: int, group_id: Optional[int] = None) -> UserStats:
        """Profile of one sender; rank is against all senders in the same scope."""

        conditions, params = _scope(group_id, user_id)
        scope_conditions, scope_params = _scope(group_id)

        def query(conn: sqlite3.Connection) -> UserStats:
            name_row = conn.execute("SELECT nickname FROM users WHERE user_id = ?", (user_id,)).fetchone()
            nickname = name_row["nickname"] if name_row else ""
            if group_id is not None:
                card_row = conn.execute(
                    "SELECT card FROM group_members WHERE group_id = ? AND user_id = ?",
                    (group_id, user_id),
                ).fetchone()
                if card_row and card_row["card"]:
                    nickname = card_row["card"]

            totals = conn.execute(
                f"""
                SELECT COUNT(*) AS messages, COALESCE(SUM(text_length), 0) AS chars,
                       COUNT(DISTINCT local_date) AS days
                FROM messages {_where(conditions)}
                """,
                params,
            ).fetchone()
            message_count = int(totals["messages"])
            if message_count == 0:
                return UserStats(user_id=user_id, nickname=nickname)

            ahead = conn.execute(
                f"""
                SELECT COUNT(*) FROM (
                    SELECT user_id, COUNT(*) AS count FROM messages {_where(scope_conditions)}
                    GROUP BY user_id
                ) WHERE count > ?
                """,
                [*scope_params, message_count],
            ).fetchone()[0]
            favorite = conn.execute(
                f"""
                SELECT hour_of_day, COUNT(*) AS count FROM messages {_where(conditions)}
                GROUP BY hour_of_day ORDER BY count DESC, hour_of_day ASC LIMIT 1
                """,
                params,
            ).fetchone()
            char_count = int(totals["chars"])
            return UserStats(
                user_id=user_id,
                nickname=nickname,
                message_count=message_count,
                char_count=char_count,
                active_days=int(totals["days"]),
                rank=int(ahead) + 1,
                favorite_hour=int(favorite["hour_of_day"]),
                avg_length=char_count / message_count,
            )

        return await self._run(query)

    async def user_group_activity(self, user_id: int) -> list[GroupActivity]:
        def query(conn: sqlite3.Connection) -> list[GroupActivity]:
            rows = conn.execute(
                """
                SELECT group_id, COUNT(*) AS count FROM messages
                WHERE user_id = ? AND group_id IS NOT NULL
                GROUP BY group_id ORDER BY count DESC, group_id ASC
                """,
                (user_id,),
            ).fetchall()
            return [GroupActivity(group_id=row["group_id"], message_count=int(row["count"])) for row in rows]

        return await self._run(query)

    # ─── message retrieval ───

    async def recent_group_messages(self, group_id: int, limit: int = 20) -> list[StoredMessage]:
        """The latest ``limit`` messages of a group, oldest first (context window order)."""

        if limit <= 0:
            return []

        def query(conn: sqlite3.Connection) -> list[StoredMessage]:
            rows = conn.execute(
                """
                SELECT * FROM (
                    SELECT * FROM messages WHERE group_id = ?
                    ORDER BY created_at DESC, id DESC LIMIT ?
                ) ORDER BY created_at ASC, id ASC
                """,
                (group_id, limit),
            ).fetchall()
            return [_to_message(row) for row in rows]

        return await self._run(query)

    async def messages_by_time_range(
        self,
        start_ts: int,
        end_ts: int,
        group_id: Optional[int] = None,
        user_id: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> list[StoredMessage]:
        """Messages with start_ts <= created_at <= end_ts, chronological."""

        if start_ts > end_ts:
            return []
        conditions, params = _scope(group_id, user_id)
        conditions.append("created_at BETWEEN ? AND ?")
        params.extend([start_ts, end_ts, -1 if limit is None else limit])

        def query(conn: sqlite3.Connection) -> list[StoredMessage]:
            rows = conn.execute(
                f"SELECT * FROM messages {_where(conditions)} ORDER BY created_at ASC, id ASC LIMIT ?",
                params,
            ).fetchall()
            return [_to_message(row) for row in rows]

        return await self._run(query)

    async def messages_range(self, group_id: Optional[int], start: DateLike, end: DateLike) -> list[StoredMessage]:
        """Messages between two local dates (inclusive), chronological."""

        bounds = self._range(start, end)
        if bounds is None:
            return []
        conditions, params = _scope(group_id)
        conditions.append("local_date BETWEEN ? AND ?")
        params.extend(d.isoformat() for d in bounds)

        def query(conn: sqlite3.Connection) -> list[StoredMessage]:
            rows = conn.execute(
                f"SELECT * FROM messages {_where(conditions)} ORDER BY created_at ASC, id ASC",
                params,
            ).fetchall()
            return [_to_message(row) for row in rows]

        return await self._run(query)

    async def search_messages(
        self,
        keyword: str,
        group_id: Optional[int] = None,
        user_id: Optional[int] = None,
        limit: int = 50,
    ) -> list[StoredMessage]:
        """Substring search on the plain-text rendering, newest first."""

        keyword = keyword.strip()
        if not keyword or limit <= 0:
            return []
        conditions, params = _scope(group_id, user_id)
        conditions.append("clean_text LIKE ? ESCAPE '\\'")
        params.extend([f"%{_escape_like(keyword)}%", limit])

        def query(conn: sqlite3.Connection) -> list[StoredMessage]:
            rows = conn.execute(
                f"SELECT * FROM messages {_where(conditions)} ORDER BY created_at DESC, id DESC LIMIT ?",
                params,
            ).fetchall()
            return [_to_message(row) for row in rows]

        return await self._run(query)

    async def user_messages(
        self,
        user_id: int,
        group_id: Optional[int] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[StoredMessage]:
        """One page of a sender's history, newest first."""

        if limit <= 0:
            return []
        conditions, params = _scope(group_id, user_id)
        params.extend([limit, max(0, offset)])

        def query(conn: sqlite3.Connection) -> list[StoredMessage]:
            rows = conn.execute(
                f"""
                SELECT * FROM messages {_where(conditions)}
                ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?
                """,
                params,
            ).fetchall()
            return [_to_message(row) for row in rows]

        return await self._run(query)
