"""SQLite storage adapter.

Owns the physical schema and the synchronous write primitives. Every
primitive takes an open connection so the writer can group several of them
into one transaction; nothing here commits on its own.
"""

from __future__ import annotations

import logging
import sqlite3
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path
from typing import Mapping, Optional, Tuple

from core.models import GLOBAL_SCOPE, MessageRecord, WriteResult, WriteUnit

LOGGER = logging.getLogger(__name__)

DB_FILENAME = "msg_history.sqlite"

# (scope, date, word) -> count, coalesced per batch before flushing.
WordIncrements = Counter

SCHEMA = (
    # messages is the immutable event log. dedup_key is unique so the same
    # platform message seen on several channels collapses to one row.
    # Fields worth noting:
    # - origin: channel of the first observation (first write wins)
    # - origins: bitmask union of every channel it was seen on
    # - seen_count: number of observations merged into this row
    # - local_date/hour_of_day/day_of_week: derived in the configured zone
    """
    CREATE TABLE IF NOT EXISTS messages (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        dedup_key TEXT NOT NULL UNIQUE,
        message_id INTEGER NOT NULL,
        origin INTEGER NOT NULL,
        origins INTEGER NOT NULL,
        seen_count INTEGER NOT NULL DEFAULT 1,
        msg_type TEXT NOT NULL,
        sub_type TEXT,
        group_id INTEGER,
        peer_id INTEGER,
        user_id INTEGER NOT NULL,
        created_at INTEGER NOT NULL,
        local_date TEXT NOT NULL,
        hour_of_day INTEGER NOT NULL,
        day_of_week INTEGER NOT NULL,
        raw_json TEXT NOT NULL,
        clean_text TEXT NOT NULL,
        text_length INTEGER NOT NULL DEFAULT 0,
        word_count INTEGER NOT NULL DEFAULT 0,
        has_image INTEGER NOT NULL DEFAULT 0,
        has_at INTEGER NOT NULL DEFAULT 0,
        is_reply INTEGER NOT NULL DEFAULT 0,
        has_other_media INTEGER NOT NULL DEFAULT 0,
        sender_nickname TEXT NOT NULL DEFAULT '',
        sender_card TEXT,
        sender_role TEXT,
        recorded_at TEXT NOT NULL
    )
    """,
    # keywords keeps the tokens of each message (one row per distinct word,
    # weight = occurrences) for per-user word clouds.
    """
    CREATE TABLE IF NOT EXISTS keywords (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        message_row_id INTEGER NOT NULL REFERENCES messages(id),
        word TEXT NOT NULL,
        weight INTEGER NOT NULL,
        group_id INTEGER,
        user_id INTEGER NOT NULL,
        created_at INTEGER NOT NULL,
        local_date TEXT NOT NULL
    )
    """,
    # word_stats is the per-day aggregate behind group word clouds. scope is
    # the group id, or GLOBAL_SCOPE for the all-chats aggregate.
    """
    CREATE TABLE IF NOT EXISTS word_stats (
        scope INTEGER NOT NULL,
        date TEXT NOT NULL,
        word TEXT NOT NULL,
        count INTEGER NOT NULL,
        PRIMARY KEY (scope, date, word)
    ) WITHOUT ROWID
    """,
    """
    CREATE TABLE IF NOT EXISTS users (
        user_id INTEGER PRIMARY KEY,
        nickname TEXT NOT NULL DEFAULT '',
        first_seen INTEGER NOT NULL,
        last_seen INTEGER NOT NULL,
        message_count INTEGER NOT NULL DEFAULT 0,
        char_count INTEGER NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS group_members (
        group_id INTEGER NOT NULL,
        user_id INTEGER NOT NULL,
        card TEXT,
        role TEXT,
        first_seen INTEGER NOT NULL,
        last_seen INTEGER NOT NULL,
        message_count INTEGER NOT NULL DEFAULT 0,
        PRIMARY KEY (group_id, user_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS group_configs (
        group_id INTEGER PRIMARY KEY,
        enabled INTEGER NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_messages_group_time ON messages(group_id, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_messages_group_date ON messages(group_id, local_date)",
    "CREATE INDEX IF NOT EXISTS idx_messages_user_time ON messages(user_id, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_messages_created_at ON messages(created_at)",
    "CREATE INDEX IF NOT EXISTS idx_keywords_user_date ON keywords(user_id, local_date)",
    "CREATE INDEX IF NOT EXISTS idx_keywords_group_date ON keywords(group_id, local_date)",
    "CREATE INDEX IF NOT EXISTS idx_keywords_message ON keywords(message_row_id)",
)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class SQLiteStorage:
    """Thin SQLite wrapper holding the schema and write primitives."""

    def __init__(self, db_path: Path | str, busy_timeout: float = 5.0) -> None:
        self._db_path = str(db_path)
        self._busy_timeout = busy_timeout

    @property
    def db_path(self) -> str:
        return self._db_path

    def connect(self, *, read_only: bool = False) -> sqlite3.Connection:
        """Open a connection in autocommit mode; callers issue BEGIN themselves."""

        conn = sqlite3.connect(
            self._db_path,
            timeout=self._busy_timeout,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        conn.execute(f"PRAGMA busy_timeout={int(self._busy_timeout * 1000)}")
        conn.execute("PRAGMA foreign_keys=ON")
        if read_only:
            conn.execute("PRAGMA query_only=ON")
        return conn

    def init_db(self) -> None:
        """Create tables and indices if they do not exist, and switch to WAL."""

        Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        conn = self.connect()
        try:
            # WAL lets readers proceed while the single writer commits.
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")
            conn.execute("BEGIN IMMEDIATE")
            for statement in SCHEMA:
                conn.execute(statement)
            conn.execute("COMMIT")
        except sqlite3.Error:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()
        LOGGER.info("Database ready at %s", self._db_path)

    def insert_message(self, conn: sqlite3.Connection, record: MessageRecord, word_count: int) -> Tuple[bool, int]:
        """Insert a message or merge its origin into the existing row.

        Returns (inserted, row id). Content is first-write-wins; only the
        origins bitmask and seen_count change on a merge.
        """

        flags = record.flags
        cur = conn.execute(
            """
            INSERT OR IGNORE INTO messages (
                dedup_key, message_id, origin, origins, msg_type, sub_type,
                group_id, peer_id, user_id, created_at, local_date,
                hour_of_day, day_of_week, raw_json, clean_text, text_length,
                word_count, has_image, has_at, is_reply, has_other_media,
                sender_nickname, sender_card, sender_role, recorded_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.dedup_key,
                record.message_id,
                int(record.origin),
                int(record.origin),
                record.msg_type,
                record.sub_type,
                record.group_id,
                record.peer_id,
                record.user_id,
                record.created_at,
                record.local_date,
                record.hour_of_day,
                record.day_of_week,
                record.raw_json,
                record.clean_text,
                record.text_length,
                word_count,
                int(flags.has_image),
                int(flags.has_at),
                int(flags.is_reply),
                int(flags.has_other_media),
                record.sender_nickname,
                record.sender_card,
                record.sender_role,
                _now_iso(),
            ),
        )
        if cur.rowcount == 1:
            return True, int(cur.lastrowid)
        return False, self.merge_origin(conn, record)

    def merge_origin(self, conn: sqlite3.Connection, record: MessageRecord) -> int:
        """Union the record's origin into the stored row and return its id."""

        conn.execute(
            """
            UPDATE messages
            SET origins = origins | ?, seen_count = seen_count + 1
            WHERE dedup_key = ?
            """,
            (int(record.origin), record.dedup_key),
        )
        row = conn.execute("SELECT id FROM messages WHERE dedup_key = ?", (record.dedup_key,)).fetchone()
        return int(row["id"])

    def upsert_user(self, conn: sqlite3.Connection, record: MessageRecord) -> None:
        """Count one accepted message for the sender; latest nickname wins by event time."""

        conn.execute(
            """
            INSERT INTO users (user_id, nickname, first_seen, last_seen, message_count, char_count)
            VALUES (?, ?, ?, ?, 1, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                nickname = CASE
                    WHEN excluded.last_seen >= users.last_seen AND excluded.nickname != ''
                    THEN excluded.nickname ELSE users.nickname END,
                first_seen = MIN(users.first_seen, excluded.first_seen),
                last_seen = MAX(users.last_seen, excluded.last_seen),
                message_count = users.message_count + 1,
                char_count = users.char_count + excluded.char_count
            """,
            (
                record.user_id,
                record.sender_nickname,
                record.created_at,
                record.created_at,
                record.text_length,
            ),
        )

    def upsert_member(self, conn: sqlite3.Connection, record: MessageRecord) -> None:
        """Track the per-group card and role of the sender."""

        if record.group_id is None:
            return
        conn.execute(
            """
            INSERT INTO group_members (group_id, user_id, card, role, first_seen, last_seen, message_count)
            VALUES (?, ?, ?, ?, ?, ?, 1)
            ON CONFLICT(group_id, user_id) DO UPDATE SET
                card = CASE WHEN excluded.last_seen >= group_members.last_seen
                    THEN excluded.card ELSE group_members.card END,
                role = CASE WHEN excluded.last_seen >= group_members.last_seen
                    THEN COALESCE(excluded.role, group_members.role) ELSE group_members.role END,
                first_seen = MIN(group_members.first_seen, excluded.first_seen),
                last_seen = MAX(group_members.last_seen, excluded.last_seen),
                message_count = group_members.message_count + 1
            """,
            (
                record.group_id,
                record.user_id,
                record.sender_card,
                record.sender_role,
                record.created_at,
                record.created_at,
            ),
        )

    def insert_keywords(
        self,
        conn: sqlite3.Connection,
        row_id: int,
        record: MessageRecord,
        words: Mapping[str, int],
    ) -> None:
        conn.executemany(
            """
            INSERT INTO keywords (message_row_id, word, weight, group_id, user_id, created_at, local_date)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (row_id, word, weight, record.group_id, record.user_id, record.created_at, record.local_date)
                for word, weight in words.items()
            ],
        )

    def increment_word_stats(self, conn: sqlite3.Connection, increments: Mapping[tuple, int]) -> None:
        """Add coalesced (scope, date, word) counts to the aggregate table."""

        if not increments:
            return
        conn.executemany(
            """
            INSERT INTO word_stats (scope, date, word, count) VALUES (?, ?, ?, ?)
            ON CONFLICT(scope, date, word) DO UPDATE SET count = word_stats.count + excluded.count
            """,
            [(scope, day, word, count) for (scope, day, word), count in increments.items()],
        )

    def set_group_config(self, conn: sqlite3.Connection, group_id: int, enabled: bool) -> None:
        conn.execute(
            """
            INSERT INTO group_configs (group_id, enabled, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(group_id) DO UPDATE SET enabled = excluded.enabled, updated_at = excluded.updated_at
            """,
            (group_id, int(enabled), _now_iso()),
        )

    def get_group_config(self, conn: sqlite3.Connection, group_id: int) -> Optional[bool]:
        row = conn.execute("SELECT enabled FROM group_configs WHERE group_id = ?", (group_id,)).fetchone()
        return bool(row["enabled"]) if row else None

    def apply_unit(self, conn: sqlite3.Connection, unit: WriteUnit, increments: WordIncrements) -> WriteResult:
        """Apply one write unit inside the caller's transaction.

        Word-stat increments are only collected into ``increments`` when the
        message is inserted for the first time, so reprocessing never double
        counts.
        """

        record = unit.record
        words = unit.words or {}
        if unit.register_group and record.group_id is not None:
            self.set_group_config(conn, record.group_id, True)
        inserted, row_id = self.insert_message(conn, record, sum(words.values()))
        if not inserted:
            return WriteResult(inserted=False, row_id=row_id)

        if unit.merge_only:
            LOGGER.warning("Merge-only unit %s had no stored row; stored without keywords", record.dedup_key)
        self.upsert_user(conn, record)
        self.upsert_member(conn, record)
        if words:
            self.insert_keywords(conn, row_id, record, words)
            for word, count in words.items():
                if record.group_id is not None:
                    increments[(record.group_id, record.local_date, word)] += count
                increments[(GLOBAL_SCOPE, record.local_date, word)] += count
        return WriteResult(inserted=True, row_id=row_id)
