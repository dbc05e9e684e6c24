from __future__ import annotations

from collections import Counter

from adapters.onebot_mapper import OneBotMapper
from adapters.sqlite_storage import SQLiteStorage
from core.models import GLOBAL_SCOPE, Origin, WriteUnit
from helpers import group_event, private_event


def _apply(storage: SQLiteStorage, unit: WriteUnit):
    conn = storage.connect()
    try:
        increments: Counter = Counter()
        conn.execute("BEGIN IMMEDIATE")
        result = storage.apply_unit(conn, unit, increments)
        storage.increment_word_stats(conn, increments)
        conn.execute("COMMIT")
        return result
    finally:
        conn.close()


def _scalar(storage: SQLiteStorage, sql: str, params: tuple = ()):
    conn = storage.connect(read_only=True)
    try:
        return conn.execute(sql, params).fetchone()[0]
    finally:
        conn.close()


def test_init_db_enables_wal_and_is_idempotent(storage: SQLiteStorage) -> None:
    storage.init_db()
    assert _scalar(storage, "PRAGMA journal_mode") == "wal"
    tables = {
        row[0]
        for row in storage.connect().execute("SELECT name FROM sqlite_master WHERE type = 'table'").fetchall()
    }
    assert {"messages", "keywords", "word_stats", "users", "group_members", "group_configs"} <= tables


def test_duplicate_key_merges_origins_and_counts_once(storage: SQLiteStorage) -> None:
    mapper = OneBotMapper()
    live = mapper.map_event(group_event(group_id=1, user_id=2, message_id=3, text="hi", time=10))
    echo = mapper.map_event(
        group_event(group_id=1, user_id=2, message_id=3, text="edited", time=11, post_type="message_sent")
    )

    first = _apply(storage, WriteUnit(live, Counter({"hi": 1})))
    second = _apply(storage, WriteUnit(echo, Counter({"edited": 1})))

    assert first.inserted and not second.inserted
    assert first.row_id == second.row_id
    assert _scalar(storage, "SELECT COUNT(*) FROM messages") == 1
    assert _scalar(storage, "SELECT origins FROM messages") == int(Origin.RECEIVED | Origin.SYNCED)
    assert _scalar(storage, "SELECT origin FROM messages") == int(Origin.RECEIVED)
    assert _scalar(storage, "SELECT seen_count FROM messages") == 2
    # First write wins for content and derived counters.
    assert _scalar(storage, "SELECT clean_text FROM messages") == "hi"
    assert _scalar(storage, "SELECT message_count FROM users WHERE user_id = 2") == 1
    assert _scalar(storage, "SELECT COUNT(*) FROM keywords") == 1
    assert _scalar(storage, "SELECT SUM(count) FROM word_stats WHERE word = 'edited'") is None


def test_word_stats_cover_group_and_global_scope(storage: SQLiteStorage) -> None:
    mapper = OneBotMapper()
    group = mapper.map_event(group_event(group_id=5, user_id=2, message_id=1, text="x", time=10))
    private = mapper.map_event(private_event(user_id=2, message_id=2, text="x", time=10))
    _apply(storage, WriteUnit(group, Counter({"apple": 2})))
    _apply(storage, WriteUnit(private, Counter({"apple": 1})))

    assert _scalar(storage, "SELECT count FROM word_stats WHERE scope = 5 AND word = 'apple'") == 2
    assert _scalar(
        storage, "SELECT count FROM word_stats WHERE scope = ? AND word = 'apple'", (GLOBAL_SCOPE,)
    ) == 3


def test_user_upsert_keeps_latest_nickname_and_first_seen(storage: SQLiteStorage) -> None:
    mapper = OneBotMapper()
    newer = mapper.map_event(group_event(group_id=1, user_id=2, message_id=2, text="abc", time=200, nickname="New"))
    older = mapper.map_event(group_event(group_id=1, user_id=2, message_id=1, text="de", time=100, nickname="Old"))
    _apply(storage, WriteUnit(newer))
    _apply(storage, WriteUnit(older))

    conn = storage.connect(read_only=True)
    try:
        row = conn.execute("SELECT * FROM users WHERE user_id = 2").fetchone()
    finally:
        conn.close()
    assert row["nickname"] == "New"
    assert row["first_seen"] == 100
    assert row["last_seen"] == 200
    assert row["message_count"] == 2
    assert row["char_count"] == 5


def test_group_member_tracks_card(storage: SQLiteStorage) -> None:
    record = OneBotMapper().map_event(
        group_event(group_id=9, user_id=2, message_id=1, text="x", time=1, card="Card", role="owner")
    )
    _apply(storage, WriteUnit(record))
    assert _scalar(storage, "SELECT card FROM group_members WHERE group_id = 9 AND user_id = 2") == "Card"
    assert _scalar(storage, "SELECT role FROM group_members WHERE group_id = 9 AND user_id = 2") == "owner"


def test_group_config_upserts(storage: SQLiteStorage) -> None:
    conn = storage.connect()
    try:
        storage.set_group_config(conn, 1, True)
        assert storage.get_group_config(conn, 1) is True
        storage.set_group_config(conn, 1, False)
        assert storage.get_group_config(conn, 1) is False
        assert storage.get_group_config(conn, 2) is None
    finally:
        conn.close()


def test_register_group_is_written_with_the_message(storage: SQLiteStorage) -> None:
    record = OneBotMapper().map_event(group_event(group_id=5, user_id=2, message_id=1, text="x", time=1))
    _apply(storage, WriteUnit(record, register_group=True))
    assert _scalar(storage, "SELECT enabled FROM group_configs WHERE group_id = 5") == 1

    other = OneBotMapper().map_event(group_event(group_id=6, user_id=2, message_id=1, text="x", time=1))
    _apply(storage, WriteUnit(other))
    assert _scalar(storage, "SELECT COUNT(*) FROM group_configs WHERE group_id = 6") == 0
