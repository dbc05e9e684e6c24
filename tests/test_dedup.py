from __future__ import annotations

from core.dedup import RecentKeys, chat_scope, compute_dedup_key, normalize_for_fingerprint


def test_key_uses_message_id_and_ignores_timestamp() -> None:
    first = compute_dedup_key(group_id=1, peer_id=None, user_id=2, message_id=3, created_at=100, text="hi")
    replay = compute_dedup_key(group_id=1, peer_id=None, user_id=2, message_id=3, created_at=101, text="hi")
    assert first == replay == "g1:2:3"


def test_key_distinguishes_chats() -> None:
    group = compute_dedup_key(group_id=5, peer_id=None, user_id=2, message_id=3, created_at=1, text="")
    private = compute_dedup_key(group_id=None, peer_id=5, user_id=2, message_id=3, created_at=1, text="")
    assert group != private
    assert private.startswith("p5:")


def test_missing_message_id_falls_back_to_fingerprint() -> None:
    key = compute_dedup_key(group_id=1, peer_id=None, user_id=2, message_id=0, created_at=100, text="Hello  World")
    same = compute_dedup_key(group_id=1, peer_id=None, user_id=2, message_id=0, created_at=100, text="hello world")
    other = compute_dedup_key(group_id=1, peer_id=None, user_id=2, message_id=0, created_at=100, text="bye")
    assert key.startswith("g1:2:fp:")
    assert key == same
    assert key != other


def test_normalize_collapses_whitespace_and_case() -> None:
    assert normalize_for_fingerprint("  A\tB \n c ") == "a b c"
    assert chat_scope(None, None) == "p0"


def test_recent_keys_evicts_least_recently_used() -> None:
    keys = RecentKeys(2)
    keys.add("a")
    keys.add("b")
    assert "a" in keys  # refreshes "a"
    keys.add("c")
    assert "b" not in keys
    assert "a" in keys and "c" in keys
    assert len(keys) == 2

    keys.discard("a")
    assert "a" not in keys


def test_recent_keys_with_zero_capacity_stores_nothing() -> None:
    keys = RecentKeys(0)
    keys.add("a")
    assert "a" not in keys
