"""Deduplication helpers (core domain).

A message observed on several channels (live receive, the bot's own send
path, multi-client sync) must map to the same key. The key deliberately
ignores the timestamp: sync replays can be a second off.
"""

from __future__ import annotations

import hashlib
import re
from collections import OrderedDict
from typing import Optional


def _collapse_whitespace(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def normalize_for_fingerprint(text: str) -> str:
    """Normalize text for deterministic fingerprinting."""

    return _collapse_whitespace(text).lower()


def chat_scope(group_id: Optional[int], peer_id: Optional[int]) -> str:
    """Return the conversation part of a dedup key."""

    if group_id is not None:
        return f"g{group_id}"
    return f"p{peer_id if peer_id is not None else 0}"


def compute_fingerprint(scope: str, user_id: int, created_at: int, normalized_text: str) -> str:
    """Return a content hash for events without a usable platform message id."""

    payload = f"{scope}\n{user_id}\n{created_at}\n{normalized_text}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def compute_dedup_key(
    *,
    group_id: Optional[int],
    peer_id: Optional[int],
    user_id: int,
    message_id: int,
    created_at: int,
    text: str,
) -> str:
    """Return the unique key that identifies one platform message."""

    scope = chat_scope(group_id, peer_id)
    if message_id:
        return f"{scope}:{user_id}:{message_id}"
    fingerprint = compute_fingerprint(scope, user_id, created_at, normalize_for_fingerprint(text))
    return f"{scope}:{user_id}:fp:{fingerprint}"


class RecentKeys:
    """Bounded LRU of dedup keys already submitted to the writer."""

    def __init__(self, capacity: int) -> None:
        self._capacity = max(0, capacity)
        self._keys: OrderedDict[str, None] = OrderedDict()

    def __contains__(self, key: str) -> bool:
        if key not in self._keys:
            return False
        self._keys.move_to_end(key)
        return True

    def __len__(self) -> int:
        return len(self._keys)

    def add(self, key: str) -> None:
        if self._capacity == 0:
            return
        self._keys[key] = None
        self._keys.move_to_end(key)
        while len(self._keys) > self._capacity:
            self._keys.popitem(last=False)

    def discard(self, key: str) -> None:
        self._keys.pop(key, None)
