"""OneBot 11 to core message mapping adapter.

This keeps OneBot payload details (segment arrays, CQ-code strings, sender
blocks, sync echoes) out of the core pipeline.
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping
from datetime import datetime
from typing import Any, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from core.dedup import compute_dedup_key
from core.errors import ConfigError, MalformedEvent
from core.models import (
    MEDIA_PLACEHOLDERS,
    MENTION_PLACEHOLDER,
    MessageFlags,
    MessageRecord,
    Origin,
)

MESSAGE_POST_TYPES = {"message": Origin.RECEIVED, "message_sent": Origin.SYNCED}

_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1

_CQ_PATTERN = re.compile(r"\[CQ:([A-Za-z_.\-]+)((?:,[^\]]*)?)\]")


def _load_zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigError(f"timezone: unknown time zone {name!r}") from exc


def _unescape_cq(value: str) -> str:
    return (
        value.replace("&#44;", ",")
        .replace("&#91;", "[")
        .replace("&#93;", "]")
        .replace("&amp;", "&")
    )


def parse_cq_string(message: str) -> list[dict[str, Any]]:
    """Parse a CQ-code message string into OneBot segment dicts."""

    segments: list[dict[str, Any]] = []
    position = 0
    for match in _CQ_PATTERN.finditer(message):
        if match.start() > position:
            segments.append({"type": "text", "data": {"text": _unescape_cq(message[position:match.start()])}})
        data: dict[str, str] = {}
        for pair in match.group(2).lstrip(",").split(","):
            if not pair:
                continue
            key, _, value = pair.partition("=")
            data[key] = _unescape_cq(value)
        segments.append({"type": match.group(1), "data": data})
        position = match.end()
    if position < len(message):
        segments.append({"type": "text", "data": {"text": _unescape_cq(message[position:])}})
    return segments


def _as_int(value: Any) -> Optional[int]:
    """Accept ints and decimal strings that fit a signed 64-bit column."""

    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        try:
            value = int(value.strip())
        except ValueError:
            return None
    if not isinstance(value, int):
        return None
    if not _INT64_MIN <= value <= _INT64_MAX:
        return None
    return value


def _require_int(payload: Mapping, key: str) -> int:
    value = _as_int(payload.get(key))
    if value is None:
        raise MalformedEvent(f"field {key!r} missing or not an integer")
    return value


def _decode(raw: Any) -> tuple[Mapping, str]:
    """Return the parsed payload and its verbatim JSON text."""

    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedEvent("payload is not valid UTF-8") from exc
    if isinstance(raw, str):
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise MalformedEvent(f"payload is not valid JSON: {exc.msg}") from exc
        if not isinstance(payload, Mapping):
            raise MalformedEvent("payload root must be an object")
        return payload, raw
    if isinstance(raw, Mapping):
        try:
            text = json.dumps(raw, ensure_ascii=False, separators=(",", ":"))
        except (TypeError, ValueError) as exc:
            raise MalformedEvent(f"payload is not JSON serializable: {exc}") from exc
        return raw, text
    raise MalformedEvent(f"unsupported payload type {type(raw).__name__}")


def _segments_from(payload: Mapping) -> list[Mapping]:
    message = payload.get("message")
    if message is None:
        message = payload.get("raw_message")
    if isinstance(message, str):
        return parse_cq_string(message)
    if isinstance(message, list):
        if not all(isinstance(seg, Mapping) for seg in message):
            raise MalformedEvent("message segments must be objects")
        return message
    raise MalformedEvent("field 'message' missing or not a list/string")


def render_segments(segments: list[Mapping]) -> tuple[str, str, MessageFlags]:
    """Return (plain text rendering, text-only content, structural flags)."""

    rendered: list[str] = []
    text_parts: list[str] = []
    has_image = has_at = is_reply = has_other = False
    for segment in segments:
        seg_type = str(segment.get("type", ""))
        data = segment.get("data") or {}
        if not isinstance(data, Mapping):
            data = {}
        if seg_type == "text":
            text = str(data.get("text", ""))
            rendered.append(text)
            text_parts.append(text)
        elif seg_type == "at":
            has_at = True
            target = data.get("qq")
            if target == "all":
                target = "全体成员"
            else:
                target = data.get("name") or target
            rendered.append(MENTION_PLACEHOLDER.format(target=target))
        elif seg_type == "reply":
            is_reply = True
        elif seg_type == "image":
            has_image = True
            rendered.append(MEDIA_PLACEHOLDERS["image"])
        else:
            has_other = True
            # Unknown segment types still count as "other" content.
            placeholder = MEDIA_PLACEHOLDERS.get(seg_type)
            if placeholder:
                rendered.append(placeholder)
    flags = MessageFlags(has_image=has_image, has_at=has_at, is_reply=is_reply, has_other_media=has_other)
    return "".join(rendered).strip(), "".join(text_parts).strip(), flags


class OneBotMapper:
    """Map OneBot 11 message events to MessageRecords in a fixed time zone."""

    def __init__(self, timezone: str = "Asia/Shanghai") -> None:
        self._timezone = timezone
        self._zone = _load_zone(timezone)

    @property
    def timezone(self) -> str:
        return self._timezone

    def with_timezone(self, timezone: str) -> "OneBotMapper":
        return OneBotMapper(timezone)

    def map_event(self, raw: Any, origin: Optional[Origin] = None) -> Optional[MessageRecord]:
        payload, raw_json = _decode(raw)

        post_type = payload.get("post_type")
        if not isinstance(post_type, str):
            raise MalformedEvent("field 'post_type' missing")
        detected = MESSAGE_POST_TYPES.get(post_type)
        if detected is None:
            return None
        origin = origin or detected

        msg_type = payload.get("message_type")
        if msg_type not in {"group", "private"}:
            raise MalformedEvent(f"unsupported message_type {msg_type!r}")

        user_id = _require_int(payload, "user_id")
        created_at = _require_int(payload, "time")
        message_id = _as_int(payload.get("message_id")) or 0
        if msg_type == "group":
            group_id: Optional[int] = _require_int(payload, "group_id")
            peer_id: Optional[int] = None
        else:
            group_id = None
            # Own messages carry the partner in target_id; received ones come from it.
            peer_id = _as_int(payload.get("target_id")) or user_id

        clean_text, text_only, flags = render_segments(_segments_from(payload))

        sender = payload.get("sender") or {}
        if not isinstance(sender, Mapping):
            sender = {}
        nickname = str(sender.get("nickname") or "")
        card = sender.get("card") or None
        role = sender.get("role") or None
        sub_type = payload.get("sub_type")

        try:
            local = datetime.fromtimestamp(created_at, tz=self._zone)
        except (OverflowError, OSError, ValueError) as exc:
            raise MalformedEvent(f"field 'time' out of range: {created_at}") from exc

        return MessageRecord(
            dedup_key=compute_dedup_key(
                group_id=group_id,
                peer_id=peer_id,
                user_id=user_id,
                message_id=message_id,
                created_at=created_at,
                text=clean_text,
            ),
            message_id=message_id,
            origin=origin,
            msg_type=msg_type,
            sub_type=str(sub_type) if sub_type is not None else None,
            group_id=group_id,
            peer_id=peer_id,
            user_id=user_id,
            created_at=created_at,
            raw_json=raw_json,
            clean_text=clean_text,
            flags=flags,
            text_length=len(text_only),
            sender_nickname=nickname,
            sender_card=str(card) if card is not None else None,
            sender_role=str(role) if role is not None else None,
            local_date=local.date().isoformat(),
            hour_of_day=local.hour,
            day_of_week=local.weekday(),
        )
