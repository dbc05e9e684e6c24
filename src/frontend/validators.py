"""Validation helpers for config editing."""

from __future__ import annotations

from dataclasses import dataclass

LIST_NAMES = ("whitelist", "blacklist")


@dataclass
class IdInfo:
    value: int | None
    error: str | None = None


def parse_id(raw_value: str, label: str = "group id") -> IdInfo:
    """Parse a QQ group or user id typed by the user."""

    raw_value = raw_value.strip()
    if not raw_value:
        return IdInfo(None, f"{label} is required")
    if not raw_value.isdigit():
        return IdInfo(None, f"{label} must be numeric")
    value = int(raw_value)
    if value <= 0:
        return IdInfo(None, f"{label} must be positive")
    return IdInfo(value)


def parse_id_lines(text: str, label: str = "user id") -> tuple[list[int], str | None]:
    """Parse one id per line; returns the ids and the first error, if any."""

    ids: list[int] = []
    for line in text.splitlines():
        if not line.strip():
            continue
        info = parse_id(line, label)
        if info.error or info.value is None:
            return [], f"{line.strip()}: {info.error}"
        if info.value not in ids:
            ids.append(info.value)
    return ids, None


def parse_float(raw_value: str) -> float | None:
    try:
        value = float(raw_value.strip())
    except ValueError:
        return None
    if value < 0:
        return None
    return value
