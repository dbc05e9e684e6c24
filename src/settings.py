"""Configuration file handling for msglogger.

All user-editable settings (recording mode, group lists, tokenizer, writer
tuning, logging) live in a single JSON file inside the data directory, so
they can be edited by hand or through the config panel.
"""

from __future__ import annotations

import copy
import json
import os
from typing import Any, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

from adapters.sqlite_storage import DB_FILENAME
from core.config import (
    DEFAULT_STOP_WORDS,
    DedupConfig,
    GroupLists,
    LoggerConfig,
    RecordMode,
    TokenizerConfig,
    WriterConfig,
)
from core.errors import ConfigError

load_dotenv()

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))

# The data directory holds the database and config.json; override it with
# MSGLOGGER_DATA_DIR (environment or .env).
DATA_DIR = os.path.abspath(os.getenv("MSGLOGGER_DATA_DIR") or os.path.join(PROJECT_ROOT, "data"))
CONFIG_PATH = os.path.join(DATA_DIR, "config.json")
DB_PATH = os.path.join(DATA_DIR, DB_FILENAME)

DEFAULT_LOGGING: dict[str, Any] = {
    "enabled": True,
    "level": "INFO",
    "console": True,
    "file": {
        "enabled": False,
        "path": "logs/msglogger.log",
        "max_bytes": 5 * 1024 * 1024,
        "backup_count": 5,
    },
    "redact": {"enabled": False, "patterns": []},
}

DEFAULT_CONFIG: dict[str, Any] = {
    # "whitelist": only listed groups are recorded
    # "blacklist": every group except the listed ones is recorded
    "mode": RecordMode.WHITELIST.value,
    "record_private": False,
    "admins": [],
    "timezone": "Asia/Shanghai",
    "tokenizer": {
        "enabled": True,
        "min_word_length": 2,
        "stop_words": list(DEFAULT_STOP_WORDS),
    },
    "groups": {"whitelist": [], "blacklist": []},
    "writer": {
        "batch_size": 64,
        "flush_interval": 0.05,
        "max_retries": 3,
        "retry_backoff": 0.05,
    },
    "dedup": {"cache_size": 4096},
    "logging": DEFAULT_LOGGING,
}


def default_config() -> dict[str, Any]:
    return copy.deepcopy(DEFAULT_CONFIG)


def load_raw_config(path: str = CONFIG_PATH) -> dict[str, Any]:
    """Read config.json, writing the defaults first when it does not exist."""

    if not os.path.exists(path):
        raw = default_config()
        write_raw_config(raw, path)
        return raw
    try:
        with open(path, "r", encoding="utf-8") as handle:
            raw = json.load(handle)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"{path}: invalid JSON ({exc.msg} at line {exc.lineno})") from exc
    if not isinstance(raw, dict):
        raise ConfigError(f"{path}: top level must be an object")
    return raw


def write_raw_config(raw: dict[str, Any], path: str = CONFIG_PATH) -> None:
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    tmp_path = f"{path}.tmp"
    with open(tmp_path, "w", encoding="utf-8") as handle:
        json.dump(raw, handle, indent=2, ensure_ascii=False)
        handle.write("\n")
    os.replace(tmp_path, path)


def _section(raw: dict[str, Any], key: str) -> dict[str, Any]:
    value = raw.get(key, {})
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"{key}: expected an object")
    return value


def _bool(section: dict[str, Any], key: str, default: bool, name: str) -> bool:
    value = section.get(key, default)
    if not isinstance(value, bool):
        raise ConfigError(f"{name}: expected true or false")
    return value


def _int(section: dict[str, Any], key: str, default: int, name: str, minimum: int) -> int:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{name}: expected an integer")
    if value < minimum:
        raise ConfigError(f"{name}: must be >= {minimum}")
    return value


def _float(section: dict[str, Any], key: str, default: float, name: str) -> float:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{name}: expected a number")
    if value < 0:
        raise ConfigError(f"{name}: must not be negative")
    return float(value)


def _id_set(section: dict[str, Any], key: str, name: str) -> frozenset[int]:
    value = section.get(key, [])
    if not isinstance(value, list):
        raise ConfigError(f"{name}: expected a list of ids")
    ids = set()
    for item in value:
        if isinstance(item, bool) or not isinstance(item, int):
            raise ConfigError(f"{name}: {item!r} is not an integer id")
        ids.add(item)
    return frozenset(ids)


def parse_config(raw: dict[str, Any]) -> LoggerConfig:
    """Validate a raw config dict and build the frozen core config."""

    mode_value = raw.get("mode", RecordMode.WHITELIST.value)
    try:
        mode = RecordMode(mode_value)
    except ValueError as exc:
        raise ConfigError(f"mode: expected 'whitelist' or 'blacklist', got {mode_value!r}") from exc

    timezone = raw.get("timezone", "Asia/Shanghai")
    if not isinstance(timezone, str):
        raise ConfigError("timezone: expected a zone name")
    try:
        ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigError(f"timezone: unknown time zone {timezone!r}") from exc

    tokenizer_raw = _section(raw, "tokenizer")
    stop_words = tokenizer_raw.get("stop_words", list(DEFAULT_STOP_WORDS))
    if not isinstance(stop_words, list) or not all(isinstance(word, str) for word in stop_words):
        raise ConfigError("tokenizer.stop_words: expected a list of strings")
    tokenizer = TokenizerConfig(
        enabled=_bool(tokenizer_raw, "enabled", True, "tokenizer.enabled"),
        min_word_length=_int(tokenizer_raw, "min_word_length", 2, "tokenizer.min_word_length", 1),
        stop_words=frozenset(stop_words),
    )

    groups_raw = _section(raw, "groups")
    groups = GroupLists(
        whitelist=_id_set(groups_raw, "whitelist", "groups.whitelist"),
        blacklist=_id_set(groups_raw, "blacklist", "groups.blacklist"),
    )

    writer_raw = _section(raw, "writer")
    writer = WriterConfig(
        batch_size=_int(writer_raw, "batch_size", 64, "writer.batch_size", 1),
        flush_interval=_float(writer_raw, "flush_interval", 0.05, "writer.flush_interval"),
        max_retries=_int(writer_raw, "max_retries", 3, "writer.max_retries", 0),
        retry_backoff=_float(writer_raw, "retry_backoff", 0.05, "writer.retry_backoff"),
    )

    dedup_raw = _section(raw, "dedup")
    dedup = DedupConfig(cache_size=_int(dedup_raw, "cache_size", 4096, "dedup.cache_size", 1))

    return LoggerConfig(
        mode=mode,
        record_private=_bool(raw, "record_private", False, "record_private"),
        admins=_id_set(raw, "admins", "admins"),
        timezone=timezone,
        tokenizer=tokenizer,
        groups=groups,
        writer=writer,
        dedup=dedup,
    )


def config_to_dict(config: LoggerConfig, logging_section: Optional[dict[str, Any]] = None) -> dict[str, Any]:
    """Serialize a core config back to the JSON layout (lists sorted)."""

    return {
        "mode": config.mode.value,
        "record_private": config.record_private,
        "admins": sorted(config.admins),
        "timezone": config.timezone,
        "tokenizer": {
            "enabled": config.tokenizer.enabled,
            "min_word_length": config.tokenizer.min_word_length,
            "stop_words": sorted(config.tokenizer.stop_words),
        },
        "groups": {
            "whitelist": sorted(config.groups.whitelist),
            "blacklist": sorted(config.groups.blacklist),
        },
        "writer": {
            "batch_size": config.writer.batch_size,
            "flush_interval": config.writer.flush_interval,
            "max_retries": config.writer.max_retries,
            "retry_backoff": config.writer.retry_backoff,
        },
        "dedup": {"cache_size": config.dedup.cache_size},
        "logging": copy.deepcopy(logging_section if logging_section is not None else DEFAULT_LOGGING),
    }


def load_config(path: str = CONFIG_PATH) -> LoggerConfig:
    return parse_config(load_raw_config(path))


def load_logging(path: str = CONFIG_PATH) -> dict[str, Any]:
    return _section(load_raw_config(path), "logging")


def save_config(config: LoggerConfig, path: str = CONFIG_PATH) -> None:
    """Persist a core config, keeping the logging section already on disk."""

    logging_section = None
    if os.path.exists(path):
        logging_section = _section(load_raw_config(path), "logging")
    write_raw_config(config_to_dict(config, logging_section), path)
