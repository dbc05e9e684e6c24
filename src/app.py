"""Application entry point for the message logger."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sqlite3
import sys
from collections import Counter
from logging.handlers import RotatingFileHandler
from typing import Any, Optional, TextIO
from zoneinfo import ZoneInfo

from art import tprint
from dotenv import load_dotenv

import settings
from adapters.sqlite_queries import QueryApi
from adapters.sqlite_storage import SQLiteStorage
from adapters.status_formatting import (
    format_heatmap,
    format_messages,
    format_status,
    format_top_talkers,
    format_word_cloud,
)
from core.commands import RecordingControl
from core.config import LoggerConfig
from core.errors import ConfigError, MsgLoggerError, StorageUnavailable
from core.policy import should_record
from runtime import MessageLogger

NAME = "MSGLOGGER"
FONT = "tarty-1"


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


class _RedactingFormatter(logging.Formatter):
    def __init__(self, secrets: list[str], fmt: str, datefmt: Optional[str] = None) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._secrets = [secret for secret in secrets if secret]

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for secret in self._secrets:
            message = message.replace(secret, "***")
        return message


def _collect_redaction_values(config: dict) -> list[str]:
    redact_cfg = config.get("redact", {}) if config else {}
    if not redact_cfg.get("enabled", False):
        return []
    values = []
    for name in redact_cfg.get("patterns", []):
        value = os.getenv(name)
        if value:
            values.append(value)
    return sorted(set(values), key=len, reverse=True)


def _configure_logging(config: dict) -> None:
    if not config.get("enabled", False):
        return

    load_dotenv()
    level_name = str(config.get("level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"
    secrets = _collect_redaction_values(config)
    formatter = _RedactingFormatter(secrets, fmt=fmt, datefmt=datefmt)

    handlers: list[logging.Handler] = []

    if config.get("console", True):
        # stdout carries command output, so log lines go to stderr.
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    file_cfg = config.get("file", {})
    if file_cfg.get("enabled", False):
        path = file_cfg.get("path", "logs/msglogger.log")
        if not os.path.isabs(path):
            path = os.path.join(settings.DATA_DIR, path)
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        max_bytes = int(file_cfg.get("max_bytes", 5 * 1024 * 1024))
        backup_count = int(file_cfg.get("backup_count", 5))
        file_handler = RotatingFileHandler(
            path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if not handlers:
        return

    logging.basicConfig(level=level, handlers=handlers)


def _load() -> LoggerConfig:
    raw = settings.load_raw_config()
    logging_section = raw.get("logging", {})
    _configure_logging(logging_section if isinstance(logging_section, dict) else {})
    return settings.parse_config(raw)


def _command_of(line: str) -> Optional[tuple[str, int, int, Optional[str]]]:
    """Return (text, group_id, user_id, role) for inbound group text events."""

    try:
        payload = json.loads(line)
    except json.JSONDecodeError:
        return None
    if not isinstance(payload, dict) or payload.get("post_type") != "message":
        return None
    if payload.get("message_type") != "group":
        return None
    text = payload.get("raw_message")
    group_id = payload.get("group_id")
    user_id = payload.get("user_id")
    if not isinstance(text, str) or not isinstance(group_id, int) or not isinstance(user_id, int):
        return None
    sender = payload.get("sender") or {}
    role = sender.get("role") if isinstance(sender, dict) else None
    return text, group_id, user_id, role


async def _ingest_stream(config: LoggerConfig, stream: TextIO) -> Counter:
    logger = logging.getLogger(__name__)
    message_logger = await MessageLogger.open(config, settings.DATA_DIR)
    control = RecordingControl(message_logger, config.admins, settings.save_config)
    outcomes: Counter = Counter()
    try:
        for line in stream:
            line = line.strip()
            if not line:
                continue
            outcome = await message_logger.handle_event(line)
            outcomes[outcome.value if outcome is not None else "failed"] += 1

            command = _command_of(line)
            if command is not None:
                reply = await control.dispatch(*command)
                if reply is not None:
                    print(reply)
    finally:
        await message_logger.close()
    logger.info("Ingest finished: %s", dict(outcomes))
    return outcomes


def _run(path: Optional[str]) -> None:
    _print_banner()
    config = _load()
    logging.getLogger(__name__).info("Starting msglogger (data dir %s)", settings.DATA_DIR)

    if path is None or path == "-":
        outcomes = asyncio.run(_ingest_stream(config, sys.stdin))
    else:
        with open(path, "r", encoding="utf-8") as handle:
            outcomes = asyncio.run(_ingest_stream(config, handle))
    summary = ", ".join(f"{name}={count}" for name, count in sorted(outcomes.items()))
    print(f"Processed {sum(outcomes.values())} events: {summary or 'none'}")


def _open_queries(config: LoggerConfig) -> QueryApi:
    storage = SQLiteStorage(settings.DB_PATH)
    try:
        storage.init_db()
    except sqlite3.Error as exc:
        raise StorageUnavailable(f"cannot open {settings.DB_PATH}: {exc}") from exc
    return QueryApi(storage, config.timezone)


def _stats(group_id: Optional[int], days: int) -> None:
    config = _load()
    api = _open_queries(config)

    async def _collect() -> list[str]:
        stats = await api.storage_stats()
        if group_id is None:
            words = await api.word_cloud(None, 20, days)
            return [format_status(config.record_private, stats), format_word_cloud(words, days)]
        return [
            format_status(should_record(config, group_id), stats),
            format_word_cloud(await api.word_cloud(group_id, 20, days), days),
            format_heatmap(await api.hourly_heatmap(group_id, days), days),
            format_top_talkers(await api.top_talkers(group_id, 10, days), days),
        ]

    print("\n\n".join(asyncio.run(_collect())))


def _search(query: str, group_id: Optional[int], limit: int) -> None:
    config = _load()
    api = _open_queries(config)
    messages = asyncio.run(api.search_messages(query, group_id=group_id, limit=limit))
    print(format_messages(messages, ZoneInfo(config.timezone)))


def _setup() -> None:
    _print_banner()
    from frontend.app import ConfigPanelApp

    ConfigPanelApp().run()


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="msglogger")
    subparsers = parser.add_subparsers(dest="command")

    for name in ("run", "ingest"):
        run_parser = subparsers.add_parser(name, help="Record OneBot events read as JSON lines")
        run_parser.add_argument("file", nargs="?", help="Event file (default: stdin)")

    stats_parser = subparsers.add_parser("stats", help="Print recording statistics")
    stats_parser.add_argument("--group", type=int, default=None, help="Group id")
    stats_parser.add_argument("--days", type=int, default=7, help="Window in days")

    search_parser = subparsers.add_parser("search", help="Search recorded messages")
    search_parser.add_argument("query")
    search_parser.add_argument("--group", type=int, default=None, help="Group id")
    search_parser.add_argument("--limit", type=int, default=50)

    subparsers.add_parser("config", help="Launch the config TUI")

    args = parser.parse_args(argv)
    try:
        if args.command == "config":
            _setup()
        elif args.command == "stats":
            _stats(args.group, args.days)
        elif args.command == "search":
            _search(args.query, args.group, args.limit)
        else:
            _run(getattr(args, "file", None))
    except ConfigError as exc:
        parser.exit(2, f"config error: {exc}\n")
    except MsgLoggerError as exc:
        parser.exit(1, f"error: {exc}\n")


if __name__ == "__main__":
    main()
