from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from types import SimpleNamespace

from adapters.status_formatting import QUERY_FAILED
from core import commands
from core.commands import RecordingControl
from core.config import GroupLists, LoggerConfig, RecordMode, WriterConfig
from core.errors import QueryError
from core.policy import should_record
from runtime import MessageLogger
from helpers import WhitespaceSegmenter, fixed_clock, group_event, local_ts

GROUP = 100
ADMIN = 42
NOW = local_ts(2024, 5, 8, hour=12)


def _config(mode: RecordMode = RecordMode.WHITELIST) -> LoggerConfig:
    return LoggerConfig(mode=mode, admins=frozenset({ADMIN}), writer=WriterConfig(flush_interval=0.005))


async def _logger(tmp_path, config: LoggerConfig) -> MessageLogger:
    return await MessageLogger.open(config, tmp_path, segmenter=WhitespaceSegmenter(), clock=fixed_clock(NOW))


def test_members_cannot_toggle_recording(tmp_path) -> None:
    async def scenario():
        logger = await _logger(tmp_path, _config())
        try:
            control = RecordingControl(logger, logger.config.admins)
            reply = await control.enable(GROUP, user_id=7, role="member")
            return reply, logger.config
        finally:
            await logger.close()

    reply, config = asyncio.run(scenario())
    assert reply == commands.PERMISSION_DENIED
    assert not should_record(config, GROUP)


def test_enable_and_disable_persist_through_callback(tmp_path) -> None:
    saved: list[LoggerConfig] = []

    async def scenario():
        logger = await _logger(tmp_path, _config())
        try:
            control = RecordingControl(logger, logger.config.admins, saved.append)
            replies = [
                await control.enable(GROUP, ADMIN),
                await control.enable(GROUP, 7, role="owner"),
            ]
            enabled = should_record(logger.config, GROUP)
            replies.append(await control.disable(GROUP, 7, role="admin"))
            replies.append(await control.disable(GROUP, ADMIN))
            return replies, enabled, logger.config
        finally:
            await logger.close()

    replies, enabled, config = asyncio.run(scenario())
    assert replies == [
        commands.ENABLED,
        commands.ALREADY_ENABLED,
        commands.DISABLED,
        commands.ALREADY_DISABLED,
    ]
    assert enabled
    assert not should_record(config, GROUP)
    assert [GROUP in item.groups.whitelist for item in saved] == [True, False]


def test_blacklist_mode_toggles_the_blacklist(tmp_path) -> None:
    async def scenario():
        logger = await _logger(tmp_path, _config(RecordMode.BLACKLIST))
        try:
            control = RecordingControl(logger, logger.config.admins)
            first = await control.disable(GROUP, ADMIN)
            groups = logger.config.groups
            second = await control.enable(GROUP, ADMIN)
            return first, groups, second, logger.config.groups
        finally:
            await logger.close()

    first, groups, second, final = asyncio.run(scenario())
    assert first == commands.DISABLED
    assert groups == GroupLists(blacklist=frozenset({GROUP}))
    assert second == commands.ENABLED
    assert final == GroupLists()


def test_save_failure_keeps_change_in_memory(tmp_path) -> None:
    def broken(config: LoggerConfig) -> None:
        raise OSError("read-only file system")

    async def scenario():
        logger = await _logger(tmp_path, _config())
        try:
            control = RecordingControl(logger, logger.config.admins, broken)
            return await control.enable(GROUP, ADMIN), logger.config
        finally:
            await logger.close()

    reply, config = asyncio.run(scenario())
    assert reply == commands.ENABLED + commands.SAVE_FAILED
    assert should_record(config, GROUP)


def test_dispatch_routes_group_commands(tmp_path) -> None:
    config = replace(_config(), groups=GroupLists(whitelist=frozenset({GROUP})))

    async def scenario():
        logger = await _logger(tmp_path, config)
        try:
            ts = local_ts(2024, 5, 8, hour=9)
            for message_id in range(1, 4):
                await logger.ingest(
                    group_event(group_id=GROUP, user_id=1, message_id=message_id, text="hello world", time=ts, nickname="Ann")
                )
            control = RecordingControl(logger, logger.config.admins)
            return {
                text: await control.dispatch(text, GROUP, 7)
                for text in (" 记录状态 ", "本群词云", "本群热力图", "龙王榜", "开启记录", "随便聊聊")
            }
        finally:
            await logger.close()

    replies = asyncio.run(scenario())
    assert "🟢 开启中" in replies[" 记录状态 "]
    assert "📚 总消息: 3" in replies[" 记录状态 "]
    assert "1. hello (3)" in replies["本群词云"]
    assert "09时 ██████████ 3" in replies["本群热力图"]
    assert "🥇 1. Ann - 3 条" in replies["龙王榜"]
    assert replies["开启记录"] == commands.PERMISSION_DENIED
    assert replies["随便聊聊"] is None


def test_status_reports_disabled_group(tmp_path) -> None:
    async def scenario():
        logger = await _logger(tmp_path, _config())
        try:
            return await RecordingControl(logger).status(GROUP)
        finally:
            await logger.close()

    assert "🔴 关闭中" in asyncio.run(scenario())


class _FailingQueries:
    def __getattr__(self, name):
        async def fail(*args, **kwargs):
            raise QueryError("unable to open database file /srv/data/msg_history.sqlite")

        return fail


class _FailingLogger:
    config = LoggerConfig()

    def handle(self) -> SimpleNamespace:
        return SimpleNamespace(query=_FailingQueries)


def test_query_failures_reply_without_internal_details(caplog) -> None:
    control = RecordingControl(_FailingLogger())

    async def scenario() -> list[str]:
        return [
            await control.status(GROUP),
            await control.word_cloud(GROUP),
            await control.heatmap(GROUP),
            await control.top_talkers(GROUP),
        ]

    with caplog.at_level(logging.WARNING, logger="core.commands"):
        replies = asyncio.run(scenario())

    assert replies == [QUERY_FAILED] * 4
    assert all("/srv/data" not in reply for reply in replies)
    assert "/srv/data/msg_history.sqlite" in caplog.text
