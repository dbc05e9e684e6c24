"""Recording control for the administrative command surface.

Chat users reach the logger only through these operations. Every method
returns the reply text; permission and storage problems become messages
rather than exceptions.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable, Iterable, Optional

from adapters.status_formatting import (
    QUERY_FAILED,
    format_heatmap,
    format_status,
    format_top_talkers,
    format_word_cloud,
)
from core.config import LoggerConfig
from core.errors import ConfigError, IngestError, QueryError
from core.policy import disable_group, enable_group, should_record

if TYPE_CHECKING:
    from runtime import MessageLogger

LOGGER = logging.getLogger(__name__)

ENABLED = "✅ 已开启本群消息记录"
ALREADY_ENABLED = "⚠️ 本群记录已处于开启状态"
DISABLED = "🛑 已关闭本群消息记录"
ALREADY_DISABLED = "⚠️ 本群记录已处于关闭状态"
PERMISSION_DENIED = "⛔ 只有管理员可以修改记录设置"
SAVE_FAILED = "（配置保存失败，重启后将恢复原设置）"

PRIVILEGED_ROLES = frozenset({"owner", "admin"})

ConfigCallback = Callable[[LoggerConfig], None]


def _query_failed(group_id: int, exc: QueryError) -> str:
    LOGGER.warning("Query for group %s failed: %s", group_id, exc)
    return QUERY_FAILED


class RecordingControl:
    """Enable, disable and inspect recording per group."""

    def __init__(
        self,
        logger: "MessageLogger",
        admins: Iterable[int] = (),
        on_config_change: Optional[ConfigCallback] = None,
    ) -> None:
        self._logger = logger
        self._admins = frozenset(admins)
        self._on_config_change = on_config_change

    def is_authorized(self, user_id: int, role: Optional[str] = None) -> bool:
        return user_id in self._admins or role in PRIVILEGED_ROLES

    async def enable(self, group_id: int, user_id: int, role: Optional[str] = None) -> str:
        if not self.is_authorized(user_id, role):
            return PERMISSION_DENIED
        config, changed = enable_group(self._logger.config, group_id)
        if not changed:
            return ALREADY_ENABLED
        return ENABLED + await self._apply(config, group_id, True)

    async def disable(self, group_id: int, user_id: int, role: Optional[str] = None) -> str:
        if not self.is_authorized(user_id, role):
            return PERMISSION_DENIED
        config, changed = disable_group(self._logger.config, group_id)
        if not changed:
            return ALREADY_DISABLED
        return DISABLED + await self._apply(config, group_id, False)

    async def _apply(self, config: LoggerConfig, group_id: int, enabled: bool) -> str:
        """Activate the new config; returns a suffix when persisting it failed."""

        self._logger.update_config(config)
        LOGGER.info("Recording %s for group %s", "enabled" if enabled else "disabled", group_id)
        try:
            await self._logger.set_group_config(group_id, enabled)
        except IngestError as exc:
            LOGGER.warning("Could not store group config for %s: %s", group_id, exc)
        if self._on_config_change is None:
            return ""
        try:
            self._on_config_change(config)
        except (OSError, ConfigError):
            LOGGER.exception("Failed to save config after changing group %s", group_id)
            return SAVE_FAILED
        return ""

    async def status(self, group_id: int) -> str:
        try:
            stats = await self._logger.handle().query().storage_stats()
        except QueryError as exc:
            return _query_failed(group_id, exc)
        return format_status(should_record(self._logger.config, group_id), stats)

    async def word_cloud(self, group_id: int, limit: int = 20, days: int = 7) -> str:
        try:
            words = await self._logger.handle().query().word_cloud(group_id, limit, days)
        except QueryError as exc:
            return _query_failed(group_id, exc)
        return format_word_cloud(words, days)

    async def heatmap(self, group_id: int, days: int = 30) -> str:
        try:
            hours = await self._logger.handle().query().hourly_heatmap(group_id, days)
        except QueryError as exc:
            return _query_failed(group_id, exc)
        return format_heatmap(hours, days)

    async def top_talkers(self, group_id: int, limit: int = 10, days: int = 7) -> str:
        try:
            users = await self._logger.handle().query().top_talkers(group_id, limit, days)
        except QueryError as exc:
            return _query_failed(group_id, exc)
        return format_top_talkers(users, days)

    async def dispatch(self, text: str, group_id: int, user_id: int, role: Optional[str] = None) -> Optional[str]:
        """Run the command named by a chat message; None when it is not a command."""

        command = text.strip()
        if command == "开启记录":
            return await self.enable(group_id, user_id, role)
        if command == "关闭记录":
            return await self.disable(group_id, user_id, role)
        if command == "记录状态":
            return await self.status(group_id)
        if command == "本群词云":
            return await self.word_cloud(group_id)
        if command == "本群热力图":
            return await self.heatmap(group_id)
        if command == "龙王榜":
            return await self.top_talkers(group_id)
        return None
