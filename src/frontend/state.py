"""State container for config loading and dirty tracking."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import settings
from core.config import RecordMode
from core.errors import ConfigError


@dataclass
class ConfigState:
    data: dict[str, Any] | None = None
    dirty: bool = False
    error: str | None = None

    def validate(self) -> str | None:
        """Return the first config error, or None when the data is valid."""

        if self.data is None:
            return "Nothing to save"
        try:
            settings.parse_config(self.data)
        except ConfigError as exc:
            return str(exc)
        return None

    def policy_summary(self) -> str:
        """One-line description of which groups are recorded."""

        if self.data is None:
            return "recording: unknown"
        try:
            config = settings.parse_config(self.data)
        except ConfigError:
            return "recording: invalid config"
        if config.mode is RecordMode.WHITELIST:
            scope = f"{len(config.groups.whitelist)} whitelisted groups"
        else:
            scope = f"all groups except {len(config.groups.blacklist)}"
        private = "on" if config.record_private else "off"
        return f"recording: {scope} | private: {private}"
