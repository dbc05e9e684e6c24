"""Recording policy (core domain).

Decides per group or private chat whether an event is recorded. Everything
here is a pure function of the config, so it is safe on the hot ingest path.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Optional, Tuple

from core.config import LoggerConfig, RecordMode


def should_record(config: LoggerConfig, group_id: Optional[int]) -> bool:
    """Return True when events for ``group_id`` (None = private chat) are recorded."""

    if group_id is None:
        return config.record_private
    if config.mode is RecordMode.WHITELIST:
        return group_id in config.groups.whitelist
    return group_id not in config.groups.blacklist


def enable_group(config: LoggerConfig, group_id: int) -> Tuple[LoggerConfig, bool]:
    """Return a config with recording enabled for the group and whether it changed."""

    groups = config.groups
    if config.mode is RecordMode.WHITELIST:
        if group_id in groups.whitelist:
            return config, False
        groups = replace(groups, whitelist=groups.whitelist | {group_id})
    else:
        if group_id not in groups.blacklist:
            return config, False
        groups = replace(groups, blacklist=groups.blacklist - {group_id})
    return replace(config, groups=groups), True


def disable_group(config: LoggerConfig, group_id: int) -> Tuple[LoggerConfig, bool]:
    """Return a config with recording disabled for the group and whether it changed."""

    groups = config.groups
    if config.mode is RecordMode.WHITELIST:
        if group_id not in groups.whitelist:
            return config, False
        groups = replace(groups, whitelist=groups.whitelist - {group_id})
    else:
        if group_id in groups.blacklist:
            return config, False
        groups = replace(groups, blacklist=groups.blacklist | {group_id})
    return replace(config, groups=groups), True
