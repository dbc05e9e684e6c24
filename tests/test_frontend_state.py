from __future__ import annotations

import settings
from frontend.state import ConfigState


def _state(**overrides) -> ConfigState:
    data = settings.default_config()
    data.update(overrides)
    return ConfigState(data=data)


def test_policy_summary_follows_record_mode() -> None:
    whitelist = _state(groups={"whitelist": [1, 2], "blacklist": [3]})
    assert whitelist.policy_summary() == "recording: 2 whitelisted groups | private: off"

    blacklist = _state(mode="blacklist", record_private=True, groups={"whitelist": [], "blacklist": [3]})
    assert blacklist.policy_summary() == "recording: all groups except 1 | private: on"


def test_policy_summary_without_usable_config() -> None:
    assert ConfigState().policy_summary() == "recording: unknown"
    assert _state(mode="everyone").policy_summary() == "recording: invalid config"


def test_validate_reports_first_error() -> None:
    assert ConfigState().validate() == "Nothing to save"
    assert _state().validate() is None
    assert "mode" in _state(mode="everyone").validate()
