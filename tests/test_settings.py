from __future__ import annotations

import json

import pytest

import settings
from core.config import RecordMode
from core.errors import ConfigError


def test_missing_config_is_created_with_defaults(tmp_path) -> None:
    path = tmp_path / "nested" / "config.json"
    raw = settings.load_raw_config(str(path))
    assert path.exists()
    assert raw == settings.DEFAULT_CONFIG
    on_disk = json.loads(path.read_text(encoding="utf-8"))
    assert on_disk["tokenizer"]["stop_words"][0] == "的"


def test_defaults_parse_to_core_config() -> None:
    config = settings.parse_config(settings.default_config())
    assert config.mode is RecordMode.WHITELIST
    assert config.timezone == "Asia/Shanghai"
    assert config.tokenizer.min_word_length == 2
    assert "的" in config.tokenizer.stop_words
    assert config.writer.batch_size == 64


def test_default_config_returns_independent_copies() -> None:
    raw = settings.default_config()
    raw["groups"]["whitelist"].append(1)
    assert settings.DEFAULT_CONFIG["groups"]["whitelist"] == []


def test_invalid_json_raises_config_error(tmp_path) -> None:
    path = tmp_path / "config.json"
    path.write_text("{oops", encoding="utf-8")
    with pytest.raises(ConfigError, match="invalid JSON"):
        settings.load_raw_config(str(path))

    path.write_text("[]", encoding="utf-8")
    with pytest.raises(ConfigError, match="top level"):
        settings.load_raw_config(str(path))


@pytest.mark.parametrize(
    "patch, key",
    [
        ({"mode": "greylist"}, "mode"),
        ({"timezone": "Mars/Olympus"}, "timezone"),
        ({"tokenizer": {"min_word_length": 0}}, "tokenizer.min_word_length"),
        ({"tokenizer": {"stop_words": "的"}}, "tokenizer.stop_words"),
        ({"groups": {"whitelist": ["123"]}}, "groups.whitelist"),
        ({"writer": {"batch_size": 0}}, "writer.batch_size"),
        ({"writer": {"flush_interval": -1}}, "writer.flush_interval"),
        ({"dedup": {"cache_size": True}}, "dedup.cache_size"),
        ({"record_private": "yes"}, "record_private"),
        ({"writer": []}, "writer"),
    ],
)
def test_parse_errors_name_the_key(patch, key) -> None:
    raw = settings.default_config()
    raw.update(patch)
    with pytest.raises(ConfigError) as excinfo:
        settings.parse_config(raw)
    assert str(excinfo.value).startswith(key)


def test_config_round_trips_through_dict() -> None:
    raw = settings.default_config()
    raw["mode"] = "blacklist"
    raw["groups"] = {"whitelist": [3, 1], "blacklist": [9]}
    raw["admins"] = [42]
    config = settings.parse_config(raw)

    data = settings.config_to_dict(config)
    assert data["groups"]["whitelist"] == [1, 3]
    assert settings.parse_config(data) == config


def test_save_config_keeps_logging_section(tmp_path) -> None:
    path = tmp_path / "config.json"
    raw = settings.default_config()
    raw["logging"]["level"] = "DEBUG"
    settings.write_raw_config(raw, str(path))

    config = settings.load_config(str(path))
    updated = settings.parse_config({**raw, "groups": {"whitelist": [7], "blacklist": []}})
    assert updated != config
    settings.save_config(updated, str(path))

    assert settings.load_config(str(path)) == updated
    assert settings.load_logging(str(path))["level"] == "DEBUG"
    assert not (tmp_path / "config.json.tmp").exists()
