"""Settings tab implementation."""

from __future__ import annotations

from typing import Any, Optional

from textual import on
from textual.containers import Container, Horizontal, ScrollableContainer, Vertical
from textual.widgets import ContentSwitcher, DataTable, Input, Select, Static, Switch, TextArea

from ..validators import parse_float, parse_id_lines


class SettingsTab(Container):
    """Settings tab for recording, tokenizer, writer and logging options."""

    LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]

    SECTION_LABELS = [
        ("recording", "Recording", "Private chats, admins, time zone"),
        ("tokenizer", "Tokenizer", "Segmentation and stop words"),
        ("writer", "Writer", "Batching and retry tuning"),
        ("logging", "Logging", "Console/file logging + redaction"),
    ]

    # (input id, section, key, kind) for plain numeric inputs.
    NUMBER_FIELDS = [
        ("tokenizer-min-length", "tokenizer", "min_word_length", "int"),
        ("writer-batch-size", "writer", "batch_size", "int"),
        ("writer-flush-interval", "writer", "flush_interval", "float"),
        ("writer-max-retries", "writer", "max_retries", "int"),
        ("writer-retry-backoff", "writer", "retry_backoff", "float"),
        ("dedup-cache-size", "dedup", "cache_size", "int"),
    ]

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._loading_form = False
        self._table_ready = False

    def compose(self):
        with Vertical(id="settings-panel"):
            with Horizontal(id="settings-body"):
                with Container(id="settings-left"):
                    yield DataTable(id="settings-table", cursor_type="row")
                with Container(id="settings-right"):
                    with ContentSwitcher(id="settings-forms"):
                        with ScrollableContainer(id="settings-recording"):
                            yield Static("Recording", classes="settings-title")
                            yield Static("record_private", classes="form-label")
                            yield Switch(id="recording-private")
                            yield Static("timezone", classes="form-label")
                            yield Input(placeholder="Asia/Shanghai", id="recording-timezone")
                            yield Static("admins (one user id per line)", classes="form-label")
                            yield TextArea(id="recording-admins")
                            yield Static("", id="recording-error", classes="settings-error")

                        with ScrollableContainer(id="settings-tokenizer"):
                            yield Static("Tokenizer", classes="settings-title")
                            yield Static("enabled", classes="form-label")
                            yield Switch(id="tokenizer-enabled")
                            yield Static("min_word_length", classes="form-label")
                            yield Input(placeholder="2", id="tokenizer-min-length")
                            yield Static("stop_words (one per line)", classes="form-label")
                            yield TextArea(id="tokenizer-stop-words")
                            yield Static("", id="tokenizer-error", classes="settings-error")

                        with ScrollableContainer(id="settings-writer"):
                            yield Static("Writer", classes="settings-title")
                            yield Static("batch_size", classes="form-label")
                            yield Input(placeholder="64", id="writer-batch-size")
                            yield Static("flush_interval (seconds)", classes="form-label")
                            yield Input(placeholder="0.05", id="writer-flush-interval")
                            yield Static("max_retries", classes="form-label")
                            yield Input(placeholder="3", id="writer-max-retries")
                            yield Static("retry_backoff (seconds)", classes="form-label")
                            yield Input(placeholder="0.05", id="writer-retry-backoff")
                            yield Static("dedup cache_size", classes="form-label")
                            yield Input(placeholder="4096", id="dedup-cache-size")
                            yield Static("", id="writer-error", classes="settings-error")

                        with ScrollableContainer(id="settings-logging"):
                            yield Static("Logging", classes="settings-title")
                            yield Static("enabled", classes="form-label")
                            yield Switch(id="logging-enabled")
                            yield Static("level", classes="form-label")
                            yield Select(
                                [(level, level) for level in self.LOG_LEVELS],
                                id="logging-level",
                                allow_blank=False,
                            )
                            yield Static("console", classes="form-label")
                            yield Switch(id="logging-console")
                            yield Static("file.enabled", classes="form-label")
                            yield Switch(id="logging-file-enabled")
                            yield Static("file.path", classes="form-label")
                            yield Input(placeholder="logs/msglogger.log", id="logging-file-path")
                            yield Static("file.max_bytes", classes="form-label")
                            yield Input(placeholder="5242880", id="logging-file-max-bytes")
                            yield Static("file.backup_count", classes="form-label")
                            yield Input(placeholder="5", id="logging-file-backup")
                            yield Static("redact.enabled", classes="form-label")
                            yield Switch(id="logging-redact-enabled")
                            yield Static("redact.patterns (env var names, one per line)", classes="form-label")
                            yield TextArea(id="logging-redact-patterns")
                            yield Static("", id="logging-error", classes="settings-error")

    def on_mount(self) -> None:
        table = self.query_one("#settings-table", DataTable)
        table.add_column("section", key="section", width=18)
        table.add_column("description", key="description", width=34)
        for key, label, description in self.SECTION_LABELS:
            table.add_row(label, description, key=key)
        table.zebra_stripes = True
        self._table_ready = True
        self._select_section("recording")
        self.reload_from_config()

    def reload_from_config(self) -> None:
        self._loading_form = True
        self._load_recording()
        self._load_tokenizer()
        self._load_numbers()
        self._load_logging()
        self._loading_form = False

    def on_data_table_row_selected(self, event: DataTable.RowSelected) -> None:
        self._select_section(self._coerce_row_key(event.row_key))

    def _select_section(self, section_id: str) -> None:
        switcher = self.query_one("#settings-forms", ContentSwitcher)
        switcher.current = f"settings-{section_id}"

    # ─── config access ───

    def _data(self) -> dict[str, Any]:
        return self.app.config_state.data or {}

    def _get_section(self, key: str) -> dict[str, Any]:
        section = self._data().get(key)
        if isinstance(section, dict):
            return section
        return {}

    def _update_section(self, key: str, section: Any) -> None:
        self.app.update_config_section(key, section)

    # ─── loading ───

    def _load_recording(self) -> None:
        data = self._data()
        self.query_one("#recording-private", Switch).value = bool(data.get("record_private", False))
        self.query_one("#recording-timezone", Input).value = str(data.get("timezone", "Asia/Shanghai"))
        admins = data.get("admins", []) or []
        self.query_one("#recording-admins", TextArea).text = "\n".join(str(admin) for admin in admins)
        self._set_error("recording-error", "")

    def _load_tokenizer(self) -> None:
        tokenizer = self._get_section("tokenizer")
        self.query_one("#tokenizer-enabled", Switch).value = bool(tokenizer.get("enabled", True))
        stop_words = tokenizer.get("stop_words", []) or []
        self.query_one("#tokenizer-stop-words", TextArea).text = "\n".join(str(word) for word in stop_words)
        self._set_error("tokenizer-error", "")

    def _load_numbers(self) -> None:
        for input_id, section, key, _ in self.NUMBER_FIELDS:
            value = self._get_section(section).get(key)
            self.query_one(f"#{input_id}", Input).value = "" if value is None else str(value)
        self._set_error("writer-error", "")

    def _load_logging(self) -> None:
        logging = self._get_section("logging")
        file_cfg = self._get_subdict(logging, "file")
        redact_cfg = self._get_subdict(logging, "redact")
        file_enabled = bool(file_cfg.get("enabled", False))
        redact_enabled = bool(redact_cfg.get("enabled", False))

        self.query_one("#logging-enabled", Switch).value = bool(logging.get("enabled", True))
        level = logging.get("level", "INFO")
        select = self.query_one("#logging-level", Select)
        if level in self.LOG_LEVELS:
            select.value = level
            self._set_error("logging-error", "")
        else:
            select.value = "INFO"
            self._set_error("logging-error", f"Invalid value: {level}")
        self.query_one("#logging-console", Switch).value = bool(logging.get("console", True))
        self.query_one("#logging-file-enabled", Switch).value = file_enabled
        self.query_one("#logging-file-path", Input).value = str(file_cfg.get("path", "logs/msglogger.log"))
        self.query_one("#logging-file-max-bytes", Input).value = str(file_cfg.get("max_bytes", 5 * 1024 * 1024))
        self.query_one("#logging-file-backup", Input).value = str(file_cfg.get("backup_count", 5))
        self.query_one("#logging-redact-enabled", Switch).value = redact_enabled
        patterns = redact_cfg.get("patterns", []) or []
        self.query_one("#logging-redact-patterns", TextArea).text = "\n".join(patterns)
        self._apply_logging_state(file_enabled, redact_enabled)

    def _set_error(self, error_id: str, message: str) -> None:
        self.query_one(f"#{error_id}", Static).update(message)

    def _apply_logging_state(self, file_enabled: bool, redact_enabled: bool) -> None:
        self.query_one("#logging-file-path", Input).disabled = not file_enabled
        self.query_one("#logging-file-max-bytes", Input).disabled = not file_enabled
        self.query_one("#logging-file-backup", Input).disabled = not file_enabled
        self.query_one("#logging-redact-patterns", TextArea).disabled = not redact_enabled

    # ─── recording ───

    @on(Switch.Changed, "#recording-private")
    def _on_record_private(self, event: Switch.Changed) -> None:
        if self._loading_form:
            return
        self._update_section("record_private", bool(event.value))

    @on(Input.Changed, "#recording-timezone")
    def _on_timezone(self, event: Input.Changed) -> None:
        if self._loading_form or not event.value.strip():
            return
        self._update_section("timezone", event.value.strip())

    @on(TextArea.Changed, "#recording-admins")
    def _on_admins(self, event: TextArea.Changed) -> None:
        if self._loading_form:
            return
        admins, error = parse_id_lines(event.text_area.text)
        self._set_error("recording-error", error or "")
        if error is None:
            self._update_section("admins", admins)

    # ─── tokenizer ───

    @on(Switch.Changed, "#tokenizer-enabled")
    def _on_tokenizer_enabled(self, event: Switch.Changed) -> None:
        if self._loading_form:
            return
        tokenizer = self._get_section("tokenizer")
        tokenizer["enabled"] = bool(event.value)
        self._update_section("tokenizer", tokenizer)

    @on(TextArea.Changed, "#tokenizer-stop-words")
    def _on_stop_words(self, event: TextArea.Changed) -> None:
        if self._loading_form:
            return
        tokenizer = self._get_section("tokenizer")
        words = [line.strip() for line in event.text_area.text.splitlines() if line.strip()]
        tokenizer["stop_words"] = list(dict.fromkeys(words))
        self._update_section("tokenizer", tokenizer)

    # ─── numeric fields ───

    @on(Input.Changed, "#tokenizer-min-length, #writer-batch-size, #writer-flush-interval, "
        "#writer-max-retries, #writer-retry-backoff, #dedup-cache-size")
    def _on_number_changed(self, event: Input.Changed) -> None:
        if self._loading_form:
            return
        for input_id, section, key, kind in self.NUMBER_FIELDS:
            if event.input.id != input_id:
                continue
            error_id = "tokenizer-error" if section == "tokenizer" else "writer-error"
            parsed = self._parse_number(event.value, kind, error_id)
            if parsed is None:
                return
            config = self._get_section(section)
            config[key] = parsed
            self._update_section(section, config)
            return

    def _parse_number(self, value: str, kind: str, error_id: str) -> Optional[float]:
        stripped = value.strip()
        if not stripped:
            self._set_error(error_id, "")
            return None
        if kind == "int":
            if not stripped.isdigit():
                self._set_error(error_id, "Enter a non-negative integer")
                return None
            self._set_error(error_id, "")
            return int(stripped)
        parsed = parse_float(stripped)
        if parsed is None:
            self._set_error(error_id, "Enter a non-negative number")
            return None
        self._set_error(error_id, "")
        return parsed

    # ─── logging ───

    def _update_logging(self, path: tuple[str, ...], value: Any) -> None:
        logging = self._get_section("logging")
        if len(path) == 1:
            logging[path[0]] = value
        else:
            nested = self._get_subdict(logging, path[0])
            nested[path[1]] = value
            logging[path[0]] = nested
        self._update_section("logging", logging)

    @on(Switch.Changed, "#logging-enabled")
    def _on_logging_enabled(self, event: Switch.Changed) -> None:
        if not self._loading_form:
            self._update_logging(("enabled",), bool(event.value))

    @on(Select.Changed, "#logging-level")
    def _on_logging_level(self, event: Select.Changed) -> None:
        if not self._loading_form and event.value is not Select.BLANK:
            self._update_logging(("level",), event.value)

    @on(Switch.Changed, "#logging-console")
    def _on_logging_console(self, event: Switch.Changed) -> None:
        if not self._loading_form:
            self._update_logging(("console",), bool(event.value))

    @on(Switch.Changed, "#logging-file-enabled")
    def _on_logging_file_enabled(self, event: Switch.Changed) -> None:
        if self._loading_form:
            return
        self._update_logging(("file", "enabled"), bool(event.value))
        redact_enabled = bool(self._get_subdict(self._get_section("logging"), "redact").get("enabled", False))
        self._apply_logging_state(bool(event.value), redact_enabled)

    @on(Input.Changed, "#logging-file-path")
    def _on_logging_file_path(self, event: Input.Changed) -> None:
        if not self._loading_form:
            self._update_logging(("file", "path"), event.value)

    @on(Input.Changed, "#logging-file-max-bytes, #logging-file-backup")
    def _on_logging_file_number(self, event: Input.Changed) -> None:
        if self._loading_form:
            return
        parsed = self._parse_number(event.value, "int", "logging-error")
        if parsed is None:
            return
        key = "max_bytes" if event.input.id == "logging-file-max-bytes" else "backup_count"
        self._update_logging(("file", key), parsed)

    @on(Switch.Changed, "#logging-redact-enabled")
    def _on_logging_redact_enabled(self, event: Switch.Changed) -> None:
        if self._loading_form:
            return
        self._update_logging(("redact", "enabled"), bool(event.value))
        file_enabled = bool(self._get_subdict(self._get_section("logging"), "file").get("enabled", False))
        self._apply_logging_state(file_enabled, bool(event.value))

    @on(TextArea.Changed, "#logging-redact-patterns")
    def _on_logging_redact_patterns(self, event: TextArea.Changed) -> None:
        if self._loading_form:
            return
        patterns = [line.strip() for line in event.text_area.text.splitlines() if line.strip()]
        self._update_logging(("redact", "patterns"), patterns)

    @staticmethod
    def _coerce_row_key(value: Any) -> str:
        if hasattr(value, "value"):
            return str(value.value)
        return str(value)

    @staticmethod
    def _get_subdict(parent: dict[str, Any], key: str) -> dict[str, Any]:
        value = parent.get(key)
        if isinstance(value, dict):
            return value
        return {}
