"""Main Textual app for the msglogger config panel."""

from __future__ import annotations

from typing import Any

from rich.text import Text
from textual.app import App, ComposeResult
from textual.containers import Center, Container, Horizontal, Vertical
from textual.widgets import Button, ContentSwitcher, Footer, Static, Tab, Tabs

import settings
from core.errors import ConfigError

from .constants import CONFIG_PATH, DB_PATH, QQ_BLUE
from .modals import UnsavedChangesScreen
from .state import ConfigState
from .tabs.data import DataTab
from .tabs.groups import GroupsTab
from .tabs.settings import SettingsTab

TAB_IDS = ("groups", "settings", "data")


class ConfigPanelApp(App):
    """Edits config.json for the logger and browses recorded messages."""

    BINDINGS = [
        ("ctrl+s", "save_config", "Save"),
        ("q", "request_quit", "Quit"),
        ("ctrl+c", "request_quit", "Quit"),
    ]

    CSS_PATH = "app.tcss"

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.config_state = ConfigState()

    def compose(self) -> ComposeResult:
        with Container(id="header"):
            with Horizontal(id="header-row"):
                with Vertical(id="header-left"):
                    yield Static(Text.assemble(("msg", QQ_BLUE), ("logger", "bold")), id="title")
                    yield Static(f"{CONFIG_PATH} | {DB_PATH}", classes="subtle")
                with Vertical(id="header-right"):
                    yield Static("", id="header-policy", classes="subtle")
                    yield Static("", id="header-status")
                    yield Horizontal(Button("Save", id="save-btn"), id="header-actions")

        with Container(id="tabs-bar"):
            with Center(id="tabs-center"):
                yield Tabs(*(Tab(tab_id.capitalize(), id=tab_id) for tab_id in TAB_IDS), id="tabs")

        with ContentSwitcher(id="content", initial="groups"):
            yield GroupsTab(id="groups")
            yield SettingsTab(id="settings")
            yield DataTab(id="data")
        yield Footer()

    def on_mount(self) -> None:
        try:
            # A missing file is created from the defaults.
            self.config_state.data = settings.load_raw_config(str(CONFIG_PATH))
        except ConfigError as exc:
            self.config_state.error = str(exc)
        except OSError as exc:
            self.config_state.error = f"config.json error: {exc.strerror or exc}"
        self._refresh_header()
        for tab_type in (GroupsTab, SettingsTab):
            for tab in self.query(tab_type):
                tab.reload_from_config()

    def on_tabs_tab_activated(self, event: Tabs.TabActivated) -> None:
        if event.tab.id in TAB_IDS:
            self.query_one("#content", ContentSwitcher).current = event.tab.id

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "save-btn":
            self.action_save_config()

    def action_save_config(self) -> None:
        self._save_config()

    def action_request_quit(self) -> None:
        if self.config_state.dirty:
            self.push_screen(UnsavedChangesScreen(), self._handle_exit_choice)
        else:
            self.exit()

    def _handle_exit_choice(self, choice: str | None) -> None:
        if choice == "discard" or (choice == "save" and self._save_config()):
            self.exit()

    def _save_config(self) -> bool:
        error = self.config_state.validate()
        if error is None:
            try:
                settings.write_raw_config(self.config_state.data, str(CONFIG_PATH))
            except OSError as exc:
                error = f"save failed: {exc.strerror or exc}"
        self.config_state.error = error
        if error is None:
            self.config_state.dirty = False
        self._refresh_header()
        return error is None

    def update_config_section(self, section: str, value: Any) -> None:
        """Replace one top-level config.json section and mark the panel dirty."""
        if self.config_state.data is None:
            self.config_state.data = settings.default_config()
        self.config_state.data[section] = value
        self.config_state.dirty = True
        self.config_state.error = None
        self._refresh_header()

    def _refresh_header(self) -> None:
        state = self.config_state
        self.query_one("#header-policy", Static).update(state.policy_summary())

        status = self.query_one("#header-status", Static)
        status.remove_class("status-loaded", "status-modified", "status-error")
        if state.error:
            status.update(f"config: {state.error}")
            status.add_class("status-error")
        elif state.dirty:
            status.update("config: modified *")
            status.add_class("status-modified")
        else:
            status.update("config: saved")
            status.add_class("status-loaded")

        self.query_one("#save-btn", Button).disabled = state.data is None or not state.dirty
