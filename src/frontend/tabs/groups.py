"""Groups tab implementation."""

from __future__ import annotations

from typing import Any, Iterable, Optional

from textual import on
from textual.containers import Container, Horizontal, Vertical
from textual.widgets import Button, DataTable, Select, Static

from ..modals import AddGroupScreen, DeleteGroupScreen
from ..validators import LIST_NAMES


class GroupsTab(Container):
    """Groups tab for editing config.groups and the recording mode."""

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._loading_form = False
        self._current_row_key: Optional[str] = None
        self._table_ready = False

    def compose(self):
        with Vertical(id="groups-panel"):
            with Horizontal(id="groups-mode-row"):
                yield Static("mode", classes="form-label")
                yield Select(
                    [("whitelist", "whitelist"), ("blacklist", "blacklist")],
                    id="groups-mode",
                    allow_blank=False,
                )
                yield Static("", id="groups-mode-hint", classes="subtle")
            with Horizontal(id="groups-body"):
                with Container(id="groups-left"):
                    yield DataTable(id="groups-table", cursor_type="row")
                with Container(id="groups-right"):
                    yield Static("Group details", id="groups-title")
                    yield Static("group id", classes="form-label")
                    yield Static("", id="group-id-display")
                    yield Static("list", classes="form-label")
                    yield Static("", id="group-list-display")
                    yield Static("recorded", classes="form-label")
                    yield Static("", id="group-recorded-display")
            with Horizontal(id="groups-actions"):
                yield Button("Add", id="add-group", variant="success")
                yield Button("Remove", id="delete-group", variant="error")

    def on_mount(self) -> None:
        table = self.query_one("#groups-table", DataTable)
        table.add_column("group_id", key="group_id", width=16)
        table.add_column("list", key="list", width=12)
        table.add_column("recorded", key="recorded", width=10)
        table.zebra_stripes = True
        self._table_ready = True
        self.reload_from_config()
        self._set_form_state(None)

    def reload_from_config(self) -> None:
        if not self._table_ready:
            return
        self._loading_form = True
        mode = self._get_mode()
        self.query_one("#groups-mode", Select).value = mode
        self._loading_form = False
        self._update_mode_hint(mode)

        table = self.query_one("#groups-table", DataTable)
        table.clear()
        for list_name, group_id in self._iter_groups():
            table.add_row(
                str(group_id),
                list_name,
                "yes" if self._is_recorded(list_name, mode) else "no",
                key=self._row_key(list_name, group_id),
            )
        self._update_action_state()

    def _iter_groups(self) -> Iterable[tuple[str, int]]:
        groups = self._get_groups()
        for list_name in LIST_NAMES:
            for group_id in sorted(groups.get(list_name, [])):
                yield list_name, group_id

    def _get_mode(self) -> str:
        data = self.app.config_state.data or {}
        mode = data.get("mode", "whitelist")
        return mode if mode in LIST_NAMES else "whitelist"

    def _get_groups(self) -> dict[str, list[int]]:
        data = self.app.config_state.data or {}
        groups = data.get("groups")
        if not isinstance(groups, dict):
            return {name: [] for name in LIST_NAMES}
        result: dict[str, list[int]] = {}
        for name in LIST_NAMES:
            values = groups.get(name)
            result[name] = [v for v in values if isinstance(v, int)] if isinstance(values, list) else []
        return result

    def _set_groups(self, groups: dict[str, list[int]]) -> None:
        self.app.update_config_section("groups", {name: sorted(set(groups[name])) for name in LIST_NAMES})

    @staticmethod
    def _is_recorded(list_name: str, mode: str) -> bool:
        # Only the list matching the mode is consulted.
        if mode == "whitelist":
            return list_name == "whitelist"
        return list_name != "blacklist"

    @staticmethod
    def _row_key(list_name: str, group_id: int) -> str:
        return f"{list_name}:{group_id}"

    def _update_mode_hint(self, mode: str) -> None:
        hint = (
            "only whitelisted groups are recorded"
            if mode == "whitelist"
            else "every group except blacklisted ones is recorded"
        )
        self.query_one("#groups-mode-hint", Static).update(hint)

    def _update_action_state(self) -> None:
        self.query_one("#delete-group", Button).disabled = self._current_row_key is None

    @on(Select.Changed, "#groups-mode")
    def _on_mode_changed(self, event: Select.Changed) -> None:
        if self._loading_form or event.value is Select.BLANK:
            return
        self.app.update_config_section("mode", str(event.value))
        self.reload_from_config()
        self._set_form_state(self._current_row_key)

    def on_data_table_row_selected(self, event: DataTable.RowSelected) -> None:
        self._current_row_key = self._coerce_row_key(event.row_key)
        self._set_form_state(self._current_row_key)
        self._update_action_state()

    @on(Button.Pressed, "#add-group")
    def _on_add_group(self) -> None:
        self.app.push_screen(AddGroupScreen(self._get_mode()), self._handle_add_group)

    @on(Button.Pressed, "#delete-group")
    def _on_delete_group(self) -> None:
        selected = self._current_selection()
        if selected is None:
            return
        list_name, group_id = selected
        self.app.push_screen(DeleteGroupScreen(group_id, list_name), self._handle_delete_group)

    def _handle_add_group(self, payload: dict[str, Any] | None) -> None:
        if not payload:
            return
        groups = self._get_groups()
        list_name = payload["list"]
        group_id = payload["group_id"]
        # A group sits on at most one list.
        for name in LIST_NAMES:
            groups[name] = [gid for gid in groups[name] if gid != group_id]
        groups[list_name].append(group_id)
        self._set_groups(groups)
        self.reload_from_config()

    def _handle_delete_group(self, confirmed: bool | None) -> None:
        if not confirmed:
            return
        selected = self._current_selection()
        if selected is None:
            return
        list_name, group_id = selected
        groups = self._get_groups()
        groups[list_name] = [gid for gid in groups[list_name] if gid != group_id]
        self._set_groups(groups)
        self._current_row_key = None
        self.reload_from_config()
        self._set_form_state(None)

    def _set_form_state(self, row_key: Optional[str]) -> None:
        id_display = self.query_one("#group-id-display", Static)
        list_display = self.query_one("#group-list-display", Static)
        recorded_display = self.query_one("#group-recorded-display", Static)
        selected = self._parse_row_key(row_key)
        if selected is None:
            id_display.update("")
            list_display.update("")
            recorded_display.update("")
            return
        list_name, group_id = selected
        id_display.update(str(group_id))
        list_display.update(list_name)
        recorded_display.update("yes" if self._is_recorded(list_name, self._get_mode()) else "no")

    def _current_selection(self) -> Optional[tuple[str, int]]:
        return self._parse_row_key(self._current_row_key)

    @staticmethod
    def _parse_row_key(row_key: Optional[str]) -> Optional[tuple[str, int]]:
        if row_key is None:
            return None
        list_name, _, raw_id = row_key.partition(":")
        if list_name not in LIST_NAMES or not raw_id.isdigit():
            return None
        return list_name, int(raw_id)

    @staticmethod
    def _coerce_row_key(value: Any) -> str:
        if hasattr(value, "value"):
            return str(value.value)
        return str(value)
