"""Modal dialogs for the Textual config panel."""

from __future__ import annotations

from typing import Any

from textual.app import ComposeResult
from textual.containers import Container, Horizontal
from textual.screen import ModalScreen
from textual.widgets import Button, Input, Select, Static

from .validators import LIST_NAMES, parse_id


class UnsavedChangesScreen(ModalScreen[str]):
    """Prompt when exiting with unsaved changes."""

    def compose(self) -> ComposeResult:
        yield Container(
            Static("Unsaved changes", classes="modal-title"),
            Static("Save changes before exit?", classes="modal-body"),
            Horizontal(
                Button("Save", id="unsaved-save", variant="success"),
                Button("Discard", id="unsaved-discard", variant="error"),
                Button("Cancel", id="unsaved-cancel"),
                classes="modal-actions",
            ),
            classes="modal-dialog modal-dialog--confirm",
        )

    def on_button_pressed(self, event: Button.Pressed) -> None:
        choices = {"unsaved-save": "save", "unsaved-discard": "discard"}
        self.dismiss(choices.get(event.button.id or "", "cancel"))


class AddGroupScreen(ModalScreen[dict[str, Any] | None]):
    """Modal form for adding a group to one of the lists."""

    def __init__(self, default_list: str = "whitelist") -> None:
        super().__init__()
        self._default_list = default_list if default_list in LIST_NAMES else LIST_NAMES[0]

    def compose(self) -> ComposeResult:
        yield Container(
            Static("Add group", classes="modal-title"),
            Static("", id="add-error", classes="modal-error"),
            Static("group id", classes="form-label"),
            Input(placeholder="123456789", id="add-group-id"),
            Static("list", classes="form-label"),
            Select(
                [(name, name) for name in LIST_NAMES],
                value=self._default_list,
                id="add-list",
                allow_blank=False,
            ),
            Horizontal(
                Button("Add", id="add-confirm", variant="success"),
                Button("Cancel", id="add-cancel"),
                classes="modal-actions",
            ),
            classes="modal-dialog modal-dialog--form",
        )

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "add-cancel":
            self.dismiss(None)
            return
        if event.button.id != "add-confirm":
            return
        info = parse_id(self.query_one("#add-group-id", Input).value)
        if info.error or info.value is None:
            self.query_one("#add-error", Static).update(info.error or "invalid group id")
            return
        list_name = self.query_one("#add-list", Select).value
        self.dismiss({"group_id": info.value, "list": str(list_name)})


class DeleteGroupScreen(ModalScreen[bool]):
    """Confirm removal of a group from its list."""

    def __init__(self, group_id: int, list_name: str) -> None:
        super().__init__()
        self._label = f"{group_id} ({list_name})"

    def compose(self) -> ComposeResult:
        yield Container(
            Static("Remove group?", classes="modal-title"),
            Static(self._label, classes="modal-body"),
            Horizontal(
                Button("Remove", id="delete-confirm", variant="error"),
                Button("Cancel", id="delete-cancel"),
                classes="modal-actions",
            ),
            classes="modal-dialog modal-dialog--confirm",
        )

    def on_button_pressed(self, event: Button.Pressed) -> None:
        self.dismiss(event.button.id == "delete-confirm")
