"""Data tab for browsing and exporting recorded messages."""

from __future__ import annotations

import csv
import json
import sqlite3
from datetime import datetime
from typing import Any, Optional

from textual import on
from textual.containers import Container, Horizontal, Vertical
from textual.widgets import Button, DataTable, Input, Static

from adapters.sqlite_storage import SQLiteStorage

from ..constants import DB_PATH, EXPORTS_DIR
from ..validators import parse_id

PAGE_SIZE = 500

EXPORT_COLUMNS = (
    "id", "message_id", "msg_type", "group_id", "peer_id", "user_id",
    "sender_nickname", "sender_card", "created_at", "local_date", "clean_text",
)


class DataTab(Container):
    """Data tab to browse recent messages and export them to JSON/CSV."""

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._rows: list[dict[str, Any]] = []
        self._table_ready = False
        self._group_filter: Optional[int] = None

    def compose(self):
        with Vertical(id="data-panel"):
            yield Static("Messages", id="data-title")
            yield Static("", id="data-summary", classes="subtle")
            with Horizontal(id="data-filter"):
                yield Input(placeholder="group id (empty = all chats)", id="data-group")
                yield Button("Refresh", id="data-refresh")
            yield DataTable(id="data-table", cursor_type="row")
            with Horizontal(id="data-actions"):
                yield Button("Export JSON", id="export-json", variant="success")
                yield Button("Export CSV", id="export-csv")
            yield Static("", id="data-output")

    def on_mount(self) -> None:
        table = self.query_one("#data-table", DataTable)
        table.add_column("time", key="time", width=19)
        table.add_column("chat", key="chat", width=16)
        table.add_column("sender", key="sender", width=18)
        table.add_column("text", key="text", width=48)
        table.zebra_stripes = True
        table.styles.height = "1fr"
        self.query_one("#data-actions").styles.height = 3
        self._table_ready = True
        self._load_messages()

    @on(Button.Pressed, "#data-refresh")
    def _on_refresh(self) -> None:
        raw = self.query_one("#data-group", Input).value
        if raw.strip():
            info = parse_id(raw)
            if info.error:
                self._set_output(info.error)
                return
            self._group_filter = info.value
        else:
            self._group_filter = None
        self._load_messages()

    @on(Input.Submitted, "#data-group")
    def _on_group_submitted(self) -> None:
        self._on_refresh()

    @on(Button.Pressed, "#export-json")
    def _on_export_json(self) -> None:
        self._export_rows("json")

    @on(Button.Pressed, "#export-csv")
    def _on_export_csv(self) -> None:
        self._export_rows("csv")

    def _load_messages(self) -> None:
        if not self._table_ready:
            return
        table = self.query_one("#data-table", DataTable)
        table.clear()
        if not DB_PATH.exists():
            self._rows = []
            self._set_summary("")
            self._set_output(f"db not found: {DB_PATH}")
            return

        where = "WHERE group_id = ?" if self._group_filter is not None else ""
        params: tuple = (self._group_filter,) if self._group_filter is not None else ()
        try:
            conn = SQLiteStorage(DB_PATH).connect(read_only=True)
            try:
                conn.execute("BEGIN")
                rows = conn.execute(
                    f"""
                    SELECT {", ".join(EXPORT_COLUMNS)} FROM messages {where}
                    ORDER BY created_at DESC, id DESC LIMIT ?
                    """,
                    (*params, PAGE_SIZE),
                ).fetchall()
                totals = conn.execute(
                    "SELECT COUNT(*), COUNT(DISTINCT user_id), COUNT(DISTINCT group_id) FROM messages"
                ).fetchone()
            finally:
                conn.close()
        except sqlite3.Error as exc:
            self._rows = []
            self._set_output(f"db error: {exc}")
            return

        self._rows = [dict(row) for row in rows]
        for row in rows:
            chat = f"group {row['group_id']}" if row["group_id"] is not None else f"private {row['peer_id']}"
            sender = row["sender_card"] or row["sender_nickname"] or str(row["user_id"])
            table.add_row(
                self._format_time(row["created_at"]),
                chat,
                self._clip_text(sender, 18),
                self._clip_text(row["clean_text"] or ""),
                key=str(row["id"]),
            )
        self._set_summary(f"{totals[0]} messages, {totals[1]} users, {totals[2]} groups")
        self._set_output(f"showing {len(rows)} latest messages from {DB_PATH}")

    def _export_rows(self, fmt: str) -> None:
        if not self._rows:
            self._set_output("No messages to export.")
            return
        EXPORTS_DIR.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        path = EXPORTS_DIR / f"messages-{timestamp}.{fmt}"
        try:
            if fmt == "json":
                path.write_text(json.dumps(self._rows, indent=2, ensure_ascii=False), encoding="utf-8")
            else:
                with path.open("w", encoding="utf-8", newline="") as handle:
                    writer = csv.DictWriter(handle, fieldnames=list(EXPORT_COLUMNS))
                    writer.writeheader()
                    writer.writerows(self._rows)
            self._set_output(f"exported {len(self._rows)} messages to {path}")
        except OSError as exc:
            self._set_output(f"export failed: {exc.strerror or exc}")

    def _set_summary(self, message: str) -> None:
        self.query_one("#data-summary", Static).update(message)

    def _set_output(self, message: str) -> None:
        self.query_one("#data-output", Static).update(message)

    @staticmethod
    def _clip_text(value: str, limit: int = 64) -> str:
        value = value.replace("\n", " ")
        if len(value) <= limit:
            return value
        return value[: limit - 3] + "..."

    @staticmethod
    def _format_time(created_at: int) -> str:
        return datetime.fromtimestamp(created_at).strftime("%Y-%m-%d %H:%M:%S")
