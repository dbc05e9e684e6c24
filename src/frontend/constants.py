"""Shared constants for the Textual UI."""

from __future__ import annotations

from pathlib import Path

import settings

QQ_BLUE = "#12B7F5"
DATA_DIR = Path(settings.DATA_DIR)
CONFIG_PATH = Path(settings.CONFIG_PATH)
DB_PATH = Path(settings.DB_PATH)
EXPORTS_DIR = DATA_DIR / "exports"
