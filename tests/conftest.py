from __future__ import annotations

import pytest

from adapters.sqlite_storage import SQLiteStorage
from core.config import TokenizerConfig
from core.tokenizer import Tokenizer
from helpers import WhitespaceSegmenter, make_segmenter


@pytest.fixture
def storage(tmp_path) -> SQLiteStorage:
    store = SQLiteStorage(tmp_path / "msg_history.sqlite")
    store.init_db()
    return store


@pytest.fixture
def segmenter(tmp_path):
    return make_segmenter(tmp_path)


@pytest.fixture
def word_tokenizer() -> Tokenizer:
    return Tokenizer(TokenizerConfig(stop_words=frozenset({"the"})), WhitespaceSegmenter())
