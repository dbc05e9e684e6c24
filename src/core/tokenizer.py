"""Word segmentation and filtering (core domain).

Segmentation uses jieba in accurate mode. Dictionary compounds such as
今天天气 are then split into the finest run of dictionary words covering them
(今天 / 天气), using jieba's search-mode grains. Filtering rules:
- media/mention placeholders, CQ codes and URLs are removed before segmenting
- segments shorter than ``min_word_length`` codepoints are dropped
- segments in the stopword set are dropped (exact, case-sensitive)
- segments without any alphabetic/CJK character are dropped
"""

from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass
from typing import Iterator, Optional, Sequence

import jieba

from core.config import TokenizerConfig
from core.models import MEDIA_PLACEHOLDERS

_MARKUP_PATTERN = re.compile(
    "|".join(
        [re.escape(p) for p in sorted(set(MEDIA_PLACEHOLDERS.values()))]
        + [r"\[@[^\[\]]*\]", r"\[CQ:[^\]]*\]", r"https?://[\x21-\x7e]+"]
    )
)


@dataclass(frozen=True)
class Token:
    word: str
    weight: int = 1


def strip_markup(text: str) -> str:
    """Replace placeholders and markup with spaces so neighbours never merge."""

    return _MARKUP_PATTERN.sub(" ", text)


def _is_lexical(word: str) -> bool:
    return any(ch.isalpha() for ch in word)


def _finest_cover(length: int, grains: Sequence[tuple[str, int, int]]) -> Optional[list[str]]:
    """Return the longest gap-free run of grains spanning ``[0, length)``, if any."""

    best: dict[int, list[str]] = {length: []}
    for position in range(length - 1, -1, -1):
        options = [[word] + best[end] for word, start, end in grains if start == position and end in best]
        if options:
            best[position] = max(options, key=len)
    return best.get(0)


class Tokenizer:
    """Deterministic tokenizer for a fixed dictionary and stopword set."""

    def __init__(self, config: TokenizerConfig, segmenter: Optional[jieba.Tokenizer] = None) -> None:
        self._config = config
        self._segmenter = segmenter or jieba.Tokenizer()

    @property
    def enabled(self) -> bool:
        return self._config.enabled

    def initialize(self) -> None:
        """Load the jieba dictionary. Blocking; run it off the event loop."""

        self._segmenter.initialize()

    def with_config(self, config: TokenizerConfig) -> "Tokenizer":
        """Return a tokenizer sharing this dictionary but using new settings."""

        return Tokenizer(config, self._segmenter)

    def tokenize(self, text: str) -> Iterator[Token]:
        """Yield surviving tokens in text order."""

        cleaned = strip_markup(text)
        if not cleaned.strip():
            return
        min_len = self._config.min_word_length
        stop_words = self._config.stop_words
        for segment in self._segments(cleaned):
            word = segment.strip()
            if len(word) < min_len:
                continue
            if word in stop_words:
                continue
            if not _is_lexical(word):
                continue
            yield Token(word)

    def _segments(self, text: str) -> Iterator[str]:
        for segment in self._segmenter.cut(text, cut_all=False, HMM=True):
            if len(segment) <= 2:
                yield segment
                continue
            grains = [
                grain
                for grain in self._segmenter.tokenize(segment, mode="search", HMM=True)
                if grain[2] - grain[1] < len(segment)
            ]
            parts = _finest_cover(len(segment), grains)
            if parts:
                yield from parts
            else:
                yield segment

    def count(self, text: str) -> Counter:
        """Aggregate token weights per word."""

        counts: Counter = Counter()
        for token in self.tokenize(text):
            counts[token.word] += token.weight
        return counts
