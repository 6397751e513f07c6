"""Token counting contract plus the bundled heuristic estimator.

Anything exposing ``count_tokens(text) -> int`` can be plugged into the
compressor and the project analyzer. The heuristic counts words, punctuation
and code symbols and scales by 1.2 to approximate subword tokenization.
"""

from __future__ import annotations

import unicodedata
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Protocol


class TokenCounter(Protocol):
    def count_tokens(self, text: str) -> int:
        ...


_SYMBOL_CHARS = frozenset("{}[]()+-*/=<>!&|^~%#@$")

LANGUAGE_MULTIPLIERS: Dict[str, float] = {
    "go": 1.3,
    "javascript": 1.2,
    "typescript": 1.2,
    "python": 1.1,
    "java": 1.4,
    "c++": 1.3,
    "rust": 1.2,
    "markdown": 0.8,
    "yaml": 0.9,
    "json": 1.0,
    "unknown": 1.0,
}

SUBWORD_FACTOR = 1.2


@dataclass(frozen=True)
class TokenStatistics:
    total_tokens: int
    words: int
    punctuation: int
    symbols: int
    lines: int
    characters: int
    tokens_per_line: float
    tokens_per_word: float
    characters_per_token: float


def _count_words(text: str) -> int:
    words = 0
    in_word = False
    for ch in text:
        if ch.isalnum():
            if not in_word:
                words += 1
                in_word = True
        else:
            in_word = False
    return words


def _count_punctuation(text: str) -> int:
    return sum(1 for ch in text if unicodedata.category(ch).startswith("P"))


def _count_symbols(text: str) -> int:
    return sum(1 for ch in text if ch in _SYMBOL_CHARS)


class HeuristicTokenCounter:
    """Word/punctuation/symbol based token estimate."""

    def __init__(self, multipliers: Optional[Dict[str, float]] = None):
        self.multipliers = dict(LANGUAGE_MULTIPLIERS)
        if multipliers:
            self.multipliers.update(multipliers)

    def count_tokens(self, text: str) -> int:
        if not text:
            return 0
        base = _count_words(text) + _count_punctuation(text) + _count_symbols(text)
        return int(base * SUBWORD_FACTOR)

    def count_tokens_with_language(self, text: str, language: str) -> int:
        multiplier = self.multipliers.get(language, self.multipliers["unknown"])
        return int(self.count_tokens(text) * multiplier)

    def count_file(self, path: str | Path) -> int:
        return self.count_tokens(Path(path).read_text(encoding="utf-8", errors="replace"))

    def statistics(self, text: str) -> TokenStatistics:
        words = _count_words(text)
        total = self.count_tokens(text)
        lines = len(text.split("\n"))
        return TokenStatistics(
            total_tokens=total,
            words=words,
            punctuation=_count_punctuation(text),
            symbols=_count_symbols(text),
            lines=lines,
            characters=len(text),
            tokens_per_line=total / lines if lines else 0.0,
            tokens_per_word=total / words if words else 0.0,
            characters_per_token=len(text) / total if total else 0.0,
        )
