"""Repairs for text the provider glued together.

The provider's markup-to-text conversion drops the whitespace between
adjacent label and value nodes, so ``Feel No Pain`` arrives as
``feelnopain`` and ``ADEPTUS ASTARTES`` as ``ADEPTUSASTARTES``. The repair
tables are data, loaded from ``normalization.json`` next to this module or
from any file with the same shape, so the fix list grows without touching
parser code.
"""

from __future__ import annotations

import json
import re
from functools import lru_cache
from importlib.resources import files
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from pathlib import Path

_CAMEL_BOUNDARY_RE = re.compile(r"([a-z])([A-Z])")
# "HERETIC ASTARTESHERETIC ASTARTES" → "HERETIC ASTARTES"
_REPEATED_PHRASE_RE = re.compile(r"\b([A-Z][A-Z'-]+(?:\s+[A-Z][A-Z'-]+)+)(\1)+")
# "INFANTRYINFANTRYINFANTRY" → "INFANTRY"
_REPEATED_WORD_RE = re.compile(r"\b([A-Z][A-Z'-]{2,})(\1){2,}")


def _alternation(keys: list[str]) -> str:
    # Longest first so "battleshocktest" wins over "battleshock".
    return "|".join(re.escape(key) for key in sorted(keys, key=len, reverse=True))


class NormalizationTable:
    """Compiled repair tables. Build once and reuse across documents."""

    def __init__(
        self,
        concatenation_fixes: dict[str, str],
        keyword_fixes: dict[str, str],
        article_words: list[str] | None = None,
    ) -> None:
        self.concatenation_fixes = {
            key.lower(): value for key, value in concatenation_fixes.items()
        }
        self.keyword_fixes = {key.upper(): value for key, value in keyword_fixes.items()}
        self.article_words = list(article_words or [])

        self._concat_re = (
            re.compile(_alternation(list(self.concatenation_fixes)), re.IGNORECASE)
            if self.concatenation_fixes
            else None
        )
        self._keyword_re = (
            re.compile(rf"\b(?:{_alternation(list(self.keyword_fixes))})\b", re.IGNORECASE)
            if self.keyword_fixes
            else None
        )
        self._article_re = (
            re.compile(rf"\b({_alternation(self.article_words)})(the)\b", re.IGNORECASE)
            if self.article_words
            else None
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> NormalizationTable:
        return cls(
            concatenation_fixes=dict(data.get("concatenation_fixes", {})),
            keyword_fixes=dict(data.get("keyword_fixes", {})),
            article_words=list(data.get("article_words", [])),
        )

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------

    def fix_concatenations(self, text: str) -> str:
        if self._concat_re is None:
            return text
        return self._concat_re.sub(lambda m: self.concatenation_fixes[m.group(0).lower()], text)

    def normalize_keywords(self, text: str) -> str:
        if self._keyword_re is None:
            return text
        return self._keyword_re.sub(lambda m: self.keyword_fixes[m.group(0).upper()], text)

    def normalize_text(self, text: str) -> str:
        """Dictionary fixes, then camel-case boundaries, then glued articles."""
        result = self.fix_concatenations(text)
        result = _CAMEL_BOUNDARY_RE.sub(r"\1 \2", result)
        if self._article_re is not None:
            result = self._article_re.sub(r"\1 \2", result)
        return result

    def normalize(self, text: str) -> str:
        """Full pass applied to extracted rule text before pattern matching."""
        return dedupe_keywords(self.normalize_keywords(self.normalize_text(text)))


def dedupe_keywords(text: str) -> str:
    """Collapse runs of an identical uppercase phrase or word to one occurrence."""
    result = _REPEATED_PHRASE_RE.sub(r"\1", text)
    return _REPEATED_WORD_RE.sub(r"\1", result)


def load_normalization_table(path: Path | None = None) -> NormalizationTable:
    """Load repair tables from ``path``, or the bundled ``normalization.json``."""
    if path is None:
        raw = files("codexsync.extractors").joinpath("normalization.json").read_text("utf-8")
    else:
        raw = path.read_text(encoding="utf-8")
    return NormalizationTable.from_dict(json.loads(raw))


@lru_cache(maxsize=1)
def default_table() -> NormalizationTable:
    return load_normalization_table()
