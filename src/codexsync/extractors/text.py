"""Text helpers shared by the extractors.

Everything here is pure: no I/O, no logging, deterministic output.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from bs4 import BeautifulSoup, Comment, Tag

if TYPE_CHECKING:
    from codexsync.models.records import GamePhase

# Column limits of the relational schema.
SLUG_MAX_LENGTH = 255
NAME_MAX_LENGTH = 255
CATEGORY_MAX_LENGTH = 100
CP_COST_MAX_LENGTH = 10
SHORT_DESCRIPTION_MAX_LENGTH = 1000
MEDIUM_DESCRIPTION_MAX_LENGTH = 2000

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")
_INLINE_SPACE_RE = re.compile(r"[ \t\r\f\v\xa0]+")
_EXCESS_NEWLINES_RE = re.compile(r"\n{3,}")

_BLOCK_TAGS = ["h1", "h2", "h3", "h4", "h5", "h6", "p", "table", "ul", "ol"]


def slugify(text: str) -> str:
    """Lowercase, collapse non-alphanumeric runs to one hyphen, trim hyphens.

    ``"Space Marines 2.0"`` → ``"space-marines-2-0"``
    """
    return _NON_ALNUM_RE.sub("-", text.lower()).strip("-")


def to_title_case(text: str) -> str:
    """``"ASSAULT INTERCESSORS"`` → ``"Assault Intercessors"``"""
    return " ".join(word[:1].upper() + word[1:] for word in text.lower().split(" "))


def truncate(text: str | None, limit: int) -> str | None:
    if text is None:
        return None
    return text[:limit]


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


_PHASES: list[tuple[str, GamePhase]] = [
    ("command", "command"),
    ("movement", "movement"),
    ("shooting", "shooting"),
    ("charge", "charge"),
    ("fight", "fight"),
]

# Ordered: the first entry with a matching keyword wins.
RULE_CATEGORIES: list[tuple[tuple[str, ...], str]] = [
    (("command phase",), "command_phase"),
    (("movement phase",), "movement_phase"),
    (("shooting phase",), "shooting_phase"),
    (("charge phase",), "charge_phase"),
    (("fight phase",), "fight_phase"),
    (("attacks", "hit roll", "wound roll"), "combat"),
    (("morale", "battle-shock"), "morale"),
    (("transport",), "transports"),
    (("terrain", "cover"), "terrain"),
    (("psychic", "psyker"), "psychic"),
    (("stratagem",), "stratagems"),
    (("objective", "victory"), "objectives"),
    (("deployment", "reserves"), "deployment"),
    (("unit", "datasheet"), "units"),
    (("weapon", "wargear"), "weapons"),
    (("ability", "abilities"), "abilities"),
    (("keyword",), "keywords"),
    (("leader", "attached"), "leaders"),
]
DEFAULT_RULE_CATEGORY = "general"


def detect_phase(text: str) -> GamePhase:
    lower = text.lower()
    for needle, phase in _PHASES:
        if needle in lower:
            return phase
    return "any"


def detect_rule_category(title: str) -> str:
    lower = title.lower()
    for keywords, category in RULE_CATEGORIES:
        if any(keyword in lower for keyword in keywords):
            return category
    return DEFAULT_RULE_CATEGORY


# ---------------------------------------------------------------------------
# De-duplication
# ---------------------------------------------------------------------------


class DeduplicationTracker:
    """Remembers values already emitted while walking one document."""

    def __init__(self, case_sensitive: bool = False) -> None:
        self._case_sensitive = case_sensitive
        self._seen: set[str] = set()

    def _key(self, value: str) -> str:
        return value if self._case_sensitive else value.lower()

    def __contains__(self, value: str) -> bool:
        return self._key(value) in self._seen

    def __len__(self) -> int:
        return len(self._seen)

    def add_if_new(self, value: str) -> bool:
        """Record ``value``; True if it had not been seen before."""
        key = self._key(value)
        if key in self._seen:
            return False
        self._seen.add(key)
        return True


# ---------------------------------------------------------------------------
# Markup to text
# ---------------------------------------------------------------------------


def collapse_whitespace(text: str) -> str:
    return " ".join(text.split())


def element_text(element: Tag) -> str:
    """Readable text of one block element.

    Lists become ``• item`` lines and tables become ``cell | cell`` rows;
    script and style elements contribute nothing.
    """
    if element.name in ("script", "style"):
        return ""
    if element.name in ("ul", "ol"):
        return "\n".join(f"• {li.get_text(strip=True)}" for li in element.find_all("li"))
    if element.name == "table":
        rows = []
        for tr in element.find_all("tr"):
            cells = [cell.get_text(strip=True) for cell in tr.find_all(["td", "th"])]
            rows.append(" | ".join(cells))
        return "\n".join(rows)
    return element.get_text().strip()


def html_to_text(markup: str | Tag) -> str:
    """Convert an HTML fragment to plain text that keeps paragraph breaks.

    Works on a private copy, so a Tag from a live tree is never modified.
    """
    soup = BeautifulSoup(str(markup), "html.parser")
    for node in soup.find_all(["script", "style"]):
        node.decompose()
    for node in soup.find_all(string=lambda text: isinstance(text, Comment)):
        node.extract()
    for br in soup.find_all("br"):
        br.replace_with("\n")
    for li in soup.find_all("li"):
        li.insert_before("\n• ")
    for tr in soup.find_all("tr"):
        tr.insert_after("\n")
    for block in soup.find_all(_BLOCK_TAGS):
        block.insert_before("\n\n")
        block.insert_after("\n")
    for div in soup.find_all("div", class_=lambda value: bool(value) and "BreakInside" in value):
        div.insert_before("\n\n")

    text = _INLINE_SPACE_RE.sub(" ", soup.get_text())
    text = "\n".join(line.strip() for line in text.split("\n"))
    return _EXCESS_NEWLINES_RE.sub("\n\n", text).strip()
