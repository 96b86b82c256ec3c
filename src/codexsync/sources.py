"""URL layout of the ruleset source site.

Every page the ingestion run touches is built here, so the rest of the
package never concatenates paths by hand.
"""

from __future__ import annotations

import re
from urllib.parse import urlparse

FACTION_SLUGS: tuple[str, ...] = (
    # Imperium
    "adeptus-astartes",
    "blood-angels",
    "dark-angels",
    "deathwatch",
    "space-wolves",
    "black-templars",
    "grey-knights",
    "adeptus-custodes",
    "adepta-sororitas",
    "adeptus-mechanicus",
    "astra-militarum",
    "imperial-knights",
    "imperial-agents",
    # Chaos
    "chaos-space-marines",
    "death-guard",
    "thousand-sons",
    "world-eaters",
    "chaos-daemons",
    "chaos-knights",
    # Xenos
    "aeldari",
    "drukhari",
    "harlequins",
    "ynnari",
    "necrons",
    "orks",
    "tau-empire",
    "tyranids",
    "genestealer-cults",
    "leagues-of-votann",
)

# Ordered: the first fragment found in the URL decides the type.
_CONTENT_TYPES: list[tuple[str, str]] = [
    ("/core-rules", "core_rules"),
    ("/matched-play", "missions"),
    ("/crusade", "crusade"),
    ("/terrain", "terrain"),
    ("/datasheets", "units"),
    ("/detachments", "detachments"),
    ("/army-rules", "army_rules"),
    ("/stratagems", "stratagems"),
    ("/faq", "faq"),
]

_FACTION_PAGE_RE = re.compile(r"/factions/([^/]+)/?$")
_UNIT_PAGE_RE = re.compile(r"/factions/([^/]+)/([^/]+)/?$")
_FACTION_IN_PATH_RE = re.compile(r"/factions/([^/]+)/")
_NON_UNIT_PAGES = frozenset({"datasheets", "legends", "detachments", "army-rules", "stratagems"})


class SourceUrls:
    """URL builders rooted at the configured base URL."""

    def __init__(self, base_url: str) -> None:
        self.base_url = base_url.rstrip("/")

    @property
    def host(self) -> str:
        return urlparse(self.base_url).hostname or ""

    def core_rules(self) -> str:
        return f"{self.base_url}/the-rules/core-rules/"

    def faction_index(self) -> str:
        return f"{self.base_url}/factions/"

    def faction(self, slug: str) -> str:
        return f"{self.base_url}/factions/{slug}/"

    def datasheets(self, faction_slug: str) -> str:
        return f"{self.base_url}/factions/{faction_slug}/datasheets"

    def detachments(self, faction_slug: str) -> str:
        return f"{self.base_url}/factions/{faction_slug}/detachments"

    def army_rules(self, faction_slug: str) -> str:
        return f"{self.base_url}/factions/{faction_slug}/army-rules"

    def stratagems(self, faction_slug: str) -> str:
        return f"{self.base_url}/factions/{faction_slug}/stratagems"

    def faq(self) -> str:
        return f"{self.base_url}/faq/"

    def unit(self, faction_slug: str, unit_slug: str) -> str:
        return f"{self.base_url}/factions/{faction_slug}/{unit_slug}"


def detect_content_type(url: str) -> str:
    for fragment, content_type in _CONTENT_TYPES:
        if fragment in url:
            return content_type
    if "/factions/" in url:
        return "faction"
    return "unknown"


def is_faction_page_url(url: str) -> bool:
    match = _FACTION_PAGE_RE.search(urlparse(url).path)
    return bool(match) and match.group(1).lower() not in _NON_UNIT_PAGES


def is_unit_datasheet_url(url: str) -> bool:
    """True for ``/factions/<faction>/<unit>`` pages, excluding listing pages."""
    match = _UNIT_PAGE_RE.search(urlparse(url).path)
    return bool(match) and match.group(2).lower() not in _NON_UNIT_PAGES


def faction_slug_from_url(url: str) -> str | None:
    path = urlparse(url).path
    if not path.endswith("/"):
        path += "/"
    match = _FACTION_IN_PATH_RE.search(path)
    return match.group(1) if match else None
