"""Faction page extractor.

A faction page is one long document split by named anchors
(``<a name="...">``). A detachment is an anchor whose *next* anchor is a
``Detachment-Rule`` anchor; its stratagem and enhancement sections are the
``Stratagems*`` and ``Enhancements*`` anchors that follow it. Section
content is everything in document order between one anchor and the next.

All label/value text goes through the normalization pass before any
pattern is matched against it.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from bs4 import BeautifulSoup, Comment, NavigableString, Tag

from codexsync.extractors.normalization import default_table
from codexsync.extractors.text import (
    CATEGORY_MAX_LENGTH,
    CP_COST_MAX_LENGTH,
    MEDIUM_DESCRIPTION_MAX_LENGTH,
    NAME_MAX_LENGTH,
    SHORT_DESCRIPTION_MAX_LENGTH,
    SLUG_MAX_LENGTH,
    DeduplicationTracker,
    detect_phase,
    html_to_text,
    slugify,
)
from codexsync.models.records import Detachment, Enhancement, Faction, FactionPage, Stratagem

if TYPE_CHECKING:
    from collections.abc import Iterator

    from codexsync.extractors.normalization import NormalizationTable

UNKNOWN_DETACHMENT = "unknown"

# Anchor base names that never name a detachment.
SYSTEM_SECTIONS = frozenset(
    {
        "detachment-rule",
        "enhancements",
        "stratagems",
        "army-rules",
        "datasheets",
        "books",
        "introduction",
        "contents",
        "boarding-actions",
        "crusade-rules",
        "allied-units",
        "requisitions",
        "agendas",
        "battle-traits",
        "faq",
        "keywords",
        "faction-pack",
    }
)
_DETACHMENT_CHILD_SECTIONS = frozenset({"detachment-rule", "enhancements", "stratagems"})

_ANCHOR_SUFFIX_RE = re.compile(r"-\d+$")
_MARKDOWN_IMAGE_RE = re.compile(r"!\[[^\]]*\]\([^)]+\)")
_URL_RE = re.compile(r"https?://\S+")
_NOT_FOUND_RE = re.compile(r"#+\s*Not\s*Found", re.IGNORECASE)
_CP_RE = re.compile(r"(\d+)CP", re.IGNORECASE)
_POINTS_RE = re.compile(r"(\d+)\s*pts?", re.IGNORECASE)
_RESTRICTION_RE = re.compile(
    r"([A-Z][A-Z\s'-]+(?:model|INFANTRY|PSYKER)[^.]*only\.?)", re.IGNORECASE
)
_H1_RE = re.compile(r"^#\s+(.+)$", re.MULTILINE)
_NO_FILTER_RE = re.compile(r"\s*\\?\[?\s*No filter.*$", re.IGNORECASE)
_BRACKET_TAIL_RE = re.compile(r"\s*[\[(\\].*$")

_CARD_LABELS = {
    "WHEN": "when",
    "TARGET": "target",
    "EFFECT": "effect",
    "RESTRICTIONS": "restrictions",
}

# Intro text shorter than this is navigation, not lore.
_MIN_LORE_LENGTH = 100


# ---------------------------------------------------------------------------
# Anchor helpers
# ---------------------------------------------------------------------------


def _base_section_name(anchor_name: str) -> str:
    """``"Stratagems-3"`` → ``"stratagems"``"""
    return _ANCHOR_SUFFIX_RE.sub("", anchor_name).lower()


def _is_anchor(element: Tag) -> bool:
    return element.name == "a" and element.has_attr("name")


def _anchors(soup: BeautifulSoup) -> list[Tag]:
    return soup.find_all("a", attrs={"name": True})


def _section_tags(anchor: Tag) -> Iterator[Tag]:
    """Tags after ``anchor`` in document order, up to the next named anchor."""
    for element in anchor.next_elements:
        if not isinstance(element, Tag):
            continue
        if _is_anchor(element):
            return
        yield element


def _has_class(element: Tag, name: str) -> bool:
    return name in (element.get("class") or [])


def _detachment_key_for(anchor_names: list[str], index: int) -> str:
    """Display form of the detachment that owns the section at ``index``."""
    for i in range(index - 1, -1, -1):
        if _base_section_name(anchor_names[i]) in _DETACHMENT_CHILD_SECTIONS:
            continue
        following = anchor_names[i + 1] if i + 1 < len(anchor_names) else ""
        if _base_section_name(following) == "detachment-rule":
            return anchor_names[i].replace("-", " ")
    return UNKNOWN_DETACHMENT


def _labelled_sections(soup: BeautifulSoup, prefix: str) -> Iterator[tuple[str, Tag]]:
    """Yield ``(detachment_key, anchor)`` for every anchor whose name starts with ``prefix``."""
    anchors = _anchors(soup)
    names = [anchor["name"] for anchor in anchors]
    for index, anchor in enumerate(anchors):
        if names[index].startswith(prefix):
            yield _detachment_key_for(names, index), anchor


def _normalized(text: str, table: NormalizationTable) -> str:
    return table.normalize(" ".join(text.split()))


# ---------------------------------------------------------------------------
# Faction
# ---------------------------------------------------------------------------


def faction_name_from_markdown(markdown: str) -> str | None:
    """Faction display name from the page's first H1, without filter widgets."""
    match = _H1_RE.search(markdown)
    if match is None:
        return None
    name = _NO_FILTER_RE.sub("", match.group(1).strip())
    name = _BRACKET_TAIL_RE.sub("", name)
    return name.strip() or None


def _army_rule_block(soup: BeautifulSoup, anchor: Tag) -> Tag | None:
    header = anchor.find_next_sibling()
    if header is not None and header.name == "h2":
        block = header.find_next_sibling()
        if block is not None and block.name == "div" and _has_class(block, "Columns2"):
            return block

    sibling = anchor.find_next_sibling("div", class_="Columns2")
    if sibling is not None:
        return sibling

    for block in soup.find_all("div", class_="Columns2"):
        if block.find_parent("div", class_="clFl") is not None:
            continue
        for inner in block.find_all("a", attrs={"name": True}):
            name = inner["name"]
            lower = name.lower()
            if name == "Army-Rules" or any(
                word in lower for word in ("detachment", "enhancement", "stratagem")
            ):
                continue
            return block
    return None


def _army_rules(soup: BeautifulSoup) -> str | None:
    anchor = soup.find("a", attrs={"name": "Army-Rules"})
    if anchor is not None:
        block = _army_rule_block(soup, anchor)
        if block is not None:
            text = html_to_text(block)
            if text:
                return text

    heading = soup.select_one('h3[class*="dsColorBg"]')
    if heading is not None:
        rule_name = heading.get_text().strip()
        following = heading.find_next_sibling()
        content = following.get_text().strip() if following is not None else ""
        if rule_name and content:
            return f"{rule_name}\n\n{content}"
    return None


def _lore(soup: BeautifulSoup) -> str | None:
    anchor = soup.find("a", attrs={"name": "Introduction"})
    if anchor is not None and anchor.parent is not None:
        following = anchor.parent.find_next_sibling()
        if following is not None:
            intro = following.get_text().strip()
            if len(intro) > _MIN_LORE_LENGTH:
                return intro

    block = soup.find("div", class_="BreakInsideAvoid")
    if block is not None:
        text = block.get_text().strip()
        if len(text) > _MIN_LORE_LENGTH:
            return text[:SHORT_DESCRIPTION_MAX_LENGTH]
    return None


def parse_faction_page(
    html: str, faction_slug: str, faction_name: str, source_url: str
) -> Faction:
    """Army rules and lore for one faction."""
    soup = BeautifulSoup(html, "html.parser")
    return _parse_faction(soup, faction_slug, faction_name, source_url)


def _parse_faction(
    soup: BeautifulSoup, faction_slug: str, faction_name: str, source_url: str
) -> Faction:
    return Faction(
        slug=faction_slug[:CATEGORY_MAX_LENGTH],
        name=faction_name[:NAME_MAX_LENGTH],
        army_rules=_army_rules(soup),
        lore=_lore(soup),
        source_url=source_url,
    )


# ---------------------------------------------------------------------------
# Detachments
# ---------------------------------------------------------------------------


def clean_detachment_name(name: str) -> str | None:
    """Strip image/link artifacts from a heading; None when nothing usable is left."""
    cleaned = _MARKDOWN_IMAGE_RE.sub("", name)
    cleaned = _URL_RE.sub("", cleaned)
    cleaned = _NOT_FOUND_RE.sub("", cleaned).strip()
    if (
        len(cleaned) < 2
        or "not found" in cleaned.lower()
        or "![" in cleaned
        or cleaned.startswith("#")
    ):
        return None
    return cleaned


def _detachment_heading(anchor: Tag) -> Tag | None:
    following = anchor.find_next_sibling()
    if following is not None and following.name == "h2" and _has_class(following, "outline_header"):
        return following
    if anchor.parent is not None:
        heading = anchor.parent.find("h2", class_="outline_header")
        if heading is not None:
            return heading
    return anchor.find_next_sibling("h2")


def _detachment_rule(rule_anchor: Tag) -> tuple[str | None, str | None]:
    section = list(_section_tags(rule_anchor))
    headings = [tag for tag in section if tag.name == "h3"]
    heading = next(
        (tag for tag in headings if any("dsColorBg" in c for c in tag.get("class") or [])),
        headings[0] if headings else None,
    )
    if heading is None:
        return None, None

    rule_name = heading.get_text().strip()
    lines: list[str] = []
    for sibling in heading.find_next_siblings():
        if _is_anchor(sibling) or sibling.find("a", attrs={"name": True}) is not None:
            break
        text = sibling.get_text().strip()
        if text:
            lines.append(text)
    rule_text = "\n".join(lines).strip()
    return rule_name[:NAME_MAX_LENGTH] or None, rule_text[:MEDIUM_DESCRIPTION_MAX_LENGTH] or None


def parse_detachments(html: str, source_url: str) -> list[Detachment]:
    return _parse_detachments(BeautifulSoup(html, "html.parser"), source_url)


def _parse_detachments(soup: BeautifulSoup, source_url: str) -> list[Detachment]:
    anchors = _anchors(soup)
    names = [anchor["name"] for anchor in anchors]
    seen = DeduplicationTracker()
    detachments: list[Detachment] = []

    for index, anchor in enumerate(anchors[:-1]):
        if _base_section_name(names[index]) in SYSTEM_SECTIONS:
            continue
        if _base_section_name(names[index + 1]) != "detachment-rule":
            continue

        heading = _detachment_heading(anchor)
        raw_name = heading.get_text().strip() if heading is not None else ""
        name = clean_detachment_name(raw_name or names[index].replace("-", " "))
        if name is None or not seen.add_if_new(name):
            continue

        lore = None
        for tag in _section_tags(anchor):
            if _has_class(tag, "ShowFluff") and (tag.name == "p" or _has_class(tag, "legend")):
                lore = tag.get_text().strip()[:SHORT_DESCRIPTION_MAX_LENGTH] or None
                break

        rule_name, rule_text = _detachment_rule(anchors[index + 1])
        detachments.append(
            Detachment(
                slug=slugify(name)[:SLUG_MAX_LENGTH],
                name=name[:NAME_MAX_LENGTH],
                rule_name=rule_name,
                rule_text=rule_text,
                lore=lore,
                source_url=source_url,
            )
        )
    return detachments


# ---------------------------------------------------------------------------
# Stratagems
# ---------------------------------------------------------------------------


def _label_of(tag: Tag) -> str | None:
    return _CARD_LABELS.get(tag.get_text().strip().rstrip(":").strip().upper())


def _card_sections(text_block: Tag) -> dict[str, str]:
    """Split a stratagem card body on its ``<b>LABEL:</b>`` markers."""
    parts: dict[str, list[str]] = {}
    current: str | None = None
    for node in text_block.descendants:
        if isinstance(node, Tag):
            if node.name == "b" and (label := _label_of(node)) is not None:
                current = label
                parts.setdefault(current, [])
            elif node.name == "br" and current is not None:
                parts[current].append("\n")
            continue
        if current is None or isinstance(node, Comment) or not isinstance(node, NavigableString):
            continue
        parent = node.parent
        if parent is not None and parent.name == "b" and _label_of(parent) is not None:
            continue
        parts[current].append(str(node))
    return {label: "".join(chunks).strip() for label, chunks in parts.items()}


def _parse_stratagem_card(
    wrap: Tag,
    source_url: str,
    seen: DeduplicationTracker,
    table: NormalizationTable,
) -> Stratagem | None:
    name_tag = wrap.find(class_="str10Name")
    name = name_tag.get_text().strip() if name_tag is not None else ""
    if not name or not seen.add_if_new(name):
        return None
    card = wrap.find(class_="str10Border")
    if card is None:
        return None

    cp_tag = card.find(class_="str10CP")
    cp_match = _CP_RE.search(cp_tag.get_text() if cp_tag is not None else "")
    type_tag = card.find(class_="str10Type")
    text_block = card.find(class_="str10Text")
    sections = _card_sections(text_block) if text_block is not None else {}
    fields = {label: _normalized(value, table) or None for label, value in sections.items()}

    effect = fields.get("effect")
    if not effect:
        return None
    when = fields.get("when")
    return Stratagem(
        slug=slugify(name)[:SLUG_MAX_LENGTH],
        name=name[:NAME_MAX_LENGTH],
        cp_cost=(cp_match.group(1) if cp_match else "1")[:CP_COST_MAX_LENGTH],
        phase=detect_phase(when or ""),
        type_line=(type_tag.get_text().strip() or None) if type_tag is not None else None,
        when=when,
        target=fields.get("target"),
        effect=effect[:MEDIUM_DESCRIPTION_MAX_LENGTH],
        restrictions=fields.get("restrictions"),
        source_url=source_url,
    )


def _stratagem_wraps(tags: Iterator[Tag] | list[Tag]) -> list[Tag]:
    return [tag for tag in tags if tag.name == "div" and _has_class(tag, "str10Wrap")]


def parse_stratagems(html: str, source_url: str) -> list[Stratagem]:
    """Every stratagem card on the page, without detachment context."""
    soup = BeautifulSoup(html, "html.parser")
    table = default_table()
    seen = DeduplicationTracker(case_sensitive=True)
    stratagems = []
    for wrap in soup.find_all("div", class_="str10Wrap"):
        stratagem = _parse_stratagem_card(wrap, source_url, seen, table)
        if stratagem is not None:
            stratagems.append(stratagem)
    return stratagems


def parse_stratagems_by_detachment(html: str, source_url: str) -> dict[str, list[Stratagem]]:
    return _stratagems_by_detachment(BeautifulSoup(html, "html.parser"), source_url)


def _stratagems_by_detachment(soup: BeautifulSoup, source_url: str) -> dict[str, list[Stratagem]]:
    table = default_table()
    grouped: dict[str, list[Stratagem]] = {}
    for key, anchor in _labelled_sections(soup, "Stratagems"):
        seen = DeduplicationTracker(case_sensitive=True)
        found = [
            stratagem
            for wrap in _stratagem_wraps(_section_tags(anchor))
            if (stratagem := _parse_stratagem_card(wrap, source_url, seen, table)) is not None
        ]
        if found:
            grouped.setdefault(key, []).extend(found)
    return grouped


# ---------------------------------------------------------------------------
# Enhancements
# ---------------------------------------------------------------------------


def _parse_enhancement(
    block: Tag,
    source_url: str,
    seen: DeduplicationTracker,
    table: NormalizationTable,
) -> Enhancement | None:
    spans = block.find_all("span")
    if len(spans) < 2:
        return None
    name = spans[0].get_text().strip()
    points_text = spans[1].get_text().strip()
    if not name or not seen.add_if_new(name):
        return None

    points_match = _POINTS_RE.search(points_text)
    container = block.parent if block.parent is not None else block
    description = container.get_text().strip().replace(name, "", 1)
    if points_text:
        description = description.replace(points_text, "", 1)
    description = _normalized(description.strip().lstrip("•"), table)

    restriction = _RESTRICTION_RE.search(description)
    return Enhancement(
        slug=slugify(name)[:SLUG_MAX_LENGTH],
        name=name[:NAME_MAX_LENGTH],
        points_cost=int(points_match.group(1)) if points_match else 0,
        description=description[:MEDIUM_DESCRIPTION_MAX_LENGTH],
        restrictions=restriction.group(1).strip() if restriction else None,
        source_url=source_url,
    )


def parse_enhancements(html: str, source_url: str) -> list[Enhancement]:
    """Every enhancement on the page, without detachment context."""
    soup = BeautifulSoup(html, "html.parser")
    table = default_table()
    seen = DeduplicationTracker()
    enhancements = []
    for block in soup.find_all("ul", class_="EnhancementsPts"):
        enhancement = _parse_enhancement(block, source_url, seen, table)
        if enhancement is not None:
            enhancements.append(enhancement)
    return enhancements


def parse_enhancements_by_detachment(html: str, source_url: str) -> dict[str, list[Enhancement]]:
    return _enhancements_by_detachment(BeautifulSoup(html, "html.parser"), source_url)


def _enhancements_by_detachment(
    soup: BeautifulSoup, source_url: str
) -> dict[str, list[Enhancement]]:
    table = default_table()
    grouped: dict[str, list[Enhancement]] = {}
    for key, anchor in _labelled_sections(soup, "Enhancements"):
        seen = DeduplicationTracker()
        found = [
            enhancement
            for tag in _section_tags(anchor)
            if tag.name == "ul" and _has_class(tag, "EnhancementsPts")
            if (enhancement := _parse_enhancement(tag, source_url, seen, table)) is not None
        ]
        if found:
            grouped.setdefault(key, []).extend(found)
    return grouped


# ---------------------------------------------------------------------------
# Whole page
# ---------------------------------------------------------------------------


def extract_faction_page(
    html: str,
    faction_slug: str,
    source_url: str,
    *,
    markdown: str = "",
    faction_name: str | None = None,
) -> FactionPage:
    """Parse the page once and run every faction-page extractor over it."""
    soup = BeautifulSoup(html, "html.parser")
    name = (
        faction_name
        or faction_name_from_markdown(markdown)
        or faction_slug.replace("-", " ").title()
    )
    return FactionPage(
        faction=_parse_faction(soup, faction_slug, name, source_url),
        detachments=_parse_detachments(soup, source_url),
        stratagems_by_detachment=_stratagems_by_detachment(soup, source_url),
        enhancements_by_detachment=_enhancements_by_detachment(soup, source_url),
    )
