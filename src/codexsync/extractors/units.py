"""Unit datasheet extractor.

Works on the provider's markdown form of a datasheet. Two page shapes are
understood: a single-unit page headed ``# Faction – Unit Name`` and an
older multi-unit page with one ``## Unit Name`` section per unit. Either
way the result is a list of ``ParsedUnit``; a page that fails the sanity
checks yields an empty list rather than an exception.
"""

from __future__ import annotations

import re

from codexsync.extractors.characteristics import (
    CHARACTERISTIC_FIELDS,
    statline_from_characteristics,
)
from codexsync.extractors.text import (
    NAME_MAX_LENGTH,
    SLUG_MAX_LENGTH,
    DeduplicationTracker,
    slugify,
)
from codexsync.models.records import (
    Ability,
    Keyword,
    KeywordType,
    ParsedUnit,
    Statline,
    Unit,
    Weapon,
)

# Order matters: the first keyword found after the first character wins.
WEAPON_ABILITY_KEYWORDS = (
    "anti-",
    "assault",
    "blast",
    "devastating wounds",
    "devastatingwounds",
    "extra attacks",
    "hazardous",
    "heavy",
    "ignores cover",
    "ignorescover",
    "indirect fire",
    "indirectfire",
    "lance",
    "lethal hits",
    "lethalhits",
    "melta",
    "one shot",
    "oneshot",
    "pistol",
    "precision",
    "psychic",
    "rapid fire",
    "rapidfire",
    "sustained hits",
    "sustainedhits",
    "torrent",
    "twin-linked",
    "twinlinked",
)

FACTION_KEYWORDS = (
    "IMPERIUM",
    "CHAOS",
    "AELDARI",
    "TYRANIDS",
    "NECRONS",
    "ORKS",
    "TAU EMPIRE",
    "T'AU EMPIRE",
    "ADEPTUS ASTARTES",
    "SPACE MARINES",
    "ADEPTUS MECHANICUS",
    "ASTRA MILITARUM",
    "BLOOD ANGELS",
    "DARK ANGELS",
    "SPACE WOLVES",
    "BLACK TEMPLARS",
    "DEATHWATCH",
    "ULTRAMARINES",
    "IMPERIAL FISTS",
    "WHITE SCARS",
    "RAVEN GUARD",
    "SALAMANDERS",
    "IRON HANDS",
    "GREY KNIGHTS",
    "ADEPTUS CUSTODES",
    "SISTERS OF BATTLE",
    "ADEPTA SORORITAS",
    "DEATH GUARD",
    "THOUSAND SONS",
    "WORLD EATERS",
    "EMPEROR'S CHILDREN",
    "DRUKHARI",
    "CRAFTWORLD",
    "HARLEQUINS",
    "YNNARI",
    "GENESTEALER CULTS",
    "LEAGUES OF VOTANN",
    "AGENTS OF THE IMPERIUM",
    "HERETIC ASTARTES",
    "CHAOS KNIGHTS",
    "IMPERIAL KNIGHTS",
)

UNIT_TYPE_KEYWORDS = (
    "EPIC HERO",
    "CHARACTER",
    "BATTLELINE",
    "DEDICATED TRANSPORT",
    "INFANTRY",
    "MOUNTED",
    "VEHICLE",
    "MONSTER",
    "BEAST",
    "SWARM",
    "FLY",
    "WALKER",
    "TITANIC",
    "TOWERING",
    "PSYKER",
    "DAEMON",
    "PRIMARCH",
    "JUMP PACK",
    "TERMINATOR",
    "GRAVIS",
    "PHOBOS",
    "DREADNOUGHT",
    "SMOKE",
    "GRENADES",
    "LEADER",
)

# Abilities section boundaries.
ABILITIES_STOP_MARKERS = (
    "STRATAGEMS",
    "UNIT COMPOSITION",
    "KEYWORDS:",
    "FACTION KEYWORDS:",
    "Army List",
    "Core Rules",
    "Datasheets collated",
    "DETACHMENT RULE",
    "ENHANCEMENTS",
    "## ",
)
_ABILITIES_MAX_CHARS = 3000

SKIP_ABILITY_PATTERNS = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"^WHEN:?$",
        r"^TARGET:?$",
        r"^EFFECT:?$",
        r"^RESTRICTIONS:?$",
        r"^Example:?$",
        r"^D6 RESULT",
        r"^NUMBER OF D6",
        r"^FATE DICE",
        r"^Characters$",
        r"^Battleline$",
        r"^Dedicated Transports$",
        r"^Fortifications$",
        r"^Other$",
        r"keyword is used",
        r"Army List",
        r"Datasheets",
        r"^\d+$",
        r"^\+$",
        r"^and others\.\.\.$",
    )
)

_HEADER_SECTION_NAMES = frozenset(
    {"characters", "battleline", "other datasheets", "dedicated transports", "fortifications"}
)

_UNIT_HEADER_RE = re.compile(r"^# [^–\n]+–\s*([^\[\\\n]+)", re.MULTILINE)
_INLINE_STATS_RE = re.compile(
    r'M\s+(\d+"?)\s+T\s+(\d+)\s+Sv\s+(\d+\+?)\s+W\s+(\d+)\s+Ld\s+(\d+\+?)\s+OC\s+(\d+)'
)
_TABLE_STATS_RE = re.compile(
    r'\|\s*(\d+"?)\s*\|\s*(\d+)\s*\|\s*(\d+\+?)\s*\|\s*(\d+)\s*\|\s*(\d+\+?)\s*\|\s*(\d+)\s*\|'
)
_INVULNERABLE_RE = re.compile(r"(\d+\+?)\s*invulnerable save", re.IGNORECASE)
_MODEL_POINTS_RE = re.compile(r"\|\s*\d+\s*models?\s*\|\s*(\d+)\s*\|", re.IGNORECASE)
_SECTION_POINTS_RE = re.compile(r"(\d+)\s*(?:pts?|points)", re.IGNORECASE)
_COMPOSITION_RE = re.compile(
    r"UNIT COMPOSITION[^\n]*\n(.*?)"
    r"(?=\n\s*(?:KEYWORDS:|FACTION KEYWORDS:|STRATAGEMS|DETACHMENT|## )|\Z)",
    re.IGNORECASE | re.DOTALL,
)
_SECTION_COMPOSITION_RE = re.compile(
    r"(?:Unit Composition|Composition)[:\s]*(.*?)(?=\n(?:Wargear|Weapons|Abilities|Leader|###)|\Z)",
    re.IGNORECASE | re.DOTALL,
)
_BASE_SIZE_RE = re.compile(r"\(⌀(\d+mm(?:\s+oval)?)\)")
_CP_MARKER_RE = re.compile(r"\d+CP")
_MARKDOWN_IMAGE_RE = re.compile(r"!\[.*?\]\(.*?\)")
_MARKDOWN_LINK_RE = re.compile(r"\[([^\]]+)\]\([^)]+\)")
_KEYWORD_LINE_RE = re.compile(
    r"^[* \t]*(FACTION[ \t]+)?KEYWORDS:[* \t]*(.+)$", re.IGNORECASE | re.MULTILINE
)
_EPIC_HERO_RE = re.compile(r"epic\s*hero", re.IGNORECASE)
_BATTLELINE_RE = re.compile(r"battleline", re.IGNORECASE)
_DEDICATED_TRANSPORT_RE = re.compile(r"dedicated\s*transport", re.IGNORECASE)
_LEGENDS_RE = re.compile(r"legends?", re.IGNORECASE)

_RANGED_SECTION_RE = re.compile(
    r"RANGED WEAPONS?[^\n]*\n(.*?)(?=MELEE|ABILITIES|###|\Z)", re.IGNORECASE | re.DOTALL
)
_MELEE_SECTION_RE = re.compile(
    r"MELEE WEAPONS[^\n]*\n(.*?)(?=\n\s*(?:ABILITIES|###|\*\*)|\Z)", re.IGNORECASE | re.DOTALL
)
_ABILITIES_SECTION_RE = re.compile(
    r"(?:### Abilities|\*\*ABILITIES\*\*|ABILITIES)[^\n]*\n(.*?)"
    r"(?=###|STRATAGEMS|DETACHMENT RULE|ENHANCEMENTS|Army List|Datasheets collated|\Z)",
    re.IGNORECASE | re.DOTALL,
)
_LABELLED_ABILITY_RE = re.compile(r"^(CORE|FACTION):\s*\*\*([^*]+)\*\*", re.MULTILINE)
_ABILITY_RE = re.compile(
    r"^\*\*([^*:]+):\*\*\s*(.*?)(?=\n\*\*[^*]+\*\*|\n\n|$)", re.MULTILINE | re.DOTALL
)
_TRAILING_TABLE_RE = re.compile(r"\n\s*\|.*$", re.DOTALL)
_TRAILING_RULE_RE = re.compile(r"\n\s*-{3,}.*$", re.DOTALL)
_TABLE_ONLY_RE = re.compile(r"^\|[\s|]*$")
_TABLE_ROW_RE = re.compile(r"^\s*\|\s*\d+\s*\|")

_COMPOSITION_MAX_CHARS = 1000


# ---------------------------------------------------------------------------
# Weapons
# ---------------------------------------------------------------------------


def clean_weapon_name(raw_name: str) -> tuple[str, str | None]:
    """Split ability tags glued onto a weapon name.

    ``"Lascannon heavy"`` → ``("Lascannon", "[HEAVY]")``. Only text after the
    first character is scanned, so a name that merely starts with an ability
    word is left alone. Returns ``(name, abilities)`` where ``abilities`` is a
    comma-joined string of bracketed tags, or None.
    """
    name = raw_name
    found: list[str] = []
    lower = raw_name.lower()

    for keyword in WEAPON_ABILITY_KEYWORDS:
        compact = "".join(keyword.split())
        index = lower.find(compact)
        if index <= 0:
            continue
        tail = raw_name[index + len(compact) :]
        name = raw_name[:index].strip()
        found.append(f"[{keyword.upper()}]")
        if tail:
            tail_name, tail_abilities = clean_weapon_name(tail)
            if tail_abilities:
                found.append(tail_abilities)
            if tail_name and not tail_name[0].islower():
                name = f"{name} {tail_name}".strip()
        break

    return name.strip(), ", ".join(found) if found else None


def _table_cells(line: str) -> list[str]:
    """Inner cells of a markdown table row, without the text outside the outer pipes."""
    return [cell.strip() for cell in line.split("|")[1:-1]]


def _parse_weapon_table(table: str, weapon_type: str, source_url: str) -> list[Weapon]:
    weapons: list[Weapon] = []
    for line in table.split("\n"):
        cells = _table_cells(line)
        # | (icon) | Name | Range | A | BS/WS | S | AP | D |
        if len(cells) < 8 or cells[0] != "":
            continue
        raw_name, weapon_range, attacks, skill, strength, ap, damage = cells[1:8]
        if not raw_name or "---" in raw_name:
            continue
        if raw_name.lower() in ("ranged weapons", "melee weapons"):
            continue
        if not weapon_range or not attacks:
            continue
        name, abilities = clean_weapon_name(raw_name)
        weapons.append(
            Weapon(
                slug=slugify(name)[:SLUG_MAX_LENGTH],
                name=name[:NAME_MAX_LENGTH],
                weapon_type=weapon_type,
                range=weapon_range or None,
                attacks=attacks or None,
                skill=skill or None,
                strength=strength or None,
                armor_penetration=ap or None,
                damage=damage or None,
                abilities=abilities,
                source_url=source_url,
            )
        )
    return weapons


def extract_weapons(content: str, source_url: str) -> list[Weapon]:
    weapons: list[Weapon] = []
    if match := _RANGED_SECTION_RE.search(content):
        weapons.extend(_parse_weapon_table(match.group(1), "ranged", source_url))
    if match := _MELEE_SECTION_RE.search(content):
        weapons.extend(_parse_weapon_table(match.group(1), "melee", source_url))
    return weapons


# ---------------------------------------------------------------------------
# Abilities
# ---------------------------------------------------------------------------


def _should_skip_ability(name: str, description: str) -> bool:
    if any(pattern.search(name) for pattern in SKIP_ABILITY_PATTERNS):
        return True
    if len(name) < 3 or len(name) > 100:
        return True
    if "](https://wahapedia.ru" in description and description.count("](") > 2:
        return True
    return bool(_TABLE_ONLY_RE.match(description) or _TABLE_ROW_RE.match(description))


def extract_abilities(content: str, source_url: str) -> list[Ability]:
    section = _ABILITIES_SECTION_RE.search(content)
    if section is None or not section.group(1):
        return []

    body = section.group(1)
    for marker in ABILITIES_STOP_MARKERS:
        index = body.find(marker)
        if index > 0:
            body = body[:index]
    body = body[:_ABILITIES_MAX_CHARS]

    abilities: list[Ability] = []
    for match in _LABELLED_ABILITY_RE.finditer(body):
        ability_type = match.group(1).lower()
        name = match.group(2).strip()
        if len(name) < 3:
            continue
        abilities.append(
            Ability(
                slug=slugify(name)[:SLUG_MAX_LENGTH],
                name=name[:NAME_MAX_LENGTH],
                ability_type=ability_type,
                description=f"{ability_type.upper()} ability",
                source_url=source_url,
            )
        )

    for match in _ABILITY_RE.finditer(body):
        name = match.group(1).strip()
        description = match.group(2).strip()
        if not name or not description:
            continue
        description = _TRAILING_TABLE_RE.sub("", description)
        description = _TRAILING_RULE_RE.sub("", description).strip()
        if _should_skip_ability(name, description) or len(description) < 10:
            continue
        abilities.append(
            Ability(
                slug=slugify(name)[:SLUG_MAX_LENGTH],
                name=name[:NAME_MAX_LENGTH],
                ability_type="unit",
                description=description,
                source_url=source_url,
            )
        )
    return abilities


# ---------------------------------------------------------------------------
# Keywords
# ---------------------------------------------------------------------------


def classify_keyword(keyword: str) -> KeywordType:
    upper = keyword.upper()
    if any(candidate in upper for candidate in FACTION_KEYWORDS):
        return "faction"
    if any(candidate in upper for candidate in UNIT_TYPE_KEYWORDS):
        return "unit_type"
    return "ability"


def extract_keyword_lines(content: str) -> list[str]:
    """Raw text after every ``KEYWORDS:`` and ``FACTION KEYWORDS:`` label."""
    return [match.group(2) for match in _KEYWORD_LINE_RE.finditer(content)]


def extract_keywords(content: str) -> list[Keyword]:
    seen = DeduplicationTracker()
    keywords: list[Keyword] = []
    for line in extract_keyword_lines(content):
        text = _MARKDOWN_LINK_RE.sub(r"\1", line).replace("*", "")
        for raw in text.split(","):
            name = " ".join(raw.split())
            if len(name) < 2 or not seen.add_if_new(name):
                continue
            keywords.append(
                Keyword(
                    slug=slugify(name)[:SLUG_MAX_LENGTH],
                    name=name[:NAME_MAX_LENGTH],
                    keyword_type=classify_keyword(name),
                )
            )
    return keywords


# ---------------------------------------------------------------------------
# Statline
# ---------------------------------------------------------------------------


def _statline_from_table(content: str) -> tuple[Statline, list[str]] | None:
    """Read the first characteristic header row and the value row below it."""
    lines = content.split("\n")
    for index, line in enumerate(lines):
        header = [cell for cell in _table_cells(line) if cell]
        known = sum(1 for cell in header if " ".join(cell.upper().split()) in CHARACTERISTIC_FIELDS)
        if known < 3:
            continue
        for following in lines[index + 1 :]:
            cells = [cell for cell in _table_cells(following) if cell]
            if not cells:
                break
            if all(set(cell) <= set("-: ") for cell in cells):
                continue
            statline, unknown = statline_from_characteristics(zip(header, cells, strict=False))
            return statline, unknown
    return None


def _statline_from_match(match: re.Match[str]) -> Statline:
    movement, toughness, save, wounds, leadership, objective_control = match.groups()
    statline, _ = statline_from_characteristics(
        [
            ("M", movement),
            ("T", toughness),
            ("SV", save),
            ("W", wounds),
            ("LD", leadership),
            ("OC", objective_control),
        ]
    )
    return statline


def extract_statline(content: str) -> tuple[Statline, list[str]]:
    """Statline plus any characteristic codes that have no statline field."""
    from_table = _statline_from_table(content)
    if from_table is not None and not from_table[0].is_empty():
        statline, unknown = from_table
    elif match := _INLINE_STATS_RE.search(content) or _TABLE_STATS_RE.search(content):
        statline, unknown = _statline_from_match(match), []
    else:
        return Statline(), []

    if statline.invulnerable_save is None and (invulnerable := _INVULNERABLE_RE.search(content)):
        statline = statline.model_copy(update={"invulnerable_save": invulnerable.group(1)})
    return statline, unknown


# ---------------------------------------------------------------------------
# Composition and flags
# ---------------------------------------------------------------------------


def _clean_composition(raw: str) -> str | None:
    text = raw.replace("**", "")
    text = _MARKDOWN_IMAGE_RE.sub("", text)
    text = _MARKDOWN_LINK_RE.sub(r"\1", text).strip()[:_COMPOSITION_MAX_CHARS]
    # Stratagem cards rendered after the datasheet leak in as "1CP ..." text
    cp = _CP_MARKER_RE.search(text)
    if cp is not None and cp.start() > 0:
        text = text[: cp.start()].strip()
    return text or None


def _flags(content: str, keywords: list[Keyword]) -> dict[str, bool]:
    haystack = " ".join(keyword.name for keyword in keywords) if keywords else content
    return {
        "is_epic_hero": bool(_EPIC_HERO_RE.search(haystack)),
        "is_battleline": bool(_BATTLELINE_RE.search(haystack)),
        "is_dedicated_transport": bool(_DEDICATED_TRANSPORT_RE.search(haystack)),
    }


# ---------------------------------------------------------------------------
# Page shapes
# ---------------------------------------------------------------------------


def _parse_unit_page(markdown: str, source_url: str) -> list[ParsedUnit] | None:
    """Single-unit page. None when the page does not have that shape."""
    header = _UNIT_HEADER_RE.search(markdown)
    if header is None:
        return None
    name = header.group(1).strip()
    if len(name) < 3:
        return None

    statline, unknown = extract_statline(markdown)
    if statline.is_empty():
        return []

    points = _MODEL_POINTS_RE.search(markdown)
    composition = _COMPOSITION_RE.search(markdown)
    base_size = _BASE_SIZE_RE.search(markdown)
    keywords = extract_keywords(markdown)
    unit = Unit(
        slug=slugify(name)[:SLUG_MAX_LENGTH],
        name=name[:NAME_MAX_LENGTH],
        statline=statline,
        points_cost=int(points.group(1)) if points else None,
        base_size=base_size.group(1) if base_size else None,
        composition=_clean_composition(composition.group(1)) if composition else None,
        source_url=source_url,
        **_flags(markdown, keywords),
    )
    return [
        ParsedUnit(
            unit=unit,
            weapons=extract_weapons(markdown, source_url),
            abilities=extract_abilities(markdown, source_url),
            keywords=keywords,
            unknown_characteristics=unknown,
        )
    ]


def _is_header_section(name: str) -> bool:
    lower = name.lower()
    if name.startswith("|") or len(name) < 3:
        return True
    if any(word in lower for word in ("datasheet", "index", "contents", "navigation")):
        return True
    return lower in _HEADER_SECTION_NAMES


def _parse_unit_section(section: str, source_url: str) -> ParsedUnit | None:
    name, _, content = section.partition("\n")
    name = name.strip()
    if not name or _is_header_section(name):
        return None

    statline, unknown = extract_statline(content)
    if statline.is_empty():
        return None

    points = _SECTION_POINTS_RE.search(content)
    composition = _SECTION_COMPOSITION_RE.search(content)
    keywords = extract_keywords(content)
    unit = Unit(
        slug=slugify(name)[:SLUG_MAX_LENGTH],
        name=name[:NAME_MAX_LENGTH],
        statline=statline,
        points_cost=int(points.group(1)) if points else None,
        composition=(composition.group(1).strip() or None) if composition else None,
        legends=bool(_LEGENDS_RE.search(content)),
        source_url=source_url,
        **_flags(content, keywords),
    )
    return ParsedUnit(
        unit=unit,
        weapons=extract_weapons(content, source_url),
        abilities=extract_abilities(content, source_url),
        keywords=keywords,
        unknown_characteristics=unknown,
    )


def parse_datasheets(markdown: str, source_url: str) -> list[ParsedUnit]:
    """Extract every unit on a datasheet page; an empty list means nothing usable."""
    single = _parse_unit_page(markdown, source_url)
    if single is not None:
        return single

    units = []
    for section in re.split(r"^## ", markdown, flags=re.MULTILINE):
        if not section:
            continue
        parsed = _parse_unit_section(section, source_url)
        if parsed is not None:
            units.append(parsed)
    return units
