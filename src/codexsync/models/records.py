"""Typed records produced by the extractors and consumed by the writer.

Each record carries a literal ``kind`` tag so mixed record lists can be
validated as a discriminated union (``DomainRecord``).
"""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BaseModel, Field

GamePhase = Literal["command", "movement", "shooting", "charge", "fight", "any"]
KeywordType = Literal["faction", "unit_type", "ability"]


class CoreRule(BaseModel):
    kind: Literal["core_rule"] = "core_rule"
    slug: str
    title: str
    category: str
    subcategory: str | None = None
    content: str
    order_index: int
    source_url: str


class Faction(BaseModel):
    kind: Literal["faction"] = "faction"
    slug: str
    name: str
    army_rules: str | None = None
    lore: str | None = None
    source_url: str


class Detachment(BaseModel):
    kind: Literal["detachment"] = "detachment"
    slug: str
    name: str
    rule_name: str | None = None
    rule_text: str | None = None
    lore: str | None = None
    source_url: str


class Stratagem(BaseModel):
    kind: Literal["stratagem"] = "stratagem"
    slug: str
    name: str
    cp_cost: str = "1"
    phase: GamePhase = "any"
    type_line: str | None = None
    when: str | None = None
    target: str | None = None
    effect: str
    restrictions: str | None = None
    is_core: bool = False
    source_url: str


class Enhancement(BaseModel):
    kind: Literal["enhancement"] = "enhancement"
    slug: str
    name: str
    points_cost: int = 0
    description: str = ""
    restrictions: str | None = None
    source_url: str


class Statline(BaseModel):
    movement: str | None = None
    toughness: int | None = None
    save: str | None = None
    invulnerable_save: str | None = None
    wounds: int | None = None
    leadership: int | None = None
    objective_control: int | None = None

    def is_empty(self) -> bool:
        return self.toughness is None and self.wounds is None and self.save is None


class Unit(BaseModel):
    kind: Literal["unit"] = "unit"
    slug: str
    name: str
    statline: Statline = Field(default_factory=Statline)
    points_cost: int | None = None
    base_size: str | None = None
    composition: str | None = None
    is_epic_hero: bool = False
    is_battleline: bool = False
    is_dedicated_transport: bool = False
    legends: bool = False
    source_url: str


class Weapon(BaseModel):
    kind: Literal["weapon"] = "weapon"
    slug: str
    name: str
    weapon_type: Literal["ranged", "melee"]
    range: str | None = None
    attacks: str | None = None
    skill: str | None = None
    strength: str | None = None
    armor_penetration: str | None = None
    damage: str | None = None
    abilities: str | None = None  # e.g. "[HEAVY], [BLAST]"
    source_url: str


class Ability(BaseModel):
    kind: Literal["ability"] = "ability"
    slug: str
    name: str
    ability_type: Literal["core", "faction", "unit"] = "unit"
    description: str
    source_url: str


class Keyword(BaseModel):
    kind: Literal["keyword"] = "keyword"
    slug: str
    name: str
    keyword_type: KeywordType


DomainRecord = Annotated[
    CoreRule | Faction | Detachment | Stratagem | Enhancement | Unit | Weapon | Ability | Keyword,
    Field(discriminator="kind"),
]


# ---------------------------------------------------------------------------
# Extractor aggregates
# ---------------------------------------------------------------------------


class ParsedUnit(BaseModel):
    """Everything the datasheet extractor found for one unit."""

    unit: Unit
    weapons: list[Weapon] = Field(default_factory=list)
    abilities: list[Ability] = Field(default_factory=list)
    keywords: list[Keyword] = Field(default_factory=list)
    unknown_characteristics: list[str] = Field(default_factory=list)


class FactionPage(BaseModel):
    """Everything the faction-page extractor found on one faction page.

    The two ``*_by_detachment`` maps are keyed by the display form of the
    detachment anchor (``"Gladius-Task-Force"`` becomes ``"Gladius Task
    Force"``), or ``"unknown"`` when no detachment precedes the section.
    """

    faction: Faction
    detachments: list[Detachment] = Field(default_factory=list)
    stratagems_by_detachment: dict[str, list[Stratagem]] = Field(default_factory=dict)
    enhancements_by_detachment: dict[str, list[Enhancement]] = Field(default_factory=dict)


class FactionExtraction(BaseModel):
    """Input to one faction's reconciliation."""

    page: FactionPage | None = None
    units: list[ParsedUnit] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Unit index
# ---------------------------------------------------------------------------

ScrapeStatus = Literal["pending", "success", "failed"]


class UnitIndexEntry(BaseModel):
    """One known unit datasheet URL and where it stands in incremental scraping."""

    faction_slug: str
    slug: str
    name: str
    source_url: str
    status: ScrapeStatus = "pending"
    last_attempt_at: str | None = None
    error: str | None = None
