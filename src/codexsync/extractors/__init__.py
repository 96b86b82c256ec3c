"""Pure functions that turn fetched documents into typed records."""

from codexsync.extractors.faction import (
    extract_faction_page,
    faction_name_from_markdown,
    parse_detachments,
    parse_enhancements,
    parse_enhancements_by_detachment,
    parse_faction_page,
    parse_stratagems,
    parse_stratagems_by_detachment,
)
from codexsync.extractors.rules import group_rules_by_category, parse_core_rules
from codexsync.extractors.text import slugify
from codexsync.extractors.units import clean_weapon_name, classify_keyword, parse_datasheets

__all__ = [
    "classify_keyword",
    "clean_weapon_name",
    "extract_faction_page",
    "faction_name_from_markdown",
    "group_rules_by_category",
    "parse_core_rules",
    "parse_datasheets",
    "parse_detachments",
    "parse_enhancements",
    "parse_enhancements_by_detachment",
    "parse_faction_page",
    "parse_stratagems",
    "parse_stratagems_by_detachment",
    "slugify",
]
