"""Unit tests for codexsync.extractors.faction."""

from __future__ import annotations

from codexsync.extractors.faction import (
    UNKNOWN_DETACHMENT,
    clean_detachment_name,
    extract_faction_page,
    faction_name_from_markdown,
    parse_detachments,
    parse_enhancements,
    parse_faction_page,
    parse_stratagems,
    parse_stratagems_by_detachment,
)

URL = "https://wahapedia.ru/wh40k10ed/factions/necrons/"

# ---------------------------------------------------------------------------
# Faction
# ---------------------------------------------------------------------------


class TestFactionName:
    def test_first_heading(self) -> None:
        assert faction_name_from_markdown("intro\n# Necrons\n## Other") == "Necrons"

    def test_filter_widget_removed(self) -> None:
        assert faction_name_from_markdown("# Orks \\[ No filter \\]") == "Orks"

    def test_missing(self) -> None:
        assert faction_name_from_markdown("no heading") is None


class TestParseFactionPage:
    def test_army_rules_and_lore(self, faction_html: str) -> None:
        faction = parse_faction_page(faction_html, "necrons", "Necrons", URL)
        assert faction.slug == "necrons"
        assert faction.name == "Necrons"
        assert faction.army_rules is not None
        assert faction.army_rules.startswith("Reanimation Protocols")
        assert "reanimates" in faction.army_rules
        assert faction.lore is not None
        assert faction.lore.startswith("The Necrons are an ancient race")

    def test_army_rules_heading_fallback(self) -> None:
        html = '<h3 class="dsColorBgOR">Waaagh!</h3><p>Once per battle, call a Waaagh!</p>'
        faction = parse_faction_page(html, "orks", "Orks", URL)
        assert faction.army_rules == "Waaagh!\n\nOnce per battle, call a Waaagh!"
        assert faction.lore is None


# ---------------------------------------------------------------------------
# Detachments
# ---------------------------------------------------------------------------


class TestDetachments:
    def test_detachment_found(self, faction_html: str) -> None:
        detachments = parse_detachments(faction_html, URL)
        assert len(detachments) == 1
        detachment = detachments[0]
        assert detachment.slug == "awakened-dynasty"
        assert detachment.name == "Awakened Dynasty"
        assert detachment.rule_name == "Command Protocols"
        assert detachment.rule_text is not None
        assert detachment.rule_text.startswith("Each Command phase")
        assert detachment.lore == "The dynasty rises from its tombs."

    def test_system_anchors_are_not_detachments(self) -> None:
        html = '<a name="Army-Rules"></a><h2>Army Rules</h2><a name="Detachment-Rule"></a>'
        assert parse_detachments(html, URL) == []

    def test_clean_name(self) -> None:
        assert clean_detachment_name("![img](x.png) Hypercrypt Legion") == "Hypercrypt Legion"
        assert clean_detachment_name("## Not Found") is None
        assert clean_detachment_name("x") is None


# ---------------------------------------------------------------------------
# Stratagems and enhancements
# ---------------------------------------------------------------------------


class TestStratagems:
    def test_card_fields(self, faction_html: str) -> None:
        stratagems = {s.slug: s for s in parse_stratagems(faction_html, URL)}
        stratagem = stratagems["protocol-of-the-hungry-void"]
        assert stratagem.cp_cost == "2"
        assert stratagem.phase == "fight"
        assert stratagem.type_line == "Awakened Dynasty - Battle Tactic Stratagem"
        assert stratagem.when == "Fight phase."
        assert stratagem.target == "One NECRONS unit."
        assert stratagem.effect == "Add 1 to the Strength characteristic of melee weapons."
        assert stratagem.restrictions is None

    def test_card_without_effect_skipped(self, faction_html: str) -> None:
        names = [s.name for s in parse_stratagems(faction_html, URL)]
        assert "Empty Card" not in names
        assert len(names) == 2

    def test_grouped_by_owning_detachment(self, faction_html: str) -> None:
        grouped = parse_stratagems_by_detachment(faction_html, URL)
        assert [s.name for s in grouped["Awakened Dynasty"]] == ["Protocol of the Hungry Void"]
        assert [s.name for s in grouped[UNKNOWN_DETACHMENT]] == ["Dimensional Corridor"]

    def test_default_cp_cost(self) -> None:
        html = (
            '<div class="str10Wrap"><div class="str10Name">Insane Bravery</div>'
            '<div class="str10Border"><div class="str10Text">'
            "<b>EFFECT:</b> The unit passes the test.</div></div></div>"
        )
        (stratagem,) = parse_stratagems(html, URL)
        assert stratagem.cp_cost == "1"
        assert stratagem.phase == "any"


class TestEnhancements:
    def test_enhancement_fields(self, faction_html: str) -> None:
        (enhancement,) = parse_enhancements(faction_html, URL)
        assert enhancement.slug == "enaegic-dermal-bond"
        assert enhancement.points_cost == 15
        assert enhancement.description.startswith("NECRONS model only.")
        assert "invulnerable save" in enhancement.description
        assert enhancement.restrictions == "NECRONS model only."


# ---------------------------------------------------------------------------
# Whole page
# ---------------------------------------------------------------------------


class TestExtractFactionPage:
    def test_name_from_markdown(self, faction_html: str, faction_markdown: str) -> None:
        page = extract_faction_page(faction_html, "necrons", URL, markdown=faction_markdown)
        assert page.faction.name == "Necrons"
        assert [d.slug for d in page.detachments] == ["awakened-dynasty"]
        assert set(page.stratagems_by_detachment) == {"Awakened Dynasty", UNKNOWN_DETACHMENT}
        assert list(page.enhancements_by_detachment) == ["Awakened Dynasty"]

    def test_name_falls_back_to_slug(self, faction_html: str) -> None:
        page = extract_faction_page(faction_html, "chaos-knights", URL)
        assert page.faction.name == "Chaos Knights"

    def test_explicit_name_wins(self, faction_html: str, faction_markdown: str) -> None:
        page = extract_faction_page(
            faction_html, "necrons", URL, markdown=faction_markdown, faction_name="Necron Dynasties"
        )
        assert page.faction.name == "Necron Dynasties"
