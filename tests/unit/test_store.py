"""Unit tests for codexsync.store."""

from __future__ import annotations

from typing import TYPE_CHECKING

import aiosqlite
import pytest

from codexsync.models.records import (
    Ability,
    CoreRule,
    Detachment,
    Faction,
    Keyword,
    Stratagem,
    Unit,
    Weapon,
)

if TYPE_CHECKING:
    from codexsync.store import Store

URL = "https://wahapedia.ru/wh40k10ed/factions/necrons/"


def _faction(**overrides) -> Faction:
    return Faction(**{"slug": "necrons", "name": "Necrons", "source_url": URL, **overrides})


# ---------------------------------------------------------------------------
# Upserts
# ---------------------------------------------------------------------------


class TestUpserts:
    async def test_same_natural_key_keeps_id(self, store: Store) -> None:
        first = await store.upsert_faction(_faction())
        second = await store.upsert_faction(_faction(name="Necron Dynasties"))
        assert first == second
        row = await store.fetch_one("SELECT name FROM factions WHERE id = ?", (first,))
        assert row is not None
        assert row[0] == "Necron Dynasties"
        assert (await store.counts())["factions"] == 1

    async def test_core_rule(self, store: Store) -> None:
        rule = CoreRule(
            slug="deep-strike",
            title="Deep Strike",
            category="deployment",
            content="Set up in Reserves.",
            order_index=0,
            source_url=URL,
        )
        rule_id = await store.upsert_core_rule(rule)
        assert await store.upsert_core_rule(rule.model_copy(update={"order_index": 3})) == rule_id

    async def test_detachment_slug_scoped_to_faction(self, store: Store) -> None:
        necrons = await store.upsert_faction(_faction())
        orks = await store.upsert_faction(_faction(slug="orks", name="Orks"))
        detachment = Detachment(slug="war-horde", name="War Horde", source_url=URL)
        necron_id = await store.upsert_detachment(necrons, detachment)
        ork_id = await store.upsert_detachment(orks, detachment)
        assert necron_id != ork_id
        assert (await store.counts())["detachments"] == 2

    async def test_missing_parent_is_integrity_error(self, store: Store) -> None:
        detachment = Detachment(slug="war-horde", name="War Horde", source_url=URL)
        with pytest.raises(aiosqlite.IntegrityError):
            await store.upsert_detachment(999, detachment)

    async def test_stratagem_without_detachment(self, store: Store) -> None:
        faction_id = await store.upsert_faction(_faction())
        stratagem = Stratagem(
            slug="insane-bravery", name="Insane Bravery", effect="Pass.", source_url=URL
        )
        stratagem_id = await store.upsert_stratagem(faction_id, None, stratagem)
        row = await store.fetch_one(
            "SELECT detachment_id, when_text FROM stratagems WHERE id = ?", (stratagem_id,)
        )
        assert row is not None
        assert row[0] is None

    async def test_deleted_detachment_detaches_stratagems(self, store: Store) -> None:
        faction_id = await store.upsert_faction(_faction())
        detachment_id = await store.upsert_detachment(
            faction_id, Detachment(slug="awakened-dynasty", name="Awakened Dynasty", source_url=URL)
        )
        stratagem_id = await store.upsert_stratagem(
            faction_id,
            detachment_id,
            Stratagem(slug="hungry-void", name="Hungry Void", effect="Hit.", source_url=URL),
        )

        await store.fetch_all("DELETE FROM detachments WHERE id = ?", (detachment_id,))

        row = await store.fetch_one(
            "SELECT detachment_id, faction_id FROM stratagems WHERE id = ?", (stratagem_id,)
        )
        assert row is not None
        assert tuple(row) == (None, faction_id)

    async def test_get_faction_id(self, store: Store) -> None:
        faction_id = await store.upsert_faction(_faction())
        assert await store.get_faction_id("necrons") == faction_id
        assert await store.get_faction_id("orks") is None


class TestUnitLinks:
    async def test_links_replaced_not_accumulated(self, store: Store) -> None:
        faction_id = await store.upsert_faction(_faction())
        unit_id = await store.upsert_unit(
            faction_id, Unit(slug="wraiths", name="Wraiths", source_url=URL)
        )
        claws = await store.upsert_weapon(
            Weapon(slug="claws", name="Claws", weapon_type="melee", source_url=URL)
        )
        caster = await store.upsert_weapon(
            Weapon(slug="caster", name="Caster", weapon_type="ranged", source_url=URL)
        )
        ability = await store.upsert_ability(
            faction_id,
            Ability(slug="wraith-form", name="Wraith Form", description="x", source_url=URL),
        )
        keyword = await store.upsert_keyword(
            Keyword(slug="fly", name="Fly", keyword_type="unit_type")
        )

        await store.replace_unit_links(
            unit_id, weapon_ids=[claws, caster], ability_ids=[ability], keyword_ids=[keyword]
        )
        await store.replace_unit_links(
            unit_id, weapon_ids=[claws], ability_ids=[], keyword_ids=[keyword, keyword]
        )

        weapons = await store.fetch_all(
            "SELECT weapon_id FROM unit_weapons WHERE unit_id = ?", (unit_id,)
        )
        assert [row[0] for row in weapons] == [claws]
        abilities = await store.fetch_all("SELECT * FROM unit_abilities")
        assert abilities == []
        keywords = await store.fetch_all("SELECT * FROM unit_keywords")
        assert len(keywords) == 1


# ---------------------------------------------------------------------------
# Unit index
# ---------------------------------------------------------------------------


class TestUnitIndex:
    async def test_seed_counts_only_new_entries(self, store: Store) -> None:
        faction_id = await store.upsert_faction(_faction())
        entries = [("wraiths", "Wraiths", f"{URL}Wraiths"), ("scarabs", "Scarabs", f"{URL}S")]
        assert await store.seed_unit_index(faction_id, entries) == 2
        assert await store.seed_unit_index(faction_id, entries) == 0

    async def test_seed_keeps_existing_status(self, store: Store) -> None:
        faction_id = await store.upsert_faction(_faction())
        await store.seed_unit_index(faction_id, [("wraiths", "Wraiths", f"{URL}Wraiths")])
        await store.mark_unit(faction_id, "wraiths", "success")
        await store.seed_unit_index(faction_id, [("wraiths", "Wraiths", f"{URL}Wraiths")])
        assert await store.list_unit_index() == []
        (entry,) = await store.list_unit_index(statuses=("success",))
        assert entry.slug == "wraiths"
        assert entry.last_attempt_at is not None

    async def test_list_filters(self, store: Store) -> None:
        necrons = await store.upsert_faction(_faction())
        orks = await store.upsert_faction(_faction(slug="orks", name="Orks"))
        await store.seed_unit_index(necrons, [("b", "B", "u1"), ("a", "A", "u2")])
        await store.seed_unit_index(orks, [("boyz", "Boyz", "u3")])
        await store.mark_unit(orks, "boyz", "failed", error="timeout")

        assert [e.slug for e in await store.list_unit_index()] == ["a", "b"]
        assert [e.slug for e in await store.list_unit_index(limit=1)] == ["a"]
        failed = await store.list_unit_index(statuses=("failed",), faction_slug="orks")
        assert [(e.faction_slug, e.error) for e in failed] == [("orks", "timeout")]

    async def test_mark_creates_missing_entry(self, store: Store) -> None:
        faction_id = await store.upsert_faction(_faction())
        await store.mark_unit(faction_id, "lokhust", "failed", source_url="u", error="no stats")
        (entry,) = await store.list_unit_index(statuses=("failed",))
        assert entry.name == "lokhust"
        assert entry.source_url == "u"


# ---------------------------------------------------------------------------
# Scrape log and counts
# ---------------------------------------------------------------------------


class TestScrapeLog:
    async def test_log_rows_appended(self, store: Store) -> None:
        await store.log_scrape(URL, "faction", "success", content_hash="abc")
        await store.log_scrape(URL, "faction", "failed", error="HTTP 500")
        rows = await store.fetch_all("SELECT status, error FROM scrape_log ORDER BY id")
        assert [tuple(row) for row in rows] == [("success", None), ("failed", "HTTP 500")]

    async def test_counts_cover_every_table(self, store: Store) -> None:
        counts = await store.counts()
        assert set(counts) >= {"factions", "stratagems", "units", "unit_index"}
        assert all(value == 0 for value in counts.values())
