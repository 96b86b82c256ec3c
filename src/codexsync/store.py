"""Relational store on SQLite.

Every entity row is identified by its natural key (a slug, or a slug plus
the owning row's id) and written with ``INSERT ... ON CONFLICT DO UPDATE``,
so re-writing the same record updates it in place and keeps its id.

Each write commits on its own. A crash between two writes leaves the rows
written so far; re-running the same reconciliation converges.

Unlike the Cache Store, the store does not catch ``aiosqlite.Error``.
Integrity errors are per-record and are handled by the writer; operational
errors (locked or missing database, disk full) abort the run.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import aiosqlite
import structlog

from codexsync.models.records import UnitIndexEntry

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from codexsync.models.records import (
        Ability,
        CoreRule,
        Detachment,
        Enhancement,
        Faction,
        Keyword,
        ScrapeStatus,
        Stratagem,
        Unit,
        Weapon,
    )

log = structlog.get_logger()

_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS core_rules (
        id          INTEGER PRIMARY KEY,
        slug        TEXT NOT NULL UNIQUE,
        title       TEXT NOT NULL,
        category    TEXT NOT NULL,
        subcategory TEXT,
        content     TEXT NOT NULL,
        order_index INTEGER NOT NULL,
        source_url  TEXT NOT NULL,
        updated_at  TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS factions (
        id         INTEGER PRIMARY KEY,
        slug       TEXT NOT NULL UNIQUE,
        name       TEXT NOT NULL,
        army_rules TEXT,
        lore       TEXT,
        source_url TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS detachments (
        id         INTEGER PRIMARY KEY,
        faction_id INTEGER NOT NULL REFERENCES factions(id) ON DELETE CASCADE,
        slug       TEXT NOT NULL,
        name       TEXT NOT NULL,
        rule_name  TEXT,
        rule_text  TEXT,
        lore       TEXT,
        source_url TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        UNIQUE (slug, faction_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS stratagems (
        id            INTEGER PRIMARY KEY,
        faction_id    INTEGER NOT NULL REFERENCES factions(id) ON DELETE CASCADE,
        detachment_id INTEGER REFERENCES detachments(id) ON DELETE SET NULL,
        slug          TEXT NOT NULL,
        name          TEXT NOT NULL,
        cp_cost       TEXT NOT NULL,
        phase         TEXT NOT NULL,
        type_line     TEXT,
        when_text     TEXT,
        target        TEXT,
        effect        TEXT NOT NULL,
        restrictions  TEXT,
        is_core       INTEGER NOT NULL DEFAULT 0,
        source_url    TEXT NOT NULL,
        updated_at    TEXT NOT NULL,
        UNIQUE (slug, faction_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS enhancements (
        id            INTEGER PRIMARY KEY,
        detachment_id INTEGER NOT NULL REFERENCES detachments(id) ON DELETE CASCADE,
        slug          TEXT NOT NULL,
        name          TEXT NOT NULL,
        points_cost   INTEGER NOT NULL,
        description   TEXT NOT NULL,
        restrictions  TEXT,
        source_url    TEXT NOT NULL,
        updated_at    TEXT NOT NULL,
        UNIQUE (slug, detachment_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS units (
        id                     INTEGER PRIMARY KEY,
        faction_id             INTEGER NOT NULL REFERENCES factions(id) ON DELETE CASCADE,
        slug                   TEXT NOT NULL,
        name                   TEXT NOT NULL,
        movement               TEXT,
        toughness              INTEGER,
        save                   TEXT,
        invulnerable_save      TEXT,
        wounds                 INTEGER,
        leadership             INTEGER,
        objective_control      INTEGER,
        points_cost            INTEGER,
        base_size              TEXT,
        composition            TEXT,
        is_epic_hero           INTEGER NOT NULL DEFAULT 0,
        is_battleline          INTEGER NOT NULL DEFAULT 0,
        is_dedicated_transport INTEGER NOT NULL DEFAULT 0,
        legends                INTEGER NOT NULL DEFAULT 0,
        source_url             TEXT NOT NULL,
        updated_at             TEXT NOT NULL,
        UNIQUE (slug, faction_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS weapons (
        id                INTEGER PRIMARY KEY,
        slug              TEXT NOT NULL UNIQUE,
        name              TEXT NOT NULL,
        weapon_type       TEXT NOT NULL,
        range             TEXT,
        attacks           TEXT,
        skill             TEXT,
        strength          TEXT,
        armor_penetration TEXT,
        damage            TEXT,
        abilities         TEXT,
        source_url        TEXT NOT NULL,
        updated_at        TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS abilities (
        id           INTEGER PRIMARY KEY,
        faction_id   INTEGER NOT NULL REFERENCES factions(id) ON DELETE CASCADE,
        slug         TEXT NOT NULL,
        name         TEXT NOT NULL,
        ability_type TEXT NOT NULL,
        description  TEXT NOT NULL,
        source_url   TEXT NOT NULL,
        updated_at   TEXT NOT NULL,
        UNIQUE (slug, faction_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS keywords (
        id           INTEGER PRIMARY KEY,
        slug         TEXT NOT NULL UNIQUE,
        name         TEXT NOT NULL,
        keyword_type TEXT NOT NULL,
        updated_at   TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS unit_weapons (
        unit_id   INTEGER NOT NULL REFERENCES units(id) ON DELETE CASCADE,
        weapon_id INTEGER NOT NULL REFERENCES weapons(id) ON DELETE CASCADE,
        PRIMARY KEY (unit_id, weapon_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS unit_abilities (
        unit_id    INTEGER NOT NULL REFERENCES units(id) ON DELETE CASCADE,
        ability_id INTEGER NOT NULL REFERENCES abilities(id) ON DELETE CASCADE,
        PRIMARY KEY (unit_id, ability_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS unit_keywords (
        unit_id    INTEGER NOT NULL REFERENCES units(id) ON DELETE CASCADE,
        keyword_id INTEGER NOT NULL REFERENCES keywords(id) ON DELETE CASCADE,
        PRIMARY KEY (unit_id, keyword_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS unit_index (
        id              INTEGER PRIMARY KEY,
        faction_id      INTEGER NOT NULL REFERENCES factions(id) ON DELETE CASCADE,
        slug            TEXT NOT NULL,
        name            TEXT NOT NULL,
        source_url      TEXT NOT NULL,
        status          TEXT NOT NULL DEFAULT 'pending'
                        CHECK (status IN ('pending', 'success', 'failed')),
        last_attempt_at TEXT,
        error           TEXT,
        UNIQUE (faction_id, slug)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS scrape_log (
        id           INTEGER PRIMARY KEY,
        url          TEXT NOT NULL,
        scrape_type  TEXT NOT NULL,
        status       TEXT NOT NULL,
        content_hash TEXT,
        error        TEXT,
        scraped_at   TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_stratagems_detachment ON stratagems(detachment_id)",
    "CREATE INDEX IF NOT EXISTS idx_unit_index_status ON unit_index(status)",
]

# Tables reported by ``Store.counts``.
COUNTED_TABLES = (
    "core_rules",
    "factions",
    "detachments",
    "stratagems",
    "enhancements",
    "units",
    "weapons",
    "abilities",
    "keywords",
    "unit_index",
)


def _now() -> str:
    return datetime.now(UTC).isoformat()


class Store:
    """Natural-key upserts and read queries over one aiosqlite connection."""

    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db

    async def init_db(self) -> None:
        """Create tables and set WAL mode. Called once at startup."""
        await self._db.execute("PRAGMA journal_mode = WAL")
        await self._db.execute("PRAGMA foreign_keys = ON")
        for statement in _SCHEMA:
            await self._db.execute(statement)
        await self._db.commit()

    # ------------------------------------------------------------------
    # Generic helpers
    # ------------------------------------------------------------------

    async def _upsert(self, table: str, key: Sequence[str], values: dict[str, Any]) -> int:
        """Insert or update the row identified by ``key`` and return its id."""
        row = {**values, "updated_at": _now()}
        columns = ", ".join(row)
        placeholders = ", ".join("?" for _ in row)
        updates = ", ".join(f"{column} = excluded.{column}" for column in row if column not in key)
        cursor = await self._db.execute(
            f"INSERT INTO {table} ({columns}) VALUES ({placeholders}) "
            f"ON CONFLICT ({', '.join(key)}) DO UPDATE SET {updates} "
            "RETURNING id",
            tuple(row.values()),
        )
        # Drain the cursor so the statement is finished before COMMIT
        rows = list(await cursor.fetchall())
        await self._db.commit()
        if not rows:
            raise aiosqlite.IntegrityError(f"upsert into {table} returned no row")
        return int(rows[0][0])

    async def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> list[aiosqlite.Row]:
        cursor = await self._db.execute(sql, tuple(params))
        return list(await cursor.fetchall())

    async def fetch_one(self, sql: str, params: Sequence[Any] = ()) -> aiosqlite.Row | None:
        cursor = await self._db.execute(sql, tuple(params))
        return await cursor.fetchone()

    # ------------------------------------------------------------------
    # Core rules and factions
    # ------------------------------------------------------------------

    async def upsert_core_rule(self, rule: CoreRule) -> int:
        return await self._upsert(
            "core_rules",
            ("slug",),
            {
                "slug": rule.slug,
                "title": rule.title,
                "category": rule.category,
                "subcategory": rule.subcategory,
                "content": rule.content,
                "order_index": rule.order_index,
                "source_url": rule.source_url,
            },
        )

    async def upsert_faction(self, faction: Faction) -> int:
        return await self._upsert(
            "factions",
            ("slug",),
            {
                "slug": faction.slug,
                "name": faction.name,
                "army_rules": faction.army_rules,
                "lore": faction.lore,
                "source_url": faction.source_url,
            },
        )

    async def get_faction_id(self, slug: str) -> int | None:
        row = await self.fetch_one("SELECT id FROM factions WHERE slug = ?", (slug,))
        return int(row[0]) if row is not None else None

    # ------------------------------------------------------------------
    # Detachments, stratagems, enhancements
    # ------------------------------------------------------------------

    async def upsert_detachment(self, faction_id: int, detachment: Detachment) -> int:
        return await self._upsert(
            "detachments",
            ("slug", "faction_id"),
            {
                "faction_id": faction_id,
                "slug": detachment.slug,
                "name": detachment.name,
                "rule_name": detachment.rule_name,
                "rule_text": detachment.rule_text,
                "lore": detachment.lore,
                "source_url": detachment.source_url,
            },
        )

    async def upsert_stratagem(
        self, faction_id: int, detachment_id: int | None, stratagem: Stratagem
    ) -> int:
        return await self._upsert(
            "stratagems",
            ("slug", "faction_id"),
            {
                "faction_id": faction_id,
                "detachment_id": detachment_id,
                "slug": stratagem.slug,
                "name": stratagem.name,
                "cp_cost": stratagem.cp_cost,
                "phase": stratagem.phase,
                "type_line": stratagem.type_line,
                "when_text": stratagem.when,
                "target": stratagem.target,
                "effect": stratagem.effect,
                "restrictions": stratagem.restrictions,
                "is_core": int(stratagem.is_core),
                "source_url": stratagem.source_url,
            },
        )

    async def upsert_enhancement(self, detachment_id: int, enhancement: Enhancement) -> int:
        return await self._upsert(
            "enhancements",
            ("slug", "detachment_id"),
            {
                "detachment_id": detachment_id,
                "slug": enhancement.slug,
                "name": enhancement.name,
                "points_cost": enhancement.points_cost,
                "description": enhancement.description,
                "restrictions": enhancement.restrictions,
                "source_url": enhancement.source_url,
            },
        )

    # ------------------------------------------------------------------
    # Units and their catalog links
    # ------------------------------------------------------------------

    async def upsert_unit(self, faction_id: int, unit: Unit) -> int:
        stats = unit.statline
        return await self._upsert(
            "units",
            ("slug", "faction_id"),
            {
                "faction_id": faction_id,
                "slug": unit.slug,
                "name": unit.name,
                "movement": stats.movement,
                "toughness": stats.toughness,
                "save": stats.save,
                "invulnerable_save": stats.invulnerable_save,
                "wounds": stats.wounds,
                "leadership": stats.leadership,
                "objective_control": stats.objective_control,
                "points_cost": unit.points_cost,
                "base_size": unit.base_size,
                "composition": unit.composition,
                "is_epic_hero": int(unit.is_epic_hero),
                "is_battleline": int(unit.is_battleline),
                "is_dedicated_transport": int(unit.is_dedicated_transport),
                "legends": int(unit.legends),
                "source_url": unit.source_url,
            },
        )

    async def upsert_weapon(self, weapon: Weapon) -> int:
        return await self._upsert(
            "weapons",
            ("slug",),
            {
                "slug": weapon.slug,
                "name": weapon.name,
                "weapon_type": weapon.weapon_type,
                "range": weapon.range,
                "attacks": weapon.attacks,
                "skill": weapon.skill,
                "strength": weapon.strength,
                "armor_penetration": weapon.armor_penetration,
                "damage": weapon.damage,
                "abilities": weapon.abilities,
                "source_url": weapon.source_url,
            },
        )

    async def upsert_ability(self, faction_id: int, ability: Ability) -> int:
        return await self._upsert(
            "abilities",
            ("slug", "faction_id"),
            {
                "faction_id": faction_id,
                "slug": ability.slug,
                "name": ability.name,
                "ability_type": ability.ability_type,
                "description": ability.description,
                "source_url": ability.source_url,
            },
        )

    async def upsert_keyword(self, keyword: Keyword) -> int:
        return await self._upsert(
            "keywords",
            ("slug",),
            {"slug": keyword.slug, "name": keyword.name, "keyword_type": keyword.keyword_type},
        )

    async def replace_unit_links(
        self,
        unit_id: int,
        *,
        weapon_ids: Iterable[int],
        ability_ids: Iterable[int],
        keyword_ids: Iterable[int],
    ) -> None:
        """Drop every association of ``unit_id`` and write the given ones."""
        links = (
            ("unit_weapons", "weapon_id", weapon_ids),
            ("unit_abilities", "ability_id", ability_ids),
            ("unit_keywords", "keyword_id", keyword_ids),
        )
        for table, column, ids in links:
            await self._db.execute(f"DELETE FROM {table} WHERE unit_id = ?", (unit_id,))
            await self._db.executemany(
                f"INSERT OR IGNORE INTO {table} (unit_id, {column}) VALUES (?, ?)",
                [(unit_id, linked_id) for linked_id in ids],
            )
        await self._db.commit()

    # ------------------------------------------------------------------
    # Unit index
    # ------------------------------------------------------------------

    async def seed_unit_index(
        self, faction_id: int, entries: Iterable[tuple[str, str, str]]
    ) -> int:
        """Add ``(slug, name, url)`` entries as pending. Known entries keep their status.

        Returns the number of newly added entries.
        """
        before = self._db.total_changes
        await self._db.executemany(
            "INSERT INTO unit_index (faction_id, slug, name, source_url) VALUES (?, ?, ?, ?) "
            "ON CONFLICT (faction_id, slug) DO NOTHING",
            [(faction_id, slug, name, url) for slug, name, url in entries],
        )
        await self._db.commit()
        return self._db.total_changes - before

    async def list_unit_index(
        self,
        *,
        statuses: Sequence[ScrapeStatus] = ("pending",),
        faction_slug: str | None = None,
        limit: int | None = None,
    ) -> list[UnitIndexEntry]:
        sql = (
            "SELECT f.slug, u.slug, u.name, u.source_url, u.status, u.last_attempt_at, u.error "
            "FROM unit_index u JOIN factions f ON f.id = u.faction_id "
            f"WHERE u.status IN ({', '.join('?' for _ in statuses)})"
        )
        params: list[Any] = list(statuses)
        if faction_slug is not None:
            sql += " AND f.slug = ?"
            params.append(faction_slug)
        sql += " ORDER BY f.slug, u.slug"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        rows = await self.fetch_all(sql, params)
        return [
            UnitIndexEntry(
                faction_slug=row[0],
                slug=row[1],
                name=row[2],
                source_url=row[3],
                status=row[4],
                last_attempt_at=row[5],
                error=row[6],
            )
            for row in rows
        ]

    async def mark_unit(
        self,
        faction_id: int,
        slug: str,
        status: ScrapeStatus,
        *,
        name: str | None = None,
        source_url: str | None = None,
        error: str | None = None,
    ) -> None:
        """Record a scrape attempt. Creates the index entry if it is missing."""
        now = _now()
        await self._db.execute(
            "INSERT INTO unit_index "
            "(faction_id, slug, name, source_url, status, last_attempt_at, error) "
            "VALUES (?, ?, ?, ?, ?, ?, ?) "
            "ON CONFLICT (faction_id, slug) DO UPDATE SET "
            "status = excluded.status, last_attempt_at = excluded.last_attempt_at, "
            "error = excluded.error",
            (faction_id, slug, name or slug, source_url or "", status, now, error),
        )
        await self._db.commit()

    # ------------------------------------------------------------------
    # Scrape log and counts
    # ------------------------------------------------------------------

    async def log_scrape(
        self,
        url: str,
        scrape_type: str,
        status: str,
        *,
        content_hash: str | None = None,
        error: str | None = None,
    ) -> None:
        await self._db.execute(
            "INSERT INTO scrape_log (url, scrape_type, status, content_hash, error, scraped_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (url, scrape_type, status, content_hash, error, _now()),
        )
        await self._db.commit()

    async def counts(self) -> dict[str, int]:
        result: dict[str, int] = {}
        for table in COUNTED_TABLES:
            row = await self.fetch_one(f"SELECT COUNT(*) FROM {table}")
            result[table] = int(row[0]) if row is not None else 0
        return result


async def open_store(db_path: str) -> tuple[aiosqlite.Connection, Store]:
    """Connect, initialise the schema and return the connection with its store.

    The caller owns the connection and must close it.
    """
    db = await aiosqlite.connect(db_path)
    store = Store(db)
    await store.init_db()
    log.debug("store_opened", db_path=db_path)
    return db, store
