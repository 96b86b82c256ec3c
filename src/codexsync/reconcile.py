"""Reconciliation writer.

Merges extractor output into the store by natural key. Every record is
written through ``_attempt``, which turns a per-record failure into a
failed ``ItemResult`` so the rest of the batch still runs. Only store
connectivity failures (``aiosqlite.OperationalError``) escape.

Detachment association is a slug match between the key of the extractor's
per-detachment maps and the slugs of the detachments persisted in the same
run. The join is a heuristic: a stratagem whose key matches nothing is
written at faction level rather than dropped.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import aiosqlite
import structlog

from codexsync.errors import CodexSyncError, ErrorCode
from codexsync.extractors.text import slugify
from codexsync.models.summary import ItemResult, RunSummary

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from codexsync.models.records import CoreRule, FactionExtraction, FactionPage, ParsedUnit
    from codexsync.store import Store

log = structlog.get_logger()


def _error_text(exc: Exception) -> str:
    return exc.message if isinstance(exc, CodexSyncError) else str(exc)


class Reconciler:
    """Idempotent writer for one store."""

    def __init__(self, store: Store) -> None:
        self._store = store

    async def _attempt(
        self, kind: str, slug: str, write: Callable[[], Awaitable[int]]
    ) -> tuple[ItemResult, int | None]:
        try:
            row_id = await write()
        except (aiosqlite.IntegrityError, CodexSyncError) as exc:
            log.warning("reconcile_item_failed", kind=kind, slug=slug, error=_error_text(exc))
            return ItemResult(kind=kind, slug=slug, action="failed", error=_error_text(exc)), None
        return ItemResult(kind=kind, slug=slug, action="updated"), row_id

    # ------------------------------------------------------------------
    # Core rules
    # ------------------------------------------------------------------

    async def reconcile_core_rules(self, rules: list[CoreRule]) -> RunSummary:
        summary = RunSummary()
        for rule in rules:
            result, _ = await self._attempt(
                "core_rule", rule.slug, lambda rule=rule: self._store.upsert_core_rule(rule)
            )
            summary.record(result)
        log.info("core_rules_reconciled", processed=summary.processed, failed=summary.failed)
        return summary

    # ------------------------------------------------------------------
    # Factions
    # ------------------------------------------------------------------

    async def reconcile(self, faction_slug: str, extraction: FactionExtraction) -> RunSummary:
        """Write one faction's page records and units.

        Without a page the faction must already exist; its units are
        otherwise reported as skipped.
        """
        summary = RunSummary()

        if extraction.page is not None:
            page = extraction.page
            result, faction_id = await self._attempt(
                "faction", faction_slug, lambda: self._store.upsert_faction(page.faction)
            )
            summary.record(result)
            if faction_id is not None:
                await self._write_page(faction_id, page, summary)
        else:
            faction_id = await self._store.get_faction_id(faction_slug)

        if faction_id is None:
            error = CodexSyncError(
                code=ErrorCode.FACTION_NOT_FOUND,
                message=f"Faction '{faction_slug}' is not in the store",
                suggestion="Ingest the faction page before its units.",
            )
            for parsed in extraction.units:
                summary.record(
                    ItemResult(
                        kind="unit", slug=parsed.unit.slug, action="skipped", error=error.message
                    )
                )
            if extraction.units:
                log.warning("faction_not_found", faction=faction_slug, units=len(extraction.units))
        else:
            for parsed in extraction.units:
                result, _ = await self._attempt(
                    "unit",
                    parsed.unit.slug,
                    lambda parsed=parsed: self._write_unit(faction_id, parsed),
                )
                summary.record(result)

        log.info(
            "faction_reconciled",
            faction=faction_slug,
            processed=summary.processed,
            updated=summary.updated,
            skipped=summary.skipped,
            failed=summary.failed,
        )
        return summary

    async def _write_page(self, faction_id: int, page: FactionPage, summary: RunSummary) -> None:
        detachment_ids: dict[str, int] = {}
        for detachment in page.detachments:
            result, detachment_id = await self._attempt(
                "detachment",
                detachment.slug,
                lambda detachment=detachment: self._store.upsert_detachment(faction_id, detachment),
            )
            summary.record(result)
            if detachment_id is not None:
                detachment_ids[detachment.slug] = detachment_id

        for key, stratagems in page.stratagems_by_detachment.items():
            detachment_id = detachment_ids.get(slugify(key))
            if detachment_id is None:
                log.info(
                    "stratagems_unmatched",
                    faction_id=faction_id,
                    detachment=key,
                    count=len(stratagems),
                )
            for stratagem in stratagems:
                result, _ = await self._attempt(
                    "stratagem",
                    stratagem.slug,
                    lambda stratagem=stratagem, detachment_id=detachment_id: (
                        self._store.upsert_stratagem(faction_id, detachment_id, stratagem)
                    ),
                )
                summary.record(result)

        for key, enhancements in page.enhancements_by_detachment.items():
            detachment_id = detachment_ids.get(slugify(key))
            for enhancement in enhancements:
                if detachment_id is None:
                    # Enhancements cannot exist without a detachment
                    log.warning("enhancement_unmatched", detachment=key, slug=enhancement.slug)
                    summary.record(
                        ItemResult(
                            kind="enhancement",
                            slug=enhancement.slug,
                            action="skipped",
                            error=f"no persisted detachment matches '{key}'",
                        )
                    )
                    continue
                result, _ = await self._attempt(
                    "enhancement",
                    enhancement.slug,
                    lambda enhancement=enhancement, detachment_id=detachment_id: (
                        self._store.upsert_enhancement(detachment_id, enhancement)
                    ),
                )
                summary.record(result)

    # ------------------------------------------------------------------
    # Units
    # ------------------------------------------------------------------

    async def _write_unit(self, faction_id: int, parsed: ParsedUnit) -> int:
        """Upsert the unit and its catalog rows, then replace all of its links."""
        if parsed.unknown_characteristics:
            log.info(
                "unit_unknown_characteristics",
                unit=parsed.unit.slug,
                codes=parsed.unknown_characteristics,
            )
        unit_id = await self._store.upsert_unit(faction_id, parsed.unit)
        weapon_ids = [await self._store.upsert_weapon(weapon) for weapon in parsed.weapons]
        ability_ids = [
            await self._store.upsert_ability(faction_id, ability) for ability in parsed.abilities
        ]
        keyword_ids = [await self._store.upsert_keyword(keyword) for keyword in parsed.keywords]
        await self._store.replace_unit_links(
            unit_id,
            weapon_ids=weapon_ids,
            ability_ids=ability_ids,
            keyword_ids=keyword_ids,
        )
        return unit_id
