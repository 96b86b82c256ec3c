"""Ingestion runs: fetch, extract, reconcile.

Each run works sequentially through one fetcher, so there is at most one
outbound request in flight. Per-URL failures (fetch errors, pages that
yield no records) are counted in the returned ``RunSummary`` and the run
moves on to the next URL. Store connectivity errors propagate.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from codexsync.errors import CodexSyncError, ErrorCode
from codexsync.extractors.faction import extract_faction_page
from codexsync.extractors.rules import parse_core_rules
from codexsync.extractors.text import slugify
from codexsync.extractors.units import parse_datasheets
from codexsync.models.records import FactionExtraction
from codexsync.models.summary import ItemResult, RunSummary
from codexsync.sources import faction_slug_from_url, is_faction_page_url, is_unit_datasheet_url

if TYPE_CHECKING:
    from collections.abc import Iterable

    from codexsync.models.cache import CacheEntry
    from codexsync.models.records import ParsedUnit, UnitIndexEntry
    from codexsync.protocols import CacheProtocol, FetcherProtocol
    from codexsync.reconcile import Reconciler
    from codexsync.sources import SourceUrls
    from codexsync.store import Store

log = structlog.get_logger()


def _last_segment(url: str) -> str:
    return url.rstrip("/").rsplit("/", 1)[-1]


def _unit_links(links: Iterable[str], faction_slug: str) -> list[tuple[str, str, str]]:
    """``(slug, name, url)`` for every datasheet link of ``faction_slug``."""
    found: dict[str, tuple[str, str, str]] = {}
    for url in links:
        if not is_unit_datasheet_url(url) or faction_slug_from_url(url) != faction_slug:
            continue
        segment = _last_segment(url)
        slug = slugify(segment)
        found.setdefault(slug, (slug, segment.replace("-", " "), url))
    return list(found.values())


class Ingestor:
    """Wires a fetcher, a store and a reconciler into ingestion runs."""

    def __init__(
        self,
        fetcher: FetcherProtocol,
        store: Store,
        reconciler: Reconciler,
        urls: SourceUrls,
    ) -> None:
        self._fetcher = fetcher
        self._store = store
        self._reconciler = reconciler
        self._urls = urls

    async def _fetch(
        self, url: str, scrape_type: str, summary: RunSummary, *, force_refresh: bool
    ) -> CacheEntry | None:
        try:
            entry = await self._fetcher.fetch(url, force_refresh=force_refresh)
        except CodexSyncError as exc:
            log.error("fetch_failed", url=url, code=exc.code, error=exc.message)
            await self._store.log_scrape(url, scrape_type, "failed", error=exc.message)
            summary.record_failure(url, exc.message)
            return None
        if not entry.served_from_cache:
            await self._store.log_scrape(
                url, scrape_type, "success", content_hash=entry.content_hash
            )
        return entry

    # ------------------------------------------------------------------
    # Core rules
    # ------------------------------------------------------------------

    async def ingest_core_rules(self, *, force_refresh: bool = False) -> RunSummary:
        summary = RunSummary()
        url = self._urls.core_rules()
        entry = await self._fetch(url, "core_rules", summary, force_refresh=force_refresh)
        if entry is None:
            return summary

        rules = parse_core_rules(entry.html, url)
        if not rules:
            log.warning(
                "parse_failed", url=url, scrape_type="core_rules", code=ErrorCode.PARSE_FAILED
            )
            summary.record_failure(url, "no rule sections found")
            return summary
        summary.merge(await self._reconciler.reconcile_core_rules(rules))
        return summary

    # ------------------------------------------------------------------
    # Factions
    # ------------------------------------------------------------------

    async def ingest_faction(self, faction_slug: str, *, force_refresh: bool = False) -> RunSummary:
        """Ingest a faction page and queue the unit datasheets it links to."""
        summary = RunSummary()
        url = self._urls.faction(faction_slug)
        entry = await self._fetch(url, "faction", summary, force_refresh=force_refresh)
        if entry is None:
            return summary

        page = extract_faction_page(entry.html, faction_slug, url, markdown=entry.markdown)
        summary.merge(await self._reconciler.reconcile(faction_slug, FactionExtraction(page=page)))

        faction_id = await self._store.get_faction_id(faction_slug)
        if faction_id is not None:
            added = await self._store.seed_unit_index(
                faction_id, _unit_links(entry.links, faction_slug)
            )
            summary.queued += added
            log.info("unit_index_seeded", faction=faction_slug, added=added, source=url)
        return summary

    async def discover_units(
        self, faction_slug: str, *, force_refresh: bool = False
    ) -> RunSummary:
        """Seed the unit index from the faction's datasheets listing.

        A faction missing from the store is a failed item, not an error, so a
        batch over several factions carries on past it.
        """
        summary = RunSummary()
        faction_id = await self._store.get_faction_id(faction_slug)
        if faction_id is None:
            log.warning("discover_skipped", faction=faction_slug, code=ErrorCode.FACTION_NOT_FOUND)
            summary.record(
                ItemResult(
                    kind="faction",
                    slug=faction_slug,
                    action="failed",
                    error="not in the store; ingest the faction page first",
                )
            )
            return summary
        url = self._urls.datasheets(faction_slug)
        entry = await self._fetch(url, "datasheets", summary, force_refresh=force_refresh)
        if entry is None:
            return summary
        added = await self._store.seed_unit_index(
            faction_id, _unit_links(entry.links, faction_slug)
        )
        summary.queued += added
        log.info("unit_index_seeded", faction=faction_slug, added=added, source=url)
        return summary

    # ------------------------------------------------------------------
    # Units
    # ------------------------------------------------------------------

    async def ingest_units(
        self,
        *,
        faction_slug: str | None = None,
        limit: int | None = None,
        retry_failed: bool = False,
        force_refresh: bool = False,
    ) -> RunSummary:
        """Fetch and write every pending unit datasheet, optionally retrying failed ones."""
        statuses = ("pending", "failed") if retry_failed else ("pending",)
        entries = await self._store.list_unit_index(
            statuses=statuses, faction_slug=faction_slug, limit=limit
        )
        log.info("unit_run_start", pending=len(entries), faction=faction_slug)
        summary = RunSummary()
        for index_entry in entries:
            summary.merge(await self._ingest_unit(index_entry, force_refresh=force_refresh))
        return summary

    async def _ingest_unit(self, index_entry: UnitIndexEntry, *, force_refresh: bool) -> RunSummary:
        summary = RunSummary()
        faction_id = await self._store.get_faction_id(index_entry.faction_slug)
        if faction_id is None:
            summary.record(
                ItemResult(
                    kind="unit",
                    slug=index_entry.slug,
                    action="skipped",
                    error=f"faction '{index_entry.faction_slug}' is not in the store",
                )
            )
            return summary

        url = index_entry.source_url
        entry = await self._fetch(url, "unit", summary, force_refresh=force_refresh)
        if entry is None:
            await self._store.mark_unit(
                faction_id,
                index_entry.slug,
                "failed",
                error=summary.errors[-1] if summary.errors else None,
            )
            return summary

        units = parse_datasheets(entry.markdown, url)
        summary.merge(
            await self._write_units(
                index_entry.faction_slug, faction_id, index_entry.slug, url, units
            )
        )
        return summary

    async def _write_units(
        self,
        faction_slug: str,
        faction_id: int,
        index_slug: str,
        url: str,
        units: list[ParsedUnit],
    ) -> RunSummary:
        if not units:
            log.warning("parse_failed", url=url, scrape_type="unit", code=ErrorCode.PARSE_FAILED)
            await self._store.mark_unit(
                faction_id, index_slug, "failed", source_url=url, error="no units parsed"
            )
            summary = RunSummary()
            summary.record_failure(url, "no units parsed")
            return summary

        summary = await self._reconciler.reconcile(faction_slug, FactionExtraction(units=units))
        status = "failed" if summary.failed else "success"
        await self._store.mark_unit(
            faction_id,
            index_slug,
            status,
            name=units[0].unit.name,
            source_url=url,
            error=summary.errors[0] if summary.failed and summary.errors else None,
        )
        return summary

    # ------------------------------------------------------------------
    # Cache-only re-parse
    # ------------------------------------------------------------------

    async def reparse_cache(
        self,
        cache: CacheProtocol,
        *,
        faction_slug: str | None = None,
        dry_run: bool = False,
    ) -> RunSummary:
        """Re-extract cached faction pages and unit datasheets without any network call.

        Faction pages are written before unit pages so units find their faction.
        """
        faction_entries: list[CacheEntry] = []
        unit_entries: list[CacheEntry] = []
        for entry in cache.iter_entries():
            slug = faction_slug_from_url(entry.url)
            if slug is None or (faction_slug is not None and slug != faction_slug):
                continue
            if is_faction_page_url(entry.url):
                faction_entries.append(entry)
            elif is_unit_datasheet_url(entry.url):
                unit_entries.append(entry)
        log.info(
            "reparse_start",
            faction_pages=len(faction_entries),
            unit_pages=len(unit_entries),
            dry_run=dry_run,
        )

        summary = RunSummary()
        for entry in faction_entries:
            slug = faction_slug_from_url(entry.url) or ""
            page = extract_faction_page(entry.html, slug, entry.url, markdown=entry.markdown)
            if dry_run:
                summary.record(ItemResult(kind="faction", slug=slug, action="updated"))
                continue
            summary.merge(await self._reconciler.reconcile(slug, FactionExtraction(page=page)))

        for entry in unit_entries:
            summary.merge(await self._reparse_unit(entry, dry_run=dry_run))

        log.info(
            "reparse_complete",
            processed=summary.processed,
            updated=summary.updated,
            skipped=summary.skipped,
            failed=summary.failed,
            dry_run=dry_run,
        )
        return summary

    async def _reparse_unit(self, entry: CacheEntry, *, dry_run: bool) -> RunSummary:
        summary = RunSummary()
        slug = faction_slug_from_url(entry.url) or ""
        index_slug = slugify(_last_segment(entry.url))
        faction_id = await self._store.get_faction_id(slug)
        if faction_id is None:
            summary.record(
                ItemResult(
                    kind="unit",
                    slug=index_slug,
                    action="skipped",
                    error=f"faction '{slug}' is not in the store",
                )
            )
            return summary

        units = parse_datasheets(entry.markdown, entry.url)
        if dry_run:
            if units:
                for parsed in units:
                    summary.record(ItemResult(kind="unit", slug=parsed.unit.slug, action="updated"))
            else:
                summary.record_failure(entry.url, "no units parsed")
            return summary
        return await self._write_units(slug, faction_id, index_slug, entry.url, units)
