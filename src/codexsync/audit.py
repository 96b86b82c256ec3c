"""Store audits: integrity checks and staleness.

Both audits only read. ``check_integrity`` looks for rows the writer should
never leave behind (orphans, near-duplicates, empty required fields,
incomplete detachments) and, given a cache, compares each faction's stored
counts with the counts parsed from its cached page. ``check_staleness``
reports how long ago each faction was last written.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

import structlog

from codexsync.extractors.faction import extract_faction_page
from codexsync.models.audit import (
    AuditIssue,
    CacheComparison,
    FactionStaleness,
    IntegrityReport,
    StalenessReport,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

    from codexsync.models.audit import IssueSeverity
    from codexsync.protocols import CacheProtocol
    from codexsync.store import Store

log = structlog.get_logger()

DEFAULT_STALE_AFTER_DAYS = 30
# Detail rows kept per issue.
MAX_ISSUE_DETAILS = 10
# More warnings than this and a check without errors still reports "with warnings".
WARNING_LIMIT = 10

# (severity, category, message template, query). Each query returns one
# display string per offending row; the template receives the row count.
_ROW_CHECKS: tuple[tuple[IssueSeverity, str, str, str], ...] = (
    (
        "error",
        "Orphaned Detachments",
        "{count} detachment(s) without a faction",
        """
        SELECT d.name FROM detachments d
        LEFT JOIN factions f ON f.id = d.faction_id
        WHERE f.id IS NULL ORDER BY d.name
        """,
    ),
    (
        "error",
        "Orphaned Stratagems",
        "{count} stratagem(s) without a faction",
        """
        SELECT s.name FROM stratagems s
        LEFT JOIN factions f ON f.id = s.faction_id
        WHERE f.id IS NULL ORDER BY s.name
        """,
    ),
    (
        "error",
        "Orphaned Enhancements",
        "{count} enhancement(s) without a detachment",
        """
        SELECT e.name FROM enhancements e
        LEFT JOIN detachments d ON d.id = e.detachment_id
        WHERE d.id IS NULL ORDER BY e.name
        """,
    ),
    (
        "warning",
        "Duplicate Detachments",
        "{count} detachment name(s) stored under more than one slug",
        """
        SELECT f.name || ': ' || MIN(d.name) || ' (' || GROUP_CONCAT(d.slug, ', ') || ')'
        FROM detachments d JOIN factions f ON f.id = d.faction_id
        GROUP BY d.faction_id, LOWER(d.name) HAVING COUNT(*) > 1
        ORDER BY f.name, MIN(d.name)
        """,
    ),
    (
        "warning",
        "Duplicate Stratagems",
        "{count} stratagem name(s) stored under more than one slug",
        """
        SELECT f.name || ': ' || MIN(s.name) || ' (' || GROUP_CONCAT(s.slug, ', ') || ')'
        FROM stratagems s JOIN factions f ON f.id = s.faction_id
        GROUP BY s.faction_id, LOWER(s.name) HAVING COUNT(*) > 1
        ORDER BY f.name, MIN(s.name)
        """,
    ),
    (
        "warning",
        "Incomplete Detachments",
        "{count} detachment(s) without stratagems",
        """
        SELECT f.name || ': ' || d.name FROM detachments d
        JOIN factions f ON f.id = d.faction_id
        WHERE NOT EXISTS (SELECT 1 FROM stratagems s WHERE s.detachment_id = d.id)
        ORDER BY f.name, d.name
        """,
    ),
    (
        "warning",
        "Incomplete Detachments",
        "{count} detachment(s) without enhancements",
        """
        SELECT f.name || ': ' || d.name FROM detachments d
        JOIN factions f ON f.id = d.faction_id
        WHERE NOT EXISTS (SELECT 1 FROM enhancements e WHERE e.detachment_id = d.id)
        ORDER BY f.name, d.name
        """,
    ),
    (
        "warning",
        "Missing Keywords",
        "{count} unit(s) without keywords",
        """
        SELECT f.name || ': ' || u.name FROM units u
        JOIN factions f ON f.id = u.faction_id
        WHERE NOT EXISTS (SELECT 1 FROM unit_keywords uk WHERE uk.unit_id = u.id)
        ORDER BY f.name, u.name
        """,
    ),
    (
        "warning",
        "Empty Fields",
        "{count} detachment(s) without rule text",
        """
        SELECT f.name || ': ' || d.name FROM detachments d
        JOIN factions f ON f.id = d.faction_id
        WHERE d.rule_text IS NULL OR TRIM(d.rule_text) = ''
        ORDER BY f.name, d.name
        """,
    ),
    (
        "warning",
        "Empty Fields",
        "{count} stratagem(s) without an effect",
        """
        SELECT f.name || ': ' || s.name FROM stratagems s
        JOIN factions f ON f.id = s.faction_id
        WHERE TRIM(s.effect) = ''
        ORDER BY f.name, s.name
        """,
    ),
)


# ---------------------------------------------------------------------------
# Integrity
# ---------------------------------------------------------------------------


async def _compare_with_cache(
    store: Store, cache: CacheProtocol, report: IntegrityReport
) -> None:
    factions = await store.fetch_all(
        "SELECT id, slug, name, source_url FROM factions ORDER BY name"
    )
    for faction_id, slug, name, source_url in factions:
        entry = cache.get(source_url)
        if entry is None:
            report.issues.append(
                AuditIssue(
                    severity="info",
                    category="Missing Cache",
                    message=f"No cached page for faction: {name}",
                )
            )
            continue

        page = extract_faction_page(entry.html, slug, source_url, markdown=entry.markdown)
        stored = await store.fetch_one(
            """
            SELECT
                (SELECT COUNT(*) FROM detachments WHERE faction_id = ?),
                (SELECT COUNT(*) FROM stratagems WHERE faction_id = ?),
                (SELECT COUNT(*) FROM enhancements e
                 JOIN detachments d ON d.id = e.detachment_id WHERE d.faction_id = ?)
            """,
            (faction_id, faction_id, faction_id),
        )
        stored_detachments, stored_stratagems, stored_enhancements = stored or (0, 0, 0)
        comparison = CacheComparison(
            slug=slug,
            name=name,
            cached_detachments=len(page.detachments),
            stored_detachments=stored_detachments,
            cached_stratagems=sum(len(s) for s in page.stratagems_by_detachment.values()),
            stored_stratagems=stored_stratagems,
            cached_enhancements=sum(len(e) for e in page.enhancements_by_detachment.values()),
            stored_enhancements=stored_enhancements,
        )
        report.comparisons.append(comparison)
        behind = comparison.behind()
        if behind:
            report.issues.append(
                AuditIssue(
                    severity="warning",
                    category="Count Mismatch",
                    message=f"{name}: store has fewer {', '.join(behind)} than the cached page",
                )
            )


async def check_integrity(
    store: Store,
    *,
    expected_factions: Iterable[str] = (),
    cache: CacheProtocol | None = None,
) -> IntegrityReport:
    """Run every integrity check against the store.

    ``expected_factions`` lists slugs that must be present. With ``cache``,
    each stored faction is also compared with its cached page.
    """
    report = IntegrityReport()
    stored_slugs = {row[0] for row in await store.fetch_all("SELECT slug FROM factions")}
    report.factions_checked = len(stored_slugs)
    for slug in expected_factions:
        if slug not in stored_slugs:
            report.issues.append(
                AuditIssue(
                    severity="error",
                    category="Missing Faction",
                    message=f"Faction '{slug}' not found in the store",
                )
            )

    for severity, category, template, query in _ROW_CHECKS:
        rows = await store.fetch_all(query)
        if rows:
            report.issues.append(
                AuditIssue(
                    severity=severity,
                    category=category,
                    message=template.format(count=len(rows)),
                    details=[row[0] for row in rows[:MAX_ISSUE_DETAILS]],
                )
            )

    if cache is not None:
        await _compare_with_cache(store, cache, report)

    log.info(
        "integrity_check_complete",
        factions=report.factions_checked,
        errors=len(report.by_severity("error")),
        warnings=len(report.by_severity("warning")),
    )
    return report


def format_integrity(report: IntegrityReport) -> str:
    lines = ["Integrity check", "=" * 15, f"Factions checked: {report.factions_checked}"]

    if report.comparisons:
        lines.append("")
        lines.append(f"{'Faction':<25}{'Det(C/S)':<12}{'Strat(C/S)':<12}{'Enh(C/S)':<12}Status")
        for comp in report.comparisons:
            behind = comp.behind()
            lines.append(
                f"{comp.name[:24]:<25}"
                f"{f'{comp.cached_detachments}/{comp.stored_detachments}':<12}"
                f"{f'{comp.cached_stratagems}/{comp.stored_stratagems}':<12}"
                f"{f'{comp.cached_enhancements}/{comp.stored_enhancements}':<12}"
                f"{'behind: ' + ', '.join(behind) if behind else 'ok'}"
            )

    for severity, title in (("error", "Errors"), ("warning", "Warnings"), ("info", "Info")):
        issues = report.by_severity(severity)
        lines.append("")
        lines.append(f"{title}: {len(issues)}")
        for issue in issues:
            lines.append(f"  - [{issue.category}] {issue.message}")
            lines.extend(f"      * {detail}" for detail in issue.details)

    lines.append("")
    warnings = len(report.by_severity("warning"))
    if not report.passed:
        lines.append("FAILED")
    elif warnings < WARNING_LIMIT:
        lines.append("PASSED")
    else:
        lines.append("PASSED with warnings")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Staleness
# ---------------------------------------------------------------------------


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def _staleness_order(faction: FactionStaleness) -> tuple[bool, float, str]:
    days = float("inf") if faction.days_since_update is None else faction.days_since_update
    return (not faction.is_stale, -days, faction.name)


async def check_staleness(
    store: Store,
    *,
    threshold_days: int = DEFAULT_STALE_AFTER_DAYS,
    faction_slugs: Iterable[str] = (),
    now: datetime | None = None,
) -> StalenessReport:
    """Age of every stored faction, most stale first.

    A faction is stale when it was last written more than ``threshold_days``
    whole days ago.
    """
    checked_at = now or datetime.now(UTC)
    wanted = set(faction_slugs)
    rows = await store.fetch_all(
        """
        SELECT f.slug, f.name, f.updated_at,
            (SELECT COUNT(*) FROM detachments d WHERE d.faction_id = f.id),
            (SELECT COUNT(*) FROM stratagems s WHERE s.faction_id = f.id),
            (SELECT COUNT(*) FROM units u WHERE u.faction_id = f.id)
        FROM factions f
        """
    )

    factions = []
    for slug, name, updated_at, detachments, stratagems, units in rows:
        if wanted and slug not in wanted:
            continue
        last_updated = _parse_timestamp(updated_at)
        days = (checked_at - last_updated).days if last_updated is not None else None
        factions.append(
            FactionStaleness(
                slug=slug,
                name=name,
                last_updated=last_updated,
                days_since_update=days,
                is_stale=days is None or days > threshold_days,
                detachment_count=detachments,
                stratagem_count=stratagems,
                unit_count=units,
            )
        )
    factions.sort(key=_staleness_order)

    report = StalenessReport(
        checked_at=checked_at, threshold_days=threshold_days, factions=factions
    )
    log.info(
        "staleness_check_complete",
        factions=len(factions),
        stale=len(report.stale),
        threshold_days=threshold_days,
    )
    return report


def format_staleness(report: StalenessReport) -> str:
    title = f"Staleness check (threshold {report.threshold_days} days)"
    lines = [
        title,
        "=" * len(title),
        f"{'Faction':<25}{'Last updated':<15}{'Days':<8}{'Det':<6}{'Strat':<7}{'Units':<7}Status",
    ]
    for faction in report.factions:
        updated = faction.last_updated.date().isoformat() if faction.last_updated else "never"
        days = "n/a" if faction.days_since_update is None else str(faction.days_since_update)
        lines.append(
            f"{faction.name[:24]:<25}{updated:<15}{days:<8}"
            f"{faction.detachment_count:<6}{faction.stratagem_count:<7}{faction.unit_count:<7}"
            f"{'STALE' if faction.is_stale else 'fresh'}"
        )

    lines.append("")
    lines.append(f"Stale: {len(report.stale)}/{len(report.factions)}")
    for faction in report.stale:
        if faction.days_since_update is None:
            age = "never updated"
        else:
            age = f"{faction.days_since_update} days"
        lines.append(f"STALE: {faction.name} ({faction.slug}) - {age}")
    for faction in report.incomplete:
        lines.append(f"INCOMPLETE: {faction.name} - missing {', '.join(faction.missing())}")
    return "\n".join(lines)
