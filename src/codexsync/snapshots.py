"""Snapshot and drift auditor.

``take_snapshot`` is the only function here that reads the store. ``diff``
is pure: it compares two snapshots through slug-keyed maps, so the order of
factions and detachments inside a snapshot never matters.

Snapshots are archived as JSON files in a directory of their own, apart
from the store, and loaded back by name for later comparison.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

import structlog
from pydantic import ValidationError

from codexsync.cache import write_model
from codexsync.errors import CodexSyncError, ErrorCode
from codexsync.models.snapshot import (
    CountChange,
    DetachmentChange,
    DetachmentSnapshot,
    FactionChange,
    FactionSnapshot,
    NameDelta,
    Snapshot,
    SnapshotDiff,
    SnapshotTotals,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

    from codexsync.store import Store

log = structlog.get_logger()

# Names listed per change before the rest is summarised as "+N more".
MAX_LISTED_NAMES = 5


# ---------------------------------------------------------------------------
# Capture
# ---------------------------------------------------------------------------


async def take_snapshot(store: Store) -> Snapshot:
    """Summarise the store: per-faction counts and sorted name lists."""
    factions = await store.fetch_all("SELECT id, slug, name FROM factions ORDER BY slug")
    detachments = await store.fetch_all(
        "SELECT id, faction_id, slug, name FROM detachments ORDER BY slug"
    )
    stratagems = await store.fetch_all("SELECT faction_id, detachment_id, name FROM stratagems")
    enhancements = await store.fetch_all("SELECT detachment_id, name FROM enhancements")
    units = await store.fetch_all("SELECT faction_id, name FROM units")

    stratagems_by_faction: dict[int, list[str]] = defaultdict(list)
    stratagems_by_detachment: dict[int, list[str]] = defaultdict(list)
    for faction_id, detachment_id, name in stratagems:
        stratagems_by_faction[faction_id].append(name)
        if detachment_id is not None:
            stratagems_by_detachment[detachment_id].append(name)

    enhancements_by_detachment: dict[int, list[str]] = defaultdict(list)
    for detachment_id, name in enhancements:
        enhancements_by_detachment[detachment_id].append(name)

    units_by_faction: dict[int, list[str]] = defaultdict(list)
    for faction_id, name in units:
        units_by_faction[faction_id].append(name)

    detachments_by_faction: dict[int, list[DetachmentSnapshot]] = defaultdict(list)
    for detachment_id, faction_id, slug, name in detachments:
        strats = sorted(stratagems_by_detachment[detachment_id])
        enhs = sorted(enhancements_by_detachment[detachment_id])
        detachments_by_faction[faction_id].append(
            DetachmentSnapshot(
                slug=slug,
                name=name,
                stratagem_count=len(strats),
                enhancement_count=len(enhs),
                stratagems=strats,
                enhancements=enhs,
            )
        )

    faction_snapshots = []
    for faction_id, slug, name in factions:
        faction_detachments = detachments_by_faction[faction_id]
        faction_snapshots.append(
            FactionSnapshot(
                slug=slug,
                name=name,
                detachment_count=len(faction_detachments),
                stratagem_count=len(stratagems_by_faction[faction_id]),
                enhancement_count=sum(d.enhancement_count for d in faction_detachments),
                unit_count=len(units_by_faction[faction_id]),
                detachments=faction_detachments,
                stratagems=sorted(stratagems_by_faction[faction_id]),
                units=sorted(units_by_faction[faction_id]),
            )
        )

    snapshot = Snapshot(
        timestamp=datetime.now(UTC).isoformat(),
        factions=faction_snapshots,
        totals=SnapshotTotals(
            factions=len(factions),
            detachments=len(detachments),
            stratagems=len(stratagems),
            enhancements=len(enhancements),
            units=len(units),
        ),
    )
    log.info("snapshot_taken", **snapshot.totals.model_dump())
    return snapshot


# ---------------------------------------------------------------------------
# Diff
# ---------------------------------------------------------------------------


def _name_delta(before: Iterable[str], after: Iterable[str]) -> NameDelta:
    old, new = set(before), set(after)
    return NameDelta(added=sorted(new - old), removed=sorted(old - new))


def _count_changes(pairs: Iterable[tuple[str, int, int]]) -> list[CountChange]:
    return [
        CountChange(field=field, before=before, after=after)
        for field, before, after in pairs
        if before != after
    ]


def _faction_counts(before: FactionSnapshot, after: FactionSnapshot) -> list[CountChange]:
    return _count_changes(
        [
            ("detachments", before.detachment_count, after.detachment_count),
            ("stratagems", before.stratagem_count, after.stratagem_count),
            ("enhancements", before.enhancement_count, after.enhancement_count),
            ("units", before.unit_count, after.unit_count),
        ]
    )


def _detachment_change(
    faction: str, before: DetachmentSnapshot, after: DetachmentSnapshot
) -> DetachmentChange | None:
    counts = _count_changes(
        [
            ("stratagems", before.stratagem_count, after.stratagem_count),
            ("enhancements", before.enhancement_count, after.enhancement_count),
        ]
    )
    stratagems = _name_delta(before.stratagems, after.stratagems)
    enhancements = _name_delta(before.enhancements, after.enhancements)
    if not counts and stratagems.is_empty() and enhancements.is_empty():
        return None
    return DetachmentChange(
        key=f"{faction}/{after.slug}",
        faction=faction,
        name=after.name,
        counts=counts,
        stratagems=stratagems,
        enhancements=enhancements,
    )


def diff(before: Snapshot, after: Snapshot) -> SnapshotDiff:
    """Compare two snapshots by faction slug and detachment slug."""
    old = {faction.slug: faction for faction in before.factions}
    new = {faction.slug: faction for faction in after.factions}
    result = SnapshotDiff(
        totals=_count_changes(
            (field, getattr(before.totals, field), getattr(after.totals, field))
            for field in SnapshotTotals.model_fields
        ),
        added_factions=[new[slug] for slug in sorted(new.keys() - old.keys())],
        removed_factions=[old[slug] for slug in sorted(old.keys() - new.keys())],
    )

    for slug in sorted(old.keys() & new.keys()):
        a, b = old[slug], new[slug]
        counts = _faction_counts(a, b)
        stratagems = _name_delta(a.stratagems, b.stratagems)
        units = _name_delta(a.units, b.units)
        if counts or not stratagems.is_empty() or not units.is_empty():
            result.changed_factions.append(
                FactionChange(
                    slug=slug, name=b.name, counts=counts, stratagems=stratagems, units=units
                )
            )

        old_detachments = {d.slug: d for d in a.detachments}
        new_detachments = {d.slug: d for d in b.detachments}
        result.added_detachments.extend(
            f"{slug}/{d}" for d in sorted(new_detachments.keys() - old_detachments.keys())
        )
        result.removed_detachments.extend(
            f"{slug}/{d}" for d in sorted(old_detachments.keys() - new_detachments.keys())
        )
        for detachment_slug in sorted(old_detachments.keys() & new_detachments.keys()):
            change = _detachment_change(
                slug, old_detachments[detachment_slug], new_detachments[detachment_slug]
            )
            if change is not None:
                result.changed_detachments.append(change)

    return result


# ---------------------------------------------------------------------------
# Report
# ---------------------------------------------------------------------------


def _capped(names: list[str], limit: int = MAX_LISTED_NAMES) -> str:
    shown = ", ".join(names[:limit])
    if len(names) > limit:
        shown += f" (+{len(names) - limit} more)"
    return shown


def _signed(value: int) -> str:
    return f"+{value}" if value > 0 else str(value)


def _delta_lines(label: str, delta: NameDelta, indent: str) -> list[str]:
    lines = []
    if delta.added:
        lines.append(f"{indent}+ {label}: {_capped(delta.added)}")
    if delta.removed:
        lines.append(f"{indent}- {label}: {_capped(delta.removed)}")
    return lines


def _counts_text(counts: list[CountChange]) -> str:
    return ", ".join(
        f"{change.field} {change.before} -> {change.after} ({_signed(change.delta)})"
        for change in counts
    )


def format_diff(result: SnapshotDiff, *, title: str = "Snapshot diff") -> str:
    """Render a diff as plain text for the terminal."""
    lines = [title, "=" * len(title)]
    if not result.has_changes() and not result.totals:
        lines.append("No changes.")
        return "\n".join(lines)

    if result.totals:
        lines.append(f"Totals: {_counts_text(result.totals)}")
    if result.added_factions:
        lines.append(f"Added factions: {_capped([f.slug for f in result.added_factions])}")
    if result.removed_factions:
        lines.append(f"Removed factions: {_capped([f.slug for f in result.removed_factions])}")

    if result.changed_factions:
        lines.append("")
        lines.append("Changed factions:")
        for change in result.changed_factions:
            lines.append(f"  {change.slug}: {_counts_text(change.counts) or 'names changed'}")
            lines.extend(_delta_lines("stratagems", change.stratagems, "    "))
            lines.extend(_delta_lines("units", change.units, "    "))

    if result.added_detachments:
        lines.append(f"Added detachments: {_capped(result.added_detachments)}")
    if result.removed_detachments:
        lines.append(f"Removed detachments: {_capped(result.removed_detachments)}")

    if result.changed_detachments:
        lines.append("")
        lines.append("Changed detachments:")
        for change in result.changed_detachments:
            lines.append(f"  {change.key}: {_counts_text(change.counts) or 'names changed'}")
            lines.extend(_delta_lines("stratagems", change.stratagems, "    "))
            lines.extend(_delta_lines("enhancements", change.enhancements, "    "))

    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Archive
# ---------------------------------------------------------------------------


def default_snapshot_name(snapshot: Snapshot) -> str:
    stamp = snapshot.timestamp.replace(":", "-").replace("+00-00", "Z")
    return f"snapshot-{stamp}"


class SnapshotArchive:
    """Named snapshot files in one directory."""

    def __init__(self, directory: Path) -> None:
        self.directory = directory

    def path_for(self, name: str) -> Path:
        return self.directory / f"{name.removesuffix('.json')}.json"

    def save(self, snapshot: Snapshot, name: str | None = None) -> Path:
        path = self.path_for(name or default_snapshot_name(snapshot))
        write_model(path, snapshot)
        log.info("snapshot_saved", path=str(path))
        return path

    def load(self, name_or_path: str) -> Snapshot:
        """Load by archive name, or by file path when the argument names an existing file."""
        candidate = Path(name_or_path)
        path = candidate if candidate.is_file() else self.path_for(name_or_path)
        try:
            raw = path.read_bytes()
        except FileNotFoundError as exc:
            raise CodexSyncError(
                code=ErrorCode.SNAPSHOT_NOT_FOUND,
                message=f"Snapshot '{name_or_path}' not found in {self.directory}",
                suggestion="Run 'codexsync list-snapshots' to see the saved names.",
            ) from exc
        try:
            return Snapshot.model_validate_json(raw)
        except ValidationError as exc:
            raise CodexSyncError(
                code=ErrorCode.SNAPSHOT_INVALID,
                message=f"Snapshot file {path} is not a valid snapshot",
                suggestion="Delete the file and take a new snapshot.",
            ) from exc

    def list_names(self) -> list[str]:
        if not self.directory.is_dir():
            return []
        return sorted(path.stem for path in self.directory.glob("*.json"))


async def compare_live(archive: SnapshotArchive, name: str, store: Store) -> SnapshotDiff:
    """Diff a saved snapshot against a fresh snapshot of the store."""
    saved = archive.load(name)
    return diff(saved, await take_snapshot(store))
