from __future__ import annotations

from codexsync.models.audit import (
    AuditIssue,
    CacheComparison,
    FactionStaleness,
    IntegrityReport,
    StalenessReport,
)
from codexsync.models.cache import CacheEntry
from codexsync.models.records import (
    Ability,
    CoreRule,
    Detachment,
    DomainRecord,
    Enhancement,
    Faction,
    FactionExtraction,
    FactionPage,
    Keyword,
    ParsedUnit,
    Statline,
    Stratagem,
    Unit,
    UnitIndexEntry,
    Weapon,
)
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
from codexsync.models.summary import ItemResult, RunSummary

__all__ = [
    # cache
    "CacheEntry",
    # records
    "CoreRule",
    "Faction",
    "Detachment",
    "Stratagem",
    "Enhancement",
    "Statline",
    "Unit",
    "UnitIndexEntry",
    "Weapon",
    "Ability",
    "Keyword",
    "DomainRecord",
    "ParsedUnit",
    "FactionPage",
    "FactionExtraction",
    # summary
    "ItemResult",
    "RunSummary",
    # snapshot
    "Snapshot",
    "SnapshotTotals",
    "FactionSnapshot",
    "DetachmentSnapshot",
    "SnapshotDiff",
    "CountChange",
    "NameDelta",
    "FactionChange",
    "DetachmentChange",
    # audit
    "AuditIssue",
    "CacheComparison",
    "IntegrityReport",
    "FactionStaleness",
    "StalenessReport",
]
