from __future__ import annotations

from pydantic import BaseModel, Field

SNAPSHOT_VERSION = "1.0"


class DetachmentSnapshot(BaseModel):
    slug: str
    name: str
    stratagem_count: int = 0
    enhancement_count: int = 0
    stratagems: list[str] = Field(default_factory=list)
    enhancements: list[str] = Field(default_factory=list)


class FactionSnapshot(BaseModel):
    slug: str
    name: str
    detachment_count: int = 0
    stratagem_count: int = 0
    enhancement_count: int = 0
    unit_count: int = 0
    detachments: list[DetachmentSnapshot] = Field(default_factory=list)
    stratagems: list[str] = Field(default_factory=list)  # All of the faction's, sorted
    units: list[str] = Field(default_factory=list)


class SnapshotTotals(BaseModel):
    factions: int = 0
    detachments: int = 0
    stratagems: int = 0
    enhancements: int = 0
    units: int = 0


class Snapshot(BaseModel):
    """Point-in-time summary of the store. Never mutated after capture."""

    model_config = {"frozen": True}

    timestamp: str
    version: str = SNAPSHOT_VERSION
    factions: list[FactionSnapshot] = Field(default_factory=list)
    totals: SnapshotTotals = Field(default_factory=SnapshotTotals)


# ---------------------------------------------------------------------------
# Diff
# ---------------------------------------------------------------------------


class CountChange(BaseModel):
    field: str
    before: int
    after: int

    @property
    def delta(self) -> int:
        return self.after - self.before


class NameDelta(BaseModel):
    added: list[str] = Field(default_factory=list)
    removed: list[str] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not self.added and not self.removed


class FactionChange(BaseModel):
    slug: str
    name: str
    counts: list[CountChange] = Field(default_factory=list)
    stratagems: NameDelta = Field(default_factory=NameDelta)
    units: NameDelta = Field(default_factory=NameDelta)


class DetachmentChange(BaseModel):
    key: str  # "<faction-slug>/<detachment-slug>"
    faction: str
    name: str
    counts: list[CountChange] = Field(default_factory=list)
    stratagems: NameDelta = Field(default_factory=NameDelta)
    enhancements: NameDelta = Field(default_factory=NameDelta)


class SnapshotDiff(BaseModel):
    totals: list[CountChange] = Field(default_factory=list)
    added_factions: list[FactionSnapshot] = Field(default_factory=list)
    removed_factions: list[FactionSnapshot] = Field(default_factory=list)
    changed_factions: list[FactionChange] = Field(default_factory=list)
    added_detachments: list[str] = Field(default_factory=list)
    removed_detachments: list[str] = Field(default_factory=list)
    changed_detachments: list[DetachmentChange] = Field(default_factory=list)

    def has_changes(self) -> bool:
        return bool(
            self.added_factions
            or self.removed_factions
            or self.changed_factions
            or self.added_detachments
            or self.removed_detachments
            or self.changed_detachments
        )
