from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

IssueSeverity = Literal["error", "warning", "info"]


class AuditIssue(BaseModel):
    severity: IssueSeverity
    category: str
    message: str
    details: list[str] = Field(default_factory=list)


class CacheComparison(BaseModel):
    """Counts parsed from a faction's cached page next to the stored counts."""

    slug: str
    name: str
    cached_detachments: int = 0
    stored_detachments: int = 0
    cached_stratagems: int = 0
    stored_stratagems: int = 0
    cached_enhancements: int = 0
    stored_enhancements: int = 0

    def behind(self) -> list[str]:
        """Entity kinds the store holds fewer of than the cached page."""
        pairs = (
            ("detachments", self.cached_detachments, self.stored_detachments),
            ("stratagems", self.cached_stratagems, self.stored_stratagems),
            ("enhancements", self.cached_enhancements, self.stored_enhancements),
        )
        return [kind for kind, cached, stored in pairs if stored < cached]


class IntegrityReport(BaseModel):
    factions_checked: int = 0
    issues: list[AuditIssue] = Field(default_factory=list)
    comparisons: list[CacheComparison] = Field(default_factory=list)

    def by_severity(self, severity: IssueSeverity) -> list[AuditIssue]:
        return [issue for issue in self.issues if issue.severity == severity]

    @property
    def passed(self) -> bool:
        return not self.by_severity("error")


class FactionStaleness(BaseModel):
    slug: str
    name: str
    last_updated: datetime | None = None
    days_since_update: int | None = None  # None when the faction was never updated
    is_stale: bool = True
    detachment_count: int = 0
    stratagem_count: int = 0
    unit_count: int = 0

    def missing(self) -> list[str]:
        counts = (
            ("detachments", self.detachment_count),
            ("stratagems", self.stratagem_count),
            ("units", self.unit_count),
        )
        return [kind for kind, count in counts if count == 0]


class StalenessReport(BaseModel):
    checked_at: datetime
    threshold_days: int
    factions: list[FactionStaleness] = Field(default_factory=list)

    @property
    def stale(self) -> list[FactionStaleness]:
        return [faction for faction in self.factions if faction.is_stale]

    @property
    def incomplete(self) -> list[FactionStaleness]:
        return [faction for faction in self.factions if faction.missing()]
