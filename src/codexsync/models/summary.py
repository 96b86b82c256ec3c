from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

MAX_SUMMARY_ERRORS = 50

ItemAction = Literal["updated", "skipped", "failed"]


class ItemResult(BaseModel):
    """Outcome of writing one record. Returned, never raised."""

    kind: str
    slug: str
    action: ItemAction
    error: str | None = None


class RunSummary(BaseModel):
    processed: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    errors: list[str] = Field(default_factory=list)
    queued: int = 0  # New unit index entries
    errors_omitted: int = 0  # Failures beyond MAX_SUMMARY_ERRORS

    def record(self, result: ItemResult) -> None:
        self.processed += 1
        if result.action == "updated":
            self.updated += 1
        elif result.action == "skipped":
            self.skipped += 1
        else:
            self.failed += 1
            self._add_error(f"{result.kind} {result.slug}: {result.error or 'unknown error'}")

    def record_failure(self, subject: str, error: str) -> None:
        """Count a failure that happened before any record existed (fetch, parse)."""
        self.processed += 1
        self.failed += 1
        self._add_error(f"{subject}: {error}")

    def merge(self, other: RunSummary) -> None:
        self.processed += other.processed
        self.updated += other.updated
        self.skipped += other.skipped
        self.failed += other.failed
        self.queued += other.queued
        for error in other.errors:
            self._add_error(error)
        self.errors_omitted += other.errors_omitted

    def _add_error(self, message: str) -> None:
        if len(self.errors) < MAX_SUMMARY_ERRORS:
            self.errors.append(message)
        else:
            self.errors_omitted += 1
