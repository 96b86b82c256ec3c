"""Unit tests for run summaries and record models."""

from __future__ import annotations

import pytest
from pydantic import TypeAdapter, ValidationError

from codexsync.models.records import DomainRecord, Keyword, Stratagem
from codexsync.models.snapshot import Snapshot
from codexsync.models.summary import MAX_SUMMARY_ERRORS, ItemResult, RunSummary


class TestRunSummary:
    def test_record_counts_actions(self) -> None:
        summary = RunSummary()
        summary.record(ItemResult(kind="unit", slug="a", action="updated"))
        summary.record(ItemResult(kind="unit", slug="b", action="skipped"))
        summary.record(ItemResult(kind="unit", slug="c", action="failed", error="boom"))
        counts = (summary.processed, summary.updated, summary.skipped, summary.failed)
        assert counts == (3, 1, 1, 1)
        assert summary.errors == ["unit c: boom"]

    def test_errors_capped(self) -> None:
        summary = RunSummary()
        for index in range(MAX_SUMMARY_ERRORS + 3):
            summary.record_failure(f"url-{index}", "timeout")
        assert summary.failed == MAX_SUMMARY_ERRORS + 3
        assert len(summary.errors) == MAX_SUMMARY_ERRORS
        assert summary.errors_omitted == 3

    def test_merge(self) -> None:
        total = RunSummary()
        part = RunSummary()
        part.record_failure("url", "HTTP 500")
        part.errors_omitted = 2
        part.queued = 3
        total.merge(part)
        total.merge(part)
        assert total.processed == 2
        assert total.errors == ["url: HTTP 500", "url: HTTP 500"]
        assert total.errors_omitted == 4
        assert total.queued == 6


class TestRecords:
    def test_discriminated_union(self) -> None:
        adapter = TypeAdapter(DomainRecord)
        record = adapter.validate_python(
            {"kind": "keyword", "slug": "fly", "name": "Fly", "keyword_type": "unit_type"}
        )
        assert isinstance(record, Keyword)

    def test_stratagem_defaults(self) -> None:
        stratagem = Stratagem(slug="x", name="X", effect="Do it.", source_url="u")
        assert (stratagem.cp_cost, stratagem.phase, stratagem.is_core) == ("1", "any", False)

    def test_unknown_phase_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Stratagem(slug="x", name="X", effect="Do it.", source_url="u", phase="morale")

    def test_snapshot_is_frozen(self) -> None:
        snapshot = Snapshot(timestamp="2026-10-19T12:00:00+00:00")
        with pytest.raises(ValidationError):
            snapshot.timestamp = "later"  # type: ignore[misc]
