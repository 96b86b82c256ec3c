"""Unit tests for codexsync.cli."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import pytest
from structlog.testing import capture_logs

from codexsync import cli
from codexsync.errors import CodexSyncError, ErrorCode
from codexsync.sources import FACTION_SLUGS

if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture()
def workspace(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point every on-disk location at ``tmp_path`` and leave logging unconfigured."""
    monkeypatch.setenv("CODEXSYNC__STORE__DB_PATH", str(tmp_path / "db" / "codexsync.db"))
    monkeypatch.setenv("CODEXSYNC__CACHE__DIR", str(tmp_path / "cache"))
    monkeypatch.setenv("CODEXSYNC__SNAPSHOTS__DIR", str(tmp_path / "snapshots"))
    monkeypatch.setattr(cli, "_setup_logging", lambda settings: None)
    return tmp_path


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


class TestParser:
    def test_faction_arguments(self) -> None:
        args = cli.build_parser().parse_args(["faction", "necrons", "orks", "--discover"])
        assert args.command == "faction"
        assert args.slugs == ["necrons", "orks"]
        assert args.discover is True
        assert args.all is False

    def test_units_arguments(self) -> None:
        args = cli.build_parser().parse_args(
            ["units", "--faction", "necrons", "--limit", "5", "--retry-failed"]
        )
        assert (args.faction, args.limit, args.retry_failed) == ("necrons", 5, True)

    def test_audit_arguments(self) -> None:
        args = cli.build_parser().parse_args(["integrity", "necrons", "--no-cache", "--json"])
        assert (args.slugs, args.no_cache, args.json) == (["necrons"], True, True)
        args = cli.build_parser().parse_args(["staleness", "--days", "7"])
        assert (args.slugs, args.days, args.json) == ([], 7, False)

    def test_command_required(self) -> None:
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args([])

    def test_every_command_dispatched(self) -> None:
        parser = cli.build_parser()
        subparsers = next(action for action in parser._actions if action.dest == "command")
        assert set(subparsers.choices) == set(cli._COMMANDS)


class TestFactionSlugs:
    def test_empty_means_all(self) -> None:
        assert cli._faction_slugs([]) == list(FACTION_SLUGS)

    def test_known_slugs_kept_in_order(self) -> None:
        assert cli._faction_slugs(["orks", "necrons"]) == ["orks", "necrons"]

    def test_unknown_slug_rejected(self) -> None:
        with pytest.raises(CodexSyncError) as exc_info:
            cli._faction_slugs(["necrons", "squats"])
        assert exc_info.value.code == ErrorCode.INVALID_INPUT
        assert "squats" in exc_info.value.message


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


class TestMain:
    def test_snapshot_then_compare(
        self, workspace: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        assert cli.main(["snapshot", "--name", "baseline"]) == 0
        assert (workspace / "snapshots" / "baseline.json").is_file()

        assert cli.main(["list-snapshots"]) == 0
        assert "baseline" in capsys.readouterr().out.splitlines()

        assert cli.main(["compare-live", "baseline"]) == 0
        assert "No changes." in capsys.readouterr().out

    def test_reparse_empty_cache(
        self, workspace: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        assert cli.main(["reparse", "--dry-run"]) == 0
        assert '"processed": 0' in capsys.readouterr().out

    def test_faction_without_slugs_fails(
        self, workspace: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        assert cli.main(["faction"]) == 1
        assert '"code": "INVALID_INPUT"' in capsys.readouterr().err

    def test_missing_snapshot_fails(
        self, workspace: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        assert cli.main(["diff", "nope", "also-nope"]) == 1
        assert "SNAPSHOT_NOT_FOUND" in capsys.readouterr().err

    def test_faction_batch_continues_past_failures(
        self, workspace: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
    ) -> None:
        monkeypatch.delenv("CODEXSYNC__PROVIDER__API_KEY", raising=False)
        with capture_logs() as logs:
            assert cli.main(["faction", "necrons", "orks", "--discover"]) == 0
        skipped = [entry["faction"] for entry in logs if entry["event"] == "discover_skipped"]
        assert skipped == ["necrons", "orks"]
        summary = json.loads(capsys.readouterr().out)
        # Each slug fails once for its page and once for discovery
        assert summary["failed"] == 4
        assert summary["queued"] == 0
        assert summary["errors"][1] == (
            "faction necrons: not in the store; ingest the faction page first"
        )

    def test_integrity_on_empty_store_fails(
        self, workspace: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        assert cli.main(["integrity", "necrons", "--no-cache"]) == 1
        out = capsys.readouterr().out
        assert "Faction 'necrons' not found in the store" in out
        assert "FAILED" in out

    def test_integrity_json(self, workspace: Path, capsys: pytest.CaptureFixture[str]) -> None:
        with capture_logs():
            assert cli.main(["integrity", "orks", "--no-cache", "--json"]) == 1
        report = json.loads(capsys.readouterr().out)
        assert report["factions_checked"] == 0
        assert [issue["category"] for issue in report["issues"]] == ["Missing Faction"]

    def test_staleness_on_empty_store_passes(
        self, workspace: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        assert cli.main(["staleness", "--days", "7"]) == 0
        out = capsys.readouterr().out
        assert "Staleness check (threshold 7 days)" in out
        assert "Stale: 0/0" in out
