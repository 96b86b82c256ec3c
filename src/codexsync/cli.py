"""Command-line entrypoint.

Responsibilities (and nothing more):
- Configure structlog
- Build AppState from Settings
- Dispatch one subcommand and print its report to stdout
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from codexsync import __version__
from codexsync.audit import check_integrity, check_staleness, format_integrity, format_staleness
from codexsync.cache import CacheStore
from codexsync.config import Settings
from codexsync.errors import CodexSyncError, ErrorCode
from codexsync.fetcher import Fetcher, build_http_client, validate_urls
from codexsync.ingest import Ingestor
from codexsync.models.summary import RunSummary
from codexsync.reconcile import Reconciler
from codexsync.snapshots import SnapshotArchive, compare_live, diff, format_diff, take_snapshot
from codexsync.sources import FACTION_SLUGS, SourceUrls
from codexsync.state import AppState
from codexsync.store import open_store

if TYPE_CHECKING:
    from collections.abc import Sequence

log = structlog.get_logger()


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------


def _setup_logging(settings: Settings) -> None:
    """Configure structlog. Called once at startup before any log statements."""
    log_level = logging.getLevelNamesMapping()[settings.logging.level]

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if settings.logging.format == "json":
        processors = [*shared_processors, structlog.processors.JSONRenderer()]
    else:
        processors = [*shared_processors, structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        # Logs go to stderr; stdout carries the command's report
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# State
# ---------------------------------------------------------------------------


async def open_state(settings: Settings) -> AppState:
    """Create every shared component of a run. The caller must ``close()`` it."""
    db_path = Path(settings.store.db_path).expanduser()
    db_path.parent.mkdir(parents=True, exist_ok=True)
    db, store = await open_store(str(db_path))

    http_client = build_http_client()
    cache = CacheStore(Path(settings.cache.dir).expanduser())
    fetcher = Fetcher.from_settings(http_client, cache, settings)
    reconciler = Reconciler(store)
    urls = SourceUrls(settings.source.base_url)
    return AppState(
        settings=settings,
        urls=urls,
        http_client=http_client,
        db=db,
        store=store,
        cache=cache,
        fetcher=fetcher,
        reconciler=reconciler,
        ingestor=Ingestor(fetcher, store, reconciler, urls),
        archive=SnapshotArchive(Path(settings.snapshots.dir).expanduser()),
    )


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def _print_summary(summary: RunSummary) -> None:
    print(json.dumps(summary.model_dump(), indent=2))


async def _cmd_rules(state: AppState, args: argparse.Namespace) -> int:
    _print_summary(await state.ingestor.ingest_core_rules(force_refresh=args.force_refresh))
    return 0


def _faction_slugs(requested: list[str]) -> list[str]:
    """Validate slugs against the catalog; an empty request means every faction."""
    unknown = [slug for slug in requested if slug not in FACTION_SLUGS]
    if unknown:
        raise CodexSyncError(
            code=ErrorCode.INVALID_INPUT,
            message=f"Unknown faction slug(s): {', '.join(unknown)}",
            suggestion=f"Known slugs: {', '.join(FACTION_SLUGS)}",
        )
    return requested or list(FACTION_SLUGS)


async def _cmd_faction(state: AppState, args: argparse.Namespace) -> int:
    if not args.slugs and not args.all:
        raise CodexSyncError(
            code=ErrorCode.INVALID_INPUT,
            message="No faction named",
            suggestion="Name at least one faction slug, or pass --all.",
        )
    slugs = _faction_slugs([] if args.all else args.slugs)
    summary = RunSummary()
    for slug in slugs:
        summary.merge(
            await state.ingestor.ingest_faction(slug, force_refresh=args.force_refresh)
        )
        if args.discover:
            summary.merge(
                await state.ingestor.discover_units(slug, force_refresh=args.force_refresh)
            )
    _print_summary(summary)
    return 0


async def _cmd_units(state: AppState, args: argparse.Namespace) -> int:
    summary = await state.ingestor.ingest_units(
        faction_slug=args.faction,
        limit=args.limit,
        retry_failed=args.retry_failed,
        force_refresh=args.force_refresh,
    )
    _print_summary(summary)
    return 0


async def _cmd_reparse(state: AppState, args: argparse.Namespace) -> int:
    summary = await state.ingestor.reparse_cache(
        state.cache, faction_slug=args.faction, dry_run=args.dry_run
    )
    _print_summary(summary)
    return 0


async def _cmd_snapshot(state: AppState, args: argparse.Namespace) -> int:
    snapshot = await take_snapshot(state.store)
    path = state.archive.save(snapshot, args.name)
    print(path)
    return 0


async def _cmd_diff(state: AppState, args: argparse.Namespace) -> int:
    before = state.archive.load(args.before)
    after = state.archive.load(args.after)
    print(format_diff(diff(before, after), title=f"{args.before} -> {args.after}"))
    return 0


async def _cmd_compare_live(state: AppState, args: argparse.Namespace) -> int:
    result = await compare_live(state.archive, args.name, state.store)
    print(format_diff(result, title=f"{args.name} -> live"))
    return 0


async def _cmd_list_snapshots(state: AppState, args: argparse.Namespace) -> int:
    for name in state.archive.list_names():
        print(name)
    return 0


async def _cmd_validate(state: AppState, args: argparse.Namespace) -> int:
    urls = [state.urls.core_rules(), state.urls.faction_index()]
    urls.extend(state.urls.faction(slug) for slug in _faction_slugs(args.slugs))
    checks = await validate_urls(
        state.http_client, urls, concurrency=state.settings.fetcher.validate_concurrency
    )
    broken = [check for check in checks if not check.ok]
    for check in broken:
        print(f"BROKEN {check.url} {check.status_code or check.error}")
    print(f"{len(checks) - len(broken)}/{len(checks)} URLs reachable")
    return 1 if broken else 0


async def _cmd_integrity(state: AppState, args: argparse.Namespace) -> int:
    report = await check_integrity(
        state.store,
        expected_factions=_faction_slugs(args.slugs),
        cache=None if args.no_cache else state.cache,
    )
    print(report.model_dump_json(indent=2) if args.json else format_integrity(report))
    return 0 if report.passed else 1


async def _cmd_staleness(state: AppState, args: argparse.Namespace) -> int:
    days = args.days if args.days is not None else state.settings.audit.stale_after_days
    report = await check_staleness(
        state.store,
        threshold_days=days,
        faction_slugs=_faction_slugs(args.slugs) if args.slugs else (),
    )
    print(report.model_dump_json(indent=2) if args.json else format_staleness(report))
    return 1 if report.stale else 0


_COMMANDS = {
    "rules": _cmd_rules,
    "faction": _cmd_faction,
    "units": _cmd_units,
    "reparse": _cmd_reparse,
    "snapshot": _cmd_snapshot,
    "diff": _cmd_diff,
    "compare-live": _cmd_compare_live,
    "list-snapshots": _cmd_list_snapshots,
    "validate": _cmd_validate,
    "integrity": _cmd_integrity,
    "staleness": _cmd_staleness,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="codexsync",
        description="Scrape the ruleset site into the local store and audit drift between runs.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)

    rules = sub.add_parser("rules", help="Ingest the core rules page.")
    rules.add_argument("--force-refresh", action="store_true", help="Ignore cached pages.")

    faction = sub.add_parser("faction", help="Ingest faction pages and queue their units.")
    faction.add_argument("slugs", nargs="*", help="Faction slugs, e.g. necrons.")
    faction.add_argument("--all", action="store_true", help="Ingest every known faction.")
    faction.add_argument(
        "--discover", action="store_true", help="Also queue units from the datasheets listing."
    )
    faction.add_argument("--force-refresh", action="store_true", help="Ignore cached pages.")

    units = sub.add_parser("units", help="Fetch pending unit datasheets.")
    units.add_argument("--faction", default=None, help="Only this faction.")
    units.add_argument("--limit", type=int, default=None, help="At most this many units.")
    units.add_argument("--retry-failed", action="store_true", help="Include failed units.")
    units.add_argument("--force-refresh", action="store_true", help="Ignore cached pages.")

    reparse = sub.add_parser("reparse", help="Re-extract cached pages without fetching.")
    reparse.add_argument("--faction", default=None, help="Only this faction.")
    reparse.add_argument("--dry-run", action="store_true", help="Parse only; write nothing.")

    snapshot = sub.add_parser("snapshot", help="Save a snapshot of the store.")
    snapshot.add_argument("--name", default=None, help="Snapshot name (default: timestamped).")

    diff_cmd = sub.add_parser("diff", help="Compare two saved snapshots.")
    diff_cmd.add_argument("before", help="Older snapshot name or path.")
    diff_cmd.add_argument("after", help="Newer snapshot name or path.")

    live = sub.add_parser("compare-live", help="Compare a saved snapshot with the store.")
    live.add_argument("name", help="Snapshot name or path.")

    sub.add_parser("list-snapshots", help="List saved snapshot names.")

    validate = sub.add_parser("validate", help="Check that source URLs are reachable.")
    validate.add_argument("slugs", nargs="*", help="Faction slugs (default: all).")

    integrity = sub.add_parser("integrity", help="Check the store for orphans and gaps.")
    integrity.add_argument("slugs", nargs="*", help="Factions that must exist (default: all).")
    integrity.add_argument(
        "--no-cache", action="store_true", help="Skip the comparison with cached pages."
    )
    integrity.add_argument("--json", action="store_true", help="Print the report as JSON.")

    staleness = sub.add_parser("staleness", help="Report how long ago each faction was written.")
    staleness.add_argument("slugs", nargs="*", help="Only these factions (default: all stored).")
    staleness.add_argument("--days", type=int, default=None, help="Stale after this many days.")
    staleness.add_argument("--json", action="store_true", help="Print the report as JSON.")

    return parser


async def _run(settings: Settings, args: argparse.Namespace) -> int:
    state = await open_state(settings)
    try:
        return await _COMMANDS[args.command](state, args)
    except CodexSyncError as exc:
        log.error("command_failed", command=args.command, code=exc.code, error=exc.message)
        print(json.dumps(exc.to_dict(), indent=2), file=sys.stderr)
        return 1
    finally:
        await state.close()


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = Settings()
    _setup_logging(settings)
    log.info("run_starting", version=__version__, command=args.command)
    return asyncio.run(_run(settings, args))


if __name__ == "__main__":
    sys.exit(main())
