#!/usr/bin/env python3
"""Command-line interface for the reconciliation engine.

Commands:
  - eventsync run            : Crawl every source, sync both stores
  - eventsync run-one NAME   : Crawl a single source
  - eventsync sync-existing  : Push the primary store into the secondary store
  - eventsync init-db        : Create the primary store schema
  - eventsync feeds add|list : Manage operator calendar feeds
  - eventsync links add|list : Manage submitted social event links

Typical usage:
  eventsync init-db
  eventsync feeds add https://example.org/events.ics --label "Community"
  eventsync run --json-logs
"""

from __future__ import annotations

import argparse
import sys

from eventsync.configs.settings import get_settings
from eventsync.monitoring.logging import LoggingOptions, setup_logging


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="eventsync", description="Event reconciliation engine CLI")
    p.add_argument("--json-logs", action="store_true", help="Emit JSON logs")
    p.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    sub = p.add_subparsers(dest="cmd")

    pr = sub.add_parser("run", help="Run a full reconciliation pass")
    pr.add_argument("--only", nargs="*", default=None, help="Run only these sources")
    pr.add_argument("--no-secondary", action="store_true", help="Skip the secondary store sync")

    po = sub.add_parser("run-one", help="Run a single source")
    po.add_argument("source", help="Source name from sources.yaml")
    po.add_argument("--no-secondary", action="store_true", help="Skip the secondary store sync")

    sub.add_parser("sync-existing", help="Sync stored events to the secondary store")
    sub.add_parser("init-db", help="Create primary store tables")

    pf = sub.add_parser("feeds", help="Manage calendar feeds")
    fsub = pf.add_subparsers(dest="feeds_cmd")
    pfa = fsub.add_parser("add", help="Add or update a feed")
    pfa.add_argument("url")
    pfa.add_argument("--label", default=None)
    pfa.add_argument("--inactive", action="store_true", help="Store the feed disabled")
    fsub.add_parser("list", help="List active feeds")

    pl = sub.add_parser("links", help="Manage social event links")
    lsub = pl.add_subparsers(dest="links_cmd")
    pla = lsub.add_parser("add", help="Submit an event link")
    pla.add_argument("url")
    lsub.add_parser("list", help="List submitted links")

    return p.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """Run the CLI with the given arguments."""
    try:
        return _main_impl(argv)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def _main_impl(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    if not args.cmd:
        print("Error: Command required. Use --help for usage info.", file=sys.stderr)
        return 1

    settings = get_settings()
    setup_logging(
        LoggingOptions(
            level=args.log_level or settings.LOG_LEVEL,
            json_logs=args.json_logs or settings.LOG_JSON,
        )
    )

    from eventsync.storage.primary import PrimaryStore

    store = PrimaryStore.from_settings(settings)
    store.create_schema()

    if args.cmd == "init-db":
        print(f"Schema ready at {settings.DATABASE_URL}")
        return 0

    if args.cmd == "feeds":
        if args.feeds_cmd == "add":
            store.upsert_feed(args.url, label=args.label, active=not args.inactive)
            print(f"Feed saved: {args.url}")
            return 0
        for feed in store.list_active_feeds():
            print(f"{feed['url']}\t{feed.get('label') or ''}")
        return 0

    if args.cmd == "links":
        if args.links_cmd == "add":
            added = store.record_link(args.url)
            print(f"Link {'added' if added else 'already known'}: {args.url}")
            return 0
        for link in store.list_links():
            print(f"{link['url']}\t{link.get('last_status') or 'pending'}")
        return 0

    from eventsync.ingestion.orchestrator import ReconciliationOrchestrator

    orchestrator = ReconciliationOrchestrator.from_config(settings, primary=store)
    try:
        if args.cmd == "sync-existing":
            result = orchestrator.sync_existing()
            if result.synced:
                print(f"Synced {result.events} events")
            else:
                print(f"Secondary sync skipped ({result.reason})")
            return 0

        if args.cmd == "run-one":
            report = orchestrator.run_one(args.source, sync_secondary=not args.no_secondary)
        else:
            report = orchestrator.run(only=args.only, sync_secondary=not args.no_secondary)
    finally:
        orchestrator.close()

    print(f"{'SOURCE':<20} {'STATUS':<16} {'MERGED':>7} {'DROPPED':>8} {'PRUNED':>7}")
    print("-" * 62)
    for name, src in sorted(report.sources.items()):
        pruned = "skip" if src.prune_skipped else str(src.pruned)
        print(f"{name:<20} {src.status.value:<16} {src.merged:>7} {src.dropped:>8} {pruned:>7}")
    for err in report.errors:
        print(f"ERROR [{err.source}/{err.phase}] {err.message}", file=sys.stderr)
    return 0 if report.ok else 1


if __name__ == "__main__":
    sys.exit(main())
