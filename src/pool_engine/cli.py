"""
CLI for replaying a recorded snapshot log through the pool engine.

Implements the command:
pool-replay --snapshots match.jsonl --observer Ash --target PICHU --target ABRA \
  --confidence 0.75 --tables tables.json --output-dir traces
"""

import argparse
import logging
import math
import sys
import time
from pathlib import Path
from typing import List, Optional

from pool_mechanics.rules import DEFAULT_RULES
from pool_mechanics.unit_catalog import DEFAULT_CATALOG, normalize_form
from pool_engine.fingerprint import SnapshotGate
from pool_engine.probability import CombinedStats, TargetStats
from pool_engine.replay_io import (
    StatsTraceWriter,
    create_build_metadata,
    load_static_tables,
    read_snapshot_log,
)
from pool_engine.snapshot import normalize_snapshot
from pool_engine.synchronizer import PoolEngine


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Replay a snapshot log and report shop draw odds for tracked units"
    )

    parser.add_argument(
        "--snapshots",
        type=Path,
        required=True,
        help="JSON Lines file with one raw snapshot per line"
    )

    parser.add_argument(
        "--observer",
        required=True,
        help="Name of the player whose shop odds are computed"
    )

    parser.add_argument(
        "--target",
        action="append",
        required=True,
        help="Unit to track (any form of its evolution line); repeatable"
    )

    parser.add_argument(
        "--confidence",
        type=float,
        default=0.5,
        help="Confidence used for the expected-rolls estimate (default: 0.5)"
    )

    parser.add_argument(
        "--tables",
        type=Path,
        help="Static tables JSON (default: built-in example tables)"
    )

    parser.add_argument(
        "--reveal",
        action="append",
        default=[],
        help="Unit revealed this match (regional or bonus pick); repeatable"
    )

    parser.add_argument(
        "--max-suppressed",
        type=int,
        help="Force a snapshot through the pre-filter after this many suppressed in a row"
    )

    parser.add_argument(
        "--output-dir",
        type=Path,
        help="Write a Parquet stats trace into this directory"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose output"
    )

    return parser.parse_args(argv)


def format_rolls(rolls: float) -> str:
    return "never" if math.isinf(rolls) else str(int(rolls))


def format_target(stats: TargetStats) -> str:
    if not stats.available:
        return f"  {stats.base_form:<12} N/A ({stats.reason})"
    if stats.is_maxed:
        return f"  {stats.base_form:<12} maxed ({stats.copies_owned}/{stats.copies_needed})"
    flags = ""
    if stats.is_impossible:
        flags = " [impossible]"
    elif stats.is_danger:
        flags = " [danger]"
    return (
        f"  {stats.base_form:<12} slot {stats.per_slot:7.2%}  refresh {stats.per_refresh:7.2%}  "
        f"rolls {format_rolls(stats.rolls):>5}  left {stats.pool_remaining:>2}/{stats.max_copies}  "
        f"own {stats.copies_owned}/{stats.copies_needed}{flags}"
    )


def format_combined(combined: CombinedStats) -> str:
    return (
        f"  {'ANY':<12} refresh {combined.combined_per_refresh:7.2%}  "
        f"rolls {format_rolls(combined.rolls):>5}  cost {format_rolls(combined.expected_cost)}"
    )


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    args = parse_arguments(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if args.tables:
        catalog, rules = load_static_tables(args.tables)
    else:
        catalog, rules = DEFAULT_CATALOG, DEFAULT_RULES

    print("Pool Replay")
    print(f"Snapshots: {args.snapshots}")
    print(f"Observer: {args.observer}")
    print(f"Ruleset: {rules.name} ({len(catalog)} evolution families)")
    print(f"Confidence: {args.confidence:.0%}")
    print()

    engine = PoolEngine(catalog, rules, observer=args.observer)
    if args.reveal:
        engine.reveal_alternates(args.reveal)

    forms = [normalize_form(t) for t in args.target]
    # Fail fast on unknown targets before reading the log
    for form in forms:
        catalog.require(form)

    gate = SnapshotGate(observer=args.observer, max_consecutive_suppressed=args.max_suppressed)
    writer = StatsTraceWriter(args.output_dir, rules) if args.output_dir else None

    start_time = time.time()
    index = -1
    for index, raw in enumerate(read_snapshot_log(args.snapshots)):
        snapshot = normalize_snapshot(raw, rules.shop_slots)
        if not gate.admit(snapshot):
            continue
        if not engine.ingest(snapshot):
            continue

        state = engine.pool_state
        targets = [engine.track(form) for form in forms]
        combined = engine.get_combined_stats(targets, args.confidence)

        print(f"#{index} stage {state.stage} level {state.observer_level} "
              f"wild boost {state.wild_boost:.0%}")
        for stats in combined.targets:
            print(format_target(stats))
        print(format_combined(combined))

        if writer is not None:
            writer.record(index, state.stage, state.observer_level, state.wild_boost, combined)

    elapsed = time.time() - start_time
    diagnostics = engine.diagnostics
    print()
    print(f"Read {index + 1} snapshots in {elapsed:.2f} seconds")
    print(f"Pre-filter: forwarded {gate.forwarded}, suppressed {gate.suppressed}")
    print(f"Engine: {diagnostics.rebuilds} rebuilds, {diagnostics.duplicates_skipped} duplicates, "
          f"{diagnostics.incomplete_snapshots} incomplete")

    if writer is not None:
        if len(writer) == 0:
            print("No pool updates; stats trace not written")
        else:
            path = writer.write(create_build_metadata())
            print(f"Wrote stats trace: {path}")

    return 0


def cli_entry_point():
    """Entry point for setuptools console script."""
    try:
        exit_code = main()
        sys.exit(exit_code)
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        sys.exit(1)
    except Exception as e:
        print(f"Error: {e}")
        if "--verbose" in sys.argv or "-v" in sys.argv:
            import traceback
            traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    cli_entry_point()
