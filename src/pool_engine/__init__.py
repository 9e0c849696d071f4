"""
Shared pool reconstruction and shop draw probabilities.

This package rebuilds the state of a shared, depleting unit pool from polled
snapshots of every player's board, bench and shop, and answers draw
probability queries against it.

Key components:
- snapshot: Normalizes raw snapshot shapes into immutable Snapshot values
- fingerprint: Pre-filter and authoritative change fingerprints, SnapshotGate
- pool_state: Star-weighted consumption per rarity and tier (PoolState)
- availability: Pool membership, mid-match reveals, sub-pool sizes
- probability: Per-slot, per-refresh, confidence-inversion and team odds
- synchronizer: PoolEngine, the per-match owner of the current PoolState
- replay_io: Static tables JSON, snapshot logs, Parquet stats traces
- cli: Command-line replay tool

Usage:
    python -m pool_engine.cli --snapshots match.jsonl --observer Ash \
      --target PICHU --target ABRA --confidence 0.75
"""

from .snapshot import ObservedInventory, Snapshot, UnitSighting, normalize_snapshot
from .fingerprint import (
    AUTHORITATIVE_FIELDS,
    PREFILTER_FIELDS,
    SnapshotGate,
    authoritative_fingerprint,
    prefilter_fingerprint,
)
from .pool_state import PoolState, PoolStateBuilder, TierCounts
from .availability import Availability, AvailabilityResolver, RevealRegistry
from .probability import (
    CombinedStats,
    PoolProbabilityCalculator,
    TargetStats,
    TrackedTarget,
)
from .synchronizer import PoolEngine, SyncDiagnostics
from .replay_io import StatsTraceReader, StatsTraceWriter, create_build_metadata, load_static_tables

__version__ = "0.1.0"

__all__ = [
    "ObservedInventory",
    "Snapshot",
    "UnitSighting",
    "normalize_snapshot",
    "AUTHORITATIVE_FIELDS",
    "PREFILTER_FIELDS",
    "SnapshotGate",
    "authoritative_fingerprint",
    "prefilter_fingerprint",
    "PoolState",
    "PoolStateBuilder",
    "TierCounts",
    "Availability",
    "AvailabilityResolver",
    "RevealRegistry",
    "CombinedStats",
    "PoolProbabilityCalculator",
    "TargetStats",
    "TrackedTarget",
    "PoolEngine",
    "SyncDiagnostics",
    "StatsTraceReader",
    "StatsTraceWriter",
    "create_build_metadata",
    "load_static_tables",
]
