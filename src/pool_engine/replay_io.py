"""
File formats around the engine.

- Static tables: one JSON document with pool capacity, shop odds, PvE stages,
  evolution families and (optionally) balance constants
- Snapshot logs: JSON Lines, one raw snapshot per line
- Stats trace: Parquet, one row per (accepted snapshot, target) with an exact
  Arrow schema and JSON-encoded metadata
"""

import json
import subprocess
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

import numpy as np
import pandas as pd
import pyarrow as pa
import pyarrow.parquet as pq

from pool_mechanics.errors import ConfigurationError
from pool_mechanics.rules import DEFAULT_RULES, PoolRuleset, build_ruleset
from pool_mechanics.unit_catalog import UnitCatalog
from pool_engine.probability import CombinedStats, TargetStats

TRACE_FILENAME = "stats_trace.parquet"

# JSON key -> PoolRuleset field for the optional "constants" block
_CONSTANT_KEYS = {
    "starCopyWeights": "star_copy_weights",
    "shopSlots": "shop_slots",
    "rerollCost": "reroll_cost",
    "pveWildBonus": "pve_wild_bonus",
    "wildBonusPerStar": "wild_bonus_per_star",
}

TRACE_SCHEMA = pa.schema([
    pa.field("snapshot_index", pa.int32()),
    pa.field("stage", pa.int16()),
    pa.field("observer_level", pa.int8()),
    pa.field("wild_boost", pa.float64()),
    pa.field("target", pa.string()),
    pa.field("available", pa.bool_()),
    pa.field("is_maxed", pa.bool_()),
    pa.field("is_alternate", pa.bool_()),
    pa.field("per_slot", pa.float64()),
    pa.field("per_refresh", pa.float64()),
    pa.field("rolls", pa.float64()),
    pa.field("expected_cost", pa.float64()),
    pa.field("pool_remaining", pa.int16()),
    pa.field("copies_owned", pa.int16()),
    pa.field("copies_needed", pa.int8()),
    pa.field("combined_per_refresh", pa.float64()),
])


def load_static_tables(path: Path) -> Tuple[UnitCatalog, PoolRuleset]:
    """
    Load the externally supplied tables.

    Expected shape:
        {"name": "season-3",
         "poolCapacity": {"common": {"twoStar": 18, "threeStar": 27}, ...},
         "shopOdds": {"1": {"common": 100}, ...},
         "pveStages": [1, 2, 3, 10, ...],
         "families": {"PICHU": {"rarity": "common", "forms": [...], "maxTier": 3}, ...},
         "constants": {"shopSlots": 6, "rerollCost": 1, ...}}
    """
    path = Path(path)
    try:
        with open(path) as f:
            doc = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Static tables {path} are not valid JSON: {e}") from e

    for key in ("poolCapacity", "shopOdds", "families"):
        if key not in doc:
            raise ConfigurationError(f"Static tables {path} are missing '{key}'")

    overrides: Dict[str, Any] = {}
    for json_key, attr in _CONSTANT_KEYS.items():
        if json_key in doc.get("constants", {}):
            overrides[attr] = doc["constants"][json_key]
    if "star_copy_weights" in overrides:
        overrides["star_copy_weights"] = {
            int(k): int(v) for k, v in overrides["star_copy_weights"].items()
        }

    rules = build_ruleset(
        doc["poolCapacity"],
        doc["shopOdds"],
        doc.get("pveStages", ()),
        name=doc.get("name", path.stem),
        **overrides,
    )
    catalog = UnitCatalog.from_table(doc["families"])
    return catalog, rules


def read_snapshot_log(path: Path) -> Iterator[Dict[str, Any]]:
    """Yield raw snapshots from a JSON Lines log, skipping blank lines."""
    with open(path) as f:
        for line_no, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                yield json.loads(line)
            except json.JSONDecodeError as e:
                raise ValueError(f"{path}:{line_no}: invalid snapshot JSON: {e}") from e


class StatsTraceWriter:
    """Accumulates per-snapshot target stats and writes them to Parquet."""

    def __init__(self, output_dir: Path, rules: Optional[PoolRuleset] = None):
        self.output_dir = Path(output_dir)
        self.rules = rules or DEFAULT_RULES
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self._rows: List[Dict[str, Any]] = []

    def __len__(self) -> int:
        return len(self._rows)

    def record(
        self,
        snapshot_index: int,
        stage: int,
        observer_level: Optional[int],
        wild_boost: float,
        combined: CombinedStats,
    ) -> None:
        for stats in combined.targets:
            self._rows.append(self._row(snapshot_index, stage, observer_level, wild_boost, stats, combined))

    @staticmethod
    def _row(
        snapshot_index: int,
        stage: int,
        observer_level: Optional[int],
        wild_boost: float,
        stats: TargetStats,
        combined: CombinedStats,
    ) -> Dict[str, Any]:
        return {
            "snapshot_index": np.int32(snapshot_index),
            "stage": np.int16(stage),
            "observer_level": np.int8(observer_level or 0),
            "wild_boost": float(wild_boost),
            "target": stats.base_form,
            "available": stats.available,
            "is_maxed": stats.is_maxed,
            "is_alternate": stats.is_alternate,
            "per_slot": stats.per_slot,
            "per_refresh": stats.per_refresh,
            # inf is kept: "never" is a meaningful answer
            "rolls": float(stats.rolls),
            "expected_cost": float(stats.expected_cost),
            "pool_remaining": np.int16(stats.pool_remaining),
            "copies_owned": np.int16(stats.copies_owned),
            "copies_needed": np.int8(stats.copies_needed),
            "combined_per_refresh": combined.combined_per_refresh,
        }

    def write(self, build_metadata: Dict[str, Any], filename: str = TRACE_FILENAME) -> Path:
        if not self._rows:
            raise ValueError("No stats to write")

        file_path = self.output_dir / filename
        df = pd.DataFrame(self._rows, columns=TRACE_SCHEMA.names)

        table = pa.Table.from_pandas(df, schema=TRACE_SCHEMA, preserve_index=False)
        table = table.replace_schema_metadata(self._create_metadata(build_metadata))
        pq.write_table(table, file_path, compression="snappy")
        return file_path

    def _create_metadata(self, build_metadata: Dict[str, Any]) -> Dict[bytes, bytes]:
        metadata = {
            "file_type": "stats_trace",
            "ruleset_name": self.rules.name,
            "rules_checksum": self.rules.checksum(),
            "shop_slots": self.rules.shop_slots,
            "reroll_cost": self.rules.reroll_cost,
            "rows": len(self._rows),
            "build_info": build_metadata,
        }
        return {
            key.encode(): json.dumps(value).encode()
            for key, value in metadata.items()
        }


class StatsTraceReader:
    """Reads a stats trace back as a DataFrame plus decoded metadata."""

    def __init__(self, data_dir: Path):
        self.data_dir = Path(data_dir)

    def read(self, filename: str = TRACE_FILENAME) -> Tuple[pd.DataFrame, Dict[str, Any]]:
        file_path = self.data_dir / filename
        if not file_path.exists():
            raise FileNotFoundError(f"Stats trace not found: {file_path}")

        table = pq.read_table(file_path)
        metadata = {}
        for key, value in (table.schema.metadata or {}).items():
            try:
                metadata[key.decode()] = json.loads(value.decode())
            except (UnicodeDecodeError, json.JSONDecodeError):
                metadata[key.decode()] = value.decode()
        return table.to_pandas(), metadata


def create_build_metadata(git_commit: Optional[str] = None) -> Dict[str, Any]:
    """Build provenance stamped into every written trace."""
    metadata = {"timestamp": datetime.now().isoformat()}

    if git_commit is None:
        try:
            result = subprocess.run(
                ["git", "rev-parse", "HEAD"],
                capture_output=True,
                text=True,
                timeout=5,
            )
            if result.returncode == 0:
                metadata["git_commit"] = result.stdout.strip()
        except (subprocess.TimeoutExpired, FileNotFoundError):
            pass
    else:
        metadata["git_commit"] = git_commit

    metadata["pandas_version"] = pd.__version__
    metadata["pyarrow_version"] = pa.__version__
    metadata["numpy_version"] = np.__version__
    return metadata
