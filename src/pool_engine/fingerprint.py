"""
Change fingerprints for snapshot deduplication.

Two digests are computed from a shared field registry:
- the pre-filter fingerprint, evaluated at the snapshot source boundary
  (SnapshotGate) to avoid forwarding snapshots that look unchanged;
- the authoritative fingerprint, evaluated by the synchronizer on every
  forwarded snapshot to decide whether the pool state is rebuilt.

Each fingerprint is declared as a set of field names, and the pre-filter set
must stay a strict subset of the authoritative set. Otherwise the cheap
filter could suppress a snapshot the authoritative gate would have accepted,
leaving the pool state stale.
"""

import hashlib
import json
from typing import Any, Callable, Dict, FrozenSet, List, Optional

from pool_mechanics.errors import ConfigurationError
from pool_engine.snapshot import ObservedInventory, Snapshot

FieldExtractor = Callable[[Snapshot], Any]


def _sorted_players(snapshot: Snapshot) -> List[ObservedInventory]:
    return sorted(snapshot.players, key=lambda p: p.name)


def _unit_multiset(units) -> List[List[Any]]:
    # Position on board/bench is irrelevant to every consumer.
    return sorted([u.form, u.star_level] for u in units)


FIELD_EXTRACTORS: Dict[str, FieldExtractor] = {
    "total_units": lambda s: s.total_units,
    "stage": lambda s: s.stage,
    "observer_level": lambda s: s.observer_level or 0,
    "player_count": lambda s: s.player_count,
    "shops": lambda s: [[p.name, [slot or "" for slot in p.shop]] for p in _sorted_players(s)],
    "player_levels": lambda s: [[p.name, p.level] for p in _sorted_players(s)],
    "boards": lambda s: [[p.name, _unit_multiset(p.board)] for p in _sorted_players(s)],
    "benches": lambda s: [[p.name, _unit_multiset(p.bench)] for p in _sorted_players(s)],
}

PREFILTER_FIELDS: FrozenSet[str] = frozenset(
    {"total_units", "stage", "observer_level", "player_count", "shops"}
)

AUTHORITATIVE_FIELDS: FrozenSet[str] = PREFILTER_FIELDS | frozenset(
    {"player_levels", "boards", "benches"}
)


def check_subset_invariant(
    prefilter: FrozenSet[str] = PREFILTER_FIELDS,
    authoritative: FrozenSet[str] = AUTHORITATIVE_FIELDS,
) -> None:
    """Raise ConfigurationError unless prefilter ⊂ authoritative ⊆ registry."""
    unknown = (prefilter | authoritative) - set(FIELD_EXTRACTORS)
    if unknown:
        raise ConfigurationError(f"Fingerprint fields without an extractor: {sorted(unknown)}")
    if not prefilter < authoritative:
        extra = sorted(prefilter - authoritative)
        raise ConfigurationError(
            "Pre-filter fingerprint must be a strict subset of the authoritative "
            f"fingerprint (pre-filter-only fields: {extra})"
        )


check_subset_invariant()


def fingerprint_fields(snapshot: Snapshot, fields: FrozenSet[str]) -> Dict[str, Any]:
    """The raw digest input, keyed by field name."""
    return {name: FIELD_EXTRACTORS[name](snapshot) for name in sorted(fields)}


def fingerprint(snapshot: Snapshot, fields: FrozenSet[str] = AUTHORITATIVE_FIELDS) -> str:
    payload = json.dumps(fingerprint_fields(snapshot, fields), sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(payload.encode()).hexdigest()


def prefilter_fingerprint(snapshot: Snapshot) -> str:
    return fingerprint(snapshot, PREFILTER_FIELDS)


def authoritative_fingerprint(snapshot: Snapshot) -> str:
    return fingerprint(snapshot, AUTHORITATIVE_FIELDS)


class SnapshotGate:
    """
    Source-side pre-filter: forwards a snapshot only when its coarse
    fingerprint differs from the last forwarded one.

    Changes confined to authoritative-only fields (an opponent's level, a
    same-size board swap) are invisible to the coarse digest. Setting
    `max_consecutive_suppressed` forces a snapshot through after that many
    suppressions in a row so such changes are picked up within a bounded
    number of polls.

    Snapshots are digested with the observer level resolved from the
    observer's own player entry, the same way the synchronizer resolves it,
    so a level-up is never hidden by a source that omits observerLevel.
    """

    def __init__(
        self,
        observer: Optional[str] = None,
        max_consecutive_suppressed: Optional[int] = None,
    ):
        if max_consecutive_suppressed is not None and max_consecutive_suppressed < 1:
            raise ValueError("max_consecutive_suppressed must be at least 1")
        self.observer = observer
        self.max_consecutive_suppressed = max_consecutive_suppressed
        self._last_fingerprint: Optional[str] = None
        self._streak = 0
        self.forwarded = 0
        self.suppressed = 0

    def admit(self, snapshot: Snapshot) -> bool:
        fp = prefilter_fingerprint(snapshot.with_observer(self.observer))
        if fp == self._last_fingerprint:
            limit = self.max_consecutive_suppressed
            if limit is None or self._streak < limit:
                self._streak += 1
                self.suppressed += 1
                return False
        self._last_fingerprint = fp
        self._streak = 0
        self.forwarded += 1
        return True

    def reset(self) -> None:
        self._last_fingerprint = None
        self._streak = 0
        self.forwarded = 0
        self.suppressed = 0
