import logging
import threading
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from pool_mechanics.errors import IncompleteSnapshot
from pool_mechanics.rules import DEFAULT_RULES, PoolRuleset
from pool_mechanics.unit_catalog import DEFAULT_CATALOG, UnitCatalog, normalize_form
from pool_engine.availability import AvailabilityResolver, RevealRegistry
from pool_engine.fingerprint import authoritative_fingerprint
from pool_engine.pool_state import PoolState, PoolStateBuilder
from pool_engine.probability import (
    CombinedStats,
    PoolProbabilityCalculator,
    TargetStats,
    TrackedTarget,
    validate_confidence,
)
from pool_engine.snapshot import ObservedInventory, Snapshot, normalize_snapshot

logger = logging.getLogger(__name__)

StateListener = Callable[[PoolState], None]


@dataclass
class SyncDiagnostics:
    snapshots_received: int = 0
    duplicates_skipped: int = 0
    rebuilds: int = 0
    incomplete_snapshots: int = 0
    last_unresolved_units: int = 0


class PoolEngine:
    """
    Per-match owner of the reconstructed pool.

    ingest() turns each forwarded snapshot into at most one PoolState
    replacement and one listener notification; queries are answered against
    whatever PoolState is current. One engine per match, reset() between
    matches.
    """

    def __init__(
        self,
        catalog: Optional[UnitCatalog] = None,
        rules: Optional[PoolRuleset] = None,
        observer: Optional[str] = None,
    ):
        self.catalog = catalog or DEFAULT_CATALOG
        self.rules = rules or DEFAULT_RULES
        self.observer = observer

        self.reveals = RevealRegistry(self.catalog)
        self.resolver = AvailabilityResolver(self.catalog, self.rules, self.reveals)
        self.calculator = PoolProbabilityCalculator(self.catalog, self.rules, self.resolver)
        self._builder = PoolStateBuilder(self.catalog, self.rules, observer)

        self._listeners: List[StateListener] = []
        self._guard = threading.Lock()

        self._state: Optional[PoolState] = None
        self._fingerprint: Optional[str] = None
        self._inventories: Dict[str, ObservedInventory] = {}
        self.diagnostics = SyncDiagnostics()

    # ------------ Subscription ------------

    def on_state_updated(self, listener: StateListener) -> Callable[[], None]:
        """Register a listener; returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ------------ State ------------

    @property
    def pool_state(self) -> Optional[PoolState]:
        return self._state

    @property
    def wild_boost(self) -> float:
        return self._state.wild_boost if self._state is not None else 0.0

    @property
    def fingerprint(self) -> Optional[str]:
        return self._fingerprint

    def _acquire(self, operation: str) -> None:
        if not self._guard.acquire(blocking=False):
            raise RuntimeError(f"{operation}() called while another ingest/reset is in progress")

    def _merge(self, snapshot: Snapshot) -> Snapshot:
        """Overlay the snapshot on the last-known inventories of every player seen this match."""
        for inventory in snapshot.players:
            self._inventories[inventory.name] = inventory
        return replace(snapshot, players=tuple(self._inventories[name] for name in sorted(self._inventories)))

    def ingest(self, raw: Any) -> bool:
        """
        Process one snapshot. Returns True when the pool state was replaced.

        Malformed snapshots raise ValueError before anything is touched.
        """
        snapshot = normalize_snapshot(raw, self.rules.shop_slots)
        self._acquire("ingest")
        try:
            self.diagnostics.snapshots_received += 1
            merged = self._merge(snapshot).with_observer(self.observer)
            fp = authoritative_fingerprint(merged)
            if fp == self._fingerprint:
                self.diagnostics.duplicates_skipped += 1
                logger.debug("Snapshot unchanged (stage %s), skipping rebuild", merged.stage)
                return False
            self._fingerprint = fp

            try:
                state = self._builder.rebuild(
                    merged.players,
                    stage=merged.stage,
                    observer_level=merged.observer_level,
                )
            except IncompleteSnapshot as e:
                self.diagnostics.incomplete_snapshots += 1
                self.diagnostics.last_unresolved_units = e.unresolved_units
                logger.warning("Keeping previous pool state: %s", e)
                return False

            self.diagnostics.rebuilds += 1
            self.diagnostics.last_unresolved_units = state.unresolved_units
            self._state = state
            logger.debug(
                "Pool state rebuilt at stage %s (wild boost %.2f)", state.stage, state.wild_boost
            )
            for listener in list(self._listeners):
                try:
                    listener(state)
                except Exception:
                    logger.exception("State listener %r failed", listener)
            return True
        finally:
            self._guard.release()

    def reset(self) -> None:
        """Forget everything observed this match."""
        self._acquire("reset")
        try:
            self._state = None
            self._fingerprint = None
            self._inventories.clear()
            self.reveals.reset()
            self.diagnostics = SyncDiagnostics()
            logger.info("Pool engine reset")
        finally:
            self._guard.release()

    def reveal_alternates(self, forms: Iterable[str]):
        """Record a mid-match reveal. Takes effect on the next query."""
        added = self.reveals.reveal(forms)
        if added:
            logger.info("Revealed: %s", ", ".join(sorted(added)))
        return added

    # ------------ Queries ------------

    def track(
        self,
        form: str,
        owned: Optional[int] = None,
        enabled: bool = True,
        wild: Optional[bool] = None,
    ) -> TrackedTarget:
        """
        Build a target for `form`. Ownership defaults to the star-weighted
        copies on the observer's board and bench in the current state; `wild`
        forces the target onto the alternate or normal pool.
        """
        unit = self.catalog.require(normalize_form(form))
        if owned is None:
            owned = self._state.owned_by_observer(unit.base_form) if self._state is not None else 0
        return TrackedTarget.from_unit(unit, owned=owned, enabled=enabled, is_alternate=wild)

    def get_single_target_stats(self, target: TrackedTarget, confidence: float) -> TargetStats:
        state = self._state
        if state is None:
            validate_confidence(confidence)
            self.calculator.require_target(target)
            if target.is_maxed:
                return self.calculator.maxed_stats(target)
            return TargetStats(base_form=target.base_form, available=False, reason="No pool state yet")
        return self.calculator.single_target_stats(state, target, confidence)

    def get_combined_stats(self, targets: Sequence[TrackedTarget], confidence: float) -> CombinedStats:
        state = self._state
        if state is None:
            validate_confidence(confidence)
            for t in targets:
                self.calculator.require_target(t)
            return CombinedStats()
        return self.calculator.combined_stats(state, targets, confidence)
