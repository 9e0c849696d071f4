"""
Shop draw probabilities against a reconstructed pool.

Module-level functions are the pure formulas; PoolProbabilityCalculator
binds them to a catalog, a ruleset and an availability resolver and turns a
(PoolState, TrackedTarget, confidence) query into TargetStats.
"""

import math
from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence, Tuple, Union

import numpy as np

from pool_mechanics.errors import ConfigurationError
from pool_mechanics.rarity import Rarity, Tier
from pool_mechanics.rules import PoolRuleset
from pool_mechanics.unit_catalog import UnitCatalog, UnitInfo
from pool_engine.availability import AvailabilityResolver
from pool_engine.pool_state import PoolState

Rolls = Union[int, float]


def _clamp01(value: float) -> float:
    return float(np.clip(value, 0.0, 1.0))


def validate_confidence(confidence: float) -> float:
    try:
        c = float(confidence)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Confidence must be a number, got {confidence!r}") from None
    if not 0.0 < c < 1.0:
        raise ConfigurationError(f"Confidence must be in (0, 1), got {c}")
    return c


def per_slot_normal(
    rarity_chance: float,
    wild_boost: float,
    remaining: float,
    relevant_pool: float,
    other_pool: float,
) -> float:
    """
    One shop slot landing on a normal-pool target.

    The denominator spans both tiers of the rarity: a slot draws uniformly
    over every same-rarity copy, only the numerator is tier specific.
    """
    total_pool = max(0.0, relevant_pool) + max(0.0, other_pool)
    if total_pool <= 0:
        return 0.0
    share = max(0.0, remaining) / total_pool
    return _clamp01((1.0 - wild_boost) * rarity_chance * share)


def per_slot_wild(
    rarity_chance: float,
    wild_boost: float,
    remaining: float,
    tier_capacity: int,
    wild_units: int,
    visible_elsewhere: float,
) -> float:
    """One shop slot landing on an alternate-pool target."""
    if wild_units <= 0:
        return 0.0
    total_wild = max(1.0, tier_capacity * wild_units - max(0.0, visible_elsewhere))
    return _clamp01(wild_boost * rarity_chance * max(0.0, remaining) / total_wild)


def per_refresh(per_slot: float, slots: int) -> float:
    """At least one of `slots` independent slots hits."""
    return _clamp01(1.0 - (1.0 - _clamp01(per_slot)) ** slots)


def rolls_for_confidence(p: float, confidence: float) -> Rolls:
    """Refreshes needed to hit at least once with the given confidence."""
    c = validate_confidence(confidence)
    p = _clamp01(p)
    if p <= 0.0:
        return math.inf
    if p >= 1.0:
        return 1
    return max(1, math.ceil(math.log(1.0 - c) / math.log(1.0 - p)))


def combine_per_refresh(probabilities: Iterable[float]) -> float:
    """Probability that at least one of several independent targets hits on one refresh."""
    values = np.clip(np.fromiter(probabilities, dtype=float), 0.0, 1.0)
    if values.size == 0:
        return 0.0
    return _clamp01(1.0 - float(np.prod(1.0 - values)))


@dataclass(frozen=True)
class TrackedTarget:
    base_form: str
    evolution_family: Tuple[str, ...]
    rarity: Rarity
    tier: Tier
    is_alternate: bool
    copies_owned_by_observer: int = 0
    copies_needed_for_next_star: int = 3
    enabled: bool = True

    @property
    def is_maxed(self) -> bool:
        return self.copies_owned_by_observer >= self.copies_needed_for_next_star

    @classmethod
    def from_unit(
        cls,
        unit: UnitInfo,
        owned: int = 0,
        enabled: bool = True,
        is_alternate: Optional[bool] = None,
    ) -> "TrackedTarget":
        """`is_alternate` overrides the catalog flag when the user toggles the wild pool."""
        return cls(
            base_form=unit.base_form,
            evolution_family=unit.evolution_family,
            rarity=unit.rarity,
            tier=unit.tier,
            is_alternate=unit.is_alternate if is_alternate is None else is_alternate,
            copies_owned_by_observer=owned,
            copies_needed_for_next_star=unit.copies_needed,
            enabled=enabled,
        )


@dataclass(frozen=True)
class TargetStats:
    """
    Result of one target query.

    A maxed target needs no more copies: it reports is_maxed with zero
    probabilities and infinite rolls and cost, the same as any other target
    that will never be hit. Maxed is decided before availability or pool
    state are consulted.
    """

    base_form: str
    available: bool = True
    reason: Optional[str] = None
    is_maxed: bool = False
    is_alternate: bool = False
    per_slot: float = 0.0
    per_refresh: float = 0.0
    rolls: Rolls = math.inf
    expected_cost: float = math.inf
    rarity_chance: float = 0.0
    pool_remaining: int = 0
    max_copies: int = 0
    copies_owned: int = 0
    copies_needed: int = 0
    is_impossible: bool = False
    is_danger: bool = False


@dataclass(frozen=True)
class CombinedStats:
    combined_per_refresh: float = 0.0
    rolls: Rolls = math.inf
    expected_cost: float = math.inf
    expected_refreshes: float = math.inf
    targets: Tuple[TargetStats, ...] = field(default_factory=tuple)

    @property
    def included(self) -> int:
        return len(self.targets)


class PoolProbabilityCalculator:
    """
    Stateless query evaluator:
      single_target_stats(state, target, confidence) -> TargetStats
      combined_stats(state, targets, confidence)      -> CombinedStats

    Holds only read-only tables; the pool itself is always passed in.
    """

    def __init__(
        self,
        catalog: UnitCatalog,
        rules: PoolRuleset,
        resolver: Optional[AvailabilityResolver] = None,
    ):
        self.catalog = catalog
        self.rules = rules
        self.resolver = resolver or AvailabilityResolver(catalog, rules)

    def require_target(self, target: TrackedTarget) -> UnitInfo:
        """Catalog entry for the target; its rarity and tier must agree with it."""
        unit = self.catalog.require(target.base_form)
        if (target.rarity, target.tier) != (unit.rarity, unit.tier):
            raise ConfigurationError(
                f"Target {target.base_form} is {target.rarity.value}/{target.tier.name}, "
                f"catalog says {unit.rarity.value}/{unit.tier.name}"
            )
        return unit

    def maxed_stats(self, target: TrackedTarget) -> TargetStats:
        capacity = self.rules.capacity(target.rarity).for_tier(target.tier)
        return TargetStats(
            base_form=target.base_form,
            is_maxed=True,
            is_alternate=target.is_alternate,
            max_copies=capacity,
            copies_owned=target.copies_owned_by_observer,
            copies_needed=target.copies_needed_for_next_star,
        )

    # ------------ Public API ------------

    def single_target_stats(self, state: PoolState, target: TrackedTarget, confidence: float) -> TargetStats:
        confidence = validate_confidence(confidence)
        unit = self.require_target(target)
        if target.is_maxed:
            return self.maxed_stats(target)

        capacity = self.rules.capacity(target.rarity).for_tier(target.tier)
        base = dict(
            base_form=target.base_form,
            is_alternate=target.is_alternate,
            max_copies=capacity,
            copies_owned=target.copies_owned_by_observer,
            copies_needed=target.copies_needed_for_next_star,
        )

        availability = self.resolver.is_available(unit)
        if not availability:
            return TargetStats(available=False, reason=availability.reason, **base)
        if state.observer_level is None:
            return TargetStats(available=False, reason="Observer level unknown", **base)

        rarity_chance = self.rules.rarity_chance(state.observer_level, target.rarity)
        remaining = state.family_remaining(target.base_form, capacity)
        owned = target.copies_owned_by_observer
        needed = target.copies_needed_for_next_star
        impossible = remaining + owned < needed
        base.update(
            rarity_chance=rarity_chance,
            pool_remaining=remaining,
            is_impossible=impossible,
            is_danger=not impossible and remaining + owned < needed + 2,
        )

        if target.is_alternate:
            p_slot = per_slot_wild(
                rarity_chance,
                state.wild_boost,
                remaining,
                capacity,
                self.resolver.wild_unit_counts(target.rarity).get(target.tier),
                state.wild_elsewhere(target.rarity).get(target.tier),
            )
        else:
            totals = self.resolver.pool_totals(target.rarity)
            reductions = state.reductions(target.rarity)
            p_slot = per_slot_normal(
                rarity_chance,
                state.wild_boost,
                remaining,
                max(0, totals.get(target.tier) - reductions.get(target.tier)),
                max(0, totals.get(target.tier.other) - reductions.get(target.tier.other)),
            )

        p_refresh = per_refresh(p_slot, self.rules.shop_slots)
        rolls = rolls_for_confidence(p_refresh, confidence)
        return TargetStats(
            per_slot=p_slot,
            per_refresh=p_refresh,
            rolls=rolls,
            expected_cost=rolls * self.rules.reroll_cost,
            **base,
        )

    def combined_stats(
        self, state: PoolState, targets: Sequence[TrackedTarget], confidence: float
    ) -> CombinedStats:
        confidence = validate_confidence(confidence)
        stats = tuple(
            self.single_target_stats(state, t, confidence) for t in targets if t.enabled
        )
        p = combine_per_refresh(s.per_refresh for s in stats)
        rolls = rolls_for_confidence(p, confidence)
        return CombinedStats(
            combined_per_refresh=p,
            rolls=rolls,
            expected_cost=rolls * self.rules.reroll_cost,
            expected_refreshes=(1.0 / p) if p > 0 else math.inf,
            targets=stats,
        )
