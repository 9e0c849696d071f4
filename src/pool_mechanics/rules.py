import hashlib
import json
from typing import Dict, FrozenSet, Mapping, Optional, Protocol
from dataclasses import dataclass, field

from .errors import ConfigurationError
from .rarity import Rarity, Tier


# Game-balance constants. Their provenance is the game design, so they are
# configuration here, never re-derived.
STAR_COPY_WEIGHTS: Dict[int, int] = {1: 1, 2: 3, 3: 9}
SHOP_SLOTS = 6
REROLL_COST = 1
PVE_WILD_BONUS = 0.05
WILD_BONUS_PER_STAR = 0.01


class WildBoostPolicy(Protocol):
    def __call__(self, stage: int, wild_stars: int) -> float: ...


@dataclass(frozen=True)
class PoolCapacity:
    """Copies of each unit that exist in the shared pool, per evolution tier."""

    two_star: int
    three_star: int

    def for_tier(self, tier: Tier) -> int:
        return self.two_star if tier is Tier.TWO_STAR else self.three_star


@dataclass(frozen=True)
class PoolRuleset:
    # Identification
    name: str = "pac-default"

    # Static tables
    pool_capacity: Mapping[Rarity, PoolCapacity] = field(default_factory=dict)
    shop_odds: Mapping[int, Mapping[Rarity, float]] = field(default_factory=dict)
    pve_stages: FrozenSet[int] = frozenset()

    # Balance constants
    star_copy_weights: Mapping[int, int] = field(
        default_factory=lambda: dict(STAR_COPY_WEIGHTS)
    )
    shop_slots: int = SHOP_SLOTS
    reroll_cost: float = REROLL_COST
    pve_wild_bonus: float = PVE_WILD_BONUS
    wild_bonus_per_star: float = WILD_BONUS_PER_STAR

    # Optional override for the wild boost formula (callable)
    calculate_wild_boost: Optional[WildBoostPolicy] = None

    def is_pool_rarity(self, rarity: Rarity) -> bool:
        capacity = self.pool_capacity.get(rarity)
        return capacity is not None and (capacity.two_star > 0 or capacity.three_star > 0)

    def capacity(self, rarity: Rarity) -> PoolCapacity:
        try:
            return self.pool_capacity[rarity]
        except KeyError:
            raise ConfigurationError(
                f"No pool capacity configured for rarity {rarity.value!r}"
            ) from None

    def rarity_chance(self, level: int, rarity: Rarity) -> float:
        """Probability that one shop slot rolls `rarity` at player `level`."""
        if level not in self.shop_odds:
            raise ConfigurationError(f"No shop odds configured for level {level}")
        percent = self.shop_odds[level].get(rarity, 0.0)
        return max(0.0, min(1.0, percent / 100.0))

    def copies_for_star(self, star_level: int) -> int:
        try:
            return self.star_copy_weights[star_level]
        except KeyError:
            raise ValueError(f"Invalid star level: {star_level}") from None

    def is_pve_stage(self, stage: Optional[int]) -> bool:
        return stage is not None and stage in self.pve_stages

    def wild_boost(self, stage: Optional[int], wild_stars: int) -> float:
        if self.calculate_wild_boost is not None:
            boost = self.calculate_wild_boost(stage or 0, wild_stars)
        else:
            boost = wild_stars * self.wild_bonus_per_star
            if self.is_pve_stage(stage):
                boost += self.pve_wild_bonus
        return max(0.0, min(1.0, boost))

    def checksum(self) -> str:
        """Stable digest of the tables, stamped into exported traces."""
        rules_dict = {
            "name": self.name,
            "pool_capacity": {
                r.value: [c.two_star, c.three_star]
                for r, c in sorted(self.pool_capacity.items(), key=lambda kv: kv[0].order)
            },
            "shop_odds": {
                str(level): {r.value: pct for r, pct in sorted(row.items(), key=lambda kv: kv[0].order)}
                for level, row in sorted(self.shop_odds.items())
            },
            "pve_stages": sorted(self.pve_stages),
            "star_copy_weights": {str(k): v for k, v in sorted(self.star_copy_weights.items())},
            "shop_slots": self.shop_slots,
            "reroll_cost": self.reroll_cost,
            "pve_wild_bonus": self.pve_wild_bonus,
            "wild_bonus_per_star": self.wild_bonus_per_star,
        }
        rules_json = json.dumps(rules_dict, sort_keys=True)
        return hashlib.sha256(rules_json.encode()).hexdigest()


def build_ruleset(
    pool_capacity: Mapping,
    shop_odds: Mapping,
    pve_stages=(),
    *,
    name: str = "custom",
    **overrides,
) -> PoolRuleset:
    """
    Build a ruleset from plain tables keyed by rarity names and level numbers.

    pool_capacity: {"common": {"twoStar": 18, "threeStar": 27}, ...}
    shop_odds:     {"1": {"common": 100}, "2": {...}, ...} (percent per slot)
    """
    capacity = {}
    for rarity_name, row in pool_capacity.items():
        try:
            capacity[Rarity.parse(rarity_name)] = PoolCapacity(
                two_star=int(row.get("twoStar", row.get("two_star", 0))),
                three_star=int(row.get("threeStar", row.get("three_star", 0))),
            )
        except AttributeError:
            raise ConfigurationError(
                f"Pool capacity for {rarity_name!r} must be a mapping, got {row!r}"
            ) from None

    odds = {}
    for level, row in shop_odds.items():
        try:
            level_key = int(level)
        except (TypeError, ValueError):
            raise ConfigurationError(f"Invalid shop odds level: {level!r}") from None
        odds[level_key] = {Rarity.parse(r): float(pct) for r, pct in row.items()}

    return PoolRuleset(
        name=name,
        pool_capacity=capacity,
        shop_odds=odds,
        pve_stages=frozenset(int(s) for s in pve_stages),
        **overrides,
    )


DEFAULT_RULES = build_ruleset(
    pool_capacity={
        "common": {"twoStar": 18, "threeStar": 27},
        "uncommon": {"twoStar": 13, "threeStar": 22},
        "rare": {"twoStar": 9, "threeStar": 18},
        "epic": {"twoStar": 7, "threeStar": 14},
        "ultra": {"twoStar": 5, "threeStar": 10},
    },
    shop_odds={
        1: {"common": 100},
        2: {"common": 100},
        3: {"common": 70, "uncommon": 30},
        4: {"common": 50, "uncommon": 40, "rare": 10},
        5: {"common": 36, "uncommon": 42, "rare": 20, "epic": 2},
        6: {"common": 25, "uncommon": 40, "rare": 30, "epic": 5},
        7: {"common": 20, "uncommon": 33, "rare": 35, "epic": 12},
        8: {"common": 15, "uncommon": 27, "rare": 38, "epic": 20},
        9: {"common": 10, "uncommon": 20, "rare": 40, "epic": 25, "ultra": 5},
    },
    pve_stages=(1, 2, 3, 10, 15, 20, 25, 30, 35, 40),
    name="pac-default",
)
