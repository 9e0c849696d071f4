import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, Iterable, Mapping, Optional

from pool_mechanics.errors import IncompleteSnapshot
from pool_mechanics.rarity import RARITY_ORDER, Rarity, Tier
from pool_mechanics.rules import PoolRuleset
from pool_mechanics.unit_catalog import UnitCatalog
from pool_engine.snapshot import ObservedInventory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TierCounts:
    two_star: int = 0
    three_star: int = 0

    def get(self, tier: Tier) -> int:
        return self.two_star if tier is Tier.TWO_STAR else self.three_star

    def add(self, tier: Tier, copies: int) -> "TierCounts":
        if tier is Tier.TWO_STAR:
            return TierCounts(self.two_star + copies, self.three_star)
        return TierCounts(self.two_star, self.three_star + copies)

    @property
    def total(self) -> int:
        return self.two_star + self.three_star


EMPTY_COUNTS = TierCounts()


@dataclass(frozen=True)
class PoolState:
    """
    Best-effort reconstruction of the shared pool after one accepted snapshot.

    Replaced wholesale on every rebuild; never mutated. Every count is
    star-weighted (1★ = 1 copy, 2★ = 3, 3★ = 9) and keyed by rarity, then
    evolution tier.
    """

    copies_consumed: Mapping[Rarity, TierCounts] = field(default_factory=dict)
    visible_reductions: Mapping[Rarity, TierCounts] = field(default_factory=dict)  # normal units in other shops
    wild_copies_consumed: Mapping[Rarity, TierCounts] = field(default_factory=dict)
    wild_visible_elsewhere: Mapping[Rarity, TierCounts] = field(default_factory=dict)
    family_copies_consumed: Mapping[str, int] = field(default_factory=dict)
    observer_copies: Mapping[str, int] = field(default_factory=dict)
    observer_level: Optional[int] = None
    stage: int = 0
    observer_wild_stars: int = 0
    wild_boost: float = 0.0
    unresolved_units: int = 0

    def consumed(self, rarity: Rarity) -> TierCounts:
        return self.copies_consumed.get(rarity, EMPTY_COUNTS)

    def reductions(self, rarity: Rarity) -> TierCounts:
        return self.visible_reductions.get(rarity, EMPTY_COUNTS)

    def wild_consumed(self, rarity: Rarity) -> TierCounts:
        return self.wild_copies_consumed.get(rarity, EMPTY_COUNTS)

    def wild_elsewhere(self, rarity: Rarity) -> TierCounts:
        return self.wild_visible_elsewhere.get(rarity, EMPTY_COUNTS)

    def remaining(self, rarity: Rarity, tier: Tier, capacity: int) -> int:
        """Copies of the rarity tier still in the pool; never negative."""
        return max(0, capacity - self.consumed(rarity).get(tier))

    def family_remaining(self, base_form: str, capacity: int) -> int:
        return max(0, capacity - self.family_copies_consumed.get(base_form, 0))

    def owned_by_observer(self, base_form: str) -> int:
        return self.observer_copies.get(base_form, 0)

    @property
    def is_empty(self) -> bool:
        return all(self.consumed(r).total == 0 for r in RARITY_ORDER)


class PoolStateBuilder:
    """
    Rebuilds a PoolState from the last-known inventory of every player.

    The builder holds no per-match state of its own; callers pass in the
    merged inventories so that disconnected players keep contributing.
    """

    def __init__(self, catalog: UnitCatalog, rules: PoolRuleset, observer: Optional[str] = None):
        self.catalog = catalog
        self.rules = rules
        self.observer = observer

    def rebuild(
        self,
        inventories: Iterable[ObservedInventory],
        stage: int = 0,
        observer_level: Optional[int] = None,
    ) -> PoolState:
        consumed: Dict[Rarity, TierCounts] = {}
        reductions: Dict[Rarity, TierCounts] = {}
        wild_consumed: Dict[Rarity, TierCounts] = {}
        wild_elsewhere: Dict[Rarity, TierCounts] = {}
        family = Counter()
        observer_copies = Counter()
        observer_wild_stars = 0
        unresolved = 0

        def count(acc: Dict[Rarity, TierCounts], rarity: Rarity, tier: Tier, copies: int) -> None:
            acc[rarity] = acc.get(rarity, EMPTY_COUNTS).add(tier, copies)

        for inventory in inventories:
            is_observer = inventory.name == self.observer

            for sighting in inventory.units:
                unit = self.catalog.resolve(sighting.form)
                if unit is None:
                    unresolved += 1
                    logger.debug("Skipping unknown unit %s on %s", sighting.form, inventory.name)
                    continue
                copies = self.rules.copies_for_star(sighting.star_level)
                count(consumed, unit.rarity, unit.tier, copies)
                family[unit.base_form] += copies
                if unit.is_alternate:
                    count(wild_consumed, unit.rarity, unit.tier, copies)
                    if is_observer:
                        observer_wild_stars += sighting.star_level
                    else:
                        count(wild_elsewhere, unit.rarity, unit.tier, copies)
                if is_observer:
                    observer_copies[unit.base_form] += copies

            for form in inventory.shop_units:
                unit = self.catalog.resolve(form)
                if unit is None:
                    unresolved += 1
                    logger.debug("Skipping unknown shop unit %s for %s", form, inventory.name)
                    continue
                # Shop units are always the 1★ base form.
                count(consumed, unit.rarity, unit.tier, 1)
                family[unit.base_form] += 1
                if unit.is_alternate:
                    count(wild_consumed, unit.rarity, unit.tier, 1)
                if not is_observer:
                    # Each sub-pool's denominator only shrinks by its own units.
                    if unit.is_alternate:
                        count(wild_elsewhere, unit.rarity, unit.tier, 1)
                    else:
                        count(reductions, unit.rarity, unit.tier, 1)

        if all(c.total == 0 for c in consumed.values()):
            raise IncompleteSnapshot(
                f"No rarity-resolvable units in snapshot ({unresolved} unresolved)",
                unresolved_units=unresolved,
            )

        return PoolState(
            copies_consumed=consumed,
            visible_reductions=reductions,
            wild_copies_consumed=wild_consumed,
            wild_visible_elsewhere=wild_elsewhere,
            family_copies_consumed=dict(family),
            observer_copies=dict(observer_copies),
            observer_level=observer_level,
            stage=stage,
            observer_wild_stars=observer_wild_stars,
            wild_boost=self.rules.wild_boost(stage, observer_wild_stars),
            unresolved_units=unresolved,
        )
