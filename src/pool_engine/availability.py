from dataclasses import dataclass
from typing import FrozenSet, Iterable, Optional, Set

from pool_mechanics.rarity import Rarity, Tier
from pool_mechanics.rules import PoolRuleset
from pool_mechanics.unit_catalog import UnitCatalog, UnitInfo, normalize_form
from pool_engine.pool_state import TierCounts

NOT_IN_POOL = "Not in pool"


@dataclass(frozen=True)
class Availability:
    available: bool
    reason: Optional[str] = None

    def __bool__(self) -> bool:
        return self.available


AVAILABLE = Availability(True)


class RevealRegistry:
    """
    Units revealed mid-match (regional or bonus-pick reveal).

    Reveals only accumulate; nothing is un-revealed before reset().
    """

    def __init__(self, catalog: UnitCatalog):
        self.catalog = catalog
        self._revealed: Set[str] = set()

    def reveal(self, forms: Iterable[str]) -> FrozenSet[str]:
        """Mark units revealed. Returns the base forms newly added."""
        added = set()
        for form in forms:
            unit = self.catalog.require(form)
            if unit.base_form not in self._revealed:
                self._revealed.add(unit.base_form)
                added.add(unit.base_form)
        return frozenset(added)

    def is_revealed(self, unit: UnitInfo) -> bool:
        return unit.base_form in self._revealed

    @property
    def revealed(self) -> FrozenSet[str]:
        return frozenset(self._revealed)

    def reset(self) -> None:
        self._revealed.clear()

    def __len__(self) -> int:
        return len(self._revealed)

    def __contains__(self, form: str) -> bool:
        return normalize_form(form) in self._revealed


class AvailabilityResolver:
    """Decides which units can currently appear in a shop, and how big each sub-pool is."""

    def __init__(self, catalog: UnitCatalog, rules: PoolRuleset, reveals: Optional[RevealRegistry] = None):
        self.catalog = catalog
        self.rules = rules
        self.reveals = reveals if reveals is not None else RevealRegistry(catalog)

    def is_available(self, unit: UnitInfo) -> Availability:
        if not self.rules.is_pool_rarity(unit.rarity):
            return Availability(False, NOT_IN_POOL)
        if self.rules.capacity(unit.rarity).for_tier(unit.tier) <= 0:
            return Availability(False, NOT_IN_POOL)
        if unit.requires_reveal and not self.reveals.is_revealed(unit):
            return Availability(False, f"{unit.base_form} has not been revealed this match")
        return AVAILABLE

    def _drawable(self, rarity: Rarity, alternate: bool):
        return [
            u for u in self.catalog.units(rarity=rarity, alternate=alternate)
            if self.is_available(u)
        ]

    def pool_totals(self, rarity: Rarity) -> TierCounts:
        """Copies of each tier in the normal pool: drawable families x per-unit capacity."""
        if not self.rules.is_pool_rarity(rarity):
            return TierCounts()
        capacity = self.rules.capacity(rarity)
        units = self._drawable(rarity, alternate=False)
        return TierCounts(
            two_star=capacity.two_star * sum(1 for u in units if u.tier is Tier.TWO_STAR),
            three_star=capacity.three_star * sum(1 for u in units if u.tier is Tier.THREE_STAR),
        )

    def wild_unit_counts(self, rarity: Rarity) -> TierCounts:
        """Number of drawable alternate units of each tier."""
        if not self.rules.is_pool_rarity(rarity):
            return TierCounts()
        units = self._drawable(rarity, alternate=True)
        return TierCounts(
            two_star=sum(1 for u in units if u.tier is Tier.TWO_STAR),
            three_star=sum(1 for u in units if u.tier is Tier.THREE_STAR),
        )
