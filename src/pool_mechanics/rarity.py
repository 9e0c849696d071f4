from enum import Enum

from .errors import ConfigurationError


class Rarity(Enum):
    COMMON = "common"
    UNCOMMON = "uncommon"
    RARE = "rare"
    EPIC = "epic"
    ULTRA = "ultra"

    @classmethod
    def parse(cls, value) -> "Rarity":
        """Accept a Rarity or its table name (case-insensitive)."""
        if isinstance(value, Rarity):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ConfigurationError(f"Unknown rarity: {value!r}") from None

    @property
    def order(self) -> int:
        return RARITY_ORDER.index(self)

    def __lt__(self, other: "Rarity") -> bool:
        if not isinstance(other, Rarity):
            return NotImplemented
        return self.order < other.order


RARITY_ORDER = (
    Rarity.COMMON,
    Rarity.UNCOMMON,
    Rarity.RARE,
    Rarity.EPIC,
    Rarity.ULTRA,
)


class Tier(Enum):
    """Evolution line bucket a pool denominator is computed against."""

    TWO_STAR = "twoStar"
    THREE_STAR = "threeStar"

    @classmethod
    def from_max_tier(cls, max_tier: int) -> "Tier":
        if max_tier == 2:
            return cls.TWO_STAR
        if max_tier == 3:
            return cls.THREE_STAR
        raise ConfigurationError(f"Invalid max tier: {max_tier} (expected 2 or 3)")

    @property
    def other(self) -> "Tier":
        return Tier.THREE_STAR if self is Tier.TWO_STAR else Tier.TWO_STAR

    @property
    def copies_needed(self) -> int:
        """Star-weighted copies required to complete the line."""
        return 3 if self is Tier.TWO_STAR else 9
