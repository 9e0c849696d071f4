from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from .errors import ConfigurationError
from .rarity import Rarity, Tier


def normalize_form(name: str) -> str:
    """Canonical spelling of a unit form: stripped, upper-case."""
    return name.strip().upper()


@dataclass(frozen=True)
class UnitInfo:
    """Immutable description of one evolution family in the pool"""

    base_form: str
    rarity: Rarity
    evolution_family: Tuple[str, ...]
    max_tier: int
    is_alternate: bool = False
    requires_reveal: bool = False

    @property
    def tier(self) -> Tier:
        return Tier.from_max_tier(self.max_tier)

    @property
    def copies_needed(self) -> int:
        return self.tier.copies_needed

    def __str__(self) -> str:
        wild = " wild" if self.is_alternate else ""
        return f"{self.base_form} ({self.rarity.value} {self.max_tier}★{wild})"


class UnitCatalog:
    """
    Lookup from any evolution form to the family it shares a pool slot with.

    Built once from the static EvolutionFamily table; read-only afterwards.
    """

    def __init__(self, units: Iterable[UnitInfo]):
        self._by_base: Dict[str, UnitInfo] = {}
        self._by_form: Dict[str, UnitInfo] = {}

        for unit in units:
            if unit.base_form in self._by_base:
                raise ConfigurationError(f"Duplicate evolution family: {unit.base_form}")
            self._by_base[unit.base_form] = unit
            for form in unit.evolution_family:
                owner = self._by_form.get(form)
                if owner is not None and owner.base_form != unit.base_form:
                    raise ConfigurationError(
                        f"Form {form} belongs to both {owner.base_form} and {unit.base_form}"
                    )
                self._by_form[form] = unit

    def __len__(self) -> int:
        return len(self._by_base)

    def __contains__(self, form: str) -> bool:
        return normalize_form(form) in self._by_form

    def resolve(self, form: str) -> Optional[UnitInfo]:
        """Family for `form`, or None if the form is not in the table."""
        if not form:
            return None
        return self._by_form.get(normalize_form(form))

    def require(self, form: str) -> UnitInfo:
        unit = self.resolve(form)
        if unit is None:
            raise ConfigurationError(f"Unknown unit or evolution family: {form!r}")
        return unit

    def units(
        self,
        rarity: Optional[Rarity] = None,
        tier: Optional[Tier] = None,
        alternate: Optional[bool] = None,
    ) -> List[UnitInfo]:
        """Families filtered by rarity, tier and pool membership."""
        selected = []
        for unit in self._by_base.values():
            if rarity is not None and unit.rarity is not rarity:
                continue
            if tier is not None and unit.tier is not tier:
                continue
            if alternate is not None and unit.is_alternate != alternate:
                continue
            selected.append(unit)
        return selected

    @classmethod
    def from_table(cls, table: Mapping[str, Mapping]) -> "UnitCatalog":
        """
        Build a catalog from the EvolutionFamily table.

        Expected shape (keys are base forms):
            {"PICHU": {"rarity": "common", "forms": ["PICHU", "PIKACHU", "RAICHU"],
                       "maxTier": 3, "wild": false, "reveal": false}, ...}
        """
        units = []
        for base_form, row in table.items():
            base = normalize_form(base_form)
            if "rarity" not in row:
                raise ConfigurationError(f"Evolution family {base} has no rarity")
            forms = tuple(normalize_form(f) for f in row.get("forms", [base]))
            if base not in forms:
                forms = (base,) + forms
            max_tier = int(row.get("maxTier", row.get("max_tier", len(forms))))
            if max_tier not in (2, 3):
                raise ConfigurationError(
                    f"Evolution family {base} has invalid maxTier {max_tier}"
                )
            units.append(
                UnitInfo(
                    base_form=base,
                    rarity=Rarity.parse(row["rarity"]),
                    evolution_family=forms,
                    max_tier=max_tier,
                    is_alternate=bool(row.get("wild", row.get("isAlternate", False))),
                    requires_reveal=bool(row.get("reveal", row.get("requiresReveal", False))),
                )
            )
        return cls(units)


# Worked example of the EvolutionFamily table. Real deployments load theirs
# with replay_io.load_static_tables().
EXAMPLE_FAMILIES: Dict[str, Dict] = {
    # common
    "PICHU": {"rarity": "common", "forms": ["PICHU", "PIKACHU", "RAICHU"], "maxTier": 3},
    "BULBASAUR": {"rarity": "common", "forms": ["BULBASAUR", "IVYSAUR", "VENUSAUR"], "maxTier": 3},
    "CHARMANDER": {"rarity": "common", "forms": ["CHARMANDER", "CHARMELEON", "CHARIZARD"], "maxTier": 3},
    "SQUIRTLE": {"rarity": "common", "forms": ["SQUIRTLE", "WARTORTLE", "BLASTOISE"], "maxTier": 3},
    "MAGIKARP": {"rarity": "common", "forms": ["MAGIKARP", "GYARADOS"], "maxTier": 2},
    "SANDSHREW": {"rarity": "common", "forms": ["SANDSHREW", "SANDSLASH"], "maxTier": 2, "reveal": True},
    "RATTATA": {"rarity": "common", "forms": ["RATTATA", "RATICATE"], "maxTier": 2, "wild": True},
    "ZUBAT": {"rarity": "common", "forms": ["ZUBAT", "GOLBAT", "CROBAT"], "maxTier": 3, "wild": True},
    # uncommon
    "ABRA": {"rarity": "uncommon", "forms": ["ABRA", "KADABRA", "ALAKAZAM"], "maxTier": 3},
    "MACHOP": {"rarity": "uncommon", "forms": ["MACHOP", "MACHOKE", "MACHAMP"], "maxTier": 3},
    "SLOWPOKE": {"rarity": "uncommon", "forms": ["SLOWPOKE", "SLOWBRO"], "maxTier": 2},
    "GROWLITHE": {"rarity": "uncommon", "forms": ["GROWLITHE", "ARCANINE"], "maxTier": 2, "reveal": True},
    "PIDGEY": {"rarity": "uncommon", "forms": ["PIDGEY", "PIDGEOTTO", "PIDGEOT"], "maxTier": 3, "wild": True},
    # rare
    "LARVITAR": {"rarity": "rare", "forms": ["LARVITAR", "PUPITAR", "TYRANITAR"], "maxTier": 3},
    "BAGON": {"rarity": "rare", "forms": ["BAGON", "SHELGON", "SALAMENCE"], "maxTier": 3},
    "ONIX": {"rarity": "rare", "forms": ["ONIX", "STEELIX"], "maxTier": 2},
    "MEOWTH": {"rarity": "rare", "forms": ["MEOWTH", "PERSIAN"], "maxTier": 2, "wild": True, "reveal": True},
    # epic
    "BELDUM": {"rarity": "epic", "forms": ["BELDUM", "METANG", "METAGROSS"], "maxTier": 3},
    "GIBLE": {"rarity": "epic", "forms": ["GIBLE", "GABITE", "GARCHOMP"], "maxTier": 3},
    # ultra
    "DEINO": {"rarity": "ultra", "forms": ["DEINO", "ZWEILOUS", "HYDREIGON"], "maxTier": 3},
}

DEFAULT_CATALOG = UnitCatalog.from_table(EXAMPLE_FAMILIES)
