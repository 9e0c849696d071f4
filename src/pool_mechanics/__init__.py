from .errors import ConfigurationError, IncompleteSnapshot, PoolEngineError
from .rarity import RARITY_ORDER, Rarity, Tier
from .rules import DEFAULT_RULES, PoolCapacity, PoolRuleset, build_ruleset
from .unit_catalog import DEFAULT_CATALOG, UnitCatalog, UnitInfo, normalize_form

__all__ = [
    "ConfigurationError",
    "IncompleteSnapshot",
    "PoolEngineError",
    "RARITY_ORDER",
    "Rarity",
    "Tier",
    "DEFAULT_RULES",
    "PoolCapacity",
    "PoolRuleset",
    "build_ruleset",
    "DEFAULT_CATALOG",
    "UnitCatalog",
    "UnitInfo",
    "normalize_form",
]
