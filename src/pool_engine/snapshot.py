"""
Snapshot normalization adapter.

The snapshot source hands over whatever shape its page scraper produced:
either the canonical {"stage", "players": [...]} form, or the extractor's
keyed maps (playerBoards / playerBenches / playerShops / playerLevels) with
units given as bare strings or as {"name", "stars"} objects. Everything is
converted here, once, into immutable Snapshot / ObservedInventory values so
nothing downstream has to type-check unit entries again.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from pool_mechanics.rules import SHOP_SLOTS
from pool_mechanics.unit_catalog import normalize_form

VALID_STAR_LEVELS = (1, 2, 3)


@dataclass(frozen=True)
class UnitSighting:
    form: str
    star_level: int = 1

    def __str__(self) -> str:
        return f"{self.form}{self.star_level}"


@dataclass(frozen=True)
class ObservedInventory:
    """One player's visible units on a single polling tick."""

    name: str
    level: Optional[int] = None
    board: Tuple[UnitSighting, ...] = ()
    bench: Tuple[UnitSighting, ...] = ()
    shop: Tuple[Optional[str], ...] = ()

    @property
    def units(self) -> Tuple[UnitSighting, ...]:
        return self.board + self.bench

    @property
    def shop_units(self) -> Tuple[str, ...]:
        return tuple(s for s in self.shop if s)

    @property
    def unit_count(self) -> int:
        return len(self.board) + len(self.bench) + len(self.shop_units)


@dataclass(frozen=True)
class Snapshot:
    stage: int = 0
    players: Tuple[ObservedInventory, ...] = ()
    observer_level: Optional[int] = None
    metadata: Mapping[str, Any] = field(default_factory=dict, compare=False)

    @property
    def player_count(self) -> int:
        return len(self.players)

    @property
    def total_units(self) -> int:
        return sum(p.unit_count for p in self.players)

    def player(self, name: str) -> Optional[ObservedInventory]:
        for p in self.players:
            if p.name == name:
                return p
        return None

    def players_by_name(self) -> Dict[str, ObservedInventory]:
        return {p.name: p for p in self.players}

    def with_observer(self, observer: Optional[str]) -> "Snapshot":
        """
        Fill in observer_level from the observer's own player entry when the
        source did not report it separately.
        """
        if self.observer_level is not None or observer is None:
            return self
        inventory = self.player(observer)
        if inventory is None or inventory.level is None:
            return self
        return replace(self, observer_level=inventory.level)


def _to_int(value: Any, what: str) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid {what}: {value!r}") from None


def normalize_unit(entry: Any) -> Optional[UnitSighting]:
    """Convert a string, mapping or UnitSighting entry. Empty entries give None."""
    if entry is None:
        return None
    if isinstance(entry, UnitSighting):
        return entry
    if isinstance(entry, str):
        name = entry.strip()
        return UnitSighting(normalize_form(name), 1) if name else None
    if isinstance(entry, Mapping):
        name = entry.get("form") or entry.get("name") or ""
        if not isinstance(name, str) or not name.strip():
            return None
        stars = entry.get("starLevel", entry.get("stars", 1)) or 1
        stars = _to_int(stars, "star level")
        if stars not in VALID_STAR_LEVELS:
            raise ValueError(f"Invalid star level {stars} for unit {name!r}")
        return UnitSighting(normalize_form(name), stars)
    raise ValueError(f"Unrecognized unit entry: {entry!r}")


def normalize_units(entries: Optional[Iterable[Any]]) -> Tuple[UnitSighting, ...]:
    if not entries:
        return ()
    units = (normalize_unit(e) for e in entries)
    return tuple(u for u in units if u is not None)


def normalize_shop(entries: Optional[Iterable[Any]], slots: int = SHOP_SLOTS) -> Tuple[Optional[str], ...]:
    """Shop slots as base-form names, padded with None to the slot count."""
    shop: List[Optional[str]] = []
    for entry in entries or ():
        unit = normalize_unit(entry)
        shop.append(unit.form if unit is not None else None)
    if len(shop) > slots:
        raise ValueError(f"Shop has {len(shop)} slots, expected at most {slots}")
    shop.extend([None] * (slots - len(shop)))
    return tuple(shop)


def _normalize_player(raw: Mapping[str, Any], slots: int) -> ObservedInventory:
    name = raw.get("name")
    if not isinstance(name, str) or not name.strip():
        raise ValueError(f"Player entry without a name: {raw!r}")
    return ObservedInventory(
        name=name.strip(),
        level=_to_int(raw.get("level"), "player level"),
        board=normalize_units(raw.get("board")),
        bench=normalize_units(raw.get("bench")),
        shop=normalize_shop(raw.get("shop"), slots),
    )


def _players_from_keyed_maps(raw: Mapping[str, Any], slots: int) -> List[ObservedInventory]:
    boards = raw.get("playerBoards") or {}
    benches = raw.get("playerBenches") or {}
    shops = raw.get("playerShops") or {}
    levels = raw.get("playerLevels") or {}

    # A player may appear only in bench or shop data; all of them count.
    names = set(boards) | set(benches) | set(shops) | set(levels)
    players = []
    for name in sorted(names):
        players.append(
            _normalize_player(
                {
                    "name": name,
                    "level": levels.get(name),
                    "board": boards.get(name),
                    "bench": benches.get(name),
                    "shop": shops.get(name),
                },
                slots,
            )
        )
    return players


def normalize_snapshot(raw: Any, slots: int = SHOP_SLOTS) -> Snapshot:
    """Convert any supported raw snapshot shape into a canonical Snapshot."""
    if isinstance(raw, Snapshot):
        return raw
    if not isinstance(raw, Mapping):
        raise ValueError(f"Snapshot must be a mapping, got {type(raw).__name__}")

    stage = raw.get("stage", raw.get("currentStage"))
    observer_level = raw.get("observerLevel", raw.get("localPlayerLevel"))

    if "players" in raw:
        entries = raw["players"] or []
        if isinstance(entries, Mapping):
            entries = [dict(v, name=v.get("name", k)) for k, v in entries.items()]
        players = [_normalize_player(p, slots) for p in entries]
    else:
        players = _players_from_keyed_maps(raw, slots)

    seen = set()
    for p in players:
        if p.name in seen:
            raise ValueError(f"Duplicate player in snapshot: {p.name!r}")
        seen.add(p.name)

    metadata = {k: raw[k] for k in ("timestamp", "sessionId") if k in raw}
    return Snapshot(
        stage=_to_int(stage, "stage") or 0,
        players=tuple(players),
        observer_level=_to_int(observer_level, "observer level"),
        metadata=metadata,
    )
