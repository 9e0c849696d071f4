"""
Test suite for pool reconstruction and draw probabilities.

Tests include:
- Rules and catalog: odds lookup, wild boost, checksums, table validation
- Snapshot normalization: canonical and keyed-map shapes, malformed input
- Fingerprints: player-order independence, field sensitivity, subset invariant
- Pool state: star weighting, visible reductions, wild accounting, depletion
- Availability: pool membership, reveals, sub-pool sizes
- Probability: formula bounds, maxed short-circuit, worked scenarios
- I/O roundtrip: static tables, snapshot logs, Parquet stats trace
"""

import copy
import json
import math
import shutil
import tempfile
import unittest
from dataclasses import replace
from pathlib import Path

from pool_mechanics.errors import ConfigurationError, IncompleteSnapshot
from pool_mechanics.rarity import Rarity, Tier
from pool_mechanics.rules import DEFAULT_RULES, build_ruleset
from pool_mechanics.unit_catalog import DEFAULT_CATALOG, UnitCatalog

from pool_engine.snapshot import UnitSighting, normalize_snapshot, normalize_shop, normalize_unit
from pool_engine.fingerprint import (
    AUTHORITATIVE_FIELDS,
    FIELD_EXTRACTORS,
    PREFILTER_FIELDS,
    SnapshotGate,
    authoritative_fingerprint,
    check_subset_invariant,
    prefilter_fingerprint,
)
from pool_engine.pool_state import PoolState, PoolStateBuilder, TierCounts
from pool_engine.availability import NOT_IN_POOL, AvailabilityResolver, RevealRegistry
from pool_engine.probability import (
    CombinedStats,
    PoolProbabilityCalculator,
    TrackedTarget,
    combine_per_refresh,
    per_refresh,
    per_slot_normal,
    per_slot_wild,
    rolls_for_confidence,
)
from pool_engine.replay_io import (
    StatsTraceReader,
    StatsTraceWriter,
    create_build_metadata,
    load_static_tables,
    read_snapshot_log,
)


RAW_SNAPSHOT = {
    "stage": 10,
    "observerLevel": 4,
    "players": [
        {
            "name": "Ash",
            "level": 4,
            "board": [{"form": "PIKACHU", "starLevel": 2}],
            "bench": ["ZUBAT"],
            "shop": ["ABRA", None, None, None, None, None],
        },
        {
            "name": "Gary",
            "level": 5,
            "board": [{"name": "GYARADOS", "stars": 2}],
            "bench": [],
            "shop": ["PICHU", "RATTATA"],
        },
    ],
}

# A single uncommon two-star line: the whole uncommon pool is 13 copies of it.
SLOWPOKE_ONLY = UnitCatalog.from_table(
    {"SLOWPOKE": {"rarity": "uncommon", "forms": ["SLOWPOKE", "SLOWBRO"], "maxTier": 2}}
)


def snapshot(raw=None):
    return normalize_snapshot(copy.deepcopy(raw or RAW_SNAPSHOT))


class TestRulesAndCatalog(unittest.TestCase):
    """Test static tables and evolution family lookup."""

    def test_rarity_chance(self):
        self.assertAlmostEqual(DEFAULT_RULES.rarity_chance(3, Rarity.UNCOMMON), 0.30)
        self.assertAlmostEqual(DEFAULT_RULES.rarity_chance(9, Rarity.ULTRA), 0.05)
        # Rarity absent from a level's row cannot roll
        self.assertEqual(DEFAULT_RULES.rarity_chance(1, Rarity.EPIC), 0.0)

    def test_unknown_level_raises(self):
        with self.assertRaises(ConfigurationError):
            DEFAULT_RULES.rarity_chance(42, Rarity.COMMON)

    def test_unknown_rarity_raises(self):
        with self.assertRaises(ConfigurationError):
            Rarity.parse("legendary")
        with self.assertRaises(ValueError):
            build_ruleset({"mythic": {"twoStar": 1, "threeStar": 1}}, {})

    def test_star_weights(self):
        self.assertEqual(
            [DEFAULT_RULES.copies_for_star(s) for s in (1, 2, 3)], [1, 3, 9]
        )
        with self.assertRaises(ValueError):
            DEFAULT_RULES.copies_for_star(4)

    def test_wild_boost(self):
        self.assertAlmostEqual(DEFAULT_RULES.wild_boost(5, 0), 0.0)
        self.assertAlmostEqual(DEFAULT_RULES.wild_boost(10, 0), 0.05)
        self.assertAlmostEqual(DEFAULT_RULES.wild_boost(10, 3), 0.08)
        self.assertAlmostEqual(DEFAULT_RULES.wild_boost(7, 4), 0.04)
        self.assertEqual(DEFAULT_RULES.wild_boost(10, 500), 1.0)

    def test_custom_wild_boost_policy(self):
        rules = build_ruleset(
            {"common": {"two_star": 18, "three_star": 27}},
            {1: {"common": 100}},
            calculate_wild_boost=lambda stage, stars: -1.0,
        )
        self.assertEqual(rules.wild_boost(1, 3), 0.0)

    def test_checksum_tracks_tables(self):
        self.assertEqual(DEFAULT_RULES.checksum(), DEFAULT_RULES.checksum())
        changed = build_ruleset(
            {"common": {"twoStar": 18, "threeStar": 28}},
            {1: {"common": 100}},
        )
        self.assertNotEqual(DEFAULT_RULES.checksum(), changed.checksum())

    def test_missing_capacity_raises(self):
        rules = build_ruleset({"common": {"twoStar": 18, "threeStar": 27}}, {1: {"common": 100}})
        with self.assertRaises(ConfigurationError):
            rules.capacity(Rarity.RARE)
        self.assertFalse(rules.is_pool_rarity(Rarity.RARE))

    def test_resolve_any_form(self):
        unit = DEFAULT_CATALOG.resolve("raichu")
        self.assertEqual(unit.base_form, "PICHU")
        self.assertIs(unit.tier, Tier.THREE_STAR)
        self.assertEqual(unit.copies_needed, 9)
        self.assertEqual(DEFAULT_CATALOG.require("GYARADOS").copies_needed, 3)
        self.assertIsNone(DEFAULT_CATALOG.resolve("MISSINGNO"))
        with self.assertRaises(ConfigurationError):
            DEFAULT_CATALOG.require("MISSINGNO")

    def test_shared_form_rejected(self):
        with self.assertRaises(ConfigurationError):
            UnitCatalog.from_table({
                "EEVEE": {"rarity": "rare", "forms": ["EEVEE", "VAPOREON"], "maxTier": 2},
                "EEVEE2": {"rarity": "rare", "forms": ["EEVEE2", "VAPOREON"], "maxTier": 2},
            })

    def test_invalid_max_tier_rejected(self):
        with self.assertRaises(ConfigurationError):
            UnitCatalog.from_table({"MEW": {"rarity": "ultra", "forms": ["MEW"], "maxTier": 1}})
        with self.assertRaises(ConfigurationError):
            Tier.from_max_tier(4)
        self.assertIs(Tier.from_max_tier(2), Tier.TWO_STAR)


class TestSnapshotNormalization(unittest.TestCase):
    """Test the raw snapshot adapter."""

    def test_canonical_shape(self):
        s = snapshot()
        self.assertEqual(s.stage, 10)
        self.assertEqual(s.observer_level, 4)
        self.assertEqual(s.player_count, 2)
        ash = s.player("Ash")
        self.assertEqual(ash.board, (UnitSighting("PIKACHU", 2),))
        self.assertEqual(ash.bench, (UnitSighting("ZUBAT", 1),))
        self.assertEqual(len(s.player("Gary").shop), 6)
        # 2 + 1 shop (Ash) + 1 + 2 shop (Gary)
        self.assertEqual(s.total_units, 6)

    def test_keyed_map_shape(self):
        raw = {
            "currentStage": 7,
            "localPlayerLevel": 5,
            "playerBoards": {"Ash": ["pichu"]},
            "playerBenches": {"Ash": [], "Brock": [{"name": "onix", "stars": 3}]},
            "playerShops": {"Ash": ["ABRA"]},
            "playerLevels": {"Ash": 5, "Brock": 6},
        }
        s = normalize_snapshot(raw)
        self.assertEqual(s.stage, 7)
        self.assertEqual(s.observer_level, 5)
        # Brock only appears in bench data and still counts
        brock = s.player("Brock")
        self.assertIsNotNone(brock)
        self.assertEqual(brock.bench, (UnitSighting("ONIX", 3),))
        self.assertEqual(brock.level, 6)

    def test_players_as_mapping(self):
        raw = {"stage": 1, "players": {"Misty": {"level": 2, "board": ["STARYU"]}}}
        s = normalize_snapshot(raw)
        self.assertEqual(s.player("Misty").board, (UnitSighting("STARYU", 1),))

    def test_empty_entries_dropped(self):
        self.assertIsNone(normalize_unit(""))
        self.assertIsNone(normalize_unit({"name": "  "}))
        self.assertEqual(normalize_shop(["ABRA", "", None]), ("ABRA", None, None, None, None, None))

    def test_malformed_input_raises(self):
        with self.assertRaises(ValueError):
            normalize_unit({"form": "PICHU", "starLevel": 4})
        with self.assertRaises(ValueError):
            normalize_shop(["A"] * 7)
        with self.assertRaises(ValueError):
            normalize_snapshot({"players": [{"level": 3}]})
        with self.assertRaises(ValueError):
            normalize_snapshot({"players": [{"name": "Ash"}, {"name": "Ash"}]})
        with self.assertRaises(ValueError):
            normalize_snapshot(["not", "a", "mapping"])


class TestFingerprints(unittest.TestCase):
    """Test change fingerprints and the source-side gate."""

    def test_player_order_independent(self):
        raw = copy.deepcopy(RAW_SNAPSHOT)
        raw["players"].reverse()
        self.assertEqual(authoritative_fingerprint(snapshot()), authoritative_fingerprint(snapshot(raw)))
        self.assertEqual(prefilter_fingerprint(snapshot()), prefilter_fingerprint(snapshot(raw)))

    def test_unit_position_independent(self):
        raw = copy.deepcopy(RAW_SNAPSHOT)
        raw["players"][0]["board"] = ["CHARMANDER", {"form": "PIKACHU", "starLevel": 2}]
        moved = copy.deepcopy(raw)
        moved["players"][0]["board"].reverse()
        self.assertEqual(authoritative_fingerprint(snapshot(raw)), authoritative_fingerprint(snapshot(moved)))

    def test_sensitive_to_every_inventory_field(self):
        base = authoritative_fingerprint(snapshot())
        mutations = [
            lambda r: r["players"][0]["board"][0].update(starLevel=3),
            lambda r: r["players"][0]["bench"].append("BULBASAUR"),
            lambda r: r["players"][1]["shop"].__setitem__(0, "SQUIRTLE"),
            lambda r: r["players"][1].update(level=6),
            lambda r: r.update(stage=11),
            lambda r: r.update(observerLevel=5),
        ]
        for mutate in mutations:
            raw = copy.deepcopy(RAW_SNAPSHOT)
            mutate(raw)
            self.assertNotEqual(base, authoritative_fingerprint(snapshot(raw)))

    def test_prefilter_ignores_opponent_level(self):
        raw = copy.deepcopy(RAW_SNAPSHOT)
        raw["players"][1]["level"] = 6
        self.assertEqual(prefilter_fingerprint(snapshot()), prefilter_fingerprint(snapshot(raw)))

    def test_prefilter_is_strict_subset(self):
        self.assertTrue(PREFILTER_FIELDS < AUTHORITATIVE_FIELDS)
        self.assertTrue(AUTHORITATIVE_FIELDS <= set(FIELD_EXTRACTORS))
        # Any change the pre-filter sees, the authoritative fingerprint sees too
        base = snapshot()
        for name in PREFILTER_FIELDS:
            self.assertIn(name, AUTHORITATIVE_FIELDS, f"{name} missing from authoritative fingerprint")
            self.assertIsNotNone(FIELD_EXTRACTORS[name](base))

    def test_subset_check_rejects_violations(self):
        with self.assertRaises(ConfigurationError):
            check_subset_invariant(frozenset({"stage", "boards"}), frozenset({"stage", "shops"}))
        with self.assertRaises(ConfigurationError):
            check_subset_invariant(frozenset({"stage"}), frozenset({"stage"}))
        with self.assertRaises(ConfigurationError):
            check_subset_invariant(frozenset({"stage"}), frozenset({"stage", "gold"}))

    def test_gate_suppresses_repeats(self):
        gate = SnapshotGate()
        self.assertTrue(gate.admit(snapshot()))
        self.assertFalse(gate.admit(snapshot()))
        raw = copy.deepcopy(RAW_SNAPSHOT)
        raw["players"][0]["shop"][1] = "MACHOP"
        self.assertTrue(gate.admit(snapshot(raw)))
        self.assertEqual((gate.forwarded, gate.suppressed), (2, 1))
        gate.reset()
        self.assertTrue(gate.admit(snapshot()))

    def test_gate_sees_observer_level_from_player_entry(self):
        raw = copy.deepcopy(RAW_SNAPSHOT)
        del raw["observerLevel"]
        leveled = copy.deepcopy(raw)
        leveled["players"][0]["level"] = 5

        gate = SnapshotGate(observer="Ash")
        self.assertTrue(gate.admit(snapshot(raw)))
        self.assertTrue(gate.admit(snapshot(leveled)))
        self.assertFalse(gate.admit(snapshot(leveled)))

        # Without an observer the level-up is an authoritative-only change
        blind = SnapshotGate()
        self.assertTrue(blind.admit(snapshot(raw)))
        self.assertFalse(blind.admit(snapshot(leveled)))

    def test_gate_forces_through_after_limit(self):
        gate = SnapshotGate(max_consecutive_suppressed=2)
        admitted = [gate.admit(snapshot()) for _ in range(5)]
        self.assertEqual(admitted, [True, False, False, True, False])
        with self.assertRaises(ValueError):
            SnapshotGate(max_consecutive_suppressed=0)


class TestPoolState(unittest.TestCase):
    """Test the rebuild accounting."""

    def setUp(self):
        self.builder = PoolStateBuilder(DEFAULT_CATALOG, DEFAULT_RULES, observer="Ash")
        s = snapshot()
        self.state = self.builder.rebuild(s.players, stage=s.stage, observer_level=s.observer_level)

    def test_star_weighted_consumption(self):
        # PIKACHU 2★ (3) + ZUBAT (1) + PICHU in Gary's shop (1)
        self.assertEqual(self.state.consumed(Rarity.COMMON), TierCounts(two_star=4, three_star=5))
        self.assertEqual(self.state.consumed(Rarity.UNCOMMON), TierCounts(two_star=0, three_star=1))
        self.assertEqual(self.state.consumed(Rarity.RARE), TierCounts())

    def test_visible_reductions_only_from_other_shops(self):
        # Gary's PICHU only; his wild RATTATA shrinks the wild pool instead
        self.assertEqual(self.state.reductions(Rarity.COMMON), TierCounts(two_star=0, three_star=1))
        self.assertEqual(self.state.wild_elsewhere(Rarity.COMMON).two_star, 1)
        # Ash's own ABRA is not a visible reduction
        self.assertEqual(self.state.reductions(Rarity.UNCOMMON), TierCounts())

    def test_wild_accounting(self):
        self.assertEqual(self.state.wild_consumed(Rarity.COMMON), TierCounts(two_star=1, three_star=1))
        self.assertEqual(self.state.wild_elsewhere(Rarity.COMMON), TierCounts(two_star=1, three_star=0))
        self.assertEqual(self.state.observer_wild_stars, 1)
        # PvE stage 10 plus one wild star
        self.assertAlmostEqual(self.state.wild_boost, 0.06)

    def test_family_and_observer_copies(self):
        self.assertEqual(self.state.family_copies_consumed["PICHU"], 4)
        self.assertEqual(self.state.family_copies_consumed["MAGIKARP"], 3)
        self.assertEqual(self.state.owned_by_observer("PICHU"), 3)
        self.assertEqual(self.state.owned_by_observer("ABRA"), 0)
        self.assertEqual(self.state.observer_level, 4)
        self.assertEqual(self.state.stage, 10)

    def test_unknown_units_counted(self):
        raw = copy.deepcopy(RAW_SNAPSHOT)
        raw["players"][1]["bench"] = ["MISSINGNO", "PORYGON"]
        s = snapshot(raw)
        state = self.builder.rebuild(s.players, stage=s.stage)
        self.assertEqual(state.unresolved_units, 2)
        self.assertEqual(state.consumed(Rarity.COMMON), self.state.consumed(Rarity.COMMON))

    def test_all_unresolved_raises(self):
        s = normalize_snapshot({"players": [{"name": "Ash", "board": ["MISSINGNO"], "shop": ["PORYGON"]}]})
        with self.assertRaises(IncompleteSnapshot) as ctx:
            self.builder.rebuild(s.players)
        self.assertEqual(ctx.exception.unresolved_units, 2)
        with self.assertRaises(IncompleteSnapshot):
            self.builder.rebuild([])

    def test_monotonic_depletion(self):
        previous = None
        for consumed in range(0, 40):
            state = PoolState(copies_consumed={Rarity.RARE: TierCounts(three_star=consumed)})
            remaining = state.remaining(Rarity.RARE, Tier.THREE_STAR, 18)
            self.assertGreaterEqual(remaining, 0)
            if previous is not None:
                self.assertLessEqual(remaining, previous)
            previous = remaining
        self.assertEqual(previous, 0)


class TestAvailability(unittest.TestCase):
    """Test pool membership, reveals and sub-pool sizes."""

    def setUp(self):
        self.reveals = RevealRegistry(DEFAULT_CATALOG)
        self.resolver = AvailabilityResolver(DEFAULT_CATALOG, DEFAULT_RULES, self.reveals)

    def test_reveal_gated_unit(self):
        sandshrew = DEFAULT_CATALOG.require("SANDSHREW")
        availability = self.resolver.is_available(sandshrew)
        self.assertFalse(availability.available)
        self.assertIn("revealed", availability.reason)

        self.assertEqual(self.reveals.reveal(["sandslash"]), frozenset({"SANDSHREW"}))
        self.assertTrue(self.resolver.is_available(sandshrew))
        # Reveals accumulate and are never undone by another reveal
        self.assertEqual(self.reveals.reveal(["SANDSHREW", "GROWLITHE"]), frozenset({"GROWLITHE"}))
        self.assertIn("SANDSHREW", self.reveals)

    def test_reveal_unknown_unit_raises(self):
        with self.assertRaises(ConfigurationError):
            self.reveals.reveal(["MISSINGNO"])

    def test_rarity_without_capacity(self):
        rules = build_ruleset({"common": {"twoStar": 18, "threeStar": 27}}, {1: {"common": 100}})
        resolver = AvailabilityResolver(DEFAULT_CATALOG, rules)
        availability = resolver.is_available(DEFAULT_CATALOG.require("DEINO"))
        self.assertFalse(availability)
        self.assertEqual(availability.reason, NOT_IN_POOL)
        self.assertEqual(resolver.pool_totals(Rarity.ULTRA), TierCounts())

    def test_pool_totals(self):
        # Four three-star lines x 27, MAGIKARP x 18 (SANDSHREW not yet revealed)
        self.assertEqual(self.resolver.pool_totals(Rarity.COMMON), TierCounts(two_star=18, three_star=108))
        self.reveals.reveal(["SANDSHREW"])
        self.assertEqual(self.resolver.pool_totals(Rarity.COMMON), TierCounts(two_star=36, three_star=108))

    def test_wild_unit_counts(self):
        self.assertEqual(self.resolver.wild_unit_counts(Rarity.COMMON), TierCounts(two_star=1, three_star=1))
        self.assertEqual(self.resolver.wild_unit_counts(Rarity.RARE), TierCounts())
        self.reveals.reveal(["MEOWTH"])
        self.assertEqual(self.resolver.wild_unit_counts(Rarity.RARE), TierCounts(two_star=1, three_star=0))


class TestProbabilityFormulas(unittest.TestCase):
    """Test the pure probability functions."""

    def test_bounds(self):
        for chance in (0.0, 0.05, 0.3, 1.0):
            for boost in (0.0, 0.06, 0.5, 1.0):
                for remaining in (-3, 0, 5, 27, 200):
                    for relevant, other in ((0, 0), (27, 0), (107, 17), (-5, 10)):
                        normal = per_slot_normal(chance, boost, remaining, relevant, other)
                        wild = per_slot_wild(chance, boost, remaining, 27, 2, relevant)
                        for p in (normal, wild):
                            refresh = per_refresh(p, 6)
                            self.assertGreaterEqual(p, 0.0)
                            self.assertLessEqual(p, 1.0)
                            self.assertGreaterEqual(refresh, 0.0)
                            self.assertLessEqual(refresh, 1.0)
                            if p > 0:
                                self.assertGreaterEqual(refresh, p)

    def test_zero_denominators(self):
        self.assertEqual(per_slot_normal(0.3, 0.0, 10, 0, 0), 0.0)
        self.assertEqual(per_slot_wild(0.3, 0.5, 10, 27, 0, 0), 0.0)
        # Floor of one copy keeps the wild pool finite
        self.assertAlmostEqual(per_slot_wild(1.0, 1.0, 0, 27, 1, 500), 0.0)

    def test_combined_monotonic(self):
        values = [0.2, 0.0, 0.05, 0.5, 0.01, 1.0]
        previous = 0.0
        for n in range(len(values) + 1):
            combined = combine_per_refresh(values[:n])
            self.assertGreaterEqual(combined, previous)
            previous = combined
        self.assertEqual(previous, 1.0)

    def test_scenario_combined_targets(self):
        self.assertAlmostEqual(combine_per_refresh([0.20, 0.10]), 0.28)

    def test_scenario_zero_probability_never_hits(self):
        self.assertTrue(math.isinf(rolls_for_confidence(0.0, 0.5)))
        self.assertTrue(math.isinf(rolls_for_confidence(0.0, 0.99)))

    def test_scenario_confidence_inversion(self):
        self.assertEqual(rolls_for_confidence(0.8824, 0.50), 1)
        self.assertEqual(rolls_for_confidence(0.1, 0.5), math.ceil(math.log(0.5) / math.log(0.9)))
        self.assertEqual(rolls_for_confidence(1.0, 0.99), 1)

    def test_invalid_confidence_raises(self):
        for confidence in (0.0, 1.0, 1.5, -0.2, "high"):
            with self.assertRaises(ConfigurationError):
                rolls_for_confidence(0.5, confidence)


class TestProbabilityCalculator(unittest.TestCase):
    """Test target statistics against reconstructed pools."""

    def setUp(self):
        self.resolver = AvailabilityResolver(DEFAULT_CATALOG, DEFAULT_RULES)
        self.calc = PoolProbabilityCalculator(DEFAULT_CATALOG, DEFAULT_RULES, self.resolver)
        s = snapshot()
        builder = PoolStateBuilder(DEFAULT_CATALOG, DEFAULT_RULES, observer="Ash")
        self.state = builder.rebuild(s.players, stage=s.stage, observer_level=s.observer_level)

    def test_scenario_single_tier_pool(self):
        calc = PoolProbabilityCalculator(SLOWPOKE_ONLY, DEFAULT_RULES)
        target = TrackedTarget.from_unit(SLOWPOKE_ONLY.require("SLOWPOKE"))
        stats = calc.single_target_stats(PoolState(observer_level=3), target, 0.5)
        self.assertAlmostEqual(stats.per_slot, 0.30)
        self.assertAlmostEqual(stats.per_refresh, 1 - 0.70 ** 6)
        self.assertAlmostEqual(stats.per_refresh, 0.8824, places=4)
        self.assertEqual(stats.rolls, 1)
        self.assertEqual(stats.expected_cost, 1)
        self.assertEqual(stats.pool_remaining, 13)
        self.assertFalse(stats.is_maxed)

    def test_scenario_maxed_target(self):
        calc = PoolProbabilityCalculator(SLOWPOKE_ONLY, DEFAULT_RULES)
        target = TrackedTarget.from_unit(SLOWPOKE_ONLY.require("SLOWPOKE"), owned=3)
        stats = calc.single_target_stats(PoolState(observer_level=3), target, 0.5)
        self.assertTrue(stats.is_maxed)
        self.assertEqual(stats.per_slot, 0.0)
        self.assertEqual(stats.per_refresh, 0.0)

    def test_maxed_regardless_of_pool(self):
        target = TrackedTarget.from_unit(DEFAULT_CATALOG.require("PICHU"), owned=9)
        unrevealed = TrackedTarget.from_unit(DEFAULT_CATALOG.require("GROWLITHE"), owned=3)
        for state, t in (
            (self.state, target),
            (PoolState(), target),
            (self.state, unrevealed),
        ):
            stats = self.calc.single_target_stats(state, t, 0.9)
            self.assertTrue(stats.is_maxed)
            self.assertTrue(stats.available)
            self.assertEqual((stats.per_slot, stats.per_refresh), (0.0, 0.0))
            self.assertTrue(math.isinf(stats.rolls))
            self.assertTrue(math.isinf(stats.expected_cost))

    def test_scenario_exhausted_pool(self):
        calc = PoolProbabilityCalculator(SLOWPOKE_ONLY, DEFAULT_RULES)
        state = PoolState(
            copies_consumed={Rarity.UNCOMMON: TierCounts(two_star=13)},
            family_copies_consumed={"SLOWPOKE": 13},
            observer_level=3,
        )
        stats = calc.single_target_stats(state, TrackedTarget.from_unit(SLOWPOKE_ONLY.require("SLOWBRO")), 0.5)
        self.assertEqual(stats.per_refresh, 0.0)
        self.assertTrue(math.isinf(stats.rolls))
        self.assertTrue(math.isinf(stats.expected_cost))
        self.assertTrue(stats.is_impossible)

    def test_normal_target(self):
        stats = self.calc.single_target_stats(self.state, TrackedTarget.from_unit(DEFAULT_CATALOG.require("PICHU"), owned=3), 0.5)
        # Both common tiers minus Gary's normal shop unit: (108 - 1) + 18; PICHU has 27 - 4 left
        expected = (1 - 0.06) * 0.50 * 23 / 125
        self.assertAlmostEqual(stats.per_slot, expected)
        self.assertAlmostEqual(stats.per_refresh, 1 - (1 - expected) ** 6)
        self.assertEqual(stats.pool_remaining, 23)
        self.assertEqual(stats.max_copies, 27)
        self.assertAlmostEqual(stats.rarity_chance, 0.5)
        self.assertFalse(stats.is_danger)

    def test_wild_target(self):
        stats = self.calc.single_target_stats(self.state, TrackedTarget.from_unit(DEFAULT_CATALOG.require("ZUBAT")), 0.5)
        self.assertTrue(stats.is_alternate)
        self.assertAlmostEqual(stats.per_slot, 0.06 * 0.50 * 26 / 27)

    def test_target_toggled_wild(self):
        pichu = DEFAULT_CATALOG.require("PICHU")
        stats = self.calc.single_target_stats(self.state, TrackedTarget.from_unit(pichu, is_alternate=True), 0.5)
        self.assertTrue(stats.is_alternate)
        # One common three-star wild line (ZUBAT), none visible elsewhere
        self.assertAlmostEqual(stats.per_slot, 0.06 * 0.50 * 23 / 27)

        zubat = DEFAULT_CATALOG.require("ZUBAT")
        normal = self.calc.single_target_stats(self.state, TrackedTarget.from_unit(zubat, is_alternate=False), 0.5)
        self.assertFalse(normal.is_alternate)
        self.assertAlmostEqual(normal.per_slot, (1 - 0.06) * 0.50 * 26 / 125)

    def test_target_tier_must_match_catalog(self):
        target = TrackedTarget.from_unit(DEFAULT_CATALOG.require("PICHU"))
        with self.assertRaises(ConfigurationError):
            self.calc.single_target_stats(self.state, replace(target, tier=Tier.TWO_STAR), 0.5)
        with self.assertRaises(ConfigurationError):
            self.calc.single_target_stats(self.state, replace(target, rarity=Rarity.RARE), 0.5)

    def test_wild_target_without_boost(self):
        state = PoolState(observer_level=4)
        stats = self.calc.single_target_stats(state, TrackedTarget.from_unit(DEFAULT_CATALOG.require("RATTATA")), 0.5)
        self.assertEqual(stats.per_slot, 0.0)
        self.assertTrue(stats.available)

    def test_danger_and_impossible(self):
        calc = PoolProbabilityCalculator(SLOWPOKE_ONLY, DEFAULT_RULES)
        target = TrackedTarget.from_unit(SLOWPOKE_ONLY.require("SLOWPOKE"))
        danger = calc.single_target_stats(PoolState(family_copies_consumed={"SLOWPOKE": 10}, observer_level=3), target, 0.5)
        self.assertTrue(danger.is_danger)
        self.assertFalse(danger.is_impossible)
        impossible = calc.single_target_stats(PoolState(family_copies_consumed={"SLOWPOKE": 12}, observer_level=3), target, 0.5)
        self.assertTrue(impossible.is_impossible)
        self.assertFalse(impossible.is_danger)

    def test_unavailable_is_not_zero_percent(self):
        stats = self.calc.single_target_stats(self.state, TrackedTarget.from_unit(DEFAULT_CATALOG.require("GROWLITHE")), 0.5)
        self.assertFalse(stats.available)
        self.assertIsNotNone(stats.reason)
        self.assertEqual(stats.per_refresh, 0.0)

    def test_unknown_level_and_target_raise(self):
        target = TrackedTarget.from_unit(DEFAULT_CATALOG.require("PICHU"))
        with self.assertRaises(ConfigurationError):
            self.calc.single_target_stats(PoolState(observer_level=42), target, 0.5)
        ghost = TrackedTarget("MISSINGNO", ("MISSINGNO",), Rarity.COMMON, Tier.TWO_STAR, False)
        with self.assertRaises(ConfigurationError):
            self.calc.single_target_stats(self.state, ghost, 0.5)
        with self.assertRaises(ConfigurationError):
            self.calc.single_target_stats(self.state, target, 1.0)

    def test_combined_excludes_disabled(self):
        pichu = TrackedTarget.from_unit(DEFAULT_CATALOG.require("PICHU"))
        abra = TrackedTarget.from_unit(DEFAULT_CATALOG.require("ABRA"))
        disabled = TrackedTarget.from_unit(DEFAULT_CATALOG.require("BULBASAUR"), enabled=False)

        single = self.calc.combined_stats(self.state, [pichu], 0.5)
        both = self.calc.combined_stats(self.state, [pichu, abra, disabled], 0.5)
        self.assertEqual(both.included, 2)
        self.assertGreaterEqual(both.combined_per_refresh, single.combined_per_refresh)
        self.assertLessEqual(both.rolls, single.rolls)
        expected = 1 - (1 - both.targets[0].per_refresh) * (1 - both.targets[1].per_refresh)
        self.assertAlmostEqual(both.combined_per_refresh, expected)
        self.assertAlmostEqual(both.expected_refreshes, 1 / expected)

    def test_combined_empty(self):
        stats = self.calc.combined_stats(self.state, [], 0.5)
        self.assertEqual(stats.combined_per_refresh, 0.0)
        self.assertTrue(math.isinf(stats.rolls))


class TestReplayIO(unittest.TestCase):
    """Test static tables, snapshot logs and the Parquet stats trace."""

    def setUp(self):
        self.temp_dir = Path(tempfile.mkdtemp())

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_load_static_tables(self):
        path = self.temp_dir / "tables.json"
        path.write_text(json.dumps({
            "name": "mini",
            "poolCapacity": {"common": {"twoStar": 10, "threeStar": 20}},
            "shopOdds": {"1": {"common": 100}},
            "pveStages": [1, 2],
            "families": {"PICHU": {"rarity": "common", "forms": ["PICHU", "PIKACHU", "RAICHU"], "maxTier": 3}},
            "constants": {"shopSlots": 5, "starCopyWeights": {"1": 1, "2": 3, "3": 9}},
        }))
        catalog, rules = load_static_tables(path)
        self.assertEqual(rules.name, "mini")
        self.assertEqual(rules.shop_slots, 5)
        self.assertEqual(rules.copies_for_star(2), 3)
        self.assertEqual(rules.capacity(Rarity.COMMON).three_star, 20)
        self.assertTrue(rules.is_pve_stage(2))
        self.assertEqual(catalog.require("PIKACHU").base_form, "PICHU")

    def test_missing_table_raises(self):
        path = self.temp_dir / "tables.json"
        path.write_text(json.dumps({"poolCapacity": {}, "shopOdds": {}}))
        with self.assertRaises(ConfigurationError):
            load_static_tables(path)
        path.write_text("{not json")
        with self.assertRaises(ConfigurationError):
            load_static_tables(path)

    def test_read_snapshot_log(self):
        path = self.temp_dir / "log.jsonl"
        path.write_text(json.dumps(RAW_SNAPSHOT) + "\n\n" + json.dumps({"stage": 11}) + "\n")
        raws = list(read_snapshot_log(path))
        self.assertEqual(len(raws), 2)
        self.assertEqual(raws[1]["stage"], 11)

        path.write_text("{}\n{broken\n")
        with self.assertRaises(ValueError):
            list(read_snapshot_log(path))

    def test_stats_trace_roundtrip(self):
        resolver = AvailabilityResolver(DEFAULT_CATALOG, DEFAULT_RULES)
        calc = PoolProbabilityCalculator(DEFAULT_CATALOG, DEFAULT_RULES, resolver)
        s = snapshot()
        state = PoolStateBuilder(DEFAULT_CATALOG, DEFAULT_RULES, "Ash").rebuild(
            s.players, stage=s.stage, observer_level=s.observer_level
        )
        targets = [
            TrackedTarget.from_unit(DEFAULT_CATALOG.require(form))
            for form in ("PICHU", "GROWLITHE", "DEINO")
        ]
        combined = calc.combined_stats(state, targets, 0.75)

        writer = StatsTraceWriter(self.temp_dir, DEFAULT_RULES)
        writer.record(0, state.stage, state.observer_level, state.wild_boost, combined)
        path = writer.write(create_build_metadata(git_commit="abc123"))
        self.assertTrue(path.exists())

        df, metadata = StatsTraceReader(self.temp_dir).read()
        self.assertEqual(list(df["target"]), ["PICHU", "GROWLITHE", "DEINO"])
        self.assertEqual(list(df["available"]), [True, False, True])
        self.assertAlmostEqual(df["per_slot"].iloc[0], combined.targets[0].per_slot)
        # DEINO cannot roll at level 4
        self.assertTrue(math.isinf(df["rolls"].iloc[2]))
        self.assertEqual(metadata["rules_checksum"], DEFAULT_RULES.checksum())
        self.assertEqual(metadata["build_info"]["git_commit"], "abc123")
        self.assertEqual(metadata["rows"], 3)

    def test_empty_trace_raises(self):
        writer = StatsTraceWriter(self.temp_dir)
        writer.record(0, 1, 1, 0.0, CombinedStats())
        with self.assertRaises(ValueError):
            writer.write({})
        with self.assertRaises(FileNotFoundError):
            StatsTraceReader(self.temp_dir).read()


def run_all_tests():
    """Run all test suites."""
    test_classes = [
        TestRulesAndCatalog,
        TestSnapshotNormalization,
        TestFingerprints,
        TestPoolState,
        TestAvailability,
        TestProbabilityFormulas,
        TestProbabilityCalculator,
        TestReplayIO,
    ]

    loader = unittest.TestLoader()
    suite = unittest.TestSuite()

    for test_class in test_classes:
        tests = loader.loadTestsFromTestCase(test_class)
        suite.addTests(tests)

    runner = unittest.TextTestRunner(verbosity=2)
    result = runner.run(suite)

    return result.wasSuccessful()


if __name__ == "__main__":
    run_all_tests()
