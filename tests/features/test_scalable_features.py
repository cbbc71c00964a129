"""
Tests for the scalable feature registry.

Covers series lookup, target parsing, tier splitting and series-level
conflicts.
"""

import pytest

from archetype_manager.data_models import FeatureSlot
from archetype_manager.features.scalable_features import (
    ScalableFeatureRegistry,
    get_scalable_registry,
)


@pytest.fixture
def registry():
    return get_scalable_registry()


class TestRegistrySingleton:
    """The registry is a lazily built singleton."""

    def test_accessor_returns_same_instance(self):
        assert get_scalable_registry() is get_scalable_registry()

    def test_reset_builds_new_instance(self, fresh_scalable_registry):
        first = fresh_scalable_registry
        ScalableFeatureRegistry.reset()
        second = ScalableFeatureRegistry()
        assert first is not second
        assert second.get_series("weapon training", "Fighter") is not None


class TestSeriesLookup:
    """Mapping feature names to series."""

    def test_class_name_is_case_insensitive(self, registry):
        assert registry.get_class_series("FIGHTER") == registry.get_class_series("fighter")

    def test_unknown_class_has_no_series(self, registry):
        assert registry.get_class_series("Alchemist") == {}
        assert registry.get_class_series(None) == {}

    def test_tier_name_maps_to_base(self, registry):
        assert registry.get_series_base_name("Weapon Training 2", "Fighter") == "weapon training"
        assert registry.get_series_base_name("Armor Training (Ex) III", "Fighter") == "armor training"

    def test_prefix_match(self, registry):
        assert registry.get_series_base_name("Sneak Attack +3d6", "Rogue") == "sneak attack"

    def test_non_scalable_feature(self, registry):
        assert registry.get_series_base_name("Armor Mastery", "Fighter") is None
        assert not registry.is_scalable("Weapon Mastery", "Fighter")

    def test_series_levels(self, registry):
        series = registry.get_series("weapon training", "fighter")
        assert series.levels == [5, 9, 13, 17]
        assert series.get_tier(2).name == "Weapon Training 2"
        assert series.get_tier(9) is None


class TestParseTarget:
    """Parsing claim targets into series and tier."""

    def test_bare_series_name(self, registry):
        target = registry.parse_target("Weapon Training", "Fighter")
        assert target.base_name == "weapon training"
        assert target.tier is None

    def test_numeric_tier(self, registry):
        target = registry.parse_target("Weapon Training 3", "Fighter")
        assert target.tier == 3

    def test_roman_tier(self, registry):
        target = registry.parse_target("armor training III", "Fighter")
        assert target.base_name == "armor training"
        assert target.tier == 3

    def test_plus_tier(self, registry):
        target = registry.parse_target("Trap Sense +2", "Rogue")
        assert target.base_name == "trap sense"
        assert target.tier == 2

    def test_tier_out_of_range_falls_back_to_series(self, registry):
        target = registry.parse_target("Weapon Training 9", "Fighter")
        assert target.base_name == "weapon training"
        assert target.tier is None

    def test_unknown_target(self, registry):
        assert registry.parse_target("Bonus Feat", "Fighter") is None
        assert registry.parse_target("", "Fighter") is None
        assert registry.parse_target("Weapon Training 2", None) is None


class TestSplitIntoTiers:
    """Splitting a condensed slot keeps its identity."""

    def test_split_weapon_training(self, registry):
        slot = FeatureSlot(id="Compendium.weapon-training", level=5, display_name="Weapon Training")
        tiers = registry.split_into_tiers(slot, "Fighter")

        assert [t.level for t in tiers] == [5, 9, 13, 17]
        assert {t.id for t in tiers} == {"Compendium.weapon-training"}
        assert tiers[3].display_name == "Weapon Training 4"

    def test_non_scalable_slot(self, registry):
        slot = FeatureSlot(id="Compendium.armor-mastery", level=19, display_name="Armor Mastery")
        assert registry.split_into_tiers(slot, "Fighter") is None


class TestSeriesConflict:
    """Different tiers of one series are the same base feature."""

    def test_different_tiers_conflict(self, registry):
        result = registry.check_series_conflict("Weapon Training 1", "Weapon Training 3", "Fighter")
        assert result.conflict
        assert result.series == "weapon training"
        assert result.series_display_name == "Weapon Training"

    def test_different_series_do_not_conflict(self, registry):
        result = registry.check_series_conflict("Weapon Training 1", "Armor Training 1", "Fighter")
        assert not result.conflict

    def test_missing_target(self, registry):
        assert not registry.check_series_conflict(None, "Bravery", "Fighter").conflict


class TestExpandedFeatureList:
    """Picker listing with series expanded."""

    def test_series_listed_once_with_tiers(self, registry):
        slots = [
            FeatureSlot(id="a", level=1, display_name="Bonus Feat"),
            FeatureSlot(id="b", level=5, display_name="Weapon Training 1"),
            FeatureSlot(id="c", level=9, display_name="Weapon Training 2"),
        ]
        listing = registry.get_expanded_feature_list(slots, "Fighter")

        labels = [entry["label"] for entry in listing]
        assert labels[0] == "Bonus Feat (Lv 1)"
        assert labels[1] == "Weapon Training (entire series)"
        assert len([e for e in listing if e["series"] == "weapon training"]) == 5
