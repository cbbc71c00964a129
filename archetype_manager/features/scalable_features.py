"""
Scalable class features.

Some base class features are granted in tiers at several levels (Weapon
Training 1-4, Sneak Attack +1d6 to +10d6, ...). A class may store such a
feature as one condensed slot; when an archetype targets a single tier
that slot has to be split into its tiers before the diff is computed.

Stacking rule (Advanced Class Guide, p.74): no two archetypes may replace
or alter the same base class feature. Two archetypes touching ANY tier of
the same series are therefore incompatible, even at different tiers.

Provides a singleton registry of known series per class, following the
same lazy-loading pattern as the rest of the registries.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional

from archetype_manager.data_models import FeatureSlot
from archetype_manager.features.name_normalizer import normalize

logger = logging.getLogger(__name__)

_ROMAN = {"i": 1, "ii": 2, "iii": 3, "iv": 4, "v": 5, "vi": 6, "vii": 7, "viii": 8, "ix": 9, "x": 10}
_TIER_NUMBER = re.compile(r"^(.+?)\s+\+?(\d+)$")
_TIER_ROMAN = re.compile(r"^(.+?)\s+(i{1,3}|iv|vi{0,3}|ix|x)$", re.IGNORECASE)


@dataclass(frozen=True)
class ScalableTier:
    """One tier of a scalable series."""
    tier: int
    level: int
    name: str


@dataclass
class ScalableSeries:
    """
    A base feature granted in tiers.

    `key` is the normalized base name used for lookups.
    """
    key: str
    base_name: str
    tiers: list[ScalableTier] = field(default_factory=list)

    def get_tier(self, tier: int) -> Optional[ScalableTier]:
        for t in self.tiers:
            if t.tier == tier:
                return t
        return None

    @property
    def levels(self) -> list[int]:
        return [t.level for t in self.tiers]


@dataclass(frozen=True)
class ScalableTarget:
    """A claim target resolved against the registry."""
    base_name: str
    tier: Optional[int]
    series: ScalableSeries


@dataclass(frozen=True)
class SeriesConflict:
    """Result of comparing two targets at the series level."""
    conflict: bool
    series: Optional[str] = None
    series_display_name: Optional[str] = None


# =============================================================================
# SERIES DEFINITIONS
# =============================================================================


def _series(base_name: str, levels: list[int], names: Any = None) -> ScalableSeries:
    """
    Build a series from its levels.

    `names` may be None (every tier carries the base name), a format string
    receiving the tier number, or an explicit list.
    """
    tiers = []
    for index, level in enumerate(levels):
        tier = index + 1
        if names is None:
            name = base_name
        elif isinstance(names, str):
            name = names.format(tier=tier)
        else:
            name = names[index]
        tiers.append(ScalableTier(tier=tier, level=level, name=name))
    return ScalableSeries(key=base_name.lower(), base_name=base_name, tiers=tiers)


TRAP_SENSE = _series("Trap Sense", [3, 6, 9, 12, 15, 18], "Trap Sense +{tier}")

SCALABLE_SERIES: dict[str, list[ScalableSeries]] = {
    "fighter": [
        _series("Bravery", [2, 6, 10, 14, 18]),
        _series("Armor Training", [3, 7, 11, 15], "Armor Training {tier}"),
        _series("Weapon Training", [5, 9, 13, 17], "Weapon Training {tier}"),
    ],
    "rogue": [
        _series("Sneak Attack", [1 + i * 2 for i in range(10)], "Sneak Attack +{tier}d6"),
        TRAP_SENSE,
        _series("Rogue Talent", [2 + i * 2 for i in range(10)]),
    ],
    "barbarian": [
        _series("Rage Power", [2 + i * 2 for i in range(10)]),
        TRAP_SENSE,
        _series("Damage Reduction", [7, 10, 13, 16, 19], "Damage Reduction {tier}/-"),
    ],
    "paladin": [
        _series("Mercy", [3, 6, 9, 12, 15, 18]),
        _series("Smite Evil", [1, 4, 7, 10, 13, 16, 19]),
    ],
    "ranger": [
        _series("Favored Enemy", [1, 5, 10, 15, 20]),
        _series("Favored Terrain", [3, 8, 13, 18]),
        _series("Combat Style Feat", [2, 6, 10, 14, 18]),
    ],
    "monk": [
        _series("Bonus Feat", [1, 2, 6, 10, 14, 18]),
        _series(
            "Slow Fall",
            [4, 6, 8, 10, 12, 14, 16, 18, 20],
            [f"Slow Fall {d} ft." for d in range(20, 100, 10)] + ["Slow Fall any distance"],
        ),
    ],
    "bard": [
        _series("Versatile Performance", [2, 6, 10, 14, 18]),
    ],
}


# =============================================================================
# REGISTRY
# =============================================================================


class ScalableFeatureRegistry:
    """
    Singleton registry of scalable series keyed by class name.
    """

    _instance: Optional["ScalableFeatureRegistry"] = None
    _initialized: bool = False

    def __new__(cls) -> "ScalableFeatureRegistry":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self) -> None:
        if ScalableFeatureRegistry._initialized:
            return
        self._series: dict[str, dict[str, ScalableSeries]] = {}
        for class_name, series_list in SCALABLE_SERIES.items():
            for series in series_list:
                self.register(class_name, series)
        logger.debug(f"Loaded scalable series for {len(self._series)} classes")
        ScalableFeatureRegistry._initialized = True

    def register(self, class_name: str, series: ScalableSeries) -> None:
        """Register a series for a class."""
        self._series.setdefault(class_name.lower(), {})[series.key] = series

    def get_class_series(self, class_name: Optional[str]) -> dict[str, ScalableSeries]:
        if not class_name:
            return {}
        return self._series.get(class_name.lower(), {})

    def get_series(self, base_name: Optional[str], class_name: Optional[str]) -> Optional[ScalableSeries]:
        """Get a series by its base name."""
        if not base_name:
            return None
        return self.get_class_series(class_name).get(base_name.lower())

    def get_series_base_name(self, resolved_name: Optional[str], class_name: Optional[str]) -> Optional[str]:
        """
        Get the series key a feature name belongs to.

        "Weapon Training 2" -> "weapon training"; returns None when the
        name is not part of a known series.
        """
        if not resolved_name:
            return None
        class_series = self.get_class_series(class_name)
        if not class_series:
            return None

        normalized = normalize(resolved_name)
        if normalized in class_series:
            return normalized
        for key in class_series:
            if normalized.startswith(key):
                return key
        return None

    def is_scalable(self, resolved_name: Optional[str], class_name: Optional[str]) -> bool:
        return self.get_series_base_name(resolved_name, class_name) is not None

    def parse_target(self, target: Optional[str], class_name: Optional[str]) -> Optional[ScalableTarget]:
        """
        Parse a claim target into series and tier.

        Handles "weapon training", "weapon training 3", "weapon training III"
        and qualified forms such as "armor training (heavy armor)".
        """
        if not target:
            return None
        class_series = self.get_class_series(class_name)
        if not class_series:
            return None
        text = target.strip().lower()

        if text in class_series:
            return ScalableTarget(base_name=text, tier=None, series=class_series[text])

        for pattern in (_TIER_NUMBER, _TIER_ROMAN):
            match = pattern.match(text)
            if not match:
                continue
            base_name = match.group(1).strip()
            token = match.group(2).lower()
            tier = int(token) if token.isdigit() else _ROMAN.get(token)
            series = class_series.get(base_name)
            if series and tier and 1 <= tier <= len(series.tiers):
                return ScalableTarget(base_name=base_name, tier=tier, series=series)

        key = self.get_series_base_name(text, class_name)
        if key:
            return ScalableTarget(base_name=key, tier=None, series=class_series[key])
        return None

    def split_into_tiers(self, slot: FeatureSlot, class_name: Optional[str]) -> Optional[list[FeatureSlot]]:
        """
        Split a condensed slot into one slot per tier.

        Every tier keeps the condensed slot's id, so identity survives the
        split; tiers are told apart by level.
        """
        key = self.get_series_base_name(slot.display_name, class_name)
        if not key:
            return None
        series = self.get_series(key, class_name)
        if not series:
            return None
        return [
            FeatureSlot(id=slot.id, level=tier.level, display_name=tier.name)
            for tier in series.tiers
        ]

    def check_series_conflict(
        self, target_a: Optional[str], target_b: Optional[str], class_name: Optional[str]
    ) -> SeriesConflict:
        """Check whether two targets belong to the same series."""
        if not target_a or not target_b:
            return SeriesConflict(conflict=False)
        series_a = self.get_series_base_name(target_a, class_name)
        series_b = self.get_series_base_name(target_b, class_name)
        if series_a and series_a == series_b:
            series = self.get_series(series_a, class_name)
            return SeriesConflict(
                conflict=True,
                series=series_a,
                series_display_name=series.base_name if series else series_a,
            )
        return SeriesConflict(conflict=False)

    def get_expanded_feature_list(
        self, slots: list[FeatureSlot], class_name: Optional[str]
    ) -> list[dict[str, Any]]:
        """
        List slots for a target picker, with scalable series expanded.

        Each series appears once as an "entire series" header followed by
        its tiers; other slots are listed as-is.
        """
        result: list[dict[str, Any]] = []
        processed: set[str] = set()
        for slot in slots:
            key = self.get_series_base_name(slot.display_name, class_name)
            if key is None:
                result.append({
                    "slot": slot,
                    "label": f"{slot.display_name or slot.id} (Lv {slot.level})",
                    "series": None,
                    "tier": None,
                })
                continue
            if key in processed:
                continue
            processed.add(key)
            series = self.get_series(key, class_name)
            result.append({
                "slot": slot,
                "label": f"{series.base_name} (entire series)",
                "series": key,
                "tier": None,
            })
            for tier in series.tiers:
                result.append({
                    "slot": FeatureSlot(id=slot.id, level=tier.level, display_name=tier.name),
                    "label": f"  {tier.name} (Lv {tier.level})",
                    "series": key,
                    "tier": tier.tier,
                })
        return result

    @classmethod
    def reset(cls) -> None:
        """Reset the singleton (for testing)."""
        cls._instance = None
        cls._initialized = False


# Module-level singleton accessor
_registry: Optional[ScalableFeatureRegistry] = None


def get_scalable_registry() -> ScalableFeatureRegistry:
    """Get the global scalable feature registry."""
    global _registry
    if _registry is None:
        _registry = ScalableFeatureRegistry()
    return _registry
