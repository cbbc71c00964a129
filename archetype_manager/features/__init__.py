"""
Feature naming and scalable feature support.

Provides:
- normalize: canonical feature names for same-slot comparison
- ScalableFeatureRegistry: tiered class features (Weapon Training 1-4, ...)
- resolve_slots: turn raw class associations into FeatureSlot sequences
"""

from archetype_manager.features.name_normalizer import names_match, normalize
from archetype_manager.features.scalable_features import (
    ScalableFeatureRegistry,
    ScalableSeries,
    ScalableTarget,
    ScalableTier,
    SeriesConflict,
    get_scalable_registry,
)
from archetype_manager.features.slot_resolver import (
    FeatureDocumentResolver,
    MappingFeatureResolver,
    UNKNOWN_NAME,
    resolve_slot,
    resolve_slots,
)

__all__ = [
    # Names
    "normalize",
    "names_match",
    # Scalable features
    "ScalableFeatureRegistry",
    "ScalableSeries",
    "ScalableTarget",
    "ScalableTier",
    "SeriesConflict",
    "get_scalable_registry",
    # Slot resolution
    "FeatureDocumentResolver",
    "MappingFeatureResolver",
    "UNKNOWN_NAME",
    "resolve_slot",
    "resolve_slots",
]
