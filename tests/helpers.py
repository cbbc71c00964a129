"""
Test helpers for the Archetype Manager test suite.

Builders for slots and archetype claims shared by fixtures and tests.
"""

from typing import Optional

from archetype_manager.data_models import (
    ArchetypeFeatureClaim,
    FeatureKind,
    FeatureSlot,
    ParsedArchetype,
)

ACTOR = "Actor.valeros"
OTHER_ACTOR = "Actor.seelah"
CLASS_REF = "Class.fighter"


def make_slot(slot_id: str, level: int, name: str) -> FeatureSlot:
    return FeatureSlot(id=f"Compendium.{slot_id}", level=level, display_name=name)


def slot_by_name(slots: list[FeatureSlot], name: str) -> FeatureSlot:
    for slot in slots:
        if slot.display_name == name:
            return slot
    raise KeyError(name)


def replaces(
    name: str, level: int, target: FeatureSlot, target_text: Optional[str] = None, description: str = ""
) -> ArchetypeFeatureClaim:
    return ArchetypeFeatureClaim(
        name=name,
        level=level,
        kind=FeatureKind.REPLACEMENT,
        target_slot=target,
        target=target_text,
        description=description,
    )


def modifies(
    name: str, level: int, target: FeatureSlot, target_text: Optional[str] = None, description: str = ""
) -> ArchetypeFeatureClaim:
    return ArchetypeFeatureClaim(
        name=name,
        level=level,
        kind=FeatureKind.MODIFICATION,
        target_slot=target,
        target=target_text,
        description=description,
    )


def adds(name: str, level: int, description: str = "") -> ArchetypeFeatureClaim:
    return ArchetypeFeatureClaim(
        name=name, level=level, kind=FeatureKind.ADDITIVE, description=description
    )


def archetype(name: str, *claims: ArchetypeFeatureClaim, class_tag: str = "fighter") -> ParsedArchetype:
    """Parsed archetype with a slug derived from its name."""
    return ParsedArchetype(
        name=name,
        slug=name.lower().replace(" ", "-"),
        class_tag=class_tag,
        claims=tuple(claims),
    )
