"""
Resolution of raw class associations into feature slots.

A class stores its feature sequence as bare references plus levels. The
display name of each slot comes from the feature document the reference
points to, looked up through a resolver collaborator. A stale reference
resolves to None and becomes an unknown-name slot rather than an error.
"""

import logging
from typing import Any, Optional, Protocol

from archetype_manager.data_models import FeatureSlot

logger = logging.getLogger(__name__)

UNKNOWN_NAME = "Unknown Feature"


class FeatureDocumentResolver(Protocol):
    """Looks up the feature document behind a reference."""

    def resolve(self, reference: str) -> Optional[dict[str, Any]]:
        ...


class MappingFeatureResolver:
    """Resolver backed by a plain reference -> name mapping."""

    def __init__(self, names: Optional[dict[str, str]] = None):
        self._names: dict[str, str] = dict(names or {})

    def add(self, reference: str, display_name: str) -> None:
        self._names[reference] = display_name

    def resolve(self, reference: str) -> Optional[dict[str, Any]]:
        name = self._names.get(reference)
        if name is None:
            return None
        return {"display_name": name}


def resolve_slot(reference: str, level: int, resolver: FeatureDocumentResolver) -> FeatureSlot:
    """Resolve a single association into a slot."""
    document = resolver.resolve(reference)
    if document is None:
        logger.warning(f"Could not resolve feature reference {reference}, using unknown name")
        return FeatureSlot(id=reference, level=level, display_name=UNKNOWN_NAME)
    return FeatureSlot(
        id=reference,
        level=level,
        display_name=document.get("display_name") or UNKNOWN_NAME,
    )


def resolve_slots(
    associations: list[dict[str, Any]], resolver: FeatureDocumentResolver
) -> list[FeatureSlot]:
    """
    Resolve a class's associations into an ordered slot sequence.

    Args:
        associations: Dicts with "id" (or "uuid") and "level"
        resolver: Feature document resolver

    Returns:
        Slots sorted by level, ties in input order
    """
    slots = []
    for assoc in associations:
        reference = assoc.get("id") or assoc.get("uuid")
        if not reference:
            logger.warning(f"Skipping association without a reference: {assoc}")
            continue
        slots.append(resolve_slot(reference, int(assoc.get("level", 1)), resolver))
    return sorted(slots, key=lambda s: s.level)
