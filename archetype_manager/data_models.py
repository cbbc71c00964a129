"""
Core data structures for the Archetype Manager.

Defines the feature slot sequence owned by a class record, the claims an
archetype makes against that sequence, the computed diff, and the
persisted backup / application record that make an application reversible.

All records serialize to plain dictionaries so the flag store can
round-trip them losslessly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


# =============================================================================
# ENUMERATIONS
# =============================================================================


class FeatureKind(str, Enum):
    """How an archetype feature relates to the base class sequence."""
    REPLACEMENT = "replacement"     # Takes over a base slot
    MODIFICATION = "modification"   # Alters a base slot in place
    ADDITIVE = "additive"           # Granted alongside the base sequence


class DiffStatus(str, Enum):
    """Status of one row in a computed diff."""
    UNCHANGED = "unchanged"
    REMOVED = "removed"
    ADDED = "added"
    MODIFIED = "modified"


# =============================================================================
# SLOTS AND CLAIMS
# =============================================================================


@dataclass(frozen=True)
class FeatureSlot:
    """
    One level-tagged feature grant belonging to a class.

    Identity is the `id` (a stable reference to the underlying feature
    document); `level` determines ordering.
    """
    id: str
    level: int
    display_name: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "level": self.level, "display_name": self.display_name}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FeatureSlot":
        return cls(
            id=data["id"],
            level=int(data["level"]),
            display_name=data.get("display_name", ""),
        )

    def with_level(self, level: int) -> "FeatureSlot":
        return FeatureSlot(id=self.id, level=level, display_name=self.display_name)


@dataclass(frozen=True)
class ArchetypeFeatureClaim:
    """
    A feature contributed by an archetype.

    `target_slot` is None for additive claims. `target` is the free-text
    name of the base feature the archetype text says it replaces or
    modifies; conflict checks fall back to the target slot's display name
    when it is not given.
    """
    name: str
    level: int
    kind: FeatureKind
    target_slot: Optional[FeatureSlot] = None
    description: str = ""
    target: Optional[str] = None

    @property
    def is_targeted(self) -> bool:
        return self.kind in (FeatureKind.REPLACEMENT, FeatureKind.MODIFICATION)

    @property
    def target_name(self) -> Optional[str]:
        """Name of the base feature this claim competes for, if any."""
        if not self.is_targeted:
            return None
        if self.target:
            return self.target
        if self.target_slot is not None:
            return self.target_slot.display_name or None
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "level": self.level,
            "kind": self.kind.value,
            "target_slot": self.target_slot.to_dict() if self.target_slot else None,
            "description": self.description,
            "target": self.target,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ArchetypeFeatureClaim":
        target_slot = data.get("target_slot")
        return cls(
            name=data["name"],
            level=int(data["level"]),
            kind=FeatureKind(data["kind"]),
            target_slot=FeatureSlot.from_dict(target_slot) if target_slot else None,
            description=data.get("description", ""),
            target=data.get("target"),
        )


@dataclass(frozen=True)
class ParsedArchetype:
    """
    An archetype definition as produced by the upstream parser.

    Claims are stored as a tuple; a parsed archetype is never mutated.
    """
    name: str
    slug: str
    class_tag: str = ""
    claims: tuple[ArchetypeFeatureClaim, ...] = ()

    def __post_init__(self):
        if not isinstance(self.claims, tuple):
            object.__setattr__(self, "claims", tuple(self.claims))

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "slug": self.slug,
            "class_tag": self.class_tag,
            "claims": [c.to_dict() for c in self.claims],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ParsedArchetype":
        return cls(
            name=data["name"],
            slug=data["slug"],
            class_tag=data.get("class_tag", ""),
            claims=tuple(ArchetypeFeatureClaim.from_dict(c) for c in data.get("claims", [])),
        )


def combine_archetypes(archetypes: list[ParsedArchetype]) -> ParsedArchetype:
    """
    Concatenate several archetypes into one stack for diffing.

    The combined archetype only exists for preview purposes and is never
    persisted or applied as an entity of its own.
    """
    if not archetypes:
        return ParsedArchetype(name="", slug="")
    claims: list[ArchetypeFeatureClaim] = []
    for archetype in archetypes:
        claims.extend(archetype.claims)
    return ParsedArchetype(
        name=" + ".join(a.name for a in archetypes),
        slug="+".join(a.slug for a in archetypes),
        class_tag=archetypes[0].class_tag,
        claims=tuple(claims),
    )


# =============================================================================
# DIFF
# =============================================================================


@dataclass(frozen=True)
class DiffEntry:
    """
    One row of a computed difference.

    `original_slot` is set on UNCHANGED, REMOVED and MODIFIED rows.
    `matched_slot` is the current slot a claim resolved to; it is set on the
    ADDED half of a matched replacement and on MODIFIED rows, and is what
    keeps slot identity continuous when the next slot sequence is built.
    """
    status: DiffStatus
    name: str
    level: int
    original_slot: Optional[FeatureSlot] = None
    claim: Optional[ArchetypeFeatureClaim] = None
    matched_slot: Optional[FeatureSlot] = None
    unresolved: bool = False

    def __post_init__(self):
        if self.status in (DiffStatus.REMOVED, DiffStatus.UNCHANGED) and self.original_slot is None:
            raise ValueError(f"{self.status.value} entry '{self.name}' requires an original slot")
        if self.status == DiffStatus.ADDED and self.claim is None:
            raise ValueError(f"Added entry '{self.name}' requires a claim")
        if self.status == DiffStatus.MODIFIED and (self.original_slot is None or self.claim is None):
            raise ValueError(f"Modified entry '{self.name}' requires both slot and claim")

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "name": self.name,
            "level": self.level,
            "original_slot": self.original_slot.to_dict() if self.original_slot else None,
            "claim": self.claim.to_dict() if self.claim else None,
            "matched_slot": self.matched_slot.to_dict() if self.matched_slot else None,
            "unresolved": self.unresolved,
        }


@dataclass
class ChangeSummary:
    """Names grouped by diff status, posted after an application."""
    archetype_name: str
    class_name: str
    actor_ref: str = ""
    removed: list[str] = field(default_factory=list)
    added: list[str] = field(default_factory=list)
    modified: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.removed or self.added or self.modified)

    def format(self) -> str:
        lines = [f"{self.archetype_name} applied to {self.class_name}."]
        if self.removed:
            lines.append(f"Replaced: {', '.join(self.removed)}")
        if self.added:
            lines.append(f"Added: {', '.join(self.added)}")
        if self.modified:
            lines.append(f"Modified: {', '.join(self.modified)}")
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        return {
            "archetype_name": self.archetype_name,
            "class_name": self.class_name,
            "actor_ref": self.actor_ref,
            "removed": list(self.removed),
            "added": list(self.added),
            "modified": list(self.modified),
        }


# =============================================================================
# CONFLICTS
# =============================================================================


@dataclass(frozen=True)
class Conflict:
    """
    Two archetypes competing for the same base feature.

    `feature_name` is the contested base feature (or series display name
    for series conflicts); `blocking_archetype` is the archetype that
    already holds it.
    """
    feature_name: str
    blocking_archetype: str
    candidate_archetype: str = ""
    candidate_feature: str = ""
    blocking_feature: str = ""
    is_series_conflict: bool = False
    series: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "feature_name": self.feature_name,
            "blocking_archetype": self.blocking_archetype,
            "candidate_archetype": self.candidate_archetype,
            "candidate_feature": self.candidate_feature,
            "blocking_feature": self.blocking_feature,
            "is_series_conflict": self.is_series_conflict,
            "series": self.series,
        }


# =============================================================================
# PERSISTED RECORDS
# =============================================================================


@dataclass
class ClassRecord:
    """
    A character class owned by an actor, with its live slot sequence.
    """
    class_ref: str
    name: str
    owner_ref: str
    tag: str = ""
    slots: list[FeatureSlot] = field(default_factory=list)

    @property
    def class_tag(self) -> str:
        """Tag used to key per-actor tracking; falls back to a slug of the name."""
        return self.tag or self.name.strip().lower().replace(" ", "-")

    def to_dict(self) -> dict[str, Any]:
        return {
            "class_ref": self.class_ref,
            "name": self.name,
            "owner_ref": self.owner_ref,
            "tag": self.tag,
            "slots": [s.to_dict() for s in self.slots],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ClassRecord":
        return cls(
            class_ref=data["class_ref"],
            name=data["name"],
            owner_ref=data["owner_ref"],
            tag=data.get("tag", ""),
            slots=[FeatureSlot.from_dict(s) for s in data.get("slots", [])],
        )


@dataclass
class ApplicationRecord:
    """
    Per-class metadata about applied archetypes.

    `archetypes` keeps the parsed data of every applied slug so a single
    archetype can later be removed by replaying the rest.
    """
    applied_slugs: list[str] = field(default_factory=list)
    applied_at_iso: str = ""
    last_applied_archetype: Optional[ParsedArchetype] = None
    archetypes: dict[str, ParsedArchetype] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "applied_slugs": list(self.applied_slugs),
            "applied_at_iso": self.applied_at_iso,
            "last_applied_archetype": (
                self.last_applied_archetype.to_dict() if self.last_applied_archetype else None
            ),
            "archetypes": {slug: a.to_dict() for slug, a in self.archetypes.items()},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ApplicationRecord":
        last = data.get("last_applied_archetype")
        return cls(
            applied_slugs=list(data.get("applied_slugs", [])),
            applied_at_iso=data.get("applied_at_iso", ""),
            last_applied_archetype=ParsedArchetype.from_dict(last) if last else None,
            archetypes={
                slug: ParsedArchetype.from_dict(a)
                for slug, a in data.get("archetypes", {}).items()
            },
        )

    def applied_archetypes(self) -> list[ParsedArchetype]:
        """Applied archetypes in application order."""
        return [self.archetypes[s] for s in self.applied_slugs if s in self.archetypes]


@dataclass
class ClassArchetypeState:
    """
    Everything the applicator reads and writes for one class, as one unit.

    `backup` is None while the class is pristine. `version` increases with
    every commit and guards against stale writes.
    """
    record: ClassRecord
    backup: Optional[list[FeatureSlot]] = None
    application: Optional[ApplicationRecord] = None
    version: int = 0

    @property
    def applied_slugs(self) -> list[str]:
        return list(self.application.applied_slugs) if self.application else []

    @property
    def has_backup(self) -> bool:
        return self.backup is not None
