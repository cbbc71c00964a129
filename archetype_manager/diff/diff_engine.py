"""
Diff engine for archetype application.

Computes the side-by-side difference between a class's current feature
slots and a parsed archetype, and rebuilds the slot sequence that gets
persisted when the archetype is applied.

The engine is pure: it never rejects input. Competing claims on the same
slot are the conflict checker's concern; a claim whose target slot cannot
be found is surfaced as an unresolved ADDED row instead of being dropped.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from archetype_manager.data_models import (
    ArchetypeFeatureClaim,
    ChangeSummary,
    DiffEntry,
    DiffStatus,
    FeatureKind,
    FeatureSlot,
    ParsedArchetype,
)
from archetype_manager.features.name_normalizer import normalize
from archetype_manager.features.scalable_features import get_scalable_registry

logger = logging.getLogger(__name__)


@dataclass
class FinalStateValidation:
    """Result of validating a rebuilt slot sequence."""
    valid: bool
    errors: list[str] = field(default_factory=list)


class DiffEngine:
    """
    Generates diffs between a class's slot sequence and an archetype.
    """

    @staticmethod
    def generate_diff(
        current_slots: list[FeatureSlot],
        archetype: ParsedArchetype,
        class_name: Optional[str] = None,
    ) -> list[DiffEntry]:
        """
        Generate the diff for applying an archetype to a slot sequence.

        Args:
            current_slots: The class's current slots, in order
            archetype: Parsed archetype (or a combined stack)
            class_name: Class name; enables splitting of condensed scalable
                features that the archetype targets tier by tier

        Returns:
            Diff entries sorted by level, ties in input order
        """
        slots = list(current_slots)
        split_ids: set[str] = set()
        if class_name:
            slots, split_ids = DiffEngine._expand_scalable_features(slots, archetype, class_name)

        # Resolve each targeted claim to at most one slot index
        slot_claims: dict[int, ArchetypeFeatureClaim] = {}
        matched: set[int] = set()
        for claim_index, claim in enumerate(archetype.claims):
            if not claim.is_targeted or claim.target_slot is None:
                continue
            slot_index = DiffEngine._find_target_index(
                claim, slots, slot_claims, split_ids, class_name
            )
            if slot_index is None:
                continue
            slot_claims[slot_index] = claim
            matched.add(claim_index)

        diff: list[DiffEntry] = []
        for index, slot in enumerate(slots):
            claim = slot_claims.get(index)
            slot_name = slot.display_name or slot.id
            if claim is None:
                diff.append(DiffEntry(
                    status=DiffStatus.UNCHANGED,
                    name=slot_name,
                    level=slot.level,
                    original_slot=slot,
                ))
            elif claim.kind == FeatureKind.REPLACEMENT:
                diff.append(DiffEntry(
                    status=DiffStatus.REMOVED,
                    name=slot_name,
                    level=slot.level,
                    original_slot=slot,
                ))
                diff.append(DiffEntry(
                    status=DiffStatus.ADDED,
                    name=claim.name,
                    level=claim.level,
                    claim=claim,
                    matched_slot=slot,
                ))
            else:
                # A modification may move when the new behaviour kicks in,
                # but it keeps the original slot's identity.
                diff.append(DiffEntry(
                    status=DiffStatus.MODIFIED,
                    name=claim.name,
                    level=claim.level,
                    original_slot=slot,
                    claim=claim,
                    matched_slot=slot,
                ))

        for claim_index, claim in enumerate(archetype.claims):
            if claim_index in matched:
                continue
            unresolved = claim.is_targeted
            if unresolved:
                target = claim.target_name or (claim.target_slot.id if claim.target_slot else "?")
                logger.warning(
                    f"{archetype.name}: target '{target}' of '{claim.name}' not found in current slots"
                )
            diff.append(DiffEntry(
                status=DiffStatus.ADDED,
                name=claim.name,
                level=claim.level,
                claim=claim,
                unresolved=unresolved,
            ))

        diff.sort(key=lambda entry: entry.level)
        return diff

    @staticmethod
    def _find_target_index(
        claim: ArchetypeFeatureClaim,
        slots: list[FeatureSlot],
        taken: dict[int, ArchetypeFeatureClaim],
        split_ids: set[str],
        class_name: Optional[str],
    ) -> Optional[int]:
        """
        Find the slot a claim targets.

        Prefers an exact (id, level) match, then falls back to the first
        free slot with the same id. Split tiers share one id and are only
        matched by level.
        """
        target = claim.target_slot
        level = target.level
        if target.id in split_ids and class_name:
            parsed = get_scalable_registry().parse_target(claim.target_name, class_name)
            if parsed and parsed.tier:
                tier = parsed.series.get_tier(parsed.tier)
                if tier:
                    level = tier.level

        for index, slot in enumerate(slots):
            if index not in taken and slot.id == target.id and slot.level == level:
                return index
        if target.id in split_ids:
            return None
        for index, slot in enumerate(slots):
            if index not in taken and slot.id == target.id:
                return index
        return None

    @staticmethod
    def _expand_scalable_features(
        slots: list[FeatureSlot], archetype: ParsedArchetype, class_name: str
    ) -> tuple[list[FeatureSlot], set[str]]:
        """
        Split condensed scalable slots targeted at a specific tier.

        A slot is condensed when it is the only slot of its series and is
        named by the bare series name. Only series that some claim targets
        with an explicit tier are split.

        Returns:
            The (possibly) expanded slots and the ids of split slots
        """
        registry = get_scalable_registry()
        targeted: set[str] = set()
        for claim in archetype.claims:
            parsed = registry.parse_target(claim.target_name, class_name)
            if parsed and parsed.tier:
                targeted.add(parsed.base_name)
        if not targeted:
            return slots, set()

        series_counts: dict[str, int] = {}
        for slot in slots:
            key = registry.get_series_base_name(slot.display_name, class_name)
            if key:
                series_counts[key] = series_counts.get(key, 0) + 1

        expanded: list[FeatureSlot] = []
        split_ids: set[str] = set()
        for slot in slots:
            key = registry.get_series_base_name(slot.display_name, class_name)
            condensed = (
                key in targeted
                and series_counts.get(key) == 1
                and normalize(slot.display_name) == key
            )
            tiers = registry.split_into_tiers(slot, class_name) if condensed else None
            if tiers and len(tiers) > 1:
                logger.debug(f"Splitting {slot.display_name} into {len(tiers)} tiers")
                expanded.extend(tiers)
                split_ids.add(slot.id)
            else:
                expanded.append(slot)
        return expanded, split_ids

    @staticmethod
    def build_next_slots(diff: list[DiffEntry]) -> list[FeatureSlot]:
        """
        Rebuild the slot sequence to persist from a diff.

        UNCHANGED slots are kept as-is. ADDED and MODIFIED rows that
        resolved to a slot keep that slot's own id and level, so the
        persisted sequence tracks slot identity, not the archetype feature
        now occupying it (that lives in the application record). REMOVED
        rows and ADDED rows without a matched slot are dropped.
        """
        next_slots: list[FeatureSlot] = []
        for entry in diff:
            if entry.status == DiffStatus.UNCHANGED:
                next_slots.append(entry.original_slot)
            elif entry.status in (DiffStatus.ADDED, DiffStatus.MODIFIED) and entry.matched_slot:
                next_slots.append(entry.matched_slot)
        next_slots.sort(key=lambda slot: slot.level)
        return next_slots

    @staticmethod
    def validate_final_state(slots: list[FeatureSlot]) -> FinalStateValidation:
        """Check every slot has a reference and a level of at least 1."""
        errors = []
        for slot in slots:
            if not slot.id:
                errors.append(f"Entry at level {slot.level} has no reference")
            if slot.level is None or slot.level < 1:
                errors.append(f"Entry \"{slot.display_name or 'unknown'}\" has invalid level: {slot.level}")
        return FinalStateValidation(valid=not errors, errors=errors)

    @staticmethod
    def summarize(
        diff: list[DiffEntry], archetype_name: str = "", class_name: str = "", actor_ref: str = ""
    ) -> ChangeSummary:
        """Group diff names by status for the post-application summary."""
        return ChangeSummary(
            archetype_name=archetype_name,
            class_name=class_name,
            actor_ref=actor_ref,
            removed=[e.name for e in diff if e.status == DiffStatus.REMOVED],
            added=[e.name for e in diff if e.status == DiffStatus.ADDED],
            modified=[e.name for e in diff if e.status == DiffStatus.MODIFIED],
        )

    @staticmethod
    def unresolved_entries(diff: list[DiffEntry]) -> list[DiffEntry]:
        """Entries whose claim targeted a slot that could not be found."""
        return [e for e in diff if e.unresolved]

    @staticmethod
    def count_by_status(diff: list[DiffEntry]) -> dict[DiffStatus, int]:
        counts = {status: 0 for status in DiffStatus}
        for entry in diff:
            counts[entry.status] += 1
        return counts
