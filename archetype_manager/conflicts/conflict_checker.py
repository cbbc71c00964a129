"""
Conflict checking for archetype stacking.

Two archetypes conflict when both replace or modify the same base class
feature. Detection is name-based: targets are compared after
normalize(), not by slot identity, because archetype authors describe the
same base feature with slightly different text. This accepts a small risk
of false positives (two different features normalizing to the same name)
in exchange for robustness against inconsistent source text.

When a class name is supplied, claims touching any tier of the same
scalable series also conflict.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from archetype_manager.data_models import (
    ArchetypeFeatureClaim,
    ClassRecord,
    Conflict,
    FeatureKind,
    ParsedArchetype,
)
from archetype_manager.features.name_normalizer import normalize
from archetype_manager.features.scalable_features import get_scalable_registry

logger = logging.getLogger(__name__)


@dataclass
class CanApplyResult:
    """Whether a candidate archetype can join the applied set."""
    can_apply: bool
    conflicts: list[Conflict] = field(default_factory=list)
    blocked_by: list[str] = field(default_factory=list)


@dataclass
class StackValidation:
    """Result of validating a set of archetypes against each other."""
    valid: bool
    conflicts: list[Conflict] = field(default_factory=list)
    conflict_pairs: list[tuple[str, str]] = field(default_factory=list)
    remaining_stack: list[ParsedArchetype] = field(default_factory=list)
    cumulative: Optional["CumulativeReplacements"] = None


@dataclass
class ReplacementEntry:
    """One base feature touched by one archetype."""
    archetype_name: str
    feature_name: str
    kind: FeatureKind
    target: str
    is_series_target: bool = False


@dataclass
class CumulativeReplacements:
    """Base features touched across a stack, grouped by series or name."""
    replacements: dict[str, list[ReplacementEntry]] = field(default_factory=dict)
    total_replaced: int = 0


def _target_label(claim: ArchetypeFeatureClaim) -> str:
    if claim.target_slot is not None and claim.target_slot.display_name:
        return claim.target_slot.display_name
    return claim.target_name or ""


def _targeted_claims(archetype: ParsedArchetype) -> list[ArchetypeFeatureClaim]:
    """Claims that compete for a base feature (additive claims never do)."""
    return [c for c in archetype.claims if c.is_targeted and normalize(c.target_name or "")]


class ConflictChecker:
    """
    Validates archetype compatibility.
    """

    @staticmethod
    def detect_conflicts(candidate: ParsedArchetype, blocking: ParsedArchetype) -> list[Conflict]:
        """Direct conflicts: both archetypes target the same normalized name."""
        blocking_targets: dict[str, ArchetypeFeatureClaim] = {}
        for claim in _targeted_claims(blocking):
            blocking_targets.setdefault(normalize(claim.target_name), claim)

        conflicts = []
        for claim in _targeted_claims(candidate):
            held = blocking_targets.get(normalize(claim.target_name))
            if held is None:
                continue
            conflicts.append(Conflict(
                feature_name=_target_label(held),
                blocking_archetype=blocking.name,
                candidate_archetype=candidate.name,
                candidate_feature=claim.name,
                blocking_feature=held.name,
            ))
        return conflicts

    @staticmethod
    def _check_series_conflicts(
        candidate: ParsedArchetype, blocking: ParsedArchetype, class_name: str
    ) -> list[Conflict]:
        """Conflicts between claims touching different tiers of one series."""
        registry = get_scalable_registry()
        conflicts = []
        checked: set[tuple[str, str]] = set()
        for claim_a in _targeted_claims(candidate):
            for claim_b in _targeted_claims(blocking):
                normal_a = normalize(claim_a.target_name)
                normal_b = normalize(claim_b.target_name)
                if normal_a == normal_b:
                    continue  # direct conflict
                pair = tuple(sorted((normal_a, normal_b)))
                if pair in checked:
                    continue
                checked.add(pair)

                result = registry.check_series_conflict(
                    claim_a.target_name, claim_b.target_name, class_name
                )
                if result.conflict:
                    conflicts.append(Conflict(
                        feature_name=result.series_display_name,
                        blocking_archetype=blocking.name,
                        candidate_archetype=candidate.name,
                        candidate_feature=claim_a.name,
                        blocking_feature=claim_b.name,
                        is_series_conflict=True,
                        series=result.series,
                    ))
        return conflicts

    @staticmethod
    def _deduplicate(conflicts: list[Conflict]) -> list[Conflict]:
        seen: set[tuple[str, ...]] = set()
        unique = []
        for conflict in conflicts:
            key = tuple(sorted((conflict.candidate_archetype, conflict.blocking_archetype))) + (
                normalize(conflict.feature_name),
            )
            if key in seen:
                continue
            seen.add(key)
            unique.append(conflict)
        return unique

    @classmethod
    def check_against_applied(
        cls,
        candidate: ParsedArchetype,
        applied: list[ParsedArchetype],
        class_name: Optional[str] = None,
    ) -> list[Conflict]:
        """
        Check a candidate archetype against already-applied archetypes.

        Returns:
            Deduplicated conflicts, each naming the applied archetype that
            already holds the contested feature
        """
        conflicts: list[Conflict] = []
        for blocking in applied:
            if blocking.slug == candidate.slug:
                continue
            conflicts.extend(cls.detect_conflicts(candidate, blocking))
            if class_name:
                conflicts.extend(cls._check_series_conflicts(candidate, blocking, class_name))
        return cls._deduplicate(conflicts)

    @classmethod
    def check_can_apply(
        cls,
        candidate: ParsedArchetype,
        applied: list[ParsedArchetype],
        class_name: Optional[str] = None,
    ) -> CanApplyResult:
        """Check whether a candidate archetype can be applied on top of `applied`."""
        conflicts = cls.check_against_applied(candidate, applied, class_name)
        blocked_by: list[str] = []
        for conflict in conflicts:
            if conflict.blocking_archetype not in blocked_by:
                blocked_by.append(conflict.blocking_archetype)
        return CanApplyResult(can_apply=not conflicts, conflicts=conflicts, blocked_by=blocked_by)

    @classmethod
    def validate_stacking(
        cls, archetypes: list[ParsedArchetype], class_name: Optional[str] = None
    ) -> StackValidation:
        """
        Validate every pairwise combination in a stack.

        The result does not depend on the order of `archetypes`.
        """
        conflicts: list[Conflict] = []
        for i in range(len(archetypes)):
            for j in range(i + 1, len(archetypes)):
                conflicts.extend(cls.detect_conflicts(archetypes[j], archetypes[i]))
                if class_name:
                    conflicts.extend(
                        cls._check_series_conflicts(archetypes[j], archetypes[i], class_name)
                    )
        conflicts = cls._deduplicate(conflicts)

        conflict_pairs: list[tuple[str, str]] = []
        for conflict in conflicts:
            pair = tuple(sorted((conflict.candidate_archetype, conflict.blocking_archetype)))
            if pair not in conflict_pairs:
                conflict_pairs.append(pair)

        return StackValidation(
            valid=not conflicts,
            conflicts=conflicts,
            conflict_pairs=conflict_pairs,
        )

    @staticmethod
    def get_cumulative_replacements(
        archetypes: list[ParsedArchetype], class_name: Optional[str] = None
    ) -> CumulativeReplacements:
        """Group every base feature the stack touches by series or normalized name."""
        registry = get_scalable_registry()
        result = CumulativeReplacements()
        for archetype in archetypes:
            for claim in _targeted_claims(archetype):
                series = registry.get_series_base_name(claim.target_name, class_name)
                key = series or normalize(claim.target_name)
                result.replacements.setdefault(key, []).append(ReplacementEntry(
                    archetype_name=archetype.name,
                    feature_name=claim.name,
                    kind=claim.kind,
                    target=claim.target_name,
                    is_series_target=series is not None,
                ))
                result.total_replaced += 1
        return result

    @classmethod
    def validate_add_to_stack(
        cls,
        candidate: ParsedArchetype,
        existing_stack: list[ParsedArchetype],
        class_name: Optional[str] = None,
    ) -> StackValidation:
        """Validate the stack that would result from adding `candidate`."""
        proposed = list(existing_stack) + [candidate]
        validation = cls.validate_stacking(proposed, class_name)
        validation.cumulative = cls.get_cumulative_replacements(proposed, class_name)
        return validation

    @classmethod
    def validate_remove_from_stack(
        cls,
        slug: str,
        current_stack: list[ParsedArchetype],
        class_name: Optional[str] = None,
    ) -> StackValidation:
        """Validate the stack that would remain after removing `slug`."""
        remaining = [a for a in current_stack if a.slug != slug]
        validation = cls.validate_stacking(remaining, class_name)
        validation.remaining_stack = remaining
        validation.cumulative = cls.get_cumulative_replacements(remaining, class_name)
        return validation

    @staticmethod
    def validate_class(archetype: ParsedArchetype, class_record: ClassRecord) -> bool:
        """
        Check an archetype is meant for this class.

        An archetype without a class tag is accepted for any class.
        """
        archetype_class = (archetype.class_tag or "").strip().lower()
        if not archetype_class:
            return True
        return archetype_class in (
            class_record.class_tag.strip().lower(),
            class_record.name.strip().lower(),
        )

    @staticmethod
    def build_conflict_index(
        archetypes: list[ParsedArchetype], class_name: Optional[str] = None
    ) -> dict[str, set[str]]:
        """
        Map each archetype slug to the base features (or series) it touches.

        Used to grey out incompatible choices while a selection is made.
        """
        registry = get_scalable_registry()
        index: dict[str, set[str]] = {}
        for archetype in archetypes:
            touched = set()
            for claim in _targeted_claims(archetype):
                series = registry.get_series_base_name(claim.target_name, class_name)
                touched.add(series or normalize(claim.target_name))
            if touched:
                index[archetype.slug] = touched
        return index

    @staticmethod
    def get_incompatible_archetypes(
        conflict_index: dict[str, set[str]],
        selected_slugs: set[str],
        applied_slugs: Optional[list[str]] = None,
        names: Optional[dict[str, str]] = None,
    ) -> dict[str, str]:
        """
        Find archetypes that cannot join the selected and applied set.

        Returns:
            Slug -> human readable reason, one reason per archetype
        """
        names = names or {}
        active = list(selected_slugs) + [s for s in (applied_slugs or []) if s not in selected_slugs]
        active_touched: dict[str, str] = {}
        for slug in active:
            display = names.get(slug) or slug.replace("-", " ").title()
            for feature in conflict_index.get(slug, set()):
                active_touched.setdefault(feature, display)

        incompatible: dict[str, str] = {}
        for slug, touched in conflict_index.items():
            if slug in active:
                continue
            for feature in sorted(touched):
                if feature in active_touched:
                    incompatible[slug] = (
                        f"Conflicts with {active_touched[feature]} over {feature.title()}"
                    )
                    break
        return incompatible
