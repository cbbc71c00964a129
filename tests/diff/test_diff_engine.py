"""
Tests for the diff engine.

Covers diff generation against the twelve-slot fighter sequence, the slot
sequence rebuilt from a diff, scalable tier splitting and final-state
validation.
"""

import pytest

from archetype_manager.data_models import (
    DiffEntry,
    DiffStatus,
    FeatureSlot,
    ParsedArchetype,
)
from archetype_manager.diff import DiffEngine

from tests.helpers import adds, archetype, modifies, replaces, slot_by_name


def statuses(diff, status):
    return [entry for entry in diff if entry.status == status]


class TestGenerateDiff:
    """Diff generation for a single archetype."""

    def test_fighter_scenario_counts(self, fighter_slots, two_handed_fighter):
        """Six replacements and one additive claim over twelve slots."""
        diff = DiffEngine.generate_diff(fighter_slots, two_handed_fighter)
        counts = DiffEngine.count_by_status(diff)

        assert counts[DiffStatus.REMOVED] == 6
        assert counts[DiffStatus.ADDED] == 7
        assert counts[DiffStatus.UNCHANGED] == 6
        assert counts[DiffStatus.MODIFIED] == 0
        assert len(diff) == 19

    def test_unchanged_slots_are_the_untouched_ones(self, fighter_slots, two_handed_fighter):
        diff = DiffEngine.generate_diff(fighter_slots, two_handed_fighter)
        unchanged = [entry.level for entry in statuses(diff, DiffStatus.UNCHANGED)]
        assert unchanged == [1, 5, 9, 13, 17, 20]

    def test_replacement_pairs_removed_and_added(self, fighter_slots, two_handed_fighter):
        """Each matched replacement yields one REMOVED row and one ADDED row."""
        diff = DiffEngine.generate_diff(fighter_slots, two_handed_fighter)
        bravery = slot_by_name(fighter_slots, "Bravery")

        removed = [e for e in diff if e.status == DiffStatus.REMOVED and e.original_slot == bravery]
        added = [e for e in diff if e.status == DiffStatus.ADDED and e.matched_slot == bravery]
        assert len(removed) == 1
        assert len(added) == 1
        assert added[0].name == "Shattering Strike"
        assert added[0].original_slot is None

    def test_additive_claim_has_no_slot(self, fighter_slots, two_handed_fighter):
        diff = DiffEngine.generate_diff(fighter_slots, two_handed_fighter)
        additive = [e for e in diff if e.name == "Weapon Training"]

        assert len(additive) == 1
        assert additive[0].status == DiffStatus.ADDED
        assert additive[0].matched_slot is None
        assert not additive[0].unresolved

    def test_sorted_by_level_with_stable_ties(self, fighter_slots, two_handed_fighter):
        diff = DiffEngine.generate_diff(fighter_slots, two_handed_fighter)
        levels = [entry.level for entry in diff]

        assert levels == sorted(levels)
        level_two = [entry.name for entry in diff if entry.level == 2]
        assert level_two == ["Bravery", "Shattering Strike"]
        level_five = [entry.name for entry in diff if entry.level == 5]
        assert level_five == ["Weapon Training 1", "Weapon Training"]

    def test_empty_claims_leave_everything_unchanged(self, fighter_slots):
        empty = ParsedArchetype(name="Nothing", slug="nothing")
        diff = DiffEngine.generate_diff(fighter_slots, empty)

        assert len(diff) == len(fighter_slots)
        assert all(entry.status == DiffStatus.UNCHANGED for entry in diff)

    def test_empty_slots_yield_only_added(self, two_handed_fighter):
        diff = DiffEngine.generate_diff([], two_handed_fighter)

        assert len(diff) == len(two_handed_fighter.claims)
        assert all(entry.status == DiffStatus.ADDED for entry in diff)

    def test_empty_slots_and_claims(self):
        assert DiffEngine.generate_diff([], ParsedArchetype(name="Nothing", slug="nothing")) == []

    def test_modification_is_a_single_entry(self, fighter_slots, weapon_master):
        diff = DiffEngine.generate_diff(fighter_slots, weapon_master)
        modified = statuses(diff, DiffStatus.MODIFIED)

        assert len(modified) == 1
        assert modified[0].name == "Weapon Guard"
        assert modified[0].original_slot == slot_by_name(fighter_slots, "Weapon Training 1")
        assert len(statuses(diff, DiffStatus.REMOVED)) == 1

    def test_unresolved_target(self, fighter_slots):
        ghost = FeatureSlot(id="Compendium.missing", level=4, display_name="Missing Feature")
        candidate = archetype("Lost Soul", replaces("Haunting", 4, ghost))

        diff = DiffEngine.generate_diff(fighter_slots, candidate)
        unresolved = DiffEngine.unresolved_entries(diff)

        assert len(unresolved) == 1
        assert unresolved[0].status == DiffStatus.ADDED
        assert unresolved[0].name == "Haunting"
        assert len(statuses(diff, DiffStatus.UNCHANGED)) == len(fighter_slots)

    def test_falls_back_to_id_when_level_differs(self, fighter_slots):
        """A claim pointing at the right slot with a stale level still matches."""
        bravery = slot_by_name(fighter_slots, "Bravery")
        candidate = archetype("Drifted", replaces("Steadfast", 2, bravery.with_level(4)))

        diff = DiffEngine.generate_diff(fighter_slots, candidate)

        assert [e.original_slot for e in statuses(diff, DiffStatus.REMOVED)] == [bravery]
        assert not DiffEngine.unresolved_entries(diff)

    def test_two_claims_on_one_slot_do_not_raise(self, fighter_slots):
        """Competing claims are a conflict concern; the second stays unmatched."""
        bravery = slot_by_name(fighter_slots, "Bravery")
        candidate = archetype(
            "Greedy",
            replaces("First", 2, bravery),
            replaces("Second", 2, bravery),
        )

        diff = DiffEngine.generate_diff(fighter_slots, candidate)

        assert len(statuses(diff, DiffStatus.REMOVED)) == 1
        assert [e.name for e in DiffEngine.unresolved_entries(diff)] == ["Second"]


class TestScalableExpansion:
    """Condensed scalable slots are split when a single tier is targeted."""

    def test_condensed_slot_split_for_tier_target(self, condensed_fighter_slots):
        weapon_training = slot_by_name(condensed_fighter_slots, "Weapon Training")
        candidate = archetype(
            "Tier Hunter",
            modifies("Weapon Guard", 9, weapon_training, target_text="Weapon Training 2"),
        )

        diff = DiffEngine.generate_diff(condensed_fighter_slots, candidate, class_name="Fighter")
        modified = statuses(diff, DiffStatus.MODIFIED)

        assert len(modified) == 1
        assert modified[0].original_slot.level == 9
        assert modified[0].original_slot.id == weapon_training.id
        assert len(diff) == len(condensed_fighter_slots) + 3

    def test_no_split_without_class_name(self, condensed_fighter_slots):
        weapon_training = slot_by_name(condensed_fighter_slots, "Weapon Training")
        candidate = archetype(
            "Tier Hunter",
            modifies("Weapon Guard", 9, weapon_training, target_text="Weapon Training 2"),
        )

        diff = DiffEngine.generate_diff(condensed_fighter_slots, candidate)
        modified = statuses(diff, DiffStatus.MODIFIED)

        assert len(diff) == len(condensed_fighter_slots)
        assert modified[0].level == 9
        assert modified[0].original_slot.level == 5

    def test_series_target_without_tier_does_not_split(self, condensed_fighter_slots):
        weapon_training = slot_by_name(condensed_fighter_slots, "Weapon Training")
        candidate = archetype(
            "Whole Series",
            replaces("Weapon Focus Mastery", 5, weapon_training, target_text="Weapon Training"),
        )

        diff = DiffEngine.generate_diff(condensed_fighter_slots, candidate, class_name="Fighter")

        assert len(diff) == len(condensed_fighter_slots) + 1
        assert len(statuses(diff, DiffStatus.REMOVED)) == 1


class TestBuildNextSlots:
    """Rebuilding the persisted slot sequence."""

    def test_fighter_scenario_keeps_twelve_slots(self, fighter_slots, two_handed_fighter):
        diff = DiffEngine.generate_diff(fighter_slots, two_handed_fighter)
        next_slots = DiffEngine.build_next_slots(diff)

        removed = len(statuses(diff, DiffStatus.REMOVED))
        added_with_slot = len([e for e in statuses(diff, DiffStatus.ADDED) if e.matched_slot])
        assert len(next_slots) == len(fighter_slots) - removed + added_with_slot
        assert len(next_slots) == 12

    def test_slot_identity_is_preserved(self, fighter_slots, two_handed_fighter):
        """Replaced slots keep their own id and level, not the new feature's name."""
        diff = DiffEngine.generate_diff(fighter_slots, two_handed_fighter)
        next_slots = DiffEngine.build_next_slots(diff)

        assert [(s.id, s.level) for s in next_slots] == [(s.id, s.level) for s in fighter_slots]

    def test_unresolved_and_additive_are_dropped(self, fighter_slots):
        ghost = FeatureSlot(id="Compendium.missing", level=4, display_name="Missing Feature")
        candidate = archetype("Lost Soul", replaces("Haunting", 4, ghost), adds("Extra", 6))

        next_slots = DiffEngine.build_next_slots(DiffEngine.generate_diff(fighter_slots, candidate))

        assert next_slots == fighter_slots

    def test_split_tiers_are_persisted(self, condensed_fighter_slots):
        weapon_training = slot_by_name(condensed_fighter_slots, "Weapon Training")
        candidate = archetype(
            "Tier Hunter",
            modifies("Weapon Guard", 9, weapon_training, target_text="Weapon Training 2"),
        )
        diff = DiffEngine.generate_diff(condensed_fighter_slots, candidate, class_name="Fighter")
        next_slots = DiffEngine.build_next_slots(diff)

        tiers = [s for s in next_slots if s.id == weapon_training.id]
        assert [s.level for s in tiers] == [5, 9, 13, 17]


class TestValidateFinalState:
    """Rebuilt sequences are checked before they are committed."""

    def test_valid_sequence(self, fighter_slots):
        result = DiffEngine.validate_final_state(fighter_slots)
        assert result.valid
        assert result.errors == []

    def test_missing_reference_and_bad_level(self):
        result = DiffEngine.validate_final_state([
            FeatureSlot(id="", level=3, display_name="Nameless"),
            FeatureSlot(id="Compendium.zero", level=0, display_name="Zero"),
        ])
        assert not result.valid
        assert len(result.errors) == 2


class TestSummarize:
    """Change summaries group names by status."""

    def test_summary_groups(self, fighter_slots, two_handed_fighter):
        diff = DiffEngine.generate_diff(fighter_slots, two_handed_fighter)
        summary = DiffEngine.summarize(diff, "Two-Handed Fighter", "Fighter")

        assert summary.removed[0] == "Bravery"
        assert "Weapon Training" in summary.added
        assert summary.modified == []
        text = summary.format()
        assert text.splitlines()[0] == "Two-Handed Fighter applied to Fighter."
        assert "Replaced: Bravery" in text

    def test_empty_summary(self, fighter_slots):
        diff = DiffEngine.generate_diff(fighter_slots, ParsedArchetype(name="Nothing", slug="nothing"))
        assert DiffEngine.summarize(diff).is_empty


class TestDiffEntryInvariants:
    """DiffEntry refuses rows that break its shape."""

    def test_removed_requires_original_slot(self):
        with pytest.raises(ValueError):
            DiffEntry(status=DiffStatus.REMOVED, name="Bravery", level=2)

    def test_added_requires_claim(self):
        with pytest.raises(ValueError):
            DiffEntry(status=DiffStatus.ADDED, name="Something", level=2)
