"""
Pytest fixtures for the Archetype Manager test suite.

Provides reusable fixtures for slot sequences, parsed archetypes, flag
stores, repositories and a fully wired applicator.
"""

import pytest

from archetype_manager.applicator import (
    Applicator,
    ApplicatorConfig,
    InMemoryItemFactory,
    RecordingNotificationSink,
    RecordingSummaryChannel,
    StaticPermissionOracle,
)
from archetype_manager.data_models import ClassRecord, ParsedArchetype
from archetype_manager.features.scalable_features import ScalableFeatureRegistry
from archetype_manager.observability import EventLog, reset_event_log
from archetype_manager.persistence import ArchetypeRepository, InMemoryFlagStore

from tests.helpers import ACTOR, CLASS_REF, adds, make_slot, modifies, replaces


# =============================================================================
# SINGLETON RESET
# =============================================================================


@pytest.fixture(autouse=True)
def reset_singletons():
    """Reset global singletons between tests."""
    reset_event_log()
    yield
    reset_event_log()


# =============================================================================
# SLOT FIXTURES
# =============================================================================


@pytest.fixture
def fighter_slots():
    """Twelve-slot fighter sequence with tiered features stored one per tier."""
    return [
        make_slot("bonus-feat", 1, "Bonus Feat"),
        make_slot("bravery", 2, "Bravery"),
        make_slot("armor-training-1", 3, "Armor Training 1"),
        make_slot("weapon-training-1", 5, "Weapon Training 1"),
        make_slot("armor-training-2", 7, "Armor Training 2"),
        make_slot("weapon-training-2", 9, "Weapon Training 2"),
        make_slot("armor-training-3", 11, "Armor Training 3"),
        make_slot("weapon-training-3", 13, "Weapon Training 3"),
        make_slot("armor-training-4", 15, "Armor Training 4"),
        make_slot("weapon-training-4", 17, "Weapon Training 4"),
        make_slot("armor-mastery", 19, "Armor Mastery"),
        make_slot("weapon-mastery", 20, "Weapon Mastery"),
    ]


@pytest.fixture
def condensed_fighter_slots():
    """Fighter sequence with Weapon Training stored as one condensed slot."""
    return [
        make_slot("bonus-feat", 1, "Bonus Feat"),
        make_slot("bravery", 2, "Bravery"),
        make_slot("armor-training", 3, "Armor Training"),
        make_slot("weapon-training", 5, "Weapon Training"),
        make_slot("armor-mastery", 19, "Armor Mastery"),
        make_slot("weapon-mastery", 20, "Weapon Mastery"),
    ]


# =============================================================================
# ARCHETYPE FIXTURES
# =============================================================================


@pytest.fixture
def two_handed_fighter(fighter_slots):
    """Replaces six base slots and grants one additive feature."""
    s = {slot.display_name: slot for slot in fighter_slots}
    return ParsedArchetype(
        name="Two-Handed Fighter",
        slug="two-handed-fighter",
        class_tag="fighter",
        claims=(
            replaces("Shattering Strike", 2, s["Bravery"]),
            replaces("Overhand Chop", 3, s["Armor Training 1"]),
            adds("Weapon Training", 5),
            replaces("Backswing", 7, s["Armor Training 2"]),
            replaces("Piledriver", 11, s["Armor Training 3"]),
            replaces("Greater Power Attack", 15, s["Armor Training 4"]),
            replaces("Devastating Blow", 19, s["Armor Mastery"]),
        ),
    )


@pytest.fixture
def brawler(fighter_slots):
    """Replaces Bravery with a qualified target name."""
    s = {slot.display_name: slot for slot in fighter_slots}
    return ParsedArchetype(
        name="Brawler",
        slug="brawler",
        class_tag="fighter",
        claims=(
            replaces("Close Control", 2, s["Bravery"], target_text="BRAVERY (Ex)"),
            replaces("Close Combatant", 3, s["Armor Training 1"], target_text="Armor Training 1"),
        ),
    )


@pytest.fixture
def unbreakable(fighter_slots):
    """Replaces Bravery only."""
    s = {slot.display_name: slot for slot in fighter_slots}
    return ParsedArchetype(
        name="Unbreakable",
        slug="unbreakable",
        class_tag="fighter",
        claims=(replaces("Unflinching", 2, s["Bravery"]),),
    )


@pytest.fixture
def armor_master(fighter_slots):
    """Modifies Armor Mastery and adds one feature; never touches Bravery."""
    s = {slot.display_name: slot for slot in fighter_slots}
    return ParsedArchetype(
        name="Armor Master",
        slug="armor-master",
        class_tag="fighter",
        claims=(
            modifies("Deflective Shield", 19, s["Armor Mastery"], description="Applies to shields."),
            adds("Armored Confidence", 2),
        ),
    )


@pytest.fixture
def weapon_master(fighter_slots):
    """Modifies Weapon Training 1 and replaces Weapon Mastery."""
    s = {slot.display_name: slot for slot in fighter_slots}
    return ParsedArchetype(
        name="Weapon Master",
        slug="weapon-master",
        class_tag="fighter",
        claims=(
            modifies("Weapon Guard", 5, s["Weapon Training 1"]),
            replaces("Weapon Mastery Supreme", 20, s["Weapon Mastery"]),
        ),
    )


# =============================================================================
# PERSISTENCE AND APPLICATOR FIXTURES
# =============================================================================


@pytest.fixture
def flag_store():
    return InMemoryFlagStore()


@pytest.fixture
def repository(flag_store):
    return ArchetypeRepository(flag_store)


@pytest.fixture
def fighter_record(fighter_slots):
    return ClassRecord(
        class_ref=CLASS_REF,
        name="Fighter",
        owner_ref=ACTOR,
        tag="fighter",
        slots=list(fighter_slots),
    )


@pytest.fixture
def registered_fighter(repository, fighter_record):
    repository.register_class(fighter_record)
    return fighter_record


@pytest.fixture
def notifications():
    return RecordingNotificationSink()


@pytest.fixture
def summaries():
    return RecordingSummaryChannel()


@pytest.fixture
def item_factory():
    return InMemoryItemFactory()


@pytest.fixture
def event_log():
    return EventLog()


@pytest.fixture
def make_applicator(repository, notifications, summaries, item_factory, event_log):
    """Factory building an applicator over the shared collaborators."""

    def _make(elevated: bool = False, owned=(ACTOR,), config: ApplicatorConfig = None, repo=None):
        return Applicator(
            repository=repo if repo is not None else repository,
            permissions=StaticPermissionOracle(elevated=elevated, owned_actor_refs=set(owned)),
            notifications=notifications,
            item_factory=item_factory,
            summary_channel=summaries,
            config=config,
            event_log=event_log,
        )

    return _make


@pytest.fixture
def applicator(make_applicator, registered_fighter):
    return make_applicator()


@pytest.fixture
def fresh_scalable_registry():
    """Rebuild the scalable registry singleton around a test."""
    ScalableFeatureRegistry.reset()
    yield ScalableFeatureRegistry()
    ScalableFeatureRegistry.reset()
