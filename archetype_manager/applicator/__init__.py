"""
Applicator: applies, removes and restores archetypes on class records.

Provides:
- Applicator: the stateful operations over the repository
- Collaborator protocols (permissions, notices, summaries, item copies)
  with in-memory implementations for the CLI and tests
"""

from archetype_manager.applicator.applicator import (
    MODIFIED_COPY_FLAG,
    SOURCE_ARCHETYPE_FLAG,
    Applicator,
)
from archetype_manager.applicator.collaborators import (
    DerivedItemFactory,
    DerivedItemSpec,
    FlagStoreItemFactory,
    InMemoryItemFactory,
    LoggingNotificationSink,
    LoggingSummaryChannel,
    Notice,
    NotificationSink,
    PermissionOracle,
    RecordingNotificationSink,
    RecordingSummaryChannel,
    StaticPermissionOracle,
    SummaryChannel,
)
from archetype_manager.applicator.locks import ClassLockRegistry
from archetype_manager.applicator.results import (
    ApplicatorConfig,
    ApplicatorState,
    ApplyResult,
    RestoreResult,
    RestoreScope,
)

__all__ = [
    # Applicator
    "Applicator",
    "ApplicatorConfig",
    "ApplicatorState",
    "ApplyResult",
    "RestoreResult",
    "RestoreScope",
    "ClassLockRegistry",
    "MODIFIED_COPY_FLAG",
    "SOURCE_ARCHETYPE_FLAG",
    # Collaborators
    "PermissionOracle",
    "StaticPermissionOracle",
    "NotificationSink",
    "LoggingNotificationSink",
    "RecordingNotificationSink",
    "Notice",
    "SummaryChannel",
    "LoggingSummaryChannel",
    "RecordingSummaryChannel",
    "DerivedItemSpec",
    "DerivedItemFactory",
    "InMemoryItemFactory",
    "FlagStoreItemFactory",
]
