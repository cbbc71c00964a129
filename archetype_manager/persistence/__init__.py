"""
Persistence for archetype state.

The flag store is the only persistence; the repository layers typed
records and single-call commits on top of it.
"""

from archetype_manager.persistence.flag_store import (
    FlagStore,
    FlagWrite,
    InMemoryFlagStore,
    JsonFlagStore,
)
from archetype_manager.persistence.repository import (
    ACTOR_TRACKING_KEY,
    APPLICATION_KEY,
    BACKUP_KEY,
    CLASS_RECORD_KEY,
    DEFAULT_NAMESPACE,
    VERSION_KEY,
    ArchetypeRepository,
    ClassCommit,
    TrackingOp,
    TrackingUpdate,
)

__all__ = [
    # Flag stores
    "FlagStore",
    "FlagWrite",
    "InMemoryFlagStore",
    "JsonFlagStore",
    # Repository
    "ArchetypeRepository",
    "ClassCommit",
    "TrackingOp",
    "TrackingUpdate",
    "DEFAULT_NAMESPACE",
    "CLASS_RECORD_KEY",
    "BACKUP_KEY",
    "APPLICATION_KEY",
    "VERSION_KEY",
    "ACTOR_TRACKING_KEY",
]
