"""
Typed repository for archetype state.

Wraps a flag store with explicit records instead of free-form key
lookups. A class's slot sequence, backup, application record and version
live under the class's scope; the per-actor tracking flag (class tag ->
applied slugs) lives under the actor's scope. Classes of one actor share
that flag, so commit() merges a TrackingUpdate into its current value
instead of overwriting it.

All changes to one class go through commit(): a version check followed by
a single flag-store commit containing every field, so the backup and the
application record are written together or not at all.
"""

import copy
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from archetype_manager.data_models import (
    ApplicationRecord,
    ClassArchetypeState,
    ClassRecord,
    FeatureSlot,
)
from archetype_manager.errors import (
    ConcurrentModificationError,
    PersistenceFailure,
    UnknownClassError,
)
from archetype_manager.persistence.flag_store import FlagStore, FlagWrite

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "archetype-manager"

CLASS_RECORD_KEY = "class_record"
BACKUP_KEY = "original_associations"
APPLICATION_KEY = "application_record"
VERSION_KEY = "version"
ACTOR_TRACKING_KEY = "applied_archetypes"


class TrackingOp(str, Enum):
    """Ways a commit can change an actor's tracking flag."""

    APPEND = "append"
    REMOVE = "remove"
    CLEAR_TAG = "clear_tag"
    CLEAR_ALL = "clear_all"


@dataclass
class TrackingUpdate:
    """One change to an actor's class tag -> slugs tracking flag."""
    op: TrackingOp
    class_tag: str = ""
    slug: Optional[str] = None

    def merge(self, tracking: dict[str, list[str]]) -> dict[str, list[str]]:
        """Return the tracking value with this change applied."""
        if self.op == TrackingOp.CLEAR_ALL:
            return {}
        merged = copy.deepcopy(tracking)
        slugs = list(merged.get(self.class_tag, []))
        if self.op == TrackingOp.APPEND:
            slugs.append(self.slug)
        elif self.op == TrackingOp.REMOVE:
            slugs = [s for s in slugs if s != self.slug]
        else:
            slugs = []
        if slugs:
            merged[self.class_tag] = slugs
        else:
            merged.pop(self.class_tag, None)
        return merged


@dataclass
class ClassCommit:
    """
    Staged changes for one class, committed as a unit.

    `backup` / `application` of None remove the stored value. The actor
    tracking flag is only touched when both `actor_ref` and `tracking` are
    set; a flag left empty by the update is removed.
    """
    class_ref: str
    expected_version: int
    record: ClassRecord
    backup: Optional[list[FeatureSlot]] = None
    application: Optional[ApplicationRecord] = None
    actor_ref: Optional[str] = None
    tracking: Optional[TrackingUpdate] = None


class ArchetypeRepository:
    """
    Loads and commits per-class archetype state.
    """

    def __init__(self, flag_store: FlagStore, namespace: str = DEFAULT_NAMESPACE):
        self._store = flag_store
        self.namespace = namespace
        self._commit_lock = threading.Lock()

    def _key(self, name: str) -> str:
        return f"{self.namespace}.{name}"

    # =========================================================================
    # READS
    # =========================================================================

    def has_class(self, class_ref: str) -> bool:
        return self._store.get(class_ref, self._key(CLASS_RECORD_KEY)) is not None

    def load(self, class_ref: str) -> ClassArchetypeState:
        """
        Load the full state of a class.

        Raises:
            UnknownClassError: If no class record is stored under class_ref
        """
        record_data = self._store.get(class_ref, self._key(CLASS_RECORD_KEY))
        if record_data is None:
            raise UnknownClassError(class_ref)

        backup_data = self._store.get(class_ref, self._key(BACKUP_KEY))
        application_data = self._store.get(class_ref, self._key(APPLICATION_KEY))
        return ClassArchetypeState(
            record=ClassRecord.from_dict(record_data),
            backup=(
                [FeatureSlot.from_dict(s) for s in backup_data]
                if backup_data is not None else None
            ),
            application=(
                ApplicationRecord.from_dict(application_data)
                if application_data is not None else None
            ),
            version=self._current_version(class_ref),
        )

    def get_actor_tracking(self, actor_ref: str) -> dict[str, list[str]]:
        """Class tag -> applied slugs for one actor."""
        return self._store.get(actor_ref, self._key(ACTOR_TRACKING_KEY)) or {}

    def _current_version(self, class_ref: str) -> int:
        return int(self._store.get(class_ref, self._key(VERSION_KEY)) or 0)

    # =========================================================================
    # WRITES
    # =========================================================================

    def register_class(self, record: ClassRecord) -> None:
        """Store a new class record in its pristine state."""
        if self.has_class(record.class_ref):
            raise PersistenceFailure(f"Class record already exists: {record.class_ref}")
        self._write([
            FlagWrite(record.class_ref, self._key(CLASS_RECORD_KEY), record.to_dict()),
            FlagWrite(record.class_ref, self._key(VERSION_KEY), 0),
        ])
        logger.info(f"Registered class {record.name} ({record.class_ref}) for {record.owner_ref}")

    def commit(self, change: ClassCommit) -> int:
        """
        Commit staged class changes in a single store call.

        Returns:
            The new version of the class state

        Raises:
            ConcurrentModificationError: If the class changed since it was loaded
            PersistenceFailure: If the flag store failed to write
        """
        with self._commit_lock:
            actual = self._current_version(change.class_ref)
            if actual != change.expected_version:
                raise ConcurrentModificationError(change.class_ref, change.expected_version, actual)

            new_version = actual + 1
            scope = change.class_ref
            writes = [
                FlagWrite(scope, self._key(CLASS_RECORD_KEY), change.record.to_dict()),
                self._optional_write(
                    scope, BACKUP_KEY,
                    [s.to_dict() for s in change.backup] if change.backup is not None else None,
                ),
                self._optional_write(
                    scope, APPLICATION_KEY,
                    change.application.to_dict() if change.application is not None else None,
                ),
                FlagWrite(scope, self._key(VERSION_KEY), new_version),
            ]
            if change.actor_ref is not None and change.tracking is not None:
                # Every class of the actor shares this flag; merge under the lock
                merged = change.tracking.merge(self.get_actor_tracking(change.actor_ref))
                writes.append(self._optional_write(
                    change.actor_ref, ACTOR_TRACKING_KEY, merged or None,
                ))
            self._write(writes)

        logger.debug(f"Committed class {change.class_ref} at version {new_version}")
        return new_version

    def _optional_write(self, scope: str, name: str, value) -> FlagWrite:
        if value is None:
            return FlagWrite(scope, self._key(name), unset=True)
        return FlagWrite(scope, self._key(name), value)

    def _write(self, writes: list[FlagWrite]) -> None:
        try:
            self._store.commit(writes)
        except PersistenceFailure:
            raise
        except Exception as e:
            raise PersistenceFailure(f"Flag store write failed: {e}") from e
