"""
Outcome codes and exceptions for the Archetype Manager.

Expected outcomes (permission denied, already applied, no backup) are
reported through return values and user notices; only persistence
problems are raised.
"""

from enum import Enum


class OutcomeCode(str, Enum):
    """Result of an applicator operation."""
    APPLIED = "applied"
    RESTORED = "restored"
    REMOVED = "removed"
    PERMISSION_DENIED = "permission_denied"
    ALREADY_APPLIED = "already_applied"
    NOT_APPLIED = "not_applied"
    NO_BACKUP_FOUND = "no_backup_found"
    CLASS_MISMATCH = "class_mismatch"
    CONFLICT = "conflict"
    UNRESOLVED_TARGET = "unresolved_target"
    INVALID_FINAL_STATE = "invalid_final_state"
    PERSISTENCE_FAILURE = "persistence_failure"

    @property
    def is_success(self) -> bool:
        return self in (OutcomeCode.APPLIED, OutcomeCode.RESTORED, OutcomeCode.REMOVED)


class ArchetypeManagerError(Exception):
    """Base class for archetype manager errors."""


class UnknownClassError(ArchetypeManagerError):
    """Raised when a class record cannot be found in the store."""

    def __init__(self, class_ref: str):
        self.class_ref = class_ref
        super().__init__(f"Unknown class record: {class_ref}")


class PersistenceFailure(ArchetypeManagerError):
    """Raised when the underlying flag store fails to write."""


class ConcurrentModificationError(PersistenceFailure):
    """Raised when a commit is based on a stale version of the class state."""

    def __init__(self, class_ref: str, expected: int, actual: int):
        self.class_ref = class_ref
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Class {class_ref} changed concurrently (expected version {expected}, found {actual})"
        )
