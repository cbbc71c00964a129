"""Conflict checking between archetypes competing for the same slots."""

from archetype_manager.conflicts.conflict_checker import (
    CanApplyResult,
    ConflictChecker,
    CumulativeReplacements,
    ReplacementEntry,
    StackValidation,
)

__all__ = [
    "CanApplyResult",
    "ConflictChecker",
    "CumulativeReplacements",
    "ReplacementEntry",
    "StackValidation",
]
