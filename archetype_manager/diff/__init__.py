"""Diff engine: compares a class's slot sequence with an archetype."""

from archetype_manager.diff.diff_engine import DiffEngine, FinalStateValidation

__all__ = [
    "DiffEngine",
    "FinalStateValidation",
]
