"""
Applicator states, settings and results.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from archetype_manager.errors import OutcomeCode


class ApplicatorState(str, Enum):
    """
    Per (actor, class) state.

    PRISTINE: no backup exists. ARCHETYPED: a backup exists and at least
    one archetype is applied. restore returns to PRISTINE.
    """
    PRISTINE = "pristine"
    ARCHETYPED = "archetyped"


class RestoreScope(str, Enum):
    """How much of the actor's tracking flag a restore clears."""
    ACTOR = "actor"     # The whole flag, every class of the actor
    CLASS = "class"     # Only the restored class's entry


@dataclass
class ApplicatorConfig:
    """Settings that change applicator behaviour."""
    module_title: str = "PF1e Archetype Manager"
    restore_scope: RestoreScope = RestoreScope.ACTOR
    guard_conflicts_on_apply: bool = True
    validate_class: bool = True


@dataclass
class ApplyResult:
    """Outcome of an apply or remove call."""
    success: bool
    outcome: OutcomeCode
    message: str = ""
    created_items: list[str] = field(default_factory=list)
    unresolved: list[str] = field(default_factory=list)
    version: Optional[int] = None


@dataclass
class RestoreResult:
    """Outcome of a restore from backup."""
    success: bool
    restored_count: int
    message: str
    outcome: Optional[OutcomeCode] = None
