"""
Observability for archetype operations.

Provides an ordered log of every apply, restore, remove and rollback.
"""

from archetype_manager.observability.event_log import (
    EventLog,
    EventType,
    OperationEvent,
    get_event_log,
    reset_event_log,
)

__all__ = [
    "EventLog",
    "EventType",
    "OperationEvent",
    "get_event_log",
    "reset_event_log",
]
