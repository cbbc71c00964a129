"""
Event log for archetype operations.

Captures every apply, restore, remove and rollback with its outcome, so a
session's archetype history can be inspected or saved alongside the flag
store.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional
import json
import logging
import threading

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Types of events that can be logged."""

    APPLY = "apply"
    RESTORE = "restore"
    REMOVE = "remove"
    ROLLBACK = "rollback"
    CUSTOM = "custom"


@dataclass
class OperationEvent:
    """One applicator operation and how it ended."""

    event_type: EventType = EventType.CUSTOM
    timestamp: datetime = field(default_factory=datetime.now)
    sequence_number: int = 0
    actor_ref: str = ""
    class_ref: str = ""
    slug: Optional[str] = None
    outcome: str = ""
    message: str = ""
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.outcome in ("applied", "restored", "removed")

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "event_type": self.event_type.value,
            "timestamp": self.timestamp.isoformat(),
            "sequence_number": self.sequence_number,
            "actor_ref": self.actor_ref,
            "class_ref": self.class_ref,
            "slug": self.slug,
            "outcome": self.outcome,
            "message": self.message,
            "details": self.details,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OperationEvent":
        """Create from dictionary."""
        return cls(
            event_type=EventType(data["event_type"]),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            sequence_number=data.get("sequence_number", 0),
            actor_ref=data.get("actor_ref", ""),
            class_ref=data.get("class_ref", ""),
            slug=data.get("slug"),
            outcome=data.get("outcome", ""),
            message=data.get("message", ""),
            details=data.get("details", {}),
        )

    def __str__(self) -> str:
        slug = f" {self.slug}" if self.slug else ""
        text = f"[{self.sequence_number}] {self.event_type.value.upper()}{slug} on {self.class_ref}: {self.outcome}"
        if self.message:
            text += f" ({self.message})"
        return text


class EventLog:
    """
    Ordered log of archetype operations.
    """

    def __init__(self) -> None:
        self._events: list[OperationEvent] = []
        self._sequence = 0
        self._session_start = datetime.now()
        self._lock = threading.Lock()

    def reset(self) -> None:
        with self._lock:
            self._events = []
            self._sequence = 0
            self._session_start = datetime.now()

    def record(self, event: OperationEvent) -> OperationEvent:
        """Append an event, assigning its sequence number."""
        with self._lock:
            self._sequence += 1
            event.sequence_number = self._sequence
            self._events.append(event)
        logger.debug(str(event))
        return event

    def get_events(
        self,
        event_type: Optional[EventType] = None,
        class_ref: Optional[str] = None,
    ) -> list[OperationEvent]:
        events = self._events
        if event_type is not None:
            events = [e for e in events if e.event_type == event_type]
        if class_ref is not None:
            events = [e for e in events if e.class_ref == class_ref]
        return list(events)

    def last_event(self) -> Optional[OperationEvent]:
        return self._events[-1] if self._events else None

    def __len__(self) -> int:
        return len(self._events)

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_start": self._session_start.isoformat(),
            "sequence": self._sequence,
            "events": [e.to_dict() for e in self._events],
        }

    def save(self, filepath: str) -> None:
        """Save the log to a JSON file."""
        with open(filepath, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2)
        logger.info(f"EventLog saved to {filepath}: {len(self._events)} events")

    @classmethod
    def load(cls, filepath: str) -> "EventLog":
        """Load a log from a file into the global instance."""
        with open(filepath, "r", encoding="utf-8") as f:
            data = json.load(f)

        log = get_event_log()
        log.reset()
        log._session_start = datetime.fromisoformat(data["session_start"])
        log._sequence = data.get("sequence", 0)
        for event_data in data.get("events", []):
            log._events.append(OperationEvent.from_dict(event_data))

        logger.info(f"EventLog loaded from {filepath}: {len(log._events)} events")
        return log

    def format_log(self, max_events: Optional[int] = None) -> str:
        """Format the log as a human-readable string."""
        lines = [
            "=== Archetype Event Log ===",
            f"Session: {self._session_start.isoformat()}",
            f"Total Events: {len(self._events)}",
            "",
        ]
        events = self._events
        if max_events:
            events = events[-max_events:]
        for event in events:
            lines.append(str(event))
        return "\n".join(lines)


# Singleton access
_event_log: Optional[EventLog] = None


def get_event_log() -> EventLog:
    """Get the global EventLog instance."""
    global _event_log
    if _event_log is None:
        _event_log = EventLog()
    return _event_log


def reset_event_log() -> EventLog:
    """Reset and return the global EventLog instance."""
    log = get_event_log()
    log.reset()
    return log
