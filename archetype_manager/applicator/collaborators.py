"""
External collaborators consumed by the applicator.

The applicator never talks to a UI, a chat log or an item database
directly. It is handed a permission oracle, a notification sink, a summary
channel and a derived-item factory; the implementations here cover the
command line and tests.
"""

import copy
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

from archetype_manager.data_models import ChangeSummary

logger = logging.getLogger(__name__)


# =============================================================================
# PERMISSIONS
# =============================================================================


class PermissionOracle(Protocol):
    def is_owner_or_elevated(self, actor_ref: str) -> bool:
        ...


class StaticPermissionOracle:
    """
    Permission oracle for a single user.

    An elevated (game master) user may modify any actor; otherwise only
    the actors listed as owned.
    """

    def __init__(self, elevated: bool = False, owned_actor_refs: Optional[set[str]] = None):
        self.elevated = elevated
        self.owned_actor_refs = set(owned_actor_refs or set())

    def is_owner_or_elevated(self, actor_ref: str) -> bool:
        return self.elevated or actor_ref in self.owned_actor_refs


# =============================================================================
# NOTIFICATIONS
# =============================================================================


class NotificationSink(Protocol):
    """Fire-and-forget user notices."""

    def info(self, text: str) -> None:
        ...

    def warn(self, text: str) -> None:
        ...

    def error(self, text: str) -> None:
        ...


class LoggingNotificationSink:
    """Routes notices to the logging system."""

    def __init__(self, name: str = "archetype_manager.notifications"):
        self._logger = logging.getLogger(name)

    def info(self, text: str) -> None:
        self._logger.info(text)

    def warn(self, text: str) -> None:
        self._logger.warning(text)

    def error(self, text: str) -> None:
        self._logger.error(text)


@dataclass
class Notice:
    level: str
    text: str


class RecordingNotificationSink:
    """Keeps every notice in order; used by the CLI and tests."""

    def __init__(self) -> None:
        self.notices: list[Notice] = []

    def info(self, text: str) -> None:
        self.notices.append(Notice("info", text))

    def warn(self, text: str) -> None:
        self.notices.append(Notice("warn", text))

    def error(self, text: str) -> None:
        self.notices.append(Notice("error", text))

    def texts(self, level: Optional[str] = None) -> list[str]:
        return [n.text for n in self.notices if level is None or n.level == level]

    def clear(self) -> None:
        self.notices = []


class SummaryChannel(Protocol):
    """Where post-application change summaries are published."""

    def post(self, summary: ChangeSummary) -> None:
        ...


class LoggingSummaryChannel:
    """Writes change summaries to the log."""

    def post(self, summary: ChangeSummary) -> None:
        for line in summary.format().splitlines():
            logger.info(line)


class RecordingSummaryChannel:
    """Keeps posted summaries in order."""

    def __init__(self) -> None:
        self.summaries: list[ChangeSummary] = []

    def post(self, summary: ChangeSummary) -> None:
        self.summaries.append(summary)


# =============================================================================
# DERIVED ITEMS
# =============================================================================


@dataclass
class DerivedItemSpec:
    """
    An item copy created for a modified feature.

    `flags` carries the source archetype's slug and the modified-copy
    marker so the copy can be found again on removal.
    """
    name: str
    description: str = ""
    item_type: str = "feat"
    flags: dict[str, Any] = field(default_factory=dict)

    @property
    def source_slug(self) -> Optional[str]:
        return self.flags.get("created_by_archetype")

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "item_type": self.item_type,
            "flags": copy.deepcopy(self.flags),
        }


class DerivedItemFactory(Protocol):
    def create_derived_items(self, owner_ref: str, specs: list[DerivedItemSpec]) -> list[str]:
        ...

    def delete_derived_items(self, owner_ref: str, slug: str) -> int:
        ...


class InMemoryItemFactory:
    """
    Item factory holding each owner's items in memory.
    """

    def __init__(self) -> None:
        self._items: dict[str, dict[str, DerivedItemSpec]] = {}

    def create_derived_items(self, owner_ref: str, specs: list[DerivedItemSpec]) -> list[str]:
        owned = self._items.setdefault(owner_ref, {})
        refs = []
        for spec in specs:
            item_ref = f"Item.{uuid.uuid4().hex[:16]}"
            owned[item_ref] = copy.deepcopy(spec)
            refs.append(item_ref)
        return refs

    def delete_derived_items(self, owner_ref: str, slug: str) -> int:
        owned = self._items.get(owner_ref, {})
        doomed = [ref for ref, spec in owned.items() if spec.source_slug == slug]
        for ref in doomed:
            del owned[ref]
        return len(doomed)

    def get_items(self, owner_ref: str) -> dict[str, DerivedItemSpec]:
        return dict(self._items.get(owner_ref, {}))


class FlagStoreItemFactory:
    """
    Item factory that keeps derived items in a flag store.

    Items live under the owner's scope, so a JSON-backed store keeps them
    between command line runs.
    """

    def __init__(self, flag_store, key: str = "archetype-manager.derived_items"):
        self._store = flag_store
        self.key = key

    def create_derived_items(self, owner_ref: str, specs: list[DerivedItemSpec]) -> list[str]:
        items = self._store.get(owner_ref, self.key) or {}
        refs = []
        for spec in specs:
            item_ref = f"Item.{uuid.uuid4().hex[:16]}"
            items[item_ref] = spec.to_dict()
            refs.append(item_ref)
        self._store.set(owner_ref, self.key, items)
        return refs

    def delete_derived_items(self, owner_ref: str, slug: str) -> int:
        items = self._store.get(owner_ref, self.key) or {}
        doomed = [
            ref for ref, data in items.items()
            if data.get("flags", {}).get("created_by_archetype") == slug
        ]
        if not doomed:
            return 0
        for ref in doomed:
            del items[ref]
        if items:
            self._store.set(owner_ref, self.key, items)
        else:
            self._store.unset(owner_ref, self.key)
        return len(doomed)

    def get_items(self, owner_ref: str) -> dict[str, DerivedItemSpec]:
        items = self._store.get(owner_ref, self.key) or {}
        return {
            ref: DerivedItemSpec(
                name=data["name"],
                description=data.get("description", ""),
                item_type=data.get("item_type", "feat"),
                flags=data.get("flags", {}),
            )
            for ref, data in items.items()
        }
