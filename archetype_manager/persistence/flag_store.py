"""
Flag stores: per-record key-value persistence.

Every record (actor, class) owns a scope of flags. Values are plain
JSON-compatible data and round-trip as deep copies, so live state never
shares mutable references with what is stored.

Besides single get/set/unset calls, a store accepts a batch of writes
through commit(); the batch is applied all-or-nothing. This is the only
write path the repository uses for archetype state.
"""

import copy
import json
import logging
import os
import tempfile
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Protocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FlagWrite:
    """One staged write; `unset=True` removes the key instead."""
    scope: str
    key: str
    value: Any = None
    unset: bool = False


class FlagStore(Protocol):
    """Per-record key-value persistence."""

    def get(self, scope: str, key: str) -> Any:
        ...

    def set(self, scope: str, key: str, value: Any) -> None:
        ...

    def unset(self, scope: str, key: str) -> None:
        ...

    def commit(self, writes: list[FlagWrite]) -> None:
        ...


class InMemoryFlagStore:
    """
    Flag store held in memory.

    Writes are durable for the lifetime of the object once the call
    returns. Subclasses persist elsewhere by overriding _persist().
    """

    def __init__(self, data: Optional[dict[str, dict[str, Any]]] = None):
        self._data: dict[str, dict[str, Any]] = copy.deepcopy(data) if data else {}
        self._lock = threading.RLock()

    def get(self, scope: str, key: str) -> Any:
        with self._lock:
            return copy.deepcopy(self._data.get(scope, {}).get(key))

    def set(self, scope: str, key: str, value: Any) -> None:
        self.commit([FlagWrite(scope=scope, key=key, value=value)])

    def unset(self, scope: str, key: str) -> None:
        self.commit([FlagWrite(scope=scope, key=key, unset=True)])

    def scopes(self) -> list[str]:
        with self._lock:
            return list(self._data.keys())

    def keys(self, scope: str) -> list[str]:
        with self._lock:
            return list(self._data.get(scope, {}).keys())

    def snapshot(self) -> dict[str, dict[str, Any]]:
        """Deep copy of everything stored."""
        with self._lock:
            return copy.deepcopy(self._data)

    def commit(self, writes: list[FlagWrite]) -> None:
        """
        Apply a batch of writes atomically.

        The batch is staged on a copy of the affected scopes; the live data
        is only swapped once every write staged and persisted cleanly.
        """
        if not writes:
            return
        with self._lock:
            staged = {scope: dict(flags) for scope, flags in self._data.items()}
            for write in writes:
                flags = staged.setdefault(write.scope, {})
                if write.unset:
                    flags.pop(write.key, None)
                else:
                    flags[write.key] = copy.deepcopy(write.value)
                if not flags:
                    del staged[write.scope]
            self._persist(staged)
            self._data = staged
        logger.debug(f"Committed {len(writes)} flag write(s)")

    def _persist(self, data: dict[str, dict[str, Any]]) -> None:
        """Hook for durable stores; raising here aborts the commit."""


class JsonFlagStore(InMemoryFlagStore):
    """
    Flag store persisted to a JSON file.

    Each commit rewrites the file through a temporary file and an atomic
    rename, so a crash mid-write never leaves a half-written store.
    """

    def __init__(self, filepath: Path | str):
        self.filepath = Path(filepath)
        data: dict[str, dict[str, Any]] = {}
        if self.filepath.exists():
            with open(self.filepath, "r", encoding="utf-8") as f:
                data = json.load(f)
            logger.info(f"Loaded flag store from {self.filepath}: {len(data)} scopes")
        super().__init__(data)

    def _persist(self, data: dict[str, dict[str, Any]]) -> None:
        self.filepath.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            prefix=f".{self.filepath.name}.", suffix=".tmp", dir=self.filepath.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_path, self.filepath)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
