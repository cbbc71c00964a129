"""
Per-class serialization of applicator calls.

apply, remove and restore read the class state, decide, then write. Two
calls on the same (actor, class) pair must never interleave, so each pair
gets its own re-entrant lock. Calls on different classes run freely.
"""

import threading
from contextlib import contextmanager
from typing import Iterator


class ClassLockRegistry:
    """
    Hands out one lock per (actor, class) pair.

    Locks are kept for the lifetime of the registry, one per pair ever
    seen. The registry belongs to one Applicator, so its size is bounded
    by the classes that applicator has touched.
    """

    def __init__(self) -> None:
        self._locks: dict[tuple[str, str], threading.RLock] = {}
        self._guard = threading.Lock()

    def get(self, actor_ref: str, class_ref: str) -> threading.RLock:
        key = (actor_ref, class_ref)
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, actor_ref: str, class_ref: str) -> Iterator[None]:
        lock = self.get(actor_ref, class_ref)
        with lock:
            yield

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
