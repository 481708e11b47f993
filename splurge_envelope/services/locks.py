"""Per-object mutual exclusion."""

import threading
from contextlib import contextmanager
from typing import Iterator


class KeyedLock:
    """A lock per object key, created on demand and dropped when unused."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, list] = {}  # key -> [lock, holders]

    @contextmanager
    def hold(self, object_key: str) -> Iterator[None]:
        """Hold the lock for one object key."""
        with self._guard:
            entry = self._locks.setdefault(object_key, [threading.Lock(), 0])
            entry[1] += 1

        entry[0].acquire()
        try:
            yield
        finally:
            entry[0].release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[object_key]

    def is_locked(self, object_key: str) -> bool:
        """Return True if some caller currently holds or waits for the key."""
        with self._guard:
            return object_key in self._locks
