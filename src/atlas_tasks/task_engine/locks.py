"""Per-path mutation locks.

At most one mutation is in flight for any path.  Locks are created on demand,
reference counted, and dropped once nobody holds or waits on them, so the
table only ever contains paths that are currently busy.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterable, Iterator

from loguru import logger


class PathLocks:
    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, list] = {}  # path -> [RLock, refcount]

    def _checkout(self, path: str) -> threading.RLock:
        with self._guard:
            entry = self._locks.get(path)
            if entry is None:
                entry = [threading.RLock(), 0]
                self._locks[path] = entry
            entry[1] += 1
            return entry[0]

    def _checkin(self, path: str) -> None:
        with self._guard:
            entry = self._locks.get(path)
            if entry is None:
                return
            entry[1] -= 1
            if entry[1] <= 0:
                del self._locks[path]

    @contextmanager
    def hold(self, paths: Iterable[str]) -> Iterator[list[str]]:
        """Acquire every lock in *paths*, in sorted order, for the block.

        Sorted acquisition keeps concurrent callers deadlock free.  The locks
        are re-entrant so a thread may nest ``hold`` calls over overlapping
        paths.
        """
        ordered = sorted(set(paths))
        acquired: list[tuple[str, threading.RLock]] = []
        thread_id = threading.current_thread().name
        try:
            for path in ordered:
                lock = self._checkout(path)
                try:
                    lock.acquire()
                except BaseException:
                    self._checkin(path)
                    raise
                acquired.append((path, lock))
            logger.debug("Thread {} holds {} path lock(s)", thread_id, len(acquired))
            yield ordered
        finally:
            for path, lock in reversed(acquired):
                lock.release()
                self._checkin(path)

    def busy(self) -> list[str]:
        """Paths currently held or awaited."""
        with self._guard:
            return sorted(self._locks)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
