"""Persistence contract and the bundled task stores.

The engine only talks to :class:`TaskStore`.  Three adapters ship with the
package:

* :class:`MemoryTaskStore` keeps tasks in a dict (tests, ephemeral use).
* :class:`FileTaskStore` keeps every task in a single YAML document guarded
  by an exclusive file lock and written with write-tmp-then-rename.
* :class:`SqliteTaskStore` keeps one row per task in a WAL-journaled SQLite
  database and fronts ``get`` with a bounded LRU cache.

Stores hand out copies: mutating a returned :class:`Task` never changes the
stored state until it is passed back to :meth:`TaskStore.save`.  ``subtasks``
is derived and never persisted.
"""

from __future__ import annotations

import json
import sqlite3
import threading
from abc import ABC, abstractmethod
from collections import OrderedDict
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional, Union

from loguru import logger

from ..config import EngineConfig
from ..constants import DEFAULT_BUSY_TIMEOUT, DEFAULT_CACHE_SIZE, LOCK_SUFFIX, SQLITE_STORE_SUFFIX, YAML_STORE_SUFFIX
from ..errors import StoreError
from ..io_utils import FileLock, _atomic_write_yaml, _load_data_with_error
from .model import Task, TaskStatus
from .paths import match_pattern

StatusLike = Union[TaskStatus, str]

STORE_FORMAT_VERSION = 1


def _status_value(status: StatusLike) -> str:
    return TaskStatus(status).value


def _detached(task: Task) -> Task:
    stored = task.clone()
    stored.subtasks = []
    return stored


# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------

class TaskStore(ABC):
    """Persistence collaborator used by the engine."""

    @abstractmethod
    def get(self, path: str) -> Optional[Task]:
        ...

    @abstractmethod
    def save(self, task: Task) -> Task:
        """Insert or replace *task*. The caller owns ``metadata.version``."""

    @abstractmethod
    def delete(self, path: str) -> bool:
        """Remove a single path; returns False when it did not exist."""

    @abstractmethod
    def list_all(self) -> list[Task]:
        ...

    @abstractmethod
    def clear_all(self) -> int:
        """Remove every task and return how many were removed."""

    def list_by_pattern(self, pattern: str) -> list[Task]:
        return [t for t in self.list_all() if match_pattern(pattern, t.path)]

    def list_by_status(self, status: StatusLike) -> list[Task]:
        value = _status_value(status)
        return [t for t in self.list_all() if t.status.value == value]

    def list_children(self, parent_path: str) -> list[Task]:
        return [t for t in self.list_all() if t.parent_path == parent_path]

    @contextmanager
    def transaction(self) -> Iterator["TaskStore"]:
        """Group writes so they land together. Stores without rollback yield directly."""
        yield self

    def vacuum(self) -> None:
        return None

    def analyze(self) -> None:
        return None

    def checkpoint(self) -> None:
        return None

    def close(self) -> None:
        return None


# ---------------------------------------------------------------------------
# In-memory store
# ---------------------------------------------------------------------------

class MemoryTaskStore(TaskStore):
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._tasks: dict[str, Task] = {}

    def get(self, path: str) -> Optional[Task]:
        with self._lock:
            task = self._tasks.get(path)
            return task.clone() if task else None

    def save(self, task: Task) -> Task:
        stored = _detached(task)
        with self._lock:
            self._tasks[stored.path] = stored
        return stored.clone()

    def delete(self, path: str) -> bool:
        with self._lock:
            return self._tasks.pop(path, None) is not None

    def list_all(self) -> list[Task]:
        with self._lock:
            return [self._tasks[p].clone() for p in sorted(self._tasks)]

    def clear_all(self) -> int:
        with self._lock:
            count = len(self._tasks)
            self._tasks = {}
            return count

    @contextmanager
    def transaction(self) -> Iterator["MemoryTaskStore"]:
        with self._lock:
            # Stored tasks are never mutated in place, so a shallow copy
            # is a complete snapshot.
            snapshot = dict(self._tasks)
            try:
                yield self
            except BaseException:
                self._tasks = snapshot
                raise


# ---------------------------------------------------------------------------
# YAML file store
# ---------------------------------------------------------------------------

class FileTaskStore(TaskStore):
    """Every task in one YAML document.

    Each call acquires the file lock, loads the document and, for writes,
    rewrites it atomically.  Inside :meth:`transaction` the document is loaded
    once, edited in memory, and written back only if the block succeeds.

    Parameters
    ----------
    store_path:
        The YAML file. Its lock file sits beside it.
    """

    def __init__(self, store_path: Path) -> None:
        self._store_path = Path(store_path)
        self._lock_path = self._store_path.with_suffix(self._store_path.suffix + LOCK_SUFFIX)
        self._file_lock = FileLock(self._lock_path)
        self._mutex = threading.RLock()
        self._lock_held = False
        self._buffer: Optional[dict[str, dict[str, Any]]] = None
        self._dirty = False

    @property
    def store_path(self) -> Path:
        return self._store_path

    # -- internal helpers ---------------------------------------------------

    @contextmanager
    def _locked(self) -> Iterator[None]:
        with self._mutex:
            if self._lock_held:
                yield
                return
            with self._file_lock:
                self._lock_held = True
                try:
                    yield
                finally:
                    self._lock_held = False

    def _read_file(self) -> dict[str, dict[str, Any]]:
        data, err = _load_data_with_error(self._store_path, {"tasks": []})
        if err:
            # Refuse to continue so a corrupted store is never overwritten.
            raise StoreError(f"Cannot read task store: {err}", operation="load")
        raw = data.get("tasks") or []
        if not isinstance(raw, list):
            raise StoreError(f"Cannot read task store: {self._store_path.name}: 'tasks' is not a list", operation="load")
        return {str(d["path"]): d for d in raw if isinstance(d, dict) and d.get("path")}

    def _write_file(self, tasks: dict[str, dict[str, Any]]) -> None:
        payload = {"version": STORE_FORMAT_VERSION, "tasks": [tasks[p] for p in sorted(tasks)]}
        try:
            _atomic_write_yaml(self._store_path, payload)
        except OSError as exc:
            raise StoreError(f"Cannot write task store: {exc}", operation="save") from exc

    def _load(self) -> dict[str, dict[str, Any]]:
        if self._buffer is not None:
            return self._buffer
        return self._read_file()

    def _commit(self, tasks: dict[str, dict[str, Any]]) -> None:
        if self._buffer is not None:
            self._buffer = tasks
            self._dirty = True
        else:
            self._write_file(tasks)

    # -- contract -----------------------------------------------------------

    def get(self, path: str) -> Optional[Task]:
        with self._locked():
            raw = self._load().get(path)
            return Task.from_dict(raw) if raw else None

    def save(self, task: Task) -> Task:
        stored = _detached(task)
        with self._locked():
            tasks = self._load()
            tasks[stored.path] = stored.to_dict()
            self._commit(tasks)
        return stored

    def delete(self, path: str) -> bool:
        with self._locked():
            tasks = self._load()
            if tasks.pop(path, None) is None:
                return False
            self._commit(tasks)
            return True

    def list_all(self) -> list[Task]:
        with self._locked():
            tasks = self._load()
            return [Task.from_dict(tasks[p]) for p in sorted(tasks)]

    def clear_all(self) -> int:
        with self._locked():
            count = len(self._load())
            self._commit({})
            return count

    @contextmanager
    def transaction(self) -> Iterator["FileTaskStore"]:
        with self._locked():
            if self._buffer is not None:
                yield self
                return
            self._buffer = self._read_file()
            self._dirty = False
            try:
                yield self
            except BaseException:
                logger.debug("Discarding uncommitted changes to {}", self._store_path.name)
                raise
            else:
                if self._dirty:
                    self._write_file(self._buffer)
            finally:
                self._buffer = None
                self._dirty = False

    def vacuum(self) -> None:
        # Rewriting the document drops stale formatting and unknown entries.
        with self._locked():
            if self._store_path.exists():
                self._write_file(self._load())


# ---------------------------------------------------------------------------
# SQLite store
# ---------------------------------------------------------------------------

class TaskCache:
    """Bounded LRU cache of tasks keyed by path."""

    def __init__(self, capacity: int = DEFAULT_CACHE_SIZE) -> None:
        self.capacity = max(0, int(capacity))
        self._items: OrderedDict[str, Task] = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, path: str) -> Optional[Task]:
        with self._lock:
            task = self._items.get(path)
            if task is None:
                self.misses += 1
                return None
            self._items.move_to_end(path)
            self.hits += 1
            return task.clone()

    def put(self, task: Task) -> None:
        if self.capacity == 0:
            return
        with self._lock:
            self._items[task.path] = task.clone()
            self._items.move_to_end(task.path)
            while len(self._items) > self.capacity:
                self._items.popitem(last=False)

    def invalidate(self, path: str) -> None:
        with self._lock:
            self._items.pop(path, None)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def __contains__(self, path: object) -> bool:
        with self._lock:
            return path in self._items


_COLUMNS = (
    "path, name, description, type, status, parent_path, dependencies, "
    "retry_status, metadata, version, project_path, updated_at"
)


class SqliteTaskStore(TaskStore):
    """
    SQLite task store.

    Thread-safety:
    - each call opens its own connection
    - a transaction pins one connection to the calling thread until it ends
    """

    def __init__(
        self,
        db_path: Union[str, Path],
        cache_size: int = DEFAULT_CACHE_SIZE,
        busy_timeout: float = DEFAULT_BUSY_TIMEOUT,
    ) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._busy_timeout = busy_timeout
        self._local = threading.local()
        # Serializes cache fill against write-then-invalidate.
        self._cache_lock = threading.RLock()
        self.cache = TaskCache(cache_size)
        self._ensure_schema()
        logger.info("SqliteTaskStore ready db={} cache_size={}", self._db_path, cache_size)

    @property
    def db_path(self) -> Path:
        return self._db_path

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=self._busy_timeout, isolation_level=None)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        return conn

    @property
    def _tx_conn(self) -> Optional[sqlite3.Connection]:
        return getattr(self._local, "conn", None)

    @contextmanager
    def _conn(self, operation: str, path: Optional[str] = None) -> Iterator[sqlite3.Connection]:
        """Yield the thread's transaction connection, or a fresh autocommit one."""
        pinned = self._tx_conn
        if pinned is not None:
            try:
                yield pinned
            except sqlite3.Error as exc:
                raise StoreError(f"SQLite {operation} failed: {exc}", operation=operation, path=path) from exc
            return
        try:
            conn = self._get_conn()
        except sqlite3.Error as exc:
            raise StoreError(f"Cannot open task database: {exc}", operation=operation, path=path) from exc
        try:
            yield conn
        except sqlite3.Error as exc:
            raise StoreError(f"SQLite {operation} failed: {exc}", operation=operation, path=path) from exc
        finally:
            conn.close()

    def _ensure_schema(self) -> None:
        with self._conn("init") as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    path TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    description TEXT NOT NULL DEFAULT '',
                    type TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    parent_path TEXT,
                    dependencies TEXT NOT NULL DEFAULT '[]',
                    retry_status TEXT,
                    metadata TEXT NOT NULL DEFAULT '{}',
                    version INTEGER NOT NULL DEFAULT 1,
                    project_path TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_tasks_parent ON tasks(parent_path)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_tasks_project ON tasks(project_path)")

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> Task:
        return Task.from_dict(
            {
                "path": row["path"],
                "name": row["name"],
                "description": row["description"],
                "type": row["type"],
                "status": row["status"],
                "parent_path": row["parent_path"],
                "dependencies": json.loads(row["dependencies"] or "[]"),
                "retry_status": row["retry_status"],
                "metadata": json.loads(row["metadata"] or "{}"),
            }
        )

    def _select(self, operation: str, where: str = "", params: tuple = ()) -> list[Task]:
        sql = f"SELECT {_COLUMNS} FROM tasks {where} ORDER BY path"
        with self._conn(operation) as conn:
            rows = conn.execute(sql, params).fetchall()
        return [self._row_to_task(r) for r in rows]

    def _invalidate(self, path: str) -> None:
        with self._cache_lock:
            self.cache.invalidate(path)
        touched = getattr(self._local, "touched", None)
        if touched is not None:
            touched.add(path)

    # ---- contract ----

    def get(self, path: str) -> Optional[Task]:
        if self._tx_conn is not None:
            # Uncommitted rows must never reach the shared cache.
            found = self._select("get", "WHERE path = ?", (path,))
            return found[0] if found else None
        with self._cache_lock:
            cached = self.cache.get(path)
            if cached is not None:
                return cached
            found = self._select("get", "WHERE path = ?", (path,))
            if not found:
                return None
            self.cache.put(found[0])
            return found[0]

    def save(self, task: Task) -> Task:
        stored = _detached(task)
        row = (
            stored.path,
            stored.name,
            stored.description,
            stored.type.value,
            stored.status.value,
            stored.parent_path,
            json.dumps(stored.dependencies),
            stored.retry_status.value if stored.retry_status else None,
            json.dumps(stored.metadata.to_dict(), ensure_ascii=False),
            stored.version,
            stored.project_path,
            stored.metadata.updated_at,
        )
        with self._conn("save", stored.path) as conn:
            conn.execute(f"INSERT OR REPLACE INTO tasks ({_COLUMNS}) VALUES (?,?,?,?,?,?,?,?,?,?,?,?)", row)
        self._invalidate(stored.path)
        return stored.clone()

    def delete(self, path: str) -> bool:
        with self._conn("delete", path) as conn:
            cur = conn.execute("DELETE FROM tasks WHERE path = ?", (path,))
            removed = cur.rowcount > 0
        self._invalidate(path)
        return removed

    def list_all(self) -> list[Task]:
        return self._select("list_all")

    def list_by_pattern(self, pattern: str) -> list[Task]:
        if "[" in pattern or "]" in pattern:
            candidates = self.list_all()
        else:
            # GLOB's '*' also crosses '/', so it only narrows the candidates.
            candidates = self._select("list_by_pattern", "WHERE path GLOB ?", (pattern,))
        return [t for t in candidates if match_pattern(pattern, t.path)]

    def list_by_status(self, status: StatusLike) -> list[Task]:
        return self._select("list_by_status", "WHERE status = ?", (_status_value(status),))

    def list_children(self, parent_path: str) -> list[Task]:
        return self._select("list_children", "WHERE parent_path = ?", (parent_path,))

    def count(self) -> int:
        with self._conn("count") as conn:
            row = conn.execute("SELECT COUNT(*) AS n FROM tasks").fetchone()
        return int(row["n"])

    def clear_all(self) -> int:
        with self._conn("clear_all") as conn:
            cur = conn.execute("DELETE FROM tasks")
            removed = max(cur.rowcount, 0)
        with self._cache_lock:
            self.cache.clear()
        return removed

    @contextmanager
    def transaction(self) -> Iterator["SqliteTaskStore"]:
        if self._tx_conn is not None:
            yield self
            return
        try:
            conn = self._get_conn()
        except sqlite3.Error as exc:
            raise StoreError(f"Cannot open task database: {exc}", operation="transaction") from exc
        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as exc:
            conn.close()
            raise StoreError(f"Cannot begin transaction: {exc}", operation="transaction") from exc
        self._local.conn = conn
        self._local.touched = set()
        try:
            yield self
        except BaseException:
            try:
                conn.execute("ROLLBACK")
            except sqlite3.Error as exc:
                logger.error("SQLite rollback failed: {}", exc)
            raise
        else:
            try:
                conn.execute("COMMIT")
            except sqlite3.Error as exc:
                conn.execute("ROLLBACK")
                raise StoreError(f"SQLite commit failed: {exc}", operation="transaction") from exc
        finally:
            with self._cache_lock:
                for path in self._local.touched:
                    self.cache.invalidate(path)
            self._local.conn = None
            self._local.touched = None
            conn.close()

    # ---- maintenance ----

    def vacuum(self) -> None:
        with self._conn("vacuum") as conn:
            conn.execute("VACUUM")
        logger.info("Vacuumed task database {}", self._db_path.name)

    def analyze(self) -> None:
        with self._conn("analyze") as conn:
            conn.execute("ANALYZE")

    def checkpoint(self) -> None:
        with self._conn("checkpoint") as conn:
            conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")

    def close(self) -> None:
        self.cache.clear()


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

def create_store(config: EngineConfig) -> TaskStore:
    """Build the store selected by ``config.storage_backend``."""
    backend = config.storage_backend
    if backend == "memory":
        return MemoryTaskStore()
    base = config.storage_path
    if backend == "yaml":
        return FileTaskStore(base / f"{config.storage_name}{YAML_STORE_SUFFIX}")
    if backend == "sqlite":
        return SqliteTaskStore(
            base / f"{config.storage_name}{SQLITE_STORE_SUFFIX}",
            cache_size=config.cache_size,
            busy_timeout=config.busy_timeout,
        )
    raise ValueError(f"Unknown storage backend: {backend!r}")
