"""Transactional task stores.

:class:`TaskStore` is the abstract collaborator the engines talk to.  Two
concrete stores are provided:

* :class:`InMemoryTaskStore` keeps committed state in process memory (tests,
  embedding in a larger service).
* :class:`YamlTaskStore` persists to a single YAML file, guarded by a
  cross-process file lock, written atomically (write-tmp-then-rename).

All reads and writes go through :meth:`TaskStore.transaction`, which serializes
writers with a re-entrant lock, buffers changes and commits them only when the
block exits cleanly.  Any exception rolls the buffer back.
"""

from __future__ import annotations

import copy
import os
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager, nullcontext
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, ContextManager, Iterator, Optional

import yaml
from filelock import FileLock, Timeout
from loguru import logger

from .errors import ConflictError, NotFoundError, StoreError
from .model import Task, id_sort_key

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

STORE_VERSION = 1
LOCK_TIMEOUT = 30  # seconds


# ---------------------------------------------------------------------------
# Abstract collaborator
# ---------------------------------------------------------------------------

class TaskStore(ABC):
    """Keyed storage for :class:`Task` records."""

    @abstractmethod
    def transaction(self) -> ContextManager["TaskStore"]:
        """Group several operations into one atomic, serialized unit."""
        raise NotImplementedError

    @abstractmethod
    def get(self, task_id: str) -> Task:
        """Return a copy of the task or raise :class:`NotFoundError`."""
        raise NotImplementedError

    @abstractmethod
    def exists(self, task_id: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def put(self, task: Task, *, create: bool = False) -> Task:
        """Insert (``create=True``) or replace a task record."""
        raise NotImplementedError

    @abstractmethod
    def delete(self, task_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def list_all(self) -> list[Task]:
        raise NotImplementedError

    @abstractmethod
    def next_id(self) -> str:
        """Allocate a fresh task id.  Ids are never reused."""
        raise NotImplementedError


# ---------------------------------------------------------------------------
# Buffered implementation shared by the concrete stores
# ---------------------------------------------------------------------------

@dataclass
class _StoreState:
    records: dict[str, dict[str, Any]] = field(default_factory=dict)
    last_id: int = 0


class _BufferedTaskStore(TaskStore):
    """Implements the store API over a state snapshot loaded per transaction."""

    def __init__(self) -> None:
        self._thread_lock = threading.RLock()
        self._state: Optional[_StoreState] = None
        self._dirty = False

    # -- backend hooks ------------------------------------------------------

    @abstractmethod
    def _read(self) -> _StoreState:
        raise NotImplementedError

    @abstractmethod
    def _write(self, state: _StoreState) -> None:
        raise NotImplementedError

    def _process_lock(self) -> ContextManager[Any]:
        return nullcontext()

    # -- transactions -------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator["TaskStore"]:
        """Acquire the lock, load state, yield, and commit on clean exit.

        Usage::

            with store.transaction() as tx:
                task = tx.get("3")
                task.title = "Renamed"
                tx.put(task)
                # committed on exit, rolled back if the block raises
        """
        with self._thread_lock:
            if self._state is not None:
                # Nested: the outer transaction owns commit/rollback.
                yield self
                return
            with self._process_lock():
                self._state = self._read()
                self._dirty = False
                try:
                    yield self
                    if self._dirty:
                        self._write(self._state)
                        logger.debug("Committed task store transaction ({} tasks)", len(self._state.records))
                finally:
                    self._state = None
                    self._dirty = False

    def _current(self) -> _StoreState:
        if self._state is None:
            raise StoreError("Task store accessed outside a transaction")
        return self._state

    # -- public API ---------------------------------------------------------

    def get(self, task_id: str) -> Task:
        with self.transaction():
            raw = self._current().records.get(str(task_id))
            if raw is None:
                raise NotFoundError("task", task_id)
            return Task.from_dict(raw)

    def exists(self, task_id: str) -> bool:
        with self.transaction():
            return str(task_id) in self._current().records

    def put(self, task: Task, *, create: bool = False) -> Task:
        with self.transaction():
            state = self._current()
            present = task.id in state.records
            if create and present:
                raise ConflictError(task.id)
            if not create and not present:
                raise NotFoundError("task", task.id)
            state.records[task.id] = task.to_dict()
            if task.id.isdigit():
                state.last_id = max(state.last_id, int(task.id))
            self._dirty = True
            return task

    def delete(self, task_id: str) -> None:
        with self.transaction():
            state = self._current()
            if str(task_id) not in state.records:
                raise NotFoundError("task", task_id)
            del state.records[str(task_id)]
            self._dirty = True

    def list_all(self) -> list[Task]:
        with self.transaction():
            return [Task.from_dict(raw) for raw in self._current().records.values()]

    def next_id(self) -> str:
        with self.transaction():
            state = self._current()
            numeric = [int(k) for k in state.records if k.isdigit()]
            state.last_id = max([state.last_id, *numeric]) + 1
            self._dirty = True
            return str(state.last_id)


# ---------------------------------------------------------------------------
# Concrete stores
# ---------------------------------------------------------------------------

class InMemoryTaskStore(_BufferedTaskStore):
    """Process-local store; each transaction works on a deep copy."""

    def __init__(self, tasks: Optional[list[Task]] = None) -> None:
        super().__init__()
        self._committed = _StoreState()
        for task in tasks or []:
            self._committed.records[task.id] = task.to_dict()
            if task.id.isdigit():
                self._committed.last_id = max(self._committed.last_id, int(task.id))

    def _read(self) -> _StoreState:
        return copy.deepcopy(self._committed)

    def _write(self, state: _StoreState) -> None:
        self._committed = state


class YamlTaskStore(_BufferedTaskStore):
    """File-backed store for :class:`Task` records.

    Parameters
    ----------
    path:
        YAML file holding ``{"version": 1, "last_id": N, "tasks": [...]}``.
    lock_path:
        Lock file; defaults to ``<path>.lock``.
    """

    def __init__(self, path: Path, lock_path: Optional[Path] = None) -> None:
        super().__init__()
        self.path = Path(path)
        self.lock_path = Path(lock_path) if lock_path else self.path.with_suffix(self.path.suffix + ".lock")
        self._file_lock = FileLock(str(self.lock_path), timeout=LOCK_TIMEOUT)

    @contextmanager
    def _process_lock(self) -> Iterator[None]:
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with self._file_lock:
                yield
        except Timeout as exc:
            raise StoreError(f"Timed out waiting for {self.lock_path.name}", path=str(self.lock_path)) from exc

    def _read(self) -> _StoreState:
        if not self.path.exists():
            return _StoreState()
        try:
            data = yaml.safe_load(self.path.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as exc:
            raise StoreError(f"{self.path.name}: {exc.__class__.__name__}: {exc}", path=str(self.path)) from exc
        if data is None:
            return _StoreState()
        if not isinstance(data, dict):
            raise StoreError(
                f"{self.path.name}: expected object, got {type(data).__name__}", path=str(self.path)
            )
        state = _StoreState(last_id=int(data.get("last_id", 0) or 0))
        for item in data.get("tasks") or []:
            if isinstance(item, dict) and "id" in item:
                item = dict(item)
                item["id"] = str(item["id"])
                state.records[item["id"]] = item
        return state

    def _write(self, state: _StoreState) -> None:
        payload = {
            "version": STORE_VERSION,
            "last_id": state.last_id,
            "tasks": [state.records[k] for k in sorted(state.records, key=id_sort_key)],
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(f"{self.path.suffix}.tmp")
        try:
            with tmp_path.open("w", encoding="utf-8") as handle:
                yaml.safe_dump(payload, handle, sort_keys=False)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_path, self.path)
        except OSError as exc:
            tmp_path.unlink(missing_ok=True)
            raise StoreError(f"{self.path.name}: {exc}", path=str(self.path)) from exc
