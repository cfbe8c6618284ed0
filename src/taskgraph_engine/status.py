"""Status lifecycle: the four-state machine and its completion guard.

Any status may move to any other.  The single guarded transition is entering
``completed``, which requires every dependency to be completed already.
Nothing cascades: dependents are never blocked or unblocked automatically.
"""

from __future__ import annotations

from typing import Any, Callable, Optional

from loguru import logger

from .errors import DependenciesNotCompletedError, InvalidStatusError
from .model import STATUS_VALUES, Task, TaskStatus, id_sort_key, now_iso
from .store import TaskStore


def parse_status(value: Any) -> TaskStatus:
    """Coerce ``value`` to :class:`TaskStatus` or raise :class:`InvalidStatusError`."""
    if isinstance(value, TaskStatus):
        return value
    try:
        return TaskStatus(str(value))
    except ValueError:
        raise InvalidStatusError(value, STATUS_VALUES) from None


def completion_blockers(task: Task, lookup: Callable[[str], Optional[Task]]) -> list[str]:
    """Ids of dependencies that keep ``task`` from being completed.

    A dependency that no longer resolves counts as blocking.
    """
    blocking: list[str] = []
    for dep_id in task.dependencies:
        dep = lookup(dep_id)
        if (dep is None or not dep.is_completed) and dep_id not in blocking:
            blocking.append(dep_id)
    return blocking


class StatusEngine:
    """Apply status changes under the completion guard."""

    def __init__(self, store: TaskStore) -> None:
        self.store = store

    def set_status(self, task_id: str, new_status: Any) -> Task:
        target = parse_status(new_status)
        with self.store.transaction() as tx:
            task = tx.get(task_id)
            if target == TaskStatus.COMPLETED:
                by_id = {t.id: t for t in tx.list_all()}
                blocking = completion_blockers(task, by_id.get)
                if blocking:
                    raise DependenciesNotCompletedError(task.id, blocking)

            previous = task.status
            task.status = target
            if target == TaskStatus.COMPLETED:
                if previous != TaskStatus.COMPLETED:
                    task.completed_at = now_iso()
            else:
                task.completed_at = None
            task.touch()
            tx.put(task)

        logger.info("Task {} status {} -> {}", task.id, previous.value, target.value)
        return task

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def ready_tasks(self) -> list[Task]:
        """Open tasks whose dependencies are all completed, most urgent first."""
        tasks = self.store.list_all()
        by_id = {t.id: t for t in tasks}
        ready = [
            t for t in tasks
            if t.status in (TaskStatus.PENDING, TaskStatus.IN_PROGRESS)
            and not completion_blockers(t, by_id.get)
        ]
        # In-progress work first, then priority, then creation order by id.
        ready.sort(key=lambda t: (t.status != TaskStatus.IN_PROGRESS, t.priority.sort_key, id_sort_key(t.id)))
        return ready

    def next_task(self) -> Optional[Task]:
        ready = self.ready_tasks()
        return ready[0] if ready else None
