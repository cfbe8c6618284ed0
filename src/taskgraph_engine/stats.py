"""Project-level task statistics."""

from __future__ import annotations

from typing import Any, Iterable

from .model import PRIORITY_VALUES, STATUS_VALUES, Task
from .status import completion_blockers


def summarize_tasks(tasks: Iterable[Task]) -> dict[str, Any]:
    """Count tasks by status and priority and report completion progress.

    ``waiting_on_dependencies`` counts open tasks that could not be completed
    right now because a dependency is unfinished.
    """
    task_list = list(tasks)
    by_id = {t.id: t for t in task_list}
    by_status = {value: 0 for value in STATUS_VALUES}
    by_priority = {value: 0 for value in PRIORITY_VALUES}
    subtasks_total = 0
    subtasks_done = 0
    waiting = 0

    for task in task_list:
        by_status[task.status.value] += 1
        by_priority[task.priority.value] += 1
        subtasks_total += len(task.subtasks)
        subtasks_done += sum(1 for s in task.subtasks if s.completed)
        if not task.is_completed and completion_blockers(task, by_id.get):
            waiting += 1

    total = len(task_list)
    completed = by_status["completed"]
    return {
        "total": total,
        "by_status": by_status,
        "by_priority": by_priority,
        "completion_percentage": round(completed * 100 / total, 1) if total else 0.0,
        "subtasks": {"total": subtasks_total, "completed": subtasks_done},
        "waiting_on_dependencies": waiting,
    }
