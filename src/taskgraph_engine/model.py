"""Task and subtask records for the dependency engine.

Dependencies are stored as id references (``Task.dependencies``) rather than
object links, so the whole collection is an arena of records keyed by id.
Records are plain dataclasses that serialize to YAML / JSON friendly dicts.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def sort_key(self) -> int:
        """Lower sorts first: critical work comes before low."""
        return {"critical": 0, "high": 1, "medium": 2, "low": 3}[self.value]


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    BLOCKED = "blocked"


STATUS_VALUES = [s.value for s in TaskStatus]
PRIORITY_VALUES = [p.value for p in TaskPriority]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def id_sort_key(task_id: str) -> tuple[int, int, str]:
    """Order ids numerically when they are numbers, lexically otherwise."""
    text = str(task_id)
    if text.isdigit():
        return (0, int(text), "")
    return (1, 0, text)


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass
class Subtask:
    id: int
    title: str
    description: str = ""
    completed: bool = False
    assignee: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Subtask":
        return cls(
            id=int(data["id"]),
            title=str(data.get("title", "")),
            description=str(data.get("description", "") or ""),
            completed=bool(data.get("completed", False)),
            assignee=data.get("assignee"),
        )


@dataclass
class Task:
    """A unit of work with status, priority, dependencies and subtasks."""

    id: str
    title: str
    description: str = ""
    details: str = ""
    test_strategy: str = ""
    priority: TaskPriority = TaskPriority.MEDIUM
    status: TaskStatus = TaskStatus.PENDING

    # Edges: ids this task needs completed first, in insertion order.
    dependencies: list[str] = field(default_factory=list)
    dependency_added_at: dict[str, str] = field(default_factory=dict)

    subtasks: list[Subtask] = field(default_factory=list)

    created_at: str = field(default_factory=now_iso)
    updated_at: str = field(default_factory=now_iso)
    completed_at: Optional[str] = None

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a plain dict for YAML/JSON persistence."""
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "details": self.details,
            "test_strategy": self.test_strategy,
            "priority": self.priority.value,
            "status": self.status.value,
            "dependencies": list(self.dependencies),
            "dependency_added_at": dict(self.dependency_added_at),
            "subtasks": [s.to_dict() for s in self.subtasks],
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "completed_at": self.completed_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Task":
        """Deserialize from a plain dict.

        Unknown enum values fall back to the defaults so that a hand-edited
        store file still loads; ``validate_all`` reports graph damage instead.
        """
        try:
            priority = TaskPriority(str(data.get("priority") or "medium"))
        except ValueError:
            priority = TaskPriority.MEDIUM
        try:
            status = TaskStatus(str(data.get("status") or "pending"))
        except ValueError:
            status = TaskStatus.PENDING

        return cls(
            id=str(data["id"]),
            title=str(data.get("title", "")),
            description=str(data.get("description", "") or ""),
            details=str(data.get("details", "") or ""),
            test_strategy=str(data.get("test_strategy", "") or ""),
            priority=priority,
            status=status,
            dependencies=[str(d) for d in (data.get("dependencies") or [])],
            dependency_added_at={
                str(k): str(v) for k, v in (data.get("dependency_added_at") or {}).items()
            },
            subtasks=[Subtask.from_dict(s) for s in (data.get("subtasks") or [])],
            created_at=str(data.get("created_at") or now_iso()),
            updated_at=str(data.get("updated_at") or now_iso()),
            completed_at=data.get("completed_at"),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def touch(self) -> None:
        """Bump ``updated_at`` to now."""
        self.updated_at = now_iso()

    @property
    def is_completed(self) -> bool:
        return self.status == TaskStatus.COMPLETED

    def find_subtask(self, subtask_id: int) -> Optional[Subtask]:
        for sub in self.subtasks:
            if sub.id == subtask_id:
                return sub
        return None

    def next_subtask_id(self) -> int:
        return max((s.id for s in self.subtasks), default=0) + 1
