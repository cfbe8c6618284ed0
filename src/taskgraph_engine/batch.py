"""Best-effort bulk operations.

Each item is applied on its own; a failing item is recorded in ``errors`` and
processing continues with the next one.  Imports from the generation service
must not be all-or-nothing.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from loguru import logger

from .errors import TaskEngineError
from .lifecycle import TaskManager
from .model import Task

KIND_CREATED = "created"
KIND_UPDATED = "updated"


@dataclass
class BulkItemError:
    index: int
    code: str
    message: str
    field: Optional[str] = None
    task_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"index": self.index, "code": self.code, "message": self.message}
        if self.field is not None:
            data["field"] = self.field
        if self.task_id is not None:
            data["task_id"] = self.task_id
        return data


@dataclass
class BulkResult:
    """Outcome of one bulk call.  ``kind`` names the success key (``created`` or ``updated``)."""

    kind: str = KIND_CREATED
    total: int = 0
    created: list[Task] = field(default_factory=list)
    updated: list[Task] = field(default_factory=list)
    errors: list[BulkItemError] = field(default_factory=list)

    @property
    def summary(self) -> dict[str, int]:
        return {"total": self.total, self.kind: len(self.succeeded), "failed": len(self.errors)}

    @property
    def succeeded(self) -> list[Task]:
        return self.updated if self.kind == KIND_UPDATED else self.created

    def to_dict(self) -> dict[str, Any]:
        return {
            self.kind: [t.to_dict() for t in self.succeeded],
            "errors": [e.to_dict() for e in self.errors],
            "summary": self.summary,
        }


def _item_error(index: int, exc: TaskEngineError, task_id: Optional[str] = None) -> BulkItemError:
    return BulkItemError(
        index=index,
        code=exc.code,
        message=exc.message,
        field=getattr(exc, "field", None),
        task_id=task_id,
    )


class BatchOperator:
    def __init__(self, manager: TaskManager) -> None:
        self.manager = manager

    def bulk_create(self, items: Iterable[Any]) -> BulkResult:
        """Create every valid item; collect failures keyed by input index."""
        result = BulkResult(kind=KIND_CREATED)
        for index, item in enumerate(items):
            result.total += 1
            try:
                result.created.append(self.manager.create_task(item))
            except TaskEngineError as exc:
                logger.warning("Bulk create item {} rejected: {}", index, exc.message)
                result.errors.append(_item_error(index, exc))

        logger.info(
            "Bulk create finished: {} created, {} failed of {}",
            len(result.created), len(result.errors), result.total,
        )
        return result

    def bulk_set_status(self, task_ids: Iterable[str], status: Any) -> BulkResult:
        """Move each task to ``status``; tasks failing the guard are reported."""
        result = BulkResult(kind=KIND_UPDATED)
        for index, task_id in enumerate(task_ids):
            result.total += 1
            try:
                result.updated.append(self.manager.set_status(str(task_id), status))
            except TaskEngineError as exc:
                logger.warning("Bulk status change for task {} rejected: {}", task_id, exc.message)
                result.errors.append(_item_error(index, exc, task_id=str(task_id)))

        logger.info(
            "Bulk status change to {} finished: {} updated, {} failed of {}",
            status, len(result.updated), len(result.errors), result.total,
        )
        return result
