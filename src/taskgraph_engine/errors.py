"""Structured, caller-facing errors raised by the task engine.

Every error carries a stable ``code`` plus the ids or field names needed to
render a precise message.  ``to_dict()`` gives a JSON-friendly payload.
"""

from __future__ import annotations

from typing import Any, Optional


class TaskEngineError(Exception):
    """Base class for all engine errors."""

    code = "task_engine_error"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        payload.update(self.context)
        return payload


class NotFoundError(TaskEngineError):
    """A referenced task, subtask or dependency edge does not exist."""

    code = "not_found"

    def __init__(self, entity: str, entity_id: Any, *, parent_id: Optional[str] = None) -> None:
        if parent_id is not None:
            message = f"{entity.capitalize()} {entity_id} not found in task {parent_id}"
            super().__init__(message, entity=entity, id=entity_id, parent_id=parent_id)
        else:
            super().__init__(f"{entity.capitalize()} {entity_id} not found", entity=entity, id=entity_id)
        self.entity = entity
        self.entity_id = entity_id
        self.parent_id = parent_id


class ValidationError(TaskEngineError, ValueError):
    """Malformed input: empty title, bad enum value, bad id, bad dependency set."""

    code = "validation_error"

    def __init__(self, field: str, message: str, **details: Any) -> None:
        super().__init__(message, field=field, details=details)
        self.field = field
        self.details = details


class InvalidStatusError(ValidationError):
    code = "invalid_status"

    def __init__(self, value: Any, allowed: list[str]) -> None:
        super().__init__(
            "status",
            f"Invalid status {value!r}. Must be one of: {', '.join(allowed)}",
            value=value,
            allowed=allowed,
        )
        self.value = value


class SelfDependencyError(TaskEngineError):
    code = "self_dependency"

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task {task_id} cannot depend on itself", task_id=task_id)
        self.task_id = task_id


class DuplicateEdgeError(TaskEngineError):
    code = "duplicate_edge"

    def __init__(self, task_id: str, dependency_id: str) -> None:
        super().__init__(
            f"Task {task_id} already depends on {dependency_id}",
            task_id=task_id,
            dependency_id=dependency_id,
        )
        self.task_id = task_id
        self.dependency_id = dependency_id


class CircularDependencyError(TaskEngineError):
    """Adding ``task_id -> dependency_id`` would close ``cycle``.

    ``cycle`` lists the ids forming the loop once, starting at ``task_id``.
    """

    code = "circular_dependency"

    def __init__(self, task_id: str, dependency_id: str, cycle: list[str]) -> None:
        path = " -> ".join([*cycle, cycle[0]]) if cycle else ""
        super().__init__(
            f"Adding dependency {task_id} -> {dependency_id} would create a cycle: {path}",
            task_id=task_id,
            dependency_id=dependency_id,
            cycle=cycle,
        )
        self.task_id = task_id
        self.dependency_id = dependency_id
        self.cycle = cycle


class DependenciesNotCompletedError(TaskEngineError):
    code = "dependencies_not_completed"

    def __init__(self, task_id: str, blocking: list[str]) -> None:
        super().__init__(
            f"Task {task_id} cannot be completed; unfinished dependencies: {blocking}",
            task_id=task_id,
            blocking=blocking,
        )
        self.task_id = task_id
        self.blocking = blocking


class HasDependentsError(TaskEngineError):
    code = "has_dependents"

    def __init__(self, task_id: str, dependents: list[str]) -> None:
        super().__init__(
            f"Task {task_id} cannot be deleted; tasks {dependents} depend on it",
            task_id=task_id,
            dependents=dependents,
        )
        self.task_id = task_id
        self.dependents = dependents


class ConflictError(TaskEngineError):
    code = "conflict"

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task {task_id} already exists", id=task_id)
        self.task_id = task_id


class GenerationError(TaskEngineError):
    """The generation collaborator is missing or failed."""

    code = "generation_error"

    def __init__(self, message: str, *, task_id: Optional[str] = None) -> None:
        super().__init__(message, task_id=task_id)
        self.task_id = task_id


class StoreError(TaskEngineError):
    """Persisted state could not be read or written."""

    code = "store_error"

    def __init__(self, message: str, *, path: Optional[str] = None) -> None:
        super().__init__(message, path=path)
        self.path = path
