"""Task and dependency consistency engine.

Keeps a collection of tasks whose dependency graph is always acyclic, whose
status transitions honour the completion guard, and whose subtasks stay
consistent with their parent.
"""

from __future__ import annotations

from .batch import BatchOperator, BulkItemError, BulkResult
from .config import EngineSettings, build_manager, load_config
from .errors import (
    CircularDependencyError,
    ConflictError,
    DependenciesNotCompletedError,
    DuplicateEdgeError,
    GenerationError,
    HasDependentsError,
    InvalidStatusError,
    NotFoundError,
    SelfDependencyError,
    StoreError,
    TaskEngineError,
    ValidationError,
)
from .graph import DependencyFix, DependencyGraph, DependencyIssue
from .lifecycle import TaskManager
from .logging_setup import configure_logging
from .model import Subtask, Task, TaskPriority, TaskStatus
from .status import StatusEngine
from .store import InMemoryTaskStore, TaskStore, YamlTaskStore

__all__ = [
    "BatchOperator",
    "BulkItemError",
    "BulkResult",
    "CircularDependencyError",
    "ConflictError",
    "DependenciesNotCompletedError",
    "DependencyFix",
    "DependencyGraph",
    "DependencyIssue",
    "DuplicateEdgeError",
    "EngineSettings",
    "GenerationError",
    "HasDependentsError",
    "InMemoryTaskStore",
    "InvalidStatusError",
    "NotFoundError",
    "SelfDependencyError",
    "StatusEngine",
    "StoreError",
    "Subtask",
    "Task",
    "TaskEngineError",
    "TaskManager",
    "TaskPriority",
    "TaskStatus",
    "TaskStore",
    "ValidationError",
    "YamlTaskStore",
    "build_manager",
    "configure_logging",
    "load_config",
]
