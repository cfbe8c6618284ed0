"""Task lifecycle manager: the entry point for all task manipulation.

It validates input shape, then delegates graph rules to
:class:`~taskgraph_engine.graph.DependencyGraph` and status rules to
:class:`~taskgraph_engine.status.StatusEngine`.  Every compound operation runs
inside one store transaction, so a rejected operation leaves no trace.
"""

from __future__ import annotations

from typing import Any, Optional, Union

from loguru import logger

from .errors import (
    CircularDependencyError,
    GenerationError,
    HasDependentsError,
    NotFoundError,
    SelfDependencyError,
    TaskEngineError,
    ValidationError,
)
from .events import TaskEventLog
from .generation import (
    ComplexityReport,
    GenerationService,
    HeuristicComplexityAnalyzer,
    summarize_complexity,
)
from .graph import DependencyFix, DependencyGraph, DependencyIssue
from .inputs import SubtaskInput, SubtaskPatch, TaskInput, TaskPatch, check_title, parse_input
from .model import Subtask, Task, TaskPriority, TaskStatus, id_sort_key
from .stats import summarize_tasks
from .status import StatusEngine, parse_status
from .store import TaskStore

DEFAULT_TITLE_MAX_LENGTH = 200
DEFAULT_EXPAND_COUNT = 5

_DEPENDENCY_ERRORS = (NotFoundError, SelfDependencyError, CircularDependencyError)


def _dependency_validation_error(exc: TaskEngineError) -> ValidationError:
    return ValidationError("dependencies", exc.message, reason=exc.code, **exc.context)


def _parse_priority(value: Any) -> TaskPriority:
    if isinstance(value, TaskPriority):
        return value
    try:
        return TaskPriority(str(value))
    except ValueError:
        allowed = ", ".join(p.value for p in TaskPriority)
        raise ValidationError(
            "priority", f"Invalid priority {value!r}. Must be one of: {allowed}", value=value
        ) from None


def _subtask_id(value: Any) -> int:
    if isinstance(value, bool):
        raise ValidationError("subtask_id", f"Invalid subtask id {value!r}")
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if not text.isdigit():
        raise ValidationError("subtask_id", f"Invalid subtask id {value!r}")
    return int(text)


class TaskManager:
    """Create, update and delete tasks and subtasks.

    Parameters
    ----------
    store:
        The task store that owns persisted state.
    generator:
        Optional external generation service used by :meth:`expand_task` and
        :meth:`analyze_complexity`.
    event_log:
        Optional journal receiving one event per successful mutation.
    """

    def __init__(
        self,
        store: TaskStore,
        *,
        generator: Optional[GenerationService] = None,
        event_log: Optional[TaskEventLog] = None,
        title_max_length: int = DEFAULT_TITLE_MAX_LENGTH,
        default_priority: TaskPriority = TaskPriority.MEDIUM,
        default_expand_count: int = DEFAULT_EXPAND_COUNT,
    ) -> None:
        self.store = store
        self.graph = DependencyGraph(store)
        self.status = StatusEngine(store)
        self.generator = generator
        self.analyzer = HeuristicComplexityAnalyzer()
        self.event_log = event_log
        self.title_max_length = title_max_length
        self.default_priority = default_priority
        self.default_expand_count = default_expand_count

    def _emit(self, event_type: str, task: Task, **details: Any) -> None:
        if self.event_log is not None:
            self.event_log.emit(event_type, task, **details)

    def _title(self, value: Optional[str], field_name: str = "title") -> str:
        return check_title(value, max_length=self.title_max_length, field_name=field_name)

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def create_task(self, data: Union[TaskInput, dict[str, Any]]) -> Task:
        """Create and persist a new ``pending`` task, returning it."""
        spec = parse_input(TaskInput, data)
        title = self._title(spec.title)

        with self.store.transaction() as tx:
            task_id = tx.next_id()
            try:
                dependencies = self.graph.check_dependency_set(tx, task_id, spec.dependencies)
            except _DEPENDENCY_ERRORS as exc:
                raise _dependency_validation_error(exc) from exc

            task = Task(
                id=task_id,
                title=title,
                description=spec.description,
                details=spec.details,
                test_strategy=spec.test_strategy,
                priority=spec.priority or self.default_priority,
                status=TaskStatus.PENDING,
            )
            self.graph.replace_edges(task, dependencies)
            tx.put(task, create=True)

        logger.info("Created task {}: {}", task.id, title)
        self._emit("task.created", task, priority=task.priority.value)
        return task

    def get_task(self, task_id: str) -> Task:
        return self.store.get(str(task_id))

    def list_tasks(
        self,
        *,
        status: Optional[str] = None,
        priority: Optional[str] = None,
        search: Optional[str] = None,
    ) -> list[Task]:
        wanted_status = parse_status(status) if status else None
        wanted_priority = _parse_priority(priority) if priority else None
        out: list[Task] = []
        for t in self.store.list_all():
            if wanted_status and t.status != wanted_status:
                continue
            if wanted_priority and t.priority != wanted_priority:
                continue
            if search:
                q = search.lower()
                if q not in t.title.lower() and q not in t.description.lower() and q != t.id:
                    continue
            out.append(t)
        out.sort(key=lambda t: id_sort_key(t.id))
        return out

    def update_task(self, task_id: str, patch: Union[TaskPatch, dict[str, Any], None]) -> Task:
        """Apply a partial update.  An empty patch is a no-op."""
        changes = parse_input(TaskPatch, patch).changes()
        # Null priority or dependencies means "leave as is".
        for name in ("priority", "dependencies"):
            if name in changes and changes[name] is None:
                del changes[name]
        if not changes:
            return self.get_task(task_id)

        with self.store.transaction() as tx:
            task = tx.get(str(task_id))
            if "title" in changes:
                task.title = self._title(changes["title"])
            for name in ("description", "details", "test_strategy"):
                if name in changes:
                    setattr(task, name, changes[name] or "")
            if "priority" in changes:
                task.priority = TaskPriority(changes["priority"])
            if "dependencies" in changes:
                try:
                    dependencies = self.graph.check_dependency_set(tx, task.id, changes["dependencies"])
                except _DEPENDENCY_ERRORS as exc:
                    raise _dependency_validation_error(exc) from exc
                self.graph.replace_edges(task, dependencies)
            task.touch()
            tx.put(task)

        logger.info("Updated task {} ({})", task.id, ", ".join(sorted(changes)))
        self._emit("task.updated", task, fields=sorted(changes))
        return task

    def delete_task(self, task_id: str) -> Task:
        """Delete a task nobody depends on; return the removed record."""
        with self.store.transaction() as tx:
            task = tx.get(str(task_id))
            dependents = sorted(DependencyGraph.dependents_in(tx.list_all(), task.id), key=id_sort_key)
            if dependents:
                raise HasDependentsError(task.id, dependents)
            tx.delete(task.id)

        logger.info("Deleted task {}", task.id)
        self._emit("task.deleted", task)
        return task

    # ------------------------------------------------------------------
    # Status and dependencies
    # ------------------------------------------------------------------

    def set_status(self, task_id: str, status: Any) -> Task:
        task = self.status.set_status(str(task_id), status)
        self._emit("task.status_changed", task, status=task.status.value)
        return task

    def add_dependency(self, task_id: str, dependency_id: str) -> Task:
        self.graph.add_edge(str(task_id), str(dependency_id))
        task = self.get_task(task_id)
        self._emit("task.dependency_added", task, dependency_id=str(dependency_id))
        return task

    def remove_dependency(self, task_id: str, dependency_id: str) -> Task:
        self.graph.remove_edge(str(task_id), str(dependency_id))
        task = self.get_task(task_id)
        self._emit("task.dependency_removed", task, dependency_id=str(dependency_id))
        return task

    def dependents(self, task_id: str) -> list[str]:
        return sorted(self.graph.dependents(str(task_id)), key=id_sort_key)

    def validate_dependencies(self) -> list[DependencyIssue]:
        return self.graph.validate_all()

    def fix_dependencies(self, issues: Optional[list[DependencyIssue]] = None) -> list[DependencyFix]:
        """Repair the given issues, or validate-and-repair until clean."""
        if issues is None:
            return self.graph.repair()
        return self.graph.auto_fix(issues)

    def ready_tasks(self) -> list[Task]:
        return self.status.ready_tasks()

    def next_task(self) -> Optional[Task]:
        return self.status.next_task()

    def statistics(self) -> dict[str, Any]:
        return summarize_tasks(self.store.list_all())

    # ------------------------------------------------------------------
    # Subtasks
    # ------------------------------------------------------------------

    def add_subtask(self, parent_id: str, data: Union[SubtaskInput, dict[str, Any]]) -> Subtask:
        spec = parse_input(SubtaskInput, data)
        title = self._title(spec.title)
        with self.store.transaction() as tx:
            task = tx.get(str(parent_id))
            subtask = Subtask(
                id=task.next_subtask_id(),
                title=title,
                description=spec.description,
                completed=spec.completed,
                assignee=spec.assignee,
            )
            task.subtasks.append(subtask)
            task.touch()
            tx.put(task)

        logger.info("Added subtask {}.{}: {}", task.id, subtask.id, title)
        self._emit("subtask.added", task, subtask_id=subtask.id)
        return subtask

    def update_subtask(
        self,
        parent_id: str,
        subtask_id: Any,
        patch: Union[SubtaskPatch, dict[str, Any], None],
    ) -> Subtask:
        sid = _subtask_id(subtask_id)
        changes = parse_input(SubtaskPatch, patch).changes()
        with self.store.transaction() as tx:
            task = tx.get(str(parent_id))
            subtask = task.find_subtask(sid)
            if subtask is None:
                raise NotFoundError("subtask", sid, parent_id=task.id)
            if not changes:
                return subtask
            if "title" in changes:
                subtask.title = self._title(changes["title"])
            if "description" in changes:
                subtask.description = changes["description"] or ""
            if "assignee" in changes:
                subtask.assignee = changes["assignee"]
            if changes.get("completed") is not None:
                subtask.completed = bool(changes["completed"])
            task.touch()
            tx.put(task)

        self._emit("subtask.updated", task, subtask_id=sid, fields=sorted(changes))
        return subtask

    def remove_subtask(self, parent_id: str, subtask_id: Any) -> Subtask:
        sid = _subtask_id(subtask_id)
        with self.store.transaction() as tx:
            task = tx.get(str(parent_id))
            subtask = task.find_subtask(sid)
            if subtask is None:
                raise NotFoundError("subtask", sid, parent_id=task.id)
            task.subtasks = [s for s in task.subtasks if s.id != sid]
            task.touch()
            tx.put(task)

        logger.info("Removed subtask {}.{}", task.id, sid)
        self._emit("subtask.removed", task, subtask_id=sid)
        return subtask

    def clear_subtasks(self, task_id: str) -> int:
        """Empty the subtask list; return how many were removed."""
        with self.store.transaction() as tx:
            task = tx.get(str(task_id))
            removed = len(task.subtasks)
            if removed:
                task.subtasks = []
                task.touch()
                tx.put(task)

        if removed:
            logger.info("Cleared {} subtask(s) from task {}", removed, task.id)
            self._emit("subtask.cleared", task, removed=removed)
        return removed

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def expand_task(self, task_id: str, count: Optional[int] = None, *, force: bool = False) -> list[Subtask]:
        """Ask the generation service for subtasks and store the validated ones.

        One invalid proposal rejects the whole expansion.
        """
        task_id = str(task_id)
        if self.generator is None:
            raise GenerationError("No generation service is configured", task_id=task_id)
        count = self.default_expand_count if count is None else count
        if count < 1:
            raise ValidationError("count", f"'count' must be at least 1, got {count}")

        task = self.get_task(task_id)
        if task.subtasks and not force:
            raise ValidationError(
                "force",
                f"Task {task_id} already has {len(task.subtasks)} subtask(s); use force to replace them",
                subtasks=len(task.subtasks),
            )

        try:
            proposals = list(self.generator.expand(task, count))
        except TaskEngineError:
            raise
        except Exception as exc:
            raise GenerationError(f"Generation service failed to expand task {task_id}: {exc}", task_id=task_id) from exc

        accepted: list[SubtaskInput] = []
        for index, proposal in enumerate(proposals):
            if isinstance(proposal, dict):
                title, description = proposal.get("title"), proposal.get("description")
            else:
                title, description = getattr(proposal, "title", None), getattr(proposal, "description", None)
            title = self._title(title if isinstance(title, str) else None, field_name=f"subtasks[{index}].title")
            accepted.append(SubtaskInput(title=title, description=str(description or "")))

        with self.store.transaction() as tx:
            task = tx.get(task_id)
            if force:
                task.subtasks = []
            elif task.subtasks:
                raise ValidationError("force", f"Task {task_id} gained subtasks during expansion")
            created: list[Subtask] = []
            for spec in accepted:
                subtask = Subtask(id=task.next_subtask_id(), title=spec.title, description=spec.description)
                task.subtasks.append(subtask)
                created.append(subtask)
            task.touch()
            tx.put(task)

        logger.info("Expanded task {} into {} subtask(s)", task_id, len(created))
        self._emit("task.expanded", task, subtasks=len(created), force=force)
        return created

    def analyze_complexity(self, task_id: str) -> ComplexityReport:
        task = self.get_task(task_id)
        if self.generator is None:
            return self.analyzer.analyze_complexity(task)
        try:
            return self.generator.analyze_complexity(task)
        except TaskEngineError:
            raise
        except Exception as exc:
            raise GenerationError(f"Generation service failed to analyze task {task_id}: {exc}", task_id=task.id) from exc

    def complexity_report(self) -> dict[str, Any]:
        """Score every task with the built-in heuristic and summarize the project.

        The generation service is not consulted, so the report is cheap and
        deterministic.
        """
        entries: list[dict[str, Any]] = []
        for task in sorted(self.store.list_all(), key=lambda t: id_sort_key(t.id)):
            report = self.analyzer.analyze_complexity(task)
            entries.append({
                "task_id": task.id,
                "title": task.title,
                "status": task.status.value,
                "score": report.score,
                "level": report.level,
                "factors": self.analyzer.factors(task),
            })
        return {"tasks": entries, "summary": summarize_complexity(entries)}
