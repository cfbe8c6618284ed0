"""Dependency graph engine: edge management, cycle detection and repair.

Edges are stored on the owning task as ``task.dependencies`` (ids of the tasks
it waits for).  This module is the only writer of those lists; everything else
goes through :class:`DependencyGraph`.

Repair policy (``auto_fix``):

* dangling, self-referencing and duplicate entries are dropped from the
  owning task;
* for a cycle, the one edge with the latest ``dependency_added_at`` timestamp
  among the edges forming the loop is removed.  Ties, including edges with no
  recorded timestamp, go to the edge owned by the highest task id.
"""

from __future__ import annotations

from collections import defaultdict, deque
from dataclasses import asdict, dataclass, field
from typing import Any, Iterable, Optional

from loguru import logger

from .errors import (
    CircularDependencyError,
    DuplicateEdgeError,
    NotFoundError,
    SelfDependencyError,
)
from .model import Task, id_sort_key, now_iso
from .store import TaskStore


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------

ISSUE_DANGLING = "dangling"
ISSUE_SELF = "self"
ISSUE_DUPLICATE = "duplicate"
ISSUE_CYCLE = "cycle"


@dataclass
class DependencyIssue:
    """One problem found by :meth:`DependencyGraph.validate_all`."""

    kind: str
    task_id: str
    dependency_id: Optional[str] = None
    cycle: list[str] = field(default_factory=list)

    @property
    def message(self) -> str:
        if self.kind == ISSUE_DANGLING:
            return f"Task {self.task_id} depends on missing task {self.dependency_id}"
        if self.kind == ISSUE_SELF:
            return f"Task {self.task_id} depends on itself"
        if self.kind == ISSUE_DUPLICATE:
            return f"Task {self.task_id} lists dependency {self.dependency_id} more than once"
        return "Dependency cycle: " + " -> ".join([*self.cycle, self.cycle[0]])

    def cycle_edges(self) -> list[tuple[str, str]]:
        n = len(self.cycle)
        return [(self.cycle[i], self.cycle[(i + 1) % n]) for i in range(n)]

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["message"] = self.message
        return data


@dataclass
class DependencyFix:
    """An edge removed by :meth:`DependencyGraph.auto_fix`."""

    kind: str
    task_id: str
    dependency_id: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# ---------------------------------------------------------------------------
# Graph helpers
# ---------------------------------------------------------------------------

def _adjacency(tasks: Iterable[Task]) -> dict[str, list[str]]:
    """Map each task id to its existing, non-self, de-duplicated dependencies."""
    task_list = list(tasks)
    ids = {t.id for t in task_list}
    graph: dict[str, list[str]] = {}
    for t in task_list:
        deps: list[str] = []
        for dep in t.dependencies:
            if dep != t.id and dep in ids and dep not in deps:
                deps.append(dep)
        graph[t.id] = deps
    return graph


def _find_path(graph: dict[str, list[str]], start: str, target: str) -> Optional[list[str]]:
    """Shortest dependency path ``start -> ... -> target`` (BFS), or None."""
    parents: dict[str, Optional[str]] = {start: None}
    queue: deque[str] = deque([start])
    while queue:
        current = queue.popleft()
        if current == target:
            path = [current]
            while parents[path[-1]] is not None:
                path.append(parents[path[-1]])  # type: ignore[arg-type]
            return list(reversed(path))
        for dep in graph.get(current, []):
            if dep not in parents:
                parents[dep] = current
                queue.append(dep)
    return None


def _find_cycles(graph: dict[str, list[str]]) -> list[list[str]]:
    """One depth-first pass with recursion-stack tracking; O(V + E).

    Every back edge yields one cycle, reported from the node it lands on.
    """
    white, gray, black = 0, 1, 2
    color = {node: white for node in graph}
    cycles: list[list[str]] = []

    for root in sorted(graph, key=id_sort_key):
        if color[root] != white:
            continue
        color[root] = gray
        path = [root]
        stack = [(root, iter(graph[root]))]
        while stack:
            node, neighbours = stack[-1]
            nxt = next(neighbours, None)
            if nxt is None:
                color[node] = black
                stack.pop()
                path.pop()
                continue
            if color[nxt] == gray:
                cycles.append(path[path.index(nxt):])
            elif color[nxt] == white:
                color[nxt] = gray
                path.append(nxt)
                stack.append((nxt, iter(graph[nxt])))
    return cycles


def _drop_edge(task: Task, dependency_id: str) -> None:
    task.dependencies = [d for d in task.dependencies if d != dependency_id]
    task.dependency_added_at.pop(dependency_id, None)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class DependencyGraph:
    """Maintain acyclicity of the task dependency graph and answer queries.

    Parameters
    ----------
    store:
        The task store; every check-then-write runs inside one of its
        transactions so concurrent edge inserts cannot both pass the cycle
        check against a stale graph.
    """

    def __init__(self, store: TaskStore) -> None:
        self.store = store

    # ------------------------------------------------------------------
    # Edges
    # ------------------------------------------------------------------

    def add_edge(self, task_id: str, dependency_id: str) -> list[str]:
        """Make ``task_id`` depend on ``dependency_id``; return its dependencies."""
        task_id, dependency_id = str(task_id), str(dependency_id)
        with self.store.transaction() as tx:
            task = tx.get(task_id)
            if not tx.exists(dependency_id):
                raise NotFoundError("task", dependency_id)
            if task_id == dependency_id:
                raise SelfDependencyError(task_id)
            if dependency_id in task.dependencies:
                raise DuplicateEdgeError(task_id, dependency_id)

            path = _find_path(_adjacency(tx.list_all()), dependency_id, task_id)
            if path is not None:
                raise CircularDependencyError(task_id, dependency_id, [task_id, *path[:-1]])

            task.dependencies.append(dependency_id)
            task.dependency_added_at[dependency_id] = now_iso()
            task.touch()
            tx.put(task)

        logger.info("Added dependency {} -> {}", task_id, dependency_id)
        return list(task.dependencies)

    def remove_edge(self, task_id: str, dependency_id: str) -> list[str]:
        """Remove an existing edge.  Removing a missing edge is an error."""
        task_id, dependency_id = str(task_id), str(dependency_id)
        with self.store.transaction() as tx:
            task = tx.get(task_id)
            if dependency_id not in task.dependencies:
                raise NotFoundError("dependency", dependency_id, parent_id=task_id)
            _drop_edge(task, dependency_id)
            task.touch()
            tx.put(task)

        logger.info("Removed dependency {} -> {}", task_id, dependency_id)
        return list(task.dependencies)

    def dependencies(self, task_id: str) -> list[str]:
        return list(self.store.get(str(task_id)).dependencies)

    def dependents(self, task_id: str) -> set[str]:
        """Ids of tasks whose ``dependencies`` include ``task_id``."""
        return self.dependents_in(self.store.list_all(), str(task_id))

    @staticmethod
    def dependents_in(tasks: Iterable[Task], task_id: str) -> set[str]:
        return {t.id for t in tasks if t.id != task_id and task_id in t.dependencies}

    # ------------------------------------------------------------------
    # Whole-set validation (used by create / update)
    # ------------------------------------------------------------------

    def check_dependency_set(self, tx: TaskStore, task_id: str, dependency_ids: Iterable[str]) -> list[str]:
        """Validate a replacement dependency set for ``task_id``.

        Returns the de-duplicated ids in input order.  The cycle check runs
        against the current graph with ``task_id``'s own edges removed, since
        the new set replaces them.
        """
        wanted: list[str] = []
        for dep in dependency_ids:
            dep = str(dep)
            if dep not in wanted:
                wanted.append(dep)

        for dep in wanted:
            if dep == task_id:
                raise SelfDependencyError(task_id)
            if not tx.exists(dep):
                raise NotFoundError("task", dep)

        graph = _adjacency(tx.list_all())
        graph[task_id] = []
        for dep in wanted:
            path = _find_path(graph, dep, task_id)
            if path is not None:
                raise CircularDependencyError(task_id, dep, [task_id, *path[:-1]])
        return wanted

    @staticmethod
    def replace_edges(task: Task, dependency_ids: list[str]) -> None:
        """Write an already-checked set onto ``task``, keeping old timestamps."""
        stamp = now_iso()
        task.dependency_added_at = {
            dep: task.dependency_added_at.get(dep, stamp) for dep in dependency_ids
        }
        task.dependencies = list(dependency_ids)

    # ------------------------------------------------------------------
    # Validation and repair
    # ------------------------------------------------------------------

    def validate_all(self) -> list[DependencyIssue]:
        """Scan every task and report dangling, self, duplicate and cycle issues."""
        tasks = sorted(self.store.list_all(), key=lambda t: id_sort_key(t.id))
        ids = {t.id for t in tasks}
        issues: list[DependencyIssue] = []

        for task in tasks:
            seen: set[str] = set()
            for dep in task.dependencies:
                if dep == task.id:
                    issues.append(DependencyIssue(ISSUE_SELF, task.id, dep))
                elif dep not in ids:
                    issues.append(DependencyIssue(ISSUE_DANGLING, task.id, dep))
                elif dep in seen:
                    issues.append(DependencyIssue(ISSUE_DUPLICATE, task.id, dep))
                seen.add(dep)

        for cycle in _find_cycles(_adjacency(tasks)):
            issues.append(DependencyIssue(ISSUE_CYCLE, cycle[0], cycle=cycle))

        if issues:
            logger.warning("Dependency validation found {} issue(s)", len(issues))
            for issue in issues:
                logger.warning(issue.message)
        return issues

    def auto_fix(self, issues: Iterable[DependencyIssue]) -> list[DependencyFix]:
        """Apply the repair policy described in the module docstring."""
        fixes: list[DependencyFix] = []
        with self.store.transaction() as tx:
            tasks = {t.id: t for t in tx.list_all()}
            changed: set[str] = set()

            for issue in issues:
                if issue.kind in (ISSUE_DANGLING, ISSUE_SELF):
                    task = tasks.get(issue.task_id)
                    if task is None or issue.dependency_id not in task.dependencies:
                        continue
                    _drop_edge(task, issue.dependency_id)  # type: ignore[arg-type]
                    changed.add(task.id)
                    fixes.append(DependencyFix(issue.kind, task.id, issue.dependency_id))  # type: ignore[arg-type]

                elif issue.kind == ISSUE_DUPLICATE:
                    task = tasks.get(issue.task_id)
                    if task is None or task.dependencies.count(issue.dependency_id) < 2:
                        continue
                    deduped: list[str] = []
                    for dep in task.dependencies:
                        if dep not in deduped:
                            deduped.append(dep)
                    task.dependencies = deduped
                    changed.add(task.id)
                    fixes.append(DependencyFix(issue.kind, task.id, issue.dependency_id))  # type: ignore[arg-type]

                elif issue.kind == ISSUE_CYCLE:
                    edges = issue.cycle_edges()
                    intact = all(
                        owner in tasks and dep in tasks[owner].dependencies for owner, dep in edges
                    )
                    if not edges or not intact:
                        continue
                    owner, dep = max(
                        edges,
                        key=lambda e: (tasks[e[0]].dependency_added_at.get(e[1], ""), id_sort_key(e[0])),
                    )
                    _drop_edge(tasks[owner], dep)
                    changed.add(owner)
                    fixes.append(DependencyFix(issue.kind, owner, dep))

            for task_id in changed:
                tasks[task_id].touch()
                tx.put(tasks[task_id])

        for fix in fixes:
            logger.info("Auto-fixed {} dependency: removed {} -> {}", fix.kind, fix.task_id, fix.dependency_id)
        return fixes

    def repair(self, max_passes: int = 10) -> list[DependencyFix]:
        """Validate and fix repeatedly until clean (overlapping cycles)."""
        fixes: list[DependencyFix] = []
        for _ in range(max_passes):
            issues = self.validate_all()
            if not issues:
                break
            applied = self.auto_fix(issues)
            if not applied:
                break
            fixes.extend(applied)
        return fixes

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def execution_order(self) -> list[list[str]]:
        """Topological sort into batches of independent tasks (Kahn's algorithm).

        Completed tasks are left out; edges to them or to missing tasks do not
        hold anything back.
        """
        tasks = self.store.list_all()
        task_map = {t.id: t for t in tasks if not t.is_completed}
        in_degree: dict[str, int] = {tid: 0 for tid in task_map}
        adj: dict[str, list[str]] = defaultdict(list)

        for t in task_map.values():
            for dep_id in dict.fromkeys(t.dependencies):
                if dep_id in task_map and dep_id != t.id:
                    adj[dep_id].append(t.id)
                    in_degree[t.id] += 1

        def _rank(tid: str) -> tuple[int, tuple[int, int, str]]:
            return (task_map[tid].priority.sort_key, id_sort_key(tid))

        batches: list[list[str]] = []
        queue = sorted([tid for tid, deg in in_degree.items() if deg == 0], key=_rank)
        while queue:
            batches.append(list(queue))
            next_queue: list[str] = []
            for tid in queue:
                for neighbour in adj.get(tid, []):
                    in_degree[neighbour] -= 1
                    if in_degree[neighbour] == 0:
                        next_queue.append(neighbour)
            queue = sorted(next_queue, key=_rank)

        remaining = [tid for tid, deg in in_degree.items() if deg > 0]
        if remaining:
            logger.warning("Dependency cycle detected among tasks: {}", sorted(remaining, key=id_sort_key))
        return batches

    def export_graph(self) -> dict[str, list[dict[str, Any]]]:
        """Nodes and edges for rendering; edges point from dependency to dependent."""
        tasks = sorted(self.store.list_all(), key=lambda t: id_sort_key(t.id))
        ids = {t.id for t in tasks}
        nodes = [
            {"id": t.id, "title": t.title, "status": t.status.value, "priority": t.priority.value}
            for t in tasks
        ]
        edges = [
            {"from": dep, "to": t.id, "type": "dependency"}
            for t in tasks
            for dep in dict.fromkeys(t.dependencies)
            if dep in ids and dep != t.id
        ]
        return {"nodes": nodes, "edges": edges}
