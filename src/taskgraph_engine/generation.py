"""Generation collaborator contract and the built-in complexity heuristic.

The external generation service proposes subtasks and scores complexity.  Its
output is untrusted: proposals go through the same validation as caller input
before anything is stored.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Protocol, runtime_checkable

from .model import Task, TaskPriority

LEVEL_LOW = "low"
LEVEL_MEDIUM = "medium"
LEVEL_HIGH = "high"


@dataclass
class ProposedSubtask:
    title: str
    description: str = ""


@dataclass
class ComplexityReport:
    task_id: str
    score: float
    level: str
    recommended_subtasks: int = 3
    estimated_hours: int = 0
    risk_factors: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@runtime_checkable
class GenerationService(Protocol):
    def expand(self, task: Task, count: int) -> list[ProposedSubtask]:
        ...

    def analyze_complexity(self, task: Task) -> ComplexityReport:
        ...


def complexity_level(score: float) -> str:
    if score <= 2.5:
        return LEVEL_LOW
    if score <= 3.5:
        return LEVEL_MEDIUM
    return LEVEL_HIGH


class HeuristicComplexityAnalyzer:
    """Score a task from its shape alone (subtasks, dependencies, text, priority).

    Scores run from 2.5 to 5.0.  Used when no generation service is wired in.
    """

    BASE_SCORE = 2.5
    MAX_SCORE = 5.0

    @staticmethod
    def factors(task: Task) -> dict[str, Any]:
        return {
            "subtask_count": len(task.subtasks),
            "dependency_count": len(task.dependencies),
            "text_length": len(task.description or "") + len(task.details or ""),
            "priority": task.priority.value,
        }

    def analyze_complexity(self, task: Task) -> ComplexityReport:
        factors = self.factors(task)
        subtask_count = factors["subtask_count"]
        dependency_count = factors["dependency_count"]
        text_length = factors["text_length"]
        important = task.priority in (TaskPriority.HIGH, TaskPriority.CRITICAL)

        score = self.BASE_SCORE
        if subtask_count > 5:
            score += 1
        if subtask_count > 10:
            score += 1
        if dependency_count > 2:
            score += 0.5
        if dependency_count > 5:
            score += 0.5
        if text_length > 500:
            score += 0.5
        if text_length > 1000:
            score += 0.5
        if important:
            score += 0.5
        score = min(score, self.MAX_SCORE)

        recommended = 3
        if score > 3:
            recommended = 5
        if score > 4:
            recommended = 8

        risks: list[str] = []
        if dependency_count > 3:
            risks.append("Many dependencies")
        if subtask_count == 0 and score > 3:
            risks.append("Complex task not yet broken down")
        if important and dependency_count > 0:
            risks.append("High priority with unfinished prerequisites")

        recommendations: list[str] = []
        if subtask_count == 0 and score > 2:
            recommendations.append("Break this task down into subtasks")
        if dependency_count > 5:
            recommendations.append("Review and simplify the dependency list")
        if score > 4:
            recommendations.append("Plan an incremental implementation")

        return ComplexityReport(
            task_id=task.id,
            score=round(score, 1),
            level=complexity_level(score),
            recommended_subtasks=recommended,
            estimated_hours=round(score * 4),
            risk_factors=risks,
            recommendations=recommendations,
        )


def distribution_bucket(score: float) -> str:
    """Reporting bucket for project summaries (finer than :func:`complexity_level`)."""
    if score <= 2:
        return "low"
    if score <= 3.5:
        return "medium"
    if score <= 4.5:
        return "high"
    return "very_high"


def summarize_complexity(entries: list[dict[str, Any]]) -> dict[str, Any]:
    """Average score and bucket counts over per-task report entries."""
    distribution = {"low": 0, "medium": 0, "high": 0, "very_high": 0}
    for entry in entries:
        distribution[distribution_bucket(entry["score"])] += 1
    average = sum(e["score"] for e in entries) / len(entries) if entries else 0.0
    return {
        "total_tasks": len(entries),
        "average_score": round(average, 1),
        "distribution": distribution,
    }
