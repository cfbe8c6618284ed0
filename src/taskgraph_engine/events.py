"""Append-only JSONL journal of task mutations."""

from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Any

from loguru import logger

from .model import Task, now_iso


class TaskEventLog:
    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def emit(self, event_type: str, task: Task, **details: Any) -> None:
        """Append one event.  A failed write is logged, never raised."""
        payload: dict[str, Any] = {
            "ts": now_iso(),
            "type": event_type,
            "task_id": task.id,
            "status": task.status.value,
        }
        if details:
            payload["details"] = details
        try:
            with self._lock:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with self.path.open("a", encoding="utf-8") as fh:
                    fh.write(json.dumps(payload, default=str) + "\n")
        except OSError:
            logger.exception("Failed to append task event {} for {}", event_type, task.id)

    def recent(self, limit: int = 100) -> list[dict[str, Any]]:
        if limit < 1 or not self.path.exists():
            return []
        lines = self.path.read_text(encoding="utf-8").splitlines()
        events: list[dict[str, Any]] = []
        for line in lines[-limit:]:
            try:
                payload = json.loads(line)
            except json.JSONDecodeError:
                continue
            if isinstance(payload, dict):
                events.append(payload)
        return events

    def for_task(self, task_id: str, limit: int = 100) -> list[dict[str, Any]]:
        events = self.recent(limit=max(limit * 5, limit))
        return [e for e in events if str(e.get("task_id")) == task_id][-limit:]
