"""Tests for best-effort bulk operations."""

from __future__ import annotations

import pytest

from taskgraph_engine.batch import BatchOperator
from taskgraph_engine.lifecycle import TaskManager
from taskgraph_engine.model import TaskStatus


@pytest.fixture
def batch(manager: TaskManager) -> BatchOperator:
    return BatchOperator(manager)


class TestBulkCreate:
    def test_partial_success(self, batch: BatchOperator) -> None:
        result = batch.bulk_create([{"title": "A"}, {"title": ""}, {"title": "C"}])

        assert [t.title for t in result.created] == ["A", "C"]
        assert len(result.errors) == 1
        assert result.errors[0].index == 1
        assert result.errors[0].code == "validation_error"
        assert result.errors[0].field == "title"
        assert result.summary == {"total": 3, "created": 2, "failed": 1}

    def test_to_dict(self, batch: BatchOperator) -> None:
        payload = batch.bulk_create([{"title": "A"}, {"title": "B", "dependencies": ["9"]}]).to_dict()
        assert [t["title"] for t in payload["created"]] == ["A"]
        assert payload["errors"][0]["index"] == 1
        assert payload["errors"][0]["field"] == "dependencies"
        assert payload["summary"] == {"total": 2, "created": 1, "failed": 1}

    def test_later_items_can_reference_earlier_ones(self, batch: BatchOperator) -> None:
        result = batch.bulk_create([{"title": "A"}, {"title": "B", "dependencies": ["1"]}])
        assert result.errors == []
        assert result.created[1].dependencies == ["1"]

    def test_non_mapping_item(self, batch: BatchOperator) -> None:
        result = batch.bulk_create(["just a string", {"title": "ok"}])
        assert result.errors[0].index == 0
        assert [t.id for t in result.created] == ["1"]

    def test_empty(self, batch: BatchOperator) -> None:
        assert batch.bulk_create([]).summary == {"total": 0, "created": 0, "failed": 0}


class TestBulkSetStatus:
    def test_guard_failures_are_collected(self, manager: TaskManager, batch: BatchOperator) -> None:
        manager.create_task({"title": "base"})
        manager.create_task({"title": "top", "dependencies": ["1"]})
        manager.create_task({"title": "other"})

        result = batch.bulk_set_status(["2", "1", "3", "99"], "completed")

        assert [t.id for t in result.updated] == ["1", "3"]
        assert [(e.index, e.task_id, e.code) for e in result.errors] == [
            (0, "2", "dependencies_not_completed"),
            (3, "99", "not_found"),
        ]
        assert result.summary == {"total": 4, "updated": 2, "failed": 2}
        assert manager.get_task("2").status == TaskStatus.PENDING

    def test_invalid_status_fails_every_item(self, manager: TaskManager, batch: BatchOperator) -> None:
        manager.create_task({"title": "a"})
        result = batch.bulk_set_status(["1"], "done")
        assert result.updated == []
        assert result.errors[0].code == "invalid_status"
        assert result.summary == {"total": 1, "updated": 0, "failed": 1}
        payload = result.to_dict()
        assert payload["updated"] == []
        assert "created" not in payload

    def test_all_failed_create_keeps_created_key(self, batch: BatchOperator) -> None:
        result = batch.bulk_create([{"title": ""}])
        assert result.summary == {"total": 1, "created": 0, "failed": 1}
        assert "updated" not in result.to_dict()
