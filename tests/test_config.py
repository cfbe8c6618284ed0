"""Tests for engine configuration loading and wiring."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest
from loguru import logger

from taskgraph_engine.config import EngineSettings, build_manager, load_config
from taskgraph_engine.logging_setup import configure_logging
from taskgraph_engine.model import TaskPriority
from taskgraph_engine.store import InMemoryTaskStore, YamlTaskStore


def test_missing_config_is_empty(tmp_path: Path) -> None:
    assert load_config(tmp_path) == ({}, None)


def test_load_from_directory(tmp_path: Path) -> None:
    (tmp_path / "taskgraph.yaml").write_text("tasks:\n  title_max_length: 80\n")
    config, err = load_config(tmp_path)
    assert err is None
    assert config == {"tasks": {"title_max_length": 80}}


def test_invalid_yaml_reports_error(tmp_path: Path) -> None:
    path = tmp_path / "taskgraph.yaml"
    path.write_text("tasks: [oops\n")
    config, err = load_config(path)
    assert config == {}
    assert err is not None and "YAMLError" in err


def test_non_mapping_reports_error(tmp_path: Path) -> None:
    path = tmp_path / "taskgraph.yaml"
    path.write_text("- a\n- b\n")
    config, err = load_config(path)
    assert config == {}
    assert "expected object" in err


def test_defaults() -> None:
    settings = EngineSettings.from_config({})
    assert settings.title_max_length == 200
    assert settings.default_priority == TaskPriority.MEDIUM
    assert settings.store_backend == "memory"
    assert settings.store_path == Path(".taskgraph/tasks.yaml")
    assert settings.expand_default_subtasks == 5
    assert settings.log_level == "INFO"
    assert settings.events_path is None


def test_values_are_read(tmp_path: Path) -> None:
    settings = EngineSettings.from_config(
        {
            "tasks": {"title_max_length": 50, "default_priority": "High"},
            "store": {"backend": "yaml", "path": "state/tasks.yaml"},
            "expand": {"default_subtasks": 3},
            "logging": {"level": "debug"},
            "events": {"path": "state/events.jsonl"},
        },
        base_dir=tmp_path,
    )
    assert settings.title_max_length == 50
    assert settings.default_priority == TaskPriority.HIGH
    assert settings.store_backend == "yaml"
    assert settings.store_path == tmp_path / "state" / "tasks.yaml"
    assert settings.expand_default_subtasks == 3
    assert settings.log_level == "DEBUG"
    assert settings.events_path == tmp_path / "state" / "events.jsonl"


def test_invalid_values_fall_back() -> None:
    settings = EngineSettings.from_config(
        {
            "tasks": {"title_max_length": -4, "default_priority": "urgent"},
            "store": {"backend": "postgres"},
            "expand": {"default_subtasks": True},
            "logging": {"level": "LOUD"},
        }
    )
    assert settings.title_max_length == 200
    assert settings.default_priority == TaskPriority.MEDIUM
    assert settings.store_backend == "memory"
    assert settings.expand_default_subtasks == 5
    assert settings.log_level == "INFO"


def test_build_manager_memory() -> None:
    manager = build_manager(EngineSettings(title_max_length=10, default_priority=TaskPriority.LOW))
    assert isinstance(manager.store, InMemoryTaskStore)
    task = manager.create_task({"title": "short"})
    assert task.priority == TaskPriority.LOW


def test_build_manager_yaml_with_events(tmp_path: Path) -> None:
    settings = EngineSettings.from_config(
        {"store": {"backend": "yaml"}, "events": {"path": "events.jsonl"}},
        base_dir=tmp_path,
    )
    manager = build_manager(settings)
    assert isinstance(manager.store, YamlTaskStore)
    manager.create_task({"title": "persisted"})

    assert settings.store_path.exists()
    assert (tmp_path / "events.jsonl").exists()
    reopened = build_manager(settings)
    assert [t.title for t in reopened.list_tasks()] == ["persisted"]


@pytest.fixture
def restore_logger():
    yield
    logger.remove()
    logger.add(sys.stderr)


def test_build_manager_configures_logging(capsys, restore_logger) -> None:
    settings = EngineSettings.from_config({"logging": {"level": "warning"}})
    manager = build_manager(settings, setup_logging=True)
    manager.create_task({"title": "quiet"})
    logger.warning("visible warning")

    err = capsys.readouterr().err
    assert "visible warning" in err
    assert "Created task" not in err


def test_configure_logging_level(capsys, restore_logger) -> None:
    configure_logging("debug")
    logger.debug("debug line")
    assert "debug line" in capsys.readouterr().err
