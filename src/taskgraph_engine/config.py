"""Load optional engine configuration from ``taskgraph.yaml``."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import yaml
from loguru import logger

from .events import TaskEventLog
from .lifecycle import DEFAULT_EXPAND_COUNT, DEFAULT_TITLE_MAX_LENGTH, TaskManager
from .logging_setup import configure_logging
from .model import TaskPriority
from .store import InMemoryTaskStore, TaskStore, YamlTaskStore

CONFIG_FILE = "taskgraph.yaml"
DEFAULT_STORE_PATH = ".taskgraph/tasks.yaml"
VALID_BACKENDS = {"memory", "yaml"}
VALID_LOG_LEVELS = {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}


def load_config(path: Path) -> tuple[dict[str, Any], str | None]:
    """Load the optional engine config file.

    Args:
        path: Path to the YAML config file, or a directory containing
            ``taskgraph.yaml``.

    Returns:
        A tuple of ``(config, error_message)``. If the file is missing, returns ``({}, None)``.
    """
    path = Path(path)
    if path.is_dir():
        path = path / CONFIG_FILE
    if not path.exists():
        return {}, None
    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
    except OSError as exc:
        return {}, f"{path.name}: {exc.__class__.__name__}: {exc}"
    except yaml.YAMLError as exc:
        return {}, f"{path.name}: YAMLError: {exc}"
    if data is None:
        return {}, None
    if not isinstance(data, dict):
        return {}, f"{path.name}: expected object, got {type(data).__name__}"
    return data, None


def _get_nested(config: dict[str, Any], *keys: str) -> Any:
    cur: Any = config
    for key in keys:
        if not isinstance(cur, dict):
            return None
        cur = cur.get(key)
    return cur


def _positive_int(value: Any, default: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        return default
    return value


@dataclass
class EngineSettings:
    title_max_length: int = DEFAULT_TITLE_MAX_LENGTH
    default_priority: TaskPriority = TaskPriority.MEDIUM
    store_backend: str = "memory"
    store_path: Path = Path(DEFAULT_STORE_PATH)
    expand_default_subtasks: int = DEFAULT_EXPAND_COUNT
    log_level: str = "INFO"
    events_path: Optional[Path] = None

    @classmethod
    def from_config(cls, config: dict[str, Any], base_dir: Optional[Path] = None) -> "EngineSettings":
        """Build settings from a loaded config mapping.

        Unknown or malformed values fall back to their defaults.  Relative
        paths are resolved against ``base_dir`` when given.
        """
        settings = cls()
        settings.title_max_length = _positive_int(
            _get_nested(config, "tasks", "title_max_length"), DEFAULT_TITLE_MAX_LENGTH
        )
        settings.expand_default_subtasks = _positive_int(
            _get_nested(config, "expand", "default_subtasks"), DEFAULT_EXPAND_COUNT
        )

        priority = _get_nested(config, "tasks", "default_priority")
        if isinstance(priority, str):
            try:
                settings.default_priority = TaskPriority(priority.strip().lower())
            except ValueError:
                logger.warning("Ignoring invalid tasks.default_priority {!r}", priority)

        backend = _get_nested(config, "store", "backend")
        if isinstance(backend, str) and backend.strip().lower() in VALID_BACKENDS:
            settings.store_backend = backend.strip().lower()
        elif backend is not None:
            logger.warning("Ignoring invalid store.backend {!r}", backend)

        store_path = _get_nested(config, "store", "path")
        if isinstance(store_path, str) and store_path.strip():
            settings.store_path = Path(store_path.strip())

        level = _get_nested(config, "logging", "level")
        if isinstance(level, str) and level.strip().upper() in VALID_LOG_LEVELS:
            settings.log_level = level.strip().upper()

        events_path = _get_nested(config, "events", "path")
        if isinstance(events_path, str) and events_path.strip():
            settings.events_path = Path(events_path.strip())

        if base_dir is not None:
            base_dir = Path(base_dir)
            if not settings.store_path.is_absolute():
                settings.store_path = base_dir / settings.store_path
            if settings.events_path is not None and not settings.events_path.is_absolute():
                settings.events_path = base_dir / settings.events_path
        return settings


def build_store(settings: EngineSettings) -> TaskStore:
    if settings.store_backend == "yaml":
        return YamlTaskStore(settings.store_path)
    return InMemoryTaskStore()


def build_manager(
    settings: EngineSettings,
    *,
    generator: Any = None,
    setup_logging: bool = False,
) -> TaskManager:
    """Wire a store, the engines and an optional event journal into a manager.

    With ``setup_logging`` the stderr sink is reconfigured to ``settings.log_level``.
    """
    if setup_logging:
        configure_logging(settings.log_level)
    event_log = TaskEventLog(settings.events_path) if settings.events_path else None
    manager = TaskManager(
        build_store(settings),
        generator=generator,
        event_log=event_log,
        title_max_length=settings.title_max_length,
        default_priority=settings.default_priority,
        default_expand_count=settings.expand_default_subtasks,
    )
    logger.debug("Built task manager with {} store", settings.store_backend)
    return manager
