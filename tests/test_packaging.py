"""Test packaging metadata and installation extras."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any

PROJECT_ROOT = Path(__file__).resolve().parents[1]


def _load_pyproject() -> dict[str, Any]:
    pyproject_path = PROJECT_ROOT / "pyproject.toml"
    raw = pyproject_path.read_text(encoding="utf-8")
    if sys.version_info >= (3, 11):
        import tomllib

        return tomllib.loads(raw)

    import tomli

    return tomli.loads(raw)


def test_pyproject_declares_test_extras() -> None:
    """Ensure `pyproject.toml` declares pytest under `[project.optional-dependencies].test`."""
    data = _load_pyproject()
    test_deps = data.get("project", {}).get("optional-dependencies", {}).get("test", [])
    normalized = {str(item).strip().lower() for item in test_deps}
    assert any(item.startswith("pytest") for item in normalized)


def test_runtime_dependencies_cover_imports() -> None:
    data = _load_pyproject()
    deps = " ".join(data["project"]["dependencies"]).lower()
    for name in ("loguru", "pydantic", "pyyaml", "filelock"):
        assert name in deps


def test_package_is_importable() -> None:
    import taskgraph_engine

    assert taskgraph_engine.TaskManager.__name__ == "TaskManager"
    assert "configure_logging" in taskgraph_engine.__all__
