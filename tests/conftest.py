from __future__ import annotations

import pytest

from taskgraph_engine.lifecycle import TaskManager
from taskgraph_engine.store import InMemoryTaskStore


@pytest.fixture
def store() -> InMemoryTaskStore:
    return InMemoryTaskStore()


@pytest.fixture
def manager(store: InMemoryTaskStore) -> TaskManager:
    return TaskManager(store)
