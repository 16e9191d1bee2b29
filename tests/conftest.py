# tests/conftest.py

from __future__ import annotations

from datetime import date

import pytest

from broadcast import StateBroadcaster
from models import CompletionPolicy
from recurrence import create_recurrence
from task_store import TaskStore

MONDAY = date(2024, 1, 1)


@pytest.fixture()
def broadcaster() -> StateBroadcaster:
    return StateBroadcaster()


@pytest.fixture()
def published(broadcaster: StateBroadcaster) -> list[dict]:
    """Every snapshot published on the shared broadcaster, in order."""
    seen: list[dict] = []
    broadcaster.subscribe(lambda snapshot, source: seen.append(snapshot))
    return seen


@pytest.fixture()
def store(broadcaster: StateBroadcaster) -> TaskStore:
    return TaskStore(broadcaster, tz_name="UTC")


@pytest.fixture()
def occurrence_store(broadcaster: StateBroadcaster) -> TaskStore:
    return TaskStore(broadcaster, completion_policy=CompletionPolicy.OCCURRENCE, tz_name="UTC")


@pytest.fixture()
def mwf_rule():
    """Weekly on Monday, Wednesday and Friday."""
    return create_recurrence("weekly", days=[1, 3, 5])
