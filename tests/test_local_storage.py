"""Tests for the local JSON state file."""

from __future__ import annotations

import json
from pathlib import Path

from broadcast import StateBroadcaster
from local_storage import LocalStateFile
from task_store import TaskStore

from .conftest import MONDAY


def test_missing_and_corrupt_files_read_as_none(tmp_path: Path):
    state = LocalStateFile(tmp_path / "state.json")
    assert state.read() is None
    state.path.write_text("{broken")
    assert state.read() is None
    state.path.write_text("[1, 2]")
    assert state.read() is None


def test_write_then_read(tmp_path: Path):
    state = LocalStateFile(tmp_path / "nested" / "state.json")
    state.write({"tasks": [], "completionMap": {}})
    assert state.read() == {"tasks": [], "completionMap": {}}
    assert [p.name for p in state.path.parent.iterdir()] == ["state.json"]


def test_attach_persists_every_commit(tmp_path: Path, broadcaster, store):
    state = LocalStateFile(tmp_path / "state.json")
    state.attach(store, broadcaster)
    task = store.add_task("Persist me", date=MONDAY)
    store.toggle_select(task.id)
    store.update_settings(sound_volume=0.9)
    data = json.loads(state.path.read_text())
    assert set(data) == {"tasks", "settings", "completionMap", "selectedItems"}
    assert data["tasks"][0]["title"] == "Persist me"
    assert data["settings"]["soundVolume"] == 0.9
    assert data["selectedItems"] == [task.id]


def test_attach_restores_previous_state(tmp_path: Path, broadcaster):
    path = tmp_path / "state.json"
    first = TaskStore(broadcaster)
    LocalStateFile(path).attach(first, broadcaster)
    first.add_task("Survives restart", date=MONDAY)

    second = TaskStore(StateBroadcaster())
    LocalStateFile(path).attach(second, StateBroadcaster())
    assert [t.title for t in second.list_tasks()] == ["Survives restart"]


def test_invalid_state_is_ignored(tmp_path: Path, broadcaster, store):
    path = tmp_path / "state.json"
    path.write_text(json.dumps({"tasks": [{"title": ""}]}))
    LocalStateFile(path).attach(store, broadcaster)
    assert store.list_tasks() == []
