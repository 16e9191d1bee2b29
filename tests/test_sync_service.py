"""Tests for the debounced GitHub sync service."""

from __future__ import annotations

import time

import httpx
import pytest

from github_storage import GitHubStorage, RemoteSyncError
from sync_service import SyncService, SyncStatus

from .conftest import MONDAY
from .fakes import FakeGitHub


def _puts(fake: FakeGitHub) -> int:
    return sum(1 for r in fake.requests if r.method == "PUT")


@pytest.fixture()
def fake() -> FakeGitHub:
    return FakeGitHub()


@pytest.fixture()
def sync(broadcaster, store, fake) -> SyncService:
    remote = GitHubStorage(transport=httpx.MockTransport(fake))
    service = SyncService(store, remote, debounce_seconds=60)
    service.attach(broadcaster)
    store.update_settings(github_token="token", github_repo="me/todos")
    service.cancel()
    yield service
    service.cancel()


def test_unconfigured_remote_never_schedules(broadcaster, store):
    remote = GitHubStorage(transport=httpx.MockTransport(FakeGitHub()))
    service = SyncService(store, remote)
    service.attach(broadcaster)
    store.add_task("a", date=MONDAY)
    assert not service.has_pending_save
    assert service.status is SyncStatus.IDLE


def test_settings_configure_the_remote(sync):
    assert sync.remote.is_configured()
    assert sync.status_dict()["configured"] is True


def test_burst_of_mutations_coalesces_into_one_write(sync, store, fake):
    for title in ["a", "b", "c"]:
        store.add_task(title, date=MONDAY)
    assert sync.has_pending_save
    assert _puts(fake) == 0
    sync.flush()
    assert _puts(fake) == 1
    assert [t["title"] for t in fake.payload["tasks"]] == ["a", "b", "c"]
    assert sync.status is SyncStatus.SYNCED
    assert not sync.has_pending_save


def test_timer_fires_after_quiet_period(sync, store, fake):
    sync.debounce_seconds = 0.05
    store.add_task("a", date=MONDAY)
    store.add_task("b", date=MONDAY)
    deadline = time.monotonic() + 5
    while _puts(fake) == 0 and time.monotonic() < deadline:
        time.sleep(0.02)
    time.sleep(0.1)
    assert _puts(fake) == 1
    assert sync.status is SyncStatus.SYNCED


def test_failed_save_sets_error_and_keeps_local_state(store, broadcaster):
    remote = GitHubStorage(transport=httpx.MockTransport(FakeGitHub(status=500)))
    service = SyncService(store, remote, debounce_seconds=60)
    service.attach(broadcaster)
    store.update_settings(github_token="token", github_repo="me/todos")
    store.add_task("local", date=MONDAY)
    with pytest.raises(RemoteSyncError):
        service.sync_now()
    service.cancel()
    assert service.status is SyncStatus.ERROR
    assert service.last_error
    assert [t.title for t in store.list_tasks()] == ["local"]


def test_flush_records_failure_without_raising(store, broadcaster):
    remote = GitHubStorage(transport=httpx.MockTransport(FakeGitHub(status=500)))
    service = SyncService(store, remote, debounce_seconds=60)
    service.attach(broadcaster)
    store.update_settings(github_token="token", github_repo="me/todos")
    service.flush()
    assert service.status is SyncStatus.ERROR


def test_load_remote_replaces_tasks_without_echoing_a_save(sync, store, fake):
    fake.payload = {
        "tasks": [{"id": "t1", "title": "Remote", "date": "2024-01-01"}],
        "completionMap": {},
        "exportedAt": "2024-01-01T00:00:00.000Z",
    }
    fake.sha = "sha-remote"
    assert sync.load_remote() is True
    assert [t.title for t in store.list_tasks()] == ["Remote"]
    assert sync.remote.file_sha == "sha-remote"
    assert not sync.has_pending_save
    assert sync.status is SyncStatus.SYNCED


def test_load_remote_without_file(sync, store):
    store.add_task("keep", date=MONDAY)
    sync.cancel()
    assert sync.load_remote() is False
    assert [t.title for t in store.list_tasks()] == ["keep"]


def test_stale_timer_callback_keeps_the_newer_pending_save(sync, store, fake):
    store.add_task("a", date=MONDAY)
    pending = sync._timer
    # A superseded timer thread firing late must not forget the installed one.
    sync._on_timer()
    assert sync._timer is pending
    assert sync.has_pending_save
    sync.flush()
    assert _puts(fake) == 2
    assert not sync.has_pending_save
