"""Wire the store, its broadcaster and the persistence subscribers from one AppConfig."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable

import httpx

from auth import SessionRegistry
from broadcast import StateBroadcaster
from config import AppConfig
from github_storage import GitHubStorage
from local_storage import LocalStateFile
from sync_service import SyncService
from task_store import TaskStore

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    config: AppConfig
    broadcaster: StateBroadcaster
    store: TaskStore
    sync: SyncService
    sessions: SessionRegistry
    local_file: LocalStateFile | None = None
    _unsubscribe: list[Callable[[], None]] = field(default_factory=list)

    def shutdown(self) -> None:
        """Write any pending remote save and detach subscribers."""
        self.sync.flush()
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe.clear()
        self.sync.remote.close()


def build_runtime(
    config: AppConfig | None = None,
    *,
    persist_locally: bool = True,
    github_transport: httpx.BaseTransport | None = None,
) -> Runtime:
    config = config or AppConfig.load()
    broadcaster = StateBroadcaster()
    store = TaskStore(
        broadcaster,
        completion_policy=config.completion_policy,
        priority_order=config.priority_order,
        tz_name=config.user_timezone,
    )
    remote = GitHubStorage(config.github_api_url, config.github_data_file, transport=github_transport)
    sync = SyncService(store, remote, debounce_seconds=config.sync_debounce_seconds)
    runtime = Runtime(config=config, broadcaster=broadcaster, store=store, sync=sync, sessions=SessionRegistry())

    if persist_locally:
        runtime.local_file = LocalStateFile(config.resolved_data_path)
        runtime._unsubscribe.append(runtime.local_file.attach(store, broadcaster))
    settings = store.settings
    remote.configure(settings.github_token, settings.github_repo)
    runtime._unsubscribe.append(sync.attach(broadcaster))
    logger.info(
        "Runtime ready: %d task(s), policy=%s, order=%s, remote=%s",
        len(store.list_tasks()), store.completion_policy.value, store.priority_order.value,
        "configured" if remote.is_configured() else "off",
    )
    return runtime
