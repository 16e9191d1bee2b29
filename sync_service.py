"""
Remote sync: debounced background save of the store's export payload to GitHub, plus explicit
load and sync-now. Runs in the main process next to the web app.

Each published snapshot (re)starts a quiescence timer; only when it expires is the payload read
from the store and written. A write already in flight is never cancelled. Failures set the
status to error and leave local state alone.
"""
from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Any, Callable

from broadcast import StateBroadcaster
from github_storage import GitHubStorage, RemoteSyncError
from models import now_iso

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 2.0


class SyncStatus(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    SYNCED = "synced"
    ERROR = "error"


class SyncService:
    def __init__(self, store, remote: GitHubStorage, debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS):
        self.store = store
        self.remote = remote
        self.debounce_seconds = debounce_seconds
        self.status = SyncStatus.IDLE
        self.last_error: str | None = None
        self.last_synced_at: str | None = None
        self._timer: threading.Timer | None = None
        self._timer_lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._loading = False

    def status_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "configured": self.remote.is_configured(),
            "lastError": self.last_error,
            "lastSyncedAt": self.last_synced_at,
            "pending": self.has_pending_save,
        }

    @property
    def has_pending_save(self) -> bool:
        with self._timer_lock:
            return self._timer is not None

    def configure(self, token: str | None, repo: str | None) -> None:
        self.remote.configure(token, repo)

    def _fail(self, e: RemoteSyncError, action: str) -> None:
        self.status = SyncStatus.ERROR
        self.last_error = str(e)
        logger.warning("GitHub %s failed: %s", action, e)

    # ---- saving ----

    def schedule_save(self) -> bool:
        """Start (or restart) the debounce timer. Returns False when remote sync is not configured."""
        if not self.remote.is_configured():
            return False
        with self._timer_lock:
            if self._timer is not None:
                self._timer.cancel()
            timer = threading.Timer(self.debounce_seconds, self._on_timer)
            timer.daemon = True
            timer.name = "github-sync"
            self._timer = timer
            timer.start()
        return True

    def _on_timer(self) -> None:
        with self._timer_lock:
            # A newer timer may already be installed; only the current one clears itself.
            if self._timer is threading.current_thread():
                self._timer = None
        try:
            self.sync_now()
        except RemoteSyncError:
            pass  # recorded in status by sync_now

    def sync_now(self) -> None:
        """Write the current export payload immediately. Raises RemoteSyncError after recording it."""
        with self._write_lock:
            payload = self.store.export_data()
            self.status = SyncStatus.SYNCING
            try:
                self.remote.save(payload)
            except RemoteSyncError as e:
                self._fail(e, "save")
                raise
            self.status = SyncStatus.SYNCED
            self.last_error = None
            self.last_synced_at = now_iso()
            logger.info("Synced %d task(s) to GitHub", len(payload.get("tasks") or []))

    def flush(self) -> None:
        """Run a pending debounced save now (e.g. on shutdown)."""
        with self._timer_lock:
            timer, self._timer = self._timer, None
        if timer is None:
            return
        timer.cancel()
        try:
            self.sync_now()
        except RemoteSyncError:
            pass  # recorded in status by sync_now

    def cancel(self) -> None:
        with self._timer_lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    # ---- loading ----

    def load_remote(self) -> bool:
        """Replace tasks and completion map with the remote payload. False when there is nothing to load."""
        self.status = SyncStatus.SYNCING
        try:
            data = self.remote.load()
        except RemoteSyncError as e:
            self._fail(e, "load")
            raise
        if data is None:
            self.status = SyncStatus.IDLE
            return False
        self._loading = True
        try:
            self.store.load_data(data)
        finally:
            self._loading = False
        self.status = SyncStatus.SYNCED
        self.last_error = None
        self.last_synced_at = now_iso()
        return True

    def test_connection(self) -> bool:
        try:
            return self.remote.test_connection()
        except RemoteSyncError as e:
            self._fail(e, "connection test")
            raise

    # ---- wiring ----

    def attach(self, broadcaster: StateBroadcaster) -> Callable[[], None]:
        """Follow settings for credentials and schedule a save on every published snapshot."""

        def on_snapshot(snapshot: dict[str, Any], source: Any) -> None:
            settings = snapshot.get("settings") or {}
            self.remote.configure(settings.get("githubToken"), settings.get("githubRepo"))
            if self._loading:
                return
            self.schedule_save()

        return broadcaster.subscribe(on_snapshot)
