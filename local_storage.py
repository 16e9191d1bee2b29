"""
Local state file: the full store snapshot {tasks, settings, completionMap, selectedItems} as JSON.
Loaded once at startup, rewritten on every published snapshot.
"""
from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Callable

from broadcast import StateBroadcaster

logger = logging.getLogger(__name__)


class LocalStateFile:
    def __init__(self, path: Path | str):
        self.path = Path(path)

    def read(self) -> dict[str, Any] | None:
        """Return the stored snapshot, or None if the file is missing or unreadable."""
        if not self.path.exists():
            return None
        try:
            raw = self.path.read_text(encoding="utf-8")
            data = json.loads(raw) if raw.strip() else None
        except (OSError, ValueError) as e:
            logger.warning("Could not read %s: %s", self.path, e)
            return None
        if data is not None and not isinstance(data, dict):
            logger.warning("Ignoring %s: expected a JSON object", self.path)
            return None
        return data

    def write(self, snapshot: dict[str, Any]) -> None:
        """Replace the file atomically (temp file in the same directory, then rename)."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=f".{self.path.name}.", dir=str(self.path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(snapshot, f, indent=2)
            os.replace(tmp, self.path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def attach(self, store, broadcaster: StateBroadcaster) -> Callable[[], None]:
        """Load the file into store (if present) and persist every later snapshot. Returns unsubscribe."""
        data = self.read()
        if data:
            try:
                store.replace_state(data)
                logger.info("Loaded local state from %s (%d tasks)", self.path, len(data.get("tasks") or []))
            except ValueError as e:
                logger.warning("Ignoring invalid state in %s: %s", self.path, e)

        def on_snapshot(snapshot: dict[str, Any], source: Any) -> None:
            try:
                self.write(snapshot)
            except OSError as e:
                logger.warning("Could not save %s: %s", self.path, e)

        return broadcaster.subscribe(on_snapshot)
