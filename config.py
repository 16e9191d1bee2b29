"""Configuration load/save for dayplan."""
from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from models import CompletionPolicy, PriorityOrder

CONFIG_PATH = Path(os.environ.get("DAYPLAN_CONFIG") or Path(__file__).resolve().parent / "config.json")


class AppConfig(BaseModel):
    """Persisted application configuration."""

    data_path: str = Field(default="", description="Path to the local JSON state file; empty = project dir / dayplan-data.json")
    web_ui_port: int = Field(default=8081, ge=1, le=65535, description="Port for the HTTP API")
    user_timezone: str = Field(default="UTC", description="IANA timezone for 'today' and for normalising timestamps to calendar dates")
    sync_debounce_seconds: float = Field(default=2.0, ge=0.0, description="Quiescence window before a remote save is written")
    completion_policy: CompletionPolicy = Field(default=CompletionPolicy.RESCHEDULE, description="reschedule = completing a recurring occurrence also moves the task to its next occurrence")
    priority_order: PriorityOrder = Field(default=PriorityOrder.URGENT_FIRST, description="urgent_first = 1 first, 0 last; highest_first = 5 first")
    github_api_url: str = Field(default="https://api.github.com", description="GitHub REST API base URL")
    github_data_file: str = Field(default="todo-data.json", description="Path of the data file inside the sync repository")
    log_level: str = Field(default="INFO", description="Root log level for run.py")

    @property
    def resolved_data_path(self) -> Path:
        if self.data_path.strip():
            return Path(self.data_path).expanduser()
        return Path(__file__).resolve().parent / "dayplan-data.json"

    def to_save_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def load(cls, path: Path | str | None = None) -> "AppConfig":
        p = Path(path) if path else CONFIG_PATH
        if not p.exists():
            return cls()
        raw = json.loads(p.read_text())
        return cls.model_validate(raw)

    def save(self, path: Path | str | None = None) -> None:
        p = Path(path) if path else CONFIG_PATH
        p.write_text(json.dumps(self.to_save_dict(), indent=2))


def load(path: Path | str | None = None) -> AppConfig:
    """Load config from disk. Convenience alias for AppConfig.load()."""
    return AppConfig.load(path)
