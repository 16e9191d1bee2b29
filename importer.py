"""
Import tasks from Todoist exports (JSON or CSV) and from Markdown files with YAML frontmatter.

Markdown frontmatter:
  title    -> task title
  due/date -> task date
  priority -> task priority (0-5, this app's scale)
Content below the frontmatter becomes the task notes.

Imported tasks never recur. Missing or unparseable dates become today.
"""
from __future__ import annotations

import csv
import io
import json
import logging
import re
from datetime import date
from pathlib import PurePath
from typing import Any

import yaml

from date_utils import normalize_date, today_in_tz
from models import PRIORITY_MAX, PRIORITY_MIN, Task, now_iso

logger = logging.getLogger(__name__)

FRONTMATTER_RE = re.compile(r"^\s*---\s*\n(.*?)\n\s*---\s*\n?(.*)", re.DOTALL)

# Todoist: 1 = highest .. 4 = none
TODOIST_PRIORITY = {1: 5, 2: 4, 3: 2, 4: 0}

_CSV_TITLE = ("content", "task", "title")
_CSV_NOTES = ("description", "notes")
_CSV_DATE = ("date", "due date", "due_date")


class ImportFormatError(ValueError):
    """The file is not a supported export or could not be parsed."""


def map_todoist_priority(value: Any) -> int:
    try:
        return TODOIST_PRIORITY.get(int(value), 0)
    except (TypeError, ValueError):
        return 0


def _first(mapping: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = mapping.get(key)
        if value not in (None, ""):
            return value
    return None


def parse_frontmatter(content: str) -> tuple[dict, str]:
    """Return (frontmatter_dict, body_str). If no frontmatter, returns ({}, content)."""
    m = FRONTMATTER_RE.match(content)
    if not m:
        return {}, content.strip()
    yaml_str, body = m.group(1), m.group(2)
    try:
        data = yaml.safe_load(yaml_str)
    except yaml.YAMLError as e:
        raise ImportFormatError(f"Invalid YAML frontmatter: {e}") from e
    if data is not None and not isinstance(data, dict):
        raise ImportFormatError("YAML frontmatter must be a mapping")
    return (data or {}), body.strip()


def parse_json(content: str, today: date | None = None, tz_name: str = "UTC") -> list[Task]:
    try:
        data = json.loads(content)
    except ValueError as e:
        raise ImportFormatError(f"Invalid JSON: {e}") from e
    items = (data.get("items") or data.get("tasks")) if isinstance(data, dict) else data
    if not isinstance(items, list):
        raise ImportFormatError("Invalid JSON format: expected a list of tasks or {items: [...]}")
    tasks = []
    for item in items:
        if not isinstance(item, dict):
            continue
        title = str(_first(item, "content", "title", "name") or "").strip()
        if not title:
            continue
        due = item.get("due")
        raw_date = due.get("date") if isinstance(due, dict) else due
        tasks.append(Task(
            title=title,
            notes=str(_first(item, "description", "notes") or ""),
            priority=map_todoist_priority(item.get("priority")),
            date=normalize_date(raw_date or item.get("due_date"), today, tz_name),
            completed=item.get("checked") in (1, True) or item.get("completed") is True,
            created_at=str(_first(item, "added_at", "created_at") or now_iso()),
        ))
    return tasks


def parse_csv(content: str, today: date | None = None, tz_name: str = "UTC") -> list[Task]:
    reader = csv.reader(io.StringIO(content.lstrip("\ufeff")))
    try:
        header = [h.strip().strip('"').lower() for h in next(reader)]
    except StopIteration:
        return []
    except csv.Error as e:
        raise ImportFormatError(f"Invalid CSV: {e}") from e

    def col(names: tuple[str, ...]) -> int | None:
        return next((i for i, h in enumerate(header) if h in names), None)

    title_idx = col(_CSV_TITLE)
    notes_idx, priority_idx, date_idx = col(_CSV_NOTES), col(("priority",)), col(_CSV_DATE)

    def cell(row: list[str], idx: int | None) -> str:
        if idx is None or idx >= len(row):
            return ""
        return row[idx].strip()

    tasks = []
    try:
        for row in reader:
            title = cell(row, title_idx if title_idx is not None else 0)
            if not title:
                continue
            tasks.append(Task(
                title=title,
                notes=cell(row, notes_idx),
                priority=map_todoist_priority(cell(row, priority_idx) or 4) if priority_idx is not None else 0,
                date=normalize_date(cell(row, date_idx), today, tz_name),
            ))
    except csv.Error as e:
        raise ImportFormatError(f"Invalid CSV: {e}") from e
    return tasks


def parse_markdown(content: str, today: date | None = None, tz_name: str = "UTC") -> list[Task]:
    fm, body = parse_frontmatter(content)
    title = str(fm.get("title") or "").strip()
    if not title:
        return []
    try:
        priority = min(PRIORITY_MAX, max(PRIORITY_MIN, int(fm.get("priority") or 0)))
    except (TypeError, ValueError):
        priority = 0
    return [Task(
        title=title,
        notes=body,
        priority=priority,
        date=normalize_date(_first(fm, "due", "date"), today, tz_name),
    )]


def parse_file(filename: str, content: str, today: date | None = None, tz_name: str = "UTC") -> list[Task]:
    """Parse an uploaded file by extension (.json, .csv, .md, .markdown)."""
    today = today or today_in_tz(tz_name)
    path = PurePath(filename or "")
    ext = path.suffix.lower()
    if ext == ".json":
        tasks = parse_json(content, today, tz_name)
    elif ext == ".csv":
        tasks = parse_csv(content, today, tz_name)
    elif ext in (".md", ".markdown"):
        tasks = parse_markdown(content, today, tz_name)
    else:
        raise ImportFormatError("Unsupported file type. Use a Todoist .json or .csv export, or a .md file.")
    logger.info("Parsed %d task(s) from %s", len(tasks), filename)
    return tasks
