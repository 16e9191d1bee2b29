"""
Task Store: the task collection, the sparse completion map of recurring occurrences, the
selection set and user settings, kept consistent as one unit. All mutations go through here.

Every committed mutation that touches tasks, the completion map or settings publishes a full
snapshot through the broadcaster injected at construction. Selection-only changes do not.
Mutations on unknown ids are no-ops and return None/False.
"""
from __future__ import annotations

import logging
import threading
from datetime import date
from typing import Any, Iterable

from broadcast import StateBroadcaster
from date_utils import month_days, to_local_date, today_in_tz
from models import (
    PRIORITY_MAX,
    PRIORITY_MIN,
    CompletionPolicy,
    PriorityOrder,
    Settings,
    SubItem,
    Task,
    TaskInstance,
    now_iso,
    occurrence_key,
    split_occurrence_key,
)
from recurrence import RecurrenceRule, next_occurrence, occurs_on
from similarity import find_similar_items

logger = logging.getLogger("task_store")

IMPORT_MODES = frozenset({"merge", "replace"})
_IMMUTABLE_FIELDS = frozenset({"id", "createdAt", "created_at"})


def _require_date(value: Any) -> date:
    d = to_local_date(value)
    if d is None:
        raise ValueError(f"Invalid date: {value!r}. Use YYYY-MM-DD.")
    return d


def _to_wire_keys(model: type[Task] | type[SubItem] | type[Settings], fields: dict[str, Any]) -> dict[str, Any]:
    """Accept both attribute names and wire aliases in partial updates."""
    out: dict[str, Any] = {}
    for key, value in fields.items():
        info = model.model_fields.get(key)
        out[info.alias or key if info else key] = value
    return out


def _parse_tasks(data: dict[str, Any]) -> list[Task]:
    """Tasks from a payload; older data files keep them under `todos`."""
    raw = data.get("tasks")
    if raw is None:
        raw = data.get("todos")
    return [Task.model_validate(t) for t in raw or []]


def _parse_completion_map(raw: Any) -> set[tuple[str, str]]:
    out: set[tuple[str, str]] = set()
    if not isinstance(raw, dict):
        return out
    for key, value in raw.items():
        if not value:
            continue
        parts = split_occurrence_key(str(key))
        if parts is None:
            logger.warning("Skipping malformed completion key %r", key)
            continue
        out.add(parts)
    return out


class TaskStore:
    """In-memory source of truth; persistence and sync subscribe to its snapshots."""

    def __init__(
        self,
        publisher: StateBroadcaster | None = None,
        *,
        completion_policy: CompletionPolicy | str = CompletionPolicy.RESCHEDULE,
        priority_order: PriorityOrder | str = PriorityOrder.URGENT_FIRST,
        tz_name: str = "UTC",
    ) -> None:
        self._publisher = publisher
        self.completion_policy = CompletionPolicy(completion_policy)
        self.priority_order = PriorityOrder(priority_order)
        self.tz_name = tz_name
        self._lock = threading.RLock()
        self._tasks: list[Task] = []
        self._completed: set[tuple[str, str]] = set()
        self._selected: list[str] = []
        self._settings = Settings()
        self._selected_date = today_in_tz(tz_name)

    # ---- internals ----

    def _find(self, task_id: str) -> Task | None:
        for task in self._tasks:
            if task.id == task_id:
                return task
        return None

    def _publish(self) -> None:
        if self._publisher is not None:
            self._publisher.publish(self.snapshot(), source=self)

    def _completion_wire(self) -> dict[str, bool]:
        return {occurrence_key(tid, day): True for tid, day in sorted(self._completed)}

    def _visible_on(self, task: Task, d: date) -> bool:
        if not task.is_recurring:
            return task.date == d
        if occurs_on(task.recurrence, task.date, d):
            return True
        # Completing under the reschedule policy moves the anchor past the completed day.
        return (
            self.completion_policy is CompletionPolicy.RESCHEDULE
            and d < task.date
            and (task.id, d.isoformat()) in self._completed
        )

    def _instance(self, task: Task, d: date) -> TaskInstance:
        data = task.model_dump()
        if task.is_recurring:
            data["is_recurring_instance"] = True
            data["instance_date"] = d
            data["completed"] = (task.id, d.isoformat()) in self._completed
        return TaskInstance.model_validate(data)

    def _drop_references(self, task_ids: set[str]) -> None:
        self._completed = {entry for entry in self._completed if entry[0] not in task_ids}
        self._selected = [i for i in self._selected if i not in task_ids]

    # ---- reads ----

    def get_task(self, task_id: str) -> Task | None:
        with self._lock:
            task = self._find(task_id)
            return task.model_copy(deep=True) if task else None

    def list_tasks(self) -> list[Task]:
        with self._lock:
            return [t.model_copy(deep=True) for t in self._tasks]

    def tasks_for_date(self, day: date | str) -> list[TaskInstance]:
        """
        Tasks visible on a day: non-recurring tasks dated that day, then an instance of every
        recurring task whose rule fires that day. Incomplete before completed, then by the
        configured priority order; ties keep collection order.
        """
        d = _require_date(day)
        with self._lock:
            regular = [self._instance(t, d) for t in self._tasks if not t.is_recurring and t.date == d]
            recurring = [self._instance(t, d) for t in self._tasks if t.is_recurring and self._visible_on(t, d)]
        items = regular + recurring
        items.sort(key=lambda t: (t.completed, self.priority_order.sort_key(t.priority)))
        return items

    def task_counts_for_month(self, year: int, month: int) -> dict[str, int]:
        """Per-day badge counts (visible tasks plus their sub-items); days with zero are omitted."""
        counts: dict[str, int] = {}
        with self._lock:
            for d in month_days(year, month):
                n = sum(1 + len(t.sub_items) for t in self._tasks if self._visible_on(t, d))
                if n:
                    counts[d.isoformat()] = n
        return counts

    def is_occurrence_completed(self, task_id: str, day: date | str) -> bool:
        d = to_local_date(day)
        if d is None:
            return False
        with self._lock:
            return (task_id, d.isoformat()) in self._completed

    @property
    def completion_map(self) -> dict[str, bool]:
        with self._lock:
            return self._completion_wire()

    @property
    def selected_items(self) -> list[str]:
        with self._lock:
            return list(self._selected)

    @property
    def selected_date(self) -> date:
        return self._selected_date

    @property
    def settings(self) -> Settings:
        with self._lock:
            return self._settings.model_copy()

    def find_similar(self, title: str, threshold: float = 0.4) -> list[tuple[Task, float]]:
        with self._lock:
            tasks = [t.model_copy(deep=True) for t in self._tasks]
        return find_similar_items(title, tasks, threshold)

    # ---- task mutations ----

    def add_task(
        self,
        title: str,
        *,
        notes: str = "",
        priority: int = 0,
        date: date | str | None = None,
        recurrence: RecurrenceRule | dict | None = None,
    ) -> Task:
        """Create a task. The date defaults to the currently selected day."""
        task = Task(
            title=title,
            notes=notes or "",
            priority=priority or 0,
            date=_require_date(date) if date is not None else self._selected_date,
            recurrence=recurrence or None,
        )
        with self._lock:
            self._tasks.append(task)
            logger.debug("Task added id=%s date=%s recurring=%s", task.id, task.date, task.is_recurring)
            self._publish()
            return task.model_copy(deep=True)

    def update_task(self, task_id: str, fields: dict[str, Any]) -> Task | None:
        """
        Merge fields into a task. id and createdAt never change. Recurrence/date consistency is
        the caller's concern, and completion entries are left alone even when the rule changes.
        """
        updates = {k: v for k, v in _to_wire_keys(Task, fields).items() if k not in _IMMUTABLE_FIELDS}
        with self._lock:
            for i, task in enumerate(self._tasks):
                if task.id != task_id:
                    continue
                merged = Task.model_validate({**task.to_wire(), **updates})
                self._tasks[i] = merged
                self._publish()
                return merged.model_copy(deep=True)
        return None

    def delete_task(self, task_id: str) -> bool:
        """Remove a task with its completion entries and its selection membership."""
        with self._lock:
            task = self._find(task_id)
            if task is None:
                return False
            self._tasks.remove(task)
            self._drop_references({task_id})
            logger.info("Task deleted id=%s", task_id)
            self._publish()
            return True

    def toggle_completion(self, task_id: str, day: date | str) -> Task | None:
        """
        Non-recurring: flip `completed`. Recurring: record or clear the (task, day) entry in the
        completion map; when recording under the reschedule policy, also advance the anchor to
        the next occurrence after `day` (unchanged if the rule has none).
        """
        d = _require_date(day)
        with self._lock:
            task = self._find(task_id)
            if task is None:
                return None
            if not task.is_recurring:
                task.completed = not task.completed
            else:
                entry = (task.id, d.isoformat())
                if entry in self._completed:
                    self._completed.discard(entry)
                else:
                    self._completed.add(entry)
                    if self.completion_policy is CompletionPolicy.RESCHEDULE:
                        nxt = next_occurrence(task.recurrence, d, anchor=task.date)
                        if nxt is not None:
                            task.date = nxt
                logger.debug("Occurrence toggled id=%s date=%s done=%s anchor=%s", task.id, d, entry in self._completed, task.date)
            self._publish()
            return task.model_copy(deep=True)

    def import_tasks(self, items: Iterable[Task | dict[str, Any]], mode: str = "merge") -> int:
        """replace: install items as the whole collection. merge: append, no de-duplication."""
        if mode not in IMPORT_MODES:
            raise ValueError(f"mode must be one of {sorted(IMPORT_MODES)}")
        incoming = [
            item.model_copy(deep=True) if isinstance(item, Task) else Task.model_validate(item)
            for item in items
        ]
        with self._lock:
            if mode == "replace":
                self._tasks = incoming
            else:
                self._tasks.extend(incoming)
            logger.info("Imported %d task(s) mode=%s total=%d", len(incoming), mode, len(self._tasks))
            self._publish()
        return len(incoming)

    # ---- sub-items ----

    def add_sub_item(self, task_id: str, title: str, priority: int = 0) -> SubItem | None:
        sub = SubItem(title=title, priority=priority or 0)
        with self._lock:
            task = self._find(task_id)
            if task is None:
                return None
            task.sub_items = [*task.sub_items, sub]
            self._publish()
            return sub.model_copy()

    def update_sub_item(self, task_id: str, sub_id: str, fields: dict[str, Any]) -> SubItem | None:
        updates = {k: v for k, v in _to_wire_keys(SubItem, fields).items() if k != "id"}
        with self._lock:
            task = self._find(task_id)
            if task is None:
                return None
            for i, sub in enumerate(task.sub_items):
                if sub.id == sub_id:
                    merged = SubItem.model_validate({**sub.to_wire(), **updates})
                    items = list(task.sub_items)
                    items[i] = merged
                    task.sub_items = items
                    self._publish()
                    return merged.model_copy()
        return None

    def toggle_sub_item(self, task_id: str, sub_id: str) -> SubItem | None:
        with self._lock:
            task = self._find(task_id)
            sub = next((s for s in task.sub_items if s.id == sub_id), None) if task else None
            if sub is None:
                return None
            return self.update_sub_item(task_id, sub_id, {"completed": not sub.completed})

    def delete_sub_item(self, task_id: str, sub_id: str) -> bool:
        with self._lock:
            task = self._find(task_id)
            if task is None:
                return False
            remaining = [s for s in task.sub_items if s.id != sub_id]
            if len(remaining) == len(task.sub_items):
                return False
            task.sub_items = remaining
            self._publish()
            return True

    # ---- selection and bulk operations ----

    def set_selected_date(self, day: date | str) -> date:
        self._selected_date = _require_date(day)
        return self._selected_date

    def toggle_select(self, task_id: str) -> list[str]:
        with self._lock:
            if task_id in self._selected:
                self._selected.remove(task_id)
            elif self._find(task_id) is not None:
                self._selected.append(task_id)
            return list(self._selected)

    def select_all(self, task_ids: Iterable[str]) -> list[str]:
        with self._lock:
            known = {t.id for t in self._tasks}
            self._selected = list(dict.fromkeys(i for i in task_ids if i in known))
            return list(self._selected)

    def clear_selection(self) -> None:
        with self._lock:
            self._selected = []

    def _bulk_apply(self, label: str, apply) -> int:
        with self._lock:
            selected = set(self._selected)
            self._selected = []
            targets = [t for t in self._tasks if t.id in selected]
            if not targets:
                return 0
            apply(targets)
            logger.info("Bulk %s applied to %d task(s)", label, len(targets))
            self._publish()
            return len(targets)

    def bulk_move_to(self, day: date | str) -> int:
        """Set the date of every selected task, then clear the selection."""
        d = _require_date(day)

        def move(targets: list[Task]) -> None:
            for t in targets:
                t.date = d

        return self._bulk_apply("move", move)

    def bulk_set_priority(self, priority: int) -> int:
        """Set the priority of every selected task, then clear the selection."""
        if not PRIORITY_MIN <= int(priority) <= PRIORITY_MAX:
            raise ValueError(f"priority must be {PRIORITY_MIN}-{PRIORITY_MAX}")

        def set_priority(targets: list[Task]) -> None:
            for t in targets:
                t.priority = int(priority)

        return self._bulk_apply("priority", set_priority)

    def bulk_delete(self) -> int:
        """Delete every selected task (with its completion entries), then clear the selection."""

        def delete(targets: list[Task]) -> None:
            ids = {t.id for t in targets}
            self._tasks = [t for t in self._tasks if t.id not in ids]
            self._drop_references(ids)

        return self._bulk_apply("delete", delete)

    # ---- settings ----

    def update_settings(self, **fields: Any) -> Settings:
        with self._lock:
            self._settings = Settings.model_validate({**self._settings.to_wire(), **_to_wire_keys(Settings, fields)})
            self._publish()
            return self._settings.model_copy()

    def set_password_hash(self, password_hash: str | None) -> None:
        self.update_settings(password_hash=password_hash)

    # ---- state exchange ----

    def snapshot(self) -> dict[str, Any]:
        """Full local state: {tasks, settings, completionMap, selectedItems}."""
        with self._lock:
            return {
                "tasks": [t.to_wire() for t in self._tasks],
                "settings": self._settings.to_wire(),
                "completionMap": self._completion_wire(),
                "selectedItems": list(self._selected),
            }

    def export_data(self) -> dict[str, Any]:
        """Remote payload: {tasks, completionMap, exportedAt}."""
        with self._lock:
            return {
                "tasks": [t.to_wire() for t in self._tasks],
                "completionMap": self._completion_wire(),
                "exportedAt": now_iso(),
            }

    def load_data(self, data: dict[str, Any]) -> None:
        """Install tasks and completion map from a remote payload. Validated before anything changes."""
        tasks = _parse_tasks(data)
        raw_map = data.get("completionMap")
        if raw_map is None:
            raw_map = data.get("completedOccurrences")
        completed = _parse_completion_map(raw_map or {})
        with self._lock:
            self._tasks = tasks
            self._completed = completed
            logger.info("Loaded %d task(s), %d completed occurrence(s)", len(tasks), len(completed))
            self._publish()

    def replace_state(self, snapshot: dict[str, Any]) -> None:
        """Full-state replace from a snapshot (local file or another view). Never publishes."""
        tasks = _parse_tasks(snapshot)
        raw_map = snapshot.get("completionMap")
        if raw_map is None:
            raw_map = snapshot.get("completedOccurrences")
        completed = _parse_completion_map(raw_map or {})
        settings = Settings.model_validate(snapshot.get("settings") or {})
        selected = [str(i) for i in snapshot.get("selectedItems") or []]
        with self._lock:
            self._tasks = tasks
            self._completed = completed
            self._settings = settings
            known = {t.id for t in tasks}
            self._selected = [i for i in dict.fromkeys(selected) if i in known]

    def follow(self, broadcaster: StateBroadcaster):
        """Mirror every snapshot published on broadcaster by other stores. Returns the unsubscribe function."""

        def on_snapshot(snapshot: dict[str, Any], source: Any) -> None:
            if source is self:
                return
            self.replace_state(snapshot)

        return broadcaster.subscribe(on_snapshot)
