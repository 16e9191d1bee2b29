"""HTTP API for dayplan: tasks, day views, calendar, selection, import, settings and sync."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from auth import hash_password, validate_new_password, verify_password
from date_utils import resolve_relative_date
from github_storage import RemoteNotConfiguredError, RemoteSyncError
from importer import parse_file
from models import Task
from recurrence import (
    DAYS_OF_WEEK,
    RECURRENCE_PATTERNS,
    RecurrenceRule,
    format_label,
    is_known_pattern,
    occurrences_between,
    upcoming_occurrences,
)
from runtime import Runtime, build_runtime

logger = logging.getLogger("dayplan.api")

_runtime: Runtime | None = None


def get_runtime() -> Runtime:
    """Dependency: the process-wide runtime, built from config.json on first use."""
    global _runtime
    if _runtime is None:
        _runtime = build_runtime()
    return _runtime


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    if _runtime is not None:
        _runtime.shutdown()


app = FastAPI(title="dayplan", version="1.0", lifespan=lifespan)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    response = await call_next(request)
    if logger.isEnabledFor(logging.DEBUG):
        qs = request.url.query
        logger.debug("[API] %s %s%s -> %s", request.method, request.url.path, "?" + qs if qs else "", response.status_code)
    return response


@app.exception_handler(Exception)
async def log_unhandled(request: Request, exc: Exception):
    logger.exception("%s %s failed", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": str(exc)})


def _require_session(
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
    rt: Runtime = Depends(get_runtime),
) -> None:
    """Dependency: once a password is set, require a session token from /api/auth/login."""
    if not rt.store.settings.password_hash:
        return
    if not rt.sessions.is_valid(x_session_token):
        raise HTTPException(status_code=401, detail="Login required. Use X-Session-Token header.")


_auth = [Depends(_require_session)]


def _resolve_day(value: str | None, rt: Runtime) -> str:
    resolved = resolve_relative_date(value, rt.config.user_timezone)
    if resolved is None:
        raise HTTPException(status_code=400, detail=f"Invalid date: {value!r}. Use YYYY-MM-DD, today, tomorrow, ...")
    return resolved


def _task_out(task: Task) -> dict[str, Any]:
    out = task.to_wire()
    out["recurrenceLabel"] = format_label(task.recurrence)
    return out


# --- API schemas ---


class PasswordSetup(BaseModel):
    password: str
    confirm: str | None = None


class PasswordLogin(BaseModel):
    password: str


class TaskCreate(BaseModel):
    title: str
    notes: str = ""
    priority: int = Field(0, ge=0, le=5)
    date: str | None = None
    recurrence: dict[str, Any] | None = None


class SubItemCreate(BaseModel):
    title: str
    priority: int = Field(0, ge=0, le=5)


class ImportRequest(BaseModel):
    filename: str
    content: str
    mode: str = "merge"


class RecurrencePreview(BaseModel):
    rule: dict[str, Any]
    anchor: str = "today"
    count: int = Field(5, ge=1, le=100)
    until: str | None = None


# --- Auth ---


@app.get("/api/auth/status")
def auth_status(
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
    rt: Runtime = Depends(get_runtime),
):
    password_set = bool(rt.store.settings.password_hash)
    return {
        "passwordSet": password_set,
        "authenticated": not password_set or rt.sessions.is_valid(x_session_token),
    }


@app.post("/api/auth/setup")
def auth_setup(body: PasswordSetup, rt: Runtime = Depends(get_runtime)):
    if rt.store.settings.password_hash:
        raise HTTPException(status_code=409, detail="Password already set")
    try:
        validate_new_password(body.password, body.confirm)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    rt.store.set_password_hash(hash_password(body.password))
    logger.info("Password set")
    return {"token": rt.sessions.create()}


@app.post("/api/auth/login")
def auth_login(body: PasswordLogin, rt: Runtime = Depends(get_runtime)):
    if not verify_password(body.password, rt.store.settings.password_hash):
        raise HTTPException(status_code=401, detail="Incorrect password")
    return {"token": rt.sessions.create()}


@app.post("/api/auth/logout")
def auth_logout(
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
    rt: Runtime = Depends(get_runtime),
):
    rt.sessions.revoke(x_session_token)
    return {"status": "logged_out"}


@app.post("/api/auth/reset", dependencies=_auth)
def auth_reset(rt: Runtime = Depends(get_runtime)):
    """Remove the password; every session ends."""
    rt.store.set_password_hash(None)
    rt.sessions.clear()
    logger.info("Password reset")
    return {"status": "reset"}


# --- Tasks ---


@app.get("/api/tasks", dependencies=_auth)
def api_list_tasks(rt: Runtime = Depends(get_runtime)):
    return [_task_out(t) for t in rt.store.list_tasks()]


@app.post("/api/tasks", dependencies=_auth)
def api_create_task(body: TaskCreate, rt: Runtime = Depends(get_runtime)):
    day = _resolve_day(body.date, rt) if body.date else None
    try:
        task = rt.store.add_task(
            body.title,
            notes=body.notes,
            priority=body.priority,
            date=day,
            recurrence=body.recurrence,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _task_out(task)


@app.get("/api/tasks/similar", dependencies=_auth)
def api_similar_tasks(title: str = "", rt: Runtime = Depends(get_runtime)):
    return [{"task": _task_out(t), "score": score} for t, score in rt.store.find_similar(title)]


@app.get("/api/tasks/{task_id}", dependencies=_auth)
def api_get_task(task_id: str, rt: Runtime = Depends(get_runtime)):
    t = rt.store.get_task(task_id)
    if t is None:
        raise HTTPException(status_code=404, detail="Task not found")
    return _task_out(t)


@app.put("/api/tasks/{task_id}", dependencies=_auth)
def api_update_task(task_id: str, body: dict, rt: Runtime = Depends(get_runtime)):
    if "date" in body and body["date"]:
        body = {**body, "date": _resolve_day(str(body["date"]), rt)}
    try:
        t = rt.store.update_task(task_id, body)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if t is None:
        raise HTTPException(status_code=404, detail="Task not found")
    return _task_out(t)


@app.delete("/api/tasks/{task_id}", dependencies=_auth)
def api_delete_task(task_id: str, rt: Runtime = Depends(get_runtime)):
    if not rt.store.delete_task(task_id):
        raise HTTPException(status_code=404, detail="Task not found")
    return {"status": "deleted"}


@app.post("/api/tasks/{task_id}/toggle", dependencies=_auth)
def api_toggle_task(task_id: str, body: dict | None = None, rt: Runtime = Depends(get_runtime)):
    """Toggle completion; for recurring tasks, of the occurrence on body['date']."""
    day = _resolve_day((body or {}).get("date") or "today", rt)
    t = rt.store.toggle_completion(task_id, day)
    if t is None:
        raise HTTPException(status_code=404, detail="Task not found")
    completed = rt.store.is_occurrence_completed(task_id, day) if t.is_recurring else t.completed
    return {"task": _task_out(t), "date": day, "completed": completed}


# --- Sub-items ---


@app.post("/api/tasks/{task_id}/subitems", dependencies=_auth)
def api_add_sub_item(task_id: str, body: SubItemCreate, rt: Runtime = Depends(get_runtime)):
    try:
        sub = rt.store.add_sub_item(task_id, body.title, body.priority)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if sub is None:
        raise HTTPException(status_code=404, detail="Task not found")
    return sub.to_wire()


@app.put("/api/tasks/{task_id}/subitems/{sub_id}", dependencies=_auth)
def api_update_sub_item(task_id: str, sub_id: str, body: dict, rt: Runtime = Depends(get_runtime)):
    try:
        sub = rt.store.update_sub_item(task_id, sub_id, body)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if sub is None:
        raise HTTPException(status_code=404, detail="Sub-item not found")
    return sub.to_wire()


@app.delete("/api/tasks/{task_id}/subitems/{sub_id}", dependencies=_auth)
def api_delete_sub_item(task_id: str, sub_id: str, rt: Runtime = Depends(get_runtime)):
    if not rt.store.delete_sub_item(task_id, sub_id):
        raise HTTPException(status_code=404, detail="Sub-item not found")
    return {"status": "deleted"}


@app.post("/api/tasks/{task_id}/subitems/{sub_id}/toggle", dependencies=_auth)
def api_toggle_sub_item(task_id: str, sub_id: str, rt: Runtime = Depends(get_runtime)):
    sub = rt.store.toggle_sub_item(task_id, sub_id)
    if sub is None:
        raise HTTPException(status_code=404, detail="Sub-item not found")
    return sub.to_wire()


# --- Day view and calendar ---


@app.get("/api/days/{day}/tasks", dependencies=_auth)
def api_day_tasks(day: str, rt: Runtime = Depends(get_runtime)):
    resolved = _resolve_day(day, rt)
    rt.store.set_selected_date(resolved)
    return [_task_out(t) for t in rt.store.tasks_for_date(resolved)]


@app.get("/api/calendar/{year}/{month}", dependencies=_auth)
def api_calendar(year: int, month: int, rt: Runtime = Depends(get_runtime)):
    if not 1 <= month <= 12 or not 1 <= year <= 9999:
        raise HTTPException(status_code=400, detail="month must be 1-12")
    return {"year": year, "month": month, "counts": rt.store.task_counts_for_month(year, month)}


# --- Selection and bulk actions ---


@app.get("/api/selection", dependencies=_auth)
def api_get_selection(rt: Runtime = Depends(get_runtime)):
    return {"selectedItems": rt.store.selected_items}


@app.put("/api/selection", dependencies=_auth)
def api_set_selection(body: dict, rt: Runtime = Depends(get_runtime)):
    ids = body.get("ids")
    if not isinstance(ids, list):
        raise HTTPException(status_code=400, detail="ids must be a list")
    return {"selectedItems": rt.store.select_all(str(i) for i in ids)}


@app.delete("/api/selection", dependencies=_auth)
def api_clear_selection(rt: Runtime = Depends(get_runtime)):
    rt.store.clear_selection()
    return {"selectedItems": []}


@app.post("/api/selection/{task_id}/toggle", dependencies=_auth)
def api_toggle_selection(task_id: str, rt: Runtime = Depends(get_runtime)):
    return {"selectedItems": rt.store.toggle_select(task_id)}


@app.post("/api/bulk/move", dependencies=_auth)
def api_bulk_move(body: dict, rt: Runtime = Depends(get_runtime)):
    day = _resolve_day(body.get("date"), rt)
    return {"updated": rt.store.bulk_move_to(day)}


@app.post("/api/bulk/priority", dependencies=_auth)
def api_bulk_priority(body: dict, rt: Runtime = Depends(get_runtime)):
    try:
        return {"updated": rt.store.bulk_set_priority(int(body.get("priority")))}
    except (TypeError, ValueError) as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.post("/api/bulk/delete", dependencies=_auth)
def api_bulk_delete(rt: Runtime = Depends(get_runtime)):
    return {"deleted": rt.store.bulk_delete()}


# --- Import and recurrence preview ---


@app.post("/api/import", dependencies=_auth)
def api_import(body: ImportRequest, rt: Runtime = Depends(get_runtime)):
    try:
        tasks = parse_file(body.filename, body.content, tz_name=rt.config.user_timezone)
        n = rt.store.import_tasks(tasks, body.mode)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"imported": n, "mode": body.mode}


@app.get("/api/recurrence/patterns", dependencies=_auth)
def api_recurrence_patterns():
    """Pattern and weekday choices for a recurrence picker."""
    return {"patterns": RECURRENCE_PATTERNS, "days": DAYS_OF_WEEK}


@app.post("/api/recurrence/preview", dependencies=_auth)
def api_recurrence_preview(body: RecurrencePreview, rt: Runtime = Depends(get_runtime)):
    """Label plus the first `count` occurrences of a rule from its anchor, or those up to `until`."""
    anchor = _resolve_day(body.anchor, rt)
    try:
        rule = RecurrenceRule.model_validate(body.rule)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not is_known_pattern(rule.pattern):
        raise HTTPException(status_code=400, detail=f"Unknown recurrence pattern: {rule.pattern}")
    if body.until:
        dates = occurrences_between(rule, anchor, anchor, _resolve_day(body.until, rt))[:body.count]
    else:
        dates = upcoming_occurrences(rule, anchor, body.count)
    return {"label": format_label(rule), "occurrences": [d.isoformat() for d in dates]}


# --- Settings and sync ---


_EDITABLE_SETTINGS = {"githubToken", "githubRepo", "soundEnabled", "soundVolume"}


def _settings_out(rt: Runtime) -> dict[str, Any]:
    s = rt.store.settings.to_wire()
    s.pop("passwordHash", None)
    s["githubToken"] = "" if not s.get("githubToken") else "********"
    s["passwordSet"] = bool(rt.store.settings.password_hash)
    return s


@app.get("/api/settings", dependencies=_auth)
def api_get_settings(rt: Runtime = Depends(get_runtime)):
    return _settings_out(rt)


@app.put("/api/settings", dependencies=_auth)
def api_put_settings(body: dict, rt: Runtime = Depends(get_runtime)):
    unknown = set(body) - _EDITABLE_SETTINGS
    if unknown:
        raise HTTPException(status_code=400, detail=f"Unknown or read-only settings: {sorted(unknown)}")
    fields = dict(body)
    if fields.get("githubToken") == "********":
        fields.pop("githubToken")
    try:
        rt.store.update_settings(**fields)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _settings_out(rt)


@app.get("/api/sync/status", dependencies=_auth)
def api_sync_status(rt: Runtime = Depends(get_runtime)):
    return rt.sync.status_dict()


def _remote_call(fn):
    try:
        return fn()
    except RemoteNotConfiguredError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except RemoteSyncError as e:
        raise HTTPException(status_code=502, detail=str(e))


@app.post("/api/sync", dependencies=_auth)
def api_sync_now(rt: Runtime = Depends(get_runtime)):
    _remote_call(rt.sync.sync_now)
    return rt.sync.status_dict()


@app.post("/api/sync/load", dependencies=_auth)
def api_sync_load(rt: Runtime = Depends(get_runtime)):
    loaded = _remote_call(rt.sync.load_remote)
    return {"loaded": loaded, **rt.sync.status_dict()}


@app.post("/api/sync/test", dependencies=_auth)
def api_sync_test(rt: Runtime = Depends(get_runtime)):
    _remote_call(rt.sync.test_connection)
    return {"ok": True}
