from __future__ import annotations

import uuid
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from auth.utils import get_current_user
from db.database import get_db
from db.models import User
from services.account_meta_service import get_planner_state
from services.device_outbox import list_device_notifications, set_device_permission
from services.planner_service import (
    entries_snapshot,
    local_now,
    planner_snapshot,
    reschedule_planner_reminders,
    save_and_reschedule,
)
from services.planner_state import (
    CustomItem,
    PlannerState,
    add_custom_item,
    move_custom_item,
    remove_custom_item,
    set_reminder_times,
    set_reminders_enabled,
    update_completion,
)
from utils.date_keys import date_key, is_valid_date_key


router = APIRouter(prefix="/planner", tags=["planner"])


class PlannerItemCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    date: str
    time: str
    repeat: str = "once"  # once | daily


class PlannerItemUpdate(BaseModel):
    title: Optional[str] = None
    date: Optional[str] = None
    time: Optional[str] = None
    repeat: Optional[str] = None


class CompletionUpdate(BaseModel):
    date: str
    task_id: str = Field(alias="taskId")
    completed: bool

    model_config = {"populate_by_name": True}


class ReminderTimesUpdate(BaseModel):
    water: Optional[str] = None
    exercise: Optional[str] = None
    meditation: Optional[str] = None


class RemindersToggle(BaseModel):
    enabled: bool


class DevicePermissionUpdate(BaseModel):
    permission: str  # granted | denied | prompt
    platform: Optional[str] = None


def _require_date_key(value: str) -> str:
    if not is_valid_date_key(value):
        raise HTTPException(status_code=400, detail="date must be YYYY-MM-DD")
    return value


@router.get("")
def get_planner(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    state = get_planner_state(db, user)
    db.commit()
    return planner_snapshot(state)


@router.put("")
async def replace_planner(
    payload: dict[str, Any],
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return await save_and_reschedule(db, user, PlannerState.from_payload(payload))


@router.get("/entries")
def get_entries(
    date: Optional[str] = Query(default=None),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    day = _require_date_key(date) if date else date_key(local_now())
    state = get_planner_state(db, user)
    db.commit()
    return entries_snapshot(state, day)


@router.post("/completions")
async def toggle_completion(
    payload: CompletionUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    day = _require_date_key(payload.date)
    state = update_completion(get_planner_state(db, user), day, payload.task_id, payload.completed)
    return await save_and_reschedule(db, user, state)


@router.post("/items", status_code=201)
async def add_item(
    payload: PlannerItemCreate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    item = CustomItem(
        id=f"custom-{uuid.uuid4().hex[:12]}",
        title=payload.title.strip(),
        date=payload.date,
        time=payload.time,
        repeat=(payload.repeat or "once").strip().lower(),
    )
    try:
        state = add_custom_item(get_planner_state(db, user), item)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    result = await save_and_reschedule(db, user, state)
    return {**result, "item": item.to_payload()}


@router.patch("/items/{item_id}")
async def update_item(
    item_id: str,
    payload: PlannerItemUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        state = move_custom_item(
            get_planner_state(db, user),
            item_id,
            date=payload.date,
            time=payload.time,
            title=payload.title,
            repeat=payload.repeat.strip().lower() if payload.repeat else None,
        )
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return await save_and_reschedule(db, user, state)


@router.delete("/items/{item_id}")
async def delete_item(
    item_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    current = get_planner_state(db, user)
    if not any(item.id == item_id for item in current.custom_items):
        raise HTTPException(status_code=404, detail=f"Planner item not found: {item_id}")
    return await save_and_reschedule(db, user, remove_custom_item(current, item_id))


@router.put("/reminder-times")
async def update_reminder_times(
    payload: ReminderTimesUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        state = set_reminder_times(get_planner_state(db, user), payload.model_dump())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return await save_and_reschedule(db, user, state)


@router.put("/reminders")
async def toggle_reminders(
    payload: RemindersToggle,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    state = set_reminders_enabled(get_planner_state(db, user), payload.enabled)
    return await save_and_reschedule(db, user, state)


@router.post("/reschedule")
async def reschedule(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    result = await reschedule_planner_reminders(db, user)
    return {"status": "ok", **result}


@router.put("/device")
async def update_device(
    payload: DevicePermissionUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        row = set_device_permission(db, user, payload.permission, payload.platform)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    db.commit()
    result = await reschedule_planner_reminders(db, user)
    return {"status": "ok", "permission": row.permission, **result}


@router.get("/notifications")
def pending_notifications(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    rows = list_device_notifications(db, user)
    db.commit()
    return {"notifications": rows}
