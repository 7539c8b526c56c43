from __future__ import annotations

import asyncio
import logging
import weakref
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from config import settings
from db.models import User
from services.account_meta_service import get_planner_state, save_planner_state
from services.device_outbox import DeviceOutboxPort
from services.notification_port import PlatformScheduleFailure
from services.planner_entries import completion_summary, project_entries
from services.planner_state import (
    REQUIRED_TASK_KEYS,
    PlannerState,
    effective_reminder_times,
    required_reminder_label,
)
from services.reminder_scheduler import SchedulerOptions, schedule_reminders
from utils.date_keys import date_key, format_planner_date


logger = logging.getLogger(__name__)

# One lock per account: the cancel-then-schedule sweep must not interleave.
# Entries disappear once no caller holds the lock.
_SCHEDULE_LOCKS: weakref.WeakValueDictionary[int, asyncio.Lock] = weakref.WeakValueDictionary()


def _account_lock(user_id: int) -> asyncio.Lock:
    lock = _SCHEDULE_LOCKS.get(user_id)
    if lock is None:
        lock = asyncio.Lock()
        _SCHEDULE_LOCKS[user_id] = lock
    return lock


def local_now() -> datetime:
    return datetime.now()


def planner_snapshot(state: PlannerState, reference: datetime | None = None) -> dict[str, Any]:
    today = date_key(reference or local_now())
    return {
        "planner": state.to_payload(),
        "today": today,
        "reminder_times": effective_reminder_times(state),
        "reminder_labels": {key: required_reminder_label(key) for key in REQUIRED_TASK_KEYS},
    }


def entries_snapshot(state: PlannerState, day: str) -> dict[str, Any]:
    return {
        "date": day,
        "label": format_planner_date(day),
        "entries": [entry.to_dict() for entry in project_entries(day, state)],
        "summary": completion_summary(day, state),
    }


async def reschedule_planner_reminders(
    db: Session,
    user: User,
    state: PlannerState | None = None,
    reference: datetime | None = None,
) -> dict[str, Any]:
    """
    Resync the account's device outbox with its planner state.

    Scheduling failures are reported in the result rather than raised: the
    planner data is already saved by the time this runs.
    """
    current = state if state is not None else get_planner_state(db, user)
    async with _account_lock(user.id):
        port = DeviceOutboxPort(db, user)
        try:
            outcome = await schedule_reminders(
                current,
                reference or local_now(),
                port,
                SchedulerOptions.from_settings(settings),
            )
        except PlatformScheduleFailure as exc:
            db.rollback()
            logger.warning("Planner saved but reminder scheduling failed for user %s: %s", user.id, exc)
            return {"reminders": "failed", "scheduled": 0, "cancelled": 0, "detail": str(exc)}
        db.commit()
    return {
        "reminders": outcome.status,
        "scheduled": outcome.scheduled,
        "cancelled": outcome.cancelled,
    }


async def save_and_reschedule(
    db: Session,
    user: User,
    state: PlannerState,
    reference: datetime | None = None,
) -> dict[str, Any]:
    save_planner_state(db, user, state)
    db.commit()
    result = await reschedule_planner_reminders(db, user, state, reference)
    return {"status": "ok", **planner_snapshot(state, reference), **result}
