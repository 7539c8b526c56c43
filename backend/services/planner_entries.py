from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any

from services.planner_state import (
    REQUIRED_TASK_KEYS,
    REQUIRED_TASK_TITLES,
    CustomItem,
    PlannerState,
    effective_reminder_times,
    required_task_id,
)
from utils.date_keys import is_valid_date_key, is_valid_time


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlannerEntry:
    id: str
    title: str
    date: str
    time: str
    required: bool
    completed: bool
    repeat: str = "once"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def custom_item_is_well_formed(item: CustomItem) -> bool:
    return is_valid_date_key(item.date) and is_valid_time(item.time)


def custom_item_due_on(item: CustomItem, day: str) -> bool:
    """A daily item recurs from its stored date onward; a one-time item only on that date."""
    if item.repeat == "daily":
        return item.date <= day
    return item.date == day


def project_entries(day: str, state: PlannerState) -> list[PlannerEntry]:
    """Return the day's required and custom entries, sorted by time."""
    reminder_times = effective_reminder_times(state)

    required = [
        PlannerEntry(
            id=required_task_id(key),
            title=REQUIRED_TASK_TITLES[key],
            date=day,
            time=reminder_times[key],
            required=True,
            completed=state.is_completed(day, required_task_id(key)),
            repeat="daily",
        )
        for key in REQUIRED_TASK_KEYS
    ]

    custom: list[PlannerEntry] = []
    for item in state.custom_items:
        if not custom_item_is_well_formed(item):
            logger.warning("Skipping malformed planner item %s (date=%r, time=%r)", item.id, item.date, item.time)
            continue
        if not custom_item_due_on(item, day):
            continue
        custom.append(
            PlannerEntry(
                id=item.id,
                title=item.title,
                date=day,
                time=item.time,
                required=False,
                completed=state.is_completed(day, item.id),
                repeat=item.repeat,
            )
        )

    # sorted() is stable: ties keep required entries ahead of custom ones.
    return sorted([*required, *custom], key=lambda entry: entry.time)


def completion_summary(day: str, state: PlannerState) -> dict[str, int]:
    entries = project_entries(day, state)
    done = sum(1 for entry in entries if entry.completed)
    required_done = sum(1 for entry in entries if entry.required and entry.completed)
    return {
        "total": len(entries),
        "completed": done,
        "pending": len(entries) - done,
        "required_completed": required_done,
        "required_total": len(REQUIRED_TASK_KEYS),
    }
