from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any

from utils.date_keys import is_valid_date_key, is_valid_time


logger = logging.getLogger(__name__)

REQUIRED_TASK_KEYS: tuple[str, ...] = ("water", "exercise", "meditation")
REQUIRED_TASK_TITLES: dict[str, str] = {
    "water": "Drink water",
    "exercise": "Exercise",
    "meditation": "Meditation",
}
DEFAULT_REMINDER_TIMES: dict[str, str] = {
    "water": "06:45",
    "exercise": "07:15",
    "meditation": "07:45",
}
# Minutes past the base due time; each offset is relative to the base, not chained.
REMINDER_ESCALATION_MINUTES: dict[str, tuple[int, ...]] = {
    "water": (10, 20, 30, 45, 60),
    "exercise": (15, 30, 45),
    "meditation": (15, 30, 45),
}
REPEAT_MODES = {"once", "daily"}


def required_task_id(key: str) -> str:
    return f"required-{key}"


@dataclass(frozen=True)
class CustomItem:
    id: str
    title: str
    date: str
    time: str
    repeat: str = "once"

    @classmethod
    def from_payload(cls, raw: Any) -> CustomItem | None:
        if not isinstance(raw, dict):
            return None
        item_id = str(raw.get("id") or "").strip()
        if not item_id:
            return None
        repeat = str(raw.get("repeat") or "once").strip().lower()
        if repeat not in REPEAT_MODES:
            repeat = "once"
        return cls(
            id=item_id,
            title=str(raw.get("title") or "").strip() or "Planner task",
            date=str(raw.get("date") or "").strip(),
            time=str(raw.get("time") or "").strip(),
            repeat=repeat,
        )

    def to_payload(self) -> dict[str, str]:
        return {
            "id": self.id,
            "title": self.title,
            "date": self.date,
            "time": self.time,
            "repeat": self.repeat,
        }


@dataclass(frozen=True)
class PlannerState:
    """
    Planner preference document stored on the account.

    Instances are treated as immutable: every helper in this module returns a
    new state instead of editing one in place.
    """

    reminders_enabled: bool = True
    reminder_times: dict[str, str] = field(default_factory=dict)
    custom_items: tuple[CustomItem, ...] = ()
    completions: dict[str, dict[str, bool]] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, raw: Any) -> PlannerState:
        """Build a state from the JSON document shape; malformed sections are dropped, never raised."""
        if not isinstance(raw, dict):
            return cls()

        enabled = raw.get("remindersEnabled")
        reminder_times: dict[str, str] = {}
        raw_times = raw.get("reminderTimes")
        if isinstance(raw_times, dict):
            for key in REQUIRED_TASK_KEYS:
                value = raw_times.get(key)
                if value is None:
                    continue
                if is_valid_time(value):
                    reminder_times[key] = value
                else:
                    logger.warning("Ignoring invalid reminder time for %s: %r", key, value)

        items: list[CustomItem] = []
        raw_items = raw.get("customItems")
        if isinstance(raw_items, list):
            for raw_item in raw_items:
                item = CustomItem.from_payload(raw_item)
                if item is None:
                    logger.warning("Dropping malformed planner item: %r", raw_item)
                    continue
                items.append(item)

        completions: dict[str, dict[str, bool]] = {}
        raw_completions = raw.get("completions")
        if isinstance(raw_completions, dict):
            for day, entries in raw_completions.items():
                if not isinstance(entries, dict):
                    continue
                completions[str(day)] = {str(entry_id): bool(done) for entry_id, done in entries.items()}

        return cls(
            reminders_enabled=enabled if isinstance(enabled, bool) else True,
            reminder_times=reminder_times,
            custom_items=tuple(items),
            completions=completions,
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "remindersEnabled": self.reminders_enabled,
            "reminderTimes": effective_reminder_times(self),
            "customItems": [item.to_payload() for item in self.custom_items],
            "completions": {day: dict(entries) for day, entries in self.completions.items()},
        }

    def is_completed(self, day: str, entry_id: str) -> bool:
        return bool(self.completions.get(day, {}).get(entry_id, False))


def effective_reminder_times(state: PlannerState | None) -> dict[str, str]:
    times = dict(DEFAULT_REMINDER_TIMES)
    if state is not None:
        for key, value in state.reminder_times.items():
            if key in times and is_valid_time(value):
                times[key] = value
    return times


def required_reminder_label(key: str) -> str:
    steps = [value for value in REMINDER_ESCALATION_MINUTES.get(key, ()) if value > 0]
    if not steps:
        return "One reminder only."
    return f"Repeats after {', '.join(str(value) for value in steps)} minutes until complete."


def _sorted_items(items) -> tuple[CustomItem, ...]:
    return tuple(sorted(items, key=lambda item: f"{item.date}-{item.time}"))


def update_completion(state: PlannerState, day: str, entry_id: str, completed: bool) -> PlannerState:
    completions = {d: dict(entries) for d, entries in state.completions.items()}
    completions.setdefault(day, {})[entry_id] = bool(completed)
    return replace(state, completions=completions)


def add_custom_item(state: PlannerState, item: CustomItem) -> PlannerState:
    if any(existing.id == item.id for existing in state.custom_items):
        raise ValueError(f"Planner item already exists: {item.id}")
    if not (item.title or "").strip():
        raise ValueError("title must not be empty")
    if not is_valid_date_key(item.date):
        raise ValueError("date must be YYYY-MM-DD")
    if not is_valid_time(item.time):
        raise ValueError("time must be HH:MM")
    if item.repeat not in REPEAT_MODES:
        raise ValueError("repeat must be one of: daily, once")
    return replace(state, custom_items=_sorted_items([*state.custom_items, item]))


def remove_custom_item(state: PlannerState, item_id: str) -> PlannerState:
    completions = {
        day: {entry_id: done for entry_id, done in entries.items() if entry_id != item_id}
        for day, entries in state.completions.items()
    }
    items = tuple(item for item in state.custom_items if item.id != item_id)
    return replace(state, custom_items=items, completions=completions)


def move_custom_item(
    state: PlannerState,
    item_id: str,
    *,
    date: str | None = None,
    time: str | None = None,
    title: str | None = None,
    repeat: str | None = None,
) -> PlannerState:
    target = next((item for item in state.custom_items if item.id == item_id), None)
    if target is None:
        raise LookupError(f"Planner item not found: {item_id}")

    changes: dict[str, str] = {}
    if date is not None:
        if not is_valid_date_key(date):
            raise ValueError("date must be YYYY-MM-DD")
        changes["date"] = date
    if time is not None:
        if not is_valid_time(time):
            raise ValueError("time must be HH:MM")
        changes["time"] = time
    if title is not None:
        if not title.strip():
            raise ValueError("title must not be empty")
        changes["title"] = title.strip()
    if repeat is not None:
        if repeat not in REPEAT_MODES:
            raise ValueError("repeat must be one of: daily, once")
        changes["repeat"] = repeat

    moved = replace(target, **changes)
    items = [moved if item.id == item_id else item for item in state.custom_items]
    return replace(state, custom_items=_sorted_items(items))


def set_reminder_times(state: PlannerState, updates: dict[str, str | None]) -> PlannerState:
    times = dict(state.reminder_times)
    for key, value in updates.items():
        if key not in REQUIRED_TASK_KEYS:
            raise ValueError(f"Unknown required task: {key}")
        if value is None:
            continue
        if not is_valid_time(value):
            raise ValueError(f"{key} time must be HH:MM")
        times[key] = value
    return replace(state, reminder_times=times)


def set_reminders_enabled(state: PlannerState, enabled: bool) -> PlannerState:
    return replace(state, reminders_enabled=bool(enabled))
