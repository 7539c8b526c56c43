"""
Planner reminder scheduling.

``build_reminder_descriptors`` decides which notifications should be pending
for a planner state at a reference instant. ``schedule_reminders`` reconciles
that decision against a device: it sweeps away every planner-owned pending
notification and schedules the fresh set in one batch, so calling it after
every save is idempotent.

All instants are naive local wall-clock datetimes.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from services.notification_port import (
    PLANNER_NOTIFICATION_KIND,
    DeviceNotificationPort,
    NotificationChannel,
    PlatformScheduleFailure,
)
from services.planner_entries import custom_item_is_well_formed, project_entries
from services.planner_state import (
    REMINDER_ESCALATION_MINUTES,
    REQUIRED_TASK_KEYS,
    REQUIRED_TASK_TITLES,
    PlannerState,
    effective_reminder_times,
    required_task_id,
)
from utils.date_keys import combine_date_time, date_key, parse_time, shift_date_key


logger = logging.getLogger(__name__)

NOTIFICATION_ID_MODULUS = 2_000_000_000
DEFAULT_LOOKAHEAD_DAYS = 5
DEFAULT_CHANNEL_ID = "planner-reminders"

LOOP_DAILY_BASE = "daily-base"
LOOP_FOLLOW_UP = "follow-up"


def planner_notification_id(key: str) -> int:
    """
    Map a stable reminder key onto a platform notification id.

    Polynomial rolling hash (h = h * 31 + unit) over the key's UTF-16 code
    units, wrapped to a signed 32-bit integer, then ``abs(h) % 2_000_000_000``.
    The mobile client computes the same ids, so changing this function orphans
    every reminder already scheduled on devices.
    """
    encoded = key.encode("utf-16-le")
    h = 0
    for index in range(0, len(encoded), 2):
        unit = encoded[index] | (encoded[index + 1] << 8)
        h = (h * 31 + unit) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return abs(h) % NOTIFICATION_ID_MODULUS


@dataclass(frozen=True)
class SchedulerOptions:
    lookahead_days: int = DEFAULT_LOOKAHEAD_DAYS
    channel_id: str = DEFAULT_CHANNEL_ID
    per_task_channels: bool = False

    @classmethod
    def from_settings(cls, app_settings: Any) -> SchedulerOptions:
        return cls(
            lookahead_days=max(int(app_settings.PLANNER_LOOKAHEAD_DAYS), 1),
            channel_id=str(app_settings.PLANNER_CHANNEL_ID or DEFAULT_CHANNEL_ID),
            per_task_channels=bool(app_settings.PLANNER_PER_TASK_CHANNELS),
        )

    def channel_for(self, task_key: str | None = None) -> str:
        if self.per_task_channels and task_key:
            return f"{self.channel_id}-{task_key}"
        return self.channel_id

    def channels(self) -> list[NotificationChannel]:
        rows = [
            NotificationChannel(
                id=self.channel_id,
                name="Planner reminders",
                description="Daily required tasks and planner reminders",
            )
        ]
        if self.per_task_channels:
            for key in REQUIRED_TASK_KEYS:
                rows.append(
                    NotificationChannel(
                        id=self.channel_for(key),
                        name=f"{REQUIRED_TASK_TITLES[key]} reminders",
                        description=f"Reminders for the daily {key} task",
                    )
                )
        return rows


@dataclass(frozen=True)
class ReminderDescriptor:
    key: str
    title: str
    body: str
    channel_id: str
    extra: dict[str, Any]
    at: datetime | None = None
    on: tuple[int, int] | None = None

    @property
    def id(self) -> int:
        return planner_notification_id(self.key)

    @property
    def repeats(self) -> bool:
        return self.on is not None

    def schedule_payload(self) -> dict[str, Any]:
        if self.on is not None:
            hour, minute = self.on
            return {"on": {"hour": hour, "minute": minute}, "repeats": True, "allowWhileIdle": True}
        return {"at": self.at.isoformat() if self.at else None, "allowWhileIdle": True}

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "body": self.body,
            "schedule": self.schedule_payload(),
            "channelId": self.channel_id,
            "extra": dict(self.extra),
        }


@dataclass
class ScheduleOutcome:
    status: str  # scheduled | disabled | permission_denied
    cancelled: int = 0
    descriptors: list[ReminderDescriptor] = field(default_factory=list)

    @property
    def scheduled(self) -> int:
        return len(self.descriptors)


def _local_naive(instant: datetime) -> datetime:
    if instant.tzinfo is not None:
        return instant.astimezone().replace(tzinfo=None)
    return instant


def _base_descriptors(state: PlannerState, options: SchedulerOptions) -> list[ReminderDescriptor]:
    reminder_times = effective_reminder_times(state)
    rows: list[ReminderDescriptor] = []
    for order, key in enumerate(REQUIRED_TASK_KEYS):
        time_value = reminder_times[key]
        rows.append(
            ReminderDescriptor(
                key=f"daily-{key}",
                title=REQUIRED_TASK_TITLES[key],
                body=f"Daily routine reminder for {time_value}.",
                channel_id=options.channel_for(key),
                extra={
                    "kind": PLANNER_NOTIFICATION_KIND,
                    "taskId": required_task_id(key),
                    "required": True,
                    "order": order,
                    "loop": LOOP_DAILY_BASE,
                },
                on=parse_time(time_value),
            )
        )
    return rows


def _day_descriptors(
    day: str,
    state: PlannerState,
    reference: datetime,
    options: SchedulerOptions,
) -> list[ReminderDescriptor]:
    rows: list[ReminderDescriptor] = []
    entries = project_entries(day, state)
    by_id = {entry.id: entry for entry in entries}

    for order, key in enumerate(REQUIRED_TASK_KEYS):
        entry = by_id[required_task_id(key)]
        if entry.completed:
            continue
        base = combine_date_time(day, entry.time)
        if base <= reference:
            continue
        for reminder_index, offset in enumerate(REMINDER_ESCALATION_MINUTES[key]):
            fire_at = base + timedelta(minutes=offset)
            if fire_at <= reference:
                continue
            rows.append(
                ReminderDescriptor(
                    key=f"{day}-{entry.id}-followup-{reminder_index}",
                    title=entry.title,
                    body=f"{entry.title} is still pending. Open the planner and tick it complete.",
                    channel_id=options.channel_for(key),
                    extra={
                        "kind": PLANNER_NOTIFICATION_KIND,
                        "dateKey": day,
                        "taskId": entry.id,
                        "required": True,
                        "order": order,
                        "reminderIndex": reminder_index,
                        "loop": LOOP_FOLLOW_UP,
                    },
                    at=fire_at,
                )
            )

    for entry in entries:
        # Daily custom items get a single repeating trigger instead.
        if entry.required or entry.repeat != "once" or entry.completed:
            continue
        fire_at = combine_date_time(day, entry.time)
        if fire_at <= reference:
            continue
        rows.append(
            ReminderDescriptor(
                key=f"{day}-{entry.id}",
                title=entry.title,
                body=f"Scheduled for {entry.time}.",
                channel_id=options.channel_for(),
                extra={
                    "kind": PLANNER_NOTIFICATION_KIND,
                    "dateKey": day,
                    "taskId": entry.id,
                    "required": False,
                },
                at=fire_at,
            )
        )
    return rows


def _custom_daily_descriptors(state: PlannerState, options: SchedulerOptions) -> list[ReminderDescriptor]:
    rows: list[ReminderDescriptor] = []
    for item in state.custom_items:
        if item.repeat != "daily":
            continue
        if not custom_item_is_well_formed(item):
            logger.warning("Skipping daily reminder for malformed planner item %s", item.id)
            continue
        rows.append(
            ReminderDescriptor(
                key=f"daily-custom-{item.id}",
                title=item.title,
                body=f"Daily reminder at {item.time}.",
                channel_id=options.channel_for(),
                extra={
                    "kind": PLANNER_NOTIFICATION_KIND,
                    "taskId": item.id,
                    "required": False,
                    "loop": LOOP_DAILY_BASE,
                },
                on=parse_time(item.time),
            )
        )
    return rows


def build_reminder_descriptors(
    state: PlannerState,
    reference_instant: datetime,
    options: SchedulerOptions | None = None,
) -> list[ReminderDescriptor]:
    """Return every planner notification that should be pending at ``reference_instant``."""
    opts = options or SchedulerOptions()
    if not state.reminders_enabled:
        return []

    reference = _local_naive(reference_instant)
    start_key = date_key(reference)

    descriptors = _base_descriptors(state, opts)
    for offset in range(opts.lookahead_days):
        descriptors.extend(_day_descriptors(shift_date_key(start_key, offset), state, reference, opts))
    descriptors.extend(_custom_daily_descriptors(state, opts))
    return descriptors


async def _permission_granted(port: DeviceNotificationPort) -> bool:
    try:
        if await port.check_permissions() == "granted":
            return True
        return await port.request_permissions() == "granted"
    except Exception as exc:
        logger.warning("Notification permission query failed: %s", exc)
        return False


async def _sweep_planner_notifications(port: DeviceNotificationPort) -> int:
    try:
        pending = await port.get_pending()
        owned = [row.id for row in pending if row.is_planner_owned]
        if owned:
            await port.cancel(owned)
        return len(owned)
    except Exception as exc:
        logger.warning("Could not clear pending planner notifications, continuing: %s", exc)
        return 0


async def schedule_reminders(
    state: PlannerState,
    reference_instant: datetime,
    port: DeviceNotificationPort,
    options: SchedulerOptions | None = None,
) -> ScheduleOutcome:
    """
    Replace the device's planner notifications with the set due at ``reference_instant``.

    Callers must not run two invocations concurrently for the same device:
    the cancel-then-schedule sweep is not atomic.

    Raises:
        PlatformScheduleFailure: the final batch schedule call failed.
    """
    opts = options or SchedulerOptions()

    if not await _permission_granted(port):
        logger.info("Planner reminders skipped: notification permission not granted")
        return ScheduleOutcome(status="permission_denied")

    try:
        await port.ensure_exact_alarms()
    except Exception as exc:
        logger.warning("Exact alarm setting check failed, continuing: %s", exc)

    for channel in opts.channels():
        try:
            await port.create_channel(channel)
        except Exception as exc:
            logger.warning("Notification channel setup failed for %s: %s", channel.id, exc)

    cancelled = await _sweep_planner_notifications(port)

    if not state.reminders_enabled:
        return ScheduleOutcome(status="disabled", cancelled=cancelled)

    descriptors = build_reminder_descriptors(state, reference_instant, opts)
    if descriptors:
        try:
            await port.schedule([row.to_dict() for row in descriptors])
        except PlatformScheduleFailure:
            raise
        except Exception as exc:
            raise PlatformScheduleFailure(f"Scheduling planner reminders failed: {exc}") from exc

    logger.info("Scheduled %d planner reminders (cancelled %d)", len(descriptors), cancelled)
    return ScheduleOutcome(status="scheduled", cancelled=cancelled, descriptors=descriptors)
