from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


PLANNER_NOTIFICATION_KIND = "planner"


class NotificationPortError(Exception):
    """Base class for device notification failures."""


class PlatformQueryFailure(NotificationPortError):
    """Raised when pending notifications cannot be listed or cancelled."""


class PlatformScheduleFailure(NotificationPortError):
    """Raised when the final batch schedule call fails; no reminders are active."""


@dataclass(frozen=True)
class NotificationChannel:
    id: str
    name: str
    description: str = ""
    importance: int = 5
    visibility: int = 1
    vibration: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "importance": self.importance,
            "visibility": self.visibility,
            "vibration": self.vibration,
        }


@dataclass(frozen=True)
class PendingNotification:
    """A notification the device currently holds; only ``id`` and ``extra`` matter to the scheduler."""

    id: int
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def is_planner_owned(self) -> bool:
        return (self.extra or {}).get("kind") == PLANNER_NOTIFICATION_KIND


class DeviceNotificationPort(ABC):
    """Abstract device notification surface the reminder scheduler drives."""

    @abstractmethod
    async def check_permissions(self) -> str:
        """Return the display permission: ``granted``, ``denied`` or ``prompt``."""
        ...

    @abstractmethod
    async def request_permissions(self) -> str:
        """Ask for display permission and return the resulting state."""
        ...

    @abstractmethod
    async def create_channel(self, channel: NotificationChannel) -> None:
        ...

    @abstractmethod
    async def get_pending(self) -> list[PendingNotification]:
        ...

    @abstractmethod
    async def cancel(self, notification_ids: list[int]) -> None:
        ...

    @abstractmethod
    async def schedule(self, notifications: list[dict[str, Any]]) -> None:
        """Schedule descriptors in one batch.

        Args:
            notifications: Descriptor dicts as produced by
                ``ReminderDescriptor.to_dict``.
        """
        ...

    async def ensure_exact_alarms(self) -> None:
        """Make sure exact alarms are allowed; devices without the setting need nothing."""
        return None
