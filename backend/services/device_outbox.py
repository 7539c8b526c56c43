from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import settings
from db.models import DeviceChannel, DeviceNotification, NotificationDevice, User
from services.notification_port import (
    DeviceNotificationPort,
    NotificationChannel,
    PendingNotification,
    PlatformQueryFailure,
    PlatformScheduleFailure,
)


PERMISSION_STATES = {"granted", "denied", "prompt"}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_device(db: Session, user: User) -> NotificationDevice:
    row = db.query(NotificationDevice).filter(NotificationDevice.user_id == user.id).first()
    if row is None:
        default = (settings.PLANNER_DEFAULT_PERMISSION or "prompt").strip().lower()
        row = NotificationDevice(
            user_id=user.id,
            permission=default if default in PERMISSION_STATES else "prompt",
        )
        db.add(row)
        db.flush()
    return row


def set_device_permission(db: Session, user: User, permission: str, platform: str | None = None) -> NotificationDevice:
    value = str(permission or "").strip().lower()
    if value not in PERMISSION_STATES:
        raise ValueError("permission must be one of: denied, granted, prompt")
    row = ensure_device(db, user)
    row.permission = value
    if platform:
        row.platform = platform.strip().lower()
    db.flush()
    return row


def list_device_notifications(db: Session, user: User) -> list[dict[str, Any]]:
    rows = (
        db.query(DeviceNotification)
        .filter(DeviceNotification.user_id == user.id)
        .order_by(DeviceNotification.id.asc())
        .all()
    )
    device = ensure_device(db, user)
    device.last_synced_at = _utcnow()
    payloads: list[dict[str, Any]] = []
    for row in rows:
        try:
            payloads.append(json.loads(row.payload))
        except json.JSONDecodeError:
            continue
    return payloads


class DeviceOutboxPort(DeviceNotificationPort):
    """
    Notification port backed by the account's device outbox tables.

    The server cannot prompt the user, so ``request_permissions`` reports the
    last permission the device sent. Scheduled descriptors are stored for the
    device to pull; storing an id that already exists replaces that row.
    """

    def __init__(self, db: Session, user: User):
        self.db = db
        self.user = user

    async def check_permissions(self) -> str:
        return ensure_device(self.db, self.user).permission or "prompt"

    async def request_permissions(self) -> str:
        return await self.check_permissions()

    async def create_channel(self, channel: NotificationChannel) -> None:
        row = (
            self.db.query(DeviceChannel)
            .filter(DeviceChannel.user_id == self.user.id, DeviceChannel.channel_id == channel.id)
            .first()
        )
        if row is None:
            row = DeviceChannel(user_id=self.user.id, channel_id=channel.id)
            self.db.add(row)
        row.name = channel.name
        row.description = channel.description
        row.importance = channel.importance
        row.visibility = channel.visibility
        row.vibration = channel.vibration
        self.db.flush()

    async def get_pending(self) -> list[PendingNotification]:
        try:
            rows = self.db.query(DeviceNotification).filter(DeviceNotification.user_id == self.user.id).all()
        except SQLAlchemyError as exc:
            raise PlatformQueryFailure(str(exc)) from exc
        pending: list[PendingNotification] = []
        for row in rows:
            try:
                extra = json.loads(row.payload).get("extra") or {}
            except (json.JSONDecodeError, AttributeError):
                extra = {"kind": row.kind} if row.kind else {}
            pending.append(PendingNotification(id=int(row.notification_id), extra=extra))
        return pending

    async def cancel(self, notification_ids: list[int]) -> None:
        if not notification_ids:
            return
        try:
            (
                self.db.query(DeviceNotification)
                .filter(
                    DeviceNotification.user_id == self.user.id,
                    DeviceNotification.notification_id.in_([int(value) for value in notification_ids]),
                )
                .delete(synchronize_session=False)
            )
            self.db.flush()
        except SQLAlchemyError as exc:
            raise PlatformQueryFailure(str(exc)) from exc

    async def schedule(self, notifications: list[dict[str, Any]]) -> None:
        try:
            existing = {
                int(row.notification_id): row
                for row in self.db.query(DeviceNotification).filter(DeviceNotification.user_id == self.user.id).all()
            }
            for descriptor in notifications:
                notification_id = int(descriptor["id"])
                row = existing.get(notification_id)
                if row is None:
                    row = DeviceNotification(user_id=self.user.id, notification_id=notification_id)
                    self.db.add(row)
                    existing[notification_id] = row
                row.kind = (descriptor.get("extra") or {}).get("kind")
                row.payload = json.dumps(descriptor, ensure_ascii=True)
            self.db.flush()
        except (SQLAlchemyError, KeyError, TypeError, ValueError) as exc:
            raise PlatformScheduleFailure(str(exc)) from exc
