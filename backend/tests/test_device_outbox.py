from __future__ import annotations

import asyncio
import json
import sys
from datetime import datetime
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from db.database import Base  # noqa: E402
from db.models import DeviceChannel, DeviceNotification, User  # noqa: E402
from services.account_meta_service import (  # noqa: E402
    get_account_meta,
    get_planner_state,
    merge_account_meta,
    save_planner_state,
)
from services.device_outbox import (  # noqa: E402
    DeviceOutboxPort,
    list_device_notifications,
    set_device_permission,
)
from services.planner_state import CustomItem, PlannerState, add_custom_item, update_completion  # noqa: E402
from services.reminder_scheduler import schedule_reminders  # noqa: E402


REFERENCE = datetime(2024, 3, 10, 6, 0)


def _new_db():
    engine = create_engine("sqlite:///:memory:", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)()


def _new_user(db, username: str = "planner_tester") -> User:
    user = User(
        username=username,
        username_normalized=username.lower(),
        password_hash="hash",
        display_name="Planner Tester",
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def test_first_meta_read_seeds_planner_defaults():
    db = _new_db()
    user = _new_user(db)
    meta = get_account_meta(db, user)
    assert meta["planner"]["remindersEnabled"] is True
    assert meta["planner"]["reminderTimes"] == {"water": "06:45", "exercise": "07:15", "meditation": "07:45"}
    assert meta["planner"]["customItems"] == []


def test_meta_merge_is_shallow_and_normalizes_planner():
    db = _new_db()
    user = _new_user(db)
    merge_account_meta(db, user, {"theme": "dark"})
    meta = merge_account_meta(db, user, {"planner": {"reminderTimes": {"water": "07:00"}}})
    db.commit()
    assert meta["theme"] == "dark"
    assert meta["planner"]["reminderTimes"]["water"] == "07:00"
    assert meta["planner"]["reminderTimes"]["exercise"] == "07:15"
    with pytest.raises(ValueError):
        merge_account_meta(db, user, ["not", "a", "dict"])


def test_planner_state_roundtrips_through_account_meta():
    db = _new_db()
    user = _new_user(db)
    state = add_custom_item(get_planner_state(db, user), CustomItem("c1", "Call mom", "2024-03-10", "09:00"))
    state = update_completion(state, "2024-03-10", "required-water", True)
    save_planner_state(db, user, state)
    db.commit()
    assert get_planner_state(db, user) == state


def test_outbox_port_reports_stored_permission():
    db = _new_db()
    user = _new_user(db)
    port = DeviceOutboxPort(db, user)
    assert asyncio.run(port.check_permissions()) == "prompt"
    set_device_permission(db, user, "granted", platform="iOS")
    assert asyncio.run(port.request_permissions()) == "granted"
    with pytest.raises(ValueError):
        set_device_permission(db, user, "maybe")


def test_scheduling_through_outbox_is_idempotent():
    db = _new_db()
    user = _new_user(db)
    set_device_permission(db, user, "granted")
    db.add(DeviceNotification(user_id=user.id, notification_id=5, kind="steps", payload=json.dumps({"id": 5, "extra": {"kind": "steps"}})))
    db.commit()

    state = add_custom_item(get_planner_state(db, user), CustomItem("c1", "Call mom", "2024-03-10", "09:00"))
    port = DeviceOutboxPort(db, user)
    first = asyncio.run(schedule_reminders(state, REFERENCE, port))
    db.commit()
    second = asyncio.run(schedule_reminders(state, REFERENCE, port))
    db.commit()

    rows = db.query(DeviceNotification).filter(DeviceNotification.user_id == user.id).all()
    assert second.cancelled == first.scheduled
    assert len(rows) == first.scheduled + 1
    assert db.query(DeviceChannel).filter(DeviceChannel.user_id == user.id).count() == 1

    payloads = list_device_notifications(db, user)
    custom = [row for row in payloads if row["extra"].get("taskId") == "c1"]
    assert custom[0]["schedule"]["at"] == "2024-03-10T09:00:00"
    assert custom[0]["channelId"] == "planner-reminders"


def test_disabling_reminders_leaves_foreign_rows_only():
    db = _new_db()
    user = _new_user(db)
    set_device_permission(db, user, "granted")
    db.add(DeviceNotification(user_id=user.id, notification_id=5, kind="steps", payload=json.dumps({"id": 5, "extra": {"kind": "steps"}})))
    db.commit()
    port = DeviceOutboxPort(db, user)

    state = get_planner_state(db, user)
    asyncio.run(schedule_reminders(state, REFERENCE, port))
    outcome = asyncio.run(schedule_reminders(PlannerState(reminders_enabled=False), REFERENCE, port))
    db.commit()

    remaining = db.query(DeviceNotification).filter(DeviceNotification.user_id == user.id).all()
    assert outcome.status == "disabled"
    assert outcome.cancelled > 0
    assert [row.notification_id for row in remaining] == [5]
