from __future__ import annotations

import gc
import sys
import uuid
from datetime import datetime
from pathlib import Path

from fastapi.testclient import TestClient


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from main import app  # noqa: E402
import services.planner_service as planner_service  # noqa: E402


FIXED_NOW = datetime(2024, 3, 10, 6, 0)


def _client(monkeypatch) -> TestClient:
    monkeypatch.setattr(planner_service, "local_now", lambda: FIXED_NOW)
    client = TestClient(app)
    username = f"planner_{uuid.uuid4().hex[:8]}"
    register = client.post(
        "/api/auth/register",
        json={"username": username, "password": "Planner!Pass1", "display_name": "Planner User"},
    )
    assert register.status_code == 201
    assert register.json()["access_token"]
    return client


def _planner_notifications(client: TestClient) -> list[dict]:
    resp = client.get("/api/planner/notifications")
    assert resp.status_code == 200
    return [row for row in resp.json()["notifications"] if row["extra"]["kind"] == "planner"]


def test_planner_requires_authentication():
    client = TestClient(app)
    assert client.get("/api/planner").status_code == 401


def test_new_account_gets_default_planner(monkeypatch):
    client = _client(monkeypatch)
    resp = client.get("/api/planner")
    assert resp.status_code == 200
    body = resp.json()
    assert body["today"] == "2024-03-10"
    assert body["planner"]["remindersEnabled"] is True
    assert body["reminder_times"] == {"water": "06:45", "exercise": "07:15", "meditation": "07:45"}
    assert body["reminder_labels"]["exercise"] == "Repeats after 15, 30, 45 minutes until complete."


def test_save_without_device_permission_still_persists(monkeypatch):
    client = _client(monkeypatch)
    resp = client.put("/api/planner/reminder-times", json={"water": "07:00"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["reminders"] == "permission_denied"
    assert body["reminder_times"]["water"] == "07:00"
    assert _planner_notifications(client) == []


def test_full_planner_flow_reschedules_device_outbox(monkeypatch):
    client = _client(monkeypatch)

    device = client.put("/api/planner/device", json={"permission": "granted", "platform": "android"})
    assert device.status_code == 200
    assert device.json()["reminders"] == "scheduled"

    assert client.put("/api/planner/reminder-times", json={"water": "07:00"}).status_code == 200
    added = client.post(
        "/api/planner/items",
        json={"title": "Call mom", "date": "2024-03-10", "time": "09:00", "repeat": "once"},
    )
    assert added.status_code == 201
    item_id = added.json()["item"]["id"]

    notifications = _planner_notifications(client)
    ids = [row["id"] for row in notifications]
    assert len(ids) == len(set(ids))
    water_follow_ups = [
        row["schedule"]["at"]
        for row in notifications
        if row["extra"].get("dateKey") == "2024-03-10" and row["extra"]["taskId"] == "required-water"
    ]
    assert water_follow_ups == [
        "2024-03-10T07:10:00",
        "2024-03-10T07:20:00",
        "2024-03-10T07:30:00",
        "2024-03-10T07:45:00",
        "2024-03-10T08:00:00",
    ]
    assert any(row["extra"]["taskId"] == item_id for row in notifications)

    done = client.post(
        "/api/planner/completions",
        json={"date": "2024-03-10", "taskId": "required-water", "completed": True},
    )
    assert done.status_code == 200
    after = _planner_notifications(client)
    assert not [
        row for row in after
        if row["extra"].get("dateKey") == "2024-03-10" and row["extra"]["taskId"] == "required-water"
    ]
    assert any(row["extra"].get("loop") == "daily-base" and row["extra"]["taskId"] == "required-water" for row in after)

    entries = client.get("/api/planner/entries", params={"date": "2024-03-10"})
    assert entries.status_code == 200
    body = entries.json()
    assert body["summary"]["required_completed"] == 1
    assert [entry["id"] for entry in body["entries"]][0] == "required-water"

    rerun = client.post("/api/planner/reschedule")
    assert rerun.status_code == 200
    assert rerun.json()["scheduled"] == len(after)
    assert len(_planner_notifications(client)) == len(after)


def test_disable_reminders_clears_outbox(monkeypatch):
    client = _client(monkeypatch)
    client.put("/api/planner/device", json={"permission": "granted"})
    assert _planner_notifications(client)

    resp = client.put("/api/planner/reminders", json={"enabled": False})
    assert resp.status_code == 200
    assert resp.json()["reminders"] == "disabled"
    assert resp.json()["cancelled"] > 0
    assert _planner_notifications(client) == []


def test_item_update_and_delete(monkeypatch):
    client = _client(monkeypatch)
    added = client.post(
        "/api/planner/items",
        json={"title": "Journal", "date": "2024-03-10", "time": "21:00", "repeat": "daily"},
    )
    item_id = added.json()["item"]["id"]

    moved = client.patch(f"/api/planner/items/{item_id}", json={"time": "21:30"})
    assert moved.status_code == 200
    assert moved.json()["planner"]["customItems"][0]["time"] == "21:30"

    assert client.patch("/api/planner/items/missing", json={"time": "10:00"}).status_code == 404
    assert client.patch(f"/api/planner/items/{item_id}", json={"time": "9pm"}).status_code == 400

    removed = client.delete(f"/api/planner/items/{item_id}")
    assert removed.status_code == 200
    assert removed.json()["planner"]["customItems"] == []
    assert client.delete(f"/api/planner/items/{item_id}").status_code == 404


def test_invalid_input_is_rejected(monkeypatch):
    client = _client(monkeypatch)
    bad_item = client.post("/api/planner/items", json={"title": "X", "date": "10/03/2024", "time": "09:00"})
    assert bad_item.status_code == 400
    blank_title = client.post("/api/planner/items", json={"title": "   ", "date": "2024-03-10", "time": "09:00"})
    assert blank_title.status_code == 400
    assert client.get("/api/planner").json()["planner"]["customItems"] == []
    assert client.get("/api/planner/entries", params={"date": "2024-3-1"}).status_code == 400
    assert client.put("/api/planner/reminder-times", json={"water": "7"}).status_code == 400
    assert client.put("/api/planner/device", json={"permission": "sometimes"}).status_code == 400


def test_meta_endpoint_merges_and_reschedules_planner(monkeypatch):
    client = _client(monkeypatch)
    client.put("/api/planner/device", json={"permission": "granted"})

    resp = client.post("/api/meta", json={"meta": {"theme": "calm"}})
    assert resp.status_code == 200
    assert "reminders" not in resp.json()

    resp = client.post("/api/meta", json={"meta": {"planner": {"remindersEnabled": False}}})
    assert resp.status_code == 200
    assert resp.json()["reminders"] == "disabled"

    meta = client.get("/api/meta").json()["meta"]
    assert meta["theme"] == "calm"
    assert meta["planner"]["remindersEnabled"] is False
    assert _planner_notifications(client) == []


def test_account_schedule_lock_is_dropped_when_unused():
    lock = planner_service._account_lock(424242)
    assert planner_service._account_lock(424242) is lock
    assert planner_service._account_lock(424243) is not lock

    del lock
    gc.collect()
    assert 424242 not in planner_service._SCHEDULE_LOCKS
    assert 424243 not in planner_service._SCHEDULE_LOCKS
