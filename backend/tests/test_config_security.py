from __future__ import annotations

import sys
from pathlib import Path

import pytest


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from config import Settings  # noqa: E402
from services.reminder_scheduler import SchedulerOptions  # noqa: E402


def test_production_security_gate_rejects_default_secret_values():
    settings = Settings(
        ENVIRONMENT="production",
        SECRET_KEY="change-me-in-production",
        AUTH_COOKIE_SECURE=False,
    )
    with pytest.raises(RuntimeError):
        settings.validate_security_configuration()


def test_development_settings_skip_security_gate():
    Settings(ENVIRONMENT="development").validate_security_configuration()


def test_scheduler_options_follow_planner_settings():
    options = SchedulerOptions.from_settings(
        Settings(PLANNER_LOOKAHEAD_DAYS=3, PLANNER_CHANNEL_ID="zen", PLANNER_PER_TASK_CHANNELS=True)
    )
    assert options.lookahead_days == 3
    assert options.channel_for("water") == "zen-water"
    assert options.channel_for() == "zen"
