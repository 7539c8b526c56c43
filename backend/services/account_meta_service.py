from __future__ import annotations

import json
from typing import Any

from sqlalchemy.orm import Session

from db.models import AccountMeta, User
from services.planner_state import PlannerState


PLANNER_META_KEY = "planner"


def _safe_json_loads(raw: str | None, fallback: Any) -> Any:
    if not raw:
        return fallback
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return fallback


def _json_dump(value: Any) -> str:
    return json.dumps(value, ensure_ascii=True)


def _ensure_meta_row(db: Session, user: User) -> AccountMeta:
    row = db.query(AccountMeta).filter(AccountMeta.user_id == user.id).first()
    if row is None:
        row = AccountMeta(
            user_id=user.id,
            meta_json=_json_dump({PLANNER_META_KEY: PlannerState().to_payload()}),
        )
        db.add(row)
        db.flush()
    return row


def get_account_meta(db: Session, user: User) -> dict[str, Any]:
    """Return the account's meta document, creating planner defaults on first read."""
    row = _ensure_meta_row(db, user)
    meta = _safe_json_loads(row.meta_json, {})
    if not isinstance(meta, dict):
        meta = {}
    if not isinstance(meta.get(PLANNER_META_KEY), dict):
        meta[PLANNER_META_KEY] = PlannerState().to_payload()
    return meta


def merge_account_meta(db: Session, user: User, patch: dict[str, Any]) -> dict[str, Any]:
    """Shallow-merge top-level keys of ``patch`` into the stored meta document."""
    if not isinstance(patch, dict):
        raise ValueError("meta must be an object")
    meta = get_account_meta(db, user)
    meta.update(patch)
    if PLANNER_META_KEY in patch:
        meta[PLANNER_META_KEY] = PlannerState.from_payload(patch[PLANNER_META_KEY]).to_payload()
    row = _ensure_meta_row(db, user)
    row.meta_json = _json_dump(meta)
    db.flush()
    return meta


def get_planner_state(db: Session, user: User) -> PlannerState:
    return PlannerState.from_payload(get_account_meta(db, user).get(PLANNER_META_KEY))


def save_planner_state(db: Session, user: User, state: PlannerState) -> PlannerState:
    merge_account_meta(db, user, {PLANNER_META_KEY: state.to_payload()})
    return state
