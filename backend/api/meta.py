from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from auth.utils import get_current_user
from db.database import get_db
from db.models import User
from services.account_meta_service import PLANNER_META_KEY, get_account_meta, merge_account_meta
from services.planner_service import reschedule_planner_reminders
from services.planner_state import PlannerState


router = APIRouter(prefix="/meta", tags=["meta"])


class MetaUpdate(BaseModel):
    meta: dict[str, Any]


@router.get("")
def read_meta(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    meta = get_account_meta(db, user)
    db.commit()
    return {"meta": meta}


@router.post("")
async def write_meta(
    payload: MetaUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        meta = merge_account_meta(db, user, payload.meta)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    db.commit()

    result: dict[str, Any] = {"status": "ok", "meta": meta}
    if PLANNER_META_KEY in payload.meta:
        state = PlannerState.from_payload(meta[PLANNER_META_KEY])
        result.update(await reschedule_planner_reminders(db, user, state))
    return result
