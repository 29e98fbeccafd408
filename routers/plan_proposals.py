"""
Plan Change Proposals API Router

Locked sessions change only through these endpoints: list pending proposals,
accept (the patch is applied) or decline (the session stays as planned).
Also hosts the athlete's plan rigidity setting that decides what is locked.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List, Optional
from uuid import UUID

from core.database import get_db
from core.auth import get_current_user
from models import Athlete
from schemas import PlanRigidityUpdate, ProposalResponse
from services import daily_checkin as checkin_service
from services import plan_proposals
from services.plan_rigidity import get_plan_rigidity, lock_window_days, update_plan_rigidity

router = APIRouter(prefix="/v1/plan-proposals", tags=["Plan Change Proposals"])
settings_router = APIRouter(prefix="/v1/athletes/me", tags=["Plan Change Proposals"])


@router.get("", response_model=List[ProposalResponse])
async def list_pending_proposals(
    workout_id: Optional[UUID] = None,
    db: Session = Depends(get_db),
    current_user: Athlete = Depends(get_current_user),
):
    """Pending proposals, newest first. Filter to one session with ``workout_id``."""
    if workout_id:
        return plan_proposals.list_pending_for_workout(db, current_user.id, workout_id)
    return plan_proposals.list_pending_for_athlete(db, current_user.id)


@router.post("/{proposal_id}/accept", response_model=ProposalResponse)
async def accept_proposal(
    proposal_id: UUID,
    db: Session = Depends(get_db),
    current_user: Athlete = Depends(get_current_user),
):
    proposal = checkin_service.accept_plan_change(db, current_user, proposal_id)
    db.commit()
    return proposal


@router.post("/{proposal_id}/decline", response_model=ProposalResponse)
async def decline_proposal(
    proposal_id: UUID,
    db: Session = Depends(get_db),
    current_user: Athlete = Depends(get_current_user),
):
    proposal = checkin_service.decline_plan_change(db, current_user, proposal_id)
    db.commit()
    return proposal


def _rigidity_response(value) -> dict:
    return {"plan_rigidity": value.value, "lock_window_days": lock_window_days(value)}


@settings_router.get("/plan-rigidity")
async def read_plan_rigidity(current_user: Athlete = Depends(get_current_user)):
    return _rigidity_response(get_plan_rigidity(current_user))


@settings_router.put("/plan-rigidity")
async def write_plan_rigidity(
    request: PlanRigidityUpdate,
    db: Session = Depends(get_db),
    current_user: Athlete = Depends(get_current_user),
):
    value = update_plan_rigidity(db, current_user, request.plan_rigidity)
    db.commit()
    return _rigidity_response(value)
