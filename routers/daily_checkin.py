"""
Daily Check-in API Router

Submit a check-in, read back the recommendation, and act on it
(accept / override / undo / conflict suggestions / pre-training gate).

All decisions live in services.daily_checkin; handlers validate, call,
commit and shape the response.
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import List, Optional
from datetime import date
from uuid import UUID

from core.database import get_db
from core.auth import get_current_user
from models import Athlete
from schemas import (
    AcceptResponse,
    CheckinResponse,
    CheckinSubmitRequest,
    GateStatusResponse,
    OverrideByDecision,
    OverrideRequest,
    OverrideStatsResponse,
    PatternResponse,
    PremiumCheckinRequest,
    ReadinessPoint,
    RecentOverride,
    SkipPretrainingRequest,
    WeeklySummaryResponse,
)
from services import daily_checkin as checkin_service
from services.daily_checkin import AcceptOutcome
from services.workout_adaptation import serialize_workout

router = APIRouter(prefix="/v1/checkins", tags=["Daily Check-in"])


def _accept_response(result: AcceptOutcome) -> AcceptResponse:
    return AcceptResponse(
        outcome=result.outcome,
        checkin=CheckinResponse.model_validate(result.checkin),
        proposal_id=result.proposal.id if result.proposal else None,
        before=result.before,
        after=result.after,
    )


@router.post("", response_model=CheckinResponse, status_code=status.HTTP_201_CREATED)
async def submit_checkin(
    request: CheckinSubmitRequest,
    db: Session = Depends(get_db),
    current_user: Athlete = Depends(get_current_user),
):
    """
    Create or update the day's check-in (1-5 scale) and evaluate readiness.

    A locked check-in (session started) returns 409.
    """
    checkin = checkin_service.submit_checkin(db, current_user, request)
    db.commit()
    return checkin


@router.post("/premium", response_model=CheckinResponse, status_code=status.HTTP_201_CREATED)
async def submit_premium_checkin(
    request: PremiumCheckinRequest,
    db: Session = Depends(get_db),
    current_user: Athlete = Depends(get_current_user),
):
    """Create or update the day's check-in on the 0-100 scale, with conflict detection."""
    checkin = checkin_service.submit_premium_checkin(db, current_user, request)
    db.commit()
    return checkin


@router.get("/today", response_model=Optional[CheckinResponse])
async def get_today_checkin(
    db: Session = Depends(get_db),
    current_user: Athlete = Depends(get_current_user),
):
    return checkin_service.get_today_checkin(db, current_user.id)


@router.get("/needs-checkin")
async def needs_checkin(
    db: Session = Depends(get_db),
    current_user: Athlete = Depends(get_current_user),
):
    return {"needs_checkin": checkin_service.needs_checkin(db, current_user.id)}


@router.get("/history", response_model=List[CheckinResponse])
async def get_checkin_history(
    days: int = Query(30, ge=1, le=365),
    db: Session = Depends(get_db),
    current_user: Athlete = Depends(get_current_user),
):
    return checkin_service.get_checkin_history(db, current_user.id, days)


@router.get("/readiness", response_model=List[ReadinessPoint])
async def get_readiness_series(
    start: date,
    end: date,
    db: Session = Depends(get_db),
    current_user: Athlete = Depends(get_current_user),
):
    """Readiness trend for charting, oldest first."""
    checkins = checkin_service.get_readiness_series(db, current_user.id, start, end)
    return [
        ReadinessPoint(
            date=c.date,
            readiness_score=c.readiness_score,
            top_factor=c.top_factor,
            has_conflict=bool(c.has_conflict),
        )
        for c in checkins
    ]


@router.get("/override-stats", response_model=OverrideStatsResponse)
async def get_override_stats(
    days: Optional[int] = Query(None, ge=1, le=365),
    db: Session = Depends(get_db),
    current_user: Athlete = Depends(get_current_user),
):
    stats = checkin_service.get_override_stats(db, current_user.id, days)
    return OverrideStatsResponse(
        window_days=stats.window_days,
        total_checkins=stats.total_checkins,
        total_overrides=stats.total_overrides,
        override_rate=stats.override_rate,
        overrides_by_decision=[
            OverrideByDecision(decision=decision, count=count)
            for decision, count in stats.overrides_by_decision.items()
        ],
        recent_overrides=[
            RecentOverride(date=o.date, decision=o.decision, reason=o.reason)
            for o in stats.recent_overrides
        ],
        insight=stats.insight,
    )


@router.get("/weekly-summary", response_model=WeeklySummaryResponse)
async def get_weekly_summary(
    db: Session = Depends(get_db),
    current_user: Athlete = Depends(get_current_user),
):
    summary = checkin_service.get_weekly_summary(db, current_user.id)
    return WeeklySummaryResponse(
        checkin_count=summary.checkin_count,
        average_readiness=summary.average_readiness,
        average_sleep_h=summary.average_sleep_h,
        average_fatigue=summary.average_fatigue,
        average_motivation=summary.average_motivation,
        average_stress=summary.average_stress,
        patterns=[PatternResponse(type=p.type, severity=p.severity, message=p.message) for p in summary.patterns],
    )


@router.get("/gate/{workout_id}", response_model=GateStatusResponse)
async def get_pretraining_gate_status(
    workout_id: UUID,
    db: Session = Depends(get_db),
    current_user: Athlete = Depends(get_current_user),
):
    """Whether the pre-training check-in is required before starting this session."""
    gate = checkin_service.get_pretraining_gate_status(db, current_user, workout_id)
    return GateStatusResponse(
        workout_id=gate.workout_id,
        required=gate.required,
        has_checkin=gate.has_checkin,
        checkin_id=gate.checkin_id,
        locked=gate.locked,
        plan_rigidity=gate.plan_rigidity,
    )


@router.post("/gate/{workout_id}/skip", status_code=status.HTTP_204_NO_CONTENT)
async def skip_pretraining_check(
    workout_id: UUID,
    request: SkipPretrainingRequest,
    db: Session = Depends(get_db),
    current_user: Athlete = Depends(get_current_user),
):
    checkin_service.skip_pretraining_check(db, current_user, workout_id, request.reason)
    db.commit()


@router.get("/{checkin_id}", response_model=CheckinResponse)
async def get_checkin(
    checkin_id: UUID,
    db: Session = Depends(get_db),
    current_user: Athlete = Depends(get_current_user),
):
    return checkin_service.get_checkin(db, current_user.id, checkin_id)


@router.post("/{checkin_id}/accept", response_model=AcceptResponse)
async def accept_recommendation(
    checkin_id: UUID,
    db: Session = Depends(get_db),
    current_user: Athlete = Depends(get_current_user),
):
    """
    Accept the recommendation.

    outcome:
        acknowledged  nothing to change (keep, or no session)
        applied       session updated now
        proposed      session is locked; a plan change proposal awaits confirmation
    """
    result = checkin_service.accept_recommendation(db, current_user, checkin_id)
    db.commit()
    return _accept_response(result)


@router.post("/{checkin_id}/override", response_model=CheckinResponse)
async def override_recommendation(
    checkin_id: UUID,
    request: Optional[OverrideRequest] = None,
    db: Session = Depends(get_db),
    current_user: Athlete = Depends(get_current_user),
):
    reason = request.reason if request else None
    checkin = checkin_service.override_recommendation(db, current_user, checkin_id, reason)
    db.commit()
    return checkin


@router.post("/{checkin_id}/undo")
async def undo_adaptation(
    checkin_id: UUID,
    db: Session = Depends(get_db),
    current_user: Athlete = Depends(get_current_user),
):
    """Restore the session to how it was before the check-in adapted it."""
    workout = checkin_service.undo_adaptation(db, current_user, checkin_id)
    db.commit()
    return {"success": True, "workout": serialize_workout(workout)}


@router.post("/{checkin_id}/lock", response_model=CheckinResponse)
async def lock_checkin(
    checkin_id: UUID,
    db: Session = Depends(get_db),
    current_user: Athlete = Depends(get_current_user),
):
    """Mark the session as started; the check-in is frozen from here on."""
    checkin = checkin_service.lock_checkin(db, current_user, checkin_id)
    db.commit()
    return checkin


@router.post("/{checkin_id}/conflict/accept", response_model=AcceptResponse)
async def accept_conflict_suggestion(
    checkin_id: UUID,
    db: Session = Depends(get_db),
    current_user: Athlete = Depends(get_current_user),
):
    result = checkin_service.accept_conflict_suggestion(db, current_user, checkin_id)
    db.commit()
    return _accept_response(result)


@router.post("/{checkin_id}/conflict/dismiss", response_model=CheckinResponse)
async def dismiss_conflict_suggestion(
    checkin_id: UUID,
    db: Session = Depends(get_db),
    current_user: Athlete = Depends(get_current_user),
):
    checkin = checkin_service.dismiss_conflict_suggestion(db, current_user, checkin_id)
    db.commit()
    return checkin
