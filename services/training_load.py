"""
Training Load Context for the daily check-in

Rolls the athlete's scheduled sessions into the numbers the check-in needs:

- ATL / CTL / TSB (7- and 42-day exponential moving averages of daily TSS)
- trailing 7-day volume, TSS and plan compliance (coach prompt)
- week-over-week ramp rate and risk status (guardrails)

Sessions without a TSS are estimated at 0.8 TSS per minute.
"""

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Dict, List, Optional, Sequence
from uuid import UUID

import logging
from sqlalchemy.orm import Session

from models import PlannedWorkout
from services.checkin_evaluator import TrainingContext

logger = logging.getLogger(__name__)

ATL_DECAY_DAYS = 7   # Acute (fatigue) - short term
CTL_DECAY_DAYS = 42  # Chronic (fitness) - long term
LOOKBACK_DAYS = 60

TSS_PER_MINUTE_ESTIMATE = 0.8
RAMP_RATE_HIGH = 1.3
HIGH_RAMP_WARNING = "High ramp rate vs last week"


@dataclass
class Last7Summary:
    total_duration_min: float = 0.0
    total_tss: float = 0.0
    completed_count: int = 0
    planned_count: int = 0
    compliance_percent: Optional[int] = None

    @property
    def volume_hours(self) -> float:
        return round(self.total_duration_min / 60, 1)


@dataclass
class GuardrailState:
    ramp_rate: Optional[float] = None
    risk_status: str = "NORMAL"  # NORMAL | HIGH
    warnings: List[str] = field(default_factory=list)


@dataclass
class TrainingLoadSnapshot:
    today: date
    ctl: float
    atl: float
    tsb: float
    yesterday_tss: float
    last_7: Last7Summary
    guardrails: GuardrailState
    workouts: List[PlannedWorkout] = field(default_factory=list)


def workout_tss(workout: PlannedWorkout) -> float:
    if workout.tss is not None:
        return float(workout.tss)
    return float(workout.duration_minutes or 0) * TSS_PER_MINUTE_ESTIMATE


def _in_window(workout: PlannedWorkout, start: date, end: date) -> bool:
    return start <= workout.scheduled_date <= end


def summarize_last_7_days(workouts: Sequence[PlannedWorkout], today: date) -> Last7Summary:
    start = today - timedelta(days=6)
    window = [w for w in workouts if _in_window(w, start, today)]
    completed = [w for w in window if w.completed]
    planned = [w for w in window if w.planned]
    completed_planned = [w for w in planned if w.completed]

    return Last7Summary(
        total_duration_min=sum(float(w.duration_minutes or 0) for w in completed),
        total_tss=round(sum(workout_tss(w) for w in completed), 1),
        completed_count=len(completed),
        planned_count=len(planned),
        compliance_percent=round(len(completed_planned) / len(planned) * 100) if planned else None,
    )


def compute_guardrail_state(workouts: Sequence[PlannedWorkout], today: date) -> GuardrailState:
    current_start = today - timedelta(days=6)
    previous_start = today - timedelta(days=13)
    previous_end = today - timedelta(days=7)

    current = sum(workout_tss(w) for w in workouts if w.completed and _in_window(w, current_start, today))
    previous = sum(workout_tss(w) for w in workouts if w.completed and _in_window(w, previous_start, previous_end))

    if previous <= 0:
        return GuardrailState()

    ramp = round(current / previous, 2)
    if ramp >= RAMP_RATE_HIGH:
        return GuardrailState(ramp_rate=ramp, risk_status="HIGH", warnings=[HIGH_RAMP_WARNING])
    return GuardrailState(ramp_rate=ramp)


def compute_load(workouts: Sequence[PlannedWorkout], today: date) -> Dict[str, float]:
    """ATL/CTL/TSB as of the end of ``today``, from completed sessions only."""
    start_date = today - timedelta(days=LOOKBACK_DAYS - 1)
    daily_tss: Dict[date, float] = {}
    for w in workouts:
        if w.completed and _in_window(w, start_date, today):
            daily_tss[w.scheduled_date] = daily_tss.get(w.scheduled_date, 0.0) + workout_tss(w)

    atl_decay = 2 / (ATL_DECAY_DAYS + 1)  # EMA alpha for ATL
    ctl_decay = 2 / (CTL_DECAY_DAYS + 1)  # EMA alpha for CTL
    atl = 0.0
    ctl = 0.0
    for day_offset in range(LOOKBACK_DAYS):
        day_tss = daily_tss.get(start_date + timedelta(days=day_offset), 0.0)
        atl = atl * (1 - atl_decay) + day_tss * atl_decay
        ctl = ctl * (1 - ctl_decay) + day_tss * ctl_decay

    return {"atl": round(atl, 1), "ctl": round(ctl, 1), "tsb": round(ctl - atl, 1)}


def load_recent_workouts(db: Session, athlete_id: UUID, today: date) -> List[PlannedWorkout]:
    start = today - timedelta(days=LOOKBACK_DAYS - 1)
    return (
        db.query(PlannedWorkout)
        .filter(
            PlannedWorkout.athlete_id == athlete_id,
            PlannedWorkout.scheduled_date >= start,
            PlannedWorkout.scheduled_date <= today + timedelta(days=1),
        )
        .order_by(PlannedWorkout.scheduled_date)
        .all()
    )


def build_load_snapshot(db: Session, athlete_id: UUID, today: date) -> TrainingLoadSnapshot:
    workouts = load_recent_workouts(db, athlete_id, today)
    load = compute_load(workouts, today)
    yesterday = today - timedelta(days=1)
    yesterday_tss = sum(workout_tss(w) for w in workouts if w.completed and w.scheduled_date == yesterday)

    return TrainingLoadSnapshot(
        today=today,
        ctl=load["ctl"],
        atl=load["atl"],
        tsb=load["tsb"],
        yesterday_tss=round(yesterday_tss, 1),
        last_7=summarize_last_7_days(workouts, today),
        guardrails=compute_guardrail_state(workouts, today),
        workouts=workouts,
    )


def build_training_context(snapshot: TrainingLoadSnapshot, workout: Optional[PlannedWorkout]) -> TrainingContext:
    return TrainingContext(
        ctl=snapshot.ctl,
        atl=snapshot.atl,
        tsb=snapshot.tsb,
        yesterday_tss=snapshot.yesterday_tss,
        planned_tss=float(workout.tss or 0) if workout else 0.0,
        planned_duration=float(workout.duration_minutes or 0) if workout else 0.0,
        workout_type=workout.workout_type if workout else "none",
    )
