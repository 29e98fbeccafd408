"""
Check-in Conflict Detector (premium 0-100 path)

A lighter pass than the full recommendation pipeline: compares today's
readiness, fatigue and soreness with how hard today's session is, and
suggests one concrete change. Rules run in order and the first match wins:

    1. intense and readiness < 60  -> "Low readiness for intense workout", swap to easy Z2
    2. soreness > 70               -> "High muscle soreness", duration x 0.6
    3. fatigue > 75                -> "High fatigue level", swap to recovery
    4. intense and readiness < 70  -> "Moderate readiness", intensity x 0.85

If none match and today is intense while MAX_HARD_SESSIONS_PER_WEEK or more
intense sessions were already completed in the 7 days before today, the
weekly guardrail fires and suggests a recovery swap.

A session is intense when its TSS is above 80 or its type/title mentions one
of INTENSITY_KEYWORDS.
"""

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional, Sequence
from uuid import UUID

from core.config import settings
from models import PlannedWorkout
from schemas import (
    ReduceDurationChange,
    ReduceIntensityChange,
    SuggestedChange,
    SwapEasyChange,
    SwapRecoveryChange,
    WorkoutPatch,
)
from services.readiness_score import round_half_up

INTENSITY_KEYWORDS = ("interval", "intervals", "tempo", "race", "brick", "threshold", "vo2max", "hard")
INTENSE_TSS_THRESHOLD = 80

LOW_READINESS = 60
MODERATE_READINESS = 70
HIGH_SORENESS = 70
HIGH_FATIGUE = 75

CONFLICT_SOURCE = "checkin-conflict"
DEFAULT_DURATION_MIN = 60

REASON_LOW_READINESS = "Low readiness for intense workout"
REASON_HIGH_SORENESS = "High muscle soreness"
REASON_HIGH_FATIGUE = "High fatigue level"
REASON_MODERATE_READINESS = "Moderate readiness"
REASON_WEEKLY_GUARDRAIL = "Weekly hard-session guardrail exceeded"


@dataclass(frozen=True)
class ConflictResult:
    reason: str
    suggested_change: SuggestedChange


def is_intense_workout(workout_type: Optional[str], title: Optional[str], tss: Optional[float]) -> bool:
    if tss is not None and tss > INTENSE_TSS_THRESHOLD:
        return True
    text = f"{workout_type or ''} {title or ''}".lower()
    return any(keyword in text for keyword in INTENSITY_KEYWORDS)


def _is_intense(workout: PlannedWorkout) -> bool:
    return is_intense_workout(workout.workout_type, workout.title, workout.tss)


def count_recent_hard_sessions(
    workouts: Sequence[PlannedWorkout],
    today: date,
    exclude_workout_id: Optional[UUID] = None,
) -> int:
    """Completed intense sessions in the 7 days before ``today``."""
    start = today - timedelta(days=7)
    return sum(
        1
        for w in workouts
        if w.completed
        and start <= w.scheduled_date < today
        and w.id != exclude_workout_id
        and _is_intense(w)
    )


def detect_conflict(
    readiness_score: int,
    fatigue: int,
    soreness: int,
    workout: Optional[PlannedWorkout],
    recent_hard_sessions: int = 0,
    max_hard_sessions: Optional[int] = None,
) -> Optional[ConflictResult]:
    if workout is None:
        return None

    intense = _is_intense(workout)
    if intense and readiness_score < LOW_READINESS:
        return ConflictResult(REASON_LOW_READINESS, SwapEasyChange(reason=REASON_LOW_READINESS))
    if soreness > HIGH_SORENESS:
        return ConflictResult(REASON_HIGH_SORENESS, ReduceDurationChange(reason=REASON_HIGH_SORENESS))
    if fatigue > HIGH_FATIGUE:
        return ConflictResult(REASON_HIGH_FATIGUE, SwapRecoveryChange(reason=REASON_HIGH_FATIGUE))
    if intense and readiness_score < MODERATE_READINESS:
        return ConflictResult(
            REASON_MODERATE_READINESS,
            ReduceIntensityChange(reason="Moderate readiness for intense session"),
        )

    limit = max_hard_sessions or settings.MAX_HARD_SESSIONS_PER_WEEK
    if intense and recent_hard_sessions >= limit:
        return ConflictResult(REASON_WEEKLY_GUARDRAIL, SwapRecoveryChange(reason=REASON_WEEKLY_GUARDRAIL))
    return None


def suggested_change_patch(change: SuggestedChange, workout: PlannedWorkout) -> WorkoutPatch:
    """Concrete session update for an accepted suggestion."""
    patch = WorkoutPatch(ai_generated=True, ai_reason=change.reason, source=CONFLICT_SOURCE)
    if isinstance(change, (SwapEasyChange, SwapRecoveryChange)):
        patch.workout_type = change.new_type
        patch.title = change.new_title
    elif isinstance(change, ReduceDurationChange):
        patch.duration_minutes = round_half_up((workout.duration_minutes or DEFAULT_DURATION_MIN) * change.duration_factor)
    elif isinstance(change, ReduceIntensityChange):
        if workout.tss is not None:
            patch.tss = round_half_up(workout.tss * change.intensity_factor)
    return patch
