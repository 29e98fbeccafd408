"""
Workout Adaptation

Turns an accepted check-in recommendation into a concrete change to the
day's session.

The "after" snapshot is always computed here from the session's current
fields; whatever "after" the check-in coach wrote is informational only.

    keep              after = before
    reduce_intensity  tss * 0.85 (min 1), duration unchanged
    reduce_volume     duration * 0.70 (min 20, never above before), tss * 0.70 (min 1)
    swap_session      run -> bike "Easy Z2 Bike", bike -> run "Easy Run",
                      swim -> bike "Recovery Spin", else "Recovery Session";
                      tss * 0.60 (min 20 for run swaps, 15 otherwise)
    rest              type "rest", title "Rest + mobility", duration 0, tss 0

Non-rest results always keep a positive duration: a missing or zero value
becomes max(20, original duration or 40).

Whether the change is written now, proposed, or not made at all is decided by
DISPATCH_TABLE, keyed by (session locked, recommendation type).
"""

from enum import Enum
from typing import Dict, Optional, Tuple

from models import PlannedWorkout
from schemas import (
    AIDecision,
    CheckinRecommendation,
    OriginalWorkoutPayload,
    RecommendationType,
    WorkoutPatch,
    WorkoutSnapshot,
)
from services.checkin_evaluator import EvaluationResult
from services.readiness_score import round_half_up

ADAPTATION_SOURCE = "daily-checkin"

RECOMMENDATION_TO_DECISION: Dict[str, AIDecision] = {
    "keep": AIDecision.PROCEED,
    "reduce_intensity": AIDecision.REDUCE_INTENSITY,
    "reduce_volume": AIDecision.SHORTEN,
    "swap_session": AIDecision.SWAP_RECOVERY,
    "rest": AIDecision.REST,
}
DECISION_TO_RECOMMENDATION: Dict[AIDecision, str] = {v: k for k, v in RECOMMENDATION_TO_DECISION.items()}

# (substring of before.type, new type, new title, tss floor)
SWAP_RULES = [
    ("run", "bike", "Easy Z2 Bike", 20),
    ("bike", "run", "Easy Run", 15),
    ("swim", "bike", "Recovery Spin", 15),
]
DEFAULT_SWAP_TITLE = "Recovery Session"
DEFAULT_SWAP_TSS_FLOOR = 15

MIN_DURATION_MIN = 20
DEFAULT_DURATION_MIN = 40
MAX_KEY_FACTORS = 4


class DispatchAction(str, Enum):
    ACKNOWLEDGE = "acknowledge"    # mark accepted, session untouched
    APPLY_DIRECT = "apply_direct"  # write the session now
    PROPOSE = "propose"            # create a PENDING plan change proposal


DISPATCH_TABLE: Dict[Tuple[bool, str], DispatchAction] = {
    (False, "keep"): DispatchAction.ACKNOWLEDGE,
    (True, "keep"): DispatchAction.ACKNOWLEDGE,
    (False, "reduce_intensity"): DispatchAction.APPLY_DIRECT,
    (True, "reduce_intensity"): DispatchAction.PROPOSE,
    (False, "reduce_volume"): DispatchAction.APPLY_DIRECT,
    (True, "reduce_volume"): DispatchAction.PROPOSE,
    (False, "swap_session"): DispatchAction.APPLY_DIRECT,
    (True, "swap_session"): DispatchAction.PROPOSE,
    (False, "rest"): DispatchAction.APPLY_DIRECT,
    (True, "rest"): DispatchAction.PROPOSE,
}


def decide_dispatch(locked: bool, recommendation_type: RecommendationType, apply: bool) -> DispatchAction:
    if not apply:
        return DispatchAction.ACKNOWLEDGE
    return DISPATCH_TABLE[(locked, recommendation_type)]


# =============================================================================
# Snapshots
# =============================================================================

def snapshot_workout(workout: PlannedWorkout) -> WorkoutSnapshot:
    return WorkoutSnapshot(
        title=workout.title,
        type=workout.workout_type,
        duration_min=workout.duration_minutes,
        tss=workout.tss,
        description_md=workout.description_md,
        prescription_json=workout.prescription_json,
        notes=workout.notes,
    )


def original_workout_payload(workout: PlannedWorkout) -> OriginalWorkoutPayload:
    return OriginalWorkoutPayload(
        workout_id=workout.id,
        snapshot=snapshot_workout(workout),
        ai_generated=bool(workout.ai_generated),
        ai_reason=workout.ai_reason,
        ai_confidence=workout.ai_confidence,
        source=workout.source,
    )


def serialize_workout(workout: PlannedWorkout) -> dict:
    """JSON-compatible dump of the tracked fields for audit details."""
    return {
        "id": str(workout.id),
        "scheduled_date": workout.scheduled_date.isoformat() if workout.scheduled_date else None,
        **snapshot_workout(workout).model_dump(mode="json", by_alias=True),
        "ai_generated": bool(workout.ai_generated),
        "ai_confidence": workout.ai_confidence,
        "source": workout.source,
    }


def _scaled(value: Optional[float], factor: float, floor: int) -> Optional[float]:
    if value is None:
        return None
    return max(floor, round_half_up(value * factor))


def _swap(before: WorkoutSnapshot) -> WorkoutSnapshot:
    base_type = before.type.lower()
    for needle, new_type, new_title, tss_floor in SWAP_RULES:
        if needle in base_type:
            return before.model_copy(update={
                "type": new_type,
                "title": new_title,
                "tss": _scaled(before.tss, 0.6, tss_floor) if before.tss else before.tss,
            })
    return before.model_copy(update={
        "title": DEFAULT_SWAP_TITLE,
        "tss": _scaled(before.tss, 0.6, DEFAULT_SWAP_TSS_FLOOR) if before.tss else before.tss,
    })


def compute_after_snapshot(before: WorkoutSnapshot, recommendation_type: RecommendationType) -> WorkoutSnapshot:
    if recommendation_type == "keep":
        return before.model_copy()

    after = before.model_copy()
    if recommendation_type == "reduce_intensity":
        after.tss = _scaled(before.tss, 0.85, 1)
    elif recommendation_type == "reduce_volume":
        if before.duration_min is not None:
            after.duration_min = min(before.duration_min, max(MIN_DURATION_MIN, round_half_up(before.duration_min * 0.7)))
        after.tss = _scaled(before.tss, 0.7, 1)
    elif recommendation_type == "swap_session":
        after = _swap(before)
    elif recommendation_type == "rest":
        return before.model_copy(update={"type": "rest", "title": "Rest + mobility", "duration_min": 0, "tss": 0})

    if after.duration_min is None or after.duration_min <= 0:
        after.duration_min = max(MIN_DURATION_MIN, before.duration_min or DEFAULT_DURATION_MIN)
    return after


# =============================================================================
# Recommendations
# =============================================================================

def normalize_recommendation(
    recommendation: CheckinRecommendation,
    before: Optional[WorkoutSnapshot],
) -> CheckinRecommendation:
    """
    Server-side overwrite of the parts of a recommendation the engine owns:
    key factors capped, before/after recomputed, apply forced off for keep.
    """
    rec_type = recommendation.recommendation_type
    after = compute_after_snapshot(before, rec_type) if before is not None else None
    changes = recommendation.changes.model_copy(update={
        "apply": False if rec_type == "keep" else recommendation.changes.apply,
        "before": before,
        "after": after,
    })
    return recommendation.model_copy(update={
        "key_factors": list(recommendation.key_factors[:MAX_KEY_FACTORS]),
        "changes": changes,
    })


def recommendation_from_evaluation(
    evaluation: EvaluationResult,
    before: Optional[WorkoutSnapshot],
) -> CheckinRecommendation:
    """Express a rule-based decision in the recommendation shape so accept has one code path."""
    rec_type = DECISION_TO_RECOMMENDATION[evaluation.decision]
    negative = [r.description for r in evaluation.reasons if r.impact == "negative"]
    factors = [r.factor for r in evaluation.reasons if r.impact == "negative"] or [
        r.factor for r in evaluation.reasons
    ]
    recommendation = CheckinRecommendation.model_validate({
        "readiness_score": evaluation.readiness_score,
        "key_factors": factors[:MAX_KEY_FACTORS],
        "recommendation_type": rec_type,
        "explanation": evaluation.explanation,
        "changes": {
            "apply": rec_type != "keep" and before is not None,
            "requires_confirmation": True,
            "rationale": negative[:3] or [a.reason for a in evaluation.adaptations][:3],
        },
        "coach_message": evaluation.explanation,
    })
    return normalize_recommendation(recommendation, before)


# =============================================================================
# Session writes
# =============================================================================

def build_workout_patch(
    after: WorkoutSnapshot,
    *,
    reason: Optional[str],
    confidence: Optional[int],
    source: str = ADAPTATION_SOURCE,
) -> WorkoutPatch:
    return WorkoutPatch(
        title=after.title,
        workout_type=after.type,
        duration_minutes=after.duration_min,
        tss=after.tss,
        description_md=after.description_md,
        prescription_json=after.prescription_json,
        notes=after.notes,
        ai_generated=True,
        ai_reason=reason,
        ai_confidence=confidence,
        source=source,
    )


def apply_workout_patch(workout: PlannedWorkout, patch: WorkoutPatch) -> None:
    for field_name, value in patch.model_dump(exclude_none=True).items():
        setattr(workout, field_name, value)


def restore_workout(workout: PlannedWorkout, original: OriginalWorkoutPayload) -> None:
    """Put every tracked field back exactly as captured, None values included."""
    snap = original.snapshot
    workout.title = snap.title
    workout.workout_type = snap.type
    workout.duration_minutes = snap.duration_min
    workout.tss = snap.tss
    workout.description_md = snap.description_md
    workout.prescription_json = snap.prescription_json
    workout.notes = snap.notes
    workout.ai_generated = original.ai_generated
    workout.ai_reason = original.ai_reason
    workout.ai_confidence = original.ai_confidence
    workout.source = original.source
