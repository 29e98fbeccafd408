"""
Daily Check-in Service

Every operation the check-in UI calls. Routers stay thin; this module owns
the flow:

    submit -> rule-based evaluation (always) -> check-in coach (when configured,
    falls back on any failure) -> recommendation stored on the check-in

    accept -> DISPATCH_TABLE(locked, type):
        acknowledge   check-in accepted, session untouched
        apply_direct  session written now + AI_WORKOUT_ADAPTED audit
        propose       PENDING plan change proposal (session written on accept)

Each step flushes its own write. A failed proposal creation is the one place
that rolls back and commits the recovery state itself, so the check-in ends
up undecided rather than claiming a change that never happened.
"""

from dataclasses import asdict, dataclass
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional
from uuid import UUID

import logging
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.events import (
    EVENT_ADAPTATION_UNDONE,
    EVENT_CHECKIN_SUBMITTED,
    EVENT_PREMIUM_CHECKIN_SUBMITTED,
    EVENT_PROPOSAL_DECIDED,
    EVENT_RECOMMENDATION_ACCEPTED,
    EVENT_RECOMMENDATION_OVERRIDDEN,
    track,
)
from core.exceptions import ConflictError, ForbiddenError, NotFoundError, PersistenceError, ValidationError
from models import Athlete, DailyCheckin, PlanChangeProposal, PlannedWorkout
from schemas import (
    AdaptationItem,
    CheckinRecommendation,
    CheckinSubmitRequest,
    CoachReasonPayload,
    NotesVisibility,
    OriginalWorkoutPayload,
    PremiumCheckinRequest,
    ProposalPatch,
    ReasonItem,
    RuleReasonPayload,
    WorkoutPatch,
    WorkoutSnapshot,
    ai_reason_adapter,
    suggested_change_adapter,
)
from services import plan_proposals
from services.audit_log import (
    AI_WORKOUT_ADAPTED,
    CHECKIN_ACCEPTED_NEEDS_PROPOSAL,
    CHECKIN_CONFLICT_ACCEPTED,
    CHECKIN_CONFLICT_DISMISSED,
    CHECKIN_OVERRIDDEN,
    CHECKIN_UNDONE,
    PRETRAINING_SKIPPED,
    TARGET_CHECKIN,
    TARGET_WORKOUT,
    record_audit_event,
)
from services.checkin_coach import (
    FAILURE_NOT_CONFIGURED,
    CheckinCoach,
    CoachOk,
    CoachPromptInput,
)
from services.checkin_conflicts import count_recent_hard_sessions, detect_conflict, suggested_change_patch
from services.checkin_evaluator import (
    CheckInData,
    DetectedPattern,
    Evaluator,
    detect_patterns,
    evaluate_pre_training,
)
from services.override_tracker import OverrideStats, load_override_stats, maybe_record_behavior_signal
from services.plan_rigidity import get_plan_rigidity, is_workout_locked
from services.readiness_score import calculate_premium_readiness, round_half_up, validate_premium_inputs
from services.training_load import build_load_snapshot, build_training_context, load_recent_workouts
from services.workout_adaptation import (
    RECOMMENDATION_TO_DECISION,
    DispatchAction,
    apply_workout_patch,
    build_workout_patch,
    compute_after_snapshot,
    decide_dispatch,
    normalize_recommendation,
    original_workout_payload,
    recommendation_from_evaluation,
    restore_workout,
    serialize_workout,
    snapshot_workout,
)

logger = logging.getLogger(__name__)

DEFAULT_OVERRIDE_REASON = "Athlete chose to proceed with original plan"
UNDO_REASON = "Undo AI adaptation"
DISMISS_CONFLICT_REASON = "Dismissed check-in conflict suggestion"
LOCKED_CHECKIN_PROPOSAL_SUMMARY = "Daily check-in recommends adapting a locked session."
CONFLICT_PROPOSAL_CONFIDENCE = 80
MIN_SKIP_REASON_LENGTH = 3
COACH_CONFIDENCE_MIN = 55
COACH_CONFIDENCE_MAX = 90
WEEKLY_SUMMARY_DAYS = 7


@dataclass
class AcceptOutcome:
    outcome: str  # acknowledged | applied | proposed
    checkin: DailyCheckin
    proposal: Optional[PlanChangeProposal] = None
    before: Optional[WorkoutSnapshot] = None
    after: Optional[WorkoutSnapshot] = None


@dataclass
class GateStatus:
    workout_id: UUID
    required: bool
    has_checkin: bool
    checkin_id: Optional[UUID]
    locked: bool
    plan_rigidity: str


@dataclass
class WeeklySummary:
    checkin_count: int
    average_readiness: Optional[float]
    average_sleep_h: Optional[float]
    average_fatigue: Optional[float]
    average_motivation: Optional[float]
    average_stress: Optional[float]
    patterns: List[DetectedPattern]


def _now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Lookups
# =============================================================================

def get_checkin(db: Session, athlete_id: UUID, checkin_id: UUID) -> DailyCheckin:
    checkin = db.query(DailyCheckin).filter(DailyCheckin.id == checkin_id).first()
    if not checkin:
        raise NotFoundError("Check-in", str(checkin_id))
    if checkin.athlete_id != athlete_id:
        raise ForbiddenError()
    return checkin


def get_checkin_for_date(db: Session, athlete_id: UUID, day: date) -> Optional[DailyCheckin]:
    return (
        db.query(DailyCheckin)
        .filter(DailyCheckin.athlete_id == athlete_id, DailyCheckin.date == day)
        .first()
    )


def get_workout(db: Session, athlete_id: UUID, workout_id: UUID) -> PlannedWorkout:
    workout = (
        db.query(PlannedWorkout)
        .filter(PlannedWorkout.id == workout_id, PlannedWorkout.athlete_id == athlete_id)
        .first()
    )
    if not workout:
        raise NotFoundError("Workout", str(workout_id))
    return workout


def find_day_workout(db: Session, athlete_id: UUID, day: date) -> Optional[PlannedWorkout]:
    """The day's planned, not yet completed session (first created wins)."""
    return (
        db.query(PlannedWorkout)
        .filter(
            PlannedWorkout.athlete_id == athlete_id,
            PlannedWorkout.scheduled_date == day,
            PlannedWorkout.planned.is_(True),
            PlannedWorkout.completed.is_(False),
        )
        .order_by(PlannedWorkout.created_at)
        .first()
    )


def _target_workout(db: Session, checkin: DailyCheckin) -> Optional[PlannedWorkout]:
    if checkin.workout_id:
        return get_workout(db, checkin.athlete_id, checkin.workout_id)
    return find_day_workout(db, checkin.athlete_id, checkin.date)


def _ensure_not_locked(checkin: DailyCheckin) -> None:
    if checkin.locked_at is not None:
        raise ConflictError("Check-in is locked because the session has started")


def _capture_original(checkin: DailyCheckin, workout: Optional[PlannedWorkout]) -> None:
    """Snapshot the session the first time the check-in is linked to it."""
    if workout is None:
        return
    if checkin.original_workout_json:
        original = OriginalWorkoutPayload.model_validate(checkin.original_workout_json)
        if original.workout_id == workout.id:
            return
    checkin.original_workout_json = original_workout_payload(workout).model_dump(mode="json", by_alias=True)


def _before_snapshot(checkin: DailyCheckin, workout: Optional[PlannedWorkout]) -> Optional[WorkoutSnapshot]:
    """The session as planned: the captured original when it belongs to ``workout``."""
    if workout is None:
        return None
    if checkin.original_workout_json:
        original = OriginalWorkoutPayload.model_validate(checkin.original_workout_json)
        if original.workout_id == workout.id:
            return original.snapshot
    return snapshot_workout(workout)


def _checkin_data(checkin: DailyCheckin) -> CheckInData:
    return CheckInData(
        sleep_duration=checkin.sleep_h,
        sleep_quality=checkin.sleep_quality_1_5,
        physical_fatigue=checkin.physical_fatigue_1_5,
        mental_readiness=checkin.mental_readiness_1_5,
        motivation=checkin.motivation_1_5,
        muscle_soreness=checkin.muscle_soreness,
        stress_level=checkin.stress_1_5,
        notes=checkin.notes,
    )


def _clear_decision_state(checkin: DailyCheckin) -> None:
    checkin.ai_decision = None
    checkin.ai_confidence = None
    checkin.ai_explanation = None
    checkin.ai_reason_json = None
    checkin.user_accepted = None
    checkin.user_override_reason = None
    checkin.has_conflict = False
    checkin.conflict_reason = None
    checkin.suggested_change = None


# =============================================================================
# Submit (1-5 scale)
# =============================================================================

def submit_checkin(
    db: Session,
    athlete: Athlete,
    request: CheckinSubmitRequest,
    *,
    today: Optional[date] = None,
    coach: Optional[CheckinCoach] = None,
    evaluator: Evaluator = evaluate_pre_training,
) -> DailyCheckin:
    """
    Upsert the day's check-in and attach a recommendation.

    The rule-based evaluator always runs. The coach result replaces its
    decision only when it is a CoachOk; any CoachFailed keeps the baseline.
    Resubmitting closes any proposal still pending for the earlier answers.
    """
    day = request.checkin_date or today or date.today()
    checkin = get_checkin_for_date(db, athlete.id, day)
    if checkin is not None:
        _ensure_not_locked(checkin)
        plan_proposals.supersede_pending_for_checkin(db, athlete_id=athlete.id, checkin_id=checkin.id)
    else:
        checkin = DailyCheckin(athlete_id=athlete.id, date=day)
        db.add(checkin)

    workout = (
        get_workout(db, athlete.id, request.workout_id)
        if request.workout_id
        else find_day_workout(db, athlete.id, day)
    )

    checkin.sleep_h = request.sleep_duration_h
    checkin.sleep_quality_1_5 = request.sleep_quality
    checkin.physical_fatigue_1_5 = request.physical_fatigue
    checkin.mental_readiness_1_5 = request.mental_readiness
    checkin.motivation_1_5 = request.motivation
    checkin.muscle_soreness = request.muscle_soreness.value
    checkin.stress_1_5 = request.stress_level
    checkin.notes = request.notes
    checkin.sleep_quality_100 = None
    checkin.fatigue_100 = None
    checkin.motivation_100 = None
    checkin.soreness_100 = None
    checkin.stress_100 = None
    _clear_decision_state(checkin)

    checkin.workout_id = workout.id if workout else None
    _capture_original(checkin, workout)
    before = _before_snapshot(checkin, workout)

    load = build_load_snapshot(db, athlete.id, day)
    data = _checkin_data(checkin)
    evaluation = evaluator(data, build_training_context(load, workout))
    checkin.readiness_score = evaluation.readiness_score

    coach = coach or CheckinCoach.from_settings()
    stats = load_override_stats(db, athlete.id, today=day)
    result = coach.recommend(CoachPromptInput(
        checkin=data,
        planned_workout=before,
        last_7=load.last_7,
        guardrails=load.guardrails,
        weekly_hours_goal=athlete.weekly_hours_goal,
        experience_level=athlete.experience_level,
        zones=athlete.training_zones or {},
        include_notes=checkin.notes_visibility in (None, NotesVisibility.FULL_AI_ACCESS.value),
        behavior_insight=stats.insight,
    ))

    if isinstance(result, CoachOk):
        recommendation = normalize_recommendation(result.recommendation, before)
        checkin.ai_decision = RECOMMENDATION_TO_DECISION[recommendation.recommendation_type].value
        checkin.ai_confidence = max(
            COACH_CONFIDENCE_MIN, min(COACH_CONFIDENCE_MAX, round_half_up(recommendation.readiness_score))
        )
        checkin.ai_explanation = recommendation.coach_message
        payload = CoachReasonPayload(recommendation=recommendation)
        analysis_status = payload.analysis_status
    else:
        recommendation = recommendation_from_evaluation(evaluation, before)
        checkin.ai_decision = evaluation.decision.value
        checkin.ai_confidence = evaluation.confidence
        checkin.ai_explanation = evaluation.explanation
        payload = RuleReasonPayload(
            analysis_status="not_configured" if result.reason == FAILURE_NOT_CONFIGURED else "failed",
            failure_reason=None if result.reason == FAILURE_NOT_CONFIGURED else result.reason,
            decision=evaluation.decision,
            confidence=evaluation.confidence,
            reasons=[ReasonItem(**asdict(r)) for r in evaluation.reasons],
            adaptations=[AdaptationItem(**asdict(a)) for a in evaluation.adaptations],
            recommendation=recommendation,
        )
        analysis_status = payload.analysis_status

    checkin.key_factors = list(recommendation.key_factors)
    checkin.top_factor = recommendation.key_factors[0] if recommendation.key_factors else None
    checkin.recommendation = recommendation.explanation
    checkin.ai_reason_json = payload.model_dump(mode="json", by_alias=True)
    db.flush()

    track(EVENT_CHECKIN_SUBMITTED, athlete.id, {
        "checkin_id": str(checkin.id),
        "readiness_score": checkin.readiness_score,
        "decision": checkin.ai_decision,
        "analysis_status": analysis_status,
        "has_workout": workout is not None,
    })
    return checkin


# =============================================================================
# Submit (0-100 premium scale)
# =============================================================================

def submit_premium_checkin(
    db: Session,
    athlete: Athlete,
    request: PremiumCheckinRequest,
    *,
    today: Optional[date] = None,
) -> DailyCheckin:
    inputs = validate_premium_inputs(
        request.sleep_quality,
        request.fatigue,
        request.motivation,
        request.soreness,
        request.stress,
        notes=request.notes,
    )
    day = request.checkin_date or today or date.today()
    checkin = get_checkin_for_date(db, athlete.id, day)
    if checkin is not None:
        _ensure_not_locked(checkin)
        plan_proposals.supersede_pending_for_checkin(db, athlete_id=athlete.id, checkin_id=checkin.id)
    else:
        checkin = DailyCheckin(athlete_id=athlete.id, date=day)
        db.add(checkin)

    score = calculate_premium_readiness(inputs)
    workout = find_day_workout(db, athlete.id, day)
    recent = load_recent_workouts(db, athlete.id, day)
    hard_sessions = count_recent_hard_sessions(recent, day, workout.id if workout else None)
    conflict = detect_conflict(score.readiness_score, inputs.fatigue, inputs.soreness, workout, hard_sessions)

    checkin.sleep_quality_100 = inputs.sleep_quality
    checkin.fatigue_100 = inputs.fatigue
    checkin.motivation_100 = inputs.motivation
    checkin.soreness_100 = inputs.soreness
    checkin.stress_100 = inputs.stress
    checkin.sleep_h = None
    checkin.sleep_quality_1_5 = None
    checkin.physical_fatigue_1_5 = None
    checkin.mental_readiness_1_5 = None
    checkin.motivation_1_5 = None
    checkin.muscle_soreness = None
    checkin.stress_1_5 = None
    checkin.notes = request.notes
    checkin.notes_visibility = request.notes_visibility.value
    _clear_decision_state(checkin)

    checkin.readiness_score = score.readiness_score
    checkin.top_factor = score.top_factor
    checkin.key_factors = [score.top_factor]
    checkin.recommendation = score.recommendation
    checkin.workout_id = workout.id if workout else None
    _capture_original(checkin, workout)

    if conflict is not None:
        checkin.has_conflict = True
        checkin.conflict_reason = conflict.reason
        checkin.suggested_change = conflict.suggested_change.model_dump(mode="json")
    db.flush()

    track(EVENT_PREMIUM_CHECKIN_SUBMITTED, athlete.id, {
        "checkin_id": str(checkin.id),
        "readiness_score": score.readiness_score,
        "top_factor": score.top_factor,
        "has_conflict": checkin.has_conflict,
    })
    return checkin


# =============================================================================
# Accept / override / undo
# =============================================================================

def _propose(
    db: Session,
    *,
    athlete: Athlete,
    checkin: DailyCheckin,
    workout: PlannedWorkout,
    patch: WorkoutPatch,
    source_type: str,
    confidence: Optional[int],
    summary: str,
) -> PlanChangeProposal:
    """
    Create the proposal and mark the check-in accepted. On a database failure
    the request transaction is rolled back, the check-in is left undecided and
    that recovery state is committed before PersistenceError is raised.
    """
    checkin_id, athlete_id, workout_id = checkin.id, athlete.id, workout.id
    try:
        proposal = plan_proposals.create_proposal(
            db,
            athlete_id=athlete_id,
            workout_id=workout_id,
            checkin_id=checkin_id,
            source_type=source_type,
            confidence=confidence,
            summary=summary,
            patch=ProposalPatch(workout_id=workout_id, update=patch),
        )
    except SQLAlchemyError as e:
        logger.error(
            f"Plan change proposal creation failed: {e}",
            extra={"extra_fields": {"athlete_id": str(athlete_id), "checkin_id": str(checkin_id)}},
        )
        db.rollback()
        checkin = get_checkin(db, athlete_id, checkin_id)
        checkin.user_accepted = None
        db.flush()
        record_audit_event(
            db,
            athlete_id=athlete_id,
            action_type=CHECKIN_ACCEPTED_NEEDS_PROPOSAL,
            target_type=TARGET_CHECKIN,
            target_id=checkin_id,
            summary="Check-in accepted but the plan change proposal could not be created.",
            details={"checkin_id": str(checkin_id), "workout_id": str(workout_id), "source_type": source_type},
        )
        try:
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Could not persist check-in recovery state after proposal failure")
        raise PersistenceError("Could not create a plan change proposal. The recommendation was not applied.")

    checkin.user_accepted = True
    checkin.user_override_reason = None
    db.flush()
    return proposal


def _ensure_no_pending_proposal(db: Session, checkin: DailyCheckin) -> None:
    if plan_proposals.find_pending_for_checkin(db, checkin.id) is not None:
        raise ConflictError("A plan change proposal is already pending for this check-in")


def accept_recommendation(
    db: Session,
    athlete: Athlete,
    checkin_id: UUID,
    *,
    today: Optional[date] = None,
) -> AcceptOutcome:
    checkin = get_checkin(db, athlete.id, checkin_id)
    _ensure_not_locked(checkin)
    if not checkin.ai_reason_json:
        raise ConflictError("Check-in has no recommendation to accept")
    _ensure_no_pending_proposal(db, checkin)

    recommendation: CheckinRecommendation = ai_reason_adapter.validate_python(checkin.ai_reason_json).recommendation
    workout = _target_workout(db, checkin)
    locked = bool(workout) and is_workout_locked(workout.scheduled_date, get_plan_rigidity(athlete), today)
    action = decide_dispatch(
        locked,
        recommendation.recommendation_type,
        recommendation.changes.apply and workout is not None,
    )

    if action == DispatchAction.ACKNOWLEDGE:
        checkin.user_accepted = True
        checkin.user_override_reason = None
        db.flush()
        track(EVENT_RECOMMENDATION_ACCEPTED, athlete.id, {"checkin_id": str(checkin.id), "outcome": "acknowledged"})
        return AcceptOutcome("acknowledged", checkin)

    before = _before_snapshot(checkin, workout)
    after = recommendation.changes.after or compute_after_snapshot(before, recommendation.recommendation_type)
    patch = build_workout_patch(after, reason=checkin.ai_explanation, confidence=checkin.ai_confidence)

    if action == DispatchAction.PROPOSE:
        proposal = _propose(
            db,
            athlete=athlete,
            checkin=checkin,
            workout=workout,
            patch=patch,
            source_type=plan_proposals.SOURCE_DAILY_CHECKIN,
            confidence=checkin.ai_confidence,
            summary=LOCKED_CHECKIN_PROPOSAL_SUMMARY,
        )
        track(EVENT_RECOMMENDATION_ACCEPTED, athlete.id, {
            "checkin_id": str(checkin.id), "outcome": "proposed", "proposal_id": str(proposal.id),
        })
        return AcceptOutcome("proposed", checkin, proposal=proposal, before=before, after=after)

    before_state = serialize_workout(workout)
    apply_workout_patch(workout, patch)
    checkin.user_accepted = True
    checkin.user_override_reason = None
    db.flush()

    record_audit_event(
        db,
        athlete_id=athlete.id,
        action_type=AI_WORKOUT_ADAPTED,
        target_type=TARGET_WORKOUT,
        target_id=workout.id,
        summary=f"Adapted session from daily check-in: {recommendation.recommendation_type}.",
        details={
            "checkin_id": str(checkin.id),
            "recommendation_type": recommendation.recommendation_type,
            "decision": checkin.ai_decision,
            "confidence": checkin.ai_confidence,
            "before": before_state,
            "after": serialize_workout(workout),
        },
    )
    track(EVENT_RECOMMENDATION_ACCEPTED, athlete.id, {"checkin_id": str(checkin.id), "outcome": "applied"})
    return AcceptOutcome("applied", checkin, before=before, after=after)


def override_recommendation(
    db: Session,
    athlete: Athlete,
    checkin_id: UUID,
    reason: Optional[str] = None,
) -> DailyCheckin:
    checkin = get_checkin(db, athlete.id, checkin_id)
    _ensure_not_locked(checkin)
    if checkin.ai_decision is None:
        raise ConflictError("Check-in has no recommendation to override")

    checkin.user_accepted = False
    checkin.user_override_reason = (reason or "").strip() or DEFAULT_OVERRIDE_REASON
    db.flush()

    record_audit_event(
        db,
        athlete_id=athlete.id,
        action_type=CHECKIN_OVERRIDDEN,
        target_type=TARGET_CHECKIN,
        target_id=checkin.id,
        summary=f"Athlete overrode the {checkin.ai_decision} recommendation.",
        details={
            "checkin_id": str(checkin.id),
            "decision": checkin.ai_decision,
            "confidence": checkin.ai_confidence,
            "reason": checkin.user_override_reason,
        },
    )
    maybe_record_behavior_signal(db, athlete.id)
    track(EVENT_RECOMMENDATION_OVERRIDDEN, athlete.id, {"checkin_id": str(checkin.id), "decision": checkin.ai_decision})
    return checkin


def undo_adaptation(
    db: Session,
    athlete: Athlete,
    checkin_id: UUID,
    *,
    today: Optional[date] = None,
) -> PlannedWorkout:
    """
    Restore the session from the check-in's original snapshot. Only for
    unlocked sessions: a locked session changes through proposals alone.
    """
    checkin = get_checkin(db, athlete.id, checkin_id)
    _ensure_not_locked(checkin)
    if not checkin.original_workout_json:
        raise ConflictError("No original workout snapshot to restore")

    original = OriginalWorkoutPayload.model_validate(checkin.original_workout_json)
    workout = get_workout(db, athlete.id, original.workout_id)
    if is_workout_locked(workout.scheduled_date, get_plan_rigidity(athlete), today):
        raise ConflictError("Session is locked by plan rigidity and cannot be restored directly")

    before_state = serialize_workout(workout)
    restore_workout(workout, original)
    checkin.user_accepted = False
    checkin.user_override_reason = UNDO_REASON
    db.flush()

    record_audit_event(
        db,
        athlete_id=athlete.id,
        action_type=CHECKIN_UNDONE,
        target_type=TARGET_WORKOUT,
        target_id=workout.id,
        summary="Restored the session to its state before the check-in adaptation.",
        details={"checkin_id": str(checkin.id), "before": before_state, "after": serialize_workout(workout)},
    )
    track(EVENT_ADAPTATION_UNDONE, athlete.id, {"checkin_id": str(checkin.id), "workout_id": str(workout.id)})
    return workout


def lock_checkin(
    db: Session,
    athlete: Athlete,
    checkin_id: UUID,
    *,
    now: Optional[datetime] = None,
) -> DailyCheckin:
    """Freeze the check-in once its session starts. Locking twice keeps the first timestamp."""
    checkin = get_checkin(db, athlete.id, checkin_id)
    if checkin.locked_at is not None:
        return checkin
    now = now or _now()
    checkin.locked_at = now
    if checkin.workout_id:
        workout = get_workout(db, athlete.id, checkin.workout_id)
        if workout.started_at is None:
            workout.started_at = now
    db.flush()
    return checkin


# =============================================================================
# Conflict suggestions
# =============================================================================

def accept_conflict_suggestion(
    db: Session,
    athlete: Athlete,
    checkin_id: UUID,
    *,
    today: Optional[date] = None,
) -> AcceptOutcome:
    checkin = get_checkin(db, athlete.id, checkin_id)
    _ensure_not_locked(checkin)
    if not checkin.has_conflict or not checkin.suggested_change:
        raise ConflictError("Check-in has no conflict suggestion to accept")
    if not checkin.workout_id:
        raise ConflictError("Conflict suggestion is not linked to a session")
    _ensure_no_pending_proposal(db, checkin)

    change = suggested_change_adapter.validate_python(checkin.suggested_change)
    workout = get_workout(db, athlete.id, checkin.workout_id)
    patch = suggested_change_patch(change, workout)
    before = snapshot_workout(workout)
    before_state = serialize_workout(workout)

    if is_workout_locked(workout.scheduled_date, get_plan_rigidity(athlete), today):
        proposal = _propose(
            db,
            athlete=athlete,
            checkin=checkin,
            workout=workout,
            patch=patch,
            source_type=plan_proposals.SOURCE_CHECKIN_CONFLICT,
            confidence=CONFLICT_PROPOSAL_CONFIDENCE,
            summary=f"Check-in conflict: {checkin.conflict_reason}",
        )
        result = AcceptOutcome("proposed", checkin, proposal=proposal, before=before)
    else:
        apply_workout_patch(workout, patch)
        checkin.user_accepted = True
        checkin.user_override_reason = None
        result = AcceptOutcome("applied", checkin, before=before, after=snapshot_workout(workout))

    checkin.has_conflict = False
    db.flush()

    record_audit_event(
        db,
        athlete_id=athlete.id,
        action_type=CHECKIN_CONFLICT_ACCEPTED,
        target_type=TARGET_WORKOUT,
        target_id=workout.id,
        summary=f"Accepted check-in conflict suggestion ({result.outcome}): {change.action}.",
        details={
            "checkin_id": str(checkin.id),
            "outcome": result.outcome,
            "proposal_id": str(result.proposal.id) if result.proposal else None,
            "conflict_reason": checkin.conflict_reason,
            "suggested_change": checkin.suggested_change,
            "before": before_state,
            "after": serialize_workout(workout),
        },
    )
    return result


def dismiss_conflict_suggestion(db: Session, athlete: Athlete, checkin_id: UUID) -> DailyCheckin:
    checkin = get_checkin(db, athlete.id, checkin_id)
    _ensure_not_locked(checkin)
    if not checkin.has_conflict:
        raise ConflictError("Check-in has no conflict suggestion to dismiss")

    checkin.has_conflict = False
    checkin.user_accepted = False
    checkin.user_override_reason = DISMISS_CONFLICT_REASON
    db.flush()

    record_audit_event(
        db,
        athlete_id=athlete.id,
        action_type=CHECKIN_CONFLICT_DISMISSED,
        target_type=TARGET_CHECKIN,
        target_id=checkin.id,
        summary=f"Dismissed check-in conflict: {checkin.conflict_reason}.",
        details={
            "checkin_id": str(checkin.id),
            "conflict_reason": checkin.conflict_reason,
            "suggested_change": checkin.suggested_change,
        },
    )
    return checkin


# =============================================================================
# Proposals
# =============================================================================

def accept_plan_change(db: Session, athlete: Athlete, proposal_id: UUID) -> PlanChangeProposal:
    proposal, _ = plan_proposals.accept_proposal(db, athlete_id=athlete.id, proposal_id=proposal_id)
    track(EVENT_PROPOSAL_DECIDED, athlete.id, {"proposal_id": str(proposal.id), "status": proposal.status})
    return proposal


def decline_plan_change(db: Session, athlete: Athlete, proposal_id: UUID) -> PlanChangeProposal:
    proposal = plan_proposals.decline_proposal(db, athlete_id=athlete.id, proposal_id=proposal_id)
    track(EVENT_PROPOSAL_DECIDED, athlete.id, {"proposal_id": str(proposal.id), "status": proposal.status})
    return proposal


# =============================================================================
# Pre-training gate
# =============================================================================

def get_pretraining_gate_status(
    db: Session,
    athlete: Athlete,
    workout_id: UUID,
    *,
    today: Optional[date] = None,
) -> GateStatus:
    today = today or date.today()
    workout = get_workout(db, athlete.id, workout_id)
    checkin = get_checkin_for_date(db, athlete.id, workout.scheduled_date)
    rigidity = get_plan_rigidity(athlete)
    return GateStatus(
        workout_id=workout.id,
        required=bool(workout.planned) and not workout.completed and workout.scheduled_date == today,
        has_checkin=checkin is not None,
        checkin_id=checkin.id if checkin else None,
        locked=is_workout_locked(workout.scheduled_date, rigidity, today),
        plan_rigidity=rigidity.value,
    )


def skip_pretraining_check(db: Session, athlete: Athlete, workout_id: UUID, reason: str) -> None:
    reason = (reason or "").strip()
    if len(reason) < MIN_SKIP_REASON_LENGTH:
        raise ValidationError(
            f"Reason must be at least {MIN_SKIP_REASON_LENGTH} characters", field="reason"
        )
    workout = get_workout(db, athlete.id, workout_id)
    record_audit_event(
        db,
        athlete_id=athlete.id,
        action_type=PRETRAINING_SKIPPED,
        target_type=TARGET_WORKOUT,
        target_id=workout.id,
        summary="Pre-training check skipped.",
        details={
            "workout_id": str(workout.id),
            "scheduled_date": workout.scheduled_date.isoformat(),
            "reason": reason,
        },
    )


# =============================================================================
# Reads
# =============================================================================

def get_today_checkin(db: Session, athlete_id: UUID, *, today: Optional[date] = None) -> Optional[DailyCheckin]:
    return get_checkin_for_date(db, athlete_id, today or date.today())


def needs_checkin(db: Session, athlete_id: UUID, *, today: Optional[date] = None) -> bool:
    return get_today_checkin(db, athlete_id, today=today) is None


def get_override_stats(
    db: Session,
    athlete_id: UUID,
    days: Optional[int] = None,
    *,
    today: Optional[date] = None,
) -> OverrideStats:
    return load_override_stats(db, athlete_id, days=days, today=today)


def get_checkin_history(
    db: Session,
    athlete_id: UUID,
    days: int = 30,
    *,
    today: Optional[date] = None,
) -> List[DailyCheckin]:
    if days < 1:
        raise ValidationError("days must be at least 1", field="days")
    today = today or date.today()
    return (
        db.query(DailyCheckin)
        .filter(
            DailyCheckin.athlete_id == athlete_id,
            DailyCheckin.date > today - timedelta(days=days),
            DailyCheckin.date <= today,
        )
        .order_by(DailyCheckin.date.desc())
        .all()
    )


def get_readiness_series(db: Session, athlete_id: UUID, start: date, end: date) -> List[DailyCheckin]:
    if start > end:
        raise ValidationError("start must not be after end", field="start")
    return (
        db.query(DailyCheckin)
        .filter(
            DailyCheckin.athlete_id == athlete_id,
            DailyCheckin.date >= start,
            DailyCheckin.date <= end,
        )
        .order_by(DailyCheckin.date)
        .all()
    )


def _avg(values: List[float]) -> Optional[float]:
    return round(sum(values) / len(values), 1) if values else None


def get_weekly_summary(db: Session, athlete_id: UUID, *, today: Optional[date] = None) -> WeeklySummary:
    """Averages and detected patterns over the check-ins of the last 7 days, today included."""
    today = today or date.today()
    checkins = (
        db.query(DailyCheckin)
        .filter(
            DailyCheckin.athlete_id == athlete_id,
            DailyCheckin.date > today - timedelta(days=WEEKLY_SUMMARY_DAYS),
            DailyCheckin.date <= today,
        )
        .order_by(DailyCheckin.date.desc())
        .all()
    )
    scaled = [c for c in checkins if c.physical_fatigue_1_5 is not None]
    data = [_checkin_data(c) for c in scaled]
    return WeeklySummary(
        checkin_count=len(checkins),
        average_readiness=_avg([c.readiness_score for c in checkins if c.readiness_score is not None]),
        average_sleep_h=_avg([d.sleep_duration for d in data]),
        average_fatigue=_avg([d.physical_fatigue for d in data]),
        average_motivation=_avg([d.motivation for d in data]),
        average_stress=_avg([d.stress_level for d in data]),
        patterns=detect_patterns(data),
    )
