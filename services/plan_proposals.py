"""
Plan Change Proposals

A proposal is how the engine changes a LOCKED session: the patch is stored,
and nothing touches the session until the athlete accepts it.

    create   -> PENDING
    accept   -> APPLIED   (patch written to the session, check-in accepted)
    decline  -> DECLINED  (session untouched, check-in overridden)
    resubmit -> DECLINED  (check-in answered again; old patch no longer applies)

Both outcomes are terminal. Deciding a proposal that is not PENDING is a
ConflictError and changes nothing. Creating duplicates for the same check-in
is the caller's responsibility (see find_pending_for_checkin).
"""

from datetime import datetime, timezone
from typing import List, Optional, Tuple
from uuid import UUID

import logging
from sqlalchemy.orm import Session

from core.exceptions import ConflictError, ForbiddenError, NotFoundError
from models import DailyCheckin, PlanChangeProposal, PlannedWorkout
from schemas import ProposalPatch
from services.audit_log import (
    PLAN_CHANGE_ACCEPTED,
    PLAN_CHANGE_DECLINED,
    PLAN_CHANGE_PROPOSED,
    TARGET_PROPOSAL,
    record_audit_event,
)
from services.workout_adaptation import apply_workout_patch, serialize_workout

logger = logging.getLogger(__name__)

STATUS_PENDING = "PENDING"
STATUS_APPLIED = "APPLIED"
STATUS_DECLINED = "DECLINED"

SOURCE_DAILY_CHECKIN = "DAILY_CHECKIN"
SOURCE_CHECKIN_CONFLICT = "CHECKIN_CONFLICT"

DECLINE_OVERRIDE_REASON = "Declined plan change proposal"
SUPERSEDED_REASON = "superseded_by_resubmission"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def create_proposal(
    db: Session,
    *,
    athlete_id: UUID,
    workout_id: UUID,
    checkin_id: Optional[UUID],
    source_type: str,
    confidence: Optional[int],
    summary: str,
    patch: ProposalPatch,
) -> PlanChangeProposal:
    """Persist a PENDING proposal. Database errors propagate to the caller."""
    proposal = PlanChangeProposal(
        athlete_id=athlete_id,
        workout_id=workout_id,
        checkin_id=checkin_id,
        source_type=source_type,
        confidence=confidence,
        summary=summary,
        patch_json=patch.model_dump(mode="json"),
        status=STATUS_PENDING,
    )
    db.add(proposal)
    db.flush()

    record_audit_event(
        db,
        athlete_id=athlete_id,
        action_type=PLAN_CHANGE_PROPOSED,
        target_type=TARGET_PROPOSAL,
        target_id=proposal.id,
        summary=summary,
        details={
            "proposal_id": str(proposal.id),
            "workout_id": str(workout_id),
            "checkin_id": str(checkin_id) if checkin_id else None,
            "source_type": source_type,
            "confidence": confidence,
            "patch": proposal.patch_json,
        },
    )
    logger.info(
        "plan_change_proposed",
        extra={"extra_fields": {"athlete_id": str(athlete_id), "proposal_id": str(proposal.id), "source_type": source_type}},
    )
    return proposal


def find_pending_for_checkin(db: Session, checkin_id: UUID) -> Optional[PlanChangeProposal]:
    return (
        db.query(PlanChangeProposal)
        .filter(PlanChangeProposal.checkin_id == checkin_id, PlanChangeProposal.status == STATUS_PENDING)
        .first()
    )


def list_pending_for_workout(db: Session, athlete_id: UUID, workout_id: UUID) -> List[PlanChangeProposal]:
    return (
        db.query(PlanChangeProposal)
        .filter(
            PlanChangeProposal.athlete_id == athlete_id,
            PlanChangeProposal.workout_id == workout_id,
            PlanChangeProposal.status == STATUS_PENDING,
        )
        .order_by(PlanChangeProposal.created_at.desc())
        .all()
    )


def list_pending_for_athlete(db: Session, athlete_id: UUID) -> List[PlanChangeProposal]:
    return (
        db.query(PlanChangeProposal)
        .filter(PlanChangeProposal.athlete_id == athlete_id, PlanChangeProposal.status == STATUS_PENDING)
        .order_by(PlanChangeProposal.created_at.desc())
        .all()
    )


def _load_pending(db: Session, athlete_id: UUID, proposal_id: UUID) -> PlanChangeProposal:
    # Lock proposal row to prevent double-apply under concurrent decisions.
    proposal = (
        db.query(PlanChangeProposal)
        .filter(PlanChangeProposal.id == proposal_id)
        .with_for_update()
        .first()
    )
    if not proposal:
        raise NotFoundError("Plan change proposal", str(proposal_id))
    if proposal.athlete_id != athlete_id:
        raise ForbiddenError()
    if proposal.status != STATUS_PENDING:
        raise ConflictError(f"Proposal already decided: {proposal.status}")
    return proposal


def _linked_checkin(db: Session, proposal: PlanChangeProposal) -> Optional[DailyCheckin]:
    if not proposal.checkin_id:
        return None
    return db.query(DailyCheckin).filter(DailyCheckin.id == proposal.checkin_id).first()


def _record_decision(db: Session, proposal: PlanChangeProposal, *, accepted: bool) -> None:
    """Mirror the decision onto the linked check-in. A locked check-in is frozen and keeps its state."""
    checkin = _linked_checkin(db, proposal)
    if checkin is None:
        return
    if checkin.locked_at is not None:
        logger.info(
            "Proposal decided after check-in lock; check-in left unchanged",
            extra={"extra_fields": {"proposal_id": str(proposal.id), "checkin_id": str(checkin.id)}},
        )
        return
    checkin.user_accepted = accepted
    checkin.user_override_reason = None if accepted else DECLINE_OVERRIDE_REASON
    if proposal.source_type == SOURCE_CHECKIN_CONFLICT:
        checkin.has_conflict = False


def supersede_pending_for_checkin(
    db: Session,
    *,
    athlete_id: UUID,
    checkin_id: UUID,
    now: Optional[datetime] = None,
) -> List[PlanChangeProposal]:
    """
    Close every PENDING proposal of a check-in that is being resubmitted.

    The proposals become DECLINED and their sessions stay untouched. The
    check-in itself is not written here; the resubmission resets it.
    """
    pending = (
        db.query(PlanChangeProposal)
        .filter(PlanChangeProposal.checkin_id == checkin_id, PlanChangeProposal.status == STATUS_PENDING)
        .with_for_update()
        .all()
    )
    decided_at = now or _now()
    for proposal in pending:
        proposal.status = STATUS_DECLINED
        proposal.decided_at = decided_at
    db.flush()

    for proposal in pending:
        record_audit_event(
            db,
            athlete_id=athlete_id,
            action_type=PLAN_CHANGE_DECLINED,
            target_type=TARGET_PROPOSAL,
            target_id=proposal.id,
            summary=f"Superseded by check-in resubmission: {proposal.summary}",
            details={
                "proposal_id": str(proposal.id),
                "workout_id": str(proposal.workout_id),
                "checkin_id": str(checkin_id),
                "reason": SUPERSEDED_REASON,
            },
        )
    return pending


def accept_proposal(
    db: Session,
    *,
    athlete_id: UUID,
    proposal_id: UUID,
    now: Optional[datetime] = None,
) -> Tuple[PlanChangeProposal, PlannedWorkout]:
    proposal = _load_pending(db, athlete_id, proposal_id)
    patch = ProposalPatch.model_validate(proposal.patch_json)
    if patch.workout_id != proposal.workout_id:
        raise ConflictError("Proposal patch does not match its workout")

    workout = (
        db.query(PlannedWorkout)
        .filter(PlannedWorkout.id == proposal.workout_id, PlannedWorkout.athlete_id == athlete_id)
        .first()
    )
    if not workout:
        raise NotFoundError("Workout", str(proposal.workout_id))

    before = serialize_workout(workout)
    apply_workout_patch(workout, patch.update)
    proposal.status = STATUS_APPLIED
    proposal.decided_at = now or _now()

    _record_decision(db, proposal, accepted=True)
    db.flush()

    record_audit_event(
        db,
        athlete_id=athlete_id,
        action_type=PLAN_CHANGE_ACCEPTED,
        target_type=TARGET_PROPOSAL,
        target_id=proposal.id,
        summary=f"Accepted plan change: {proposal.summary}",
        details={
            "proposal_id": str(proposal.id),
            "workout_id": str(workout.id),
            "checkin_id": str(proposal.checkin_id) if proposal.checkin_id else None,
            "before": before,
            "after": serialize_workout(workout),
        },
    )
    return proposal, workout


def decline_proposal(
    db: Session,
    *,
    athlete_id: UUID,
    proposal_id: UUID,
    now: Optional[datetime] = None,
) -> PlanChangeProposal:
    proposal = _load_pending(db, athlete_id, proposal_id)
    proposal.status = STATUS_DECLINED
    proposal.decided_at = now or _now()

    _record_decision(db, proposal, accepted=False)
    db.flush()

    record_audit_event(
        db,
        athlete_id=athlete_id,
        action_type=PLAN_CHANGE_DECLINED,
        target_type=TARGET_PROPOSAL,
        target_id=proposal.id,
        summary=f"Declined plan change: {proposal.summary}",
        details={
            "proposal_id": str(proposal.id),
            "workout_id": str(proposal.workout_id),
            "checkin_id": str(proposal.checkin_id) if proposal.checkin_id else None,
        },
    )
    return proposal
