"""
Tests for the plan change proposal lifecycle: PENDING -> APPLIED | DECLINED.
"""
from datetime import date
from uuid import uuid4

import pytest

from core.exceptions import ConflictError, ForbiddenError, NotFoundError
from schemas import ProposalPatch, WorkoutPatch
from services import plan_proposals

TODAY = date(2026, 3, 10)


def propose(db_session, athlete, workout, **patch_fields):
    proposal = plan_proposals.create_proposal(
        db_session,
        athlete_id=athlete.id,
        workout_id=workout.id,
        checkin_id=None,
        source_type=plan_proposals.SOURCE_DAILY_CHECKIN,
        confidence=70,
        summary="Shorten tomorrow's session.",
        patch=ProposalPatch(workout_id=workout.id, update=WorkoutPatch(**patch_fields)),
    )
    db_session.commit()
    return proposal


def test_create_and_list_pending(db_session, test_athlete, make_workout):
    workout = make_workout(test_athlete, TODAY)
    other = make_workout(test_athlete, TODAY, title="Easy Run")
    proposal = propose(db_session, test_athlete, workout, duration_minutes=40)

    assert proposal.status == "PENDING"
    assert proposal.patch_json["kind"] == "workout_patch"
    assert [p.id for p in plan_proposals.list_pending_for_workout(db_session, test_athlete.id, workout.id)] == [proposal.id]
    assert plan_proposals.list_pending_for_workout(db_session, test_athlete.id, other.id) == []
    assert len(plan_proposals.list_pending_for_athlete(db_session, test_athlete.id)) == 1


def test_accept_applies_patch_once(db_session, test_athlete, make_workout):
    workout = make_workout(test_athlete, TODAY)
    proposal = propose(db_session, test_athlete, workout, duration_minutes=40, title="Short Threshold")

    accepted, updated = plan_proposals.accept_proposal(db_session, athlete_id=test_athlete.id, proposal_id=proposal.id)

    assert accepted.status == "APPLIED"
    assert accepted.decided_at is not None
    assert updated.duration_minutes == 40
    assert updated.title == "Short Threshold"
    assert updated.notes == "Keep cadence high"
    with pytest.raises(ConflictError):
        plan_proposals.accept_proposal(db_session, athlete_id=test_athlete.id, proposal_id=proposal.id)
    with pytest.raises(ConflictError):
        plan_proposals.decline_proposal(db_session, athlete_id=test_athlete.id, proposal_id=proposal.id)


def test_decline_leaves_session_unchanged(db_session, test_athlete, make_workout):
    workout = make_workout(test_athlete, TODAY)
    proposal = propose(db_session, test_athlete, workout, duration_minutes=40)

    declined = plan_proposals.decline_proposal(db_session, athlete_id=test_athlete.id, proposal_id=proposal.id)

    assert declined.status == "DECLINED"
    assert workout.duration_minutes == 60


def test_other_athlete_cannot_decide(db_session, test_athlete, make_athlete, make_workout):
    workout = make_workout(test_athlete, TODAY)
    proposal = propose(db_session, test_athlete, workout, duration_minutes=40)
    intruder = make_athlete()

    with pytest.raises(ForbiddenError):
        plan_proposals.accept_proposal(db_session, athlete_id=intruder.id, proposal_id=proposal.id)


def test_unknown_proposal(db_session, test_athlete):
    with pytest.raises(NotFoundError):
        plan_proposals.accept_proposal(db_session, athlete_id=test_athlete.id, proposal_id=uuid4())


def test_patch_for_another_workout_is_rejected(db_session, test_athlete, make_workout):
    workout = make_workout(test_athlete, TODAY)
    proposal = propose(db_session, test_athlete, workout, duration_minutes=40)
    proposal.patch_json = {**proposal.patch_json, "workout_id": str(uuid4())}
    db_session.commit()

    with pytest.raises(ConflictError):
        plan_proposals.accept_proposal(db_session, athlete_id=test_athlete.id, proposal_id=proposal.id)
    assert workout.duration_minutes == 60


def test_accept_fails_when_workout_is_gone(db_session, test_athlete, make_workout):
    workout = make_workout(test_athlete, TODAY)
    proposal = propose(db_session, test_athlete, workout, duration_minutes=40)
    db_session.delete(workout)
    db_session.commit()

    with pytest.raises(NotFoundError):
        plan_proposals.accept_proposal(db_session, athlete_id=test_athlete.id, proposal_id=proposal.id)
