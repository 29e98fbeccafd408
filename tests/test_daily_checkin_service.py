"""
Tests for the daily check-in flow: submit, accept / override / undo,
plan change proposals and premium conflict suggestions.

The check-in coach is either unconfigured or a CheckinCoach around a
MagicMock client.
"""
import json
from datetime import date, datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy.exc import SQLAlchemyError

from core import events
from core.exceptions import ConflictError, PersistenceError, ValidationError
from models import AuditLogEntry, DailyCheckin, PlanChangeProposal
from schemas import CheckinSubmitRequest, PremiumCheckinRequest, ai_reason_adapter
from services import daily_checkin as service
from services.audit_log import (
    AI_WORKOUT_ADAPTED,
    CHECKIN_ACCEPTED_NEEDS_PROPOSAL,
    CHECKIN_CONFLICT_ACCEPTED,
    CHECKIN_OVERRIDDEN,
    CHECKIN_UNDONE,
    OVERRIDE_BEHAVIOR_SIGNAL,
    PLAN_CHANGE_ACCEPTED,
    PLAN_CHANGE_DECLINED,
    PLAN_CHANGE_PROPOSED,
    PRETRAINING_SKIPPED,
)
from services.checkin_coach import CheckinCoach
from services.checkin_conflicts import REASON_LOW_READINESS

TODAY = date(2026, 3, 10)

UNCONFIGURED = CheckinCoach(client=None)


def fresh_request(**overrides) -> CheckinSubmitRequest:
    fields = dict(
        sleep_duration_h=8,
        sleep_quality=5,
        physical_fatigue=1,
        mental_readiness=5,
        motivation=5,
        muscle_soreness="NONE",
        stress_level=1,
    )
    fields.update(overrides)
    return CheckinSubmitRequest(**fields)


def exhausted_request(**overrides) -> CheckinSubmitRequest:
    fields = dict(
        sleep_duration_h=4,
        sleep_quality=1,
        physical_fatigue=5,
        mental_readiness=1,
        motivation=1,
        muscle_soreness="SEVERE",
        stress_level=5,
    )
    fields.update(overrides)
    return CheckinSubmitRequest(**fields)


def coach_returning(payload) -> CheckinCoach:
    client = MagicMock()
    response = MagicMock()
    response.choices = [MagicMock()]
    response.choices[0].message.content = payload if isinstance(payload, str) else json.dumps(payload)
    client.chat.completions.create.return_value = response
    return CheckinCoach(client=client)


REST_PAYLOAD = {
    "readiness_score": 30,
    "key_factors": ["sleep low", "fatigue high"],
    "recommendation_type": "rest",
    "explanation": "Everything points to recovery today.",
    "changes": {"apply": True, "requires_confirmation": True, "rationale": ["Recover first"]},
    "coach_message": "Take the day off and come back fresh.",
}


def audit_actions(db_session):
    return [e.action_type for e in db_session.query(AuditLogEntry).order_by(AuditLogEntry.created_at).all()]


# =============================================================================
# Submit
# =============================================================================

class TestSubmitCheckin:
    def test_rule_evaluation_when_coach_not_configured(self, db_session, test_athlete, make_workout):
        workout = make_workout(test_athlete, TODAY)

        checkin = service.submit_checkin(db_session, test_athlete, exhausted_request(), today=TODAY, coach=UNCONFIGURED)
        db_session.commit()

        assert checkin.readiness_score == 22
        assert checkin.ai_decision == "REST"
        assert checkin.workout_id == workout.id
        assert checkin.user_accepted is None

        payload = ai_reason_adapter.validate_python(checkin.ai_reason_json)
        assert payload.kind == "rule_evaluation"
        assert payload.analysis_status == "not_configured"
        assert payload.recommendation.recommendation_type == "rest"
        assert payload.recommendation.changes.before.title == "Threshold Intervals"

        assert checkin.original_workout_json["kind"] == "workout_original"
        assert checkin.original_workout_json["snapshot"]["durationMin"] == 60

    def test_coach_recommendation_replaces_rule_decision(self, db_session, test_athlete, make_workout):
        make_workout(test_athlete, TODAY)

        checkin = service.submit_checkin(
            db_session, test_athlete, fresh_request(), today=TODAY, coach=coach_returning(REST_PAYLOAD),
        )

        assert checkin.readiness_score == 100
        assert checkin.ai_decision == "REST"
        assert checkin.ai_confidence == 55
        assert checkin.ai_explanation == "Take the day off and come back fresh."
        payload = ai_reason_adapter.validate_python(checkin.ai_reason_json)
        assert payload.kind == "coach_recommendation"
        assert payload.recommendation.changes.after.type == "rest"

    def test_invalid_coach_output_falls_back(self, db_session, test_athlete, make_workout):
        make_workout(test_athlete, TODAY)

        checkin = service.submit_checkin(
            db_session, test_athlete, fresh_request(), today=TODAY, coach=coach_returning("not json at all"),
        )

        assert checkin.ai_decision == "PROCEED"
        payload = ai_reason_adapter.validate_python(checkin.ai_reason_json)
        assert payload.analysis_status == "failed"
        assert payload.failure_reason == "invalid_json"

    def test_resubmit_updates_same_row(self, db_session, test_athlete):
        service.submit_checkin(db_session, test_athlete, exhausted_request(), today=TODAY, coach=UNCONFIGURED)
        service.submit_checkin(db_session, test_athlete, fresh_request(), today=TODAY, coach=UNCONFIGURED)
        db_session.commit()

        rows = db_session.query(DailyCheckin).all()
        assert len(rows) == 1
        assert rows[0].ai_decision == "PROCEED"
        assert rows[0].workout_id is None

    def test_locked_checkin_rejects_resubmit(self, db_session, test_athlete, make_workout):
        make_workout(test_athlete, TODAY)
        checkin = service.submit_checkin(db_session, test_athlete, fresh_request(), today=TODAY, coach=UNCONFIGURED)
        service.lock_checkin(db_session, test_athlete, checkin.id)

        with pytest.raises(ConflictError):
            service.submit_checkin(db_session, test_athlete, exhausted_request(), today=TODAY, coach=UNCONFIGURED)

    def test_submitted_event_is_tracked(self, db_session, test_athlete):
        received = []
        events.subscribe(events.EVENT_CHECKIN_SUBMITTED, lambda athlete_id, properties: received.append(properties))
        try:
            service.submit_checkin(db_session, test_athlete, fresh_request(), today=TODAY, coach=UNCONFIGURED)
        finally:
            events.unsubscribe_all()

        assert received[0]["decision"] == "PROCEED"
        assert received[0]["analysis_status"] == "not_configured"


# =============================================================================
# Accept
# =============================================================================

class TestAcceptRecommendation:
    def test_locked_session_gets_a_proposal(self, db_session, test_athlete, make_workout):
        # LOCKED_1_DAY and the session is tomorrow
        workout = make_workout(test_athlete, TODAY + timedelta(days=1))
        checkin = service.submit_checkin(
            db_session,
            test_athlete,
            fresh_request(workout_id=workout.id),
            today=TODAY,
            coach=coach_returning(REST_PAYLOAD),
        )
        db_session.commit()

        result = service.accept_recommendation(db_session, test_athlete, checkin.id, today=TODAY)
        db_session.commit()

        assert result.outcome == "proposed"
        assert result.proposal.status == "PENDING"
        assert result.proposal.source_type == "DAILY_CHECKIN"
        assert checkin.user_accepted is True

        db_session.refresh(workout)
        assert workout.workout_type == "threshold"
        assert workout.duration_minutes == 60

        proposal = service.accept_plan_change(db_session, test_athlete, result.proposal.id)
        db_session.commit()

        db_session.refresh(workout)
        assert proposal.status == "APPLIED"
        assert workout.workout_type == "rest"
        assert workout.duration_minutes == 0
        assert workout.ai_generated is True
        assert PLAN_CHANGE_PROPOSED in audit_actions(db_session)
        assert PLAN_CHANGE_ACCEPTED in audit_actions(db_session)

    def test_second_accept_while_pending_is_rejected(self, db_session, test_athlete, make_workout):
        make_workout(test_athlete, TODAY)
        checkin = service.submit_checkin(db_session, test_athlete, exhausted_request(), today=TODAY, coach=UNCONFIGURED)
        service.accept_recommendation(db_session, test_athlete, checkin.id, today=TODAY)

        with pytest.raises(ConflictError):
            service.accept_recommendation(db_session, test_athlete, checkin.id, today=TODAY)

    def test_unlocked_session_is_adapted_directly(self, db_session, make_athlete, make_workout):
        athlete = make_athlete(plan_rigidity="FLEXIBLE_WEEK")
        workout = make_workout(athlete, TODAY)
        checkin = service.submit_checkin(db_session, athlete, exhausted_request(), today=TODAY, coach=UNCONFIGURED)

        result = service.accept_recommendation(db_session, athlete, checkin.id, today=TODAY)
        db_session.commit()

        assert result.outcome == "applied"
        assert workout.workout_type == "rest"
        assert workout.source == "daily-checkin"
        assert db_session.query(PlanChangeProposal).count() == 0

        entry = db_session.query(AuditLogEntry).filter(AuditLogEntry.action_type == AI_WORKOUT_ADAPTED).one()
        assert entry.details["before"]["type"] == "threshold"
        assert entry.details["after"]["type"] == "rest"

    @pytest.mark.parametrize("rigidity", ["FLEXIBLE_WEEK", "LOCKED_TODAY"])
    def test_keep_never_changes_the_session(self, db_session, make_athlete, make_workout, rigidity):
        athlete = make_athlete(plan_rigidity=rigidity)
        workout = make_workout(athlete, TODAY)
        checkin = service.submit_checkin(db_session, athlete, fresh_request(), today=TODAY, coach=UNCONFIGURED)

        result = service.accept_recommendation(db_session, athlete, checkin.id, today=TODAY)
        db_session.commit()

        assert result.outcome == "acknowledged"
        assert checkin.user_accepted is True
        assert workout.title == "Threshold Intervals"
        assert workout.ai_generated is False
        assert db_session.query(PlanChangeProposal).count() == 0

    def test_failed_proposal_leaves_checkin_undecided(self, db_session, test_athlete, make_workout):
        make_workout(test_athlete, TODAY)
        checkin = service.submit_checkin(db_session, test_athlete, exhausted_request(), today=TODAY, coach=UNCONFIGURED)
        checkin_id = checkin.id
        db_session.commit()

        with patch("services.plan_proposals.create_proposal", side_effect=SQLAlchemyError("db down")):
            with pytest.raises(PersistenceError):
                service.accept_recommendation(db_session, test_athlete, checkin_id, today=TODAY)

        stored = db_session.query(DailyCheckin).filter(DailyCheckin.id == checkin_id).one()
        assert stored.user_accepted is None
        assert CHECKIN_ACCEPTED_NEEDS_PROPOSAL in audit_actions(db_session)
        assert db_session.query(PlanChangeProposal).count() == 0

    def test_decline_marks_checkin_overridden(self, db_session, test_athlete, make_workout):
        workout = make_workout(test_athlete, TODAY)
        checkin = service.submit_checkin(db_session, test_athlete, exhausted_request(), today=TODAY, coach=UNCONFIGURED)
        result = service.accept_recommendation(db_session, test_athlete, checkin.id, today=TODAY)

        proposal = service.decline_plan_change(db_session, test_athlete, result.proposal.id)

        assert proposal.status == "DECLINED"
        assert checkin.user_accepted is False
        assert workout.workout_type == "threshold"
        with pytest.raises(ConflictError):
            service.accept_plan_change(db_session, test_athlete, proposal.id)

    def test_decline_after_lock_leaves_checkin_frozen(self, db_session, test_athlete, make_workout):
        make_workout(test_athlete, TODAY)
        checkin = service.submit_checkin(db_session, test_athlete, exhausted_request(), today=TODAY, coach=UNCONFIGURED)
        result = service.accept_recommendation(db_session, test_athlete, checkin.id, today=TODAY)
        service.lock_checkin(db_session, test_athlete, checkin.id)

        proposal = service.decline_plan_change(db_session, test_athlete, result.proposal.id)
        db_session.commit()

        assert proposal.status == "DECLINED"
        stored = db_session.query(DailyCheckin).filter(DailyCheckin.id == checkin.id).one()
        assert stored.user_accepted is True
        assert stored.user_override_reason is None

    def test_resubmit_closes_pending_proposal(self, db_session, test_athlete, make_workout):
        workout = make_workout(test_athlete, TODAY)
        checkin = service.submit_checkin(db_session, test_athlete, exhausted_request(), today=TODAY, coach=UNCONFIGURED)
        stale = service.accept_recommendation(db_session, test_athlete, checkin.id, today=TODAY).proposal
        db_session.commit()

        checkin = service.submit_checkin(db_session, test_athlete, fresh_request(), today=TODAY, coach=UNCONFIGURED)
        db_session.commit()

        assert checkin.ai_decision == "PROCEED"
        assert stale.status == "DECLINED"
        assert PLAN_CHANGE_DECLINED in audit_actions(db_session)

        result = service.accept_recommendation(db_session, test_athlete, checkin.id, today=TODAY)
        assert result.outcome == "acknowledged"

        with pytest.raises(ConflictError):
            service.accept_plan_change(db_session, test_athlete, stale.id)
        assert workout.workout_type == "threshold"
        assert workout.duration_minutes == 60


# =============================================================================
# Override / undo / lock
# =============================================================================

class TestOverrideUndoLock:
    def test_override_defaults_reason_and_audits(self, db_session, test_athlete):
        checkin = service.submit_checkin(db_session, test_athlete, exhausted_request(), today=TODAY, coach=UNCONFIGURED)

        service.override_recommendation(db_session, test_athlete, checkin.id)

        assert checkin.user_accepted is False
        assert checkin.user_override_reason == service.DEFAULT_OVERRIDE_REASON
        assert audit_actions(db_session).count(CHECKIN_OVERRIDDEN) == 1

    def test_third_override_in_a_week_writes_behavior_signal(self, db_session, test_athlete):
        for days_ago in (2, 1, 0):
            day = date.today() - timedelta(days=days_ago)
            checkin = service.submit_checkin(
                db_session, test_athlete, exhausted_request(checkin_date=day), today=day, coach=UNCONFIGURED,
            )
            service.override_recommendation(db_session, test_athlete, checkin.id, "Race-pace day")
            db_session.commit()

        actions = audit_actions(db_session)
        assert actions.count(CHECKIN_OVERRIDDEN) == 3
        assert actions.count(OVERRIDE_BEHAVIOR_SIGNAL) == 1

    def test_undo_restores_every_tracked_field(self, db_session, make_athlete, make_workout):
        athlete = make_athlete(plan_rigidity="FLEXIBLE_WEEK")
        workout = make_workout(athlete, TODAY, prescription_json='{"reps": 3}', source="plan")
        checkin = service.submit_checkin(db_session, athlete, exhausted_request(), today=TODAY, coach=UNCONFIGURED)
        service.accept_recommendation(db_session, athlete, checkin.id, today=TODAY)

        service.undo_adaptation(db_session, athlete, checkin.id, today=TODAY)
        db_session.commit()

        assert workout.title == "Threshold Intervals"
        assert workout.workout_type == "threshold"
        assert workout.duration_minutes == 60
        assert workout.tss == 85
        assert workout.description_md == "3 x 10 min @ threshold"
        assert workout.prescription_json == '{"reps": 3}'
        assert workout.notes == "Keep cadence high"
        assert workout.ai_generated is False
        assert workout.source == "plan"
        assert checkin.user_accepted is False
        assert CHECKIN_UNDONE in audit_actions(db_session)

    def test_undo_refused_for_locked_session(self, db_session, test_athlete, make_workout):
        make_workout(test_athlete, TODAY)
        checkin = service.submit_checkin(db_session, test_athlete, exhausted_request(), today=TODAY, coach=UNCONFIGURED)

        with pytest.raises(ConflictError):
            service.undo_adaptation(db_session, test_athlete, checkin.id, today=TODAY)

    def test_lock_is_set_once(self, db_session, test_athlete, make_workout):
        workout = make_workout(test_athlete, TODAY)
        checkin = service.submit_checkin(db_session, test_athlete, fresh_request(), today=TODAY, coach=UNCONFIGURED)
        first = datetime(2026, 3, 10, 7, 0, tzinfo=timezone.utc)

        service.lock_checkin(db_session, test_athlete, checkin.id, now=first)
        service.lock_checkin(db_session, test_athlete, checkin.id, now=first + timedelta(hours=1))

        assert checkin.locked_at == first
        assert workout.started_at == first
        with pytest.raises(ConflictError):
            service.accept_recommendation(db_session, test_athlete, checkin.id, today=TODAY)
        with pytest.raises(ConflictError):
            service.override_recommendation(db_session, test_athlete, checkin.id)


# =============================================================================
# Premium check-in and conflicts
# =============================================================================

LOW_READINESS_PREMIUM = dict(sleep_quality=50, fatigue=50, motivation=50, soreness=40, stress=40)


class TestPremiumCheckin:
    def test_low_readiness_conflict(self, db_session, test_athlete, make_workout):
        make_workout(test_athlete, TODAY, tss=95)

        checkin = service.submit_premium_checkin(
            db_session, test_athlete, PremiumCheckinRequest(**LOW_READINESS_PREMIUM), today=TODAY,
        )

        assert checkin.readiness_score == 52
        assert checkin.has_conflict is True
        assert checkin.conflict_reason == REASON_LOW_READINESS
        assert checkin.suggested_change["action"] == "swap_easy"
        assert checkin.sleep_h is None

    def test_invalid_input_has_no_side_effect(self, db_session, test_athlete):
        with pytest.raises(ValidationError):
            service.submit_premium_checkin(
                db_session, test_athlete, PremiumCheckinRequest(**{**LOW_READINESS_PREMIUM, "stress": 140}),
                today=TODAY,
            )
        assert db_session.query(DailyCheckin).count() == 0

    def test_weekly_guardrail(self, db_session, test_athlete, make_workout):
        for days_ago in (1, 2, 3, 4):
            make_workout(test_athlete, TODAY - timedelta(days=days_ago), tss=95, completed=True)
        make_workout(test_athlete, TODAY, tss=95)

        checkin = service.submit_premium_checkin(
            db_session,
            test_athlete,
            PremiumCheckinRequest(sleep_quality=90, fatigue=20, motivation=90, soreness=10, stress=20),
            today=TODAY,
        )

        assert checkin.readiness_score >= 80
        assert checkin.conflict_reason == "Weekly hard-session guardrail exceeded"

    def test_accept_conflict_on_unlocked_session(self, db_session, make_athlete, make_workout):
        athlete = make_athlete(plan_rigidity="FLEXIBLE_WEEK")
        workout = make_workout(athlete, TODAY, tss=95)
        checkin = service.submit_premium_checkin(
            db_session, athlete, PremiumCheckinRequest(**LOW_READINESS_PREMIUM), today=TODAY,
        )

        result = service.accept_conflict_suggestion(db_session, athlete, checkin.id, today=TODAY)

        assert result.outcome == "applied"
        assert workout.workout_type == "easy"
        assert workout.title == "Easy Recovery Run"
        assert workout.source == "checkin-conflict"
        assert checkin.has_conflict is False
        assert CHECKIN_CONFLICT_ACCEPTED in audit_actions(db_session)

    def test_accept_conflict_on_locked_session_proposes(self, db_session, test_athlete, make_workout):
        workout = make_workout(test_athlete, TODAY, tss=95)
        checkin = service.submit_premium_checkin(
            db_session, test_athlete, PremiumCheckinRequest(**LOW_READINESS_PREMIUM), today=TODAY,
        )

        result = service.accept_conflict_suggestion(db_session, test_athlete, checkin.id, today=TODAY)

        assert result.outcome == "proposed"
        assert result.proposal.source_type == "CHECKIN_CONFLICT"
        assert result.proposal.confidence == 80
        assert result.proposal.summary == f"Check-in conflict: {REASON_LOW_READINESS}"
        assert workout.workout_type == "threshold"

        service.accept_plan_change(db_session, test_athlete, result.proposal.id)
        assert workout.workout_type == "easy"
        assert checkin.has_conflict is False

    def test_dismiss_conflict(self, db_session, test_athlete, make_workout):
        make_workout(test_athlete, TODAY, tss=95)
        checkin = service.submit_premium_checkin(
            db_session, test_athlete, PremiumCheckinRequest(**LOW_READINESS_PREMIUM), today=TODAY,
        )

        service.dismiss_conflict_suggestion(db_session, test_athlete, checkin.id)

        assert checkin.has_conflict is False
        with pytest.raises(ConflictError):
            service.accept_conflict_suggestion(db_session, test_athlete, checkin.id, today=TODAY)


# =============================================================================
# Gate and reads
# =============================================================================

class TestGateAndReads:
    def test_gate_status(self, db_session, test_athlete, make_workout):
        workout = make_workout(test_athlete, TODAY)

        gate = service.get_pretraining_gate_status(db_session, test_athlete, workout.id, today=TODAY)
        assert gate.required is True
        assert gate.has_checkin is False
        assert gate.locked is True

        service.submit_checkin(db_session, test_athlete, fresh_request(), today=TODAY, coach=UNCONFIGURED)
        gate = service.get_pretraining_gate_status(db_session, test_athlete, workout.id, today=TODAY)
        assert gate.has_checkin is True

    def test_skip_requires_a_reason(self, db_session, test_athlete, make_workout):
        workout = make_workout(test_athlete, TODAY)

        with pytest.raises(ValidationError):
            service.skip_pretraining_check(db_session, test_athlete, workout.id, "  no ")

        service.skip_pretraining_check(db_session, test_athlete, workout.id, "Coach said go")
        entry = db_session.query(AuditLogEntry).filter(AuditLogEntry.action_type == PRETRAINING_SKIPPED).one()
        assert entry.details["reason"] == "Coach said go"

    def test_history_series_and_summary(self, db_session, test_athlete):
        for days_ago in (0, 1, 2, 10):
            day = TODAY - timedelta(days=days_ago)
            service.submit_checkin(
                db_session, test_athlete, exhausted_request(checkin_date=day), today=day, coach=UNCONFIGURED,
            )

        assert service.needs_checkin(db_session, test_athlete.id, today=TODAY) is False
        assert service.needs_checkin(db_session, test_athlete.id, today=TODAY + timedelta(days=1)) is True

        history = service.get_checkin_history(db_session, test_athlete.id, 7, today=TODAY)
        assert [c.date for c in history] == [TODAY, TODAY - timedelta(days=1), TODAY - timedelta(days=2)]

        series = service.get_readiness_series(db_session, test_athlete.id, TODAY - timedelta(days=30), TODAY)
        assert len(series) == 4
        assert series[0].date == TODAY - timedelta(days=10)
        with pytest.raises(ValidationError):
            service.get_readiness_series(db_session, test_athlete.id, TODAY, TODAY - timedelta(days=1))

        summary = service.get_weekly_summary(db_session, test_athlete.id, today=TODAY)
        assert summary.checkin_count == 3
        assert summary.average_readiness == 22
        assert "CHRONIC_FATIGUE" in [p.type for p in summary.patterns]

    def test_weekly_summary_window_boundary(self, db_session, test_athlete):
        for days_ago in (6, 7):
            day = TODAY - timedelta(days=days_ago)
            service.submit_checkin(
                db_session, test_athlete, fresh_request(checkin_date=day), today=day, coach=UNCONFIGURED,
            )

        summary = service.get_weekly_summary(db_session, test_athlete.id, today=TODAY)

        assert summary.checkin_count == 1
        assert summary.average_readiness == 100
