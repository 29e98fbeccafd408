"""
Tests for the training load context fed to the evaluator and coach prompt.
"""
from datetime import date, timedelta

from models import PlannedWorkout
from services.training_load import (
    HIGH_RAMP_WARNING,
    build_load_snapshot,
    build_training_context,
    compute_guardrail_state,
    compute_load,
    summarize_last_7_days,
    workout_tss,
)

TODAY = date(2026, 3, 10)


def session(days_ago, tss=50.0, duration=60.0, completed=True, planned=True):
    return PlannedWorkout(
        scheduled_date=TODAY - timedelta(days=days_ago),
        title="Run",
        workout_type="run",
        tss=tss,
        duration_minutes=duration,
        completed=completed,
        planned=planned,
    )


def test_workout_tss_estimates_from_duration():
    assert workout_tss(session(0, tss=None, duration=50)) == 40.0


def test_summarize_last_7_days():
    workouts = [session(0), session(3), session(6, completed=False), session(7)]
    summary = summarize_last_7_days(workouts, TODAY)

    assert summary.completed_count == 2
    assert summary.planned_count == 3
    assert summary.compliance_percent == 67
    assert summary.total_tss == 100.0
    assert summary.volume_hours == 2.0


def test_summary_without_plan_has_no_compliance():
    assert summarize_last_7_days([], TODAY).compliance_percent is None


class TestGuardrails:
    def test_no_previous_week(self):
        state = compute_guardrail_state([session(1)], TODAY)
        assert state.ramp_rate is None
        assert state.risk_status == "NORMAL"

    def test_high_ramp(self):
        workouts = [session(1, tss=140), session(8, tss=100)]
        state = compute_guardrail_state(workouts, TODAY)
        assert state.ramp_rate == 1.4
        assert state.risk_status == "HIGH"
        assert state.warnings == [HIGH_RAMP_WARNING]

    def test_normal_ramp(self):
        state = compute_guardrail_state([session(1, tss=110), session(8, tss=100)], TODAY)
        assert state.ramp_rate == 1.1
        assert state.risk_status == "NORMAL"


def test_compute_load_fresh_after_rest():
    load = compute_load([session(d, tss=80) for d in range(20, 50)], TODAY)
    assert load["ctl"] > load["atl"]
    assert load["tsb"] > 0


def test_build_snapshot_and_context(db_session, test_athlete, make_workout):
    make_workout(test_athlete, TODAY - timedelta(days=1), tss=120, completed=True)
    today_session = make_workout(test_athlete, TODAY, tss=85, duration_minutes=60)

    snapshot = build_load_snapshot(db_session, test_athlete.id, TODAY)
    assert snapshot.yesterday_tss == 120.0
    assert snapshot.last_7.completed_count == 1

    context = build_training_context(snapshot, today_session)
    assert context.planned_tss == 85.0
    assert context.planned_duration == 60.0
    assert context.workout_type == "threshold"
    assert build_training_context(snapshot, None).workout_type == "none"
