from sqlalchemy import Column, Integer, Boolean, Float, Date, DateTime, ForeignKey, Text, Index, JSON, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
from core.database import Base
import uuid
from datetime import datetime, timezone


# JSONB on PostgreSQL, plain JSON elsewhere (sqlite in tests).
JSONType = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Athlete(Base):
    __tablename__ = "athlete"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    email = Column(Text, unique=True, nullable=True)
    display_name = Column(Text, nullable=True)

    # --- PLAN ADAPTATION PREFERENCES ---
    # How far ahead the schedule is protected from direct edits.
    # LOCKED_TODAY | LOCKED_1_DAY | LOCKED_2_DAYS | LOCKED_3_DAYS | FLEXIBLE_WEEK
    plan_rigidity = Column(Text, default="LOCKED_1_DAY", nullable=False)

    # --- COACHING CONSTRAINTS (fed to the check-in coach prompt) ---
    weekly_hours_goal = Column(Float, nullable=True)
    experience_level = Column(Text, nullable=True)  # 'beginner', 'intermediate', 'advanced'
    # {"zone1": {"min": 110, "max": 130}, ...} heart-rate or power ranges
    training_zones = Column(JSONType, nullable=True)


class PlannedWorkout(Base):
    """
    A single scheduled session on an athlete's calendar.

    Represents what the athlete SHOULD do on a given day. The check-in engine
    may only change the mutable session fields (title through notes) by a
    direct adaptation on an unlocked session or an accepted plan change
    proposal on a locked one.
    """
    __tablename__ = "planned_workout"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    athlete_id = Column(Uuid(as_uuid=True), ForeignKey("athlete.id"), nullable=False, index=True)

    scheduled_date = Column(Date, nullable=False)

    # Mutable session fields
    title = Column(Text, nullable=False)
    workout_type = Column(Text, nullable=False)  # 'run', 'bike', 'swim', 'strength', 'recovery', 'rest', ...
    duration_minutes = Column(Float, nullable=True)
    tss = Column(Float, nullable=True)
    description_md = Column(Text, nullable=True)
    prescription_json = Column(Text, nullable=True)  # serialized structured prescription, opaque here
    notes = Column(Text, nullable=True)

    # Execution tracking
    planned = Column(Boolean, default=True, nullable=False)
    completed = Column(Boolean, default=False, nullable=False)
    started_at = Column(DateTime(timezone=True), nullable=True)

    # Provenance of the last automated change
    ai_generated = Column(Boolean, default=False, nullable=False)
    ai_reason = Column(Text, nullable=True)
    ai_confidence = Column(Integer, nullable=True)
    source = Column(Text, nullable=True)  # 'plan', 'daily-checkin', 'checkin-conflict', 'plan-change-proposal'

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=_utcnow)

    __table_args__ = (
        Index("ix_planned_workout_athlete_date", "athlete_id", "scheduled_date"),
    )


class DailyCheckin(Base):
    """
    One readiness check-in per athlete per calendar day (upserted).

    A row carries exactly one scale family: the 1-5 set (sleep_h ... stress_1_5)
    or the 0-100 set (*_100). Once locked_at is set the decision and response
    fields are frozen.
    """
    __tablename__ = "daily_checkin"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    athlete_id = Column(Uuid(as_uuid=True), ForeignKey("athlete.id"), nullable=False, index=True)
    date = Column(Date, nullable=False)
    workout_id = Column(Uuid(as_uuid=True), ForeignKey("planned_workout.id"), nullable=True)

    # --- 1-5 SCALE INPUTS ---
    sleep_h = Column(Float, nullable=True)  # Total sleep duration in hours
    sleep_quality_1_5 = Column(Integer, nullable=True)
    physical_fatigue_1_5 = Column(Integer, nullable=True)
    mental_readiness_1_5 = Column(Integer, nullable=True)
    motivation_1_5 = Column(Integer, nullable=True)
    muscle_soreness = Column(Text, nullable=True)  # NONE | MILD | MODERATE | SEVERE
    stress_1_5 = Column(Integer, nullable=True)

    # --- 0-100 SCALE INPUTS (premium check-in) ---
    sleep_quality_100 = Column(Integer, nullable=True)
    fatigue_100 = Column(Integer, nullable=True)
    motivation_100 = Column(Integer, nullable=True)
    soreness_100 = Column(Integer, nullable=True)
    stress_100 = Column(Integer, nullable=True)

    notes = Column(Text, nullable=True)
    notes_visibility = Column(Text, default="FULL_AI_ACCESS", nullable=False)  # FULL_AI_ACCESS | METRICS_ONLY | HIDDEN

    # --- DERIVED ---
    readiness_score = Column(Integer, nullable=True)
    top_factor = Column(Text, nullable=True)
    key_factors = Column(JSONType, nullable=True)  # list[str]
    recommendation = Column(Text, nullable=True)

    # --- DECISION STATE ---
    ai_decision = Column(Text, nullable=True)  # PROCEED | REDUCE_INTENSITY | SHORTEN | SWAP_RECOVERY | REST
    ai_confidence = Column(Integer, nullable=True)
    ai_explanation = Column(Text, nullable=True)
    ai_reason_json = Column(JSONType, nullable=True)  # tagged payload, see schemas.AiReasonPayload

    # --- ATHLETE RESPONSE ---
    user_accepted = Column(Boolean, nullable=True)  # None = undecided, True = accepted, False = overridden
    user_override_reason = Column(Text, nullable=True)

    locked_at = Column(DateTime(timezone=True), nullable=True)

    # Session fields at first check-in of the day (undo source), see schemas.OriginalWorkoutPayload
    original_workout_json = Column(JSONType, nullable=True)

    # --- CONFLICT (premium path) ---
    has_conflict = Column(Boolean, default=False, nullable=False)
    conflict_reason = Column(Text, nullable=True)
    suggested_change = Column(JSONType, nullable=True)  # see schemas.SuggestedChange

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=_utcnow)

    __table_args__ = (
        Index("uq_athlete_date", "athlete_id", "date", unique=True),
    )


class PlanChangeProposal(Base):
    """
    Deferred patch against a locked session.

    Lifecycle: PENDING -> APPLIED | DECLINED. Both outcomes are terminal.
    """
    __tablename__ = "plan_change_proposal"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    athlete_id = Column(Uuid(as_uuid=True), ForeignKey("athlete.id"), nullable=False, index=True)
    workout_id = Column(Uuid(as_uuid=True), ForeignKey("planned_workout.id"), nullable=False, index=True)
    checkin_id = Column(Uuid(as_uuid=True), ForeignKey("daily_checkin.id"), nullable=True, index=True)

    source_type = Column(Text, nullable=False)  # DAILY_CHECKIN | CHECKIN_CONFLICT
    summary = Column(Text, nullable=False)
    confidence = Column(Integer, nullable=True)
    patch_json = Column(JSONType, nullable=False)  # see schemas.ProposalPatch

    status = Column(Text, default="PENDING", nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    decided_at = Column(DateTime(timezone=True), nullable=True)


class AuditLogEntry(Base):
    """
    Append-only audit log for check-in engine actions.

    Non-negotiable invariants:
    - write-only from the application (no update/delete in code paths)
    - details carry enough to reconstruct the decision (before/after, ids)
    """

    __tablename__ = "audit_log"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False, index=True)

    athlete_id = Column(Uuid(as_uuid=True), ForeignKey("athlete.id"), nullable=False, index=True)
    actor_id = Column(Uuid(as_uuid=True), nullable=True)
    action_type = Column(Text, nullable=False, index=True)  # e.g. AI_WORKOUT_ADAPTED | CHECKIN_OVERRIDDEN

    target_type = Column(Text, nullable=False)  # CHECKIN | WORKOUT | PROPOSAL | ATHLETE
    target_id = Column(Text, nullable=True)
    summary = Column(Text, nullable=False)

    details = Column(JSONType, nullable=False, default=dict)
