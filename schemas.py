"""
Pydantic models for the check-in engine.

Three groups:
- the strict recommendation schema the check-in coach must satisfy
- tagged payloads persisted in JSON columns (kind + version, parsed back
  through discriminated unions so the shape read equals the shape written)
- request/response models for the routers
"""
from datetime import date, datetime
from enum import Enum
from typing import Annotated, List, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel


class AIDecision(str, Enum):
    PROCEED = "PROCEED"
    REDUCE_INTENSITY = "REDUCE_INTENSITY"
    SHORTEN = "SHORTEN"
    SWAP_RECOVERY = "SWAP_RECOVERY"
    REST = "REST"


class MuscleSoreness(str, Enum):
    NONE = "NONE"
    MILD = "MILD"
    MODERATE = "MODERATE"
    SEVERE = "SEVERE"


class NotesVisibility(str, Enum):
    FULL_AI_ACCESS = "FULL_AI_ACCESS"
    METRICS_ONLY = "METRICS_ONLY"
    HIDDEN = "HIDDEN"


RecommendationType = Literal["keep", "reduce_intensity", "reduce_volume", "swap_session", "rest"]

ProposalStatus = Literal["PENDING", "APPLIED", "DECLINED"]


# =============================================================================
# Recommendation schema
# =============================================================================

class WorkoutSnapshot(BaseModel):
    """Mutable fields of a scheduled session. JSON keys are camelCase (durationMin, descriptionMd, ...)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    title: str = Field(..., min_length=1)
    type: str = Field(..., min_length=1)
    duration_min: Optional[float] = Field(default=None, ge=0)
    tss: Optional[float] = Field(default=None, ge=0)
    description_md: Optional[str] = None
    prescription_json: Optional[str] = None
    notes: Optional[str] = None


class RecommendationChanges(BaseModel):
    apply: bool
    requires_confirmation: bool
    before: Optional[WorkoutSnapshot] = None
    after: Optional[WorkoutSnapshot] = None
    rationale: List[str] = Field(default_factory=list)


class CheckinRecommendation(BaseModel):
    readiness_score: float = Field(..., ge=0, le=100)
    key_factors: List[str] = Field(..., max_length=6)
    recommendation_type: RecommendationType
    explanation: str = Field(..., min_length=1)
    changes: RecommendationChanges
    coach_message: str = Field(..., min_length=1)


# =============================================================================
# Tagged payloads (JSON columns)
# =============================================================================

class ReasonItem(BaseModel):
    factor: str
    value: Union[float, str]
    impact: Literal["positive", "negative"]
    description: str


class AdaptationItem(BaseModel):
    field: str
    original: Union[float, str, None] = None
    adapted: Union[float, str, None] = None
    reason: str


class CoachReasonPayload(BaseModel):
    """ai_reason_json when the check-in coach produced a valid recommendation."""

    kind: Literal["coach_recommendation"] = "coach_recommendation"
    version: Literal[1] = 1
    analysis_status: Literal["ok"] = "ok"
    recommendation: CheckinRecommendation


class RuleReasonPayload(BaseModel):
    """ai_reason_json when the rule-based evaluation stands (coach skipped or failed)."""

    kind: Literal["rule_evaluation"] = "rule_evaluation"
    version: Literal[1] = 1
    analysis_status: Literal["not_configured", "failed"]
    failure_reason: Optional[str] = None
    decision: AIDecision
    confidence: int
    reasons: List[ReasonItem] = Field(default_factory=list)
    adaptations: List[AdaptationItem] = Field(default_factory=list)
    recommendation: CheckinRecommendation


AiReasonPayload = Annotated[
    Union[CoachReasonPayload, RuleReasonPayload],
    Field(discriminator="kind"),
]
ai_reason_adapter = TypeAdapter(AiReasonPayload)


class OriginalWorkoutPayload(BaseModel):
    """original_workout_json: every tracked session field at first check-in of the day."""

    kind: Literal["workout_original"] = "workout_original"
    version: Literal[1] = 1
    workout_id: UUID
    snapshot: WorkoutSnapshot
    ai_generated: bool = False
    ai_reason: Optional[str] = None
    ai_confidence: Optional[int] = None
    source: Optional[str] = None


class WorkoutPatch(BaseModel):
    """Field-level update set for a PlannedWorkout. None means leave unchanged."""

    title: Optional[str] = None
    workout_type: Optional[str] = None
    duration_minutes: Optional[float] = None
    tss: Optional[float] = None
    description_md: Optional[str] = None
    prescription_json: Optional[str] = None
    notes: Optional[str] = None
    ai_generated: Optional[bool] = None
    ai_reason: Optional[str] = None
    ai_confidence: Optional[int] = None
    source: Optional[str] = None


class ProposalPatch(BaseModel):
    kind: Literal["workout_patch"] = "workout_patch"
    version: Literal[1] = 1
    workout_id: UUID
    update: WorkoutPatch


class SwapEasyChange(BaseModel):
    action: Literal["swap_easy"] = "swap_easy"
    version: Literal[1] = 1
    new_type: str = "easy"
    new_title: str = "Easy Recovery Run"
    reason: str


class ReduceDurationChange(BaseModel):
    action: Literal["reduce_duration"] = "reduce_duration"
    version: Literal[1] = 1
    duration_factor: float = Field(default=0.6, gt=0, le=1)
    reason: str


class SwapRecoveryChange(BaseModel):
    action: Literal["swap_recovery"] = "swap_recovery"
    version: Literal[1] = 1
    new_type: str = "recovery"
    new_title: str = "Recovery Session"
    reason: str


class ReduceIntensityChange(BaseModel):
    action: Literal["reduce_intensity"] = "reduce_intensity"
    version: Literal[1] = 1
    intensity_factor: float = Field(default=0.85, gt=0, le=1)
    reason: str


SuggestedChange = Annotated[
    Union[SwapEasyChange, ReduceDurationChange, SwapRecoveryChange, ReduceIntensityChange],
    Field(discriminator="action"),
]
suggested_change_adapter = TypeAdapter(SuggestedChange)


# =============================================================================
# Requests
# =============================================================================

class CheckinSubmitRequest(BaseModel):
    checkin_date: Optional[date] = None
    workout_id: Optional[UUID] = None
    sleep_duration_h: float = Field(..., ge=0, le=24)
    sleep_quality: int = Field(..., ge=1, le=5)
    physical_fatigue: int = Field(..., ge=1, le=5)
    mental_readiness: int = Field(..., ge=1, le=5)
    motivation: int = Field(..., ge=1, le=5)
    muscle_soreness: MuscleSoreness
    stress_level: int = Field(..., ge=1, le=5)
    notes: Optional[str] = Field(default=None, max_length=1000)


class PremiumCheckinRequest(BaseModel):
    # Ranges are enforced by services.readiness_score.validate_premium_inputs so the
    # same checks apply to non-HTTP callers.
    checkin_date: Optional[date] = None
    sleep_quality: int
    fatigue: int
    motivation: int
    soreness: int
    stress: int
    notes: Optional[str] = None
    notes_visibility: NotesVisibility = NotesVisibility.FULL_AI_ACCESS


class OverrideRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class SkipPretrainingRequest(BaseModel):
    reason: str = Field(..., max_length=500)


class PlanRigidityUpdate(BaseModel):
    plan_rigidity: Literal["LOCKED_TODAY", "LOCKED_1_DAY", "LOCKED_2_DAYS", "LOCKED_3_DAYS", "FLEXIBLE_WEEK"]


# =============================================================================
# Responses
# =============================================================================

class CheckinResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    athlete_id: UUID
    date: date
    workout_id: Optional[UUID] = None
    readiness_score: Optional[int] = None
    top_factor: Optional[str] = None
    key_factors: Optional[List[str]] = None
    recommendation: Optional[str] = None
    ai_decision: Optional[AIDecision] = None
    ai_confidence: Optional[int] = None
    ai_explanation: Optional[str] = None
    user_accepted: Optional[bool] = None
    user_override_reason: Optional[str] = None
    locked_at: Optional[datetime] = None
    has_conflict: bool = False
    conflict_reason: Optional[str] = None
    suggested_change: Optional[dict] = None


class ProposalResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    workout_id: UUID
    checkin_id: Optional[UUID] = None
    source_type: str
    summary: str
    confidence: Optional[int] = None
    patch_json: dict
    status: ProposalStatus
    created_at: datetime
    decided_at: Optional[datetime] = None


class AcceptResponse(BaseModel):
    outcome: Literal["acknowledged", "applied", "proposed"]
    checkin: CheckinResponse
    proposal_id: Optional[UUID] = None
    before: Optional[WorkoutSnapshot] = None
    after: Optional[WorkoutSnapshot] = None


class GateStatusResponse(BaseModel):
    workout_id: UUID
    required: bool
    has_checkin: bool
    checkin_id: Optional[UUID] = None
    locked: bool
    plan_rigidity: str


class ReadinessPoint(BaseModel):
    date: date
    readiness_score: Optional[int] = None
    top_factor: Optional[str] = None
    has_conflict: bool = False


class OverrideByDecision(BaseModel):
    decision: str
    count: int


class RecentOverride(BaseModel):
    date: date
    decision: Optional[str] = None
    reason: Optional[str] = None


class OverrideStatsResponse(BaseModel):
    window_days: int
    total_checkins: int
    total_overrides: int
    override_rate: int
    overrides_by_decision: List[OverrideByDecision]
    recent_overrides: List[RecentOverride]
    insight: Optional[str] = None


class PatternResponse(BaseModel):
    type: str
    severity: Literal["LOW", "MEDIUM", "HIGH"]
    message: str


class WeeklySummaryResponse(BaseModel):
    checkin_count: int
    average_readiness: Optional[float] = None
    average_sleep_h: Optional[float] = None
    average_fatigue: Optional[float] = None
    average_motivation: Optional[float] = None
    average_stress: Optional[float] = None
    patterns: List[PatternResponse]
