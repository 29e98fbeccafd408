"""
Check-in Coach (external recommendation)

Asks a chat-completion model for a richer, context-aware recommendation on
top of the rule-based baseline.

The coach ADVISES, the engine DECIDES what gets written:
    - the model must answer with one JSON object matching CheckinRecommendation
      exactly (strict types, five recommendation types, <= 6 key factors)
    - anything else (transport error, empty body, unparseable JSON, schema
      mismatch) is a CoachFailed result, never an exception, and is not retried
    - before/after on a valid answer are recomputed server-side
      (services.workout_adaptation.normalize_recommendation)

No OPENAI_API_KEY and no injected client = CoachFailed("not_configured")
without a call; the rule-based decision stands.
"""

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from openai import OpenAI
from pydantic import ValidationError as PydanticValidationError

from core.config import settings
from schemas import CheckinRecommendation, WorkoutSnapshot
from services.checkin_evaluator import CheckInData
from services.training_load import GuardrailState, Last7Summary

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

FAILURE_NOT_CONFIGURED = "not_configured"
FAILURE_REQUEST = "request_failed"
FAILURE_EMPTY = "empty_response"
FAILURE_INVALID_JSON = "invalid_json"
FAILURE_SCHEMA = "schema_invalid"


@dataclass(frozen=True)
class CoachOk:
    recommendation: CheckinRecommendation
    latency_ms: int = 0


@dataclass(frozen=True)
class CoachFailed:
    reason: str
    detail: Optional[str] = None


CoachResult = Union[CoachOk, CoachFailed]


# ---------------------------------------------------------------------------
# Prompt
# ---------------------------------------------------------------------------

SYSTEM_PROMPT = "\n".join([
    "You are a premium endurance coach. Return ONLY valid JSON.",
    "Follow this schema exactly:",
    "{",
    '  "readiness_score": 0-100,',
    '  "key_factors": ["sleep low", "stress high"],',
    '  "recommendation_type": "keep" | "reduce_intensity" | "reduce_volume" | "swap_session" | "rest",',
    '  "explanation": "short, concrete",',
    '  "changes": {',
    '    "apply": true/false,',
    '    "requires_confirmation": true/false,',
    '    "before": { "title": "...", "type": "...", "durationMin": 60, "tss": 50 },',
    '    "after": { "title": "...", "type": "...", "durationMin": 45, "tss": 40 },',
    '    "rationale": ["...", "..."]',
    "  },",
    '  "coach_message": "coach-style guidance"',
    "}",
    "key_factors has at most 6 entries.",
    "If there is no planned workout, set recommendation_type to keep and changes.apply=false.",
])


@dataclass
class CoachPromptInput:
    checkin: CheckInData
    planned_workout: Optional[WorkoutSnapshot]
    last_7: Last7Summary
    guardrails: GuardrailState
    weekly_hours_goal: Optional[float] = None
    experience_level: Optional[str] = None
    zones: Dict[str, Any] = field(default_factory=dict)
    include_notes: bool = True
    behavior_insight: Optional[str] = None


def _na(value: Any) -> Any:
    return "n/a" if value is None else value


def build_user_prompt(data: CoachPromptInput) -> str:
    c = data.checkin
    soreness = getattr(c.muscle_soreness, "value", c.muscle_soreness)
    notes = c.notes if (data.include_notes and c.notes) else None
    compliance = _na(data.last_7.compliance_percent)
    planned = (
        json.dumps(data.planned_workout.model_dump(mode="json", by_alias=True))
        if data.planned_workout else "none"
    )
    lines: List[str] = [
        "Check-in:",
        f"sleepDuration={c.sleep_duration}h, sleepQuality={c.sleep_quality}/5, "
        f"fatigue={c.physical_fatigue}/5, soreness={soreness}, mental={c.mental_readiness}/5, "
        f"motivation={c.motivation}/5, stress={c.stress_level}/5",
        f"note={notes}" if notes else "note=none",
        "",
        "Planned workout for today:",
        planned,
        "",
        "Last 7 days summary:",
        f"volume={data.last_7.volume_hours}h, TSS={data.last_7.total_tss}, compliance={compliance}%",
        "",
        f"Constraints: weeklyHoursGoal={_na(data.weekly_hours_goal)}, "
        f"experience={_na(data.experience_level)}, zones={json.dumps(data.zones or {})}",
        "",
        f"Guardrails: rampRate={_na(data.guardrails.ramp_rate)}, status={_na(data.guardrails.risk_status)}, "
        f"warnings={'; '.join(data.guardrails.warnings) or 'none'}",
    ]
    if data.behavior_insight:
        lines += ["", f"Athlete history: {data.behavior_insight}"]
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def extract_json_object(text: str) -> str:
    """
    Return the JSON object text in a model response: the body itself when it
    is bare JSON, otherwise the span from the first "{" to the last "}".
    Raises ValueError when there is no parseable object.
    """
    if not text or not text.strip():
        raise ValueError("Empty model response")

    candidate = text.strip()
    try:
        parsed = json.loads(candidate)
    except ValueError:
        start = text.find("{")
        end = text.rfind("}")
        if start == -1 or end == -1 or end <= start:
            raise ValueError("No JSON object found in model response")
        candidate = text[start : end + 1]
        parsed = json.loads(candidate)

    if not isinstance(parsed, dict):
        raise ValueError("Model response JSON is not an object")
    return candidate


def parse_recommendation(text: str) -> CoachResult:
    """Strictly parse raw model text. Never raises."""
    if not text or not text.strip():
        return CoachFailed(FAILURE_EMPTY)
    try:
        candidate = extract_json_object(text)
    except ValueError as e:
        return CoachFailed(FAILURE_INVALID_JSON, str(e))
    try:
        recommendation = CheckinRecommendation.model_validate_json(candidate, strict=True)
    except PydanticValidationError as e:
        return CoachFailed(FAILURE_SCHEMA, f"{e.error_count()} validation error(s)")
    return CoachOk(recommendation)


# ---------------------------------------------------------------------------
# Coach service
# ---------------------------------------------------------------------------

class CheckinCoach:
    """
    Usage:
        coach = CheckinCoach.from_settings()
        result = coach.recommend(prompt_input)
        if isinstance(result, CoachOk):
            ...  # normalize and use result.recommendation
        else:
            ...  # keep the rule-based decision, result.reason says why
    """

    def __init__(
        self,
        client=None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ):
        """
        Args:
            client: openai.OpenAI instance (None = coach not configured)
        """
        self.client = client
        self.model = model or settings.CHECKIN_COACH_MODEL
        self.temperature = settings.CHECKIN_COACH_TEMPERATURE if temperature is None else temperature
        self.max_tokens = max_tokens or settings.CHECKIN_COACH_MAX_TOKENS

    @classmethod
    def from_settings(cls) -> "CheckinCoach":
        client = OpenAI(api_key=settings.OPENAI_API_KEY) if settings.OPENAI_API_KEY else None
        return cls(client=client)

    @property
    def configured(self) -> bool:
        return self.client is not None

    def recommend(self, data: CoachPromptInput) -> CoachResult:
        if not self.configured:
            return CoachFailed(FAILURE_NOT_CONFIGURED)

        start = time.time()
        try:
            raw_text = self._call_llm(build_user_prompt(data))
        except Exception as e:
            logger.warning(
                "Check-in coach request failed",
                extra={"extra_fields": {"reason": FAILURE_REQUEST, "error": f"{type(e).__name__}: {e}"}},
            )
            return CoachFailed(FAILURE_REQUEST, f"{type(e).__name__}: {e}")

        result = parse_recommendation(raw_text)
        if isinstance(result, CoachFailed):
            logger.warning(
                "Check-in coach response rejected",
                extra={"extra_fields": {"reason": result.reason, "detail": result.detail}},
            )
            return result
        return CoachOk(result.recommendation, latency_ms=int((time.time() - start) * 1000))

    def _call_llm(self, user_prompt: str) -> str:
        response = self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": user_prompt},
            ],
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )
        return response.choices[0].message.content or ""
