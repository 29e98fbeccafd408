"""
Rule-Based Check-in Evaluator (1-5 scale)

Deterministic baseline for the pre-training check-in. Always runs first, so
a decision exists before the check-in coach is tried, and stands on its own
whenever the coach is not configured or fails. No network, no database, no
failure mode.

Readiness (0-100):
    sleep       min(hours / 8, 1) * 15 + quality / 5 * 15     (30)
    fatigue     (6 - fatigue) / 5 * 15                         (15)
    soreness    NONE 15 / MILD 10 / MODERATE 5 / SEVERE 0      (15)
    mental      readiness / 5 * 15                             (15)
    motivation  motivation / 5 * 15                            (15)
    stress      (6 - stress) / 5 * 10                          (10)

Decision:
    >= 70 PROCEED, >= 50 REDUCE_INTENSITY, >= 40 SHORTEN,
    >= 30 SWAP_RECOVERY, otherwise REST

These weights are this evaluator's own and are not meant to agree with the
0-100 premium scorer in services.readiness_score. Any callable with the
``evaluate_pre_training`` signature can replace it (see Evaluator).
"""

import re
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Union

from schemas import AIDecision, MuscleSoreness

SORENESS_SCORES = {
    MuscleSoreness.NONE: 15,
    MuscleSoreness.MILD: 10,
    MuscleSoreness.MODERATE: 5,
    MuscleSoreness.SEVERE: 0,
}

DECISION_THRESHOLDS = [
    (70, AIDecision.PROCEED),
    (50, AIDecision.REDUCE_INTENSITY),
    (40, AIDecision.SHORTEN),
    (30, AIDecision.SWAP_RECOVERY),
]

MAX_EXPLANATION_SENTENCES = 3
PATTERN_MIN_CHECKINS = 3


@dataclass
class CheckInData:
    sleep_duration: float          # hours
    sleep_quality: int             # 1-5
    physical_fatigue: int          # 1-5 (5 = exhausted)
    mental_readiness: int          # 1-5
    motivation: int                # 1-5
    muscle_soreness: MuscleSoreness
    stress_level: int              # 1-5 (5 = very stressed)
    notes: Optional[str] = None


@dataclass
class TrainingContext:
    ctl: float = 0.0
    atl: float = 0.0
    tsb: float = 0.0
    yesterday_tss: float = 0.0
    planned_tss: float = 0.0
    planned_duration: float = 0.0
    workout_type: str = "none"


@dataclass
class EvaluationReason:
    factor: str
    value: Union[float, str]
    impact: str                    # 'positive' | 'negative'
    description: str


@dataclass
class WorkoutAdaptation:
    field: str                     # 'intensity' | 'duration' | 'type' | 'rest'
    original: Union[float, str, None]
    adapted: Union[float, str, None]
    reason: str


@dataclass
class EvaluationResult:
    readiness_score: int
    decision: AIDecision
    confidence: int
    explanation: str
    reasons: List[EvaluationReason] = field(default_factory=list)
    adaptations: List[WorkoutAdaptation] = field(default_factory=list)


@dataclass
class DetectedPattern:
    type: str
    severity: str                  # LOW | MEDIUM | HIGH
    message: str
    recommendation: str


Evaluator = Callable[[CheckInData, TrainingContext], EvaluationResult]


def _fmt(value: float) -> str:
    return f"{value:g}"


def calculate_readiness_score(checkin: CheckInData) -> int:
    sleep = min(checkin.sleep_duration / 8, 1) * 15 + checkin.sleep_quality / 5 * 15
    fatigue = (6 - checkin.physical_fatigue) / 5 * 15
    soreness = SORENESS_SCORES[MuscleSoreness(checkin.muscle_soreness)]
    mental = checkin.mental_readiness / 5 * 15
    motivation = checkin.motivation / 5 * 15
    stress = (6 - checkin.stress_level) / 5 * 10
    total = sleep + fatigue + soreness + mental + motivation + stress
    return max(0, min(100, int(total + 0.5)))


def map_score_to_decision(score: float) -> AIDecision:
    for threshold, decision in DECISION_THRESHOLDS:
        if score >= threshold:
            return decision
    return AIDecision.REST


def _analyze(checkin: CheckInData, context: TrainingContext) -> List[EvaluationReason]:
    reasons: List[EvaluationReason] = []

    def add(factor, value, impact, description):
        reasons.append(EvaluationReason(factor, value, impact, description))

    if checkin.sleep_duration < 6:
        add("Sleep Duration", checkin.sleep_duration, "negative",
            f"Only {_fmt(checkin.sleep_duration)} hours of sleep, below the recovery threshold")
    elif checkin.sleep_duration >= 7.5:
        add("Sleep Duration", checkin.sleep_duration, "positive",
            f"{_fmt(checkin.sleep_duration)} hours of quality rest")

    if checkin.sleep_quality <= 2:
        add("Sleep Quality", checkin.sleep_quality, "negative",
            "Poor sleep quality affects recovery and performance")
    elif checkin.sleep_quality >= 4:
        add("Sleep Quality", checkin.sleep_quality, "positive",
            "Good sleep quality supports optimal performance")

    if checkin.physical_fatigue >= 4:
        add("Physical Fatigue", checkin.physical_fatigue, "negative",
            "High physical fatigue, your body needs more recovery time")
    elif checkin.physical_fatigue <= 2:
        add("Physical Fatigue", checkin.physical_fatigue, "positive",
            "Feeling physically fresh and recovered")

    soreness = MuscleSoreness(checkin.muscle_soreness)
    if soreness == MuscleSoreness.SEVERE:
        add("Muscle Soreness", soreness.value, "negative",
            "Severe muscle soreness, training may worsen recovery")
    elif soreness == MuscleSoreness.MODERATE:
        add("Muscle Soreness", soreness.value, "negative",
            "Moderate soreness, consider reducing intensity")

    if checkin.mental_readiness <= 2:
        add("Mental Readiness", checkin.mental_readiness, "negative",
            "Low mental readiness, forcing training may be counterproductive")
    elif checkin.mental_readiness >= 4:
        add("Mental Readiness", checkin.mental_readiness, "positive",
            "Mentally prepared and focused")

    if checkin.motivation <= 2:
        add("Motivation", checkin.motivation, "negative",
            "Low motivation, consider a lighter or more enjoyable session")
    elif checkin.motivation >= 4:
        add("Motivation", checkin.motivation, "positive",
            "High motivation, a great mindset for training")

    if checkin.stress_level >= 4:
        add("Stress Level", checkin.stress_level, "negative",
            "High stress levels, training may add to overall load")

    if context.tsb < -20:
        add("Training Form (TSB)", round(context.tsb, 1), "negative",
            "Deep fatigue state, accumulated training load is high")
    elif context.tsb > 10:
        add("Training Form (TSB)", round(context.tsb, 1), "positive",
            "Fresh and well-recovered")

    if context.yesterday_tss > 100:
        add("Yesterday's Load", round(context.yesterday_tss, 1), "negative",
            "Heavy training yesterday, you may still be recovering")

    return reasons


def calculate_confidence(readiness_score: float, reasons: Sequence[EvaluationReason]) -> int:
    positive = sum(1 for r in reasons if r.impact == "positive")
    negative = sum(1 for r in reasons if r.impact == "negative")
    adjustment = max(-10, min(8, (positive - negative) * 3))
    return max(35, min(95, int(readiness_score + 0.5) + adjustment + 5))


def _adaptations_for(decision: AIDecision, context: TrainingContext) -> List[WorkoutAdaptation]:
    if decision == AIDecision.REDUCE_INTENSITY:
        return [WorkoutAdaptation("intensity", "100%", "80-85%", "Reducing intensity to match current readiness")]
    if decision == AIDecision.SHORTEN:
        return [
            WorkoutAdaptation(
                "duration",
                context.planned_duration,
                int(context.planned_duration * 0.7 + 0.5),
                "Shortening session to prevent overreaching",
            ),
            WorkoutAdaptation("intensity", "100%", "85-90%", "Slightly reducing intensity for shorter session"),
        ]
    if decision == AIDecision.SWAP_RECOVERY:
        return [
            WorkoutAdaptation("type", context.workout_type, "Recovery", "Swapping to a recovery session"),
            WorkoutAdaptation("duration", context.planned_duration, "30-45 min",
                              "Light movement to promote blood flow and recovery"),
        ]
    if decision == AIDecision.REST:
        return [WorkoutAdaptation("rest", context.workout_type, "Rest Day", "Complete rest recommended for recovery")]
    return []


def limit_sentences(text: str, max_sentences: int = MAX_EXPLANATION_SENTENCES) -> str:
    normalized = re.sub(r"\s+", " ", text).strip()
    if not normalized:
        return ""
    sentences = re.split(r"(?<=[.!?])\s+", normalized)
    return " ".join(sentences[:max_sentences]).strip()


def _sentence(text: str) -> str:
    text = text.strip()
    return text if text.endswith((".", "!", "?")) else f"{text}."


def generate_explanation(decision: AIDecision, readiness_score: int, reasons: Sequence[EvaluationReason]) -> str:
    negative = [r for r in reasons if r.impact == "negative"]
    positive = [r for r in reasons if r.impact == "positive"]

    if decision == AIDecision.PROCEED:
        if positive:
            text = (
                f"You're in a good place today with a readiness score of {readiness_score}/100. "
                f"{_sentence(positive[0].description)} Let's make the most of this session."
            )
        else:
            text = (
                f"Your readiness looks solid at {readiness_score}/100. "
                "You're good to go with today's planned workout."
            )
    elif decision == AIDecision.REDUCE_INTENSITY:
        why = negative[0].description if negative else "Some signals suggest caution"
        text = (
            f"I'd suggest dialing back the intensity a bit today. {_sentence(why)} "
            "Training at 80-85% will still give you a quality session."
        )
    elif decision == AIDecision.SHORTEN:
        why = negative[0].description if negative else "Your body is asking for a lighter day"
        text = (
            f"Let's make today a shorter session. {_sentence(why)} "
            "A focused 70% duration workout keeps you on track without pushing too hard."
        )
    elif decision == AIDecision.SWAP_RECOVERY:
        combined = " and ".join(r.description.lower() for r in negative[:2])
        why = combined[:1].upper() + combined[1:] if combined else "Multiple signals suggest your body needs gentler movement"
        text = (
            f"Today might be better as a recovery day. {_sentence(why)} "
            "Light activity will help you bounce back faster."
        )
    else:
        text = (
            "I'm recommending a rest day today. Your body is sending clear signals that it needs recovery. "
            "Taking today off will help you come back stronger."
        )
    return limit_sentences(text)


def evaluate_pre_training(checkin: CheckInData, context: TrainingContext) -> EvaluationResult:
    score = calculate_readiness_score(checkin)
    reasons = _analyze(checkin, context)
    decision = map_score_to_decision(score)
    return EvaluationResult(
        readiness_score=score,
        decision=decision,
        confidence=calculate_confidence(score, reasons),
        explanation=generate_explanation(decision, score, reasons),
        reasons=reasons,
        adaptations=_adaptations_for(decision, context),
    )


def detect_patterns(checkins: Sequence[CheckInData]) -> List[DetectedPattern]:
    """Flag multi-day trends. Needs at least PATTERN_MIN_CHECKINS check-ins."""
    if len(checkins) < PATTERN_MIN_CHECKINS:
        return []

    n = len(checkins)
    avg_fatigue = sum(c.physical_fatigue for c in checkins) / n
    avg_motivation = sum(c.motivation for c in checkins) / n
    avg_stress = sum(c.stress_level for c in checkins) / n
    avg_sleep = sum(c.sleep_duration for c in checkins) / n

    patterns: List[DetectedPattern] = []
    if avg_fatigue >= 3.5:
        patterns.append(DetectedPattern(
            "CHRONIC_FATIGUE",
            "HIGH" if avg_fatigue >= 4 else "MEDIUM",
            f"Average fatigue of {avg_fatigue:.1f}/5 over the past {n} check-ins",
            "Consider a deload week or additional recovery days",
        ))
    if avg_motivation <= 2.5:
        patterns.append(DetectedPattern(
            "MOTIVATION_DROP",
            "HIGH" if avg_motivation <= 2 else "MEDIUM",
            f"Motivation averaging {avg_motivation:.1f}/5, below optimal levels",
            "Mix up training with enjoyable activities or take a mental break",
        ))
    if avg_stress >= 3.5:
        patterns.append(DetectedPattern(
            "STRESS_ACCUMULATION",
            "HIGH" if avg_stress >= 4 else "MEDIUM",
            f"Elevated stress averaging {avg_stress:.1f}/5",
            "Prioritize stress management and consider reducing training volume",
        ))
    if avg_sleep < 6.5:
        patterns.append(DetectedPattern(
            "SLEEP_DEFICIT",
            "HIGH" if avg_sleep < 6 else "MEDIUM",
            f"Average sleep of {avg_sleep:.1f} hours, below the recovery threshold",
            "Focus on sleep hygiene and aim for 7-8 hours nightly",
        ))
    if avg_fatigue <= 2 and avg_motivation >= 4 and avg_stress <= 2:
        patterns.append(DetectedPattern(
            "POSITIVE_TREND",
            "LOW",
            "Great balance of recovery, motivation and stress management",
            "Keep it up, you're in a great training state",
        ))
    return patterns
