"""
Premium Readiness Score (0-100 self-report)

Maps five self-reported dimensions, each on a 0-100 slider, to a single
readiness score, the dimension that limits it most, and one line of advice.

Formula:
    readiness = 0.35 * sleep_quality
              + 0.25 * (100 - fatigue)
              + 0.20 * motivation
              + 0.20 * (100 - soreness)
              - stress_penalty(stress)

    stress_penalty is 0 up to stress 50, then 1 point per full 10 above it.
    The result is rounded half-up and clamped to [0, 100].

Limiting factor:
    Each dimension's distance from its ideal (100 for "good" sliders, 0 for
    "bad" ones) is weighted; the largest weighted shortfall wins. Ties go to
    the dimension listed first in LIMITING_FACTOR_WEIGHTS.

The scorer is pure. Range validation happens in validate_premium_inputs,
before any side effect, so callers never get a defaulted field.
"""

import math
from dataclasses import dataclass
from typing import Dict, Optional

from core.exceptions import ValidationError

WEIGHTS = {
    "sleep_quality": 0.35,
    "fatigue": 0.25,
    "motivation": 0.20,
    "soreness": 0.20,
}

STRESS_PENALTY_THRESHOLD = 50
STRESS_PENALTY_STEP = 10

# Shortfall weights for the limiting factor (display name -> weight).
LIMITING_FACTOR_WEIGHTS = {
    "Sleep": 0.35,
    "Fatigue": 0.25,
    "Motivation": 0.20,
    "Soreness": 0.20,
    "Stress": 0.15,
}

MAX_NOTES_LENGTH = 240


@dataclass(frozen=True)
class PremiumCheckinInput:
    sleep_quality: int
    fatigue: int
    motivation: int
    soreness: int
    stress: int


@dataclass(frozen=True)
class PremiumReadinessResult:
    readiness_score: int
    top_factor: str
    recommendation: str


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def stress_penalty(stress: float) -> int:
    if stress <= STRESS_PENALTY_THRESHOLD:
        return 0
    return int((stress - STRESS_PENALTY_THRESHOLD) // STRESS_PENALTY_STEP)


def _shortfalls(inputs: PremiumCheckinInput) -> Dict[str, float]:
    return {
        "Sleep": 100 - inputs.sleep_quality,
        "Fatigue": inputs.fatigue,
        "Motivation": 100 - inputs.motivation,
        "Soreness": inputs.soreness,
        "Stress": inputs.stress,
    }


def limiting_factor(inputs: PremiumCheckinInput) -> str:
    shortfalls = _shortfalls(inputs)
    best_name = None
    best_impact = -1.0
    for name, weight in LIMITING_FACTOR_WEIGHTS.items():
        impact = shortfalls[name] * weight
        if impact > best_impact:
            best_name, best_impact = name, impact
    return best_name


def recommendation_for(score: int) -> str:
    if score >= 75:
        return "Proceed as planned"
    if score >= 60:
        return "Monitor how you feel"
    if score >= 45:
        return "Keep today easy"
    return "Consider rest or light recovery"


def calculate_premium_readiness(inputs: PremiumCheckinInput) -> PremiumReadinessResult:
    raw = (
        WEIGHTS["sleep_quality"] * inputs.sleep_quality
        + WEIGHTS["fatigue"] * (100 - inputs.fatigue)
        + WEIGHTS["motivation"] * inputs.motivation
        + WEIGHTS["soreness"] * (100 - inputs.soreness)
        - stress_penalty(inputs.stress)
    )
    score = max(0, min(100, round_half_up(raw)))
    return PremiumReadinessResult(
        readiness_score=score,
        top_factor=limiting_factor(inputs),
        recommendation=recommendation_for(score),
    )


def validate_premium_inputs(
    sleep_quality,
    fatigue,
    motivation,
    soreness,
    stress,
    notes: Optional[str] = None,
) -> PremiumCheckinInput:
    """
    Range-check a premium check-in. Raises ValidationError naming the first bad field.
    """
    values = {
        "sleep_quality": sleep_quality,
        "fatigue": fatigue,
        "motivation": motivation,
        "soreness": soreness,
        "stress": stress,
    }
    for name, value in values.items():
        if value is None:
            raise ValidationError(f"{name} is required", field=name)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValidationError(f"{name} must be a number", field=name)
        if value < 0 or value > 100:
            raise ValidationError(f"{name} must be between 0 and 100", field=name)
    if notes is not None and len(notes) > MAX_NOTES_LENGTH:
        raise ValidationError(f"notes must be at most {MAX_NOTES_LENGTH} characters", field="notes")
    return PremiumCheckinInput(**{k: round_half_up(v) for k, v in values.items()})
