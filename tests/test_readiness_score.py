"""
Tests for the premium (0-100) readiness scorer.
"""
import pytest

from core.exceptions import ValidationError
from services.readiness_score import (
    PremiumCheckinInput,
    calculate_premium_readiness,
    limiting_factor,
    recommendation_for,
    round_half_up,
    stress_penalty,
    validate_premium_inputs,
)


class TestCalculatePremiumReadiness:
    def test_balanced_checkin(self):
        result = calculate_premium_readiness(
            PremiumCheckinInput(sleep_quality=80, fatigue=30, motivation=70, soreness=20, stress=40)
        )
        # 28 + 17.5 + 14 + 16 = 75.5, no stress penalty at 40
        assert result.readiness_score == 76
        assert result.top_factor == "Fatigue"
        assert result.top_factor != "Soreness"
        assert result.recommendation == "Proceed as planned"

    def test_stress_penalty_lowers_score(self):
        calm = calculate_premium_readiness(PremiumCheckinInput(80, 30, 70, 20, 40))
        stressed = calculate_premium_readiness(PremiumCheckinInput(80, 30, 70, 20, 90))
        assert stressed.readiness_score == calm.readiness_score - 4

    def test_score_is_clamped(self):
        best = calculate_premium_readiness(PremiumCheckinInput(100, 0, 100, 0, 0))
        worst = calculate_premium_readiness(PremiumCheckinInput(0, 100, 0, 100, 100))
        assert best.readiness_score == 100
        assert worst.readiness_score == 0
        assert worst.recommendation == "Consider rest or light recovery"

    def test_tie_goes_to_first_listed_factor(self):
        # Sleep shortfall 20 * .35 = 7, fatigue 28 * .25 = 7
        inputs = PremiumCheckinInput(sleep_quality=80, fatigue=28, motivation=100, soreness=0, stress=0)
        assert limiting_factor(inputs) == "Sleep"


def test_stress_penalty_steps():
    assert stress_penalty(50) == 0
    assert stress_penalty(59) == 0
    assert stress_penalty(60) == 1
    assert stress_penalty(100) == 5


def test_round_half_up():
    assert round_half_up(75.5) == 76
    assert round_half_up(74.5) == 75
    assert round_half_up(74.49) == 74


@pytest.mark.parametrize("score,expected", [
    (75, "Proceed as planned"),
    (74, "Monitor how you feel"),
    (60, "Monitor how you feel"),
    (59, "Keep today easy"),
    (45, "Keep today easy"),
    (44, "Consider rest or light recovery"),
])
def test_recommendation_thresholds(score, expected):
    assert recommendation_for(score) == expected


class TestValidatePremiumInputs:
    def test_valid_inputs(self):
        inputs = validate_premium_inputs(80, 30, 70, 20, 40, notes="Felt good")
        assert inputs == PremiumCheckinInput(80, 30, 70, 20, 40)

    def test_out_of_range_names_field(self):
        with pytest.raises(ValidationError) as exc:
            validate_premium_inputs(80, 101, 70, 20, 40)
        assert exc.value.field == "fatigue"
        assert exc.value.status_code == 422

    def test_missing_value_rejected(self):
        with pytest.raises(ValidationError) as exc:
            validate_premium_inputs(80, 30, None, 20, 40)
        assert exc.value.field == "motivation"

    def test_long_notes_rejected(self):
        with pytest.raises(ValidationError) as exc:
            validate_premium_inputs(80, 30, 70, 20, 40, notes="x" * 241)
        assert exc.value.field == "notes"
