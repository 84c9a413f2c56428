"""
Tests for engine settings validation and the derived configuration objects.
"""
import pytest
from pydantic import ValidationError as PydanticValidationError

from assessment_engine.core.config import CATConfig, ReviewConfig, Settings
from assessment_engine.core.exceptions import ValidationError
from assessment_engine.domain_types import IRTModel, SelectionStrategy


class TestSettingsValidation:
    def test_defaults(self):
        s = Settings()
        assert s.CAT_MIN_QUESTIONS == 5
        assert s.CAT_MAX_QUESTIONS == 20
        assert s.CAT_SE_THRESHOLD == pytest.approx(0.30)
        assert s.SR_MIN_EASE_FACTOR == pytest.approx(1.3)

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("CAT_SE_THRESHOLD", "0.25")
        monkeypatch.setenv("CAT_MODEL", "3pl")
        s = Settings()
        assert s.CAT_SE_THRESHOLD == pytest.approx(0.25)
        assert s.CAT_MODEL == IRTModel.THREE_PL

    def test_theta_bounds_ordered(self):
        with pytest.raises(PydanticValidationError, match="THETA_MIN"):
            Settings(THETA_MIN=2.0, THETA_MAX=-2.0)

    def test_initial_se_within_bounds(self):
        with pytest.raises(PydanticValidationError, match="SE_FLOOR"):
            Settings(INITIAL_SE=2.0, SE_CEILING=1.0)

    def test_starting_ability_within_bounds(self):
        with pytest.raises(PydanticValidationError, match="CAT_STARTING_ABILITY"):
            Settings(CAT_STARTING_ABILITY=5.0)

    def test_min_questions_not_above_max(self):
        with pytest.raises(PydanticValidationError, match="CAT_MIN_QUESTIONS"):
            Settings(CAT_MIN_QUESTIONS=10, CAT_MAX_QUESTIONS=5)

    def test_min_ease_factor_floor(self):
        with pytest.raises(PydanticValidationError, match="SR_MIN_EASE_FACTOR"):
            Settings(SR_MIN_EASE_FACTOR=1.0)

    def test_initial_ease_not_below_minimum(self):
        with pytest.raises(PydanticValidationError, match="SR_INITIAL_EASE_FACTOR"):
            Settings(SR_INITIAL_EASE_FACTOR=1.5, SR_MIN_EASE_FACTOR=2.0)

    @pytest.mark.parametrize(
        "field,value",
        [
            ("SE_FLOOR", 0.0),
            ("CAT_SE_THRESHOLD", -0.1),
            ("CAT_WEIGHTED_TAIL_FACTOR", 1.5),
            ("GRADING_TIMEOUT_SECONDS", 0.0),
        ],
    )
    def test_field_constraints(self, field, value):
        with pytest.raises(PydanticValidationError):
            Settings(**{field: value})


class TestCATConfig:
    def test_defaults_are_valid(self):
        CATConfig().validate()

    def test_from_settings(self):
        s = Settings(
            CAT_MIN_QUESTIONS=3,
            CAT_MAX_QUESTIONS=12,
            CAT_SELECTION_STRATEGY="bayesian",
            THETA_MIN=-3.0,
            THETA_MAX=3.0,
        )
        config = CATConfig.from_settings(s)
        assert config.min_questions == 3
        assert config.max_questions == 12
        assert config.strategy == SelectionStrategy.BAYESIAN
        assert config.theta_min == pytest.approx(-3.0)
        assert config.theta_max == pytest.approx(3.0)

    def test_with_overrides(self):
        config = CATConfig().with_overrides(se_threshold=0.2, max_questions=30)
        assert config.se_threshold == pytest.approx(0.2)
        assert config.max_questions == 30
        assert CATConfig().max_questions == 20

    @pytest.mark.parametrize(
        "overrides",
        [
            {"theta_min": 1.0, "theta_max": -1.0},
            {"theta_max": float("inf")},
            {"se_floor": 0.0},
            {"initial_se": 3.0},
            {"starting_ability": 9.0},
            {"min_questions": 0},
            {"min_questions": 10, "max_questions": 5},
            {"se_threshold": 0.0},
            {"randomesque_k": 0},
            {"weighted_tail_factor": -0.1},
            {"posterior_points": 2},
            {"grading_timeout_seconds": 0.0},
            {"grading_max_retries": -1},
        ],
    )
    def test_invalid_overrides(self, overrides):
        with pytest.raises(ValidationError):
            CATConfig().with_overrides(**overrides)

    def test_errors_collected_in_context(self):
        with pytest.raises(ValidationError) as exc_info:
            CATConfig(min_questions=0, se_threshold=0.0).validate()
        errors = exc_info.value.context["errors"]
        assert "min_questions" in errors
        assert "se_threshold" in errors


class TestReviewConfig:
    def test_from_settings(self):
        s = Settings(SR_MAX_INTERVAL_DAYS=180, SR_SLOW_INCORRECT_SECONDS=45.0)
        config = ReviewConfig.from_settings(s)
        assert config.max_interval_days == 180
        assert config.slow_incorrect_seconds == pytest.approx(45.0)
        assert config.initial_ease_factor == pytest.approx(2.5)
