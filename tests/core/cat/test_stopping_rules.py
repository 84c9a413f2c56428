"""
Tests for the termination evaluator.

Rules are evaluated in priority order: minimum items, maximum items,
SE threshold, pool exhaustion.
"""
from types import SimpleNamespace

import pytest

from assessment_engine.core.cat.ability_estimation import AbilityEstimate
from assessment_engine.core.cat.stopping_rules import (
    TerminationDecision,
    check_stopping_criteria,
    should_terminate,
)
from assessment_engine.core.config import CATConfig
from assessment_engine.domain_types import TerminationReason


@pytest.fixture
def config() -> CATConfig:
    return CATConfig(min_questions=5, max_questions=20, se_threshold=0.30)


class TestCheckStoppingCriteria:
    def test_below_minimum_continues_even_with_precision(self, config):
        decision = check_stopping_criteria(se=0.1, num_items=4, remaining_items=10, config=config)
        assert decision.should_stop is False
        assert decision.reason is None
        assert decision.details["min_items_met"] is False

    def test_below_minimum_continues_even_with_empty_pool(self, config):
        decision = check_stopping_criteria(se=0.9, num_items=2, remaining_items=0, config=config)
        assert decision.should_stop is False

    def test_max_reached(self, config):
        decision = check_stopping_criteria(se=0.5, num_items=20, remaining_items=10, config=config)
        assert decision.should_stop is True
        assert decision.reason == TerminationReason.MAX_REACHED
        assert decision.details["at_max_items"] is True

    def test_max_takes_precedence_over_precision(self, config):
        decision = check_stopping_criteria(se=0.1, num_items=20, remaining_items=0, config=config)
        assert decision.reason == TerminationReason.MAX_REACHED

    def test_precision_reached_at_threshold(self, config):
        decision = check_stopping_criteria(se=0.30, num_items=5, remaining_items=10, config=config)
        assert decision.should_stop is True
        assert decision.reason == TerminationReason.PRECISION_REACHED

    def test_precision_takes_precedence_over_pool_exhaustion(self, config):
        decision = check_stopping_criteria(se=0.2, num_items=7, remaining_items=0, config=config)
        assert decision.reason == TerminationReason.PRECISION_REACHED

    def test_pool_exhausted(self, config):
        decision = check_stopping_criteria(se=0.5, num_items=7, remaining_items=0, config=config)
        assert decision.should_stop is True
        assert decision.reason == TerminationReason.POOL_EXHAUSTED

    def test_continue_otherwise(self, config):
        decision = check_stopping_criteria(se=0.31, num_items=7, remaining_items=3, config=config)
        assert decision == TerminationDecision(
            should_stop=False, reason=None, details=decision.details
        )

    def test_details_content(self, config):
        details = check_stopping_criteria(
            se=0.4, num_items=6, remaining_items=12, config=config
        ).details
        assert details == {
            "se": 0.4,
            "num_items": 6,
            "se_threshold": 0.30,
            "min_items": 5,
            "max_items": 20,
            "min_items_met": True,
            "at_max_items": False,
            "remaining_items": 12,
        }

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"se": -0.1, "num_items": 1, "remaining_items": 1},
            {"se": 0.1, "num_items": -1, "remaining_items": 1},
            {"se": 0.1, "num_items": 1, "remaining_items": -1},
        ],
    )
    def test_negative_inputs_rejected(self, kwargs):
        with pytest.raises(ValueError):
            check_stopping_criteria(**kwargs)

    @pytest.mark.parametrize("num_items", range(0, 30))
    def test_never_continues_past_max(self, config, num_items):
        decision = check_stopping_criteria(se=0.9, num_items=num_items, remaining_items=50, config=config)
        if num_items >= config.max_questions:
            assert decision.should_stop


class TestShouldTerminate:
    def test_counts_session_history(self, config):
        session = SimpleNamespace(history=[object()] * 5)
        estimate = AbilityEstimate(theta=0.3, standard_error=0.25)
        decision = should_terminate(session, estimate, remaining_items=4, config=config)
        assert decision.reason == TerminationReason.PRECISION_REACHED
        assert decision.details["num_items"] == 5
        assert decision.details["se"] == pytest.approx(0.25)
