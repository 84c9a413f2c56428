"""
Tests for the weighted draw and exposure monitoring.

Tests cover:
- apply_weighted_draw: top-K preference, tail weight, monitor integration
- ExposureMonitor: recording, rates, threshold alerts, thread safety, reset
- Per-assessment rates as the share of sessions that saw an item
- Engine integration: every issued item is recorded
"""

import logging
import random
import threading
from collections import Counter
from dataclasses import dataclass

import pytest

from assessment_engine.core.cat.exposure_control import (
    DEFAULT_EXPOSURE_ALERT_THRESHOLD,
    DEFAULT_RANDOMESQUE_K,
    ExposureMonitor,
    ItemCandidate,
    apply_weighted_draw,
)


@dataclass
class MockItem:
    id: str


def _make_ranked_candidates(n: int = 10) -> list[ItemCandidate]:
    """Candidates sorted by information (descending)."""
    return [
        ItemCandidate(item=MockItem(id=f"i{i:02d}"), information=10.0 - i)
        for i in range(n)
    ]


class TestApplyWeightedDraw:
    def test_zero_tail_selects_from_top_k(self):
        candidates = _make_ranked_candidates(20)
        rng = random.Random(0)
        top_ids = {c.item.id for c in candidates[:5]}
        for _ in range(200):
            selected = apply_weighted_draw(candidates, k=5, tail_factor=0.0, rng=rng)
            assert selected.item.id in top_ids

    def test_k_1_zero_tail_always_selects_top_item(self):
        candidates = _make_ranked_candidates(10)
        for seed in range(20):
            selected = apply_weighted_draw(
                candidates, k=1, tail_factor=0.0, rng=random.Random(seed)
            )
            assert selected.item.id == "i00"

    def test_deterministic_with_rng(self):
        candidates = _make_ranked_candidates(10)
        first = [apply_weighted_draw(candidates, rng=random.Random(42)).item.id for _ in range(3)]
        second = [apply_weighted_draw(candidates, rng=random.Random(42)).item.id for _ in range(3)]
        assert first == second

    def test_draw_is_weighted_by_information(self):
        candidates = [
            ItemCandidate(item=MockItem(id="heavy"), information=9.0),
            ItemCandidate(item=MockItem(id="light"), information=1.0),
        ]
        rng = random.Random(1)
        counts = Counter(
            apply_weighted_draw(candidates, k=2, rng=rng).item.id for _ in range(2000)
        )
        assert counts["heavy"] / 2000 == pytest.approx(0.9, abs=0.04)

    def test_tail_weight_reduces_outside_top_k(self):
        candidates = [
            ItemCandidate(item=MockItem(id="top"), information=1.0),
            ItemCandidate(item=MockItem(id="tail"), information=1.0),
        ]
        rng = random.Random(2)
        counts = Counter(
            apply_weighted_draw(candidates, k=1, tail_factor=0.1, rng=rng).item.id
            for _ in range(2000)
        )
        # weights 1.0 vs 0.1
        assert counts["tail"] / 2000 == pytest.approx(1 / 11, abs=0.03)

    def test_all_zero_information_falls_back_to_top_k(self):
        candidates = [ItemCandidate(item=MockItem(id=f"z{i}"), information=0.0) for i in range(6)]
        selected = apply_weighted_draw(candidates, k=2, rng=random.Random(3))
        assert selected.item.id in {"z0", "z1"}

    def test_records_to_monitor(self):
        monitor = ExposureMonitor()
        selected = apply_weighted_draw(
            _make_ranked_candidates(5), monitor=monitor, rng=random.Random(0)
        )
        assert monitor.total_selections == 1
        assert monitor.get_exposure_rate(selected.item.id) == pytest.approx(1.0)

    def test_raises_on_empty_list(self):
        with pytest.raises(ValueError, match="empty"):
            apply_weighted_draw([])

    @pytest.mark.parametrize("k", [0, -1])
    def test_raises_on_non_positive_k(self, k):
        with pytest.raises(ValueError, match="k must be positive"):
            apply_weighted_draw(_make_ranked_candidates(3), k=k)

    def test_default_k_is_5(self):
        assert DEFAULT_RANDOMESQUE_K == 5


class TestExposureMonitor:
    def test_initial_state(self):
        monitor = ExposureMonitor()
        assert monitor.total_selections == 0
        assert monitor.get_exposure_rates() == {}
        assert monitor.get_exposure_rate("anything") == pytest.approx(0.0)

    def test_rates(self):
        monitor = ExposureMonitor()
        for item_id in ["a", "a", "b", "c"]:
            monitor.record_selection(item_id)
        assert monitor.get_exposure_rates() == {
            "a": pytest.approx(0.5),
            "b": pytest.approx(0.25),
            "c": pytest.approx(0.25),
        }

    def test_overexposed_sorted_by_rate(self):
        monitor = ExposureMonitor(alert_threshold=0.2)
        for item_id in ["a"] * 5 + ["b"] * 3 + ["c"] * 2:
            monitor.record_selection(item_id)
        overexposed = monitor.get_overexposed_items()
        assert [item_id for item_id, _ in overexposed] == ["a", "b"]

    def test_check_and_alert_logs_warnings(self, caplog):
        monitor = ExposureMonitor(alert_threshold=0.4)
        for item_id in ["a", "a", "a", "b"]:
            monitor.record_selection(item_id)
        with caplog.at_level(logging.WARNING):
            overexposed = monitor.check_and_alert()
        assert overexposed == {"unscoped": [("a", pytest.approx(0.75))]}
        assert "Exposure alert" in caplog.text
        assert "Item a" in caplog.text

    def test_check_and_alert_empty(self):
        assert ExposureMonitor().check_and_alert() == {}

    def test_default_threshold_is_15_percent(self):
        assert DEFAULT_EXPOSURE_ALERT_THRESHOLD == pytest.approx(0.15)
        assert ExposureMonitor().alert_threshold == pytest.approx(0.15)

    @pytest.mark.parametrize("threshold", [-0.1, 1.1])
    def test_invalid_threshold(self, threshold):
        with pytest.raises(ValueError):
            ExposureMonitor(alert_threshold=threshold)

    def test_reset_clears_all(self):
        monitor = ExposureMonitor()
        monitor.record_selection("a")
        monitor.reset()
        assert monitor.total_selections == 0
        assert monitor.get_exposure_rates() == {}

    def test_concurrent_record_selections(self):
        monitor = ExposureMonitor()

        def worker(prefix: str) -> None:
            for i in range(500):
                monitor.record_selection(f"{prefix}-{i % 10}")

        threads = [threading.Thread(target=worker, args=(f"t{n}",)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert monitor.total_selections == 4000
        assert sum(monitor.get_exposure_rates().values()) == pytest.approx(1.0)


class TestPerAssessmentExposure:
    def test_rate_is_share_of_sessions(self):
        monitor = ExposureMonitor()
        monitor.record_selection("a", assessment_id="x", session_id="s1")
        monitor.record_selection("b", assessment_id="x", session_id="s1")
        monitor.record_selection("b", assessment_id="x", session_id="s2")
        monitor.record_selection("c", assessment_id="x", session_id="s2")

        assert monitor.administrations("x") == 2
        assert monitor.get_exposure_rates("x") == {
            "a": pytest.approx(0.5),
            "b": pytest.approx(1.0),
            "c": pytest.approx(0.5),
        }

    def test_assessments_tracked_separately(self):
        monitor = ExposureMonitor()
        monitor.record_selection("a", assessment_id="x", session_id="s1")
        monitor.record_selection("a", assessment_id="y", session_id="s2")
        monitor.record_selection("b", assessment_id="y", session_id="s3")

        assert monitor.assessments() == ["x", "y"]
        assert monitor.get_exposure_rate("a", "x") == pytest.approx(1.0)
        assert monitor.get_exposure_rate("a", "y") == pytest.approx(0.5)
        assert monitor.get_exposure_rate("b", "x") == pytest.approx(0.0)
        # pooled over both assessments: "a" seen in 2 of 3 sessions
        assert monitor.administrations() == 3
        assert monitor.get_exposure_rate("a") == pytest.approx(2 / 3)

    def test_alerts_grouped_by_assessment(self):
        monitor = ExposureMonitor(alert_threshold=0.6)
        for session_id, item_id in [("s1", "a"), ("s2", "a"), ("s3", "b")]:
            monitor.record_selection(item_id, assessment_id="x", session_id=session_id)
        for session_id, item_id in [("s4", "c"), ("s5", "d")]:
            monitor.record_selection(item_id, assessment_id="y", session_id=session_id)

        assert monitor.check_and_alert() == {"x": [("a", pytest.approx(2 / 3))]}
        assert monitor.get_overexposed_items("y") == []

    def test_reset_one_assessment(self):
        monitor = ExposureMonitor()
        monitor.record_selection("a", assessment_id="x", session_id="s1")
        monitor.record_selection("b", assessment_id="y", session_id="s2")
        monitor.record_selection("c", assessment_id="y", session_id="s2")

        monitor.reset("y")

        assert monitor.assessments() == ["x"]
        assert monitor.total_selections == 1
        assert monitor.get_exposure_rates("y") == {}
        assert monitor.get_exposure_rate("a", "x") == pytest.approx(1.0)


class TestEngineIntegration:
    def test_manager_records_every_issued_item(self, item_pool, grader):
        from assessment_engine.core.cat.engine import CATSessionManager
        from assessment_engine.core.config import CATConfig

        monitor = ExposureMonitor()
        config = CATConfig(min_questions=3, max_questions=3)
        with CATSessionManager(item_pool, grader, config, exposure_monitor=monitor) as mgr:
            session = mgr.start_session("e1", "a1")
            item = mgr.issue_first_item(session.session_id)
            while item is not None:
                item = mgr.submit_response(session.session_id, "e1", item.id, item.id).next_item

        assert monitor.total_selections == 3
        assert monitor.administrations("a1") == 1
        issued = [record.item_id for record in mgr.get_session(session.session_id).history]
        assert len(issued) == 3
        for item_id in issued:
            assert monitor.get_exposure_rate(item_id, "a1") == pytest.approx(1.0)
