"""
Tests for items, pool scopes and the in-memory item pool.
"""
import math

import pytest

from assessment_engine.core.cat.item_pool import (
    DEFAULT_IRT_PARAMETERS,
    MIN_USAGE_FOR_CALIBRATION,
    InMemoryItemPool,
    Item,
    ItemPool,
    PoolScope,
)
from assessment_engine.core.cat.ability_estimation import percentage_to_theta
from assessment_engine.core.exceptions import ValidationError
from assessment_engine.domain_types import DifficultyLevel


class TestItem:
    def test_defaults(self):
        item = Item(id="q1", difficulty=0.3)
        assert item.discrimination == pytest.approx(1.0)
        assert item.guessing == pytest.approx(0.0)
        assert item.competency_tag == ""

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"difficulty": math.nan},
            {"difficulty": 0.0, "discrimination": 0.0},
            {"difficulty": 0.0, "discrimination": -1.0},
            {"difficulty": 0.0, "guessing": 1.0},
            {"difficulty": 0.0, "guessing": -0.1},
        ],
    )
    def test_invalid_parameters(self, kwargs):
        with pytest.raises(ValidationError):
            Item(id="bad", **kwargs)

    def test_immutable(self):
        item = Item(id="q1", difficulty=0.0)
        with pytest.raises(AttributeError):
            item.difficulty = 1.0

    @pytest.mark.parametrize(
        "level,expected",
        [
            (DifficultyLevel.EASY, (1.0, -1.0, 0.10)),
            ("medium", (1.2, 0.0, 0.15)),
            (DifficultyLevel.HARD, (1.4, 1.0, 0.20)),
        ],
    )
    def test_from_difficulty_level(self, level, expected):
        item = Item.from_difficulty_level("q1", level, competency_tag="fractions")
        assert (item.discrimination, item.difficulty, item.guessing) == pytest.approx(expected)
        assert item.competency_tag == "fractions"

    def test_every_level_has_defaults(self):
        assert set(DEFAULT_IRT_PARAMETERS) == set(DifficultyLevel)

    def test_usage_statistics_estimate(self):
        item = Item.from_usage_statistics("q1", "hard", responses=20, correct_responses=15)
        assert item.discrimination == pytest.approx(1.1875)
        assert item.difficulty == pytest.approx(percentage_to_theta(0.25))
        assert item.guessing == pytest.approx(0.15)

    def test_sparse_usage_keeps_label_defaults(self):
        item = Item.from_usage_statistics(
            "q1",
            DifficultyLevel.EASY,
            responses=MIN_USAGE_FOR_CALIBRATION - 1,
            correct_responses=9,
        )
        assert (item.discrimination, item.difficulty, item.guessing) == pytest.approx(
            DEFAULT_IRT_PARAMETERS[DifficultyLevel.EASY]
        )

    def test_never_answered_correctly(self):
        item = Item.from_usage_statistics("q1", "medium", responses=40, correct_responses=0)
        assert item.discrimination == pytest.approx(1.0)
        assert item.difficulty == pytest.approx(3.0)
        assert item.guessing == pytest.approx(0.0)

    @pytest.mark.parametrize("responses,correct", [(-1, 0), (10, 11), (10, -1)])
    def test_usage_statistics_invalid_counts(self, responses, correct):
        with pytest.raises(ValidationError):
            Item.from_usage_statistics("q1", "easy", responses, correct)


class TestPoolScope:
    def test_empty_scope_matches_everything(self):
        assert PoolScope().matches(Item(id="q1", difficulty=5.0, competency_tag="x"))

    def test_tag_filter(self):
        scope = PoolScope(competency_tags=frozenset({"algebra"}))
        assert scope.matches(Item(id="a", difficulty=0.0, competency_tag="algebra"))
        assert not scope.matches(Item(id="b", difficulty=0.0, competency_tag="geometry"))

    def test_difficulty_bounds_inclusive(self):
        scope = PoolScope(min_difficulty=-1.0, max_difficulty=1.0)
        assert scope.matches(Item(id="a", difficulty=-1.0))
        assert scope.matches(Item(id="b", difficulty=1.0))
        assert not scope.matches(Item(id="c", difficulty=1.01))


class TestInMemoryItemPool:
    @pytest.fixture
    def pool(self):
        return InMemoryItemPool(
            [
                Item(id="c", difficulty=1.0, competency_tag="geometry"),
                Item(id="a", difficulty=-1.0, competency_tag="algebra"),
                Item(id="b", difficulty=0.0, competency_tag="algebra"),
            ]
        )

    def test_satisfies_protocol(self, pool):
        assert isinstance(pool, ItemPool)

    def test_available_items_sorted_and_scoped(self, pool):
        assert [i.id for i in pool.get_available_items(PoolScope())] == ["a", "b", "c"]
        scope = PoolScope(competency_tags=frozenset({"algebra"}))
        assert [i.id for i in pool.get_available_items(scope)] == ["a", "b"]

    def test_unused_items_per_session(self, pool):
        pool.record_administration("s1", "b")
        assert [i.id for i in pool.get_unused_items("s1")] == ["a", "c"]
        assert [i.id for i in pool.get_unused_items("s2")] == ["a", "b", "c"]

    def test_recalibration_replaces_item(self, pool):
        pool.add_item(Item(id="a", difficulty=-0.5))
        assert pool.get_item("a").difficulty == pytest.approx(-0.5)
        assert len(pool) == 3
