"""
Pytest configuration and shared fixtures for testing.
"""
import random
from datetime import datetime, timezone
from typing import Generator

import pytest

from assessment_engine.core.cat.engine import CATSessionManager
from assessment_engine.core.cat.item_pool import InMemoryItemPool
from assessment_engine.core.config import CATConfig
from engine_fixtures import AnswerKeyGrader, grid_items


@pytest.fixture
def now() -> datetime:
    return datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def cat_config() -> CATConfig:
    return CATConfig()


@pytest.fixture
def grader() -> AnswerKeyGrader:
    return AnswerKeyGrader()


@pytest.fixture
def item_pool() -> InMemoryItemPool:
    return InMemoryItemPool(grid_items())


@pytest.fixture
def manager(
    item_pool: InMemoryItemPool, grader: AnswerKeyGrader, cat_config: CATConfig
) -> Generator[CATSessionManager, None, None]:
    mgr = CATSessionManager(item_pool, grader, cat_config, rng=random.Random(7))
    yield mgr
    mgr.shutdown()
