"""
Calibrated items and the item pool collaborator.

Items are immutable for the lifetime of any session; recalibration happens
out-of-band by publishing new ``Item`` values to the pool. The engine talks to
the pool only through the ``ItemPool`` protocol, so content storage can live
anywhere.
"""

import logging
import math
import threading
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Optional, Protocol, Set, runtime_checkable

from assessment_engine.core.cat.ability_estimation import percentage_to_theta
from assessment_engine.core.exceptions import ValidationError
from assessment_engine.domain_types import DifficultyLevel

logger = logging.getLogger(__name__)

# Parameters for items that only carry a coarse difficulty label:
# (discrimination, difficulty, guessing)
DEFAULT_IRT_PARAMETERS: Dict[DifficultyLevel, tuple[float, float, float]] = {
    DifficultyLevel.EASY: (1.0, -1.0, 0.10),
    DifficultyLevel.MEDIUM: (1.2, 0.0, 0.15),
    DifficultyLevel.HARD: (1.4, 1.0, 0.20),
}

# Below this many graded responses an item keeps its difficulty-label defaults
MIN_USAGE_FOR_CALIBRATION = 10
DISCRIMINATION_RANGE = (0.5, 3.0)
MAX_GUESSING = 0.25


@dataclass(frozen=True)
class Item:
    """A calibrated assessment item."""

    id: str
    difficulty: float
    discrimination: float = 1.0
    guessing: float = 0.0
    competency_tag: str = ""

    def __post_init__(self) -> None:
        if not math.isfinite(self.difficulty):
            raise ValidationError(
                "Item difficulty must be finite",
                context={"item_id": self.id, "difficulty": self.difficulty},
            )
        if not (self.discrimination > 0 and math.isfinite(self.discrimination)):
            raise ValidationError(
                "Item discrimination must be positive",
                context={"item_id": self.id, "discrimination": self.discrimination},
            )
        if not (0.0 <= self.guessing < 1.0):
            raise ValidationError(
                "Item guessing parameter must be in [0, 1)",
                context={"item_id": self.id, "guessing": self.guessing},
            )

    @classmethod
    def from_difficulty_level(
        cls,
        item_id: str,
        level: DifficultyLevel | str,
        competency_tag: str = "",
    ) -> "Item":
        """Build an item for uncalibrated content from its difficulty label."""
        a, b, c = DEFAULT_IRT_PARAMETERS[DifficultyLevel(level)]
        return cls(
            id=item_id,
            difficulty=b,
            discrimination=a,
            guessing=c,
            competency_tag=competency_tag,
        )

    @classmethod
    def from_usage_statistics(
        cls,
        item_id: str,
        level: DifficultyLevel | str,
        responses: int,
        correct_responses: int,
        competency_tag: str = "",
    ) -> "Item":
        """
        Estimate IRT parameters from how often an item was answered correctly.

        With fewer than MIN_USAGE_FOR_CALIBRATION responses the difficulty
        label defaults are used. Otherwise, with p the observed proportion
        correct:

            a = clamp(1 + p(1 - p), 0.5, 3.0)
            b = percentage_to_theta(1 - p)
            c = clamp(0.2 * p, 0, 0.25)

        Raises:
            ValidationError: If the counts are negative or correct_responses
                exceeds responses.
        """
        if responses < 0 or not (0 <= correct_responses <= responses):
            raise ValidationError(
                "Usage counts must satisfy 0 <= correct_responses <= responses",
                context={
                    "item_id": item_id,
                    "responses": responses,
                    "correct_responses": correct_responses,
                },
            )
        if responses < MIN_USAGE_FOR_CALIBRATION:
            return cls.from_difficulty_level(item_id, level, competency_tag)

        p = correct_responses / responses
        low, high = DISCRIMINATION_RANGE
        discrimination = min(max(1.0 + p * (1.0 - p), low), high)
        guessing = min(max(0.2 * p, 0.0), MAX_GUESSING)
        logger.debug(
            f"Calibrated {item_id} from {responses} responses (p={p:.2f}): "
            f"a={discrimination:.3f}, c={guessing:.3f}"
        )
        return cls(
            id=item_id,
            difficulty=percentage_to_theta(1.0 - p),
            discrimination=discrimination,
            guessing=guessing,
            competency_tag=competency_tag,
        )


@dataclass(frozen=True)
class PoolScope:
    """
    Restriction of the pool for one assessment.

    An empty ``competency_tags`` set means every tag is in scope; difficulty
    bounds are inclusive and optional.
    """

    competency_tags: FrozenSet[str] = field(default_factory=frozenset)
    min_difficulty: Optional[float] = None
    max_difficulty: Optional[float] = None

    def matches(self, item: Item) -> bool:
        if self.competency_tags and item.competency_tag not in self.competency_tags:
            return False
        if self.min_difficulty is not None and item.difficulty < self.min_difficulty:
            return False
        if self.max_difficulty is not None and item.difficulty > self.max_difficulty:
            return False
        return True


@runtime_checkable
class ItemPool(Protocol):
    """Read-mostly source of calibrated items."""

    def get_available_items(self, scope: PoolScope) -> List[Item]:
        ...

    def get_unused_items(self, session_id: str) -> List[Item]:
        ...


class InMemoryItemPool:
    """
    Thread-safe in-memory ``ItemPool``.

    Tracks which items were administered in each session through
    ``record_administration`` so ``get_unused_items`` can answer per session.
    """

    def __init__(self, items: Iterable[Item] = ()):
        self._lock = threading.Lock()
        self._items: Dict[str, Item] = {}
        self._administered: Dict[str, Set[str]] = {}
        for item in items:
            self.add_item(item)

    def add_item(self, item: Item) -> None:
        """Add or replace (recalibrate) an item."""
        with self._lock:
            self._items[item.id] = item

    def get_item(self, item_id: str) -> Optional[Item]:
        with self._lock:
            return self._items.get(item_id)

    def get_available_items(self, scope: PoolScope) -> List[Item]:
        """Return the items matching ``scope``, ordered by id."""
        with self._lock:
            items = [item for item in self._items.values() if scope.matches(item)]
        return sorted(items, key=lambda item: item.id)

    def get_unused_items(self, session_id: str) -> List[Item]:
        """Return pool items not yet administered in ``session_id``, ordered by id."""
        with self._lock:
            used = self._administered.get(session_id, set())
            items = [item for item_id, item in self._items.items() if item_id not in used]
        return sorted(items, key=lambda item: item.id)

    def record_administration(self, session_id: str, item_id: str) -> None:
        with self._lock:
            self._administered.setdefault(session_id, set()).add(item_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
