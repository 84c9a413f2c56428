"""
SM-2 spaced-repetition scheduler.

Each (examinee, item) pair has a ``LearningRecord``. Every review maps the
response to a quality score in 0..5 and advances the record:

    quality >= 3 (success):
        consecutive_correct += 1
        interval = 1 on the first success, 6 on the second, otherwise
                   round(previous interval * ease factor before this review)
    quality < 3 (failure):
        consecutive_correct = 0
        interval = 1

    ease' = ease + (0.1 - (5 - q) * (0.08 + (5 - q) * 0.02)), floored at 1.3
    next review = now + interval days (interval capped at the configured maximum)

Quality from a graded response:
    incorrect: 0 if the response took longer than 30 s, else 1
    correct:   ratio = response_time / (item_difficulty * 10)
               5 if ratio < 0.5, 4 if < 1.0, 3 if < 2.0, else 2

References:
    - Wozniak, P. A. (1990). Optimization of learning (SuperMemo SM-2).
"""

import logging
import math
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Iterable, List, Optional

from assessment_engine.core.config import ReviewConfig
from assessment_engine.core.datetime_utils import add_days, days_between, ensure_timezone_aware
from assessment_engine.core.exceptions import ValidationError
from assessment_engine.domain_types import LearningState

logger = logging.getLogger(__name__)

# Quality scale
PASSING_QUALITY = 3
MAX_QUALITY = 5

# Seconds of expected response time per unit of item difficulty
SECONDS_PER_DIFFICULTY_UNIT = 10.0

# Fixed intervals for the first two consecutive successes
FIRST_INTERVAL_DAYS = 1
SECOND_INTERVAL_DAYS = 6


@dataclass(frozen=True)
class LearningRecord:
    """Review history summary of one item for one examinee."""

    examinee_id: str
    item_id: str
    ease_factor: float = 2.5
    interval_days: int = 1
    consecutive_correct: int = 0
    last_review_at: Optional[datetime] = None
    next_review_at: Optional[datetime] = None
    review_count: int = 0
    lapses: int = 0
    last_quality: Optional[int] = None
    state: LearningState = LearningState.NEW

    @property
    def never_reviewed(self) -> bool:
        return self.review_count == 0

    def is_due(self, now: datetime) -> bool:
        return self.next_review_at is not None and ensure_timezone_aware(
            self.next_review_at
        ) <= ensure_timezone_aware(now)


@dataclass(frozen=True)
class ReviewQueueEntry:
    item_id: str
    overdue_days: float


ReviewQueue = List[ReviewQueueEntry]


def create_learning_record(
    examinee_id: str,
    item_id: str,
    config: Optional[ReviewConfig] = None,
) -> LearningRecord:
    """Create the record for an item on first exposure."""
    config = config or ReviewConfig()
    if not examinee_id or not item_id:
        raise ValidationError(
            "examinee_id and item_id are required",
            context={"examinee_id": examinee_id, "item_id": item_id},
        )
    return LearningRecord(
        examinee_id=examinee_id,
        item_id=item_id,
        ease_factor=config.initial_ease_factor,
        interval_days=FIRST_INTERVAL_DAYS,
    )


def compute_quality(
    is_correct: bool,
    response_time: float,
    item_difficulty: float,
    config: Optional[ReviewConfig] = None,
) -> int:
    """
    Map a graded response to an SM-2 quality score.

    Args:
        is_correct: Grading outcome.
        response_time: Seconds taken to answer.
        item_difficulty: Expected effort of the item; must be positive.
        config: Supplies the slow-incorrect threshold (30 s by default).

    Returns:
        Quality in 0..5.

    Raises:
        ValidationError: If item_difficulty is not positive or response_time
            is negative.
    """
    config = config or ReviewConfig()
    if not (item_difficulty > 0):
        raise ValidationError(
            "item_difficulty must be positive",
            context={"item_difficulty": item_difficulty},
        )
    if response_time < 0:
        raise ValidationError(
            "response_time must be non-negative",
            context={"response_time": response_time},
        )

    if not is_correct:
        return 0 if response_time > config.slow_incorrect_seconds else 1

    time_ratio = response_time / (item_difficulty * SECONDS_PER_DIFFICULTY_UNIT)
    if time_ratio < 0.5:
        return 5
    if time_ratio < 1.0:
        return 4
    if time_ratio < 2.0:
        return 3
    return 2


def _next_ease_factor(ease_factor: float, quality: int, config: ReviewConfig) -> float:
    miss = MAX_QUALITY - quality
    return max(config.min_ease_factor, ease_factor + (0.1 - miss * (0.08 + miss * 0.02)))


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def apply_quality(
    record: LearningRecord,
    quality: int,
    now: datetime,
    config: Optional[ReviewConfig] = None,
) -> LearningRecord:
    """
    Advance ``record`` by one review of the given quality.

    Pure function; returns a new record.

    Raises:
        ValidationError: If quality is outside 0..5.
    """
    config = config or ReviewConfig()
    if not (0 <= quality <= MAX_QUALITY):
        raise ValidationError("quality must be in 0..5", context={"quality": quality})
    now = ensure_timezone_aware(now)

    if quality >= PASSING_QUALITY:
        consecutive = record.consecutive_correct + 1
        if consecutive == 1:
            interval = FIRST_INTERVAL_DAYS
        elif consecutive == 2:
            interval = SECOND_INTERVAL_DAYS
        else:
            interval = _round_half_up(record.interval_days * record.ease_factor)
        state = LearningState.REVIEW if consecutive >= 2 else LearningState.LEARNING
        lapses = record.lapses
    else:
        consecutive = 0
        interval = FIRST_INTERVAL_DAYS
        was_review = record.state == LearningState.REVIEW
        state = LearningState.RELEARNING if was_review else LearningState.LEARNING
        lapses = record.lapses + 1 if was_review else record.lapses

    interval = max(1, min(interval, config.max_interval_days))

    return replace(
        record,
        ease_factor=_next_ease_factor(record.ease_factor, quality, config),
        interval_days=interval,
        consecutive_correct=consecutive,
        last_review_at=now,
        next_review_at=add_days(now, interval),
        review_count=record.review_count + 1,
        lapses=lapses,
        last_quality=quality,
        state=state,
    )


def record_review(
    record: LearningRecord,
    is_correct: bool,
    response_time: float,
    item_difficulty: float,
    now: datetime,
    config: Optional[ReviewConfig] = None,
) -> LearningRecord:
    """
    Score a graded response and schedule the next review.

    Args:
        record: Record before the review.
        is_correct: Grading outcome.
        response_time: Seconds taken to answer.
        item_difficulty: Expected effort of the item; must be positive.
        now: Review timestamp.
        config: Ease factor floor and interval ceiling.

    Returns:
        The updated LearningRecord.

    Raises:
        ValidationError: If item_difficulty is not positive.
    """
    config = config or ReviewConfig()
    quality = compute_quality(is_correct, response_time, item_difficulty, config)
    updated = apply_quality(record, quality, now, config)

    logger.debug(
        f"Review {record.examinee_id}/{record.item_id}: quality={quality}, "
        f"interval {record.interval_days} -> {updated.interval_days}d, "
        f"ease {record.ease_factor:.2f} -> {updated.ease_factor:.2f}, "
        f"state={updated.state.value}"
    )
    return updated


def build_review_queue(records: Iterable[LearningRecord], now: datetime) -> ReviewQueue:
    """
    Items whose next review has passed, most overdue first (ties by item id).

    Records that were never scheduled are not part of the queue.
    """
    now = ensure_timezone_aware(now)
    queue = [
        ReviewQueueEntry(item_id=r.item_id, overdue_days=days_between(r.next_review_at, now))
        for r in records
        if r.is_due(now)
    ]
    queue.sort(key=lambda e: (-e.overdue_days, e.item_id))
    return queue
