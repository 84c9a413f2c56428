"""
SM-2 spaced-repetition scheduling and review session assembly.
"""

from .review_selection import select_for_session
from .scheduler import (
    LearningRecord,
    ReviewQueue,
    ReviewQueueEntry,
    build_review_queue,
    compute_quality,
    create_learning_record,
    record_review,
)

__all__ = [
    "LearningRecord",
    "ReviewQueue",
    "ReviewQueueEntry",
    "build_review_queue",
    "compute_quality",
    "create_learning_record",
    "record_review",
    "select_for_session",
]
