"""
Review session assembly.

A review session is filled first with items that are due for review, most
overdue first, and then topped up with items the examinee has never reviewed,
easiest first. An item appears at most once. A pool that cannot supply
``desired_count`` items yields a shorter session.
"""

import logging
from datetime import datetime
from typing import Dict, Iterable, List, Sequence

from assessment_engine.core.cat.item_pool import Item
from assessment_engine.core.exceptions import ValidationError
from assessment_engine.core.spaced_repetition.scheduler import LearningRecord, build_review_queue

logger = logging.getLogger(__name__)


def select_for_session(
    pool: Sequence[Item],
    learning_records: Iterable[LearningRecord],
    desired_count: int,
    now: datetime,
) -> List[Item]:
    """
    Choose the items for one review session.

    Args:
        pool: Items the session may draw from.
        learning_records: The examinee's records (records for items outside
            the pool are ignored).
        desired_count: Target session length.
        now: Reference time for due checks.

    Returns:
        Up to ``desired_count`` items: due items (most overdue first, ties by
        id), then never-reviewed items (lowest difficulty first, ties by id).

    Raises:
        ValidationError: If desired_count is negative.
    """
    if desired_count < 0:
        raise ValidationError(
            "desired_count must be non-negative",
            context={"desired_count": desired_count},
        )

    items_by_id: Dict[str, Item] = {item.id: item for item in pool}
    records: Dict[str, LearningRecord] = {
        r.item_id: r for r in learning_records if r.item_id in items_by_id
    }

    due = [items_by_id[entry.item_id] for entry in build_review_queue(records.values(), now)]
    selected = due[:desired_count]

    if len(selected) < desired_count:
        chosen = {item.id for item in selected}
        fresh = sorted(
            (
                item
                for item in items_by_id.values()
                if item.id not in chosen
                and (item.id not in records or records[item.id].never_reviewed)
            ),
            key=lambda item: (item.difficulty, item.id),
        )
        selected.extend(fresh[: desired_count - len(selected)])

    logger.debug(
        f"Review session: {len(selected)}/{desired_count} items "
        f"({min(len(due), desired_count)} due, pool={len(items_by_id)})"
    )
    return selected
