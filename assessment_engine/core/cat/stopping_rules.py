"""
Stopping rules for Computerized Adaptive Testing (CAT).

Rules are evaluated in a fixed priority order after every graded response:

    1. Minimum items: continue until ``min_questions`` are administered
    2. Maximum items: stop at ``max_questions`` (overrides everything else)
    3. SE threshold: stop once SE(theta) <= ``se_threshold``
    4. Pool exhaustion: stop when no eligible item remains
    5. Otherwise continue

A session stopped by rule 1 is never stopped by a later rule; a session that
runs out of items before reaching the minimum is terminated by the controller
when item selection raises ``PoolExhausted``.

References:
    - Weiss, D. J., & Kingsbury, G. G. (1984). Application of computerized
      adaptive testing to educational problems. Journal of Educational
      Measurement, 21(4), 361-375.
"""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Optional

from assessment_engine.core.cat.ability_estimation import AbilityEstimate
from assessment_engine.core.config import CATConfig
from assessment_engine.domain_types import TerminationReason

if TYPE_CHECKING:
    from assessment_engine.core.cat.engine import SessionState

logger = logging.getLogger(__name__)


@dataclass
class TerminationDecision:
    """
    Result of evaluating the stopping rules for a session.

    Attributes:
        should_stop: Whether the session should terminate.
        reason: Termination reason when should_stop is True, else None.
        details: Diagnostics: se, num_items, se_threshold, min_items,
            max_items, min_items_met, at_max_items, remaining_items.
    """

    should_stop: bool
    reason: Optional[TerminationReason]
    details: Dict[str, Any]


def check_stopping_criteria(
    se: float,
    num_items: int,
    remaining_items: int,
    config: Optional[CATConfig] = None,
) -> TerminationDecision:
    """
    Evaluate the stopping rules from raw counters.

    Args:
        se: Current standard error of the ability estimate.
        num_items: Number of items administered so far.
        remaining_items: Number of eligible items left in the session snapshot.
        config: Thresholds. Defaults to ``CATConfig()``.

    Returns:
        TerminationDecision with the stop flag, reason and diagnostics.

    Raises:
        ValueError: If se, num_items or remaining_items is negative.
    """
    config = config or CATConfig()
    if se < 0:
        raise ValueError(f"Standard error must be non-negative, got {se}")
    if num_items < 0:
        raise ValueError(f"Number of items must be non-negative, got {num_items}")
    if remaining_items < 0:
        raise ValueError(f"Remaining items must be non-negative, got {remaining_items}")

    details: Dict[str, Any] = {
        "se": se,
        "num_items": num_items,
        "se_threshold": config.se_threshold,
        "min_items": config.min_questions,
        "max_items": config.max_questions,
        "min_items_met": num_items >= config.min_questions,
        "at_max_items": num_items >= config.max_questions,
        "remaining_items": remaining_items,
    }

    if not details["min_items_met"]:
        return TerminationDecision(should_stop=False, reason=None, details=details)

    if details["at_max_items"]:
        logger.info(f"Stopping: maximum items reached ({num_items}/{config.max_questions})")
        return TerminationDecision(
            should_stop=True, reason=TerminationReason.MAX_REACHED, details=details
        )

    if se <= config.se_threshold:
        logger.info(
            f"Stopping: SE threshold met (SE={se:.3f} <= {config.se_threshold}, "
            f"items={num_items})"
        )
        return TerminationDecision(
            should_stop=True, reason=TerminationReason.PRECISION_REACHED, details=details
        )

    if remaining_items == 0:
        logger.info(f"Stopping: pool exhausted after {num_items} items")
        return TerminationDecision(
            should_stop=True, reason=TerminationReason.POOL_EXHAUSTED, details=details
        )

    return TerminationDecision(should_stop=False, reason=None, details=details)


def should_terminate(
    session: "SessionState",
    estimate: AbilityEstimate,
    remaining_items: int,
    config: Optional[CATConfig] = None,
) -> TerminationDecision:
    """
    Decide whether ``session`` should stop after its latest response.

    Args:
        session: The session; its response history gives the item count.
        estimate: The updated ability estimate.
        remaining_items: Eligible items left in the session snapshot.
        config: Thresholds. Defaults to ``CATConfig()``.

    Returns:
        TerminationDecision.
    """
    return check_stopping_criteria(
        se=estimate.standard_error,
        num_items=len(session.history),
        remaining_items=remaining_items,
        config=config,
    )
