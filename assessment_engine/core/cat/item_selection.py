"""
Item selection for Computerized Adaptive Testing.

Selects the next item from the eligible pool at the current ability estimate.
Three strategies are supported:

    - maximum_information: argmax of Fisher information at theta
    - bayesian: argmax of information integrated over the normal posterior
      N(theta, SE^2) supplied by the ability estimator
    - weighted: information-weighted random draw favouring the top K items
      (see ``exposure_control``)

Deterministic strategies break ties by the lowest item id so repeated runs
administer the same sequence.

References:
    - van der Linden, W.J. (1998). Bayesian item selection criteria for
      adaptive testing.
"""

import logging
import random
from typing import Collection, List, Optional, Sequence

import numpy as np

from assessment_engine.core.cat.ability_estimation import (
    AbilityEstimate,
    item_information,
    posterior_grid,
)
from assessment_engine.core.cat.exposure_control import (
    ExposureMonitor,
    ItemCandidate,
    apply_weighted_draw,
)
from assessment_engine.core.cat.irt_models import get_irt_model
from assessment_engine.core.cat.item_pool import Item
from assessment_engine.core.config import CATConfig
from assessment_engine.core.exceptions import PoolExhausted
from assessment_engine.domain_types import SelectionStrategy

logger = logging.getLogger(__name__)


def select_initial(pool: Sequence[Item], starting_difficulty: float = 0.0) -> Item:
    """
    Pick the opening item: the one whose difficulty is closest to the target.

    Args:
        pool: Candidate items.
        starting_difficulty: Target difficulty on the theta scale.

    Returns:
        The closest item; ties go to the lowest item id.

    Raises:
        PoolExhausted: If the pool is empty.
    """
    if not pool:
        raise PoolExhausted(
            "No items available to start the session",
            context={"starting_difficulty": starting_difficulty},
        )
    return min(pool, key=lambda item: (abs(item.difficulty - starting_difficulty), item.id))


def rank_by_information(
    candidates: Sequence[Item],
    estimate: AbilityEstimate,
) -> List[ItemCandidate]:
    """Information at the point estimate, sorted descending (ties: lowest id)."""
    ranked = [ItemCandidate(item=item, information=item_information(estimate, item)) for item in candidates]
    ranked.sort(key=lambda c: (-c.information, c.item.id))
    return ranked


def rank_by_posterior_information(
    candidates: Sequence[Item],
    estimate: AbilityEstimate,
    config: Optional[CATConfig] = None,
) -> List[ItemCandidate]:
    """Posterior-weighted information, sorted descending (ties: lowest id)."""
    points, weights = posterior_grid(estimate, config)
    irt = get_irt_model(estimate.model)
    ranked = [
        ItemCandidate(
            item=item,
            information=float(np.dot(irt.information_grid(points, item), weights)),
        )
        for item in candidates
    ]
    ranked.sort(key=lambda c: (-c.information, c.item.id))
    return ranked


def select_next(
    pool: Sequence[Item],
    used_item_ids: Collection[str],
    estimate: AbilityEstimate,
    strategy: SelectionStrategy = SelectionStrategy.MAXIMUM_INFORMATION,
    config: Optional[CATConfig] = None,
    rng: Optional[random.Random] = None,
    monitor: Optional[ExposureMonitor] = None,
) -> Item:
    """
    Select the next item to administer.

    Args:
        pool: Session item snapshot.
        used_item_ids: Ids of items already administered (never re-selected).
        estimate: Current ability estimate.
        strategy: Selection strategy.
        config: Session configuration (posterior grid size, top-K, tail
            weight). Defaults to ``CATConfig()``.
        rng: Optional Random instance for the weighted strategy.
        monitor: Optional ExposureMonitor recording weighted selections.

    Returns:
        The selected item.

    Raises:
        PoolExhausted: If no eligible candidate remains.
    """
    config = config or CATConfig()
    used = set(used_item_ids)
    eligible = [item for item in pool if item.id not in used]

    if not eligible:
        logger.warning(
            f"No eligible items remaining. Pool size: {len(pool)}, used: {len(used)}"
        )
        raise PoolExhausted(
            "No eligible items remain",
            context={"pool_size": len(pool), "used": len(used)},
        )

    strategy = SelectionStrategy(strategy)
    if strategy == SelectionStrategy.BAYESIAN:
        selected = rank_by_posterior_information(eligible, estimate, config)[0]
    elif strategy == SelectionStrategy.WEIGHTED:
        selected = apply_weighted_draw(
            rank_by_information(eligible, estimate),
            k=config.randomesque_k,
            tail_factor=config.weighted_tail_factor,
            monitor=monitor,
            rng=rng,
        )
    else:
        selected = rank_by_information(eligible, estimate)[0]

    item = selected.item
    logger.debug(
        f"Item selection ({strategy.value}): theta={estimate.theta:.3f}, "
        f"eligible={len(eligible)}, selected {item.id} "
        f"(a={item.discrimination:.2f}, b={item.difficulty:.2f}, "
        f"info={selected.information:.4f})"
    )
    return item
