"""
Weighted exposure control with monitoring for Computerized Adaptive Testing.

Always administering the single most informative item over-exposes a small
subset of the pool and makes the test predictable. The weighted draw used by
the ``weighted`` selection strategy favours the top-K most informative items
(full information weight) while keeping a reduced tail weight on the rest, so
the draw leans on the top K without being limited to it.

Key components:
    - apply_weighted_draw(): weighted random selection with monitoring
    - ExposureMonitor: thread-safe per-assessment exposure rates (share of
      sessions that saw each item)

References:
    - Kingsbury, G.G., & Zara, A.R. (1989). Procedures for selecting items for
      computerized adaptive tests.
    - Stocking, M.L., & Lewis, C. (1998). Controlling item exposure conditional
      on ability in computerized adaptive testing.
"""

import logging
import random
import threading
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Tuple

logger = logging.getLogger(__name__)

# Number of most informative items that receive full weight
DEFAULT_RANDOMESQUE_K = 5

# Weight multiplier applied to items outside the top K
DEFAULT_TAIL_FACTOR = 0.1

# Default exposure rate threshold for logging alerts (15%)
DEFAULT_EXPOSURE_ALERT_THRESHOLD = 0.15

# Assessment key for selections recorded outside any assessment
UNSCOPED_ASSESSMENT = "unscoped"

# Overexposed items logged per assessment by check_and_alert
MAX_ALERTS_LOGGED = 10


@dataclass
class ItemCandidate:
    """An item with its computed information value."""

    item: Any
    information: float


def apply_weighted_draw(
    ranked_items: List[ItemCandidate],
    k: int = DEFAULT_RANDOMESQUE_K,
    tail_factor: float = DEFAULT_TAIL_FACTOR,
    monitor: Optional["ExposureMonitor"] = None,
    rng: Optional[random.Random] = None,
) -> ItemCandidate:
    """
    Draw one item, weighted by information, favouring the top K.

    The first ``k`` entries of ``ranked_items`` are weighted by their
    information; the remainder by ``information * tail_factor``. When every
    weight is zero the draw is uniform over the top K.

    Args:
        ranked_items: Candidates sorted by information (descending).
        k: Number of top items that receive full weight.
        tail_factor: Weight multiplier for items beyond the top K.
        monitor: Optional ExposureMonitor to record the selection.
        rng: Optional Random instance for deterministic draws.

    Returns:
        The selected ItemCandidate.

    Raises:
        ValueError: If ranked_items is empty or k is not positive.
    """
    if not ranked_items:
        raise ValueError("Cannot select from empty ranked_items list")
    if k <= 0:
        raise ValueError(f"k must be positive, got {k}")

    rng = rng or random.Random()
    weights = [
        c.information if rank < k else c.information * tail_factor
        for rank, c in enumerate(ranked_items)
    ]
    if sum(weights) > 0:
        selected = rng.choices(ranked_items, weights=weights, k=1)[0]
    else:
        selected = rng.choice(ranked_items[:k])

    if monitor is not None:
        monitor.record_selection(selected.item.id)

    logger.debug(
        f"Weighted selection: chose item {selected.item.id} from "
        f"{len(ranked_items)} candidates (top-{min(k, len(ranked_items))} favoured, "
        f"info={selected.information:.4f})"
    )

    return selected


@dataclass
class _AssessmentExposure:
    """Exposure counters of one assessment."""

    item_counts: Counter = field(default_factory=Counter)
    sessions: Set[str] = field(default_factory=set)
    # Selections recorded without a session each count as one administration
    anonymous_selections: int = 0

    @property
    def administrations(self) -> int:
        return len(self.sessions) + self.anonymous_selections


class ExposureMonitor:
    """
    Tracks item exposure per assessment and alerts on over-exposure.

    The exposure rate of an item within an assessment is the share of that
    assessment's administrations (sessions) in which the item was issued:

        rate_i = sessions_that_saw_i / sessions_recorded

    Selections recorded without a session id (for example by a bare
    ``select_next`` call) count as one administration each. Rates across all
    assessments pool the counters of every assessment.

    Thread-safe. Items above ``alert_threshold`` are reported by
    ``check_and_alert``, grouped by assessment.

    Example usage:
        monitor = ExposureMonitor(alert_threshold=0.15)
        manager = CATSessionManager(pool, grader, exposure_monitor=monitor)
        ...
        overexposed = monitor.check_and_alert()
    """

    def __init__(self, alert_threshold: float = DEFAULT_EXPOSURE_ALERT_THRESHOLD):
        if not (0.0 <= alert_threshold <= 1.0):
            raise ValueError(
                f"alert_threshold must be in [0.0, 1.0], got {alert_threshold}"
            )

        self._lock = threading.Lock()
        self._assessments: Dict[str, _AssessmentExposure] = {}
        self._total_selections = 0
        self.alert_threshold = alert_threshold

    def record_selection(
        self,
        item_id: str,
        assessment_id: str = UNSCOPED_ASSESSMENT,
        session_id: Optional[str] = None,
    ) -> None:
        """Record that ``item_id`` was issued, optionally within a session."""
        with self._lock:
            exposure = self._assessments.setdefault(assessment_id, _AssessmentExposure())
            exposure.item_counts[item_id] += 1
            if session_id is None:
                exposure.anonymous_selections += 1
            else:
                exposure.sessions.add(session_id)
            self._total_selections += 1

    def assessments(self) -> List[str]:
        with self._lock:
            return sorted(self._assessments)

    def administrations(self, assessment_id: Optional[str] = None) -> int:
        """Sessions (plus anonymous selections) recorded for one or all assessments."""
        with self._lock:
            return sum(e.administrations for e in self._select_locked(assessment_id))

    def get_exposure_rate(self, item_id: str, assessment_id: Optional[str] = None) -> float:
        """Exposure rate of one item, or 0.0 if it has never been issued."""
        return self.get_exposure_rates(assessment_id).get(item_id, 0.0)

    def get_exposure_rates(self, assessment_id: Optional[str] = None) -> Dict[str, float]:
        with self._lock:
            return self._rates_locked(self._select_locked(assessment_id))

    def get_overexposed_items(
        self, assessment_id: Optional[str] = None
    ) -> List[Tuple[str, float]]:
        """(item_id, rate) pairs above the threshold, highest rate first."""
        return self._above_threshold(self.get_exposure_rates(assessment_id))

    def check_and_alert(self) -> Dict[str, List[Tuple[str, float]]]:
        """
        Check every assessment for overexposed items and log warnings.

        Counters are snapshotted under the lock; logging happens outside it.

        Returns:
            Mapping of assessment id to its overexposed (item_id, rate)
            pairs. Assessments without overexposed items are omitted.
        """
        with self._lock:
            snapshot = {
                assessment_id: (
                    self._above_threshold(self._rates_locked([exposure])),
                    exposure.administrations,
                )
                for assessment_id, exposure in self._assessments.items()
            }

        alerts: Dict[str, List[Tuple[str, float]]] = {}
        for assessment_id in sorted(snapshot):
            overexposed, administrations = snapshot[assessment_id]
            if not overexposed:
                continue
            alerts[assessment_id] = overexposed
            logger.warning(
                f"Exposure alert ({assessment_id}): {len(overexposed)} items exceed "
                f"{self.alert_threshold:.1%} of {administrations} administrations"
            )
            for item_id, rate in overexposed[:MAX_ALERTS_LOGGED]:
                logger.warning(f"  Item {item_id}: {rate:.1%} exposure")
            if len(overexposed) > MAX_ALERTS_LOGGED:
                logger.warning(f"  ... and {len(overexposed) - MAX_ALERTS_LOGGED} more items")

        return alerts

    @property
    def total_selections(self) -> int:
        with self._lock:
            return self._total_selections

    def reset(self, assessment_id: Optional[str] = None) -> None:
        """Clear the counters of one assessment, or of all of them."""
        with self._lock:
            if assessment_id is None:
                self._assessments.clear()
                self._total_selections = 0
            else:
                removed = self._assessments.pop(assessment_id, None)
                if removed is not None:
                    self._total_selections -= sum(removed.item_counts.values())
        logger.info(f"ExposureMonitor counters reset ({assessment_id or 'all assessments'})")

    def _select_locked(self, assessment_id: Optional[str]) -> List[_AssessmentExposure]:
        if assessment_id is None:
            return list(self._assessments.values())
        exposure = self._assessments.get(assessment_id)
        return [exposure] if exposure is not None else []

    @staticmethod
    def _rates_locked(exposures: List[_AssessmentExposure]) -> Dict[str, float]:
        administrations = sum(e.administrations for e in exposures)
        if administrations == 0:
            return {}
        counts: Counter = Counter()
        for exposure in exposures:
            counts.update(exposure.item_counts)
        return {item_id: count / administrations for item_id, count in counts.items()}

    def _above_threshold(self, rates: Dict[str, float]) -> List[Tuple[str, float]]:
        overexposed = [
            (item_id, rate) for item_id, rate in rates.items() if rate > self.alert_threshold
        ]
        overexposed.sort(key=lambda x: (-x[1], x[0]))
        return overexposed
