"""
Ability estimation for Computerized Adaptive Testing.

The estimator keeps a running (theta, SE) pair and corrects it after every
response with one Newton-style maximum-likelihood step under the session's IRT
model:

    I      = max(I(theta), epsilon)
    theta' = theta + score(theta) / I
    SE'    = 1 / sqrt(1 / SE^2 + I)

Both values are clamped to their configured bounds after every update, so a
near-zero information value (an item far from the examinee's ability) never
produces a runaway estimate or an error.

The posterior grid used by Bayesian item selection treats the estimate as a
normal posterior N(theta, SE^2) discretised on an evenly spaced quadrature grid
truncated to the theta bounds.
"""

import logging
import math
from dataclasses import dataclass, replace
from typing import List, Optional, Tuple

import numpy as np

from assessment_engine.core.cat.irt_models import CalibratedItem, get_irt_model
from assessment_engine.core.config import CATConfig
from assessment_engine.core.exceptions import ValidationError
from assessment_engine.domain_types import IRTModel

logger = logging.getLogger(__name__)

# Prior clamps for returning examinees
PRIOR_THETA_LIMIT = 3.0
PRIOR_SD_RANGE = (0.1, 1.0)

# Historical percentage scores are mapped onto the theta scale with the logistic
# scaling constant; extreme percentages saturate at +/- PRIOR_THETA_LIMIT.
LOGISTIC_SCALING_CONSTANT = 1.7
PERCENTAGE_SATURATION = 0.01

# Starting SE for an examinee whose prior comes from graded percentage scores
HISTORY_STARTING_SE = 0.8


@dataclass(frozen=True)
class AbilityEstimate:
    """Current ability estimate of an examinee."""

    theta: float
    standard_error: float
    model: IRTModel = IRTModel.TWO_PL

    @property
    def confidence(self) -> float:
        """Confidence level in [0, 1], derived as 1 - SE."""
        return max(0.0, min(1.0, 1.0 - self.standard_error))


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def initialize(
    starting_ability: float,
    model: IRTModel = IRTModel.TWO_PL,
    config: Optional[CATConfig] = None,
    starting_se: Optional[float] = None,
) -> AbilityEstimate:
    """
    Create the initial estimate for a new session.

    Args:
        starting_ability: Prior theta (0.0 for a new examinee, or a prior
            computed from history).
        model: IRT model variant the session runs under.
        config: Bounds and the initial SE. Defaults to ``CATConfig()``.
        starting_se: Prior standard error; defaults to the configured
            initial SE.

    Returns:
        AbilityEstimate with theta=starting_ability and the starting SE.

    Raises:
        ValidationError: If starting_ability is not finite or outside the
            configured theta bounds, or starting_se is outside the SE bounds.
    """
    config = config or CATConfig()
    if not math.isfinite(starting_ability):
        raise ValidationError(
            "Starting ability must be finite",
            context={"starting_ability": starting_ability},
        )
    if not (config.theta_min <= starting_ability <= config.theta_max):
        raise ValidationError(
            "Starting ability is outside the theta bounds",
            context={
                "starting_ability": starting_ability,
                "theta_min": config.theta_min,
                "theta_max": config.theta_max,
            },
        )
    se = config.initial_se if starting_se is None else starting_se
    if not (math.isfinite(se) and config.se_floor <= se <= config.se_ceiling):
        raise ValidationError(
            "Starting standard error is outside the SE bounds",
            context={
                "starting_se": se,
                "se_floor": config.se_floor,
                "se_ceiling": config.se_ceiling,
            },
        )
    return AbilityEstimate(
        theta=float(starting_ability),
        standard_error=float(se),
        model=IRTModel(model),
    )


def update(
    estimate: AbilityEstimate,
    item: CalibratedItem,
    is_correct: bool,
    config: Optional[CATConfig] = None,
) -> AbilityEstimate:
    """
    Apply one maximum-likelihood correction step for a graded response.

    Pure function: the input estimate is not modified.

    Args:
        estimate: Estimate before the response.
        item: The administered item.
        is_correct: Grading outcome.
        config: Bounds and the information epsilon. Defaults to ``CATConfig()``.

    Returns:
        New AbilityEstimate with clamped theta and SE.
    """
    config = config or CATConfig()
    irt = get_irt_model(estimate.model)

    information = max(irt.information(estimate.theta, item), config.information_epsilon)
    score = irt.score(estimate.theta, item, is_correct)

    new_theta = _clamp(
        estimate.theta + score / information, config.theta_min, config.theta_max
    )
    new_se = _clamp(
        1.0 / math.sqrt(1.0 / estimate.standard_error**2 + information),
        config.se_floor,
        config.se_ceiling,
    )

    logger.debug(
        f"Ability update: correct={is_correct}, theta {estimate.theta:.3f} -> "
        f"{new_theta:.3f}, SE {estimate.standard_error:.3f} -> {new_se:.3f}, "
        f"info={information:.4f}"
    )

    return replace(estimate, theta=new_theta, standard_error=new_se)


def item_information(estimate: AbilityEstimate, item: CalibratedItem) -> float:
    """Fisher information of ``item`` at the estimate's theta under its model."""
    return get_irt_model(estimate.model).information(estimate.theta, item)


def posterior_grid(
    estimate: AbilityEstimate,
    config: Optional[CATConfig] = None,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Discretise the normal posterior N(theta, SE^2) on a quadrature grid.

    The grid spans the configured theta bounds with ``posterior_points``
    evenly spaced points; weights are normalized to sum to 1.

    Args:
        estimate: Current ability estimate.
        config: Theta bounds and grid size. Defaults to ``CATConfig()``.

    Returns:
        Tuple of (points, weights) numpy arrays of equal length.
    """
    config = config or CATConfig()
    points = np.linspace(config.theta_min, config.theta_max, config.posterior_points)
    z = (points - estimate.theta) / estimate.standard_error
    log_density = -0.5 * z**2
    # Subtract the max before exponentiating to avoid underflow
    weights = np.exp(log_density - log_density.max())
    weights /= weights.sum()
    return points, weights


def compute_prior_theta(
    previous_thetas: List[float],
    previous_ses: List[float],
) -> Tuple[float, float]:
    """
    Compute a prior ability estimate from an examinee's previous sessions.

    Uses precision-weighted averaging (precision = 1/SE^2), so sessions with
    a tighter estimate count more.

    Args:
        previous_thetas: Final theta estimates from past sessions.
        previous_ses: Matching standard errors; non-positive values are skipped.

    Returns:
        Tuple of (prior_mean, prior_sd). Returns the population prior
        (0.0, 1.0) when no usable sessions are provided.

    Raises:
        ValidationError: If the two lists differ in length.
    """
    if not previous_thetas or not previous_ses:
        return (0.0, 1.0)

    if len(previous_thetas) != len(previous_ses):
        raise ValidationError(
            "Previous thetas and standard errors must have the same length",
            context={"thetas": len(previous_thetas), "ses": len(previous_ses)},
        )

    total_precision = 0.0
    weighted_sum = 0.0
    for theta, se in zip(previous_thetas, previous_ses):
        if se <= 0:
            logger.warning(f"Skipping session with non-positive SE: {se}")
            continue
        precision = 1.0 / (se**2)
        total_precision += precision
        weighted_sum += theta * precision

    if total_precision == 0:
        return (0.0, 1.0)

    prior_mean = _clamp(weighted_sum / total_precision, -PRIOR_THETA_LIMIT, PRIOR_THETA_LIMIT)
    prior_sd = _clamp(1.0 / math.sqrt(total_precision), *PRIOR_SD_RANGE)
    return (prior_mean, prior_sd)


def percentage_to_theta(percentage: float) -> float:
    """
    Convert a historical percentage-correct score (0..1) to a starting theta.

    theta = ln(p / (1 - p)) / 1.7, saturating at -3 for p <= 0.01 and at +3
    for p >= 0.99.
    """
    if percentage <= PERCENTAGE_SATURATION:
        return -PRIOR_THETA_LIMIT
    if percentage >= 1.0 - PERCENTAGE_SATURATION:
        return PRIOR_THETA_LIMIT
    theta = math.log(percentage / (1.0 - percentage)) / LOGISTIC_SCALING_CONSTANT
    return _clamp(theta, -PRIOR_THETA_LIMIT, PRIOR_THETA_LIMIT)


@dataclass(frozen=True)
class ExamineeHistory:
    """
    Earlier results of an examinee, used to seed a new session.

    ``session_thetas``/``session_ses`` are final estimates of past adaptive
    sessions. ``percentage_correct`` is the average graded score (0..1) of
    related non-adaptive work, used when there are no past sessions.
    """

    session_thetas: Tuple[float, ...] = ()
    session_ses: Tuple[float, ...] = ()
    percentage_correct: Optional[float] = None


def starting_estimate_from_history(
    history: ExamineeHistory,
    model: IRTModel = IRTModel.TWO_PL,
    config: Optional[CATConfig] = None,
) -> AbilityEstimate:
    """
    Build the initial estimate of a returning examinee.

    Past adaptive sessions take precedence (precision-weighted prior from
    ``compute_prior_theta``). Otherwise a percentage score is converted with
    ``percentage_to_theta`` and starts at SE 0.8. With neither, the configured
    starting ability and initial SE are used. Theta and SE are clamped into
    the configured bounds.

    Raises:
        ValidationError: If percentage_correct is outside [0, 1] or the past
            session lists differ in length.
    """
    config = config or CATConfig()
    if history.session_thetas or history.session_ses:
        theta, se = compute_prior_theta(list(history.session_thetas), list(history.session_ses))
        source = f"{len(history.session_thetas)} previous sessions"
    elif history.percentage_correct is not None:
        percentage = history.percentage_correct
        if not (0.0 <= percentage <= 1.0):
            raise ValidationError(
                "percentage_correct must be in [0, 1]",
                context={"percentage_correct": percentage},
            )
        theta, se = percentage_to_theta(percentage), HISTORY_STARTING_SE
        source = f"percentage score {percentage:.2f}"
    else:
        theta, se = config.starting_ability, config.initial_se
        source = "configured defaults"

    estimate = initialize(
        _clamp(theta, config.theta_min, config.theta_max),
        model,
        config,
        starting_se=_clamp(se, config.se_floor, config.se_ceiling),
    )
    logger.debug(
        f"Starting estimate from {source}: theta={estimate.theta:.3f}, "
        f"SE={estimate.standard_error:.3f}"
    )
    return estimate
