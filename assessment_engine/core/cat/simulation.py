"""
Monte Carlo simulation for validating the adaptive session controller.

Simulates N examinees with known abilities taking adaptive sessions through
the real ``CATSessionManager`` against a synthetic calibrated item bank, then
reports test length, bias, RMSE, convergence and the distribution of
termination reasons. Used to check the estimator and stopping coefficients
before trusting their exact values.

References:
    - Weiss, D. J. (2004). Computerized adaptive testing for effective and
      efficient measurement in counseling and education. Measurement and
      Evaluation in Counseling and Development, 37(2), 70-84.
"""

import logging
import random
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional

import numpy as np

from assessment_engine.core.cat.engine import CATSessionManager, GradeResult
from assessment_engine.core.cat.irt_models import get_irt_model
from assessment_engine.core.cat.item_pool import InMemoryItemPool, Item
from assessment_engine.core.config import CATConfig
from assessment_engine.domain_types import IRTModel, SelectionStrategy

logger = logging.getLogger(__name__)

# Synthetic item parameter distributions (Lord, 1980)
DISCRIMINATION_LOGNORMAL_MEAN = 0.0
DISCRIMINATION_LOGNORMAL_SD = 0.3
DISCRIMINATION_MIN = 0.5
DISCRIMINATION_MAX = 2.5
DIFFICULTY_NORMAL_MEAN = 0.0
DIFFICULTY_NORMAL_SD = 1.0
DIFFICULTY_MIN = -3.0
DIFFICULTY_MAX = 3.0
# Guessing for 3PL banks ~ Uniform(0.1, 0.25)
GUESSING_RANGE = (0.10, 0.25)


@dataclass
class SimulationConfig:
    """Configuration for a simulation run."""

    n_examinees: int = 200
    n_items: int = 300
    theta_mean: float = 0.0
    theta_sd: float = 1.0
    model: IRTModel = IRTModel.TWO_PL
    strategy: SelectionStrategy = SelectionStrategy.MAXIMUM_INFORMATION
    seed: int = 42
    cat_config: CATConfig = field(default_factory=CATConfig)


@dataclass
class ExamineeResult:
    """Per-examinee simulation results."""

    true_theta: float
    estimated_theta: float
    final_se: float
    bias: float  # estimated_theta - true_theta
    items_administered: int
    termination_reason: str
    converged: bool  # SE <= threshold
    administered_item_ids: List[str] = field(default_factory=list)


@dataclass
class SimulationResult:
    """Aggregate simulation results."""

    config: SimulationConfig
    examinee_results: List[ExamineeResult]
    mean_items: float
    median_items: float
    mean_se: float
    mean_bias: float
    rmse: float
    convergence_rate: float
    termination_reason_counts: Dict[str, int]


class _SimulatedGrader:
    """The simulated examinee answers with the correctness itself."""

    def grade_response(self, item: Item, raw_answer: Any) -> GradeResult:
        return GradeResult(is_correct=bool(raw_answer), score=1.0 if raw_answer else 0.0)


def generate_item_bank(
    n_items: int = 300,
    model: IRTModel = IRTModel.TWO_PL,
    seed: int = 42,
) -> List[Item]:
    """
    Generate a synthetic calibrated item bank.

    Item parameters follow typical operational banks:
        - a ~ LogNormal(0.0, 0.3), clipped to [0.5, 2.5]
        - b ~ Normal(0.0, 1.0), clipped to [-3.0, 3.0]
        - c ~ Uniform(0.10, 0.25) for 3PL banks, else 0

    Args:
        n_items: Number of items.
        model: Model the bank is calibrated for.
        seed: Random seed for reproducibility.

    Returns:
        List of Items with ids "sim-0001", "sim-0002", ...
    """
    rng = np.random.default_rng(seed)
    items = []
    for i in range(1, n_items + 1):
        a = float(np.clip(
            rng.lognormal(mean=DISCRIMINATION_LOGNORMAL_MEAN, sigma=DISCRIMINATION_LOGNORMAL_SD),
            DISCRIMINATION_MIN,
            DISCRIMINATION_MAX,
        ))
        b = float(np.clip(
            rng.normal(loc=DIFFICULTY_NORMAL_MEAN, scale=DIFFICULTY_NORMAL_SD),
            DIFFICULTY_MIN,
            DIFFICULTY_MAX,
        ))
        c = float(rng.uniform(*GUESSING_RANGE)) if model == IRTModel.THREE_PL else 0.0
        items.append(Item(id=f"sim-{i:04d}", difficulty=b, discrimination=a, guessing=c))

    logger.info(f"Generated item bank: {len(items)} items ({IRTModel(model).value})")
    return items


def simulate_response(
    true_theta: float,
    item: Item,
    model: IRTModel,
    rng: random.Random,
) -> bool:
    """Draw a Bernoulli response from the model's probability at true_theta."""
    prob = get_irt_model(model).probability(true_theta, item)
    return rng.random() < prob


def run_simulation(
    config: SimulationConfig,
    item_bank: Optional[List[Item]] = None,
) -> SimulationResult:
    """
    Run the simulation through ``CATSessionManager``.

    For each examinee:
    1. Draw true_theta from N(theta_mean, theta_sd^2)
    2. Start a session and issue the first item
    3. Loop: simulate response -> submit_response until the session terminates
    4. Record an ExamineeResult

    Args:
        config: Simulation configuration.
        item_bank: Optional bank; generated from the config when omitted.

    Returns:
        SimulationResult with per-examinee and aggregate metrics.
    """
    logger.info(
        f"Starting CAT simulation: N={config.n_examinees}, "
        f"theta ~ N({config.theta_mean}, {config.theta_sd}^2), "
        f"model={config.model.value}, strategy={config.strategy.value}"
    )

    bank = item_bank if item_bank is not None else generate_item_bank(
        config.n_items, config.model, config.seed
    )
    rng = random.Random(config.seed)
    np_rng = np.random.default_rng(config.seed)
    cat_config = replace(config.cat_config, model=config.model, strategy=config.strategy)

    results: List[ExamineeResult] = []
    with CATSessionManager(
        InMemoryItemPool(bank),
        _SimulatedGrader(),
        cat_config,
        rng=random.Random(config.seed),
    ) as manager:
        for n in range(1, config.n_examinees + 1):
            true_theta = float(np_rng.normal(loc=config.theta_mean, scale=config.theta_sd))
            examinee_id = f"examinee-{n}"
            session = manager.start_session(examinee_id, "simulation")
            item = manager.issue_first_item(session.session_id)

            while item is not None:
                is_correct = simulate_response(true_theta, item, config.model, rng)
                step = manager.submit_response(
                    session.session_id, examinee_id, item.id, is_correct
                )
                item = step.next_item

            final = manager.get_session(session.session_id)
            reason = final.termination_reason.value if final.termination_reason else "unknown"
            results.append(
                ExamineeResult(
                    true_theta=true_theta,
                    estimated_theta=final.estimate.theta,
                    final_se=final.estimate.standard_error,
                    bias=final.estimate.theta - true_theta,
                    items_administered=len(final.history),
                    termination_reason=reason,
                    converged=final.estimate.standard_error <= cat_config.se_threshold,
                    administered_item_ids=final.used_item_ids,
                )
            )

            if n % 100 == 0:
                logger.info(f"Completed {n}/{config.n_examinees} examinees")

    return _aggregate_results(config, results)


def _aggregate_results(
    config: SimulationConfig,
    examinee_results: List[ExamineeResult],
) -> SimulationResult:
    if not examinee_results:
        raise ValueError("Cannot aggregate results from empty examinee list")

    items = np.array([r.items_administered for r in examinee_results], dtype=float)
    ses = np.array([r.final_se for r in examinee_results])
    biases = np.array([r.bias for r in examinee_results])

    reason_counts: Dict[str, int] = {}
    for r in examinee_results:
        reason_counts[r.termination_reason] = reason_counts.get(r.termination_reason, 0) + 1

    result = SimulationResult(
        config=config,
        examinee_results=examinee_results,
        mean_items=float(np.mean(items)),
        median_items=float(np.median(items)),
        mean_se=float(np.mean(ses)),
        mean_bias=float(np.mean(biases)),
        rmse=float(np.sqrt(np.mean(biases**2))),
        convergence_rate=sum(1 for r in examinee_results if r.converged) / len(examinee_results),
        termination_reason_counts=reason_counts,
    )

    logger.info(
        f"Simulation complete: mean_items={result.mean_items:.1f}, "
        f"mean_SE={result.mean_se:.3f}, RMSE={result.rmse:.3f}, "
        f"convergence_rate={result.convergence_rate:.1%}"
    )
    return result
