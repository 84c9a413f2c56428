"""
Item response models for Computerized Adaptive Testing.

Three logistic models share one response function:

    P(theta) = c + (1 - c) / (1 + exp(-a * (theta - b)))

    - Rasch: a = 1, c = 0 (only difficulty is used)
    - 2PL:   c = 0
    - 3PL:   full form, c is the guessing floor

The variant is picked once per session with ``get_irt_model()`` and the
returned model object is passed around; update and selection code never branch
on the model type.

Fisher information:
    Rasch / 2PL:  I(theta) = a^2 * P * (1 - P)
    3PL:          I(theta) = a^2 * ((P - c) / (1 - c))^2 * (1 - P) / P

Score (first derivative of the log-likelihood of response u):
    Rasch / 2PL:  a * (u - P)
    3PL:          a * (u - P) * (P - c) / ((1 - c) * P)

References:
    - Lord, F. M. (1980). Applications of item response theory to practical
      testing problems.
    - Baker, F. B., & Kim, S.-H. (2004). Item response theory: Parameter
      estimation techniques (2nd ed.).
"""

import math
from dataclasses import dataclass
from typing import Dict, Protocol, Tuple, runtime_checkable

import numpy as np

from assessment_engine.domain_types import IRTModel


@runtime_checkable
class CalibratedItem(Protocol):
    """Protocol for items with IRT parameters."""

    @property
    def difficulty(self) -> float:
        ...

    @property
    def discrimination(self) -> float:
        ...

    @property
    def guessing(self) -> float:
        ...


def logistic(x: float) -> float:
    """Numerically stable logistic function."""
    if x >= 0:
        return 1.0 / (1.0 + math.exp(-x))
    exp_x = math.exp(x)
    return exp_x / (1.0 + exp_x)


@dataclass(frozen=True)
class ResponseModel:
    """
    A logistic IRT model variant.

    ``uses_discrimination`` and ``uses_guessing`` decide which item parameters
    the variant honours; ignored parameters are replaced by their neutral
    values (a = 1, c = 0).
    """

    kind: IRTModel
    uses_discrimination: bool
    uses_guessing: bool

    def parameters(self, item: CalibratedItem) -> Tuple[float, float, float]:
        """Return the (a, b, c) parameters this variant applies to ``item``."""
        a = item.discrimination if self.uses_discrimination else 1.0
        c = item.guessing if self.uses_guessing else 0.0
        return a, item.difficulty, c

    def probability(self, theta: float, item: CalibratedItem) -> float:
        """Probability of a correct response at ability ``theta``."""
        a, b, c = self.parameters(item)
        return c + (1.0 - c) * logistic(a * (theta - b))

    def information(self, theta: float, item: CalibratedItem) -> float:
        """Fisher information of ``item`` at ability ``theta`` (non-negative)."""
        a, b, c = self.parameters(item)
        p = c + (1.0 - c) * logistic(a * (theta - b))
        if p <= 0.0 or p >= 1.0:
            return 0.0
        if c == 0.0:
            return (a**2) * p * (1.0 - p)
        ratio = (p - c) / (1.0 - c)
        return (a**2) * (ratio**2) * (1.0 - p) / p

    def score(self, theta: float, item: CalibratedItem, is_correct: bool) -> float:
        """Derivative of the response log-likelihood with respect to theta."""
        a, b, c = self.parameters(item)
        p = c + (1.0 - c) * logistic(a * (theta - b))
        u = 1.0 if is_correct else 0.0
        if c == 0.0:
            return a * (u - p)
        if p <= 0.0:
            return 0.0
        return a * (u - p) * (p - c) / ((1.0 - c) * p)

    def information_grid(self, thetas: np.ndarray, item: CalibratedItem) -> np.ndarray:
        """Vectorized Fisher information over an array of ability values."""
        a, b, c = self.parameters(item)
        z = a * (np.asarray(thetas, dtype=float) - b)
        # expit(z) = exp(-log(1 + exp(-z))), stable for large |z|
        s = np.exp(-np.logaddexp(0.0, -z))
        p = c + (1.0 - c) * s
        with np.errstate(divide="ignore", invalid="ignore"):
            if c == 0.0:
                info = (a**2) * p * (1.0 - p)
            else:
                info = (a**2) * ((p - c) / (1.0 - c)) ** 2 * (1.0 - p) / p
        return np.nan_to_num(np.clip(info, 0.0, None), nan=0.0, posinf=0.0)


RASCH = ResponseModel(IRTModel.RASCH, uses_discrimination=False, uses_guessing=False)
TWO_PL = ResponseModel(IRTModel.TWO_PL, uses_discrimination=True, uses_guessing=False)
THREE_PL = ResponseModel(IRTModel.THREE_PL, uses_discrimination=True, uses_guessing=True)

_MODELS: Dict[IRTModel, ResponseModel] = {
    IRTModel.RASCH: RASCH,
    IRTModel.TWO_PL: TWO_PL,
    IRTModel.THREE_PL: THREE_PL,
}


def get_irt_model(model: IRTModel | str) -> ResponseModel:
    """
    Resolve a model tag to its response model.

    Args:
        model: An ``IRTModel`` member or its string value ("rasch", "2pl", "3pl").

    Returns:
        The shared, immutable ``ResponseModel`` for that variant.

    Raises:
        ValueError: If the tag does not name a known model.
    """
    return _MODELS[IRTModel(model)]
