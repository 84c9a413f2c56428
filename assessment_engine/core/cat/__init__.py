"""
CAT (Computerized Adaptive Testing) engine.

This module provides IRT response models, ability estimation, item selection,
stopping rules and the session controller that composes them.
"""

from .ability_estimation import (
    AbilityEstimate,
    ExamineeHistory,
    compute_prior_theta,
    initialize,
    percentage_to_theta,
    posterior_grid,
    starting_estimate_from_history,
    update,
)
from .engine import (
    CATResult,
    CATSessionManager,
    CATStepResult,
    CompletionEvent,
    GradeResult,
    Grader,
    ResponseRecord,
    SessionState,
    summarize,
)
from .exposure_control import ExposureMonitor
from .irt_models import ResponseModel, get_irt_model
from .item_pool import InMemoryItemPool, Item, ItemPool, PoolScope
from .item_selection import select_initial, select_next
from .stopping_rules import TerminationDecision, should_terminate

__all__ = [
    "AbilityEstimate",
    "CATResult",
    "CATSessionManager",
    "CATStepResult",
    "CompletionEvent",
    "ExamineeHistory",
    "ExposureMonitor",
    "GradeResult",
    "Grader",
    "InMemoryItemPool",
    "Item",
    "ItemPool",
    "PoolScope",
    "ResponseModel",
    "ResponseRecord",
    "SessionState",
    "TerminationDecision",
    "compute_prior_theta",
    "get_irt_model",
    "initialize",
    "percentage_to_theta",
    "posterior_grid",
    "select_initial",
    "select_next",
    "should_terminate",
    "starting_estimate_from_history",
    "summarize",
    "update",
]
