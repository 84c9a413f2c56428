"""Shared domain types for the assessment engine.

This module is the single source of truth for the enums used by the adaptive
testing subsystem, the spaced-repetition subsystem and the persistence codecs.

Usage:
    from assessment_engine.domain_types import IRTModel, SessionStatus
"""

import enum


class IRTModel(str, enum.Enum):
    """Item response model variant, chosen once per session."""

    RASCH = "rasch"
    TWO_PL = "2pl"
    THREE_PL = "3pl"


class SelectionStrategy(str, enum.Enum):
    """Strategy used to pick the next item of an adaptive session."""

    MAXIMUM_INFORMATION = "maximum_information"
    BAYESIAN = "bayesian"
    WEIGHTED = "weighted"


class SessionStatus(str, enum.Enum):
    """Adaptive session lifecycle status."""

    INITIALIZED = "initialized"
    IN_PROGRESS = "in_progress"
    TERMINATED = "terminated"


class TerminationReason(str, enum.Enum):
    """Why an adaptive session stopped."""

    MAX_REACHED = "max_reached"
    PRECISION_REACHED = "precision_reached"
    POOL_EXHAUSTED = "pool_exhausted"
    ABANDONED = "abandoned"


class DifficultyLevel(str, enum.Enum):
    """Coarse difficulty levels for uncalibrated items."""

    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class LearningState(str, enum.Enum):
    """Spaced-repetition learning state of a single item."""

    NEW = "new"
    LEARNING = "learning"
    REVIEW = "review"
    RELEARNING = "relearning"


__all__ = [
    "IRTModel",
    "SelectionStrategy",
    "SessionStatus",
    "TerminationReason",
    "DifficultyLevel",
    "LearningState",
]
