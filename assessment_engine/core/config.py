"""
Engine configuration settings.

``Settings`` is loaded from environment variables (and an optional ``.env``
file). The numeric bounds used by the ability estimator are deliberately
configuration rather than constants: theta clamps and the standard-error floor
depend on the calibration scale of the item bank in use.

``CATConfig`` and ``ReviewConfig`` are immutable per-deployment (or
per-session) views built from ``Settings``; the engine components take them as
explicit arguments instead of reading module globals.
"""

import math
from dataclasses import dataclass, replace
from typing import Any, Optional, Self

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from assessment_engine.core.exceptions import ValidationError
from assessment_engine.domain_types import IRTModel, SelectionStrategy


class Settings(BaseSettings):
    """Engine settings loaded from environment variables."""

    # Application
    APP_NAME: str = "Adaptive Assessment Engine"
    ENV: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Ability estimation bounds
    THETA_MIN: float = -4.0
    THETA_MAX: float = 4.0
    INITIAL_SE: float = Field(default=1.0, gt=0.0)
    SE_FLOOR: float = Field(
        default=0.05,
        gt=0.0,
        description="Lower bound for the standard error of theta",
    )
    SE_CEILING: float = Field(default=1.0, gt=0.0)
    # Information values below this are clamped before dividing
    INFORMATION_EPSILON: float = Field(default=1e-6, gt=0.0)

    # Adaptive session defaults
    CAT_MODEL: IRTModel = IRTModel.TWO_PL
    CAT_STARTING_ABILITY: float = 0.0
    CAT_STARTING_DIFFICULTY: float = 0.0
    CAT_MIN_QUESTIONS: int = Field(default=5, ge=1)
    CAT_MAX_QUESTIONS: int = Field(default=20, ge=1)
    CAT_SE_THRESHOLD: float = Field(default=0.30, gt=0.0)
    CAT_SELECTION_STRATEGY: SelectionStrategy = SelectionStrategy.MAXIMUM_INFORMATION
    # Weighted strategy: full weight on the top-K items, reduced weight beyond
    CAT_RANDOMESQUE_K: int = Field(default=5, ge=1)
    CAT_WEIGHTED_TAIL_FACTOR: float = Field(default=0.1, ge=0.0, le=1.0)
    # Quadrature points for the Bayesian posterior grid
    CAT_POSTERIOR_POINTS: int = Field(default=61, ge=3)

    # Grading collaborator
    GRADING_TIMEOUT_SECONDS: float = Field(default=10.0, gt=0.0)
    GRADING_MAX_RETRIES: int = Field(default=2, ge=0)
    GRADING_WORKERS: int = Field(default=4, ge=1)

    # Spaced repetition (SM-2)
    SR_INITIAL_EASE_FACTOR: float = 2.5
    SR_MIN_EASE_FACTOR: float = 1.3
    SR_MAX_INTERVAL_DAYS: int = Field(default=365, ge=1)
    SR_SLOW_INCORRECT_SECONDS: float = Field(default=30.0, gt=0.0)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    @model_validator(mode="after")
    def validate_ability_bounds(self) -> Self:
        """Validate theta and standard error bounds."""
        if self.THETA_MIN >= self.THETA_MAX:
            raise ValueError(
                f"THETA_MIN must be below THETA_MAX, got [{self.THETA_MIN}, {self.THETA_MAX}]"
            )
        if not (self.SE_FLOOR <= self.INITIAL_SE <= self.SE_CEILING):
            raise ValueError(
                "Standard error bounds must satisfy SE_FLOOR <= INITIAL_SE <= SE_CEILING, "
                f"got {self.SE_FLOOR} / {self.INITIAL_SE} / {self.SE_CEILING}"
            )
        if not (self.THETA_MIN <= self.CAT_STARTING_ABILITY <= self.THETA_MAX):
            raise ValueError(
                f"CAT_STARTING_ABILITY {self.CAT_STARTING_ABILITY} is outside "
                f"[{self.THETA_MIN}, {self.THETA_MAX}]"
            )
        return self

    @model_validator(mode="after")
    def validate_session_lengths(self) -> Self:
        """Validate CAT_MIN_QUESTIONS <= CAT_MAX_QUESTIONS."""
        if self.CAT_MIN_QUESTIONS > self.CAT_MAX_QUESTIONS:
            raise ValueError(
                f"CAT_MIN_QUESTIONS ({self.CAT_MIN_QUESTIONS}) must not exceed "
                f"CAT_MAX_QUESTIONS ({self.CAT_MAX_QUESTIONS})"
            )
        return self

    @model_validator(mode="after")
    def validate_ease_factors(self) -> Self:
        """Validate the SM-2 ease factor defaults."""
        if self.SR_MIN_EASE_FACTOR < 1.3:
            raise ValueError(
                f"SR_MIN_EASE_FACTOR must be at least 1.3, got {self.SR_MIN_EASE_FACTOR}"
            )
        if self.SR_INITIAL_EASE_FACTOR < self.SR_MIN_EASE_FACTOR:
            raise ValueError(
                f"SR_INITIAL_EASE_FACTOR ({self.SR_INITIAL_EASE_FACTOR}) must not be "
                f"below SR_MIN_EASE_FACTOR ({self.SR_MIN_EASE_FACTOR})"
            )
        return self


@dataclass(frozen=True)
class CATConfig:
    """Immutable configuration for adaptive sessions."""

    theta_min: float = -4.0
    theta_max: float = 4.0
    initial_se: float = 1.0
    se_floor: float = 0.05
    se_ceiling: float = 1.0
    information_epsilon: float = 1e-6
    model: IRTModel = IRTModel.TWO_PL
    starting_ability: float = 0.0
    starting_difficulty: float = 0.0
    min_questions: int = 5
    max_questions: int = 20
    se_threshold: float = 0.30
    strategy: SelectionStrategy = SelectionStrategy.MAXIMUM_INFORMATION
    randomesque_k: int = 5
    weighted_tail_factor: float = 0.1
    posterior_points: int = 61
    grading_timeout_seconds: float = 10.0
    grading_max_retries: int = 2

    @classmethod
    def from_settings(cls, source: Optional[Settings] = None) -> "CATConfig":
        """Build a CATConfig from ``Settings`` (defaults to the module settings)."""
        s = source or settings
        return cls(
            theta_min=s.THETA_MIN,
            theta_max=s.THETA_MAX,
            initial_se=s.INITIAL_SE,
            se_floor=s.SE_FLOOR,
            se_ceiling=s.SE_CEILING,
            information_epsilon=s.INFORMATION_EPSILON,
            model=s.CAT_MODEL,
            starting_ability=s.CAT_STARTING_ABILITY,
            starting_difficulty=s.CAT_STARTING_DIFFICULTY,
            min_questions=s.CAT_MIN_QUESTIONS,
            max_questions=s.CAT_MAX_QUESTIONS,
            se_threshold=s.CAT_SE_THRESHOLD,
            strategy=s.CAT_SELECTION_STRATEGY,
            randomesque_k=s.CAT_RANDOMESQUE_K,
            weighted_tail_factor=s.CAT_WEIGHTED_TAIL_FACTOR,
            posterior_points=s.CAT_POSTERIOR_POINTS,
            grading_timeout_seconds=s.GRADING_TIMEOUT_SECONDS,
            grading_max_retries=s.GRADING_MAX_RETRIES,
        )

    def with_overrides(self, **overrides: Any) -> "CATConfig":
        """Return a validated copy with the given fields replaced."""
        config = replace(self, **overrides)
        config.validate()
        return config

    def validate(self) -> None:
        """
        Check the configuration for malformed values.

        Raises:
            ValidationError: If any bound or threshold is inconsistent.
        """
        errors = []
        if not (math.isfinite(self.theta_min) and math.isfinite(self.theta_max)):
            errors.append("theta bounds must be finite")
        elif self.theta_min >= self.theta_max:
            errors.append(f"theta_min ({self.theta_min}) must be below theta_max ({self.theta_max})")
        if self.se_floor <= 0:
            errors.append(f"se_floor must be positive, got {self.se_floor}")
        if not (self.se_floor <= self.initial_se <= self.se_ceiling):
            errors.append(
                f"expected se_floor <= initial_se <= se_ceiling, got "
                f"{self.se_floor} / {self.initial_se} / {self.se_ceiling}"
            )
        if self.information_epsilon <= 0:
            errors.append("information_epsilon must be positive")
        if not (self.theta_min <= self.starting_ability <= self.theta_max):
            errors.append(
                f"starting_ability {self.starting_ability} is outside "
                f"[{self.theta_min}, {self.theta_max}]"
            )
        if self.min_questions < 1:
            errors.append(f"min_questions must be at least 1, got {self.min_questions}")
        if self.max_questions < self.min_questions:
            errors.append(
                f"max_questions ({self.max_questions}) must not be below "
                f"min_questions ({self.min_questions})"
            )
        if self.se_threshold <= 0:
            errors.append(f"se_threshold must be positive, got {self.se_threshold}")
        if self.randomesque_k < 1:
            errors.append(f"randomesque_k must be positive, got {self.randomesque_k}")
        if not (0.0 <= self.weighted_tail_factor <= 1.0):
            errors.append("weighted_tail_factor must be in [0.0, 1.0]")
        if self.posterior_points < 3:
            errors.append("posterior_points must be at least 3")
        if self.grading_timeout_seconds <= 0:
            errors.append("grading_timeout_seconds must be positive")
        if self.grading_max_retries < 0:
            errors.append("grading_max_retries must be non-negative")

        if errors:
            raise ValidationError(
                "Invalid adaptive session configuration",
                context={"errors": "; ".join(errors)},
            )


@dataclass(frozen=True)
class ReviewConfig:
    """Immutable configuration for the spaced-repetition scheduler."""

    initial_ease_factor: float = 2.5
    min_ease_factor: float = 1.3
    max_interval_days: int = 365
    slow_incorrect_seconds: float = 30.0

    @classmethod
    def from_settings(cls, source: Optional[Settings] = None) -> "ReviewConfig":
        """Build a ReviewConfig from ``Settings``."""
        s = source or settings
        return cls(
            initial_ease_factor=s.SR_INITIAL_EASE_FACTOR,
            min_ease_factor=s.SR_MIN_EASE_FACTOR,
            max_interval_days=s.SR_MAX_INTERVAL_DAYS,
            slow_incorrect_seconds=s.SR_SLOW_INCORRECT_SECONDS,
        )


settings = Settings()
