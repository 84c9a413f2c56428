"""
Error taxonomy for the assessment engine.

Every engine error carries a human-readable message plus optional structured
context and the underlying cause, formatted the same way across the package:

    PoolExhausted: No eligible items remain (context: session_id=s-1, used=3)

Numeric instability (near-zero information) is never raised; the ability
estimator recovers from it locally by clamping.
"""

from typing import Any, Dict, Optional


class AssessmentEngineError(Exception):
    """Base class for all assessment engine errors."""

    def __init__(
        self,
        message: str,
        original_error: Optional[Exception] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        """Initialize with message, optional cause, and structured context."""
        self.message = message
        self.original_error = original_error
        self.context = context or {}
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        msg = self.message
        if self.context:
            ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            msg = f"{msg} (context: {ctx_str})"
        if self.original_error:
            msg = f"{msg} - caused by: {str(self.original_error)}"
        return msg


class ValidationError(AssessmentEngineError, ValueError):
    """Malformed initialization parameters. Fatal and raised immediately."""


class DuplicateActiveSession(ValidationError):
    """An examinee already has a non-terminated session for the assessment."""


class PoolExhausted(AssessmentEngineError):
    """No eligible item remains. Triggers graceful termination."""


class StaleSubmission(AssessmentEngineError):
    """Answer for a non-active item, a foreign examinee or a terminated session."""


class GradingTimeout(AssessmentEngineError):
    """The grading collaborator did not answer within the bounded retries."""


class InvalidStateTransition(AssessmentEngineError):
    """Attempt to advance a session along a transition it does not allow."""


__all__ = [
    "AssessmentEngineError",
    "ValidationError",
    "DuplicateActiveSession",
    "PoolExhausted",
    "StaleSubmission",
    "GradingTimeout",
    "InvalidStateTransition",
]
