"""
Pydantic schemas for persisting adaptive session state.

The engine keeps sessions in memory; storage is a collaborator. These codecs
turn a ``SessionState`` into a JSON-compatible dict and back, so any store can
hold it.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from assessment_engine.core.cat.ability_estimation import AbilityEstimate
from assessment_engine.core.cat.engine import ResponseRecord, SessionState
from assessment_engine.core.cat.item_pool import PoolScope
from assessment_engine.core.datetime_utils import ensure_timezone_aware
from assessment_engine.domain_types import (
    IRTModel,
    SelectionStrategy,
    SessionStatus,
    TerminationReason,
)


class PoolScopeSchema(BaseModel):
    """Schema for the pool restriction of a session."""

    competency_tags: List[str] = Field(default_factory=list)
    min_difficulty: Optional[float] = None
    max_difficulty: Optional[float] = None

    model_config = {"from_attributes": True}

    @field_validator("competency_tags", mode="before")
    @classmethod
    def sort_tags(cls, v: Any) -> List[str]:
        """Store tags in a stable order."""
        return sorted(v or [])


class AbilityEstimateSchema(BaseModel):
    """Schema for an ability estimate."""

    theta: float = Field(..., description="Ability estimate")
    standard_error: float = Field(..., gt=0.0, description="Standard error of theta")
    model: IRTModel = Field(..., description="IRT model variant")

    model_config = {"from_attributes": True}


class ResponseRecordSchema(BaseModel):
    """Schema for one graded response."""

    item_id: str
    is_correct: bool
    response_time: float = Field(..., ge=0.0)
    score: Optional[float] = None
    discrimination: float = Field(..., gt=0.0)
    difficulty: float
    guessing: float = Field(0.0, ge=0.0, lt=1.0)
    theta_before: float
    theta_after: float
    standard_error_after: float
    information: float = Field(..., ge=0.0)
    answered_at: datetime

    model_config = {"from_attributes": True}


class SessionStateSchema(BaseModel):
    """Schema for a complete adaptive session."""

    session_id: str = Field(..., min_length=1)
    examinee_id: str = Field(..., min_length=1)
    assessment_id: str = Field(..., min_length=1)
    scope: PoolScopeSchema
    estimate: AbilityEstimateSchema
    strategy: SelectionStrategy
    started_at: datetime
    history: List[ResponseRecordSchema] = Field(default_factory=list)
    status: SessionStatus
    termination_reason: Optional[TerminationReason] = None
    active_item_id: Optional[str] = None
    completed_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


def serialize_session(session: SessionState) -> Dict[str, Any]:
    """Convert a session to a JSON-compatible dict."""
    return SessionStateSchema.model_validate(session).model_dump(mode="json")


def deserialize_session(data: Dict[str, Any]) -> SessionState:
    """
    Rebuild a session from ``serialize_session`` output.

    Raises:
        pydantic.ValidationError: If the payload is malformed.
    """
    schema = SessionStateSchema.model_validate(data)
    return SessionState(
        session_id=schema.session_id,
        examinee_id=schema.examinee_id,
        assessment_id=schema.assessment_id,
        scope=PoolScope(
            competency_tags=frozenset(schema.scope.competency_tags),
            min_difficulty=schema.scope.min_difficulty,
            max_difficulty=schema.scope.max_difficulty,
        ),
        estimate=AbilityEstimate(
            theta=schema.estimate.theta,
            standard_error=schema.estimate.standard_error,
            model=schema.estimate.model,
        ),
        strategy=schema.strategy,
        started_at=ensure_timezone_aware(schema.started_at),
        history=[
            ResponseRecord(
                **{
                    **r.model_dump(),
                    "answered_at": ensure_timezone_aware(r.answered_at),
                }
            )
            for r in schema.history
        ],
        status=schema.status,
        termination_reason=schema.termination_reason,
        active_item_id=schema.active_item_id,
        completed_at=(
            ensure_timezone_aware(schema.completed_at) if schema.completed_at else None
        ),
    )
