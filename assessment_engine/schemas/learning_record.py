"""
Pydantic schema for persisting spaced-repetition learning records.
"""
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from assessment_engine.core.datetime_utils import ensure_timezone_aware
from assessment_engine.core.spaced_repetition.scheduler import LearningRecord
from assessment_engine.domain_types import LearningState


class LearningRecordSchema(BaseModel):
    """Schema for one (examinee, item) learning record."""

    examinee_id: str = Field(..., min_length=1)
    item_id: str = Field(..., min_length=1)
    ease_factor: float = Field(..., ge=1.3, description="SM-2 ease factor")
    interval_days: int = Field(..., ge=1, description="Current review interval")
    consecutive_correct: int = Field(..., ge=0)
    last_review_at: Optional[datetime] = None
    next_review_at: Optional[datetime] = None
    review_count: int = Field(0, ge=0)
    lapses: int = Field(0, ge=0)
    last_quality: Optional[int] = Field(None, ge=0, le=5)
    state: LearningState = LearningState.NEW

    model_config = {"from_attributes": True}


def serialize_learning_record(record: LearningRecord) -> Dict[str, Any]:
    """Convert a record to a JSON-compatible dict."""
    return LearningRecordSchema.model_validate(record).model_dump(mode="json")


def deserialize_learning_record(data: Dict[str, Any]) -> LearningRecord:
    """
    Rebuild a record from ``serialize_learning_record`` output.

    Raises:
        pydantic.ValidationError: If the payload is malformed (for example an
            ease factor below 1.3).
    """
    schema = LearningRecordSchema.model_validate(data)
    fields = schema.model_dump()
    for key in ("last_review_at", "next_review_at"):
        if fields[key] is not None:
            fields[key] = ensure_timezone_aware(fields[key])
    return LearningRecord(**fields)
