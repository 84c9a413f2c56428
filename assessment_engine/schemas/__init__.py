"""
Pydantic schemas for persisting engine state.
"""
from .cat_session import deserialize_session, serialize_session
from .learning_record import deserialize_learning_record, serialize_learning_record

__all__ = [
    "deserialize_learning_record",
    "deserialize_session",
    "serialize_learning_record",
    "serialize_session",
]
