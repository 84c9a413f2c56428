"""
Tests for adaptive session persistence schemas.
"""
import random

import pytest
from pydantic import ValidationError as PydanticValidationError

from assessment_engine.core.cat.engine import CATSessionManager
from assessment_engine.core.cat.item_pool import InMemoryItemPool, PoolScope
from assessment_engine.core.exceptions import DuplicateActiveSession, ValidationError
from assessment_engine.domain_types import SessionStatus, TerminationReason
from assessment_engine.schemas.cat_session import deserialize_session, serialize_session
from engine_fixtures import AnswerKeyGrader, grid_items


@pytest.fixture
def in_progress(manager):
    """A session with two answered items and a third in flight."""
    session = manager.start_session("e1", "a1")
    item = manager.issue_first_item(session.session_id)
    for answer_correctly in (True, False):
        answer = item.id if answer_correctly else "wrong"
        item = manager.submit_response(
            session.session_id, "e1", item.id, answer, response_time=3.5
        ).next_item
    return manager.get_session(session.session_id)


class TestSerializeSession:
    def test_json_compatible(self, in_progress):
        data = serialize_session(in_progress)
        assert data["session_id"] == in_progress.session_id
        assert data["status"] == "in_progress"
        assert isinstance(data["started_at"], str)
        assert len(data["history"]) == 2
        assert data["history"][0]["is_correct"] is True
        assert data["estimate"]["model"] == in_progress.estimate.model.value

    def test_scope_tags_sorted(self, manager):
        scope = PoolScope(competency_tags=frozenset({"verbal", "logic"}))
        session = manager.start_session("e2", "a1", scope=scope)
        data = serialize_session(manager.get_session(session.session_id))
        assert data["scope"]["competency_tags"] == ["logic", "verbal"]


class TestDeserializeSession:
    def test_round_trip(self, in_progress):
        restored = deserialize_session(serialize_session(in_progress))
        assert restored == in_progress
        assert restored.started_at.tzinfo is not None

    def test_terminated_session(self, manager):
        session = manager.start_session("e1", "a1")
        manager.issue_first_item(session.session_id)
        manager.abandon(session.session_id, "e1")
        restored = deserialize_session(serialize_session(manager.get_session(session.session_id)))
        assert restored.status == SessionStatus.TERMINATED
        assert restored.termination_reason == TerminationReason.ABANDONED
        assert restored.completed_at is not None

    @pytest.mark.parametrize(
        "path,value",
        [
            (("estimate", "standard_error"), 0.0),
            (("status",), "PAUSED"),
            (("session_id",), ""),
        ],
    )
    def test_invalid_payload(self, in_progress, path, value):
        data = serialize_session(in_progress)
        target = data
        for key in path[:-1]:
            target = target[key]
        target[path[-1]] = value
        with pytest.raises(PydanticValidationError):
            deserialize_session(data)

    def test_missing_field(self, in_progress):
        data = serialize_session(in_progress)
        del data["estimate"]
        with pytest.raises(PydanticValidationError):
            deserialize_session(data)


class TestRestoreSession:
    def test_restored_session_continues(self, in_progress):
        restored = deserialize_session(serialize_session(in_progress))
        with CATSessionManager(
            InMemoryItemPool(grid_items()), AnswerKeyGrader(), rng=random.Random(1)
        ) as other:
            registered = other.restore_session(restored)
            assert registered == in_progress

            step = other.submit_response(
                restored.session_id, "e1", restored.active_item_id, restored.active_item_id
            )
            assert step.items_administered == 3
            assert step.is_correct is True
            unused_ids = [i.id for i in other.get_unused_items(restored.session_id)]
            assert restored.active_item_id not in unused_ids

    def test_duplicate_session_id_rejected(self, manager, in_progress):
        with pytest.raises(ValidationError):
            manager.restore_session(in_progress)

    def test_restoring_second_active_session_rejected(self, in_progress):
        restored = deserialize_session(serialize_session(in_progress))
        with CATSessionManager(InMemoryItemPool(grid_items()), AnswerKeyGrader()) as other:
            other.start_session("e1", "a1")
            with pytest.raises(DuplicateActiveSession):
                other.restore_session(restored)

    def test_in_flight_item_missing_from_pool_rejected(self, in_progress):
        restored = deserialize_session(serialize_session(in_progress))
        remaining = [i for i in grid_items() if i.id != restored.active_item_id]
        with CATSessionManager(InMemoryItemPool(remaining), AnswerKeyGrader()) as other:
            with pytest.raises(ValidationError) as exc_info:
                other.restore_session(restored)
            assert exc_info.value.context["item_id"] == restored.active_item_id

            # nothing was registered, so the examinee can still start a session
            other.start_session("e1", "a1")
