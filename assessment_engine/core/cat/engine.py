"""
CAT Session Controller for adaptive assessments.

Orchestrates a complete adaptive session by composing the ability estimator,
item selection and stopping rules into a state machine:

    INITIALIZED --issue_first_item--> IN_PROGRESS --(stop rule | abandon)--> TERMINATED

Usage:
    manager = CATSessionManager(pool, grader)
    session = manager.start_session("examinee-1", "algebra-unit-3")
    item = manager.issue_first_item(session.session_id)

    while item is not None:
        answer = ...  # collected from the examinee
        step = manager.submit_response(
            session.session_id, "examinee-1", item.id, answer, response_time=12.5
        )
        item = step.next_item

    result = manager.summarize(session.session_id)

Each session has exactly one item in flight and a single writer: every
operation that mutates a session holds that session's lock, so a duplicate or
out-of-order submission sees the updated state and is rejected as stale.
Grading runs on the manager's thread pool with a per-attempt timeout and at
most one grading call in flight per session, so a hung grader cannot starve
other sessions of workers. The session is mutated only after a successful
grade.
"""

import copy
import logging
import random
import threading
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass, field
from datetime import datetime
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Optional,
    Protocol,
    Tuple,
    runtime_checkable,
)

from assessment_engine.core.cat.ability_estimation import (
    AbilityEstimate,
    ExamineeHistory,
    initialize,
    item_information,
    starting_estimate_from_history,
    update,
)
from assessment_engine.core.cat.exposure_control import ExposureMonitor
from assessment_engine.core.cat.item_pool import Item, ItemPool, PoolScope
from assessment_engine.core.cat.item_selection import select_initial, select_next
from assessment_engine.core.cat.stopping_rules import TerminationDecision, should_terminate
from assessment_engine.core.config import CATConfig, settings
from assessment_engine.core.datetime_utils import utc_now
from assessment_engine.core.exceptions import (
    DuplicateActiveSession,
    GradingTimeout,
    InvalidStateTransition,
    PoolExhausted,
    StaleSubmission,
    ValidationError,
)
from assessment_engine.core.graceful_failure import graceful_failure
from assessment_engine.core.logging_config import session_log_context
from assessment_engine.domain_types import (
    SelectionStrategy,
    SessionStatus,
    TerminationReason,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GradeResult:
    """Outcome of grading one raw answer."""

    is_correct: bool
    score: Optional[float] = None


@runtime_checkable
class Grader(Protocol):
    """Grading collaborator. May be slow; it is always called with a timeout."""

    def grade_response(self, item: Item, raw_answer: Any) -> GradeResult:
        ...


@runtime_checkable
class AdministrationRecorder(Protocol):
    """Pools that track per-session usage implement this."""

    def record_administration(self, session_id: str, item_id: str) -> None:
        ...


@dataclass(frozen=True)
class ResponseRecord:
    """One graded response, with the item parameters at administration time."""

    item_id: str
    is_correct: bool
    response_time: float
    score: Optional[float]
    discrimination: float
    difficulty: float
    guessing: float
    theta_before: float
    theta_after: float
    standard_error_after: float
    information: float
    answered_at: datetime


@dataclass
class SessionState:
    """In-memory state of an adaptive session. Mutated only by the manager."""

    session_id: str
    examinee_id: str
    assessment_id: str
    scope: PoolScope
    estimate: AbilityEstimate
    strategy: SelectionStrategy
    started_at: datetime
    history: List[ResponseRecord] = field(default_factory=list)
    status: SessionStatus = SessionStatus.INITIALIZED
    termination_reason: Optional[TerminationReason] = None
    active_item_id: Optional[str] = None
    completed_at: Optional[datetime] = None

    @property
    def used_item_ids(self) -> List[str]:
        return [r.item_id for r in self.history]

    @property
    def correct_count(self) -> int:
        return sum(1 for r in self.history if r.is_correct)


@dataclass
class CATStepResult:
    """Result after processing a single response."""

    session_id: str
    is_correct: bool
    theta_estimate: float
    theta_se: float
    correct_count: int
    items_administered: int
    should_stop: bool
    termination_reason: Optional[TerminationReason]
    next_item: Optional[Item]
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass
class CATResult:
    """Final session summary."""

    session_id: str
    theta_estimate: float
    theta_se: float
    confidence: float
    items_administered: int
    correct_count: int
    average_response_time: float
    ability_progression: List[float]
    termination_reason: Optional[TerminationReason]


@dataclass(frozen=True)
class CompletionEvent:
    """Delivered to completion consumers when a session terminates."""

    session_id: str
    examinee_id: str
    final_ability: float
    final_standard_error: float
    total_questions_administered: int
    item_history: Tuple[ResponseRecord, ...]
    termination_reason: TerminationReason


CompletionConsumer = Callable[[CompletionEvent], None]


@dataclass
class _PendingGrade:
    """The grading call a session has in flight on the worker pool."""

    item_id: str
    raw_answer: Any
    future: "Future[GradeResult]"

    def matches(self, item_id: str, raw_answer: Any) -> bool:
        return self.item_id == item_id and self.raw_answer == raw_answer


@dataclass
class _ManagedSession:
    state: SessionState
    config: CATConfig
    items: Tuple[Item, ...]
    lock: threading.Lock = field(default_factory=threading.Lock)
    pending_grade: Optional[_PendingGrade] = None

    @property
    def items_by_id(self) -> Dict[str, Item]:
        return {item.id: item for item in self.items}


def summarize(session: SessionState) -> CATResult:
    """
    Build the result summary of a session.

    Args:
        session: Any session; usually a terminated one.

    Returns:
        CATResult with the final estimate, confidence, counts, average
        response time and the theta value after every response.
    """
    history = session.history
    average_time = (
        sum(r.response_time for r in history) / len(history) if history else 0.0
    )
    return CATResult(
        session_id=session.session_id,
        theta_estimate=session.estimate.theta,
        theta_se=session.estimate.standard_error,
        confidence=session.estimate.confidence,
        items_administered=len(history),
        correct_count=session.correct_count,
        average_response_time=average_time,
        ability_progression=[r.theta_after for r in history],
        termination_reason=session.termination_reason,
    )


class CATSessionManager:
    """
    Owner of all adaptive sessions of one engine instance.

    Manages:
    - Session start with configuration validation and the one-active-session
      rule per (examinee, assessment)
    - Item issue through the configured selection strategy
    - Response grading with timeout and bounded retries
    - Ability re-estimation and stopping rule evaluation
    - Completion events to registered consumers
    """

    def __init__(
        self,
        pool: ItemPool,
        grader: Grader,
        config: Optional[CATConfig] = None,
        *,
        completion_consumers: Optional[List[CompletionConsumer]] = None,
        exposure_monitor: Optional[ExposureMonitor] = None,
        rng: Optional[random.Random] = None,
        grading_workers: Optional[int] = None,
    ):
        self.config = config or CATConfig.from_settings()
        self.config.validate()
        self._pool = pool
        self._grader = grader
        self._consumers: List[CompletionConsumer] = list(completion_consumers or [])
        self._exposure_monitor = exposure_monitor
        self._rng = rng or random.Random()
        self._executor = ThreadPoolExecutor(
            max_workers=grading_workers or settings.GRADING_WORKERS,
            thread_name_prefix="grader",
        )
        self._registry_lock = threading.Lock()
        self._sessions: Dict[str, _ManagedSession] = {}
        self._active: Dict[Tuple[str, str], str] = {}

        logger.info(
            f"CATSessionManager initialized (model={self.config.model.value}, "
            f"strategy={self.config.strategy.value}, "
            f"min={self.config.min_questions}, max={self.config.max_questions}, "
            f"se_threshold={self.config.se_threshold})"
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def add_completion_consumer(self, consumer: CompletionConsumer) -> None:
        self._consumers.append(consumer)

    def shutdown(self, wait: bool = True) -> None:
        """Stop the grading pool; queued grading calls are cancelled."""
        self._executor.shutdown(wait=wait, cancel_futures=True)

    def __enter__(self) -> "CATSessionManager":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        # hung graders must not block the caller
        self.shutdown(wait=False)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def start_session(
        self,
        examinee_id: str,
        assessment_id: str,
        scope: Optional[PoolScope] = None,
        *,
        starting_ability: Optional[float] = None,
        starting_se: Optional[float] = None,
        history: Optional[ExamineeHistory] = None,
        strategy: Optional[SelectionStrategy] = None,
        config: Optional[CATConfig] = None,
        session_id: Optional[str] = None,
    ) -> SessionState:
        """
        Create a new session in the INITIALIZED state.

        Args:
            examinee_id: Owner of the session.
            assessment_id: Assessment being taken.
            scope: Pool restriction; defaults to the whole pool.
            starting_ability: Prior theta; defaults to the configured value.
            starting_se: Prior standard error; defaults to the configured
                initial SE.
            history: Earlier results of the examinee. The prior is derived
                from it and may not be combined with starting_ability or
                starting_se.
            strategy: Selection strategy; defaults to the configured value.
            config: Per-session configuration override.
            session_id: Explicit id; a UUID is generated when omitted.

        Returns:
            A copy of the new SessionState.

        Raises:
            ValidationError: On malformed configuration, identifiers or
                starting values.
            DuplicateActiveSession: If the examinee already has a
                non-terminated session for this assessment.
        """
        config = config or self.config
        config.validate()
        if not examinee_id or not assessment_id:
            raise ValidationError(
                "examinee_id and assessment_id are required",
                context={"examinee_id": examinee_id, "assessment_id": assessment_id},
            )

        scope = scope or PoolScope()
        strategy = SelectionStrategy(strategy or config.strategy)
        if history is not None:
            if starting_ability is not None or starting_se is not None:
                raise ValidationError(
                    "history cannot be combined with starting_ability or starting_se",
                    context={"examinee_id": examinee_id},
                )
            estimate = starting_estimate_from_history(history, config.model, config)
        else:
            theta0 = config.starting_ability if starting_ability is None else starting_ability
            estimate = initialize(theta0, config.model, config, starting_se=starting_se)
        session_id = session_id or str(uuid.uuid4())

        items = tuple(self._pool.get_available_items(scope))

        state = SessionState(
            session_id=session_id,
            examinee_id=examinee_id,
            assessment_id=assessment_id,
            scope=scope,
            estimate=estimate,
            strategy=strategy,
            started_at=utc_now(),
        )
        self._register(_ManagedSession(state=state, config=config, items=items))

        logger.info(
            f"Started CAT session {session_id} for examinee {examinee_id} "
            f"(assessment={assessment_id}, pool={len(items)}, "
            f"prior theta={estimate.theta:.3f}, strategy={strategy.value})"
        )
        return copy.deepcopy(state)

    def restore_session(
        self, state: SessionState, config: Optional[CATConfig] = None
    ) -> SessionState:
        """
        Register a session loaded from storage (see ``schemas.cat_session``).

        The item snapshot is re-read from the pool with the session's scope.

        Raises:
            ValidationError: If the session id is already registered, or the
                in-flight item is not in the pool for the session scope.
            DuplicateActiveSession: If the restored session is active and
                the examinee already has another active session.
        """
        config = config or self.config
        config.validate()
        items = tuple(self._pool.get_available_items(state.scope))
        if state.active_item_id is not None and state.active_item_id not in {
            item.id for item in items
        }:
            raise ValidationError(
                "In-flight item is not available in the item pool",
                context={"session_id": state.session_id, "item_id": state.active_item_id},
            )
        restored = copy.deepcopy(state)
        self._register(_ManagedSession(state=restored, config=config, items=items))
        logger.info(f"Restored CAT session {state.session_id} ({state.status.value})")
        return copy.deepcopy(restored)

    def issue_first_item(self, session_id: str) -> Optional[Item]:
        """
        Move a session to IN_PROGRESS and return its opening item.

        Returns the current in-flight item when the session is already in
        progress. Returns None when the pool is empty; the session is then
        terminated with POOL_EXHAUSTED.

        Raises:
            InvalidStateTransition: If the session is terminated.
        """
        managed = self._get(session_id)
        event = None
        with session_log_context(session_id), managed.lock:
            state = managed.state
            if state.status == SessionStatus.TERMINATED:
                raise InvalidStateTransition(
                    "Cannot issue an item for a terminated session",
                    context={"session_id": session_id},
                )
            if state.status == SessionStatus.IN_PROGRESS:
                return managed.items_by_id.get(state.active_item_id or "")

            try:
                item = select_initial(managed.items, managed.config.starting_difficulty)
            except PoolExhausted as e:
                logger.warning(f"Session {session_id}: {e}")
                event = self._terminate(managed, TerminationReason.POOL_EXHAUSTED)
                item = None
            else:
                state.status = SessionStatus.IN_PROGRESS
                self._activate(managed, item)

        if event is not None:
            self._deliver(event)
        return item

    def submit_response(
        self,
        session_id: str,
        examinee_id: str,
        item_id: str,
        raw_answer: Any,
        response_time: float = 0.0,
    ) -> CATStepResult:
        """
        Grade an answer for the in-flight item and advance the session.

        Args:
            session_id: Session being answered.
            examinee_id: Submitter; must own the session.
            item_id: Item being answered; must be the in-flight item.
            raw_answer: Passed through to the grader.
            response_time: Seconds spent on the item.

        Returns:
            CATStepResult with the updated estimate, the stopping decision and
            the next item (None once the session terminated).

        Raises:
            StaleSubmission: Terminated session, foreign examinee, or an item
                that is not in flight. The session is not modified.
            GradingTimeout: The grader did not answer within the bounded
                retries. The session is not modified.
            ValidationError: Negative response time.
        """
        managed = self._get(session_id)
        event = None
        with session_log_context(session_id), managed.lock:
            state = managed.state
            self._check_submission(state, examinee_id, item_id)
            if response_time < 0:
                raise ValidationError(
                    "response_time must be non-negative",
                    context={"response_time": response_time},
                )

            item = managed.items_by_id[item_id]
            grade = self._grade(managed, item, raw_answer)

            before = state.estimate
            after = update(before, item, grade.is_correct, managed.config)
            state.history.append(
                ResponseRecord(
                    item_id=item.id,
                    is_correct=grade.is_correct,
                    response_time=response_time,
                    score=grade.score,
                    discrimination=item.discrimination,
                    difficulty=item.difficulty,
                    guessing=item.guessing,
                    theta_before=before.theta,
                    theta_after=after.theta,
                    standard_error_after=after.standard_error,
                    information=item_information(before, item),
                    answered_at=utc_now(),
                )
            )
            state.estimate = after
            state.active_item_id = None

            decision = should_terminate(
                state, after, len(self._unused(managed)), managed.config
            )
            next_item: Optional[Item] = None
            if decision.should_stop:
                event = self._terminate(managed, decision.reason)
            else:
                try:
                    next_item = select_next(
                        managed.items,
                        state.used_item_ids,
                        after,
                        state.strategy,
                        managed.config,
                        rng=self._rng,
                    )
                except PoolExhausted as e:
                    logger.warning(f"Session {session_id}: {e}")
                    decision = TerminationDecision(
                        should_stop=True,
                        reason=TerminationReason.POOL_EXHAUSTED,
                        details=decision.details,
                    )
                    event = self._terminate(managed, TerminationReason.POOL_EXHAUSTED)
                else:
                    self._activate(managed, next_item)

            logger.debug(
                f"Session {session_id}: response #{len(state.history)} "
                f"({item.id}, correct={grade.is_correct}) -> "
                f"theta={after.theta:.3f}, SE={after.standard_error:.3f}, "
                f"stop={decision.should_stop}"
            )

            result = CATStepResult(
                session_id=session_id,
                is_correct=grade.is_correct,
                theta_estimate=after.theta,
                theta_se=after.standard_error,
                correct_count=state.correct_count,
                items_administered=len(state.history),
                should_stop=decision.should_stop,
                termination_reason=decision.reason,
                next_item=next_item,
                details=decision.details,
            )

        if event is not None:
            self._deliver(event)
        return result

    def abandon(self, session_id: str, examinee_id: str) -> SessionState:
        """
        Terminate a session with reason ABANDONED.

        The in-flight item, if any, contributes no ability update.

        Raises:
            InvalidStateTransition: If the session is already terminated.
            StaleSubmission: If examinee_id does not own the session.
        """
        managed = self._get(session_id)
        with session_log_context(session_id), managed.lock:
            state = managed.state
            if state.status == SessionStatus.TERMINATED:
                raise InvalidStateTransition(
                    "Session is already terminated",
                    context={"session_id": session_id, "reason": state.termination_reason},
                )
            if examinee_id != state.examinee_id:
                raise StaleSubmission(
                    "Only the owning examinee can abandon a session",
                    context={"session_id": session_id, "examinee_id": examinee_id},
                )
            event = self._terminate(managed, TerminationReason.ABANDONED)
            snapshot = copy.deepcopy(state)

        self._deliver(event)
        return snapshot

    def get_session(self, session_id: str) -> SessionState:
        """Return a copy of the session state."""
        managed = self._get(session_id)
        with managed.lock:
            return copy.deepcopy(managed.state)

    def get_unused_items(self, session_id: str) -> List[Item]:
        """Items of the session snapshot not yet answered in it."""
        managed = self._get(session_id)
        with managed.lock:
            return self._unused(managed)

    def summarize(self, session_id: str) -> CATResult:
        return summarize(self.get_session(session_id))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _register(self, managed: _ManagedSession) -> None:
        state = managed.state
        key = (state.examinee_id, state.assessment_id)
        with self._registry_lock:
            if state.session_id in self._sessions:
                raise ValidationError(
                    "Session id already registered",
                    context={"session_id": state.session_id},
                )
            if state.status != SessionStatus.TERMINATED:
                existing_id = self._active.get(key)
                if existing_id is not None:
                    raise DuplicateActiveSession(
                        "Examinee already has an active session for this assessment",
                        context={
                            "examinee_id": state.examinee_id,
                            "assessment_id": state.assessment_id,
                            "session_id": existing_id,
                        },
                    )
                self._active[key] = state.session_id
            self._sessions[state.session_id] = managed

    def _get(self, session_id: str) -> _ManagedSession:
        with self._registry_lock:
            managed = self._sessions.get(session_id)
        if managed is None:
            raise ValidationError("Unknown session", context={"session_id": session_id})
        return managed

    def _check_submission(self, state: SessionState, examinee_id: str, item_id: str) -> None:
        context = {"session_id": state.session_id, "item_id": item_id}
        if state.status == SessionStatus.TERMINATED:
            raise StaleSubmission("Session is terminated", context=context)
        if examinee_id != state.examinee_id:
            raise StaleSubmission(
                "Submission from a non-owning examinee",
                context={**context, "examinee_id": examinee_id},
            )
        if state.active_item_id is None or state.active_item_id != item_id:
            raise StaleSubmission(
                "Item is not in flight",
                context={**context, "active_item_id": state.active_item_id},
            )

    def _unused(self, managed: _ManagedSession) -> List[Item]:
        used = set(managed.state.used_item_ids)
        return [item for item in managed.items if item.id not in used]

    def _activate(self, managed: _ManagedSession, item: Item) -> None:
        state = managed.state
        state.active_item_id = item.id
        if isinstance(self._pool, AdministrationRecorder):
            self._pool.record_administration(state.session_id, item.id)
        if self._exposure_monitor is not None:
            self._exposure_monitor.record_selection(
                item.id, assessment_id=state.assessment_id, session_id=state.session_id
            )
        logger.debug(
            f"Session {state.session_id}: issued item {item.id} "
            f"(a={item.discrimination:.2f}, b={item.difficulty:.2f})"
        )

    def _grade(self, managed: _ManagedSession, item: Item, raw_answer: Any) -> GradeResult:
        """
        Grade through the worker pool, holding at most one grading call per session.

        Each retry waits again on the call already in flight instead of
        submitting another, so a hung grader ties up a single worker. A call
        left running by an earlier timeout is picked up again when the same
        answer is resubmitted.
        """
        config = managed.config
        pending = managed.pending_grade
        if pending is not None and not pending.matches(item.id, raw_answer):
            if not pending.future.done():
                raise GradingTimeout(
                    "A previous grading call for this session is still running",
                    context={
                        "session_id": managed.state.session_id,
                        "item_id": item.id,
                        "pending_item_id": pending.item_id,
                    },
                )
            pending = None
        if pending is None:
            pending = _PendingGrade(
                item_id=item.id,
                raw_answer=raw_answer,
                future=self._executor.submit(self._grader.grade_response, item, raw_answer),
            )
            managed.pending_grade = pending

        attempts = config.grading_max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                grade = pending.future.result(timeout=config.grading_timeout_seconds)
            except FuturesTimeoutError:
                if pending.future.done():
                    # the grader itself raised TimeoutError
                    managed.pending_grade = None
                    raise
                logger.warning(
                    f"Grading timed out for item {item.id} "
                    f"(attempt {attempt}/{attempts}, "
                    f"timeout={config.grading_timeout_seconds}s)"
                )
            except Exception:
                managed.pending_grade = None
                raise
            else:
                managed.pending_grade = None
                return grade

        raise GradingTimeout(
            "Grader did not respond in time",
            context={
                "session_id": managed.state.session_id,
                "item_id": item.id,
                "attempts": attempts,
            },
        )

    def _terminate(
        self, managed: _ManagedSession, reason: Optional[TerminationReason]
    ) -> CompletionEvent:
        state = managed.state
        reason = reason or TerminationReason.POOL_EXHAUSTED
        state.status = SessionStatus.TERMINATED
        state.termination_reason = reason
        state.active_item_id = None
        state.completed_at = utc_now()

        key = (state.examinee_id, state.assessment_id)
        with self._registry_lock:
            if self._active.get(key) == state.session_id:
                del self._active[key]

        logger.info(
            f"Session {state.session_id} terminated: reason={reason.value}, "
            f"theta={state.estimate.theta:.3f}, SE={state.estimate.standard_error:.3f}, "
            f"items={len(state.history)}, correct={state.correct_count}"
        )

        return CompletionEvent(
            session_id=state.session_id,
            examinee_id=state.examinee_id,
            final_ability=state.estimate.theta,
            final_standard_error=state.estimate.standard_error,
            total_questions_administered=len(state.history),
            item_history=tuple(state.history),
            termination_reason=reason,
        )

    def _deliver(self, event: CompletionEvent) -> None:
        for consumer in list(self._consumers):
            with graceful_failure(
                "deliver completion event",
                logger,
                exc_info=True,
                context={"session_id": event.session_id},
            ):
                consumer(event)
