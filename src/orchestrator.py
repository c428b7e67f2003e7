"""
Quiz Engine - Orchestrates one quiz attempt end to end.

Orchestrates the complete attempt pipeline:
1. Question normalization (malformed records dropped)
2. Shuffled sequencing on start
3. Session lifecycle with optional countdown
4. Synchronous scoring on completion
5. Background persistence: attempt history, then the XP award

This is the main entry point for the presentation layer.
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional

from .config import config
from .models.progression import AwardResult, ProgressionUpdater, xp_for_score
from .models.question import Question
from .models.quiz_session import QuizSession, QuizStartError
from .utils.normalizer import normalize
from .utils.persistence import ProgressionStore, StoreError, get_progression_store
from .utils.progress import level_progress
from .utils.sequencer import shuffle

logger = logging.getLogger(__name__)


@dataclass
class SubmissionOutcome:
    """
    What the learner sees after completion.

    The score is final as soon as the outcome exists; ``award`` and
    ``attempt_recorded`` are filled in by the background job.
    """
    session_id: str
    learner_id: str
    score: int
    correct_count: int
    total_questions: int
    completion_trigger: str
    is_verified: bool
    xp_earned: int
    attempt_recorded: Optional[bool] = None
    award: Optional[AwardResult] = None
    job: Optional[Future] = field(default=None, repr=False)

    @property
    def message(self) -> str:
        """Award confirmation, empty when no XP is due."""
        if self.award is not None:
            return self.award.message
        return ""

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "session_id": self.session_id,
            "learner_id": self.learner_id,
            "score": self.score,
            "correct_count": self.correct_count,
            "total_questions": self.total_questions,
            "completion_trigger": self.completion_trigger,
            "is_verified": self.is_verified,
            "xp_earned": self.xp_earned,
            "attempt_recorded": self.attempt_recorded,
            "message": self.message,
            "award_status": self.award.status if self.award else None,
            "level_progress": None,
        }
        if self.award is not None and self.award.state is not None:
            state = self.award.state
            data["level_progress"] = level_progress(state.total_xp, state.level)
        return data


class QuizEngine:
    """
    Wires Normalizer -> Sequencer -> Session -> Scorer -> Progression Updater.

    Completion never waits on the durable store: the session scores
    synchronously and hands the attempt record and XP award to a worker
    pool. Abandoned and retaken sessions are forgotten at once; completed
    ones are kept until released or until ``max_retained`` is exceeded.
    """

    def __init__(
        self,
        store: Optional[ProgressionStore] = None,
        updater: Optional[ProgressionUpdater] = None,
        max_workers: int = 4,
        max_retained: int = 1000,
        shuffler=shuffle,
        auto_countdown: Optional[bool] = None,
        tick_interval: Optional[float] = None,
    ):
        """
        Initialize the engine.

        Args:
            store: Durable store (default: configured global store)
            updater: Progression updater (default: one bound to ``store``)
            max_workers: Background persistence threads
            max_retained: Completed sessions kept for lookup before the oldest
                settled ones are evicted
            shuffler: Question ordering applied on session start
            auto_countdown: Run countdown threads (default: config.quiz.auto_countdown)
            tick_interval: Seconds between countdown ticks
        """
        self.store = store or (updater.store if updater else get_progression_store())
        self.updater = updater or ProgressionUpdater(store=self.store)
        self.shuffler = shuffler
        self.auto_countdown = (
            config.quiz.auto_countdown if auto_countdown is None else auto_countdown
        )
        self.tick_interval = tick_interval or config.quiz.tick_interval_seconds
        self.max_retained = max_retained

        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="quiz-persist"
        )
        self._lock = threading.Lock()
        self._sessions: Dict[str, QuizSession] = {}
        self._outcomes: OrderedDict[str, SubmissionOutcome] = OrderedDict()

    # ==================== Session lifecycle ====================

    def open_quiz(
        self,
        quiz_id: str,
        learner_id: str,
        raw_questions: Optional[Iterable[Any]],
        time_limit_minutes: Optional[float] = None,
        is_verified: bool = False,
    ) -> QuizSession:
        """
        Normalize raw records and build a not-yet-started session.

        Args:
            quiz_id: Quiz identifier
            learner_id: Authenticated learner (trusted as given)
            raw_questions: Question records from the content store
            time_limit_minutes: Countdown length (default: config); None for unbounded
            is_verified: Whether completion earns XP and streak credit

        Raises:
            QuizStartError: If no usable question survives normalization
        """
        result = normalize(raw_questions)

        if not result.questions:
            raise QuizStartError(
                f"Quiz {quiz_id} has no usable questions ({result.dropped} dropped)"
            )
        if result.degraded:
            logger.warning(
                "Quiz %s running degraded: %d of %d question records dropped",
                quiz_id,
                result.dropped,
                result.dropped + len(result),
            )

        if time_limit_minutes is None:
            time_limit_minutes = config.quiz.default_time_limit_minutes
        time_limit_seconds = (
            int(time_limit_minutes * 60) if time_limit_minutes is not None else None
        )

        session = QuizSession(
            quiz_id=quiz_id,
            learner_id=learner_id,
            questions=result.questions,
            time_limit_seconds=time_limit_seconds,
            is_verified=is_verified,
            dropped_questions=result.dropped,
            shuffler=self.shuffler,
            on_complete=self._on_session_complete,
        )
        self._register(session)
        return session

    def start(self, session: QuizSession) -> Question:
        """Start a session and return its first question."""
        return session.start(
            auto_countdown=self.auto_countdown, tick_interval=self.tick_interval
        )

    def start_quiz(
        self,
        quiz_id: str,
        learner_id: str,
        raw_questions: Optional[Iterable[Any]],
        time_limit_minutes: Optional[float] = None,
        is_verified: bool = False,
    ) -> QuizSession:
        """Open and immediately start a session."""
        session = self.open_quiz(
            quiz_id, learner_id, raw_questions, time_limit_minutes, is_verified
        )
        self.start(session)
        return session

    def submit(self, session_id: str) -> SubmissionOutcome:
        """
        Submit an attempt.

        Returns the same outcome when the session already completed (for
        example, the countdown got there first).
        """
        session = self.get_session(session_id)
        session.submit()
        return self.outcome(session_id)

    def abandon(self, session_id: str) -> None:
        """Discard an attempt; nothing is scored or persisted."""
        self.get_session(session_id).abandon()
        self.release(session_id)

    def retake(self, session_id: str) -> QuizSession:
        """
        Start over with a fresh session for the same quiz.

        An unfinished previous attempt is abandoned.
        """
        previous = self.get_session(session_id)
        if not previous.is_completed:
            previous.abandon()

        session = previous.retake()
        self.release(previous.session_id)
        self._register(session)
        self.start(session)
        logger.info("Session %s retaken as %s", previous.session_id, session.session_id)
        return session

    # ==================== Completion ====================

    def _on_session_complete(self, session: QuizSession) -> None:
        # May run on a countdown thread; only schedules work
        result = session.result
        xp = xp_for_score(result.percentage) if session.is_verified else 0

        outcome = SubmissionOutcome(
            session_id=session.session_id,
            learner_id=session.learner_id,
            score=result.percentage,
            correct_count=result.correct_count,
            total_questions=result.total_questions,
            completion_trigger=session.completion_trigger,
            is_verified=session.is_verified,
            xp_earned=xp,
        )
        outcome.job = self._executor.submit(self._persist, session, outcome)
        with self._lock:
            self._outcomes[session.session_id] = outcome
            self._evict_settled()

    def _persist(self, session: QuizSession, outcome: SubmissionOutcome) -> Optional[AwardResult]:
        """Background job: attempt history first, then the award."""
        summary = session.to_summary(xp_earned=outcome.xp_earned)
        try:
            outcome.attempt_recorded = bool(
                self.updater.call_store(self.store.record_attempt, summary)
            )
        except StoreError as e:
            outcome.attempt_recorded = False
            logger.warning("Attempt %s not recorded: %s", session.session_id, e)

        if outcome.xp_earned <= 0:
            return None

        outcome.award = self.updater.award(
            session.learner_id, outcome.xp_earned, completed_quiz=True
        )
        return outcome.award

    def outcome(self, session_id: str) -> Optional[SubmissionOutcome]:
        """Outcome of a completed session, or None if it has not completed."""
        with self._lock:
            return self._outcomes.get(session_id)

    def wait_for_award(
        self, session_id: str, timeout: Optional[float] = None
    ) -> Optional[AwardResult]:
        """
        Block until the background job for a session finishes.

        Returns:
            The AwardResult, or None when no award was due
        """
        outcome = self.outcome(session_id)
        if outcome is None or outcome.job is None:
            return None
        return outcome.job.result(timeout=timeout)

    # ==================== Views ====================

    def get_session(self, session_id: str) -> QuizSession:
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise KeyError(f"Unknown session: {session_id}")
        return session

    def view(self, session_id: str) -> Dict[str, Any]:
        """Session snapshot plus the outcome once completed."""
        data = self.get_session(session_id).view()
        outcome = self.outcome(session_id)
        data["outcome"] = outcome.to_dict() if outcome else None
        return data

    def get_progression(self, learner_id: str) -> Dict[str, Any]:
        """
        Learner progression for dashboards.

        Includes XP still waiting for sync; ``state`` is None when the
        store is unreachable or the learner has no record yet.
        """
        try:
            state = self.updater.call_store(self.store.load_progression, learner_id)
        except StoreError as e:
            logger.warning("Progression for %s unavailable: %s", learner_id, e)
            state = None

        return {
            "learner_id": learner_id,
            "state": state.to_dict() if state else None,
            "level_progress": level_progress(state.total_xp, state.level) if state else None,
            "pending_xp": self.updater.queue.pending_xp(learner_id),
        }

    def release(self, session_id: str) -> Optional[SubmissionOutcome]:
        """
        Forget a session and its outcome.

        A background job still in flight runs to completion.

        Returns:
            The released outcome, or None if the session never completed
        """
        with self._lock:
            self._sessions.pop(session_id, None)
            return self._outcomes.pop(session_id, None)

    def _evict_settled(self) -> None:
        # Caller holds self._lock; oldest outcomes go first
        excess = len(self._outcomes) - self.max_retained
        if excess <= 0:
            return
        for session_id in list(self._outcomes):
            if excess <= 0:
                break
            job = self._outcomes[session_id].job
            if job is not None and not job.done():
                continue
            del self._outcomes[session_id]
            self._sessions.pop(session_id, None)
            excess -= 1

    def _register(self, session: QuizSession) -> None:
        with self._lock:
            self._sessions[session.session_id] = session

    def shutdown(self, wait: bool = True) -> None:
        """Stop background workers; pending jobs finish when ``wait`` is True."""
        self._executor.shutdown(wait=wait)
        self.updater.shutdown()
