"""
Quiz Session - Lifecycle of a single quiz attempt.

Drives one attempt from start to scored completion:
not_started -> in_progress -> completed (terminal).

Completion is reached either by explicit submission or by the countdown
running out; both go through the same guarded transition, so whichever
arrives first wins and the other is a no-op.
"""

from __future__ import annotations

import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Set

from .question import SINGLE_SELECT, Question
from .scoring import ScoreResult, score
from ..utils.sequencer import shuffle

logger = logging.getLogger(__name__)


NOT_STARTED = "not_started"
IN_PROGRESS = "in_progress"
COMPLETED = "completed"

TRIGGER_SUBMITTED = "submitted"
TRIGGER_TIMEOUT = "timeout"


class QuizStartError(ValueError):
    """Raised when a quiz cannot be started (no usable questions)."""


class CountdownTimer:
    """
    Periodic tick source for one session.

    Runs on a daemon thread and calls ``session.tick`` every ``interval``
    seconds until stopped or the session leaves the in-progress state.
    """

    def __init__(self, session: QuizSession, interval: float = 1.0):
        self.session = session
        self.interval = interval
        self._stop = threading.Event()
        self._thread = threading.Thread(
            target=self._run,
            name=f"countdown-{session.session_id}",
            daemon=True,
        )

    def start(self) -> None:
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()

    @property
    def running(self) -> bool:
        return self._thread.is_alive() and not self._stop.is_set()

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            if self.session.tick(self.interval) is None or self.session.is_completed:
                break


class QuizSession:
    """
    One learner's attempt at one quiz.

    Features:
    - Fresh shuffled question order snapshot on start
    - Free navigation across questions
    - Single-select replaces, multi-select toggles
    - Optional countdown with forced submission
    - Idempotent completion with synchronous scoring
    - Completion callback (used to hand off XP awards)

    Thread-safe: timer ticks and learner input are serialized by a lock.
    """

    def __init__(
        self,
        quiz_id: str,
        learner_id: str,
        questions: Sequence[Question],
        time_limit_seconds: Optional[int] = None,
        is_verified: bool = False,
        session_id: Optional[str] = None,
        dropped_questions: int = 0,
        shuffler: Callable[[Sequence[Question]], List[Question]] = shuffle,
        on_complete: Optional[Callable[[QuizSession], None]] = None,
    ):
        """
        Initialize a quiz session.

        Args:
            quiz_id: Quiz being attempted
            learner_id: Learner taking the quiz (trusted as given)
            questions: Normalized questions, in source order
            time_limit_seconds: Countdown length; None for an unbounded session
            is_verified: Whether completion earns XP/streak credit
            session_id: Attempt ID, prefixed with "qs-" if needed (auto-generated if None)
            dropped_questions: Malformed records dropped during normalization
            shuffler: Ordering function applied on start
            on_complete: Called once, after scoring, on the terminal transition.
                May run on the countdown thread; must not block.

        Raises:
            QuizStartError: If there are no questions
            ValueError: If the time limit is not positive
        """
        if not questions:
            raise QuizStartError(f"Quiz {quiz_id} has no usable questions")

        if time_limit_seconds is not None and time_limit_seconds <= 0:
            raise ValueError(f"Time limit must be positive, got {time_limit_seconds}")

        if session_id is None:
            session_id = str(uuid.uuid4())
        # Attempt records are keyed and listed by this prefix
        self.session_id = session_id if session_id.startswith("qs-") else f"qs-{session_id}"
        self.quiz_id = quiz_id
        self.learner_id = learner_id
        self.source_questions: List[Question] = list(questions)
        self.time_limit_seconds = time_limit_seconds
        self.is_verified = is_verified
        self.dropped_questions = dropped_questions
        self._shuffler = shuffler
        self._on_complete = on_complete

        self.state = NOT_STARTED
        self.ordered_questions: List[Question] = []
        self.current_index = 0
        self.selections: Dict[str, Set[str]] = {}
        self.remaining_seconds: Optional[float] = None
        self.visited: Set[str] = set()

        self.started_at: Optional[datetime] = None
        self.completed_at: Optional[datetime] = None
        self.completion_trigger: Optional[str] = None
        self.result: Optional[ScoreResult] = None
        self.abandoned = False

        self._lock = threading.RLock()
        self._settled = threading.Event()
        self._timer: Optional[CountdownTimer] = None

    # ==================== Lifecycle ====================

    def start(self, auto_countdown: bool = False, tick_interval: float = 1.0) -> Question:
        """
        Start the attempt: snapshot a shuffled order and arm the countdown.

        Args:
            auto_countdown: Run a background CountdownTimer (otherwise the
                caller drives ``tick``)
            tick_interval: Seconds between automatic ticks

        Returns:
            The first question to present

        Raises:
            ValueError: If the session was already started or abandoned
        """
        with self._lock:
            self._require_state(NOT_STARTED)

            self.ordered_questions = list(self._shuffler(self.source_questions))
            self.current_index = 0
            self.visited = {self.ordered_questions[0].id}
            self.remaining_seconds = self.time_limit_seconds
            self.started_at = datetime.now(timezone.utc)
            self.state = IN_PROGRESS

            if auto_countdown and self.time_limit_seconds is not None:
                self._timer = CountdownTimer(self, interval=tick_interval)
                self._timer.start()

            logger.info(
                "Session %s started: quiz=%s learner=%s questions=%d limit=%s",
                self.session_id,
                self.quiz_id,
                self.learner_id,
                len(self.ordered_questions),
                self.time_limit_seconds,
            )
            return self.current_question

    def submit(self) -> ScoreResult:
        """
        Submit the attempt.

        Idempotent: submitting an already completed session returns the
        existing result.

        Returns:
            Final ScoreResult
        """
        return self._complete(TRIGGER_SUBMITTED)

    def tick(self, elapsed: float = 1.0) -> Optional[float]:
        """
        Advance the countdown by ``elapsed`` seconds.

        Forces submission when the countdown reaches zero.

        Returns:
            Remaining seconds, or None if the session has no countdown or is
            no longer in progress
        """
        with self._lock:
            if self.state != IN_PROGRESS or self.abandoned or self.remaining_seconds is None:
                return None

            self.remaining_seconds = max(0.0, self.remaining_seconds - elapsed)
            if self.remaining_seconds > 0:
                return self.remaining_seconds

            # Still holding the (re-entrant) lock so abandon() cannot interleave
            logger.info("Session %s ran out of time", self.session_id)
            self._complete(TRIGGER_TIMEOUT)
            return 0.0

    def abandon(self) -> None:
        """Abandon the attempt without scoring or persisting anything."""
        with self._lock:
            if self.state == COMPLETED:
                return
            self.abandoned = True
            self._stop_timer()
            logger.info("Session %s abandoned", self.session_id)

    def retake(self) -> QuizSession:
        """
        Create a fresh attempt at the same quiz.

        Nothing carries over: new ID, new shuffle on start, full time limit.
        """
        return QuizSession(
            quiz_id=self.quiz_id,
            learner_id=self.learner_id,
            questions=self.source_questions,
            time_limit_seconds=self.time_limit_seconds,
            is_verified=self.is_verified,
            dropped_questions=self.dropped_questions,
            shuffler=self._shuffler,
            on_complete=self._on_complete,
        )

    def _complete(self, trigger: str) -> ScoreResult:
        """Guarded terminal transition shared by submission and timeout."""
        with self._lock:
            first = self.state != COMPLETED
            if first:
                self._require_state(IN_PROGRESS)

                self.result = score(self.ordered_questions, self.selections)
                self.state = COMPLETED
                self.completion_trigger = trigger
                self.completed_at = datetime.now(timezone.utc)
                self._stop_timer()

                logger.info(
                    "Session %s completed (%s): %d%% (%d/%d)",
                    self.session_id,
                    trigger,
                    self.result.percentage,
                    self.result.correct_count,
                    self.result.total_questions,
                )
            else:
                logger.debug(
                    "Session %s already completed, ignoring %s", self.session_id, trigger
                )

        if not first:
            # Late triggers return only once the completion callback has run
            self._settled.wait()
            return self.result

        # Outside the lock: the callback may hand off to other threads
        try:
            if self._on_complete is not None:
                self._on_complete(self)
        finally:
            self._settled.set()

        return self.result

    def _stop_timer(self) -> None:
        if self._timer is not None:
            self._timer.stop()
            self._timer = None

    def _require_state(self, expected: str) -> None:
        if self.abandoned:
            raise ValueError(f"Session {self.session_id} was abandoned")
        if self.state != expected:
            raise ValueError(
                f"Session {self.session_id} is {self.state}, expected {expected}"
            )

    # ==================== Navigation ====================

    @property
    def current_question(self) -> Question:
        """Question at the current index."""
        return self.ordered_questions[self.current_index]

    def go_to(self, index: int) -> Question:
        """
        Jump to any question index.

        Raises:
            ValueError: If the index is out of range or the session is not in progress
        """
        with self._lock:
            self._require_state(IN_PROGRESS)
            if not (0 <= index < len(self.ordered_questions)):
                raise ValueError(
                    f"Question index {index} out of range 0..{len(self.ordered_questions) - 1}"
                )
            self.current_index = index
            self.visited.add(self.current_question.id)
            return self.current_question

    def next_question(self) -> Question:
        """Move forward one question (stays on the last one)."""
        with self._lock:
            return self.go_to(min(self.current_index + 1, len(self.ordered_questions) - 1))

    def previous_question(self) -> Question:
        """Move back one question (stays on the first one)."""
        with self._lock:
            return self.go_to(max(self.current_index - 1, 0))

    # ==================== Selection ====================

    def select(self, answer_id: str, question_id: Optional[str] = None) -> Set[str]:
        """
        Record a selection for the current or a previously visited question.

        Single-select replaces any prior selection; multi-select toggles the
        answer's membership.

        Args:
            answer_id: Answer being selected
            question_id: Target question (defaults to the current question)

        Returns:
            Copy of the question's selection set after the change

        Raises:
            ValueError: If the session is not in progress, the question has
                not been visited, or the answer does not belong to it
        """
        with self._lock:
            self._require_state(IN_PROGRESS)

            question = self._find_question(question_id or self.current_question.id)
            if question.id not in self.visited:
                raise ValueError(f"Question {question.id} has not been visited yet")

            if not question.has_answer(answer_id):
                raise ValueError(
                    f"Answer {answer_id} does not belong to question {question.id}"
                )

            if question.kind == SINGLE_SELECT:
                self.selections[question.id] = {answer_id}
            else:
                chosen = self.selections.setdefault(question.id, set())
                if answer_id in chosen:
                    chosen.remove(answer_id)
                else:
                    chosen.add(answer_id)

            return set(self.selections[question.id])

    def selected_for(self, question_id: str) -> Set[str]:
        """Copy of the current selection set for a question."""
        with self._lock:
            return set(self.selections.get(question_id, set()))

    def _find_question(self, question_id: str) -> Question:
        question = next((q for q in self.ordered_questions if q.id == question_id), None)
        if question is None:
            raise ValueError(f"Question {question_id} not found in session")
        return question

    # ==================== Views ====================

    @property
    def is_completed(self) -> bool:
        return self.state == COMPLETED

    @property
    def answered_count(self) -> int:
        """Number of questions with a non-empty selection."""
        return sum(1 for chosen in self.selections.values() if chosen)

    @property
    def time_taken_seconds(self) -> Optional[int]:
        if self.started_at is None:
            return None
        end = self.completed_at or datetime.now(timezone.utc)
        return int((end - self.started_at).total_seconds())

    def view(self) -> Dict[str, Any]:
        """Live snapshot for the presentation layer."""
        with self._lock:
            in_progress = self.state == IN_PROGRESS
            return {
                "session_id": self.session_id,
                "state": self.state,
                "current_index": self.current_index,
                "total_questions": len(self.ordered_questions or self.source_questions),
                "current_question": (
                    self.current_question.to_dict(include_key=False) if in_progress else None
                ),
                "selected_answer_ids": (
                    sorted(self.selections.get(self.current_question.id, ()))
                    if in_progress
                    else []
                ),
                "remaining_seconds": self.remaining_seconds,
                "answered_count": self.answered_count,
                "degraded": self.dropped_questions > 0,
            }

    def to_summary(self, xp_earned: int = 0) -> Dict[str, Any]:
        """
        Attempt history record for the durable store.

        Raises:
            ValueError: If the session is not completed
        """
        if self.state != COMPLETED:
            raise ValueError(f"Session {self.session_id} is not completed")

        return {
            "attempt_id": self.session_id,
            "quiz_id": self.quiz_id,
            "learner_id": self.learner_id,
            "score": self.result.percentage,
            "completed": True,
            "is_verified": self.is_verified,
            "xp_earned": xp_earned,
            "completion_trigger": self.completion_trigger,
            "time_taken_seconds": self.time_taken_seconds,
            "answers": [
                {
                    "question_id": q.id,
                    "selected_answer_ids": sorted(self.selections.get(q.id, ())),
                }
                for q in self.ordered_questions
            ],
            "dropped_questions": self.dropped_questions,
            "created_at": self.completed_at.isoformat(),
        }

    def to_dict(self) -> Dict[str, Any]:
        """Convert session to dictionary."""
        return {
            "session_id": self.session_id,
            "quiz_id": self.quiz_id,
            "learner_id": self.learner_id,
            "state": self.state,
            "is_verified": self.is_verified,
            "time_limit_seconds": self.time_limit_seconds,
            "remaining_seconds": self.remaining_seconds,
            "question_order": [q.id for q in self.ordered_questions],
            "selections": {qid: sorted(ids) for qid, ids in self.selections.items()},
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "completion_trigger": self.completion_trigger,
            "result": self.result.to_dict() if self.result else None,
        }
