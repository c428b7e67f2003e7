"""
Unit tests for the Quiz Engine.

Tests the complete attempt pipeline:
- Normalization and degraded starts
- Scoring on submission and on timeout
- Background attempt recording and XP awards
- Verified vs unverified quizzes
- Store outages surfacing as pending-sync awards
- Retakes and session retention
- Concurrent submission
"""

import threading
import time
import unittest
from datetime import datetime, timezone
from unittest.mock import Mock

import pytest

from src.models.progression import ProgressionUpdater
from src.models.progression_state import ProgressionState
from src.models.quiz_session import IN_PROGRESS, QuizStartError
from src.orchestrator import QuizEngine, SubmissionOutcome
from src.utils.persistence import InMemoryProgressionStore, StoreUnavailableError


def _in_order(items):
    return list(items)


@pytest.fixture
def engine(memory_store, fixed_now):
    updater = ProgressionUpdater(store=memory_store, clock=lambda: fixed_now, timeout=2.0)
    engine = QuizEngine(
        store=memory_store, updater=updater, shuffler=_in_order, auto_countdown=False
    )
    yield engine
    engine.shutdown()


def _answer_all(session, selections):
    for index in range(len(session.ordered_questions)):
        question = session.go_to(index)
        for answer_id in sorted(selections.get(question.id, ())):
            session.select(answer_id)


class TestQuizEngine:
    """End-to-end tests against the in-memory store."""

    def test_verified_quiz_awards_xp(self, engine, memory_store, raw_questions, correct_selections):
        session = engine.start_quiz("quiz-1", "learner-1", raw_questions, is_verified=True)
        selections = dict(correct_selections)
        selections["q5"] = {"q5-a"}  # one wrong -> 4/5
        _answer_all(session, selections)

        outcome = engine.submit(session.session_id)
        award = engine.wait_for_award(session.session_id, timeout=5)

        assert outcome.score == 80
        assert outcome.xp_earned == 800
        assert award.status == "persisted"
        assert outcome.message == "+800 XP"
        assert outcome.attempt_recorded is True

        stored = memory_store.load_progression("learner-1")
        assert stored.total_xp == 800
        assert stored.level == 1  # a first-ever award always starts at level 1
        assert stored.current_streak_days == 1

        assert len(memory_store.attempts) == 1
        assert memory_store.attempts[0]["score"] == 80
        assert memory_store.attempts[0]["xp_earned"] == 800

    def test_outcome_dict_includes_level_progress(self, engine, raw_questions, correct_selections):
        session = engine.start_quiz("quiz-1", "learner-1", raw_questions, is_verified=True)
        _answer_all(session, correct_selections)
        engine.submit(session.session_id)
        engine.wait_for_award(session.session_id, timeout=5)

        data = engine.outcome(session.session_id).to_dict()

        assert data["award_status"] == "persisted"
        assert data["level_progress"]["level"] == 1
        assert data["level_progress"]["total_xp"] == 1000
        assert data["level_progress"]["xp_to_next_level"] == 0

    def test_unverified_quiz_records_attempt_without_award(
        self, engine, memory_store, raw_questions, correct_selections
    ):
        session = engine.start_quiz("quiz-1", "learner-1", raw_questions, is_verified=False)
        _answer_all(session, correct_selections)

        outcome = engine.submit(session.session_id)
        award = engine.wait_for_award(session.session_id, timeout=5)

        assert outcome.score == 100
        assert outcome.xp_earned == 0
        assert award is None
        assert outcome.message == ""
        assert memory_store.load_progression("learner-1") is None
        assert memory_store.attempts[0]["is_verified"] is False

    def test_zero_score_makes_no_award(self, engine, memory_store, raw_questions):
        session = engine.start_quiz("quiz-1", "learner-1", raw_questions, is_verified=True)

        outcome = engine.submit(session.session_id)
        engine.wait_for_award(session.session_id, timeout=5)

        assert outcome.score == 0
        assert outcome.award is None
        assert memory_store.load_progression("learner-1") is None
        assert len(memory_store.attempts) == 1

    def test_timeout_scores_and_awards(self, engine, memory_store, raw_questions, correct_selections):
        session = engine.start_quiz(
            "quiz-1", "learner-1", raw_questions, time_limit_minutes=1, is_verified=True
        )
        session.select("q1-b")

        session.tick(60)
        award = engine.wait_for_award(session.session_id, timeout=5)
        outcome = engine.outcome(session.session_id)

        assert outcome.completion_trigger == "timeout"
        assert outcome.score == 20
        assert award.persisted
        assert memory_store.load_progression("learner-1").total_xp == 200

    def test_submit_after_timeout_is_idempotent(self, engine, memory_store, raw_questions):
        session = engine.start_quiz(
            "quiz-1", "learner-1", raw_questions, time_limit_minutes=1, is_verified=True
        )
        session.select("q1-b")
        session.tick(60)

        outcome = engine.submit(session.session_id)
        engine.wait_for_award(session.session_id, timeout=5)

        assert outcome.completion_trigger == "timeout"
        assert memory_store.load_progression("learner-1").total_xp == 200
        assert len(memory_store.attempts) == 1

    def test_time_limit_minutes_converted(self, engine, raw_questions):
        session = engine.start_quiz("quiz-1", "learner-1", raw_questions, time_limit_minutes=5)
        assert session.remaining_seconds == 300

    def test_degraded_start(self, engine, raw_questions, caplog):
        raw = raw_questions + [{"id": "bad", "answers": []}]

        with caplog.at_level("WARNING"):
            session = engine.start_quiz("quiz-1", "learner-1", raw)

        view = engine.view(session.session_id)
        assert view["total_questions"] == 5
        assert view["degraded"] is True
        assert "degraded" in caplog.text

    def test_no_usable_questions_cannot_start(self, engine):
        with pytest.raises(QuizStartError):
            engine.open_quiz("quiz-1", "learner-1", [{"id": "bad"}, "junk"])

    def test_retake_is_fresh(self, engine, raw_questions):
        session = engine.start_quiz("quiz-1", "learner-1", raw_questions, time_limit_minutes=1)
        session.select("q1-b")
        session.tick(30)

        retake = engine.retake(session.session_id)

        assert session.abandoned
        assert retake.session_id != session.session_id
        assert retake.state == IN_PROGRESS
        assert retake.remaining_seconds == 60
        assert retake.selected_for("q1") == set()

    def test_view_includes_outcome_after_completion(self, engine, raw_questions):
        session = engine.start_quiz("quiz-1", "learner-1", raw_questions)
        assert engine.view(session.session_id)["outcome"] is None

        engine.submit(session.session_id)

        assert engine.view(session.session_id)["outcome"]["score"] == 0

    def test_unknown_session(self, engine):
        with pytest.raises(KeyError):
            engine.submit("qs-missing")

    def test_get_progression(self, engine, raw_questions, correct_selections):
        session = engine.start_quiz("quiz-1", "learner-1", raw_questions, is_verified=True)
        _answer_all(session, correct_selections)
        engine.submit(session.session_id)
        engine.wait_for_award(session.session_id, timeout=5)

        progression = engine.get_progression("learner-1")

        assert progression["state"]["total_xp"] == 1000
        assert progression["level_progress"]["level"] == 1
        assert progression["pending_xp"] == 0


class TestQuizEngineStoreOutage(unittest.TestCase):
    """Awards survive an unreachable store as pending-sync entries."""

    def setUp(self):
        """Set up test fixtures."""
        self.store = Mock()
        self.store.record_attempt.side_effect = StoreUnavailableError("connection refused")
        self.store.load_progression.side_effect = StoreUnavailableError("connection refused")
        self.engine = QuizEngine(store=self.store, shuffler=_in_order, auto_countdown=False)
        self.raw = [
            {
                "id": "q1",
                "text": "2 + 2?",
                "type": "radio",
                "answers": [
                    {"id": "a", "text": "4", "is_correct": True},
                    {"id": "b", "text": "5", "is_correct": False},
                ],
            }
        ]

    def tearDown(self):
        self.engine.shutdown()

    def test_award_queued_locally(self):
        session = self.engine.start_quiz("quiz-1", "learner-1", self.raw, is_verified=True)
        session.select("a")

        outcome = self.engine.submit(session.session_id)
        award = self.engine.wait_for_award(session.session_id, timeout=10)

        self.assertEqual(outcome.score, 100)
        self.assertEqual(award.status, "locally_queued")
        self.assertEqual(outcome.message, "+1000 XP (pending sync)")
        self.assertFalse(outcome.attempt_recorded)
        self.assertEqual(self.engine.updater.queue.pending_xp("learner-1"), 1000)

    def test_progression_view_reports_pending_xp(self):
        session = self.engine.start_quiz("quiz-1", "learner-1", self.raw, is_verified=True)
        session.select("a")
        self.engine.submit(session.session_id)
        self.engine.wait_for_award(session.session_id, timeout=10)

        progression = self.engine.get_progression("learner-1")

        self.assertIsNone(progression["state"])
        self.assertEqual(progression["pending_xp"], 1000)


class TestQuizEngineDefaults:
    def test_builds_updater_for_given_store(self):
        store = InMemoryProgressionStore()
        engine = QuizEngine(store=store, auto_countdown=False)
        try:
            assert engine.updater.store is store
        finally:
            engine.shutdown()


def _pair_question(index):
    qid = f"m{index}"
    return {
        "id": qid,
        "text": f"Pick both correct options ({index})",
        "type": "checkbox",
        "answers": [
            {"id": f"{qid}-a", "text": "right", "is_correct": True},
            {"id": f"{qid}-b", "text": "also right", "is_correct": True},
            {"id": f"{qid}-c", "text": "wrong", "is_correct": False},
        ],
    }


class TestReturningLearnerScenario:
    """Multi-select quiz scored at 80%, then an award on an existing record."""

    def test_partial_pair_scores_80_and_award_keeps_level(self, engine, memory_store):
        memory_store.save_progression(
            ProgressionState(
                learner_id="learner-1",
                total_xp=450,
                level=3,
                current_streak_days=4,
                last_quiz_timestamp=datetime(2026, 3, 17, 9, 0, tzinfo=timezone.utc),
                daily_xp=50,
                weekly_xp=200,
                version=1,
            )
        )
        raw = [_pair_question(i) for i in range(1, 6)]
        session = engine.start_quiz("quiz-multi", "learner-1", raw)

        for index, question in enumerate(session.ordered_questions):
            session.go_to(index)
            session.select(f"{question.id}-a")
            if index < 4:
                session.select(f"{question.id}-b")

        outcome = engine.submit(session.session_id)
        engine.wait_for_award(session.session_id, timeout=5)

        assert outcome.score == 80
        assert outcome.correct_count == 4
        assert memory_store.load_progression("learner-1").total_xp == 450

        result = engine.updater.award("learner-1", 50, completed_quiz=True)

        assert result.persisted
        assert result.message == "+50 XP"
        assert result.state.total_xp == 500
        assert result.state.level == 3
        assert not result.leveled_up
        assert result.state.current_streak_days == 5
        assert result.state.daily_xp == 50
        assert result.state.weekly_xp == 250

        stored = memory_store.load_progression("learner-1")
        assert stored.total_xp == 500
        assert stored.level == 3
        assert stored.version == 2


class TestConcurrentSubmit:
    """Every submit returns the outcome, however the calls interleave."""

    def test_double_submit_both_get_outcome(self, memory_store, fixed_now, raw_questions):
        class SlowCompletionEngine(QuizEngine):
            def _on_session_complete(self, session):
                time.sleep(0.3)
                super()._on_session_complete(session)

        updater = ProgressionUpdater(store=memory_store, clock=lambda: fixed_now, timeout=2.0)
        engine = SlowCompletionEngine(
            store=memory_store, updater=updater, shuffler=_in_order, auto_countdown=False
        )
        try:
            session = engine.start_quiz("quiz-1", "learner-1", raw_questions)
            barrier = threading.Barrier(2)
            outcomes = []

            def submit():
                barrier.wait()
                outcomes.append(engine.submit(session.session_id))

            threads = [threading.Thread(target=submit) for _ in range(2)]
            for t in threads:
                t.start()
            for t in threads:
                t.join(5)

            assert len(outcomes) == 2
            assert all(isinstance(o, SubmissionOutcome) for o in outcomes)
            assert outcomes[0] is outcomes[1]
        finally:
            engine.shutdown()


class TestSessionRetention:
    """Finished sessions do not accumulate in the engine."""

    def test_abandon_forgets_session(self, engine, raw_questions):
        session = engine.start_quiz("quiz-1", "learner-1", raw_questions)

        engine.abandon(session.session_id)

        assert session.abandoned
        with pytest.raises(KeyError):
            engine.get_session(session.session_id)

    def test_retake_forgets_previous_session(self, engine, raw_questions):
        session = engine.start_quiz("quiz-1", "learner-1", raw_questions)

        retake = engine.retake(session.session_id)

        assert engine.get_session(retake.session_id) is retake
        with pytest.raises(KeyError):
            engine.get_session(session.session_id)

    def test_release_returns_outcome(self, engine, raw_questions):
        session = engine.start_quiz("quiz-1", "learner-1", raw_questions)
        engine.submit(session.session_id)
        engine.wait_for_award(session.session_id, timeout=5)

        released = engine.release(session.session_id)

        assert released.session_id == session.session_id
        assert engine.outcome(session.session_id) is None
        with pytest.raises(KeyError):
            engine.get_session(session.session_id)

    def test_oldest_settled_outcomes_evicted(self, memory_store, fixed_now, raw_questions):
        updater = ProgressionUpdater(store=memory_store, clock=lambda: fixed_now, timeout=2.0)
        engine = QuizEngine(
            store=memory_store,
            updater=updater,
            max_retained=2,
            shuffler=_in_order,
            auto_countdown=False,
        )
        try:
            ids = []
            for _ in range(4):
                session = engine.start_quiz("quiz-1", "learner-1", raw_questions)
                engine.submit(session.session_id)
                engine.wait_for_award(session.session_id, timeout=5)
                ids.append(session.session_id)

            assert engine.outcome(ids[0]) is None
            assert engine.outcome(ids[1]) is None
            assert engine.outcome(ids[2]) is not None
            assert engine.outcome(ids[3]) is not None
            with pytest.raises(KeyError):
                engine.get_session(ids[0])
        finally:
            engine.shutdown()
