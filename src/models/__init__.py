"""
Data models for quiz sessions and learner progression.

This module contains core data models:
- Question / Answer: Canonical question records
- QuizSession: One learner's attempt with countdown and completion
- ScoreResult: Immutable all-or-nothing score
- ProgressionState: Durable XP, level and streak record

The ProgressionUpdater lives in ``src.models.progression``.
"""

from .question import Answer, Question, MULTI_SELECT, SINGLE_SELECT
from .scoring import ScoreResult, score, round_half_up
from .quiz_session import QuizSession, QuizStartError, CountdownTimer
from .progression_state import ProgressionState, level_for_xp

__all__ = [
    "Answer",
    "Question",
    "MULTI_SELECT",
    "SINGLE_SELECT",
    "ScoreResult",
    "score",
    "round_half_up",
    "QuizSession",
    "QuizStartError",
    "CountdownTimer",
    "ProgressionState",
    "level_for_xp",
]
