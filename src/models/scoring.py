"""
Quiz scoring.

All-or-nothing correctness per question: the learner's selection set must
equal the answer key exactly. No partial credit.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from types import MappingProxyType
from typing import AbstractSet, Any, Dict, Iterable, Mapping, Optional, Sequence

from .question import MULTI_SELECT, SINGLE_SELECT, Question


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero (Python's round() is banker's)."""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class ScoreResult:
    """
    Final, immutable score of one quiz attempt.

    Attributes:
        percentage: Whole-number score (0-100)
        per_question_correctness: question_id -> whether it was answered correctly
        correct_count: Number of correctly answered questions
        total_questions: Number of questions presented in the session
    """
    percentage: int
    per_question_correctness: Mapping[str, bool] = field(default_factory=dict)
    correct_count: int = 0
    total_questions: int = 0

    def __post_init__(self):
        # Freeze the mapping as well as the dataclass
        object.__setattr__(
            self,
            "per_question_correctness",
            MappingProxyType(dict(self.per_question_correctness)),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "percentage": self.percentage,
            "correct_count": self.correct_count,
            "total_questions": self.total_questions,
            "per_question_correctness": dict(self.per_question_correctness),
        }


def is_question_correct(question: Question, selected: Optional[Iterable[str]]) -> bool:
    """
    Whether a selection matches the question's answer key exactly.

    A missing or empty selection is always incorrect.
    """
    chosen = frozenset(selected or ())
    if not chosen:
        return False

    key = question.correct_answer_ids()

    if question.kind == SINGLE_SELECT:
        # Do not rely on the session collapsing single-select input
        return len(key) == 1 and chosen == key

    if question.kind == MULTI_SELECT:
        return bool(key) and chosen == key

    return False


def score(
    questions: Sequence[Question],
    selections: Mapping[str, AbstractSet[str]],
) -> ScoreResult:
    """
    Score a set of selections against the presented questions.

    Pure and deterministic. Every presented question counts in the
    denominator, answered or not.

    Args:
        questions: Questions actually shown in the session
        selections: question_id -> selected answer ids

    Returns:
        ScoreResult with a round-half-up percentage
    """
    correctness = {q.id: is_question_correct(q, selections.get(q.id)) for q in questions}
    total = len(questions)
    correct = sum(1 for ok in correctness.values() if ok)

    # A session cannot start without questions; keep the function total anyway
    percentage = round_half_up(correct * 100 / total) if total else 0

    return ScoreResult(
        percentage=percentage,
        per_question_correctness=correctness,
        correct_count=correct,
        total_questions=total,
    )
