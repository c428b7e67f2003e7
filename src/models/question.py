"""
Question and answer models.

Canonical in-memory shape produced by the normalizer and consumed by quiz
sessions and the scorer. Both types are immutable: sessions reference them
read-only.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Literal, Tuple

QuestionKind = Literal["single_select", "multi_select"]

SINGLE_SELECT: QuestionKind = "single_select"
MULTI_SELECT: QuestionKind = "multi_select"
QUESTION_KINDS = (SINGLE_SELECT, MULTI_SELECT)


@dataclass(frozen=True)
class Answer:
    """
    A single answer option, owned by exactly one question.

    Attributes:
        id: Unique identifier
        question_id: Owning question
        text: Option text shown to the learner
        is_correct: Whether this option is part of the answer key
        display_order: Position among the question's options
    """
    id: str
    question_id: str
    text: str
    is_correct: bool = False
    display_order: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "question_id": self.question_id,
            "text": self.text,
            "is_correct": self.is_correct,
            "display_order": self.display_order,
        }


@dataclass(frozen=True)
class Question:
    """
    A quiz question with its answer options.

    Invariant: at least one answer is correct; a single_select question has
    exactly one.
    """
    id: str
    text: str
    kind: QuestionKind
    answers: Tuple[Answer, ...]
    display_order: int = 0

    def correct_answer_ids(self) -> frozenset:
        """Answer key as a set of answer ids."""
        return frozenset(a.id for a in self.answers if a.is_correct)

    def answer_ids(self) -> frozenset:
        return frozenset(a.id for a in self.answers)

    def has_answer(self, answer_id: str) -> bool:
        return any(a.id == answer_id for a in self.answers)

    def validate(self) -> None:
        """
        Validate question integrity.

        Raises:
            ValueError: If validation fails
        """
        if self.kind not in QUESTION_KINDS:
            raise ValueError(
                f"Question {self.id} has unknown kind '{self.kind}', expected one of {QUESTION_KINDS}"
            )

        if not self.answers:
            raise ValueError(f"Question {self.id} must have at least one answer")

        if len(self.answer_ids()) != len(self.answers):
            raise ValueError(f"Question {self.id} has duplicate answer ids")

        correct = self.correct_answer_ids()
        if not correct:
            raise ValueError(f"Question {self.id} must have at least one correct answer")

        if self.kind == SINGLE_SELECT and len(correct) != 1:
            raise ValueError(
                f"Single-select question {self.id} must have exactly one correct answer, "
                f"got {len(correct)}"
            )

    def to_dict(self, include_key: bool = True) -> Dict[str, Any]:
        """Convert to dictionary; ``include_key=False`` hides correctness for display."""
        answers = [a.to_dict() for a in self.answers]
        if not include_key:
            for answer in answers:
                answer.pop("is_correct")
        return {
            "id": self.id,
            "text": self.text,
            "kind": self.kind,
            "display_order": self.display_order,
            "answers": answers,
        }
