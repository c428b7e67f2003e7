"""
Question normalization.

Question sources disagree on field names (the content API returns ``text``
where older exports use ``question_text`` / ``answer_text``, and kinds come
as ``radio``/``checkbox`` or ``single_select``/``multi_select``). This module
reconciles every accepted shape into the canonical ``Question`` model.

Production features:
- Fixed, enumerated alias table per field (no reflection)
- Strict boolean coercion of ``is_correct``
- Malformed records are dropped and reported, never raised
- Answers ordered by display order
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Mapping, Optional, Tuple

from ..models.question import MULTI_SELECT, SINGLE_SELECT, Answer, Question

logger = logging.getLogger(__name__)


# Accepted field names, in lookup priority order
QUESTION_ID_FIELDS = ("id",)
QUESTION_BODY_FIELDS = ("text", "question_text")
QUESTION_KIND_FIELDS = ("type", "kind")
ANSWER_LIST_FIELDS = ("answers",)
ANSWER_ID_FIELDS = ("id",)
ANSWER_TEXT_FIELDS = ("text", "answer_text")
CORRECT_FIELDS = ("is_correct",)
ORDER_FIELDS = ("order_index", "display_order")

KIND_ALIASES = {
    "radio": SINGLE_SELECT,
    "single": SINGLE_SELECT,
    "single_select": SINGLE_SELECT,
    "checkbox": MULTI_SELECT,
    "multiple": MULTI_SELECT,
    "multi_select": MULTI_SELECT,
}


@dataclass
class NormalizationResult:
    """
    Result of normalizing a batch of raw question records.

    Attributes:
        questions: Canonical questions that survived normalization
        dropped: Number of question records dropped as malformed
        errors: One message per dropped record or answer
    """
    questions: List[Question]
    dropped: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        """True when at least one record was dropped."""
        return self.dropped > 0

    def __len__(self) -> int:
        return len(self.questions)

    def __str__(self) -> str:
        msg = f"{len(self.questions)} question(s) normalized"
        if self.degraded:
            msg += f", {self.dropped} dropped:\n" + "\n".join(
                f"  - {error}" for error in self.errors
            )
        return msg


def _first(record: Mapping[str, Any], names: Tuple[str, ...]) -> Any:
    """Value of the first alias present with a non-None value."""
    for name in names:
        value = record.get(name)
        if value is not None:
            return value
    return None


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _order(record: Mapping[str, Any], default: int) -> int:
    value = _first(record, ORDER_FIELDS)
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _resolve_kind(raw_kind: Any, correct_count: int) -> Optional[str]:
    if raw_kind is None:
        # Infer from the answer key
        return MULTI_SELECT if correct_count > 1 else SINGLE_SELECT
    return KIND_ALIASES.get(str(raw_kind).strip().lower())


def _normalize_answers(
    question_id: str, raw_answers: Iterable[Any], errors: List[str]
) -> List[Answer]:
    answers = []
    for position, raw in enumerate(raw_answers):
        if not isinstance(raw, Mapping):
            errors.append(f"Question {question_id}: answer #{position} is not a record")
            continue

        answer_id = _text(_first(raw, ANSWER_ID_FIELDS))
        text = _text(_first(raw, ANSWER_TEXT_FIELDS))
        if answer_id is None or text is None:
            errors.append(
                f"Question {question_id}: answer #{position} missing id or text"
            )
            continue

        answers.append(
            Answer(
                id=answer_id,
                question_id=question_id,
                text=text,
                # Only a real boolean True marks an answer correct
                is_correct=_first(raw, CORRECT_FIELDS) is True,
                display_order=_order(raw, position),
            )
        )

    answers.sort(key=lambda a: a.display_order)
    return answers


def normalize_record(raw: Any, position: int = 0) -> Tuple[Optional[Question], List[str]]:
    """
    Normalize a single raw question record.

    Args:
        raw: Loosely-typed question record
        position: Position in the source list (fallback display order)

    Returns:
        (question, errors) tuple; question is None if the record was dropped
    """
    errors: List[str] = []

    if not isinstance(raw, Mapping):
        return None, [f"Record #{position} is not a mapping"]

    question_id = _text(_first(raw, QUESTION_ID_FIELDS))
    if question_id is None:
        return None, [f"Record #{position} has no id"]

    body = _text(_first(raw, QUESTION_BODY_FIELDS))
    if body is None:
        return None, [f"Question {question_id} has an empty body"]

    raw_answers = _first(raw, ANSWER_LIST_FIELDS)
    if not raw_answers or isinstance(raw_answers, (str, bytes, Mapping)):
        return None, [f"Question {question_id} has no answer list"]

    answers = _normalize_answers(question_id, raw_answers, errors)
    if not answers:
        errors.append(f"Question {question_id} has no usable answers")
        return None, errors

    correct_count = sum(1 for a in answers if a.is_correct)
    kind = _resolve_kind(_first(raw, QUESTION_KIND_FIELDS), correct_count)
    if kind is None:
        errors.append(
            f"Question {question_id} has unknown type '{_first(raw, QUESTION_KIND_FIELDS)}'"
        )
        return None, errors

    question = Question(
        id=question_id,
        text=body,
        kind=kind,
        answers=tuple(answers),
        display_order=_order(raw, position),
    )

    try:
        question.validate()
    except ValueError as e:
        errors.append(str(e))
        return None, errors

    return question, errors


def normalize(raw_questions: Optional[Iterable[Any]]) -> NormalizationResult:
    """
    Normalize raw question records into canonical questions.

    Pure apart from logging. Malformed records are dropped rather than
    raised; the caller decides whether a degraded set is still usable.

    Args:
        raw_questions: Records from any supported source, in any order

    Returns:
        NormalizationResult with the surviving questions and a drop count

    Example:
        >>> result = normalize([{"id": "q1", "question_text": "2+2?", "type": "radio",
        ...     "answers": [{"id": "a1", "answer_text": "4", "is_correct": True}]}])
        >>> result.questions[0].kind
        'single_select'
    """
    questions: List[Question] = []
    errors: List[str] = []
    dropped = 0
    seen_ids = set()

    for position, raw in enumerate(raw_questions or []):
        question, record_errors = normalize_record(raw, position)
        errors.extend(record_errors)

        if question is not None and question.id in seen_ids:
            errors.append(f"Duplicate question id {question.id}")
            question = None

        if question is None:
            dropped += 1
            continue

        seen_ids.add(question.id)
        questions.append(question)

    if dropped:
        logger.warning(
            "Dropped %d malformed question record(s), %d usable", dropped, len(questions)
        )

    return NormalizationResult(questions=questions, dropped=dropped, errors=errors)
