"""
Schema validation for stored progression and attempt records.

Records are checked against the JSON Schemas in ``schemas/`` and then
against cross-field rules a schema cannot express. Records written by older
clients can be repaired on load: unknown keys are dropped and numeric
strings are coerced wherever the schema expects an integer.
"""

from __future__ import annotations

import json
from collections import Counter
from copy import deepcopy
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, List, Optional

from jsonschema import Draft7Validator, FormatChecker, ValidationError

from ..config import config


@dataclass
class ValidationResult:
    """
    Outcome of validating one record.

    Attributes:
        valid: Whether the record passed every check
        errors: Human-readable problems, one per failed check
        data: The checked record (the repaired copy when repair ran)
        repairs: Changes made during repair
    """
    valid: bool
    errors: List[str]
    data: Any = None
    repairs: List[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return self.valid

    def __str__(self) -> str:
        if self.valid:
            suffix = f", {len(self.repairs)} repair(s) applied" if self.repairs else ""
            return f"✓ valid{suffix}"
        lines = [f"✗ invalid ({len(self.errors)} error(s))"]
        lines.extend(f"  - {error}" for error in self.errors)
        return "\n".join(lines)


def _expects_integer(schema: dict) -> bool:
    expected = schema.get("type")
    if isinstance(expected, list):
        return "integer" in expected
    return expected == "integer"


def _as_integer(value: str) -> Optional[int]:
    try:
        number = float(value)
    except ValueError:
        return None
    return int(number) if number.is_integer() else None


class SchemaValidator:
    """
    Draft 7 JSON Schema validator with optional repair.

    Subclasses add record-level rules by overriding ``check``, which only
    runs once the schema itself is satisfied.
    """

    def __init__(self, schema_path: Path | str):
        self.schema_path = Path(schema_path)
        with open(self.schema_path, "r", encoding="utf-8") as f:
            self.schema = json.load(f)
        Draft7Validator.check_schema(self.schema)
        self.validator = Draft7Validator(self.schema, format_checker=FormatChecker())

    def validate(self, data: Any, auto_repair: bool = False) -> ValidationResult:
        """
        Validate a record.

        Args:
            data: Record to check (never mutated)
            auto_repair: Repair a copy and validate that instead when the
                original fails the schema

        Returns:
            ValidationResult
        """
        schema_errors = sorted(
            self.validator.iter_errors(data), key=lambda e: [str(p) for p in e.path]
        )

        if schema_errors and auto_repair:
            repaired, repairs = self.repair(data)
            result = self.validate(repaired)
            result.repairs = repairs
            return result

        if schema_errors:
            return ValidationResult(
                valid=False, errors=[self._describe(e) for e in schema_errors], data=data
            )

        errors = self.check(data)
        return ValidationResult(valid=not errors, errors=errors, data=data)

    def check(self, data: Any) -> List[str]:
        """Record-level rules beyond the schema; returns error messages."""
        return []

    @staticmethod
    def _describe(error: ValidationError) -> str:
        location = "/".join(str(p) for p in error.path) or "<record>"
        return f"{location}: {error.message} ({error.validator})"

    def repair(self, data: Any) -> tuple[Any, List[str]]:
        """
        Return a repaired copy of ``data`` and the list of changes made.
        """
        repaired = deepcopy(data)
        repairs: List[str] = []
        repaired = self._repair_node(repaired, self.schema, "", repairs)
        return repaired, repairs

    def _repair_node(self, node: Any, schema: Any, path: str, repairs: List[str]) -> Any:
        if not isinstance(schema, dict):
            return node

        if isinstance(node, str) and _expects_integer(schema):
            coerced = _as_integer(node)
            if coerced is not None:
                repairs.append(f"{path or '<record>'}: coerced '{node}' to {coerced}")
                return coerced
            return node

        if isinstance(node, dict):
            properties = schema.get("properties", {})
            if schema.get("additionalProperties") is False:
                for key in [k for k in node if k not in properties]:
                    del node[key]
                    repairs.append(f"{path or '<record>'}: removed unknown key '{key}'")
            for key, subschema in properties.items():
                if key in node:
                    node[key] = self._repair_node(
                        node[key], subschema, f"{path}/{key}" if path else key, repairs
                    )

        elif isinstance(node, list) and "items" in schema:
            for i, item in enumerate(node):
                node[i] = self._repair_node(item, schema["items"], f"{path}[{i}]", repairs)

        return node


class ProgressionStateValidator(SchemaValidator):
    """
    Validator for learner progression records.

    Windowed XP can never exceed total XP, and the day's XP is part of the
    week's.
    """

    def __init__(self, schema_path: Optional[Path] = None):
        super().__init__(schema_path or config.paths.progression_schema)

    def check(self, data: dict) -> List[str]:
        errors = []
        total, daily, weekly = data["total_xp"], data["daily_xp"], data["weekly_xp"]

        if daily > total:
            errors.append(f"daily_xp ({daily}) exceeds total_xp ({total})")
        if weekly > total:
            errors.append(f"weekly_xp ({weekly}) exceeds total_xp ({total})")
        if daily > weekly:
            errors.append(f"daily_xp ({daily}) exceeds weekly_xp ({weekly})")

        return errors


class QuizAttemptValidator(SchemaValidator):
    """Validator for attempt history records; each question is answered at most once."""

    def __init__(self, schema_path: Optional[Path] = None):
        super().__init__(schema_path or config.paths.attempt_schema)

    def check(self, data: dict) -> List[str]:
        counts = Counter(a["question_id"] for a in data["answers"])
        duplicates = sorted(qid for qid, n in counts.items() if n > 1)
        if duplicates:
            return [f"answers: duplicate entries for {', '.join(duplicates)}"]
        return []


@lru_cache(maxsize=None)
def _progression_validator() -> ProgressionStateValidator:
    return ProgressionStateValidator()


@lru_cache(maxsize=None)
def _attempt_validator() -> QuizAttemptValidator:
    return QuizAttemptValidator()


def validate_progression_state(data: dict, auto_repair: bool = False) -> ValidationResult:
    """
    Validate a progression record with the shared validator.

    Example:
        result = validate_progression_state(state.to_dict())
        if not result:
            print(result)
    """
    return _progression_validator().validate(data, auto_repair=auto_repair)


def validate_quiz_attempt(data: dict, auto_repair: bool = False) -> ValidationResult:
    """Validate an attempt history record with the shared validator."""
    return _attempt_validator().validate(data, auto_repair=auto_repair)
