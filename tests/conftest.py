"""
Shared pytest fixtures and configuration for LearnQuest tests.

This file is automatically discovered by pytest and provides
fixtures available to all tests.
"""

import pytest
import sys
from datetime import datetime, timezone
from pathlib import Path

# Add project root to path so ``src`` resolves as a package
sys.path.insert(0, str(Path(__file__).parent.parent))


@pytest.fixture
def raw_questions():
    """
    Fixture providing raw question records as stored by the content store.

    Returns:
        list: Five well-formed records mixing single- and multi-select
    """
    return [
        {
            "id": "q1",
            "question_text": "What is 2 + 2?",
            "type": "radio",
            "order_index": 0,
            "answers": [
                {"id": "q1-a", "answer_text": "3", "is_correct": False, "order_index": 0},
                {"id": "q1-b", "answer_text": "4", "is_correct": True, "order_index": 1},
                {"id": "q1-c", "answer_text": "5", "is_correct": False, "order_index": 2},
            ],
        },
        {
            "id": "q2",
            "question_text": "Which are prime?",
            "type": "checkbox",
            "order_index": 1,
            "answers": [
                {"id": "q2-a", "answer_text": "2", "is_correct": True, "order_index": 0},
                {"id": "q2-b", "answer_text": "3", "is_correct": True, "order_index": 1},
                {"id": "q2-c", "answer_text": "4", "is_correct": False, "order_index": 2},
            ],
        },
        {
            "id": "q3",
            "text": "Capital of France?",
            "kind": "single_select",
            "answers": [
                {"id": "q3-a", "text": "Paris", "is_correct": True},
                {"id": "q3-b", "text": "Rome", "is_correct": False},
            ],
        },
        {
            "id": "q4",
            "text": "Python is dynamically typed",
            "type": "radio",
            "answers": [
                {"id": "q4-a", "text": "True", "is_correct": True},
                {"id": "q4-b", "text": "False", "is_correct": False},
            ],
        },
        {
            "id": "q5",
            "text": "Pick the even numbers",
            "type": "multiple",
            "answers": [
                {"id": "q5-a", "text": "1", "is_correct": False},
                {"id": "q5-b", "text": "2", "is_correct": True},
                {"id": "q5-c", "text": "4", "is_correct": True},
            ],
        },
    ]


@pytest.fixture
def questions(raw_questions):
    """
    Fixture providing the normalized form of ``raw_questions``.

    Returns:
        list[Question]: Five canonical questions in source order
    """
    from src.utils.normalizer import normalize

    return normalize(raw_questions).questions


@pytest.fixture
def correct_selections():
    """Answer key for ``questions``: question_id -> correct answer IDs."""
    return {
        "q1": {"q1-b"},
        "q2": {"q2-a", "q2-b"},
        "q3": {"q3-a"},
        "q4": {"q4-a"},
        "q5": {"q5-b", "q5-c"},
    }


@pytest.fixture
def identity_shuffle():
    """Shuffler that keeps source order (for deterministic session tests)."""
    return lambda items: list(items)


@pytest.fixture
def fixed_now():
    """A fixed award time: Wednesday 2026-03-18 10:00 UTC."""
    return datetime(2026, 3, 18, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
def memory_store():
    """Fresh in-process progression store."""
    from src.utils.persistence import InMemoryProgressionStore

    return InMemoryProgressionStore()


@pytest.fixture(autouse=True)
def reset_award_tracker():
    """
    Auto-fixture to reset award tracker before each test.

    This ensures tests don't interfere with each other.
    """
    from src.config import award_tracker

    award_tracker.reset()
    yield
    award_tracker.reset()


@pytest.fixture
def temp_schema_file(tmp_path):
    """
    Fixture providing a temporary schema file for testing.

    Args:
        tmp_path: pytest's tmp_path fixture

    Returns:
        Path: Path to temporary schema file
    """
    import json

    schema = {
        "$schema": "http://json-schema.org/draft-07/schema#",
        "type": "object",
        "properties": {"score": {"type": "integer"}, "name": {"type": "string"}},
        "required": ["score"],
        "additionalProperties": False,
    }

    schema_file = tmp_path / "test.schema.json"
    with open(schema_file, "w") as f:
        json.dump(schema, f)

    return schema_file


# Pytest hooks for better test output


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: mark test as a unit test")
    config.addinivalue_line("markers", "integration: mark test as an integration test")
    config.addinivalue_line("markers", "slow: mark test as slow running")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        # Mark tests in unit/ directory as unit tests
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)

        # Mark tests in integration/ directory as integration tests
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
