"""
Utility modules for LearnQuest.

This module contains utility functions:
- normalizer: Raw question records to canonical questions
- sequencer: Fisher-Yates presentation order
- validation: JSON Schema validation with auto-repair
- persistence: Durable progression store backends
- progress: Level curve and attempt analytics
"""

from .normalizer import NormalizationResult, normalize
from .sequencer import shuffle
from .validation import (
    ProgressionStateValidator,
    QuizAttemptValidator,
    validate_progression_state,
    validate_quiz_attempt,
)
from .persistence import (
    ProgressionStore,
    InMemoryProgressionStore,
    JsonFileProgressionStore,
    StoreError,
    StoreUnavailableError,
    create_store,
    get_progression_store,
)
from .progress import (
    xp_for_level,
    level_progress,
    score_histogram,
    attempt_summary,
)

__all__ = [
    # Normalization and ordering
    "NormalizationResult",
    "normalize",
    "shuffle",
    # Validation
    "ProgressionStateValidator",
    "QuizAttemptValidator",
    "validate_progression_state",
    "validate_quiz_attempt",
    # Persistence
    "ProgressionStore",
    "InMemoryProgressionStore",
    "JsonFileProgressionStore",
    "StoreError",
    "StoreUnavailableError",
    "create_store",
    "get_progression_store",
    # Progress analytics
    "xp_for_level",
    "level_progress",
    "score_histogram",
    "attempt_summary",
]
