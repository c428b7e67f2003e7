"""
Progression and attempt persistence with validation.

Defines the durable-store contract used by the progression updater and two
local backends:
- InMemoryProgressionStore: process-local, for tests and demos
- JsonFileProgressionStore: one JSON file per learner / attempt

Writes are optimistic: ``save_progression`` succeeds only when the stored
version is exactly one behind the incoming state, so two concurrent awards
cannot silently overwrite each other.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..config import config
from ..models.progression_state import ProgressionState
from .validation import ProgressionStateValidator, QuizAttemptValidator

logger = logging.getLogger(__name__)


class StoreError(RuntimeError):
    """Durable store rejected or failed an operation."""


class StoreUnavailableError(StoreError):
    """Durable store could not be reached in time."""


class ProgressionStore(ABC):
    """
    Durable store contract.

    ``save_progression`` returns False on a version conflict (another writer
    got there first) and raises StoreUnavailableError when the store cannot
    be reached.
    """

    @abstractmethod
    def load_progression(self, learner_id: str) -> Optional[ProgressionState]:
        """Load a learner's progression, or None if none exists yet."""

    @abstractmethod
    def save_progression(self, state: ProgressionState) -> bool:
        """Write ``state`` if the stored version equals ``state.version - 1``."""

    @abstractmethod
    def record_attempt(self, summary: Dict[str, Any]) -> bool:
        """Append an attempt history record."""


class InMemoryProgressionStore(ProgressionStore):
    """Thread-safe in-process store."""

    def __init__(self):
        self._lock = threading.Lock()
        self._states: Dict[str, Dict[str, Any]] = {}
        self.attempts: List[Dict[str, Any]] = []

    def load_progression(self, learner_id: str) -> Optional[ProgressionState]:
        with self._lock:
            record = self._states.get(learner_id)
        return ProgressionState.from_dict(record) if record else None

    def save_progression(self, state: ProgressionState) -> bool:
        with self._lock:
            current = self._states.get(state.learner_id)
            current_version = current["version"] if current else 0
            if current_version != state.version - 1:
                return False
            self._states[state.learner_id] = state.to_dict()
            return True

    def record_attempt(self, summary: Dict[str, Any]) -> bool:
        with self._lock:
            self.attempts.append(deepcopy(summary))
        return True


def _record_path(directory: Path, identifier: str) -> Path:
    """File for one record; identifiers may not name other directories."""
    if (
        not identifier
        or identifier in (".", "..")
        or "/" in identifier
        or "\\" in identifier
        or "\x00" in identifier
    ):
        raise StoreError(f"Unsafe record id: {identifier!r}")
    return directory / f"{identifier}.json"


class JsonFileProgressionStore(ProgressionStore):
    """
    File-backed store.

    Features:
    - Validate records against schemas/ before writing
    - Auto-repair legacy records on load
    - Atomic writes (temp file + rename)
    - Compare-and-swap serialized under a lock
    """

    def __init__(
        self,
        progression_dir: Path | str = None,
        attempts_dir: Path | str = None,
        validate: bool = True,
    ):
        """
        Initialize persistence manager.

        Args:
            progression_dir: Directory for learner records (default: data/progression/)
            attempts_dir: Directory for attempt records (default: data/attempts/)
            validate: Whether to validate records before writing
        """
        self.progression_dir = Path(progression_dir or config.paths.progression_dir)
        self.attempts_dir = Path(attempts_dir or config.paths.attempts_dir)
        self.progression_dir.mkdir(parents=True, exist_ok=True)
        self.attempts_dir.mkdir(parents=True, exist_ok=True)

        self.validate = validate
        self._state_validator = ProgressionStateValidator() if validate else None
        self._attempt_validator = QuizAttemptValidator() if validate else None
        self._lock = threading.Lock()

    def _state_path(self, learner_id: str) -> Path:
        return _record_path(self.progression_dir, learner_id)

    def _read_record(self, learner_id: str) -> Optional[Dict[str, Any]]:
        filepath = self._state_path(learner_id)
        if not filepath.exists():
            return None

        try:
            with open(filepath, "r", encoding="utf-8") as f:
                record = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StoreUnavailableError(f"Failed to read {filepath}: {e}") from e

        if self._state_validator is not None:
            result = self._state_validator.validate(record, auto_repair=True)
            if not result.valid:
                raise StoreError(
                    f"Corrupt progression record {filepath}: " + "; ".join(result.errors)
                )
            for repair in result.repairs:
                logger.info("Repaired %s: %s", filepath.name, repair)
            record = result.data

        return record

    def _write_json(self, filepath: Path, data: Dict[str, Any]) -> None:
        fd, tmp_path = tempfile.mkstemp(dir=filepath.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, filepath)
        except OSError as e:
            Path(tmp_path).unlink(missing_ok=True)
            raise StoreUnavailableError(f"Failed to write {filepath}: {e}") from e

    def load_progression(self, learner_id: str) -> Optional[ProgressionState]:
        with self._lock:
            record = self._read_record(learner_id)
        return ProgressionState.from_dict(record) if record else None

    def save_progression(self, state: ProgressionState) -> bool:
        data = state.to_dict()

        if self._state_validator is not None:
            result = self._state_validator.validate(data)
            if not result.valid:
                raise StoreError(
                    f"Invalid progression for {state.learner_id}: " + "; ".join(result.errors)
                )

        with self._lock:
            current = self._read_record(state.learner_id)
            current_version = current["version"] if current else 0
            if current_version != state.version - 1:
                return False
            self._write_json(self._state_path(state.learner_id), data)
            return True

    def record_attempt(self, summary: Dict[str, Any]) -> bool:
        if self._attempt_validator is not None:
            result = self._attempt_validator.validate(summary)
            if not result.valid:
                logger.warning(
                    "Rejected attempt %s: %s", summary.get("attempt_id"), result.errors
                )
                return False

        try:
            filepath = _record_path(self.attempts_dir, summary["attempt_id"])
        except StoreError as e:
            logger.warning("Rejected attempt: %s", e)
            return False

        self._write_json(filepath, summary)
        return True

    def load_attempts_by_learner(self, learner_id: str) -> List[Dict[str, Any]]:
        """
        Load all attempts for a learner, newest first.

        Args:
            learner_id: Learner ID

        Returns:
            List of attempt dicts, sorted by created_at (newest first)
        """
        attempts = []

        for filepath in self.attempts_dir.glob("qs-*.json"):
            try:
                with open(filepath, "r", encoding="utf-8") as f:
                    attempt = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                logger.warning("Failed to load %s: %s", filepath, e)
                continue
            if attempt.get("learner_id") == learner_id:
                attempts.append(attempt)

        attempts.sort(key=lambda a: a.get("created_at", ""), reverse=True)
        return attempts


# Global store instance
_store: Optional[ProgressionStore] = None


def create_store(backend: Optional[str] = None) -> ProgressionStore:
    """
    Build a store for the configured backend.

    Args:
        backend: "memory", "json" or "rest" (default: config.store.backend)
    """
    backend = backend or config.store.backend

    if backend == "memory":
        return InMemoryProgressionStore()
    if backend == "json":
        return JsonFileProgressionStore()
    if backend == "rest":
        from .rest_store import RestProgressionStore

        return RestProgressionStore.from_config()

    raise ValueError(f"Unknown store backend: {backend}")


def get_progression_store() -> ProgressionStore:
    """Get or create the global store."""
    global _store
    if _store is None:
        _store = create_store()
    return _store
