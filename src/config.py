"""
Configuration management for LearnQuest.

This module centralizes all configuration settings following 12-factor app principles:
- Store credentials loaded from environment variables
- Sensible defaults for development
- Type hints for IDE support
- Single source of truth for all settings
- Thread-safe award tracking
- Production-ready validation
"""

import logging
import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _optional_int(name: str) -> Optional[int]:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return None
    return int(value)


@dataclass
class QuizConfig:
    """Quiz session configuration."""

    # None means the countdown is absent (unbounded session)
    default_time_limit_minutes: Optional[int] = field(
        default_factory=lambda: _optional_int("QUIZ_TIME_LIMIT_MINUTES")
    )
    tick_interval_seconds: float = 1.0
    auto_countdown: bool = True

    # XP earned for a verified quiz = round(score_percent * xp_per_percent)
    xp_per_percent: int = 10


@dataclass
class ProgressionConfig:
    """XP, level and streak rules."""

    xp_per_level: int = 100  # level = floor(sqrt(total_xp / xp_per_level)) + 1
    week_start_day: int = 6  # datetime.weekday(): Monday=0 ... Sunday=6
    timezone: str = field(
        default_factory=lambda: os.getenv("PROGRESSION_TIMEZONE", "UTC")
    )

    # Optimistic-concurrency retries before the award is queued locally
    max_write_attempts: int = 3

    @property
    def tzinfo(self) -> ZoneInfo:
        """Calendar used for day and week boundaries."""
        return ZoneInfo(self.timezone)


@dataclass
class StoreConfig:
    """Durable store settings."""

    backend: str = field(
        default_factory=lambda: os.getenv("PROGRESSION_STORE", "json")
    )
    base_url: Optional[str] = field(default_factory=lambda: os.getenv("STORE_URL"))
    api_key: str = field(default_factory=lambda: os.getenv("STORE_API_KEY", ""))
    request_timeout: float = field(
        default_factory=lambda: float(os.getenv("STORE_TIMEOUT", "5.0"))
    )

    progression_table: str = "user_profiles"
    attempts_table: str = "quiz_attempts"

    BACKENDS = ("memory", "json", "rest")


@dataclass
class PathConfig:
    """File system paths - single source of truth for all directories."""

    # Base paths
    project_root: Path = field(default_factory=lambda: Path(__file__).parent.parent)
    data_dir: Path = field(default_factory=lambda: Path(__file__).parent.parent / "data")

    # Data subdirectories (computed from data_dir)
    progression_dir: Path = field(init=False)
    attempts_dir: Path = field(init=False)
    pending_awards_dir: Path = field(init=False)

    # Schemas
    schemas_dir: Path = field(init=False)
    progression_schema: Path = field(init=False)
    attempt_schema: Path = field(init=False)

    def __post_init__(self):
        """Initialize computed paths."""
        self.progression_dir = self.data_dir / "progression"
        self.attempts_dir = self.data_dir / "attempts"
        self.pending_awards_dir = self.data_dir / "pending_awards"
        self.schemas_dir = self.project_root / "schemas"
        self.progression_schema = self.schemas_dir / "progression_state.schema.json"
        self.attempt_schema = self.schemas_dir / "quiz_attempt.schema.json"

    def prepare_filesystem(self):
        """
        Create directories if they don't exist.

        Separated from __post_init__ to avoid side-effects on import.
        Call this explicitly from your app entrypoint.
        """
        for directory in [
            self.data_dir,
            self.progression_dir,
            self.attempts_dir,
            self.pending_awards_dir,
        ]:
            directory.mkdir(parents=True, exist_ok=True)


@dataclass
class LoggingConfig:
    """Logging configuration."""

    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    log_format: str = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class Config:
    """
    Main configuration class. Singleton pattern.

    Usage:
        from src.config import config

        # Access settings
        timeout = config.store.request_timeout
        week_start = config.progression.week_start_day

        # Prepare filesystem (call once at startup)
        config.prepare_fs()
    """

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance.paths = PathConfig()
            cls._instance.quiz = QuizConfig()
            cls._instance.progression = ProgressionConfig()
            cls._instance.store = StoreConfig()
            cls._instance.logging = LoggingConfig()

        return cls._instance

    def prepare_fs(self):
        """Prepare filesystem (create directories). Call once at startup."""
        self.paths.prepare_filesystem()

    def validate(self) -> list[str]:
        """
        Validate configuration and return list of errors.

        Returns:
            List of error messages (empty if valid)
        """
        errors = []

        # Quiz validation
        limit = self.quiz.default_time_limit_minutes
        if limit is not None and limit <= 0:
            errors.append(f"default_time_limit_minutes must be > 0, got {limit}")

        if self.quiz.tick_interval_seconds <= 0:
            errors.append(
                f"tick_interval_seconds must be > 0, got {self.quiz.tick_interval_seconds}"
            )

        if self.quiz.xp_per_percent < 0:
            errors.append(f"xp_per_percent must be >= 0, got {self.quiz.xp_per_percent}")

        # Progression validation
        if self.progression.xp_per_level <= 0:
            errors.append(
                f"xp_per_level must be > 0, got {self.progression.xp_per_level}"
            )

        if not (0 <= self.progression.week_start_day <= 6):
            errors.append(
                f"week_start_day must be in [0, 6], got {self.progression.week_start_day}"
            )

        try:
            self.progression.tzinfo
        except (ZoneInfoNotFoundError, ValueError):
            errors.append(f"Unknown timezone: {self.progression.timezone}")

        if self.progression.max_write_attempts < 1:
            errors.append(
                f"max_write_attempts must be >= 1, got {self.progression.max_write_attempts}"
            )

        # Store validation
        if self.store.backend not in StoreConfig.BACKENDS:
            errors.append(
                f"Unknown store backend '{self.store.backend}', "
                f"expected one of {StoreConfig.BACKENDS}"
            )

        if self.store.backend == "rest" and not self.store.base_url:
            errors.append("STORE_URL not set in environment for the rest backend")

        if self.store.request_timeout <= 0:
            errors.append(
                f"request_timeout must be > 0, got {self.store.request_timeout}"
            )

        # Path validation
        for schema in (self.paths.progression_schema, self.paths.attempt_schema):
            if not schema.exists():
                errors.append(f"Schema not found: {schema}")

        return errors


# Global config instance
config = Config()


def configure_logging(level: Optional[str] = None) -> None:
    """Apply LoggingConfig to the root logger. Call once from the app entrypoint."""
    logging.basicConfig(
        level=(level or config.logging.log_level).upper(),
        format=config.logging.log_format,
    )


# Thread-safe award tracking utility
class AwardTracker:
    """
    Thread-safe tracker for XP awards and their sync status.

    Awards that could not reach the durable store are counted as pending
    until they are reconciled.

    Usage:
        from src.config import award_tracker

        award_tracker.record_persisted(50)
        print(award_tracker.summary())
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.persisted_awards = 0
        self.queued_awards = 0
        self.persisted_xp = 0
        self.pending_xp = 0

    def record_persisted(self, xp_amount: int):
        """Count an award written to the durable store (thread-safe)."""
        with self._lock:
            self.persisted_awards += 1
            self.persisted_xp += xp_amount

    def record_queued(self, xp_amount: int):
        """Count an award kept locally for later sync (thread-safe)."""
        with self._lock:
            self.queued_awards += 1
            self.pending_xp += xp_amount

    def has_pending(self) -> bool:
        """Whether any award still awaits reconciliation (thread-safe)."""
        with self._lock:
            return self.queued_awards > 0

    def summary(self) -> str:
        """Get formatted summary of awards (thread-safe)."""
        stats = self.get_stats()

        # Build string outside lock
        return (
            "Award Summary:\n"
            f"  Persisted: {stats['persisted_awards']} ({stats['persisted_xp']:,} XP)\n"
            f"  Pending sync: {stats['queued_awards']} ({stats['pending_xp']:,} XP)"
        )

    def reset(self):
        """Reset counters (thread-safe)."""
        with self._lock:
            self.persisted_awards = 0
            self.queued_awards = 0
            self.persisted_xp = 0
            self.pending_xp = 0

    def get_stats(self) -> dict:
        """Get current stats as dict (thread-safe)."""
        with self._lock:
            return {
                "persisted_awards": self.persisted_awards,
                "queued_awards": self.queued_awards,
                "persisted_xp": self.persisted_xp,
                "pending_xp": self.pending_xp,
            }


# Global award tracker instance
award_tracker = AwardTracker()
