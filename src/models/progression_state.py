"""
Learner progression: XP, level and streak rules.

Pure functions over ``ProgressionState``; nothing here touches a store.
Day and week boundaries are evaluated on the calendar of one configured
time zone, never on raw timestamp differences.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Any, Dict, Optional

# Defaults mirror ProgressionConfig
XP_PER_LEVEL = 100
SUNDAY = 6


@dataclass(frozen=True)
class ProgressionState:
    """
    Durable per-learner progression record.

    Attributes:
        learner_id: Learner identifier
        total_xp: Lifetime XP
        level: Current level (1-based)
        current_streak_days: Consecutive calendar days with a completed quiz
        last_quiz_timestamp: When XP was last awarded (timezone-aware)
        daily_xp: XP earned on the day of last_quiz_timestamp
        weekly_xp: XP earned in the week of last_quiz_timestamp
        version: Optimistic-concurrency version, incremented on every write
    """
    learner_id: str
    total_xp: int = 0
    level: int = 1
    current_streak_days: int = 0
    last_quiz_timestamp: Optional[datetime] = None
    daily_xp: int = 0
    weekly_xp: int = 0
    version: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for persistence."""
        return {
            "learner_id": self.learner_id,
            "total_xp": self.total_xp,
            "level": self.level,
            "current_streak_days": self.current_streak_days,
            "last_quiz_timestamp": (
                self.last_quiz_timestamp.isoformat() if self.last_quiz_timestamp else None
            ),
            "daily_xp": self.daily_xp,
            "weekly_xp": self.weekly_xp,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> ProgressionState:
        """Build from a persisted record."""
        timestamp = data.get("last_quiz_timestamp")
        return cls(
            learner_id=data["learner_id"],
            total_xp=int(data.get("total_xp", 0)),
            level=int(data.get("level", 1)),
            current_streak_days=int(data.get("current_streak_days", 0)),
            last_quiz_timestamp=parse_timestamp(timestamp) if timestamp else None,
            daily_xp=int(data.get("daily_xp", 0)),
            weekly_xp=int(data.get("weekly_xp", 0)),
            version=int(data.get("version", 0)),
        )


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO 8601 timestamp; naive values are taken as UTC."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def level_for_xp(total_xp: int, xp_per_level: int = XP_PER_LEVEL) -> int:
    """
    Level on the square-root curve: floor(sqrt(total_xp / xp_per_level)) + 1.

    Integer arithmetic; exact at every level boundary.

    Example:
        >>> level_for_xp(450), level_for_xp(500), level_for_xp(900)
        (3, 3, 4)
    """
    if total_xp < 0:
        raise ValueError(f"total_xp cannot be negative: {total_xp}")
    return math.isqrt(total_xp // xp_per_level) + 1


def calendar_day(moment: datetime, tz: tzinfo) -> date:
    """Calendar date of ``moment`` in ``tz``."""
    return moment.astimezone(tz).date()


def week_start(day: date, week_start_day: int = SUNDAY) -> date:
    """First day of the week containing ``day``."""
    return day - timedelta(days=(day.weekday() - week_start_day) % 7)


def first_award(learner_id: str, xp_amount: int, now: datetime) -> ProgressionState:
    """Progression record created by a learner's first-ever award."""
    return ProgressionState(
        learner_id=learner_id,
        total_xp=xp_amount,
        level=1,
        current_streak_days=1,
        last_quiz_timestamp=now,
        daily_xp=xp_amount,
        weekly_xp=xp_amount,
        version=1,
    )


def next_streak(
    streak: int, last_day: Optional[date], today: date, completed_quiz: bool
) -> int:
    """Streak after an award on ``today``."""
    if not completed_quiz:
        return streak
    if last_day is None:
        return 1

    yesterday = today - timedelta(days=1)
    if last_day == yesterday:
        return streak + 1
    if last_day < yesterday:
        return 1
    # Same day (or a clock-skewed future day): no inflation
    return streak


def apply_award(
    state: ProgressionState,
    xp_amount: int,
    now: datetime,
    tz: tzinfo,
    completed_quiz: bool = True,
    xp_per_level: int = XP_PER_LEVEL,
    week_start_day: int = SUNDAY,
) -> ProgressionState:
    """
    Apply one XP award to an existing progression record.

    Args:
        state: Current stored state
        xp_amount: XP to add (> 0)
        now: Award time (timezone-aware)
        tz: Calendar for day/week boundaries
        completed_quiz: Whether the award counts toward the streak
        xp_per_level: Level curve divisor
        week_start_day: First weekday of a week (Monday=0 ... Sunday=6)

    Returns:
        New state with version incremented
    """
    if xp_amount <= 0:
        raise ValueError(f"XP amount must be positive, got {xp_amount}")

    today = calendar_day(now, tz)
    last_day = (
        calendar_day(state.last_quiz_timestamp, tz) if state.last_quiz_timestamp else None
    )

    total_xp = state.total_xp + xp_amount
    level = max(state.level, level_for_xp(total_xp, xp_per_level))

    streak = next_streak(state.current_streak_days, last_day, today, completed_quiz)

    # Windows reset independently of each other and of the streak
    daily_xp = state.daily_xp
    if last_day is None or last_day < today:
        daily_xp = 0

    weekly_xp = state.weekly_xp
    if last_day is None or last_day < week_start(today, week_start_day):
        weekly_xp = 0

    return replace(
        state,
        total_xp=total_xp,
        level=level,
        current_streak_days=streak,
        last_quiz_timestamp=now,
        daily_xp=daily_xp + xp_amount,
        weekly_xp=weekly_xp + xp_amount,
        version=state.version + 1,
    )
