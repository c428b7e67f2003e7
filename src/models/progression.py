"""
Progression Updater - Awards XP and maintains level and streak counters.

Each award is a read-compute-write against the durable store using an
optimistic version check; a lost race is retried from a fresh read. When
the store cannot be reached (or keeps conflicting), the award is kept in a
session-scoped LocalAwardQueue tagged as unsynced so it is never silently
lost.
"""

from __future__ import annotations

import json
import logging
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Literal, Optional

from ..config import award_tracker, config
from ..utils.persistence import (
    ProgressionStore,
    StoreError,
    StoreUnavailableError,
    get_progression_store,
)
from .progression_state import ProgressionState, apply_award, first_award
from .scoring import round_half_up

logger = logging.getLogger(__name__)

AwardStatus = Literal["persisted", "locally_queued"]


@dataclass(frozen=True)
class PendingAward:
    """
    An award that has not reached the durable store.

    Attributes:
        award_id: Local identifier
        learner_id: Learner the XP belongs to
        xp_amount: XP to add on reconciliation
        completed_quiz: Whether the award counts toward the streak
        attempted_at: When the award was attempted (the streak day)
        reason: Why it could not be persisted
        synced: Always False until reconciled with the durable store
    """
    learner_id: str
    xp_amount: int
    completed_quiz: bool
    attempted_at: datetime
    reason: str
    award_id: str = field(default_factory=lambda: f"pa-{uuid.uuid4()}")
    synced: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "award_id": self.award_id,
            "learner_id": self.learner_id,
            "xp_amount": self.xp_amount,
            "completed_quiz": self.completed_quiz,
            "attempted_at": self.attempted_at.isoformat(),
            "reason": self.reason,
            "synced": self.synced,
        }


class LocalAwardQueue:
    """
    Session-scoped record of unsynced awards.

    Optionally mirrors each entry to a JSON-lines file so a restart of the
    presentation process does not lose them.
    """

    def __init__(self, mirror_path: Optional[Path] = None):
        self._lock = threading.Lock()
        self._items: List[PendingAward] = []
        self.mirror_path = Path(mirror_path) if mirror_path else None

    @classmethod
    def persistent(cls) -> LocalAwardQueue:
        """Queue mirrored under config.paths.pending_awards_dir."""
        return cls(mirror_path=config.paths.pending_awards_dir / "pending_awards.jsonl")

    def enqueue(self, award: PendingAward) -> PendingAward:
        with self._lock:
            self._items.append(award)
            if self.mirror_path is not None:
                self.mirror_path.parent.mkdir(parents=True, exist_ok=True)
                with open(self.mirror_path, "a", encoding="utf-8") as f:
                    f.write(json.dumps(award.to_dict()) + "\n")
        return award

    def pending(self, learner_id: Optional[str] = None) -> List[PendingAward]:
        """Unsynced awards, optionally for one learner, oldest first."""
        with self._lock:
            return [a for a in self._items if learner_id is None or a.learner_id == learner_id]

    def pending_xp(self, learner_id: str) -> int:
        return sum(a.xp_amount for a in self.pending(learner_id))

    def drain(self) -> List[PendingAward]:
        """Remove and return every queued award (for a reconciliation job)."""
        with self._lock:
            items, self._items = self._items, []
            return items

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


@dataclass(frozen=True)
class AwardResult:
    """
    Outcome of one award.

    Attributes:
        status: "persisted" or "locally_queued"
        learner_id: Learner the XP belongs to
        xp_amount: XP awarded
        state: Progression after the award (None if it could not be computed)
        previous_level: Level before the award, when known
        pending: The queued record when status is "locally_queued"
        error: Failure description when status is "locally_queued"
    """
    status: AwardStatus
    learner_id: str
    xp_amount: int
    state: Optional[ProgressionState] = None
    previous_level: Optional[int] = None
    pending: Optional[PendingAward] = None
    error: Optional[str] = None

    @property
    def persisted(self) -> bool:
        return self.status == "persisted"

    @property
    def leveled_up(self) -> bool:
        if self.state is None or self.previous_level is None:
            return False
        return self.state.level > self.previous_level

    @property
    def message(self) -> str:
        """Learner-facing confirmation; an unsynced award is visibly different."""
        if self.persisted:
            return f"+{self.xp_amount} XP"
        return f"+{self.xp_amount} XP (pending sync)"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "learner_id": self.learner_id,
            "xp_amount": self.xp_amount,
            "message": self.message,
            "state": self.state.to_dict() if self.state else None,
            "previous_level": self.previous_level,
            "leveled_up": self.leveled_up,
            "pending": self.pending.to_dict() if self.pending else None,
            "error": self.error,
        }


def xp_for_score(percentage: int, xp_per_percent: Optional[int] = None) -> int:
    """
    XP earned by a verified quiz completion.

    Example:
        >>> xp_for_score(80)
        800
    """
    rate = config.quiz.xp_per_percent if xp_per_percent is None else xp_per_percent
    return round_half_up(percentage * rate)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ProgressionUpdater:
    """
    Applies XP awards to durable learner progression.

    Every store call is bounded by ``timeout`` seconds; a slow store is
    treated the same as an unreachable one.
    """

    def __init__(
        self,
        store: Optional[ProgressionStore] = None,
        queue: Optional[LocalAwardQueue] = None,
        clock: Callable[[], datetime] = _utc_now,
        timeout: Optional[float] = None,
        max_write_attempts: Optional[int] = None,
    ):
        """
        Initialize the updater.

        Args:
            store: Durable store (default: configured global store)
            queue: Fallback queue for unsynced awards
            clock: Returns the current timezone-aware time
            timeout: Seconds allowed per store call (default: config.store.request_timeout)
            max_write_attempts: Optimistic-concurrency attempts before queueing locally
        """
        self.store = store or get_progression_store()
        self.queue = queue or LocalAwardQueue()
        self.clock = clock
        self.timeout = timeout if timeout is not None else config.store.request_timeout
        self.max_write_attempts = (
            max_write_attempts or config.progression.max_write_attempts
        )
        self._io = ThreadPoolExecutor(max_workers=4, thread_name_prefix="progression-store")

    def call_store(self, fn: Callable, *args):
        """Run a store call with a bounded wait."""
        future = self._io.submit(fn, *args)
        try:
            return future.result(timeout=self.timeout)
        except FutureTimeoutError as e:
            future.cancel()
            raise StoreUnavailableError(
                f"{getattr(fn, '__name__', 'store call')} timed out after {self.timeout}s"
            ) from e

    def award(
        self, learner_id: str, xp_amount: int, completed_quiz: bool = True
    ) -> AwardResult:
        """
        Award XP to a learner.

        Args:
            learner_id: Learner identifier
            xp_amount: XP to add; must be positive
            completed_quiz: Whether this award comes from a completed quiz
                (only then does the streak move)

        Returns:
            AwardResult with status "persisted" or "locally_queued"

        Raises:
            ValueError: If learner_id is empty or xp_amount is not positive
        """
        if not learner_id:
            raise ValueError("learner_id is required")
        if isinstance(xp_amount, bool) or not isinstance(xp_amount, int) or xp_amount <= 0:
            raise ValueError(f"XP amount must be a positive integer, got {xp_amount!r}")

        now = self.clock()
        current: Optional[ProgressionState] = None
        new_state: Optional[ProgressionState] = None

        try:
            for attempt in range(1, self.max_write_attempts + 1):
                current = self.call_store(self.store.load_progression, learner_id)

                if current is None:
                    new_state = first_award(learner_id, xp_amount, now)
                else:
                    new_state = apply_award(
                        current,
                        xp_amount,
                        now,
                        tz=config.progression.tzinfo,
                        completed_quiz=completed_quiz,
                        xp_per_level=config.progression.xp_per_level,
                        week_start_day=config.progression.week_start_day,
                    )

                if self.call_store(self.store.save_progression, new_state):
                    award_tracker.record_persisted(xp_amount)
                    logger.info(
                        "Awarded %d XP to %s: total=%d level=%d streak=%d",
                        xp_amount,
                        learner_id,
                        new_state.total_xp,
                        new_state.level,
                        new_state.current_streak_days,
                    )
                    return AwardResult(
                        status="persisted",
                        learner_id=learner_id,
                        xp_amount=xp_amount,
                        state=new_state,
                        previous_level=current.level if current else None,
                    )

                logger.info(
                    "Progression for %s changed concurrently (attempt %d/%d), retrying",
                    learner_id,
                    attempt,
                    self.max_write_attempts,
                )
        except StoreUnavailableError as e:
            logger.warning("Progression store unavailable for %s: %s", learner_id, e)
            return self._queue_locally(learner_id, xp_amount, completed_quiz, now, str(e), current, new_state)
        except StoreError as e:
            logger.error("Progression store rejected award for %s: %s", learner_id, e)
            return self._queue_locally(learner_id, xp_amount, completed_quiz, now, str(e), current, new_state)

        return self._queue_locally(
            learner_id,
            xp_amount,
            completed_quiz,
            now,
            f"write conflict persisted after {self.max_write_attempts} attempts",
            current,
            new_state,
        )

    def _queue_locally(
        self,
        learner_id: str,
        xp_amount: int,
        completed_quiz: bool,
        now: datetime,
        reason: str,
        current: Optional[ProgressionState],
        projected: Optional[ProgressionState],
    ) -> AwardResult:
        pending = self.queue.enqueue(
            PendingAward(
                learner_id=learner_id,
                xp_amount=xp_amount,
                completed_quiz=completed_quiz,
                attempted_at=now,
                reason=reason,
            )
        )
        award_tracker.record_queued(xp_amount)
        logger.warning(
            "Queued %d XP for %s locally (pending sync): %s", xp_amount, learner_id, reason
        )
        return AwardResult(
            status="locally_queued",
            learner_id=learner_id,
            xp_amount=xp_amount,
            state=projected,
            previous_level=current.level if current else None,
            pending=pending,
            error=reason,
        )

    def shutdown(self) -> None:
        """Release the store worker threads."""
        self._io.shutdown(wait=False)
