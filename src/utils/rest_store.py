"""
Hosted durable store over a PostgREST-style HTTP API.

Progression rows live in ``user_profiles`` (columns ``xp``, ``level``,
``streak``, ``last_quiz_date``, ``daily_xp``, ``weekly_xp``, ``version``);
attempts in ``quiz_attempts``. Compare-and-swap is expressed as a filtered
PATCH (``id=eq.X&version=eq.N``): zero returned rows means another writer
won. A first write claims a row left unversioned by signup before it
falls back to an insert.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import requests

from ..config import config
from ..models.progression_state import ProgressionState, parse_timestamp
from .persistence import ProgressionStore, StoreError, StoreUnavailableError

logger = logging.getLogger(__name__)


class RestProgressionStore(ProgressionStore):
    """
    ProgressionStore backed by a hosted REST data API.

    Every request carries a timeout; timeouts, connection errors and 5xx
    responses surface as StoreUnavailableError.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 5.0,
        progression_table: str = "user_profiles",
        attempts_table: str = "quiz_attempts",
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize the REST store.

        Args:
            base_url: Service root, e.g. https://project.example.co
            api_key: Service API key (sent as apikey and bearer token)
            timeout: Per-request timeout in seconds
            progression_table: Table holding progression rows
            attempts_table: Table holding attempt history
            session: Optional pre-configured requests session
        """
        if not base_url:
            raise ValueError("base_url is required for the REST store")

        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.progression_table = progression_table
        self.attempts_table = attempts_table

        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "apikey": api_key,
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            }
        )

    @classmethod
    def from_config(cls) -> RestProgressionStore:
        """Build from config.store."""
        return cls(
            base_url=config.store.base_url,
            api_key=config.store.api_key,
            timeout=config.store.request_timeout,
            progression_table=config.store.progression_table,
            attempts_table=config.store.attempts_table,
        )

    def _url(self, table: str) -> str:
        return f"{self.base_url}/rest/v1/{table}"

    def _request(self, method: str, table: str, **kwargs) -> requests.Response:
        try:
            response = self.session.request(
                method, self._url(table), timeout=self.timeout, **kwargs
            )
        except (requests.Timeout, requests.ConnectionError) as e:
            raise StoreUnavailableError(f"{method} {table} failed: {e}") from e

        if response.status_code >= 500:
            raise StoreUnavailableError(
                f"{method} {table} returned {response.status_code}: {response.text[:200]}"
            )
        return response

    # ==================== Row mapping ====================

    @staticmethod
    def _from_row(learner_id: str, row: Dict[str, Any]) -> ProgressionState:
        last = row.get("last_quiz_date")
        return ProgressionState(
            learner_id=learner_id,
            total_xp=int(row.get("xp") or 0),
            level=int(row.get("level") or 1),
            current_streak_days=int(row.get("streak") or 0),
            last_quiz_timestamp=parse_timestamp(last) if last else None,
            daily_xp=int(row.get("daily_xp") or 0),
            weekly_xp=int(row.get("weekly_xp") or 0),
            version=int(row.get("version") or 0),
        )

    @staticmethod
    def _to_row(state: ProgressionState) -> Dict[str, Any]:
        return {
            "xp": state.total_xp,
            "level": state.level,
            "streak": state.current_streak_days,
            "last_quiz_date": (
                state.last_quiz_timestamp.isoformat() if state.last_quiz_timestamp else None
            ),
            "daily_xp": state.daily_xp,
            "weekly_xp": state.weekly_xp,
            "version": state.version,
        }

    # ==================== ProgressionStore ====================

    def load_progression(self, learner_id: str) -> Optional[ProgressionState]:
        response = self._request(
            "GET",
            self.progression_table,
            params={
                "id": f"eq.{learner_id}",
                "select": "xp,level,streak,last_quiz_date,daily_xp,weekly_xp,version",
            },
        )
        if not response.ok:
            raise StoreError(f"Failed to load progression for {learner_id}: {response.text[:200]}")

        rows = response.json()
        if not rows:
            return None
        return self._from_row(learner_id, rows[0])

    def save_progression(self, state: ProgressionState) -> bool:
        row = self._to_row(state)
        headers = {"Prefer": "return=representation"}

        if state.version == 1:
            # Rows created at signup exist before any award and carry no version
            response = self._request(
                "PATCH",
                self.progression_table,
                params={
                    "id": f"eq.{state.learner_id}",
                    "or": "(version.is.null,version.eq.0)",
                },
                json=row,
                headers=headers,
            )
            self._raise_for_save(state, response)
            if response.json():
                return True

            response = self._request(
                "POST",
                self.progression_table,
                json=[{"id": state.learner_id, **row}],
                headers=headers,
            )
            if response.status_code == 409:
                # Row created concurrently
                return False
        else:
            response = self._request(
                "PATCH",
                self.progression_table,
                params={
                    "id": f"eq.{state.learner_id}",
                    "version": f"eq.{state.version - 1}",
                },
                json=row,
                headers=headers,
            )

        self._raise_for_save(state, response)
        return bool(response.json())

    @staticmethod
    def _raise_for_save(state: ProgressionState, response: requests.Response) -> None:
        if not response.ok:
            raise StoreError(
                f"Failed to save progression for {state.learner_id}: "
                f"{response.status_code} {response.text[:200]}"
            )

    def record_attempt(self, summary: Dict[str, Any]) -> bool:
        row = {
            "id": summary["attempt_id"],
            "quiz_id": summary["quiz_id"],
            "user_id": summary["learner_id"],
            "score": summary["score"],
            "completed": summary["completed"],
            "is_verified_quiz": summary["is_verified"],
            "xp_earned": summary.get("xp_earned", 0),
            "time_taken": summary.get("time_taken_seconds"),
            "answers": summary.get("answers", []),
            "created_at": summary["created_at"],
        }
        response = self._request("POST", self.attempts_table, json=[row])
        if not response.ok:
            logger.warning(
                "Attempt %s rejected: %s %s",
                summary["attempt_id"],
                response.status_code,
                response.text[:200],
            )
            return False
        return True
