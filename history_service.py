from __future__ import annotations

import logging
from typing import Iterable, Optional

from db import AsyncSessionRepository
from exceptions import RemoteStoreError
from remote_store import RestSessionStore
from session_record import SessionRecord, WorkoutStats
from workout_configuration import normalize_mode_string

logger = logging.getLogger(__name__)


class HistoryService:
    """Workout history and personal bests over the local store."""

    def __init__(
        self,
        local: AsyncSessionRepository,
        remote: Optional[RestSessionStore] = None,
    ) -> None:
        self.local = local
        self.remote = remote
        self.last_error: str | None = None

    async def load(self, user_id=None) -> list[SessionRecord]:
        """Return local history, merging unseen remote sessions when signed in."""
        self.last_error = None
        sessions = await self.local.fetch_for_user(user_id)
        if user_id is None or self.remote is None:
            return sessions
        try:
            rows = await self.remote.select(user_id)
        except RemoteStoreError as e:
            logger.warning("Cloud history unavailable: %s", e)
            self.last_error = "Using local data. Cloud sync unavailable."
            return sessions
        added = 0
        for row in rows:
            try:
                record = SessionRecord.from_payload(row, synced=True)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping malformed remote session %s: %s", row.get("id"), e)
                continue
            if await self.local.save_if_absent(record):
                added += 1
        if added:
            sessions = await self.local.fetch_for_user(user_id)
        return sessions

    @staticmethod
    def stats(records: Iterable[SessionRecord]) -> WorkoutStats:
        return WorkoutStats.from_records(records)

    @staticmethod
    def filter_by_mode(records: Iterable[SessionRecord], mode: str | None) -> list[SessionRecord]:
        if mode is None:
            return list(records)
        key = normalize_mode_string(mode)
        return [r for r in records if normalize_mode_string(r.workout_mode) == key]

    @classmethod
    def best_session(cls, records: Iterable[SessionRecord], mode: str) -> SessionRecord | None:
        """Return the fastest completed session for ``mode``."""
        done = [r for r in cls.filter_by_mode(records, mode) if r.completed]
        return min(done, key=lambda r: r.total_workout_time_seconds, default=None)

    @classmethod
    def recent_sessions(
        cls, records: Iterable[SessionRecord], mode: str, limit: int = 5
    ) -> list[SessionRecord]:
        ordered = sorted(cls.filter_by_mode(records, mode), key=lambda r: r.created_at, reverse=True)
        return ordered[:limit]

    @staticmethod
    def unique_modes(records: Iterable[SessionRecord]) -> list[str]:
        return sorted({r.workout_mode for r in records})

    @staticmethod
    def has_unsynced(records: Iterable[SessionRecord]) -> bool:
        return any(not r.synced for r in records)
