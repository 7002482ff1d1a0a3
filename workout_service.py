from __future__ import annotations

import asyncio
import logging
import weakref

from exceptions import InvalidTransitionError, SessionPersistError
from session_record import SessionOwner, SessionRecord
from sync_service import SyncResult, SyncService
from workout_run import WorkoutRun

logger = logging.getLogger(__name__)


class WorkoutSessionService:
    """Turns finished runs into stored sessions exactly once."""

    def __init__(self, sync: SyncService, retries: int = 2, retry_delay: float = 0.1) -> None:
        if retries < 0:
            raise ValueError("retries must be non-negative")
        self.sync = sync
        self.retries = retries
        self.retry_delay = retry_delay
        self._records: weakref.WeakKeyDictionary[WorkoutRun, SessionRecord] = (
            weakref.WeakKeyDictionary()
        )
        self._persisted: weakref.WeakSet[WorkoutRun] = weakref.WeakSet()

    def record_for(self, run: WorkoutRun, owner: SessionOwner) -> SessionRecord:
        """Return the cached record for ``run``, emitting it on first use."""
        record = self._records.get(run)
        if record is None:
            record = run.to_session_record(owner)
            self._records[run] = record
        return record

    def is_persisted(self, run: WorkoutRun) -> bool:
        return run in self._persisted

    async def finish(
        self, run: WorkoutRun, owner: SessionOwner, attempt_remote: bool = True
    ) -> tuple[SessionRecord, SyncResult]:
        """Store the session for a terminal ``run``.

        The local write is retried ``retries`` times; if it still fails the
        run is not considered finished and :class:`SessionPersistError`
        propagates. Calling ``finish`` again reuses the same record.
        """
        if not run.is_finished:
            raise InvalidTransitionError("cannot finish a run that is still in progress")
        record = self.record_for(run, owner)
        if self.is_persisted(run):
            return record, SyncResult()
        attempt = 0
        while True:
            try:
                result = await self.sync.save_session(record, attempt_remote)
                break
            except SessionPersistError:
                attempt += 1
                if attempt > self.retries:
                    logger.error("Giving up on saving session %s", record.id)
                    raise
                logger.warning(
                    "Saving session %s failed, retry %d of %d", record.id, attempt, self.retries
                )
                await asyncio.sleep(self.retry_delay)
        self._persisted.add(run)
        return record, result

    def discard(self, run: WorkoutRun) -> None:
        self._records.pop(run, None)
        self._persisted.discard(run)
