"""Local-first persistence with best-effort mirroring to a remote store.

The local store is always written first. The ``synced`` flag on each local
record is the retry queue: anything not yet mirrored stays ``synced = 0``
and is picked up again by :meth:`SyncService.upload_unsynced` on the next
sync trigger. Remote failures are logged and reported through
:class:`SyncResult`, never raised.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Optional
from uuid import UUID

from db import AsyncSessionRepository
from exceptions import RemoteStoreError, SessionPersistError
from remote_store import RestSessionStore
from session_record import SessionRecord

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    """Outcome of a sync operation."""

    succeeded: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    downloaded: list[str] = field(default_factory=list)
    reassigned: int = 0

    @property
    def ok(self) -> bool:
        return not self.failed

    def merge(self, other: "SyncResult") -> "SyncResult":
        self.succeeded.extend(other.succeeded)
        self.failed.update(other.failed)
        self.downloaded.extend(other.downloaded)
        self.reassigned += other.reassigned
        return self


class SyncService:
    """Keep the local session store and the remote store consistent."""

    def __init__(
        self,
        local: AsyncSessionRepository,
        remote: Optional[RestSessionStore] = None,
        max_concurrency: int = 4,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.local = local
        self.remote = remote
        self.max_concurrency = max_concurrency

    async def _save_local(self, record: SessionRecord) -> None:
        try:
            await self.local.save(record)
        except sqlite3.Error as e:
            raise SessionPersistError(f"could not save session {record.id}: {e}") from e

    async def _upload(self, record: SessionRecord) -> Optional[str]:
        """Insert ``record`` remotely; return an error text on failure."""
        if self.remote is None:
            return "no remote store configured"
        try:
            await self.remote.insert(record.to_payload())
        except RemoteStoreError as e:
            logger.warning("Failed to sync session %s: %s", record.id, e)
            return str(e)
        try:
            await self.local.mark_synced([record.id])
        except sqlite3.Error as e:
            raise SessionPersistError(f"could not mark session {record.id} synced: {e}") from e
        logger.debug("Synced session %s", record.id)
        return None

    async def save_session(self, record: SessionRecord, attempt_remote: bool = True) -> SyncResult:
        """Persist ``record`` locally, then try to mirror it remotely."""
        await self._save_local(record)
        result = SyncResult()
        if not attempt_remote or record.owner.is_guest or self.remote is None:
            return result
        error = await self._upload(record)
        if error is None:
            result.succeeded.append(str(record.id))
        else:
            logger.info("Cloud sync for %s deferred until next sync", record.id)
            result.failed[str(record.id)] = error
        return result

    async def upload_unsynced(self) -> SyncResult:
        """Upload every owned, unsynced local record independently."""
        result = SyncResult()
        if self.remote is None:
            return result
        pending = [r for r in await self.local.fetch_unsynced() if not r.owner.is_guest]
        if not pending:
            return result
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def upload_one(record: SessionRecord) -> Optional[str]:
            async with semaphore:
                try:
                    return await self._upload(record)
                except Exception as e:
                    logger.warning("Upload of session %s failed: %r", record.id, e)
                    return str(e) or type(e).__name__

        errors = await asyncio.gather(*(upload_one(r) for r in pending))
        for record, error in zip(pending, errors):
            if error is None:
                result.succeeded.append(str(record.id))
            else:
                result.failed[str(record.id)] = error
        logger.info(
            "Uploaded %d of %d unsynced sessions", len(result.succeeded), len(pending)
        )
        return result

    async def download_remote(self, user_id: UUID | str) -> SyncResult:
        """Copy remote records unknown locally into the local store."""
        result = SyncResult()
        if self.remote is None:
            return result
        try:
            rows = await self.remote.select(user_id)
        except RemoteStoreError as e:
            logger.warning("Failed to download cloud sessions: %s", e)
            result.failed["download"] = str(e)
            return result
        for row in rows:
            try:
                record = SessionRecord.from_payload(row, synced=True)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping malformed remote session %s: %s", row.get("id"), e)
                result.failed[str(row.get("id"))] = str(e)
                continue
            if await self.local.save_if_absent(record):
                result.downloaded.append(str(record.id))
        logger.info("Downloaded %d new sessions", len(result.downloaded))
        return result

    async def sync_on_login(self, user_id: UUID | str) -> SyncResult:
        """Attribute guest records to ``user_id``, push, then pull."""
        result = SyncResult()
        result.reassigned = await self.local.reassign_owner(user_id)
        if result.reassigned:
            logger.info("Assigned %d guest sessions to %s", result.reassigned, user_id)
        result.merge(await self.upload_unsynced())
        result.merge(await self.download_remote(user_id))
        return result

    async def delete_session(self, session_id: UUID | str, user_id: UUID | str | None) -> SyncResult:
        await self.local.delete(session_id)
        result = SyncResult()
        if user_id is None or self.remote is None:
            return result
        try:
            await self.remote.delete(session_id, user_id)
            result.succeeded.append(str(session_id))
        except RemoteStoreError as e:
            logger.warning("Cloud delete of %s failed: %s", session_id, e)
            result.failed[str(session_id)] = str(e)
        return result

    async def delete_all_sessions(self, user_id: UUID | str | None) -> SyncResult:
        await self.local.delete_all()
        result = SyncResult()
        if user_id is None or self.remote is None:
            return result
        try:
            await self.remote.delete_all(user_id)
        except RemoteStoreError as e:
            logger.warning("Cloud delete all failed: %s", e)
            result.failed["delete_all"] = str(e)
        return result
