import datetime
import os
import sys
import uuid

import pytest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from db import AsyncSessionRepository
from exceptions import RemoteUnavailableError
from history_service import HistoryService
from session_record import GUEST, OwnedBy, SessionRecord

T0 = datetime.datetime(2024, 7, 1, 6, 0, tzinfo=datetime.timezone.utc)


class StubRemote:
    def __init__(self, rows=None, error=None):
        self.rows = rows or []
        self.error = error

    async def select(self, user_id, **filters):
        if self.error:
            raise self.error
        return self.rows


def make_record(minutes, mode="full", seconds=1200, completed=True, owner=GUEST, synced=False):
    ts = T0 + datetime.timedelta(minutes=minutes)
    return SessionRecord(
        workout_mode=mode,
        owner=owner,
        completed=completed,
        total_workout_time_seconds=seconds,
        workout_started_at=ts,
        created_at=ts,
        synced=synced,
    )


@pytest.mark.asyncio
async def test_load_guest_history(tmp_path):
    local = AsyncSessionRepository(str(tmp_path / "local.db"))
    await local.save(make_record(1))
    await local.save(make_record(2, owner=OwnedBy(uuid.uuid4())))
    service = HistoryService(local, StubRemote(error=AssertionError("not called")))
    records = await service.load()
    assert len(records) == 1
    assert service.last_error is None


@pytest.mark.asyncio
async def test_load_merges_remote_rows(tmp_path):
    uid = uuid.uuid4()
    local = AsyncSessionRepository(str(tmp_path / "local.db"))
    mine = make_record(1, owner=OwnedBy(uid), synced=True)
    await local.save(mine)
    remote_only = make_record(5, owner=OwnedBy(uid))
    service = HistoryService(local, StubRemote([mine.to_payload(), remote_only.to_payload()]))
    records = await service.load(uid)
    assert [r.id for r in records] == [remote_only.id, mine.id]
    assert all(r.synced for r in records)


@pytest.mark.asyncio
async def test_load_falls_back_to_local(tmp_path):
    uid = uuid.uuid4()
    local = AsyncSessionRepository(str(tmp_path / "local.db"))
    await local.save(make_record(1, owner=OwnedBy(uid)))
    service = HistoryService(local, StubRemote(error=RemoteUnavailableError("offline")))
    records = await service.load(uid)
    assert len(records) == 1
    assert service.last_error == "Using local data. Cloud sync unavailable."


def test_best_and_recent_sessions():
    records = [
        make_record(1, seconds=1500),
        make_record(2, seconds=1100),
        make_record(3, seconds=900, completed=False),
        make_record(4, mode="Ascending", seconds=500),
        make_record(5, seconds=1300),
    ]
    best = HistoryService.best_session(records, "full")
    assert best.total_workout_time_seconds == 1100
    assert HistoryService.best_session(records, "descending") is None
    assert HistoryService.best_session(records, "ascending").total_workout_time_seconds == 500
    recent = HistoryService.recent_sessions(records, "full", limit=2)
    assert [r.total_workout_time_seconds for r in recent] == [1300, 900]
    assert HistoryService.unique_modes(records) == ["Ascending", "full"]
    assert HistoryService.has_unsynced(records)
    assert HistoryService.stats(records).completed_sessions == 4
    assert len(HistoryService.filter_by_mode(records, None)) == 5
