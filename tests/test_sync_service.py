import asyncio
import datetime
import os
import sqlite3
import sys
import uuid

import pytest
import requests

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from db import AsyncSessionRepository
from remote_store import RestSessionStore
from exceptions import RemoteUnavailableError, SessionPersistError
from session_record import GUEST, OwnedBy, SessionRecord
from sync_service import SyncResult, SyncService

T0 = datetime.datetime(2024, 6, 1, 7, 0, tzinfo=datetime.timezone.utc)


class FakeRemote:
    """In-memory stand-in for the remote store with failure injection."""

    def __init__(self):
        self.rows = {}
        self.fail_ids = set()
        self.down = False
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0

    def _check(self):
        if self.down:
            raise RemoteUnavailableError("remote down")

    async def insert(self, payload):
        self.calls.append(("insert", payload["id"]))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0.01)
            self._check()
            if payload["id"] in self.fail_ids:
                raise RemoteUnavailableError("timeout")
            self.rows.setdefault(payload["id"], dict(payload))
        finally:
            self.in_flight -= 1

    async def select(self, user_id, **filters):
        self.calls.append(("select", str(user_id)))
        self._check()
        return [dict(r) for r in self.rows.values() if r["user_id"] == str(user_id)]

    async def delete(self, session_id, user_id):
        self._check()
        self.rows.pop(str(session_id), None)

    async def delete_all(self, user_id):
        self._check()
        for sid in [k for k, r in self.rows.items() if r["user_id"] == str(user_id)]:
            del self.rows[sid]


def make_record(minutes=0, owner=GUEST, **kwargs):
    ts = T0 + datetime.timedelta(minutes=minutes)
    return SessionRecord(
        workout_mode=kwargs.pop("workout_mode", "full"),
        owner=owner,
        workout_started_at=ts,
        created_at=ts,
        **kwargs,
    )


@pytest.fixture
def local(tmp_path):
    return AsyncSessionRepository(str(tmp_path / "local.db"))


@pytest.mark.asyncio
async def test_save_owned_session_marks_synced(local):
    remote = FakeRemote()
    service = SyncService(local, remote)
    record = make_record(owner=OwnedBy(uuid.uuid4()))
    result = await service.save_session(record)
    assert result.ok
    assert result.succeeded == [str(record.id)]
    assert (await local.fetch_by_id(record.id)).synced
    assert str(record.id) in remote.rows


@pytest.mark.asyncio
async def test_guest_session_stays_local(local):
    remote = FakeRemote()
    service = SyncService(local, remote)
    record = make_record()
    result = await service.save_session(record)
    assert result.ok and result.succeeded == []
    assert remote.calls == []
    assert not (await local.fetch_by_id(record.id)).synced


@pytest.mark.asyncio
async def test_remote_failure_leaves_record_queued(local):
    remote = FakeRemote()
    remote.down = True
    service = SyncService(local, remote)
    record = make_record(owner=OwnedBy(uuid.uuid4()))
    result = await service.save_session(record)
    assert not result.ok
    assert str(record.id) in result.failed
    stored = await local.fetch_by_id(record.id)
    assert stored is not None and not stored.synced

    remote.down = False
    retry = await service.upload_unsynced()
    assert retry.succeeded == [str(record.id)]
    assert (await local.fetch_by_id(record.id)).synced


@pytest.mark.asyncio
async def test_local_failure_is_surfaced(tmp_path):
    local = AsyncSessionRepository(str(tmp_path / "local.db"))
    os.remove(tmp_path / "local.db")
    os.mkdir(tmp_path / "local.db")
    service = SyncService(local, FakeRemote())
    with pytest.raises(SessionPersistError):
        await service.save_session(make_record(owner=OwnedBy(uuid.uuid4())))


@pytest.mark.asyncio
async def test_upload_unsynced_partial_failure(local):
    uid = uuid.uuid4()
    remote = FakeRemote()
    records = [make_record(i, OwnedBy(uid)) for i in range(5)]
    for r in records:
        await local.save(r)
    await local.save(make_record(10))
    remote.fail_ids = {str(records[2].id)}
    service = SyncService(local, remote, max_concurrency=2)

    result = await service.upload_unsynced()
    assert set(result.succeeded) == {str(r.id) for r in records} - {str(records[2].id)}
    assert list(result.failed) == [str(records[2].id)]
    assert remote.max_in_flight <= 2
    pending = await local.fetch_unsynced()
    assert {r.id for r in pending} == {records[2].id, (await local.fetch_for_user(None))[0].id}


@pytest.mark.asyncio
async def test_upload_is_idempotent(local):
    remote = FakeRemote()
    record = make_record(owner=OwnedBy(uuid.uuid4()))
    await local.save(record)
    service = SyncService(local, remote)
    first = await service.upload_unsynced()
    assert first.succeeded == [str(record.id)]
    second = await service.upload_unsynced()
    assert second.ok
    assert second.succeeded == []
    assert [c for c in remote.calls if c[0] == "insert"] == [("insert", str(record.id))]


@pytest.mark.asyncio
async def test_download_never_overwrites_local(local):
    uid = uuid.uuid4()
    remote = FakeRemote()
    mine = make_record(owner=OwnedBy(uid), total_completed_reps=50)
    await local.save(mine)
    remote.rows[str(mine.id)] = dict(mine.to_payload(), total_completed_reps=999)
    fresh = make_record(5, OwnedBy(uid), total_completed_reps=75)
    remote.rows[str(fresh.id)] = fresh.to_payload()
    remote.rows["bad"] = {"id": "bad", "user_id": str(uid)}

    result = await SyncService(local, remote).download_remote(uid)
    assert result.downloaded == [str(fresh.id)]
    assert "bad" in result.failed
    assert (await local.fetch_by_id(mine.id)).total_completed_reps == 50
    downloaded = await local.fetch_by_id(fresh.id)
    assert downloaded.synced and downloaded.total_completed_reps == 75


@pytest.mark.asyncio
async def test_download_failure_reported(local):
    remote = FakeRemote()
    remote.down = True
    result = await SyncService(local, remote).download_remote(uuid.uuid4())
    assert "download" in result.failed
    assert result.downloaded == []


@pytest.mark.asyncio
async def test_sync_on_login_order(local):
    uid = uuid.uuid4()
    remote = FakeRemote()
    guest_record = make_record()
    await local.save(guest_record)
    elsewhere = make_record(3, OwnedBy(uid))
    remote.rows[str(elsewhere.id)] = elsewhere.to_payload()

    result = await SyncService(local, remote).sync_on_login(uid)
    assert result.reassigned == 1
    assert result.succeeded == [str(guest_record.id)]
    assert result.downloaded == [str(elsewhere.id)]
    assert [c[0] for c in remote.calls] == ["insert", "select"]
    assert remote.rows[str(guest_record.id)]["user_id"] == str(uid)
    records = await local.fetch_for_user(uid)
    assert {r.id for r in records} == {guest_record.id, elsewhere.id}
    assert all(r.synced for r in records)


@pytest.mark.asyncio
async def test_no_remote_configured(local):
    service = SyncService(local)
    record = make_record(owner=OwnedBy(uuid.uuid4()))
    assert (await service.save_session(record)).ok
    assert (await service.upload_unsynced()).ok
    assert not (await local.fetch_by_id(record.id)).synced


@pytest.mark.asyncio
async def test_delete_policies(local):
    uid = uuid.uuid4()
    remote = FakeRemote()
    service = SyncService(local, remote)
    a = make_record(0, OwnedBy(uid))
    b = make_record(1, OwnedBy(uid))
    await service.save_session(a)
    await service.save_session(b)

    result = await service.delete_session(a.id, uid)
    assert result.succeeded == [str(a.id)]
    assert str(a.id) not in remote.rows
    assert await local.fetch_by_id(a.id) is None

    remote.down = True
    result = await service.delete_all_sessions(uid)
    assert "delete_all" in result.failed
    assert await local.fetch_all_sessions() == []

    guest = make_record(2)
    await local.save(guest)
    assert (await service.delete_session(guest.id, None)).ok
    assert await local.fetch_by_id(guest.id) is None


def test_sync_result_merge():
    first = SyncResult(succeeded=["a"], reassigned=1)
    second = SyncResult(failed={"b": "boom"}, downloaded=["c"], reassigned=2)
    merged = first.merge(second)
    assert merged.succeeded == ["a"]
    assert merged.downloaded == ["c"]
    assert merged.reassigned == 3
    assert not merged.ok


def test_concurrency_must_be_positive(tmp_path):
    with pytest.raises(ValueError):
        SyncService(AsyncSessionRepository(str(tmp_path / "x.db")), max_concurrency=0)


class HtmlSession:
    """requests-style session answering every call with a 200 HTML page."""

    def __init__(self):
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append((method, url))
        resp = requests.Response()
        resp.status_code = 200
        resp._content = b"<html><body>Sign in to the network</body></html>"
        return resp


class BrokenFlagRepository(AsyncSessionRepository):
    async def mark_synced(self, session_ids):
        raise sqlite3.OperationalError("database is locked")


@pytest.mark.asyncio
async def test_sync_on_login_survives_non_json_responses(local):
    uid = uuid.uuid4()
    record = make_record(owner=OwnedBy(uid))
    await local.save(record)
    session = HtmlSession()
    service = SyncService(local, RestSessionStore("http://remote", session=session))

    result = await service.sync_on_login(uid)
    assert not result.ok
    assert str(record.id) in result.failed
    assert "download" in result.failed
    assert [c[0] for c in session.calls] == ["POST", "GET"]
    assert not (await local.fetch_by_id(record.id)).synced


@pytest.mark.asyncio
async def test_unexpected_upload_error_does_not_stop_others(local):
    uid = uuid.uuid4()
    records = [make_record(i, OwnedBy(uid)) for i in range(3)]
    for r in records:
        await local.save(r)

    class ExplodingRemote(FakeRemote):
        async def insert(self, payload):
            if payload["id"] == str(records[1].id):
                raise RuntimeError("unexpected response")
            await super().insert(payload)

    result = await SyncService(local, ExplodingRemote()).upload_unsynced()
    assert set(result.succeeded) == {str(records[0].id), str(records[2].id)}
    assert result.failed == {str(records[1].id): "unexpected response"}
    assert [r.id for r in await local.fetch_unsynced()] == [records[1].id]


@pytest.mark.asyncio
async def test_flag_write_failure_is_a_storage_error(tmp_path):
    local = BrokenFlagRepository(str(tmp_path / "local.db"))
    remote = FakeRemote()
    service = SyncService(local, remote)
    record = make_record(owner=OwnedBy(uuid.uuid4()))
    with pytest.raises(SessionPersistError):
        await service.save_session(record)
    assert str(record.id) in remote.rows

    result = await service.upload_unsynced()
    assert list(result.failed) == [str(record.id)]
    assert "could not mark session" in result.failed[str(record.id)]
