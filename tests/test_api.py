import datetime
import os
import sys
import unittest
import uuid

from fastapi.testclient import TestClient

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from rest_api import SessionAPI
from session_record import OwnedBy, SessionRecord

T0 = datetime.datetime(2024, 2, 1, 8, 0, tzinfo=datetime.timezone.utc)


def payload_for(user_id, minutes=0, **kwargs):
    ts = T0 + datetime.timedelta(minutes=minutes)
    values = dict(
        workout_mode="full",
        completed=True,
        completed_rounds=19,
        total_completed_reps=1500,
        total_workout_time_seconds=1800,
        progress_percentage=100.0,
        exercise_reps={"Dips": 200},
        exercise_timing={"Dips": 300},
        workout_started_at=ts,
        workout_ended_at=ts + datetime.timedelta(minutes=30),
        created_at=ts + datetime.timedelta(minutes=30),
    )
    values.update(kwargs)
    return SessionRecord(owner=OwnedBy(user_id), **values).to_payload()


class SessionAPITestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.db = "test_sessions_api.db"
        if os.path.exists(self.db):
            os.remove(self.db)
        self.api = SessionAPI(db_path=self.db)
        self.client = TestClient(self.api.app)
        self.user = str(uuid.uuid4())
        self.headers = {"X-User-Id": self.user}

    def tearDown(self) -> None:
        if os.path.exists(self.db):
            os.remove(self.db)

    def test_health(self) -> None:
        resp = self.client.get("/health")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {"status": "ok"})

    def test_requires_user_id(self) -> None:
        self.assertEqual(self.client.get("/sessions").status_code, 401)
        resp = self.client.get("/sessions", headers={"X-User-Id": "nobody"})
        self.assertEqual(resp.status_code, 401)

    def test_insert_is_idempotent(self) -> None:
        payload = payload_for(self.user)
        resp = self.client.post("/sessions", json=payload, headers=self.headers)
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {"id": payload["id"], "status": "created"})
        resp = self.client.post("/sessions", json=payload, headers=self.headers)
        self.assertEqual(resp.json()["status"], "exists")
        rows = self.client.get("/sessions", headers=self.headers).json()
        self.assertEqual(len(rows), 1)
        stored = SessionRecord.from_payload(rows[0])
        self.assertEqual(stored.id, uuid.UUID(payload["id"]))
        self.assertEqual(stored.exercise_reps, {"Dips": 200})
        self.assertEqual(stored.workout_started_at, T0)

    def test_cannot_write_for_another_user(self) -> None:
        other = str(uuid.uuid4())
        resp = self.client.post("/sessions", json=payload_for(other), headers=self.headers)
        self.assertEqual(resp.status_code, 403)

    def test_id_owned_by_another_user_conflicts(self) -> None:
        payload = payload_for(self.user)
        self.client.post("/sessions", json=payload, headers=self.headers)
        other = str(uuid.uuid4())
        clash = dict(payload, user_id=other)
        resp = self.client.post("/sessions", json=clash, headers={"X-User-Id": other})
        self.assertEqual(resp.status_code, 409)
        self.assertEqual(self.client.get("/sessions", headers={"X-User-Id": other}).json(), [])

    def test_rows_are_scoped_to_owner(self) -> None:
        other = str(uuid.uuid4())
        self.client.post("/sessions", json=payload_for(self.user), headers=self.headers)
        self.client.post("/sessions", json=payload_for(other), headers={"X-User-Id": other})
        rows = self.client.get("/sessions", headers=self.headers).json()
        self.assertEqual([r["user_id"] for r in rows], [self.user])

    def test_best_session_query(self) -> None:
        for minutes, seconds, done in ((0, 1800, True), (60, 1500, True), (120, 900, False)):
            payload = payload_for(
                self.user, minutes, total_workout_time_seconds=seconds, completed=done
            )
            self.client.post("/sessions", json=payload, headers=self.headers)
        self.client.post(
            "/sessions",
            json=payload_for(self.user, 180, workout_mode="ascending", total_workout_time_seconds=600),
            headers=self.headers,
        )
        resp = self.client.get(
            "/sessions",
            params={
                "workout_mode": "full",
                "completed": "true",
                "order_by": "total_workout_time_seconds",
                "ascending": "true",
                "limit": 1,
            },
            headers=self.headers,
        )
        self.assertEqual(resp.status_code, 200)
        rows = resp.json()
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0]["total_workout_time_seconds"], 1500)

    def test_default_order_is_newest_first(self) -> None:
        for minutes in (0, 10, 5):
            self.client.post("/sessions", json=payload_for(self.user, minutes), headers=self.headers)
        rows = self.client.get("/sessions", headers=self.headers).json()
        started = [r["workout_started_at"] for r in rows]
        self.assertEqual(started, sorted(started, reverse=True))

    def test_bad_query_rejected(self) -> None:
        resp = self.client.get("/sessions", params={"order_by": "user_id"}, headers=self.headers)
        self.assertEqual(resp.status_code, 400)
        resp = self.client.get("/sessions", params={"limit": 0}, headers=self.headers)
        self.assertEqual(resp.status_code, 400)

    def test_update_session(self) -> None:
        payload = payload_for(self.user)
        self.client.post("/sessions", json=payload, headers=self.headers)
        resp = self.client.patch(
            f"/sessions/{payload['id']}",
            json={"total_completed_reps": 1400, "exercise_reps": {"Dips": 180}},
            headers=self.headers,
        )
        self.assertEqual(resp.status_code, 200)
        row = self.client.get("/sessions", headers=self.headers).json()[0]
        self.assertEqual(row["total_completed_reps"], 1400)
        self.assertEqual(row["exercise_reps"], {"Dips": 180})

        resp = self.client.patch(
            f"/sessions/{payload['id']}", json={"user_id": str(uuid.uuid4())}, headers=self.headers
        )
        self.assertEqual(resp.status_code, 400)
        resp = self.client.patch(
            f"/sessions/{uuid.uuid4()}", json={"completed": False}, headers=self.headers
        )
        self.assertEqual(resp.status_code, 404)

    def test_delete_scoped_to_owner(self) -> None:
        other = str(uuid.uuid4())
        mine = payload_for(self.user)
        self.client.post("/sessions", json=mine, headers=self.headers)
        self.client.post("/sessions", json=payload_for(self.user, 5), headers=self.headers)
        self.client.post("/sessions", json=payload_for(other), headers={"X-User-Id": other})

        resp = self.client.delete(f"/sessions/{mine['id']}", headers={"X-User-Id": other})
        self.assertEqual(resp.json(), {"status": "deleted", "count": 0})
        resp = self.client.delete(f"/sessions/{mine['id']}", headers=self.headers)
        self.assertEqual(resp.json(), {"status": "deleted", "count": 1})
        resp = self.client.delete("/sessions", headers=self.headers)
        self.assertEqual(resp.json(), {"status": "deleted", "count": 1})
        self.assertEqual(len(self.client.get("/sessions", headers={"X-User-Id": other}).json()), 1)


class APIKeyTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.db = "test_sessions_keys.db"
        if os.path.exists(self.db):
            os.remove(self.db)
        self.api = SessionAPI(db_path=self.db, require_api_key=True)
        self.client = TestClient(self.api.app)
        self.user = str(uuid.uuid4())

    def tearDown(self) -> None:
        if os.path.exists(self.db):
            os.remove(self.db)

    def test_api_key_required(self) -> None:
        resp = self.client.get("/sessions", headers={"X-User-Id": self.user})
        self.assertEqual(resp.status_code, 401)
        resp = self.client.get(
            "/sessions", headers={"X-User-Id": self.user, "X-API-Key": "wrong"}
        )
        self.assertEqual(resp.status_code, 401)
        self.api.api_keys.add("mobile", "abc")
        self.assertEqual(self.api.api_keys.fetch_all_keys(), [(1, "mobile", "abc")])
        resp = self.client.get(
            "/sessions", headers={"X-User-Id": self.user, "X-API-Key": "abc"}
        )
        self.assertEqual(resp.status_code, 200)
        self.api.api_keys.delete(1)
        self.assertFalse(self.api.api_keys.is_valid("abc"))


if __name__ == "__main__":
    unittest.main()
