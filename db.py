import sqlite3
import aiosqlite
import datetime
import json
from contextlib import contextmanager, asynccontextmanager
from typing import Iterable, List, Optional, Tuple
from uuid import UUID

from algorithms import ProgressionMode
from session_record import SessionRecord
from workout_configuration import WorkoutTemplate


SESSION_COLUMNS = [
    "id",
    "user_id",
    "workout_mode",
    "completed",
    "completed_rounds",
    "total_completed_reps",
    "total_workout_time_seconds",
    "progress_percentage",
    "exercise_reps",
    "exercise_timing",
    "workout_started_at",
    "workout_ended_at",
    "created_at",
    "synced",
]

_SESSION_SELECT = "SELECT " + ", ".join(SESSION_COLUMNS) + " FROM workout_sessions"
_SESSION_INSERT = (
    "INSERT INTO workout_sessions (" + ", ".join(SESSION_COLUMNS) + ") VALUES ("
    + ", ".join("?" for _ in SESSION_COLUMNS) + ")"
)
_SESSION_UPSERT = (
    _SESSION_INSERT
    + " ON CONFLICT(id) DO UPDATE SET "
    + ", ".join(f"{c}=excluded.{c}" for c in SESSION_COLUMNS if c != "id")
    + ";"
)

REMOTE_COLUMNS = SESSION_COLUMNS[:-1]
_REMOTE_SELECT = "SELECT " + ", ".join(REMOTE_COLUMNS) + " FROM remote_sessions"


def _key(value) -> str:
    return str(value) if isinstance(value, UUID) else str(UUID(str(value)))


class Database:
    """Provides SQLite connection management and schema initialization."""

    _TABLE_DEFINITIONS = {
        "workout_sessions": (
            """CREATE TABLE workout_sessions (
                    id TEXT PRIMARY KEY,
                    user_id TEXT,
                    workout_mode TEXT NOT NULL,
                    completed INTEGER NOT NULL DEFAULT 0,
                    completed_rounds INTEGER NOT NULL DEFAULT 0,
                    total_completed_reps INTEGER NOT NULL DEFAULT 0,
                    total_workout_time_seconds INTEGER NOT NULL DEFAULT 0,
                    progress_percentage REAL NOT NULL DEFAULT 0,
                    exercise_reps TEXT NOT NULL DEFAULT '{}',
                    exercise_timing TEXT NOT NULL DEFAULT '{}',
                    workout_started_at TEXT NOT NULL,
                    workout_ended_at TEXT,
                    created_at TEXT NOT NULL,
                    synced INTEGER NOT NULL DEFAULT 0
                );""",
            SESSION_COLUMNS,
        ),
        "workout_templates": (
            """CREATE TABLE workout_templates (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    exercises TEXT NOT NULL,
                    progression_mode TEXT NOT NULL DEFAULT 'full',
                    is_favorite INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL
                );""",
            ["id", "name", "exercises", "progression_mode", "is_favorite", "created_at"],
        ),
        "remote_sessions": (
            """CREATE TABLE remote_sessions (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    workout_mode TEXT NOT NULL,
                    completed INTEGER NOT NULL DEFAULT 0,
                    completed_rounds INTEGER NOT NULL DEFAULT 0,
                    total_completed_reps INTEGER NOT NULL DEFAULT 0,
                    total_workout_time_seconds INTEGER NOT NULL DEFAULT 0,
                    progress_percentage REAL NOT NULL DEFAULT 0,
                    exercise_reps TEXT NOT NULL DEFAULT '{}',
                    exercise_timing TEXT NOT NULL DEFAULT '{}',
                    workout_started_at TEXT,
                    workout_ended_at TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );""",
            REMOTE_COLUMNS + ["updated_at"],
        ),
        "api_keys": (
            """CREATE TABLE api_keys (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL UNIQUE,
                    api_key TEXT NOT NULL
                );""",
            ["id", "name", "api_key"],
        ),
    }

    _INDEXES = (
        "CREATE INDEX IF NOT EXISTS idx_workout_sessions_user ON workout_sessions(user_id, created_at);",
        "CREATE INDEX IF NOT EXISTS idx_workout_sessions_synced ON workout_sessions(synced);",
        "CREATE INDEX IF NOT EXISTS idx_remote_sessions_user_mode ON remote_sessions(user_id, workout_mode, completed);",
    )

    def __init__(self, db_path: str = "ladder.db") -> None:
        self._db_path = db_path
        self._ensure_schema()

    @contextmanager
    def _connection(self):
        connection = sqlite3.connect(self._db_path)
        try:
            yield connection
            connection.commit()
        except Exception:
            connection.rollback()
            raise
        finally:
            connection.close()

    def _ensure_schema(self) -> None:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute("PRAGMA foreign_keys=off;")
            for table, (sql, columns) in self._TABLE_DEFINITIONS.items():
                self._ensure_table(conn, table, sql, columns)
            for sql in self._INDEXES:
                conn.execute(sql)
            cursor.execute("PRAGMA foreign_keys=on;")

    def _ensure_table(
        self, conn: sqlite3.Connection, table: str, sql: str, columns: List[str]
    ) -> None:
        cur = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name=?;", (table,)
        )
        if cur.fetchone() is None:
            conn.execute(sql)
            return

        cur = conn.execute(f"PRAGMA table_info({table});")
        existing_cols = [row[1] for row in cur.fetchall()]
        if existing_cols == columns:
            return

        conn.execute(f"ALTER TABLE {table} RENAME TO {table}_old;")
        conn.execute(sql)

        common = [c for c in existing_cols if c in columns]
        if common:
            cols = ", ".join(common)
            missing = [c for c in columns if c not in existing_cols]
            if missing:
                def default_val(col: str) -> str:
                    if col in ("synced", "completed", "is_favorite"):
                        return "0"
                    if col in ("exercise_reps", "exercise_timing"):
                        return "'{}'"
                    if col == "progression_mode":
                        return "'full'"
                    if col in ("created_at", "updated_at", "workout_started_at"):
                        return "CURRENT_TIMESTAMP"
                    return "NULL"

                defaults = ", ".join(default_val(c) for c in missing)
                conn.execute(
                    f"INSERT INTO {table} ({cols}, {', '.join(missing)}) SELECT {cols}, {defaults} FROM {table}_old;"
                )
            else:
                conn.execute(
                    f"INSERT INTO {table} ({cols}) SELECT {cols} FROM {table}_old;"
                )
        conn.execute(f"DROP TABLE {table}_old;")

    def vacuum(self) -> None:
        """Run SQLite VACUUM to reduce database size."""
        with self._connection() as conn:
            conn.execute("VACUUM;")


class BaseRepository(Database):
    """Base repository providing helper methods."""

    def execute(self, query: str, params: Tuple = ()) -> int:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return cursor.lastrowid

    def execute_rowcount(self, query: str, params: Tuple = ()) -> int:
        with self._connection() as conn:
            cursor = conn.execute(query, params)
            return cursor.rowcount

    def fetch_all(self, query: str, params: Tuple = ()) -> List[Tuple]:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return cursor.fetchall()

    def _delete_all(self, table: str) -> None:
        self.execute(f"DELETE FROM {table};")


class AsyncDatabase(Database):
    """Provides asynchronous connection management."""

    @asynccontextmanager
    async def _async_connection(self):
        conn = await aiosqlite.connect(self._db_path)
        try:
            yield conn
            await conn.commit()
        except Exception:
            await conn.rollback()
            raise
        finally:
            await conn.close()


class AsyncBaseRepository(AsyncDatabase):
    """Asynchronous variant of BaseRepository using aiosqlite."""

    async def execute(self, query: str, params: Tuple = ()) -> int:
        async with self._async_connection() as conn:
            cursor = await conn.execute(query, params)
            await conn.commit()
            return cursor.lastrowid

    async def execute_rowcount(self, query: str, params: Tuple = ()) -> int:
        async with self._async_connection() as conn:
            cursor = await conn.execute(query, params)
            await conn.commit()
            return cursor.rowcount

    async def execute_many(self, query: str, rows: Iterable[Tuple]) -> None:
        async with self._async_connection() as conn:
            await conn.executemany(query, list(rows))
            await conn.commit()

    async def fetch_all(self, query: str, params: Tuple = ()) -> List[Tuple]:
        async with self._async_connection() as conn:
            cursor = await conn.execute(query, params)
            rows = await cursor.fetchall()
            return rows

    async def _delete_all(self, table: str) -> None:
        await self.execute(f"DELETE FROM {table};")


def _user_filter(user_id) -> Tuple[str, Tuple]:
    if user_id is None:
        return " WHERE user_id IS NULL", ()
    return " WHERE (user_id = ? OR user_id IS NULL)", (_key(user_id),)


class SessionRepository(BaseRepository):
    """Repository for locally stored workout sessions."""

    def save(self, record: SessionRecord) -> None:
        self.execute(_SESSION_UPSERT, record.to_row())

    def save_if_absent(self, record: SessionRecord) -> bool:
        with self._connection() as conn:
            cursor = conn.execute(
                _SESSION_INSERT.replace("INSERT INTO", "INSERT OR IGNORE INTO", 1) + ";",
                record.to_row(),
            )
            return cursor.rowcount == 1

    def fetch_all_sessions(self) -> list[SessionRecord]:
        rows = self.fetch_all(_SESSION_SELECT + " ORDER BY created_at DESC;")
        return [SessionRecord.from_row(r) for r in rows]

    def fetch_by_id(self, session_id) -> SessionRecord | None:
        rows = self.fetch_all(_SESSION_SELECT + " WHERE id = ?;", (_key(session_id),))
        return SessionRecord.from_row(rows[0]) if rows else None

    def fetch_unsynced(self) -> list[SessionRecord]:
        rows = self.fetch_all(_SESSION_SELECT + " WHERE synced = 0 ORDER BY created_at ASC;")
        return [SessionRecord.from_row(r) for r in rows]

    def fetch_for_user(self, user_id=None) -> list[SessionRecord]:
        where, params = _user_filter(user_id)
        rows = self.fetch_all(_SESSION_SELECT + where + " ORDER BY created_at DESC;", params)
        return [SessionRecord.from_row(r) for r in rows]

    def mark_synced(self, session_ids: Iterable) -> None:
        ids = [(_key(s),) for s in session_ids]
        if not ids:
            return
        with self._connection() as conn:
            conn.executemany("UPDATE workout_sessions SET synced = 1 WHERE id = ?;", ids)

    def reassign_owner(self, user_id) -> int:
        return self.execute_rowcount(
            "UPDATE workout_sessions SET user_id = ?, synced = 0 WHERE user_id IS NULL;",
            (_key(user_id),),
        )

    def delete(self, session_id) -> None:
        self.execute("DELETE FROM workout_sessions WHERE id = ?;", (_key(session_id),))

    def delete_all(self) -> None:
        self._delete_all("workout_sessions")


class AsyncSessionRepository(AsyncBaseRepository):
    """Async repository for locally stored workout sessions."""

    async def save(self, record: SessionRecord) -> None:
        await self.execute(_SESSION_UPSERT, record.to_row())

    async def save_if_absent(self, record: SessionRecord) -> bool:
        inserted = await self.execute_rowcount(
            _SESSION_INSERT.replace("INSERT INTO", "INSERT OR IGNORE INTO", 1) + ";",
            record.to_row(),
        )
        return inserted == 1

    async def fetch_all_sessions(self) -> list[SessionRecord]:
        rows = await self.fetch_all(_SESSION_SELECT + " ORDER BY created_at DESC;")
        return [SessionRecord.from_row(r) for r in rows]

    async def fetch_by_id(self, session_id) -> SessionRecord | None:
        rows = await self.fetch_all(_SESSION_SELECT + " WHERE id = ?;", (_key(session_id),))
        return SessionRecord.from_row(rows[0]) if rows else None

    async def fetch_ids(self) -> set[str]:
        rows = await self.fetch_all("SELECT id FROM workout_sessions;")
        return {r[0] for r in rows}

    async def fetch_unsynced(self) -> list[SessionRecord]:
        rows = await self.fetch_all(
            _SESSION_SELECT + " WHERE synced = 0 ORDER BY created_at ASC;"
        )
        return [SessionRecord.from_row(r) for r in rows]

    async def fetch_for_user(self, user_id=None) -> list[SessionRecord]:
        where, params = _user_filter(user_id)
        rows = await self.fetch_all(
            _SESSION_SELECT + where + " ORDER BY created_at DESC;", params
        )
        return [SessionRecord.from_row(r) for r in rows]

    async def mark_synced(self, session_ids: Iterable) -> None:
        ids = [(_key(s),) for s in session_ids]
        if ids:
            await self.execute_many(
                "UPDATE workout_sessions SET synced = 1 WHERE id = ?;", ids
            )

    async def reassign_owner(self, user_id) -> int:
        return await self.execute_rowcount(
            "UPDATE workout_sessions SET user_id = ?, synced = 0 WHERE user_id IS NULL;",
            (_key(user_id),),
        )

    async def delete(self, session_id) -> None:
        await self.execute("DELETE FROM workout_sessions WHERE id = ?;", (_key(session_id),))

    async def delete_all(self) -> None:
        await self._delete_all("workout_sessions")


class TemplateRepository(BaseRepository):
    """Repository for saved custom workout configurations."""

    def add(
        self,
        name: str,
        exercise_names: list[str],
        progression_mode: ProgressionMode | str = ProgressionMode.FULL,
        is_favorite: bool = False,
    ) -> int:
        if not name.strip():
            raise ValueError("template name required")
        if not exercise_names:
            raise ValueError("template needs at least one exercise")
        mode = ProgressionMode(progression_mode)
        return self.execute(
            "INSERT INTO workout_templates (name, exercises, progression_mode, is_favorite, created_at) VALUES (?, ?, ?, ?, ?);",
            (
                name.strip(),
                json.dumps(list(exercise_names)),
                mode.value,
                int(is_favorite),
                datetime.datetime.now(datetime.timezone.utc).isoformat(),
            ),
        )

    @staticmethod
    def _to_template(row: Tuple) -> WorkoutTemplate:
        tid, name, exercises, mode, fav, created = row
        try:
            progression = ProgressionMode(mode)
        except ValueError:
            progression = ProgressionMode.FULL
        return WorkoutTemplate(
            name=name,
            exercise_names=json.loads(exercises) if exercises else [],
            progression_mode=progression,
            is_favorite=bool(fav),
            id=tid,
            created_at=created,
        )

    def fetch_all_templates(self, favorites_only: bool = False) -> list[WorkoutTemplate]:
        query = "SELECT id, name, exercises, progression_mode, is_favorite, created_at FROM workout_templates"
        if favorites_only:
            query += " WHERE is_favorite = 1"
        query += " ORDER BY is_favorite DESC, created_at DESC;"
        return [self._to_template(r) for r in self.fetch_all(query)]

    def fetch_detail(self, template_id: int) -> WorkoutTemplate:
        rows = self.fetch_all(
            "SELECT id, name, exercises, progression_mode, is_favorite, created_at FROM workout_templates WHERE id = ?;",
            (template_id,),
        )
        if not rows:
            raise ValueError("template not found")
        return self._to_template(rows[0])

    def set_favorite(self, template_id: int, is_favorite: bool) -> None:
        self.fetch_detail(template_id)
        self.execute(
            "UPDATE workout_templates SET is_favorite = ? WHERE id = ?;",
            (int(is_favorite), template_id),
        )

    def delete(self, template_id: int) -> None:
        self.fetch_detail(template_id)
        self.execute("DELETE FROM workout_templates WHERE id = ?;", (template_id,))

    def delete_all(self) -> None:
        self._delete_all("workout_templates")


class RemoteSessionRepository(BaseRepository):
    """Owner-scoped session table backing the reference remote API."""

    _ORDERABLE = {
        "created_at",
        "workout_started_at",
        "workout_ended_at",
        "total_workout_time_seconds",
        "total_completed_reps",
        "progress_percentage",
    }

    def insert(self, payload: dict, user_id: str) -> bool:
        """Insert ``payload`` for ``user_id``; return False if the id exists.

        Raises ``PermissionError`` when the id belongs to another owner.
        """
        sid = _key(payload["id"])
        owner = self.fetch_all("SELECT user_id FROM remote_sessions WHERE id = ?;", (sid,))
        if owner:
            if owner[0][0] != _key(user_id):
                raise PermissionError("session belongs to another user")
            return False
        now = datetime.datetime.now(datetime.timezone.utc).isoformat()
        self.execute(
            "INSERT INTO remote_sessions (" + ", ".join(REMOTE_COLUMNS) + ", updated_at) VALUES ("
            + ", ".join("?" for _ in REMOTE_COLUMNS) + ", ?);",
            (
                sid,
                _key(user_id),
                payload["workout_mode"],
                int(bool(payload.get("completed"))),
                int(payload.get("completed_rounds", 0)),
                int(payload.get("total_completed_reps", 0)),
                int(payload.get("total_workout_time_seconds", 0)),
                float(payload.get("progress_percentage", 0.0)),
                json.dumps(payload.get("exercise_reps") or {}, sort_keys=True),
                json.dumps(payload.get("exercise_timing") or {}, sort_keys=True),
                payload.get("workout_started_at"),
                payload.get("workout_ended_at"),
                payload.get("created_at") or now,
                now,
            ),
        )
        return True

    @staticmethod
    def _to_payload(row: Tuple) -> dict:
        payload = dict(zip(REMOTE_COLUMNS, row))
        payload["completed"] = bool(payload["completed"])
        payload["exercise_reps"] = json.loads(payload["exercise_reps"] or "{}")
        payload["exercise_timing"] = json.loads(payload["exercise_timing"] or "{}")
        return payload

    def select(
        self,
        user_id: str,
        workout_mode: Optional[str] = None,
        completed: Optional[bool] = None,
        order_by: str = "created_at",
        ascending: bool = False,
        limit: Optional[int] = 50,
    ) -> list[dict]:
        query = _REMOTE_SELECT + " WHERE user_id = ?"
        params: list = [_key(user_id)]
        if workout_mode is not None:
            query += " AND workout_mode = ?"
            params.append(workout_mode)
        if completed is not None:
            query += " AND completed = ?"
            params.append(int(completed))
        if order_by not in self._ORDERABLE:
            raise ValueError(f"cannot order by {order_by}")
        query += f" ORDER BY {order_by} {'ASC' if ascending else 'DESC'}"
        if limit is not None:
            query += " LIMIT ?"
            params.append(int(limit))
        query += ";"
        return [self._to_payload(r) for r in self.fetch_all(query, tuple(params))]

    def update(self, session_id: str, user_id: str, fields: dict) -> None:
        allowed = [c for c in REMOTE_COLUMNS if c not in ("id", "user_id", "created_at")]
        unknown = [k for k in fields if k not in allowed]
        if unknown:
            raise ValueError(f"cannot update {', '.join(sorted(unknown))}")
        if not fields:
            return
        values = []
        for key in fields:
            value = fields[key]
            if key in ("exercise_reps", "exercise_timing"):
                value = json.dumps(value or {}, sort_keys=True)
            elif key == "completed":
                value = int(bool(value))
            values.append(value)
        assignments = ", ".join(f"{k} = ?" for k in fields)
        count = self.execute_rowcount(
            f"UPDATE remote_sessions SET {assignments}, updated_at = ? WHERE id = ? AND user_id = ?;",
            (
                *values,
                datetime.datetime.now(datetime.timezone.utc).isoformat(),
                _key(session_id),
                _key(user_id),
            ),
        )
        if count == 0:
            raise ValueError("session not found")

    def delete(self, session_id: str, user_id: str) -> int:
        return self.execute_rowcount(
            "DELETE FROM remote_sessions WHERE id = ? AND user_id = ?;",
            (_key(session_id), _key(user_id)),
        )

    def delete_all(self, user_id: str) -> int:
        return self.execute_rowcount(
            "DELETE FROM remote_sessions WHERE user_id = ?;", (_key(user_id),)
        )


class ApiKeyRepository(BaseRepository):
    """Repository for API keys accepted by the remote API."""

    def add(self, name: str, api_key: str) -> int:
        return self.execute(
            "INSERT INTO api_keys (name, api_key) VALUES (?, ?);", (name, api_key)
        )

    def fetch_all_keys(self) -> list[tuple[int, str, str]]:
        return self.fetch_all("SELECT id, name, api_key FROM api_keys ORDER BY id;")

    def is_valid(self, api_key: str) -> bool:
        rows = self.fetch_all("SELECT 1 FROM api_keys WHERE api_key = ?;", (api_key,))
        return bool(rows)

    def delete(self, key_id: int) -> None:
        self.execute("DELETE FROM api_keys WHERE id = ?;", (key_id,))
