import logging
import os
import uuid
from typing import Optional

from fastapi import Body, Depends, FastAPI, Header, HTTPException

from db import ApiKeyRepository, RemoteSessionRepository
from session_record import SessionPayload

logger = logging.getLogger(__name__)


class SessionAPI:
    """Reference remote store for workout sessions with per-user scoping."""

    def __init__(
        self,
        db_path: str = "ladder_remote.db",
        *,
        require_api_key: bool = False,
    ) -> None:
        self.db_path = db_path
        self.sessions = RemoteSessionRepository(db_path)
        self.api_keys = ApiKeyRepository(db_path)
        self.require_api_key = require_api_key
        self.app = FastAPI(
            title="Ladder Sessions API",
            description="Remote record store for ladder workout sessions",
        )
        self._setup_routes()

    def _current_user(
        self,
        x_user_id: Optional[str] = Header(default=None),
        x_api_key: Optional[str] = Header(default=None),
    ) -> str:
        if self.require_api_key and (not x_api_key or not self.api_keys.is_valid(x_api_key)):
            raise HTTPException(status_code=401, detail="invalid api key")
        if not x_user_id:
            raise HTTPException(status_code=401, detail="user id required")
        try:
            return str(uuid.UUID(x_user_id))
        except ValueError:
            raise HTTPException(status_code=401, detail="invalid user id")

    def _setup_routes(self) -> None:
        current_user = self._current_user

        @self.app.get(
            "/health",
            summary="Health check",
            description="Verify API and database connectivity.",
        )
        def health():
            """Return API and database connection status."""
            try:
                self.sessions.fetch_all("SELECT 1;")
            except Exception as e:
                raise HTTPException(status_code=500, detail=str(e))
            return {"status": "ok"}

        @self.app.post("/sessions")
        def insert_session(
            payload: SessionPayload = Body(...),
            user_id: str = Depends(current_user),
        ):
            if payload.user_id is not None and str(payload.user_id) != user_id:
                raise HTTPException(status_code=403, detail="cannot write another user's session")
            data = payload.model_dump(mode="json")
            try:
                created = self.sessions.insert(data, user_id)
            except PermissionError as e:
                raise HTTPException(status_code=409, detail=str(e))
            if not created:
                return {"id": data["id"], "status": "exists"}
            logger.info("Stored session %s for %s", data["id"], user_id)
            return {"id": data["id"], "status": "created"}

        @self.app.get("/sessions")
        def list_sessions(
            workout_mode: Optional[str] = None,
            completed: Optional[bool] = None,
            order_by: str = "created_at",
            ascending: bool = False,
            limit: Optional[int] = None,
            user_id: str = Depends(current_user),
        ):
            if limit is not None and limit < 1:
                raise HTTPException(status_code=400, detail="limit must be positive")
            try:
                return self.sessions.select(
                    user_id,
                    workout_mode=workout_mode,
                    completed=completed,
                    order_by=order_by,
                    ascending=ascending,
                    limit=limit,
                )
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))

        @self.app.patch("/sessions/{session_id}")
        def update_session(
            session_id: uuid.UUID,
            fields: dict = Body(...),
            user_id: str = Depends(current_user),
        ):
            try:
                self.sessions.update(str(session_id), user_id, fields)
            except ValueError as e:
                status = 404 if "not found" in str(e) else 400
                raise HTTPException(status_code=status, detail=str(e))
            return {"status": "updated"}

        @self.app.delete("/sessions/{session_id}")
        def delete_session(session_id: uuid.UUID, user_id: str = Depends(current_user)):
            count = self.sessions.delete(str(session_id), user_id)
            return {"status": "deleted", "count": count}

        @self.app.delete("/sessions")
        def delete_all_sessions(user_id: str = Depends(current_user)):
            count = self.sessions.delete_all(user_id)
            return {"status": "deleted", "count": count}


api = SessionAPI(db_path=os.environ.get("LADDER_REMOTE_DB", "ladder_remote.db"))
app = api.app

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app)
