"""Client for the remote session record store.

The store is treated as a plain record table with insert, filtered select,
update, delete and delete-all operations scoped to one owner. Access control
is enforced server-side; the client only ever passes its own user id.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import requests

from exceptions import NotAuthenticatedError, RemoteStoreError, RemoteUnavailableError

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT_S = 10


def _flag(value: bool) -> str:
    return "true" if value else "false"


class RestSessionStore:
    """REST client for the remote workout session store."""

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        api_key: str | None = None,
        session: Any = None,
        timeout: float = _DEFAULT_TIMEOUT_S,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.session = session or requests.Session()
        self.timeout = timeout

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _request(
        self,
        method: str,
        path: str,
        user_id: str,
        params: dict | None = None,
        json: dict | None = None,
    ) -> Any:
        if not user_id:
            raise NotAuthenticatedError()
        headers = {"X-User-Id": str(user_id)}
        if self.api_key:
            headers["X-API-Key"] = self.api_key
        try:
            resp = self.session.request(
                method,
                f"{self.base_url}{path}",
                params=params,
                json=json,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise RemoteUnavailableError(f"{method} {path} failed: {e}") from e
        if resp.status_code in (401, 403):
            raise NotAuthenticatedError(self._detail(resp))
        if resp.status_code >= 400:
            raise RemoteStoreError(self._detail(resp), status_code=resp.status_code)
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as e:
            raise RemoteStoreError(
                f"{method} {path} returned a non-JSON body", status_code=resp.status_code
            ) from e

    @staticmethod
    def _detail(resp: Any) -> str:
        try:
            body = resp.json()
        except ValueError:
            return resp.text or f"HTTP {resp.status_code}"
        if isinstance(body, dict) and "detail" in body:
            return str(body["detail"])
        return str(body)

    # ------------------------------------------------------------------
    # Blocking operations
    # ------------------------------------------------------------------

    def insert_sync(self, payload: dict) -> None:
        user_id = payload.get("user_id")
        if user_id is None:
            raise NotAuthenticatedError()
        self._request("POST", "/sessions", user_id, json=payload)
        logger.debug("Inserted remote session %s", payload["id"])

    def select_sync(
        self,
        user_id: str,
        workout_mode: Optional[str] = None,
        completed: Optional[bool] = None,
        order_by: str = "created_at",
        ascending: bool = False,
        limit: Optional[int] = None,
    ) -> list[dict]:
        params: dict[str, Any] = {"order_by": order_by, "ascending": _flag(ascending)}
        if workout_mode is not None:
            params["workout_mode"] = workout_mode
        if completed is not None:
            params["completed"] = _flag(completed)
        if limit is not None:
            params["limit"] = limit
        return self._request("GET", "/sessions", user_id, params=params) or []

    def update_sync(self, session_id: str, user_id: str, fields: dict) -> None:
        self._request("PATCH", f"/sessions/{session_id}", user_id, json=fields)

    def delete_sync(self, session_id: str, user_id: str) -> None:
        self._request("DELETE", f"/sessions/{session_id}", user_id)

    def delete_all_sync(self, user_id: str) -> None:
        self._request("DELETE", "/sessions", user_id)

    # ------------------------------------------------------------------
    # Async facade used by the sync service
    # ------------------------------------------------------------------

    async def insert(self, payload: dict) -> None:
        await asyncio.to_thread(self.insert_sync, payload)

    async def select(self, user_id, **filters) -> list[dict]:
        return await asyncio.to_thread(self.select_sync, str(user_id), **filters)

    async def update(self, session_id, user_id, fields: dict) -> None:
        await asyncio.to_thread(self.update_sync, str(session_id), str(user_id), fields)

    async def delete(self, session_id, user_id) -> None:
        await asyncio.to_thread(self.delete_sync, str(session_id), str(user_id))

    async def delete_all(self, user_id) -> None:
        await asyncio.to_thread(self.delete_all_sync, str(user_id))

    async def fetch_best(self, user_id, workout_mode: str) -> dict | None:
        """Return the fastest completed session of ``workout_mode``."""
        rows = await self.select(
            user_id,
            workout_mode=workout_mode,
            completed=True,
            order_by="total_workout_time_seconds",
            ascending=True,
            limit=1,
        )
        return rows[0] if rows else None
