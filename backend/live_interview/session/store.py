from __future__ import annotations

import asyncio
import json
from typing import Protocol

from live_interview.core.config import REDIS_URL, USE_REDIS_SESSION_STORE
from live_interview.session.models import Session


class SessionStore(Protocol):
    async def save(self, session: Session) -> Session:
        ...

    async def get(self, session_id: str) -> Session | None:
        ...

    async def remove(self, session_id: str) -> None:
        ...


class LocalSessionStore:
    def __init__(self):
        self._lock = asyncio.Lock()
        self._sessions: dict[str, Session] = {}

    async def save(self, session: Session) -> Session:
        if not session.id:
            raise ValueError("session id is required")
        async with self._lock:
            self._sessions[session.id] = session.copy()
            return session.copy()

    async def get(self, session_id: str) -> Session | None:
        if not session_id:
            return None
        async with self._lock:
            session = self._sessions.get(session_id)
            return session.copy() if session is not None else None

    async def remove(self, session_id: str) -> None:
        if not session_id:
            return
        async with self._lock:
            self._sessions.pop(session_id, None)


class RedisSessionStore:
    """Redis-backed session records.

    Key: interview:session:{session_id} (string, JSON)
    """

    def __init__(self, redis_url: str):
        try:
            import redis.asyncio as redis_async  # type: ignore
        except Exception as exc:
            raise RuntimeError("redis package not installed; install 'redis' to enable the shared session store") from exc

        self._redis = redis_async.from_url(redis_url, decode_responses=True)

    @staticmethod
    def _session_key(session_id: str) -> str:
        return f"interview:session:{session_id}"

    async def save(self, session: Session) -> Session:
        if not session.id:
            raise ValueError("session id is required")
        await self._redis.set(self._session_key(session.id), json.dumps(session.to_dict()))
        return session.copy()

    async def get(self, session_id: str) -> Session | None:
        if not session_id:
            return None
        raw = await self._redis.get(self._session_key(session_id))
        if not raw:
            return None
        return Session.from_dict(json.loads(raw))

    async def remove(self, session_id: str) -> None:
        if not session_id:
            return
        await self._redis.delete(self._session_key(session_id))


def build_session_store() -> SessionStore:
    if not USE_REDIS_SESSION_STORE:
        return LocalSessionStore()

    if not REDIS_URL:
        raise RuntimeError("USE_REDIS_SESSION_STORE=true requires REDIS_URL")
    return RedisSessionStore(REDIS_URL)
