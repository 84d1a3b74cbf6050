from __future__ import annotations

import time
from threading import Lock
from typing import Any


class SessionRegistry:
    """In-process index of live session runtimes for cleanup and lookup."""

    def __init__(self):
        self._lock = Lock()
        self._sessions: dict[str, dict] = {}

    def register(self, session_id: str, runtime: Any) -> None:
        with self._lock:
            self._sessions[session_id] = {
                "runtime": runtime,
                "created_at": time.time(),
                "updated_at": time.time(),
                "active": True,
            }

    def touch(self, session_id: str) -> None:
        with self._lock:
            if session_id in self._sessions:
                self._sessions[session_id]["updated_at"] = time.time()

    def mark_active(self, session_id: str) -> None:
        with self._lock:
            if session_id in self._sessions:
                self._sessions[session_id]["active"] = True
                self._sessions[session_id]["updated_at"] = time.time()

    def mark_inactive(self, session_id: str) -> None:
        with self._lock:
            if session_id in self._sessions:
                self._sessions[session_id]["active"] = False
                self._sessions[session_id]["updated_at"] = time.time()

    def get(self, session_id: str) -> dict | None:
        with self._lock:
            item = self._sessions.get(session_id)
            return dict(item) if item else None

    def runtime(self, session_id: str) -> Any | None:
        item = self.get(session_id)
        return item["runtime"] if item else None

    def session_ids(self) -> list[str]:
        with self._lock:
            return list(self._sessions.keys())

    def expired_ids(self, ttl_sec: float) -> list[str]:
        """Inactive sessions idle for longer than ttl_sec (clamped to >= 30s)."""
        cutoff = time.time() - max(30.0, float(ttl_sec or 900.0))
        expired: list[str] = []
        with self._lock:
            for session_id, data in self._sessions.items():
                if bool((data or {}).get("active", False)):
                    continue
                if float((data or {}).get("updated_at") or 0.0) <= cutoff:
                    expired.append(session_id)
        return expired

    def remove(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
