from __future__ import annotations

import time
from threading import Lock


class ConnectionRegistry:
    """Live-channel connections per session, kept briefly after disconnect."""

    def __init__(self):
        self._lock = Lock()
        self._connections: dict[str, dict] = {}

    def register(self, connection_id: str, session_id: str, caller_id: str, role: str | None) -> None:
        now_ts = time.time()
        with self._lock:
            self._connections[connection_id] = {
                "session_id": session_id,
                "caller_id": caller_id,
                "role": role,
                "created_at": now_ts,
                "updated_at": now_ts,
                "active": True,
            }

    def touch(self, connection_id: str) -> None:
        with self._lock:
            if connection_id in self._connections:
                self._connections[connection_id]["updated_at"] = time.time()

    def mark_inactive(self, connection_id: str) -> None:
        with self._lock:
            if connection_id in self._connections:
                self._connections[connection_id]["active"] = False
                self._connections[connection_id]["updated_at"] = time.time()

    def get(self, connection_id: str) -> dict | None:
        with self._lock:
            item = self._connections.get(connection_id)
            return dict(item) if item else None

    def participants(self, session_id: str) -> list[dict]:
        with self._lock:
            return [
                {"connection_id": connection_id, **data}
                for connection_id, data in self._connections.items()
                if data.get("active") and data.get("session_id") == session_id
            ]

    def active_count(self) -> int:
        with self._lock:
            return sum(1 for data in self._connections.values() if data.get("active"))

    def active_session_count(self) -> int:
        with self._lock:
            return len({data.get("session_id") for data in self._connections.values() if data.get("active")})

    def cleanup_inactive(self, ttl_sec: float) -> int:
        cutoff = time.time() - max(0.0, float(ttl_sec or 0.0))
        removed = 0
        with self._lock:
            for connection_id, data in list(self._connections.items()):
                if bool(data.get("active", False)):
                    continue
                if float(data.get("updated_at") or 0.0) <= cutoff:
                    self._connections.pop(connection_id, None)
                    removed += 1
        return removed
