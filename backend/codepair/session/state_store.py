from __future__ import annotations

import asyncio
import copy
from dataclasses import replace
from enum import Enum
import json
import logging
from typing import Any, Protocol

from codepair.core import config
from codepair.errors import ConflictError, NotFoundError, StaleStatusError, ValidationError
from codepair.models import (
    PATCHABLE_SESSION_FIELDS,
    Review,
    Session,
    SessionStatus,
    parse_result,
    parse_status,
)
from codepair.session.event_bus import (
    LocalSessionEventBus,
    RedisSessionEventBus,
    SessionEventBus,
    SessionSubscription,
)
from codepair.system_metrics import increment_metric

logger = logging.getLogger("codepair.state_store")


def normalize_fields(fields: dict[str, Any]) -> dict[str, Any]:
    unknown = sorted(set(fields) - PATCHABLE_SESSION_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown session fields: {', '.join(unknown)}", field=unknown[0])

    updates = dict(fields)
    if "status" in updates:
        updates["status"] = parse_status(updates["status"])
    if "result" in updates and updates["result"] is not None:
        updates["result"] = parse_result(updates["result"])
    if isinstance(updates.get("review"), dict):
        updates["review"] = Review(**updates["review"])
    if "interviewer_ids" in updates:
        updates["interviewer_ids"] = list(updates["interviewer_ids"] or [])
    if "current_code" in updates:
        updates["current_code"] = str(updates["current_code"] or "")
    return updates


def apply_patch(session: Session, fields: dict[str, Any]) -> Session:
    """Shallow merge: only supplied fields change, everything else is kept.

    No cross-field invariant is enforced here; callers that change status
    are responsible for end_time as well.
    """
    return replace(session, revision=session.revision + 1, **normalize_fields(fields))


def _check_status(session: Session, expected_status: SessionStatus | None) -> None:
    if expected_status is not None and session.status is not expected_status:
        raise StaleStatusError(expected_status.value, session.status.value)


class SessionStateStore(Protocol):
    event_bus: SessionEventBus

    async def insert(self, session: Session) -> Session:
        ...

    async def get(self, stream_call_id: str) -> Session | None:
        ...

    async def get_by_id(self, session_id: str) -> Session | None:
        ...

    async def patch(
        self,
        session_id: str,
        fields: dict[str, Any],
        *,
        expected_status: SessionStatus | None = None,
    ) -> Session:
        """Merge ``fields``; with ``expected_status`` the patch only applies
        while the stored status still equals it (StaleStatusError otherwise)."""
        ...

    async def list_sessions(self) -> list[Session]:
        ...

    async def list_by_status(self, status: SessionStatus) -> list[Session]:
        ...

    def subscribe(self, session_id: str) -> SessionSubscription:
        ...


class LocalSessionStateStore:
    def __init__(self, event_bus: SessionEventBus | None = None):
        self._lock = asyncio.Lock()
        self._sessions: dict[str, Session] = {}
        self._ids_by_call: dict[str, str] = {}
        self.event_bus: SessionEventBus = event_bus or LocalSessionEventBus()

    async def insert(self, session: Session) -> Session:
        async with self._lock:
            if session.stream_call_id in self._ids_by_call:
                raise ConflictError(
                    "Session already exists for this call",
                    {"stream_call_id": session.stream_call_id},
                )
            if session.id in self._sessions:
                raise ConflictError("Session id already exists", {"id": session.id})
            stored = copy.deepcopy(session)
            self._sessions[stored.id] = stored
            self._ids_by_call[stored.stream_call_id] = stored.id
            return copy.deepcopy(stored)

    async def get(self, stream_call_id: str) -> Session | None:
        if not stream_call_id:
            return None
        async with self._lock:
            session_id = self._ids_by_call.get(stream_call_id)
            session = self._sessions.get(session_id) if session_id else None
            return copy.deepcopy(session) if session else None

    async def get_by_id(self, session_id: str) -> Session | None:
        if not session_id:
            return None
        async with self._lock:
            session = self._sessions.get(session_id)
            return copy.deepcopy(session) if session else None

    async def patch(
        self,
        session_id: str,
        fields: dict[str, Any],
        *,
        expected_status: SessionStatus | None = None,
    ) -> Session:
        async with self._lock:
            current = self._sessions.get(session_id)
            if current is None:
                raise NotFoundError("Session", session_id)
            _check_status(current, expected_status)
            merged = apply_patch(current, fields)
            self._sessions[session_id] = merged
            snapshot = copy.deepcopy(merged)

        increment_metric("canonical_patches_total")
        await self.event_bus.publish(session_id, snapshot.to_dict())
        return snapshot

    async def list_sessions(self) -> list[Session]:
        async with self._lock:
            return [copy.deepcopy(item) for item in self._sessions.values()]

    async def list_by_status(self, status: SessionStatus) -> list[Session]:
        async with self._lock:
            return [copy.deepcopy(item) for item in self._sessions.values() if item.status == status]

    def subscribe(self, session_id: str) -> SessionSubscription:
        return self.event_bus.subscribe(session_id)


# Writes only the supplied hash fields, optionally guarded by the current status.
_PATCH_SCRIPT = """
local key = KEYS[1]
if redis.call('EXISTS', key) == 0 then
  return {'missing'}
end
if ARGV[1] ~= '' then
  local status = redis.call('HGET', key, 'status')
  if status ~= ARGV[1] then
    return {'stale', status}
  end
end
for i = 2, #ARGV, 2 do
  redis.call('HSET', key, ARGV[i], ARGV[i + 1])
end
redis.call('HINCRBY', key, 'revision', 1)
return {'ok', redis.call('HGETALL', key)}
"""


def _encode_value(value: Any) -> str:
    if isinstance(value, Enum):
        value = value.value
    elif isinstance(value, Review):
        value = value.to_dict()
    return json.dumps(value)


class RedisSessionStateStore:
    """Redis-backed canonical session state.

    Keys:
    - session:{id}:record (hash, one JSON-encoded value per session field)
    - session:by_call:{stream_call_id} (session id)
    - sessions:index (sorted set scored by created_at)

    Patches run as one script so concurrent writers never overwrite each
    other's fields.
    """

    def __init__(self, redis_client, event_bus: SessionEventBus):
        self._redis = redis_client
        self.event_bus = event_bus

    @staticmethod
    def _record_key(session_id: str) -> str:
        return f"session:{session_id}:record"

    @staticmethod
    def _call_key(stream_call_id: str) -> str:
        return f"session:by_call:{stream_call_id}"

    _index_key = "sessions:index"

    @staticmethod
    def _decode(raw: dict | None) -> Session | None:
        if not raw:
            return None
        return Session.from_dict({key: json.loads(value) for key, value in raw.items()})

    async def insert(self, session: Session) -> Session:
        claimed = await self._redis.set(self._call_key(session.stream_call_id), session.id, nx=True)
        if not claimed:
            raise ConflictError(
                "Session already exists for this call",
                {"stream_call_id": session.stream_call_id},
            )
        await self._redis.hset(
            self._record_key(session.id),
            mapping={key: json.dumps(value) for key, value in session.to_dict().items()},
        )
        await self._redis.zadd(self._index_key, {session.id: float(session.created_at)})
        return session

    async def get(self, stream_call_id: str) -> Session | None:
        if not stream_call_id:
            return None
        session_id = await self._redis.get(self._call_key(stream_call_id))
        if not session_id:
            return None
        return await self.get_by_id(str(session_id))

    async def get_by_id(self, session_id: str) -> Session | None:
        if not session_id:
            return None
        return self._decode(await self._redis.hgetall(self._record_key(session_id)))

    async def patch(
        self,
        session_id: str,
        fields: dict[str, Any],
        *,
        expected_status: SessionStatus | None = None,
    ) -> Session:
        args: list[str] = [_encode_value(expected_status) if expected_status is not None else ""]
        for key, value in normalize_fields(fields).items():
            args.extend([key, _encode_value(value)])

        reply = await self._redis.eval(_PATCH_SCRIPT, 1, self._record_key(session_id), *args)
        outcome = reply[0]
        if outcome == "missing":
            raise NotFoundError("Session", session_id)
        if outcome == "stale":
            raise StaleStatusError(expected_status.value, str(json.loads(reply[1])))

        flat = reply[1]
        merged = self._decode(dict(zip(flat[::2], flat[1::2])))
        increment_metric("canonical_patches_total")
        await self.event_bus.publish(session_id, merged.to_dict())
        return merged

    async def list_sessions(self) -> list[Session]:
        sessions: list[Session] = []
        for session_id in await self._redis.zrange(self._index_key, 0, -1):
            session = await self.get_by_id(str(session_id))
            if session is not None:
                sessions.append(session)
        return sessions

    async def list_by_status(self, status: SessionStatus) -> list[Session]:
        return [item for item in await self.list_sessions() if item.status == status]

    def subscribe(self, session_id: str) -> SessionSubscription:
        return self.event_bus.subscribe(session_id)


def build_session_state_store(instance_id: str) -> SessionStateStore:
    if not config.USE_REDIS_SESSION_STORE:
        return LocalSessionStateStore()

    if not config.REDIS_URL:
        raise RuntimeError("USE_REDIS_SESSION_STORE=true requires REDIS_URL")

    import redis.asyncio as redis_async

    client = redis_async.from_url(config.REDIS_URL, decode_responses=True)
    return RedisSessionStateStore(client, RedisSessionEventBus(client, instance_id=instance_id))
