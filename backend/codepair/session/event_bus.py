from __future__ import annotations

import asyncio
import json
import logging
import time
from collections import defaultdict
from typing import Protocol

from codepair.system_metrics import observe_fanout_delay_ms, observe_redis_publish_latency_ms

logger = logging.getLogger("codepair.event_bus")


class SessionSubscription:
    """Latest-value feed of canonical snapshots for one session.

    The queue holds a single slot: a slow reader skips straight to the
    newest snapshot instead of replaying every intermediate patch.
    """

    def __init__(self, bus: "LocalSessionEventBus", session_id: str):
        self.session_id = session_id
        self._bus = bus
        self._queue: asyncio.Queue[dict] = asyncio.Queue(maxsize=1)
        self._closed = False

    def push(self, payload: dict) -> None:
        if self._closed:
            return
        if self._queue.full():
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                pass
        self._queue.put_nowait(dict(payload))

    async def get(self) -> dict:
        return await self._queue.get()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._bus.unsubscribe(self)

    def __aiter__(self):
        return self

    async def __anext__(self) -> dict:
        if self._closed:
            raise StopAsyncIteration
        return await self.get()

    async def __aenter__(self) -> "SessionSubscription":
        return self

    async def __aexit__(self, *exc) -> None:
        self.close()


class SessionEventBus(Protocol):
    async def publish(self, session_id: str, payload: dict) -> None:
        ...

    def subscribe(self, session_id: str) -> SessionSubscription:
        ...

    async def start(self) -> None:
        ...

    async def close(self) -> None:
        ...


class LocalSessionEventBus:
    def __init__(self):
        self._subscriptions: dict[str, set[SessionSubscription]] = defaultdict(set)

    def subscribe(self, session_id: str) -> SessionSubscription:
        subscription = SessionSubscription(self, session_id)
        self._subscriptions[session_id].add(subscription)
        return subscription

    def unsubscribe(self, subscription: SessionSubscription) -> None:
        members = self._subscriptions.get(subscription.session_id)
        if not members:
            return
        members.discard(subscription)
        if not members:
            self._subscriptions.pop(subscription.session_id, None)

    def subscriber_count(self, session_id: str) -> int:
        return len(self._subscriptions.get(session_id) or ())

    def _dispatch(self, session_id: str, payload: dict) -> None:
        for subscription in list(self._subscriptions.get(session_id) or ()):
            subscription.push(payload)

    async def publish(self, session_id: str, payload: dict) -> None:
        if not session_id:
            return
        self._dispatch(session_id, payload)

    async def start(self) -> None:
        return

    async def close(self) -> None:
        for members in list(self._subscriptions.values()):
            for subscription in list(members):
                subscription.close()


class RedisSessionEventBus(LocalSessionEventBus):
    """Fans snapshots out to subscribers on every instance via Redis pub/sub.

    Channels: session:{session_id}:events
    """

    def __init__(self, redis_client, instance_id: str):
        super().__init__()
        self._redis = redis_client
        self._instance_id = str(instance_id or "instance-unknown")
        self._pattern = "session:*:events"
        self._listener_task: asyncio.Task | None = None

    @staticmethod
    def _channel(session_id: str) -> str:
        return f"session:{session_id}:events"

    async def publish(self, session_id: str, payload: dict) -> None:
        if not session_id:
            return
        self._dispatch(session_id, payload)
        envelope = {
            "source_instance": self._instance_id,
            "published_at": time.time(),
            "payload": dict(payload or {}),
        }
        publish_started = time.perf_counter()
        await self._redis.publish(self._channel(session_id), json.dumps(envelope))
        observe_redis_publish_latency_ms((time.perf_counter() - publish_started) * 1000.0)

    async def _listen(self) -> None:
        pubsub = self._redis.pubsub()
        await pubsub.psubscribe(self._pattern)
        try:
            while True:
                message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                if not message:
                    continue
                if str(message.get("type") or "") not in {"message", "pmessage"}:
                    continue

                parts = str(message.get("channel") or "").split(":")
                if len(parts) < 3:
                    continue
                session_id = parts[1]

                try:
                    data = json.loads(str(message.get("data") or "{}"))
                except ValueError:
                    logger.warning("Dropping malformed session event | channel=%s", message.get("channel"))
                    continue

                if str(data.get("source_instance") or "") == self._instance_id:
                    continue
                published_at = float(data.get("published_at") or 0.0)
                if published_at > 0:
                    observe_fanout_delay_ms((time.time() - published_at) * 1000.0)
                payload = data.get("payload") if isinstance(data.get("payload"), dict) else {}
                self._dispatch(session_id, payload)
        finally:
            await pubsub.close()

    async def _listen_loop(self) -> None:
        while True:
            try:
                await self._listen()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning("Session event listener failed; retrying: %s", exc)
                await asyncio.sleep(1.5)

    async def start(self) -> None:
        if self._listener_task and not self._listener_task.done():
            return
        self._listener_task = asyncio.create_task(self._listen_loop())

    async def close(self) -> None:
        if self._listener_task is not None:
            self._listener_task.cancel()
            try:
                await self._listener_task
            except asyncio.CancelledError:
                pass
            finally:
                self._listener_task = None
        await super().close()
