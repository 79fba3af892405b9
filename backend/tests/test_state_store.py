import asyncio
import json

import pytest

from codepair.errors import ConflictError, NotFoundError, StaleStatusError, ValidationError
from codepair.models import SessionStatus
from codepair.session.event_bus import RedisSessionEventBus
from codepair.session.state_store import LocalSessionStateStore, RedisSessionStateStore
from codepair.session.sweeper import MissedSessionSweeper


class FakeRedis:
    """In-memory stand-in that yields to the loop on every command.

    ``eval`` applies the patch script's semantics in one step, as Redis runs
    scripts atomically.
    """

    def __init__(self):
        self.values: dict[str, str] = {}
        self.hashes: dict[str, dict[str, str]] = {}
        self.zsets: dict[str, dict[str, float]] = {}
        self.published: list[tuple[str, dict]] = []

    async def set(self, key, value, nx=False):
        await asyncio.sleep(0)
        if nx and key in self.values:
            return None
        self.values[key] = value
        return True

    async def get(self, key):
        await asyncio.sleep(0)
        return self.values.get(key)

    async def hset(self, key, mapping):
        await asyncio.sleep(0)
        self.hashes.setdefault(key, {}).update(mapping)
        return len(mapping)

    async def hgetall(self, key):
        await asyncio.sleep(0)
        return dict(self.hashes.get(key, {}))

    async def eval(self, script, numkeys, *keys_and_args):
        await asyncio.sleep(0)
        key, expected, *pairs = keys_and_args
        record = self.hashes.get(key)
        if record is None:
            return ["missing"]
        if expected and record.get("status") != expected:
            return ["stale", record.get("status")]
        for field, value in zip(pairs[::2], pairs[1::2]):
            record[field] = value
        record["revision"] = str(int(record["revision"]) + 1)
        flat: list[str] = []
        for field, value in record.items():
            flat.extend([field, value])
        return ["ok", flat]

    async def zadd(self, key, mapping):
        await asyncio.sleep(0)
        self.zsets.setdefault(key, {}).update(mapping)

    async def zrange(self, key, start, end):
        await asyncio.sleep(0)
        members = sorted(self.zsets.get(key, {}).items(), key=lambda item: item[1])
        return [member for member, _ in members]

    async def publish(self, channel, message):
        self.published.append((channel, json.loads(message)))
        return 1


def _redis_store() -> tuple[RedisSessionStateStore, FakeRedis]:
    redis = FakeRedis()
    return RedisSessionStateStore(redis, RedisSessionEventBus(redis, instance_id="instance-a")), redis


@pytest.mark.asyncio
async def test_insert_and_lookup_by_call_and_id(make_session):
    store = LocalSessionStateStore()
    created = await store.insert(make_session())

    assert (await store.get("call-1")).id == created.id
    assert (await store.get_by_id(created.id)).title == "Backend pairing"
    assert await store.get("missing-call") is None
    assert await store.get_by_id("missing") is None


@pytest.mark.asyncio
async def test_duplicate_stream_call_id_is_conflict(make_session):
    store = LocalSessionStateStore()
    await store.insert(make_session())

    with pytest.raises(ConflictError):
        await store.insert(make_session(id="session-2"))


@pytest.mark.asyncio
async def test_patch_is_shallow_merge_and_bumps_revision(make_session):
    store = LocalSessionStateStore()
    await store.insert(make_session(current_code="x = 1"))

    first = await store.patch("session-1", {"current_language": "python"})
    assert first.current_language == "python"
    assert first.current_code == "x = 1"
    assert first.title == "Backend pairing"
    assert first.revision == 1

    second = await store.patch("session-1", {"status": "live"})
    assert second.status is SessionStatus.LIVE
    assert second.current_language == "python"
    assert second.revision == 2


@pytest.mark.asyncio
async def test_patch_returns_copy_not_stored_record(make_session):
    store = LocalSessionStateStore()
    await store.insert(make_session())

    patched = await store.patch("session-1", {"interviewer_ids": ["a", "b"]})
    patched.interviewer_ids.append("c")

    assert (await store.get_by_id("session-1")).interviewer_ids == ["a", "b"]


@pytest.mark.asyncio
async def test_patch_rejects_unknown_fields_and_missing_sessions(make_session):
    store = LocalSessionStateStore()
    await store.insert(make_session())

    with pytest.raises(ValidationError):
        await store.patch("session-1", {"revision": 99})
    with pytest.raises(NotFoundError):
        await store.patch("nope", {"current_code": ""})


@pytest.mark.asyncio
async def test_list_by_status_filters(make_session):
    store = LocalSessionStateStore()
    await store.insert(make_session())
    await store.insert(make_session(id="session-2", stream_call_id="call-2", status=SessionStatus.LIVE))

    live = await store.list_by_status(SessionStatus.LIVE)
    assert [item.id for item in live] == ["session-2"]
    assert len(await store.list_sessions()) == 2


@pytest.mark.asyncio
async def test_subscriber_sees_only_latest_snapshot(make_session):
    store = LocalSessionStateStore()
    await store.insert(make_session())
    subscription = store.subscribe("session-1")

    await store.patch("session-1", {"current_code": "a"})
    await store.patch("session-1", {"current_code": "ab"})

    snapshot = await asyncio.wait_for(subscription.get(), timeout=1.0)
    assert snapshot["current_code"] == "ab"
    assert snapshot["revision"] == 2
    subscription.close()
    assert store.event_bus.subscriber_count("session-1") == 0


@pytest.mark.asyncio
async def test_redis_store_claims_call_token_and_publishes_patches(make_session):
    store, redis = _redis_store()

    await store.insert(make_session())
    with pytest.raises(ConflictError):
        await store.insert(make_session(id="session-2"))

    patched = await store.patch("session-1", {"current_code": "print(1)"})
    assert patched.revision == 1
    assert (await store.get("call-1")).current_code == "print(1)"
    assert [item.id for item in await store.list_sessions()] == ["session-1"]

    channel, envelope = redis.published[-1]
    assert channel == "session:session-1:events"
    assert envelope["source_instance"] == "instance-a"
    assert envelope["payload"]["current_code"] == "print(1)"


@pytest.mark.asyncio
async def test_status_guard_rejects_stale_expectation(make_session):
    store = LocalSessionStateStore()
    await store.insert(make_session(status=SessionStatus.LIVE))

    with pytest.raises(StaleStatusError) as exc_info:
        await store.patch("session-1", {"status": "missed", "end_time": 1}, expected_status=SessionStatus.SCHEDULED)

    assert exc_info.value.actual == "live"
    stored = await store.get_by_id("session-1")
    assert stored.status is SessionStatus.LIVE
    assert stored.end_time is None
    assert stored.revision == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("status_first", [True, False])
async def test_redis_concurrent_patches_keep_both_fields(make_session, status_first):
    store, _ = _redis_store()
    await store.insert(make_session(status=SessionStatus.LIVE))

    complete = store.patch("session-1", {"status": "completed", "end_time": 123}, expected_status=SessionStatus.LIVE)
    typed = store.patch("session-1", {"current_code": "typed"})
    await asyncio.gather(*((complete, typed) if status_first else (typed, complete)))

    stored = await store.get_by_id("session-1")
    assert stored.status is SessionStatus.COMPLETED
    assert stored.end_time == 123
    assert stored.current_code == "typed"
    assert stored.revision == 2


@pytest.mark.asyncio
async def test_redis_status_guard_and_missing_session(make_session):
    store, _ = _redis_store()
    await store.insert(make_session(status=SessionStatus.COMPLETED, end_time=50))

    with pytest.raises(StaleStatusError):
        await store.patch("session-1", {"status": "live"}, expected_status=SessionStatus.SCHEDULED)
    with pytest.raises(NotFoundError):
        await store.patch("nope", {"current_code": "x"})

    stored = await store.get_by_id("session-1")
    assert stored.status is SessionStatus.COMPLETED
    assert stored.end_time == 50


@pytest.mark.asyncio
async def test_redis_sweep_racing_start_never_moves_backwards(make_session):
    store, _ = _redis_store()
    await store.insert(make_session(start_time=1_000))

    start = store.patch("session-1", {"status": "live"}, expected_status=SessionStatus.SCHEDULED)
    swept, started = await asyncio.gather(
        MissedSessionSweeper(store).sweep(now=2_000),
        start,
        return_exceptions=True,
    )

    stored = await store.get_by_id("session-1")
    if stored.status is SessionStatus.MISSED:
        assert swept == 1
        assert stored.end_time == 2_000
        assert isinstance(started, StaleStatusError)
    else:
        assert stored.status is SessionStatus.LIVE
        assert swept == 0
        assert stored.end_time is None
    assert stored.revision == 1
