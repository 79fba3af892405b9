import time

from codepair.session.registry import ConnectionRegistry


def test_connection_registry_register_touch_inactive_cleanup():
    registry = ConnectionRegistry()

    registry.register("c1", "session-1", "interviewer-1", "owner")
    item = registry.get("c1")
    assert item is not None
    assert item["active"] is True
    assert registry.active_session_count() == 1

    before_touch = float(item["updated_at"])
    registry.touch("c1")
    assert float(registry.get("c1")["updated_at"]) >= before_touch

    registry.mark_inactive("c1")
    assert registry.get("c1")["active"] is False
    assert registry.participants("session-1") == []

    registry._connections["c1"]["updated_at"] = time.time() - 3600  # test-only direct mutation
    assert registry.cleanup_inactive(ttl_sec=60) == 1
    assert registry.get("c1") is None


def test_active_connections_are_never_cleaned_up():
    registry = ConnectionRegistry()
    registry.register("c1", "session-1", "candidate-1", "guest")
    registry.register("c2", "session-1", "interviewer-1", "owner")

    assert registry.cleanup_inactive(ttl_sec=0) == 0
    assert registry.active_count() == 2
    assert sorted(item["role"] for item in registry.participants("session-1")) == ["guest", "owner"]
