import threading
import time
from typing import Any


_lock = threading.Lock()
_metrics: dict[str, float] = {
    "ws_connections_active": 0.0,
    "ws_sessions_active": 0.0,
    "ws_disconnects_total": 0.0,
    "ws_rejected_actions_total": 0.0,
    "canonical_patches_total": 0.0,
    "code_publishes_total": 0.0,
    "code_publish_failures_total": 0.0,
    "sweeps_total": 0.0,
    "sessions_marked_missed_total": 0.0,
    "reviews_submitted_total": 0.0,
    "redis_publish_total_ms": 0.0,
    "redis_publish_samples": 0.0,
    "fanout_delay_total_ms": 0.0,
    "fanout_delay_samples": 0.0,
}

_COUNTERS = (
    "ws_connections_active",
    "ws_sessions_active",
    "ws_disconnects_total",
    "ws_rejected_actions_total",
    "canonical_patches_total",
    "code_publishes_total",
    "code_publish_failures_total",
    "sweeps_total",
    "sessions_marked_missed_total",
    "reviews_submitted_total",
)


def increment_metric(name: str, amount: float = 1.0) -> None:
    key = str(name or "").strip()
    if not key:
        return
    with _lock:
        _metrics[key] = float(_metrics.get(key, 0.0)) + float(amount)


def decrement_metric(name: str, amount: float = 1.0) -> None:
    key = str(name or "").strip()
    if not key:
        return
    with _lock:
        next_value = float(_metrics.get(key, 0.0)) - float(amount)
        _metrics[key] = max(0.0, next_value)


def set_metric(name: str, value: float) -> None:
    key = str(name or "").strip()
    if not key:
        return
    with _lock:
        _metrics[key] = max(0.0, float(value))


def get_metric(name: str) -> float:
    with _lock:
        return float(_metrics.get(str(name or "").strip(), 0.0))


def observe_redis_publish_latency_ms(value_ms: float) -> None:
    latency = max(0.0, float(value_ms or 0.0))
    with _lock:
        _metrics["redis_publish_total_ms"] = float(_metrics.get("redis_publish_total_ms", 0.0)) + latency
        _metrics["redis_publish_samples"] = float(_metrics.get("redis_publish_samples", 0.0)) + 1.0


def observe_fanout_delay_ms(value_ms: float) -> None:
    delay = max(0.0, float(value_ms or 0.0))
    with _lock:
        _metrics["fanout_delay_total_ms"] = float(_metrics.get("fanout_delay_total_ms", 0.0)) + delay
        _metrics["fanout_delay_samples"] = float(_metrics.get("fanout_delay_samples", 0.0)) + 1.0


def get_metrics_snapshot(extra: dict[str, Any] | None = None) -> dict[str, Any]:
    with _lock:
        data = dict(_metrics)

    redis_publish_samples = max(1.0, float(data.get("redis_publish_samples") or 0.0))
    fanout_delay_samples = max(1.0, float(data.get("fanout_delay_samples") or 0.0))

    payload: dict[str, Any] = {
        "generated_at": time.time(),
        "redis_publish_samples": int(data.get("redis_publish_samples") or 0.0),
        "fanout_delay_samples": int(data.get("fanout_delay_samples") or 0.0),
        "avg_redis_publish_latency_ms": round(float(data.get("redis_publish_total_ms") or 0.0) / redis_publish_samples, 2),
        "avg_fanout_delay_ms": round(float(data.get("fanout_delay_total_ms") or 0.0) / fanout_delay_samples, 2),
    }
    for key in _COUNTERS:
        payload[key] = int(data.get(key) or 0.0)

    if extra:
        payload.update(extra)
    return payload
