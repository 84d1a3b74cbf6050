import threading
import time
from typing import Any


_lock = threading.Lock()
_metrics: dict[str, float] = {
    "sessions_started": 0.0,
    "sessions_completed": 0.0,
    "sessions_active": 0.0,
    "agent_connections_active": 0.0,
    "agent_connect_failures": 0.0,
    "transport_errors": 0.0,
    "audio_frames_forwarded": 0.0,
    "audio_frames_dropped": 0.0,
    "transcript_entries": 0.0,
    "suggestions_triggered": 0.0,
    "suggestions_deduplicated": 0.0,
    "suggestions_cooldown_skipped": 0.0,
    "suggestions_delivered": 0.0,
    "suggestions_fallback": 0.0,
    "suggestions_discarded": 0.0,
    "ws_connections_active": 0.0,
    "ws_events_dropped": 0.0,
    "generation_latency_total_ms": 0.0,
    "generation_latency_samples": 0.0,
}


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


def observe_generation_latency_ms(value_ms: float) -> None:
    latency = max(0.0, float(value_ms or 0.0))
    with _lock:
        _metrics["generation_latency_total_ms"] = float(_metrics.get("generation_latency_total_ms", 0.0)) + latency
        _metrics["generation_latency_samples"] = float(_metrics.get("generation_latency_samples", 0.0)) + 1.0


def get_metric(name: str) -> float:
    with _lock:
        return float(_metrics.get(str(name or "").strip(), 0.0))


def get_metrics_snapshot(extra: dict[str, Any] | None = None) -> dict[str, Any]:
    with _lock:
        data = dict(_metrics)

    latency_samples = max(1.0, float(data.get("generation_latency_samples") or 0.0))

    payload: dict[str, Any] = {"generated_at": time.time()}
    for key, value in data.items():
        if key.endswith("_total_ms"):
            payload[key] = float(value or 0.0)
        else:
            payload[key] = int(value or 0.0)
    payload["avg_generation_latency_ms"] = round(
        float(data.get("generation_latency_total_ms") or 0.0) / latency_samples, 2
    )

    if extra:
        payload.update(extra)
    return payload
