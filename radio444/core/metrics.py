"""In-process metrics collector with Prometheus text exposition."""

from __future__ import annotations

from collections import defaultdict
from threading import Lock
import time
from typing import Dict, Tuple


_lock = Lock()
_started_at = time.time()

_http_requests_total: Dict[Tuple[str, str, str], int] = defaultdict(int)
_http_request_duration_sum: Dict[Tuple[str, str], float] = defaultdict(float)
_http_request_duration_count: Dict[Tuple[str, str], int] = defaultdict(int)

# name -> (help text, label names)
_COUNTERS: Dict[str, Tuple[str, Tuple[str, ...]]] = {
    "rate_limit_block_total": ("Requests blocked by rate limiting.", ("kind",)),
    "generation_requests_total": ("Generation requests by type and outcome.", ("type", "outcome")),
    "credits_spent_total": ("Credits deducted for generations.", ("type",)),
    "plays_recorded_total": ("Track plays counted.", ()),
    "webhook_events_total": ("Inbound webhook events by provider and status.", ("provider", "status")),
    "relay_publish_total": ("Realtime relay publishes by event and outcome.", ("event", "outcome")),
}
_counter_values: Dict[str, Dict[Tuple[str, ...], int]] = {name: defaultdict(int) for name in _COUNTERS}


def _escape_label(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def _normalize_label(value: str, *, fallback: str = "unknown") -> str:
    normalized = (value or "").strip()
    return normalized or fallback


def _increment(name: str, labels: Tuple[str, ...], count: int = 1) -> None:
    if count <= 0:
        return
    key = tuple(_normalize_label(label) for label in labels)
    with _lock:
        _counter_values[name][key] += int(count)


def record_http_request(*, method: str, path: str, status_code: int, duration_seconds: float) -> None:
    status = str(status_code)
    method_label = method.upper()
    path_label = path or "unknown"
    duration = max(duration_seconds, 0.0)

    with _lock:
        _http_requests_total[(method_label, path_label, status)] += 1
        _http_request_duration_sum[(method_label, path_label)] += duration
        _http_request_duration_count[(method_label, path_label)] += 1


def record_rate_limit_block(*, kind: str) -> None:
    _increment("rate_limit_block_total", (kind,))


def record_generation_request(*, generation_type: str, outcome: str) -> None:
    _increment("generation_requests_total", (generation_type, outcome))


def record_credits_spent(*, generation_type: str, amount: int) -> None:
    _increment("credits_spent_total", (generation_type,), amount)


def record_play() -> None:
    _increment("plays_recorded_total", ())


def record_webhook_event(*, provider: str, status: str) -> None:
    _increment("webhook_events_total", (provider, status))


def record_relay_publish(*, event: str, outcome: str) -> None:
    _increment("relay_publish_total", (event, outcome))


def _format_labels(names: Tuple[str, ...], values: Tuple[str, ...]) -> str:
    if not names:
        return ""
    pairs = ",".join(f'{name}="{_escape_label(value)}"' for name, value in zip(names, values))
    return "{" + pairs + "}"


def render_prometheus_metrics(*, app_name: str, app_version: str, env: str) -> str:
    uptime = max(time.time() - _started_at, 0.0)

    with _lock:
        http_total = dict(_http_requests_total)
        duration_sum = dict(_http_request_duration_sum)
        duration_count = dict(_http_request_duration_count)
        counters = {name: dict(values) for name, values in _counter_values.items()}

    lines = [
        "# HELP radio444_build_info Build metadata.",
        "# TYPE radio444_build_info gauge",
        (
            f'radio444_build_info{{app_name="{_escape_label(app_name)}",'
            f'version="{_escape_label(app_version)}",env="{_escape_label(env)}"}} 1'
        ),
        "# HELP radio444_process_uptime_seconds Process uptime in seconds.",
        "# TYPE radio444_process_uptime_seconds gauge",
        f"radio444_process_uptime_seconds {uptime:.6f}",
        "# HELP radio444_http_requests_total Total HTTP requests.",
        "# TYPE radio444_http_requests_total counter",
    ]
    for (method, path, status), value in sorted(http_total.items()):
        labels = _format_labels(("method", "path", "status"), (method, path, status))
        lines.append(f"radio444_http_requests_total{labels} {value}")

    lines.extend(
        [
            "# HELP radio444_http_request_duration_seconds Request duration summary.",
            "# TYPE radio444_http_request_duration_seconds summary",
        ]
    )
    for (method, path), value in sorted(duration_sum.items()):
        labels = _format_labels(("method", "path"), (method, path))
        lines.append(f"radio444_http_request_duration_seconds_sum{labels} {value:.6f}")
    for (method, path), value in sorted(duration_count.items()):
        labels = _format_labels(("method", "path"), (method, path))
        lines.append(f"radio444_http_request_duration_seconds_count{labels} {value}")

    for name, (help_text, label_names) in _COUNTERS.items():
        lines.append(f"# HELP radio444_{name} {help_text}")
        lines.append(f"# TYPE radio444_{name} counter")
        for label_values, value in sorted(counters[name].items()):
            lines.append(f"radio444_{name}{_format_labels(label_names, label_values)} {value}")

    lines.append("")
    return "\n".join(lines)


def reset_metrics_for_tests() -> None:
    global _started_at
    with _lock:
        _http_requests_total.clear()
        _http_request_duration_sum.clear()
        _http_request_duration_count.clear()
        for values in _counter_values.values():
            values.clear()
    _started_at = time.time()
