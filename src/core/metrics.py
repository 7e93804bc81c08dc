"""In-process metrics collector with Prometheus text exposition."""

from __future__ import annotations

from collections import defaultdict
from threading import Lock
import time
from typing import Dict, Iterable, Tuple


_lock = Lock()
_started_at = time.time()

_http_requests_total: Dict[Tuple[str, str, str], int] = defaultdict(int)
_http_request_duration_sum: Dict[Tuple[str, str], float] = defaultdict(float)
_http_request_duration_count: Dict[Tuple[str, str], int] = defaultdict(int)
_gate_decisions_total: Dict[Tuple[str, str], int] = defaultdict(int)
_approvals_total: Dict[Tuple[str, str], int] = defaultdict(int)
_articles_queued_total: Dict[str, int] = defaultdict(int)
_article_dispatch_failures_total: Dict[str, int] = defaultdict(int)
_articles_linked_total: Dict[str, int] = defaultdict(int)
_article_link_failures_total: Dict[str, int] = defaultdict(int)


def _escape_label(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def _normalize_label(value: str, *, fallback: str = "unknown") -> str:
    normalized = (value or "").strip()
    return normalized or fallback


def record_http_request(*, method: str, path: str, status_code: int, duration_seconds: float) -> None:
    status = str(status_code)
    method_label = method.upper()
    path_label = path or "unknown"
    duration = max(duration_seconds, 0.0)

    with _lock:
        _http_requests_total[(method_label, path_label, status)] += 1
        _http_request_duration_sum[(method_label, path_label)] += duration
        _http_request_duration_count[(method_label, path_label)] += 1


def record_gate_decision(*, gate: str, outcome: str) -> None:
    with _lock:
        _gate_decisions_total[(_normalize_label(gate), _normalize_label(outcome))] += 1


def record_approval(*, approval_type: str, decision: str) -> None:
    with _lock:
        _approvals_total[(_normalize_label(approval_type), _normalize_label(decision))] += 1


def record_articles_queued(*, organization_id: str, count: int = 1) -> None:
    if count <= 0:
        return
    with _lock:
        _articles_queued_total[_normalize_label(organization_id)] += int(count)


def record_article_dispatch_failures(*, organization_id: str, count: int = 1) -> None:
    if count <= 0:
        return
    with _lock:
        _article_dispatch_failures_total[_normalize_label(organization_id)] += int(count)


def record_articles_linked(*, organization_id: str, count: int = 1) -> None:
    if count <= 0:
        return
    with _lock:
        _articles_linked_total[_normalize_label(organization_id)] += int(count)


def record_article_link_failures(*, organization_id: str, count: int = 1) -> None:
    if count <= 0:
        return
    with _lock:
        _article_link_failures_total[_normalize_label(organization_id)] += int(count)


def _labelled(name: str, label_names: Iterable[str], label_values: Iterable[str], value: object) -> str:
    pairs = ",".join(
        f'{label}="{_escape_label(str(label_value))}"' for label, label_value in zip(label_names, label_values)
    )
    return f"{name}{{{pairs}}} {value}"


def _counter_block(
    lines: list[str],
    *,
    name: str,
    help_text: str,
    label_names: Tuple[str, ...],
    values: Dict,
) -> None:
    lines.append(f"# HELP {name} {help_text}")
    lines.append(f"# TYPE {name} counter")
    for key, value in sorted(values.items()):
        label_values = key if isinstance(key, tuple) else (key,)
        lines.append(_labelled(name, label_names, label_values, value))


def render_prometheus_metrics(*, app_name: str, app_version: str, env: str) -> str:
    uptime = max(time.time() - _started_at, 0.0)

    with _lock:
        http_total = dict(_http_requests_total)
        duration_sum = dict(_http_request_duration_sum)
        duration_count = dict(_http_request_duration_count)
        gate_decisions_total = dict(_gate_decisions_total)
        approvals_total = dict(_approvals_total)
        articles_queued_total = dict(_articles_queued_total)
        article_dispatch_failures_total = dict(_article_dispatch_failures_total)
        articles_linked_total = dict(_articles_linked_total)
        article_link_failures_total = dict(_article_link_failures_total)

    lines = [
        "# HELP intent_build_info Build metadata.",
        "# TYPE intent_build_info gauge",
        _labelled("intent_build_info", ("app_name", "version", "env"), (app_name, app_version, env), 1),
        "# HELP intent_process_uptime_seconds Process uptime in seconds.",
        "# TYPE intent_process_uptime_seconds gauge",
        f"intent_process_uptime_seconds {uptime:.6f}",
    ]

    _counter_block(
        lines,
        name="intent_http_requests_total",
        help_text="Total HTTP requests.",
        label_names=("method", "path", "status"),
        values=http_total,
    )

    lines.extend(
        [
            "# HELP intent_http_request_duration_seconds Request duration summary.",
            "# TYPE intent_http_request_duration_seconds summary",
        ]
    )
    for (method, path), value in sorted(duration_sum.items()):
        lines.append(
            _labelled("intent_http_request_duration_seconds_sum", ("method", "path"), (method, path), f"{value:.6f}")
        )
    for (method, path), value in sorted(duration_count.items()):
        lines.append(_labelled("intent_http_request_duration_seconds_count", ("method", "path"), (method, path), value))

    _counter_block(
        lines,
        name="intent_gate_decisions_total",
        help_text="Gate enforcement decisions by gate and outcome.",
        label_names=("gate", "outcome"),
        values=gate_decisions_total,
    )
    _counter_block(
        lines,
        name="intent_approvals_total",
        help_text="Recorded approval decisions.",
        label_names=("approval_type", "decision"),
        values=approvals_total,
    )
    _counter_block(
        lines,
        name="intent_articles_queued_total",
        help_text="Article work-items dispatched for generation.",
        label_names=("organization_id",),
        values=articles_queued_total,
    )
    _counter_block(
        lines,
        name="intent_article_dispatch_failures_total",
        help_text="Article generation dispatch failures.",
        label_names=("organization_id",),
        values=article_dispatch_failures_total,
    )
    _counter_block(
        lines,
        name="intent_articles_linked_total",
        help_text="Articles linked back to their workflow.",
        label_names=("organization_id",),
        values=articles_linked_total,
    )
    _counter_block(
        lines,
        name="intent_article_link_failures_total",
        help_text="Article linking failures.",
        label_names=("organization_id",),
        values=article_link_failures_total,
    )

    lines.append("")
    return "\n".join(lines)


def reset_metrics_for_tests() -> None:
    global _started_at
    with _lock:
        _http_requests_total.clear()
        _http_request_duration_sum.clear()
        _http_request_duration_count.clear()
        _gate_decisions_total.clear()
        _approvals_total.clear()
        _articles_queued_total.clear()
        _article_dispatch_failures_total.clear()
        _articles_linked_total.clear()
        _article_link_failures_total.clear()
    _started_at = time.time()
