"""Prometheus metrics registry for strap sessions."""

import threading
from typing import Final

from prometheus_client import (  # type: ignore[import-untyped]
    Counter,
    Gauge,
    Histogram,
    start_http_server,
)

# Every state a session gauge is reported for (values of SessionState)
SESSION_STATES: Final = (
    "idle",
    "connecting",
    "bonding",
    "discovering_services",
    "subscribing_notifications",
    "ready",
    "disconnecting",
    "disconnected",
    "failed",
)

# Frame metrics
strap_frames_received_total: Final = Counter(  # type: ignore[assignment]
    "strap_frames_received_total",
    "Total valid frames received from the strap",
    ["device_id", "origin", "packet_type"],
)

strap_decode_errors_total: Final = Counter(  # type: ignore[assignment]
    "strap_decode_errors_total",
    "Total frames dropped because they failed validation",
    ["device_id", "reason"],
)

strap_observer_errors_total: Final = Counter(  # type: ignore[assignment]
    "strap_observer_errors_total",
    "Total exceptions raised by registered observers",
    ["device_id", "category"],
)

# Command metrics
strap_commands_sent_total: Final = Counter(  # type: ignore[assignment]
    "strap_commands_sent_total",
    "Total command frames written to the strap",
    ["device_id", "command", "outcome"],
)

strap_write_latency_seconds: Final = Histogram(  # type: ignore[assignment]
    "strap_write_latency_seconds",
    "Command write latency in seconds (excluding settle delay)",
    ["device_id"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

# Session metrics
strap_session_state: Final = Gauge(  # type: ignore[assignment]
    "strap_session_state",
    "Current session state (1 for the active state, 0 otherwise)",
    ["device_id", "state"],
)

strap_connect_total: Final = Counter(  # type: ignore[assignment]
    "strap_connect_total",
    "Total session connect attempts",
    ["device_id", "outcome"],
)

strap_subscription_total: Final = Counter(  # type: ignore[assignment]
    "strap_subscription_total",
    "Total characteristic subscription attempts",
    ["device_id", "role", "outcome"],
)

# Historical sync metrics
strap_history_records_total: Final = Counter(  # type: ignore[assignment]
    "strap_history_records_total",
    "Total historical heart-rate records seen",
    ["device_id", "outcome"],
)

strap_history_batches_flushed_total: Final = Counter(  # type: ignore[assignment]
    "strap_history_batches_flushed_total",
    "Total record batches handed to the sink",
    ["device_id", "reason"],
)

strap_history_acks_total: Final = Counter(  # type: ignore[assignment]
    "strap_history_acks_total",
    "Total HistoryEnd acknowledgements sent",
    ["device_id", "outcome"],
)

_server_state = {"started": False}
_server_lock = threading.Lock()


def start_metrics_server(port: int = 9400) -> None:
    """Start Prometheus HTTP metrics server (idempotent)."""
    with _server_lock:
        if not _server_state["started"]:
            start_http_server(port)  # type: ignore[no-untyped-call]
            _server_state["started"] = True


def record_frame_received(device_id: str, origin: str, packet_type: str) -> None:
    """Record a valid inbound frame."""
    strap_frames_received_total.labels(
        device_id=device_id, origin=origin, packet_type=packet_type,
    ).inc()  # type: ignore[no-untyped-call]


def record_decode_error(device_id: str, reason: str) -> None:
    """Record a dropped invalid frame."""
    strap_decode_errors_total.labels(device_id=device_id, reason=reason).inc()  # type: ignore[no-untyped-call]


def record_observer_error(device_id: str, category: str) -> None:
    strap_observer_errors_total.labels(device_id=device_id, category=category).inc()  # type: ignore[no-untyped-call]


def record_command_sent(device_id: str, command: str, outcome: str) -> None:
    """Record a command write attempt."""
    strap_commands_sent_total.labels(
        device_id=device_id, command=command, outcome=outcome,
    ).inc()  # type: ignore[no-untyped-call]


def record_write_latency(device_id: str, latency_seconds: float) -> None:
    strap_write_latency_seconds.labels(device_id=device_id).observe(latency_seconds)  # type: ignore[no-untyped-call]


def record_session_state(device_id: str, state: str) -> None:
    """Record session state change."""
    # Set gauge to 1 for current state, 0 for all others
    for s in SESSION_STATES:
        value = 1 if s == state else 0
        strap_session_state.labels(device_id=device_id, state=s).set(value)  # type: ignore[no-untyped-call]


def record_connect(device_id: str, outcome: str) -> None:
    strap_connect_total.labels(device_id=device_id, outcome=outcome).inc()  # type: ignore[no-untyped-call]


def record_subscription(device_id: str, role: str, outcome: str) -> None:
    strap_subscription_total.labels(device_id=device_id, role=role, outcome=outcome).inc()  # type: ignore[no-untyped-call]


def record_history_records(device_id: str, outcome: str, count: int = 1) -> None:
    """Record decoded or discarded historical records."""
    if count <= 0:
        return
    strap_history_records_total.labels(device_id=device_id, outcome=outcome).inc(count)  # type: ignore[no-untyped-call]


def record_history_flush(device_id: str, reason: str) -> None:
    """Record a batch handed to the sink."""
    strap_history_batches_flushed_total.labels(device_id=device_id, reason=reason).inc()  # type: ignore[no-untyped-call]


def record_history_ack(device_id: str, outcome: str) -> None:
    strap_history_acks_total.labels(device_id=device_id, outcome=outcome).inc()  # type: ignore[no-untyped-call]
