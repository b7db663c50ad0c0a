"""Prometheus instrumentation for check-ins, heartbeat processing and session lifecycle."""

from __future__ import annotations

import logging
from typing import Dict, Optional

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

logger = logging.getLogger(__name__)


def _build_metrics() -> None:
    global REGISTRY
    global HEARTBEAT_COUNTER
    global HEARTBEAT_LATENCY
    global LEFT_EARLY_COUNTER
    global SESSION_AUTO_END_COUNTER
    global AUDIT_WRITE_FAILURE_COUNTER
    global CHECKIN_COUNTER

    REGISTRY = CollectorRegistry(auto_describe=True)

    HEARTBEAT_COUNTER = Counter(
        "attendance_heartbeats",
        "Heartbeats processed, by outcome",
        labelnames=("outcome",),
        registry=REGISTRY,
    )
    HEARTBEAT_LATENCY = Histogram(
        "attendance_heartbeat_duration_seconds",
        "Server-side heartbeat processing time in seconds",
        buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
        registry=REGISTRY,
    )
    LEFT_EARLY_COUNTER = Counter(
        "attendance_left_early_transitions",
        "Attendance records moved to left_early after sustained zone departure",
        registry=REGISTRY,
    )
    SESSION_AUTO_END_COUNTER = Counter(
        "attendance_sessions_auto_ended",
        "Sessions ended automatically after running past their window",
        labelnames=("trigger",),
        registry=REGISTRY,
    )
    AUDIT_WRITE_FAILURE_COUNTER = Counter(
        "attendance_location_log_write_failures",
        "Location log rows that could not be persisted",
        registry=REGISTRY,
    )
    CHECKIN_COUNTER = Counter(
        "attendance_checkins",
        "Check-in attempts, by outcome",
        labelnames=("outcome",),
        registry=REGISTRY,
    )


_build_metrics()


def reset_for_tests() -> None:
    """Rebuild the metrics registry (intended for test suites)."""

    _build_metrics()


def metric_value(name: str, labels: Optional[Dict[str, str]] = None) -> Optional[float]:
    """Return the current value of a sample, accepting counter names without ``_total``."""

    labels = labels or {}
    sample = REGISTRY.get_sample_value(name, labels)
    if sample is None and not name.endswith("_total"):
        sample = REGISTRY.get_sample_value(f"{name}_total", labels)
    return sample


def record_heartbeat(outcome: str, duration: Optional[float] = None) -> None:
    HEARTBEAT_COUNTER.labels(outcome=outcome).inc()
    if duration is not None:
        HEARTBEAT_LATENCY.observe(duration)


def record_left_early() -> None:
    LEFT_EARLY_COUNTER.inc()


def record_session_auto_ended(trigger: str) -> None:
    SESSION_AUTO_END_COUNTER.labels(trigger=trigger).inc()


def record_audit_write_failure() -> None:
    AUDIT_WRITE_FAILURE_COUNTER.inc()


def record_checkin(outcome: str) -> None:
    CHECKIN_COUNTER.labels(outcome=outcome).inc()


def export_metrics() -> bytes:
    """Serialise the Prometheus metrics registry."""

    return generate_latest(REGISTRY)


def prometheus_content_type() -> str:
    """Expose the correct ``Content-Type`` for Prometheus responses."""

    return CONTENT_TYPE_LATEST


__all__ = [
    "export_metrics",
    "metric_value",
    "prometheus_content_type",
    "record_audit_write_failure",
    "record_checkin",
    "record_heartbeat",
    "record_left_early",
    "record_session_auto_ended",
    "reset_for_tests",
]
