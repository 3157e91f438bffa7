"""Metric definitions for realtime fan-out and messaging operations."""

from __future__ import annotations

from .registry import registry


realtime_events_total = registry.counter(
    "realtime_events_total",
    "Count of realtime events processed by the websocket managers.",
    label_names=("topic", "direction", "action"),
)

realtime_connections = registry.gauge(
    "realtime_active_connections",
    "Number of active websocket connections handled locally.",
    label_names=("scope",),
)

realtime_publish_errors_total = registry.counter(
    "realtime_publish_errors_total",
    "Number of failed deliveries while fanning out realtime events.",
    label_names=("topic", "backend", "reason"),
)

messaging_operations_total = registry.counter(
    "messaging_operations_total",
    "Messaging operations grouped by verb and outcome code.",
    label_names=("operation", "outcome"),
)
