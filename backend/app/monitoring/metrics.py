"""Metric definitions for realtime delivery, calls and notifications."""

from __future__ import annotations

from .registry import registry


realtime_events_total = registry.counter(
    "realtime_events_total",
    "Count of realtime events delivered to rooms.",
    label_names=("room_kind", "direction", "event"),
)

realtime_connections = registry.gauge(
    "realtime_active_connections",
    "Number of room memberships held by local websocket connections.",
    label_names=("room_kind",),
)

realtime_sessions = registry.gauge(
    "realtime_sessions",
    "Number of authenticated websocket sessions on this instance.",
)

realtime_subscriptions = registry.gauge(
    "realtime_pubsub_subscriptions",
    "Number of active broker subscriptions.",
    label_names=("topic", "backend"),
)

realtime_publish_errors_total = registry.counter(
    "realtime_publish_errors_total",
    "Failed attempts to relay realtime events through the backplane.",
    label_names=("topic", "backend", "reason"),
)

realtime_transport_restarts_total = registry.counter(
    "realtime_transport_restarts_total",
    "Number of times the realtime backplane reconnected.",
    label_names=("backend", "reason"),
)

call_transitions_total = registry.counter(
    "call_transitions_total",
    "Call lifecycle events applied, by event and resulting status.",
    label_names=("event", "status"),
)

notification_dispatch_total = registry.counter(
    "notification_dispatch_total",
    "Side-channel notification outcomes.",
    label_names=("type", "outcome"),
)
