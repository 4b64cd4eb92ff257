"""
Metrics definitions for Sarthi.

This module defines Prometheus metrics for monitoring
geofence tracking and emergency escalation.
"""

from prometheus_client import Counter, Gauge

# 카운터 메트릭
position_updates = Counter(
    "position_updates_total",
    "Number of position samples evaluated"
)

position_errors = Counter(
    "position_errors_total",
    "Position source errors",
    ["kind"]
)

danger_zone_entries = Counter(
    "danger_zone_entries_total",
    "Transitions into a high/critical danger zone",
    ["risk_level"]
)

escalation_sessions = Counter(
    "escalation_sessions_total",
    "Emergency sessions opened",
    ["trigger"]
)

escalation_outcomes = Counter(
    "escalation_outcomes_total",
    "Emergency sessions closed by outcome",
    ["outcome"]
)

alarm_activations = Counter(
    "alarm_activations_total",
    "Alarm audio activations"
)

sos_triggered = Counter(
    "sos_triggered_total",
    "SOS dispatches",
    ["source"]
)

notifications_sent = Counter(
    "notifications_sent_total",
    "Danger zone notifications",
    ["result"]
)

# 게이지 메트릭
tracking_active = Gauge(
    "tracking_active",
    "1 while the geofence monitor is subscribed to a position source"
)

zones_loaded = Gauge(
    "zones_loaded",
    "Number of risk zones currently loaded"
)

uptime_seconds = Gauge(
    "uptime_seconds",
    "Service uptime in seconds"
)
