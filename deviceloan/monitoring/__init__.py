"""Monitoring module for the device loan service.

This module provides:
- Prometheus metrics for loans, notifications and resilience primitives
- A small HTTP server exposing them
- Threshold alerts evaluated over those metrics
"""

from .alerts import Alert, AlertManager, AlertRule, AlertSeverity, create_default_alert_rules
from .metrics import (
    Counter,
    Gauge,
    Histogram,
    MetricsServer,
    circuit_breaker_state,
    circuit_breaker_transitions_total,
    generate_metrics,
    loan_operation_failures_total,
    loans_collected_total,
    loans_returned_total,
    notification_attempts_total,
    notification_latency_seconds,
    rate_limit_rejections_total,
    reset_metrics,
    waitlist_advances_total,
)

__all__ = [
    "Alert",
    "AlertManager",
    "AlertRule",
    "AlertSeverity",
    "create_default_alert_rules",
    "Counter",
    "Gauge",
    "Histogram",
    "MetricsServer",
    "generate_metrics",
    "reset_metrics",
    "loans_collected_total",
    "loans_returned_total",
    "loan_operation_failures_total",
    "notification_attempts_total",
    "notification_latency_seconds",
    "waitlist_advances_total",
    "circuit_breaker_state",
    "circuit_breaker_transitions_total",
    "rate_limit_rejections_total",
]
