"""Prometheus metrics for the device loan service.

Exports text-format metrics for scraping:
- Loan metrics: loans_collected_total, loans_returned_total, loan_operation_failures_total
- Notification metrics: notification_attempts_total, notification_latency_seconds
- Waitlist metrics: waitlist_advances_total
- Resilience metrics: circuit_breaker_state, circuit_breaker_transitions_total
- Boundary metrics: rate_limit_rejections_total
"""

import logging
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Optional

logger = logging.getLogger(__name__)


# =============================================================================
# Metric Classes (lightweight, no prometheus_client dependency)
# =============================================================================


class _Metric:
    """Shared label handling and text rendering."""

    kind = "untyped"

    def __init__(self, name: str, description: str, labels: Optional[list[str]] = None):
        self.name = name
        self.description = description
        self._label_names = labels or []
        self._values: dict[tuple, float] = {}
        self._lock = threading.Lock()

    def _key(self, labels: dict) -> tuple:
        return tuple(str(labels.get(label, "")) for label in self._label_names)

    def _labels_str(self, label_values: tuple, extra: str = "") -> str:
        parts = [f'{label}="{value}"' for label, value in zip(self._label_names, label_values)]
        if extra:
            parts.append(extra)
        return "{" + ",".join(parts) + "}" if parts else ""

    def get_all(self) -> dict[tuple, float]:
        """Get all values."""
        with self._lock:
            return self._values.copy()

    def get(self, **labels) -> float:
        """Get the value for one label set (0 when never touched)."""
        with self._lock:
            return self._values.get(self._key(labels), 0.0)

    def clear(self) -> None:
        with self._lock:
            self._values.clear()

    def to_prometheus(self) -> str:
        """Format as Prometheus text."""
        lines = [f"# HELP {self.name} {self.description}", f"# TYPE {self.name} {self.kind}"]
        with self._lock:
            for label_values, value in self._values.items():
                lines.append(f"{self.name}{self._labels_str(label_values)} {value}")
        return "\n".join(lines)


class Counter(_Metric):
    """A counter metric that can only increase."""

    kind = "counter"

    def labels(self, **kwargs) -> "_BoundCounter":
        """Return a counter with specific labels."""
        return _BoundCounter(self, self._key(kwargs))

    def inc(self, value: float = 1.0) -> None:
        """Increment the counter."""
        self._add((), value)

    def _add(self, key: tuple, value: float) -> None:
        if value < 0:
            raise ValueError("Counters can only increase")
        with self._lock:
            self._values[key] = self._values.get(key, 0.0) + value


class _BoundCounter:
    def __init__(self, parent: Counter, key: tuple):
        self._parent = parent
        self._key = key

    def inc(self, value: float = 1.0) -> None:
        self._parent._add(self._key, value)


class Gauge(_Metric):
    """A gauge metric that can increase or decrease."""

    kind = "gauge"

    def labels(self, **kwargs) -> "_BoundGauge":
        """Return a gauge with specific labels."""
        return _BoundGauge(self, self._key(kwargs))

    def set(self, value: float) -> None:
        self._set((), value)

    def inc(self, value: float = 1.0) -> None:
        self._add((), value)

    def dec(self, value: float = 1.0) -> None:
        self._add((), -value)

    def _set(self, key: tuple, value: float) -> None:
        with self._lock:
            self._values[key] = value

    def _add(self, key: tuple, value: float) -> None:
        with self._lock:
            self._values[key] = self._values.get(key, 0.0) + value


class _BoundGauge:
    def __init__(self, parent: Gauge, key: tuple):
        self._parent = parent
        self._key = key

    def set(self, value: float) -> None:
        self._parent._set(self._key, value)

    def inc(self, value: float = 1.0) -> None:
        self._parent._add(self._key, value)

    def dec(self, value: float = 1.0) -> None:
        self._parent._add(self._key, -value)


class Histogram(_Metric):
    """A histogram metric for tracking distributions."""

    kind = "histogram"
    DEFAULT_BUCKETS = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)

    def __init__(
        self,
        name: str,
        description: str,
        labels: Optional[list[str]] = None,
        buckets: Optional[tuple] = None,
    ):
        super().__init__(name, description, labels)
        self.buckets = buckets or self.DEFAULT_BUCKETS
        self._observations: dict[tuple, list[float]] = {}

    def labels(self, **kwargs) -> "_BoundHistogram":
        return _BoundHistogram(self, self._key(kwargs))

    def observe(self, value: float) -> None:
        """Record an observation."""
        self._observe((), value)

    def _observe(self, key: tuple, value: float) -> None:
        with self._lock:
            self._observations.setdefault(key, []).append(value)

    def get_observations(self) -> dict[tuple, list[float]]:
        with self._lock:
            return {k: v.copy() for k, v in self._observations.items()}

    def clear(self) -> None:
        with self._lock:
            self._observations.clear()

    def to_prometheus(self) -> str:
        lines = [f"# HELP {self.name} {self.description}", f"# TYPE {self.name} histogram"]
        with self._lock:
            for label_values, observations in self._observations.items():
                for bucket in self.buckets:
                    bucket_count = sum(1 for o in observations if o <= bucket)
                    labels = self._labels_str(label_values, f'le="{bucket}"')
                    lines.append(f"{self.name}_bucket{labels} {bucket_count}")
                labels = self._labels_str(label_values, 'le="+Inf"')
                lines.append(f"{self.name}_bucket{labels} {len(observations)}")
                lines.append(f"{self.name}_sum{self._labels_str(label_values)} {sum(observations)}")
                lines.append(f"{self.name}_count{self._labels_str(label_values)} {len(observations)}")
        return "\n".join(lines)


class _BoundHistogram:
    def __init__(self, parent: Histogram, key: tuple):
        self._parent = parent
        self._key = key

    def observe(self, value: float) -> None:
        self._parent._observe(self._key, value)


# =============================================================================
# Loan Metrics
# =============================================================================

loans_collected_total = Counter(
    name="deviceloan_loans_collected_total",
    description="Reservations collected into loans",
)

loans_returned_total = Counter(
    name="deviceloan_loans_returned_total",
    description="Loans returned",
)

loan_operation_failures_total = Counter(
    name="deviceloan_loan_operation_failures_total",
    description="Failed loan lifecycle operations",
    labels=["operation", "code"],
)


# =============================================================================
# Notification Metrics
# =============================================================================

notification_attempts_total = Counter(
    name="deviceloan_notification_attempts_total",
    description="Email delivery attempts by outcome",
    labels=["status"],
)

notification_latency_seconds = Histogram(
    name="deviceloan_notification_latency_seconds",
    description="End-to-end latency of waitlist notifications",
    labels=["outcome"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

waitlist_advances_total = Counter(
    name="deviceloan_waitlist_advances_total",
    description="Waitlist advance results",
    labels=["status"],
)


# =============================================================================
# Resilience Metrics
# =============================================================================

circuit_breaker_state = Gauge(
    name="deviceloan_circuit_breaker_state",
    description="Circuit breaker state (0=closed, 1=half-open, 2=open)",
    labels=["name"],
)

circuit_breaker_transitions_total = Counter(
    name="deviceloan_circuit_breaker_transitions_total",
    description="Circuit breaker state transitions",
    labels=["name", "state"],
)

rate_limit_rejections_total = Counter(
    name="deviceloan_rate_limit_rejections_total",
    description="Requests rejected by a rate limiter",
    labels=["limiter"],
)


_ALL_METRICS = [
    loans_collected_total,
    loans_returned_total,
    loan_operation_failures_total,
    notification_attempts_total,
    notification_latency_seconds,
    waitlist_advances_total,
    circuit_breaker_state,
    circuit_breaker_transitions_total,
    rate_limit_rejections_total,
]


def generate_metrics() -> str:
    """Generate all metrics in Prometheus text format."""
    return "\n\n".join(metric.to_prometheus() for metric in _ALL_METRICS)


def reset_metrics() -> None:
    """Clear every registered metric."""
    for metric in _ALL_METRICS:
        metric.clear()


# =============================================================================
# Metrics HTTP Server
# =============================================================================


class MetricsHandler(BaseHTTPRequestHandler):
    """HTTP handler for the metrics endpoint."""

    def do_GET(self):
        if self.path == "/metrics":
            content = generate_metrics().encode("utf-8")
            self.send_response(200)
            self.send_header("Content-Type", "text/plain; version=0.0.4; charset=utf-8")
            self.end_headers()
            self.wfile.write(content)
        else:
            self.send_response(404)
            self.end_headers()

    def log_message(self, format, *args):
        """Route access logs through the module logger."""
        logger.debug(format % args)


class MetricsServer:
    """HTTP server for Prometheus metrics."""

    def __init__(self, host: str = "0.0.0.0", port: int = 8000):
        self.host = host
        self.port = port
        self._server: Optional[HTTPServer] = None
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        """Start the metrics server in a background thread."""
        if self._server is not None:
            logger.warning("Metrics server already running")
            return

        self._server = HTTPServer((self.host, self.port), MetricsHandler)
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()
        logger.info(f"Metrics server started on http://{self.host}:{self.port}/metrics")

    def stop(self) -> None:
        """Stop the metrics server."""
        if self._server is not None:
            self._server.shutdown()
            self._server.server_close()
            self._server = None
            self._thread = None
            logger.info("Metrics server stopped")

    @property
    def is_running(self) -> bool:
        return self._server is not None

    @property
    def bound_port(self) -> Optional[int]:
        """Actual port (useful when started with port 0)."""
        if self._server is None:
            return None
        return self._server.server_address[1]
