"""Tests for the Prometheus metrics module."""

import urllib.error
import urllib.request

import pytest

from deviceloan.monitoring.metrics import (
    Counter,
    Gauge,
    Histogram,
    MetricsServer,
    generate_metrics,
    loans_collected_total,
    notification_attempts_total,
    reset_metrics,
)


class TestCounter:
    """Test Counter metric."""

    def test_inc_without_labels(self):
        counter = Counter("test_total", "Test counter")
        counter.inc()
        counter.inc(2)
        assert counter.get() == 3

    def test_inc_with_labels(self):
        counter = Counter("test_total", "Test counter", labels=["status"])
        counter.labels(status="sent").inc()
        counter.labels(status="sent").inc()
        counter.labels(status="failed").inc()

        assert counter.get(status="sent") == 2
        assert counter.get(status="failed") == 1
        assert counter.get(status="unknown") == 0

    def test_rejects_negative(self):
        counter = Counter("test_total", "Test counter")
        with pytest.raises(ValueError):
            counter.inc(-1)

    def test_to_prometheus(self):
        counter = Counter("test_total", "Test counter", labels=["status"])
        counter.labels(status="sent").inc()

        output = counter.to_prometheus()
        assert "# HELP test_total Test counter" in output
        assert "# TYPE test_total counter" in output
        assert 'test_total{status="sent"} 1.0' in output


class TestGauge:
    """Test Gauge metric."""

    def test_set_inc_dec(self):
        gauge = Gauge("test_gauge", "Test gauge", labels=["name"])
        bound = gauge.labels(name="email-service")
        bound.set(2)
        bound.inc()
        bound.dec(3)
        assert gauge.get(name="email-service") == 0


class TestHistogram:
    """Test Histogram metric."""

    def test_observe_and_render(self):
        histogram = Histogram("test_seconds", "Test histogram", labels=["outcome"], buckets=(0.1, 1.0))
        histogram.labels(outcome="sent").observe(0.05)
        histogram.labels(outcome="sent").observe(0.5)

        assert histogram.get_observations() == {("sent",): [0.05, 0.5]}
        output = histogram.to_prometheus()
        assert 'test_seconds_bucket{outcome="sent",le="0.1"} 1' in output
        assert 'test_seconds_bucket{outcome="sent",le="+Inf"} 2' in output
        assert 'test_seconds_count{outcome="sent"} 2' in output


class TestRegistry:
    """Test module-level helpers."""

    def test_generate_metrics_includes_service_metrics(self):
        loans_collected_total.inc()
        output = generate_metrics()
        assert "deviceloan_loans_collected_total 1.0" in output
        assert "deviceloan_circuit_breaker_state" in output

    def test_reset_metrics(self):
        notification_attempts_total.labels(status="sent").inc()
        reset_metrics()
        assert notification_attempts_total.get(status="sent") == 0


class TestMetricsServer:
    """Test the scrape endpoint."""

    def test_serves_metrics(self):
        loans_collected_total.inc()
        server = MetricsServer(host="127.0.0.1", port=0)
        server.start()
        try:
            assert server.is_running
            url = f"http://127.0.0.1:{server.bound_port}"
            with urllib.request.urlopen(f"{url}/metrics", timeout=5) as response:
                body = response.read().decode("utf-8")
            assert "deviceloan_loans_collected_total 1.0" in body

            with pytest.raises(urllib.error.HTTPError) as exc_info:
                urllib.request.urlopen(f"{url}/other", timeout=5)
            assert exc_info.value.code == 404
        finally:
            server.stop()

        assert not server.is_running
        assert server.bound_port is None
