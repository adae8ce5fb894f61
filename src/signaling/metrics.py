"""Prometheus-compatible metrics for relay observability.

Tracks connection churn and the outcome of every routed message:
- Connections (accepted, rejected, active, duration)
- Messages (received, forwarded, dropped by reason)

Metrics are collected in-memory and exposed via the /metrics endpoint in
Prometheus exposition format.
"""

import logging
import math
import threading
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


class MetricType(Enum):
    """Metric types following Prometheus conventions."""

    COUNTER = "counter"
    GAUGE = "gauge"
    HISTOGRAM = "histogram"


@dataclass
class HistogramBucket:
    """Histogram bucket for duration distributions."""

    le: float  # Upper bound (less-than-or-equal)
    count: int = 0  # Number of observations <= le


@dataclass
class Histogram:
    """Histogram metric for tracking distributions.

    Uses fixed bucket boundaries for consistent memory footprint.
    """

    name: str
    help: str
    labels: dict[str, str] = field(default_factory=dict)

    # Connection lifetimes: 1s to 1h
    buckets: list[HistogramBucket] = field(
        default_factory=lambda: [
            HistogramBucket(le=1.0),
            HistogramBucket(le=5.0),
            HistogramBucket(le=15.0),
            HistogramBucket(le=30.0),
            HistogramBucket(le=60.0),
            HistogramBucket(le=300.0),
            HistogramBucket(le=900.0),
            HistogramBucket(le=3600.0),
            HistogramBucket(le=float("inf")),
        ]
    )

    sum: float = 0.0
    count: int = 0

    def observe(self, value: float) -> None:
        """Record an observation.

        Args:
            value: Observed value in seconds
        """
        self.sum += value
        self.count += 1

        for bucket in self.buckets:
            if value <= bucket.le:
                bucket.count += 1

    def quantile(self, q: float) -> float | None:
        """Approximate quantile (e.g., 0.95 for p95) by bucket interpolation.

        Note: bucket.count values are CUMULATIVE (not per-bucket).

        Args:
            q: Quantile to calculate (0.0 to 1.0)

        Returns:
            Approximate quantile value, or None if no data
        """
        if self.count == 0:
            return None

        # Rank of the observation the quantile falls on (1-based)
        target_rank = max(1, math.ceil(q * self.count))

        prev_count = 0
        for i, bucket in enumerate(self.buckets):
            if bucket.count >= target_rank:
                if i == 0:
                    # Interpolate from zero within the first bucket
                    return (target_rank / bucket.count) * bucket.le

                prev_bucket = self.buckets[i - 1]
                if bucket.le == float("inf"):
                    return prev_bucket.le

                bucket_count = bucket.count - prev_count
                if bucket_count == 0:
                    return bucket.le

                rank_in_bucket = target_rank - prev_count
                bucket_width = bucket.le - prev_bucket.le
                return prev_bucket.le + (rank_in_bucket / bucket_count) * bucket_width

            prev_count = bucket.count

        return self.buckets[-1].le


@dataclass
class Counter:
    """Counter metric (monotonically increasing)."""

    name: str
    help: str
    labels: dict[str, str] = field(default_factory=dict)
    value: float = 0.0

    def inc(self, amount: float = 1.0) -> None:
        """Increment counter."""
        self.value += amount


@dataclass
class Gauge:
    """Gauge metric (can go up or down)."""

    name: str
    help: str
    labels: dict[str, str] = field(default_factory=dict)
    value: float = 0.0

    def set(self, value: float) -> None:
        self.value = value

    def inc(self, amount: float = 1.0) -> None:
        self.value += amount

    def dec(self, amount: float = 1.0) -> None:
        self.value -= amount


class MetricsCollector:
    """Thread-safe metrics collector with Prometheus-compatible output.

    Thread-safety: All public methods are thread-safe via mutex.
    """

    def __init__(self) -> None:
        """Initialize metrics collector."""
        self._lock = threading.RLock()

        self._counters: dict[str, Counter] = {}
        self._gauges: dict[str, Gauge] = {}
        self._histograms: dict[str, Histogram] = {}

        self._init_connection_metrics()
        self._init_message_metrics()

        logger.debug("MetricsCollector initialized")

    def _init_connection_metrics(self) -> None:
        """Initialize connection lifecycle metrics."""
        self._counters["connections_total"] = Counter(
            name="connections_total",
            help="Total number of connections accepted",
        )
        self._counters["connections_rejected_total"] = Counter(
            name="connections_rejected_total",
            help="Total number of connections rejected at the connection limit",
        )
        self._gauges["connections_active"] = Gauge(
            name="connections_active",
            help="Number of registered connections",
        )
        self._histograms["connection_duration_seconds"] = Histogram(
            name="connection_duration_seconds",
            help="Connection lifetime in seconds",
        )

    def _init_message_metrics(self) -> None:
        """Initialize message routing metrics."""
        self._counters["messages_received_total"] = Counter(
            name="messages_received_total",
            help="Total number of inbound messages handed to the router",
        )
        self._counters["messages_forwarded_total"] = Counter(
            name="messages_forwarded_total",
            help="Total number of messages forwarded to a target peer",
        )
        self._counters["messages_unknown_target_total"] = Counter(
            name="messages_unknown_target_total",
            help="Total number of messages dropped because the target is not connected",
        )
        self._counters["messages_send_failed_total"] = Counter(
            name="messages_send_failed_total",
            help="Total number of messages dropped because the target channel failed",
        )
        self._counters["messages_malformed_total"] = Counter(
            name="messages_malformed_total",
            help="Total number of malformed messages discarded",
        )
        self._counters["messages_unknown_type_total"] = Counter(
            name="messages_unknown_type_total",
            help="Total number of messages with an unknown type discarded",
        )

    # === Connection metrics ===

    def record_connection_open(self) -> None:
        """Record an accepted, registered connection."""
        with self._lock:
            self._counters["connections_total"].inc()
            self._gauges["connections_active"].inc()

    def record_connection_close(self, duration_seconds: float) -> None:
        """Record a connection leaving the registry.

        Args:
            duration_seconds: Time the connection was open
        """
        with self._lock:
            self._gauges["connections_active"].dec()
            self._histograms["connection_duration_seconds"].observe(duration_seconds)

    def record_connection_rejected(self) -> None:
        """Record a connection refused at the connection limit."""
        with self._lock:
            self._counters["connections_rejected_total"].inc()

    # === Message metrics ===

    def record_message_received(self) -> None:
        with self._lock:
            self._counters["messages_received_total"].inc()

    def record_message_outcome(self, outcome: str) -> None:
        """Record how a routed message ended.

        Args:
            outcome: One of forwarded, unknown_target, send_failed, malformed,
                unknown_type

        Raises:
            ValueError: If outcome is not a known routing outcome
        """
        key = f"messages_{outcome}_total"
        with self._lock:
            counter = self._counters.get(key)
            if counter is None:
                raise ValueError(f"Unknown routing outcome: {outcome}")
            counter.inc()

    # === Export ===

    def export_prometheus(self) -> str:
        """Export all metrics in Prometheus exposition format.

        Returns:
            Metrics in Prometheus text format for scraping
        """
        with self._lock:
            lines: list[str] = []

            for counter in self._counters.values():
                lines.append(f"# HELP {counter.name} {counter.help}")
                lines.append(f"# TYPE {counter.name} {MetricType.COUNTER.value}")
                labels_str = self._format_labels(counter.labels)
                lines.append(f"{counter.name}{labels_str} {counter.value}")

            for gauge in self._gauges.values():
                lines.append(f"# HELP {gauge.name} {gauge.help}")
                lines.append(f"# TYPE {gauge.name} {MetricType.GAUGE.value}")
                labels_str = self._format_labels(gauge.labels)
                lines.append(f"{gauge.name}{labels_str} {gauge.value}")

            for histogram in self._histograms.values():
                lines.append(f"# HELP {histogram.name} {histogram.help}")
                lines.append(f"# TYPE {histogram.name} {MetricType.HISTOGRAM.value}")

                labels_str = self._format_labels(histogram.labels)

                for bucket in histogram.buckets:
                    le = "+Inf" if bucket.le == float("inf") else str(bucket.le)
                    bucket_labels_str = self._format_labels({**histogram.labels, "le": le})
                    lines.append(f"{histogram.name}_bucket{bucket_labels_str} {bucket.count}")

                lines.append(f"{histogram.name}_sum{labels_str} {histogram.sum}")
                lines.append(f"{histogram.name}_count{labels_str} {histogram.count}")

            return "\n".join(lines) + "\n"

    def _format_labels(self, labels: dict[str, str]) -> str:
        """Format labels for Prometheus output (e.g., '{a="1",b="2"}')."""
        if not labels:
            return ""

        label_pairs = [f'{k}="{v}"' for k, v in sorted(labels.items())]
        return "{" + ",".join(label_pairs) + "}"

    # === Summary statistics ===

    def get_summary(self) -> dict[str, float | None]:
        """Get summary statistics for monitoring dashboards.

        Returns:
            Dictionary with key counters and connection duration percentiles
        """
        with self._lock:
            duration_hist = self._histograms["connection_duration_seconds"]
            p50 = duration_hist.quantile(0.50)
            p95 = duration_hist.quantile(0.95)

            return {
                "connections_total": self._counters["connections_total"].value,
                "connections_rejected": self._counters["connections_rejected_total"].value,
                "connections_active": self._gauges["connections_active"].value,
                "connection_duration_p50_s": p50,
                "connection_duration_p95_s": p95,
                "messages_received": self._counters["messages_received_total"].value,
                "messages_forwarded": self._counters["messages_forwarded_total"].value,
                "messages_unknown_target": self._counters["messages_unknown_target_total"].value,
                "messages_send_failed": self._counters["messages_send_failed_total"].value,
                "messages_malformed": self._counters["messages_malformed_total"].value,
                "messages_unknown_type": self._counters["messages_unknown_type_total"].value,
            }


# Global metrics collector singleton
_metrics_collector: MetricsCollector | None = None
_collector_lock = threading.Lock()


def get_metrics_collector() -> MetricsCollector:
    """Get global metrics collector singleton.

    Thread-safety: Safe for concurrent access.
    """
    global _metrics_collector

    if _metrics_collector is None:
        with _collector_lock:
            if _metrics_collector is None:
                _metrics_collector = MetricsCollector()

    return _metrics_collector
