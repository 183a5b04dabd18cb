"""
Prometheus metrics collection.

Each collector owns its own registry so several shippers can live in one
process; expose it with prometheus_client.generate_latest(collector.registry).
"""

from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram


class MetricsCollector:
    """
    Centralized metrics collection for one shipper.

    Keep metrics simple,
    use in-memory counters, let Prometheus handle storage.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None) -> None:
        self.registry = registry if registry is not None else CollectorRegistry()

        # Ingestion metrics
        self.entries_accepted_total = Counter(
            "logship_entries_accepted_total",
            "Total log records accepted into the buffer",
            registry=self.registry,
        )

        self.format_errors_total = Counter(
            "logship_format_errors_total",
            "Total records dropped because the formatter failed",
            registry=self.registry,
        )

        self.capacity_rejections_total = Counter(
            "logship_capacity_rejections_total",
            "Total records rejected by the capacity ceiling",
            registry=self.registry,
        )

        self.buffered_entries = Gauge(
            "logship_buffered_entries",
            "Entries in the live generation",
            registry=self.registry,
        )

        # Batch metrics
        self.batches_sealed_total = Counter(
            "logship_batches_sealed_total",
            "Total generations sealed",
            ["reason"],
            registry=self.registry,
        )

        self.batch_size_entries = Histogram(
            "logship_batch_size_entries",
            "Number of entries per sealed batch",
            buckets=[1, 10, 50, 100, 500, 1000, 2048, 4096, 8192],
            registry=self.registry,
        )

        # Delivery metrics
        self.push_requests_total = Counter(
            "logship_push_requests_total",
            "Total push requests by outcome",
            ["status_code"],
            registry=self.registry,
        )

        self.push_request_duration = Histogram(
            "logship_push_request_duration_seconds",
            "Push request duration in seconds",
            buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
            registry=self.registry,
        )

        self.push_retries_total = Counter(
            "logship_push_retries_total",
            "Total push retries",
            registry=self.registry,
        )

        self.entries_delivered_total = Counter(
            "logship_entries_delivered_total",
            "Total entries delivered to the backend",
            registry=self.registry,
        )

        self.batches_failed_total = Counter(
            "logship_batches_failed_total",
            "Total batches that could not be delivered",
            ["outcome"],
            registry=self.registry,
        )

    def record_accept(self, buffered: int) -> None:
        self.entries_accepted_total.inc()
        self.buffered_entries.set(buffered)

    def record_format_error(self) -> None:
        self.format_errors_total.inc()

    def record_capacity_rejection(self) -> None:
        self.capacity_rejections_total.inc()

    def record_seal(self, reason: str, entries: int, buffered: int) -> None:
        """Record a sealed generation."""
        self.batches_sealed_total.labels(reason=reason).inc()
        self.batch_size_entries.observe(entries)
        self.buffered_entries.set(buffered)

    def record_push(self, status_code: Optional[int], duration_seconds: float) -> None:
        """Record one push attempt; network failures are labelled 'error'."""
        self.push_requests_total.labels(
            status_code=str(status_code) if status_code is not None else "error"
        ).inc()
        self.push_request_duration.observe(duration_seconds)

    def record_retry(self) -> None:
        self.push_retries_total.inc()

    def record_delivery(self, entries: int) -> None:
        self.entries_delivered_total.inc(entries)

    def record_failure(self, outcome: str) -> None:
        """Record a batch that was dropped, rejected or requeued."""
        self.batches_failed_total.labels(outcome=outcome).inc()
