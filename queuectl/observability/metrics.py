"""
Prometheus metrics collection.
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    start_http_server,
)

from queuectl.constants import (
    METRIC_DLQ_RETRIED,
    METRIC_JOB_DURATION,
    METRIC_JOB_OUTCOMES,
    METRIC_JOBS_CLAIMED,
    METRIC_JOBS_ENQUEUED,
    METRIC_QUEUE_DEPTH,
    METRIC_STALE_RECOVERED,
)

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for the job queue.

    Collects metrics for:
    - Queue depth per state
    - Enqueued and claimed jobs
    - Job outcomes (completed, retry, dead) and execution duration
    - Dead letter retries and stale job recovery
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional custom registry. Uses default if not provided.
        """
        self._registry = registry or REGISTRY

        self.queue_depth = Gauge(
            METRIC_QUEUE_DEPTH,
            "Number of jobs by state",
            ["state"],
            registry=self._registry,
        )

        self.jobs_enqueued = Counter(
            METRIC_JOBS_ENQUEUED,
            "Total number of jobs enqueued",
            registry=self._registry,
        )

        self.jobs_claimed = Counter(
            METRIC_JOBS_CLAIMED,
            "Total number of jobs claimed",
            ["worker_id"],
            registry=self._registry,
        )

        self.job_outcomes = Counter(
            METRIC_JOB_OUTCOMES,
            "Total number of reported job outcomes",
            ["outcome"],
            registry=self._registry,
        )

        self.job_duration = Histogram(
            METRIC_JOB_DURATION,
            "Job execution duration in seconds",
            ["outcome"],
            buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
            registry=self._registry,
        )

        self.dead_letters_retried = Counter(
            METRIC_DLQ_RETRIED,
            "Total number of dead letter entries re-queued",
            registry=self._registry,
        )

        self.stale_jobs_recovered = Counter(
            METRIC_STALE_RECOVERED,
            "Total number of stale processing jobs returned to pending",
            registry=self._registry,
        )

    def record_job_enqueued(self) -> None:
        """Record a job enqueue."""
        self.jobs_enqueued.inc()

    def record_job_claimed(self, worker_id: str) -> None:
        """Record a successful claim."""
        self.jobs_claimed.labels(worker_id=worker_id).inc()

    def record_job_outcome(self, outcome: str, duration_seconds: float) -> None:
        """Record a reported job outcome."""
        self.job_outcomes.labels(outcome=outcome).inc()
        self.job_duration.labels(outcome=outcome).observe(duration_seconds)

    def record_dead_letter_retried(self) -> None:
        """Record a dead letter entry being re-queued."""
        self.dead_letters_retried.inc()

    def record_stale_recovered(self, count: int) -> None:
        """Record stale jobs recovered by the reaper."""
        if count > 0:
            self.stale_jobs_recovered.inc(count)

    def update_queue_depth(self, stats: dict[str, int]) -> None:
        """Update the queue depth gauge from get_job_stats output."""
        for state, count in stats.items():
            self.queue_depth.labels(state=state).set(count)

    def get_metrics(self) -> bytes:
        """Get all metrics in Prometheus format."""
        return generate_latest(self._registry)

    def get_content_type(self) -> str:
        """Get the content type for metrics response."""
        return CONTENT_TYPE_LATEST


def setup_metrics(port: int | None = None) -> MetricsCollector:
    """
    Set up and return the metrics collector.

    Args:
        port: If given, also serve metrics over HTTP on this port
            (used by worker processes, which have no API).

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    if port is not None:
        start_http_server(port, registry=_metrics._registry)
    return _metrics


def get_metrics() -> MetricsCollector:
    """
    Get the metrics collector instance, creating it on first use.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    if _metrics is None:
        return setup_metrics()
    return _metrics
