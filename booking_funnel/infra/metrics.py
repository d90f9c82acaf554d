import logging
import time

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

logger = logging.getLogger(__name__)


class Metrics:
    def __init__(self, enabled: bool = False) -> None:
        self._configure(enabled)

    def _configure(self, enabled: bool) -> None:
        self.enabled = enabled
        self.registry = CollectorRegistry(auto_describe=True)
        if not enabled:
            self.webhook_events = None
            self.webhook_errors = None
            self.stripe_circuit_open = None
            self.notifications = None
            self.assignments = None
            self.balance_charges = None
            self.bookings = None
            self.outbox_queue_depth = None
            self.http_requests = None
            self.http_5xx = None
            self.http_latency = None
            self.job_last_success = None
            self.job_errors = None
            self.circuit_state = None
            return

        self.webhook_events = Counter(
            "webhook_events_total",
            "Webhook events processed by source and result.",
            ["source", "result"],
            registry=self.registry,
        )
        self.webhook_errors = Counter(
            "webhook_errors_total",
            "Webhook errors by type (low cardinality).",
            ["type"],
            registry=self.registry,
        )
        self.stripe_circuit_open = Counter(
            "stripe_circuit_open_total",
            "Stripe calls rejected because the circuit was open.",
            registry=self.registry,
        )
        self.notifications = Counter(
            "notifications_total",
            "Notification attempts by channel, template and status.",
            ["channel", "template", "status"],
            registry=self.registry,
        )
        self.assignments = Counter(
            "cleaner_assignments_total",
            "Cleaner assignment attempts by result.",
            ["result"],
            registry=self.registry,
        )
        self.balance_charges = Counter(
            "balance_charges_total",
            "Remaining balance charge attempts by result.",
            ["result"],
            registry=self.registry,
        )
        self.bookings = Counter(
            "bookings_total",
            "Booking lifecycle events.",
            ["action"],
            registry=self.registry,
        )
        self.outbox_queue_depth = Gauge(
            "outbox_queue_messages",
            "Outbox queue depth by status (pending/retry/dead).",
            ["status"],
            registry=self.registry,
        )
        self.http_requests = Counter(
            "http_requests_total",
            "HTTP requests by method, path and status class.",
            ["method", "path", "status_class"],
            registry=self.registry,
        )
        self.http_5xx = Counter(
            "http_5xx_total",
            "HTTP responses with status >= 500.",
            ["method", "path"],
            registry=self.registry,
        )
        self.http_latency = Histogram(
            "http_request_latency_seconds",
            "HTTP request latency in seconds.",
            ["method", "path", "status_class"],
            buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10),
            registry=self.registry,
        )
        self.job_last_success = Gauge(
            "job_last_success_timestamp",
            "Unix timestamp for the latest successful job loop.",
            ["job"],
            registry=self.registry,
        )
        self.job_errors = Counter(
            "job_errors_total",
            "Job execution errors by job and reason.",
            ["job", "reason"],
            registry=self.registry,
        )
        self.circuit_state = Gauge(
            "circuit_state",
            "Circuit breaker state (0=closed, 0.5=half-open, 1=open).",
            ["circuit"],
            registry=self.registry,
        )

    def record_webhook(self, source: str, result: str) -> None:
        if not self.enabled or self.webhook_events is None:
            return
        self.webhook_events.labels(source=source or "unknown", result=result or "unknown").inc()

    def record_webhook_error(self, error_type: str) -> None:
        if not self.enabled or self.webhook_errors is None:
            return
        safe_type = error_type or "unknown"
        self.webhook_errors.labels(type=safe_type).inc()

    def record_stripe_circuit_open(self) -> None:
        if not self.enabled or self.stripe_circuit_open is None:
            return
        self.stripe_circuit_open.inc()

    def record_notification(self, channel: str, template: str, status: str) -> None:
        if not self.enabled or self.notifications is None:
            return
        self.notifications.labels(
            channel=channel or "unknown", template=template or "unknown", status=status or "unknown"
        ).inc()

    def record_assignment(self, result: str) -> None:
        if not self.enabled or self.assignments is None:
            return
        self.assignments.labels(result=result).inc()

    def record_balance_charge(self, result: str, count: int = 1) -> None:
        if not self.enabled or self.balance_charges is None:
            return
        if count <= 0:
            return
        self.balance_charges.labels(result=result).inc(count)

    def record_booking(self, action: str, count: int = 1) -> None:
        if not self.enabled or self.bookings is None:
            return
        if count <= 0:
            return
        self.bookings.labels(action=action).inc(count)

    def set_outbox_depth(self, status: str, count: int) -> None:
        if not self.enabled or self.outbox_queue_depth is None:
            return
        safe_status = status or "unknown"
        self.outbox_queue_depth.labels(status=safe_status).set(max(0, count))

    def record_http_request(self, method: str, path: str, status_code: int) -> None:
        if not self.enabled or self.http_requests is None:
            return
        status_class = f"{status_code // 100}xx" if status_code else "unknown"
        self.http_requests.labels(method=method, path=path, status_class=status_class).inc()

    def record_http_5xx(self, method: str, path: str) -> None:
        if not self.enabled or self.http_5xx is None:
            return
        self.http_5xx.labels(method=method, path=path).inc()

    def record_http_latency(self, method: str, path: str, status_code: int, duration_seconds: float) -> None:
        if not self.enabled or self.http_latency is None:
            return
        status_class = f"{status_code // 100}xx" if status_code else "unknown"
        duration_seconds = max(0.0, float(duration_seconds))
        self.http_latency.labels(method=method, path=path, status_class=status_class).observe(
            duration_seconds
        )

    def record_job_success(self, job: str, timestamp: float | None = None) -> None:
        if not self.enabled or self.job_last_success is None:
            return
        ts = timestamp if timestamp is not None else time.time()
        self.job_last_success.labels(job=job).set(ts)

    def record_job_error(self, job: str, reason: str) -> None:
        if not self.enabled or self.job_errors is None:
            return
        safe_reason = reason or "unknown"
        self.job_errors.labels(job=job, reason=safe_reason).inc()

    def record_circuit_state(self, circuit: str, state: str) -> None:
        if not self.enabled or self.circuit_state is None:
            return
        value = {"closed": 0, "half_open": 0.5, "open": 1}.get(state, -1)
        self.circuit_state.labels(circuit=circuit).set(value)

    def render(self) -> tuple[bytes, str]:
        if not self.enabled:
            return b"metrics_disabled 1\n", "text/plain; version=0.0.4"
        try:
            return generate_latest(self.registry), CONTENT_TYPE_LATEST
        except Exception:  # noqa: BLE001
            logger.exception("metrics_render_failed")
            return b"metrics_render_failed 1\n", "text/plain; version=0.0.4"


metrics = Metrics(enabled=False)


def configure_metrics(enabled: bool) -> Metrics:
    metrics._configure(enabled)
    return metrics
