from __future__ import annotations

from dataclasses import dataclass

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest
from prometheus_client.exposition import CONTENT_TYPE_LATEST

from app.medstock.core.config import settings

_LATENCY_BUCKETS_MS = (5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000)


@dataclass
class MetricsSnapshot:
    content: bytes
    content_type: str


class Metrics:
    """Process-wide Prometheus counters; every method is a no-op when metrics are disabled."""

    def __init__(self) -> None:
        self.enabled = settings.METRICS_ENABLED
        self._registry: CollectorRegistry | None = None
        if self.enabled:
            self._build()

    def _build(self) -> None:
        registry = CollectorRegistry()
        request_labels = ["route", "method", "status"]
        self._requests = Counter(
            "http_requests_total", "HTTP requests by route, method and status.", request_labels, registry=registry
        )
        self._latency = Histogram(
            "http_request_duration_ms",
            "HTTP request latency in milliseconds.",
            request_labels,
            buckets=_LATENCY_BUCKETS_MS,
            registry=registry,
        )
        self._transitions = Counter(
            "transfer_transitions_total", "Committed transfer workflow transitions.", ["action"], registry=registry
        )
        self._replays = Counter("idempotency_replay_total", "Transfer creations answered from a stored replay.", registry=registry)
        self._lock_timeouts = Counter("lock_wait_timeout_total", "Lock wait timeout occurrences.", registry=registry)
        self._denials = Counter("permission_denied_total", "Role or department scope denials.", registry=registry)
        self._registry = registry

    def reset(self) -> None:
        if self.enabled:
            self._build()

    def record_http_request(self, *, route: str, method: str, status_code: int, latency_ms: float) -> None:
        if not self.enabled:
            return
        labels = (route, method, str(status_code))
        self._requests.labels(*labels).inc()
        self._latency.labels(*labels).observe(latency_ms)

    def increment_transfer_transition(self, action: str) -> None:
        if self.enabled:
            self._transitions.labels(action=action).inc()

    def increment_idempotency_replay(self) -> None:
        if self.enabled:
            self._replays.inc()

    def increment_lock_wait_timeout(self) -> None:
        if self.enabled:
            self._lock_timeouts.inc()

    def increment_permission_denied(self) -> None:
        if self.enabled:
            self._denials.inc()

    def render(self) -> MetricsSnapshot:
        if not self.enabled:
            return MetricsSnapshot(content=b"metrics_disabled\n", content_type="text/plain")
        return MetricsSnapshot(content=generate_latest(self._registry), content_type=CONTENT_TYPE_LATEST)


metrics = Metrics()
