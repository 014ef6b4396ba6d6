"""
Prometheus Metrics for the Relay.

Metrics Exposed:
    relay_requests_total{outcome}          - hit, miss, invalid, error
    relay_cache_lookups_total{result}      - hit, miss, stale
    relay_audio_bytes_total{source}        - bytes relayed from cache / generator
    relay_persist_total{status}            - ok, error
    relay_pending_jobs                     - background uploads in flight
    relay_generation_start_seconds         - time until the generator stream opens

Usage:
    from tts_relay.core.metrics import metrics

    metrics.record_request("hit")
    metrics.record_lookup("stale")
    content, content_type = metrics.get_metrics_response()

Prometheus Scrape Config Example:
    scrape_configs:
      - job_name: 'tts-relay'
        static_configs:
          - targets: ['localhost:8000']
        metrics_path: '/metrics'
"""
from __future__ import annotations

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)


class RelayMetrics:
    """
    Relay metrics collection.

    Uses a private CollectorRegistry so several app instances (tests,
    the CLI) never collide on the default registry.
    """

    def __init__(self):
        self._registry = CollectorRegistry()

        self._requests_total = Counter(
            "relay_requests_total",
            "Total text-to-speech requests by outcome",
            ["outcome"],
            registry=self._registry,
        )
        self._cache_lookups = Counter(
            "relay_cache_lookups_total",
            "Cache lookups by result",
            ["result"],
            registry=self._registry,
        )
        self._audio_bytes = Counter(
            "relay_audio_bytes_total",
            "Audio bytes relayed to callers",
            ["source"],
            registry=self._registry,
        )
        self._persist_total = Counter(
            "relay_persist_total",
            "Background uploads by status",
            ["status"],
            registry=self._registry,
        )
        self._pending_jobs = Gauge(
            "relay_pending_jobs",
            "Background jobs currently running",
            registry=self._registry,
        )
        self._generation_start = Histogram(
            "relay_generation_start_seconds",
            "Time until the generation stream is open",
            buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
            registry=self._registry,
        )

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry

    def record_request(self, outcome: str) -> None:
        self._requests_total.labels(outcome=outcome).inc()

    def record_lookup(self, result: str) -> None:
        self._cache_lookups.labels(result=result).inc()

    def add_audio_bytes(self, source: str, count: int) -> None:
        if count > 0:
            self._audio_bytes.labels(source=source).inc(count)

    def record_persist(self, status: str) -> None:
        self._persist_total.labels(status=status).inc()

    def set_pending_jobs(self, count: int) -> None:
        self._pending_jobs.set(count)

    def observe_generation_start(self, seconds: float) -> None:
        self._generation_start.observe(seconds)

    def get_metrics_response(self) -> tuple[bytes, str]:
        """Return (content, content_type) for the /metrics endpoint."""
        return generate_latest(self._registry), CONTENT_TYPE_LATEST


# Process-wide instance: from tts_relay.core.metrics import metrics
metrics = RelayMetrics()
