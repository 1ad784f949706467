"""Prometheus instrumentation for the keeper watch."""

from __future__ import annotations

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Counter, Gauge, generate_latest, start_http_server


class WatchMetrics:
    """Per-instance metric set bound to its own registry."""

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or CollectorRegistry()
        self.blocks_processed = Counter(
            "keeper_watch_blocks_processed_total",
            "Blocks reconciled against tracked jobs",
            registry=self.registry,
        )
        self.blocks_skipped = Counter(
            "keeper_watch_blocks_skipped_total",
            "Blocks skipped because no leader network was active",
            registry=self.registry,
        )
        self.chain_errors = Counter(
            "keeper_watch_chain_errors_total",
            "Failed chain reads",
            labelnames=("stage",),
            registry=self.registry,
        )
        self.alerts_dispatched = Counter(
            "keeper_watch_alerts_dispatched_total",
            "Unworked job alerts delivered",
            registry=self.registry,
        )
        self.alerts_suppressed = Counter(
            "keeper_watch_alerts_suppressed_total",
            "Unworked job alerts silenced by a benign reason",
            registry=self.registry,
        )
        self.alert_failures = Counter(
            "keeper_watch_alert_failures_total",
            "Unworked job alerts that could not be delivered",
            registry=self.registry,
        )
        self.jobs_evicted = Counter(
            "keeper_watch_jobs_evicted_total",
            "Job records removed by the janitor",
            registry=self.registry,
        )
        self.tracked_jobs = Gauge(
            "keeper_watch_tracked_jobs",
            "Jobs currently held in the state store",
            registry=self.registry,
        )

    def render(self) -> bytes:
        return generate_latest(self.registry)

    @property
    def content_type(self) -> str:
        return CONTENT_TYPE_LATEST

    def serve(self, port: int, addr: str = "0.0.0.0") -> None:
        """Expose the registry over HTTP on ``port``."""

        start_http_server(port, addr=addr, registry=self.registry)


__all__ = ["WatchMetrics"]
