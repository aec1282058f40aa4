"""Prometheus metrics for the delivery pipeline.

Counters live on an injected `CollectorRegistry` rather than the process-wide
default, so every dispatcher/consumer pair (and every test) gets its own.

Usage:
    registry = CollectorRegistry()
    metrics = DeliveryMetrics(registry)
    metrics.direct_sent("email", "success")
"""

from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter


class DeliveryMetrics:
    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or CollectorRegistry()
        self._direct = Counter(
            "notifications_direct_total",
            "Direct (synchronous) delivery attempts by kind and result",
            labelnames=["kind", "result"],
            registry=self.registry,
        )
        self._fallback_enqueued = Counter(
            "notifications_fallback_enqueued_total",
            "Notifications queued after a failed direct attempt",
            labelnames=["kind"],
            registry=self.registry,
        )
        self._reprocessed = Counter(
            "notifications_reprocessed_total",
            "Queued notification delivery attempts by kind and result",
            labelnames=["kind", "result"],
            registry=self.registry,
        )
        self._retries_scheduled = Counter(
            "notifications_retries_scheduled_total",
            "Retries scheduled by the fallback consumer",
            registry=self.registry,
        )
        self._dead_lettered = Counter(
            "notifications_dead_lettered_total",
            "Messages routed to the dead-letter topic",
            labelnames=["reason"],
            registry=self.registry,
        )
        self._committed = Counter(
            "notifications_committed_total",
            "Offsets committed by the fallback consumer",
            registry=self.registry,
        )

    def direct_sent(self, kind: str, result: str) -> None:
        self._direct.labels(kind=kind, result=result).inc()

    def fallback_enqueued(self, kind: str) -> None:
        self._fallback_enqueued.labels(kind=kind).inc()

    def reprocessed(self, kind: str, result: str) -> None:
        self._reprocessed.labels(kind=kind, result=result).inc()

    def retry_scheduled(self) -> None:
        self._retries_scheduled.inc()

    def dead_lettered(self, reason: str) -> None:
        self._dead_lettered.labels(reason=reason).inc()

    def committed(self) -> None:
        self._committed.inc()
