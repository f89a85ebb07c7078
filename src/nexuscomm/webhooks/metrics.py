"""Prometheus metrics for webhook delivery and inbound verification.

Each `WebhookMetrics` owns its own `CollectorRegistry`, so several engines
(or test cases) in one process never collide on metric names. A disabled
collector records nothing.

Metrics collected:
    - nexuscomm_webhook_attempts_total: HTTP attempts by event type and outcome
    - nexuscomm_webhook_attempt_latency_seconds: Attempt latency histogram
    - nexuscomm_webhook_deliveries_total: Finished delivery runs by status
    - nexuscomm_webhook_inbound_total: Inbound verifications by result

Example:
    >>> metrics = WebhookMetrics()
    >>> metrics.record_attempt("contact_created", success=True, latency=0.12)
    >>> metrics.record_delivery("delivered")
    >>> body, content_type = metrics.render()
"""

from __future__ import annotations

import logging

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

logger = logging.getLogger(__name__)

__all__ = ["WebhookMetrics"]


class WebhookMetrics:
    """Collects Prometheus metrics for the webhook engine."""

    def __init__(self, enabled: bool = True) -> None:
        self._enabled = enabled
        self.registry = CollectorRegistry()

        self.attempts = Counter(
            "nexuscomm_webhook_attempts_total",
            "Webhook HTTP attempts",
            ["event_type", "outcome"],
            registry=self.registry,
        )
        self.attempt_latency = Histogram(
            "nexuscomm_webhook_attempt_latency_seconds",
            "Webhook HTTP attempt latency in seconds",
            buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
            registry=self.registry,
        )
        self.deliveries = Counter(
            "nexuscomm_webhook_deliveries_total",
            "Finished webhook delivery runs",
            ["status"],
            registry=self.registry,
        )
        self.inbound = Counter(
            "nexuscomm_webhook_inbound_total",
            "Inbound webhook verifications",
            ["result"],
            registry=self.registry,
        )

    @property
    def enabled(self) -> bool:
        return self._enabled

    def record_attempt(self, event_type: str, success: bool, latency: float) -> None:
        """Record one HTTP attempt.

        Args:
            event_type: Event type being delivered
            success: Whether the target answered 2xx
            latency: Seconds until response or error
        """
        if not self._enabled:
            return
        self.attempts.labels(
            event_type=event_type,
            outcome="success" if success else "failure",
        ).inc()
        self.attempt_latency.observe(latency)

    def record_delivery(self, status: str) -> None:
        if not self._enabled:
            return
        self.deliveries.labels(status=status).inc()

    def record_inbound(self, result: str) -> None:
        """Record an inbound verification (accepted, not_found, forbidden, invalid)."""
        if not self._enabled:
            return
        self.inbound.labels(result=result).inc()

    def render(self) -> tuple[bytes, str]:
        """Exposition body and content type for a /metrics response."""
        return generate_latest(self.registry), CONTENT_TYPE_LATEST
