"""Signed webhook delivery with retries, using httpx.

A delivery run sends one event to one endpoint: it builds the envelope,
signs the canonical body, POSTs it, and retries failed attempts with
exponential backoff until the endpoint's retry ceiling. Every HTTP attempt
is appended to the delivery log. Failures are outcomes, never exceptions:
`deliver()` always returns a `DeliveryResult`.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from typing import TYPE_CHECKING

import httpx

from nexuscomm.webhooks.config import WebhookConfig
from nexuscomm.webhooks.errors import DuplicateAttemptError
from nexuscomm.webhooks.models import (
    DeliveryAttempt,
    DeliveryResult,
    DeliveryStatus,
    IntegrationEvent,
    WebhookEnvelope,
    WebhookRecord,
)
from nexuscomm.webhooks.signature import SIGNATURE_HEADER, canonical_bytes, sign_bytes
from nexuscomm.webhooks.store import generate_attempt_id

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from nexuscomm.webhooks.delivery_log import DeliveryLogProtocol
    from nexuscomm.webhooks.metrics import WebhookMetrics
    from nexuscomm.webhooks.registry import EndpointRegistry

logger = logging.getLogger(__name__)

__all__ = ["Dispatcher", "build_request"]


def build_request(
    endpoint: WebhookRecord, event: IntegrationEvent, user_agent: str
) -> tuple[bytes, dict[str, str]]:
    """Build the exact body and headers for delivering an event.

    The body is the canonical envelope serialization, so the signature in
    `X-Signature` covers the bytes on the wire.
    """
    body = canonical_bytes(WebhookEnvelope.from_event(event))
    headers = {
        "Content-Type": "application/json",
        "User-Agent": user_agent,
    }
    if endpoint.secret:
        headers[SIGNATURE_HEADER] = sign_bytes(endpoint.secret, body)
    return body, headers


class Dispatcher:
    """Delivers events to endpoints and records every attempt.

    Example:
        >>> dispatcher = Dispatcher(MemoryDeliveryLog(), config=WebhookConfig())
        >>> result = await dispatcher.deliver(endpoint, event)
        >>> result.status
        <DeliveryStatus.DELIVERED: 'delivered'>
        >>> await dispatcher.close()
    """

    def __init__(
        self,
        delivery_log: DeliveryLogProtocol,
        config: WebhookConfig | None = None,
        registry: EndpointRegistry | None = None,
        metrics: WebhookMetrics | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            delivery_log: Where attempts are appended
            config: Engine configuration (backoff, concurrency, User-Agent)
            registry: When given, pending retries stop once the endpoint is
                deleted or deactivated
            metrics: Optional Prometheus collector
            transport: Optional httpx transport (tests use httpx.MockTransport)
            sleep: Awaitable used for backoff (defaults to asyncio.sleep)
        """
        self._log = delivery_log
        self._config = config or WebhookConfig()
        self._registry = registry
        self._metrics = metrics
        self._transport = transport
        self._sleep = sleep or asyncio.sleep
        self._semaphore = asyncio.Semaphore(self._config.max_concurrent_deliveries)
        # One client per TLS verification mode; never shared across modes
        self._clients: dict[bool, httpx.AsyncClient] = {}

    async def _get_client(self, verify_ssl: bool) -> httpx.AsyncClient:
        """Get or create the HTTP client for a TLS verification mode."""
        client = self._clients.get(verify_ssl)
        if client is None:
            client = httpx.AsyncClient(
                verify=verify_ssl,
                transport=self._transport,
                follow_redirects=False,
            )
            self._clients[verify_ssl] = client
        return client

    async def close(self) -> None:
        """Close the HTTP clients."""
        clients = list(self._clients.values())
        self._clients.clear()
        for client in clients:
            await client.aclose()

    def backoff_delay(self, attempt_number: int) -> float:
        """Delay before retrying after `attempt_number` failed (0-based).

        `min(base * 2**attempt, max_backoff)` plus up to `jitter * delay` extra.
        """
        delay = min(
            self._config.backoff_base_seconds * (2**attempt_number),
            self._config.max_backoff_seconds,
        )
        if self._config.backoff_jitter > 0:
            delay += random.uniform(0, self._config.backoff_jitter * delay)
        return delay

    def _is_deliverable(self, endpoint: WebhookRecord) -> bool:
        if self._registry is None:
            return True
        return self._registry.is_deliverable(endpoint.id, endpoint.user_id)

    async def attempt_once(
        self,
        endpoint: WebhookRecord,
        event: IntegrationEvent,
        attempt_number: int,
    ) -> DeliveryAttempt:
        """Make a single HTTP attempt and log it.

        Used by the arq worker, which schedules each attempt as its own job.
        An event that cannot be serialized is logged as a failed attempt.
        """
        try:
            body, headers = build_request(endpoint, event, self._config.user_agent)
        except Exception as e:
            return self._serialization_failed(endpoint, event, attempt_number, e)
        return await self._send(endpoint, event, body, headers, attempt_number)

    def _serialization_failed(
        self,
        endpoint: WebhookRecord,
        event: IntegrationEvent,
        attempt_number: int,
        exc: Exception,
    ) -> DeliveryAttempt:
        logger.exception(f"Cannot serialize event {event.id} for webhook {endpoint.id}: {exc}")
        return self._finish(
            endpoint,
            event,
            payload="",
            attempt_number=attempt_number,
            status_code=None,
            duration=0.0,
            error=f"Serialization error: {type(exc).__name__}: {exc}",
        )

    async def _send(
        self,
        endpoint: WebhookRecord,
        event: IntegrationEvent,
        body: bytes,
        headers: dict[str, str],
        attempt_number: int,
    ) -> DeliveryAttempt:
        start_time = time.monotonic()
        status_code: int | None = None
        error: str | None = None

        try:
            async with self._semaphore:
                client = await self._get_client(endpoint.verify_ssl)
                response = await client.post(
                    endpoint.url,
                    content=body,
                    headers=headers,
                    timeout=float(endpoint.timeout_seconds),
                )
            status_code = response.status_code
            if not 200 <= status_code < 300:
                error = f"HTTP {status_code}"

        except httpx.TimeoutException as e:
            error = f"Timeout after {endpoint.timeout_seconds}s: {e}"

        except httpx.ConnectError as e:
            error = f"Connection error: {e}"

        except httpx.HTTPError as e:
            error = f"HTTP error: {e}"

        except Exception as e:
            logger.exception(f"Unexpected error delivering to webhook {endpoint.id}: {e}")
            error = f"Unexpected error: {type(e).__name__}: {e}"

        return self._finish(
            endpoint,
            event,
            payload=body.decode("utf-8"),
            attempt_number=attempt_number,
            status_code=status_code,
            duration=time.monotonic() - start_time,
            error=error,
        )

    def _finish(
        self,
        endpoint: WebhookRecord,
        event: IntegrationEvent,
        payload: str,
        attempt_number: int,
        status_code: int | None,
        duration: float,
        error: str | None,
    ) -> DeliveryAttempt:
        attempt = DeliveryAttempt(
            id=generate_attempt_id(),
            webhook_id=endpoint.id,
            user_id=endpoint.user_id,
            event_id=event.id,
            event_type=event.event_type,
            payload=payload,
            attempt_number=attempt_number,
            response_status=status_code,
            response_time_ms=duration * 1000,
            is_successful=error is None,
            error_message=error,
        )
        self._record(attempt)

        if self._metrics is not None:
            self._metrics.record_attempt(event.event_type, attempt.is_successful, duration)
        return attempt

    def _record(self, attempt: DeliveryAttempt) -> None:
        try:
            self._log.append(attempt)
        except DuplicateAttemptError as e:
            logger.error(f"Delivery log rejected attempt: {e}")
        except Exception as e:
            logger.exception(f"Failed to write delivery log for {attempt.webhook_id}: {e}")

    async def deliver(
        self,
        endpoint: WebhookRecord,
        event: IntegrationEvent,
        should_continue: Callable[[], bool] | None = None,
    ) -> DeliveryResult:
        """Run a full delivery: attempts 0..max_retries until one succeeds.

        Args:
            endpoint: Target endpoint (read only)
            event: Event to deliver
            should_continue: Checked before every retry; returning False
                cancels the run. Defaults to "endpoint still exists and is
                active" when a registry is configured.

        Returns:
            DeliveryResult with status delivered, failed or cancelled
        """
        check = should_continue or (lambda: self._is_deliverable(endpoint))
        try:
            body, headers = build_request(endpoint, event, self._config.user_agent)
        except Exception as e:
            # Retrying cannot help; log one failed attempt and stop
            attempt = self._serialization_failed(endpoint, event, 0, e)
            if self._metrics is not None:
                self._metrics.record_delivery(DeliveryStatus.FAILED.value)
            return DeliveryResult(
                status=DeliveryStatus.FAILED,
                webhook_id=endpoint.id,
                event_id=event.id,
                attempts=1,
                last_error=attempt.error_message,
            )

        attempts = 0
        last_error: str | None = None
        status = DeliveryStatus.FAILED

        for attempt_number in range(endpoint.max_retries + 1):
            if attempt_number > 0 and not check():
                logger.info(
                    f"Webhook {endpoint.id} removed or disabled, cancelling delivery "
                    f"of event {event.id} after {attempts} attempt(s)"
                )
                status = DeliveryStatus.CANCELLED
                break

            attempt = await self._send(endpoint, event, body, headers, attempt_number)
            attempts += 1

            if attempt.is_successful:
                logger.info(
                    f"Webhook delivered: {endpoint.id} event={event.event_type} "
                    f"status={attempt.response_status} attempt={attempt_number} "
                    f"duration={attempt.response_time_ms:.0f}ms"
                )
                status = DeliveryStatus.DELIVERED
                last_error = None
                break

            last_error = attempt.error_message
            if attempt_number >= endpoint.max_retries:
                logger.error(
                    f"Webhook delivery failed after {attempts} attempt(s): "
                    f"{endpoint.id} event={event.event_type} error={last_error}"
                )
                break

            delay = self.backoff_delay(attempt_number)
            logger.warning(
                f"Webhook delivery attempt {attempt_number} failed: {endpoint.id} "
                f"error={last_error}, retrying in {delay:.1f}s"
            )
            await self._sleep(delay)

        if self._metrics is not None:
            self._metrics.record_delivery(status.value)

        return DeliveryResult(
            status=status,
            webhook_id=endpoint.id,
            event_id=event.id,
            attempts=attempts,
            last_error=last_error,
        )
