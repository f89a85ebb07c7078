"""arq worker for durable webhook delivery.

Each job performs exactly one HTTP attempt. A failed attempt with retries
left enqueues the next attempt as a new job deferred by the backoff delay,
so no worker slot is held while waiting. Job IDs are
`{event_id}:{webhook_id}:{attempt}`, which lets arq reject duplicates.

Run with:
    nexuscomm worker
or:
    arq nexuscomm.webhooks.worker.WorkerSettings
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, ClassVar

from nexuscomm.webhooks.config import WebhookConfig
from nexuscomm.webhooks.delivery_log import RedisDeliveryLog
from nexuscomm.webhooks.dispatcher import Dispatcher
from nexuscomm.webhooks.models import DeliveryStatus, IntegrationEvent
from nexuscomm.webhooks.publisher import DELIVER_TASK_NAME, delivery_job_id
from nexuscomm.webhooks.registry import EndpointRegistry
from nexuscomm.webhooks.store import RedisEndpointStore

if TYPE_CHECKING:
    from collections.abc import Callable

    from arq import ArqRedis

logger = logging.getLogger(__name__)

__all__ = [
    "WorkerSettings",
    "create_worker_settings",
    "deliver_webhook_task",
]


async def deliver_webhook_task(
    ctx: dict[str, Any],
    webhook_id: str,
    user_id: str,
    event_json: str,
    attempt: int = 0,
) -> dict[str, Any]:
    """arq task for one delivery attempt.

    Enqueued by `EventPublisher` (attempt 0) and by itself for retries.

    Args:
        ctx: arq context holding the registry, dispatcher and config
        webhook_id: Target endpoint
        user_id: Owner of the endpoint
        event_json: Serialized `IntegrationEvent`
        attempt: 0-based attempt number

    Returns:
        Dict with the attempt outcome
    """
    registry: EndpointRegistry = ctx["registry"]
    dispatcher: Dispatcher = ctx["dispatcher"]
    metrics = ctx.get("metrics")

    event = IntegrationEvent.model_validate_json(event_json)

    endpoint = registry.get_record(webhook_id, user_id)
    if endpoint is None or not endpoint.is_active:
        reason = "webhook_not_found" if endpoint is None else "webhook_disabled"
        logger.info(f"Webhook {webhook_id} unavailable ({reason}), cancelling delivery")
        if attempt > 0 and metrics is not None:
            metrics.record_delivery(DeliveryStatus.CANCELLED.value)
        return {"status": DeliveryStatus.CANCELLED.value, "reason": reason}

    result = await dispatcher.attempt_once(endpoint, event, attempt)

    if result.is_successful:
        logger.info(
            f"Webhook delivered: {webhook_id} event={event.event_type} "
            f"status={result.response_status} attempt={attempt}"
        )
        if metrics is not None:
            metrics.record_delivery(DeliveryStatus.DELIVERED.value)
        return {
            "status": DeliveryStatus.DELIVERED.value,
            "status_code": result.response_status,
            "attempt": attempt,
        }

    if attempt >= endpoint.max_retries:
        logger.error(
            f"Webhook delivery failed after {attempt + 1} attempt(s): "
            f"{webhook_id} event={event.event_type} error={result.error_message}"
        )
        if metrics is not None:
            metrics.record_delivery(DeliveryStatus.FAILED.value)
        return {
            "status": DeliveryStatus.FAILED.value,
            "error": result.error_message,
            "attempt": attempt,
        }

    next_attempt = attempt + 1
    retry_delay = dispatcher.backoff_delay(attempt)

    redis: ArqRedis = ctx["redis"]
    await redis.enqueue_job(
        DELIVER_TASK_NAME,
        webhook_id,
        user_id,
        event_json,
        next_attempt,
        _job_id=delivery_job_id(event.id, webhook_id, next_attempt),
        _defer_by=retry_delay,
    )

    logger.warning(
        f"Webhook delivery scheduled for retry: {webhook_id} "
        f"attempt={next_attempt} delay={retry_delay:.1f}s error={result.error_message}"
    )

    return {
        "status": "retry_scheduled",
        "next_attempt": next_attempt,
        "retry_delay": retry_delay,
        "error": result.error_message,
    }


async def on_startup(ctx: dict[str, Any]) -> None:
    """arq worker startup hook.

    Builds the Redis-backed registry, delivery log and dispatcher.
    """
    import redis as redis_lib

    config: WebhookConfig = ctx.get("config") or WebhookConfig()
    ctx["config"] = config

    if "registry" not in ctx or "dispatcher" not in ctx:
        client = redis_lib.Redis.from_url(config.redis_url or "redis://localhost:6379")
        ctx["redis_client"] = client
        registry = EndpointRegistry(
            RedisEndpointStore(client, prefix=config.key_prefix), config
        )
        ctx["registry"] = registry
        ctx["dispatcher"] = Dispatcher(
            RedisDeliveryLog(client, prefix=config.key_prefix),
            config=config,
            registry=registry,
            metrics=ctx.get("metrics"),
        )

    logger.info("Webhook worker started")


async def on_shutdown(ctx: dict[str, Any]) -> None:
    """arq worker shutdown hook."""
    dispatcher: Dispatcher | None = ctx.get("dispatcher")
    if dispatcher:
        await dispatcher.close()

    client = ctx.get("redis_client")
    if client is not None:
        client.close()

    logger.info("Webhook worker stopped")


def create_worker_settings(config: WebhookConfig, metrics: Any | None = None) -> type:
    """Create arq worker settings class.

    Args:
        config: Webhook configuration
        metrics: Optional WebhookMetrics collector

    Returns:
        WorkerSettings class for arq
    """
    from arq.connections import RedisSettings

    class _WebhookWorkerSettings:
        """arq worker settings for webhook delivery."""

        functions: ClassVar[list[Callable[..., Any]]] = [deliver_webhook_task]

        on_startup = on_startup
        on_shutdown = on_shutdown

        redis_settings = RedisSettings.from_dsn(
            config.redis_url or "redis://localhost:6379"
        )

        max_jobs = config.max_concurrent_deliveries

        # One attempt per job; leave room past the longest allowed deadline
        job_timeout = 300 + 10
        max_tries = 1  # Retries are scheduled as new jobs

        ctx: ClassVar[dict[str, Any]] = {
            "config": config,
            "metrics": metrics,
        }

    return _WebhookWorkerSettings


# Standalone worker settings (for `arq nexuscomm.webhooks.worker.WorkerSettings`)
WorkerSettings = create_worker_settings(WebhookConfig())
