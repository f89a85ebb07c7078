"""Application factory for the NexusComm webhook service.

Builds the endpoint registry, delivery log, dispatcher, publisher and
inbound verifier from a `WebhookConfig`, wires them into FastAPI routers,
and manages their lifecycle.

Example:
    >>> from nexuscomm.app import create_app
    >>> app = create_app()  # Load config from environment
    >>> # uvicorn nexuscomm.app:create_app --factory

Storage:
    With `NEXUSCOMM_WEBHOOK_REDIS_URL` set, endpoints and the delivery log
    live in Redis. If Redis is unreachable at startup the factory raises,
    unless `NEXUSCOMM_WEBHOOK_FALLBACK_ENABLED=true`, in which case it logs a
    warning and uses in-memory storage. Without a Redis URL everything is
    in-memory.

Health & Readiness Endpoints:
    GET /health: always 200 while the process runs
    GET /ready: 200 when Redis (if configured) answers, 503 otherwise
    GET /metrics: Prometheus exposition (only when metrics are enabled)
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from fastapi import FastAPI, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from nexuscomm import __version__
from nexuscomm.webhooks.config import WebhookConfig
from nexuscomm.webhooks.delivery_log import (
    DeliveryLogProtocol,
    MemoryDeliveryLog,
    RedisDeliveryLog,
)
from nexuscomm.webhooks.dispatcher import Dispatcher
from nexuscomm.webhooks.inbound import InboundHandler, InboundVerifier
from nexuscomm.webhooks.metrics import WebhookMetrics
from nexuscomm.webhooks.models import now_iso
from nexuscomm.webhooks.publisher import EventPublisher
from nexuscomm.webhooks.registry import EndpointRegistry
from nexuscomm.webhooks.router import (
    create_events_router,
    create_inbound_router,
    create_webhook_router,
)
from nexuscomm.webhooks.store import (
    EndpointStoreProtocol,
    MemoryEndpointStore,
    RedisEndpointStore,
)

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Awaitable, Callable

    import httpx

logger = logging.getLogger(__name__)

__all__ = ["HealthResponse", "build_storage", "check_redis_connection", "create_app"]

SERVICE_NAME = "NexusComm Webhooks"


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(description="Service status", examples=["ok"])
    service: str = Field(description="Service name")
    version: str = Field(description="Package version")
    timestamp: str = Field(description="ISO 8601 timestamp")
    pending_deliveries: int = Field(description="Inline delivery runs in progress")


async def check_redis_connection(redis_url: str) -> bool:
    """Check if Redis connection is healthy.

    Args:
        redis_url: Redis connection URL

    Returns:
        True if Redis is reachable, False otherwise
    """
    try:
        import redis.asyncio as redis

        client = redis.from_url(redis_url, decode_responses=True)
        await client.ping()
        await client.aclose()
        return True
    except Exception as e:
        logger.warning(f"Redis health check failed: {e}")
        return False


def build_storage(
    config: WebhookConfig,
) -> tuple[EndpointStoreProtocol, DeliveryLogProtocol]:
    """Create the endpoint store and delivery log for a configuration.

    Raises:
        RuntimeError: Redis configured but unreachable and fallback disabled
    """
    if not config.redis_url:
        logger.info("No Redis URL configured, using in-memory webhook storage")
        return MemoryEndpointStore(), MemoryDeliveryLog()

    import redis

    try:
        client = redis.Redis.from_url(config.redis_url)
        client.ping()
    except redis.RedisError as e:
        if not config.fallback_enabled:
            raise RuntimeError(f"Redis unavailable for webhook storage: {e}") from e
        logger.warning(
            f"Redis unavailable ({e}), falling back to in-memory webhook storage"
        )
        return MemoryEndpointStore(), MemoryDeliveryLog()

    logger.info("Using Redis webhook storage")
    return (
        RedisEndpointStore(client, prefix=config.key_prefix),
        RedisDeliveryLog(client, prefix=config.key_prefix),
    )


def create_app(
    config: WebhookConfig | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
    inbound_handler: InboundHandler | None = None,
    sleep: Callable[[float], Awaitable[None]] | None = None,
) -> FastAPI:
    """Create the FastAPI application.

    Components are stored in app.state for access by embedding code:
    - app.state.registry: EndpointRegistry
    - app.state.delivery_log: DeliveryLogProtocol
    - app.state.dispatcher: Dispatcher
    - app.state.publisher: EventPublisher
    - app.state.verifier: InboundVerifier
    - app.state.metrics: WebhookMetrics (disabled unless configured)

    Args:
        config: Engine configuration (loads from environment if None)
        transport: Optional httpx transport for outbound deliveries
        inbound_handler: Receives accepted inbound callbacks (logs by default)
        sleep: Optional backoff sleep (defaults to asyncio.sleep)

    Returns:
        Configured FastAPI application ready for uvicorn
    """
    if config is None:
        config = WebhookConfig()

    store, delivery_log = build_storage(config)
    metrics = WebhookMetrics(enabled=config.metrics_enabled)
    registry = EndpointRegistry(store, config)
    dispatcher = Dispatcher(
        delivery_log,
        config=config,
        registry=registry,
        metrics=metrics,
        transport=transport,
        sleep=sleep,
    )
    publisher = EventPublisher(registry, dispatcher)
    verifier = InboundVerifier(registry, handler=inbound_handler, metrics=metrics)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan context for startup and shutdown events."""
        logger.info(f"Starting {SERVICE_NAME} v{__version__}")

        arq_pool: Any = None
        if config.queue_backend == "arq":
            from arq import create_pool
            from arq.connections import RedisSettings

            arq_pool = await create_pool(
                RedisSettings.from_dsn(config.redis_url or "redis://localhost:6379")
            )
            publisher.set_arq_pool(arq_pool)
            logger.info("Webhook deliveries will be enqueued to arq")

        yield

        logger.info("Shutting down gracefully...")
        pending = publisher.pending
        if pending:
            logger.info(f"Cancelling {pending} in-flight webhook deliveries")
        await publisher.close()
        await dispatcher.close()

        if arq_pool is not None:
            publisher.set_arq_pool(None)
            await arq_pool.aclose()

    app = FastAPI(
        title=SERVICE_NAME,
        version=__version__,
        description="Outbound and inbound webhook delivery for NexusComm",
        lifespan=lifespan,
    )

    app.state.config = config
    app.state.registry = registry
    app.state.delivery_log = delivery_log
    app.state.dispatcher = dispatcher
    app.state.publisher = publisher
    app.state.verifier = verifier
    app.state.metrics = metrics

    app.include_router(
        create_webhook_router(registry, delivery_log, publisher, config),
        prefix="/api/webhooks",
    )
    app.include_router(create_events_router(publisher, config))
    app.include_router(create_inbound_router(verifier))

    @app.get("/health", tags=["monitoring"], response_model=HealthResponse)  # type: ignore[misc]
    async def health() -> HealthResponse:
        """Health check endpoint for monitoring systems."""
        return HealthResponse(
            status="ok",
            service=SERVICE_NAME,
            version=__version__,
            timestamp=now_iso(),
            pending_deliveries=publisher.pending,
        )

    @app.get("/ready", tags=["monitoring"], response_model=None)  # type: ignore[misc]
    async def readiness() -> dict[str, Any] | JSONResponse:
        """Readiness check: Redis must answer when it is configured."""
        checks: dict[str, bool] = {}
        if config.redis_url:
            checks["redis"] = await check_redis_connection(config.redis_url)

        if all(checks.values()):
            return {"status": "ready", "checks": checks, "timestamp": now_iso()}

        return JSONResponse(
            status_code=503,
            content={
                "status": "not_ready",
                "checks": checks,
                "message": "Redis connection failed",
                "timestamp": now_iso(),
            },
        )

    if metrics.enabled:

        @app.get("/metrics", tags=["monitoring"], include_in_schema=False)  # type: ignore[misc]
        async def metrics_endpoint() -> Response:
            body, content_type = metrics.render()
            return Response(content=body, media_type=content_type)

    logger.info(
        f"Webhook service configured: queue={config.queue_backend} "
        f"metrics={'on' if metrics.enabled else 'off'}"
    )
    return app
