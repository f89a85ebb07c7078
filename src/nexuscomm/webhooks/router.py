"""FastAPI routers for the webhook engine.

Three routers:
    - management (`create_webhook_router`): endpoint CRUD, secret rotation,
      delivery history and test events; mounted under /api/webhooks
    - events (`create_events_router`): publish an integration event
    - inbound (`create_inbound_router`): the public callback URL
      /webhooks/{user_id}/{webhook_id}

Management and event routes act on behalf of the calling user, taken from
`request.state.user_id` (set by the platform's auth middleware). The
`X-User-Id` header is only a fallback, and only when `trust_user_header`
is configured.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import TYPE_CHECKING, Any, NoReturn

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, ConfigDict, Field

from nexuscomm.webhooks.config import WebhookConfig
from nexuscomm.webhooks.delivery_log import (
    DEFAULT_LOG_LIMIT,
    MAX_LOG_LIMIT,
    default_window_start,
)
from nexuscomm.webhooks.errors import WebhookError, WebhookErrorCode
from nexuscomm.webhooks.models import (
    DeliveryAttempt,
    IntegrationEvent,
    WebhookCreatedResponse,
    WebhookCreateRequest,
    WebhookResponse,
    WebhookUpdateRequest,
    now_iso,
)
from nexuscomm.webhooks.signature import SIGNATURE_HEADER
from nexuscomm.webhooks.store import generate_event_id

if TYPE_CHECKING:
    from nexuscomm.webhooks.delivery_log import DeliveryLogProtocol
    from nexuscomm.webhooks.inbound import InboundVerifier
    from nexuscomm.webhooks.publisher import EventPublisher
    from nexuscomm.webhooks.registry import EndpointRegistry

logger = logging.getLogger(__name__)

__all__ = [
    "TEST_EVENT_TYPE",
    "DeleteResponse",
    "DeliveryListResponse",
    "EventCreateRequest",
    "InboundAcceptedResponse",
    "PublishResponse",
    "RotateSecretRequest",
    "TestWebhookResponse",
    "WebhookListResponse",
    "create_events_router",
    "create_inbound_router",
    "create_user_id_dependency",
    "create_webhook_router",
]

TEST_EVENT_TYPE = "test_event"


# =============================================================================
# Request/Response Models
# =============================================================================


class WebhookListResponse(BaseModel):
    """Response for listing webhooks."""

    webhooks: list[WebhookResponse] = Field(description="List of webhooks")
    count: int = Field(description="Total number of webhooks")


class DeliveryListResponse(BaseModel):
    """Response for listing delivery attempts."""

    deliveries: list[DeliveryAttempt] = Field(description="Attempts, newest first")
    count: int = Field(description="Number of records returned")


class TestWebhookResponse(BaseModel):
    """Response for the test event endpoint."""

    success: bool = Field(description="Whether a delivery run was started")
    event_id: str = Field(description="ID of the test event")
    message: str = Field(description="Status message")


class DeleteResponse(BaseModel):
    """Response for delete endpoint."""

    success: bool = Field(description="Whether deletion was successful")
    message: str = Field(description="Status message")


class RotateSecretRequest(BaseModel):
    """Optional body for secret rotation; a secret is generated when omitted."""

    secret: str | None = Field(default=None, description="New signing secret")


class EventCreateRequest(BaseModel):
    """Request body for publishing an integration event."""

    model_config = ConfigDict(populate_by_name=True)

    event_type: str = Field(
        alias="eventType",
        min_length=1,
        description="Event type, e.g. contact_created",
    )
    payload: dict[str, Any] = Field(default_factory=dict, description="Event data")


class PublishResponse(BaseModel):
    """Response for event publication."""

    event_id: str = Field(description="ID of the created event")
    event_type: str = Field(description="Type of the created event")
    webhook_ids: list[str] = Field(description="Endpoints the event was fanned out to")
    count: int = Field(description="Number of delivery runs started")


class InboundAcceptedResponse(BaseModel):
    """Response for an accepted inbound callback."""

    success: bool = True
    event: str = Field(description="Classified event type")


# =============================================================================
# Shared helpers
# =============================================================================


def create_user_id_dependency(
    trust_header: bool = False,
) -> Callable[[Request], Awaitable[str]]:
    """Create the dependency that resolves the calling user.

    The identity set by the platform's auth middleware on
    `request.state.user_id` always wins. The `X-User-Id` header is only
    read when no such identity exists and `trust_header` is enabled, for
    deployments where an authenticating proxy sets it.

    Args:
        trust_header: Accept `X-User-Id` as the identity

    Returns:
        Async FastAPI dependency returning the user ID (401 without one)
    """

    async def get_user_id(request: Request) -> str:
        user_id = getattr(request.state, "user_id", None)
        if user_id:
            return str(user_id)

        if trust_header:
            header_user_id = request.headers.get("X-User-Id")
            if header_user_id:
                return str(header_user_id)

        raise HTTPException(
            status_code=401,
            detail={"code": "E010", "message": "Authenticated user required"},
        )

    return get_user_id


def _raise_http(error: WebhookError) -> NoReturn:
    raise HTTPException(status_code=error.http_status, detail=error.to_detail()) from error


def _not_found(webhook_id: str) -> HTTPException:
    return HTTPException(
        status_code=404,
        detail={
            "code": WebhookErrorCode.WEBHOOK_NOT_FOUND.value,
            "message": f"Webhook {webhook_id} not found",
        },
    )


# =============================================================================
# Management Router
# =============================================================================


def create_webhook_router(
    registry: EndpointRegistry,
    delivery_log: DeliveryLogProtocol,
    publisher: EventPublisher | None = None,
    config: WebhookConfig | None = None,
) -> APIRouter:
    """Create FastAPI router for webhook management.

    Args:
        registry: Endpoint registry
        delivery_log: Delivery log for history queries
        publisher: Event publisher for test events (test endpoint returns 503 without it)
        config: Engine configuration (delivery log window, identity header)

    Returns:
        Configured APIRouter
    """
    router = APIRouter(tags=["webhooks"])
    config = config or WebhookConfig()
    get_user_id = create_user_id_dependency(config.trust_user_header)

    @router.post(  # type: ignore[misc]
        "",
        response_model=WebhookCreatedResponse,
        status_code=201,
        summary="Register a new webhook",
        responses={
            201: {"description": "Webhook created; the secret is only shown here"},
            400: {"description": "Invalid URL, events or secret"},
            401: {"description": "Authentication required"},
        },
    )
    async def create_webhook(
        request: WebhookCreateRequest,
        user_id: str = Depends(get_user_id),
    ) -> WebhookCreatedResponse:
        """Register a new webhook endpoint for the calling user."""
        try:
            return registry.create(user_id, request)
        except WebhookError as e:
            _raise_http(e)

    @router.get(  # type: ignore[misc]
        "",
        response_model=WebhookListResponse,
        summary="List all webhooks",
    )
    async def list_webhooks(
        user_id: str = Depends(get_user_id),
    ) -> WebhookListResponse:
        webhooks = registry.list_for_user(user_id)
        return WebhookListResponse(webhooks=webhooks, count=len(webhooks))

    @router.get(  # type: ignore[misc]
        "/{webhook_id}",
        response_model=WebhookResponse,
        summary="Get webhook details",
        responses={404: {"description": "Webhook not found"}},
    )
    async def get_webhook(
        webhook_id: str,
        user_id: str = Depends(get_user_id),
    ) -> WebhookResponse:
        webhook = registry.get(webhook_id, user_id)
        if webhook is None:
            raise _not_found(webhook_id)
        return webhook

    @router.patch(  # type: ignore[misc]
        "/{webhook_id}",
        response_model=WebhookResponse,
        summary="Update webhook",
        responses={
            400: {"description": "Invalid URL or events"},
            404: {"description": "Webhook not found"},
        },
    )
    async def update_webhook(
        webhook_id: str,
        request: WebhookUpdateRequest,
        user_id: str = Depends(get_user_id),
    ) -> WebhookResponse:
        """Update a webhook.

        Only provided fields are updated. Use rotate-secret to change the secret.
        """
        try:
            return registry.update(webhook_id, user_id, request)
        except WebhookError as e:
            _raise_http(e)

    @router.delete(  # type: ignore[misc]
        "/{webhook_id}",
        response_model=DeleteResponse,
        summary="Delete webhook",
        responses={404: {"description": "Webhook not found"}},
    )
    async def delete_webhook(
        webhook_id: str,
        user_id: str = Depends(get_user_id),
    ) -> DeleteResponse:
        """Delete a webhook.

        Pending retries for this webhook stop; delivery history is kept.
        """
        try:
            registry.delete(webhook_id, user_id)
        except WebhookError as e:
            _raise_http(e)
        return DeleteResponse(success=True, message=f"Webhook {webhook_id} deleted")

    @router.post(  # type: ignore[misc]
        "/{webhook_id}/rotate-secret",
        response_model=WebhookCreatedResponse,
        summary="Rotate webhook secret",
        responses={
            400: {"description": "Supplied secret too short"},
            404: {"description": "Webhook not found"},
        },
    )
    async def rotate_secret(
        webhook_id: str,
        request: RotateSecretRequest | None = None,
        user_id: str = Depends(get_user_id),
    ) -> WebhookCreatedResponse:
        try:
            return registry.rotate_secret(
                webhook_id, user_id, request.secret if request else None
            )
        except WebhookError as e:
            _raise_http(e)

    @router.get(  # type: ignore[misc]
        "/{webhook_id}/deliveries",
        response_model=DeliveryListResponse,
        summary="Get delivery history",
        responses={404: {"description": "Webhook not found"}},
    )
    async def get_deliveries(
        webhook_id: str,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int = Query(default=DEFAULT_LOG_LIMIT, ge=1, le=MAX_LOG_LIMIT),
        user_id: str = Depends(get_user_id),
    ) -> DeliveryListResponse:
        """Get delivery attempts for a webhook, newest first.

        Defaults to the last `log_window_days` days.
        """
        if registry.get(webhook_id, user_id) is None:
            raise _not_found(webhook_id)

        if since is None:
            since = default_window_start(config.log_window_days)

        deliveries = delivery_log.list_for_endpoint(
            webhook_id,
            user_id=user_id,
            since=since,
            until=until,
            limit=limit,
        )
        return DeliveryListResponse(deliveries=deliveries, count=len(deliveries))

    @router.post(  # type: ignore[misc]
        "/{webhook_id}/test",
        response_model=TestWebhookResponse,
        status_code=202,
        summary="Send test event",
        responses={
            202: {"description": "Test delivery started"},
            404: {"description": "Webhook not found"},
            503: {"description": "Webhook delivery not available"},
        },
    )
    async def test_webhook(
        webhook_id: str,
        user_id: str = Depends(get_user_id),
    ) -> TestWebhookResponse:
        """Send a test event to the webhook.

        Starts one delivery run in the background; check the delivery
        history for the outcome.
        """
        endpoint = registry.get_record(webhook_id, user_id)
        if endpoint is None:
            raise _not_found(webhook_id)

        if publisher is None:
            raise HTTPException(
                status_code=503,
                detail={
                    "code": "E900",
                    "message": "Webhook delivery service not available",
                },
            )

        event = IntegrationEvent(
            id=generate_event_id(),
            user_id=user_id,
            event_type=TEST_EVENT_TYPE,
            payload={
                "message": "This is a test event",
                "timestamp": now_iso(),
                "webhookId": webhook_id,
            },
        )

        started = await publisher.dispatch_to(endpoint, event)
        return TestWebhookResponse(
            success=started,
            event_id=event.id,
            message=(
                "Test event dispatched" if started else "Test event was not dispatched"
            ),
        )

    return router


# =============================================================================
# Events Router
# =============================================================================


def create_events_router(
    publisher: EventPublisher, config: WebhookConfig | None = None
) -> APIRouter:
    """Create the router that publishes integration events."""
    router = APIRouter(tags=["events"])
    config = config or WebhookConfig()
    get_user_id = create_user_id_dependency(config.trust_user_header)

    @router.post(  # type: ignore[misc]
        "/api/events",
        response_model=PublishResponse,
        status_code=201,
        summary="Publish an integration event",
    )
    async def create_event(
        request: EventCreateRequest,
        user_id: str = Depends(get_user_id),
    ) -> PublishResponse:
        """Create an event and fan it out to every subscribed webhook."""
        event, webhook_ids = await publisher.create_event(
            user_id, request.event_type, request.payload
        )
        return PublishResponse(
            event_id=event.id,
            event_type=event.event_type,
            webhook_ids=webhook_ids,
            count=len(webhook_ids),
        )

    return router


# =============================================================================
# Inbound Router
# =============================================================================


def create_inbound_router(verifier: InboundVerifier) -> APIRouter:
    """Create the public router receiving callbacks from external services."""
    router = APIRouter(tags=["inbound"])

    @router.post(  # type: ignore[misc]
        "/webhooks/{user_id}/{webhook_id}",
        response_model=InboundAcceptedResponse,
        summary="Receive an inbound webhook",
        responses={
            200: {"description": "Callback accepted"},
            400: {"description": "Payload is not a JSON object"},
            403: {"description": "Signature missing or invalid"},
            404: {"description": "Webhook not found"},
        },
    )
    async def receive_webhook(
        user_id: str,
        webhook_id: str,
        request: Request,
    ) -> InboundAcceptedResponse:
        body = await request.body()
        try:
            result = await verifier.verify_inbound(
                user_id,
                webhook_id,
                body,
                request.headers.get(SIGNATURE_HEADER),
            )
        except WebhookError as e:
            _raise_http(e)
        return InboundAcceptedResponse(event=result.event_type)

    return router
