"""Pydantic models for the webhook engine.

Provides data models for endpoint registration, published events, the
signed wire envelope, and the append-only delivery log.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def now_iso() -> str:
    """Get current UTC timestamp in ISO 8601 format."""
    return utc_now().isoformat()


def to_iso(value: datetime) -> str:
    """Format a datetime as ISO 8601 UTC with millisecond precision.

    Naive datetimes are taken to be UTC.

    Example:
        >>> to_iso(datetime(2025, 1, 1, tzinfo=timezone.utc))
        '2025-01-01T00:00:00.000Z'
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return (
        value.astimezone(timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


class DeliveryStatus(str, Enum):
    """Terminal state of one delivery (one event to one endpoint)."""

    DELIVERED = "delivered"
    FAILED = "failed"
    CANCELLED = "cancelled"


# =============================================================================
# Request/Response Models (API)
# =============================================================================


class WebhookCreateRequest(BaseModel):
    """Request body for endpoint registration.

    Example:
        >>> request = WebhookCreateRequest(
        ...     url="https://crm.example.com/hooks/nexuscomm",
        ...     events=["contact_created", "message_sent"],
        ... )
    """

    name: str | None = Field(
        default=None,
        description="Human-readable label for the endpoint",
        examples=["CRM sync"],
    )
    url: str = Field(
        description="URL that receives webhook deliveries",
        examples=["https://crm.example.com/hooks/nexuscomm"],
    )
    events: list[str] = Field(
        description="Event types to subscribe to",
        examples=[["contact_created", "message_sent"]],
    )
    secret: str | None = Field(
        default=None,
        description="Signing secret (generated when omitted)",
    )
    verify_ssl: bool | None = Field(
        default=None,
        description="Verify the target's TLS certificate",
    )
    max_retries: int | None = Field(
        default=None,
        description="Retries after the first failed attempt",
        ge=0,
        le=10,
    )
    timeout_seconds: int | None = Field(
        default=None,
        description="Per-attempt request deadline in seconds",
        gt=0,
        le=300,
    )


class WebhookUpdateRequest(BaseModel):
    """Request body for updating an endpoint.

    All fields are optional; only provided fields are updated. The secret is
    not updatable here; use the explicit rotation operation.
    """

    name: str | None = Field(default=None, description="New label")
    url: str | None = Field(default=None, description="New target URL")
    events: list[str] | None = Field(
        default=None,
        description="New list of event types (replaces existing)",
    )
    is_active: bool | None = Field(
        default=None,
        description="Enable or disable the endpoint",
    )
    verify_ssl: bool | None = Field(default=None, description="Verify TLS certificates")
    max_retries: int | None = Field(default=None, ge=0, le=10)
    timeout_seconds: int | None = Field(default=None, gt=0, le=300)


class WebhookResponse(BaseModel):
    """Endpoint details returned by read/list operations.

    Note:
        The secret is never included; `has_secret` tells callers whether
        deliveries are signed.
    """

    id: str = Field(description="Unique endpoint identifier", examples=["wh_abc123"])
    name: str | None = Field(default=None, description="Human-readable label")
    url: str = Field(description="URL receiving webhook deliveries")
    events: list[str] = Field(description="Subscribed event types")
    is_active: bool = Field(description="Whether the endpoint receives deliveries")
    verify_ssl: bool = Field(description="Whether TLS certificates are verified")
    max_retries: int = Field(description="Retries after the first failed attempt")
    timeout_seconds: int = Field(description="Per-attempt request deadline")
    has_secret: bool = Field(description="Whether deliveries are signed")
    created_at: str = Field(description="ISO 8601 creation timestamp")
    updated_at: str = Field(description="ISO 8601 last-update timestamp")


class WebhookCreatedResponse(WebhookResponse):
    """Returned once on creation or rotation; carries the plaintext secret."""

    secret: str | None = Field(
        default=None,
        description="Signing secret; store it now, it is not shown again",
    )


# =============================================================================
# Events and Wire Envelope
# =============================================================================


class IntegrationEvent(BaseModel):
    """A platform fact to publish to subscribed endpoints.

    Immutable once created.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Unique event identifier")
    user_id: str = Field(description="User who owns the event")
    event_type: str = Field(description="Event type, e.g. contact_created")
    payload: dict[str, Any] = Field(default_factory=dict, description="Event data")
    created_at: datetime = Field(default_factory=utc_now)


class WebhookEnvelope(BaseModel):
    """The `{event, timestamp, data, userId}` object that is signed and sent."""

    model_config = ConfigDict(populate_by_name=True)

    event: str
    timestamp: str
    data: dict[str, Any]
    user_id: str = Field(alias="userId")

    @classmethod
    def from_event(cls, event: IntegrationEvent) -> WebhookEnvelope:
        return cls(
            event=event.event_type,
            timestamp=to_iso(event.created_at),
            data=event.payload,
            user_id=event.user_id,
        )

    def to_wire(self) -> dict[str, Any]:
        """Dict with the wire field names (`userId`)."""
        return self.model_dump(by_alias=True)


# =============================================================================
# Internal Models (Storage)
# =============================================================================


class WebhookRecord(BaseModel):
    """Internal endpoint record, including owner and secret.

    Never returned from the API directly; use `to_response()`.
    """

    id: str
    user_id: str
    name: str | None = None
    url: str
    events: list[str]
    secret: str | None = None
    is_active: bool = True
    verify_ssl: bool = True
    max_retries: int = Field(default=3, ge=0)
    timeout_seconds: int = Field(default=30, gt=0)
    created_at: str
    updated_at: str

    def subscribes_to(self, event_type: str) -> bool:
        """Check if this endpoint is active and subscribed to the event type."""
        return self.is_active and event_type in self.events

    def to_response(self) -> WebhookResponse:
        """Convert to API response (excludes the secret)."""
        return WebhookResponse(
            id=self.id,
            name=self.name,
            url=self.url,
            events=list(self.events),
            is_active=self.is_active,
            verify_ssl=self.verify_ssl,
            max_retries=self.max_retries,
            timeout_seconds=self.timeout_seconds,
            has_secret=bool(self.secret),
            created_at=self.created_at,
            updated_at=self.updated_at,
        )

    def to_created_response(self) -> WebhookCreatedResponse:
        return WebhookCreatedResponse(
            **self.to_response().model_dump(),
            secret=self.secret,
        )


class DeliveryAttempt(BaseModel):
    """Record of one HTTP attempt for one (event, endpoint) pair.

    Append-only: a delivery that fails and is retried produces one record per
    attempt.
    """

    id: str = Field(description="Unique attempt identifier")
    webhook_id: str = Field(description="ID of the target endpoint")
    user_id: str = Field(description="Owner of the endpoint")
    event_id: str = Field(description="ID of the event being delivered")
    event_type: str = Field(description="Type of the event")
    payload: str = Field(description="Exact request body sent")
    attempt_number: int = Field(description="0-based attempt number", ge=0)
    response_status: int | None = Field(default=None, description="HTTP status code")
    response_time_ms: float | None = Field(
        default=None,
        description="Time until the response (or error) in milliseconds",
    )
    is_successful: bool = Field(description="Whether the target answered with 2xx")
    error_message: str | None = Field(default=None, description="Failure detail")
    created_at: datetime = Field(default_factory=utc_now)


class DeliveryResult(BaseModel):
    """Outcome of one Dispatcher run."""

    status: DeliveryStatus
    webhook_id: str
    event_id: str
    attempts: int = Field(description="Number of HTTP attempts made", ge=0)
    last_error: str | None = None


# =============================================================================
# Inbound
# =============================================================================


class InboundResult(BaseModel):
    """A verified inbound callback, classified for downstream processing."""

    user_id: str
    webhook_id: str
    event_type: str = Field(description="`event` field, else `action`, else unknown_event")
    data: Any = Field(description="Payload handed to event processing")
    signed: bool = Field(description="Whether a signature was checked")
