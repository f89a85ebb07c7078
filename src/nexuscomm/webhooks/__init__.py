"""Webhook engine for NexusComm integrations.

Provides endpoint registration, HMAC-SHA256 signed delivery with
exponential backoff retries, an append-only delivery log, event fan-out,
and signature verification for inbound callbacks.

Example:
    >>> from nexuscomm.webhooks import EndpointRegistry, WebhookCreateRequest, sign, verify
    >>> registry = EndpointRegistry()
    >>> created = registry.create(
    ...     "user_1",
    ...     WebhookCreateRequest(url="https://crm.example.com/hook", events=["contact_created"]),
    ... )
    >>> envelope = {"event": "contact_created", "timestamp": "2025-01-01T00:00:00.000Z",
    ...             "data": {"id": "c_1"}, "userId": "user_1"}
    >>> verify(created.secret, envelope, sign(created.secret, envelope))
    True
"""

from nexuscomm.webhooks.config import DEFAULT_USER_AGENT, WebhookConfig
from nexuscomm.webhooks.delivery_log import (
    DeliveryLogProtocol,
    MemoryDeliveryLog,
    RedisDeliveryLog,
)
from nexuscomm.webhooks.dispatcher import Dispatcher, build_request
from nexuscomm.webhooks.errors import (
    WEBHOOK_ERROR_REGISTRY,
    DuplicateAttemptError,
    WebhookError,
    WebhookErrorCode,
    WebhookForbiddenError,
    WebhookNotFoundError,
    WebhookValidationError,
    get_webhook_error_message,
    get_webhook_error_status,
)
from nexuscomm.webhooks.inbound import InboundVerifier, classify_payload
from nexuscomm.webhooks.metrics import WebhookMetrics
from nexuscomm.webhooks.models import (
    DeliveryAttempt,
    DeliveryResult,
    DeliveryStatus,
    InboundResult,
    IntegrationEvent,
    WebhookCreatedResponse,
    WebhookCreateRequest,
    WebhookEnvelope,
    WebhookRecord,
    WebhookResponse,
    WebhookUpdateRequest,
)
from nexuscomm.webhooks.publisher import EventPublisher
from nexuscomm.webhooks.registry import EndpointRegistry, generate_secret
from nexuscomm.webhooks.router import (
    DeliveryListResponse,
    TestWebhookResponse,
    WebhookListResponse,
    create_events_router,
    create_inbound_router,
    create_webhook_router,
)
from nexuscomm.webhooks.security import (
    URLValidationError,
    ValidatedURL,
    WebhookURLValidator,
)
from nexuscomm.webhooks.signature import (
    SIGNATURE_HEADER,
    SignatureError,
    canonical_bytes,
    sign,
    sign_bytes,
    verify,
    verify_bytes,
)
from nexuscomm.webhooks.store import (
    EndpointStoreProtocol,
    MemoryEndpointStore,
    RedisEndpointStore,
    generate_attempt_id,
    generate_event_id,
    generate_webhook_id,
)
from nexuscomm.webhooks.worker import (
    WorkerSettings as WebhookWorkerSettings,
)
from nexuscomm.webhooks.worker import (
    create_worker_settings,
    deliver_webhook_task,
)

__all__ = [
    "DEFAULT_USER_AGENT",
    "SIGNATURE_HEADER",
    "WEBHOOK_ERROR_REGISTRY",
    "DeliveryAttempt",
    "DeliveryListResponse",
    "DeliveryLogProtocol",
    "DeliveryResult",
    "DeliveryStatus",
    "Dispatcher",
    "DuplicateAttemptError",
    "EndpointRegistry",
    "EndpointStoreProtocol",
    "EventPublisher",
    "InboundResult",
    "InboundVerifier",
    "IntegrationEvent",
    "MemoryDeliveryLog",
    "MemoryEndpointStore",
    "RedisDeliveryLog",
    "RedisEndpointStore",
    "SignatureError",
    "TestWebhookResponse",
    "URLValidationError",
    "ValidatedURL",
    "WebhookConfig",
    "WebhookCreateRequest",
    "WebhookCreatedResponse",
    "WebhookEnvelope",
    "WebhookError",
    "WebhookErrorCode",
    "WebhookForbiddenError",
    "WebhookListResponse",
    "WebhookMetrics",
    "WebhookNotFoundError",
    "WebhookRecord",
    "WebhookResponse",
    "WebhookURLValidator",
    "WebhookUpdateRequest",
    "WebhookValidationError",
    "WebhookWorkerSettings",
    "build_request",
    "canonical_bytes",
    "classify_payload",
    "create_events_router",
    "create_inbound_router",
    "create_webhook_router",
    "create_worker_settings",
    "deliver_webhook_task",
    "generate_attempt_id",
    "generate_event_id",
    "generate_secret",
    "generate_webhook_id",
    "get_webhook_error_message",
    "get_webhook_error_status",
    "sign",
    "sign_bytes",
    "verify",
    "verify_bytes",
]
