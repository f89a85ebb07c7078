"""Webhook-specific error codes and exceptions.

Error codes in the E4xx range for webhook operations. Every exception raised
synchronously by the registry or the inbound verifier carries one of these
codes so the HTTP layer can map it to a status without inspecting messages.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class WebhookErrorCode(str, Enum):
    """Webhook-specific error codes (E4xx range)."""

    # E40x - Webhook resource errors
    WEBHOOK_NOT_FOUND = "E400"
    WEBHOOK_URL_INVALID = "E401"
    WEBHOOK_URL_BLOCKED = "E402"
    WEBHOOK_SECRET_INVALID = "E403"
    WEBHOOK_EVENTS_REQUIRED = "E404"
    WEBHOOK_FORBIDDEN = "E405"

    # E41x - Inbound verification errors
    SIGNATURE_INVALID = "E410"
    SIGNATURE_MISSING = "E411"
    PAYLOAD_INVALID = "E412"


# Error registry mapping codes to HTTP status and metadata
WEBHOOK_ERROR_REGISTRY: dict[WebhookErrorCode, dict[str, Any]] = {
    # E40x - Resource errors
    WebhookErrorCode.WEBHOOK_NOT_FOUND: {
        "error": "webhook_not_found",
        "http_status": 404,
        "message": "Webhook endpoint not found",
    },
    WebhookErrorCode.WEBHOOK_URL_INVALID: {
        "error": "webhook_url_invalid",
        "http_status": 400,
        "message": "Webhook URL is invalid",
    },
    WebhookErrorCode.WEBHOOK_URL_BLOCKED: {
        "error": "webhook_url_blocked",
        "http_status": 400,
        "message": "Webhook URL blocked for security reasons",
    },
    WebhookErrorCode.WEBHOOK_SECRET_INVALID: {
        "error": "webhook_secret_invalid",
        "http_status": 400,
        "message": "Webhook secret is too short",
    },
    WebhookErrorCode.WEBHOOK_EVENTS_REQUIRED: {
        "error": "webhook_events_required",
        "http_status": 400,
        "message": "At least one event type is required",
    },
    WebhookErrorCode.WEBHOOK_FORBIDDEN: {
        "error": "webhook_forbidden",
        "http_status": 403,
        "message": "You do not have permission to access this webhook",
    },
    # E41x - Inbound errors
    WebhookErrorCode.SIGNATURE_INVALID: {
        "error": "signature_invalid",
        "http_status": 403,
        "message": "Invalid webhook signature",
    },
    WebhookErrorCode.SIGNATURE_MISSING: {
        "error": "signature_missing",
        "http_status": 403,
        "message": "Webhook signature required",
    },
    WebhookErrorCode.PAYLOAD_INVALID: {
        "error": "payload_invalid",
        "http_status": 400,
        "message": "Webhook payload must be a JSON object",
    },
}


def get_webhook_error_status(code: WebhookErrorCode) -> int:
    """Get HTTP status for a webhook error code."""
    entry = WEBHOOK_ERROR_REGISTRY.get(code)
    if entry is None:
        return 500
    status = entry.get("http_status")
    return int(status) if status is not None else 500


def get_webhook_error_message(code: WebhookErrorCode) -> str:
    """Get default message for a webhook error code."""
    entry = WEBHOOK_ERROR_REGISTRY.get(code)
    if entry is None:
        return "Unknown webhook error"
    message = entry.get("message")
    return str(message) if message is not None else "Unknown webhook error"


class WebhookError(Exception):
    """Base class for errors surfaced synchronously to the caller."""

    default_code = WebhookErrorCode.WEBHOOK_NOT_FOUND

    def __init__(
        self, message: str | None = None, code: WebhookErrorCode | None = None
    ) -> None:
        self.code = code or self.default_code
        self.message = message or get_webhook_error_message(self.code)
        super().__init__(self.message)

    @property
    def http_status(self) -> int:
        return get_webhook_error_status(self.code)

    def to_detail(self) -> dict[str, str]:
        """Error body in the API's `{"code", "message"}` shape."""
        return {"code": self.code.value, "message": self.message}


class WebhookNotFoundError(WebhookError):
    """Endpoint does not exist or is not owned by the caller (404)."""

    default_code = WebhookErrorCode.WEBHOOK_NOT_FOUND


class WebhookForbiddenError(WebhookError):
    """Signature verification failed or ownership was violated (403)."""

    default_code = WebhookErrorCode.WEBHOOK_FORBIDDEN


class WebhookValidationError(WebhookError):
    """Missing or malformed fields on create/update or inbound payload (400)."""

    default_code = WebhookErrorCode.WEBHOOK_URL_INVALID


class DuplicateAttemptError(Exception):
    """An attempt with the same (webhook, event, attempt number) was already logged."""

    def __init__(self, webhook_id: str, event_id: str, attempt_number: int) -> None:
        self.webhook_id = webhook_id
        self.event_id = event_id
        self.attempt_number = attempt_number
        super().__init__(
            f"Attempt {attempt_number} for event {event_id} on webhook "
            f"{webhook_id} already recorded"
        )
