"""Endpoint registry: the sole mutator of webhook endpoint records.

Wraps an `EndpointStoreProtocol` with validation, secret generation, default
delivery settings, and ownership errors. Every mutating operation requires
the caller's user ID and fails with `WebhookNotFoundError` if the endpoint is
missing or belongs to someone else, so one user can never tell another user's
endpoints apart from nonexistent ones.
"""

from __future__ import annotations

import logging
import secrets
from typing import TYPE_CHECKING

from nexuscomm.webhooks.config import WebhookConfig
from nexuscomm.webhooks.errors import (
    WebhookErrorCode,
    WebhookNotFoundError,
    WebhookValidationError,
)
from nexuscomm.webhooks.models import (
    WebhookCreatedResponse,
    WebhookCreateRequest,
    WebhookRecord,
    WebhookResponse,
    WebhookUpdateRequest,
    now_iso,
)
from nexuscomm.webhooks.security import URLValidationError, WebhookURLValidator
from nexuscomm.webhooks.store import (
    EndpointStoreProtocol,
    MemoryEndpointStore,
    generate_webhook_id,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger(__name__)

__all__ = ["EndpointRegistry", "generate_secret"]


def generate_secret(num_bytes: int = 32) -> str:
    """Generate a hex-encoded random signing secret."""
    return secrets.token_hex(max(num_bytes, 32))


class EndpointRegistry:
    """Create, update, delete and look up webhook endpoints per user.

    Example:
        >>> registry = EndpointRegistry()
        >>> created = registry.create(
        ...     "user_1",
        ...     WebhookCreateRequest(url="https://crm.example.com/hook", events=["contact_created"]),
        ... )
        >>> created.secret is not None
        True
        >>> [wh.id for wh in registry.find_subscribed("user_1", "contact_created")] == [created.id]
        True
    """

    def __init__(
        self,
        store: EndpointStoreProtocol | None = None,
        config: WebhookConfig | None = None,
        url_validator: WebhookURLValidator | None = None,
    ) -> None:
        self._store = store or MemoryEndpointStore()
        self._config = config or WebhookConfig()
        self._url_validator = url_validator or WebhookURLValidator(
            allow_private=self._config.allow_private_urls,
            resolve_dns=self._config.resolve_dns,
        )

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    def _validate_url(self, url: str) -> str:
        try:
            validated = self._url_validator.validate(url)
        except URLValidationError as e:
            code = (
                WebhookErrorCode.WEBHOOK_URL_BLOCKED
                if e.blocked
                else WebhookErrorCode.WEBHOOK_URL_INVALID
            )
            raise WebhookValidationError(e.reason, code=code) from e
        return validated.url.strip()

    @staticmethod
    def _normalize_events(events: Iterable[str]) -> list[str]:
        normalized: list[str] = []
        for event in events:
            name = event.strip() if isinstance(event, str) else ""
            if name and name not in normalized:
                normalized.append(name)
        if not normalized:
            raise WebhookValidationError(code=WebhookErrorCode.WEBHOOK_EVENTS_REQUIRED)
        return normalized

    def _validate_secret(self, secret: str) -> str:
        if len(secret) < self._config.min_secret_length:
            raise WebhookValidationError(
                f"Secret must be at least {self._config.min_secret_length} characters",
                code=WebhookErrorCode.WEBHOOK_SECRET_INVALID,
            )
        return secret

    def _require(self, webhook_id: str, user_id: str) -> WebhookRecord:
        record = self._store.get(webhook_id, user_id)
        if record is None:
            raise WebhookNotFoundError(f"Webhook {webhook_id} not found")
        return record

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def create(self, user_id: str, request: WebhookCreateRequest) -> WebhookCreatedResponse:
        """Register a new endpoint.

        Args:
            user_id: Owner of the endpoint
            request: Endpoint settings; omitted settings take configured defaults

        Returns:
            The created endpoint, including its secret (shown only here)

        Raises:
            WebhookValidationError: Empty/invalid URL, no events, or short secret
        """
        url = self._validate_url(request.url)
        events = self._normalize_events(request.events)
        secret = (
            self._validate_secret(request.secret)
            if request.secret
            else generate_secret(self._config.secret_bytes)
        )

        now = now_iso()
        record = WebhookRecord(
            id=generate_webhook_id(),
            user_id=user_id,
            name=request.name,
            url=url,
            events=events,
            secret=secret,
            is_active=True,
            verify_ssl=(
                request.verify_ssl
                if request.verify_ssl is not None
                else self._config.default_verify_ssl
            ),
            max_retries=(
                request.max_retries
                if request.max_retries is not None
                else self._config.default_max_retries
            ),
            timeout_seconds=(
                request.timeout_seconds
                if request.timeout_seconds is not None
                else self._config.default_timeout_seconds
            ),
            created_at=now,
            updated_at=now,
        )
        self._store.save(record)

        logger.info(f"Created webhook {record.id} for user {user_id} events={events}")
        return record.to_created_response()

    def update(
        self, webhook_id: str, user_id: str, request: WebhookUpdateRequest
    ) -> WebhookResponse:
        """Apply a partial update to an owned endpoint.

        Raises:
            WebhookNotFoundError: Endpoint missing or owned by another user
            WebhookValidationError: A supplied field is invalid
        """
        record = self._require(webhook_id, user_id)

        if request.name is not None:
            record.name = request.name
        if request.url is not None:
            record.url = self._validate_url(request.url)
        if request.events is not None:
            record.events = self._normalize_events(request.events)
        if request.is_active is not None:
            record.is_active = request.is_active
        if request.verify_ssl is not None:
            record.verify_ssl = request.verify_ssl
        if request.max_retries is not None:
            record.max_retries = request.max_retries
        if request.timeout_seconds is not None:
            record.timeout_seconds = request.timeout_seconds
        record.updated_at = now_iso()

        self._store.save(record)
        logger.info(f"Updated webhook {webhook_id}")
        return record.to_response()

    def rotate_secret(
        self, webhook_id: str, user_id: str, secret: str | None = None
    ) -> WebhookCreatedResponse:
        """Replace an endpoint's signing secret.

        Deliveries already signed with the old secret are not re-signed.
        """
        record = self._require(webhook_id, user_id)
        record.secret = (
            self._validate_secret(secret)
            if secret
            else generate_secret(self._config.secret_bytes)
        )
        record.updated_at = now_iso()

        self._store.save(record)
        logger.info(f"Rotated secret for webhook {webhook_id}")
        return record.to_created_response()

    def delete(self, webhook_id: str, user_id: str) -> None:
        """Delete an owned endpoint.

        Already-written delivery log rows are untouched; runs already started
        stop before their next retry.

        Raises:
            WebhookNotFoundError: Endpoint missing or owned by another user
        """
        if not self._store.delete(webhook_id, user_id):
            raise WebhookNotFoundError(f"Webhook {webhook_id} not found")
        logger.info(f"Deleted webhook {webhook_id} for user {user_id}")

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get(self, webhook_id: str, user_id: str) -> WebhookResponse | None:
        record = self._store.get(webhook_id, user_id)
        return record.to_response() if record else None

    def get_record(self, webhook_id: str, user_id: str) -> WebhookRecord | None:
        """Get the full record, secret included (internal use)."""
        return self._store.get(webhook_id, user_id)

    def list_for_user(self, user_id: str) -> list[WebhookResponse]:
        return [record.to_response() for record in self._store.list_for_user(user_id)]

    def find_subscribed(self, user_id: str, event_type: str) -> list[WebhookRecord]:
        """Active endpoints of a user that subscribe to an event type."""
        return [
            record
            for record in self._store.list_for_user(user_id)
            if record.subscribes_to(event_type)
        ]

    def is_deliverable(self, webhook_id: str, user_id: str) -> bool:
        """True while the endpoint exists and is active."""
        record = self._store.get(webhook_id, user_id)
        return record is not None and record.is_active
