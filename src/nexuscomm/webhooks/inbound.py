"""Inbound webhook verification.

External services call back into the platform at
`/webhooks/{user_id}/{webhook_id}`. Before a callback reaches downstream
processing, the addressed endpoint must exist and, if it has a secret, the
supplied signature must match the HMAC of the canonical payload. Failure
modes are distinguishable: unknown endpoint (404), bad payload (400), and
missing or wrong signature (403).
"""

from __future__ import annotations

import inspect
import json
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, Union

from nexuscomm.webhooks.errors import (
    WebhookError,
    WebhookErrorCode,
    WebhookForbiddenError,
    WebhookNotFoundError,
    WebhookValidationError,
)
from nexuscomm.webhooks.models import InboundResult
from nexuscomm.webhooks.signature import SIGNATURE_FIELD, canonical_bytes, verify_bytes

if TYPE_CHECKING:
    from nexuscomm.webhooks.metrics import WebhookMetrics
    from nexuscomm.webhooks.registry import EndpointRegistry

logger = logging.getLogger(__name__)

__all__ = [
    "UNKNOWN_EVENT",
    "InboundHandler",
    "InboundVerifier",
    "classify_payload",
    "log_inbound_event",
]

UNKNOWN_EVENT = "unknown_event"

InboundHandler = Callable[[InboundResult], Union[Awaitable[None], None]]


def classify_payload(payload: dict[str, Any]) -> tuple[str, Any]:
    """Pick the event type and data of an inbound payload.

    - `{"event": ..., "data": ...}` -> (event, data)
    - `{"action": ...}` -> (action, whole payload)
    - anything else -> ("unknown_event", whole payload)
    """
    if payload.get("event"):
        return str(payload["event"]), payload.get("data")
    if payload.get("action"):
        return str(payload["action"]), payload
    return UNKNOWN_EVENT, payload


def log_inbound_event(result: InboundResult) -> None:
    """Default handler: record the accepted callback."""
    logger.info(
        f"Inbound webhook accepted: user={result.user_id} "
        f"webhook={result.webhook_id} event={result.event_type}"
    )


class InboundVerifier:
    """Verifies inbound callbacks and hands accepted payloads to a handler.

    Example:
        >>> verifier = InboundVerifier(registry)
        >>> result = await verifier.verify_inbound(
        ...     "user_1", "wh_abc", b'{"event": "contact_updated", "data": {}}', signature
        ... )
        >>> result.event_type
        'contact_updated'
    """

    def __init__(
        self,
        registry: EndpointRegistry,
        handler: InboundHandler | None = None,
        metrics: WebhookMetrics | None = None,
    ) -> None:
        self._registry = registry
        self._handler = handler or log_inbound_event
        self._metrics = metrics

    def _record(self, result: str) -> None:
        if self._metrics is not None:
            self._metrics.record_inbound(result)

    @staticmethod
    def _parse(raw_payload: bytes | str | dict[str, Any]) -> dict[str, Any]:
        if isinstance(raw_payload, dict):
            return dict(raw_payload)
        try:
            parsed = json.loads(raw_payload)
        except (ValueError, TypeError, RecursionError) as e:
            raise WebhookValidationError(
                f"Payload is not valid JSON: {e}",
                code=WebhookErrorCode.PAYLOAD_INVALID,
            ) from e
        if not isinstance(parsed, dict):
            raise WebhookValidationError(code=WebhookErrorCode.PAYLOAD_INVALID)
        return parsed

    @staticmethod
    def _canonicalize(payload: dict[str, Any]) -> bytes:
        try:
            return canonical_bytes(payload)
        except (ValueError, TypeError, RecursionError) as e:
            raise WebhookValidationError(
                f"Payload cannot be canonicalized: {e}",
                code=WebhookErrorCode.PAYLOAD_INVALID,
            ) from e

    async def verify_inbound(
        self,
        user_id: str,
        webhook_id: str,
        raw_payload: bytes | str | dict[str, Any],
        provided_signature: str | None = None,
    ) -> InboundResult:
        """Verify and accept an inbound callback.

        Args:
            user_id: User addressed by the callback URL
            webhook_id: Endpoint addressed by the callback URL
            raw_payload: Request body (raw bytes or already-parsed object)
            provided_signature: Value of the X-Signature header, if any. A
                top-level "signature" field in the body is used otherwise.

        Returns:
            The classified, accepted callback

        Raises:
            WebhookNotFoundError: No such endpoint for this user
            WebhookValidationError: Body is not a JSON object
            WebhookForbiddenError: Signature missing or does not match
        """
        try:
            result = self._verify(user_id, webhook_id, raw_payload, provided_signature)
        except WebhookError as e:
            self._record(_result_label(e))
            logger.warning(
                f"Inbound webhook rejected: user={user_id} webhook={webhook_id} "
                f"code={e.code.value} reason={e.message}"
            )
            raise

        self._record("accepted")
        outcome = self._handler(result)
        if inspect.isawaitable(outcome):
            await outcome
        return result

    def _verify(
        self,
        user_id: str,
        webhook_id: str,
        raw_payload: bytes | str | dict[str, Any],
        provided_signature: str | None,
    ) -> InboundResult:
        # Existence first: an unknown endpoint is 404 whatever the signature
        record = self._registry.get_record(webhook_id, user_id)
        if record is None:
            raise WebhookNotFoundError(f"Webhook {webhook_id} not found")

        payload = self._parse(raw_payload)
        body_signature = payload.pop(SIGNATURE_FIELD, None)
        candidate = provided_signature or (
            body_signature if isinstance(body_signature, str) else None
        )

        if record.secret:
            if not candidate:
                raise WebhookForbiddenError(code=WebhookErrorCode.SIGNATURE_MISSING)
            if not verify_bytes(record.secret, self._canonicalize(payload), candidate):
                raise WebhookForbiddenError(code=WebhookErrorCode.SIGNATURE_INVALID)

        event_type, data = classify_payload(payload)
        return InboundResult(
            user_id=user_id,
            webhook_id=webhook_id,
            event_type=event_type,
            data=data,
            signed=bool(record.secret),
        )


def _result_label(error: WebhookError) -> str:
    if isinstance(error, WebhookNotFoundError):
        return "not_found"
    if isinstance(error, WebhookForbiddenError):
        return "forbidden"
    return "invalid"
