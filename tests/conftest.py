"""Pytest configuration and shared fixtures for NexusComm tests."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from nexuscomm.webhooks.config import WebhookConfig
from nexuscomm.webhooks.delivery_log import MemoryDeliveryLog
from nexuscomm.webhooks.models import IntegrationEvent, WebhookRecord, now_iso
from nexuscomm.webhooks.registry import EndpointRegistry
from nexuscomm.webhooks.store import (
    MemoryEndpointStore,
    generate_event_id,
    generate_webhook_id,
)

TEST_SECRET = "whsec_test_secret_key_0123456789abcdef"


@pytest.fixture
def webhook_config() -> WebhookConfig:
    """Configuration with deterministic backoff and in-memory storage.

    Hostnames are not resolved, so example.com style URLs validate offline,
    and the X-User-Id header is trusted as the caller identity.

    Returns:
        WebhookConfig with 1s base backoff and no jitter.
    """
    return WebhookConfig(
        redis_url=None,
        queue_backend="inline",
        backoff_base_seconds=1.0,
        backoff_jitter=0.0,
        metrics_enabled=False,
        resolve_dns=False,
        trust_user_header=True,
    )


@pytest.fixture
def endpoint_store() -> MemoryEndpointStore:
    return MemoryEndpointStore()


@pytest.fixture
def registry(
    endpoint_store: MemoryEndpointStore, webhook_config: WebhookConfig
) -> EndpointRegistry:
    return EndpointRegistry(endpoint_store, webhook_config)


@pytest.fixture
def delivery_log() -> MemoryDeliveryLog:
    return MemoryDeliveryLog()


@pytest.fixture
def sleeps() -> list[float]:
    """Delays passed to the fake sleep, in call order."""
    return []


@pytest.fixture
def fake_sleep(sleeps: list[float]) -> Callable[[float], Any]:
    """Backoff sleep that returns immediately and records the delay."""

    async def _sleep(delay: float) -> None:
        sleeps.append(delay)

    return _sleep


@pytest.fixture
def make_event() -> Callable[..., IntegrationEvent]:
    """Factory for integration events."""

    def _make(
        user_id: str = "user_1",
        event_type: str = "contact_created",
        payload: dict[str, Any] | None = None,
    ) -> IntegrationEvent:
        return IntegrationEvent(
            id=generate_event_id(),
            user_id=user_id,
            event_type=event_type,
            payload=payload if payload is not None else {"id": "c_1", "name": "Ada"},
        )

    return _make


@pytest.fixture
def make_record() -> Callable[..., WebhookRecord]:
    """Factory for stored endpoint records."""

    def _make(**overrides: Any) -> WebhookRecord:
        now = now_iso()
        fields: dict[str, Any] = {
            "id": generate_webhook_id(),
            "user_id": "user_1",
            "url": "https://hooks.example.com/nexuscomm",
            "events": ["contact_created"],
            "secret": TEST_SECRET,
            "max_retries": 3,
            "timeout_seconds": 5,
            "created_at": now,
            "updated_at": now,
        }
        fields.update(overrides)
        return WebhookRecord(**fields)

    return _make
