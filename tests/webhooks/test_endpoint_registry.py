"""Tests for the endpoint registry."""

from __future__ import annotations

import socket
from unittest.mock import patch

import pytest

from nexuscomm.webhooks.config import WebhookConfig
from nexuscomm.webhooks.errors import (
    WebhookErrorCode,
    WebhookNotFoundError,
    WebhookValidationError,
)
from nexuscomm.webhooks.models import WebhookCreateRequest, WebhookUpdateRequest
from nexuscomm.webhooks.registry import EndpointRegistry, generate_secret
from nexuscomm.webhooks.store import MemoryEndpointStore


def create_request(**overrides: object) -> WebhookCreateRequest:
    fields: dict[str, object] = {
        "url": "https://crm.example.com/hooks/nexuscomm",
        "events": ["contact_created", "message_sent"],
    }
    fields.update(overrides)
    return WebhookCreateRequest(**fields)  # type: ignore[arg-type]


class TestGenerateSecret:
    """Tests for generate_secret."""

    def test_hex_of_32_bytes(self) -> None:
        secret = generate_secret()

        assert len(secret) == 64
        int(secret, 16)

    def test_minimum_of_32_bytes(self) -> None:
        assert len(generate_secret(8)) == 64
        assert len(generate_secret(48)) == 96


class TestCreate:
    """Tests for EndpointRegistry.create."""

    def test_defaults(self, registry: EndpointRegistry) -> None:
        """New endpoints are active, verify TLS, retry 3 times, wait 30s."""
        created = registry.create("user_1", create_request())

        assert created.id.startswith("wh_")
        assert created.is_active is True
        assert created.verify_ssl is True
        assert created.max_retries == 3
        assert created.timeout_seconds == 30
        assert created.has_secret is True
        assert created.secret is not None
        assert len(created.secret) == 64

    def test_defaults_come_from_config(self) -> None:
        config = WebhookConfig(
            redis_url=None,
            default_max_retries=5,
            default_timeout_seconds=10,
            default_verify_ssl=False,
            resolve_dns=False,
        )
        registry = EndpointRegistry(MemoryEndpointStore(), config)

        created = registry.create("user_1", create_request())

        assert created.max_retries == 5
        assert created.timeout_seconds == 10
        assert created.verify_ssl is False

    def test_explicit_settings(self, registry: EndpointRegistry) -> None:
        created = registry.create(
            "user_1",
            create_request(
                name="CRM sync",
                secret="my_own_secret_value_123",
                verify_ssl=False,
                max_retries=0,
                timeout_seconds=5,
            ),
        )

        assert created.name == "CRM sync"
        assert created.secret == "my_own_secret_value_123"
        assert created.verify_ssl is False
        assert created.max_retries == 0
        assert created.timeout_seconds == 5

    def test_short_secret_rejected(self, registry: EndpointRegistry) -> None:
        with pytest.raises(WebhookValidationError) as exc_info:
            registry.create("user_1", create_request(secret="short"))

        assert exc_info.value.code == WebhookErrorCode.WEBHOOK_SECRET_INVALID
        assert exc_info.value.http_status == 400

    def test_events_required(self, registry: EndpointRegistry) -> None:
        with pytest.raises(WebhookValidationError) as exc_info:
            registry.create("user_1", create_request(events=[]))

        assert exc_info.value.code == WebhookErrorCode.WEBHOOK_EVENTS_REQUIRED

    def test_blank_events_rejected(self, registry: EndpointRegistry) -> None:
        with pytest.raises(WebhookValidationError):
            registry.create("user_1", create_request(events=["", "  "]))

    def test_events_deduplicated_in_order(self, registry: EndpointRegistry) -> None:
        created = registry.create(
            "user_1",
            create_request(events=["message_sent", "contact_created", "message_sent"]),
        )

        assert created.events == ["message_sent", "contact_created"]

    @pytest.mark.parametrize("url", ["", "   ", "ftp://example.com/hook", "not a url"])
    def test_invalid_url(self, registry: EndpointRegistry, url: str) -> None:
        with pytest.raises(WebhookValidationError) as exc_info:
            registry.create("user_1", create_request(url=url))

        assert exc_info.value.code == WebhookErrorCode.WEBHOOK_URL_INVALID

    @pytest.mark.parametrize(
        "url",
        [
            "https://localhost/hook",
            "https://127.0.0.1/hook",
            "https://10.0.0.5/hook",
            "https://169.254.169.254/latest/meta-data",
        ],
    )
    def test_private_url_blocked(self, registry: EndpointRegistry, url: str) -> None:
        with pytest.raises(WebhookValidationError) as exc_info:
            registry.create("user_1", create_request(url=url))

        assert exc_info.value.code == WebhookErrorCode.WEBHOOK_URL_BLOCKED

    def test_private_url_allowed_when_configured(self) -> None:
        config = WebhookConfig(redis_url=None, allow_private_urls=True)
        registry = EndpointRegistry(MemoryEndpointStore(), config)

        created = registry.create("user_1", create_request(url="http://localhost:9000/hook"))

        assert created.url == "http://localhost:9000/hook"

    def test_hostname_resolving_to_loopback_blocked(self) -> None:
        """Endpoint hostnames are resolved, so a name pointing inward is refused."""
        registry = EndpointRegistry(MemoryEndpointStore(), WebhookConfig(redis_url=None))
        answer = [(socket.AF_INET, socket.SOCK_STREAM, 6, "", ("127.0.0.1", 0))]

        with patch("socket.getaddrinfo", return_value=answer):
            with pytest.raises(WebhookValidationError) as exc_info:
                registry.create("user_1", create_request(url="https://inward.example.net/h"))

        assert exc_info.value.code == WebhookErrorCode.WEBHOOK_URL_BLOCKED
        assert registry.list_for_user("user_1") == []

    def test_localhost_alias_with_trailing_dot_blocked(self, registry: EndpointRegistry) -> None:
        with pytest.raises(WebhookValidationError) as exc_info:
            registry.create("user_1", create_request(url="http://localhost.localdomain./h"))

        assert exc_info.value.code == WebhookErrorCode.WEBHOOK_URL_BLOCKED


class TestReads:
    """Tests for get, list_for_user and find_subscribed."""

    def test_secret_never_in_read_responses(self, registry: EndpointRegistry) -> None:
        created = registry.create("user_1", create_request())

        fetched = registry.get(created.id, "user_1")
        listed = registry.list_for_user("user_1")

        assert fetched is not None
        assert "secret" not in fetched.model_dump()
        assert fetched.has_secret is True
        assert all("secret" not in item.model_dump() for item in listed)

    def test_get_record_includes_secret(self, registry: EndpointRegistry) -> None:
        created = registry.create("user_1", create_request())

        record = registry.get_record(created.id, "user_1")

        assert record is not None
        assert record.secret == created.secret

    def test_get_other_user(self, registry: EndpointRegistry) -> None:
        created = registry.create("user_1", create_request())

        assert registry.get(created.id, "user_2") is None
        assert registry.get_record(created.id, "user_2") is None

    def test_list_for_user(self, registry: EndpointRegistry) -> None:
        first = registry.create("user_1", create_request())
        second = registry.create("user_1", create_request())
        registry.create("user_2", create_request())

        assert [wh.id for wh in registry.list_for_user("user_1")] == [first.id, second.id]
        assert registry.list_for_user("user_3") == []

    def test_find_subscribed_only_active_and_subscribed(
        self, registry: EndpointRegistry
    ) -> None:
        matching = registry.create("user_1", create_request(events=["contact_created"]))
        registry.create("user_1", create_request(events=["message_sent"]))
        inactive = registry.create("user_1", create_request(events=["contact_created"]))
        registry.update(inactive.id, "user_1", WebhookUpdateRequest(is_active=False))
        registry.create("user_2", create_request(events=["contact_created"]))

        results = registry.find_subscribed("user_1", "contact_created")

        assert [wh.id for wh in results] == [matching.id]

    def test_is_deliverable(self, registry: EndpointRegistry) -> None:
        created = registry.create("user_1", create_request())

        assert registry.is_deliverable(created.id, "user_1") is True
        assert registry.is_deliverable(created.id, "user_2") is False

        registry.update(created.id, "user_1", WebhookUpdateRequest(is_active=False))
        assert registry.is_deliverable(created.id, "user_1") is False

        registry.delete(created.id, "user_1")
        assert registry.is_deliverable(created.id, "user_1") is False


class TestMutations:
    """Tests for update, rotate_secret and delete."""

    def test_update_fields(self, registry: EndpointRegistry) -> None:
        created = registry.create("user_1", create_request())

        updated = registry.update(
            created.id,
            "user_1",
            WebhookUpdateRequest(
                url="https://crm.example.com/v2",
                events=["message_sent"],
                max_retries=1,
                timeout_seconds=15,
                verify_ssl=False,
            ),
        )

        assert updated.url == "https://crm.example.com/v2"
        assert updated.events == ["message_sent"]
        assert updated.max_retries == 1
        assert updated.timeout_seconds == 15
        assert updated.verify_ssl is False
        assert updated.is_active is True

    def test_update_keeps_secret(self, registry: EndpointRegistry) -> None:
        created = registry.create("user_1", create_request())

        registry.update(created.id, "user_1", WebhookUpdateRequest(name="renamed"))

        record = registry.get_record(created.id, "user_1")
        assert record is not None
        assert record.secret == created.secret

    def test_update_other_user(self, registry: EndpointRegistry) -> None:
        created = registry.create("user_1", create_request())

        with pytest.raises(WebhookNotFoundError):
            registry.update(created.id, "user_2", WebhookUpdateRequest(is_active=False))

        fetched = registry.get(created.id, "user_1")
        assert fetched is not None
        assert fetched.is_active is True

    def test_update_validates_url(self, registry: EndpointRegistry) -> None:
        created = registry.create("user_1", create_request())

        with pytest.raises(WebhookValidationError):
            registry.update(created.id, "user_1", WebhookUpdateRequest(url="gopher://x"))

    def test_update_rejects_empty_events(self, registry: EndpointRegistry) -> None:
        created = registry.create("user_1", create_request())

        with pytest.raises(WebhookValidationError) as exc_info:
            registry.update(created.id, "user_1", WebhookUpdateRequest(events=[]))

        assert exc_info.value.code == WebhookErrorCode.WEBHOOK_EVENTS_REQUIRED

    def test_rotate_secret(self, registry: EndpointRegistry) -> None:
        created = registry.create("user_1", create_request())

        rotated = registry.rotate_secret(created.id, "user_1")

        assert rotated.secret is not None
        assert rotated.secret != created.secret
        record = registry.get_record(created.id, "user_1")
        assert record is not None
        assert record.secret == rotated.secret

    def test_rotate_secret_supplied(self, registry: EndpointRegistry) -> None:
        created = registry.create("user_1", create_request())

        rotated = registry.rotate_secret(created.id, "user_1", "a_new_secret_value_42")

        assert rotated.secret == "a_new_secret_value_42"

        with pytest.raises(WebhookValidationError):
            registry.rotate_secret(created.id, "user_1", "tiny")

    def test_rotate_secret_other_user(self, registry: EndpointRegistry) -> None:
        created = registry.create("user_1", create_request())

        with pytest.raises(WebhookNotFoundError):
            registry.rotate_secret(created.id, "user_2")

    def test_delete_removes_from_matching(self, registry: EndpointRegistry) -> None:
        created = registry.create("user_1", create_request(events=["contact_created"]))

        registry.delete(created.id, "user_1")

        assert registry.get(created.id, "user_1") is None
        assert registry.find_subscribed("user_1", "contact_created") == []

    def test_delete_other_user_or_twice(self, registry: EndpointRegistry) -> None:
        created = registry.create("user_1", create_request())

        with pytest.raises(WebhookNotFoundError):
            registry.delete(created.id, "user_2")

        registry.delete(created.id, "user_1")

        with pytest.raises(WebhookNotFoundError):
            registry.delete(created.id, "user_1")
