"""Tests for webhook configuration and the command line entry point."""

from __future__ import annotations

import json
from pathlib import Path
from typing import TYPE_CHECKING

import pytest
from click.testing import CliRunner
from pydantic import ValidationError

from nexuscomm.__main__ import cli
from nexuscomm.app import build_storage
from nexuscomm.webhooks.config import DEFAULT_USER_AGENT, WebhookConfig
from nexuscomm.webhooks.delivery_log import MemoryDeliveryLog
from nexuscomm.webhooks.signature import sign
from nexuscomm.webhooks.store import MemoryEndpointStore

if TYPE_CHECKING:
    from pytest import MonkeyPatch


# =============================================================================
# WebhookConfig Tests
# =============================================================================


def test_defaults(monkeypatch: MonkeyPatch):
    """Defaults match the documented delivery behavior."""
    monkeypatch.delenv("NEXUSCOMM_WEBHOOK_REDIS_URL", raising=False)
    config = WebhookConfig(_env_file=None)  # type: ignore[call-arg]

    assert config.redis_url is None
    assert config.queue_backend == "inline"
    assert config.default_max_retries == 3
    assert config.default_timeout_seconds == 30
    assert config.default_verify_ssl is True
    assert config.user_agent == DEFAULT_USER_AGENT == "NexusComm-Webhook-Client/1.0"
    assert config.secret_bytes == 32
    assert config.log_window_days == 7
    assert config.metrics_enabled is False
    assert config.resolve_dns is True
    assert config.trust_user_header is False


def test_env_override(monkeypatch: MonkeyPatch):
    """NEXUSCOMM_WEBHOOK_* variables override defaults."""
    monkeypatch.setenv("NEXUSCOMM_WEBHOOK_DEFAULT_MAX_RETRIES", "5")
    monkeypatch.setenv("NEXUSCOMM_WEBHOOK_QUEUE_BACKEND", "arq")
    monkeypatch.setenv("NEXUSCOMM_WEBHOOK_METRICS_ENABLED", "true")
    monkeypatch.setenv("NEXUSCOMM_WEBHOOK_BACKOFF_BASE_SECONDS", "0.5")

    config = WebhookConfig(_env_file=None)  # type: ignore[call-arg]

    assert config.default_max_retries == 5
    assert config.queue_backend == "arq"
    assert config.metrics_enabled is True
    assert config.backoff_base_seconds == 0.5


def test_secret_bytes_minimum():
    """Generated secrets are never shorter than 32 bytes."""
    with pytest.raises(ValidationError):
        WebhookConfig(secret_bytes=16)


def test_unknown_queue_backend_rejected():
    with pytest.raises(ValidationError):
        WebhookConfig(queue_backend="celery")  # type: ignore[arg-type]


def test_retry_ceiling():
    with pytest.raises(ValidationError):
        WebhookConfig(default_max_retries=11)


# =============================================================================
# Storage Selection Tests
# =============================================================================


def test_memory_storage_without_redis():
    store, log = build_storage(WebhookConfig(redis_url=None))

    assert isinstance(store, MemoryEndpointStore)
    assert isinstance(log, MemoryDeliveryLog)


def test_unreachable_redis_raises():
    """Without fallback an unreachable Redis is a startup error."""
    config = WebhookConfig(redis_url="redis://127.0.0.1:1/0", fallback_enabled=False)

    with pytest.raises(RuntimeError, match="Redis unavailable"):
        build_storage(config)


def test_unreachable_redis_falls_back():
    config = WebhookConfig(redis_url="redis://127.0.0.1:1/0", fallback_enabled=True)

    store, log = build_storage(config)

    assert isinstance(store, MemoryEndpointStore)
    assert isinstance(log, MemoryDeliveryLog)


# =============================================================================
# CLI Tests
# =============================================================================


class TestSignCommand:
    """Tests for `nexuscomm sign`."""

    def test_prints_signature(self, tmp_path: Path) -> None:
        payload = {"event": "contact_created", "data": {"id": "c_1"}}
        payload_path = tmp_path / "payload.json"
        payload_path.write_text(json.dumps(payload), encoding="utf-8")

        runner = CliRunner()
        result = runner.invoke(
            cli, ["sign", str(payload_path), "--secret", "cli_secret_value_123"], obj={}
        )

        assert result.exit_code == 0, result.output
        assert result.output.strip() == sign("cli_secret_value_123", payload)

    def test_secret_from_environment(self, tmp_path: Path) -> None:
        payload_path = tmp_path / "payload.json"
        payload_path.write_text('{"action": "ping"}', encoding="utf-8")

        runner = CliRunner()
        result = runner.invoke(
            cli,
            ["sign", str(payload_path)],
            obj={},
            env={"NEXUSCOMM_WEBHOOK_SECRET": "env_secret_value_456"},
        )

        assert result.exit_code == 0, result.output
        assert result.output.strip() == sign("env_secret_value_456", {"action": "ping"})

    def test_rejects_non_object(self, tmp_path: Path) -> None:
        payload_path = tmp_path / "payload.json"
        payload_path.write_text("[1, 2, 3]", encoding="utf-8")

        runner = CliRunner()
        result = runner.invoke(cli, ["sign", str(payload_path), "--secret", "s"], obj={})

        assert result.exit_code == 1

    def test_rejects_invalid_json(self, tmp_path: Path) -> None:
        payload_path = tmp_path / "payload.json"
        payload_path.write_text("{not json", encoding="utf-8")

        runner = CliRunner()
        result = runner.invoke(cli, ["sign", str(payload_path), "--secret", "s"], obj={})

        assert result.exit_code == 1


def test_worker_requires_redis(monkeypatch: MonkeyPatch):
    monkeypatch.delenv("NEXUSCOMM_WEBHOOK_REDIS_URL", raising=False)

    runner = CliRunner()
    result = runner.invoke(cli, ["worker"], obj={})

    assert result.exit_code == 1
