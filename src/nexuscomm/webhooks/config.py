"""Configuration for the webhook engine.

All configuration is loaded from environment variables with sensible defaults.
"""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Identifying User-Agent sent with every outbound delivery
DEFAULT_USER_AGENT = "NexusComm-Webhook-Client/1.0"


class WebhookConfig(BaseSettings):
    """Webhook engine configuration.

    Environment Variables:
        NEXUSCOMM_WEBHOOK_REDIS_URL: Redis URL for endpoint/log storage and the arq queue
        NEXUSCOMM_WEBHOOK_FALLBACK_ENABLED: Use in-memory storage if Redis is down (default: false)
        NEXUSCOMM_WEBHOOK_QUEUE_BACKEND: "inline" (asyncio tasks) or "arq" (default: inline)
        NEXUSCOMM_WEBHOOK_DEFAULT_MAX_RETRIES: Retries for new endpoints (default: 3)
        NEXUSCOMM_WEBHOOK_DEFAULT_TIMEOUT_SECONDS: Request deadline for new endpoints (default: 30)
        NEXUSCOMM_WEBHOOK_BACKOFF_BASE_SECONDS: First retry delay (default: 1.0)
        NEXUSCOMM_WEBHOOK_BACKOFF_JITTER: Jitter as a fraction of the delay (default: 0.1)
        NEXUSCOMM_WEBHOOK_ALLOW_PRIVATE_URLS: Allow localhost/private targets (default: false)
        NEXUSCOMM_WEBHOOK_RESOLVE_DNS: Check the addresses a hostname resolves to (default: true)
        NEXUSCOMM_WEBHOOK_TRUST_USER_HEADER: Accept X-User-Id without auth middleware (default: false)
        NEXUSCOMM_WEBHOOK_METRICS_ENABLED: Expose Prometheus metrics (default: false)

    Example:
        >>> config = WebhookConfig()
        >>> config.default_max_retries
        3
        >>> config = WebhookConfig(redis_url="redis://localhost:6379", queue_backend="arq")
    """

    model_config = SettingsConfigDict(
        env_prefix="NEXUSCOMM_WEBHOOK_",
        env_file=".env",
        extra="ignore",
    )

    # Storage
    redis_url: str | None = Field(
        default=None,
        description="Redis URL for webhook storage (in-memory when unset)",
    )
    fallback_enabled: bool = Field(
        default=False,
        description="Enable in-memory fallback if Redis unavailable",
    )
    key_prefix: str = Field(
        default="nexuscomm:",
        description="Prefix for all Redis keys",
    )

    # Scheduling
    queue_backend: Literal["inline", "arq"] = Field(
        default="inline",
        description="Where delivery runs execute: in-process tasks or arq jobs",
    )
    max_concurrent_deliveries: int = Field(
        default=50,
        description="Maximum HTTP attempts in flight at once (inline mode)",
        ge=1,
        le=1000,
    )

    # Endpoint defaults
    default_max_retries: int = Field(
        default=3,
        description="Retries after the first attempt for new endpoints",
        ge=0,
        le=10,
    )
    default_timeout_seconds: int = Field(
        default=30,
        description="Per-attempt HTTP deadline for new endpoints",
        ge=1,
        le=300,
    )
    default_verify_ssl: bool = Field(
        default=True,
        description="Verify TLS certificates for new endpoints",
    )

    # Backoff
    backoff_base_seconds: float = Field(
        default=1.0,
        description="Delay before the first retry; doubles on every attempt",
        ge=0.0,
    )
    backoff_jitter: float = Field(
        default=0.1,
        description="Random extra delay as a fraction of the computed delay",
        ge=0.0,
        le=1.0,
    )
    max_backoff_seconds: float = Field(
        default=300.0,
        description="Upper bound for a single backoff delay",
        ge=0.0,
    )

    # Security
    user_agent: str = Field(
        default=DEFAULT_USER_AGENT,
        description="User-Agent header for outbound deliveries",
    )
    secret_bytes: int = Field(
        default=32,
        description="Random bytes in generated endpoint secrets",
        ge=32,
        le=128,
    )
    min_secret_length: int = Field(
        default=16,
        description="Minimum length of caller-supplied secrets",
        ge=8,
    )
    allow_private_urls: bool = Field(
        default=False,
        description="Allow localhost and private network URLs (development only)",
    )
    resolve_dns: bool = Field(
        default=True,
        description="Resolve endpoint hostnames and reject private or reserved addresses",
    )

    # Identity
    trust_user_header: bool = Field(
        default=False,
        description="Accept the X-User-Id header when no auth middleware set the user",
    )

    # Delivery log
    log_window_days: int = Field(
        default=7,
        description="Default look-back window for delivery log queries",
        ge=1,
    )

    # Observability
    metrics_enabled: bool = Field(
        default=False,
        description="Collect Prometheus metrics and serve them on /metrics",
    )
    log_level: str = Field(
        default="INFO",
        description="Root log level for the CLI entry points",
    )

    # Server
    host: str = Field(default="0.0.0.0", description="Bind address for `nexuscomm serve`")
    port: int = Field(default=8000, description="Bind port for `nexuscomm serve`", ge=1, le=65535)
