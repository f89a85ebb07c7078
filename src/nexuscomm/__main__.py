"""CLI entry point for NexusComm webhooks."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path

import click

from nexuscomm.webhooks.config import WebhookConfig

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    """Configure the root logger for CLI entry points."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


@click.group()
@click.option(
    "--log-level",
    default=None,
    help="Override log level (default: NEXUSCOMM_WEBHOOK_LOG_LEVEL or INFO)",
)
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, log_level: str | None, debug: bool) -> None:
    """NexusComm - webhook delivery engine."""
    config = WebhookConfig()
    configure_logging("DEBUG" if debug else (log_level or config.log_level))

    ctx.ensure_object(dict)
    ctx.obj["config"] = config


@cli.command()
@click.option("--host", default=None, help="Bind address (default: from config)")
@click.option("--port", type=int, default=None, help="Bind port (default: from config)")
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None) -> None:
    """Run the HTTP API (management, event publishing and inbound webhooks)."""
    import uvicorn

    from nexuscomm.app import create_app

    config: WebhookConfig = ctx.obj["config"]
    app = create_app(config)

    bind_host = host or config.host
    bind_port = port or config.port
    logger.info(f"Listening on {bind_host}:{bind_port}")
    uvicorn.run(app, host=bind_host, port=bind_port, log_config=None)


@cli.command()
@click.pass_context
def worker(ctx: click.Context) -> None:
    """Run the arq worker that performs queued delivery attempts."""
    from arq import run_worker

    from nexuscomm.webhooks.worker import create_worker_settings

    config: WebhookConfig = ctx.obj["config"]
    if not config.redis_url:
        click.echo("Error: NEXUSCOMM_WEBHOOK_REDIS_URL is required for the worker", err=True)
        sys.exit(1)

    from nexuscomm.webhooks.metrics import WebhookMetrics

    metrics = WebhookMetrics(enabled=config.metrics_enabled)
    run_worker(create_worker_settings(config, metrics=metrics))


@cli.command()
@click.argument("payload_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--secret", envvar="NEXUSCOMM_WEBHOOK_SECRET", required=True, help="Signing secret")
def sign(payload_path: Path, secret: str) -> None:
    """Print the X-Signature value for a JSON payload file."""
    from nexuscomm.webhooks.signature import SignatureError
    from nexuscomm.webhooks.signature import sign as sign_envelope

    try:
        payload = json.loads(payload_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        click.echo(f"Error: {payload_path} is not valid JSON: {e}", err=True)
        sys.exit(1)

    if not isinstance(payload, dict):
        click.echo("Error: payload must be a JSON object", err=True)
        sys.exit(1)

    try:
        click.echo(sign_envelope(secret, payload))
    except SignatureError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


def main() -> None:
    """Main entry point for the nexuscomm CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
