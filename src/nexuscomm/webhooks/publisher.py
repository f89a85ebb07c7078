"""Event publisher: fans an event out to every subscribed endpoint.

Provides a centralized interface for publishing integration events from the
rest of the platform (contact sync, messaging, CRM actions). Each matching
endpoint gets its own independent delivery run; one slow or failing
endpoint never delays the others, and `publish()` returns as soon as the
runs are started.

Runs execute either as in-process asyncio tasks (default) or as arq jobs
when an arq pool is supplied.
"""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from typing import TYPE_CHECKING, Any

from nexuscomm.webhooks.models import DeliveryResult, IntegrationEvent
from nexuscomm.webhooks.store import generate_event_id

if TYPE_CHECKING:
    from arq import ArqRedis

    from nexuscomm.webhooks.dispatcher import Dispatcher
    from nexuscomm.webhooks.models import WebhookRecord
    from nexuscomm.webhooks.registry import EndpointRegistry

logger = logging.getLogger(__name__)

__all__ = ["DELIVER_TASK_NAME", "EventPublisher", "delivery_job_id"]

# Name of the arq job function in nexuscomm.webhooks.worker
DELIVER_TASK_NAME = "deliver_webhook_task"

# How many (event, endpoint) pairs are remembered for duplicate suppression
_SEEN_LIMIT = 10_000


def delivery_job_id(event_id: str, webhook_id: str, attempt_number: int) -> str:
    """arq job ID for one attempt; arq refuses a second job with the same ID."""
    return f"{event_id}:{webhook_id}:{attempt_number}"


class EventPublisher:
    """Fan-out of integration events to subscribed endpoints.

    Example:
        >>> publisher = EventPublisher(registry, dispatcher)
        >>> event, webhook_ids = await publisher.create_event(
        ...     "user_1", "contact_created", {"id": "c_1", "name": "Ada"}
        ... )
        >>> results = await publisher.drain()
    """

    def __init__(
        self,
        registry: EndpointRegistry,
        dispatcher: Dispatcher,
        arq_pool: ArqRedis | None = None,
    ) -> None:
        """Initialize the publisher.

        Args:
            registry: Source of subscribed endpoints
            dispatcher: Runs deliveries in inline mode
            arq_pool: When set, runs are enqueued as arq jobs instead
        """
        self._registry = registry
        self._dispatcher = dispatcher
        self._arq_pool = arq_pool
        self._tasks: dict[tuple[str, str], asyncio.Task[DeliveryResult]] = {}
        self._seen: OrderedDict[tuple[str, str], None] = OrderedDict()

    @property
    def pending(self) -> int:
        """Number of inline runs still in progress."""
        return sum(1 for task in self._tasks.values() if not task.done())

    def set_arq_pool(self, arq_pool: ArqRedis | None) -> None:
        self._arq_pool = arq_pool

    def _claim(self, event_id: str, webhook_id: str) -> bool:
        key = (event_id, webhook_id)
        if key in self._seen:
            return False
        self._seen[key] = None
        while len(self._seen) > _SEEN_LIMIT:
            self._seen.popitem(last=False)
        return True

    async def publish(self, event: IntegrationEvent) -> list[str]:
        """Start one delivery run per subscribed, active endpoint.

        Args:
            event: Event to publish

        Returns:
            IDs of the endpoints a run was started for. Empty when nothing
            subscribes to the event; that is not an error.
        """
        endpoints = self._registry.find_subscribed(event.user_id, event.event_type)

        if not endpoints:
            logger.debug(
                f"No webhooks subscribed to {event.event_type} for user {event.user_id}"
            )
            return []

        webhook_ids: list[str] = []
        for endpoint in endpoints:
            if await self.dispatch_to(endpoint, event):
                webhook_ids.append(endpoint.id)

        if webhook_ids:
            logger.info(
                f"Published {event.event_type} ({event.id}) to "
                f"{len(webhook_ids)} webhook(s) for user {event.user_id}"
            )
        return webhook_ids

    async def dispatch_to(self, endpoint: WebhookRecord, event: IntegrationEvent) -> bool:
        """Start a delivery run for a single endpoint.

        Returns:
            False if a run for this (event, endpoint) pair was already started
        """
        if not self._claim(event.id, endpoint.id):
            logger.debug(f"Skipping duplicate delivery of {event.id} to {endpoint.id}")
            return False

        if self._arq_pool is not None:
            return await self._enqueue(endpoint, event)

        task = asyncio.create_task(
            self._dispatcher.deliver(endpoint, event),
            name=f"webhook-delivery-{event.id}-{endpoint.id}",
        )
        key = (event.id, endpoint.id)
        self._tasks[key] = task
        task.add_done_callback(lambda done: self._on_task_done(key, done))
        return True

    async def _enqueue(self, endpoint: WebhookRecord, event: IntegrationEvent) -> bool:
        assert self._arq_pool is not None
        try:
            job = await self._arq_pool.enqueue_job(
                DELIVER_TASK_NAME,
                endpoint.id,
                endpoint.user_id,
                event.model_dump_json(),
                0,
                _job_id=delivery_job_id(event.id, endpoint.id, 0),
            )
        except Exception as e:
            logger.error(f"Failed to enqueue webhook delivery for {endpoint.id}: {e}")
            # Nothing was queued, so a later publish may try again
            self._seen.pop((event.id, endpoint.id), None)
            return False

        if job is None:
            logger.debug(f"Delivery job for {event.id} to {endpoint.id} already exists")
            return False

        logger.debug(f"Enqueued webhook delivery: {endpoint.id} event={event.event_type}")
        return True

    def _on_task_done(
        self, key: tuple[str, str], task: asyncio.Task[DeliveryResult]
    ) -> None:
        if self._tasks.get(key) is task:
            del self._tasks[key]
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Delivery task {task.get_name()} crashed: {exc!r}")

    async def drain(self) -> list[DeliveryResult]:
        """Wait for the inline runs still in progress and return their results."""
        tasks = list(self._tasks.values())
        self._tasks.clear()
        if not tasks:
            return []
        gathered = await asyncio.gather(*tasks, return_exceptions=True)
        return [result for result in gathered if isinstance(result, DeliveryResult)]

    async def close(self) -> None:
        """Cancel runs still in progress (shutdown)."""
        tasks = [task for task in self._tasks.values() if not task.done()]
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"Cancelled {len(tasks)} in-flight webhook deliveries")

    async def create_event(
        self,
        user_id: str,
        event_type: str,
        payload: dict[str, Any] | None = None,
    ) -> tuple[IntegrationEvent, list[str]]:
        """Build an integration event and publish it.

        Returns:
            The created event and the endpoint IDs it was fanned out to
        """
        event = IntegrationEvent(
            id=generate_event_id(),
            user_id=user_id,
            event_type=event_type,
            payload=payload or {},
        )
        return event, await self.publish(event)
