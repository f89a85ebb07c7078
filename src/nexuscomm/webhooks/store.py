"""Endpoint storage with in-memory and Redis backends.

Stores are plain keyed repositories over `WebhookRecord`: they enforce
ownership on reads and deletes by returning None/False, and leave validation
and error reporting to `EndpointRegistry`.
"""

from __future__ import annotations

import logging
import secrets
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import TYPE_CHECKING

from nexuscomm.webhooks.models import WebhookRecord

__all__ = [
    "EndpointStoreProtocol",
    "MemoryEndpointStore",
    "RedisEndpointStore",
    "generate_attempt_id",
    "generate_event_id",
    "generate_webhook_id",
]

if TYPE_CHECKING:
    import redis

logger = logging.getLogger(__name__)


def generate_webhook_id() -> str:
    """Generate a unique webhook ID."""
    return f"wh_{secrets.token_hex(12)}"


def generate_event_id() -> str:
    """Generate a unique event ID."""
    return f"evt_{secrets.token_hex(12)}"


def generate_attempt_id() -> str:
    """Generate a unique delivery attempt ID."""
    return f"att_{secrets.token_hex(12)}"


class EndpointStoreProtocol(ABC):
    """Protocol for endpoint storage backends."""

    @abstractmethod
    def save(self, record: WebhookRecord) -> None:
        """Insert or replace a record."""
        ...

    @abstractmethod
    def get(self, webhook_id: str, user_id: str) -> WebhookRecord | None:
        """Get a record by ID (enforces ownership)."""
        ...

    @abstractmethod
    def list_for_user(self, user_id: str) -> list[WebhookRecord]:
        """List all records owned by a user, oldest first."""
        ...

    @abstractmethod
    def delete(self, webhook_id: str, user_id: str) -> bool:
        """Delete a record (enforces ownership). Returns True if removed."""
        ...


class MemoryEndpointStore(EndpointStoreProtocol):
    """In-memory endpoint storage (non-persistent, for development/testing)."""

    def __init__(self) -> None:
        self._webhooks: dict[str, WebhookRecord] = {}
        self._webhooks_by_user: dict[str, list[str]] = {}
        self._lock = threading.Lock()

    def save(self, record: WebhookRecord) -> None:
        with self._lock:
            self._webhooks[record.id] = record.model_copy(deep=True)
            owned = self._webhooks_by_user.setdefault(record.user_id, [])
            if record.id not in owned:
                owned.append(record.id)

    def get(self, webhook_id: str, user_id: str) -> WebhookRecord | None:
        with self._lock:
            record = self._webhooks.get(webhook_id)
            if not record or record.user_id != user_id:
                return None
            return record.model_copy(deep=True)

    def list_for_user(self, user_id: str) -> list[WebhookRecord]:
        with self._lock:
            return [
                self._webhooks[wh_id].model_copy(deep=True)
                for wh_id in self._webhooks_by_user.get(user_id, [])
                if wh_id in self._webhooks
            ]

    def delete(self, webhook_id: str, user_id: str) -> bool:
        with self._lock:
            record = self._webhooks.get(webhook_id)
            if not record or record.user_id != user_id:
                return False

            del self._webhooks[webhook_id]
            owned = self._webhooks_by_user.get(user_id, [])
            if webhook_id in owned:
                owned.remove(webhook_id)
            return True


class RedisEndpointStore(EndpointStoreProtocol):
    """Redis-backed endpoint storage.

    Key schema:
        nexuscomm:webhook:{id}              -> JSON: WebhookRecord
        nexuscomm:webhook:by_user:{user_id} -> Sorted set: webhook IDs by creation time
    """

    def __init__(
        self,
        redis_client: redis.Redis[bytes],
        prefix: str = "nexuscomm:",
    ) -> None:
        self._redis = redis_client
        self._prefix = prefix

    def _webhook_key(self, webhook_id: str) -> str:
        return f"{self._prefix}webhook:{webhook_id}"

    def _user_key(self, user_id: str) -> str:
        return f"{self._prefix}webhook:by_user:{user_id}"

    def _load(self, webhook_id: str) -> WebhookRecord | None:
        data = self._redis.get(self._webhook_key(webhook_id))
        if not data:
            return None
        return WebhookRecord.model_validate_json(data)

    def save(self, record: WebhookRecord) -> None:
        pipe = self._redis.pipeline()
        pipe.set(self._webhook_key(record.id), record.model_dump_json())
        pipe.zadd(
            self._user_key(record.user_id),
            {record.id: _sort_score(record.created_at)},
            nx=True,
        )
        pipe.execute()

    def get(self, webhook_id: str, user_id: str) -> WebhookRecord | None:
        record = self._load(webhook_id)
        if record is None or record.user_id != user_id:
            return None
        return record

    def list_for_user(self, user_id: str) -> list[WebhookRecord]:
        webhook_ids = self._redis.zrange(self._user_key(user_id), 0, -1)

        results: list[WebhookRecord] = []
        for wh_id in webhook_ids:
            wh_id_str = wh_id.decode() if isinstance(wh_id, bytes) else wh_id
            record = self._load(wh_id_str)
            if record is not None and record.user_id == user_id:
                results.append(record)
        return results

    def delete(self, webhook_id: str, user_id: str) -> bool:
        record = self._load(webhook_id)
        if record is None or record.user_id != user_id:
            return False

        pipe = self._redis.pipeline()
        pipe.delete(self._webhook_key(webhook_id))
        pipe.zrem(self._user_key(user_id), webhook_id)
        pipe.execute()

        logger.info(f"Deleted webhook {webhook_id}")
        return True


def _sort_score(iso_timestamp: str) -> float:
    return datetime.fromisoformat(iso_timestamp).timestamp()
