"""Append-only delivery log.

One `DeliveryAttempt` per HTTP attempt. Rows are never updated or deleted;
the only query is "attempts for an endpoint within a time window, newest
first". Appending a second row for the same (webhook, event, attempt number)
raises `DuplicateAttemptError`.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from nexuscomm.webhooks.errors import DuplicateAttemptError
from nexuscomm.webhooks.models import DeliveryAttempt, utc_now

if TYPE_CHECKING:
    import redis

logger = logging.getLogger(__name__)

__all__ = [
    "DEFAULT_LOG_LIMIT",
    "MAX_LOG_LIMIT",
    "DeliveryLogProtocol",
    "MemoryDeliveryLog",
    "RedisDeliveryLog",
    "default_window_start",
]

DEFAULT_LOG_LIMIT = 50
MAX_LOG_LIMIT = 500


def default_window_start(days: int = 7) -> datetime:
    """Start of the default look-back window."""
    return utc_now() - timedelta(days=days)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _in_window(
    attempt: DeliveryAttempt, since: datetime | None, until: datetime | None
) -> bool:
    created = _as_utc(attempt.created_at)
    if since is not None and created < _as_utc(since):
        return False
    return not (until is not None and created > _as_utc(until))


class DeliveryLogProtocol(ABC):
    """Protocol for delivery log backends."""

    @abstractmethod
    def append(self, attempt: DeliveryAttempt) -> None:
        """Record an attempt.

        Raises:
            DuplicateAttemptError: (webhook_id, event_id, attempt_number) already logged
        """
        ...

    @abstractmethod
    def list_for_endpoint(
        self,
        webhook_id: str,
        user_id: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int = DEFAULT_LOG_LIMIT,
    ) -> list[DeliveryAttempt]:
        """Attempts for an endpoint, newest first.

        Args:
            webhook_id: Endpoint whose attempts to return
            user_id: When given, only rows owned by this user
            since: Inclusive lower bound on created_at
            until: Inclusive upper bound on created_at
            limit: Maximum rows returned
        """
        ...


class MemoryDeliveryLog(DeliveryLogProtocol):
    """In-memory delivery log (non-persistent, for development/testing)."""

    def __init__(self) -> None:
        self._attempts: dict[str, list[DeliveryAttempt]] = {}
        self._keys: set[tuple[str, str, int]] = set()
        self._lock = threading.Lock()

    def append(self, attempt: DeliveryAttempt) -> None:
        key = (attempt.webhook_id, attempt.event_id, attempt.attempt_number)
        with self._lock:
            if key in self._keys:
                raise DuplicateAttemptError(*key)
            self._keys.add(key)
            self._attempts.setdefault(attempt.webhook_id, []).append(
                attempt.model_copy(deep=True)
            )

    def list_for_endpoint(
        self,
        webhook_id: str,
        user_id: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int = DEFAULT_LOG_LIMIT,
    ) -> list[DeliveryAttempt]:
        with self._lock:
            rows = list(self._attempts.get(webhook_id, []))

        matched = [
            row
            for row in rows
            if (user_id is None or row.user_id == user_id)
            and _in_window(row, since, until)
        ]
        matched.sort(key=lambda row: _as_utc(row.created_at), reverse=True)
        return [row.model_copy(deep=True) for row in matched[: max(limit, 0)]]


class RedisDeliveryLog(DeliveryLogProtocol):
    """Redis-backed delivery log.

    Key schema:
        nexuscomm:delivery:attempt:{webhook_id}:{event_id}:{n} -> attempt ID (uniqueness guard)
        nexuscomm:delivery:by_webhook:{webhook_id}              -> List: JSON DeliveryAttempt, oldest first

    The guard key is claimed with SET NX before the row is pushed, so two
    writers racing on the same attempt cannot both succeed.
    """

    def __init__(
        self,
        redis_client: redis.Redis[bytes],
        prefix: str = "nexuscomm:",
    ) -> None:
        self._redis = redis_client
        self._prefix = prefix

    def _attempt_key(self, webhook_id: str, event_id: str, attempt_number: int) -> str:
        return f"{self._prefix}delivery:attempt:{webhook_id}:{event_id}:{attempt_number}"

    def _webhook_key(self, webhook_id: str) -> str:
        return f"{self._prefix}delivery:by_webhook:{webhook_id}"

    def append(self, attempt: DeliveryAttempt) -> None:
        attempt_key = self._attempt_key(
            attempt.webhook_id, attempt.event_id, attempt.attempt_number
        )
        claimed = self._redis.set(attempt_key, attempt.id, nx=True)
        if not claimed:
            raise DuplicateAttemptError(
                attempt.webhook_id, attempt.event_id, attempt.attempt_number
            )
        try:
            self._redis.rpush(self._webhook_key(attempt.webhook_id), attempt.model_dump_json())
        except Exception:
            # No row was written; free the key so the attempt can be logged again
            self._redis.delete(attempt_key)
            raise

    def list_for_endpoint(
        self,
        webhook_id: str,
        user_id: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int = DEFAULT_LOG_LIMIT,
    ) -> list[DeliveryAttempt]:
        if limit <= 0:
            return []

        raw_rows = self._redis.lrange(self._webhook_key(webhook_id), 0, -1)

        results: list[DeliveryAttempt] = []
        # Walk newest to oldest so the limit can stop the scan early
        for raw in reversed(raw_rows):
            try:
                row = DeliveryAttempt.model_validate_json(raw)
            except ValueError as e:
                logger.warning(f"Skipping unreadable delivery row for {webhook_id}: {e}")
                continue
            if user_id is not None and row.user_id != user_id:
                continue
            if not _in_window(row, since, until):
                continue
            results.append(row)
            if len(results) >= limit:
                break

        results.sort(key=lambda row: _as_utc(row.created_at), reverse=True)
        return results
