"""Tests for the append-only delivery log."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from nexuscomm.webhooks.delivery_log import (
    MemoryDeliveryLog,
    RedisDeliveryLog,
    default_window_start,
)
from nexuscomm.webhooks.errors import DuplicateAttemptError
from nexuscomm.webhooks.models import DeliveryAttempt
from nexuscomm.webhooks.store import generate_attempt_id

BASE_TIME = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


def make_attempt(
    attempt_number: int = 0,
    event_id: str = "evt_1",
    webhook_id: str = "wh_1",
    user_id: str = "user_1",
    minutes: int = 0,
    successful: bool = False,
) -> DeliveryAttempt:
    return DeliveryAttempt(
        id=generate_attempt_id(),
        webhook_id=webhook_id,
        user_id=user_id,
        event_id=event_id,
        event_type="contact_created",
        payload='{"data":{},"event":"contact_created"}',
        attempt_number=attempt_number,
        response_status=200 if successful else 500,
        response_time_ms=12.5,
        is_successful=successful,
        error_message=None if successful else "HTTP 500",
        created_at=BASE_TIME + timedelta(minutes=minutes),
    )


class TestMemoryDeliveryLog:
    """Tests for the in-memory delivery log."""

    @pytest.fixture
    def log(self) -> MemoryDeliveryLog:
        return MemoryDeliveryLog()

    def test_newest_first(self, log: MemoryDeliveryLog) -> None:
        for n in range(3):
            log.append(make_attempt(attempt_number=n, minutes=n))

        rows = log.list_for_endpoint("wh_1")

        assert [row.attempt_number for row in rows] == [2, 1, 0]

    def test_duplicate_attempt_rejected(self, log: MemoryDeliveryLog) -> None:
        log.append(make_attempt(attempt_number=0))

        with pytest.raises(DuplicateAttemptError) as exc_info:
            log.append(make_attempt(attempt_number=0))

        assert exc_info.value.attempt_number == 0
        assert len(log.list_for_endpoint("wh_1")) == 1

    def test_same_attempt_number_other_event(self, log: MemoryDeliveryLog) -> None:
        log.append(make_attempt(attempt_number=0, event_id="evt_1"))
        log.append(make_attempt(attempt_number=0, event_id="evt_2"))

        assert len(log.list_for_endpoint("wh_1")) == 2

    def test_time_window(self, log: MemoryDeliveryLog) -> None:
        for n in range(5):
            log.append(make_attempt(event_id=f"evt_{n}", minutes=n * 10))

        rows = log.list_for_endpoint(
            "wh_1",
            since=BASE_TIME + timedelta(minutes=10),
            until=BASE_TIME + timedelta(minutes=30),
        )

        assert [row.event_id for row in rows] == ["evt_3", "evt_2", "evt_1"]

    def test_naive_bounds_treated_as_utc(self, log: MemoryDeliveryLog) -> None:
        log.append(make_attempt(minutes=0))

        rows = log.list_for_endpoint("wh_1", since=datetime(2025, 6, 1, 11, 59))

        assert len(rows) == 1

    def test_limit(self, log: MemoryDeliveryLog) -> None:
        for n in range(10):
            log.append(make_attempt(event_id=f"evt_{n}", minutes=n))

        rows = log.list_for_endpoint("wh_1", limit=3)

        assert [row.event_id for row in rows] == ["evt_9", "evt_8", "evt_7"]

    def test_filters_by_endpoint_and_owner(self, log: MemoryDeliveryLog) -> None:
        log.append(make_attempt(webhook_id="wh_1"))
        log.append(make_attempt(webhook_id="wh_2"))

        assert len(log.list_for_endpoint("wh_1")) == 1
        assert log.list_for_endpoint("wh_1", user_id="user_2") == []
        assert log.list_for_endpoint("wh_unknown") == []

    def test_rows_are_copies(self, log: MemoryDeliveryLog) -> None:
        log.append(make_attempt())

        log.list_for_endpoint("wh_1")[0].error_message = "changed"

        assert log.list_for_endpoint("wh_1")[0].error_message == "HTTP 500"


class TestRedisDeliveryLog:
    """Tests for the Redis delivery log with a mocked client."""

    @pytest.fixture
    def redis_client(self) -> MagicMock:
        return MagicMock()

    @pytest.fixture
    def log(self, redis_client: MagicMock) -> RedisDeliveryLog:
        return RedisDeliveryLog(redis_client, prefix="test:")

    def test_append_claims_key_then_pushes(
        self, log: RedisDeliveryLog, redis_client: MagicMock
    ) -> None:
        redis_client.set.return_value = True
        attempt = make_attempt(attempt_number=2)

        log.append(attempt)

        redis_client.set.assert_called_once_with(
            "test:delivery:attempt:wh_1:evt_1:2", attempt.id, nx=True
        )
        redis_client.rpush.assert_called_once_with(
            "test:delivery:by_webhook:wh_1", attempt.model_dump_json()
        )

    def test_append_duplicate(self, log: RedisDeliveryLog, redis_client: MagicMock) -> None:
        redis_client.set.return_value = None

        with pytest.raises(DuplicateAttemptError):
            log.append(make_attempt())

        redis_client.rpush.assert_not_called()

    def test_failed_push_releases_attempt_key(
        self, log: RedisDeliveryLog, redis_client: MagicMock
    ) -> None:
        """When the row cannot be written the same attempt may be logged later."""
        redis_client.set.return_value = True
        redis_client.rpush.side_effect = ConnectionError("redis down")

        with pytest.raises(ConnectionError):
            log.append(make_attempt(attempt_number=1))

        redis_client.delete.assert_called_once_with("test:delivery:attempt:wh_1:evt_1:1")

    def test_list_newest_first_with_filters(
        self, log: RedisDeliveryLog, redis_client: MagicMock
    ) -> None:
        rows = [
            make_attempt(event_id="evt_0", minutes=0),
            make_attempt(event_id="evt_1", minutes=10, user_id="user_2"),
            make_attempt(event_id="evt_2", minutes=20),
            make_attempt(event_id="evt_3", minutes=30),
        ]
        redis_client.lrange.return_value = [row.model_dump_json().encode() for row in rows]

        result = log.list_for_endpoint(
            "wh_1",
            user_id="user_1",
            since=BASE_TIME + timedelta(minutes=5),
        )

        assert [row.event_id for row in result] == ["evt_3", "evt_2"]
        redis_client.lrange.assert_called_once_with("test:delivery:by_webhook:wh_1", 0, -1)

    def test_list_limit_and_bad_rows(
        self, log: RedisDeliveryLog, redis_client: MagicMock
    ) -> None:
        rows = [make_attempt(event_id=f"evt_{n}", minutes=n) for n in range(5)]
        raw = [row.model_dump_json().encode() for row in rows]
        raw.append(b"not json")
        redis_client.lrange.return_value = raw

        result = log.list_for_endpoint("wh_1", limit=2)

        assert [row.event_id for row in result] == ["evt_4", "evt_3"]

    @pytest.mark.parametrize("limit", [0, -3])
    def test_list_non_positive_limit(
        self, log: RedisDeliveryLog, redis_client: MagicMock, limit: int
    ) -> None:
        """Matches the in-memory log: no rows, and Redis is not read."""
        redis_client.lrange.return_value = [make_attempt().model_dump_json().encode()]

        assert log.list_for_endpoint("wh_1", limit=limit) == []
        redis_client.lrange.assert_not_called()


def test_default_window_start() -> None:
    start = default_window_start(7)
    expected = datetime.now(timezone.utc) - timedelta(days=7)

    assert abs((start - expected).total_seconds()) < 5
