"""
Tests for notifier backends and dispatch.
"""

import json
from datetime import datetime, timezone

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from app.core.config import Settings
from app.infrastructure import redis_client
from app.models.join_request import JoinRequest
from app.services import notifiers
from app.services.interfaces.notifier import REQUEST_APPROVED
from app.services.notifiers import LoggingNotifier, RedisNotifier, build_payload, dispatch_notification

from conftest import FailingNotifier, RecordingNotifier


def _request() -> JoinRequest:
    request = JoinRequest(
        event_id=7,
        user_id=42,
        party_size=2,
        status="pending",
        hold_expires_at=datetime(2026, 6, 1, 18, 30, tzinfo=timezone.utc),
    )
    request.id = 3
    return request


class _FakeRedis:
    def __init__(self):
        self.published = []

    async def publish(self, channel, message):
        self.published.append((channel, message))
        return 1


def test_payload():
    assert build_payload("hold_extended", _request()) == {
        "type": "hold_extended",
        "request_id": 3,
        "event_id": 7,
        "user_id": 42,
        "party_size": 2,
        "status": "pending",
        "hold_expires_at": "2026-06-01T18:30:00+00:00",
        "waitlist_pos": None,
    }


@pytest.mark.asyncio
async def test_redis_notifier_publishes(monkeypatch):
    fake = _FakeRedis()

    async def fake_get_redis():
        return fake

    monkeypatch.setattr(notifiers, "get_redis", fake_get_redis)
    await RedisNotifier(channel="join_requests:test").notify(REQUEST_APPROVED, _request())

    channel, message = fake.published[0]
    assert channel == "join_requests:test"
    assert json.loads(message)["type"] == REQUEST_APPROVED


@pytest.mark.asyncio
async def test_redis_notifier_without_redis(monkeypatch):
    async def no_redis():
        return None

    monkeypatch.setattr(notifiers, "get_redis", no_redis)
    await RedisNotifier(channel="join_requests:test").notify(REQUEST_APPROVED, _request())


@pytest.mark.asyncio
async def test_logging_notifier():
    await LoggingNotifier().notify(REQUEST_APPROVED, _request())


@pytest.mark.asyncio
async def test_dispatch_swallows_failures():
    assert await dispatch_notification(FailingNotifier(), REQUEST_APPROVED, _request()) is False

    recording = RecordingNotifier()
    assert await dispatch_notification(recording, REQUEST_APPROVED, _request()) is True
    assert recording.sent == [(REQUEST_APPROVED, 3, "pending")]


class _UnreachableRedis:
    async def ping(self):
        raise RedisConnectionError("Connection refused")

    async def aclose(self):
        pass


@pytest.mark.asyncio
async def test_redis_failure_backs_off(monkeypatch):
    attempts = []

    def from_url(url, **kwargs):
        attempts.append(url)
        return _UnreachableRedis()

    settings = Settings(REDIS_ENABLED=True, REDIS_URL="redis://cache:6379/0", REDIS_RETRY_BACKOFF_SECONDS=30)
    monkeypatch.setattr(redis_client, "get_settings", lambda: settings)
    monkeypatch.setattr(redis_client.redis, "from_url", from_url)
    monkeypatch.setattr(redis_client, "_redis_client", None)
    monkeypatch.setattr(redis_client, "_last_failure", None)

    assert await redis_client.get_redis() is None
    assert await redis_client.get_redis() is None
    assert await redis_client.get_redis_status() == {"status": "unavailable"}
    assert attempts == ["redis://cache:6379/0"]

    # Once the back-off window has passed the next call reconnects
    monkeypatch.setattr(redis_client, "_last_failure", redis_client._last_failure - 31)
    assert await redis_client.get_redis() is None
    assert len(attempts) == 2
