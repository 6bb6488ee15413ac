"""
Notifier backends.

RedisNotifier publishes JSON payloads to a pub/sub channel; push and
email workers subscribe and do the actual delivery. When Redis is
disabled or unreachable the payload is logged instead, so the request
path never depends on Redis being up.
"""

import json

from app.core.config import get_settings
from app.core.logging import get_logger
from app.core.metrics import record_notification
from app.infrastructure.redis_client import get_redis
from app.models.join_request import JoinRequest
from app.services.interfaces.notifier import Notifier

logger = get_logger(__name__)


def build_payload(event_type: str, request: JoinRequest) -> dict:
    return {
        "type": event_type,
        "request_id": request.id,
        "event_id": request.event_id,
        "user_id": request.user_id,
        "party_size": request.party_size,
        "status": request.status,
        "hold_expires_at": request.hold_expires_at.isoformat() if request.hold_expires_at else None,
        "waitlist_pos": request.waitlist_pos,
    }


class LoggingNotifier(Notifier):
    """Writes notifications to the structured log."""

    async def notify(self, event_type: str, request: JoinRequest) -> None:
        logger.info("notification", **build_payload(event_type, request))


class RedisNotifier(Notifier):
    """Publishes notifications to Redis pub/sub."""

    def __init__(self, channel: str | None = None):
        self.channel = channel or get_settings().NOTIFY_CHANNEL

    async def notify(self, event_type: str, request: JoinRequest) -> None:
        payload = build_payload(event_type, request)
        client = await get_redis()
        if client is None:
            logger.info("notification_not_published", reason="redis_unavailable", **payload)
            return
        receivers = await client.publish(self.channel, json.dumps(payload))
        logger.debug("notification_published", channel=self.channel, receivers=receivers, type=event_type)


async def dispatch_notification(notifier: Notifier, event_type: str, request: JoinRequest) -> bool:
    """Deliver after commit. A delivery failure is logged and never propagates."""
    try:
        await notifier.notify(event_type, request)
    except Exception as e:
        record_notification(event_type, sent=False)
        logger.warning(
            "notification_failed",
            type=event_type,
            request_id=request.id,
            event_id=request.event_id,
            error=str(e),
        )
        return False
    record_notification(event_type, sent=True)
    return True
