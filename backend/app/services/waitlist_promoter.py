"""
Waitlist promotion.

Runs after capacity is released (decline, cancel, expiry) and on the
host's explicit promote action. Each attempt is one locked repository
transaction; the loop stops at the first attempt that moves nobody.
"""

from datetime import datetime
from typing import Callable, Iterable

from app.core.errors import JoinRequestError
from app.core.logging import get_logger
from app.core.metrics import waitlist_promotions
from app.db.base import utcnow
from app.models.join_request import JoinRequest
from app.repositories.join_request_repository import JoinRequestRepository
from app.services.interfaces.notifier import REQUEST_PROMOTED, Notifier
from app.services.notifiers import dispatch_notification

logger = get_logger(__name__)


class WaitlistPromoter:
    """Promotes waitlisted requests into released seats."""

    def __init__(
        self,
        repo: JoinRequestRepository,
        notifier: Notifier,
        policy: str = "fifo",
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repo = repo
        self.notifier = notifier
        self.policy = policy
        self.clock = clock

    async def promote(self, event_id: int) -> list[JoinRequest]:
        promoted: list[JoinRequest] = []
        while True:
            try:
                request = await self.repo.promote_next(event_id, self.policy, self.clock())
            except JoinRequestError as e:
                if not promoted:
                    raise
                # Keep the committed promotions; the rest waits for the next release
                logger.error("waitlist_promotion_interrupted", event_id=event_id, moved=len(promoted), code=e.code)
                await self.repo.reload(promoted)
                break
            if request is None:
                break
            promoted.append(request)
            waitlist_promotions.inc()

        for request in promoted:
            await dispatch_notification(self.notifier, REQUEST_PROMOTED, request)
        if promoted:
            logger.info("waitlist_promotion_finished", event_id=event_id, moved=len(promoted), policy=self.policy)
        return promoted

    async def promote_events(self, event_ids: Iterable[int]) -> int:
        """Promote on several events. A failure on one event does not stop the others."""
        total = 0
        for event_id in event_ids:
            try:
                total += len(await self.promote(event_id))
            except JoinRequestError as e:
                logger.error("waitlist_promotion_failed", event_id=event_id, code=e.code, error=e.message)
        return total
