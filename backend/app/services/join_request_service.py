"""
Join request service.

Validation, authorization and side effects around the repository:

  route -> service (validate, authorize) -> repository (locked unit of work)
        -> commit -> notifications -> response

Capacity is never decided here. The availability pre-check in
`create_join_request` only produces a fast, friendly rejection; the
authoritative check runs again inside the repository transaction.
Notifications are dispatched after commit and cannot fail the call.
"""

from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings, get_settings
from app.core.errors import (
    DuplicateActiveRequest,
    EventNotOpen,
    Forbidden,
    HoldExpired,
    InsufficientCapacity,
    JoinRequestError,
    RequestNotFound,
    ValidationFailed,
)
from app.core.logging import get_logger
from app.core.metrics import holds_expired, record_capacity_conflict, record_join_attempt
from app.db.base import utcnow
from app.models.join_request import NOTE_MAX_LENGTH, JoinRequest, JoinRequestStatus
from app.repositories.join_request_repository import JoinRequestRepository, Page
from app.schemas.join_request import JoinRequestCreate, ListRequestsQuery
from app.services.availability_service import Availability
from app.services.event_access import DatabaseAuthorizationProvider, DatabaseEventStateProvider
from app.services.interfaces.access import HOST_ROLES, AuthorizationProvider, EventRole, EventStateProvider
from app.services.interfaces.notifier import (
    HOLD_EXPIRED,
    HOLD_EXTENDED,
    JOIN_REQUEST_RECEIVED,
    REQUEST_APPROVED,
    REQUEST_CANCELLED,
    REQUEST_DECLINED,
    REQUEST_WAITLISTED,
    Notifier,
)
from app.services.notifier_factory import get_notifier
from app.services.notifiers import dispatch_notification
from app.services.waitlist_promoter import WaitlistPromoter

logger = get_logger(__name__)

Clock = Callable[[], datetime]


class JoinRequestService:
    def __init__(
        self,
        db: AsyncSession,
        *,
        settings: Optional[Settings] = None,
        notifier: Optional[Notifier] = None,
        events: Optional[EventStateProvider] = None,
        authz: Optional[AuthorizationProvider] = None,
        clock: Clock = utcnow,
    ):
        self.settings = settings or get_settings()
        self.repo = JoinRequestRepository(db, self.settings)
        self.notifier = notifier or get_notifier()
        self.events = events or DatabaseEventStateProvider(db)
        self.authz = authz or DatabaseAuthorizationProvider(db, self.events)
        self.clock = clock
        self.promoter = WaitlistPromoter(
            self.repo,
            self.notifier,
            policy=self.settings.WAITLIST_PROMOTION_POLICY,
            clock=clock,
        )

    # ------------------------------------------------------------------
    # Guest operations
    # ------------------------------------------------------------------

    async def get_event_availability(self, event_id: int) -> Availability:
        return await self.repo.get_availability(event_id, self.clock())

    async def create_join_request(self, event_id: int, user_id: int, payload: JoinRequestCreate) -> JoinRequest:
        """
        Ask for `payload.party_size` seats. The seats are held for
        JOIN_HOLD_TTL_MIN minutes while the host decides.
        """
        if payload.party_size < 1:
            raise ValidationFailed("party_size must be at least 1")
        note = payload.note
        if note is not None and len(note) > NOTE_MAX_LENGTH:
            raise ValidationFailed(f"note must be at most {NOTE_MAX_LENGTH} characters")

        now = self.clock()
        try:
            if await self.repo.has_active_request(event_id, user_id):
                raise DuplicateActiveRequest()

            availability = await self.repo.get_availability(event_id, now)
            if availability.available < payload.party_size:
                record_capacity_conflict("create_precheck")
                raise InsufficientCapacity(payload.party_size, availability.available)

            request = await self.repo.create_request(
                event_id=event_id,
                user_id=user_id,
                party_size=payload.party_size,
                note=note,
                hold_ttl_minutes=self.settings.JOIN_HOLD_TTL_MIN,
                now=now,
            )
        except JoinRequestError as e:
            record_join_attempt("error" if e.status_code >= 500 else "rejected")
            raise

        record_join_attempt("created")
        await dispatch_notification(self.notifier, JOIN_REQUEST_RECEIVED, request)
        return request

    async def get_join_request(self, event_id: int, request_id: int, user_id: int) -> JoinRequest:
        """Visible to the requester and to the event's host and co-hosts."""
        request = await self._get_scoped(event_id, request_id)
        if request.user_id != user_id:
            await self._require_host(event_id, user_id)
        return request

    async def cancel_request(self, event_id: int, request_id: int, user_id: int) -> JoinRequest:
        """Owner withdraws a pending or waitlisted request."""
        request = await self._get_scoped(event_id, request_id)
        if request.user_id != user_id:
            raise Forbidden("Only the requester can cancel this request")
        if request.status == JoinRequestStatus.PENDING.value and request.hold_expires_at <= self.clock():
            raise HoldExpired()

        request = await self.repo.transition_status(
            request_id,
            JoinRequestStatus.CANCELLED.value,
            expected_current_status=request.status,
            now=self.clock(),
        )
        await dispatch_notification(self.notifier, REQUEST_CANCELLED, request)
        await self._after_release(event_id)
        return request

    # ------------------------------------------------------------------
    # Host operations
    # ------------------------------------------------------------------

    async def list_join_requests(self, event_id: int, host_user_id: int, query: ListRequestsQuery) -> Page:
        await self._require_host(event_id, host_user_id)
        status = query.status.value if query.status is not None else None
        return await self.repo.list_requests(event_id, limit=query.limit, offset=query.offset, status=status)

    async def approve_request(self, event_id: int, request_id: int, host_user_id: int) -> JoinRequest:
        await self._require_host(event_id, host_user_id)
        request = await self._get_scoped(event_id, request_id)
        if request.status == JoinRequestStatus.PENDING.value and request.hold_expires_at <= self.clock():
            raise HoldExpired()

        request = await self.repo.transition_status(
            request_id,
            JoinRequestStatus.APPROVED.value,
            expected_current_status=JoinRequestStatus.PENDING.value,
            now=self.clock(),
        )
        await dispatch_notification(self.notifier, REQUEST_APPROVED, request)
        return request

    async def decline_request(self, event_id: int, request_id: int, host_user_id: int) -> JoinRequest:
        await self._require_host(event_id, host_user_id)
        await self._get_scoped(event_id, request_id)

        request = await self.repo.transition_status(
            request_id,
            JoinRequestStatus.DECLINED.value,
            expected_current_status=JoinRequestStatus.PENDING.value,
            now=self.clock(),
        )
        await dispatch_notification(self.notifier, REQUEST_DECLINED, request)
        await self._after_release(event_id)
        return request

    async def waitlist_request(self, event_id: int, request_id: int, host_user_id: int) -> JoinRequest:
        await self._require_host(event_id, host_user_id)
        await self._get_scoped(event_id, request_id)

        request = await self.repo.transition_status(
            request_id,
            JoinRequestStatus.WAITLISTED.value,
            expected_current_status=JoinRequestStatus.PENDING.value,
            now=self.clock(),
        )
        await dispatch_notification(self.notifier, REQUEST_WAITLISTED, request)
        return request

    async def extend_request_hold(
        self,
        event_id: int,
        request_id: int,
        host_user_id: int,
        extension_minutes: int,
    ) -> JoinRequest:
        await self._require_host(event_id, host_user_id)
        await self._get_scoped(event_id, request_id)

        request = await self.repo.extend_hold(request_id, extension_minutes, self.clock())
        await dispatch_notification(self.notifier, HOLD_EXTENDED, request)
        return request

    async def reorder_waitlist(self, event_id: int, request_id: int, host_user_id: int, waitlist_pos: int) -> JoinRequest:
        await self._require_host(event_id, host_user_id)
        await self._get_scoped(event_id, request_id)
        return await self.repo.reorder_waitlist(request_id, waitlist_pos, self.clock())

    async def promote_waitlist(self, event_id: int, host_user_id: int) -> int:
        await self._require_host(event_id, host_user_id)
        if not await self.events.is_editable(event_id):
            event = await self.events.get_event(event_id)
            raise EventNotOpen(event_id, event.status)
        promoted = await self.promoter.promote(event_id)
        return len(promoted)

    # ------------------------------------------------------------------
    # Background
    # ------------------------------------------------------------------

    async def expire_holds(self) -> int:
        """Expire elapsed holds, notify the guests, then refill the affected events."""
        expired = await self.repo.expire_stale_holds_by_event(self.clock())
        count = 0
        for event_id, requests in expired.items():
            count += len(requests)
            logger.info("event_holds_expired", event_id=event_id, count=len(requests))
            for request in requests:
                await dispatch_notification(self.notifier, HOLD_EXPIRED, request)
        holds_expired.inc(count)

        if expired and self.settings.WAITLIST_AUTO_PROMOTE:
            await self.promoter.promote_events(expired.keys())
        return count

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _require_host(self, event_id: int, user_id: int) -> EventRole:
        role = await self.authz.get_role(event_id, user_id)
        if role not in HOST_ROLES:
            logger.info("host_action_denied", event_id=event_id, user_id=user_id, role=role.value)
            raise Forbidden("Only the event host can manage join requests")
        return role

    async def _get_scoped(self, event_id: int, request_id: int) -> JoinRequest:
        request = await self.repo.get_request(request_id)
        if request.event_id != event_id:
            raise RequestNotFound(request_id)
        return request

    async def _after_release(self, event_id: int) -> None:
        if not self.settings.WAITLIST_AUTO_PROMOTE:
            return
        await self.promoter.promote_events([event_id])
