"""
Join request repository: the only writer of join request and participant rows.

CONCURRENCY STRATEGY: Pessimistic Locking on the Event Row
==========================================================

Problem:
  Two guests ask for the last 6 seats of a 10-seat event at the same time.
  Both compute available=10, both insert a 6-seat hold.
  Result: 12 seats committed against 10.

Solution:
  Every capacity-sensitive operation is one transaction that starts with

    SELECT ... FROM events WHERE id = :event_id FOR UPDATE

  and only then recomputes availability and writes. The second caller
  blocks on the row lock until the first commits, then sees its hold.
  Lock order is always event row first, request row second, so the
  sweeper, the promoter and foreground requests cannot deadlock.

  SQLite has no row locks; the session factory opens SQLite transactions
  with BEGIN IMMEDIATE, which gives the same serialization.

  A guest has at most one open (pending or waitlisted) request per
  event, and approval refuses a guest who is already seated, so one
  guest can never hold two participant rows. The partial unique index
  on (event_id, user_id) WHERE status='pending' is the final safety net
  against duplicate active requests.

Failure semantics:
  - Domain errors (capacity, duplicate, invalid transition) roll back
    and propagate unchanged. They are never retried.
  - Reads retry transient storage errors with exponential backoff.
  - Writes never retry: a transient failure surfaces as Internal so a
    transition can never be applied twice.
"""

import asyncio
import time
from collections import defaultdict
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional, TypeVar

from sqlalchemy import func, select, update
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings, get_settings
from app.core.errors import (
    AlreadyParticipant,
    DuplicateActiveRequest,
    EventNotFound,
    EventNotOpen,
    HoldExpired,
    InsufficientCapacity,
    Internal,
    InvalidTransition,
    JoinRequestError,
    NotPending,
    NotWaitlisted,
    RequestNotFound,
)
from app.core.logging import get_logger
from app.core.metrics import (
    db_retries,
    hold_expiry_failures,
    record_capacity_conflict,
    record_transition,
    transition_latency,
)
from app.models.event import Event, EventStatus
from app.models.join_request import JoinRequest, JoinRequestStatus, can_transition
from app.models.participant import PARTICIPANT_ACCEPTED, Participant
from app.services.availability_service import Availability, compute_availability, get_availability

logger = get_logger(__name__)

T = TypeVar("T")

PROMOTION_POLICIES = ("fifo", "best_fit")

# A guest may hold at most one of these per event
OPEN_STATUSES = (JoinRequestStatus.PENDING.value, JoinRequestStatus.WAITLISTED.value)


@dataclass
class Page:
    items: list[JoinRequest]
    total_count: int
    next_offset: Optional[int]


class JoinRequestRepository:
    def __init__(self, db: AsyncSession, settings: Optional[Settings] = None):
        settings = settings or get_settings()
        self.db = db
        self.read_retry_attempts = max(1, settings.DB_READ_RETRY_ATTEMPTS)
        self.read_retry_backoff = settings.DB_READ_RETRY_BACKOFF_SECONDS

    # ------------------------------------------------------------------
    # Transaction and retry plumbing
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _atomic(self, operation: str):
        """One unit of work: commit on success, roll back on any error."""
        start = time.perf_counter()
        try:
            yield
            await self.db.commit()
        except JoinRequestError:
            await self.db.rollback()
            raise
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("repository_write_failed", operation=operation, error=str(e))
            raise Internal() from e
        except BaseException:
            # Invariant violations and cancellation propagate unchanged
            await self.db.rollback()
            raise
        finally:
            transition_latency.labels(operation=operation).observe(time.perf_counter() - start)

    async def _read(self, operation: str, fn: Callable[[], Awaitable[T]]) -> T:
        for attempt in range(1, self.read_retry_attempts + 1):
            try:
                return await fn()
            except DBAPIError as e:
                await self.db.rollback()
                transient = isinstance(e, OperationalError) or e.connection_invalidated
                if not transient or attempt == self.read_retry_attempts:
                    logger.error("repository_read_failed", operation=operation, attempt=attempt, error=str(e))
                    raise Internal() from e
                db_retries.inc()
                logger.info("repository_read_retry", operation=operation, attempt=attempt, error=str(e))
                await asyncio.sleep(self.read_retry_backoff * (2 ** (attempt - 1)))
        raise Internal()

    # ------------------------------------------------------------------
    # Locks
    # ------------------------------------------------------------------

    async def _lock_event(self, event_id: int) -> Event:
        result = await self.db.execute(
            select(Event)
            .where(Event.id == event_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        event = result.scalar_one_or_none()
        if event is None:
            raise EventNotFound(event_id)
        return event

    async def _lock_request(self, request_id: int) -> JoinRequest:
        result = await self.db.execute(
            select(JoinRequest)
            .where(JoinRequest.id == request_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        request = result.scalar_one_or_none()
        if request is None:
            raise RequestNotFound(request_id)
        return request

    async def _lock_request_and_event(self, request_id: int) -> tuple[Event, JoinRequest]:
        event_id = await self.db.scalar(select(JoinRequest.event_id).where(JoinRequest.id == request_id))
        if event_id is None:
            raise RequestNotFound(request_id)
        event = await self._lock_event(event_id)
        request = await self._lock_request(request_id)
        return event, request

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_availability(self, event_id: int, now: datetime) -> Availability:
        return await self._read("get_availability", lambda: get_availability(self.db, event_id, now))

    async def get_request(self, request_id: int) -> JoinRequest:
        async def _fetch():
            result = await self.db.execute(
                select(JoinRequest)
                .where(JoinRequest.id == request_id)
                .execution_options(populate_existing=True)
            )
            return result.scalar_one_or_none()

        request = await self._read("get_request", _fetch)
        if request is None:
            raise RequestNotFound(request_id)
        return request

    async def has_active_request(self, event_id: int, user_id: int) -> bool:
        async def _fetch():
            return await self.db.scalar(
                select(JoinRequest.id).where(
                    JoinRequest.event_id == event_id,
                    JoinRequest.user_id == user_id,
                    JoinRequest.status.in_(OPEN_STATUSES),
                ).limit(1)
            )

        return await self._read("has_active_request", _fetch) is not None

    async def list_requests(
        self,
        event_id: int,
        limit: int = 25,
        offset: int = 0,
        status: Optional[str] = None,
    ) -> Page:
        """Newest first. `next_offset` is None on the last page."""
        filters = [JoinRequest.event_id == event_id]
        if status is not None:
            filters.append(JoinRequest.status == JoinRequestStatus(status).value)

        async def _fetch():
            total = await self.db.scalar(select(func.count(JoinRequest.id)).where(*filters))
            result = await self.db.execute(
                select(JoinRequest)
                .where(*filters)
                .order_by(JoinRequest.created_at.desc(), JoinRequest.id.desc())
                .offset(offset)
                .limit(limit)
                .execution_options(populate_existing=True)
            )
            return list(result.scalars().all()), int(total or 0)

        items, total_count = await self._read("list_requests", _fetch)
        next_offset = offset + limit if offset + limit < total_count else None
        return Page(items=items, total_count=total_count, next_offset=next_offset)

    async def list_waitlisted(self, event_id: int) -> list[JoinRequest]:
        async def _fetch():
            result = await self.db.execute(
                select(JoinRequest)
                .where(
                    JoinRequest.event_id == event_id,
                    JoinRequest.status == JoinRequestStatus.WAITLISTED.value,
                )
                .order_by(JoinRequest.waitlist_pos.asc())
                .execution_options(populate_existing=True)
            )
            return list(result.scalars().all())

        return await self._read("list_waitlisted", _fetch)

    async def reload(self, requests: list[JoinRequest]) -> None:
        """Re-read requests whose loaded state a rollback has expired."""
        for request in requests:
            await self._read("reload", lambda request=request: self.db.refresh(request))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_request(
        self,
        event_id: int,
        user_id: int,
        party_size: int,
        note: Optional[str],
        hold_ttl_minutes: int,
        now: datetime,
    ) -> JoinRequest:
        """Insert a pending request holding `party_size` seats for `hold_ttl_minutes`."""
        async with self._atomic("create"):
            event = await self._lock_event(event_id)
            if event.status != EventStatus.PUBLISHED.value:
                raise EventNotOpen(event_id, event.status)

            if await self._open_request_id(event_id, user_id) is not None:
                raise DuplicateActiveRequest()
            if await self._is_participant(event_id, user_id):
                raise AlreadyParticipant()

            availability = await compute_availability(self.db, event, now)
            if availability.available < party_size:
                record_capacity_conflict("create")
                logger.warning(
                    "join_request_no_capacity",
                    event_id=event_id,
                    requested=party_size,
                    available=availability.available,
                )
                raise InsufficientCapacity(party_size, availability.available)

            request = JoinRequest(
                event_id=event_id,
                user_id=user_id,
                party_size=party_size,
                note=note,
                status=JoinRequestStatus.PENDING.value,
                hold_expires_at=now + timedelta(minutes=hold_ttl_minutes),
                created_at=now,
                updated_at=now,
            )
            request.check_invariants()
            self.db.add(request)
            try:
                await self.db.flush()
            except IntegrityError as e:
                raise DuplicateActiveRequest() from e

        logger.info(
            "join_request_created",
            request_id=request.id,
            event_id=event_id,
            user_id=user_id,
            party_size=party_size,
            hold_expires_at=request.hold_expires_at.isoformat(),
        )
        return request

    async def transition_status(
        self,
        request_id: int,
        new_status: str,
        expected_current_status: Optional[str] = None,
        *,
        now: datetime,
    ) -> JoinRequest:
        """
        Move a request to `new_status` under the event and request locks.

        A stale `expected_current_status` or a move the state machine does
        not allow fails with InvalidTransition and leaves the row as it was.
        Approval re-checks capacity and seats the party in the same
        transaction.
        """
        target = JoinRequestStatus(new_status)
        async with self._atomic(f"transition_{target.value}"):
            event, request = await self._lock_request_and_event(request_id)
            current = JoinRequestStatus(request.status)

            if expected_current_status is not None and current != JoinRequestStatus(expected_current_status):
                raise InvalidTransition(current.value, target.value, expected=JoinRequestStatus(expected_current_status).value)
            if not can_transition(current.value, target.value):
                raise InvalidTransition(current.value, target.value)

            await self._apply_transition(event, request, target, now, operation=target.value)

        logger.info(
            "join_request_transitioned",
            request_id=request.id,
            event_id=request.event_id,
            previous_status=current.value,
            status=target.value,
        )
        return request

    async def extend_hold(self, request_id: int, extension_minutes: int, now: datetime) -> JoinRequest:
        """Push a live hold's deadline out by `extension_minutes` from its current expiry."""
        async with self._atomic("extend_hold"):
            request = await self._lock_request(request_id)
            if request.status != JoinRequestStatus.PENDING.value:
                raise NotPending()
            if request.hold_expires_at <= now:
                raise HoldExpired()
            request.hold_expires_at = request.hold_expires_at + timedelta(minutes=extension_minutes)
            request.updated_at = now
            await self.db.flush()

        logger.info(
            "join_request_hold_extended",
            request_id=request.id,
            extension_minutes=extension_minutes,
            hold_expires_at=request.hold_expires_at.isoformat(),
        )
        return request

    async def expire_stale_holds(self, now: datetime) -> int:
        expired = await self.expire_stale_holds_by_event(now)
        return sum(len(requests) for requests in expired.values())

    async def expire_stale_holds_by_event(self, now: datetime) -> dict[int, list[JoinRequest]]:
        """
        Expire every pending request whose hold deadline is at or before `now`.

        Each row is expired in its own locked transaction that re-checks the
        row, so a row another sweeper or a host already moved is skipped.
        A row that fails is logged and left pending for the next sweep; the
        rows already committed are still returned, grouped by event id.
        """
        async def _fetch():
            result = await self.db.execute(
                select(JoinRequest.id)
                .where(
                    JoinRequest.status == JoinRequestStatus.PENDING.value,
                    JoinRequest.hold_expires_at <= now,
                )
                .order_by(JoinRequest.hold_expires_at.asc())
            )
            return list(result.scalars().all())

        candidates = await self._read("stale_holds", _fetch)
        expired: dict[int, list[JoinRequest]] = defaultdict(list)
        failed = 0
        for request_id in candidates:
            try:
                request = await self._expire_one(request_id, now)
            except JoinRequestError as e:
                failed += 1
                hold_expiry_failures.inc()
                logger.error("join_request_expire_failed", request_id=request_id, code=e.code, error=e.message)
                continue
            if request is not None:
                expired[request.event_id].append(request)

        if failed:
            # A rollback expires every loaded row, including those committed earlier
            await self.reload([r for requests in expired.values() for r in requests])
        return dict(expired)

    async def _expire_one(self, request_id: int, now: datetime) -> Optional[JoinRequest]:
        async with self._atomic("expire"):
            try:
                event, request = await self._lock_request_and_event(request_id)
            except (RequestNotFound, EventNotFound):
                return None
            if request.status != JoinRequestStatus.PENDING.value or request.hold_expires_at > now:
                return None
            await self._apply_transition(event, request, JoinRequestStatus.EXPIRED, now, operation="expire")

        logger.info("join_request_hold_expired", request_id=request_id, event_id=event.id)
        return request

    async def reorder_waitlist(self, request_id: int, new_pos: int, now: datetime) -> JoinRequest:
        """Move a waitlisted request to `new_pos`, clamped to the queue length."""
        async with self._atomic("reorder"):
            event, request = await self._lock_request_and_event(request_id)
            if request.status != JoinRequestStatus.WAITLISTED.value:
                raise NotWaitlisted()

            size = await self.db.scalar(
                select(func.count(JoinRequest.id)).where(
                    JoinRequest.event_id == event.id,
                    JoinRequest.status == JoinRequestStatus.WAITLISTED.value,
                )
            )
            old_pos = request.waitlist_pos
            target = min(max(1, new_pos), int(size))

            if target < old_pos:
                await self._shift_waitlist(event.id, lower=target, upper=old_pos - 1, delta=1)
            elif target > old_pos:
                await self._shift_waitlist(event.id, lower=old_pos + 1, upper=target, delta=-1)

            request.waitlist_pos = target
            request.updated_at = now
            await self.db.flush()

        logger.info("waitlist_reordered", request_id=request_id, event_id=event.id, from_pos=old_pos, to_pos=target)
        return request

    async def promote_next(self, event_id: int, policy: str, now: datetime) -> Optional[JoinRequest]:
        """
        One promotion attempt: approve the next eligible waitlisted request.

        fifo     - only the head of the queue is eligible; a party that does
                   not fit blocks everyone behind it
        best_fit - the earliest waitlisted party that fits

        Waitlisted entries of guests who are already seated are cancelled
        on the way. Returns None when nothing can be promoted.
        """
        if policy not in PROMOTION_POLICIES:
            raise ValueError(f"unknown promotion policy: {policy}")

        async with self._atomic("promote"):
            event = await self._lock_event(event_id)
            if not event.is_editable:
                return None

            result = await self.db.execute(
                select(JoinRequest)
                .where(
                    JoinRequest.event_id == event_id,
                    JoinRequest.status == JoinRequestStatus.WAITLISTED.value,
                )
                .order_by(JoinRequest.waitlist_pos.asc())
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            waitlisted = list(result.scalars().all())

            seated = await self._participant_user_ids(event_id)
            for stale in [r for r in waitlisted if r.user_id in seated]:
                await self._apply_transition(event, stale, JoinRequestStatus.CANCELLED, now, operation="promote")
                logger.info("waitlist_entry_superseded", request_id=stale.id, event_id=event_id, user_id=stale.user_id)
            waitlisted = [r for r in waitlisted if r.user_id not in seated]
            if not waitlisted:
                return None

            availability = await compute_availability(self.db, event, now)
            if policy == "fifo":
                head = waitlisted[0]
                candidate = head if head.party_size <= availability.available else None
            else:
                candidate = next((r for r in waitlisted if r.party_size <= availability.available), None)

            if candidate is None:
                logger.info(
                    "waitlist_promotion_blocked",
                    event_id=event_id,
                    policy=policy,
                    head_party_size=waitlisted[0].party_size,
                    available=availability.available,
                )
                return None

            await self._apply_transition(event, candidate, JoinRequestStatus.APPROVED, now, operation="promote")

        logger.info(
            "waitlist_promoted",
            request_id=candidate.id,
            event_id=event_id,
            party_size=candidate.party_size,
            policy=policy,
        )
        return candidate

    # ------------------------------------------------------------------
    # Helpers (callers hold the event lock)
    # ------------------------------------------------------------------

    async def _apply_transition(
        self,
        event: Event,
        request: JoinRequest,
        target: JoinRequestStatus,
        now: datetime,
        operation: str,
    ) -> None:
        previous = JoinRequestStatus(request.status)

        if target == JoinRequestStatus.APPROVED:
            if not event.is_editable:
                raise EventNotOpen(event.id, event.status)
            if await self._is_participant(event.id, request.user_id):
                raise AlreadyParticipant()
            # A pending request's own hold is already reserved for it
            availability = await compute_availability(self.db, event, now, exclude_request_id=request.id)
            if availability.available < request.party_size:
                record_capacity_conflict(operation)
                logger.warning(
                    "join_request_approval_no_capacity",
                    request_id=request.id,
                    event_id=event.id,
                    requested=request.party_size,
                    available=availability.available,
                )
                raise InsufficientCapacity(request.party_size, availability.available)
            self.db.add(
                Participant(
                    event_id=event.id,
                    user_id=request.user_id,
                    join_request_id=request.id,
                    status=PARTICIPANT_ACCEPTED,
                    party_size=request.party_size,
                    joined_at=now,
                )
            )

        if previous == JoinRequestStatus.WAITLISTED:
            await self._shift_waitlist(event.id, lower=request.waitlist_pos + 1, upper=None, delta=-1)
            request.waitlist_pos = None

        if target == JoinRequestStatus.WAITLISTED:
            request.waitlist_pos = await self._next_waitlist_pos(event.id)

        request.status = target.value
        if target != JoinRequestStatus.PENDING:
            request.hold_expires_at = None
        request.updated_at = now
        request.check_invariants()
        await self.db.flush()
        record_transition(target.value)

    async def _shift_waitlist(self, event_id: int, lower: int, upper: Optional[int], delta: int) -> None:
        conditions = [
            JoinRequest.event_id == event_id,
            JoinRequest.status == JoinRequestStatus.WAITLISTED.value,
            JoinRequest.waitlist_pos >= lower,
        ]
        if upper is not None:
            conditions.append(JoinRequest.waitlist_pos <= upper)
        await self.db.execute(
            update(JoinRequest)
            .where(*conditions)
            .values(waitlist_pos=JoinRequest.waitlist_pos + delta)
            .execution_options(synchronize_session="fetch")
        )

    async def _next_waitlist_pos(self, event_id: int) -> int:
        current_max = await self.db.scalar(
            select(func.max(JoinRequest.waitlist_pos)).where(
                JoinRequest.event_id == event_id,
                JoinRequest.status == JoinRequestStatus.WAITLISTED.value,
            )
        )
        return (current_max or 0) + 1

    async def _open_request_id(self, event_id: int, user_id: int) -> Optional[int]:
        return await self.db.scalar(
            select(JoinRequest.id).where(
                JoinRequest.event_id == event_id,
                JoinRequest.user_id == user_id,
                JoinRequest.status.in_(OPEN_STATUSES),
            ).limit(1)
        )

    async def _is_participant(self, event_id: int, user_id: int) -> bool:
        participant_id = await self.db.scalar(
            select(Participant.id).where(
                Participant.event_id == event_id,
                Participant.user_id == user_id,
                Participant.status == PARTICIPANT_ACCEPTED,
            ).limit(1)
        )
        return participant_id is not None

    async def _participant_user_ids(self, event_id: int) -> set[int]:
        result = await self.db.execute(
            select(Participant.user_id).where(
                Participant.event_id == event_id,
                Participant.status == PARTICIPANT_ACCEPTED,
            )
        )
        return set(result.scalars().all())
