"""
Availability calculator.

    total     = event capacity
    confirmed = sum of party sizes of accepted participants
    held      = sum of party sizes of pending requests whose hold is still live
    available = max(0, total - confirmed - held)

The numbers are derived from rows on every call and never cached. A
caller that is about to mutate capacity must call `compute_availability`
inside its own transaction, after locking the event row; read-only
callers get an advisory snapshot from `get_availability`.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import EventNotFound
from app.models.event import Event
from app.models.join_request import JoinRequest, JoinRequestStatus
from app.models.participant import PARTICIPANT_ACCEPTED, Participant


@dataclass(frozen=True)
class Availability:
    total: int
    confirmed: int
    held: int
    available: int

    @classmethod
    def from_counts(cls, total: int, confirmed: int, held: int) -> "Availability":
        return cls(
            total=total,
            confirmed=confirmed,
            held=held,
            available=max(0, total - confirmed - held),
        )

    def as_dict(self) -> dict:
        return {
            "total": self.total,
            "confirmed": self.confirmed,
            "held": self.held,
            "available": self.available,
        }


async def compute_availability(
    db: AsyncSession,
    event: Event,
    now: datetime,
    exclude_request_id: Optional[int] = None,
) -> Availability:
    """
    Sum confirmed and held seats for an already-loaded event.

    `exclude_request_id` leaves one request's own hold out of `held`,
    which is what approving that request needs to see.
    """
    confirmed = await db.scalar(
        select(func.coalesce(func.sum(Participant.party_size), 0)).where(
            Participant.event_id == event.id,
            Participant.status == PARTICIPANT_ACCEPTED,
        )
    )

    held_query = select(func.coalesce(func.sum(JoinRequest.party_size), 0)).where(
        JoinRequest.event_id == event.id,
        JoinRequest.status == JoinRequestStatus.PENDING.value,
        JoinRequest.hold_expires_at > now,
    )
    if exclude_request_id is not None:
        held_query = held_query.where(JoinRequest.id != exclude_request_id)
    held = await db.scalar(held_query)

    return Availability.from_counts(event.capacity_total, int(confirmed or 0), int(held or 0))


async def get_availability(db: AsyncSession, event_id: int, now: datetime) -> Availability:
    """Advisory availability snapshot. Raises EventNotFound."""
    event = await db.get(Event, event_id)
    if event is None:
        raise EventNotFound(event_id)
    return await compute_availability(db, event, now)
